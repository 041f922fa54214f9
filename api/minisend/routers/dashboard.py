import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..core import config, orders
from ..core.auth import create_session_token, verify_admin_credentials, verify_session
from ..core.status import COMPLETED, FAILED, NORMALIZED_STATUSES, PROVIDERS, PENDING, PROCESSING
from ..core.utils import now_iso
from ..models import CurrencyStats, DashboardLogin, DashboardStats, ProviderStats, UnifiedOrder, UnifiedOrderPage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])

# Orders still open after this long are reported as stuck.
STUCK_AFTER = timedelta(hours=1)


def _parse_ts(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _load_orders(provider: Optional[str]) -> List[Dict[str, Any]]:
    try:
        rows = orders.list_orders(provider)
    except Exception as e:
        logger.exception("Dashboard order query failed")
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}") from e
    return [orders.serialize_order(row) for row in rows]


@router.post("/login")
def login(body: DashboardLogin):
    if not verify_admin_credentials(body.username, body.password):
        logger.warning("Rejected dashboard login for %s", body.username)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return {
        "success": True,
        "token": create_session_token(body.username),
        "expiresIn": config.DASHBOARD_SESSION_HOURS * 3600,
    }


@router.get("/session")
def session(claims: dict = Depends(verify_session)):
    return {"success": True, "authenticated": True, "user": claims["sub"]}


@router.get("/orders", response_model=UnifiedOrderPage)
def list_orders(
    provider: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    _claims: dict = Depends(verify_session),
):
    if provider and provider not in PROVIDERS:
        raise HTTPException(status_code=400, detail=f"Unknown provider: {provider}")
    if status and status not in NORMALIZED_STATUSES:
        raise HTTPException(status_code=400, detail=f"Unknown status: {status}")

    rows = _load_orders(provider)
    if status:
        rows = [row for row in rows if row["normalizedStatus"] == status]
    if search:
        needle = search.strip().lower()
        rows = [
            row
            for row in rows
            if needle in (row["orderId"] or "").lower()
            or needle in (row["walletAddress"] or "").lower()
            or needle in (row["transactionHash"] or "").lower()
        ]

    start = (page - 1) * limit
    return UnifiedOrderPage(
        orders=[UnifiedOrder(**row) for row in rows[start:start + limit]],
        total=len(rows),
        page=page,
        limit=limit,
    )


def compute_stats(rows: List[Dict[str, Any]], now: Optional[datetime] = None) -> DashboardStats:
    now = now or datetime.now(timezone.utc)
    providers: Dict[str, ProviderStats] = {}
    currencies: Dict[str, CurrencyStats] = {}
    completed = failed = pending = stuck = 0
    volume = revenue = 0.0
    wallets = set()

    for row in rows:
        state = row["normalizedStatus"]
        p = providers.setdefault(row["provider"] or "unknown", ProviderStats())
        p.total += 1
        if row["walletAddress"]:
            wallets.add(row["walletAddress"].lower())

        if state == COMPLETED:
            completed += 1
            p.completed += 1
            p.volume += row["amountInUsdc"]
            volume += row["amountInUsdc"]
            revenue += row["senderFee"]
            c = currencies.setdefault(row["localCurrency"] or "unknown", CurrencyStats())
            c.orders += 1
            c.volume += row["amountInUsdc"]
            c.localVolume += row["amountInLocal"]
        elif state == FAILED:
            failed += 1
            p.failed += 1
        elif state in (PENDING, PROCESSING):
            pending += 1
            created = _parse_ts(row["createdAt"])
            if created and now - created > STUCK_AFTER:
                stuck += 1

    for p in providers.values():
        p.successRate = round(p.completed / p.total * 100, 2) if p.total else 0.0

    total = len(rows)
    return DashboardStats(
        totalOrders=total,
        successRate=round(completed / total * 100, 2) if total else 0.0,
        failedOrders=failed,
        pendingOrders=pending,
        totalUSDCVolume=round(volume, 2),
        uniqueWallets=len(wallets),
        totalRevenue=round(revenue, 2),
        stuckOrders=stuck,
        providers=providers,
        currencies=currencies,
    )


@router.get("/stats")
def get_stats(provider: Optional[str] = Query(None), _claims: dict = Depends(verify_session)):
    stats = compute_stats(_load_orders(provider))
    return {"success": True, "stats": stats.model_dump(), "lastUpdated": now_iso()}
