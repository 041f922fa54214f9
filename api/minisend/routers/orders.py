import logging

from fastapi import APIRouter, HTTPException, Query

from ..core import orders

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["orders"])


@router.get("/user/orders")
def list_user_orders(
    wallet: str = Query(""),
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    """Orders created from ``wallet``, newest first."""
    wallet = wallet.strip()
    if not wallet:
        raise HTTPException(status_code=400, detail="Wallet address is required")

    rows = orders.list_orders_by_wallet(wallet, limit=limit, offset=offset)
    return {
        "success": True,
        "orders": [orders.serialize_order(row) for row in rows],
        "pagination": {"limit": limit, "offset": offset, "hasMore": len(rows) == limit},
    }


@router.get("/orders/by-hash/{tx_hash}")
def get_order_by_hash(tx_hash: str):
    order = orders.get_order_by_tx_hash(tx_hash)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return {"success": True, "order": orders.serialize_order(order)}
