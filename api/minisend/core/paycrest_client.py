"""PayCrest sender API helper utilities."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from . import config

logger = logging.getLogger(__name__)


class PaycrestError(Exception):
    """Raised when the PayCrest API rejects a request or cannot be reached."""

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _require_config() -> str:
    if not config.PAYCREST_API_KEY:
        raise PaycrestError("PayCrest API key not configured", status_code=500)
    return config.PAYCREST_API_KEY


def _headers() -> Dict[str, str]:
    return {
        "API-Key": _require_config(),
        "Content-Type": "application/json",
        "Accept": "application/json",
    }


def _request(
    method: str,
    path: str,
    *,
    params: Optional[Dict[str, Any]] = None,
    json: Optional[Dict[str, Any]] = None,
) -> Any:
    url = f"{config.PAYCREST_BASE_URL}{path}"
    try:
        response = httpx.request(
            method,
            url,
            params=params,
            json=json,
            headers=_headers(),
            timeout=15.0,
        )
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        message = f"PayCrest API error: {exc.response.status_code}"
        try:
            message = exc.response.json().get("message") or message
        except ValueError:
            pass
        logger.error("PayCrest %s %s failed: %s", method, path, message)
        raise PaycrestError(message, status_code=exc.response.status_code) from exc
    except httpx.RequestError as exc:
        logger.error("PayCrest %s %s unreachable: %s", method, path, exc)
        raise PaycrestError(f"PayCrest API request failed: {exc}", status_code=502) from exc

    try:
        return response.json()
    except ValueError as exc:
        raise PaycrestError("Invalid JSON response from PayCrest", status_code=502) from exc


def _unwrap(payload: Any) -> Any:
    """PayCrest wraps results as ``{status, message, data}``."""

    if isinstance(payload, dict) and "data" in payload and payload["data"] is not None:
        return payload["data"]
    return payload


def get_rate(token: str = "USDC", amount: str = "1", currency: str = "KES", network: str = "base") -> Any:
    payload = _request("GET", f"/rates/{token}/{amount}/{currency}", params={"network": network})
    if isinstance(payload, dict) and payload.get("status") not in (None, "success"):
        raise PaycrestError(payload.get("message") or "Invalid rates response format", status_code=502)
    return _unwrap(payload)


def verify_account(institution: str, account_identifier: str) -> Dict[str, Any]:
    payload = _request(
        "POST",
        "/verify-account",
        json={"institution": institution, "accountIdentifier": account_identifier},
    )
    return {
        "accountName": payload.get("data") if isinstance(payload, dict) else None,
        "isValid": isinstance(payload, dict) and payload.get("status") == "success",
    }


def get_institutions(currency: str) -> Any:
    return _unwrap(_request("GET", f"/institutions/{currency}"))


def get_currencies() -> Any:
    return _unwrap(_request("GET", "/currencies"))


def create_order(order: Dict[str, Any]) -> Dict[str, Any]:
    return _unwrap(_request("POST", "/sender/orders", json=order))


def get_order(order_id: str) -> Dict[str, Any]:
    if not order_id:
        raise PaycrestError("Order ID is required", status_code=400)
    return _unwrap(_request("GET", f"/sender/orders/{order_id}"))


def is_payment_settled(order: Dict[str, Any]) -> bool:
    """Settled when the order status says so, or its logs show settlement with an amount paid."""

    status = str(order.get("status") or "").lower().replace("payment_order.", "")
    if status in ("settled", "validated"):
        return True
    logs = order.get("transactionLogs") or []
    if logs:
        has_settled_log = any(str(log.get("status")).lower() in ("settled", "validated") for log in logs)
        try:
            has_amount_paid = float(order.get("amountPaid") or 0) > 0
        except (TypeError, ValueError):
            has_amount_paid = False
        return has_settled_log and has_amount_paid
    return False
