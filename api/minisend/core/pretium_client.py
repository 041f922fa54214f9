"""Pretium API helper utilities."""
from __future__ import annotations

import logging
import math
import re
from typing import Any, Dict, Tuple

import httpx

from . import config

logger = logging.getLogger(__name__)

SUPPORTED_CURRENCIES = ("KES", "GHS", "NGN")


class PretiumError(Exception):
    """Pretium reports failures as ``{code, message}``; both are kept here."""

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _request(path: str, body: Dict[str, Any]) -> Dict[str, Any]:
    if not config.PRETIUM_CONSUMER_KEY:
        raise PretiumError("PRETIUM_CONSUMER_KEY is not configured", status_code=500)

    url = f"{config.PRETIUM_BASE_URL}{path}"
    try:
        response = httpx.post(
            url,
            json=body,
            headers={
                "Content-Type": "application/json",
                "x-api-key": config.PRETIUM_CONSUMER_KEY,
            },
            timeout=15.0,
        )
    except httpx.RequestError as exc:
        logger.error("Pretium %s unreachable: %s", path, exc)
        raise PretiumError(f"Pretium API request failed: {exc}", status_code=502) from exc

    try:
        data = response.json()
    except ValueError as exc:
        raise PretiumError("Invalid JSON response from Pretium", status_code=502) from exc

    code = data.get("code") if isinstance(data, dict) else None
    if response.is_error or (code is not None and code != 200):
        message = (data.get("message") if isinstance(data, dict) else None) or "Pretium API request failed"
        logger.error("Pretium %s failed (%s): %s", path, code or response.status_code, message)
        raise PretiumError(message, status_code=int(code or response.status_code))
    return data


def _check_currency(currency: str) -> str:
    currency = (currency or "").upper()
    if currency not in SUPPORTED_CURRENCIES:
        raise PretiumError(f"Unsupported Pretium currency: {currency or 'missing'}", status_code=400)
    return currency


def get_exchange_rate(currency: str) -> Dict[str, Any]:
    return _request("/v1/exchange-rate", {"currency_code": _check_currency(currency)}).get("data") or {}


def get_transaction_status(transaction_code: str, currency: str) -> Dict[str, Any]:
    if not transaction_code:
        raise PretiumError("Transaction code is required", status_code=400)
    payload = _request(f"/v1/status/{_check_currency(currency)}", {"transaction_code": transaction_code})
    return payload.get("data") or {}


def disburse(request: Dict[str, Any], currency: str) -> Dict[str, Any]:
    """Start an off-ramp payout; the returned data carries ``transaction_code``."""
    return _request(f"/v1/pay/{_check_currency(currency)}", request).get("data") or {}


def split_amount(amount_usdc: float, rate: float, fee_percent: float) -> Tuple[int, int, int]:
    """Return ``(total, recipient, fee)`` in whole local units.

    The recipient amount is rounded down so that ``recipient + fee == total``.
    """
    total = math.floor(amount_usdc * rate + 0.5)
    recipient = math.floor(total / (1 + fee_percent / 100))
    return total, recipient, total - recipient


def format_phone(phone_number: str, country_code: str = "254") -> str:
    digits = re.sub(r"\D", "", phone_number or "")
    if digits.startswith(country_code):
        return digits
    if digits.startswith("0"):
        digits = digits[1:]
    return f"{country_code}{digits}"


def kenyan_network(msisdn: str) -> str:
    prefix = msisdn[3:6]
    if prefix[:2] in ("73", "75", "10"):
        return "Airtel"
    return "Safaricom"
