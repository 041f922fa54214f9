"""Farcaster notifications through Neynar. Failures are logged, never raised."""
import logging
import uuid
from typing import Any, Dict, Optional

import requests

from . import config
from .status import COMPLETED, FAILED

logger = logging.getLogger(__name__)


def build_transaction_notification(status: str, order: Dict[str, Any]) -> Optional[Dict[str, str]]:
    amount = order.get("amount_in_local")
    currency = order.get("local_currency") or "KES"
    if status == COMPLETED:
        return {
            "title": "Payment delivered",
            "body": f"{currency} {amount} has been sent to your recipient.",
        }
    if status == FAILED:
        return {
            "title": "Payment failed",
            "body": f"Your {currency} {amount} transfer could not be completed.",
        }
    return None


def send_notification(fid: int, notification: Dict[str, str]) -> bool:
    if not config.NEYNAR_API_KEY:
        logger.debug("NEYNAR_API_KEY not set; skipping notification for fid %s", fid)
        return False

    body = {
        "target_fids": [fid],
        "notification": {
            "title": notification["title"],
            "body": notification["body"],
            "target_url": config.APP_URL,
            "uuid": str(uuid.uuid4()),
        },
    }
    try:
        resp = requests.post(
            f"{config.NEYNAR_BASE_URL}/farcaster/frame/notifications/",
            headers={
                "x-api-key": config.NEYNAR_API_KEY,
                "Content-Type": "application/json",
            },
            json=body,
            timeout=10,
        )
    except requests.RequestException as exc:
        logger.warning("Notification request for fid %s failed: %s", fid, exc)
        return False

    if resp.status_code >= 400:
        logger.warning("Neynar error %s for fid %s: %s", resp.status_code, fid, resp.text)
        return False
    return True


def notify_order_status(order: Dict[str, Any], status: str) -> bool:
    fid = order.get("fid")
    if not fid:
        return False
    notification = build_transaction_notification(status, order)
    if notification is None:
        return False
    try:
        return send_notification(int(fid), notification)
    except (TypeError, ValueError):
        logger.warning("Order %s has an invalid fid %r", order.get("id"), fid)
        return False
