"""Inbound callbacks from Transak and Safaricom M-Pesa."""
import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError

from ..core import config, orders
from ..core.broker import EventBroker, get_broker
from ..core.signatures import verify_signature
from ..core.status import MPESA, TRANSAK
from ..models import TransakWebhookEvent

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


def _parameters(items: Optional[List[Dict[str, Any]]], name_key: str, value_key: str = "Value") -> Dict[str, Any]:
    """Flatten Safaricom ``[{Name|Key, Value}]`` lists into a dict."""
    result: Dict[str, Any] = {}
    for item in items or []:
        if isinstance(item, dict) and item.get(name_key):
            result[item[name_key]] = item.get(value_key)
    return result


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.error("Callback %s with unreadable body", request.url.path)
        return {}
    return body if isinstance(body, dict) else {}


async def _reconcile(provider: str, order_id: Optional[str], status: str, details: Dict[str, Any], broker: EventBroker):
    if not order_id:
        logger.warning("%s callback without an order identifier", provider)
        return None
    try:
        return await run_in_threadpool(
            orders.reconcile, provider, order_id, status, source="webhook", details=details, broker=broker
        )
    except Exception:
        logger.exception("%s callback for %s could not be processed", provider, order_id)
        return None


@router.post("/transak")
async def transak_webhook(request: Request, broker: EventBroker = Depends(get_broker)):
    raw_body = await request.body()
    signature = request.headers.get("X-Webhook-Signature")
    if not signature:
        raise HTTPException(status_code=401, detail="Missing signature header")
    if not config.TRANSAK_WEBHOOK_SECRET:
        logger.error("Transak webhook secret not configured")
        raise HTTPException(status_code=500, detail="Server configuration error")
    if not verify_signature(raw_body, signature, config.TRANSAK_WEBHOOK_SECRET):
        logger.error("Invalid Transak webhook signature")
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    try:
        event = TransakWebhookEvent.model_validate_json(raw_body)
    except ValidationError as exc:
        logger.error("Malformed Transak webhook payload: %s", exc)
        raise HTTPException(status_code=400, detail="Invalid webhook payload") from exc

    data = event.webhookData
    logger.info("Transak webhook %s for order %s", event.eventID, data.id)
    try:
        await run_in_threadpool(orders.record_webhook_event, TRANSAK, event.eventID, event.model_dump(), data.id)
    except Exception:
        logger.exception("Failed to record Transak event %s", event.eventID)

    details = {"transaction_hash": data.transactionHash, "failure_reason": data.statusMessage}
    status = data.status or event.eventID
    result = await _reconcile(TRANSAK, data.id, status, details, broker)
    if result is None and data.partnerOrderId:
        await _reconcile(TRANSAK, data.partnerOrderId, status, details, broker)

    return {"success": True}


@router.post("/mpesa")
async def mpesa_stk_callback(request: Request, broker: EventBroker = Depends(get_broker)):
    body = await _json_body(request)
    callback = (body.get("Body") or {}).get("stkCallback") or {}
    checkout_id = callback.get("CheckoutRequestID")
    result_code = callback.get("ResultCode")
    metadata = _parameters((callback.get("CallbackMetadata") or {}).get("Item"), "Name")

    if result_code == 0:
        logger.info("M-Pesa payment %s succeeded (receipt %s)", checkout_id, metadata.get("MpesaReceiptNumber"))
        status = "COMPLETED"
        details = {
            "receipt_number": metadata.get("MpesaReceiptNumber"),
            "amount_paid": metadata.get("Amount"),
        }
    else:
        logger.info("M-Pesa payment %s failed: %s", checkout_id, callback.get("ResultDesc"))
        status = "FAILED"
        details = {"failure_reason": callback.get("ResultDesc")}

    await _reconcile(MPESA, checkout_id, status, details, broker)
    return {"status": "success", "message": "Callback processed successfully"}


@router.post("/mpesa/b2c/result")
async def mpesa_b2c_result(request: Request, broker: EventBroker = Depends(get_broker)):
    result = (await _json_body(request)).get("Result") or {}
    if result:
        conversation_id = result.get("ConversationID")
        parameters = _parameters((result.get("ResultParameters") or {}).get("ResultParameter"), "Key")
        if result.get("ResultCode") == 0:
            logger.info("B2C payout %s delivered (%s)", conversation_id, result.get("TransactionID"))
            status = "COMPLETED"
            details = {
                "receipt_number": parameters.get("TransactionReceipt") or result.get("TransactionID"),
                "amount_paid": parameters.get("TransactionAmount"),
                "recipient_public_name": parameters.get("ReceiverPartyPublicName"),
            }
        else:
            logger.info("B2C payout %s failed: %s", conversation_id, result.get("ResultDesc"))
            status = "FAILED"
            details = {"failure_reason": result.get("ResultDesc")}
        await _reconcile(MPESA, conversation_id, status, details, broker)
    return {"ResultCode": 0, "ResultDesc": "Accepted"}


@router.post("/mpesa/b2c/timeout")
async def mpesa_b2c_timeout(request: Request, broker: EventBroker = Depends(get_broker)):
    result = (await _json_body(request)).get("Result") or {}
    if result:
        conversation_id = result.get("ConversationID")
        logger.info("B2C payout %s timed out", conversation_id)
        await _reconcile(
            MPESA,
            conversation_id,
            "TIMEOUT",
            {"failure_reason": result.get("ResultDesc") or "B2C payment request timed out"},
            broker,
        )
    return {"ResultCode": 0, "ResultDesc": "Timeout acknowledged"}
