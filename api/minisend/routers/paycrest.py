import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from ..core import config, orders, paycrest_client
from ..core.broker import EventBroker, get_broker
from ..core.paycrest_client import PaycrestError
from ..core.polling import poll_order_status
from ..core.signatures import verify_signature
from ..core.status import PAYCREST, canonical_status, is_failed, is_settled
from ..core.utils import now_iso, to_float
from ..models import CreateOrderRequest, PaycrestWebhookEvent, PollRequest, VerifyAccountRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/paycrest", tags=["paycrest"])


def _upstream_error(exc: PaycrestError) -> HTTPException:
    status_code = exc.status_code if exc.status_code in (400, 404) else 500
    return HTTPException(status_code=status_code, detail=exc.message)


@router.get("/rates")
def get_rates(
    token: str = Query("USDC"),
    amount: str = Query("1"),
    currency: str = Query("KES"),
    network: str = Query("base"),
):
    return get_rate_for(token, amount, currency, network)


@router.get("/rates/{token}/{amount}/{currency}")
def get_rate_for(token: str, amount: str, currency: str, network: str = Query("base")):
    if to_float(amount, default=-1) <= 0:
        raise HTTPException(status_code=400, detail="Amount must be a positive number")
    try:
        rate = paycrest_client.get_rate(token.upper(), amount, currency.upper(), network)
    except PaycrestError as exc:
        raise _upstream_error(exc) from exc
    return {"success": True, "rate": rate, "timestamp": now_iso()}


@router.post("/verify-account")
def verify_account(body: VerifyAccountRequest):
    try:
        result = paycrest_client.verify_account(body.bankCode, body.accountNumber)
    except PaycrestError as exc:
        raise _upstream_error(exc) from exc
    return {"success": True, **result}


@router.get("/institutions/{currency}")
def list_institutions(currency: str):
    try:
        institutions = paycrest_client.get_institutions(currency.upper())
    except PaycrestError as exc:
        raise _upstream_error(exc) from exc
    return {"success": True, "data": institutions}


@router.get("/currencies")
def list_currencies():
    try:
        currencies = paycrest_client.get_currencies()
    except PaycrestError as exc:
        raise _upstream_error(exc) from exc
    return {"success": True, "data": currencies}


@router.post("/orders")
def create_order(body: CreateOrderRequest):
    reference = body.reference or f"minisend-{uuid.uuid4().hex[:12]}"
    recipient = body.recipient.model_dump()
    recipient["memo"] = recipient.get("memo") or f"USDC to {body.recipient.currency} conversion"
    request_payload = {
        "amount": str(body.amount),
        "token": body.token,
        "network": body.network,
        "rate": str(body.rate),
        "recipient": recipient,
        "reference": reference,
        "returnAddress": body.returnAddress or config.PAYCREST_RETURN_ADDRESS or body.walletAddress,
    }
    try:
        paycrest_order = paycrest_client.create_order(request_payload)
    except PaycrestError as exc:
        raise _upstream_error(exc) from exc

    order_id = paycrest_order.get("id")
    if not order_id:
        raise HTTPException(status_code=500, detail="PayCrest did not return an order id")

    record = None
    try:
        record = orders.create_order(
            {
                "provider": PAYCREST,
                "provider_order_id": order_id,
                "provider_status": paycrest_order.get("status") or "initiated",
                "reference": reference,
                "wallet_address": body.walletAddress,
                "fid": body.fid,
                "carrier": body.carrier,
                "amount_in_usdc": body.amount,
                "amount_in_local": round(body.amount * body.rate, 2),
                "local_currency": body.recipient.currency,
                "rate": body.rate,
                "sender_fee": to_float(paycrest_order.get("senderFee")),
                "transaction_fee": to_float(paycrest_order.get("transactionFee")),
                "recipient": {
                    "institution": recipient["institution"],
                    "account_identifier": recipient["accountIdentifier"],
                    "account_name": recipient["accountName"],
                    "currency": recipient["currency"],
                    "memo": recipient["memo"],
                },
                "receive_address": paycrest_order.get("receiveAddress"),
                "valid_until": paycrest_order.get("validUntil"),
            }
        )
    except Exception:
        logger.exception("PayCrest order %s created but not persisted", order_id)

    return {
        "success": True,
        "order": paycrest_order,
        "orderId": record.get("id") if record else None,
        "timestamp": now_iso(),
    }


def _order_from_record(record: Dict[str, Any]) -> Dict[str, Any]:
    recipient = record.get("recipient") or {}
    return {
        "id": record.get("provider_order_id"),
        "status": record.get("provider_status") or record.get("status"),
        "amount": str(record.get("amount_in_usdc") or ""),
        "token": "USDC",
        "network": "base",
        "recipient": {
            "accountName": recipient.get("account_name"),
            "accountIdentifier": recipient.get("account_identifier"),
            "currency": record.get("local_currency"),
        },
        "reference": record.get("reference"),
        "receiveAddress": record.get("receive_address"),
        "validUntil": record.get("valid_until"),
        "senderFee": str(record.get("sender_fee") or 0),
        "transactionFee": str(record.get("transaction_fee") or 0),
        "txHash": record.get("transaction_hash"),
        "amountPaid": record.get("amount_paid"),
    }


def _details(paycrest_order: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "transaction_hash": paycrest_order.get("txHash"),
        "amount_paid": paycrest_order.get("amountPaid"),
        "provider_id": paycrest_order.get("providerId"),
    }


def _sync_order(order_id: str, paycrest_order: Dict[str, Any], source: str, broker: Optional[EventBroker]):
    try:
        return orders.reconcile(
            PAYCREST,
            order_id,
            paycrest_order.get("status"),
            source=source,
            details=_details(paycrest_order),
            broker=broker,
        )
    except Exception:
        logger.exception("Failed to sync PayCrest order %s from %s", order_id, source)
        return None


@router.get("/status/{order_id}")
def get_order_status(order_id: str, broker: EventBroker = Depends(get_broker)):
    from_api = True
    try:
        paycrest_order = paycrest_client.get_order(order_id)
    except PaycrestError as exc:
        logger.warning("PayCrest status lookup for %s failed: %s", order_id, exc)
        record = orders.get_order(PAYCREST, order_id)
        if not record:
            raise HTTPException(status_code=404, detail="Order not found") from exc
        paycrest_order = _order_from_record(record)
        from_api = False

    if from_api:
        _sync_order(order_id, paycrest_order, "status", broker)

    status = paycrest_order.get("status")
    settled = paycrest_client.is_payment_settled(paycrest_order)
    return {
        "success": True,
        "source": "paycrest" if from_api else "database",
        "order": {
            "id": paycrest_order.get("id") or order_id,
            "status": status,
            "amount": paycrest_order.get("amount"),
            "token": paycrest_order.get("token"),
            "network": paycrest_order.get("network"),
            "currency": (paycrest_order.get("recipient") or {}).get("currency") or "KES",
            "recipient": paycrest_order.get("recipient"),
            "reference": paycrest_order.get("reference"),
            "receiveAddress": paycrest_order.get("receiveAddress"),
            "validUntil": paycrest_order.get("validUntil"),
            "senderFee": paycrest_order.get("senderFee"),
            "transactionFee": paycrest_order.get("transactionFee"),
            "amountPaid": paycrest_order.get("amountPaid"),
            "amountReturned": paycrest_order.get("amountReturned"),
            "transactionLogs": paycrest_order.get("transactionLogs"),
            "txHash": paycrest_order.get("txHash"),
            "isSettled": settled,
            "isFailed": is_failed(PAYCREST, status),
            "isProcessing": canonical_status(PAYCREST, status) in ("initiated", "pending", "processing"),
            "settledAt": now_iso() if canonical_status(PAYCREST, status) == "settled" else None,
        },
    }


@router.post("/poll/{order_id}")
def poll_order(
    order_id: str,
    body: Optional[PollRequest] = Body(None),
    broker: EventBroker = Depends(get_broker),
):
    options = body or PollRequest()
    record = orders.get_order(PAYCREST, order_id)

    def on_attempt(attempt: int, status: Optional[str], response_time: float, error: Optional[str]) -> None:
        if record is not None:
            orders.record_polling_attempt(record, attempt, status, int(response_time * 1000), error)

    def fetch() -> Dict[str, Any]:
        paycrest_order = paycrest_client.get_order(order_id)
        _sync_order(order_id, paycrest_order, "poll", broker)
        return paycrest_order

    logger.info("Server-side polling started for %s", order_id)
    result = poll_order_status(
        fetch,
        provider=PAYCREST,
        interval=options.baseDelay or config.SERVER_POLL_BASE_DELAY_SECONDS,
        max_interval=options.maxDelay or config.SERVER_POLL_MAX_DELAY_SECONDS,
        backoff_factor=options.backoffFactor or config.SERVER_POLL_BACKOFF_FACTOR,
        max_attempts=options.maxAttempts or config.SERVER_POLL_MAX_ATTEMPTS,
        max_duration=options.timeoutSeconds or config.SERVER_POLL_TIMEOUT_SECONDS,
        on_attempt=on_attempt,
    )

    if result.success:
        return {
            "success": True,
            "completed": True,
            "settled": True,
            "order": result.order,
            "attempts": result.attempts,
            "message": result.message,
        }
    return {
        "success": False,
        "completed": result.completed,
        "settled": False,
        "order": result.order,
        "attempts": result.attempts,
        "error": result.error,
        "message": result.message,
        "timeoutReached": result.timeout_reached,
    }


@router.get("/poll/{order_id}")
def check_order_once(order_id: str):
    try:
        paycrest_order = paycrest_client.get_order(order_id)
    except PaycrestError as exc:
        raise _upstream_error(exc) from exc

    status = paycrest_order.get("status")
    settled = is_settled(PAYCREST, status)
    failed = is_failed(PAYCREST, status)
    if settled:
        message = "Payment completed successfully"
    elif failed:
        message = f"Payment {canonical_status(PAYCREST, status)}"
    else:
        message = "Payment processing..."
    return {
        "success": True,
        "order": paycrest_order,
        "settled": settled,
        "failed": failed,
        "completed": settled or failed,
        "message": message,
    }


@router.post("/webhook")
async def paycrest_webhook(request: Request, broker: EventBroker = Depends(get_broker)):
    raw_body = await request.body()
    signature = request.headers.get("X-Paycrest-Signature")
    if not signature:
        logger.error("PayCrest webhook without X-Paycrest-Signature header")
        raise HTTPException(status_code=401, detail="Missing signature header")

    if not config.PAYCREST_WEBHOOK_SECRET:
        logger.error("PayCrest webhook secret not configured")
        raise HTTPException(status_code=500, detail="Server configuration error")

    if not verify_signature(raw_body, signature, config.PAYCREST_WEBHOOK_SECRET):
        logger.error("Invalid PayCrest webhook signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        event = PaycrestWebhookEvent.model_validate_json(raw_body)
    except ValidationError as exc:
        logger.error("Malformed PayCrest webhook payload: %s", exc)
        raise HTTPException(status_code=400, detail="Invalid webhook payload") from exc

    data = event.data
    logger.info("PayCrest webhook %s for order %s (status %s)", event.event, data.id, data.status)

    try:
        await run_in_threadpool(
            orders.record_webhook_event, PAYCREST, event.event, event.model_dump(), data.id
        )
        await run_in_threadpool(
            orders.reconcile,
            PAYCREST,
            data.id,
            event.event or data.status,
            source="webhook",
            details={
                "transaction_hash": data.txHash,
                "provider_id": data.providerId,
                "amount_paid": data.amountPaid or data.amount,
            },
            broker=broker,
        )
    except Exception:
        logger.exception("PayCrest webhook %s for %s could not be processed", event.event, data.id)

    return {"received": True, "timestamp": now_iso()}


@router.get("/webhook")
def paycrest_webhook_health():
    return {"status": "ok", "message": "PayCrest webhook endpoint is active", "timestamp": now_iso()}


@router.get("/stream")
async def stream_updates(
    request: Request,
    clientId: Optional[str] = Query(None),
    broker: EventBroker = Depends(get_broker),
):
    subscription = broker.register(clientId)
    return StreamingResponse(
        broker.stream(subscription, request.is_disconnected, keepalive=config.SSE_KEEPALIVE_SECONDS),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
