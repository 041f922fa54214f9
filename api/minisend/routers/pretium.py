import logging
import re
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError

from ..core import config, orders, pretium_client
from ..core.broker import EventBroker, get_broker
from ..core.pretium_client import PretiumError
from ..core.status import PRETIUM, is_failed, is_settled, normalize_status
from ..core.utils import now_iso, to_float
from ..models import PretiumDisburseRequest, PretiumWebhookPayload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/pretium", tags=["pretium"])


def _http_error(exc: PretiumError) -> HTTPException:
    status_code = exc.status_code if exc.status_code in (400, 404) else 500
    return HTTPException(status_code=status_code, detail=exc.message)


@router.get("/rates")
def get_rates(currency: str = Query("KES")):
    try:
        rates = pretium_client.get_exchange_rate(currency)
    except PretiumError as exc:
        raise _http_error(exc) from exc
    return {"success": True, "currency": currency.upper(), "data": rates, "timestamp": now_iso()}


@router.get("/status/{transaction_code}")
def get_transaction_status(
    transaction_code: str,
    currency: str = Query("KES"),
    broker: EventBroker = Depends(get_broker),
):
    try:
        data = pretium_client.get_transaction_status(transaction_code, currency)
    except PretiumError as exc:
        raise _http_error(exc) from exc

    status = data.get("status")
    try:
        orders.reconcile(
            PRETIUM,
            transaction_code,
            status,
            source="status",
            details={
                "receipt_number": data.get("receipt_number"),
                "recipient_public_name": data.get("public_name"),
            },
            broker=broker,
        )
    except Exception:
        logger.exception("Failed to sync Pretium transaction %s", transaction_code)

    return {
        "success": True,
        "data": data,
        "normalizedStatus": normalize_status(PRETIUM, status),
        "isSettled": is_settled(PRETIUM, status),
        "isFailed": is_failed(PRETIUM, status),
    }


def _payment_target(body: PretiumDisburseRequest) -> Dict[str, Any]:
    """Pick the Pretium payment type and recipient fields for ``body``."""

    if body.currency == "NGN":
        if not (body.accountNumber and body.bankCode and body.bankName):
            raise HTTPException(status_code=400, detail="NGN requires: accountNumber, bankCode, bankName")
        account_number = re.sub(r"\D", "", body.accountNumber)
        if not 10 <= len(account_number) <= 11:
            raise HTTPException(status_code=400, detail="Invalid NGN account number (must be 10-11 digits)")
        return {
            "type": "BANK_TRANSFER",
            "account_number": account_number,
            "bank_code": body.bankCode,
            "bank_name": body.bankName,
        }
    if body.tillNumber and body.currency == "KES":
        return {
            "type": "BUY_GOODS",
            "shortcode": re.sub(r"\D", "", body.tillNumber),
            "mobile_network": "Safaricom",
        }
    if body.paybillNumber and body.paybillAccount and body.currency == "KES":
        return {
            "type": "PAYBILL",
            "shortcode": body.paybillNumber,
            "account_number": body.paybillAccount,
            "mobile_network": "Safaricom",
        }
    if body.phoneNumber:
        if body.currency == "KES":
            msisdn = pretium_client.format_phone(body.phoneNumber, "254")
            network = body.mobileNetwork or pretium_client.kenyan_network(msisdn)
        else:
            msisdn = pretium_client.format_phone(body.phoneNumber, "233")
            network = body.mobileNetwork or "MTN"
        return {"type": "MOBILE", "shortcode": msisdn, "mobile_network": network}
    raise HTTPException(
        status_code=400,
        detail="Must provide: phoneNumber, tillNumber, paybillNumber+account, or accountNumber+bankCode",
    )


@router.post("/disburse")
def disburse(body: PretiumDisburseRequest):
    target = _payment_target(body)
    amount_usdc = round(body.amount, 2)

    try:
        rate = to_float(pretium_client.get_exchange_rate(body.currency).get("buying_rate"))
    except PretiumError as exc:
        raise _http_error(exc) from exc
    if not rate:
        raise HTTPException(status_code=500, detail="Failed to fetch exchange rate")

    total, recipient_amount, fee = pretium_client.split_amount(amount_usdc, rate, config.PRETIUM_FEE_PERCENT)
    request = {
        "account_name": body.accountName,
        "chain": config.PRETIUM_CHAIN,
        "transaction_hash": body.transactionHash,
        "callback_url": config.PRETIUM_CALLBACK_URL,
        **target,
    }
    if target["type"] == "BANK_TRANSFER":
        # Bank transfers are sent without a fee component.
        request["amount"] = str(recipient_amount)
    else:
        request.update({"amount": str(total), "fee": str(fee)})

    logger.info(
        "Pretium %s payout: %s USDC -> %s %s (fee %s) for %s",
        target["type"],
        amount_usdc,
        recipient_amount,
        body.currency,
        fee,
        body.returnAddress,
    )
    try:
        data = pretium_client.disburse(request, body.currency)
    except PretiumError as exc:
        raise _http_error(exc) from exc

    transaction_code = data.get("transaction_code")
    if not transaction_code:
        logger.error("Pretium payout for %s returned no transaction_code: %s", body.transactionHash, data)
        raise HTTPException(status_code=500, detail="No transaction code received from Pretium")

    response = {
        "success": True,
        "transactionCode": transaction_code,
        "status": data.get("status"),
        "message": data.get("message"),
        "totalAmount": total,
        "recipientAmount": recipient_amount,
        "feeAmount": fee,
        "exchangeRate": rate,
    }
    try:
        orders.create_order(
            {
                "provider": PRETIUM,
                "provider_order_id": transaction_code,
                "provider_status": data.get("status") or "PENDING",
                "wallet_address": body.returnAddress,
                "transaction_hash": body.transactionHash,
                "fid": body.fid,
                "carrier": target["type"],
                "amount_in_usdc": amount_usdc,
                "amount_in_local": recipient_amount,
                "local_currency": body.currency,
                "rate": rate,
                "transaction_fee": fee,
                "recipient": {
                    "account_name": body.accountName,
                    "account_identifier": target.get("shortcode") or target.get("account_number"),
                    "account_number": target.get("account_number"),
                    "bank_code": target.get("bank_code"),
                    "mobile_network": target.get("mobile_network"),
                },
            }
        )
    except Exception:
        # The payout is already under way upstream.
        logger.exception("Pretium payout %s could not be saved", transaction_code)
        response["warning"] = "Payment initiated but tracking failed - contact support"
    return response


@router.post("/webhook")
async def pretium_webhook(request: Request, broker: EventBroker = Depends(get_broker)):
    raw_body = await request.body()
    try:
        payload = PretiumWebhookPayload.model_validate_json(raw_body or b"{}")
    except ValidationError as exc:
        logger.error("Malformed Pretium webhook payload: %s", exc)
        raise HTTPException(status_code=400, detail="Invalid webhook payload") from exc

    if not payload.transaction_code:
        logger.error("Pretium webhook without transaction_code")
        raise HTTPException(status_code=400, detail="Missing transaction_code")

    logger.info("Pretium webhook for %s (status %s)", payload.transaction_code, payload.status)

    try:
        await run_in_threadpool(
            orders.record_webhook_event,
            PRETIUM,
            payload.status or "unknown",
            payload.model_dump(),
            payload.transaction_code,
        )
        # Release notifications carry no status, only the on-chain release flag.
        if payload.status:
            await run_in_threadpool(
                orders.reconcile,
                PRETIUM,
                payload.transaction_code,
                payload.status,
                source="webhook",
                details={
                    "receipt_number": payload.receipt_number,
                    "recipient_public_name": payload.public_name,
                    "failure_reason": payload.message if is_failed(PRETIUM, payload.status) else None,
                },
                broker=broker,
            )
    except Exception:
        logger.exception("Pretium webhook for %s could not be processed", payload.transaction_code)

    return {"success": True, "received": True, "timestamp": now_iso()}
