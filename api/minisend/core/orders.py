"""Order persistence and status reconciliation."""
from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from typing import Any, Dict, List, Mapping, Optional, Tuple

from . import database
from .broker import EventBroker
from .notifications import notify_order_status
from .status import (
    COMPLETED,
    FAILED,
    NORMALIZED_STATUSES,
    PENDING,
    StatusTransition,
    canonical_status,
    is_terminal,
    merge_status,
    normalize_status,
)
from .utils import now_iso, to_float

logger = logging.getLogger(__name__)

# Conditional status writes retried after a concurrent update.
STATUS_WRITE_ATTEMPTS = 3

# Fields a provider event may carry alongside its status.
DETAIL_FIELDS = (
    "transaction_hash",
    "provider_id",
    "receipt_number",
    "failure_reason",
    "amount_paid",
    "recipient_public_name",
)


def _safe_put(table: database.SupabaseTable, item: Dict[str, Any]) -> None:
    try:
        table.put_item(Item=item)
    except Exception as exc:  # supporting tables never block order updates
        logger.warning("Failed to write %s row: %s", table.name, exc)


def create_order(record: Mapping[str, Any]) -> Dict[str, Any]:
    provider = record.get("provider")
    provider_order_id = record.get("provider_order_id")
    if not provider or not provider_order_id:
        raise ValueError("provider and provider_order_id are required")

    timestamp = now_iso()
    provider_status = canonical_status(provider, record.get("provider_status"))
    item = {
        "id": str(uuid.uuid4()),
        **dict(record),
        "provider_status": provider_status,
        "status": normalize_status(provider, provider_status) if provider_status else PENDING,
        "created_at": timestamp,
        "updated_at": timestamp,
    }
    # Addresses are matched case-insensitively; checksummed input is stored lowercase.
    if item.get("wallet_address"):
        item["wallet_address"] = str(item["wallet_address"]).lower()
    saved = database.TBL_ORDERS.put_item(Item=item).get("Item") or item
    logger.info(
        "Order created: %s %s wallet=%s amount=%s",
        provider,
        provider_order_id,
        item.get("wallet_address"),
        item.get("amount_in_usdc"),
    )
    return saved


def get_order(provider: str, provider_order_id: str) -> Optional[Dict[str, Any]]:
    return database.TBL_ORDERS.get_item(
        Key={"provider": provider, "provider_order_id": provider_order_id}
    ).get("Item")


def get_order_by_tx_hash(tx_hash: str) -> Optional[Dict[str, Any]]:
    return database.TBL_ORDERS.get_item(Key={"transaction_hash": tx_hash}).get("Item")


def list_orders_by_wallet(wallet_address: str, limit: int = 10, offset: int = 0) -> List[Dict[str, Any]]:
    resp = database.TBL_ORDERS.scan(
        Filters={"wallet_address": wallet_address.lower()},
        OrderBy="created_at",
        Limit=limit,
        Offset=offset,
    )
    return resp.get("Items", [])


def list_orders(provider: Optional[str] = None) -> List[Dict[str, Any]]:
    filters = {"provider": provider} if provider else None
    return database.TBL_ORDERS.scan(Filters=filters, OrderBy="created_at").get("Items", [])


def record_webhook_event(provider: str, event: str, payload: Any, order_id: Optional[str] = None) -> None:
    _safe_put(
        database.TBL_WEBHOOK_EVENTS,
        {
            "provider": provider,
            "event": event,
            "order_id": order_id,
            "payload": payload,
            "received_at": now_iso(),
        },
    )


def record_polling_attempt(
    order: Mapping[str, Any],
    attempt: int,
    status: Optional[str],
    response_time_ms: int,
    error: Optional[str] = None,
) -> None:
    _safe_put(
        database.TBL_POLLING_ATTEMPTS,
        {
            "order_id": order.get("id"),
            "attempt_number": attempt,
            "status": status,
            "response_time_ms": response_time_ms,
            "error_message": error,
            "created_at": now_iso(),
        },
    )


def _stage_timestamps(order: Mapping[str, Any], transition: StatusTransition, timestamp: str) -> Dict[str, str]:
    stamps: Dict[str, str] = {}
    if transition.status == "validated" and not order.get("validated_at"):
        stamps["validated_at"] = timestamp
    if transition.status == "settled" and not order.get("settled_at"):
        stamps["settled_at"] = timestamp
    if transition.normalized == COMPLETED and not order.get("completed_at"):
        stamps["completed_at"] = timestamp
    return stamps


def _missing_details(order: Mapping[str, Any], details: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        key: value
        for key, value in details.items()
        if key in DETAIL_FIELDS and value not in (None, "") and not order.get(key)
    }


def _conflict(provider: str, order: Mapping[str, Any], transition: StatusTransition) -> StatusTransition:
    return replace(
        transition,
        accepted=False,
        status=order.get("provider_status"),
        normalized=normalize_status(provider, order.get("provider_status")),
        reason="conflict",
    )


def apply_status(
    order: Dict[str, Any],
    incoming_status: Optional[str],
    *,
    source: str,
    details: Optional[Mapping[str, Any]] = None,
) -> Tuple[Dict[str, Any], StatusTransition]:
    """Merge ``incoming_status`` into ``order`` and persist what changed.

    Rejected transitions still back-fill empty detail fields so that a
    transaction hash or receipt carried by a duplicate event is not lost.
    """

    provider = order["provider"]
    details = details or {}

    for _ in range(STATUS_WRITE_ATTEMPTS):
        transition = merge_status(provider, order.get("provider_status"), incoming_status)
        timestamp = now_iso()

        updates = _missing_details(order, details)
        if source == "webhook":
            updates["webhook_received_at"] = timestamp
        if transition.accepted:
            updates.update(
                {
                    "provider_status": transition.status,
                    "status": transition.normalized,
                    **_stage_timestamps(order, transition, timestamp),
                }
            )

        if not updates:
            break

        updates["updated_at"] = timestamp
        key = {"id": order["id"]}
        if transition.accepted:
            # Only write over the status this merge was computed against.
            key["provider_status"] = order.get("provider_status")
        written = database.TBL_ORDERS.update_item(Key=key, Updates=updates).get("Items")
        if written or not transition.accepted:
            break

        logger.info(
            "Order %s/%s changed while applying %r; re-reading",
            provider,
            order.get("provider_order_id"),
            incoming_status,
        )
        fresh = database.TBL_ORDERS.get_item(Key={"id": order["id"]}).get("Item")
        if not fresh:
            transition, updates = _conflict(provider, order, transition), {}
            break
        order = fresh
    else:
        transition, updates = _conflict(provider, order, transition), {}

    if transition.accepted:
        logger.info(
            "Order %s/%s: %s -> %s (%s) via %s",
            provider,
            order.get("provider_order_id"),
            transition.previous,
            transition.status,
            transition.normalized,
            source,
        )
    else:
        logger.info(
            "Order %s/%s: ignored %r via %s (%s)",
            provider,
            order.get("provider_order_id"),
            incoming_status,
            source,
            transition.reason,
        )

    if not updates:
        return order, transition

    updated = {**order, **updates}

    if transition.accepted:
        _safe_put(
            database.TBL_STATUS_HISTORY,
            {
                "order_id": order["id"],
                "provider_order_id": order.get("provider_order_id"),
                "old_status": order.get("status"),
                "new_status": transition.normalized,
                "provider_status": transition.status,
                "source": source,
                "changed_at": timestamp,
            },
        )
        if transition.normalized == COMPLETED and order.get("status") != COMPLETED:
            _safe_put(
                database.TBL_SETTLEMENTS,
                {
                    "order_id": order["id"],
                    "provider_settlement_id": order.get("provider_order_id"),
                    "settlement_amount": to_float(details.get("amount_paid") or order.get("amount_in_local")),
                    "settlement_currency": order.get("local_currency"),
                    "settlement_method": "M-PESA" if order.get("carrier") == "MPESA" else "Mobile Money",
                    "settled_at": timestamp,
                },
            )
    return updated, transition


def _broadcast(broker: EventBroker, order: Mapping[str, Any], transition: StatusTransition) -> None:
    payload = {
        "orderId": order.get("provider_order_id"),
        "provider": order.get("provider"),
        "status": transition.status,
        "normalizedStatus": transition.normalized,
        "data": {
            "txHash": order.get("transaction_hash"),
            "receiptNumber": order.get("receipt_number"),
        },
    }
    broker.broadcast("payment_update", payload)
    if transition.normalized == COMPLETED:
        terminal = is_terminal(order["provider"], transition.status)
        broker.broadcast("payment_settled" if terminal else "payment_validated", payload)
    elif transition.normalized == FAILED:
        broker.broadcast("payment_failed", payload)


def reconcile(
    provider: str,
    provider_order_id: str,
    incoming_status: Optional[str],
    *,
    source: str,
    details: Optional[Mapping[str, Any]] = None,
    broker: Optional[EventBroker] = None,
) -> Optional[Tuple[Dict[str, Any], StatusTransition]]:
    """Apply one provider signal to the matching order.

    Returns ``None`` for orders this service does not know about.
    """

    order = get_order(provider, provider_order_id)
    if not order:
        logger.info("No %s order %s in database; signal ignored", provider, provider_order_id)
        return None

    updated, transition = apply_status(order, incoming_status, source=source, details=details)
    if transition.accepted:
        if broker is not None:
            try:
                _broadcast(broker, updated, transition)
            except Exception as exc:  # pragma: no cover
                logger.warning("Broadcast failed for %s: %s", provider_order_id, exc)
        previous = normalize_status(provider, transition.previous)
        if transition.normalized in (COMPLETED, FAILED) and previous != transition.normalized:
            notify_order_status(updated, transition.normalized)
    return updated, transition


def serialize_order(order: Mapping[str, Any]) -> Dict[str, Any]:
    """Flatten an order row into the camelCase shape used by API clients."""

    recipient = order.get("recipient") or {}
    provider = order.get("provider") or ""
    status = order.get("status")
    if status not in NORMALIZED_STATUSES:
        status = normalize_status(provider, order.get("provider_status"))
    return {
        "id": str(order.get("id") or ""),
        "provider": provider,
        "orderId": str(order.get("provider_order_id") or ""),
        "walletAddress": order.get("wallet_address"),
        "transactionHash": order.get("transaction_hash"),
        "status": order.get("provider_status"),
        "normalizedStatus": status,
        "amountInUsdc": to_float(order.get("amount_in_usdc")),
        "amountInLocal": to_float(order.get("amount_in_local")),
        "localCurrency": order.get("local_currency"),
        "exchangeRate": to_float(order.get("rate")) or None,
        "senderFee": to_float(order.get("sender_fee")),
        "accountName": recipient.get("account_name") or order.get("recipient_public_name"),
        "receiptNumber": order.get("receipt_number"),
        "createdAt": order.get("created_at"),
        "completedAt": order.get("completed_at"),
    }
