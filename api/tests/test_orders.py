import pytest

from minisend.core import orders
from minisend.core.broker import EventBroker
from minisend.core.status import COMPLETED, FAILED, PENDING, PROCESSING


def test_create_order_normalizes_status(tables, make_order):
    order = make_order(provider_status="payment_order.initiated")
    assert order["provider_status"] == "initiated"
    assert order["status"] == PENDING
    assert order["id"]
    assert order["created_at"] == order["updated_at"]
    assert tables["orders"].rows[0]["provider_order_id"] == "ord-1"


def test_create_order_requires_provider_identity(tables):
    with pytest.raises(ValueError):
        orders.create_order({"provider": "paycrest"})


def test_reconcile_unknown_order_is_ignored(tables):
    assert orders.reconcile("paycrest", "missing", "settled", source="webhook") is None
    assert tables["status_history"].rows == []


def test_reconcile_advances_and_records_history(tables, make_order):
    make_order()
    updated, transition = orders.reconcile(
        "paycrest", "ord-1", "payment_order.pending", source="webhook"
    )
    assert transition.accepted
    assert updated["status"] == PROCESSING
    assert updated["webhook_received_at"]
    stored = tables["orders"].rows[0]
    assert stored["provider_status"] == "pending"
    assert stored["status"] == PROCESSING
    history = tables["status_history"].rows
    assert len(history) == 1
    assert history[0]["old_status"] == PENDING
    assert history[0]["new_status"] == PROCESSING
    assert history[0]["source"] == "webhook"


def test_settlement_written_once_with_stage_timestamps(tables, make_order):
    make_order()
    orders.reconcile("paycrest", "ord-1", "validated", source="poll", details={"amount_paid": "10"})
    orders.reconcile("paycrest", "ord-1", "settled", source="webhook")

    stored = tables["orders"].rows[0]
    assert stored["status"] == COMPLETED
    assert stored["validated_at"]
    assert stored["settled_at"]
    assert stored["completed_at"]
    assert len(tables["settlements"].rows) == 1
    assert tables["settlements"].rows[0]["settlement_amount"] == 10.0


def test_duplicate_webhook_is_idempotent(tables, make_order):
    make_order()
    orders.reconcile("paycrest", "ord-1", "settled", source="webhook")
    _, transition = orders.reconcile("paycrest", "ord-1", "settled", source="webhook")
    assert not transition.accepted
    assert transition.reason == "terminal"
    assert len(tables["status_history"].rows) == 1
    assert len(tables["settlements"].rows) == 1


def test_out_of_order_events_never_move_backwards(tables, make_order):
    make_order()
    for incoming in ("validated", "pending", "initiated", "settled", "refunded", "processing"):
        orders.reconcile("paycrest", "ord-1", incoming, source="webhook")
    stored = tables["orders"].rows[0]
    assert stored["provider_status"] == "settled"
    assert stored["status"] == COMPLETED
    assert [row["provider_status"] for row in tables["status_history"].rows] == ["validated", "settled"]


def test_rejected_event_still_backfills_missing_details(tables, make_order):
    make_order()
    orders.reconcile("paycrest", "ord-1", "settled", source="webhook")
    _, transition = orders.reconcile(
        "paycrest", "ord-1", "settled", source="poll", details={"transaction_hash": "0xfeed"}
    )
    assert not transition.accepted
    assert tables["orders"].rows[0]["transaction_hash"] == "0xfeed"


def test_backfill_does_not_overwrite_existing_details(tables, make_order):
    make_order(transaction_hash="0xfirst")
    orders.reconcile("paycrest", "ord-1", "pending", source="poll", details={"transaction_hash": "0xsecond"})
    assert tables["orders"].rows[0]["transaction_hash"] == "0xfirst"


def test_supporting_table_failures_do_not_block_updates(tables, make_order):
    make_order()
    tables["status_history"].fail_writes = True
    tables["settlements"].fail_writes = True
    updated, transition = orders.reconcile("paycrest", "ord-1", "settled", source="webhook")
    assert transition.accepted
    assert tables["orders"].rows[0]["status"] == COMPLETED


def test_reconcile_broadcasts_update_and_outcome(tables, make_order):
    make_order()
    broker = EventBroker()
    subscription = broker.register("dash")

    orders.reconcile("paycrest", "ord-1", "validated", source="webhook", broker=broker)
    orders.reconcile("paycrest", "ord-1", "refunded", source="webhook", broker=broker)
    orders.reconcile("paycrest", "ord-1", "settled", source="webhook", broker=broker)

    events = []
    while not subscription.queue.empty():
        events.append(subscription.queue.get_nowait().split("\n", 1)[0])
    assert events == [
        "event: payment_update",
        "event: payment_validated",
        "event: payment_update",
        "event: payment_failed",
    ]


def test_notification_sent_only_on_outcome_change(tables, make_order, monkeypatch):
    make_order(fid=1234)
    sent = []
    monkeypatch.setattr(orders, "notify_order_status", lambda order, status: sent.append(status))

    orders.reconcile("paycrest", "ord-1", "pending", source="webhook")
    orders.reconcile("paycrest", "ord-1", "validated", source="webhook")
    orders.reconcile("paycrest", "ord-1", "settled", source="webhook")

    assert sent == [COMPLETED]


def test_failure_notification(tables, make_order, monkeypatch):
    make_order(provider="pretium", provider_order_id="TX-1", provider_status="PENDING", fid=99)
    sent = []
    monkeypatch.setattr(orders, "notify_order_status", lambda order, status: sent.append(status))
    orders.reconcile("pretium", "TX-1", "FAILED", source="webhook", details={"failure_reason": "Invalid number"})
    assert sent == [FAILED]
    assert tables["orders"].rows[0]["failure_reason"] == "Invalid number"


def test_list_orders_by_wallet_is_newest_first(tables, make_order):
    first = make_order(provider_order_id="a")
    second = make_order(provider_order_id="b")
    tables["orders"].rows[0]["created_at"] = "2025-01-01T00:00:00+00:00"
    tables["orders"].rows[1]["created_at"] = "2025-02-01T00:00:00+00:00"
    rows = orders.list_orders_by_wallet("0xabc", limit=10)
    assert [row["id"] for row in rows] == [second["id"], first["id"]]
    assert orders.list_orders_by_wallet("0xother") == []


def test_serialize_order_falls_back_to_provider_status(tables):
    row = {
        "id": "1",
        "provider": "transak",
        "provider_order_id": "T-1",
        "provider_status": "ORDER_COMPLETED",
        "status": "weird",
        "amount_in_usdc": "5.5",
        "recipient": {"account_name": "Jane"},
    }
    data = orders.serialize_order(row)
    assert data["normalizedStatus"] == COMPLETED
    assert data["amountInUsdc"] == 5.5
    assert data["accountName"] == "Jane"


def test_wallet_lookup_ignores_address_case(tables, make_order):
    make_order(provider_order_id="a", wallet_address="0xAbCdEf")
    assert tables["orders"].rows[0]["wallet_address"] == "0xabcdef"
    assert len(orders.list_orders_by_wallet("0xabcdef")) == 1
    assert len(orders.list_orders_by_wallet("0xABCDEF")) == 1


def test_status_write_does_not_overwrite_concurrent_advance(tables, make_order, monkeypatch):
    make_order(provider_order_id="ord-1", provider_status="initiated")
    table = tables["orders"]
    original_update = table.update_item
    calls = []

    def racing_update(Key, Updates):
        # Another worker settles the order between our read and our write.
        if not calls:
            table.rows[0].update({"provider_status": "settled", "status": COMPLETED})
        calls.append(Key)
        return original_update(Key=Key, Updates=Updates)

    monkeypatch.setattr(table, "update_item", racing_update)

    _, transition = orders.reconcile("paycrest", "ord-1", "validated", source="poll")

    assert transition.accepted is False
    assert calls[0]["provider_status"] == "initiated"
    assert table.rows[0]["provider_status"] == "settled"
    assert table.rows[0]["status"] == COMPLETED
    assert tables["status_history"].rows == []


def test_status_write_retries_against_fresh_row(tables, make_order, monkeypatch):
    make_order(provider_order_id="ord-1", provider_status="initiated")
    table = tables["orders"]
    original_update = table.update_item
    calls = []

    def racing_update(Key, Updates):
        if not calls:
            table.rows[0].update({"provider_status": "pending", "status": PENDING})
        calls.append(Key)
        return original_update(Key=Key, Updates=Updates)

    monkeypatch.setattr(table, "update_item", racing_update)

    _, transition = orders.reconcile("paycrest", "ord-1", "settled", source="poll")

    assert transition.accepted is True
    assert transition.previous == "pending"
    assert [call["provider_status"] for call in calls] == ["initiated", "pending"]
    assert table.rows[0]["provider_status"] == "settled"


def test_status_write_gives_up_after_repeated_conflicts(tables, make_order, monkeypatch):
    make_order(provider_order_id="ord-1", provider_status="initiated")
    table = tables["orders"]
    monkeypatch.setattr(table, "update_item", lambda Key, Updates: {"Items": []})

    updated, transition = orders.reconcile("paycrest", "ord-1", "settled", source="poll")

    assert transition.accepted is False
    assert transition.reason == "conflict"
    assert updated["provider_status"] == "initiated"
    assert tables["status_history"].rows == []
