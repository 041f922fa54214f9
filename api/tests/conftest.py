import os
from typing import Any, Dict, List, Optional

import pytest

# Ensure required environment variables are populated before importing the code under test.
os.environ.setdefault("SUPABASE_URL", "https://example.supabase.co")
os.environ.setdefault("SUPABASE_PUBLISHABLE_KEY", "public-anon-key")
os.environ.setdefault("PAYCREST_API_KEY", "paycrest-test-key")
os.environ.setdefault("PAYCREST_API_SECRET", "paycrest-test-secret")
os.environ.setdefault("TRANSAK_WEBHOOK_SECRET", "transak-test-secret")
os.environ.setdefault("PRETIUM_CONSUMER_KEY", "pretium-test-key")
os.environ.setdefault("DASHBOARD_JWT_SECRET", "dashboard-test-secret")
os.environ.setdefault("DASHBOARD_ADMIN_USERNAME", "admin")
os.environ.setdefault("DASHBOARD_ADMIN_PASSWORD", "correct-horse")

from minisend.core import config, database  # noqa: E402


class FakeTable:
    """In-memory stand-in for ``SupabaseTable``."""

    def __init__(self, name: str):
        self.name = name
        self.rows: List[Dict[str, Any]] = []
        self.fail_writes = False

    def _matches(self, row: Dict[str, Any], key: Dict[str, Any]) -> bool:
        return all(row.get(k) == v for k, v in key.items())

    def get_item(self, Key: dict):
        for row in self.rows:
            if self._matches(row, Key):
                return {"Item": dict(row)}
        return {"Item": None}

    def put_item(self, Item: dict):
        if self.fail_writes:
            raise RuntimeError(f"{self.name} unavailable")
        self.rows.append(dict(Item))
        return {"Item": dict(Item)}

    def update_item(self, Key: dict, Updates: Dict[str, Any]):
        updated = []
        for row in self.rows:
            if self._matches(row, Key):
                row.update(Updates)
                updated.append(dict(row))
        return {"Items": updated}

    def scan(
        self,
        Filters: Optional[Dict[str, Any]] = None,
        OrderBy: Optional[str] = None,
        Descending: bool = True,
        Limit: Optional[int] = None,
        Offset: int = 0,
    ):
        rows = [dict(row) for row in self.rows if self._matches(row, Filters or {})]
        if OrderBy:
            rows.sort(key=lambda row: row.get(OrderBy) or "", reverse=Descending)
        if Limit is not None:
            rows = rows[Offset:Offset + Limit]
        return {"Items": rows}


@pytest.fixture
def tables(monkeypatch):
    fakes = {
        "orders": FakeTable("orders"),
        "status_history": FakeTable("status_history"),
        "settlements": FakeTable("settlements"),
        "webhook_events": FakeTable("webhook_events"),
        "polling_attempts": FakeTable("polling_attempts"),
    }
    monkeypatch.setattr(database, "TBL_ORDERS", fakes["orders"])
    monkeypatch.setattr(database, "TBL_STATUS_HISTORY", fakes["status_history"])
    monkeypatch.setattr(database, "TBL_SETTLEMENTS", fakes["settlements"])
    monkeypatch.setattr(database, "TBL_WEBHOOK_EVENTS", fakes["webhook_events"])
    monkeypatch.setattr(database, "TBL_POLLING_ATTEMPTS", fakes["polling_attempts"])
    return fakes


@pytest.fixture(autouse=True)
def no_notifications(monkeypatch):
    monkeypatch.setattr(config, "NEYNAR_API_KEY", None)


@pytest.fixture
def make_order(tables):
    from minisend.core import orders

    def _make(provider="paycrest", provider_order_id="ord-1", provider_status="initiated", **extra):
        record = {
            "provider": provider,
            "provider_order_id": provider_order_id,
            "provider_status": provider_status,
            "wallet_address": "0xabc",
            "amount_in_usdc": 10.0,
            "amount_in_local": 1290.0,
            "local_currency": "KES",
            "rate": 129.0,
            **extra,
        }
        return orders.create_order(record)

    return _make


@pytest.fixture
def app(tables):
    from minisend.app import app as fastapi_app
    from minisend.core.broker import EventBroker

    fastapi_app.state.broker = EventBroker(queue_size=config.SSE_QUEUE_SIZE)
    return fastapi_app


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
