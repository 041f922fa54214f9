import os
from functools import lru_cache
from typing import Any, Dict, List, Optional

from supabase import create_client, Client
from .config import SUPABASE_URL, SUPABASE_KEY

PAGE_SIZE = 1000


@lru_cache(maxsize=1)
def get_supabase() -> Client:
    return create_client(SUPABASE_URL, SUPABASE_KEY)


class SupabaseTable:
    def __init__(self, name: str, client: Optional[Client] = None):
        self.name = name
        self._client = client

    @property
    def client(self) -> Client:
        return self._client or get_supabase()

    def get_item(self, Key: dict):
        q = self.client.table(self.name).select("*")
        for k, v in Key.items():
            q = q.eq(k, v)
        resp = q.limit(1).execute()
        rows = resp.data or []
        return {"Item": rows[0] if rows else None}

    def put_item(self, Item: dict):
        resp = self.client.table(self.name).insert(Item).execute()
        rows = resp.data or []
        return {"Item": rows[0] if rows else Item}

    def update_item(self, Key: dict, Updates: Dict[str, Any]):
        q = self.client.table(self.name).update(Updates)
        for k, v in Key.items():
            q = q.is_(k, "null") if v is None else q.eq(k, v)
        resp = q.execute()
        return {"Items": resp.data or []}

    def _select(self, Filters: Optional[Dict[str, Any]], OrderBy: Optional[str], Descending: bool):
        q = self.client.table(self.name).select("*")
        for k, v in (Filters or {}).items():
            q = q.eq(k, v)
        if OrderBy:
            q = q.order(OrderBy, desc=Descending)
        return q

    def scan(
        self,
        Filters: Optional[Dict[str, Any]] = None,
        OrderBy: Optional[str] = None,
        Descending: bool = True,
        Limit: Optional[int] = None,
        Offset: int = 0,
    ):
        if Limit is not None:
            q = self._select(Filters, OrderBy, Descending).range(Offset, Offset + Limit - 1)
            return {"Items": q.execute().data or []}

        # PostgREST caps each response (1000 rows by default).
        items: List[Dict[str, Any]] = []
        start = Offset
        while True:
            q = self._select(Filters, OrderBy, Descending).range(start, start + PAGE_SIZE - 1)
            page = q.execute().data or []
            if not page:
                break
            items.extend(page)
            start += len(page)
        return {"Items": items}


TBL_ORDERS = SupabaseTable(os.getenv("ORDERS_TABLE", "orders"))
TBL_STATUS_HISTORY = SupabaseTable(os.getenv("STATUS_HISTORY_TABLE", "status_history"))
TBL_SETTLEMENTS = SupabaseTable(os.getenv("SETTLEMENTS_TABLE", "settlements"))
TBL_WEBHOOK_EVENTS = SupabaseTable(os.getenv("WEBHOOK_EVENTS_TABLE", "webhook_events"))
TBL_POLLING_ATTEMPTS = SupabaseTable(os.getenv("POLLING_ATTEMPTS_TABLE", "polling_attempts"))
