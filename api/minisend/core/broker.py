"""In-memory broker for Server-Sent Event subscribers."""
from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from fastapi import Request

from .utils import now_iso

logger = logging.getLogger(__name__)


def format_sse(data: Dict[str, Any], event: Optional[str] = None) -> str:
    lines = []
    if event:
        lines.append(f"event: {event}")
    lines.append(f"data: {json.dumps(data, default=str)}")
    return "\n".join(lines) + "\n\n"


KEEPALIVE_FRAME = ": keep-alive\n\n"


@dataclass
class Subscription:
    client_id: str
    queue: asyncio.Queue
    loop: Optional[asyncio.AbstractEventLoop] = field(default=None, repr=False)


class EventBroker:
    """Fan-out of payment updates to connected SSE clients.

    Delivery is best-effort: a subscriber whose queue is full is dropped, and
    clients are expected to poll as well.
    """

    def __init__(self, queue_size: int = 100) -> None:
        self.queue_size = queue_size
        self._subscriptions: Dict[str, Subscription] = {}

    @property
    def connection_count(self) -> int:
        return len(self._subscriptions)

    def register(self, client_id: Optional[str] = None) -> Subscription:
        client_id = client_id or uuid.uuid4().hex[:8]
        try:
            loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        subscription = Subscription(client_id, asyncio.Queue(maxsize=self.queue_size), loop)
        if client_id in self._subscriptions:
            logger.info("SSE client %s reconnected; replacing previous connection", client_id)
        self._subscriptions[client_id] = subscription
        logger.info("Added SSE connection %s (total %d)", client_id, self.connection_count)
        return subscription

    def unregister(self, client_id: str, subscription: Optional[Subscription] = None) -> None:
        """Remove ``client_id``; with ``subscription``, only if it is still the registered one."""

        current = self._subscriptions.get(client_id)
        if current is None or (subscription is not None and current is not subscription):
            return
        del self._subscriptions[client_id]
        logger.info("Removed SSE connection %s (total %d)", client_id, self.connection_count)

    def broadcast(self, event: str, data: Dict[str, Any]) -> int:
        """Queue ``event`` for every subscriber and return how many received it."""

        frame = format_sse({"type": event, "timestamp": now_iso(), **data}, event=event)
        try:
            current_loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            current_loop = None

        delivered = 0
        dropped: List[Subscription] = []
        for subscription in list(self._subscriptions.values()):
            loop = subscription.loop
            if loop is not None and loop is not current_loop and not loop.is_closed():
                loop.call_soon_threadsafe(self._offer, subscription, frame)
                delivered += 1
                continue
            if self._offer(subscription, frame):
                delivered += 1
            else:
                dropped.append(subscription)

        for subscription in dropped:
            self.unregister(subscription.client_id, subscription)
        if dropped:
            logger.info("Cleaned up %d stalled SSE clients", len(dropped))
        logger.debug("Broadcast %s to %d clients", event, delivered)
        return delivered

    def _offer(self, subscription: Subscription, frame: str) -> bool:
        try:
            subscription.queue.put_nowait(frame)
        except asyncio.QueueFull:
            logger.warning("SSE client %s is not draining; dropping it", subscription.client_id)
            if self._subscriptions.get(subscription.client_id) is subscription:
                del self._subscriptions[subscription.client_id]
            return False
        return True

    async def stream(
        self,
        subscription: Subscription,
        is_disconnected: Callable[[], Awaitable[bool]],
        keepalive: float = 30.0,
    ) -> AsyncIterator[str]:
        """Yield SSE frames for ``subscription`` until the client goes away."""

        try:
            yield format_sse(
                {
                    "type": "connection",
                    "message": "Connected to payment status stream",
                    "timestamp": now_iso(),
                    "clientId": subscription.client_id,
                }
            )
            while self._subscriptions.get(subscription.client_id) is subscription:
                if await is_disconnected():
                    break
                try:
                    frame = await asyncio.wait_for(subscription.queue.get(), timeout=keepalive)
                except asyncio.TimeoutError:
                    yield KEEPALIVE_FRAME
                    continue
                yield frame
        finally:
            self.unregister(subscription.client_id, subscription)


def get_broker(request: Request) -> EventBroker:
    """FastAPI dependency returning the process-wide broker held on app state."""

    return request.app.state.broker
