import asyncio
import json
import threading

from minisend.core.broker import KEEPALIVE_FRAME, EventBroker, format_sse


def _payload(frame):
    data_line = [line for line in frame.splitlines() if line.startswith("data: ")][0]
    return json.loads(data_line[len("data: "):])


def test_format_sse_with_event_name():
    frame = format_sse({"a": 1}, event="payment_update")
    assert frame == 'event: payment_update\ndata: {"a": 1}\n\n'


def test_register_and_unregister_track_connections():
    broker = EventBroker()
    first = broker.register("one")
    broker.register()
    assert broker.connection_count == 2
    broker.unregister(first.client_id)
    broker.unregister("missing")
    assert broker.connection_count == 1


def test_broadcast_reaches_every_subscriber():
    broker = EventBroker()
    subscribers = [broker.register(f"c{i}") for i in range(3)]

    delivered = broker.broadcast("payment_update", {"orderId": "ord-1", "status": "settled"})

    assert delivered == 3
    for subscription in subscribers:
        payload = _payload(subscription.queue.get_nowait())
        assert payload["type"] == "payment_update"
        assert payload["orderId"] == "ord-1"
        assert "timestamp" in payload


def test_broadcast_without_subscribers_is_noop():
    assert EventBroker().broadcast("payment_update", {}) == 0


def test_full_queue_drops_subscriber():
    broker = EventBroker(queue_size=1)
    slow = broker.register("slow")
    broker.broadcast("payment_update", {"n": 1})
    delivered = broker.broadcast("payment_update", {"n": 2})
    assert delivered == 0
    assert broker.connection_count == 0
    assert slow.queue.qsize() == 1


def test_stream_yields_connection_event_then_updates():
    async def scenario():
        broker = EventBroker()
        subscription = broker.register("client-1")
        disconnected = False

        async def is_disconnected():
            return disconnected

        stream = broker.stream(subscription, is_disconnected, keepalive=5)
        hello = _payload(await stream.__anext__())
        broker.broadcast("payment_settled", {"orderId": "ord-9"})
        update = await stream.__anext__()
        disconnected = True
        await stream.aclose()
        return hello, update, broker.connection_count

    hello, update, remaining = asyncio.run(scenario())
    assert hello["type"] == "connection"
    assert hello["clientId"] == "client-1"
    assert update.startswith("event: payment_settled\n")
    assert _payload(update)["orderId"] == "ord-9"
    assert remaining == 0


def test_stream_sends_keepalive_when_idle():
    async def scenario():
        broker = EventBroker()
        subscription = broker.register()

        async def is_disconnected():
            return False

        stream = broker.stream(subscription, is_disconnected, keepalive=0.01)
        await stream.__anext__()
        frame = await stream.__anext__()
        await stream.aclose()
        return frame

    assert asyncio.run(scenario()) == KEEPALIVE_FRAME


def test_stream_stops_when_client_disconnects():
    async def scenario():
        broker = EventBroker()
        subscription = broker.register()

        async def is_disconnected():
            return True

        frames = [frame async for frame in broker.stream(subscription, is_disconnected)]
        return frames, broker.connection_count

    frames, remaining = asyncio.run(scenario())
    assert len(frames) == 1
    assert remaining == 0


def test_broadcast_from_worker_thread_is_delivered_on_loop():
    async def scenario():
        broker = EventBroker()
        subscription = broker.register()
        worker = threading.Thread(target=broker.broadcast, args=("payment_update", {"orderId": "t-1"}))
        worker.start()
        worker.join()
        return await asyncio.wait_for(subscription.queue.get(), timeout=1)

    assert _payload(asyncio.run(scenario()))["orderId"] == "t-1"


def test_reconnect_with_same_client_id_keeps_new_connection():
    async def scenario():
        broker = EventBroker()

        async def is_disconnected():
            return False

        old = broker.register("tab-1")
        old_stream = broker.stream(old, is_disconnected, keepalive=5)
        await old_stream.__anext__()

        new = broker.register("tab-1")
        await old_stream.aclose()

        delivered = broker.broadcast("payment_update", {"orderId": "ord-1"})
        return delivered, broker.connection_count, new.queue.qsize(), old.queue.qsize()

    delivered, count, new_size, old_size = asyncio.run(scenario())
    assert delivered == 1
    assert count == 1
    assert new_size == 1
    assert old_size == 0


def test_unregister_with_stale_subscription_is_ignored():
    broker = EventBroker()
    old = broker.register("tab-1")
    broker.register("tab-1")
    broker.unregister("tab-1", old)
    assert broker.connection_count == 1
