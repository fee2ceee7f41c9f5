from __future__ import annotations

import asyncio
import threading

import pytest

from backend.services.broadcast_service import (
    LIVE_LOGS_EVENT,
    STUDENT_UPDATED_EVENT,
    LiveUpdateBroadcaster,
)


def test_queue_size_must_be_positive():
    with pytest.raises(ValueError):
        LiveUpdateBroadcaster(queue_size=0)


def test_emit_reaches_every_subscriber():
    async def scenario():
        broadcaster = LiveUpdateBroadcaster(queue_size=10)
        first = broadcaster.subscribe()
        second = broadcaster.subscribe()

        broadcaster.emit(STUDENT_UPDATED_EVENT, {"id": 1})

        received = await asyncio.gather(
            asyncio.wait_for(first.queue.get(), timeout=1),
            asyncio.wait_for(second.queue.get(), timeout=1),
        )
        return broadcaster, received

    broadcaster, received = asyncio.run(scenario())

    assert received == [
        {"event": STUDENT_UPDATED_EVENT, "data": {"id": 1}},
        {"event": STUDENT_UPDATED_EVENT, "data": {"id": 1}},
    ]
    assert broadcaster.subscriber_count == 2


def test_emit_from_worker_thread_is_delivered():
    async def scenario():
        broadcaster = LiveUpdateBroadcaster(queue_size=10)
        subscription = broadcaster.subscribe()
        worker = threading.Thread(
            target=broadcaster.emit,
            args=(LIVE_LOGS_EVENT, {"action": "Allocated"}),
        )
        worker.start()
        message = await asyncio.wait_for(subscription.queue.get(), timeout=1)
        worker.join()
        return message

    assert asyncio.run(scenario()) == {"event": LIVE_LOGS_EVENT, "data": {"action": "Allocated"}}


def test_slow_subscriber_drops_oldest_message():
    async def scenario():
        broadcaster = LiveUpdateBroadcaster(queue_size=2)
        subscription = broadcaster.subscribe()
        for index in range(3):
            broadcaster.emit(STUDENT_UPDATED_EVENT, {"id": index})
        await asyncio.sleep(0)
        messages = [subscription.queue.get_nowait() for _ in range(subscription.queue.qsize())]
        return subscription, messages

    subscription, messages = asyncio.run(scenario())

    assert [message["data"]["id"] for message in messages] == [1, 2]
    assert subscription.dropped_messages == 1


def test_unsubscribed_client_receives_nothing():
    async def scenario():
        broadcaster = LiveUpdateBroadcaster(queue_size=5)
        subscription = broadcaster.subscribe()
        broadcaster.unsubscribe(subscription)
        broadcaster.emit(STUDENT_UPDATED_EVENT, {"id": 1})
        await asyncio.sleep(0)
        return broadcaster, subscription

    broadcaster, subscription = asyncio.run(scenario())

    assert subscription.queue.empty()
    assert broadcaster.subscriber_count == 0


def test_subscribe_requires_running_loop():
    with pytest.raises(RuntimeError):
        LiveUpdateBroadcaster().subscribe()
