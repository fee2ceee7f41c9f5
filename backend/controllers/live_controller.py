"""WebSocket endpoint streaming live allocation events."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from backend.services.broadcast_service import LiveUpdateBroadcaster, Subscription
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["live"])


async def _drain_client(websocket: WebSocket) -> None:
    """Consume client frames until it disconnects; inbound content is ignored."""
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return


async def _forward_events(websocket: WebSocket, subscription: Subscription) -> None:
    while True:
        message = await subscription.queue.get()
        await websocket.send_json(message)


@router.websocket("/ws/live")
async def live_updates(websocket: WebSocket) -> None:
    """Push ``liveLogs`` and ``studentUpdated`` events to the connected client."""
    broadcaster: LiveUpdateBroadcaster | None = getattr(websocket.app.state, "broadcaster", None)
    if broadcaster is None:
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    # Subscribe first so no event committed after the handshake is missed.
    subscription = broadcaster.subscribe()
    try:
        await websocket.accept()
        receiver = asyncio.create_task(_drain_client(websocket))
        sender = asyncio.create_task(_forward_events(websocket, subscription))
        done, pending = await asyncio.wait(
            {receiver, sender},
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                logger.warning("Live update stream closed with error: %s", error)
    finally:
        broadcaster.unsubscribe(subscription)
        if subscription.dropped_messages:
            logger.info(
                "Subscriber %s dropped %s message(s) while lagging",
                subscription.subscription_id,
                subscription.dropped_messages,
            )
