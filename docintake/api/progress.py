"""WebSocket endpoint streaming upload progress."""

import asyncio

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from docintake.api.deps import get_ws_context
from docintake.core.logging import get_logger
from docintake.core.progress import Subscription

logger = get_logger(__name__)

router = APIRouter()


async def _forward(websocket: WebSocket, subscription: Subscription) -> None:
    async for event in subscription:
        await websocket.send_json(event.model_dump(mode="json"))


async def _drain(websocket: WebSocket, key: str) -> None:
    """Discard client frames until the client disconnects."""
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug(f"Progress socket for {key} disconnected")


@router.websocket("/ws/progress")
async def progress_socket(
    websocket: WebSocket,
    key: str = Query(..., min_length=1, description="Customer or intake id to follow"),
):
    """
    Push upload progress events for ``key`` as JSON text frames.

    Connect with: ws://host/v1/ws/progress?key=<customer-or-intake-id>

    Events published before the connection are not replayed. Incoming
    frames are ignored; closing the socket unsubscribes. If the server
    drops the listener (it fell too far behind), the socket is closed with
    code 1013 so the client can reconnect.
    """
    ctx = get_ws_context(websocket)

    with ctx.broadcaster.subscribe(key) as subscription:
        await websocket.accept()
        sender = asyncio.create_task(_forward(websocket, subscription))
        receiver = asyncio.create_task(_drain(websocket, key))
        try:
            done, _ = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            sender.cancel()
            receiver.cancel()

        if receiver in done:
            if receiver.exception() is not None:
                logger.error(f"Progress socket error for {key}: {receiver.exception()}")
            return

        if sender.exception() is not None:
            logger.error(f"Progress socket send failed for {key}: {sender.exception()}")
        logger.info(f"Progress listener for {key} stopped; closing socket")
        try:
            await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER)
        except (RuntimeError, WebSocketDisconnect) as e:
            logger.debug(f"Progress socket for {key} already closed: {e}")
