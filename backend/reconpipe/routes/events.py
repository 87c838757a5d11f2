"""
Live progress stream.

Each connected client receives every Event Bus event as a JSON object
({step, message, timestamp, ...}). Events are published from worker
threads and handed to the client's event loop thread-safely.
"""

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from reconpipe.events.models import ProgressEvent

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])


async def _send_events(websocket: WebSocket, queue: asyncio.Queue) -> None:
    while True:
        payload = await queue.get()
        try:
            await websocket.send_json(payload)
        except (WebSocketDisconnect, RuntimeError):
            return


@router.websocket("/ws/events")
async def event_stream(websocket: WebSocket):
    bus = websocket.app.state.orchestrator.bus
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def forward(event: ProgressEvent) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, event.to_dict())

    unsubscribe = bus.subscribe(forward)
    await websocket.accept()
    logger.info("Event stream client connected")

    sender = asyncio.create_task(_send_events(websocket, queue))
    try:
        # Clients never send; receiving only serves to notice the disconnect
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("Event stream client disconnected")
    finally:
        sender.cancel()
        unsubscribe()
