"""자동화 이벤트 WebSocket 브로드캐스트"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def automation_events(websocket: WebSocket) -> None:
    """
    QueueManager 이벤트를 {"type", "data", "timestamp"} 형태로 중계한다.

    클라이언트가 {"type": "ping"}을 보내면 {"type": "pong"}으로 응답한다.
    """
    manager = websocket.app.state.queue_manager
    await websocket.accept()
    queue, unsubscribe = manager.bus.open_stream()

    async def relay() -> None:
        while True:
            event = await queue.get()
            await websocket.send_json(event.to_message())

    sender = asyncio.create_task(relay())
    try:
        while True:
            message = await websocket.receive_json()
            if isinstance(message, dict) and message.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        logger.info("WebSocket client disconnected")
    finally:
        unsubscribe()
        sender.cancel()
        try:
            await sender
        except asyncio.CancelledError:
            pass
