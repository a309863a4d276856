# backend/courier/routes/v1/ws.py
"""
Realtime websocket endpoint.

The handshake must carry the verified caller id in the X-User-Id header;
the socket may only join as that user.

One receive loop per socket: frames from one connection are handled in
arrival order, while different sockets run concurrently. Closing the socket
is the only cancellation signal and always unregisters the connection.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, WebSocket, status
from starlette.websockets import WebSocketState

from ...api.dependencies.auth import USER_ID_HEADER, get_websocket_user_id
from ...api.dependencies.realtime import get_fanout_router
from ...core.config import settings
from ...core.ulid_helper import generate_ulid
from ...services.messaging import events
from ...services.messaging.fanout import FanoutRouter

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


class WebSocketConnection:
    """Connection adapter over a Starlette websocket; writes are serialized."""

    def __init__(self, websocket: WebSocket, connection_id: str, verified_user_id: str):
        self.websocket = websocket
        self.connection_id = connection_id
        self.verified_user_id: Optional[str] = verified_user_id
        self._send_lock = asyncio.Lock()

    async def send_json(self, data: Dict[str, Any]) -> None:
        async with self._send_lock:
            if self.websocket.application_state != WebSocketState.CONNECTED:
                return
            await self.websocket.send_json(data)


@router.websocket("/ws")
async def realtime_socket(
    websocket: WebSocket,
    fanout: FanoutRouter = Depends(get_fanout_router),
    user_id: Optional[str] = Depends(get_websocket_user_id),
) -> None:
    if user_id is None:
        logger.info(f"[WS] Rejected handshake without a valid {USER_ID_HEADER} header")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    connection = WebSocketConnection(websocket, generate_ulid(), user_id)
    logger.info(
        f"[WS] Connection {connection.connection_id} opened for {user_id}",
        extra={"connection_id": connection.connection_id, "user_id": user_id},
    )

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break

            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            size = len(raw.encode("utf-8")) if isinstance(raw, str) else len(raw)
            if size > settings.ws_max_message_bytes:
                await connection.send_json(
                    events.build_error_event("Frame exceeds maximum size", "INVALID_EVENT")
                )
                continue

            await fanout.handle_frame(connection, raw)
    finally:
        await fanout.handle_disconnect(connection)
        logger.info(
            f"[WS] Connection {connection.connection_id} closed",
            extra={"connection_id": connection.connection_id},
        )
