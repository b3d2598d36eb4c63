"""Realtime push channel for chat delivery and notifications.

Clients connect to `/ws?token=<access token>`; each connection is registered
under the user's id so handlers can push `new-message` and `notification`
events to a specific user.
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from database import get_db
from utils.security import user_id_from_payload, verify_token

logger = logging.getLogger(__name__)


class ConnectionManager:
    def __init__(self) -> None:
        self._connections: dict[str, set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def register(self, user_id: str, websocket: WebSocket) -> None:
        async with self._lock:
            self._connections.setdefault(user_id, set()).add(websocket)

    async def unregister(self, user_id: str, websocket: WebSocket) -> None:
        async with self._lock:
            sockets = self._connections.get(user_id)
            if sockets:
                sockets.discard(websocket)
                if not sockets:
                    del self._connections[user_id]

    def is_online(self, user_id) -> bool:
        return str(user_id) in self._connections

    async def send_to(self, user_id, event: str, payload: dict) -> int:
        """Push an event to every socket of a user; returns how many received it."""
        async with self._lock:
            sockets = list(self._connections.get(str(user_id), ()))
        delivered = 0
        for ws in sockets:
            try:
                await ws.send_json({"event": event, "data": payload})
                delivered += 1
            except (RuntimeError, WebSocketDisconnect):
                await self.unregister(str(user_id), ws)
        return delivered


manager = ConnectionManager()

router = APIRouter()


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, token: str = "", db=Depends(get_db)):
    payload = verify_token(token)
    user_id = user_id_from_payload(payload) if payload else None
    user = await db.users.find_one({"_id": user_id}) if user_id else None
    if not user:
        await websocket.close(code=4401)
        return

    uid = str(user["_id"])
    await websocket.accept()
    await manager.register(uid, websocket)
    logger.info("user %s connected", user["username"])
    try:
        while True:
            # Clients only keep the socket alive; nothing is read from them
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await manager.unregister(uid, websocket)
        logger.info("user %s disconnected", user["username"])
