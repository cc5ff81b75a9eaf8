"""
WebSocket connection registry for real-time notification delivery.

Tracks each user's open sockets so a stored notification can be pushed to
every device the user has connected.
"""

import asyncio
import json
import logging
from typing import Dict, Set, Optional
from fastapi import WebSocket

logger = logging.getLogger(__name__)

# Seconds without a client message before the endpoint closes the socket
WEBSOCKET_TIMEOUT_SECONDS = 30


class WebSocketManager:
    """Manages WebSocket connections per user."""

    def __init__(self):
        self.active_connections: Dict[int, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, user_id: int, websocket: WebSocket):
        async with self._lock:
            self.active_connections.setdefault(user_id, set()).add(websocket)
            count = len(self.active_connections[user_id])
        logger.info(f"WebSocket connected for user {user_id} (total connections: {count})")

    async def disconnect(self, user_id: int, websocket: WebSocket):
        async with self._lock:
            self._discard(user_id, websocket)
        logger.info(f"WebSocket disconnected for user {user_id}")

    def _discard(self, user_id: int, websocket: WebSocket):
        sockets = self.active_connections.get(user_id)
        if sockets is None:
            return
        sockets.discard(websocket)
        if not sockets:
            del self.active_connections[user_id]

    async def send_to_user(self, user_id: int, message: dict) -> bool:
        """
        Send a JSON message to all of a user's sockets.

        Sockets that fail to send are dropped from the registry.

        Returns:
            True if at least one socket received the message
        """
        async with self._lock:
            sockets = list(self.active_connections.get(user_id, ()))
        if not sockets:
            return False

        payload = json.dumps(message, default=str)
        sent = False
        dead = []
        for websocket in sockets:
            try:
                await websocket.send_text(payload)
                sent = True
            except Exception as e:
                logger.warning(f"Error sending WebSocket message to user {user_id}: {e}")
                dead.append(websocket)

        if dead:
            async with self._lock:
                for websocket in dead:
                    self._discard(user_id, websocket)
        return sent

    async def get_connection_count(self, user_id: int) -> int:
        async with self._lock:
            return len(self.active_connections.get(user_id, ()))


_websocket_manager: Optional[WebSocketManager] = None


def get_websocket_manager() -> WebSocketManager:
    """Get the global WebSocket manager instance."""
    global _websocket_manager
    if _websocket_manager is None:
        _websocket_manager = WebSocketManager()
    return _websocket_manager
