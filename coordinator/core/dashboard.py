# Dashboard hub: fan-out of coordinator events to observer browsers
import asyncio
import logging
from typing import Any, List

from shared.models import Message

logger = logging.getLogger(__name__)


class DashboardHub:
    """
    Set of authenticated dashboard observer sockets.

    Has its own lock, independent of the agent registry, so dashboard churn
    never contends with agent heartbeat processing.
    """

    def __init__(self):
        self._connections: List[Any] = []
        self._lock = asyncio.Lock()

    async def add(self, websocket: Any):
        async with self._lock:
            if websocket not in self._connections:
                self._connections.append(websocket)
            logger.info(f"Dashboard connected (dashboards: {len(self._connections)})")

    async def remove(self, websocket: Any):
        async with self._lock:
            if websocket in self._connections:
                self._connections.remove(websocket)
                logger.info(f"Dashboard disconnected (dashboards: {len(self._connections)})")

    def count(self) -> int:
        return len(self._connections)

    async def broadcast(self, message: Message):
        """
        Send ``message`` to every dashboard.

        Connections that fail to receive it are dropped from the set.
        """
        async with self._lock:
            connections = list(self._connections)
        if not connections:
            return

        payload = message.encode()
        disconnected = []
        for websocket in connections:
            try:
                await websocket.send_text(payload)
            except Exception as e:
                logger.warning(f"Error sending to dashboard: {e}")
                disconnected.append(websocket)

        if disconnected:
            async with self._lock:
                for websocket in disconnected:
                    if websocket in self._connections:
                        self._connections.remove(websocket)

    async def close_all(self):
        async with self._lock:
            connections = list(self._connections)
            self._connections.clear()
        for websocket in connections:
            try:
                await websocket.close()
            except Exception as e:
                logger.debug(f"Error closing dashboard connection: {e}")
