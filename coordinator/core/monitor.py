# Heartbeat monitor: periodic sweep for agents that stopped reporting
import asyncio
import logging

from coordinator.core.dashboard import DashboardHub
from coordinator.core.registry import ConnectionRegistry
from shared.models import Message, MessageType
from shared.settings import HEARTBEAT_INTERVAL, HEARTBEAT_TIMEOUT

logger = logging.getLogger(__name__)


class HeartbeatMonitor:
    """
    Periodic sweep that demotes agents whose heartbeat lapsed.

    This is the only way the coordinator notices a half-open connection
    where the peer vanished without closing its socket.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        dashboards: DashboardHub,
        interval: float = HEARTBEAT_INTERVAL,
        timeout: float = HEARTBEAT_TIMEOUT,
    ):
        self.registry = registry
        self.dashboards = dashboards
        self.interval = interval
        self.timeout = timeout

    async def sweep(self) -> list:
        """
        Run one monitor tick.

        Returns:
            list: Ids of the agents demoted by this tick
        """
        expired = await self.registry.expire_stale(self.timeout)
        if not expired:
            return []

        for agent_id, websocket in expired:
            logger.warning(f"Client {agent_id} marked as disconnected due to heartbeat timeout")
            if websocket is not None:
                try:
                    await websocket.close()
                except Exception as e:
                    logger.debug(f"Error closing stale socket for {agent_id}: {e}")

        total = self.registry.live_count()
        for agent_id, _ in expired:
            await self.dashboards.broadcast(
                Message(
                    type=MessageType.CLIENT_DISCONNECTED.value,
                    data={
                        "clientId": agent_id,
                        "reason": "heartbeat_timeout",
                        "totalClients": total,
                    },
                )
            )

        await self.registry.persist()
        return [agent_id for agent_id, _ in expired]

    async def run(self):
        """Sweep every ``interval`` seconds until cancelled."""
        logger.info(
            f"Heartbeat monitor started (interval {self.interval}s, timeout {self.timeout}s)"
        )
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Heartbeat monitor error: {e}")
