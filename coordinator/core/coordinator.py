# Coordinator composition root: registry, dashboards, router, dispatcher, monitor
import logging
import os
from typing import Optional

from coordinator.core.dashboard import DashboardHub
from coordinator.core.dispatcher import CommandDispatcher
from coordinator.core.monitor import HeartbeatMonitor
from coordinator.core.registry import ConnectionRegistry
from coordinator.core.router import MessageRouter
from shared.config import AppConfig
from shared.models import Command, Message, MessageType
from shared.settings import CoordinatorSettings

# Configure logging for coordinator operations
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)


class Coordinator:
    """
    Central process tracking remote agents and routing operator commands.

    Wires together the pieces that share state:
    - ConnectionRegistry: live agent sockets and agent records
    - DashboardHub: observer sockets receiving events
    - MessageRouter: classifies /ws connections and applies agent frames
    - CommandDispatcher: targeted or broadcast command delivery
    - HeartbeatMonitor: demotes agents whose heartbeat lapsed

    Also holds the browser-tab configuration pushed to agents with each
    command.
    """

    def __init__(self, settings: Optional[CoordinatorSettings] = None, registry: Optional[ConnectionRegistry] = None):
        self.settings = settings or CoordinatorSettings.from_env()
        self.registry = registry or ConnectionRegistry(storage_file=self.settings.storage_file)
        self.dashboards = DashboardHub()
        self.config = AppConfig.default()

        self.router = MessageRouter(self.registry, self.dashboards, self.settings.dashboard_secret)
        self.dispatcher = CommandDispatcher(self.registry, self.dashboards, lambda: self.config)
        self.monitor = HeartbeatMonitor(
            self.registry,
            self.dashboards,
            interval=self.settings.heartbeat.interval,
            timeout=self.settings.heartbeat.timeout,
        )

    @property
    def dashboard_secret(self) -> str:
        return self.settings.dashboard_secret

    async def start(self):
        """Restore agent records left by a previous run."""
        loaded = await self.registry.reload()
        logger.info(f"Coordinator started with {loaded} known agent(s)")

    async def send_command(self, command: Command) -> int:
        return await self.dispatcher.broadcast(command)

    async def update_config(self, config: AppConfig) -> AppConfig:
        """
        Replace the browser-tab configuration.

        Raises:
            ValueError: if no URL remains after normalization
        """
        cleaned = config.normalized()
        cleaned.validate_urls()
        self.config = cleaned
        logger.info(f"Configuration updated: {len(cleaned.urls)} URL(s)")
        await self.dashboards.broadcast(
            Message(type=MessageType.CONFIG_UPDATED.value, data=cleaned.model_dump())
        )
        return cleaned

    async def shutdown(self):
        """
        Graceful shutdown: clear the snapshot file and close every socket.

        Clearing the file means a restarted coordinator starts without history.
        """
        logger.info("Cleaning up...")
        self.registry.clear_storage()

        for agent_id, websocket in await self.registry.close_all():
            try:
                await websocket.close()
                logger.info(f"Closed connection to client: {agent_id}")
            except Exception as e:
                logger.debug(f"Error closing connection to {agent_id}: {e}")

        await self.dashboards.close_all()
        logger.info("Cleanup completed")
