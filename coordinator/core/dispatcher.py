# Command dispatcher: delivers operator commands to agent sockets
import logging
from typing import Callable, Optional

from coordinator.core.dashboard import DashboardHub
from coordinator.core.registry import ConnectionRegistry
from shared.config import AppConfig
from shared.models import Command, CommandData, CommandFrame, Message, MessageType

logger = logging.getLogger(__name__)


class CommandDispatcher:
    """
    Delivers operator commands to agent sockets and mirrors them to dashboards.

    Delivery is best-effort and at most once per live connection: a command
    for an offline agent is dropped, nothing is queued for later.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        dashboards: DashboardHub,
        config_provider: Optional[Callable[[], AppConfig]] = None,
    ):
        self.registry = registry
        self.dashboards = dashboards
        self._config_provider = config_provider or AppConfig.default

    async def broadcast(self, command: Command) -> int:
        """
        Send ``command`` to every live agent (target "" or "all") or to the
        one agent it names.

        Writes happen one socket at a time; a failed write is logged and the
        remaining agents still get the frame.

        Returns:
            int: Number of agents the frame was written to
        """
        frame = CommandFrame(
            data=CommandData(
                action=command.action,
                target=command.target,
                urls=self._config_provider().urls,
            )
        )
        payload = frame.encode()  # encoded once, same bytes for every agent

        # Live sockets only; offline targets are not queued
        recipients = await self.registry.sockets_for(command.target)
        if not recipients and not command.is_broadcast:
            logger.info(f"Command {command.action} dropped: target {command.target} is not connected")

        delivered = 0
        for agent_id, websocket in recipients:
            try:
                await websocket.send_text(payload)
                delivered += 1
            except Exception as e:
                logger.error(f"Error sending to client {agent_id}: {e}")

        logger.info(
            f"Command {command.action} -> {command.target or 'all'}: delivered to {delivered} agent(s)"
        )

        # Dashboards hear about every command, delivered or not
        await self.dashboards.broadcast(
            Message(
                type=MessageType.COMMAND_SENT.value,
                data={
                    "action": command.action,
                    "target": command.target,
                    "clientCount": self.registry.live_count(),
                },
            )
        )
        return delivered
