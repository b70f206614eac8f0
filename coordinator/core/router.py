# WebSocket message router: classifies /ws connections and applies agent frames
import logging
import secrets
from typing import Optional, Union

from fastapi import WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError

from coordinator.core.dashboard import DashboardHub
from coordinator.core.registry import ConnectionRegistry, DuplicateConnection
from shared.models import (
    AGENT_ID_HEADER,
    DUPLICATE_CONNECTION,
    LEGACY_AGENT_ID_HEADER,
    ActionStatusFrame,
    ErrorData,
    ErrorFrame,
    HeartbeatFrame,
    Message,
    MessageType,
    ResultFrame,
    StatusFrame,
    WelcomeData,
    WelcomeFrame,
    parse_agent_frame,
)

logger = logging.getLogger(__name__)


class MessageRouter:
    """
    Classifies each /ws connection and dispatches the frames it sends.

    Classification, in order:
    1. ``?dashboard=<secret>`` matching the configured secret -> dashboard
    2. a secret that does not match -> rejected
    3. no agent identity header -> rejected
    4. agent registration, rejected with a typed error frame when the id
       already has a live connection
    """

    def __init__(self, registry: ConnectionRegistry, dashboards: DashboardHub, dashboard_secret: str):
        self.registry = registry
        self.dashboards = dashboards
        self.dashboard_secret = dashboard_secret

    async def handle(self, websocket: WebSocket):
        await websocket.accept()

        # Dashboards authenticate with ?dashboard=<secret>
        supplied_secret = websocket.query_params.get("dashboard")
        if supplied_secret:
            # Constant-time comparison
            if secrets.compare_digest(supplied_secret, self.dashboard_secret):
                await self._serve_dashboard(websocket)
            else:
                logger.warning("Dashboard connection with invalid authentication rejected")
                await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        agent_id = self._agent_id(websocket)
        if not agent_id:
            logger.warning(
                "WebSocket connection rejected: no agent id header and no dashboard authentication"
            )
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        try:
            await self.registry.register_agent(agent_id, websocket)
        except DuplicateConnection as e:
            logger.warning(
                f"Client {agent_id} attempted to connect but is already connected, rejecting new connection"
            )
            error = ErrorFrame(data=ErrorData(error=DUPLICATE_CONNECTION, message=str(e)))
            try:
                await websocket.send_text(error.encode())
            finally:
                await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        # Registered: this task now owns the agent's read loop
        await self._serve_agent(agent_id, websocket)

    @staticmethod
    def _agent_id(websocket: WebSocket) -> Optional[str]:
        agent_id = websocket.headers.get(AGENT_ID_HEADER) or websocket.headers.get(
            LEGACY_AGENT_ID_HEADER
        )
        return agent_id.strip() if agent_id else None

    @staticmethod
    async def _receive(websocket: WebSocket) -> Union[str, bytes]:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(message.get("code", status.WS_1000_NORMAL_CLOSURE))
        return message.get("text") or message.get("bytes") or ""

    async def _serve_dashboard(self, websocket: WebSocket):
        await self.dashboards.add(websocket)
        try:
            welcome = Message(type=MessageType.DASHBOARD_WELCOME.value, data={"type": "dashboard"})
            await websocket.send_text(welcome.encode())

            # Dashboards only listen; anything they send is ignored
            while True:
                await self._receive(websocket)
        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.warning(f"Dashboard connection error: {e}")
        finally:
            await self.dashboards.remove(websocket)

    async def _serve_agent(self, agent_id: str, websocket: WebSocket):
        logger.info(f"Client {agent_id} connected")
        await self.registry.persist()
        await self.dashboards.broadcast(
            Message(
                type=MessageType.CLIENT_CONNECTED.value,
                data={"clientId": agent_id, "totalClients": self.registry.live_count()},
            )
        )

        try:
            await websocket.send_text(WelcomeFrame(data=WelcomeData(client_id=agent_id)).encode())
            while True:
                raw = await self._receive(websocket)
                await self.handle_agent_frame(agent_id, raw)
        except WebSocketDisconnect as e:
            logger.info(f"Client {agent_id} disconnected (code {e.code})")
        except Exception as e:
            logger.warning(f"Client {agent_id} disconnected: {e}")
        finally:
            # False when the monitor already reported this connection as lost
            if await self.registry.unregister(agent_id, websocket):
                await self.registry.persist()
                await self.dashboards.broadcast(
                    Message(
                        type=MessageType.CLIENT_DISCONNECTED.value,
                        data={"clientId": agent_id, "totalClients": self.registry.live_count()},
                    )
                )

    async def handle_agent_frame(self, agent_id: str, raw: Union[str, bytes]):
        """Apply one agent frame. Malformed frames are logged and dropped."""
        try:
            frame = parse_agent_frame(raw)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed frame from {agent_id}: {e.error_count()} error(s)")
            logger.debug(f"Malformed frame from {agent_id}: {raw!r}")
            return

        # Route by frame type
        if isinstance(frame, HeartbeatFrame):
            await self.registry.record_heartbeat(agent_id)
            await self.registry.persist()
        elif isinstance(frame, StatusFrame):
            logger.info(f"Client {agent_id} status: {frame.data.status}")
        elif isinstance(frame, ResultFrame):
            logger.info(f"Client {agent_id} result: {frame.data.model_dump()}")
        elif isinstance(frame, ActionStatusFrame):
            await self._handle_action_status(agent_id, frame)

    async def _handle_action_status(self, agent_id: str, frame: ActionStatusFrame):
        data = frame.data
        logger.info(f"Client {agent_id} action status: {data.action} -> {data.status.value}")
        await self.registry.record_action_status(agent_id, data.action, data.status, data.error)
        await self.registry.persist()
        await self.dashboards.broadcast(
            Message(
                type=MessageType.CLIENT_ACTION_UPDATE.value,
                data={
                    "clientId": agent_id,
                    "action": data.action,
                    "status": data.status.value,
                    "error": data.error,
                },
            )
        )
