# Core imports for agent functionality
import asyncio
import contextlib
import logging
import os
from enum import Enum
from typing import Callable, List, Optional, Set

import aiohttp  # WebSocket client for the coordinator session
from pydantic import ValidationError

from agent.core.actions import LocalActions
from shared.models import (
    AGENT_ID_HEADER,
    DUPLICATE_CONNECTION,
    ActionStatus,
    ActionStatusData,
    ActionStatusFrame,
    CommandData,
    CommandFrame,
    ErrorFrame,
    HeartbeatData,
    HeartbeatFrame,
    Message,
    StatusData,
    StatusFrame,
    WelcomeFrame,
    parse_coordinator_frame,
    utcnow,
)
from shared.settings import AgentSettings

# Configure logging for agent operations
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

# Composite actions run as an ordered series of discrete steps; a failed step
# does not undo the previous ones
COMPOSITE_ACTIONS = {
    "setupAll": ["setup", "open-vscode", "open-chrome"],
}


class AgentState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"  # duplicate identity, never reconnects


class Backoff:
    """
    Exponential reconnect delay: 1s, 2s, 4s, ... capped at 30s.

    Only a successful connection resets it.
    """

    def __init__(self, initial: float = 1.0, maximum: float = 30.0, factor: float = 2.0):
        self.initial = initial
        self.maximum = maximum
        self.factor = factor
        self.failures = 0

    def next_delay(self) -> float:
        """Record one more failed attempt and return how long to wait before the next."""
        delay = min(self.initial * self.factor ** self.failures, self.maximum)
        self.failures += 1
        return delay

    def reset(self):
        self.failures = 0


class Agent:
    """
    Per-machine process holding a durable session to the coordinator.

    State machine:
        disconnected -> connecting -> connected -> disconnected (read error)
                                                -> terminated (duplicate identity)
        any -> shutting_down (operator interrupt)

    While connected two loops run: the message read loop and the heartbeat
    sender. Commands addressed to this agent run as separate tasks so the read
    loop keeps serving the connection while an action is in progress.

    Every loop observes one shutdown event cooperatively; nothing is killed
    mid-write.
    """

    def __init__(
        self,
        settings: AgentSettings,
        actions: Optional[LocalActions] = None,
        session_factory: Callable[[], aiohttp.ClientSession] = aiohttp.ClientSession,
    ):
        """
        Args:
            settings (AgentSettings): Coordinator URL, identity and timings
            actions (LocalActions): Local capability; per-OS default if omitted
            session_factory: Builds the aiohttp session (injectable for tests)
        """
        if not settings.server_url:
            raise ValueError("server_url is required to run an agent")
        self.settings = settings
        self.agent_id = settings.agent_id
        self.server_url = settings.server_url
        self.actions = actions or LocalActions(folder_name=settings.folder_name)
        self.backoff = Backoff()
        self.state = AgentState.DISCONNECTED
        self.exit_code = 0

        self._session_factory = session_factory
        self._shutdown = asyncio.Event()
        self._shutdown_task: Optional[asyncio.Task] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._tasks: Set[asyncio.Task] = set()

    # --- state -------------------------------------------------------------

    def _set_state(self, state: AgentState):
        # shutting_down and terminated are final
        if self.state in (AgentState.SHUTTING_DOWN, AgentState.TERMINATED):
            return
        if state != self.state:
            logger.debug(f"Agent state {self.state.value} -> {state.value}")
        self.state = state

    @property
    def shutting_down(self) -> bool:
        return self._shutdown.is_set()

    async def _wait_for_shutdown(self, delay: float) -> bool:
        """Sleep up to ``delay`` seconds; True if shutdown was requested meanwhile."""
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=delay)
            return True
        except asyncio.TimeoutError:
            return False

    # --- connection lifecycle ------------------------------------------------

    async def run(self) -> int:
        """
        Connect, serve and reconnect until shutdown or a duplicate-identity error.

        Returns:
            int: Process exit code (0 graceful, 1 duplicate identity)
        """
        async with self._session_factory() as session:
            while not self.shutting_down and self.state != AgentState.TERMINATED:
                self._set_state(AgentState.CONNECTING)
                try:
                    ws = await self._connect(session)
                except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
                    self._set_state(AgentState.DISCONNECTED)
                    delay = self.backoff.next_delay()
                    logger.warning(f"Connection failed: {e}. Retrying in {delay:.0f}s...")
                    if await self._wait_for_shutdown(delay):
                        logger.info("Shutdown requested during retry, exiting...")
                        break
                    continue

                if ws is None:
                    logger.info("Shutdown requested while connecting, exiting...")
                    break

                self.backoff.reset()
                if self.shutting_down:
                    await ws.close()
                    break

                await self._serve(ws)

                if self.state == AgentState.TERMINATED or self.shutting_down:
                    break
                self._set_state(AgentState.DISCONNECTED)
                logger.warning("Connection lost, attempting to reconnect...")

        if self._shutdown_task is not None:
            await self._shutdown_task
        return self.exit_code

    async def _connect(
        self, session: aiohttp.ClientSession
    ) -> Optional[aiohttp.ClientWebSocketResponse]:
        """
        Open the coordinator WebSocket, racing it against the shutdown event.

        Returns:
            The connection, or None if shutdown was requested first

        Raises:
            Whatever ws_connect raises when the attempt itself fails
        """
        connect = asyncio.ensure_future(
            session.ws_connect(self.server_url, headers={AGENT_ID_HEADER: self.agent_id})
        )
        stop = asyncio.ensure_future(self._shutdown.wait())
        try:
            await asyncio.wait({connect, stop}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            connect.cancel()
            raise
        finally:
            stop.cancel()

        if not connect.done():
            # shutdown won; abandon the pending handshake
            connect.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await connect
            return None
        return connect.result()

    async def _serve(self, ws: aiohttp.ClientWebSocketResponse):
        self._ws = ws
        self._set_state(AgentState.CONNECTED)
        logger.info(f"Connected to master server as client: {self.agent_id}")

        await self.send_status("connected")
        heartbeat = asyncio.create_task(self._heartbeat_loop())
        try:
            await self._read_loop(ws)
        finally:
            heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await heartbeat
            self._ws = None
            if not ws.closed:
                await ws.close()

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse):
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                await self.handle_message(msg.data)
                if self.state == AgentState.TERMINATED:
                    return
            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.warning(f"WebSocket read error: {ws.exception()}")
                return

    async def _heartbeat_loop(self):
        while not self.shutting_down:
            if await self._wait_for_shutdown(self.settings.heartbeat_interval):
                return
            frame = HeartbeatFrame(data=HeartbeatData(client_id=self.agent_id, timestamp=utcnow()))
            if not await self.send(frame):
                return

    # --- inbound frames ------------------------------------------------------

    async def handle_message(self, raw: str):
        """Apply one coordinator frame; unknown or malformed frames are ignored."""
        try:
            frame = parse_coordinator_frame(raw)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed frame from master: {e.error_count()} error(s)")
            return

        if isinstance(frame, WelcomeFrame):
            logger.info(f"Welcome message received from master (client id {frame.data.client_id})")
        elif isinstance(frame, ErrorFrame):
            await self._handle_error(frame)
        elif isinstance(frame, CommandFrame):
            if frame.data.targets(self.agent_id):
                task = asyncio.create_task(self.execute_command(frame.data))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
            else:
                logger.debug(f"Ignoring command {frame.data.action} for {frame.data.target}")

    async def _handle_error(self, frame: ErrorFrame):
        logger.error(f"Received error from master: {frame.data.error} - {frame.data.message}")
        if frame.data.error == DUPLICATE_CONNECTION:
            logger.error("Another instance of this client is already connected to the master server.")
            logger.error("Please stop the other instance before running this client.")
            self._set_state(AgentState.TERMINATED)
            self.exit_code = 1
            if self._ws is not None and not self._ws.closed:
                await self._ws.close()
        else:
            logger.warning(f"Unhandled error type: {frame.data.error}")

    # --- commands ------------------------------------------------------------

    async def execute_command(self, command: CommandData):
        steps = COMPOSITE_ACTIONS.get(command.action)
        if steps is None:
            await self.run_action(command.action, command.urls)
            return

        logger.info(f"Executing {command.action}: {' -> '.join(steps)}")
        for index, step in enumerate(steps):
            if index and await self._wait_for_shutdown(self.settings.step_delay):
                return
            await self.run_action(step, command.urls)

    async def run_action(self, action: str, urls: Optional[List[str]] = None) -> bool:
        """
        Run one local action and report it upstream.

        Reports ``running`` before starting and ``success``/``failed`` after.
        Unknown actions are reported as failed without running anything.

        Returns:
            bool: Whether the action succeeded
        """
        handler = self.actions.resolve(action)
        if handler is None:
            logger.warning(f"Unknown command: {action}")
            await self.send_action_status(action, ActionStatus.FAILED, "unknown command")
            return False

        logger.info(f"Executing command: {action}")
        await self.send_action_status(action, ActionStatus.RUNNING)
        try:
            await asyncio.to_thread(handler, urls or None)
        except Exception as e:
            logger.error(f"Command {action} failed: {e}")
            await self.send_action_status(action, ActionStatus.FAILED, str(e))
            return False

        logger.info(f"Command {action} completed")
        await self.send_action_status(action, ActionStatus.SUCCESS)
        return True

    async def wait_for_commands(self):
        """Wait until every in-flight command task has finished."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # --- outbound frames -----------------------------------------------------

    async def send(self, frame: Message) -> bool:
        """
        Write ``frame`` on the current connection.

        A failed write closes the socket so the read loop ends and the
        reconnect path takes over.
        """
        ws = self._ws
        if ws is None or ws.closed:
            logger.warning(f"Cannot send {frame.type}: no connection")
            return False
        try:
            await ws.send_str(frame.encode())
            return True
        except (ConnectionError, aiohttp.ClientError, RuntimeError) as e:
            logger.error(f"Error sending {frame.type}: {e}")
            if not self.shutting_down:
                await ws.close()
            return False

    async def send_status(self, status: str) -> bool:
        return await self.send(StatusFrame(data=StatusData(client_id=self.agent_id, status=status)))

    async def send_action_status(self, action: str, status: ActionStatus, error: str = "") -> bool:
        return await self.send(
            ActionStatusFrame(data=ActionStatusData(action=action, status=status, error=error))
        )

    # --- shutdown ------------------------------------------------------------

    def request_shutdown(self):
        """Signal-handler entry point: schedule shutdown() once."""
        if self._shutdown_task is None:
            self._shutdown_task = asyncio.ensure_future(self.shutdown())

    async def shutdown(self):
        """
        Stop every loop, say goodbye and close the connection.

        The farewell status write is bounded by ``shutdown_timeout`` so a hung
        socket cannot block process exit.
        """
        if self.shutting_down:
            return
        logger.info("Interrupt received, closing connection...")
        self._set_state(AgentState.SHUTTING_DOWN)
        self._shutdown.set()

        timeout = self.settings.shutdown_timeout
        try:
            await asyncio.wait_for(self.send_status("disconnecting"), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Timeout sending disconnect status, forcing shutdown...")

        ws = self._ws
        if ws is not None and not ws.closed:
            try:
                await asyncio.wait_for(ws.close(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("Timeout closing connection")

        for task in list(self._tasks):
            task.cancel()
        logger.info("Client shutdown complete.")
