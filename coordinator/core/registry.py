# Agent connection registry: live sockets, agent records and the JSON snapshot file
import asyncio
import json
import logging
import os
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import TypeAdapter, ValidationError

from shared.models import ActionStatus, AgentRecord, ClientStatus, utcnow

logger = logging.getLogger(__name__)

# Validates the whole snapshot array in one pass
_records_adapter = TypeAdapter(List[AgentRecord])


class DuplicateConnection(Exception):
    """Raised when an agent id already has a live socket."""

    def __init__(self, agent_id: str):
        super().__init__(f"A connection with client ID {agent_id} already exists")
        self.agent_id = agent_id


class ConnectionRegistry:
    """
    Live agent sockets plus the historical record of every agent ever seen.

    The registry is the single owner of the id -> socket mapping and of the
    AgentRecord set. Both maps stay private: callers only get atomic
    operations and copies, and every mutation goes through one asyncio lock.

    Sockets are opaque here; anything with an async ``close()`` works.
    """

    def __init__(
        self,
        storage_file: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            storage_file: JSON snapshot path; falsy disables persistence
            clock: Time source, injectable for tests
        """
        self._sockets: Dict[str, Any] = {}  # agent id -> live socket
        self._records: Dict[str, AgentRecord] = {}  # every agent ever seen
        self._lock = asyncio.Lock()
        self._storage_file = storage_file or None
        self._clock = clock

    async def register_agent(self, agent_id: str, socket: Any) -> AgentRecord:
        """
        Claim ``agent_id`` for ``socket``.

        The first connection wins: if the id already has a live socket the
        call raises DuplicateConnection and nothing changes.

        Returns:
            AgentRecord: Copy of the updated record
        """
        async with self._lock:
            # First connection wins
            if agent_id in self._sockets:
                raise DuplicateConnection(agent_id)

            now = self._clock()
            self._sockets[agent_id] = socket
            record = self._records.get(agent_id)
            if record is None:
                record = AgentRecord(
                    id=agent_id,
                    name=AgentRecord.display_name(agent_id),
                    first_seen=now,
                    last_seen=now,
                    last_heartbeat=now,
                )
                self._records[agent_id] = record
            else:
                # a new session starts its heartbeat clock afresh
                record.last_seen = now
                record.last_heartbeat = now
            record.status = ClientStatus.CONNECTED
            logger.info(f"Registered agent {agent_id} (live agents: {len(self._sockets)})")
            return record.model_copy()

    async def record_heartbeat(self, agent_id: str) -> bool:
        """
        Refresh liveness for ``agent_id``.

        A record the monitor already demoted is flipped back to connected,
        so a heartbeat racing a sweep heals the status.

        Returns:
            bool: False if the agent is unknown
        """
        async with self._lock:
            record = self._records.get(agent_id)
            if record is None:
                return False
            now = self._clock()
            record.last_heartbeat = max(record.last_heartbeat, now)
            record.last_seen = now
            if record.status != ClientStatus.CONNECTED:
                record.status = ClientStatus.CONNECTED
                logger.info(f"Agent {agent_id} marked as connected via heartbeat")
            return True

    async def record_action_status(
        self, agent_id: str, action: str, status: ActionStatus, error: str = ""
    ) -> bool:
        async with self._lock:
            record = self._records.get(agent_id)
            if record is None:
                return False
            record.action = action
            record.action_status = status
            record.action_error = error or ""
            record.last_seen = self._clock()
            return True

    async def unregister(self, agent_id: str, socket: Any = None) -> bool:
        """
        Drop the live socket of ``agent_id`` and mark it disconnected.

        When ``socket`` is given only that exact socket is removed, so a read
        loop that ends late cannot evict a newer connection for the same id.

        Returns:
            bool: True if a live socket was removed by this call
        """
        async with self._lock:
            current = self._sockets.get(agent_id)
            if current is None:
                # No live socket but a heartbeat may have re-marked the record
                # connected after a sweep; settle it without reporting a removal
                record = self._records.get(agent_id)
                if record is not None and record.status == ClientStatus.CONNECTED:
                    record.status = ClientStatus.DISCONNECTED
                    record.last_seen = self._clock()
                return False
            if socket is not None and current is not socket:
                return False  # a newer connection owns the id now
            del self._sockets[agent_id]
            record = self._records.get(agent_id)
            if record is not None:
                record.status = ClientStatus.DISCONNECTED
                record.last_seen = self._clock()
            logger.info(f"Unregistered agent {agent_id} (live agents: {len(self._sockets)})")
            return True

    async def expire_stale(self, timeout: float) -> List[Tuple[str, Any]]:
        """
        Demote every connected agent whose last heartbeat is older than
        ``timeout`` seconds.

        Connected records that have no live socket (a late heartbeat healed
        them after an earlier sweep) are demoted too but not returned, since
        their disconnect was already reported.

        Returns:
            List of (agent_id, socket) pairs removed
        """
        expired = []
        async with self._lock:
            now = self._clock()
            limit = timedelta(seconds=timeout)
            for agent_id, record in self._records.items():
                if record.status != ClientStatus.CONNECTED:
                    continue
                if now - record.last_heartbeat <= limit:
                    continue
                record.status = ClientStatus.DISCONNECTED
                record.last_seen = now
                socket = self._sockets.pop(agent_id, None)
                if socket is not None:
                    expired.append((agent_id, socket))
        return expired

    async def sockets_for(self, target: str) -> List[Tuple[str, Any]]:
        """Live (agent_id, socket) pairs addressed by ``target`` ("", "all" or an id)."""
        async with self._lock:
            if target in ("", "all"):
                return sorted(self._sockets.items(), key=lambda item: item[0])
            socket = self._sockets.get(target)
            return [(target, socket)] if socket is not None else []

    async def close_all(self) -> List[Tuple[str, Any]]:
        """Detach every live socket (coordinator shutdown) and return them for closing."""
        async with self._lock:
            detached = list(self._sockets.items())
            self._sockets.clear()
            now = self._clock()
            for agent_id, _ in detached:
                record = self._records.get(agent_id)
                if record is not None:
                    record.status = ClientStatus.DISCONNECTED
                    record.last_seen = now
            return detached

    def live_count(self) -> int:
        return len(self._sockets)

    def is_connected(self, agent_id: str) -> bool:
        return agent_id in self._sockets

    async def get(self, agent_id: str) -> Optional[AgentRecord]:
        async with self._lock:
            record = self._records.get(agent_id)
            return record.model_copy() if record else None

    async def snapshot(self) -> List[AgentRecord]:
        """All records, sorted by id, as copies."""
        async with self._lock:
            return [self._records[key].model_copy() for key in sorted(self._records)]

    async def persist(self):
        """Overwrite the snapshot file with the full record set."""
        if not self._storage_file:
            return
        records = await self.snapshot()
        data = [record.model_dump(mode="json", by_alias=True) for record in records]
        # Temp file + rename: the snapshot is replaced atomically
        tmp_path = f"{self._storage_file}.tmp"
        try:
            with open(tmp_path, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self._storage_file)
        except OSError as e:
            logger.error(f"Error saving client data to {self._storage_file}: {e}")

    async def reload(self) -> int:
        """
        Load records from the snapshot file.

        Every reloaded record starts disconnected: no socket survives a
        coordinator restart. A missing file is not an error; a corrupt one is
        logged and ignored.

        Returns:
            int: Number of records loaded
        """
        if not self._storage_file or not os.path.exists(self._storage_file):
            return 0
        try:
            with open(self._storage_file, "rb") as f:
                records = _records_adapter.validate_json(f.read())
        except (OSError, ValidationError) as e:
            logger.error(f"Error reading client data from {self._storage_file}: {e}")
            return 0

        async with self._lock:
            # No socket survives a restart
            for record in records:
                record.status = ClientStatus.DISCONNECTED
                self._records[record.id] = record
        logger.info(f"Loaded {len(records)} client records from storage")
        return len(records)

    def clear_storage(self):
        """Delete the snapshot file; restarting the coordinator then starts clean."""
        if not self._storage_file:
            return
        try:
            os.remove(self._storage_file)
            logger.info("Client storage file cleared successfully")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove client storage file: {e}")
