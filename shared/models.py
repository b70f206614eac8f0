# Shared data models for the GradeKeeper coordinator/agent system
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter   # Data validation and serialization
from typing import Annotated, Any, List, Literal, Optional, Union
from datetime import datetime, timezone
from enum import Enum

# Header carrying the agent identity on the WebSocket upgrade request
AGENT_ID_HEADER = "X-Agent-Id"
LEGACY_AGENT_ID_HEADER = "X-Client-ID"

# Sentinel target meaning "every connected agent"
TARGET_ALL = "all"

DUPLICATE_CONNECTION = "duplicate_connection"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageType(str, Enum):
    """
    Enumeration of frame types exchanged over the coordinator WebSocket.

    Agent-facing frames use snake_case names; dashboard events keep the
    hyphenated names the dashboard UI listens for.
    """
    WELCOME = "welcome"                          # coordinator -> agent
    DASHBOARD_WELCOME = "dashboard-welcome"      # coordinator -> dashboard
    HEARTBEAT = "heartbeat"                      # agent -> coordinator
    STATUS = "status"                            # agent -> coordinator
    RESULT = "result"                            # agent -> coordinator (legacy)
    ACTION_STATUS = "action_status"              # agent -> coordinator
    COMMAND = "command"                          # coordinator -> agent
    ERROR = "error"                              # coordinator -> agent
    CLIENT_CONNECTED = "client-connected"        # coordinator -> dashboard
    CLIENT_DISCONNECTED = "client-disconnected"  # coordinator -> dashboard
    CLIENT_ACTION_UPDATE = "client_action_update"
    COMMAND_SENT = "command-sent"
    CONFIG_UPDATED = "config-updated"


class ClientStatus(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class ActionStatus(str, Enum):
    """Lifecycle of a single local action run on an agent."""
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class AgentRecord(BaseModel):
    """
    Identity and liveness state for one remote machine.

    Serialized with camelCase keys, which is what both the dashboard and the
    snapshot file expect.

    Attributes:
        id: Stable identifier supplied by the agent (OS + hostname)
        name: Display label derived from the id, not unique
        status: Whether a live socket currently exists for this agent
        first_seen: First successful registration
        last_seen: Last registration, heartbeat or report
        last_heartbeat: Last heartbeat (or registration)
        action: Most recently reported action
        action_status: Outcome of that action
        action_error: Error text when the action failed
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    status: ClientStatus = ClientStatus.DISCONNECTED
    first_seen: datetime = Field(alias="firstSeen")
    last_seen: datetime = Field(alias="lastSeen")
    last_heartbeat: datetime = Field(alias="lastHeartbeat")
    action: str = ""
    action_status: Optional[ActionStatus] = Field(default=None, alias="actionStatus")
    action_error: str = Field(default="", alias="actionError")

    @staticmethod
    def display_name(agent_id: str) -> str:
        return f"Client-{agent_id[:8]}"


class Command(BaseModel):
    """Operator command: an action name plus "all", "" or a specific agent id."""
    action: str
    target: str = ""

    @property
    def is_broadcast(self) -> bool:
        return self.target in ("", TARGET_ALL)

    def targets(self, agent_id: str) -> bool:
        """True if an agent with ``agent_id`` should execute this command."""
        return self.is_broadcast or self.target == agent_id


# --- Frame payloads --------------------------------------------------------

class WelcomeData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    client_id: str = Field(alias="clientId")


class HeartbeatData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    client_id: str = Field(default="", alias="clientId")
    timestamp: Optional[datetime] = None


class StatusData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    client_id: str = Field(default="", alias="clientId")
    status: str


class ActionStatusData(BaseModel):
    action: str
    status: ActionStatus
    error: str = ""


class ResultData(BaseModel):
    # Legacy result report; free-form status ("completed", "error", ...)
    action: str = ""
    status: str = ""
    error: str = ""


class CommandData(Command):
    urls: List[str] = []


class ErrorData(BaseModel):
    error: str
    message: str = ""


# --- Frames ----------------------------------------------------------------
#
# Every frame shares the {type, data, timestamp} envelope. Inbound frames are
# decoded through discriminated unions so a malformed payload surfaces as a
# ValidationError at the boundary instead of deep inside a handler.

class Message(BaseModel):
    """
    Untyped envelope, used for coordinator -> dashboard events.

    Attributes:
        type: Frame type (see MessageType)
        data: Event payload
        timestamp: Creation time (UTC, serialized as RFC 3339)
    """
    type: str
    data: Any = None
    timestamp: datetime = Field(default_factory=utcnow)

    def encode(self) -> str:
        return self.model_dump_json(by_alias=True)


class WelcomeFrame(Message):
    type: Literal["welcome"] = "welcome"
    data: WelcomeData


class HeartbeatFrame(Message):
    type: Literal["heartbeat"] = "heartbeat"
    data: HeartbeatData = Field(default_factory=HeartbeatData)


class StatusFrame(Message):
    type: Literal["status"] = "status"
    data: StatusData


class ResultFrame(Message):
    type: Literal["result"] = "result"
    data: ResultData = Field(default_factory=ResultData)


class ActionStatusFrame(Message):
    type: Literal["action_status"] = "action_status"
    data: ActionStatusData


class CommandFrame(Message):
    type: Literal["command"] = "command"
    data: CommandData


class ErrorFrame(Message):
    type: Literal["error"] = "error"
    data: ErrorData


AgentFrame = Annotated[
    Union[HeartbeatFrame, StatusFrame, ResultFrame, ActionStatusFrame],
    Field(discriminator="type"),
]
CoordinatorFrame = Annotated[
    Union[WelcomeFrame, CommandFrame, ErrorFrame],
    Field(discriminator="type"),
]

_agent_frames = TypeAdapter(AgentFrame)
_coordinator_frames = TypeAdapter(CoordinatorFrame)


def parse_agent_frame(raw: Union[str, bytes]) -> AgentFrame:
    """Decode a frame sent by an agent. Raises pydantic.ValidationError."""
    return _agent_frames.validate_json(raw)


def parse_coordinator_frame(raw: Union[str, bytes]) -> CoordinatorFrame:
    """Decode a frame sent by the coordinator. Raises pydantic.ValidationError."""
    return _coordinator_frames.validate_json(raw)
