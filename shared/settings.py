# Environment-driven settings for the coordinator and agents
#
# Values come from GRADEKEEPER_* environment variables (optionally loaded from
# a .env file) and can be overridden by command line flags in the entry points.

import os
import platform
import secrets
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

# Load environment variables from .env file
load_dotenv()

# Agents send a heartbeat this often; the coordinator sweeps at the same rate
HEARTBEAT_INTERVAL = 30.0
# An agent is considered gone after this long without a heartbeat
HEARTBEAT_TIMEOUT = 3 * HEARTBEAT_INTERVAL
# Smallest timeout/interval ratio accepted before jitter causes false timeouts
MIN_TIMEOUT_MULTIPLE = 2

DEFAULT_STORAGE_FILE = "gradekeeper-clients.json"
DEFAULT_FOLDER_NAME = "DOMJudge"


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


def default_agent_id() -> str:
    """Stable agent identity: ``<os>-<hostname>``."""
    hostname = platform.node() or "unknown"
    return f"{platform.system().lower()}-{hostname}"


class HeartbeatSettings(BaseModel):
    interval: float = Field(default=HEARTBEAT_INTERVAL, gt=0)
    timeout: float = Field(default=HEARTBEAT_TIMEOUT, gt=0)

    @model_validator(mode="after")
    def _check_safety_multiple(self):
        if self.timeout < MIN_TIMEOUT_MULTIPLE * self.interval:
            raise ValueError(
                f"heartbeat timeout ({self.timeout}s) must be at least "
                f"{MIN_TIMEOUT_MULTIPLE}x the interval ({self.interval}s)"
            )
        return self


class CoordinatorSettings(BaseModel):
    """
    Coordinator configuration.

    Attributes:
        host: Interface to bind the web server to
        port: Web server port
        dashboard_secret: Shared secret selecting the dashboard role on /ws
        storage_file: Snapshot file for agent records (None disables persistence)
        heartbeat: Monitor sweep interval and agent timeout
    """
    host: str = "0.0.0.0"
    port: int = 8080
    dashboard_secret: str = Field(default_factory=lambda: secrets.token_hex(16))
    storage_file: Optional[str] = DEFAULT_STORAGE_FILE
    heartbeat: HeartbeatSettings = Field(default_factory=HeartbeatSettings)

    @classmethod
    def from_env(cls, **overrides) -> "CoordinatorSettings":
        interval = _env_float("GRADEKEEPER_HEARTBEAT_INTERVAL", HEARTBEAT_INTERVAL)
        values = {
            "host": os.getenv("GRADEKEEPER_HOST", "0.0.0.0"),
            "port": int(os.getenv("GRADEKEEPER_PORT", "8080")),
            "storage_file": os.getenv("GRADEKEEPER_STORAGE_FILE", DEFAULT_STORAGE_FILE),
            "heartbeat": HeartbeatSettings(
                interval=interval,
                timeout=_env_float("GRADEKEEPER_HEARTBEAT_TIMEOUT", 3 * interval),
            ),
        }
        secret = os.getenv("GRADEKEEPER_DASHBOARD_SECRET")
        if secret:
            values["dashboard_secret"] = secret
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


class AgentSettings(BaseModel):
    """
    Agent configuration.

    Attributes:
        server_url: Coordinator WebSocket URL (ws://host:port/ws)
        agent_id: Identity announced to the coordinator
        folder_name: Workspace folder created on the desktop
        heartbeat_interval: Must match the coordinator's expected interval
        step_delay: Pause between the steps of a composite action
        shutdown_timeout: Upper bound on the farewell status write
    """
    server_url: Optional[str] = None
    agent_id: str = Field(default_factory=default_agent_id)
    folder_name: str = DEFAULT_FOLDER_NAME
    heartbeat_interval: float = Field(default=HEARTBEAT_INTERVAL, gt=0)
    step_delay: float = Field(default=1.0, ge=0)
    shutdown_timeout: float = Field(default=2.0, gt=0)

    @classmethod
    def from_env(cls, **overrides) -> "AgentSettings":
        values = {
            "server_url": os.getenv("GRADEKEEPER_SERVER"),
            "folder_name": os.getenv("GRADEKEEPER_FOLDER", DEFAULT_FOLDER_NAME),
            "heartbeat_interval": _env_float("GRADEKEEPER_HEARTBEAT_INTERVAL", HEARTBEAT_INTERVAL),
        }
        agent_id = os.getenv("GRADEKEEPER_AGENT_ID")
        if agent_id:
            values["agent_id"] = agent_id
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
