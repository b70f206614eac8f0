import json
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from shared.models import (
    ActionStatus,
    ActionStatusFrame,
    AgentRecord,
    ClientStatus,
    Command,
    CommandFrame,
    ErrorFrame,
    HeartbeatFrame,
    Message,
    MessageType,
    ResultFrame,
    StatusFrame,
    WelcomeFrame,
    parse_agent_frame,
    parse_coordinator_frame,
)


class TestMessageType:
    def test_message_type_values(self):
        assert MessageType.HEARTBEAT.value == "heartbeat"
        assert MessageType.ACTION_STATUS.value == "action_status"
        assert MessageType.CLIENT_CONNECTED.value == "client-connected"
        assert MessageType.DASHBOARD_WELCOME.value == "dashboard-welcome"


class TestAgentRecord:
    @pytest.fixture
    def record(self):
        now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        return AgentRecord(
            id="windows-LAB-PC-07",
            name=AgentRecord.display_name("windows-LAB-PC-07"),
            status=ClientStatus.CONNECTED,
            first_seen=now,
            last_seen=now,
            last_heartbeat=now,
        )

    def test_display_name_truncates_id(self):
        assert AgentRecord.display_name("windows-LAB-PC-07") == "Client-windows-"
        assert AgentRecord.display_name("pc1") == "Client-pc1"

    def test_serializes_camel_case(self, record):
        data = record.model_dump(mode="json", by_alias=True)

        assert data["firstSeen"] == "2026-01-01T12:00:00Z"
        assert data["status"] == "connected"
        assert data["actionStatus"] is None
        assert "first_seen" not in data

    def test_loads_camel_case(self, record):
        data = record.model_dump(mode="json", by_alias=True)

        assert AgentRecord.model_validate(data) == record


class TestCommand:
    @pytest.mark.parametrize("target", ["", "all"])
    def test_broadcast_targets_everyone(self, target):
        command = Command(action="setup", target=target)

        assert command.is_broadcast
        assert command.targets("host-a")
        assert command.targets("host-b")

    def test_specific_target(self):
        command = Command(action="setup", target="host-a")

        assert not command.is_broadcast
        assert command.targets("host-a")
        assert not command.targets("host-b")

    def test_target_defaults_to_empty(self):
        assert Command(action="clear").target == ""

    def test_action_required(self):
        with pytest.raises(ValidationError):
            Command(target="all")


class TestFrames:
    def test_envelope_shape(self):
        encoded = json.loads(Message(type="command-sent", data={"action": "setup"}).encode())

        assert set(encoded) == {"type", "data", "timestamp"}
        assert encoded["timestamp"].endswith("Z")

    def test_welcome_uses_client_id_key(self):
        frame = parse_coordinator_frame('{"type": "welcome", "data": {"clientId": "host-a"}}')

        assert isinstance(frame, WelcomeFrame)
        assert frame.data.client_id == "host-a"
        assert json.loads(frame.encode())["data"] == {"clientId": "host-a"}

    def test_parse_command_frame(self):
        frame = parse_coordinator_frame(
            json.dumps(
                {
                    "type": "command",
                    "data": {"action": "open-chrome", "target": "all", "urls": ["https://a"]},
                    "timestamp": "2026-01-01T12:00:00Z",
                }
            )
        )

        assert isinstance(frame, CommandFrame)
        assert frame.data.urls == ["https://a"]
        assert frame.data.targets("anyone")

    def test_parse_error_frame(self):
        frame = parse_coordinator_frame(
            '{"type": "error", "data": {"error": "duplicate_connection", "message": "taken"}}'
        )

        assert isinstance(frame, ErrorFrame)
        assert frame.data.error == "duplicate_connection"

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ('{"type": "heartbeat", "data": {"clientId": "a", "timestamp": "2026-01-01T00:00:00Z"}}', HeartbeatFrame),
            ('{"type": "heartbeat"}', HeartbeatFrame),
            ('{"type": "status", "data": {"clientId": "a", "status": "disconnecting"}}', StatusFrame),
            ('{"type": "result", "data": {"action": "setup", "status": "completed"}}', ResultFrame),
            ('{"type": "action_status", "data": {"action": "clear", "status": "success"}}', ActionStatusFrame),
        ],
    )
    def test_parse_agent_frames(self, raw, expected):
        assert isinstance(parse_agent_frame(raw), expected)

    def test_action_status_values_enforced(self):
        frame = parse_agent_frame(
            '{"type": "action_status", "data": {"action": "clear", "status": "failed", "error": "x"}}'
        )
        assert frame.data.status == ActionStatus.FAILED

        with pytest.raises(ValidationError):
            parse_agent_frame('{"type": "action_status", "data": {"action": "clear", "status": "done"}}')

    @pytest.mark.parametrize(
        "raw",
        ["", "[]", "not json", '{"data": {}}', '{"type": "command", "data": {"action": "x"}}'],
    )
    def test_agent_frame_rejects_garbage(self, raw):
        with pytest.raises(ValidationError):
            parse_agent_frame(raw)

    def test_coordinator_frame_rejects_agent_types(self):
        with pytest.raises(ValidationError):
            parse_coordinator_frame('{"type": "heartbeat"}')
