"""
Pytest configuration and shared fixtures for GradeKeeper tests
"""

import json
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

# Add project root to Python path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Set environment variables for testing
os.environ["TESTING"] = "1"


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


class FakeSocket:
    """Stand-in for a server-side WebSocket: records frames, can be made to fail."""

    def __init__(self, name="socket", fail=False):
        self.name = name
        self.send_text = AsyncMock(side_effect=ConnectionError("broken pipe") if fail else None)
        self.close = AsyncMock()

    @property
    def frames(self):
        return [json.loads(call.args[0]) for call in self.send_text.call_args_list]

    def __repr__(self):
        return f"FakeSocket({self.name})"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_socket():
    return FakeSocket


@pytest.fixture
def storage_file(tmp_path):
    return str(tmp_path / "clients.json")
