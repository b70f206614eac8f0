import pytest
import pytest_asyncio

from coordinator.core.dashboard import DashboardHub
from coordinator.core.dispatcher import CommandDispatcher
from coordinator.core.registry import ConnectionRegistry
from shared.config import AppConfig
from shared.models import Command


class TestCommandDispatcher:
    @pytest.fixture
    def registry(self, clock):
        return ConnectionRegistry(clock=clock)

    @pytest.fixture
    def dashboards(self):
        return DashboardHub()

    @pytest.fixture
    def dispatcher(self, registry, dashboards):
        return CommandDispatcher(
            registry, dashboards, lambda: AppConfig(urls=["https://judge.example"])
        )

    @pytest_asyncio.fixture
    async def agents(self, registry, make_socket):
        sockets = {agent_id: make_socket(agent_id) for agent_id in ("host-a", "host-b", "host-c")}
        for agent_id, socket in sockets.items():
            await registry.register_agent(agent_id, socket)
        return sockets

    @pytest.mark.asyncio
    @pytest.mark.parametrize("target", ["all", ""])
    async def test_broadcast_reaches_every_live_agent(self, dispatcher, registry, agents, make_socket, target):
        offline = make_socket("offline")
        await registry.register_agent("host-d", offline)
        await registry.unregister("host-d", offline)

        delivered = await dispatcher.broadcast(Command(action="setup", target=target))

        assert delivered == 3
        for socket in agents.values():
            frame = socket.frames[0]
            assert frame["type"] == "command"
            assert frame["data"]["action"] == "setup"
            assert frame["data"]["target"] == target
            assert frame["data"]["urls"] == ["https://judge.example"]
            assert "timestamp" in frame
        offline.send_text.assert_not_called()

    @pytest.mark.asyncio
    async def test_targeted_command_reaches_only_target(self, dispatcher, agents):
        delivered = await dispatcher.broadcast(Command(action="clear", target="host-b"))

        assert delivered == 1
        assert agents["host-b"].frames[0]["data"]["action"] == "clear"
        agents["host-a"].send_text.assert_not_called()
        agents["host-c"].send_text.assert_not_called()

    @pytest.mark.asyncio
    async def test_offline_target_is_silent_noop(self, dispatcher, agents):
        delivered = await dispatcher.broadcast(Command(action="setup", target="host-z"))

        assert delivered == 0
        for socket in agents.values():
            socket.send_text.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_write_does_not_stop_delivery(self, dispatcher, registry, make_socket):
        broken = make_socket("broken", fail=True)
        healthy = make_socket("healthy")
        await registry.register_agent("host-a", broken)
        await registry.register_agent("host-b", healthy)

        delivered = await dispatcher.broadcast(Command(action="setup", target="all"))

        assert delivered == 1
        healthy.send_text.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_dashboards_told_about_every_command(self, dispatcher, dashboards, agents, make_socket):
        observer = make_socket("dashboard")
        await dashboards.add(observer)

        await dispatcher.broadcast(Command(action="setup", target="host-z"))

        assert observer.frames[0]["type"] == "command-sent"
        assert observer.frames[0]["data"] == {
            "action": "setup",
            "target": "host-z",
            "clientCount": 3,
        }

    @pytest.mark.asyncio
    async def test_default_config_provider(self, registry, dashboards, make_socket):
        dispatcher = CommandDispatcher(registry, dashboards)
        socket = make_socket()
        await registry.register_agent("host-a", socket)

        await dispatcher.broadcast(Command(action="open-chrome"))

        assert socket.frames[0]["data"]["urls"] == AppConfig.default().urls


class TestDashboardHub:
    @pytest.mark.asyncio
    async def test_broadcast_drops_failed_connections(self, make_socket):
        from shared.models import Message

        hub = DashboardHub()
        working = make_socket("working")
        failing = make_socket("failing", fail=True)
        await hub.add(working)
        await hub.add(failing)

        await hub.broadcast(Message(type="test", data={"x": 1}))

        assert working.frames[0]["data"] == {"x": 1}
        assert hub.count() == 1

    @pytest.mark.asyncio
    async def test_add_remove(self, make_socket):
        hub = DashboardHub()
        socket = make_socket()

        await hub.add(socket)
        await hub.add(socket)
        assert hub.count() == 1

        await hub.remove(socket)
        await hub.remove(socket)
        assert hub.count() == 0

    @pytest.mark.asyncio
    async def test_close_all(self, make_socket):
        hub = DashboardHub()
        sockets = [make_socket(str(i)) for i in range(2)]
        for socket in sockets:
            await hub.add(socket)

        await hub.close_all()

        assert hub.count() == 0
        for socket in sockets:
            socket.close.assert_awaited_once()
