from unittest.mock import AsyncMock, Mock, patch

from agent import main as agent_main
from agent.core.actions import LocalActionError, LocalActions


def make_actions(**side_effects):
    actions = Mock(spec=LocalActions)
    actions.folder_name = "DOMJudge"
    for name, effect in side_effects.items():
        getattr(actions, name).side_effect = effect
    return actions


class TestAgentMain:
    def test_parse_args(self):
        args = agent_main.parse_args(["--server", "ws://10.0.0.1:8080/ws", "--agent-id", "lab-1"])

        assert args.server == "ws://10.0.0.1:8080/ws"
        assert args.agent_id == "lab-1"
        assert not args.standalone
        assert not args.clear

    def test_standalone_success(self):
        actions = make_actions()

        assert agent_main.run_standalone(actions) == 0
        actions.setup.assert_called_once()
        actions.open_editor.assert_called_once()
        actions.open_browser.assert_called_once()

    def test_standalone_setup_failure_is_fatal(self):
        actions = make_actions(setup=LocalActionError("read-only desktop"))

        assert agent_main.run_standalone(actions) == 1
        actions.open_editor.assert_not_called()

    def test_standalone_editor_failure_is_not_fatal(self):
        actions = make_actions(open_editor=LocalActionError("VS Code not found"))

        assert agent_main.run_standalone(actions) == 0
        actions.open_browser.assert_called_once()

    def test_clear(self):
        assert agent_main.run_clear(make_actions()) == 0
        assert agent_main.run_clear(make_actions(clear=LocalActionError("busy"))) == 1

    @patch("agent.main.run_clear", return_value=0)
    def test_main_clear_mode(self, mock_clear, monkeypatch):
        monkeypatch.delenv("GRADEKEEPER_SERVER", raising=False)

        assert agent_main.main(["--clear"]) == 0
        mock_clear.assert_called_once()

    @patch("agent.main.run_standalone", return_value=0)
    def test_main_without_server_runs_standalone(self, mock_standalone, monkeypatch):
        monkeypatch.delenv("GRADEKEEPER_SERVER", raising=False)

        assert agent_main.main([]) == 0
        mock_standalone.assert_called_once()

    @patch("agent.main.run_agent", new_callable=AsyncMock, return_value=1)
    def test_main_client_mode_returns_agent_exit_code(self, mock_run_agent):
        assert agent_main.main(["--server", "ws://master:8080/ws", "--agent-id", "lab-1"]) == 1

        settings = mock_run_agent.call_args.args[0]
        assert settings.server_url == "ws://master:8080/ws"
        assert settings.agent_id == "lab-1"
