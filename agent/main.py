# GradeKeeper Agent Main Entry Point
#
# Modes:
#   --server ws://host:8080/ws   connect to a coordinator and wait for commands
#   --standalone (or no server)  set up the workspace, editor and browser once
#   --clear                      remove the workspace and close editor/browser once
#
# Exit code 0 on graceful shutdown or a successful one-shot action, 1 on a
# local failure or when another instance already uses this agent id.

import argparse
import asyncio
import os
import platform
import signal
import sys

# Add project root to Python path for imports
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from agent.core.actions import LocalActionError, LocalActions  # noqa: E402
from agent.core.agent import Agent, logger  # noqa: E402
from shared.settings import AgentSettings  # noqa: E402


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="GradeKeeper Client")
    parser.add_argument(
        "--server", default=None, help="Master server WebSocket URL (e.g., ws://192.168.1.100:8080/ws)"
    )
    parser.add_argument("--standalone", action="store_true", help="Run in standalone mode")
    parser.add_argument(
        "--clear", action="store_true", help="Remove the workspace folder and close editor/browser"
    )
    parser.add_argument("--agent-id", default=None, help="Override the agent id (default: <os>-<hostname>)")
    parser.add_argument("--folder", default=None, help="Workspace folder name on the desktop")
    return parser.parse_args(argv)


def run_standalone(actions: LocalActions) -> int:
    """Set up the workspace, then open the editor and the browser. Only setup failures are fatal."""
    try:
        workspace = actions.setup()
        print(f"{actions.folder_name} folder created successfully: {workspace}")
    except LocalActionError as e:
        print(f"Error: {e}")
        return 1

    for label, action in (("VS Code", actions.open_editor), ("Browser", actions.open_browser)):
        try:
            action()
            print(f"{label} opened successfully!")
        except LocalActionError as e:
            print(f"Error: {e}")

    print("All tasks completed!")
    return 0


def run_clear(actions: LocalActions) -> int:
    try:
        actions.clear()
    except LocalActionError as e:
        print(f"Error: {e}")
        return 1
    print("Environment cleared successfully!")
    return 0


async def run_agent(settings: AgentSettings, actions: LocalActions) -> int:
    agent = Agent(settings, actions)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, agent.request_shutdown)
        except (NotImplementedError, RuntimeError):
            # Windows event loops: Ctrl+C surfaces as KeyboardInterrupt instead
            pass

    return await agent.run()


def main(argv=None) -> int:
    args = parse_args(argv)
    settings = AgentSettings.from_env(
        server_url=args.server, agent_id=args.agent_id, folder_name=args.folder
    )
    actions = LocalActions(folder_name=settings.folder_name)

    print(f"GradeKeeper Client ({platform.system()}/{platform.machine()})")

    if args.clear:
        return run_clear(actions)

    if args.standalone or not settings.server_url:
        print("Running in standalone mode...")
        return run_standalone(actions)

    print(f"Running in client mode, connecting to: {settings.server_url}")
    try:
        return asyncio.run(run_agent(settings, actions))
    except KeyboardInterrupt:
        logger.info("Interrupt received, exiting...")
        return 0


if __name__ == "__main__":
    sys.exit(main())
