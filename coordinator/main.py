# GradeKeeper Coordinator Main Entry Point
#
# Starts the web server (dashboard, REST API and WebSocket endpoint) together
# with the heartbeat monitor, and clears agent history on graceful shutdown.

import argparse
import asyncio
import contextlib
import os
import sys

import uvicorn

# Add project root to Python path for imports
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from coordinator.core.coordinator import Coordinator  # noqa: E402
from coordinator.web.interface import WebInterface  # noqa: E402
from shared.settings import CoordinatorSettings  # noqa: E402


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="GradeKeeper Master - coordinates agents from a central dashboard"
    )
    parser.add_argument("--host", default=None, help="Host to bind web server to (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=None, help="Web server port (default: 8080)")
    parser.add_argument(
        "--storage-file", default=None, help="Agent snapshot file (default: gradekeeper-clients.json)"
    )
    parser.add_argument(
        "--dashboard-secret", default=None, help="Dashboard secret (default: random per run)"
    )
    return parser.parse_args(argv)


async def main(argv=None):
    """
    Run the coordinator until the web server stops (Ctrl+C / SIGTERM).

    Background tasks:
    - Heartbeat monitor (every heartbeat interval, 30 seconds by default)
    """
    args = parse_args(argv)
    settings = CoordinatorSettings.from_env(
        host=args.host,
        port=args.port,
        storage_file=args.storage_file,
        dashboard_secret=args.dashboard_secret,
    )

    coordinator = Coordinator(settings)
    await coordinator.start()
    web = WebInterface(coordinator)

    config = uvicorn.Config(
        app=web.app,
        host=settings.host,
        port=settings.port,
        log_level="info",
        access_log=False,  # Disable access logs for cleaner output
    )
    server = uvicorn.Server(config)

    print("🎓 GradeKeeper Master Server starting...")
    print(f"📊 Dashboard: http://localhost:{settings.port}")
    print(f"🔌 WebSocket: ws://localhost:{settings.port}/ws")
    print(f"🔐 Dashboard Secret: {settings.dashboard_secret}")

    monitor_task = asyncio.create_task(coordinator.monitor.run())
    try:
        await server.serve()
    finally:
        print("\n🛑 Shutdown signal received...")
        monitor_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await monitor_task
        await coordinator.shutdown()
        print("👋 GradeKeeper Master Server stopped gracefully")


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


# Entry point - start GradeKeeper coordinator
if __name__ == "__main__":
    run()
