# FastAPI web interface imports
import logging
from pathlib import Path

from fastapi import FastAPI, HTTPException, Request, WebSocket
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.templating import Jinja2Templates

from coordinator.core.coordinator import Coordinator
from shared.config import AppConfig
from shared.models import Command

# Configure logging for web interface
logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"


class WebInterface:
    """
    HTTP and WebSocket surface of the coordinator.

    Routes:
    - GET /: dashboard page
    - GET /ws: WebSocket for agents (X-Agent-Id header) and dashboards (?dashboard=<secret>)
    - POST /api/command: dispatch {action, target} to agents
    - GET /api/clients: agent records sorted by id
    - GET/PUT /api/config: browser tabs pushed to agents
    - GET /health: liveness of the coordinator itself
    """

    def __init__(self, coordinator: Coordinator):
        """
        Args:
            coordinator (Coordinator): The coordinator instance to expose
        """
        self.coordinator = coordinator
        self.app = FastAPI(title="GradeKeeper Master")
        self.templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

        self._setup_routes()

    def _setup_routes(self):
        @self.app.get("/", response_class=HTMLResponse)
        async def dashboard(request: Request):
            return self.templates.TemplateResponse(
                request,
                "dashboard.html",
                {
                    "title": "GradeKeeper Dashboard",
                    "dashboard_secret": self.coordinator.dashboard_secret,
                },
            )

        @self.app.post("/api/command")
        async def send_command(command: Command):
            """
            Dispatch a command. The response only acknowledges the attempt:
            a command for an offline agent is still "sent".
            """
            await self.coordinator.send_command(command)
            return {"status": "sent"}

        @self.app.get("/api/clients")
        async def get_clients():
            records = await self.coordinator.registry.snapshot()
            return JSONResponse([record.model_dump(mode="json", by_alias=True) for record in records])

        @self.app.get("/api/config")
        async def get_config():
            return self.coordinator.config.model_dump()

        @self.app.put("/api/config")
        async def update_config(config: AppConfig):
            try:
                updated = await self.coordinator.update_config(config)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            return updated.model_dump()

        @self.app.get("/health")
        async def health():
            return {
                "status": "healthy",
                "connectedAgents": self.coordinator.registry.live_count(),
                "dashboards": self.coordinator.dashboards.count(),
            }

        @self.app.websocket("/ws")
        async def websocket_endpoint(websocket: WebSocket):
            await self.coordinator.router.handle(websocket)
