"""
HTTP control surface through which a host delivers editor events and invokes commands.

Built on Starlette + uvicorn and run in a background daemon thread.
"""

import asyncio
import logging
import threading
from concurrent.futures import Future
from typing import Any

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from psalm_supervisor.events import ActiveEditorChanged, CommandInvoked, ConfigFileEvent
from psalm_supervisor.logging_service import LoggingService
from psalm_supervisor.notifications import Notifier, StatusBar
from psalm_supervisor.router import EventRouter
from psalm_supervisor.supervisor import ServerSupervisor
from psalm_supervisor.watch import WatchEventKind

log = logging.getLogger(__name__)

TRANSITION_WAIT_SECONDS = 60.0


def _wait_for(result: Any) -> Any:
    if isinstance(result, Future):
        return result.result(TRANSITION_WAIT_SECONDS)
    return result


class ControlServer:
    def __init__(
        self,
        supervisor: ServerSupervisor,
        router: EventRouter,
        logging_service: LoggingService,
        notifier: Notifier,
        status_bar: StatusBar,
        host: str,
        port: int,
    ) -> None:
        self._supervisor = supervisor
        self._router = router
        self._logging = logging_service
        self._notifier = notifier
        self._status_bar = status_bar
        self._host = host
        self._port = port
        self._uvicorn_server: uvicorn.Server | None = None
        self._thread: threading.Thread | None = None

    def create_app(self) -> Starlette:
        routes = [
            Route("/status", self._handle_status, methods=["GET"]),
            Route("/output", self._handle_output, methods=["GET"]),
            Route("/notifications", self._handle_notifications, methods=["GET"]),
            Route("/commands/{name}", self._handle_command, methods=["POST"]),
            Route("/events/active-editor", self._handle_active_editor, methods=["POST"]),
            Route("/events/config-file", self._handle_config_file, methods=["POST"]),
        ]
        return Starlette(routes=routes)

    async def _handle_status(self, request: Request) -> JSONResponse:
        context = self._router.context
        return JSONResponse(
            {
                "server": self._supervisor.describe(),
                "status_bar": self._status_bar.to_dict(),
                "workspace": {
                    "workspace_root": context.workspace_root if context else None,
                    "config_search_patterns": list(context.config_search_patterns) if context else [],
                },
                "commands": self._router.command_names(),
            }
        )

    async def _handle_output(self, request: Request) -> JSONResponse:
        try:
            num_lines = int(request.query_params.get("lines", "200"))
        except ValueError:
            return JSONResponse({"error": "Invalid 'lines' parameter"}, status_code=400)
        return JSONResponse({"lines": self._logging.lines(num_lines)})

    async def _handle_notifications(self, request: Request) -> JSONResponse:
        return JSONResponse([m.to_dict() for m in self._notifier.messages()])

    async def _handle_command(self, request: Request) -> JSONResponse:
        name = request.path_params["name"]
        if name not in self._router.command_names():
            return JSONResponse({"error": f"Unknown command: {name}"}, status_code=404)
        result = await asyncio.to_thread(lambda: _wait_for(self._router.handle(CommandInvoked(name))))
        body: dict[str, Any] = {"status": "ok", "command": name, "state": self._supervisor.state.value}
        if isinstance(result, list):
            body["lines"] = result
        elif isinstance(result, str):
            body["report"] = result
        return JSONResponse(body)

    async def _handle_active_editor(self, request: Request) -> JSONResponse:
        body = await self._json_body(request)
        if body is None:
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)
        path = body.get("path")
        if path is not None and not isinstance(path, str):
            return JSONResponse({"error": "'path' must be a string or null"}, status_code=400)
        await asyncio.to_thread(lambda: _wait_for(self._router.handle(ActiveEditorChanged(path))))
        return JSONResponse({"status": "ok", "server": self._supervisor.describe()})

    async def _handle_config_file(self, request: Request) -> JSONResponse:
        body = await self._json_body(request)
        if body is None:
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)
        path = body.get("path")
        try:
            kind = WatchEventKind(body.get("kind"))
        except ValueError:
            return JSONResponse({"error": "'kind' must be one of changed, created, deleted"}, status_code=400)
        if not isinstance(path, str) or not path:
            return JSONResponse({"error": "Missing required field: path"}, status_code=400)
        await asyncio.to_thread(lambda: _wait_for(self._router.handle(ConfigFileEvent(kind=kind, path=path))))
        return JSONResponse({"status": "ok", "server": self._supervisor.describe()})

    @staticmethod
    async def _json_body(request: Request) -> dict[str, Any] | None:
        try:
            body = await request.json()
        except ValueError:
            return None
        return body if isinstance(body, dict) else None

    def start(self) -> None:
        """Start the Starlette/uvicorn server in a background thread."""
        app = self.create_app()
        config = uvicorn.Config(app, host=self._host, port=self._port, log_level="warning")
        self._uvicorn_server = uvicorn.Server(config)
        self._thread = threading.Thread(target=self._uvicorn_server.run, name="psalm-control-server", daemon=True)
        self._thread.start()
        log.info("Control server running on http://%s:%d/", self._host, self._port)

    def stop(self) -> None:
        if self._uvicorn_server:
            self._uvicorn_server.should_exit = True
            self._uvicorn_server = None
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None
