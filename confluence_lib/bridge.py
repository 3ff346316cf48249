"""HTTP/SSE bridge that runs every interaction in its own stdio worker.

- GET  /health     -> static identity + timestamp, never spawns a worker
- GET  /mcp/tools  -> worker answers one ``tools/list`` request
- POST /mcp/call   -> worker answers one ``{method, params}`` request
- GET  /sse        -> event stream of everything the worker writes
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Mapping

import anyio
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route
from starlette.types import Receive, Scope, Send

from confluence_lib.config import Settings, child_env
from confluence_lib.credentials import (
    AUTH_REQUIRED_MESSAGE,
    CREDENTIAL_HEADERS,
    UserConfig,
    optional_credentials,
    require_credentials,
)
from confluence_lib.errors import (
    BridgeError,
    CredentialsRequired,
    TransportError,
    WorkerFailureError,
    WorkerSpawnError,
    WorkerTimeoutError,
)
from confluence_lib.worker import Spawner, WorkerOutput, WorkerProcess, spawn_worker

LOGGER = logging.getLogger("confluence.bridge")

EventSink = Callable[[Any], Awaitable[None]]
Relay = Callable[[str, str], Awaitable[None]]

SERVICE_NAME = "confluence-mcp-server"
TOOLS_LIST_REQUEST = {"jsonrpc": "2.0", "id": 1, "method": "tools/list"}

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Content-Type-Options": "nosniff",
}


def format_sse(event: Any) -> bytes:
    return f"data: {json.dumps(event, ensure_ascii=False)}\n\n".encode("utf-8")


def stdout_event(line: str) -> Any:
    try:
        return json.loads(line)
    except json.JSONDecodeError:
        return {"type": "message", "content": line}


def decode_worker_output(output: WorkerOutput, *, failure: str, invalid: str) -> Any:
    """Turn a finished exchange into the relayed message or a bridge error."""

    text = output.stdout_text.strip()
    if output.returncode != 0 or not text:
        raise WorkerFailureError(failure, output.returncode, output.stderr_text)
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise TransportError(invalid) from exc


class WorkerExchange:
    """Spawn, feed, drain and reap one worker for a single request/response."""

    def __init__(self, settings: Settings, spawner: Spawner) -> None:
        self.settings = settings
        self.spawner = spawner

    def worker_env(self, credentials: UserConfig | None) -> Dict[str, str]:
        return child_env(credentials.as_env() if credentials else None)

    async def spawn(self, credentials: UserConfig | None) -> WorkerProcess:
        try:
            return await self.spawner(self.settings.worker_command, self.worker_env(credentials))
        except OSError as exc:
            LOGGER.error("Failed to spawn worker %s: %s", self.settings.worker_command, exc)
            raise WorkerSpawnError(str(exc)) from exc

    async def run(self, message: Mapping[str, Any], credentials: UserConfig | None) -> WorkerOutput:
        payload = (json.dumps(message, ensure_ascii=False) + "\n").encode("utf-8")
        worker = await self.spawn(credentials)
        LOGGER.info("Worker pid=%s handling %s", worker.pid, message.get("method"))
        timeout = self.settings.worker_timeout
        try:
            with anyio.fail_after(timeout):
                return await worker.communicate(payload)
        except TimeoutError as exc:
            LOGGER.warning("Worker pid=%s exceeded %ss; killing", worker.pid, timeout)
            raise WorkerTimeoutError(timeout or 0) from exc
        finally:
            await worker.terminate()


class WorkerEventStream(Response):
    """SSE response bound to one worker; client disconnect stops the worker."""

    media_type = "text/event-stream"

    def __init__(self, exchange: WorkerExchange, credentials: UserConfig | None) -> None:
        self.status_code = 200
        self.background = None
        self.init_headers(SSE_HEADERS)
        self.exchange = exchange
        self.credentials = credentials
        self.worker: WorkerProcess | None = None

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        disconnected = False

        await send({"type": "http.response.start", "status": self.status_code, "headers": self.raw_headers})

        async def emit(event: Any) -> None:
            await send({"type": "http.response.body", "body": format_sse(event), "more_body": True})

        async def relay(stream_name: str, text: str) -> None:
            if stream_name == "stdout":
                await emit(stdout_event(text))
            else:
                await emit({"type": "error", "content": text})

        try:
            async with anyio.create_task_group() as tg:

                async def watch_disconnect() -> None:
                    nonlocal disconnected
                    while True:
                        message = await receive()
                        if message["type"] == "http.disconnect":
                            disconnected = True
                            LOGGER.info("SSE client disconnected")
                            tg.cancel_scope.cancel()
                            return

                tg.start_soon(watch_disconnect)
                await emit({"type": "connected", "message": "MCP Server connected"})
                await self._run_worker(emit, relay)
                tg.cancel_scope.cancel()
        finally:
            if self.worker is not None:
                await self.worker.terminate()

        if not disconnected:
            await send({"type": "http.response.body", "body": b"", "more_body": False})

    async def _run_worker(self, emit: EventSink, relay: Relay) -> None:
        try:
            self.worker = await self.exchange.spawn(self.credentials)
        except WorkerSpawnError as exc:
            await emit({"type": "error", "content": f"Failed to start MCP server: {exc.detail}"})
            await emit({"type": "closed", "code": None})
            return
        LOGGER.info("SSE session bound to worker pid=%s", self.worker.pid)
        code = await self.worker.stream_events(relay)
        await emit({"type": "closed", "code": code})


def create_app(settings: Settings, spawner: Spawner | None = None) -> Starlette:
    exchange = WorkerExchange(settings, spawner or spawn_worker)
    defaults = settings.credentials()

    def credentials_for(request: Request) -> UserConfig | None:
        if settings.require_auth:
            return require_credentials(request.headers, defaults)
        return optional_credentials(request.headers, defaults)

    async def health(_: Request) -> Response:
        return JSONResponse(
            {
                "status": "ok",
                "service": SERVICE_NAME,
                "version": settings.version,
                "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            }
        )

    async def sse(request: Request) -> Response:
        return WorkerEventStream(exchange, credentials_for(request))

    async def call(request: Request) -> Response:
        try:
            body = await request.json()
        except ValueError:
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)
        if not isinstance(body, dict):
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)
        credentials = credentials_for(request)
        message = {
            "jsonrpc": "2.0",
            "id": int(time.time() * 1000),
            "method": body.get("method"),
            "params": body.get("params"),
        }
        output = await exchange.run(message, credentials)
        relayed = decode_worker_output(
            output,
            failure="MCP server error",
            invalid="Invalid JSON response from MCP server",
        )
        return JSONResponse(relayed)

    async def tools(request: Request) -> Response:
        output = await exchange.run(TOOLS_LIST_REQUEST, credentials_for(request))
        relayed = decode_worker_output(
            output,
            failure="Failed to get tools list",
            invalid="Invalid JSON response",
        )
        return JSONResponse(relayed)

    async def bridge_error(_: Request, exc: BridgeError) -> Response:
        LOGGER.warning("Bridge error: %s", exc)
        return JSONResponse(exc.payload(), status_code=exc.status_code)

    async def credentials_required(_: Request, exc: CredentialsRequired) -> Response:
        return JSONResponse(
            {"error": "Authentication required", "message": AUTH_REQUIRED_MESSAGE},
            status_code=CredentialsRequired.status_code,
        )

    routes = [
        Route("/health", health, methods=["GET"]),
        Route("/sse", sse, methods=["GET"]),
        Route("/mcp/call", call, methods=["POST"]),
        Route("/mcp/tools", tools, methods=["GET"]),
    ]
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Content-Type", "Authorization", "Cache-Control", *CREDENTIAL_HEADERS],
        )
    ]
    return Starlette(
        routes=routes,
        middleware=middleware,
        exception_handlers={
            BridgeError: bridge_error,
            CredentialsRequired: credentials_required,
        },
    )
