"""Line-delimited JSON-RPC session serving ``tools/list`` and ``tools/call``.

One request per line in, exactly one response per line out. Notifications
(messages without an ``id``) are accepted and produce no output.
"""

from __future__ import annotations

import json
import logging
import sys
from typing import Any, AsyncIterable, Awaitable, Callable, Dict

import anyio
from mcp import types
from pydantic import BaseModel

from confluence_lib.dispatcher import Dispatcher, ToolCallRequest
from confluence_lib.errors import ProtocolError

LOGGER = logging.getLogger("confluence.stdio")

LineWriter = Callable[[str], Awaitable[None]]


def encode_message(message: Dict[str, Any]) -> str:
    return json.dumps(message, ensure_ascii=False, separators=(",", ":"))


def result_message(request_id: Any, result: BaseModel) -> Dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "result": result.model_dump(by_alias=True, mode="json", exclude_none=True),
    }


def error_message(request_id: Any, code: int, message: str) -> Dict[str, Any]:
    error = types.ErrorData(code=code, message=message)
    return {"jsonrpc": "2.0", "id": request_id, "error": error.model_dump(mode="json", exclude_none=True)}


async def handle_message(dispatcher: Dispatcher, payload: Any) -> Dict[str, Any] | None:
    if not isinstance(payload, dict) or not isinstance(payload.get("method"), str):
        request_id = payload.get("id") if isinstance(payload, dict) else None
        return error_message(request_id, types.INVALID_REQUEST, "Invalid Request")

    method = payload["method"]
    if "id" not in payload:
        LOGGER.debug("Ignoring notification %s", method)
        return None
    request_id = payload["id"]

    try:
        if method == "tools/list":
            return result_message(request_id, dispatcher.list_tools())
        if method == "tools/call":
            request = ToolCallRequest.from_params(payload.get("params"))
            return result_message(request_id, await dispatcher.dispatch(request))
        raise ProtocolError.method_not_found(f"Method not found: {method}")
    except ProtocolError as exc:
        return error_message(request_id, exc.code, exc.message)


async def handle_line(dispatcher: Dispatcher, line: str) -> Dict[str, Any] | None:
    try:
        payload = json.loads(line)
    except json.JSONDecodeError as exc:
        LOGGER.warning("Discarding unparseable message: %s", exc)
        return error_message(None, types.PARSE_ERROR, f"Parse error: {exc}")
    return await handle_message(dispatcher, payload)


async def serve(dispatcher: Dispatcher, lines: AsyncIterable[str], write_line: LineWriter) -> int:
    """Answer every request read from ``lines`` until EOF; returns the number handled."""

    handled = 0
    async for raw_line in lines:
        line = raw_line.strip()
        if not line:
            continue
        response = await handle_line(dispatcher, line)
        if response is None:
            continue
        await write_line(encode_message(response))
        handled += 1
    LOGGER.debug("Input closed after %d messages", handled)
    return handled


async def serve_stdio(dispatcher: Dispatcher) -> int:
    stdin = anyio.wrap_file(sys.stdin)
    stdout = anyio.wrap_file(sys.stdout)

    async def write_line(text: str) -> None:
        await stdout.write(text + "\n")
        await stdout.flush()

    return await serve(dispatcher, stdin, write_line)
