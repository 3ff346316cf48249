"""Validates ``tools/call`` requests against the registry and routes them.

Every failure leaving :meth:`Dispatcher.dispatch` is a :class:`ProtocolError`;
content-service and unexpected errors are folded into ``InternalError``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Sequence

from mcp import types

from confluence_lib import registry
from confluence_lib.content_service import ConfluenceClient
from confluence_lib.errors import ContentServiceError, ProtocolError
from confluence_lib.operations import OPERATIONS, Operation

LOGGER = logging.getLogger("confluence.dispatcher")

ClientFactory = Callable[[], ConfluenceClient]


@dataclass(frozen=True)
class ToolCallRequest:
    name: str
    arguments: Mapping[str, Any] | None = None

    @classmethod
    def from_params(cls, params: Any) -> ToolCallRequest:
        if not isinstance(params, Mapping):
            raise ProtocolError.invalid_params("tools/call params must be an object")
        name = params.get("name")
        if not isinstance(name, str) or not name:
            raise ProtocolError.invalid_params("tools/call requires a tool name")
        arguments = params.get("arguments")
        if arguments is not None and not isinstance(arguments, Mapping):
            raise ProtocolError.invalid_params("Tool arguments must be an object")
        return cls(name=name, arguments=arguments)


class Dispatcher:
    def __init__(
        self,
        client_factory: ClientFactory,
        *,
        tools: Sequence[registry.ToolDescriptor] | None = None,
        operations: Mapping[str, Operation] | None = None,
    ) -> None:
        self._client_factory = client_factory
        self._tools = tuple(tools if tools is not None else registry.list_tools())
        self._by_name = {tool.name: tool for tool in self._tools}
        self._operations = dict(operations if operations is not None else OPERATIONS)

    def list_tools(self) -> types.ListToolsResult:
        return types.ListToolsResult(tools=[tool.to_tool() for tool in self._tools])

    def bind_arguments(self, request: ToolCallRequest) -> Dict[str, Any]:
        """Validate ``request`` and return the keyword arguments for its operation."""

        if request.arguments is None:
            raise ProtocolError.invalid_params("Missing required arguments")
        descriptor = self._by_name.get(request.name)
        if descriptor is None or request.name not in self._operations:
            raise ProtocolError.method_not_found(f"Unknown tool: {request.name}")

        missing = [name for name in descriptor.required if request.arguments.get(name) is None]
        if missing:
            raise ProtocolError.invalid_params(
                f"Tool {request.name} is missing required arguments: {', '.join(missing)}"
            )

        bound: Dict[str, Any] = {}
        for item in descriptor.fields:
            value = request.arguments.get(item.name)
            if value is None:
                bound[item.name] = item.default if item.has_default else None
                continue
            if not item.accepts(value):
                raise ProtocolError.invalid_params(
                    f"Argument '{item.name}' of tool {request.name} must be a {item.type}"
                )
            bound[item.name] = value
        return bound

    async def dispatch(self, request: ToolCallRequest) -> types.CallToolResult:
        try:
            arguments = self.bind_arguments(request)
        except ProtocolError as exc:
            LOGGER.error("Rejected call to %s: %s", request.name, exc.message)
            raise

        operation = self._operations[request.name]
        try:
            return await operation(self._client_factory(), **arguments)
        except ProtocolError as exc:
            LOGGER.error("Tool %s failed: %s", request.name, exc.message)
            raise
        except ContentServiceError as exc:
            LOGGER.error("Tool %s failed: %s", request.name, exc)
            raise ProtocolError.internal_error(f"Error executing tool {request.name}: {exc}") from exc
        except Exception as exc:
            LOGGER.exception("Tool %s raised unexpectedly", request.name)
            raise ProtocolError.internal_error(f"Error executing tool {request.name}: {exc}") from exc
