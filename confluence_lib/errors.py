from __future__ import annotations

from enum import Enum

from mcp import types
from mcp.shared.exceptions import McpError


class ErrorKind(str, Enum):
    INVALID_PARAMS = "InvalidParams"
    METHOD_NOT_FOUND = "MethodNotFound"
    INTERNAL_ERROR = "InternalError"


_KIND_CODES = {
    ErrorKind.INVALID_PARAMS: types.INVALID_PARAMS,
    ErrorKind.METHOD_NOT_FOUND: types.METHOD_NOT_FOUND,
    ErrorKind.INTERNAL_ERROR: types.INTERNAL_ERROR,
}


class ProtocolError(McpError):
    """Terminal failure of a single tool call, reported as a JSON-RPC error."""

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(types.ErrorData(code=_KIND_CODES[kind], message=message))
        self.kind = kind
        self.message = message

    @property
    def code(self) -> int:
        return self.error.code

    @classmethod
    def invalid_params(cls, message: str) -> ProtocolError:
        return cls(ErrorKind.INVALID_PARAMS, message)

    @classmethod
    def method_not_found(cls, message: str) -> ProtocolError:
        return cls(ErrorKind.METHOD_NOT_FOUND, message)

    @classmethod
    def internal_error(cls, message: str) -> ProtocolError:
        return cls(ErrorKind.INTERNAL_ERROR, message)


class ContentServiceError(RuntimeError):
    """Raised by the Confluence client; ``status`` is None for transport failures."""

    def __init__(self, status: int | None, message: str) -> None:
        super().__init__(message)
        self.status = status
        self.message = message


class BridgeError(RuntimeError):
    status_code = 500

    def payload(self) -> dict:
        return {"error": str(self)}


class TransportError(BridgeError):
    """The worker produced bytes the bridge could not decode as one message."""


class WorkerFailureError(BridgeError):
    def __init__(self, message: str, returncode: int | None, stderr: str) -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr

    def payload(self) -> dict:
        return {"error": str(self), "code": self.returncode, "stderr": self.stderr}


class WorkerTimeoutError(BridgeError):
    status_code = 504

    def __init__(self, timeout: float) -> None:
        super().__init__("MCP server timed out")
        self.timeout = timeout

    def payload(self) -> dict:
        return {"error": str(self), "timeout": self.timeout}


class WorkerSpawnError(BridgeError):
    def __init__(self, detail: str) -> None:
        super().__init__("Internal server error")
        self.detail = detail

    def payload(self) -> dict:
        return {"error": str(self), "message": self.detail}


class CredentialsRequired(RuntimeError):
    status_code = 401
