"""
Error taxonomy shared by the session server and the widget client.

Server-side errors carry the HTTP status and JSON-RPC code the transport
answers with. Client-side errors are what a widget sees when awaiting a
request future.
"""

from typing import Any, Dict, Optional

from mcp.types import INTERNAL_ERROR, INVALID_PARAMS, INVALID_REQUEST, PARSE_ERROR


class McpSessionError(Exception):
    """Base for errors detected at the HTTP session boundary."""

    status_code: int = 400
    code: int = INVALID_REQUEST

    def __init__(self, message: str, session_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.session_id = session_id

    def to_body(self) -> Dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": None,
            "error": {"code": self.code, "message": self.message},
        }


class InvalidSessionError(McpSessionError):
    """POST without a usable session: unknown id, or no id and not an initialize request."""

    status_code = 400
    code = INVALID_REQUEST


class MalformedMessageError(McpSessionError):
    status_code = 400
    code = PARSE_ERROR


class InvalidMessageError(McpSessionError):
    """Body parsed as JSON but is not a JSON-RPC envelope."""

    status_code = 400
    code = INVALID_REQUEST


class SessionNotFoundError(McpSessionError):
    """GET/DELETE against a missing or unknown session id."""

    status_code = 404
    code = INVALID_REQUEST


class StreamConflictError(McpSessionError):
    status_code = 409
    code = INVALID_REQUEST


class ValidationError(ValueError):
    """Tool input outside its declared bounds."""

    code = INVALID_PARAMS


class McpUiClientError(Exception):
    """Base for errors surfaced to callers of the widget client."""


class RequestTimeoutError(McpUiClientError):
    def __init__(self, method: str, timeout: float, request_id: Any = None):
        super().__init__(f"Request {method} timed out after {timeout}s")
        self.method = method
        self.timeout = timeout
        self.request_id = request_id


class RemoteError(McpUiClientError):
    """The peer answered with a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(f"{message} (code: {code})")
        self.code = code
        self.remote_message = message
        self.data = data

    @classmethod
    def from_error(cls, error: Dict[str, Any]) -> "RemoteError":
        code = error.get("code", INTERNAL_ERROR)
        if not isinstance(code, int):
            code = INTERNAL_ERROR
        return cls(code, str(error.get("message", "Unknown error")), error.get("data"))


class ClientDestroyedError(McpUiClientError):
    def __init__(self, message: str = "Client destroyed"):
        super().__init__(message)
