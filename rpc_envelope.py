"""
JSON-RPC 2.0 envelope decoding.

Both the session server and the widget client receive traffic that may or
may not be JSON-RPC. decode_message() sorts a raw payload into one of the
variants below so callers dispatch on the type instead of probing keys.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

JSONRPC_VERSION = "2.0"

RequestId = Union[str, int]


@dataclass
class Request:
    id: RequestId
    method: str
    params: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return make_request(self.id, self.method, self.params)


@dataclass
class Notification:
    method: str
    params: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return make_notification(self.method, self.params)


@dataclass
class Response:
    id: RequestId
    result: Any = None


@dataclass
class ErrorResponse:
    id: RequestId
    error: Dict[str, Any] = field(default_factory=dict)

    @property
    def code(self) -> Any:
        return self.error.get("code")

    @property
    def message(self) -> str:
        return str(self.error.get("message", ""))


@dataclass
class Unrecognized:
    """Anything that is not a JSON-RPC 2.0 message (foreign traffic, junk)."""

    data: Any = None


Message = Union[Request, Notification, Response, ErrorResponse, Unrecognized]


def _valid_id(value: Any) -> bool:
    # bool is an int subclass but never a valid id
    return isinstance(value, (str, int)) and not isinstance(value, bool)


def decode_message(data: Any) -> Message:
    """
    Classify a decoded payload.

    Args:
        data: A value already parsed from JSON (or received over a frame).

    Returns:
        Request, Notification, Response, ErrorResponse or Unrecognized.
    """
    if not isinstance(data, dict) or data.get("jsonrpc") != JSONRPC_VERSION:
        return Unrecognized(data)

    msg_id = data.get("id")
    method = data.get("method")
    params = data.get("params")
    if params is not None and not isinstance(params, dict):
        return Unrecognized(data)

    if isinstance(method, str):
        if msg_id is None:
            return Notification(method=method, params=params)
        if _valid_id(msg_id):
            return Request(id=msg_id, method=method, params=params)
        return Unrecognized(data)

    if not _valid_id(msg_id):
        return Unrecognized(data)
    if isinstance(data.get("error"), dict):
        return ErrorResponse(id=msg_id, error=data["error"])
    if "result" in data:
        return Response(id=msg_id, result=data["result"])
    return Unrecognized(data)


def parse_json(raw: Union[bytes, str]) -> Any:
    """Decode a raw body. Raises ValueError on malformed JSON."""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    return json.loads(raw)


def make_request(request_id: RequestId, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": request_id, "method": method}
    if params is not None:
        payload["params"] = params
    return payload


def make_notification(method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": method}
    if params is not None:
        payload["params"] = params
    return payload


def make_result(request_id: Optional[RequestId], result: Any) -> Dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def make_error(
    request_id: Optional[RequestId],
    code: int,
    message: str,
    data: Any = None,
) -> Dict[str, Any]:
    error: Dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error}
