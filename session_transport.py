"""
Streamable HTTP transport multiplexer.

Routes inbound JSON-RPC messages to per-session connection contexts:

  POST   deliver one message; an initialize request without a session id
         opens a new session
  GET    attach the server -> client push stream of a known session
  DELETE terminate a known session

Each session gets its own ConnectionContext, which owns a fresh protocol
handler, serializes that session's messages, and buffers server-initiated
messages until a GET stream drains them.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, AsyncIterator, Callable, Dict, List, Optional

from mcp.types import INTERNAL_ERROR, InitializeRequest
from pydantic import ValidationError as PydanticValidationError

from event_log import EventLog
from rpc_envelope import Request, Unrecognized, decode_message, make_error, parse_json
from rpc_errors import (
    InvalidMessageError,
    InvalidSessionError,
    MalformedMessageError,
    SessionNotFoundError,
    StreamConflictError,
)
from session_registry import Session, SessionRegistry

MCP_SESSION_ID_HEADER = "mcp-session-id"
PUSH_QUEUE_LIMIT = 100

_CLOSED = object()

# handler_factory(session_id, push) -> handler with `async handle(message)`
HandlerFactory = Callable[[str, Callable[[Dict[str, Any]], None]], Any]


@dataclass
class TransportReply:
    status: int
    body: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)


def is_initialize_request(body: Any) -> bool:
    """True for a well-formed `initialize` request (with id, protocol version, capabilities, clientInfo)."""
    message = decode_message(body)
    if not isinstance(message, Request) or message.method != "initialize":
        return False
    try:
        InitializeRequest.model_validate({"method": message.method, "params": message.params})
    except PydanticValidationError:
        return False
    return True


def format_sse(message: Dict[str, Any]) -> str:
    data = json.dumps(message, ensure_ascii=False)
    return f"event: message\ndata: {data}\n\n"


class ConnectionContext:
    """Per-session connection state. Everything here is private to one session."""

    def __init__(
        self,
        session_id: str,
        handler_factory: HandlerFactory,
        on_close: Optional[Callable[["ConnectionContext"], None]] = None,
        event_log: Optional[EventLog] = None,
        route: str = "",
        queue_limit: int = PUSH_QUEUE_LIMIT,
    ):
        self.session_id = session_id
        self.route = route
        self.event_log = event_log
        self.lock = asyncio.Lock()
        self.closed = False
        self.stream_attached = False
        self.message_count = 0
        self.dropped_count = 0
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_limit)
        self._close_callbacks: List[Callable[["ConnectionContext"], None]] = []
        if on_close:
            self._close_callbacks.append(on_close)
        self.handler = handler_factory(session_id, self.push)

    def describe(self) -> Dict[str, Any]:
        return {
            "route": self.route,
            "messages": self.message_count,
            "initialized": bool(getattr(self.handler, "initialized", False)),
            "stream_attached": self.stream_attached,
            "queued": self._queue.qsize(),
        }

    def on_close(self, callback: Callable[["ConnectionContext"], None]) -> None:
        self._close_callbacks.append(callback)

    async def deliver(self, message: Any) -> Optional[Dict[str, Any]]:
        """Hand one decoded message to the handler; returns the response for requests."""
        async with self.lock:
            self.message_count += 1
            try:
                return await self.handler.handle(message)
            except Exception as e:
                print(f"[Session] {self.session_id[:8]} handler error: {e}")
                if isinstance(message, Request):
                    return make_error(message.id, INTERNAL_ERROR, f"Internal error: {e}")
                return None

    def _enqueue(self, item: Any) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped_count += 1
            print(f"[Session] {self.session_id[:8]} push queue full, dropped oldest message")
        self._queue.put_nowait(item)

    def push(self, message: Dict[str, Any]) -> bool:
        """Queue a server -> client message for the GET stream."""
        if self.closed:
            return False
        self._enqueue(message)
        if self.event_log:
            self.event_log.server_message(self.session_id, message, route=self.route)
        return True

    def attach_stream(self) -> AsyncGenerator[Dict[str, Any], None]:
        if self.stream_attached:
            raise StreamConflictError("Conflict: only one push stream is allowed per session", self.session_id)
        self.stream_attached = True
        return self._drain()

    async def _drain(self) -> AsyncGenerator[Dict[str, Any], None]:
        try:
            while True:
                item = await self._queue.get()
                if item is _CLOSED:
                    break
                yield item
        finally:
            self.stream_attached = False

    def close(self) -> bool:
        if self.closed:
            return False
        self.closed = True
        self._enqueue(_CLOSED)
        for callback in list(self._close_callbacks):
            callback(self)
        return True


class SessionTransport:
    """
    Multiplexes one HTTP route over many sessions.

    Args:
        handler_factory: Builds a fresh protocol handler for each new session.
        registry: Session registry; a private one is created when omitted.
        event_log: Sink for lifecycle and traffic records.
        name: Route label used in logs (e.g. "/mcp").
    """

    def __init__(
        self,
        handler_factory: HandlerFactory,
        registry: Optional[SessionRegistry] = None,
        event_log: Optional[EventLog] = None,
        name: str = "/mcp",
    ):
        self.handler_factory = handler_factory
        self.registry = registry if registry is not None else SessionRegistry()
        self.event_log = event_log or EventLog()
        self.name = name

    def _build_context(self, session_id: str) -> ConnectionContext:
        return ConnectionContext(
            session_id,
            self.handler_factory,
            on_close=self._release,
            event_log=self.event_log,
            route=self.name,
        )

    def _release(self, context: ConnectionContext) -> None:
        if self.registry.remove(context.session_id):
            self.event_log.session_closed(context.session_id, len(self.registry), route=self.name)

    def _parse(self, raw_body: Any, session_id: Optional[str]) -> Any:
        if not isinstance(raw_body, (bytes, str)):
            return raw_body
        try:
            return parse_json(raw_body)
        except ValueError:
            raise MalformedMessageError("Parse error: request body is not valid JSON", session_id)

    def _require(self, session_id: Optional[str], method: str) -> Session:
        session = self.registry.get(session_id)
        if session is None:
            self.event_log.session_request_failed(method, session_id, len(self.registry), route=self.name)
            raise SessionNotFoundError("Session not found", session_id)
        return session

    async def handle_post(self, session_id: Optional[str], raw_body: Any) -> TransportReply:
        body = self._parse(raw_body, session_id)
        self.event_log.client_message(session_id, body, route=self.name)

        session = self.registry.get(session_id)
        if session is None:
            if session_id or not is_initialize_request(body):
                raise InvalidSessionError("Bad Request: No valid session ID provided", session_id)
            session = self.registry.open(self._build_context)
            self.event_log.session_initialized(session.session_id, len(self.registry), route=self.name)

        headers = {MCP_SESSION_ID_HEADER: session.session_id}
        message = decode_message(body)
        if isinstance(message, Unrecognized):
            raise InvalidMessageError("Invalid Request: body is not a JSON-RPC 2.0 message", session.session_id)

        response = await session.context.deliver(message)
        if response is None:
            return TransportReply(202, None, headers)
        self.event_log.server_message(session.session_id, response, route=self.name)
        return TransportReply(200, response, headers)

    def open_stream(self, session_id: Optional[str]) -> AsyncIterator[str]:
        """Attach the push stream of a session; yields SSE-framed events until the session closes."""
        session = self._require(session_id, "GET")
        messages = session.context.attach_stream()

        async def _events() -> AsyncIterator[str]:
            try:
                async for message in messages:
                    yield format_sse(message)
            finally:
                await messages.aclose()
                session.context.stream_attached = False

        return _events()

    async def handle_delete(self, session_id: Optional[str]) -> TransportReply:
        session = self._require(session_id, "DELETE")
        session.context.close()
        return TransportReply(200, None, {MCP_SESSION_ID_HEADER: session.session_id})

    def close_all(self) -> int:
        closed = 0
        for session_id in self.registry.ids():
            session = self.registry.get(session_id)
            if session and session.context.close():
                closed += 1
        return closed

    def __len__(self) -> int:
        return len(self.registry)
