"""
Guest side of the MCP Apps (SEP-1865) channel: JSON-RPC 2.0 over a frame port.

One McpUiClient per widget. It correlates outbound requests with their
responses (with a per-request timeout), fans inbound notifications out to
subscribers, and caches the host context and the latest tool input/result.

Flow:
  1. widget calls initialize(): sends `ui/initialize`
  2. host answers with protocolVersion + hostContext
  3. client sends `ui/notifications/initialized`
  4. host pushes `ui/notifications/tool-input` / `tool-result`
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from mcp_apps import UI_METHODS
from rpc_envelope import (
    ErrorResponse,
    Notification,
    Request,
    Response,
    Unrecognized,
    decode_message,
    make_notification,
    make_request,
)
from rpc_errors import ClientDestroyedError, RemoteError, RequestTimeoutError
from widget_client.frame_channel import FramePort

UI_PROTOCOL_VERSION = "2025-01-01"
DEFAULT_TIMEOUT = 30.0

NotificationHandler = Callable[[Any], None]


class ClientState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    INITIALIZED = "initialized"
    FAILED = "failed"


@dataclass
class PendingRequest:
    id: int
    method: str
    future: asyncio.Future
    timer: asyncio.TimerHandle


class Subscription:
    """Handle for one notification handler. Call it (or leave its `with` block) to unsubscribe."""

    def __init__(self, registry: Dict[str, List["Subscription"]], method: str, handler: NotificationHandler):
        self._registry = registry
        self.method = method
        self.handler = handler
        self.active = True

    def dispose(self) -> None:
        if not self.active:
            return
        self.active = False
        entries = self._registry.get(self.method)
        if entries and self in entries:
            entries.remove(self)
            if not entries:
                del self._registry[self.method]

    def __call__(self) -> None:
        self.dispose()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.dispose()


class McpUiClient:
    """
    Request correlator for a widget embedded in an MCP Apps host.

    Args:
        port: Frame port connected to the host.
        client_name: Reported in `ui/initialize` clientInfo.
        client_version: Reported in `ui/initialize` clientInfo.
        timeout: Seconds before a pending request fails with RequestTimeoutError.
        debug: Print traffic with a `[McpUiClient]` prefix.
    """

    def __init__(
        self,
        port: FramePort,
        client_name: str = "mcp-ui-client",
        client_version: str = "1.0.0",
        timeout: float = DEFAULT_TIMEOUT,
        debug: bool = False,
    ):
        self.port = port
        self.client_name = client_name
        self.client_version = client_version
        self.timeout = timeout
        self.debug = debug

        self.state = ClientState.UNINITIALIZED
        self.destroyed = False
        self.host_context: Optional[Dict[str, Any]] = None
        self.tool_arguments: Optional[Dict[str, Any]] = None
        self.tool_result: Optional[Dict[str, Any]] = None

        self._request_id = 0
        self._pending: Dict[int, PendingRequest] = {}
        self._handlers: Dict[str, List[Subscription]] = {}
        self._init_task: Optional[asyncio.Future] = None

        self.port.add_listener(self._on_message)
        self._log("client created")

    # --- lifecycle ---

    async def initialize(self) -> Dict[str, Any]:
        """Handshake with the host. Repeat calls share the first attempt's outcome."""
        if self._init_task is None:
            if self.destroyed:
                raise ClientDestroyedError()
            self.state = ClientState.INITIALIZING
            self._init_task = asyncio.ensure_future(self._initialize())
        return await asyncio.shield(self._init_task)

    async def _initialize(self) -> Dict[str, Any]:
        self._log("initializing connection with host")
        try:
            result = await self.send_request(
                UI_METHODS["INITIALIZE"],
                {
                    "protocolVersion": UI_PROTOCOL_VERSION,
                    "clientInfo": {"name": self.client_name, "version": self.client_version},
                    "capabilities": {},
                },
            )
        except Exception:
            self.state = ClientState.FAILED
            raise
        if not isinstance(result, dict):
            result = {}
        host_context = result.get("hostContext")
        self.host_context = dict(host_context) if isinstance(host_context, dict) else None
        self.state = ClientState.INITIALIZED
        self._log("initialized:", result)
        self.send_notification(UI_METHODS["INITIALIZED"], {})
        return result

    def is_initialized(self) -> bool:
        return self.state is ClientState.INITIALIZED

    def destroy(self) -> None:
        if self.destroyed:
            return
        self.destroyed = True
        self.port.remove_listener(self._on_message)
        pending = list(self._pending.values())
        self._pending.clear()
        for entry in pending:
            entry.timer.cancel()
            if not entry.future.done():
                entry.future.set_exception(ClientDestroyedError())
        self._handlers.clear()
        self._log(f"client destroyed ({len(pending)} pending rejected)")

    # --- cached state ---

    def get_host_context(self) -> Optional[Dict[str, Any]]:
        return self.host_context

    def get_tool_arguments(self) -> Optional[Dict[str, Any]]:
        return self.tool_arguments

    def get_tool_result(self) -> Optional[Dict[str, Any]]:
        return self.tool_result

    # --- outbound ---

    def send_request(self, method: str, params: Optional[Dict[str, Any]] = None) -> asyncio.Future:
        """
        Post a request and return a future for its result.

        The future fails with RemoteError (error reply), RequestTimeoutError,
        ClientDestroyedError, or the TypeError/ValueError raised when params
        cannot be cloned onto the channel. After destroy() nothing is posted and
        the returned future has already failed.
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        if self.destroyed:
            future.set_exception(ClientDestroyedError())
            return future

        self._request_id += 1
        request_id = self._request_id
        request = make_request(request_id, method, params)
        timer = loop.call_later(self.timeout, self._expire, request_id)
        self._pending[request_id] = PendingRequest(request_id, method, future, timer)
        self._log("sending request:", request)
        try:
            self.port.post_message(request)
        except (TypeError, ValueError) as e:
            self._pending.pop(request_id, None)
            timer.cancel()
            self._log("request not sent:", e)
            future.set_exception(e)
        return future

    def send_notification(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        if self.destroyed:
            raise ClientDestroyedError()
        notification = make_notification(method, params)
        self._log("sending notification:", notification)
        self.port.post_message(notification)

    def notify_size_changed(self, width: float, height: float) -> None:
        self.send_notification(UI_METHODS["SIZE_CHANGED"], {"width": width, "height": height})

    async def open_link(self, url: str) -> None:
        self._log("opening link:", url)
        await self.send_request(UI_METHODS["OPEN_LINK"], {"url": url})

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        self._log("calling tool:", name, arguments)
        return await self.send_request(UI_METHODS["TOOLS_CALL"], {"name": name, "arguments": arguments or {}})

    # --- subscriptions ---

    def on_notification(self, method: str, handler: NotificationHandler) -> Subscription:
        subscription = Subscription(self._handlers, method, handler)
        self._handlers.setdefault(method, []).append(subscription)
        return subscription

    def on_tool_input(self, handler: NotificationHandler) -> Subscription:
        return self.on_notification(UI_METHODS["TOOL_INPUT"], handler)

    def on_tool_input_partial(self, handler: NotificationHandler) -> Subscription:
        return self.on_notification(UI_METHODS["TOOL_INPUT_PARTIAL"], handler)

    def on_tool_result(self, handler: NotificationHandler) -> Subscription:
        return self.on_notification(UI_METHODS["TOOL_RESULT"], handler)

    def on_host_context_changed(self, handler: NotificationHandler) -> Subscription:
        return self.on_notification(UI_METHODS["HOST_CONTEXT_CHANGED"], handler)

    # --- inbound ---

    def _on_message(self, data: Any) -> None:
        message = decode_message(data)
        if isinstance(message, Unrecognized):
            return
        self._log("received:", data)
        if isinstance(message, (Response, ErrorResponse)):
            self._handle_response(message)
        elif isinstance(message, Notification):
            self._handle_notification(message)
        elif isinstance(message, Request):
            self._log(f"ignoring host request {message.method} (id={message.id})")

    def _handle_response(self, response: Any) -> None:
        pending = self._pending.pop(response.id, None)
        if pending is None:
            self._log("received response for unknown request:", response.id)
            return
        pending.timer.cancel()
        if pending.future.done():
            return
        if isinstance(response, ErrorResponse):
            pending.future.set_exception(RemoteError.from_error(response.error))
        else:
            pending.future.set_result(response.result)

    def _expire(self, request_id: int) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is None:
            return
        self._log(f"request {pending.method} (id={request_id}) timed out")
        if not pending.future.done():
            pending.future.set_exception(RequestTimeoutError(pending.method, self.timeout, request_id))

    def _handle_notification(self, notification: Notification) -> None:
        method = notification.method
        params = notification.params
        self._log("handling notification:", method)

        if method == UI_METHODS["TOOL_INPUT"]:
            arguments = (params or {}).get("arguments")
            self.tool_arguments = dict(arguments) if isinstance(arguments, dict) else None
        elif method == UI_METHODS["TOOL_INPUT_PARTIAL"]:
            arguments = (params or {}).get("arguments")
            if isinstance(arguments, dict):
                # per-key last write wins over what has streamed in so far
                self.tool_arguments = {**(self.tool_arguments or {}), **arguments}
        elif method == UI_METHODS["TOOL_RESULT"]:
            self.tool_result = params
        elif method == UI_METHODS["HOST_CONTEXT_CHANGED"]:
            if params:
                self.host_context = {**(self.host_context or {}), **params}

        for subscription in list(self._handlers.get(method, [])):
            try:
                subscription.handler(params)
            except Exception as e:
                print(f"[McpUiClient] Error in notification handler for {method}: {e}")

    def _log(self, *args: Any) -> None:
        if self.debug:
            print("[McpUiClient]", *args)
