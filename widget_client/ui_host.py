"""
Host half of the MCP Apps channel: what an embedding chat client does for
one widget frame. Answers the widget's requests and pushes tool data to it.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

from mcp.types import INTERNAL_ERROR, INVALID_PARAMS, METHOD_NOT_FOUND

from mcp_apps import UI_METHODS
from rpc_envelope import Notification, Request, decode_message, make_error, make_notification, make_result
from rpc_errors import RemoteError
from widget_client.frame_channel import FramePort

ToolCaller = Callable[[str, Dict[str, Any]], Awaitable[Dict[str, Any]]]
LinkOpener = Callable[[str], Any]


class UiHost:
    def __init__(
        self,
        port: FramePort,
        host_context: Optional[Dict[str, Any]] = None,
        tool_caller: Optional[ToolCaller] = None,
        link_opener: Optional[LinkOpener] = None,
        protocol_version: str = "2025-01-01",
        host_info: Optional[Dict[str, str]] = None,
    ):
        self.port = port
        self.host_context: Dict[str, Any] = dict(host_context or {})
        self.tool_caller = tool_caller
        self.link_opener = link_opener
        self.protocol_version = protocol_version
        self.host_info = host_info or {"name": "mcp-bubble-wrap-host", "version": "1.0.0"}
        self.initialized = asyncio.Event()
        self.client_info: Dict[str, Any] = {}
        self.last_size: Optional[Dict[str, Any]] = None
        self._tasks = set()
        self.port.add_listener(self._on_message)

    def close(self) -> None:
        self.port.remove_listener(self._on_message)
        for task in list(self._tasks):
            task.cancel()

    # --- push to the widget ---

    def _notify(self, method: str, params: Dict[str, Any]) -> None:
        self.port.post_message(make_notification(method, params))

    def send_tool_input(self, arguments: Dict[str, Any]) -> None:
        self._notify(UI_METHODS["TOOL_INPUT"], {"arguments": arguments})

    def send_tool_input_partial(self, arguments: Dict[str, Any]) -> None:
        self._notify(UI_METHODS["TOOL_INPUT_PARTIAL"], {"arguments": arguments})

    def send_tool_result(self, result: Dict[str, Any]) -> None:
        self._notify(UI_METHODS["TOOL_RESULT"], result)

    def update_host_context(self, changes: Dict[str, Any]) -> None:
        self.host_context.update(changes)
        self._notify(UI_METHODS["HOST_CONTEXT_CHANGED"], changes)

    # --- from the widget ---

    def _on_message(self, data: Any) -> None:
        message = decode_message(data)
        if isinstance(message, Request):
            task = asyncio.ensure_future(self._answer(message))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        elif isinstance(message, Notification):
            self._handle_notification(message)

    def _handle_notification(self, notification: Notification) -> None:
        if notification.method == UI_METHODS["INITIALIZED"]:
            self.initialized.set()
        elif notification.method == UI_METHODS["SIZE_CHANGED"]:
            self.last_size = notification.params or {}

    async def _answer(self, request: Request) -> None:
        try:
            result = await self._dispatch(request.method, request.params or {})
        except RemoteError as e:
            reply = make_error(request.id, e.code, e.remote_message, e.data)
        except Exception as e:
            print(f"[UiHost] {request.method} failed: {e}")
            reply = make_error(request.id, INTERNAL_ERROR, str(e))
        else:
            reply = make_result(request.id, result)
        self.port.post_message(reply)

    async def _dispatch(self, method: str, params: Dict[str, Any]) -> Any:
        if method == UI_METHODS["INITIALIZE"]:
            client_info = params.get("clientInfo")
            self.client_info = client_info if isinstance(client_info, dict) else {}
            return {
                "protocolVersion": self.protocol_version,
                "hostInfo": self.host_info,
                "hostCapabilities": {"openLinks": {}, "serverTools": {}},
                "hostContext": dict(self.host_context),
            }
        if method == UI_METHODS["OPEN_LINK"]:
            url = params.get("url")
            if not isinstance(url, str) or not url:
                raise RemoteError(INVALID_PARAMS, "url is required")
            if self.link_opener is None:
                raise RemoteError(METHOD_NOT_FOUND, "Host does not open links")
            opened = self.link_opener(url)
            if asyncio.iscoroutine(opened):
                await opened
            return {}
        if method == UI_METHODS["TOOLS_CALL"]:
            name = params.get("name")
            if not isinstance(name, str) or not name:
                raise RemoteError(INVALID_PARAMS, "Tool name is required")
            if self.tool_caller is None:
                raise RemoteError(METHOD_NOT_FOUND, "Host does not call tools")
            return await self.tool_caller(name, params.get("arguments") or {})
        raise RemoteError(METHOD_NOT_FOUND, f"Method not found: {method}")
