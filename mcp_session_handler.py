"""
Per-session MCP protocol handler.

A SessionHandler is created for every new session and holds only that
session's state: negotiated protocol version, client info/capabilities,
log level and resource subscriptions. Tool execution is delegated to the
route's shared FastMCP instance.
"""

import json
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from mcp.server.fastmcp.exceptions import ToolError
from mcp.shared.exceptions import McpError
from mcp.shared.version import SUPPORTED_PROTOCOL_VERSIONS
from mcp.types import (
    INVALID_PARAMS,
    LATEST_PROTOCOL_VERSION,
    METHOD_NOT_FOUND,
    ErrorData,
)
from pydantic import ValidationError as PydanticValidationError

from event_log import EventLog
from mcp_apps import MCP_APPS_EXTENSION_ID, get_mcp_apps_capability_location, mcp_apps_capability
from rpc_envelope import ErrorResponse, Notification, Request, Response, make_error, make_notification, make_result
from rpc_errors import ValidationError
from widget_tools import WidgetServer

LOG_LEVELS = ["debug", "info", "notice", "warning", "error", "critical", "alert", "emergency"]

PushFn = Callable[[Dict[str, Any]], Any]


def _rpc_error(code: int, message: str) -> McpError:
    return McpError(ErrorData(code=code, message=message))


def _dump(item: Any) -> Any:
    if hasattr(item, "model_dump"):
        return item.model_dump(mode="json", by_alias=True, exclude_none=True)
    return item


def _is_invalid_input(exc: BaseException) -> bool:
    cause = exc.__cause__ if isinstance(exc, ToolError) else exc
    return isinstance(cause, (ValidationError, PydanticValidationError))


def _split_tool_output(output: Any):
    """FastMCP returns (content, structured) for tools with an output schema, plain content otherwise."""
    if isinstance(output, tuple) and len(output) == 2:
        content, structured = output
    elif isinstance(output, dict):
        content, structured = [], output
    else:
        content, structured = output, None
    return [_dump(c) for c in (content or [])], structured


class SessionHandler:
    def __init__(self, widget_server: WidgetServer, push: PushFn, event_log: Optional[EventLog] = None, session_id: str = ""):
        self.server = widget_server
        self.push = push
        self.event_log = event_log or EventLog(echo=False)
        self.session_id = session_id
        self.initialized = False
        self.ready = False
        self.protocol_version: Optional[str] = None
        self.client_info: Dict[str, Any] = {}
        self.client_capabilities: Dict[str, Any] = {}
        self.mcp_apps_location: Optional[str] = None
        self.log_level: Optional[str] = None
        self.subscriptions: Set[str] = set()
        self._requests: Dict[str, Callable[[Dict[str, Any]], Awaitable[Any]]] = {
            "initialize": self._initialize,
            "ping": self._ping,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
            "resources/list": self._list_resources,
            "resources/templates/list": self._list_resource_templates,
            "resources/read": self._read_resource,
            "resources/subscribe": self._subscribe,
            "resources/unsubscribe": self._unsubscribe,
            "logging/setLevel": self._set_level,
        }

    @property
    def supports_mcp_apps(self) -> bool:
        return self.mcp_apps_location is not None

    async def handle(self, message: Any) -> Optional[Dict[str, Any]]:
        """Handle one decoded message. Returns the JSON-RPC response for requests, None otherwise."""
        if isinstance(message, Request):
            return await self._handle_request(message)
        if isinstance(message, Notification):
            self._handle_notification(message)
            return None
        if isinstance(message, (Response, ErrorResponse)):
            # the server sends no requests of its own; stray replies are dropped
            print(f"[Session] {self.session_id[:8]} ignoring client response id={message.id}")
        return None

    async def _handle_request(self, request: Request) -> Dict[str, Any]:
        method = self._requests.get(request.method)
        if method is None:
            return make_error(request.id, METHOD_NOT_FOUND, f"Method not found: {request.method}")
        try:
            result = await method(request.params or {})
        except McpError as e:
            return make_error(request.id, e.error.code, e.error.message, e.error.data)
        return make_result(request.id, result)

    def _handle_notification(self, notification: Notification) -> None:
        if notification.method == "notifications/initialized":
            self.ready = True
            self._log_client_capabilities()
        elif notification.method == "notifications/cancelled":
            print(f"[Session] {self.session_id[:8]} client cancelled request {(notification.params or {}).get('requestId')}")

    def _log_client_capabilities(self) -> None:
        name = self.client_info.get("name", "unknown")
        print(f"[Session] {self.session_id[:8]} client ready: {name} {self.client_info.get('version', '')}".rstrip())
        if self.mcp_apps_location:
            print(f"[Session]   MCP Apps supported (capabilities.{self.mcp_apps_location})")
            print(f"[Session]     extension {MCP_APPS_EXTENSION_ID}: {json.dumps(mcp_apps_capability(self.client_capabilities))}")
        else:
            print("[Session]   MCP Apps not supported")
        others = sorted(k for k in self.client_capabilities if k not in ("extensions", "experimental"))
        if others:
            print(f"[Session]   other capabilities: {', '.join(others)}")

    # --- lifecycle ---

    async def _initialize(self, params: Dict[str, Any]) -> Dict[str, Any]:
        requested = params.get("protocolVersion")
        self.protocol_version = requested if requested in SUPPORTED_PROTOCOL_VERSIONS else LATEST_PROTOCOL_VERSION
        client_info = params.get("clientInfo")
        capabilities = params.get("capabilities")
        self.client_info = client_info if isinstance(client_info, dict) else {}
        self.client_capabilities = capabilities if isinstance(capabilities, dict) else {}
        self.mcp_apps_location = get_mcp_apps_capability_location(self.client_capabilities)
        self.initialized = True

        result: Dict[str, Any] = {
            "protocolVersion": self.protocol_version,
            "capabilities": self.server.capabilities,
            "serverInfo": self.server.server_info(),
        }
        if self.server.instructions:
            result["instructions"] = self.server.instructions
        return result

    async def _ping(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {}

    # --- tools ---

    async def _list_tools(self, params: Dict[str, Any]) -> Dict[str, Any]:
        tools: List[Dict[str, Any]] = []
        for tool in await self.server.mcp.list_tools():
            entry = _dump(tool)
            presentation = self.server.tools.get(tool.name)
            if presentation and presentation.meta:
                entry["_meta"] = dict(presentation.meta)
            tools.append(entry)
        return {"tools": tools}

    async def _call_tool(self, params: Dict[str, Any]) -> Dict[str, Any]:
        name = params.get("name")
        arguments = params.get("arguments") or {}
        if not isinstance(name, str) or not name:
            raise _rpc_error(INVALID_PARAMS, "Tool name is required")
        if not isinstance(arguments, dict):
            raise _rpc_error(INVALID_PARAMS, "Tool arguments must be an object")
        known = {tool.name for tool in await self.server.mcp.list_tools()}
        if name not in known:
            raise _rpc_error(INVALID_PARAMS, f"Unknown tool: {name}")

        self.event_log.tool_invocation(name, "invoked", self.session_id)
        try:
            output = await self.server.mcp.call_tool(name, arguments)
        except Exception as e:
            if _is_invalid_input(e):
                cause = e.__cause__ if isinstance(e, ToolError) and e.__cause__ is not None else e
                self.event_log.tool_invocation(name, f"rejected: {cause}", self.session_id)
                raise _rpc_error(INVALID_PARAMS, str(cause))
            self.event_log.tool_invocation(name, f"failed: {e}", self.session_id)
            self._log("error", {"tool": name, "error": str(e)})
            return {"content": [{"type": "text", "text": str(e)}], "isError": True}

        content, structured = _split_tool_output(output)
        presentation = self.server.tools.get(name)
        if presentation and presentation.summarize and structured is not None:
            content = [{"type": "text", "text": presentation.summarize(structured)}]
            if presentation.embed:
                content.append(presentation.embed(structured))

        result: Dict[str, Any] = {"content": content}
        if structured is not None:
            result["structuredContent"] = structured
        self.event_log.tool_invocation(name, "completed", self.session_id)
        self._log("info", {"tool": name, "arguments": arguments})
        return result

    # --- resources ---

    def _resource(self, params: Dict[str, Any]):
        uri = params.get("uri")
        if not isinstance(uri, str) or not uri:
            raise _rpc_error(INVALID_PARAMS, "Resource uri is required")
        resource = self.server.resources.get(uri)
        if resource is None:
            raise _rpc_error(INVALID_PARAMS, f"Resource not found: {uri}")
        return resource

    async def _list_resources(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {"resources": [r.listing() for r in self.server.resources.values()]}

    async def _list_resource_templates(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {"resourceTemplates": []}

    async def _read_resource(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {"contents": [self._resource(params).contents()]}

    async def _subscribe(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.subscriptions.add(self._resource(params).uri)
        return {}

    async def _unsubscribe(self, params: Dict[str, Any]) -> Dict[str, Any]:
        uri = params.get("uri")
        if not isinstance(uri, str) or not uri:
            raise _rpc_error(INVALID_PARAMS, "Resource uri is required")
        self.subscriptions.discard(uri)
        return {}

    # --- logging ---

    async def _set_level(self, params: Dict[str, Any]) -> Dict[str, Any]:
        if not self.server.supports("logging"):
            raise _rpc_error(METHOD_NOT_FOUND, "Method not found: logging/setLevel")
        level = params.get("level")
        if level not in LOG_LEVELS:
            raise _rpc_error(INVALID_PARAMS, f"Invalid log level: {level}")
        self.log_level = level
        return {}

    def _log_admits(self, level: str) -> bool:
        if self.log_level is None or not self.server.supports("logging"):
            return False
        return LOG_LEVELS.index(level) >= LOG_LEVELS.index(self.log_level)

    def _log(self, level: str, data: Any) -> None:
        if self._log_admits(level):
            self.push(make_notification("notifications/message", {"level": level, "logger": self.server.name, "data": data}))
