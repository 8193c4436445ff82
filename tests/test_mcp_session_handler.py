"""Tests for the per-session MCP protocol handler."""

from __future__ import annotations

from typing import Any, Dict, List

import pytest
from mcp.types import INVALID_PARAMS, LATEST_PROTOCOL_VERSION, METHOD_NOT_FOUND

from mcp_apps import MCP_APPS_EXTENSION_ID, MCP_APPS_MIME_TYPE
from mcp_session_handler import SessionHandler
from rpc_envelope import Notification, Request, Response


def _request(method: str, params: Dict[str, Any] = None, request_id: int = 1) -> Request:
    return Request(id=request_id, method=method, params=params)


@pytest.fixture
def pushed() -> List[Dict[str, Any]]:
    return []


@pytest.fixture
def apps_handler(apps_server, pushed, event_log) -> SessionHandler:
    return SessionHandler(apps_server, pushed.append, event_log, session_id="session-apps")


@pytest.fixture
def ui_handler(ui_server, pushed, event_log) -> SessionHandler:
    return SessionHandler(ui_server, pushed.append, event_log, session_id="session-ui")


class TestLifecycle:
    """Tests for initialize / initialized / ping."""

    @pytest.mark.asyncio
    async def test_initialize_supported_version(self, apps_handler) -> None:
        """Test a supported protocol version is echoed back."""
        reply = await apps_handler.handle(
            _request(
                "initialize",
                {"protocolVersion": LATEST_PROTOCOL_VERSION, "capabilities": {}, "clientInfo": {"name": "c", "version": "1"}},
            )
        )
        result = reply["result"]
        assert result["protocolVersion"] == LATEST_PROTOCOL_VERSION
        assert result["serverInfo"]["name"] == "mcp-bubble-wrap-sep1865"
        assert result["serverInfo"]["icons"][0]["mimeType"] == "image/svg+xml"
        assert "logging" in result["capabilities"]
        assert apps_handler.initialized is True
        assert apps_handler.client_info["name"] == "c"

    @pytest.mark.asyncio
    async def test_initialize_unknown_version_falls_back(self, apps_handler) -> None:
        """Test an unsupported protocol version negotiates to the latest."""
        reply = await apps_handler.handle(
            _request("initialize", {"protocolVersion": "1999-01-01", "capabilities": {}, "clientInfo": {}})
        )
        assert reply["result"]["protocolVersion"] == LATEST_PROTOCOL_VERSION

    @pytest.mark.asyncio
    async def test_initialize_detects_mcp_apps(self, apps_handler, capsys) -> None:
        """Test MCP Apps support is read from the client capabilities."""
        capabilities = {"extensions": {MCP_APPS_EXTENSION_ID: {"mimeTypes": [MCP_APPS_MIME_TYPE]}}, "sampling": {}}
        await apps_handler.handle(
            _request("initialize", {"protocolVersion": LATEST_PROTOCOL_VERSION, "capabilities": capabilities})
        )
        assert apps_handler.supports_mcp_apps is True
        assert apps_handler.mcp_apps_location == "extensions"

        assert await apps_handler.handle(Notification(method="notifications/initialized")) is None
        assert apps_handler.ready is True
        out = capsys.readouterr().out
        assert "MCP Apps supported (capabilities.extensions)" in out
        assert f"extension {MCP_APPS_EXTENSION_ID}: {{\"mimeTypes\": [\"{MCP_APPS_MIME_TYPE}\"]}}" in out
        assert "other capabilities: sampling" in out

    @pytest.mark.asyncio
    async def test_ping(self, apps_handler) -> None:
        """Test ping answers an empty result."""
        assert (await apps_handler.handle(_request("ping")))["result"] == {}

    @pytest.mark.asyncio
    async def test_unknown_method(self, apps_handler) -> None:
        """Test unknown requests are METHOD_NOT_FOUND."""
        reply = await apps_handler.handle(_request("prompts/list", request_id=12))
        assert reply["id"] == 12
        assert reply["error"]["code"] == METHOD_NOT_FOUND

    @pytest.mark.asyncio
    async def test_unknown_notification_and_responses_ignored(self, apps_handler) -> None:
        """Test unknown notifications and stray responses produce nothing."""
        assert await apps_handler.handle(Notification(method="notifications/whatever")) is None
        assert await apps_handler.handle(Response(id=99, result={})) is None


class TestTools:
    """Tests for tools/list and tools/call."""

    @pytest.mark.asyncio
    async def test_list_tools_apps(self, apps_handler) -> None:
        """Test the apps route lists its three tools with UI resource metadata."""
        tools = {t["name"]: t for t in (await apps_handler.handle(_request("tools/list")))["result"]["tools"]}
        assert set(tools) == {"bubble_wrap", "mcp_app_demo", "show_packing_slip"}
        assert tools["bubble_wrap"]["_meta"] == {"ui/resourceUri": "ui://widgets/bubble-wrap"}
        assert tools["show_packing_slip"]["_meta"] == {"ui/resourceUri": "ui://widgets/packing-slip"}
        assert tools["bubble_wrap"]["title"] == "Bubble Wrap Simulator"
        assert tools["mcp_app_demo"]["title"] == "MCP App Demo"
        bubble_count = tools["bubble_wrap"]["inputSchema"]["properties"]["bubbleCount"]
        assert bubble_count["description"] == "Number of bubbles to create (default: 100, max: 500)"
        assert "bubbleCount" not in tools["bubble_wrap"]["inputSchema"].get("required", [])
        demo = tools["mcp_app_demo"]["inputSchema"]
        assert set(demo["required"]) == {"name", "message", "count"}
        assert demo["properties"]["name"]["description"] == "Your name or identifier"
        assert demo["properties"]["count"]["description"] == "A number to include in the response"
        assert set(tools["bubble_wrap"]["outputSchema"]["properties"]) == {"bubbleCount", "timestamp"}

    @pytest.mark.asyncio
    async def test_list_tools_ui(self, ui_handler) -> None:
        """Test the MCP-UI route advertises the Apps SDK output template."""
        (tool,) = (await ui_handler.handle(_request("tools/list")))["result"]["tools"]
        assert tool["name"] == "bubble_wrap"
        assert tool["title"] == "Bubble Wrap Simulator"
        assert set(tool["outputSchema"]["properties"]) == {"bubbleCount"}
        assert tool["_meta"]["openai/outputTemplate"] == "ui://widgets/bubble-wrap"
        assert tool["_meta"]["openai/widgetAccessible"] is True

    @pytest.mark.asyncio
    async def test_call_bubble_wrap_apps(self, apps_handler) -> None:
        """Test bubble_wrap returns structured content and a summary line."""
        reply = await apps_handler.handle(
            _request("tools/call", {"name": "bubble_wrap", "arguments": {"bubbleCount": 42.9}})
        )
        result = reply["result"]
        assert result["structuredContent"]["bubbleCount"] == 42
        assert "timestamp" in result["structuredContent"]
        assert result["content"][0]["type"] == "text"
        assert "42 bubbles" in result["content"][0]["text"]
        assert "isError" not in result

    @pytest.mark.asyncio
    async def test_call_bubble_wrap_default(self, apps_handler) -> None:
        """Test the bubble count defaults to 100."""
        reply = await apps_handler.handle(_request("tools/call", {"name": "bubble_wrap"}))
        assert reply["result"]["structuredContent"]["bubbleCount"] == 100

    @pytest.mark.asyncio
    async def test_call_bubble_wrap_ui_embeds_resource(self, ui_handler) -> None:
        """Test the MCP-UI flavour embeds the widget HTML as a UI resource."""
        reply = await ui_handler.handle(_request("tools/call", {"name": "bubble_wrap", "arguments": {"bubbleCount": 7}}))
        result = reply["result"]
        assert result["structuredContent"] == {"bubbleCount": 7}
        text, embedded = result["content"]
        assert text["type"] == "text"
        assert embedded["type"] == "resource"
        assert embedded["resource"]["uri"] == "ui://widgets/bubble-wrap/7"
        assert "bubble-wrap-root" in embedded["resource"]["text"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("count", [0, 501, -3])
    async def test_out_of_range_count_is_invalid_params(self, apps_handler, pushed, event_log, count) -> None:
        """Test out-of-range counts fail as INVALID_PARAMS with no widget state."""
        await apps_handler.handle(_request("logging/setLevel", {"level": "debug"}))
        reply = await apps_handler.handle(
            _request("tools/call", {"name": "bubble_wrap", "arguments": {"bubbleCount": count}}, request_id=5)
        )
        assert "result" not in reply
        assert reply["error"]["code"] == INVALID_PARAMS
        assert reply["error"]["message"] == "Bubble count must be between 1 and 500"
        assert pushed == []
        actions = [r["action"] for r in event_log.recent(50) if r["event"] == "tool_invocation"]
        assert actions[-1].startswith("rejected")

    @pytest.mark.asyncio
    async def test_wrong_argument_type_is_invalid_params(self, apps_handler) -> None:
        """Test arguments failing schema validation are INVALID_PARAMS."""
        reply = await apps_handler.handle(
            _request("tools/call", {"name": "bubble_wrap", "arguments": {"bubbleCount": "lots"}})
        )
        assert reply["error"]["code"] == INVALID_PARAMS

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", [True, "42", "7.9", None])
    async def test_non_number_count_is_invalid_params(self, apps_handler, event_log, value) -> None:
        """Test bubble counts must be JSON numbers, with no coercion from strings or booleans."""
        reply = await apps_handler.handle(
            _request("tools/call", {"name": "bubble_wrap", "arguments": {"bubbleCount": value}}, request_id=6)
        )
        assert "result" not in reply
        assert reply["error"]["code"] == INVALID_PARAMS
        actions = [r["action"] for r in event_log.recent(50) if r["event"] == "tool_invocation"]
        assert actions[-1].startswith("rejected")

    @pytest.mark.asyncio
    async def test_mcp_app_demo_requires_count(self, apps_handler) -> None:
        """Test the demo tool rejects a call without its count argument."""
        reply = await apps_handler.handle(
            _request("tools/call", {"name": "mcp_app_demo", "arguments": {"name": "Ada", "message": "hi"}})
        )
        assert reply["error"]["code"] == INVALID_PARAMS

    @pytest.mark.asyncio
    async def test_unknown_tool(self, apps_handler) -> None:
        """Test calling a missing tool is INVALID_PARAMS."""
        reply = await apps_handler.handle(_request("tools/call", {"name": "nope"}))
        assert reply["error"]["code"] == INVALID_PARAMS
        assert "nope" in reply["error"]["message"]

    @pytest.mark.asyncio
    async def test_tool_failure_is_error_result(self, apps_server, apps_handler) -> None:
        """Test a failing tool returns isError content instead of a protocol error."""

        @apps_server.mcp.tool(name="explode", description="always fails")
        async def explode() -> Dict[str, Any]:
            raise RuntimeError("kaput")

        reply = await apps_handler.handle(_request("tools/call", {"name": "explode"}))
        result = reply["result"]
        assert result["isError"] is True
        assert "kaput" in result["content"][0]["text"]

    @pytest.mark.asyncio
    async def test_mcp_app_demo(self, apps_handler) -> None:
        """Test the demo tool echoes its inputs."""
        reply = await apps_handler.handle(
            _request("tools/call", {"name": "mcp_app_demo", "arguments": {"name": "Ada", "message": "hi", "count": 3}})
        )
        result = reply["result"]
        assert result["structuredContent"] == {"name": "Ada", "message": "hi", "count": 3}
        assert "Hello, Ada!" in result["content"][0]["text"]
        assert "Count value: 3" in result["content"][0]["text"]

    @pytest.mark.asyncio
    async def test_call_pushes_log_when_level_admits_info(self, apps_handler, pushed) -> None:
        """Test a tool call emits notifications/message once the client sets a log level."""
        await apps_handler.handle(_request("tools/call", {"name": "show_packing_slip"}))
        assert pushed == []

        await apps_handler.handle(_request("logging/setLevel", {"level": "info"}))
        await apps_handler.handle(_request("tools/call", {"name": "show_packing_slip"}))
        assert len(pushed) == 1
        assert pushed[0]["method"] == "notifications/message"
        assert pushed[0]["params"]["level"] == "info"
        assert pushed[0]["params"]["data"]["tool"] == "show_packing_slip"

    @pytest.mark.asyncio
    async def test_log_level_filters(self, apps_handler, pushed) -> None:
        """Test levels above info suppress tool call logs."""
        await apps_handler.handle(_request("logging/setLevel", {"level": "warning"}))
        await apps_handler.handle(_request("tools/call", {"name": "show_packing_slip"}))
        assert pushed == []


class TestResources:
    """Tests for resources/* and logging/setLevel."""

    @pytest.mark.asyncio
    async def test_list_resources(self, apps_handler) -> None:
        """Test both widget resources are listed with the MCP Apps MIME type."""
        resources = (await apps_handler.handle(_request("resources/list")))["result"]["resources"]
        assert {r["uri"] for r in resources} == {"ui://widgets/bubble-wrap", "ui://widgets/packing-slip"}
        assert {r["mimeType"] for r in resources} == {MCP_APPS_MIME_TYPE}

    @pytest.mark.asyncio
    async def test_templates_empty(self, apps_handler) -> None:
        """Test there are no resource templates."""
        reply = await apps_handler.handle(_request("resources/templates/list"))
        assert reply["result"] == {"resourceTemplates": []}

    @pytest.mark.asyncio
    async def test_read_resource(self, apps_handler) -> None:
        """Test reading a widget returns its HTML and UI metadata."""
        reply = await apps_handler.handle(_request("resources/read", {"uri": "ui://widgets/packing-slip"}))
        (content,) = reply["result"]["contents"]
        assert "packing-slip-root" in content["text"]
        assert content["_meta"]["ui"]["csp"]["resourceDomains"] == ["http://localhost:5678"]

    @pytest.mark.asyncio
    async def test_read_ui_template(self, ui_handler) -> None:
        """Test the Apps SDK template is served as skybridge HTML."""
        reply = await ui_handler.handle(_request("resources/read", {"uri": "ui://widgets/bubble-wrap"}))
        (content,) = reply["result"]["contents"]
        assert content["mimeType"] == "text/html+skybridge"
        assert content["_meta"]["openai/widgetPrefersBorder"] is True

    @pytest.mark.asyncio
    async def test_read_unknown_resource(self, apps_handler) -> None:
        """Test unknown URIs are INVALID_PARAMS."""
        reply = await apps_handler.handle(_request("resources/read", {"uri": "ui://widgets/missing"}))
        assert reply["error"]["code"] == INVALID_PARAMS

    @pytest.mark.asyncio
    async def test_subscribe_is_per_session(self, apps_server, apps_handler, event_log) -> None:
        """Test subscriptions live on the handler that received them."""
        other = SessionHandler(apps_server, lambda m: None, event_log, session_id="other")
        await apps_handler.handle(_request("resources/subscribe", {"uri": "ui://widgets/bubble-wrap"}))
        assert apps_handler.subscriptions == {"ui://widgets/bubble-wrap"}
        assert other.subscriptions == set()

        await apps_handler.handle(_request("resources/unsubscribe", {"uri": "ui://widgets/bubble-wrap"}))
        assert apps_handler.subscriptions == set()

    @pytest.mark.asyncio
    async def test_set_level_validation(self, apps_handler, ui_handler) -> None:
        """Test log levels are validated and only offered where logging is a capability."""
        bad = await apps_handler.handle(_request("logging/setLevel", {"level": "loud"}))
        assert bad["error"]["code"] == INVALID_PARAMS
        unsupported = await ui_handler.handle(_request("logging/setLevel", {"level": "info"}))
        assert unsupported["error"]["code"] == METHOD_NOT_FOUND
