"""
Widget tools and UI resources exposed by the MCP routes.

Two flavours share the same widgets:

  create_ui_server()    /mcp      MCP-UI + Apps SDK (ChatGPT) templates; tool
                                  results embed the widget HTML
  create_apps_server()  /mcp-app  MCP Apps (SEP-1865); tools point at a
                                  ui:// resource through _meta["ui/resourceUri"]

FastMCP owns tool registration, input schemas, argument validation and
invocation. Resources and the per-tool presentation (_meta, summary text,
embedded UI resource) live in the tables on WidgetServer.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Annotated, Any, Callable, Dict, List, Optional, Union

from mcp.server.fastmcp import FastMCP
from pydantic import BaseModel, Field, StrictFloat, StrictInt

from app_config import SERVER_NAME, SERVER_VERSION, ServerConfig
from mcp_apps import APPS_SDK_MIME_TYPE, MCP_APPS_MIME_TYPE
from rpc_errors import ValidationError
from widget_assets import WidgetAssets

MIN_BUBBLES = 1
MAX_BUBBLES = 500
DEFAULT_BUBBLES = 100

BUBBLE_WRAP_URI = "ui://widgets/bubble-wrap"
PACKING_SLIP_URI = "ui://widgets/packing-slip"

BUBBLE_WRAP_DESCRIPTION = (
    "Creates an interactive bubble wrap popping simulator. "
    "Specify the number of bubbles to create (default: 100, max: 500)."
)

# JSON numbers only; pydantic would otherwise coerce "42" and true
Number = Union[StrictInt, StrictFloat]
BubbleCountArg = Annotated[Number, Field(description="Number of bubbles to create (default: 100, max: 500)")]


class BubbleCountResult(BaseModel):
    bubbleCount: int = Field(description="Number of bubbles in the simulator")


class BubbleWrapResult(BubbleCountResult):
    timestamp: str = Field(description="ISO 8601 time the simulator was created")


class PackingSlipResult(BaseModel):
    timestamp: str


class DemoResult(BaseModel):
    name: str
    message: str
    count: Union[int, float]


def utc_ts() -> str:
    return datetime.now(timezone.utc).isoformat()


def validate_bubble_count(value: Any) -> int:
    """Check a requested bubble count against 1..500 and normalize it to an int."""
    if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
        raise ValidationError("Bubble count must be a number")
    if value < MIN_BUBBLES or value > MAX_BUBBLES:
        raise ValidationError(f"Bubble count must be between {MIN_BUBBLES} and {MAX_BUBBLES}")
    return min(max(math.floor(value), MIN_BUBBLES), MAX_BUBBLES)


def bubble_wrap_summary(structured: Dict[str, Any]) -> str:
    return f"Created a bubble wrap simulator with {structured.get('bubbleCount')} bubbles. Click to pop them all!"


@dataclass
class WidgetResource:
    uri: str
    name: str
    title: str
    description: str
    mime_type: str
    render: Callable[[], str]
    meta: Dict[str, Any] = field(default_factory=dict)

    def listing(self) -> Dict[str, Any]:
        return {
            "uri": self.uri,
            "name": self.name,
            "title": self.title,
            "description": self.description,
            "mimeType": self.mime_type,
        }

    def contents(self) -> Dict[str, Any]:
        content: Dict[str, Any] = {"uri": self.uri, "mimeType": self.mime_type, "text": self.render()}
        if self.meta:
            content["_meta"] = self.meta
        return content


@dataclass
class ToolPresentation:
    """How a tool's structured result is shown: _meta for listings, summary line, optional embedded UI resource."""

    meta: Dict[str, Any] = field(default_factory=dict)
    summarize: Optional[Callable[[Dict[str, Any]], str]] = None
    embed: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None


@dataclass
class WidgetServer:
    mcp: FastMCP
    name: str
    version: str = SERVER_VERSION
    resources: Dict[str, WidgetResource] = field(default_factory=dict)
    tools: Dict[str, ToolPresentation] = field(default_factory=dict)
    capabilities: Dict[str, Any] = field(default_factory=dict)
    icons: List[Dict[str, Any]] = field(default_factory=list)
    instructions: Optional[str] = None

    def add_resource(self, resource: WidgetResource) -> None:
        self.resources[resource.uri] = resource

    def server_info(self) -> Dict[str, Any]:
        info: Dict[str, Any] = {"name": self.name, "version": self.version}
        if self.icons:
            info["icons"] = self.icons
        return info

    def supports(self, capability: str) -> bool:
        return capability in self.capabilities


def create_ui_server(assets: WidgetAssets, config: ServerConfig) -> WidgetServer:
    """MCP-UI flavour: an Apps SDK template resource plus an embedded UI resource per call."""
    instructions = "Call bubble_wrap to show a bubble wrap popping widget."
    mcp = FastMCP(name=SERVER_NAME, instructions=instructions)
    server = WidgetServer(
        mcp=mcp,
        name=SERVER_NAME,
        capabilities={"tools": {}, "resources": {"subscribe": True}},
        instructions=instructions,
    )

    server.add_resource(
        WidgetResource(
            uri=BUBBLE_WRAP_URI,
            name="bubble-wrap-template",
            title="Bubble Wrap Template",
            description="Template for Apps SDK",
            mime_type=APPS_SDK_MIME_TYPE,
            render=lambda: assets.load("bubble-wrap"),
            meta={
                "openai/widgetDescription": (
                    "An interactive bubble wrap simulator where you can pop virtual bubbles for stress relief"
                ),
                "openai/widgetPrefersBorder": True,
                "openai/widgetCSP": {
                    "connect_domains": [config.base_url],
                    "resource_domains": [config.base_url],
                },
            },
        )
    )

    def _embed(structured: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "type": "resource",
            "resource": {
                "uri": f"{BUBBLE_WRAP_URI}/{structured['bubbleCount']}",
                "mimeType": "text/html",
                "text": assets.load("bubble-wrap"),
            },
        }

    server.tools["bubble_wrap"] = ToolPresentation(
        meta={
            "openai/outputTemplate": BUBBLE_WRAP_URI,
            "openai/toolInvocation/invoking": "Creating bubble wrap...",
            "openai/toolInvocation/invoked": "Bubble wrap ready to pop!",
            "openai/widgetAccessible": True,
        },
        summarize=bubble_wrap_summary,
        embed=_embed,
    )

    @mcp.tool(name="bubble_wrap", title="Bubble Wrap Simulator", description=BUBBLE_WRAP_DESCRIPTION)
    async def bubble_wrap(bubbleCount: BubbleCountArg = DEFAULT_BUBBLES) -> BubbleCountResult:
        return BubbleCountResult(bubbleCount=validate_bubble_count(bubbleCount))

    return server


def create_apps_server(assets: WidgetAssets, config: ServerConfig) -> WidgetServer:
    """MCP Apps (SEP-1865) flavour: tools reference ui:// resources served with the mcp-app MIME type."""
    instructions = "Call bubble_wrap or show_packing_slip; hosts that support MCP Apps render the ui:// resource."
    mcp = FastMCP(name=f"{SERVER_NAME}-sep1865", instructions=instructions)
    server = WidgetServer(
        mcp=mcp,
        name=f"{SERVER_NAME}-sep1865",
        capabilities={"tools": {}, "resources": {"subscribe": True}, "logging": {}},
        icons=[
            {
                "src": assets.asset_url(config.base_url, "bubble-wrap-app-icon.svg"),
                "mimeType": "image/svg+xml",
                "sizes": ["any"],
            }
        ],
        instructions=instructions,
    )
    ui_meta = {"ui": {"prefersBorder": True, "csp": {"resourceDomains": [config.base_url]}}}

    server.add_resource(
        WidgetResource(
            uri=BUBBLE_WRAP_URI,
            name="bubble-wrap-app",
            title="Bubble Wrap App",
            description="Interactive bubble wrap simulator - pop virtual bubbles for stress relief",
            mime_type=MCP_APPS_MIME_TYPE,
            render=lambda: assets.load("bubble-wrap"),
            meta=ui_meta,
        )
    )
    server.add_resource(
        WidgetResource(
            uri=PACKING_SLIP_URI,
            name="packing-slip-app",
            title="Packing Slip App",
            description="Shows host platform details reported to an embedded widget",
            mime_type=MCP_APPS_MIME_TYPE,
            render=lambda: assets.load("packing-slip"),
            meta=ui_meta,
        )
    )

    server.tools["mcp_app_demo"] = ToolPresentation(
        summarize=lambda s: (
            f"MCP App Demo Results\n\nHello, {s['name']}!\n\nYour message: \"{s['message']}\"\n"
            + (f"Count value: {s['count']:g}\n" if s.get("count", 0) > 0 else "")
            + "\nThis is a demonstration of an MCP tool with multiple inputs and text output.\n"
            "The tool successfully processed your inputs and generated this response."
        ),
    )
    server.tools["bubble_wrap"] = ToolPresentation(
        meta={"ui/resourceUri": BUBBLE_WRAP_URI},
        summarize=bubble_wrap_summary,
    )
    server.tools["show_packing_slip"] = ToolPresentation(
        meta={"ui/resourceUri": PACKING_SLIP_URI},
        summarize=lambda s: f"Showing packing slip ({s.get('timestamp')}).",
    )

    @mcp.tool(
        name="mcp_app_demo",
        title="MCP App Demo",
        description=(
            "A demonstration tool that showcases MCP app capabilities with multiple inputs and text output."
        ),
    )
    async def mcp_app_demo(
        name: Annotated[str, Field(description="Your name or identifier")],
        message: Annotated[str, Field(description="A message to include in the demo output")],
        count: Annotated[Number, Field(description="A number to include in the response")],
    ) -> DemoResult:
        return DemoResult(name=name, message=message, count=count)

    @mcp.tool(name="bubble_wrap", title="Bubble Wrap Simulator", description=BUBBLE_WRAP_DESCRIPTION)
    async def bubble_wrap(bubbleCount: BubbleCountArg = DEFAULT_BUBBLES) -> BubbleWrapResult:
        return BubbleWrapResult(bubbleCount=validate_bubble_count(bubbleCount), timestamp=utc_ts())

    @mcp.tool(name="show_packing_slip", title="Packing Slip", description="Shows the packing slip widget with host platform details.")
    async def show_packing_slip() -> PackingSlipResult:
        return PackingSlipResult(timestamp=utc_ts())

    return server
