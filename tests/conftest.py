"""Shared fixtures for the server and widget client tests."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import pytest
from mcp.types import LATEST_PROTOCOL_VERSION

from app_config import ServerConfig
from event_log import EventLog
from widget_assets import WidgetAssets
from widget_tools import WidgetServer, create_apps_server, create_ui_server

BUBBLE_WRAP_HTML = "<html><body><div id='bubble-wrap-root'></div></body></html>"
PACKING_SLIP_HTML = "<html><body><div id='packing-slip-root'></div></body></html>"


@pytest.fixture
def assets_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "assets"
    directory.mkdir()
    (directory / "bubble-wrap.html").write_text(BUBBLE_WRAP_HTML, encoding="utf-8")
    (directory / "packing-slip-3f9a1c.html").write_text(PACKING_SLIP_HTML, encoding="utf-8")
    return directory


@pytest.fixture
def config(assets_dir: Path) -> ServerConfig:
    return ServerConfig(
        host="127.0.0.1",
        port=5678,
        base_url="http://localhost:5678",
        assets_dir=assets_dir,
    )


@pytest.fixture
def event_log() -> EventLog:
    return EventLog(echo=False)


@pytest.fixture
def assets(assets_dir: Path) -> WidgetAssets:
    return WidgetAssets(assets_dir)


@pytest.fixture
def apps_server(assets: WidgetAssets, config: ServerConfig) -> WidgetServer:
    return create_apps_server(assets, config)


@pytest.fixture
def ui_server(assets: WidgetAssets, config: ServerConfig) -> WidgetServer:
    return create_ui_server(assets, config)


@pytest.fixture
def initialize_body() -> Callable[..., Dict[str, Any]]:
    """Factory for a well-formed MCP initialize request."""

    def build(
        request_id: Any = 1,
        protocol_version: str = LATEST_PROTOCOL_VERSION,
        capabilities: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": request_id,
            "method": "initialize",
            "params": {
                "protocolVersion": protocol_version,
                "capabilities": capabilities if capabilities is not None else {},
                "clientInfo": {"name": "pytest-client", "version": "0.1.0"},
            },
        }

    return build


async def drain_loop(rounds: int = 5) -> None:
    """Let call_soon deliveries (and the replies they trigger) run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def settle() -> Callable[..., Any]:
    return drain_loop
