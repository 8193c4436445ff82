#!/usr/bin/env python3
"""
mcp-bubble-wrap HTTP server.

  /mcp        MCP-UI / Apps SDK flavour (streamable HTTP: POST, GET, DELETE)
  /mcp-app    MCP Apps (SEP-1865) flavour
  /assets     built widget bundles and icons
  /api/...    health, live sessions, raw traffic buffer
"""

import argparse
import os
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

import uvicorn
from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from fastapi.staticfiles import StaticFiles
from fasthtml.common import HTMLResponse as FastHTMLResponse
from fasthtml.common import H1, H2, Body, Code, Head, Html, Li, Meta, P, Title, Ul, to_xml
from pydantic import BaseModel

from app_config import SERVER_NAME, SERVER_VERSION, ServerConfig
from event_log import EventLog, utc_ts
from mcp_session_handler import SessionHandler
from rpc_errors import McpSessionError
from session_transport import MCP_SESSION_ID_HEADER, SessionTransport
from widget_assets import WidgetAssets
from widget_tools import WidgetServer, create_apps_server, create_ui_server

MCP_UI_ROUTE = "/mcp"
MCP_APPS_ROUTE = "/mcp-app"


class HealthStatus(BaseModel):
    ok: bool
    ts: str
    version: str
    sessions: Dict[str, int]


def _handler_factory(widget_server: WidgetServer, event_log: EventLog):
    def build(session_id: str, push):
        return SessionHandler(widget_server, push, event_log, session_id=session_id)

    return build


def _mount_mcp_route(app: FastAPI, path: str, transport: SessionTransport) -> None:
    @app.post(path)
    async def mcp_post(request: Request):
        reply = await transport.handle_post(request.headers.get(MCP_SESSION_ID_HEADER), await request.body())
        if reply.body is None:
            return Response(status_code=reply.status, headers=reply.headers)
        return JSONResponse(reply.body, status_code=reply.status, headers=reply.headers)

    @app.get(path)
    async def mcp_stream(request: Request):
        session_id = request.headers.get(MCP_SESSION_ID_HEADER)
        events = transport.open_stream(session_id)
        return StreamingResponse(
            events,
            media_type="text/event-stream",
            headers={MCP_SESSION_ID_HEADER: session_id, "Cache-Control": "no-cache"},
        )

    @app.delete(path)
    async def mcp_delete(request: Request):
        reply = await transport.handle_delete(request.headers.get(MCP_SESSION_ID_HEADER))
        return Response(status_code=reply.status, headers=reply.headers)


def _index_page(transports: Dict[str, SessionTransport], config: ServerConfig) -> str:
    routes = [Li(Code(path), f" active sessions: {len(t)}") for path, t in transports.items()]
    page = Html(
        Head(Meta(charset="UTF-8"), Title(SERVER_NAME)),
        Body(
            H1(f"{SERVER_NAME} {SERVER_VERSION}"),
            P("MCP server exposing interactive widgets over streamable HTTP."),
            H2("Endpoints"),
            Ul(*routes),
            P("Widget assets: ", Code(str(config.assets_dir))),
        ),
    )
    return to_xml(page)


def create_app(config: Optional[ServerConfig] = None, event_log: Optional[EventLog] = None) -> FastAPI:
    config = config or ServerConfig.from_env()
    event_log = event_log or EventLog(debug=config.debug)
    assets = WidgetAssets(config.assets_dir)

    transports: Dict[str, SessionTransport] = {
        MCP_UI_ROUTE: SessionTransport(
            _handler_factory(create_ui_server(assets, config), event_log),
            event_log=event_log,
            name=MCP_UI_ROUTE,
        ),
        MCP_APPS_ROUTE: SessionTransport(
            _handler_factory(create_apps_server(assets, config), event_log),
            event_log=event_log,
            name=MCP_APPS_ROUTE,
        ),
    }

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        for path, transport in transports.items():
            closed = transport.close_all()
            if closed:
                print(f"[MCP] {path}: closed {closed} session(s) on shutdown")

    app = FastAPI(title=SERVER_NAME, version=SERVER_VERSION, lifespan=lifespan)
    app.state.config = config
    app.state.event_log = event_log
    app.state.assets = assets
    app.state.transports = transports

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", MCP_SESSION_ID_HEADER, "mcp-protocol-version"],
        expose_headers=["Mcp-Session-Id"],
    )

    @app.exception_handler(McpSessionError)
    async def mcp_session_error(request: Request, exc: McpSessionError):
        print(f"[MCP] {request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
        return JSONResponse(exc.to_body(), status_code=exc.status_code)

    for path, transport in transports.items():
        _mount_mcp_route(app, path, transport)

    app.mount("/assets", StaticFiles(directory=str(config.assets_dir), check_dir=False), name="assets")

    @app.get("/")
    async def get_index() -> FastHTMLResponse:
        return FastHTMLResponse(_index_page(transports, config))

    @app.get("/api/health", response_model=HealthStatus)
    async def api_health():
        return HealthStatus(
            ok=True,
            ts=utc_ts(),
            version=SERVER_VERSION,
            sessions={path: len(t) for path, t in transports.items()},
        )

    @app.get("/api/sessions")
    async def api_sessions():
        routes: Dict[str, List[Dict]] = {path: t.registry.describe() for path, t in transports.items()}
        return {"routes": routes}

    @app.get("/api/debug/raw")
    async def api_debug_raw(limit: int = Query(200, gt=0, le=500)):
        return {"items": event_log.recent(limit)}

    return app


# --- Startup ---
def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="MCP bubble wrap widget server")
    p.add_argument("--host", default=None)
    p.add_argument("--port", type=int, default=None)
    p.add_argument("--assets", default=None, help="directory holding built widget HTML")
    p.add_argument("--base-url", default=None, help="public URL used in widget CSP metadata")
    p.add_argument("--debug", action="store_true")
    return p.parse_args(argv)


def config_from_args(args: argparse.Namespace) -> ServerConfig:
    """Command-line flags take precedence over the environment."""
    env = dict(os.environ)
    if args.host:
        env["HOST"] = args.host
    if args.port:
        env["PORT"] = str(args.port)
    if args.assets:
        env["MCP_WIDGET_ASSETS_DIR"] = args.assets
    if args.base_url:
        env["BASE_URL"] = args.base_url
    if args.debug:
        env["MCP_DEBUG"] = "1"
    return ServerConfig.from_env(env)


def main():
    args = parse_args()
    config = config_from_args(args)
    event_log = EventLog(debug=config.debug)
    application = create_app(config, event_log)
    event_log.server_started(config.host, config.port)
    print(f"[MCP] {MCP_UI_ROUTE} (MCP-UI) and {MCP_APPS_ROUTE} (MCP Apps), widget assets in {config.assets_dir}")
    uvicorn.run(application, host=config.host, port=config.port)


app = create_app()

if __name__ == "__main__":
    main()
