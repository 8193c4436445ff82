#!/usr/bin/env python3
import asyncio
import json

from app_config import ServerConfig
from event_log import EventLog
from mcp_session_handler import SessionHandler
from session_transport import SessionTransport
from widget_assets import WidgetAssets
from widget_tools import create_apps_server


async def run() -> None:
    config = ServerConfig.from_env()
    event_log = EventLog(echo=False)
    widget_server = create_apps_server(WidgetAssets(config.assets_dir), config)
    transport = SessionTransport(
        lambda session_id, push: SessionHandler(widget_server, push, event_log, session_id=session_id),
        event_log=event_log,
        name="/mcp-app",
    )

    init = {
        "jsonrpc": "2.0",
        "id": 1,
        "method": "initialize",
        "params": {
            "protocolVersion": "2025-06-18",
            "capabilities": {},
            "clientInfo": {"name": "session-smoke", "version": "0.0.1"},
        },
    }
    reply = await transport.handle_post(None, json.dumps(init))
    session_id = reply.headers["mcp-session-id"]
    await transport.handle_post(session_id, {"jsonrpc": "2.0", "method": "notifications/initialized"})
    tools = await transport.handle_post(session_id, {"jsonrpc": "2.0", "id": 2, "method": "tools/list"})
    call = await transport.handle_post(
        session_id,
        {"jsonrpc": "2.0", "id": 3, "method": "tools/call", "params": {"name": "bubble_wrap", "arguments": {"bubbleCount": 42}}},
    )
    await transport.handle_delete(session_id)

    print("Session smoke test")
    print(f"- session: {session_id}")
    print(f"- protocol: {reply.body['result']['protocolVersion']}")
    print(f"- tools: {[t['name'] for t in tools.body['result']['tools']]}")
    print(f"- bubble_wrap: {call.body['result'].get('structuredContent')}")
    print(f"- sessions left: {len(transport)}")


def main() -> None:
    asyncio.run(run())


if __name__ == "__main__":
    main()
