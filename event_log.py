"""
Event log sink for session lifecycle and message traffic.

Every record is printed as a one-line summary and kept in a bounded
ring buffer that the server exposes at /api/debug/raw. With debug on,
message payloads are printed in full.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

RAW_BUFFER_MAX = 200


def utc_ts() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _short(session_id: Optional[str]) -> str:
    if not session_id:
        return "-"
    return session_id[:8]


def _message_type(body: Any) -> str:
    if not isinstance(body, dict):
        return "unknown"
    if body.get("method"):
        return str(body["method"])
    if "result" in body:
        return "result"
    if "error" in body:
        return "error"
    return "unknown"


class EventLog:
    def __init__(self, debug: bool = False, max_records: int = RAW_BUFFER_MAX, echo: bool = True):
        self.debug = debug
        self.echo = echo
        self.max_records = max_records
        self._records: List[Dict[str, Any]] = []

    def record(self, event: str, **fields: Any) -> Dict[str, Any]:
        entry = {"ts": utc_ts(), "event": event}
        entry.update(fields)
        self._records.append(entry)
        if len(self._records) > self.max_records:
            self._records.pop(0)
        return entry

    def recent(self, limit: int = 50) -> List[Dict[str, Any]]:
        if limit <= 0:
            return []
        return self._records[-limit:]

    def _print(self, line: str, payload: Any = None) -> None:
        if not self.echo:
            return
        print(line)
        if self.debug and payload is not None:
            print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))

    # --- message traffic ---

    def client_message(self, session_id: Optional[str], body: Any, route: str = "") -> None:
        kind = _message_type(body)
        self.record("client_message", route=route, session_id=session_id, method=kind, data=body)
        new_marker = " (NEW)" if not session_id else ""
        self._print(f"[MCP] client -> server{new_marker} {route} session={_short(session_id)} {kind}", body)

    def server_message(self, session_id: Optional[str], body: Any, route: str = "") -> None:
        kind = _message_type(body)
        self.record("server_message", route=route, session_id=session_id, method=kind, data=body)
        self._print(f"[MCP] server -> client {route} session={_short(session_id)} {kind}", body)

    # --- session lifecycle ---

    def session_initialized(self, session_id: str, active_count: int, route: str = "") -> None:
        self.record("session_initialized", route=route, session_id=session_id, active=active_count)
        self._print(f"[Session] initialized {session_id} {route} (active: {active_count})")

    def session_closed(self, session_id: str, remaining_count: int, route: str = "") -> None:
        self.record("session_closed", route=route, session_id=session_id, remaining=remaining_count)
        self._print(f"[Session] closed {session_id} {route} (remaining: {remaining_count})")

    def session_request_failed(self, method: str, session_id: Optional[str], active_count: int, route: str = "") -> None:
        self.record(
            "session_request_failed",
            route=route,
            method=method,
            session_id=session_id,
            active=active_count,
        )
        self._print(f"[Session] {method} failed: session {session_id or '(missing)'} not found (active: {active_count})")

    def tool_invocation(self, tool_name: str, action: str, session_id: Optional[str] = None) -> None:
        self.record("tool_invocation", tool=tool_name, action=action, session_id=session_id)
        self._print(f"[Tool] {tool_name}: {action}")

    def server_started(self, host: str, port: int) -> None:
        self.record("server_started", host=host, port=port)
        self._print(f"[MCP] server listening at http://{host}:{port}")
