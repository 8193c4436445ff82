"""
In-process stand-in for window.postMessage between a widget frame and its host.

Messages are JSON-cloned at send time (structured clone) and delivered to
the peer's listeners on a later event loop iteration, never inline.
"""

import asyncio
import json
from typing import Any, Callable, List, Optional, Tuple

Listener = Callable[[Any], None]


class FramePort:
    def __init__(self, name: str = "port"):
        self.name = name
        self.peer: Optional["FramePort"] = None
        self.closed = False
        self._listeners: List[Listener] = []
        self.sent: List[Any] = []

    def add_listener(self, listener: Listener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def post_message(self, message: Any) -> None:
        """Send to the peer. Raises TypeError/ValueError for payloads that are not JSON-clonable."""
        data = json.loads(json.dumps(message))
        self.sent.append(data)
        peer = self.peer
        if self.closed or peer is None or peer.closed:
            return
        asyncio.get_running_loop().call_soon(peer._dispatch, data)

    def _dispatch(self, data: Any) -> None:
        for listener in list(self._listeners):
            try:
                listener(data)
            except Exception as e:
                print(f"[FramePort] {self.name} listener error: {e}")

    def close(self) -> None:
        self.closed = True
        self._listeners.clear()


def frame_pair() -> Tuple[FramePort, FramePort]:
    """Connected (guest_port, host_port)."""
    guest = FramePort("guest")
    host = FramePort("host")
    guest.peer = host
    host.peer = guest
    return guest, host
