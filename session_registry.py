"""
Session registry: session id -> live connection context.

The registry is the only state shared between sessions. It is driven from
a single event loop, so insert/lookup/remove need no locking.
"""

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional


@dataclass
class Session:
    session_id: str
    context: Any
    created_at: float = field(default_factory=time.time)
    closed: bool = False

    def describe(self) -> Dict[str, Any]:
        info: Dict[str, Any] = {
            "session_id": self.session_id,
            "created_at": self.created_at,
            "closed": self.closed,
        }
        if hasattr(self.context, "describe"):
            info.update(self.context.describe())
        return info


SessionHook = Callable[[Session], None]


class SessionRegistry:
    """
    Owns every live Session.

    Args:
        on_create: Called after a session is registered.
        on_close: Called once when a session is removed.
    """

    def __init__(
        self,
        on_create: Optional[SessionHook] = None,
        on_close: Optional[SessionHook] = None,
    ):
        self._sessions: Dict[str, Session] = {}
        self.on_create = on_create
        self.on_close = on_close

    def _new_id(self) -> str:
        session_id = str(uuid.uuid4())
        while session_id in self._sessions:
            session_id = str(uuid.uuid4())
        return session_id

    def open(self, context_factory: Callable[[str], Any]) -> Session:
        """Allocate an id, build its context and register it, all before any await."""
        session_id = self._new_id()
        context = context_factory(session_id)
        session = Session(session_id=session_id, context=context)
        self._sessions[session_id] = session
        if self.on_create:
            self.on_create(session)
        return session

    def get(self, session_id: Optional[str]) -> Optional[Session]:
        if not session_id:
            return None
        return self._sessions.get(session_id)

    def remove(self, session_id: Optional[str]) -> bool:
        """Remove a session. Safe to call from several teardown paths; only the first one counts."""
        if not session_id:
            return False
        session = self._sessions.pop(session_id, None)
        if session is None or session.closed:
            return False
        session.closed = True
        if self.on_close:
            self.on_close(session)
        return True

    def ids(self) -> List[str]:
        return list(self._sessions.keys())

    def describe(self) -> List[Dict[str, Any]]:
        return [s.describe() for s in self._sessions.values()]

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions
