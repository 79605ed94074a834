"""In-memory registry of live shell and SFTP sessions."""

import threading
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Union

from .logger import Logger
from .models import generate_id

SHELL = "shell"
TRANSFER = "transfer"

SESSION_ID_PREFIX = {SHELL: "session", TRANSFER: "sftp"}


@dataclass(frozen=True)
class Connecting:
    transport: Any
    status = "connecting"


@dataclass(frozen=True)
class ShellConnected:
    transport: Any
    channel: Any
    status = "connected"


@dataclass(frozen=True)
class TransferReady:
    transport: Any
    sftp: Any
    status = "ready"


@dataclass(frozen=True)
class Failed:
    error_message: str
    status = "error"


@dataclass(frozen=True)
class Closed:
    status = "closed"


Phase = Union[Connecting, ShellConnected, TransferReady, Failed, Closed]

# how far along the state machine each status is; moves never go backwards
_PROGRESS = {"connecting": 0, "connected": 1, "ready": 1, "error": 2, "closed": 2}

# ended sessions remembered for status lookups
ENDED_HISTORY = 256

SHELL_LIVE = frozenset({"connecting", "connected"})
TRANSFER_LIVE = frozenset({"connecting", "ready"})


@dataclass(frozen=True)
class SessionState:
    """A session as the registry sees it. Replaced, never mutated."""

    id: str
    server_id: str
    kind: str
    phase: Phase = field(compare=False)

    @property
    def status(self) -> str:
        return self.phase.status

    @property
    def error_message(self) -> Optional[str]:
        return self.phase.error_message if isinstance(self.phase, Failed) else None

    @property
    def transport(self) -> Any:
        return getattr(self.phase, "transport", None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sessionId': self.id,
            'serverId': self.server_id,
            'kind': self.kind,
            'status': self.status,
            'errorMessage': self.error_message,
        }


def new_session_id(kind: str) -> str:
    return generate_id(SESSION_ID_PREFIX[kind])


class ConnectionRegistry:
    """Session id -> SessionState table shared by both controllers."""

    def __init__(self):
        self.logger = Logger.get_logger(__name__)
        self._sessions: Dict[str, SessionState] = {}
        self._ended: "OrderedDict[str, SessionState]" = OrderedDict()
        self._lock = threading.RLock()

    def put(self, state: SessionState) -> None:
        with self._lock:
            self._sessions[state.id] = state

    def get(self, session_id: str) -> Optional[SessionState]:
        with self._lock:
            return self._sessions.get(session_id)

    def remove(self, session_id: str, final: Optional[Phase] = None) -> Optional[SessionState]:
        """Pop a session; exactly one caller gets it back.

        When ``final`` is given, the ended session is remembered with that
        phase so its outcome can still be looked up with :meth:`ended`.
        """
        with self._lock:
            state = self._sessions.pop(session_id, None)
            if state is not None and final is not None:
                self._ended[session_id] = replace(state, phase=final)
                while len(self._ended) > ENDED_HISTORY:
                    self._ended.popitem(last=False)
            return state

    def ended(self, session_id: str) -> Optional[SessionState]:
        """How a removed session ended, if it is still remembered."""
        with self._lock:
            return self._ended.get(session_id)

    def all(self, kind: Optional[str] = None) -> List[SessionState]:
        with self._lock:
            return [s for s in self._sessions.values() if kind is None or s.kind == kind]

    def find_active_for(self, server_id: str, kind: str, live_statuses: Iterable[str]) -> Optional[SessionState]:
        """First session of ``kind`` for ``server_id`` whose status counts as live."""
        live = frozenset(live_statuses)
        with self._lock:
            for state in self._sessions.values():
                if state.server_id == server_id and state.kind == kind and state.status in live:
                    return state
        return None

    def put_unless_active(self, state: SessionState, live_statuses: Iterable[str]) -> Optional[SessionState]:
        """Insert ``state`` unless a live session for its server exists; return that one."""
        with self._lock:
            existing = self.find_active_for(state.server_id, state.kind, live_statuses)
            if existing is not None:
                return existing
            self._sessions[state.id] = state
            return None

    def advance(self, session_id: str, phase: Phase) -> Optional[SessionState]:
        """Move a registered session forward to ``phase``.

        Returns the new state, or None when the session is gone or the move
        would go backwards; in both cases nothing changes.
        """
        with self._lock:
            current = self._sessions.get(session_id)
            if current is None:
                return None
            if _PROGRESS[phase.status] <= _PROGRESS[current.status]:
                self.logger.debug(
                    f"Ignoring {current.status} -> {phase.status} for session {session_id}"
                )
                return None
            updated = replace(current, phase=phase)
            self._sessions[session_id] = updated
            return updated

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions


class Settlement:
    """Single-assignment gate for a connect attempt.

    The timeout path and the worker path both race to :meth:`claim`; exactly
    one wins and the other becomes a no-op. The winner calls :meth:`finish`
    once its transition is applied, which releases the waiting caller.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._owner: Optional[str] = None
        self._done = threading.Event()
        self.error: Optional[BaseException] = None
        self.result: Any = None

    def claim(self, owner: str) -> bool:
        with self._lock:
            if self._owner is not None:
                return False
            self._owner = owner
            return True

    @property
    def owner(self) -> Optional[str]:
        return self._owner

    def finish(self, result: Any = None, error: Optional[BaseException] = None) -> None:
        self.result = result
        self.error = error
        self._done.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._done.wait(timeout)
