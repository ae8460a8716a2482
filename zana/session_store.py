"""
In-memory session store for multi-turn conversation state.

Each session carries its chat history, the GitHub authorization handshake state,
the resolved username and credential, a short-lived cache of the PRs it last
listed, and at most one pending (partially filled) intent.

Sessions are created lazily on first contact and live for the process lifetime
unless cleared. Every session owns its own re-entrant lock, so work on different
sessions never contends; the registry lock only guards creating/removing sessions
and the handshake-token index. Expired cache entries are dropped when read, not
swept in the background.
"""

import secrets
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator

DEFAULT_HISTORY_LIMIT = 40
PENDING_TTL_SECONDS = 7 * 60
TASK_REFS_TTL_SECONDS = 7 * 60

ROLES = ("user", "assistant", "system")


@dataclass(frozen=True)
class Message:
    role: str
    content: str


@dataclass(frozen=True)
class PRRef:
    """Just enough of a listed PR to resolve its repository from its number."""

    number: int
    repository: str


@dataclass
class PendingIntent:
    type: str
    args: dict[str, Any]
    updated_at: float


@dataclass
class _TaskRefCache:
    refs: list[PRRef]
    updated_at: float


@dataclass
class Session:
    id: str
    history: list[Message] = field(default_factory=list)
    auth_state: str | None = None
    username: str | None = None
    credential: str | None = None
    task_refs: _TaskRefCache | None = None
    pending: PendingIntent | None = None
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)


class SessionStore:
    def __init__(
        self,
        max_messages: int = DEFAULT_HISTORY_LIMIT,
        pending_ttl: float = PENDING_TTL_SECONDS,
        task_refs_ttl: float = TASK_REFS_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_messages < 1:
            raise ValueError(f"max_messages must be positive, got {max_messages}")
        self.max_messages = max_messages
        self.pending_ttl = pending_ttl
        self.task_refs_ttl = task_refs_ttl
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._sessions_by_state: dict[str, str] = {}
        self._registry_lock = threading.Lock()

    # ── Sessions ───────────────────────────────────────────────────────────

    @staticmethod
    def new_session_id() -> str:
        return str(uuid.uuid4())

    def _get(self, session_id: str) -> Session:
        with self._registry_lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = Session(id=session_id)
                self._sessions[session_id] = session
            return session

    def __contains__(self, session_id: str) -> bool:
        with self._registry_lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._sessions)

    @contextmanager
    def session_lock(self, session_id: str) -> Iterator[None]:
        """Hold the session's lock so a read-decide-write sequence is atomic."""
        session = self._get(session_id)
        with session.lock:
            yield

    def clear(self, session_id: str) -> None:
        with self._registry_lock:
            session = self._sessions.get(session_id)
        if session is None:
            return
        # An in-flight turn finishes before the session is detached
        with session.lock, self._registry_lock:
            if self._sessions.get(session_id) is session:
                del self._sessions[session_id]
            if session.auth_state:
                self._sessions_by_state.pop(session.auth_state, None)

    # ── History ────────────────────────────────────────────────────────────

    def append_message(self, session_id: str, role: str, content: str) -> None:
        if role not in ROLES:
            raise ValueError(f"unknown message role: {role!r}")
        session = self._get(session_id)
        with session.lock:
            session.history.append(Message(role=role, content=content))
            if len(session.history) > self.max_messages:
                del session.history[: len(session.history) - self.max_messages]

    def get_history(self, session_id: str) -> list[Message]:
        session = self._get(session_id)
        with session.lock:
            return list(session.history)

    # ── Pending intent ─────────────────────────────────────────────────────

    def set_pending_intent(self, session_id: str, intent_type: str, args: dict[str, Any]) -> None:
        session = self._get(session_id)
        with session.lock:
            session.pending = PendingIntent(
                type=intent_type, args=dict(args), updated_at=self._clock()
            )

    def get_pending_intent(self, session_id: str) -> PendingIntent | None:
        """Return a copy of the pending intent, or None if absent or expired."""
        session = self._get(session_id)
        with session.lock:
            pending = session.pending
            if pending is None:
                return None
            if self._clock() - pending.updated_at > self.pending_ttl:
                session.pending = None
                return None
            return PendingIntent(
                type=pending.type, args=dict(pending.args), updated_at=pending.updated_at
            )

    def clear_pending_intent(self, session_id: str) -> None:
        session = self._get(session_id)
        with session.lock:
            session.pending = None

    # ── Recently listed PRs ────────────────────────────────────────────────

    def set_task_refs(self, session_id: str, refs: list[PRRef]) -> None:
        session = self._get(session_id)
        with session.lock:
            session.task_refs = _TaskRefCache(refs=list(refs), updated_at=self._clock())

    def get_task_refs(self, session_id: str) -> list[PRRef] | None:
        """Return the cached refs; None on miss or expiry, [] after an empty listing."""
        session = self._get(session_id)
        with session.lock:
            cache = session.task_refs
            if cache is None:
                return None
            if self._clock() - cache.updated_at > self.task_refs_ttl:
                session.task_refs = None
                return None
            return list(cache.refs)

    # ── Authorization handshake ────────────────────────────────────────────

    def begin_auth_handshake(self, session_id: str) -> str:
        state = secrets.token_urlsafe(24)
        session = self._get(session_id)
        with session.lock, self._registry_lock:
            if session.auth_state:
                self._sessions_by_state.pop(session.auth_state, None)
            session.auth_state = state
            self._sessions_by_state[state] = session_id
        return state

    def resolve_auth_handshake(self, state: str) -> str | None:
        """Look up the session that started a handshake. Does not clear it."""
        with self._registry_lock:
            session_id = self._sessions_by_state.get(state)
            session = self._sessions.get(session_id) if session_id else None
        if session is None:
            return None
        with session.lock:
            if session.auth_state != state:
                return None
        return session_id

    def clear_auth_handshake(self, session_id: str) -> None:
        session = self._get(session_id)
        with session.lock, self._registry_lock:
            if session.auth_state:
                self._sessions_by_state.pop(session.auth_state, None)
            session.auth_state = None

    # ── Identity ───────────────────────────────────────────────────────────

    def set_username(self, session_id: str, username: str) -> None:
        session = self._get(session_id)
        with session.lock:
            session.username = username

    def get_username(self, session_id: str) -> str | None:
        session = self._get(session_id)
        with session.lock:
            return session.username

    def set_credential(self, session_id: str, token: str) -> None:
        session = self._get(session_id)
        with session.lock:
            session.credential = token

    def get_credential(self, session_id: str) -> str | None:
        session = self._get(session_id)
        with session.lock:
            return session.credential
