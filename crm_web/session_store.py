"""
In-memory stores for pending PKCE verifiers and authenticated sessions.

Two separate store instances are used: one keyed by tempSessionId (pending logins),
one keyed by sessionId (logged-in users). Ids are never shared between them.
Process-lifetime only; nothing survives a restart.
"""
import secrets
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Generic, Protocol, TypeVar

T = TypeVar("T")


def generate_id() -> str:
    """256-bit url-safe identifier from the OS CSPRNG."""
    return secrets.token_urlsafe(32)


@dataclass
class PendingAuthorization:
    code_verifier: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class Identity:
    user_id: str
    organization_id: str
    username: str | None = None
    email: str | None = None
    display_name: str | None = None

    @classmethod
    def from_user_info(cls, info: dict[str, Any]) -> "Identity":
        """Build from the user info returned by the token exchange (id, organizationId, ...)."""
        return cls(
            user_id=str(info["id"]),
            organization_id=str(info["organizationId"]),
            username=info.get("username"),
            email=info.get("email"),
            display_name=info.get("displayName"),
        )


@dataclass
class AuthenticatedSession:
    connection: Any
    identity: Identity
    login_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class SessionStore(Protocol[T]):
    """Opaque-id to state mapping. Implementations must make each call atomic."""

    def create(self, state: T) -> str: ...

    def get(self, key: str | None) -> T | None: ...

    def pop(self, key: str | None) -> T | None: ...

    def delete(self, key: str | None) -> None: ...


@dataclass
class _Entry(Generic[T]):
    state: T
    stored_at: float


class InMemorySessionStore(Generic[T]):
    """
    Dict-backed store guarded by a lock (sync endpoints run in a thread pool).
    With ttl_seconds set, entries older than the TTL are treated as absent and dropped on access.
    """

    def __init__(self, ttl_seconds: float | None = None, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, _Entry[T]] = {}
        self._lock = threading.Lock()

    @property
    def ttl_seconds(self) -> float | None:
        return self._ttl

    def _expired(self, entry: _Entry[T], now: float) -> bool:
        return self._ttl is not None and (now - entry.stored_at) > self._ttl

    def create(self, state: T) -> str:
        with self._lock:
            key = generate_id()
            while key in self._entries:
                key = generate_id()
            self._entries[key] = _Entry(state=state, stored_at=self._clock())
            return key

    def get(self, key: str | None) -> T | None:
        if not key:
            return None
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._expired(entry, self._clock()):
                del self._entries[key]
                return None
            return entry.state

    def pop(self, key: str | None) -> T | None:
        """Remove and return the state; a second pop for the same key returns None."""
        if not key:
            return None
        with self._lock:
            entry = self._entries.pop(key, None)
        if entry is None or self._expired(entry, self._clock()):
            return None
        return entry.state

    def delete(self, key: str | None) -> None:
        if not key:
            return
        with self._lock:
            self._entries.pop(key, None)

    def purge_expired(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        if self._ttl is None:
            return 0
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if self._expired(e, now)]
            for k in expired:
                del self._entries[k]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
