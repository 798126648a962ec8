"""
In-memory map from issued tokens to ERP sessions.

The JSESSIONID never leaves the server: clients only hold a signed token
whose ``jti`` claim is the key into this store. Nothing is persisted, so a
restart logs everybody out.
"""

import threading
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass
class ErpSession:
    """ERP session bound to one issued token."""

    jti: str
    jsessionid: str
    usuario: str
    codusu: int | None = None
    codvend: int | None = None
    name: str = ""
    created_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    expires_at: float = 0.0

    def public_dict(self) -> dict[str, Any]:
        """Session data safe to return to a client (no JSESSIONID)."""
        data = asdict(self)
        data.pop("jsessionid")
        return data


def _expired(session: ErpSession, now: float) -> bool:
    return bool(session.expires_at) and session.expires_at <= now


class SessionStore:
    """Thread-safe session registry keyed by token id.

    Entries expire together with their token. Expired entries stay hidden
    until :meth:`pop_expired` or :meth:`purge_expired` removes them, so the
    caller can still close their ERP session.
    """

    def __init__(self, ttl_seconds: int = 8 * 3600):
        """Initialize the store.

        Args:
            ttl_seconds: Lifetime of a session, normally the token TTL.
        """
        self.ttl_seconds = ttl_seconds
        self._sessions: dict[str, ErpSession] = {}
        self._lock = threading.Lock()

    def create(
        self,
        jti: str,
        jsessionid: str,
        usuario: str,
        codusu: int | None = None,
        codvend: int | None = None,
        name: str = "",
    ) -> ErpSession:
        """Register a new session.

        Args:
            jti: Token id the session is bound to.
            jsessionid: ERP session id.
            usuario: Upper-cased ERP user name.
            codusu: ERP user code.
            codvend: Buyer code linked to the user.
            name: Display name.

        Returns:
            The stored session.
        """
        session = ErpSession(
            jti=jti,
            jsessionid=jsessionid,
            usuario=usuario,
            codusu=codusu,
            codvend=codvend,
            name=name or usuario,
            expires_at=time.time() + self.ttl_seconds,
        )
        with self._lock:
            self._sessions[jti] = session
        return session

    def get(self, jti: str | None) -> ErpSession | None:
        """Look up a live session.

        Args:
            jti: Token id.

        Returns:
            The session, or None if unknown or expired.
        """
        if not jti:
            return None
        with self._lock:
            session = self._sessions.get(jti)
            if session is None or _expired(session, time.time()):
                return None
            return session

    def extend(self, jti: str | None) -> ErpSession | None:
        """Restart the lifetime of a live session.

        Returns:
            The session, or None if unknown or already expired.
        """
        if not jti:
            return None
        now = time.time()
        with self._lock:
            session = self._sessions.get(jti)
            if session is None or _expired(session, now):
                return None
            session.expires_at = now + self.ttl_seconds
            return session

    def pop(self, jti: str | None) -> ErpSession | None:
        """Remove and return a session (None if absent)."""
        if not jti:
            return None
        with self._lock:
            return self._sessions.pop(jti, None)

    def pop_expired(self, jti: str | None) -> ErpSession | None:
        """Remove and return a session only if it has expired."""
        if not jti:
            return None
        with self._lock:
            session = self._sessions.get(jti)
            if session is None or not _expired(session, time.time()):
                return None
            return self._sessions.pop(jti)

    def purge_expired(self) -> list[ErpSession]:
        """Drop every expired session.

        Returns:
            The removed sessions, so callers can close them on the ERP.
        """
        now = time.time()
        with self._lock:
            expired = [jti for jti, s in self._sessions.items() if _expired(s, now)]
            return [self._sessions.pop(jti) for jti in expired]

    def drain(self) -> list[ErpSession]:
        """Remove and return every session (used on shutdown)."""
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
            return sessions

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, jti: object) -> bool:
        with self._lock:
            return jti in self._sessions


# Global store instance
_session_store: SessionStore | None = None


def get_session_store() -> SessionStore:
    """Get the global session store.

    Returns:
        The SessionStore singleton instance.
    """
    global _session_store
    if _session_store is None:
        from ..config import get_config

        _session_store = SessionStore(ttl_seconds=get_config().token_ttl_seconds)
    return _session_store
