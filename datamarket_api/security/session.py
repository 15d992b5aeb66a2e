"""Scoped consumer sessions.

A ``SessionContext`` is the only place key material lives. It is handed
explicitly to every operation that signs or decrypts and its key is wiped
when the session closes, expires or leaves a ``with`` block.
"""

import asyncio
import logging
import secrets
import threading
import time
from typing import Optional

from datamarket_api.errors import SessionExpired
from datamarket_api.security.keys import KeyMaterial, unlock_keystore
from datamarket_api.settings import get_settings

logger = logging.getLogger(__name__)


class SessionContext:
    """Authenticated consumer session."""

    def __init__(self, key_material: KeyMaterial, token: Optional[str] = None, ttl_seconds: int = 1800):
        self.key_material = key_material
        self.token = token or secrets.token_urlsafe(32)
        self.created_at = time.monotonic()
        self.expires_at = self.created_at + ttl_seconds
        self.public_key_published = False

    @property
    def address(self) -> str:
        return self.key_material.address

    @property
    def public_key_hex(self) -> str:
        return self.key_material.public_key_hex

    @property
    def closed(self) -> bool:
        return self.key_material.wiped

    def is_expired(self, now: Optional[float] = None) -> bool:
        return (now or time.monotonic()) >= self.expires_at

    def close(self) -> None:
        self.key_material.wipe()

    def __enter__(self) -> "SessionContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"SessionContext(address={self.address}, closed={self.closed})"


class SessionStore:
    """In-process registry of open sessions keyed by opaque token."""

    def __init__(self, ttl_seconds: int):
        self.ttl_seconds = ttl_seconds
        self._sessions: dict[str, SessionContext] = {}
        self._lock = threading.Lock()

    def open(self, key_material: KeyMaterial) -> SessionContext:
        self.purge_expired()
        session = SessionContext(key_material, ttl_seconds=self.ttl_seconds)
        with self._lock:
            self._sessions[session.token] = session
        logger.info("Session opened", extra={"address": session.address})
        return session

    def get(self, token: Optional[str]) -> SessionContext:
        if not token:
            raise SessionExpired("Missing session token. Provide x-session-token header.")
        self.purge_expired()
        with self._lock:
            session = self._sessions.get(token)
            if session is not None and session.is_expired():
                del self._sessions[token]
                session.close()
                session = None
        if session is None:
            raise SessionExpired()
        return session

    def close(self, token: str) -> bool:
        with self._lock:
            session = self._sessions.pop(token, None)
        if session is None:
            return False
        session.close()
        logger.info("Session closed", extra={"address": session.address})
        return True

    def purge_expired(self) -> int:
        now = time.monotonic()
        with self._lock:
            expired = [token for token, s in self._sessions.items() if s.is_expired(now)]
            sessions = [self._sessions.pop(token) for token in expired]
        for session in sessions:
            session.close()
        return len(sessions)

    def close_all(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()

    def __len__(self) -> int:
        return len(self._sessions)


def authenticate(account: str, password: str, store: "SessionStore") -> SessionContext:
    """Unlock the account keystore and open a session, or raise AuthenticationFailed."""
    key_material = unlock_keystore(get_settings().keystore_dir, account, password)
    logger.info("User has been authenticated", extra={"address": key_material.address})
    return store.open(key_material)


_session_store: Optional[SessionStore] = None


def get_session_store() -> SessionStore:
    """Get session store instance."""
    global _session_store
    if _session_store is None:
        _session_store = SessionStore(get_settings().session_ttl_seconds)
    return _session_store


async def sweep_expired_sessions(store: SessionStore, interval_seconds: float) -> None:
    """Wipe expired sessions every ``interval_seconds`` until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        purged = store.purge_expired()
        if purged:
            logger.info(f"Wiped {purged} expired session(s)")
