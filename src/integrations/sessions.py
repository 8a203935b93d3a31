"""Short-lived storage for HandshakeSessions.

A session correlates an outbound authorization redirect with its callback.
Only an opaque nonce travels to the browser (in an httpOnly cookie); the
request-token secret stays server-side.  Sessions are single-use and expire
after a hard TTL even if never consumed.
"""

from __future__ import annotations

import logging
import secrets
import time
from abc import ABC, abstractmethod
from typing import Callable

from src.integrations.base import HandshakeSession

logger = logging.getLogger("rebate.integrations.sessions")


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


class HandshakeSessionStore(ABC):
    @abstractmethod
    async def put(self, session_id: str, session: HandshakeSession, ttl: int) -> None:
        """Store a session for at most ``ttl`` seconds."""

    @abstractmethod
    async def take_once(self, session_id: str) -> HandshakeSession | None:
        """Remove and return the session, or None if absent or expired."""


class InMemoryHandshakeSessionStore(HandshakeSessionStore):
    """Process-local TTL cache.

    ``take_once`` is a single ``dict.pop`` with no await in between, so two
    callbacks racing on the same id cannot both receive the session.
    Multi-instance deployments need a shared cache implementing the same
    interface.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[float, HandshakeSession]] = {}

    async def put(self, session_id: str, session: HandshakeSession, ttl: int) -> None:
        self.purge_expired()
        self._entries[session_id] = (self._clock() + ttl, session)
        logger.debug("Stored %s handshake session (ttl=%ds)", session.source.value, ttl)

    async def take_once(self, session_id: str) -> HandshakeSession | None:
        entry = self._entries.pop(session_id, None)
        if entry is None:
            return None
        expires_at, session = entry
        if self._clock() >= expires_at:
            logger.info("Handshake session for member %s expired", session.member_id)
            return None
        return session

    def purge_expired(self) -> int:
        """Drop expired sessions.  Returns how many were removed."""
        now = self._clock()
        expired = [sid for sid, (exp, _) in self._entries.items() if now >= exp]
        for sid in expired:
            del self._entries[sid]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)
