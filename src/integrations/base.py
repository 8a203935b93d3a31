"""Core types for wearable provider integrations.

These dataclasses are shared by the connection store, the handshake
managers, the callback coordinator and the sync aggregator.  Token material
lives only in ``Credential`` and is excluded from every ``repr`` so that
records can be logged safely.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

logger = logging.getLogger("rebate.integrations")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class IntegrationSource(str, Enum):
    """Wearable provider.  The value doubles as the URL / redirect slug."""

    GARMIN = "garmin"
    OURA = "oura"

    @classmethod
    def from_slug(cls, value: str) -> "IntegrationSource":
        try:
            return cls(value.lower())
        except ValueError:
            raise ValueError(f"Unknown integration source '{value}'") from None


class IntegrationStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    REVOKED = "REVOKED"
    ERROR = "ERROR"


class SyncStatus(str, Enum):
    SUCCESS = "SUCCESS"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"


class DataCategory(str, Enum):
    SLEEP = "sleep"
    ACTIVITY = "activity"
    READINESS = "readiness"


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


@dataclass
class Credential:
    """Token material for one provider connection.

    OAuth 1.0a providers (Garmin) use ``access_token`` + ``token_secret``;
    the tokens never expire.  Bearer providers (Oura) use ``access_token``
    with an optional ``refresh_token`` and ``expires_at``.

    Attributes:
        access_token:  OAuth1 access token or bearer token.
        token_secret:  OAuth1 access-token secret.
        refresh_token: OAuth2 refresh token.
        expires_at:    UTC expiry of a bearer access token.
        token_type:    "OAuth1" or "Bearer".
    """

    access_token: str = field(repr=False)
    token_secret: str | None = field(default=None, repr=False)
    refresh_token: str | None = field(default=None, repr=False)
    expires_at: datetime | None = None
    token_type: str = "Bearer"

    def is_expired(self, buffer_seconds: int = 0, now: datetime | None = None) -> bool:
        """Return True if the access token expires within ``buffer_seconds``."""
        if self.expires_at is None:
            return False
        current = now or utc_now()
        return self.expires_at - current < timedelta(seconds=buffer_seconds)

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "token_secret": self.token_secret,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "token_type": self.token_type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Credential":
        expires_at = data.get("expires_at")
        return cls(
            access_token=data["access_token"],
            token_secret=data.get("token_secret"),
            refresh_token=data.get("refresh_token"),
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
            token_type=data.get("token_type", "Bearer"),
        )


@dataclass(frozen=True)
class MemberRef:
    """What a data client needs to act on behalf of one member."""

    member_id: UUID
    access_token: str = field(repr=False)


# ---------------------------------------------------------------------------
# Persistent connection record
# ---------------------------------------------------------------------------


@dataclass
class Integration:
    """One provider connection for one member.

    At most one non-revoked Integration exists per (member_id, source).
    Records are never deleted: disconnect moves them to REVOKED.
    """

    member_id: UUID
    source: IntegrationSource
    status: IntegrationStatus
    credential: Credential | None = field(default=None, repr=False)
    id: UUID = field(default_factory=uuid4)
    last_sync_at: datetime | None = None
    last_sync_status: SyncStatus | None = None
    connected_at: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def is_active(self) -> bool:
        return self.status is IntegrationStatus.ACTIVE


# ---------------------------------------------------------------------------
# Handshake correlation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HandshakeSession:
    """Correlates an outbound authorization redirect with its callback.

    For OAuth 1.0a ``request_token`` / ``request_token_secret`` come from the
    request-token leg.  For OAuth 2.0 ``request_token`` holds the ``state``
    value and there is no secret.
    """

    source: IntegrationSource
    member_id: UUID
    request_token: str
    request_token_secret: str | None = field(default=None, repr=False)
    issued_at: datetime = field(default_factory=utc_now)


# ---------------------------------------------------------------------------
# Abstract handshake manager
# ---------------------------------------------------------------------------


class HandshakeManager(ABC):
    """Drives a provider's authorization handshake.

    Subclasses must implement:
        - begin_authorization()
        - complete_authorization()
    """

    #: Provider this manager authorizes against.
    SOURCE: IntegrationSource

    #: Human-readable name for logging and UI.
    DISPLAY_NAME: str = "Unknown Provider"

    @abstractmethod
    async def begin_authorization(self, member_id: UUID) -> tuple[str, HandshakeSession]:
        """Start authorization for a member.

        Returns:
            The provider authorize URL to redirect the member to, and the
            HandshakeSession the caller must store until the callback.

        Raises:
            ProviderUnavailable: If the provider cannot be reached.
        """

    @abstractmethod
    async def complete_authorization(
        self, session: HandshakeSession, returned_token: str, verifier: str
    ) -> Credential:
        """Finish authorization using the parameters from the provider redirect.

        Raises:
            TokenMismatch:       ``returned_token`` differs from the session's.
            ExchangeFailed:      The provider rejected the exchange or replied
                                 with a malformed body.
            ProviderUnavailable: Transport failure or timeout.
        """
