"""Callback coordinator: provider redirect → persisted Integration.

Every provider redirect is reduced to a ``CallbackOutcome`` carrying either
the connected source or one of a closed set of reason codes.  The handshake
session is consumed on every attempt, successful or not, so a replayed
callback always lands on ``session_expired``.

State machine::

    take session ─► params present? ─► session live & same source?
                        │ no                 │ no
                        ▼                    ▼
              denied | missing_params   session_expired
                                             │ yes
                                             ▼
                                   returned token matches? ── no ─► token_mismatch
                                             │ yes
                                             ▼
                                   complete_authorization ── error ─► callback_failed
                                             │
                                             ▼
                                   upsert_integration ── error ─► callback_failed
                                             │
                                             ▼
                                          success
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Mapping
from urllib.parse import urlencode
from uuid import UUID

from src.integrations.base import (
    HandshakeManager,
    HandshakeSession,
    IntegrationSource,
    IntegrationStatus,
)
from src.integrations.errors import (
    IntegrationError,
    MissingParams,
    SessionExpired,
    TokenMismatch,
)
from src.integrations.sessions import HandshakeSessionStore
from src.integrations.store import ConnectionStore

logger = logging.getLogger("rebate.integrations.callback")


class CallbackReason(str, Enum):
    DENIED = "denied"
    MISSING_PARAMS = "missing_params"
    SESSION_EXPIRED = "session_expired"
    TOKEN_MISMATCH = "token_mismatch"
    CALLBACK_FAILED = "callback_failed"


@dataclass(frozen=True)
class CallbackParams:
    """Provider-agnostic view of the redirect query string.

    ``returned_token`` is the OAuth1 ``oauth_token`` or the OAuth2 ``state``;
    ``verifier`` is the OAuth1 ``oauth_verifier`` or the OAuth2 ``code``.
    """

    returned_token: str | None = None
    verifier: str | None = None
    denied: bool = False

    @classmethod
    def from_query(cls, source: IntegrationSource, query: Mapping[str, str]) -> "CallbackParams":
        if source is IntegrationSource.GARMIN:
            return cls(
                returned_token=query.get("oauth_token") or None,
                verifier=query.get("oauth_verifier") or None,
                denied=bool(query.get("denied")),
            )
        return cls(
            returned_token=query.get("state") or None,
            verifier=query.get("code") or None,
            denied=query.get("error") == "access_denied",
        )


@dataclass(frozen=True)
class CallbackOutcome:
    success: bool
    source: IntegrationSource
    reason: CallbackReason | None = None
    integration_id: UUID | None = None

    def redirect_params(self) -> dict[str, str]:
        if self.success:
            return {"connected": self.source.value}
        reason = self.reason or CallbackReason.CALLBACK_FAILED
        return {"error": reason.value}

    def redirect_url(self, base: str) -> str:
        separator = "&" if "?" in base else "?"
        return f"{base}{separator}{urlencode(self.redirect_params())}"


class CallbackCoordinator:
    """Correlates a provider redirect with its HandshakeSession and finishes it."""

    def __init__(
        self,
        sessions: HandshakeSessionStore,
        store: ConnectionStore,
        managers: Mapping[IntegrationSource, HandshakeManager],
    ) -> None:
        self._sessions = sessions
        self._store = store
        self._managers = managers

    async def handle(
        self,
        source: IntegrationSource,
        session_id: str | None,
        params: CallbackParams,
    ) -> CallbackOutcome:
        """Run one callback to completion.  Never raises."""
        try:
            session = await self._sessions.take_once(session_id) if session_id else None
        except Exception:
            logger.exception("Failed to load %s handshake session", source.value)
            return self._fail(source, CallbackReason.CALLBACK_FAILED)

        try:
            session = self._verify(source, session, params)
        except MissingParams:
            reason = CallbackReason.DENIED if params.denied else CallbackReason.MISSING_PARAMS
            return self._fail(source, reason)
        except (SessionExpired, TokenMismatch) as exc:
            return self._fail(source, CallbackReason(exc.code))

        manager = self._managers.get(source)
        if manager is None:
            logger.error("No handshake manager configured for %s", source.value)
            return self._fail(source, CallbackReason.CALLBACK_FAILED)

        try:
            credential = await manager.complete_authorization(
                session, params.returned_token, params.verifier
            )
        except TokenMismatch:
            return self._fail(source, CallbackReason.TOKEN_MISMATCH)
        except IntegrationError as exc:
            logger.warning(
                "%s token exchange failed for member %s: [%s] %s",
                source.value,
                session.member_id,
                exc.code,
                exc,
            )
            return self._fail(source, CallbackReason.CALLBACK_FAILED)
        except Exception:
            logger.exception(
                "Unexpected error completing %s authorization for member %s",
                source.value,
                session.member_id,
            )
            return self._fail(source, CallbackReason.CALLBACK_FAILED)

        try:
            integration = await self._store.upsert_integration(
                session.member_id, source, credential, IntegrationStatus.ACTIVE
            )
        except Exception:
            logger.exception(
                "Failed to persist %s integration for member %s", source.value, session.member_id
            )
            return self._fail(source, CallbackReason.CALLBACK_FAILED)

        logger.info("Connected %s for member %s", source.value, session.member_id)
        return CallbackOutcome(success=True, source=source, integration_id=integration.id)

    @staticmethod
    def _verify(
        source: IntegrationSource,
        session: HandshakeSession | None,
        params: CallbackParams,
    ) -> HandshakeSession:
        """Raise the handshake integrity error this callback fails, if any."""
        if not params.returned_token or not params.verifier:
            raise MissingParams(source=source.value)
        if session is None or session.source is not source:
            raise SessionExpired(source=source.value)
        if params.returned_token != session.request_token:
            raise TokenMismatch(source=source.value)
        return session

    @staticmethod
    def _fail(source: IntegrationSource, reason: CallbackReason) -> CallbackOutcome:
        logger.info("%s callback rejected: %s", source.value, reason.value)
        return CallbackOutcome(success=False, source=source, reason=reason)
