"""Oura Ring API v2: OAuth2 connect and usercollection data client.

Environment variables:
    OURA_CLIENT_ID      — OAuth2 client ID
    OURA_CLIENT_SECRET  — OAuth2 client secret

Endpoints used (relative to the configured api_base):
    /daily_sleep      — Nightly sleep summary and score
    /daily_activity   — Daily steps / calories summary
    /daily_readiness  — Readiness score and contributors
"""

from __future__ import annotations

import logging
import secrets
from datetime import date, timedelta
from typing import Any
from urllib.parse import urlencode
from uuid import UUID

import httpx
from pydantic import ValidationError

from src.config import get_settings
from src.integrations.base import (
    Credential,
    DataCategory,
    HandshakeManager,
    HandshakeSession,
    IntegrationSource,
    MemberRef,
    utc_now,
)
from src.integrations.config_loader import OuraEndpoints, get_integrations_config
from src.integrations.errors import (
    AuthExpired,
    ExchangeFailed,
    MissingParams,
    ProviderUnavailable,
    RateLimited,
    TokenMismatch,
)
from src.models.oura import (
    ActivityRecord,
    OuraCollection,
    OuraRecord,
    ReadinessRecord,
    SleepRecord,
)

logger = logging.getLogger("rebate.integrations.oura")

_SOURCE = IntegrationSource.OURA.value

# Category → record schema
RECORD_MODELS: dict[DataCategory, type[OuraRecord]] = {
    DataCategory.SLEEP: SleepRecord,
    DataCategory.ACTIVITY: ActivityRecord,
    DataCategory.READINESS: ReadinessRecord,
}

# Longest provider body excerpt written to the log
_LOG_BODY_LIMIT = 200


def _body_excerpt(response: httpx.Response) -> str:
    return response.text[:_LOG_BODY_LIMIT]


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def _valid_expires_in(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, bool):
        return False
    if isinstance(value, str):
        return value.isdigit()
    return isinstance(value, (int, float)) and value >= 0


def _credential_from_token_response(
    data: dict[str, Any], previous_refresh_token: str | None = None
) -> Credential:
    expires_in = data.get("expires_in")
    expires_at = utc_now() + timedelta(seconds=int(expires_in)) if expires_in else None
    return Credential(
        access_token=data["access_token"],
        refresh_token=data.get("refresh_token") or previous_refresh_token,
        expires_at=expires_at,
        token_type=data.get("token_type", "Bearer"),
    )


# ---------------------------------------------------------------------------
# OAuth2 handshake
# ---------------------------------------------------------------------------


class OuraHandshakeManager(HandshakeManager):
    """OAuth2 authorization-code flow for Oura.

    The ``state`` parameter plays the role of the OAuth1 request token: it is
    stored as ``HandshakeSession.request_token`` and must come back unchanged
    on the callback.
    """

    SOURCE = IntegrationSource.OURA
    DISPLAY_NAME = "Oura Ring"

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        callback_url: str | None = None,
        endpoints: OuraEndpoints | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        settings = get_settings()
        self._client_id = client_id or settings.oura_client_id
        self._client_secret = client_secret or settings.oura_client_secret
        self._callback_url = callback_url or settings.callback_url(self.SOURCE.value)
        self._endpoints = endpoints or get_integrations_config().oura
        self._http_client = http_client
        self._timeout = timeout if timeout is not None else settings.http_timeout_seconds

        if not self._client_id or not self._client_secret:
            logger.warning(
                "Oura client id/secret not configured. "
                "Set OURA_CLIENT_ID and OURA_CLIENT_SECRET environment variables."
            )

    async def begin_authorization(self, member_id: UUID) -> tuple[str, HandshakeSession]:
        state = secrets.token_urlsafe(24)
        params = {
            "client_id": self._client_id,
            "redirect_uri": self._callback_url,
            "response_type": "code",
            "scope": " ".join(self._endpoints.scopes),
            "state": state,
        }
        authorize_url = f"{self._endpoints.authorize_url}?{urlencode(params)}"
        session = HandshakeSession(source=self.SOURCE, member_id=member_id, request_token=state)
        logger.info("Oura: built authorize URL for member %s", member_id)
        return authorize_url, session

    async def complete_authorization(
        self, session: HandshakeSession, returned_token: str, verifier: str
    ) -> Credential:
        """Exchange the authorization code (``verifier``) for tokens.

        ``returned_token`` is the ``state`` echoed back by Oura.
        """
        if returned_token != session.request_token:
            raise TokenMismatch("Returned state does not match the pending session", source=_SOURCE)
        if not verifier:
            raise MissingParams("code is required", source=_SOURCE)

        logger.info("Oura: exchanging authorization code for member %s", session.member_id)
        response = await self._post_token(
            {
                "grant_type": "authorization_code",
                "code": verifier,
                "redirect_uri": self._callback_url,
            }
        )

        if response.status_code >= 400:
            logger.warning(
                "Oura token exchange rejected (%d): %s",
                response.status_code,
                _body_excerpt(response),
            )
            raise ExchangeFailed(
                f"Oura token exchange returned {response.status_code}", source=_SOURCE
            )

        data = self._parse_token_body(response)
        if data is None:
            raise ExchangeFailed("Oura token response is malformed", source=_SOURCE)
        return _credential_from_token_response(data)

    async def refresh(self, credential: Credential) -> Credential:
        """Refresh an expired access token.

        Raises:
            AuthExpired:         No refresh token, or Oura rejected it.
            ProviderUnavailable: Transport failure, 5xx or malformed body.
        """
        if not credential.refresh_token:
            raise AuthExpired("No refresh token stored", source=_SOURCE)

        response = await self._post_token(
            {"grant_type": "refresh_token", "refresh_token": credential.refresh_token}
        )

        if response.status_code in (400, 401):
            logger.warning("Oura refresh rejected (%d)", response.status_code)
            raise AuthExpired("Oura rejected the refresh token", source=_SOURCE)
        if response.status_code >= 400:
            raise ProviderUnavailable(
                f"Oura refresh returned {response.status_code}",
                source=_SOURCE,
                status_code=response.status_code,
            )

        data = self._parse_token_body(response)
        if data is None:
            raise ProviderUnavailable("Oura refresh response is malformed", source=_SOURCE)
        return _credential_from_token_response(data, credential.refresh_token)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _post_token(self, form: dict[str, str]) -> httpx.Response:
        data = {**form, "client_id": self._client_id, "client_secret": self._client_secret}
        try:
            if self._http_client:
                return await self._http_client.post(self._endpoints.token_url, data=data)
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                return await client.post(self._endpoints.token_url, data=data)
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(
                f"Oura token endpoint unreachable: {type(exc).__name__}", source=_SOURCE
            ) from exc

    @staticmethod
    def _parse_token_body(response: httpx.Response) -> dict[str, Any] | None:
        try:
            data = response.json()
        except ValueError:
            return None
        if not isinstance(data, dict) or not data.get("access_token"):
            return None
        if not _valid_expires_in(data.get("expires_in")):
            return None
        return data


# ---------------------------------------------------------------------------
# Data client
# ---------------------------------------------------------------------------


class OuraClient:
    """Bearer-token client for the Oura usercollection endpoints.

    Stateless apart from configuration: the caller supplies the member's
    token on every call, and computes the date range.
    """

    def __init__(
        self,
        endpoints: OuraEndpoints | None = None,
        http_client: httpx.AsyncClient | None = None,
        max_pages: int | None = None,
        timeout: float | None = None,
    ) -> None:
        """Initialize the Oura client.

        Args:
            endpoints:   API base and category paths (defaults to config).
            http_client: Optional pre-configured httpx client (for testing).
            max_pages:   Upper bound on ``next_token`` pages per fetch.
            timeout:     Per-request timeout in seconds.
        """
        config = get_integrations_config()
        self._endpoints = endpoints or config.oura
        self._http_client = http_client
        self._max_pages = max_pages if max_pages is not None else config.sync.max_pages
        self._timeout = timeout if timeout is not None else get_settings().http_timeout_seconds

    async def fetch_category(
        self,
        member_ref: MemberRef,
        category: DataCategory | str,
        start_date: date | str,
        end_date: date | str,
    ) -> list[OuraRecord]:
        """Fetch every record of one category in ``[start_date, end_date]``.

        Args:
            member_ref: Member id and bearer token.
            category:   "sleep", "activity" or "readiness".
            start_date: First day, inclusive.
            end_date:   Last day, inclusive.

        Returns:
            Validated records, in provider order.  Empty if there is no data.

        Raises:
            ValueError:          Unknown category.
            AuthExpired:         401 / 403.
            RateLimited:         429.
            ProviderUnavailable: Anything else that prevents a valid result.
        """
        try:
            category = DataCategory(category)
        except ValueError:
            raise ValueError(f"Unknown Oura data category '{category}'") from None

        url = self._endpoints.category_url(category.value)
        envelope = OuraCollection[RECORD_MODELS[category]]
        params: dict[str, str] = {
            "start_date": _format_day(start_date),
            "end_date": _format_day(end_date),
        }

        records: list[OuraRecord] = []
        for _ in range(self._max_pages):
            payload = await self._get(url, params, member_ref.access_token)
            try:
                page = envelope.model_validate(payload)
            except ValidationError as exc:
                logger.warning(
                    "Oura %s response failed validation for member %s: %d error(s)",
                    category.value,
                    member_ref.member_id,
                    exc.error_count(),
                )
                raise ProviderUnavailable(
                    f"Oura {category.value} response did not match the expected schema",
                    source=_SOURCE,
                ) from exc

            records.extend(page.data)
            if not page.next_token:
                break
            params = {**params, "next_token": page.next_token}
        else:
            logger.warning(
                "Oura %s: stopped after %d pages for member %s",
                category.value,
                self._max_pages,
                member_ref.member_id,
            )

        logger.debug(
            "Oura %s: %d records for member %s", category.value, len(records), member_ref.member_id
        )
        return records

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _build_headers(self, access_token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}

    async def _get(self, url: str, params: dict, access_token: str) -> Any:
        """Make an authenticated GET request and map failures to IntegrationErrors."""
        headers = self._build_headers(access_token)

        try:
            if self._http_client:
                response = await self._http_client.get(url, params=params, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.get(url, params=params, headers=headers)
        except httpx.TimeoutException as exc:
            raise ProviderUnavailable("Oura request timed out", source=_SOURCE) from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(
                f"Oura request failed: {type(exc).__name__}", source=_SOURCE
            ) from exc

        status = response.status_code
        if status in (401, 403):
            raise AuthExpired(f"Oura rejected the access token ({status})", source=_SOURCE)
        if status == 429:
            raise RateLimited(
                "Oura rate limit exceeded", source=_SOURCE, retry_after=_retry_after(response)
            )
        if status >= 400:
            logger.warning("Oura GET %s returned %d: %s", url, status, _body_excerpt(response))
            raise ProviderUnavailable(
                f"Oura returned {status}", source=_SOURCE, status_code=status
            )

        try:
            return response.json()
        except ValueError as exc:
            raise ProviderUnavailable("Oura returned a non-JSON body", source=_SOURCE) from exc


def _format_day(value: date | str) -> str:
    return value.isoformat() if isinstance(value, date) else value
