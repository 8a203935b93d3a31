"""Garmin Connect three-legged OAuth 1.0a handshake.

Garmin issues long-lived access tokens with no refresh leg, so the handshake
is the whole credential lifecycle:

    1. request token    POST request_token_url  (signed with consumer creds,
                                                 carries oauth_callback)
    2. authorize        browser → authorize_url?oauth_token=...
    3. access token     POST access_token_url   (signed with the request token
                                                 secret, carries oauth_verifier)

Requests are signed HMAC-SHA1 by authlib's ``AsyncOAuth1Client``.

Environment variables:
    GARMIN_CONSUMER_KEY     — OAuth 1.0a consumer key
    GARMIN_CONSUMER_SECRET  — OAuth 1.0a consumer secret
"""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

import httpx
from authlib.integrations.httpx_client import AsyncOAuth1Client, OAuthError

from src.config import get_settings
from src.integrations.base import (
    Credential,
    HandshakeManager,
    HandshakeSession,
    IntegrationSource,
)
from src.integrations.config_loader import GarminEndpoints, get_integrations_config
from src.integrations.errors import (
    ExchangeFailed,
    MissingParams,
    ProviderUnavailable,
    TokenMismatch,
)

logger = logging.getLogger("rebate.integrations.garmin")


class GarminHandshakeManager(HandshakeManager):
    """OAuth 1.0a handshake against Garmin Connect."""

    SOURCE = IntegrationSource.GARMIN
    DISPLAY_NAME = "Garmin Connect"

    def __init__(
        self,
        consumer_key: str | None = None,
        consumer_secret: str | None = None,
        callback_url: str | None = None,
        endpoints: GarminEndpoints | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the Garmin handshake manager.

        Args:
            consumer_key:    OAuth 1.0a consumer key (defaults to settings).
            consumer_secret: OAuth 1.0a consumer secret (defaults to settings).
            callback_url:    Where Garmin redirects after the member decides.
            endpoints:       Handshake URLs (defaults to integrations_config.yaml).
            timeout:         Per-request timeout in seconds.
            transport:       Optional httpx transport (useful for testing).
        """
        settings = get_settings()
        self._consumer_key = consumer_key or settings.garmin_consumer_key
        self._consumer_secret = consumer_secret or settings.garmin_consumer_secret
        self._callback_url = callback_url or settings.callback_url(self.SOURCE.value)
        self._endpoints = endpoints or get_integrations_config().garmin
        self._timeout = timeout if timeout is not None else settings.http_timeout_seconds
        self._transport = transport

        if not self._consumer_key or not self._consumer_secret:
            logger.warning(
                "Garmin consumer key/secret not configured. "
                "Set GARMIN_CONSUMER_KEY and GARMIN_CONSUMER_SECRET environment variables."
            )

    def _client(self, **kwargs: Any) -> AsyncOAuth1Client:
        return AsyncOAuth1Client(
            client_id=self._consumer_key,
            client_secret=self._consumer_secret,
            timeout=self._timeout,
            transport=self._transport,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # HandshakeManager interface
    # ------------------------------------------------------------------

    async def begin_authorization(self, member_id: UUID) -> tuple[str, HandshakeSession]:
        """Obtain a request token and build the Garmin consent URL.

        Args:
            member_id: Member who is connecting Garmin.

        Returns:
            (authorize_url, HandshakeSession) — the session holds the request
            token secret and must stay server-side.

        Raises:
            ProviderUnavailable: Garmin failed, timed out, or replied without
                                 both oauth_token and oauth_token_secret.
        """
        logger.info("Garmin: requesting request token for member %s", member_id)

        async with self._client(redirect_uri=self._callback_url) as client:
            try:
                token = await client.fetch_request_token(self._endpoints.request_token_url)
            except httpx.HTTPError as exc:
                raise ProviderUnavailable(
                    f"Garmin request token call failed: {type(exc).__name__}",
                    source=self.SOURCE.value,
                ) from exc
            except OAuthError as exc:
                raise ProviderUnavailable(
                    f"Garmin rejected the request token call: {exc.error}",
                    source=self.SOURCE.value,
                ) from exc
            except ValueError as exc:
                raise ProviderUnavailable(
                    "Garmin request token response could not be decoded",
                    source=self.SOURCE.value,
                ) from exc

            request_token = token.get("oauth_token")
            request_token_secret = token.get("oauth_token_secret")
            if not request_token or not request_token_secret:
                raise ProviderUnavailable(
                    "Garmin request token response is missing token fields",
                    source=self.SOURCE.value,
                )

            authorize_url = client.create_authorization_url(
                self._endpoints.authorize_url, request_token=request_token
            )

        session = HandshakeSession(
            source=self.SOURCE,
            member_id=member_id,
            request_token=request_token,
            request_token_secret=request_token_secret,
        )
        return authorize_url, session

    async def complete_authorization(
        self, session: HandshakeSession, returned_token: str, verifier: str
    ) -> Credential:
        """Exchange the authorized request token for a long-lived access token.

        Args:
            session:        The HandshakeSession created by begin_authorization.
            returned_token: ``oauth_token`` from the Garmin redirect.
            verifier:       ``oauth_verifier`` from the Garmin redirect.

        Returns:
            Credential with access_token + token_secret (token_type "OAuth1").
        """
        if returned_token != session.request_token:
            raise TokenMismatch(
                "Returned oauth_token does not match the pending request token",
                source=self.SOURCE.value,
            )
        if not verifier:
            raise MissingParams("oauth_verifier is required", source=self.SOURCE.value)

        logger.info("Garmin: exchanging verifier for member %s", session.member_id)

        async with self._client(
            token=session.request_token,
            token_secret=session.request_token_secret or "",
        ) as client:
            try:
                token = await client.fetch_access_token(
                    self._endpoints.access_token_url, verifier=verifier
                )
            except httpx.HTTPError as exc:
                raise ProviderUnavailable(
                    f"Garmin access token call failed: {type(exc).__name__}",
                    source=self.SOURCE.value,
                ) from exc
            except OAuthError as exc:
                raise ExchangeFailed(
                    f"Garmin rejected the access token exchange: {exc.error}",
                    source=self.SOURCE.value,
                ) from exc
            except ValueError as exc:
                raise ExchangeFailed(
                    "Garmin access token response could not be decoded",
                    source=self.SOURCE.value,
                ) from exc

        access_token = token.get("oauth_token")
        token_secret = token.get("oauth_token_secret")
        if not access_token or not token_secret:
            raise ExchangeFailed(
                "Garmin access token response is missing token fields",
                source=self.SOURCE.value,
            )

        return Credential(
            access_token=access_token,
            token_secret=token_secret,
            token_type="OAuth1",
        )
