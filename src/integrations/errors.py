"""Error taxonomy for provider integrations.

Every error carries a stable ``code`` that callers can surface without
leaking provider response bodies.  Handshake errors are converted to
redirect reason codes by the callback coordinator; sync errors are recorded
per category by the sync aggregator.
"""

from __future__ import annotations


class IntegrationError(Exception):
    """Base class for all integration failures."""

    code: str = "integration_error"

    def __init__(self, message: str = "", *, source: str | None = None) -> None:
        super().__init__(message or self.code)
        self.source = source


# ---------------------------------------------------------------------------
# Provider / transport errors
# ---------------------------------------------------------------------------


class ProviderUnavailable(IntegrationError):
    """Transport failure, timeout, 5xx, or an unparseable provider response.

    Not retried internally; the caller decides whether to back off and retry.
    """

    code = "provider_unavailable"

    def __init__(
        self,
        message: str = "",
        *,
        source: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, source=source)
        self.status_code = status_code


class AuthExpired(IntegrationError):
    """The stored credential was rejected.  Requires re-authorization."""

    code = "auth_expired"


class RateLimited(IntegrationError):
    """The provider throttled the request."""

    code = "rate_limited"

    def __init__(
        self,
        message: str = "",
        *,
        source: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, source=source)
        self.retry_after = retry_after


# ---------------------------------------------------------------------------
# Handshake integrity errors (terminal, user must restart authorization)
# ---------------------------------------------------------------------------


class MissingParams(IntegrationError):
    code = "missing_params"


class SessionExpired(IntegrationError):
    """No live handshake session for the callback (already used or past its TTL)."""

    code = "session_expired"


class TokenMismatch(IntegrationError):
    code = "token_mismatch"


class ExchangeFailed(IntegrationError):
    """Token exchange was rejected or returned a malformed body."""

    code = "exchange_failed"
