"""Shared fixtures, fakes and canned provider responses for integration tests."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable
from uuid import UUID

import httpx
import pytest
from cryptography.fernet import Fernet

from src.integrations.base import (
    Credential,
    DataCategory,
    HandshakeManager,
    HandshakeSession,
    Integration,
    IntegrationSource,
    IntegrationStatus,
    MemberRef,
)
from src.integrations.config_loader import (
    IntegrationsConfig,
    SyncPolicy,
    load_integrations_config,
)
from src.integrations.errors import TokenMismatch
from src.integrations.sessions import InMemoryHandshakeSessionStore
from src.integrations.store import InMemoryConnectionStore
from src.models.oura import ActivityRecord, ReadinessRecord, SleepRecord

# Canonical test member IDs
TEST_MEMBER_ID = UUID("12345678-1234-5678-1234-567812345678")
OTHER_MEMBER_ID = UUID("87654321-4321-8765-4321-876543218765")
TEST_TODAY = date(2026, 2, 23)

CALLBACK_URL = "https://app.example.com/api/v1/integrations/garmin/callback"


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def integrations_config() -> IntegrationsConfig:
    """Load the real integrations config for tests."""
    return load_integrations_config()


@pytest.fixture
def sync_policy() -> SyncPolicy:
    return SyncPolicy(
        default_window_days=7,
        max_window_days=90,
        fetch_timeout_seconds=1.0,
        max_pages=5,
        rate_limit_retries=1,
        max_retry_delay_seconds=5.0,
        token_refresh_buffer_seconds=300,
    )


@pytest.fixture
def fernet_key() -> str:
    return Fernet.generate_key().decode()


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryConnectionStore:
    return InMemoryConnectionStore()


@pytest.fixture
def sessions(clock: FakeClock) -> InMemoryHandshakeSessionStore:
    return InMemoryHandshakeSessionStore(clock=clock)


def bearer_credential(expires_in: timedelta | None = timedelta(hours=12)) -> Credential:
    return Credential(
        access_token="oura-access-token",
        refresh_token="oura-refresh-token",
        expires_at=datetime.now(timezone.utc) + expires_in if expires_in else None,
    )


def oauth1_credential() -> Credential:
    return Credential(access_token="garmin-access", token_secret="garmin-secret", token_type="OAuth1")


async def connect(
    store: InMemoryConnectionStore,
    source: IntegrationSource = IntegrationSource.OURA,
    credential: Credential | None = None,
    member_id: UUID = TEST_MEMBER_ID,
) -> Integration:
    """Seed an ACTIVE integration."""
    return await store.upsert_integration(
        member_id, source, credential or bearer_credential(), IntegrationStatus.ACTIVE
    )


# ---------------------------------------------------------------------------
# HTTP mocking
# ---------------------------------------------------------------------------


class RecordingHandler:
    """httpx.MockTransport handler that records every request it serves."""

    def __init__(self, respond: Callable[[httpx.Request], httpx.Response]) -> None:
        self._respond = respond
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._respond(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def form_response(body: str, status_code: int = 200) -> httpx.Response:
    return httpx.Response(
        status_code,
        text=body,
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )


# ---------------------------------------------------------------------------
# Canned Oura records
# ---------------------------------------------------------------------------

SLEEP_PAYLOAD: list[dict[str, Any]] = [
    {
        "id": "sleep-1",
        "day": "2026-02-22",
        "score": 80,
        "contributors": {"deep_sleep": 70, "efficiency": 88, "total_sleep": 81},
        "timestamp": "2026-02-22T00:00:00+00:00",
    },
    {
        "id": "sleep-2",
        "day": "2026-02-23",
        "score": 90,
        "contributors": {"deep_sleep": 92, "efficiency": 91, "total_sleep": 89},
        "timestamp": "2026-02-23T00:00:00+00:00",
    },
]

ACTIVITY_PAYLOAD: list[dict[str, Any]] = [
    {"id": "act-1", "day": "2026-02-21", "score": 75, "steps": 100, "active_calories": 10},
    {"id": "act-2", "day": "2026-02-22", "score": 80, "steps": 200, "active_calories": 20},
    {"id": "act-3", "day": "2026-02-23", "score": 85, "steps": 300, "active_calories": 30},
]

READINESS_PAYLOAD: list[dict[str, Any]] = [
    {
        "id": "ready-1",
        "day": "2026-02-22",
        "score": 70,
        "contributors": {"hrv_balance": 66, "resting_heart_rate": 90},
        "temperature_deviation": -0.1,
    },
    {
        "id": "ready-2",
        "day": "2026-02-23",
        "score": None,
        "contributors": {"hrv_balance": None},
    },
]


def sleep_records() -> list[SleepRecord]:
    return [SleepRecord.model_validate(r) for r in SLEEP_PAYLOAD]


def activity_records() -> list[ActivityRecord]:
    return [ActivityRecord.model_validate(r) for r in ACTIVITY_PAYLOAD]


def readiness_records() -> list[ReadinessRecord]:
    return [ReadinessRecord.model_validate(r) for r in READINESS_PAYLOAD]


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeOuraClient:
    """Stand-in for OuraClient.

    Each category is configured with one outcome: a list of records, an
    exception to raise, or an async callable to await.  A tuple of outcomes
    is consumed one per call (the last one repeats).
    """

    def __init__(self, sleep: Any = None, activity: Any = None, readiness: Any = None) -> None:
        self._outcomes: dict[DataCategory, Any] = {
            DataCategory.SLEEP: sleep if sleep is not None else sleep_records(),
            DataCategory.ACTIVITY: activity if activity is not None else activity_records(),
            DataCategory.READINESS: readiness if readiness is not None else readiness_records(),
        }
        self.calls: list[tuple[DataCategory, date, date, str]] = []

    async def fetch_category(
        self, member_ref: MemberRef, category: DataCategory, start_date: date, end_date: date
    ) -> list:
        self.calls.append((category, start_date, end_date, member_ref.access_token))
        outcome = self._outcomes[category]
        if isinstance(outcome, tuple):
            attempt = sum(1 for c in self.calls if c[0] is category) - 1
            outcome = outcome[min(attempt, len(outcome) - 1)]
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return await outcome()
        return list(outcome)


class StubHandshakeManager(HandshakeManager):
    """Handshake manager with canned results and call recording."""

    SOURCE = IntegrationSource.GARMIN
    DISPLAY_NAME = "Stub Provider"

    def __init__(
        self,
        source: IntegrationSource = IntegrationSource.GARMIN,
        credential: Credential | None = None,
        error: Exception | None = None,
    ) -> None:
        self.source = source
        self.credential = credential or oauth1_credential()
        self.error = error
        self.completed: list[tuple[HandshakeSession, str, str]] = []

    async def begin_authorization(self, member_id: UUID) -> tuple[str, HandshakeSession]:
        if self.error:
            raise self.error
        session = HandshakeSession(
            source=self.source,
            member_id=member_id,
            request_token="T1",
            request_token_secret="S1",
        )
        return "https://provider.example.com/authorize?oauth_token=T1", session

    async def complete_authorization(
        self, session: HandshakeSession, returned_token: str, verifier: str
    ) -> Credential:
        self.completed.append((session, returned_token, verifier))
        if returned_token != session.request_token:
            raise TokenMismatch()
        if self.error:
            raise self.error
        return self.credential
