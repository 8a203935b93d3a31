"""Tests for the callback coordinator and its reason codes."""

from __future__ import annotations

from unittest.mock import AsyncMock

import httpx
import pytest

from src.integrations.adapters.garmin import GarminHandshakeManager
from src.integrations.base import IntegrationSource, IntegrationStatus
from src.integrations.callback import (
    CallbackCoordinator,
    CallbackOutcome,
    CallbackParams,
    CallbackReason,
)
from src.integrations.config_loader import IntegrationsConfig
from src.integrations.errors import ExchangeFailed
from src.integrations.sessions import InMemoryHandshakeSessionStore
from src.integrations.store import InMemoryConnectionStore
from src.integrations.tests.conftest import (
    CALLBACK_URL,
    TEST_MEMBER_ID,
    FakeClock,
    RecordingHandler,
    StubHandshakeManager,
    form_response,
)

GARMIN = IntegrationSource.GARMIN
OURA = IntegrationSource.OURA


def _garmin_provider(request: httpx.Request) -> httpx.Response:
    if request.url.path.endswith("request_token"):
        return form_response("oauth_token=T1&oauth_token_secret=S1")
    return form_response("oauth_token=A1&oauth_token_secret=AS1")


def _coordinator(sessions, store, *managers) -> CallbackCoordinator:
    return CallbackCoordinator(sessions, store, {m.source: m for m in managers})


async def _begin(sessions: InMemoryHandshakeSessionStore, manager, session_id: str = "sid-1") -> str:
    _, session = await manager.begin_authorization(TEST_MEMBER_ID)
    await sessions.put(session_id, session, 600)
    return session_id


# ---------------------------------------------------------------------------
# Garmin handshake end to end
# ---------------------------------------------------------------------------


class TestGarminEndToEnd:
    @pytest.mark.asyncio
    async def test_successful_connect(
        self,
        store: InMemoryConnectionStore,
        sessions: InMemoryHandshakeSessionStore,
        integrations_config: IntegrationsConfig,
    ) -> None:
        handler = RecordingHandler(_garmin_provider)
        manager = GarminHandshakeManager(
            consumer_key="ck",
            consumer_secret="cs",
            callback_url=CALLBACK_URL,
            endpoints=integrations_config.garmin,
            transport=handler.transport,
        )
        coordinator = CallbackCoordinator(sessions, store, {GARMIN: manager})
        session_id = await _begin(sessions, manager)

        outcome = await coordinator.handle(
            GARMIN, session_id, CallbackParams(returned_token="T1", verifier="V1")
        )

        assert outcome.success is True
        assert outcome.redirect_params() == {"connected": "garmin"}
        integration = await store.find_integration(TEST_MEMBER_ID, GARMIN)
        assert integration.id == outcome.integration_id
        assert integration.status is IntegrationStatus.ACTIVE
        assert integration.credential.access_token == "A1"
        assert integration.credential.token_secret == "AS1"
        assert integration.connected_at is not None
        assert len(handler.requests) == 2
        assert len(sessions) == 0

    @pytest.mark.asyncio
    async def test_token_mismatch_never_exchanges(
        self,
        store: InMemoryConnectionStore,
        sessions: InMemoryHandshakeSessionStore,
        integrations_config: IntegrationsConfig,
    ) -> None:
        handler = RecordingHandler(_garmin_provider)
        manager = GarminHandshakeManager(
            consumer_key="ck",
            consumer_secret="cs",
            callback_url=CALLBACK_URL,
            endpoints=integrations_config.garmin,
            transport=handler.transport,
        )
        coordinator = CallbackCoordinator(sessions, store, {GARMIN: manager})
        session_id = await _begin(sessions, manager)

        outcome = await coordinator.handle(
            GARMIN, session_id, CallbackParams(returned_token="T2", verifier="V1")
        )

        assert outcome.reason is CallbackReason.TOKEN_MISMATCH
        assert await store.find_integration(TEST_MEMBER_ID, GARMIN) is None
        assert [r.url.path.rsplit("/", 1)[-1] for r in handler.requests] == ["request_token"]


# ---------------------------------------------------------------------------
# Reason codes
# ---------------------------------------------------------------------------


class TestReasonCodes:
    @pytest.mark.asyncio
    async def test_replayed_callback_is_session_expired(
        self, store: InMemoryConnectionStore, sessions: InMemoryHandshakeSessionStore
    ) -> None:
        manager = StubHandshakeManager()
        coordinator = _coordinator(sessions, store, manager)
        session_id = await _begin(sessions, manager)
        params = CallbackParams(returned_token="T1", verifier="V1")

        first = await coordinator.handle(GARMIN, session_id, params)
        second = await coordinator.handle(GARMIN, session_id, params)

        assert first.success is True
        assert second.reason is CallbackReason.SESSION_EXPIRED
        assert len(manager.completed) == 1

    @pytest.mark.asyncio
    async def test_expired_session(
        self,
        store: InMemoryConnectionStore,
        clock: FakeClock,
        sessions: InMemoryHandshakeSessionStore,
    ) -> None:
        manager = StubHandshakeManager()
        session_id = await _begin(sessions, manager)
        clock.advance(601)

        outcome = await _coordinator(sessions, store, manager).handle(
            GARMIN, session_id, CallbackParams(returned_token="T1", verifier="V1")
        )

        assert outcome.reason is CallbackReason.SESSION_EXPIRED
        assert manager.completed == []

    @pytest.mark.asyncio
    async def test_no_cookie(
        self, store: InMemoryConnectionStore, sessions: InMemoryHandshakeSessionStore
    ) -> None:
        outcome = await _coordinator(sessions, store, StubHandshakeManager()).handle(
            GARMIN, None, CallbackParams(returned_token="T1", verifier="V1")
        )
        assert outcome.reason is CallbackReason.SESSION_EXPIRED

    @pytest.mark.asyncio
    async def test_session_from_other_provider(
        self, store: InMemoryConnectionStore, sessions: InMemoryHandshakeSessionStore
    ) -> None:
        oura = StubHandshakeManager(source=OURA)
        garmin = StubHandshakeManager()
        session_id = await _begin(sessions, oura)

        outcome = await _coordinator(sessions, store, garmin, oura).handle(
            GARMIN, session_id, CallbackParams(returned_token="T1", verifier="V1")
        )

        assert outcome.reason is CallbackReason.SESSION_EXPIRED
        assert garmin.completed == [] and oura.completed == []

    @pytest.mark.parametrize(
        "params",
        [
            CallbackParams(returned_token="T1"),
            CallbackParams(verifier="V1"),
            CallbackParams(),
        ],
    )
    @pytest.mark.asyncio
    async def test_missing_params_consumes_session(
        self,
        store: InMemoryConnectionStore,
        sessions: InMemoryHandshakeSessionStore,
        params: CallbackParams,
    ) -> None:
        manager = StubHandshakeManager()
        coordinator = _coordinator(sessions, store, manager)
        session_id = await _begin(sessions, manager)

        outcome = await coordinator.handle(GARMIN, session_id, params)

        assert outcome.reason is CallbackReason.MISSING_PARAMS
        assert len(sessions) == 0
        follow_up = await coordinator.handle(
            GARMIN, session_id, CallbackParams(returned_token="T1", verifier="V1")
        )
        assert follow_up.reason is CallbackReason.SESSION_EXPIRED

    @pytest.mark.asyncio
    async def test_denied(
        self, store: InMemoryConnectionStore, sessions: InMemoryHandshakeSessionStore
    ) -> None:
        manager = StubHandshakeManager()
        session_id = await _begin(sessions, manager)

        outcome = await _coordinator(sessions, store, manager).handle(
            GARMIN, session_id, CallbackParams(denied=True)
        )

        assert outcome.reason is CallbackReason.DENIED
        assert outcome.redirect_params() == {"error": "denied"}

    @pytest.mark.asyncio
    async def test_exchange_failure(
        self, store: InMemoryConnectionStore, sessions: InMemoryHandshakeSessionStore
    ) -> None:
        manager = StubHandshakeManager(error=None)
        session_id = await _begin(sessions, manager)
        manager.error = ExchangeFailed("HTTP 401")

        outcome = await _coordinator(sessions, store, manager).handle(
            GARMIN, session_id, CallbackParams(returned_token="T1", verifier="V1")
        )

        assert outcome.reason is CallbackReason.CALLBACK_FAILED
        assert store.all_records() == []
        assert len(sessions) == 0

    @pytest.mark.asyncio
    async def test_unexpected_manager_error(
        self, store: InMemoryConnectionStore, sessions: InMemoryHandshakeSessionStore
    ) -> None:
        manager = StubHandshakeManager()
        session_id = await _begin(sessions, manager)
        manager.error = KeyError("oauth_token")

        outcome = await _coordinator(sessions, store, manager).handle(
            GARMIN, session_id, CallbackParams(returned_token="T1", verifier="V1")
        )

        assert outcome.reason is CallbackReason.CALLBACK_FAILED

    @pytest.mark.asyncio
    async def test_store_failure(self, sessions: InMemoryHandshakeSessionStore) -> None:
        store = AsyncMock()
        store.upsert_integration.side_effect = ConnectionError("database down")
        manager = StubHandshakeManager()
        session_id = await _begin(sessions, manager)

        outcome = await _coordinator(sessions, store, manager).handle(
            GARMIN, session_id, CallbackParams(returned_token="T1", verifier="V1")
        )

        assert outcome.reason is CallbackReason.CALLBACK_FAILED
        assert len(manager.completed) == 1

    @pytest.mark.asyncio
    async def test_session_store_failure(self, store: InMemoryConnectionStore) -> None:
        sessions = AsyncMock()
        sessions.take_once.side_effect = ConnectionError("cache down")
        manager = StubHandshakeManager()

        outcome = await _coordinator(sessions, store, manager).handle(
            GARMIN, "sid-1", CallbackParams(returned_token="T1", verifier="V1")
        )

        assert outcome.reason is CallbackReason.CALLBACK_FAILED
        assert manager.completed == []
        assert store.all_records() == []

    @pytest.mark.asyncio
    async def test_reconnect_updates_existing_integration(
        self, store: InMemoryConnectionStore, sessions: InMemoryHandshakeSessionStore
    ) -> None:
        manager = StubHandshakeManager()
        coordinator = _coordinator(sessions, store, manager)
        params = CallbackParams(returned_token="T1", verifier="V1")

        first = await coordinator.handle(GARMIN, await _begin(sessions, manager, "a"), params)
        second = await coordinator.handle(GARMIN, await _begin(sessions, manager, "b"), params)

        assert first.integration_id == second.integration_id
        assert len(store.all_records()) == 1


# ---------------------------------------------------------------------------
# Query parsing and redirects
# ---------------------------------------------------------------------------


class TestCallbackParams:
    def test_garmin_query(self) -> None:
        params = CallbackParams.from_query(
            GARMIN, {"oauth_token": "T1", "oauth_verifier": "V1"}
        )
        assert params == CallbackParams(returned_token="T1", verifier="V1", denied=False)

    def test_garmin_denied(self) -> None:
        params = CallbackParams.from_query(GARMIN, {"denied": "T1"})
        assert params.denied is True
        assert params.verifier is None

    def test_oura_query(self) -> None:
        params = CallbackParams.from_query(OURA, {"state": "s1", "code": "c1"})
        assert params.returned_token == "s1"
        assert params.verifier == "c1"

    def test_oura_denied(self) -> None:
        params = CallbackParams.from_query(OURA, {"error": "access_denied", "state": "s1"})
        assert params.denied is True

    def test_empty_values_are_missing(self) -> None:
        params = CallbackParams.from_query(GARMIN, {"oauth_token": "", "oauth_verifier": ""})
        assert params.returned_token is None
        assert params.verifier is None


class TestRedirect:
    def test_success_url(self) -> None:
        outcome = CallbackOutcome(success=True, source=GARMIN)
        assert outcome.redirect_url("https://app.example.com/employee/connect") == (
            "https://app.example.com/employee/connect?connected=garmin"
        )

    def test_error_url_appends_to_existing_query(self) -> None:
        outcome = CallbackOutcome(
            success=False, source=OURA, reason=CallbackReason.TOKEN_MISMATCH
        )
        assert outcome.redirect_url("https://app.example.com/connect?tab=devices") == (
            "https://app.example.com/connect?tab=devices&error=token_mismatch"
        )
