"""Tests for the in-memory connection store."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from uuid import uuid4

import pytest

from src.integrations.base import IntegrationSource, IntegrationStatus, SyncStatus
from src.integrations.store import InMemoryConnectionStore, IntegrationNotFound
from src.integrations.tests.conftest import (
    OTHER_MEMBER_ID,
    TEST_MEMBER_ID,
    bearer_credential,
    connect,
    oauth1_credential,
)


class TestUpsert:
    @pytest.mark.asyncio
    async def test_creates_active_record(self, store: InMemoryConnectionStore) -> None:
        integration = await connect(store, IntegrationSource.GARMIN, oauth1_credential())

        assert integration.status is IntegrationStatus.ACTIVE
        assert integration.source is IntegrationSource.GARMIN
        assert integration.credential.token_secret == "garmin-secret"
        assert integration.connected_at is not None
        assert integration.last_sync_at is None

    @pytest.mark.asyncio
    async def test_reconnect_updates_same_record(self, store: InMemoryConnectionStore) -> None:
        first = await connect(store)
        await store.mark_status(
            first.id,
            IntegrationStatus.ACTIVE,
            last_sync_at=datetime.now(timezone.utc),
            last_sync_status=SyncStatus.SUCCESS,
        )

        second = await connect(store)

        assert second.id == first.id
        assert second.last_sync_at is None
        assert second.last_sync_status is None
        assert len(store.all_records()) == 1

    @pytest.mark.asyncio
    async def test_pairs_are_independent(self, store: InMemoryConnectionStore) -> None:
        await connect(store, IntegrationSource.OURA)
        await connect(store, IntegrationSource.GARMIN, oauth1_credential())
        await connect(store, IntegrationSource.OURA, member_id=OTHER_MEMBER_ID)

        assert len(store.all_records()) == 3

    @pytest.mark.asyncio
    async def test_concurrent_upserts_keep_one_live_record(
        self, store: InMemoryConnectionStore
    ) -> None:
        await asyncio.gather(*(connect(store) for _ in range(10)))

        live = [r for r in store.all_records() if r.status is not IntegrationStatus.REVOKED]
        assert len(live) == 1

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self, store: InMemoryConnectionStore) -> None:
        integration = await connect(store)
        integration.status = IntegrationStatus.ERROR

        stored = await store.find_integration(TEST_MEMBER_ID, IntegrationSource.OURA)
        assert stored.status is IntegrationStatus.ACTIVE


class TestRevoke:
    @pytest.mark.asyncio
    async def test_revoke_clears_credential(self, store: InMemoryConnectionStore) -> None:
        await connect(store)

        assert await store.revoke(TEST_MEMBER_ID, IntegrationSource.OURA) is True

        assert await store.find_integration(TEST_MEMBER_ID, IntegrationSource.OURA) is None
        (record,) = store.all_records()
        assert record.status is IntegrationStatus.REVOKED
        assert record.credential is None

    @pytest.mark.asyncio
    async def test_revoke_without_record(self, store: InMemoryConnectionStore) -> None:
        assert await store.revoke(TEST_MEMBER_ID, IntegrationSource.GARMIN) is False

    @pytest.mark.asyncio
    async def test_reconnect_after_revoke_creates_new_record(
        self, store: InMemoryConnectionStore
    ) -> None:
        first = await connect(store)
        await store.revoke(TEST_MEMBER_ID, IntegrationSource.OURA)

        second = await connect(store)

        assert second.id != first.id
        statuses = sorted(r.status.value for r in store.all_records())
        assert statuses == ["ACTIVE", "REVOKED"]


class TestBookkeeping:
    @pytest.mark.asyncio
    async def test_mark_status_keeps_unspecified_fields(
        self, store: InMemoryConnectionStore
    ) -> None:
        integration = await connect(store)
        synced_at = datetime(2026, 2, 23, 12, 0, tzinfo=timezone.utc)
        await store.mark_status(
            integration.id,
            IntegrationStatus.ACTIVE,
            last_sync_at=synced_at,
            last_sync_status=SyncStatus.PARTIAL,
        )

        await store.mark_status(integration.id, IntegrationStatus.ERROR)

        stored = await store.find_integration(TEST_MEMBER_ID, IntegrationSource.OURA)
        assert stored.status is IntegrationStatus.ERROR
        assert stored.last_sync_at == synced_at
        assert stored.last_sync_status is SyncStatus.PARTIAL

    @pytest.mark.asyncio
    async def test_update_credential(self, store: InMemoryConnectionStore) -> None:
        integration = await connect(store)
        new = bearer_credential()
        new.access_token = "rotated"

        await store.update_credential(integration.id, new)

        stored = await store.find_integration(TEST_MEMBER_ID, IntegrationSource.OURA)
        assert stored.credential.access_token == "rotated"

    @pytest.mark.asyncio
    async def test_unknown_id_raises(self, store: InMemoryConnectionStore) -> None:
        with pytest.raises(IntegrationNotFound):
            await store.mark_status(uuid4(), IntegrationStatus.ERROR)
        with pytest.raises(IntegrationNotFound):
            await store.update_credential(uuid4(), bearer_credential())

    @pytest.mark.asyncio
    async def test_revoked_record_is_not_written(self, store: InMemoryConnectionStore) -> None:
        integration = await connect(store)
        await store.revoke(TEST_MEMBER_ID, IntegrationSource.OURA)

        marked = await store.mark_status(
            integration.id, IntegrationStatus.ACTIVE, last_sync_status=SyncStatus.SUCCESS
        )
        updated = await store.update_credential(integration.id, bearer_credential())

        assert (marked, updated) == (False, False)
        (record,) = store.all_records()
        assert record.status is IntegrationStatus.REVOKED
        assert record.credential is None
        assert record.last_sync_status is None

    @pytest.mark.asyncio
    async def test_connected_at_guard(self, store: InMemoryConnectionStore) -> None:
        stale = await connect(store)
        await asyncio.sleep(0.001)
        current = await connect(store)
        assert current.connected_at != stale.connected_at

        skipped = await store.mark_status(
            stale.id, IntegrationStatus.ERROR, expected_connected_at=stale.connected_at
        )
        applied = await store.mark_status(
            current.id,
            IntegrationStatus.ACTIVE,
            last_sync_status=SyncStatus.SUCCESS,
            expected_connected_at=current.connected_at,
        )

        assert (skipped, applied) == (False, True)
        stored = await store.find_integration(TEST_MEMBER_ID, IntegrationSource.OURA)
        assert stored.status is IntegrationStatus.ACTIVE
        assert stored.last_sync_status is SyncStatus.SUCCESS


class TestInspection:
    @pytest.mark.asyncio
    async def test_all_records_returns_copies(self, store: InMemoryConnectionStore) -> None:
        await connect(store)

        (record,) = store.all_records()
        record.status = IntegrationStatus.REVOKED

        assert store.all_records()[0].status is IntegrationStatus.ACTIVE
