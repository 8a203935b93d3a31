"""Connection store: durable (member, provider) → Integration mapping.

``ConnectionStore`` is the interface the callback coordinator and the sync
aggregator depend on.  ``InMemoryConnectionStore`` backs tests and local
development; ``src.integrations.postgres_store.PostgresConnectionStore`` is
the production binding.

Invariant enforced by every implementation: at most one non-revoked
Integration per (member_id, source).  Writes for one pair are serialized.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from uuid import UUID

from src.integrations.base import (
    Credential,
    Integration,
    IntegrationSource,
    IntegrationStatus,
    SyncStatus,
    utc_now,
)

logger = logging.getLogger("rebate.integrations.store")


class IntegrationNotFound(LookupError):
    """No Integration exists with the given id."""


class ConnectionStore(ABC):
    """Persistence interface for Integration records."""

    @abstractmethod
    async def find_integration(
        self, member_id: UUID, source: IntegrationSource
    ) -> Integration | None:
        """Return the non-revoked Integration for the pair, or None."""

    @abstractmethod
    async def upsert_integration(
        self,
        member_id: UUID,
        source: IntegrationSource,
        credential: Credential,
        status: IntegrationStatus,
    ) -> Integration:
        """Create or update the non-revoked Integration for the pair.

        A (re)connect resets ``last_sync_at`` / ``last_sync_status`` and
        stamps ``connected_at``.
        """

    @abstractmethod
    async def mark_status(
        self,
        integration_id: UUID,
        status: IntegrationStatus,
        *,
        last_sync_at: datetime | None = None,
        last_sync_status: SyncStatus | None = None,
        expected_connected_at: datetime | None = None,
    ) -> bool:
        """Update status and, when given, the sync bookkeeping fields.

        Revoked records are never written.  With ``expected_connected_at``
        the write also requires the record's ``connected_at`` to match, so a
        caller holding a stale read cannot overwrite a newer connection.

        Returns:
            True if the record was updated, False if it was skipped.

        Raises:
            IntegrationNotFound: If no record has this id.
        """

    @abstractmethod
    async def update_credential(
        self,
        integration_id: UUID,
        credential: Credential,
        *,
        expected_connected_at: datetime | None = None,
    ) -> bool:
        """Replace the stored credential (e.g. after a token refresh).

        Same skip rules and return value as ``mark_status``.

        Raises:
            IntegrationNotFound: If no record has this id.
        """

    @abstractmethod
    async def revoke(self, member_id: UUID, source: IntegrationSource) -> bool:
        """Move the non-revoked Integration to REVOKED and clear its credential.

        Returns:
            True if a record was revoked, False if there was none.
        """


class InMemoryConnectionStore(ConnectionStore):
    """Process-local store.  Returns copies so callers cannot mutate state."""

    def __init__(self) -> None:
        self._records: dict[UUID, Integration] = {}
        self._locks: dict[tuple[UUID, IntegrationSource], asyncio.Lock] = defaultdict(
            asyncio.Lock
        )

    def _current(self, member_id: UUID, source: IntegrationSource) -> Integration | None:
        for record in self._records.values():
            if (
                record.member_id == member_id
                and record.source is source
                and record.status is not IntegrationStatus.REVOKED
            ):
                return record
        return None

    def _get(self, integration_id: UUID) -> Integration:
        try:
            return self._records[integration_id]
        except KeyError:
            raise IntegrationNotFound(f"Integration {integration_id} not found") from None

    @staticmethod
    def _writable(record: Integration, expected_connected_at: datetime | None) -> bool:
        if record.status is IntegrationStatus.REVOKED:
            return False
        return expected_connected_at is None or record.connected_at == expected_connected_at

    def all_records(self) -> list[Integration]:
        """Every record for every pair, revoked history included.

        Part of the in-memory store's own API (not of ``ConnectionStore``):
        local tooling and tests use it to audit the one-live-record rule.
        Returns copies, like every other read.
        """
        return [replace(r) for r in self._records.values()]

    async def find_integration(
        self, member_id: UUID, source: IntegrationSource
    ) -> Integration | None:
        record = self._current(member_id, source)
        return replace(record) if record else None

    async def upsert_integration(
        self,
        member_id: UUID,
        source: IntegrationSource,
        credential: Credential,
        status: IntegrationStatus,
    ) -> Integration:
        async with self._locks[(member_id, source)]:
            now = utc_now()
            record = self._current(member_id, source)
            if record is None:
                record = Integration(member_id=member_id, source=source, status=status)
                self._records[record.id] = record
                logger.info("Created %s integration for member %s", source.value, member_id)
            else:
                logger.info("Updated %s integration for member %s", source.value, member_id)

            record.credential = replace(credential)
            record.status = status
            record.connected_at = now if status is IntegrationStatus.ACTIVE else None
            record.last_sync_at = None
            record.last_sync_status = None
            record.updated_at = now
            return replace(record)

    async def mark_status(
        self,
        integration_id: UUID,
        status: IntegrationStatus,
        *,
        last_sync_at: datetime | None = None,
        last_sync_status: SyncStatus | None = None,
        expected_connected_at: datetime | None = None,
    ) -> bool:
        record = self._get(integration_id)
        async with self._locks[(record.member_id, record.source)]:
            if not self._writable(record, expected_connected_at):
                return False
            record.status = status
            if last_sync_at is not None:
                record.last_sync_at = last_sync_at
            if last_sync_status is not None:
                record.last_sync_status = last_sync_status
            record.updated_at = utc_now()
            return True

    async def update_credential(
        self,
        integration_id: UUID,
        credential: Credential,
        *,
        expected_connected_at: datetime | None = None,
    ) -> bool:
        record = self._get(integration_id)
        async with self._locks[(record.member_id, record.source)]:
            if not self._writable(record, expected_connected_at):
                return False
            record.credential = replace(credential)
            record.updated_at = utc_now()
            return True

    async def revoke(self, member_id: UUID, source: IntegrationSource) -> bool:
        async with self._locks[(member_id, source)]:
            record = self._current(member_id, source)
            if record is None:
                return False
            record.status = IntegrationStatus.REVOKED
            record.credential = None
            record.updated_at = utc_now()
            logger.info("Revoked %s integration for member %s", source.value, member_id)
            return True
