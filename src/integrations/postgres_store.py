"""Postgres binding of the connection store.

Credentials are Fernet-encrypted before they reach the database
(``credential_enc``).  The (member_id, source) uniqueness of live records is
enforced by a partial unique index, and every write is a single-row
statement, so concurrent re-authorization and sync bookkeeping cannot lose
updates.
"""

from __future__ import annotations

import logging
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any, Callable
from uuid import UUID, uuid4

import asyncpg

from src.integrations.base import (
    Credential,
    Integration,
    IntegrationSource,
    IntegrationStatus,
    SyncStatus,
)
from src.integrations.crypto import CredentialCipher
from src.integrations.store import ConnectionStore, IntegrationNotFound
from src.services.database import get_connection

logger = logging.getLogger("rebate.integrations.store")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS integration_connections (
    integration_id   UUID PRIMARY KEY,
    member_id        UUID NOT NULL,
    source           TEXT NOT NULL,
    status           TEXT NOT NULL,
    credential_enc   TEXT,
    last_sync_at     TIMESTAMPTZ,
    last_sync_status TEXT,
    connected_at     TIMESTAMPTZ,
    created_at       TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at       TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE UNIQUE INDEX IF NOT EXISTS integration_connections_live_uq
    ON integration_connections (member_id, source)
    WHERE status <> 'REVOKED';
"""

_UPSERT_SQL = """
INSERT INTO integration_connections
    (integration_id, member_id, source, status, credential_enc, connected_at)
VALUES ($1, $2, $3, $4, $5, CASE WHEN $4 = 'ACTIVE' THEN NOW() END)
ON CONFLICT (member_id, source) WHERE status <> 'REVOKED'
DO UPDATE SET
    status = EXCLUDED.status,
    credential_enc = EXCLUDED.credential_enc,
    connected_at = EXCLUDED.connected_at,
    last_sync_at = NULL,
    last_sync_status = NULL,
    updated_at = NOW()
RETURNING *
"""

# $1 is the integration id, $2 the optional connected_at guard.
_LIVE_ROW_WHERE = """WHERE integration_id = $1
                  AND status <> 'REVOKED'
                  AND ($2::timestamptz IS NULL OR connected_at = $2)"""

ConnectionFactory = Callable[[], AbstractAsyncContextManager[asyncpg.Connection]]


class PostgresConnectionStore(ConnectionStore):
    """Connection store backed by the ``integration_connections`` table."""

    def __init__(
        self,
        cipher: CredentialCipher,
        connection_factory: ConnectionFactory = get_connection,
    ) -> None:
        self._cipher = cipher
        self._connection = connection_factory

    async def ensure_schema(self) -> None:
        async with self._connection() as conn:
            await conn.execute(SCHEMA_SQL)

    def _row_to_integration(self, row: Any) -> Integration:
        encrypted = row["credential_enc"]
        last_sync_status = row["last_sync_status"]
        return Integration(
            id=row["integration_id"],
            member_id=row["member_id"],
            source=IntegrationSource(row["source"]),
            status=IntegrationStatus(row["status"]),
            credential=self._cipher.decrypt(encrypted) if encrypted else None,
            last_sync_at=row["last_sync_at"],
            last_sync_status=SyncStatus(last_sync_status) if last_sync_status else None,
            connected_at=row["connected_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def find_integration(
        self, member_id: UUID, source: IntegrationSource
    ) -> Integration | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM integration_connections
                WHERE member_id = $1 AND source = $2 AND status <> 'REVOKED'
                """,
                member_id,
                source.value,
            )
        return self._row_to_integration(row) if row else None

    async def upsert_integration(
        self,
        member_id: UUID,
        source: IntegrationSource,
        credential: Credential,
        status: IntegrationStatus,
    ) -> Integration:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                _UPSERT_SQL,
                uuid4(),
                member_id,
                source.value,
                status.value,
                self._cipher.encrypt(credential),
            )
        logger.info("Stored %s integration for member %s", source.value, member_id)
        return self._row_to_integration(row)

    async def mark_status(
        self,
        integration_id: UUID,
        status: IntegrationStatus,
        *,
        last_sync_at: datetime | None = None,
        last_sync_status: SyncStatus | None = None,
        expected_connected_at: datetime | None = None,
    ) -> bool:
        async with self._connection() as conn:
            result = await conn.execute(
                f"""
                UPDATE integration_connections
                SET status = $3,
                    last_sync_at = COALESCE($4, last_sync_at),
                    last_sync_status = COALESCE($5, last_sync_status),
                    updated_at = NOW()
                {_LIVE_ROW_WHERE}
                """,
                integration_id,
                expected_connected_at,
                status.value,
                last_sync_at,
                last_sync_status.value if last_sync_status else None,
            )
            return await self._applied(conn, result, integration_id)

    async def update_credential(
        self,
        integration_id: UUID,
        credential: Credential,
        *,
        expected_connected_at: datetime | None = None,
    ) -> bool:
        async with self._connection() as conn:
            result = await conn.execute(
                f"""
                UPDATE integration_connections
                SET credential_enc = $3, updated_at = NOW()
                {_LIVE_ROW_WHERE}
                """,
                integration_id,
                expected_connected_at,
                self._cipher.encrypt(credential),
            )
            return await self._applied(conn, result, integration_id)

    @staticmethod
    async def _applied(conn: asyncpg.Connection, result: str, integration_id: UUID) -> bool:
        if result != "UPDATE 0":
            return True
        exists = await conn.fetchval(
            "SELECT 1 FROM integration_connections WHERE integration_id = $1", integration_id
        )
        if exists is None:
            raise IntegrationNotFound(f"Integration {integration_id} not found")
        logger.info("Skipped write to integration %s: revoked or reconnected", integration_id)
        return False

    async def revoke(self, member_id: UUID, source: IntegrationSource) -> bool:
        async with self._connection() as conn:
            result = await conn.execute(
                """
                UPDATE integration_connections
                SET status = 'REVOKED', credential_enc = NULL, updated_at = NOW()
                WHERE member_id = $1 AND source = $2 AND status <> 'REVOKED'
                """,
                member_id,
                source.value,
            )
        revoked = result != "UPDATE 0"
        if revoked:
            logger.info("Revoked %s integration for member %s", source.value, member_id)
        return revoked
