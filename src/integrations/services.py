"""Wiring of the integration components for the running app.

``build_services`` is called once from the app lifespan; route handlers get
the result through ``src.dependencies.get_services``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from src.config import Settings, get_settings
from src.integrations.adapters import HANDSHAKE_REGISTRY, OuraClient
from src.integrations.base import HandshakeManager, IntegrationSource
from src.integrations.callback import CallbackCoordinator
from src.integrations.crypto import CredentialCipher
from src.integrations.postgres_store import PostgresConnectionStore
from src.integrations.sessions import HandshakeSessionStore, InMemoryHandshakeSessionStore
from src.integrations.store import ConnectionStore, InMemoryConnectionStore
from src.integrations.sync import SyncAggregator

logger = logging.getLogger("rebate.integrations")


@dataclass
class IntegrationServices:
    store: ConnectionStore
    sessions: HandshakeSessionStore
    managers: dict[IntegrationSource, HandshakeManager]
    aggregator: SyncAggregator
    coordinator: CallbackCoordinator
    session_ttl: int


def build_services(
    settings: Settings | None = None,
    store: ConnectionStore | None = None,
    sessions: HandshakeSessionStore | None = None,
) -> IntegrationServices:
    """Assemble stores, handshake managers, the aggregator and the coordinator.

    Without an explicit store, Postgres is used when ``DATABASE_URL`` is set
    and an in-memory store otherwise.
    """
    s = settings or get_settings()

    if store is None:
        if s.database_url:
            store = PostgresConnectionStore(CredentialCipher(s.token_encryption_key))
        else:
            logger.warning("DATABASE_URL not set; integrations are stored in memory only")
            store = InMemoryConnectionStore()
    sessions = sessions or InMemoryHandshakeSessionStore()

    managers: dict[IntegrationSource, HandshakeManager] = {
        source: manager_cls() for source, manager_cls in HANDSHAKE_REGISTRY.items()
    }
    oura = managers[IntegrationSource.OURA]
    aggregator = SyncAggregator(
        store,
        clients={IntegrationSource.OURA: OuraClient()},
        refreshers={IntegrationSource.OURA: oura},
    )
    return IntegrationServices(
        store=store,
        sessions=sessions,
        managers=managers,
        aggregator=aggregator,
        coordinator=CallbackCoordinator(sessions, store, managers),
        session_ttl=s.handshake_ttl_seconds,
    )
