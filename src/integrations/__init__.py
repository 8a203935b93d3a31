"""Wearable provider integrations.

Connects a member's Garmin and Oura accounts and pulls recent sleep,
activity and readiness data for downstream scoring.

Subpackages:
    adapters/ — Provider handshake managers and data clients (Garmin, Oura)
    sync/     — Concurrent category sync and summary statistics

Core modules:
    base           — Integration / Credential / HandshakeSession types
    errors         — IntegrationError taxonomy
    store          — ConnectionStore interface + in-memory implementation
    postgres_store — asyncpg-backed ConnectionStore
    sessions       — Single-use, TTL-bound handshake session store
    callback       — Provider redirect → reason-coded outcome
    crypto         — Credential encryption at rest
    config_loader  — Load/validate/hot-reload integrations_config.yaml
"""

from src.integrations.base import (
    Credential,
    DataCategory,
    HandshakeManager,
    HandshakeSession,
    Integration,
    IntegrationSource,
    IntegrationStatus,
    MemberRef,
    SyncStatus,
)
from src.integrations.config_loader import IntegrationsConfig, get_integrations_config
from src.integrations.errors import IntegrationError

__all__ = [
    "Credential",
    "DataCategory",
    "HandshakeManager",
    "HandshakeSession",
    "Integration",
    "IntegrationSource",
    "IntegrationStatus",
    "MemberRef",
    "SyncStatus",
    "IntegrationError",
    "IntegrationsConfig",
    "get_integrations_config",
]
