"""Provider adapters.

Each provider contributes a HandshakeManager (connect / callback) and, where
the platform pulls data from it, a data client.

Available adapters:
    GarminHandshakeManager — Garmin Connect (OAuth 1.0a)
    OuraHandshakeManager   — Oura API v2 (OAuth2)
    OuraClient             — Oura API v2 usercollection data
"""

from src.integrations.adapters.garmin import GarminHandshakeManager
from src.integrations.adapters.oura import OuraClient, OuraHandshakeManager
from src.integrations.base import HandshakeManager, IntegrationSource

__all__ = [
    "GarminHandshakeManager",
    "OuraHandshakeManager",
    "OuraClient",
    "HANDSHAKE_REGISTRY",
    "get_handshake_manager",
]

# Registry: source → handshake manager class
HANDSHAKE_REGISTRY: dict[IntegrationSource, type[HandshakeManager]] = {
    IntegrationSource.GARMIN: GarminHandshakeManager,
    IntegrationSource.OURA: OuraHandshakeManager,
}


def get_handshake_manager(source: IntegrationSource | str) -> type[HandshakeManager]:
    """Return the handshake manager class for a source.

    Raises:
        ValueError: If the slug is not a known source.
        KeyError:   If no manager is registered for the source.
    """
    key = IntegrationSource.from_slug(source) if isinstance(source, str) else source
    if key not in HANDSHAKE_REGISTRY:
        raise KeyError(
            f"No handshake manager registered for source '{key.value}'. "
            f"Available: {[s.value for s in HANDSHAKE_REGISTRY]}"
        )
    return HANDSHAKE_REGISTRY[key]
