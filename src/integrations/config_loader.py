"""Load, validate, and hot-reload the provider integration configuration.

The config lives in ``integrations_config.yaml`` alongside this module.  At
startup it is loaded once and cached.  Call ``reload_integrations_config()``
to re-read from disk without a restart.

Usage::

    from src.integrations.config_loader import get_integrations_config

    config = get_integrations_config()
    config.oura.category_url("sleep")   # .../usercollection/daily_sleep
    config.sync.default_window_days     # 7
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger("rebate.integrations.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "integrations_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class GarminEndpoints:
    """OAuth 1.0a endpoints for the three-legged handshake."""

    request_token_url: str
    authorize_url: str
    access_token_url: str


@dataclass
class OuraEndpoints:
    """OAuth 2.0 and REST endpoints for Oura API v2."""

    authorize_url: str
    token_url: str
    api_base: str
    scopes: list[str]
    categories: dict[str, str]

    def category_url(self, category: str) -> str:
        """Return the collection URL for a data category.

        Raises:
            ValueError: If the category is not configured.
        """
        try:
            path = self.categories[category]
        except KeyError:
            raise ValueError(
                f"Unknown Oura category '{category}'. "
                f"Available: {sorted(self.categories)}"
            ) from None
        return f"{self.api_base.rstrip('/')}/{path}"


@dataclass
class SyncPolicy:
    """Fan-out, timeout and retry settings for the sync aggregator."""

    default_window_days: int = 7
    max_window_days: int = 90
    fetch_timeout_seconds: float = 20.0
    max_pages: int = 10
    rate_limit_retries: int = 1
    max_retry_delay_seconds: float = 5.0
    token_refresh_buffer_seconds: int = 300


@dataclass
class IntegrationsConfig:
    """Complete, validated integrations configuration."""

    version: str
    garmin: GarminEndpoints
    oura: OuraEndpoints
    sync: SyncPolicy
    _raw: dict = field(default_factory=dict, repr=False)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when integrations_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Integrations config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> IntegrationsConfig:
    """Validate the raw YAML dict and construct an IntegrationsConfig.

    Raises:
        ConfigValidationError: If required fields are missing or invalid.
    """
    errors: list[str] = []

    def _require(d: dict, key: str, section: str) -> Any:
        if key not in d:
            errors.append(f"Missing required key '{key}' in section '{section}'")
            return ""
        return d[key]

    version = str(raw.get("version", "1.0"))
    providers = raw.get("providers") or {}

    # ── Garmin ──
    g_raw = providers.get("garmin") or {}
    garmin = GarminEndpoints(
        request_token_url=_require(g_raw, "request_token_url", "providers.garmin"),
        authorize_url=_require(g_raw, "authorize_url", "providers.garmin"),
        access_token_url=_require(g_raw, "access_token_url", "providers.garmin"),
    )

    # ── Oura ──
    o_raw = providers.get("oura") or {}
    categories = o_raw.get("categories") or {}
    if not isinstance(categories, dict):
        errors.append("providers.oura.categories must be a mapping of category→path")
        categories = {}
    for required in ("sleep", "activity", "readiness"):
        if required not in categories:
            errors.append(f"providers.oura.categories is missing '{required}'")
    oura = OuraEndpoints(
        authorize_url=_require(o_raw, "authorize_url", "providers.oura"),
        token_url=_require(o_raw, "token_url", "providers.oura"),
        api_base=_require(o_raw, "api_base", "providers.oura"),
        scopes=list(o_raw.get("scopes") or []),
        categories={str(k): str(v) for k, v in categories.items()},
    )

    # ── Sync policy ──
    s_raw = raw.get("sync") or {}
    try:
        sync = SyncPolicy(
            default_window_days=int(s_raw.get("default_window_days", 7)),
            max_window_days=int(s_raw.get("max_window_days", 90)),
            fetch_timeout_seconds=float(s_raw.get("fetch_timeout_seconds", 20)),
            max_pages=int(s_raw.get("max_pages", 10)),
            rate_limit_retries=int(s_raw.get("rate_limit_retries", 1)),
            max_retry_delay_seconds=float(s_raw.get("max_retry_delay_seconds", 5)),
            token_refresh_buffer_seconds=int(s_raw.get("token_refresh_buffer_seconds", 300)),
        )
    except (TypeError, ValueError) as exc:
        errors.append(f"sync section has a non-numeric value: {exc}")
        sync = SyncPolicy()

    if sync.default_window_days < 0:
        errors.append("sync.default_window_days must be >= 0")
    if sync.max_window_days < sync.default_window_days:
        errors.append("sync.max_window_days must be >= sync.default_window_days")
    if sync.max_pages < 1:
        errors.append("sync.max_pages must be >= 1")
    if sync.fetch_timeout_seconds <= 0:
        errors.append("sync.fetch_timeout_seconds must be > 0")

    if errors:
        raise ConfigValidationError(
            f"integrations_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return IntegrationsConfig(
        version=version,
        garmin=garmin,
        oura=oura,
        sync=sync,
        _raw=raw,
    )


def load_integrations_config(path: Path | None = None) -> IntegrationsConfig:
    """Load and validate the integrations config from disk.

    Args:
        path: Override path to YAML. Uses the bundled integrations_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded integrations config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: IntegrationsConfig | None = None
_config_lock = threading.Lock()


def get_integrations_config() -> IntegrationsConfig:
    """Return the global IntegrationsConfig singleton, loading it on first call."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_integrations_config()
    return _config


def reload_integrations_config(path: Path | None = None) -> IntegrationsConfig:
    """Reload the config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error is re-raised.
    """
    global _config
    new_config = load_integrations_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded integrations config: %s → %s", old_version, new_config.version)
    return new_config
