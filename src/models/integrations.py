"""Pydantic models for the integrations API: connect, status, data."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from pydantic import Field

from src.models.base import RebateBase


class AuthorizeResponse(RebateBase):
    authorization_url: str
    message: str = "Redirect user to authorization URL"


class ConnectionStatusRead(RebateBase):
    connected: bool
    status: str | None = None
    last_sync_at: datetime | None = None
    last_sync_status: str | None = None
    connected_at: datetime | None = None


class DisconnectResponse(RebateBase):
    success: bool


class SyncSummaryRead(RebateBase):
    avg_sleep_score: int | None = None
    total_steps: int = 0
    avg_steps: int = 0
    total_active_calories: int = 0
    avg_readiness_score: int | None = None


class MetricRead(RebateBase):
    metric_type: str
    category: str
    value: float
    unit: str
    day: date
    source_record_id: str | None = None


class SyncResponse(RebateBase):
    connected: bool
    source: str
    start_date: date | None = None
    end_date: date | None = None
    sleep: list[dict[str, Any]] | None = None
    activity: list[dict[str, Any]] | None = None
    readiness: list[dict[str, Any]] | None = None
    unavailable: dict[str, str] = Field(default_factory=dict)
    summary: SyncSummaryRead | None = None
    metrics: list[MetricRead] = Field(default_factory=list)
    last_sync_at: datetime | None = None
    last_sync_status: str | None = None


class SourceSyncRead(RebateBase):
    success: bool
    metrics_updated: int = 0
    last_sync_status: str | None = None
    unavailable: dict[str, str] = Field(default_factory=dict)


class SyncAllResponse(RebateBase):
    success: bool = True
    results: dict[str, SourceSyncRead] = Field(default_factory=dict)
