"""Pydantic models for Oura API v2 usercollection responses.

Only the fields the sync summary reads are typed; everything else Oura sends
is kept as extra attributes so callers receive the full record.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field


class OuraRecord(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str | None = None
    day: date
    score: int | None = None


class SleepRecord(OuraRecord):
    """daily_sleep record."""

    contributors: dict[str, Any] = Field(default_factory=dict)
    timestamp: str | None = None


class ActivityRecord(OuraRecord):
    """daily_activity record.  Missing counters are treated as zero."""

    steps: int = 0
    active_calories: int = 0
    total_calories: int | None = None
    equivalent_walking_distance: int | None = None
    high_activity_time: int | None = None
    medium_activity_time: int | None = None


class ReadinessRecord(OuraRecord):
    """daily_readiness record."""

    contributors: dict[str, Any] = Field(default_factory=dict)
    temperature_deviation: float | None = None


RecordT = TypeVar("RecordT", bound=OuraRecord)


class OuraCollection(BaseModel, Generic[RecordT]):
    """One page of a usercollection endpoint."""

    data: list[RecordT] = Field(default_factory=list)
    next_token: str | None = None
