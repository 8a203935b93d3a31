"""Normalize provider records into per-day metric rows.

Each daily record yields zero or more ``MetricRow`` values in a provider
independent shape (metric type, value, unit).  Conversion rules:

* sleep:     ``score`` → SLEEP_SCORE (score), when present.
* activity:  ``steps`` → STEPS, ``active_calories`` → CALORIES_BURNED (kcal),
  ``equivalent_walking_distance`` metres → DISTANCE (mi), and high + medium
  activity seconds → ACTIVE_MINUTES (rounded half-up).  Zero values are
  dropped.
* readiness: ``contributors.hrv_balance`` → HEART_RATE_VARIABILITY (score).
  Readiness contributors are 0-100 scores, so resting heart rate is not
  emitted as a BPM metric.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date
from enum import Enum
from typing import Sequence
from uuid import UUID

from src.integrations.base import IntegrationSource
from src.integrations.sync.summary import round_half_up
from src.models.oura import ActivityRecord, OuraRecord

METERS_PER_MILE = 1609.344


class MetricCategory(str, Enum):
    SLEEP = "SLEEP"
    ACTIVITY = "ACTIVITY"
    HEART = "HEART"


class MetricType(str, Enum):
    SLEEP_SCORE = "SLEEP_SCORE"
    STEPS = "STEPS"
    CALORIES_BURNED = "CALORIES_BURNED"
    DISTANCE = "DISTANCE"
    ACTIVE_MINUTES = "ACTIVE_MINUTES"
    HEART_RATE_VARIABILITY = "HEART_RATE_VARIABILITY"


@dataclass(frozen=True)
class MetricRow:
    member_id: UUID
    category: MetricCategory
    metric_type: MetricType
    value: float
    unit: str
    source: IntegrationSource
    recorded_on: date
    source_record_id: str | None = None

    @property
    def key(self) -> str:
        """Stable identity for upserts: one value per member, metric and day."""
        return f"{self.member_id}-{self.metric_type.value}-{self.recorded_on.isoformat()}"

    def to_dict(self) -> dict:
        data = asdict(self)
        data.update(
            member_id=str(self.member_id),
            category=self.category.value,
            metric_type=self.metric_type.value,
            source=self.source.value,
            recorded_on=self.recorded_on.isoformat(),
        )
        return data


def _row(
    member_id: UUID,
    source: IntegrationSource,
    record: OuraRecord,
    category: MetricCategory,
    metric_type: MetricType,
    value: float,
    unit: str,
) -> MetricRow:
    return MetricRow(
        member_id=member_id,
        category=category,
        metric_type=metric_type,
        value=value,
        unit=unit,
        source=source,
        recorded_on=record.day,
        source_record_id=record.id,
    )


def sleep_metrics(
    member_id: UUID, record: OuraRecord, source: IntegrationSource = IntegrationSource.OURA
) -> list[MetricRow]:
    if record.score is None:
        return []
    return [
        _row(
            member_id, source, record,
            MetricCategory.SLEEP, MetricType.SLEEP_SCORE, record.score, "score",
        )
    ]


def activity_metrics(
    member_id: UUID, record: ActivityRecord, source: IntegrationSource = IntegrationSource.OURA
) -> list[MetricRow]:
    rows: list[MetricRow] = []
    if record.steps > 0:
        rows.append(
            _row(
                member_id, source, record,
                MetricCategory.ACTIVITY, MetricType.STEPS, record.steps, "steps",
            )
        )
    if record.active_calories > 0:
        rows.append(
            _row(
                member_id, source, record,
                MetricCategory.ACTIVITY, MetricType.CALORIES_BURNED, record.active_calories, "kcal",
            )
        )
    if record.equivalent_walking_distance:
        rows.append(
            _row(
                member_id, source, record,
                MetricCategory.ACTIVITY,
                MetricType.DISTANCE,
                record.equivalent_walking_distance / METERS_PER_MILE,
                "mi",
            )
        )
    active_seconds = (record.high_activity_time or 0) + (record.medium_activity_time or 0)
    active_minutes = round_half_up(active_seconds, 60)
    if active_minutes > 0:
        rows.append(
            _row(
                member_id, source, record,
                MetricCategory.ACTIVITY, MetricType.ACTIVE_MINUTES, active_minutes, "minutes",
            )
        )
    return rows


def readiness_metrics(
    member_id: UUID, record: OuraRecord, source: IntegrationSource = IntegrationSource.OURA
) -> list[MetricRow]:
    contributors = getattr(record, "contributors", None) or {}
    hrv_balance = contributors.get("hrv_balance")
    if hrv_balance is None:
        return []
    return [
        _row(
            member_id, source, record,
            MetricCategory.HEART, MetricType.HEART_RATE_VARIABILITY, hrv_balance, "score",
        )
    ]


def normalize(
    member_id: UUID,
    sleep: Sequence[OuraRecord] | None,
    activity: Sequence[ActivityRecord] | None,
    readiness: Sequence[OuraRecord] | None,
    source: IntegrationSource = IntegrationSource.OURA,
) -> list[MetricRow]:
    """Metric rows for every available category.  ``None`` contributes nothing."""
    rows: list[MetricRow] = []
    for record in sleep or []:
        rows.extend(sleep_metrics(member_id, record, source))
    for record in activity or []:
        rows.extend(activity_metrics(member_id, record, source))
    for record in readiness or []:
        rows.extend(readiness_metrics(member_id, record, source))
    return rows
