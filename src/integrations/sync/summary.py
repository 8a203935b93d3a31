"""Summary statistics over one sync window.

Rules (kept stable because downstream scoring depends on them):

* A record whose ``score`` is missing counts as 0 in the score averages.
* Averages are rounded half-up to an integer (2.5 → 3).
* Score averages are ``None`` when there are no records; step and calorie
  figures are 0 when there are no activity records or the category failed.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Sequence

from src.models.oura import ActivityRecord, OuraRecord


@dataclass(frozen=True)
class SyncSummary:
    avg_sleep_score: int | None
    total_steps: int
    avg_steps: int
    total_active_calories: int
    avg_readiness_score: int | None

    def to_dict(self) -> dict:
        return asdict(self)


def round_half_up(total: int, count: int) -> int:
    """Integer mean of ``total / count`` with halves rounded up."""
    return int((Decimal(total) / Decimal(count)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _avg_score(records: Sequence[OuraRecord] | None) -> int | None:
    if not records:
        return None
    return round_half_up(sum(r.score or 0 for r in records), len(records))


def summarize(
    sleep: Sequence[OuraRecord] | None,
    activity: Sequence[ActivityRecord] | None,
    readiness: Sequence[OuraRecord] | None,
) -> SyncSummary:
    """Compute a SyncSummary.  ``None`` means the category was unavailable."""
    activity = activity or []
    total_steps = sum(r.steps for r in activity)
    return SyncSummary(
        avg_sleep_score=_avg_score(sleep),
        total_steps=total_steps,
        avg_steps=round_half_up(total_steps, len(activity)) if activity else 0,
        total_active_calories=sum(r.active_calories for r in activity),
        avg_readiness_score=_avg_score(readiness),
    )
