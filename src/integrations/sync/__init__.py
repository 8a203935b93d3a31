"""Concurrent provider data sync, normalization and summary statistics."""

from src.integrations.sync.aggregator import (
    CategoryOutcome,
    SyncAggregator,
    SyncResult,
)
from src.integrations.sync.normalize import MetricCategory, MetricRow, MetricType, normalize
from src.integrations.sync.summary import SyncSummary, summarize

__all__ = [
    "CategoryOutcome",
    "MetricCategory",
    "MetricRow",
    "MetricType",
    "SyncAggregator",
    "SyncResult",
    "SyncSummary",
    "normalize",
    "summarize",
]
