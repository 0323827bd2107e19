"""Execution replay, comparison and Markdown export."""

from .replay import (
    ExecutionComparison,
    ExecutionReplay,
    ExecutionReplayer,
    ModifiedStep,
    ReplayStep,
    ReplaySummary,
    TimelineEvent,
    TimelineEventType,
)

__all__ = [
    "ExecutionComparison",
    "ExecutionReplay",
    "ExecutionReplayer",
    "ModifiedStep",
    "ReplayStep",
    "ReplaySummary",
    "TimelineEvent",
    "TimelineEventType",
]
