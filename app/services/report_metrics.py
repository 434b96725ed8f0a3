"""
Metric calculators — pure functions over immutable snapshots.

Every calculator takes a collection of frozen snapshots and returns a
number. None of them hold running state between calls, so a calculator
can be invoked per group, per request, from any thread.

Milestone invariants (for any mix of started / completed / deleted):
    0 <= completion_rate <= milestone_progress <= 100
    active_milestones + completed <= milestones with progress
    deleted milestones never count, not even in the denominator

A milestone that is both started and completed counts once towards
progress. Progress used to be computed as started% + completed%, which
produced 200% for a single closed milestone.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class MilestoneSnapshot:
    is_started: bool
    is_completed: bool
    is_deleted: bool = False


@dataclass(frozen=True)
class ExecutionOutcome:
    """One chronological result of one test case.

    Non-definitive when neither ``is_success`` nor ``is_failure`` is set
    (blocked, skipped, retest …).
    """

    is_success: bool
    is_failure: bool
    executed_at: datetime | None = None

    @property
    def is_definitive(self) -> bool:
        return self.is_success or self.is_failure


def percentage(part: float, whole: float) -> float:
    """``part / whole`` as a percentage rounded to two decimals; 0 when whole is 0."""
    if not whole:
        return 0
    return round(part / whole * 100, 2)


def average(values: Iterable[float | None]) -> float:
    """Mean of the non-null values, rounded to two decimals; 0 for none."""
    present = [v for v in values if v is not None]
    if not present:
        return 0
    return round(sum(present) / len(present), 2)


def total(values: Iterable[float | None]) -> float:
    return sum(v for v in values if v is not None)


# ── Milestones ──────────────────────────────────────────────────────────


def _live(milestones: Iterable[MilestoneSnapshot]) -> list[MilestoneSnapshot]:
    return [m for m in milestones if not m.is_deleted]


def total_milestones(milestones: Iterable[MilestoneSnapshot]) -> int:
    return len(_live(milestones))


def milestone_progress(milestones: Iterable[MilestoneSnapshot]) -> float:
    """Share of live milestones that are started or completed."""
    live = _live(milestones)
    with_progress = sum(1 for m in live if m.is_started or m.is_completed)
    return percentage(with_progress, len(live))


def completion_rate(milestones: Iterable[MilestoneSnapshot]) -> float:
    """Share of live milestones that are completed."""
    live = _live(milestones)
    completed = sum(1 for m in live if m.is_completed)
    return percentage(completed, len(live))


def active_milestones(milestones: Iterable[MilestoneSnapshot]) -> int:
    """Live milestones that are started and not yet completed."""
    return sum(1 for m in _live(milestones) if m.is_started and not m.is_completed)


# ── Executions ──────────────────────────────────────────────────────────


def pass_rate(outcomes: Iterable[ExecutionOutcome]) -> float:
    """Successful outcomes as a share of all recorded outcomes."""
    outcomes = list(outcomes)
    passed = sum(1 for o in outcomes if o.is_success)
    return percentage(passed, len(outcomes))
