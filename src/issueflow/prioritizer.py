"""Issue prioritization.

``prioritize`` is total and side-effect free: given the same snapshot and the
same ``now`` it always returns the same ranking. Rules, in order:

* tier from labels (first match wins): ``critical|bug|security`` ->
  critical, ``high|urgent`` (or "urgent" in the body) -> high,
  ``low|nice-to-have`` -> low, otherwise medium;
* base estimate per tier, then x1.5 for ``enhancement``/``feature`` and x1.2
  for bodies over 1000 characters, rounded to whole hours;
* ``needs_attention`` for stale (>7 days), ``stale``-labeled, unassigned
  ``ready-for-development`` or ``waiting-for-response`` issues.

The output is stable-sorted by tier, highest first.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone

from .models import Issue, Priority, PrioritizedIssue

CRITICAL_LABELS = frozenset({"critical", "bug", "security"})
HIGH_LABELS = frozenset({"high", "urgent"})
LOW_LABELS = frozenset({"low", "nice-to-have"})
COMPLEXITY_LABELS = frozenset({"enhancement", "feature"})

BASE_HOURS = {
    Priority.CRITICAL: 2,
    Priority.HIGH: 6,
    Priority.MEDIUM: 4,
    Priority.LOW: 8,
}
FEATURE_MULTIPLIER = 1.5
LONG_BODY_MULTIPLIER = 1.2
LONG_BODY_CHARS = 1000
STALE_AFTER_DAYS = 7


def _labels(issue: Issue) -> set[str]:
    return {label.lower() for label in issue.labels}


def base_priority(issue: Issue) -> Priority:
    labels = _labels(issue)
    if labels & CRITICAL_LABELS:
        return Priority.CRITICAL
    if labels & HIGH_LABELS or "urgent" in (issue.body or "").lower():
        return Priority.HIGH
    if labels & LOW_LABELS:
        return Priority.LOW
    return Priority.MEDIUM


def estimate_hours(issue: Issue, priority: Priority) -> int:
    hours: float = BASE_HOURS[priority]
    if _labels(issue) & COMPLEXITY_LABELS:
        hours *= FEATURE_MULTIPLIER
    if len(issue.body or "") > LONG_BODY_CHARS:
        hours *= LONG_BODY_MULTIPLIER
    # Half rounds up
    return int(math.floor(hours + 0.5))


def days_since(moment: datetime, now: datetime) -> float:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return (now - moment).total_seconds() / 86400


def needs_attention(issue: Issue, now: datetime | None = None) -> bool:
    now = now or datetime.now(timezone.utc)
    labels = _labels(issue)
    return (
        days_since(issue.updated_at, now) > STALE_AFTER_DAYS
        or "stale" in labels
        or (not issue.assignee and "ready-for-development" in labels)
        or "waiting-for-response" in labels
    )


def annotate(issue: Issue, now: datetime | None = None) -> PrioritizedIssue:
    priority = base_priority(issue)
    return PrioritizedIssue(
        issue=issue,
        priority=priority,
        estimated_hours=estimate_hours(issue, priority),
        needs_attention=needs_attention(issue, now),
    )


def prioritize(issues: list[Issue], now: datetime | None = None) -> list[PrioritizedIssue]:
    now = now or datetime.now(timezone.utc)
    annotated = [annotate(issue, now) for issue in issues]
    # sorted() is stable, so equal tiers keep snapshot order
    return sorted(annotated, key=lambda p: p.priority.rank, reverse=True)


__all__ = [
    "BASE_HOURS",
    "annotate",
    "base_priority",
    "estimate_hours",
    "needs_attention",
    "prioritize",
]
