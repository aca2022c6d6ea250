from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class Priority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.CRITICAL: 4,
    Priority.HIGH: 3,
    Priority.MEDIUM: 2,
    Priority.LOW: 1,
}


@dataclass
class Milestone:
    number: int | None
    title: str
    due_on: datetime | None = None


@dataclass
class Issue:
    """Point-in-time view of a tracker issue.

    ``labels`` is the full label set as returned by the tracker; workflow
    progress is encoded there (see :mod:`issueflow.workflow`).
    """

    number: int
    title: str
    body: str = ""
    labels: list[str] = field(default_factory=list)
    assignee: str | None = None
    milestone: Milestone | None = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    url: str = ""
    state: str = "open"

    def has_label(self, name: str) -> bool:
        return name in self.labels

    def has_any_label(self, names: set[str] | frozenset[str]) -> bool:
        return any(label in names for label in self.labels)


@dataclass(frozen=True)
class PrioritizedIssue:
    """An issue plus the annotations computed by one prioritization pass.

    Annotations are view state only; they are never written back to the tracker.
    """

    issue: Issue
    priority: Priority
    estimated_hours: int
    needs_attention: bool

    @property
    def number(self) -> int:
        return self.issue.number

    @property
    def title(self) -> str:
        return self.issue.title

    @property
    def labels(self) -> list[str]:
        return self.issue.labels


@dataclass(frozen=True)
class CommitMeta:
    author: str
    message: str
    timestamp: datetime | None = None


@dataclass
class Branch:
    name: str
    head_sha: str = ""
    commit: CommitMeta | None = None


@dataclass(frozen=True)
class BranchExpectation:
    declared_status: str
    expectation: str
    priority: str = "medium"


@dataclass(frozen=True)
class OrphanRecord:
    issue: Issue
    deleted_branch: str


@dataclass
class IssueProposal:
    """Issue to be created for an unclaimed, externally authored branch."""

    branch: Branch
    title: str
    body: str
    labels: list[str]
    priority: Priority


__all__ = [
    "Branch",
    "BranchExpectation",
    "CommitMeta",
    "Issue",
    "IssueProposal",
    "Milestone",
    "OrphanRecord",
    "Priority",
    "PrioritizedIssue",
]
