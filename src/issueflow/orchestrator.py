"""High-level orchestration over the prioritizer, workflow and reconciler.

Every batch operation walks its snapshot sequentially. Per-item failures are
logged with the issue number (or branch) and the batch carries on; only setup
failures escape to the CLI.
"""

from __future__ import annotations

import json
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import TypedDict

import requests

from .config import FlowConfig
from .errors import (
    BranchAlreadyExistsError,
    ErrorInfo,
    IssueAlreadyStartedError,
    IssueFlowError,
    classify_error,
)
from .logging import StructuredLogger, get_logger
from .models import Branch, Issue, IssueProposal, OrphanRecord, Priority, PrioritizedIssue
from .ports import BranchSource, IssueTracker
from .prioritizer import prioritize
from .reconciler import (
    BranchReconciler,
    CleanupOutcome,
    IntegrationOutcome,
    candidate_branches,
    find_orphans,
    find_unclaimed,
)
from .workflow import (
    IN_PROGRESS_LABEL,
    STARTED_LABELS,
    AdvanceResult,
    WorkflowEngine,
    current_step,
)

DEFAULT_TOP = 5

# Failures that skip one item without aborting the batch
_ITEM_ERRORS: tuple[type[BaseException], ...] = (IssueFlowError, requests.RequestException)


# --- Typed report objects -------------------------------------------------


class TopIssue(TypedDict):
    number: int
    title: str
    priority: str
    estimated_hours: int
    assignee: str


class WorkflowReport(TypedDict):
    generated_at: str
    total_issues: int
    by_priority: dict[str, int]
    needs_attention: int
    in_progress: int
    estimated_hours: int
    by_step: dict[str, int]
    top_priority: list[TopIssue]


class StartFailure(TypedDict):
    issue: int
    error: str
    category: str


class StartedEntry(TypedDict):
    issue: int
    branch: str


class AutoStartSummary(TypedDict):
    requested: int
    selected: list[int]
    started: list[StartedEntry]
    already_started: list[int]
    failed: list[StartFailure]


class BranchStatus(TypedDict):
    branch: str
    declared_status: str
    expectation: str
    priority: str
    present: bool
    last_commit: str | None
    author: str | None


# -------------------------------------------------------------------------


def select_ready(
    prioritized: Iterable[PrioritizedIssue],
    max_issues: int,
    readiness_labels: Iterable[str],
) -> list[PrioritizedIssue]:
    ready = frozenset(readiness_labels)
    started = frozenset(STARTED_LABELS)
    selected: list[PrioritizedIssue] = []
    for item in prioritized:
        if len(selected) >= max_issues:
            break
        if item.issue.has_any_label(started) or not item.issue.has_any_label(ready):
            continue
        selected.append(item)
    return selected


def build_report(
    prioritized: Sequence[PrioritizedIssue],
    now: datetime | None = None,
    top: int = DEFAULT_TOP,
) -> WorkflowReport:
    """Aggregate one prioritization pass into summary counts. No side effects."""
    now = now or datetime.now(timezone.utc)
    by_priority = {p.value: 0 for p in Priority}
    by_priority.update(Counter(item.priority.value for item in prioritized))
    by_step = Counter(current_step(item.labels).value for item in prioritized)
    return WorkflowReport(
        generated_at=now.strftime("%Y-%m-%dT%H:%M:%SZ"),
        total_issues=len(prioritized),
        by_priority=by_priority,
        needs_attention=sum(1 for item in prioritized if item.needs_attention),
        in_progress=sum(1 for item in prioritized if item.issue.has_label(IN_PROGRESS_LABEL)),
        estimated_hours=sum(item.estimated_hours for item in prioritized),
        by_step=dict(by_step),
        top_priority=[
            TopIssue(
                number=item.number,
                title=item.title,
                priority=item.priority.value,
                estimated_hours=item.estimated_hours,
                assignee=item.issue.assignee or "unassigned",
            )
            for item in prioritized[: max(top, 0)]
        ],
    )


def format_report(report: WorkflowReport) -> list[str]:
    lines = [
        "[report] Issue workflow summary",
        f"  total issues: {report['total_issues']}",
    ]
    for tier, count in report["by_priority"].items():
        lines.append(f"  {tier}: {count}")
    lines.append(f"  needs attention: {report['needs_attention']}")
    lines.append(f"  in progress: {report['in_progress']}")
    lines.append(f"  estimated hours: {report['estimated_hours']}")
    if report["by_step"]:
        steps = ", ".join(f"{k}={v}" for k, v in sorted(report["by_step"].items()))
        lines.append(f"  by step: {steps}")
    if report["top_priority"]:
        lines.append("[report] Top priority:")
    for entry in report["top_priority"]:
        lines.append(
            f"  #{entry['number']} [{entry['priority']}] {entry['title']} "
            f"({entry['estimated_hours']}h, {entry['assignee']})"
        )
    return lines


def write_report(report: WorkflowReport, path: str | Path) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(json.dumps(report, indent=2) + "\n")
    return out


class Orchestrator:
    def __init__(
        self,
        tracker: IssueTracker,
        branches: BranchSource,
        cfg: FlowConfig,
        *,
        logger: StructuredLogger | None = None,
        dry_run: bool = False,
    ):
        self.tracker = tracker
        self.branches = branches
        self.cfg = cfg
        self.logger = logger or get_logger()
        self.dry_run = dry_run
        self.engine = WorkflowEngine(tracker, cfg, logger=self.logger, dry_run=dry_run)
        self.reconciler = BranchReconciler(tracker, cfg, logger=self.logger)

    # --- helpers ----------------------------------------------------------
    def _item_failed(
        self,
        exc: BaseException,
        *,
        issue_number: int | None = None,
        branch: str | None = None,
    ) -> ErrorInfo:
        info = classify_error(exc)
        target = f"issue #{issue_number}" if issue_number is not None else f"branch {branch}"
        kw: dict[str, object] = {"category": info.category}
        if issue_number is not None:
            kw["issue_number"] = issue_number
        if branch:
            kw["branch"] = branch
        self.logger.log_error(f"Failed to process {target}: {exc}", error=str(exc), **kw)
        return info

    def prioritized(self, now: datetime | None = None) -> list[PrioritizedIssue]:
        return prioritize(self.tracker.list_issues(state="open"), now)

    # --- reporting --------------------------------------------------------
    def report(
        self,
        *,
        top: int = DEFAULT_TOP,
        output: str | Path | None = None,
        now: datetime | None = None,
    ) -> WorkflowReport:
        with self.logger.timed_operation("report"):
            result = build_report(self.prioritized(now), now, top)
        if output:
            write_report(result, output)
        return result

    # --- workflow ---------------------------------------------------------
    def start(self, issue_number: int) -> str | None:
        """Start one issue. Recoverable failures are logged and yield ``None``."""
        try:
            issue = self.tracker.get_issue(issue_number)
            return self.engine.start(issue)
        except (BranchAlreadyExistsError, IssueAlreadyStartedError) as exc:
            self.logger.info(f"Issue #{issue_number} already started: {exc}", issue_number=issue_number)
        except _ITEM_ERRORS as exc:
            self._item_failed(exc, issue_number=issue_number)
        return None

    def progress(self, issue_number: int, step: str) -> AdvanceResult | None:
        """Record ``step`` on an issue. Remote failures are logged and yield ``None``."""
        try:
            return self.engine.advance(issue_number, step)
        except _ITEM_ERRORS as exc:
            self._item_failed(exc, issue_number=issue_number)
        return None

    # --- direct tracker commands --------------------------------------------
    def create_issue(self, title: str, body: str = "", labels: Sequence[str] = ()) -> Issue | None:
        try:
            issue = self.tracker.create_issue(title=title, body=body, labels=list(labels))
        except _ITEM_ERRORS as exc:
            self.logger.log_error(
                f"Failed to create issue {title!r}: {exc}",
                error=str(exc),
                category=classify_error(exc).category,
            )
            return None
        self.logger.log_issue_action("created", issue.number, dry_run=self.dry_run)
        return issue

    def update_body(self, issue_number: int, body: str) -> bool:
        try:
            self.tracker.update_issue(issue_number, body=body)
        except _ITEM_ERRORS as exc:
            self._item_failed(exc, issue_number=issue_number)
            return False
        return True

    def comment(self, issue_number: int, text: str) -> bool:
        try:
            self.tracker.add_comment(issue_number, text)
        except _ITEM_ERRORS as exc:
            self._item_failed(exc, issue_number=issue_number)
            return False
        return True

    def auto(self, max_issues: int | None = None) -> AutoStartSummary:
        limit = self.cfg.auto_max_issues if max_issues is None else max_issues
        selected = select_ready(self.prioritized(), limit, self.cfg.readiness_labels)
        summary = AutoStartSummary(
            requested=limit,
            selected=[item.number for item in selected],
            started=[],
            already_started=[],
            failed=[],
        )
        self.logger.log_operation("auto_start", selected=len(selected), dry_run=self.dry_run)
        for item in selected:
            try:
                branch = self.engine.start(item)
            except (BranchAlreadyExistsError, IssueAlreadyStartedError) as exc:
                self.logger.info(f"Issue #{item.number} already started: {exc}", issue_number=item.number)
                summary["already_started"].append(item.number)
                continue
            except _ITEM_ERRORS as exc:
                info = self._item_failed(exc, issue_number=item.number)
                summary["failed"].append(
                    StartFailure(issue=item.number, error=info.message, category=info.category)
                )
                continue
            summary["started"].append(StartedEntry(issue=item.number, branch=branch))
        return summary

    # --- reconciliation -----------------------------------------------------
    def _candidates_with_meta(self) -> list[Branch]:
        out: list[Branch] = []
        for branch in candidate_branches(self.branches.list_remote_branches(), self.cfg):
            try:
                meta = self.branches.get_commit_meta(branch.name)
            except _ITEM_ERRORS as exc:
                self._item_failed(exc, branch=branch.name)
                continue
            out.append(replace(branch, commit=meta))
        return out

    def detect(self) -> list[IssueProposal]:
        branches = self._candidates_with_meta()
        # Closed issues count as claims too
        issues = self.tracker.list_issues(state="all")
        proposals = find_unclaimed(branches, issues, self.cfg)
        for proposal in proposals:
            self.logger.log_branch_action("unclaimed", proposal.branch.name)
        return proposals

    def integrate(self, proposals: Sequence[IssueProposal] | None = None) -> list[IntegrationOutcome]:
        if proposals is None:
            proposals = self.detect()
        outcomes: list[IntegrationOutcome] = []
        for proposal in proposals:
            try:
                outcomes.append(self.reconciler.integrate(proposal))
            except _ITEM_ERRORS as exc:
                info = self._item_failed(exc, branch=proposal.branch.name)
                outcomes.append(IntegrationOutcome(branch=proposal.branch.name, error=info.message))
        return outcomes

    def check_orphans(self) -> list[OrphanRecord]:
        issues = self.tracker.list_issues(state="open")
        names = [b.name for b in self.branches.list_remote_branches()]
        records = find_orphans(issues, names, self.cfg.branch_prefix)
        for record in records:
            self.logger.log_issue_action(
                "orphaned", record.issue.number, branch=record.deleted_branch
            )
        return records

    def cleanup(self, records: Sequence[OrphanRecord] | None = None) -> CleanupOutcome:
        if records is None:
            records = self.check_orphans()
        outcome = CleanupOutcome()
        for record in records:
            try:
                self.reconciler.mark_for_review(record)
            except _ITEM_ERRORS as exc:
                info = self._item_failed(exc, issue_number=record.issue.number)
                outcome.failed.append((record, info.message))
                continue
            outcome.marked.append(record)
        return outcome

    def branch_status(self) -> list[BranchStatus]:
        present = {b.name: b for b in self.branches.list_remote_branches()}
        rows: list[BranchStatus] = []
        for name, expectation in self.cfg.branch_expectations.items():
            message: str | None = None
            author: str | None = None
            if name in present:
                try:
                    meta = self.branches.get_commit_meta(name)
                    message, author = meta.message, meta.author
                except _ITEM_ERRORS as exc:
                    self._item_failed(exc, branch=name)
            rows.append(
                BranchStatus(
                    branch=name,
                    declared_status=expectation.declared_status,
                    expectation=expectation.expectation,
                    priority=expectation.priority,
                    present=name in present,
                    last_commit=message,
                    author=author,
                )
            )
        return rows


__all__ = [
    "AutoStartSummary",
    "BranchStatus",
    "Orchestrator",
    "StartFailure",
    "StartedEntry",
    "TopIssue",
    "WorkflowReport",
    "build_report",
    "format_report",
    "select_ready",
    "write_report",
]
