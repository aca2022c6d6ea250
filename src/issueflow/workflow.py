"""Per-issue development workflow.

An issue moves through a fixed, ordered list of steps::

    ready -> in-progress -> development-started -> development-partial
    -> development-complete -> tests-added -> build-passing -> pr-to-testing
    -> integration-tested -> pr-to-main -> merged

There is no state store: the tracker's label set is the state, and labels
are only ever added. An issue can therefore carry labels from several steps
at once (e.g. ``development-started`` and ``merged``). :func:`current_step`
gives the canonical view, the most advanced step whose label is present.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from .config import FlowConfig
from .context_doc import ContextDocument, context_heading
from .errors import (
    BranchAlreadyExistsError,
    BranchCreationError,
    BranchExistsError,
    ConflictError,
    IssueAlreadyStartedError,
    RefNotFoundError,
    RemoteError,
)
from .logging import StructuredLogger, get_logger
from .models import Issue, PrioritizedIssue
from .ports import IssueTracker
from .prioritizer import annotate

IN_PROGRESS_LABEL = "in-progress"
BRANCH_CREATED_LABEL = "feature-branch-created"
STARTED_LABELS = (IN_PROGRESS_LABEL, BRANCH_CREATED_LABEL)


class WorkflowStep(str, Enum):
    READY = "ready"
    IN_PROGRESS = "in-progress"
    DEVELOPMENT_STARTED = "development-started"
    DEVELOPMENT_PARTIAL = "development-partial"
    DEVELOPMENT_COMPLETE = "development-complete"
    TESTS_ADDED = "tests-added"
    BUILD_PASSING = "build-passing"
    PR_TO_TESTING = "pr-to-testing"
    INTEGRATION_TESTED = "integration-tested"
    PR_TO_MAIN = "pr-to-main"
    MERGED = "merged"


STEP_ORDER: tuple[WorkflowStep, ...] = tuple(WorkflowStep)

STEP_COMMENTS: dict[str, str] = {
    "development-started": "🚀 **Development Started** - Work in progress",
    "development-partial": "🔄 **Partial Implementation** - Core features working, enhancements needed",
    "development-complete": "✅ **Development Complete** - Ready for testing",
    "tests-added": "🧪 **Tests Added** - Code coverage updated",
    "build-passing": "🔨 **Build Passing** - All checks green",
    "pr-to-testing": "🔀 **PR to Testing** - Integration testing started",
    "integration-tested": "✅ **Integration Tests Pass** - Ready for main",
    "pr-to-main": "🚀 **PR to Main** - Ready for final review",
    "merged": "🎉 **Merged to Main** - Issue resolved",
}

ADVANCEABLE_STEPS: tuple[str, ...] = tuple(STEP_COMMENTS)


def current_step(labels: Iterable[str]) -> WorkflowStep:
    present = set(labels)
    step = WorkflowStep.READY
    if BRANCH_CREATED_LABEL in present:
        step = WorkflowStep.IN_PROGRESS
    for candidate in STEP_ORDER:
        if candidate.value in present and STEP_ORDER.index(candidate) > STEP_ORDER.index(step):
            step = candidate
    return step


def merge_labels(existing: Iterable[str], additions: Iterable[str]) -> list[str]:
    """Additive label update: keep every existing label, append new ones once."""
    merged = list(dict.fromkeys(existing))
    for label in additions:
        if label not in merged:
            merged.append(label)
    return merged


def branch_name_for(
    number: int, title: str, *, prefix: str = "feature/", max_slug: int = 50
) -> str:
    slug = re.sub(r"-+", "-", re.sub(r"[^a-z0-9]", "-", title.lower()))[:max_slug]
    return f"{prefix}issue-{number}-{slug}"


def render_start_comment(item: PrioritizedIssue, branch: str, cfg: FlowConfig) -> str:
    issue = item.issue
    project_lines: list[str] = []
    if issue.milestone is not None:
        due = issue.milestone.due_on.strftime("%a %b %d %Y") if issue.milestone.due_on else "Not set"
        project_lines = [
            "",
            f"**🎯 Project:** {issue.milestone.title}",
            f"**📅 Due Date:** {due}",
        ]
    lines = [
        "🚀 **Automated Workflow Started**",
        "",
        f"**Feature Branch:** `{branch}`",
        "",
        f"**Context File:** Created `{cfg.context_file}` with issue details",
        *project_lines,
        "",
        "**Development Checklist:**",
        f"- [ ] Switch to feature branch: `git checkout {branch}`",
        f"- [ ] Open the context: {context_heading(issue.number, issue.title)}",
        "- [ ] Implement solution",
        "- [ ] Add/update tests",
        f"- [ ] Run: `{cfg.check_command}`",
        "- [ ] Create PR to `testing` branch",
        "- [ ] Wait for integration tests to pass",
        f"- [ ] Create PR to `{cfg.trunk_branch}` branch",
        "- [ ] Close issue after merge",
        "",
        f"**Estimated Time:** {item.estimated_hours} hours",
        f"**Priority:** {item.priority.value}",
        "",
        "*🤖 Automated by issueflow*",
    ]
    return "\n".join(lines)


@dataclass(frozen=True)
class AdvanceResult:
    issue_number: int
    step: str
    applied: bool
    current_step: WorkflowStep | None = None


class WorkflowEngine:
    def __init__(
        self,
        tracker: IssueTracker,
        cfg: FlowConfig,
        *,
        logger: StructuredLogger | None = None,
        dry_run: bool = False,
    ):
        self.tracker = tracker
        self.cfg = cfg
        self.logger = logger or get_logger()
        self.dry_run = dry_run

    def branch_name(self, issue: Issue) -> str:
        return branch_name_for(
            issue.number,
            issue.title,
            prefix=self.cfg.branch_prefix,
            max_slug=self.cfg.branch_slug_max,
        )

    def start(self, issue: Issue | PrioritizedIssue) -> str:
        item = issue if isinstance(issue, PrioritizedIssue) else annotate(issue)
        number = item.number
        if item.issue.has_any_label(frozenset(STARTED_LABELS)):
            raise IssueAlreadyStartedError(
                f"Issue #{number} is already in progress", issue_number=number
            )
        branch = self.branch_name(item.issue)
        try:
            self.tracker.create_branch(branch, self.cfg.trunk_branch)
        except BranchExistsError as exc:
            raise BranchAlreadyExistsError(
                f"Branch {branch} for issue #{number} already exists",
                issue_number=number,
                branch=branch,
            ) from exc
        except RefNotFoundError as exc:
            raise BranchCreationError(
                f"Cannot create {branch} for issue #{number}: "
                f"trunk ref {self.cfg.trunk_branch!r} not found",
                issue_number=number,
                branch=branch,
            ) from exc

        self.write_context(item, branch)
        self.tracker.add_comment(number, render_start_comment(item, branch, self.cfg))
        self.tracker.update_issue(number, labels=merge_labels(item.labels, STARTED_LABELS))
        self.logger.log_issue_action("started", number, branch=branch, dry_run=self.dry_run)
        return branch

    def write_context(self, item: PrioritizedIssue, branch: str) -> bool:
        doc = ContextDocument.for_issue(item, branch, check_command=self.cfg.check_command)
        try:
            write_context_file(
                self.tracker,
                self.cfg.context_file,
                doc.render(),
                branch=branch,
                issue_number=item.number,
            )
        except RemoteError as exc:
            self.logger.warning(
                f"Could not write context file for issue #{item.number} on {branch}: {exc}",
                issue_number=item.number,
                branch=branch,
            )
            return False
        return True

    def advance(self, issue_number: int, step: str) -> AdvanceResult:
        comment = STEP_COMMENTS.get(step)
        if comment is None:
            # Unknown steps are ignored rather than rejected.
            self.logger.info(
                f"issue #{issue_number}: unrecognized step {step!r} ignored",
                issue_number=issue_number,
                step=step,
            )
            return AdvanceResult(issue_number, step, applied=False)
        self.tracker.add_comment(issue_number, comment)
        issue = self.tracker.get_issue(issue_number)
        labels = merge_labels(issue.labels, [step])
        self.tracker.update_issue(issue_number, labels=labels)
        self.logger.log_issue_action("advanced", issue_number, step=step, dry_run=self.dry_run)
        return AdvanceResult(issue_number, step, applied=True, current_step=current_step(labels))


def write_context_file(
    tracker: IssueTracker,
    path: str,
    content: str,
    *,
    branch: str,
    issue_number: int,
) -> None:
    """Create ``path`` on ``branch``; on conflict update it using that branch's sha."""
    try:
        tracker.write_repo_file(
            path,
            content,
            branch=branch,
            message=f"Add context for issue #{issue_number}",
        )
        return
    except ConflictError:
        sha = tracker.get_file_sha(path, branch)
        if sha is None:
            raise
    tracker.write_repo_file(
        path,
        content,
        branch=branch,
        message=f"Update context for issue #{issue_number}",
        sha=sha,
    )


__all__ = [
    "ADVANCEABLE_STEPS",
    "AdvanceResult",
    "STEP_COMMENTS",
    "WorkflowEngine",
    "WorkflowStep",
    "branch_name_for",
    "current_step",
    "merge_labels",
    "render_start_comment",
    "write_context_file",
]
