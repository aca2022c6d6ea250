"""Context document written onto issue branches.

The document is consumed by editor tooling that detects the active issue
from its first line, so the heading ``# Issue #<number>: <title>`` must stay
verbatim. ``parse_heading`` is the inverse used by the ``context-title``
command; ``title_from_branch`` is its fallback when no document exists.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from .models import PrioritizedIssue

HEADING_RE = re.compile(r"^# Issue #(\d+): (.+)$", re.MULTILINE)
ISSUE_BRANCH_RE = re.compile(r"feature/issue-(\d+)-(.+)")

AGENT_NOTES = [
    "This branch already contains an initial implementation by an automated agent",
    "Review existing code before making changes",
    "Follow the existing patterns and code style",
    "Add tests for any new functionality",
]
WORKFLOW_NOTES = [
    "Remember to follow the existing code patterns in the codebase",
    "Add tests for any new functionality",
    "Update documentation if needed",
]
AGENT_CRITERIA = [
    "Agent implementation reviewed and understood",
    "Code integrated with existing patterns",
    "Tests added for new functionality",
    "Documentation updated if needed",
    "Build passes (lint + typecheck)",
]
WORKFLOW_CRITERIA = [
    "Issue requirements are fully implemented",
    "Code follows project conventions",
    "Tests are added/updated",
    "Build passes (lint + typecheck)",
    "PR created to testing branch",
]


def context_heading(number: int, title: str) -> str:
    return f"Issue #{number}: {title}"


def parse_heading(text: str) -> tuple[int, str] | None:
    match = HEADING_RE.search(text or "")
    if not match:
        return None
    return int(match.group(1)), match.group(2).strip()


def title_from_branch(branch: str) -> str | None:
    match = ISSUE_BRANCH_RE.search(branch or "")
    if not match:
        return None
    words = re.sub(r"\b\w", lambda m: m.group().upper(), match.group(2).replace("-", " "))
    return context_heading(int(match.group(1)), words)


def resolve_context_title(branch: str | None, context_text: str | None = None) -> str | None:
    """Title for the active issue: document heading first, then the branch name.

    Only issue branches have a context; anything else yields ``None``.
    """
    if not branch or not ISSUE_BRANCH_RE.search(branch):
        return None
    parsed = parse_heading(context_text or "")
    if parsed is not None:
        return context_heading(*parsed)
    return title_from_branch(branch)


@dataclass
class ContextDocument:
    number: int
    title: str
    branch: str
    url: str = ""
    priority: str = "medium"
    estimated_hours: int = 4
    body: str = ""
    labels: list[str] = field(default_factory=list)
    agent_origin: bool = False
    check_command: str | None = None

    @classmethod
    def for_issue(
        cls, item: PrioritizedIssue, branch: str, *, check_command: str | None = None
    ) -> ContextDocument:
        return cls(
            number=item.number,
            title=item.title,
            branch=branch,
            url=item.issue.url,
            priority=item.priority.value,
            estimated_hours=item.estimated_hours,
            body=item.issue.body,
            labels=list(item.labels),
            check_command=check_command,
        )

    def render(self) -> str:
        if self.agent_origin:
            intro = "This branch contains work started by an automated coding agent."
        else:
            intro = f"This branch is working on GitHub Issue #{self.number}."
        notes = list(AGENT_NOTES if self.agent_origin else WORKFLOW_NOTES)
        if self.check_command:
            notes.append(f"Run `{self.check_command}` before committing")
        criteria = AGENT_CRITERIA if self.agent_origin else WORKFLOW_CRITERIA
        label_lines = [f"- {label}" for label in self.labels] or ["- (none)"]
        lines = [
            f"# {context_heading(self.number, self.title)}",
            "",
            "## Context",
            intro,
            "",
            f"**Issue Title:** {self.title}",
            f"**Priority:** {self.priority}",
            f"**Estimated Time:** {self.estimated_hours} hours",
            f"**Branch:** {self.branch}",
            f"**Issue URL:** {self.url}",
            "",
            "## Issue Description",
            self.body.strip() or "No description provided.",
            "",
            "## Labels",
            *label_lines,
            "",
            "## Development Notes",
            *[f"- {note}" for note in notes],
            "",
            "## Acceptance Criteria",
            *[f"- [ ] {item}" for item in criteria],
            "",
            "---",
            "*Generated by issueflow*",
            "",
        ]
        return "\n".join(lines)


__all__ = [
    "ContextDocument",
    "context_heading",
    "parse_heading",
    "resolve_context_title",
    "title_from_branch",
]
