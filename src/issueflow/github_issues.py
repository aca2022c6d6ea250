"""GitHub binding of the issue-tracker and branch-source ports.

Wraps :class:`~issueflow.github_rest.GitHubRestClient` and normalizes raw
JSON payloads into :mod:`issueflow.models` objects.

Design goals:
 - Single place for payload parsing (labels, assignee, milestone, dates)
 - Support dry-run (reads go through, mutations are printed not sent)
 - Support mock mode (print MOCK action, never touch the network)
 - Small surface area mirroring :mod:`issueflow.ports`
"""

from __future__ import annotations

import os
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from .github_rest import GitHubRestClient
from .models import Branch, CommitMeta, Issue, Milestone


@dataclass
class TrackerConfig:
    repo: str | None = None  # owner/repo
    mock: bool = False
    dry_run: bool = False


def parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_issue(entry: dict[str, Any]) -> Issue:
    labels: list[str] = []
    raw_labels = entry.get("labels")
    if isinstance(raw_labels, list):
        for lbl in raw_labels:
            if isinstance(lbl, dict):
                name = lbl.get("name")
                if isinstance(name, str):
                    labels.append(name)
            elif isinstance(lbl, str):
                labels.append(lbl)
    assignee: str | None = None
    raw_assignee = entry.get("assignee")
    if isinstance(raw_assignee, dict):
        login = raw_assignee.get("login")
        if isinstance(login, str):
            assignee = login
    elif isinstance(raw_assignee, str):
        assignee = raw_assignee
    milestone: Milestone | None = None
    raw_milestone = entry.get("milestone")
    if isinstance(raw_milestone, dict) and isinstance(raw_milestone.get("title"), str):
        number = raw_milestone.get("number")
        milestone = Milestone(
            number=number if isinstance(number, int) else None,
            title=raw_milestone["title"],
            due_on=parse_timestamp(raw_milestone.get("due_on")),
        )
    updated_at = parse_timestamp(entry.get("updated_at")) or datetime.now(timezone.utc)
    return Issue(
        number=int(entry.get("number") or 0),
        title=str(entry.get("title") or ""),
        body=str(entry.get("body") or ""),
        labels=labels,
        assignee=assignee,
        milestone=milestone,
        updated_at=updated_at,
        url=str(entry.get("html_url") or ""),
        state=str(entry.get("state") or "open"),
    )


def normalize_commit(entry: dict[str, Any]) -> CommitMeta:
    commit = entry.get("commit") if isinstance(entry.get("commit"), dict) else {}
    author = commit.get("author") if isinstance(commit.get("author"), dict) else {}
    message = str(commit.get("message") or "")
    # Subject line only, matching `git log --pretty=%s`
    subject = message.splitlines()[0] if message else ""
    return CommitMeta(
        author=str(author.get("name") or ""),
        message=subject,
        timestamp=parse_timestamp(author.get("date")),
    )


class GitHubTracker:
    """Issue tracker + branch source backed by the GitHub REST API.

    In mock mode we return fabricated / empty data structures and never
    touch the network.
    """

    _mock_counter: int = 1000

    def __init__(self, cfg: TrackerConfig, rest_client: GitHubRestClient | None = None):
        self.cfg = cfg
        self._env_quiet = os.environ.get("ISSUEFLOW_QUIET") == "1"
        if rest_client is None and not cfg.mock:
            raise ValueError("rest_client is required unless mock mode is enabled")
        self._rest = rest_client

    # --- internal helpers -------------------------------------------------
    def _client(self) -> GitHubRestClient:
        assert self._rest is not None  # nosec B101 - guarded by constructor
        return self._rest

    def _skip_mutation(self, description: str) -> bool:
        if self.cfg.mock:
            print("MOCK", description)
            return True
        if self.cfg.dry_run:
            print("DRY-RUN", description)
            return True
        return False

    # --- IssueTracker -----------------------------------------------------
    def list_issues(self, *, state: str = "open") -> list[Issue]:
        if self.cfg.mock:
            return []
        return [normalize_issue(entry) for entry in self._client().list_issues(state=state)]

    def get_issue(self, number: int) -> Issue:
        if self.cfg.mock:
            return Issue(number=number, title=f"Mock issue {number}")
        return normalize_issue(self._client().get_issue(number))

    def create_issue(
        self,
        *,
        title: str,
        body: str,
        labels: Iterable[str] | None = None,
        milestone: str | None = None,
    ) -> Issue:
        label_list = list(labels or [])
        if self._skip_mutation(f"POST /issues {title!r} labels={label_list}"):
            if self.cfg.mock and not self.cfg.dry_run:
                GitHubTracker._mock_counter += 1
                number = GitHubTracker._mock_counter
            else:
                number = 0
            return Issue(number=number, title=title, body=body, labels=label_list)
        client = self._client()
        milestone_number = client.resolve_milestone(milestone) if milestone else None
        data = client.create_issue(
            title=title, body=body, labels=label_list, milestone=milestone_number
        )
        return normalize_issue(data)

    def update_issue(
        self,
        number: int,
        *,
        labels: Iterable[str] | None = None,
        body: str | None = None,
        milestone: str | None = None,
    ) -> None:
        label_list = list(labels) if labels is not None else None
        if self._skip_mutation(f"PATCH /issues/{number} labels={label_list}"):
            return
        client = self._client()
        milestone_number = client.resolve_milestone(milestone) if milestone else None
        client.update_issue(
            number=number, body=body, labels=label_list, milestone=milestone_number
        )

    def add_comment(self, number: int, text: str) -> None:
        if self._skip_mutation(f"POST /issues/{number}/comments"):
            return
        self._client().add_comment(number=number, body=text)

    def create_branch(self, name: str, from_ref: str) -> None:
        if self.cfg.mock:
            print("MOCK", f"POST /git/refs {name} from {from_ref}")
            return
        # Resolve the trunk even in dry-run so a missing ref still surfaces.
        sha = self._client().get_branch_sha(from_ref)
        if self._skip_mutation(f"POST /git/refs {name} at {sha}"):
            return
        self._client().create_ref(branch=name, sha=sha)

    def write_repo_file(
        self,
        path: str,
        content: str,
        *,
        branch: str,
        message: str,
        sha: str | None = None,
    ) -> None:
        if self._skip_mutation(f"PUT /contents/{path} on {branch}"):
            return
        self._client().put_file(path, content, branch=branch, message=message, sha=sha)

    def get_file_sha(self, path: str, branch: str) -> str | None:
        if self.cfg.mock:
            return None
        return self._client().get_file_sha(path, ref=branch)

    # --- BranchSource -----------------------------------------------------
    def list_remote_branches(self) -> list[Branch]:
        if self.cfg.mock:
            return []
        out: list[Branch] = []
        for entry in self._client().list_branches():
            name = entry.get("name")
            if not isinstance(name, str):
                continue
            commit = entry.get("commit") if isinstance(entry.get("commit"), dict) else {}
            out.append(Branch(name=name, head_sha=str(commit.get("sha") or "")))
        return out

    def get_commit_meta(self, branch_name: str) -> CommitMeta:
        if self.cfg.mock:
            return CommitMeta(author="", message="")
        return normalize_commit(self._client().get_commit(branch_name))


__all__ = [
    "GitHubTracker",
    "TrackerConfig",
    "normalize_commit",
    "normalize_issue",
    "parse_timestamp",
]
