"""Pytest configuration for issueflow tests.

Ensures the in-repo `src` directory is on `sys.path` so the package can be
imported without an editable install (`pip install -e .`), forces mock mode
so nothing reaches GitHub, and provides in-memory fakes for the tracker and
branch-source collaborators.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Iterable, Iterator
from datetime import datetime, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    # Prepend so that 'python -m issueflow.cli' finds local package first
    sys.path.insert(0, str(SRC))

# Force mock mode for the entire test session to avoid real GitHub calls
os.environ.setdefault("ISSUEFLOW_MOCK", "1")

from issueflow import logging as flow_logging  # noqa: E402
from issueflow.config import FlowConfig  # noqa: E402
from issueflow.errors import (  # noqa: E402
    BranchExistsError,
    ConflictError,
    RefNotFoundError,
    RemoteError,
)
from issueflow.models import Branch, CommitMeta, Issue  # noqa: E402

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


class FakeTracker:
    """In-memory IssueTracker.

    ``failures`` maps ``"<operation>"`` or ``"<operation>:<key>"`` to an
    exception raised when that call happens.
    """

    def __init__(self) -> None:
        self.issues: dict[int, Issue] = {}
        self.comments: list[tuple[int, str]] = []
        self.label_updates: list[tuple[int, list[str]]] = []
        self.body_updates: list[tuple[int, str]] = []
        self.created: list[Issue] = []
        self.refs: set[str] = {"main"}
        self.created_branches: list[tuple[str, str]] = []
        self.files: dict[tuple[str, str], tuple[str, str]] = {}
        self.file_writes: list[dict[str, object]] = []
        self.failures: dict[str, BaseException] = {}
        self.next_number = 500
        self._sha_counter = 0

    def add(self, issue: Issue) -> Issue:
        self.issues[issue.number] = issue
        return issue

    def _check(self, op: str, key: object = None) -> None:
        exc = self.failures.get(f"{op}:{key}") or self.failures.get(op)
        if exc is not None:
            raise exc

    # --- IssueTracker -----------------------------------------------------
    def list_issues(self, *, state: str = "open") -> list[Issue]:
        self._check("list_issues")
        if state == "all":
            return list(self.issues.values())
        return [i for i in self.issues.values() if i.state == state]

    def get_issue(self, number: int) -> Issue:
        self._check("get_issue", number)
        return self.issues[number]

    def create_issue(
        self,
        *,
        title: str,
        body: str,
        labels: Iterable[str] | None = None,
        milestone: str | None = None,
    ) -> Issue:
        self._check("create_issue", title)
        self.next_number += 1
        issue = Issue(
            number=self.next_number,
            title=title,
            body=body,
            labels=list(labels or []),
            url=f"https://github.com/acme/widgets/issues/{self.next_number}",
        )
        self.issues[issue.number] = issue
        self.created.append(issue)
        return issue

    def update_issue(
        self,
        number: int,
        *,
        labels: Iterable[str] | None = None,
        body: str | None = None,
        milestone: str | None = None,
    ) -> None:
        self._check("update_issue", number)
        issue = self.issues.get(number)
        if labels is not None:
            self.label_updates.append((number, list(labels)))
            if issue is not None:
                issue.labels = list(labels)
        if body is not None:
            self.body_updates.append((number, body))
            if issue is not None:
                issue.body = body

    def add_comment(self, number: int, text: str) -> None:
        self._check("add_comment", number)
        self.comments.append((number, text))

    def create_branch(self, name: str, from_ref: str) -> None:
        self._check("create_branch", name)
        if from_ref not in self.refs:
            raise RefNotFoundError(f"Ref heads/{from_ref} not found", status=404)
        if name in self.refs:
            raise BranchExistsError(f"Branch {name} already exists", status=422)
        self.refs.add(name)
        self.created_branches.append((name, from_ref))

    def write_repo_file(
        self,
        path: str,
        content: str,
        *,
        branch: str,
        message: str,
        sha: str | None = None,
    ) -> None:
        self._check("write_repo_file", branch)
        self.file_writes.append(
            {"path": path, "branch": branch, "message": message, "sha": sha}
        )
        existing = self.files.get((branch, path))
        if existing is not None and existing[1] != sha:
            raise ConflictError(f"{path} on {branch} exists with a different sha", status=409)
        self._sha_counter += 1
        self.files[(branch, path)] = (content, f"sha{self._sha_counter}")

    def get_file_sha(self, path: str, branch: str) -> str | None:
        existing = self.files.get((branch, path))
        return existing[1] if existing else None


class FakeBranches:
    """In-memory BranchSource."""

    def __init__(self) -> None:
        self.branches: list[Branch] = []
        self.metas: dict[str, CommitMeta] = {}
        self.meta_calls: list[str] = []

    def add(self, name: str, *, author: str = "", message: str = "", timestamp: datetime | None = None) -> None:
        self.branches.append(Branch(name=name, head_sha=f"{len(self.branches):040d}"))
        self.metas[name] = CommitMeta(author=author, message=message, timestamp=timestamp)

    def list_remote_branches(self) -> list[Branch]:
        return [Branch(name=b.name, head_sha=b.head_sha) for b in self.branches]

    def get_commit_meta(self, branch_name: str) -> CommitMeta:
        self.meta_calls.append(branch_name)
        if branch_name not in self.metas:
            raise RemoteError(f"no commit metadata for {branch_name}")
        return self.metas[branch_name]


@pytest.fixture(autouse=True)
def _reset_global_logger() -> Iterator[None]:
    flow_logging._GLOBAL = None
    yield
    flow_logging._GLOBAL = None


@pytest.fixture
def tracker() -> FakeTracker:
    return FakeTracker()


@pytest.fixture
def branch_source() -> FakeBranches:
    return FakeBranches()


@pytest.fixture
def flow_config() -> FlowConfig:
    return FlowConfig(github_repo="acme/widgets")


@pytest.fixture
def now() -> datetime:
    return NOW
