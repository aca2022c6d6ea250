"""Collaborator interfaces consumed by the workflow core.

The core never talks HTTP or git directly; it is handed objects satisfying
these protocols. :class:`issueflow.github_issues.GitHubTracker` binds both
to the GitHub REST API and :class:`issueflow.git_remote.GitRemoteBranches`
binds :class:`BranchSource` to a local ``git`` checkout.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol

from .models import Branch, CommitMeta, Issue


class IssueTracker(Protocol):
    def list_issues(self, *, state: str = "open") -> list[Issue]: ...

    def get_issue(self, number: int) -> Issue: ...

    def create_issue(
        self,
        *,
        title: str,
        body: str,
        labels: Iterable[str] | None = None,
        milestone: str | None = None,
    ) -> Issue: ...

    def update_issue(
        self,
        number: int,
        *,
        labels: Iterable[str] | None = None,
        body: str | None = None,
        milestone: str | None = None,
    ) -> None:
        """Patch an issue; ``labels`` replaces the whole label set."""
        ...

    def add_comment(self, number: int, text: str) -> None: ...

    def create_branch(self, name: str, from_ref: str) -> None:
        """Raises BranchExistsError or RefNotFoundError."""
        ...

    def write_repo_file(
        self,
        path: str,
        content: str,
        *,
        branch: str,
        message: str,
        sha: str | None = None,
    ) -> None:
        """Raises ConflictError when the file exists and ``sha`` does not match."""
        ...

    def get_file_sha(self, path: str, branch: str) -> str | None: ...


class BranchSource(Protocol):
    def list_remote_branches(self) -> list[Branch]: ...

    def get_commit_meta(self, branch_name: str) -> CommitMeta: ...


__all__ = ["BranchSource", "IssueTracker"]
