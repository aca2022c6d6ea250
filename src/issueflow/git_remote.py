"""Branch snapshot from a local git checkout.

Alternative :class:`~issueflow.ports.BranchSource` for repositories where the
branch snapshot should come from ``git ls-remote`` rather than the REST API
(``branches.source: git``). Commit metadata requires fetching the branch
first, so each :meth:`GitRemoteBranches.get_commit_meta` call runs
``git fetch <remote> <branch>`` followed by ``git log -1``.
"""

from __future__ import annotations

import shutil
import subprocess  # nosec B404 - git CLI invocation
from pathlib import Path

from .errors import RemoteError
from .github_issues import parse_timestamp
from .models import Branch, CommitMeta
from .retry import run_with_retries

_HEADS_PREFIX = "refs/heads/"
_FIELD_SEP = "\x1f"
_LOG_FORMAT = "--pretty=format:%an%x1f%s%x1f%aI"


def parse_ls_remote(output: str) -> list[Branch]:
    branches: list[Branch] = []
    for line in output.splitlines():
        if not line.strip() or "\t" not in line:
            continue
        sha, ref = line.split("\t", 1)
        ref = ref.strip()
        if not ref.startswith(_HEADS_PREFIX):
            continue
        branches.append(Branch(name=ref[len(_HEADS_PREFIX):], head_sha=sha.strip()))
    return branches


def parse_log_line(output: str) -> CommitMeta:
    parts = output.strip().split(_FIELD_SEP)
    parts += [""] * (3 - len(parts))
    author, message, stamp = parts[:3]
    return CommitMeta(author=author, message=message, timestamp=parse_timestamp(stamp))


def current_branch(cwd: str | Path | None = None) -> str | None:
    """Checked-out branch of the working copy, or ``None`` outside a repository."""
    try:
        out = subprocess.check_output(  # nosec B603 B607 - fixed git invocation
            [shutil.which("git") or "git", "branch", "--show-current"],
            cwd=cwd,
            text=True,
            stderr=subprocess.DEVNULL,
        )
    except (OSError, subprocess.CalledProcessError):
        return None
    return out.strip() or None


class GitRemoteBranches:
    def __init__(self, remote: str = "origin", cwd: str | Path | None = None):
        self.remote = remote
        self.cwd = Path(cwd) if cwd else None
        self._git = shutil.which("git") or "git"

    def _run(self, *args: str) -> str:
        cmd = [self._git, *args]
        try:
            return run_with_retries(
                lambda: subprocess.check_output(  # nosec B603 - controlled arguments
                    cmd, cwd=self.cwd, text=True, stderr=subprocess.STDOUT
                )
            )
        except subprocess.CalledProcessError as exc:
            raise RemoteError(f"Command failed: {' '.join(cmd)}: {exc.output}") from exc

    def list_remote_branches(self) -> list[Branch]:
        return parse_ls_remote(self._run("ls-remote", "--heads", self.remote))

    def get_commit_meta(self, branch_name: str) -> CommitMeta:
        self._run("fetch", self.remote, branch_name)
        return parse_log_line(
            self._run("log", f"{self.remote}/{branch_name}", "-1", _LOG_FORMAT)
        )


__all__ = ["GitRemoteBranches", "current_branch", "parse_log_line", "parse_ls_remote"]
