"""Runtime helpers for issueflow CLI orchestration."""

from __future__ import annotations

import os
import sys
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol

from .config import CONFIG_DEFAULT, FlowConfig, default_config, load_config
from .env_auth import resolve_token
from .errors import ConfigError, SetupError
from .git_remote import GitRemoteBranches
from .github_issues import GitHubTracker, TrackerConfig
from .github_rest import GitHubRestClient
from .logging import configure_logging, get_logger
from .orchestrator import Orchestrator
from .ports import BranchSource


class _HandlerCallable(Protocol):
    def __call__(self) -> Any: ...


def mock_enabled() -> bool:
    return os.environ.get("ISSUEFLOW_MOCK") == "1"


def prepare_config(
    args: Any, *, loader: Callable[[str], FlowConfig] = load_config
) -> FlowConfig:
    """Load FlowConfig for the given argparse namespace.

    An explicit ``--config`` must exist; the implicit default file is
    optional and built-in defaults apply without it.
    """
    path = getattr(args, "config", None)
    if path:
        cfg = loader(path)
    elif Path(CONFIG_DEFAULT).exists():
        cfg = loader(CONFIG_DEFAULT)
    else:
        cfg = default_config()
    repo_override = getattr(args, "repo", None)
    if repo_override:
        cfg.github_repo = repo_override
    level = "WARNING" if getattr(args, "quiet", False) else cfg.logging_level
    configure_logging(json_logging=cfg.logging_json_enabled, level=level)
    return cfg


def build_orchestrator(cfg: FlowConfig, *, dry_run: bool = False) -> Orchestrator:
    """Wire the GitHub (or mock) collaborators. Raises SetupError / ConfigError."""
    mock = mock_enabled()
    rest: GitHubRestClient | None = None
    if not mock:
        if not cfg.github_repo:
            raise ConfigError("No repository configured (github.repo, --repo or $GITHUB_REPOSITORY)")
        rest = GitHubRestClient(
            token=resolve_token(cfg), repo=cfg.github_repo, base_url=cfg.github_api_url
        )
    tracker = GitHubTracker(
        TrackerConfig(repo=cfg.github_repo, mock=mock, dry_run=dry_run), rest
    )
    branches: BranchSource = tracker
    if cfg.branch_source == "git" and not mock:
        branches = GitRemoteBranches(remote=cfg.git_remote)
    return Orchestrator(tracker, branches, cfg, logger=get_logger(), dry_run=dry_run)


def execute_command(handler: _HandlerCallable, command: str) -> int:
    """Run a command handler; setup and config failures become exit status 1."""
    start = time.monotonic()
    try:
        result = handler()
    except (SetupError, ConfigError) as exc:
        print(f"[{command}] {exc}", file=sys.stderr)
        return 1
    exit_code = int(result) if result is not None else 0
    get_logger().log_performance(
        f"command_{command}", (time.monotonic() - start) * 1000, exit_code=exit_code
    )
    return exit_code


__all__ = ["build_orchestrator", "execute_command", "mock_enabled", "prepare_config"]
