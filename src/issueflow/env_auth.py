"""Environment-based authentication for issueflow.

Resolves the GitHub token from (in order) a ``.env`` file, well-known
environment variables and finally an optional secret-manager command such
as ``gcloud secrets versions access latest --secret=github-token``.
Failure to find a token is a fatal :class:`~issueflow.errors.SetupError`.
"""

from __future__ import annotations

import os
import shlex
import subprocess  # nosec B404 - secret retrieval shells out to a configured CLI
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .config import FlowConfig
from .errors import SetupError, redact
from .logging import get_logger

TOKEN_ALTERNATIVES = ("ISSUEFLOW_GITHUB_TOKEN", "GITHUB_TOKEN", "GH_TOKEN", "GITHUB_PAT")
SECRET_COMMAND_TIMEOUT = 30


@dataclass
class EnvAuthConfig:
    """Configuration for environment-based authentication."""

    load_dotenv: bool = True
    dotenv_path: str | None = None
    github_token_var: str = "GITHUB_TOKEN"
    secret_command: str | None = None

    @classmethod
    def from_flow_config(cls, cfg: FlowConfig) -> EnvAuthConfig:
        return cls(
            load_dotenv=cfg.load_dotenv,
            dotenv_path=cfg.dotenv_path,
            github_token_var=cfg.token_env,
            secret_command=cfg.secret_command,
        )


class TokenResolver:
    """Finds a GitHub token through environment variables, .env files or a secret command."""

    def __init__(self, config: EnvAuthConfig):
        self.config = config
        self.logger = get_logger()
        self._dotenv_loaded = False
        if config.load_dotenv:
            self._load_dotenv()

    @property
    def dotenv_loaded(self) -> bool:
        return self._dotenv_loaded

    def _load_dotenv(self) -> None:
        candidates = [self.config.dotenv_path] if self.config.dotenv_path else []
        candidates.extend([".env", ".env.local"])
        for location in candidates:
            if location and Path(location).exists():
                load_dotenv(location)
                self._dotenv_loaded = True
                self.logger.debug(f"Loaded environment variables from {location}")
                return

    def token_from_env(self) -> str | None:
        names = [self.config.github_token_var, *TOKEN_ALTERNATIVES]
        for name in names:
            raw = os.getenv(name)
            if raw and raw.strip():
                self.logger.debug(f"Found GitHub token in {name}")
                return raw.strip()
        return None

    def token_from_secret_command(self) -> str | None:
        command = self.config.secret_command
        if not command:
            return None
        try:
            out = subprocess.check_output(  # nosec B603 - command comes from trusted config
                shlex.split(command),
                text=True,
                stderr=subprocess.PIPE,
                timeout=SECRET_COMMAND_TIMEOUT,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            detail = getattr(exc, "stderr", None) or str(exc)
            raise SetupError(f"Failed to get GitHub token: {redact(str(detail)).strip()}") from exc
        token = out.strip()
        return token or None

    def resolve(self) -> str:
        token = self.token_from_env() or self.token_from_secret_command()
        if not token:
            raise SetupError(
                "Failed to get GitHub token: set "
                f"{self.config.github_token_var} or configure auth.secret_command"
            )
        self.logger.log_operation("github_token_resolved")
        return token


def resolve_token(cfg: FlowConfig) -> str:
    return TokenResolver(EnvAuthConfig.from_flow_config(cfg)).resolve()


__all__ = ["EnvAuthConfig", "TokenResolver", "resolve_token"]
