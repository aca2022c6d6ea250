from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, cast

import yaml

from .errors import ConfigError
from .models import BranchExpectation

CONFIG_DEFAULT = 'issueflow.config.yaml'

DEFAULT_READINESS_LABELS = ['ready-for-development', 'good first issue']
DEFAULT_AGENT_IDENTITIES = ['jules', 'google-labs-jules']


@dataclass
class FlowConfig:
    version: int = 1
    source_file: Path | None = None
    # GitHub
    github_repo: str | None = None
    github_api_url: str = 'https://api.github.com'
    trunk_branch: str = 'main'
    # Workflow
    branch_prefix: str = 'feature/'
    branch_slug_max: int = 50
    context_file: str = '.claude-context.md'
    readiness_labels: list[str] = field(default_factory=lambda: list(DEFAULT_READINESS_LABELS))
    auto_max_issues: int = 3
    check_command: str = 'npm run lint && npm run typecheck'
    # Reconcile
    integration_marker: str = 'github-issues'
    agent_identities: list[str] = field(default_factory=lambda: list(DEFAULT_AGENT_IDENTITIES))
    message_prefixes: list[str] = field(default_factory=lambda: ['feat:'])
    message_keywords: list[str] = field(default_factory=lambda: ['Implement'])
    # Branch snapshot source
    branch_source: str = 'api'
    git_remote: str = 'origin'
    branch_expectations: dict[str, BranchExpectation] = field(default_factory=dict)
    # Authentication
    token_env: str = 'GITHUB_TOKEN'
    secret_command: str | None = None
    load_dotenv: bool = True
    dotenv_path: str | None = None
    # Output
    report_json: str = 'issueflow_report.json'
    # Logging configuration
    logging_json_enabled: bool = False
    logging_level: str = 'INFO'


def _resolve_env_var(value: Any) -> Any:
    """Resolve environment variable if value starts with $."""
    if isinstance(value, str) and value.startswith('$'):
        return os.getenv(value[1:], None)
    return value


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name, {}) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping")
    return cast(dict[str, Any], value)


def _string_list(value: Any, default: list[str]) -> list[str]:
    if value is None:
        return list(default)
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


def _load_expectations(raw: dict[str, Any]) -> dict[str, BranchExpectation]:
    out: dict[str, BranchExpectation] = {}
    for name, entry in raw.items():
        if not isinstance(entry, dict):
            raise ConfigError(f'Branch expectation for {name!r} must be a mapping')
        out[str(name)] = BranchExpectation(
            declared_status=str(entry.get('status', 'unknown')),
            expectation=str(entry.get('expectation', '')),
            priority=str(entry.get('priority', 'medium')),
        )
    return out


def default_config() -> FlowConfig:
    return FlowConfig(github_repo=os.getenv('GITHUB_REPOSITORY'))


def load_config(path: str | Path) -> FlowConfig:
    p = Path(path)
    if not p.exists():
        raise ConfigError(f'Configuration file not found: {p}')
    try:
        loaded = yaml.safe_load(p.read_text()) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f'Invalid YAML in {p}: {exc}') from exc
    if not isinstance(loaded, dict):
        raise ConfigError(f'Configuration root must be a mapping: {p}')
    raw = cast(dict[str, Any], loaded)
    gh = _section(raw, 'github')
    wf = _section(raw, 'workflow')
    rec = _section(raw, 'reconcile')
    branches = _section(raw, 'branches')
    auth = _section(raw, 'auth')
    out = _section(raw, 'output')
    logging_config = _section(raw, 'logging')

    defaults = FlowConfig()
    branch_source = str(branches.get('source', defaults.branch_source))
    if branch_source not in {'api', 'git'}:
        raise ConfigError(f"branches.source must be 'api' or 'git', got {branch_source!r}")

    return FlowConfig(
        version=int(raw.get('version', 1)),
        source_file=p,
        github_repo=_resolve_env_var(gh.get('repo')) or os.getenv('GITHUB_REPOSITORY'),
        github_api_url=gh.get('api_url', defaults.github_api_url),
        trunk_branch=gh.get('trunk_branch', defaults.trunk_branch),
        branch_prefix=wf.get('branch_prefix', defaults.branch_prefix),
        branch_slug_max=int(wf.get('branch_slug_max', defaults.branch_slug_max)),
        context_file=wf.get('context_file', defaults.context_file),
        readiness_labels=_string_list(wf.get('readiness_labels'), DEFAULT_READINESS_LABELS),
        auto_max_issues=int(wf.get('auto_max_issues', defaults.auto_max_issues)),
        check_command=wf.get('check_command', defaults.check_command),
        integration_marker=rec.get('integration_marker', defaults.integration_marker),
        agent_identities=_string_list(rec.get('agent_identities'), DEFAULT_AGENT_IDENTITIES),
        message_prefixes=_string_list(rec.get('message_prefixes'), defaults.message_prefixes),
        message_keywords=_string_list(rec.get('message_keywords'), defaults.message_keywords),
        branch_source=branch_source,
        git_remote=branches.get('remote', defaults.git_remote),
        branch_expectations=_load_expectations(_section(branches, 'expectations')),
        token_env=auth.get('token_env', defaults.token_env),
        secret_command=_resolve_env_var(auth.get('secret_command')),
        load_dotenv=bool(auth.get('load_dotenv', True)),
        dotenv_path=auth.get('dotenv_path'),
        report_json=out.get('report_json', defaults.report_json),
        logging_json_enabled=bool(logging_config.get('json_enabled', False)),
        logging_level=logging_config.get('level', 'INFO'),
    )


__all__ = ['CONFIG_DEFAULT', 'FlowConfig', 'default_config', 'load_config']
