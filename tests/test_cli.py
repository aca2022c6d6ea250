from __future__ import annotations

import json

import pytest
import requests

from issueflow import cli
from issueflow.errors import RemoteError
from issueflow.models import Issue
from issueflow.orchestrator import Orchestrator


@pytest.fixture(autouse=True)
def _workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("ISSUEFLOW_MOCK", "1")
    return tmp_path


def test_schema_command_writes_file(tmp_path, capsys):
    target = tmp_path / "out" / "schema.json"
    rc = cli.main(["schema", "--output", str(target)])
    assert rc == 0
    data = json.loads(target.read_text())
    assert {"report", "auto_start"} <= set(data)
    assert "[schema] wrote" in capsys.readouterr().out


def test_schema_command_stdout(capsys):
    assert cli.main(["schema", "--stdout"]) == 0
    assert "WorkflowReport" in capsys.readouterr().out


def test_report_in_mock_mode_writes_json(tmp_path, capsys):
    output = tmp_path / "report.json"
    rc = cli.main(["report", "--output", str(output)])
    assert rc == 0
    data = json.loads(output.read_text())
    assert data["total_issues"] == 0
    assert data["by_priority"] == {"critical": 0, "high": 0, "medium": 0, "low": 0}
    assert "total issues: 0" in capsys.readouterr().out


def test_start_in_mock_mode(capsys):
    assert cli.main(["start", "42"]) == 0
    assert "[start] issue #42" in capsys.readouterr().out


def test_auto_in_mock_mode(capsys):
    assert cli.main(["auto", "2"]) == 0
    assert "[auto] selected=0 started=0" in capsys.readouterr().out


def test_progress_unknown_step_is_not_an_error(capsys):
    assert cli.main(["progress", "7", "shipped"]) == 0
    assert "unknown step" in capsys.readouterr().out


def test_detect_and_orphans_in_mock_mode(capsys):
    assert cli.main(["detect"]) == 0
    assert cli.main(["check-orphans"]) == 0
    out = capsys.readouterr().out
    assert "no unclaimed agent branches" in out
    assert "no orphaned issues" in out


def test_create_in_mock_mode(capsys):
    assert cli.main(["create", "New thing", "body text", "bug, ui"]) == 0
    assert "[create] #" in capsys.readouterr().out


def test_missing_explicit_config_fails(tmp_path, capsys):
    rc = cli.main(["report", "--config", str(tmp_path / "missing.yaml")])
    assert rc == 1
    assert "Configuration file not found" in capsys.readouterr().err


def test_default_config_file_is_picked_up(tmp_path, capsys):
    (tmp_path / "issueflow.config.yaml").write_text(
        "version: 1\noutput:\n  report_json: from-config.json\n"
    )
    assert cli.main(["report"]) == 0
    assert (tmp_path / "from-config.json").exists()


def test_missing_repository_outside_mock_mode(monkeypatch, capsys):
    monkeypatch.delenv("ISSUEFLOW_MOCK")
    monkeypatch.delenv("GITHUB_REPOSITORY", raising=False)
    assert cli.main(["report"]) == 1
    assert "No repository configured" in capsys.readouterr().err


def test_context_title_from_document(tmp_path, capsys):
    doc = tmp_path / "ctx.md"
    doc.write_text("# Issue #12: Fix the login flow\n\n## Context\n")
    rc = cli.main(["context-title", "--branch", "feature/issue-12-fix-login", "--context-file", str(doc)])
    assert rc == 0
    assert "Issue #12: Fix the login flow" in capsys.readouterr().out.splitlines()


def test_context_title_falls_back_to_branch(capsys):
    assert cli.main(["context-title", "--branch", "feature/issue-12-fix-login"]) == 0
    assert "Issue #12: Fix Login" in capsys.readouterr().out


def test_context_title_without_issue_branch(capsys):
    assert cli.main(["context-title", "--branch", "main"]) == 1
    assert "No issue context available" in capsys.readouterr().out


def test_missing_arguments_exit_with_usage():
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["start"])
    assert excinfo.value.code == 2


@pytest.fixture
def fake_orchestrator(monkeypatch, tracker, branch_source):
    def build(cfg, *, dry_run=False):
        return Orchestrator(tracker, branch_source, cfg, dry_run=dry_run)

    monkeypatch.setattr(cli, "build_orchestrator", build)
    return tracker


def test_progress_remote_failure_exits_cleanly(fake_orchestrator, capsys):
    fake_orchestrator.add(Issue(number=999, title="Missing"))
    fake_orchestrator.failures["add_comment"] = RemoteError("Not Found", status=404)
    assert cli.main(["progress", "999", "merged"]) == 0
    assert "[progress] issue #999 not updated" in capsys.readouterr().out


def test_direct_commands_remote_failure_exit_cleanly(fake_orchestrator, capsys):
    fake_orchestrator.failures["add_comment"] = RemoteError("Not Found", status=404)
    fake_orchestrator.failures["update_issue"] = requests.ConnectionError("connection reset")
    fake_orchestrator.failures["create_issue"] = RemoteError("validation failed", status=422)

    assert cli.main(["comment", "999", "hi"]) == 0
    assert cli.main(["update", "999", "new body"]) == 0
    assert cli.main(["create", "Broken"]) == 0

    out = capsys.readouterr().out
    assert "[comment] #999 not commented" in out
    assert "[update] #999 not updated" in out
    assert "[create] 'Broken' not created" in out
