from __future__ import annotations

import json
from datetime import timedelta

import pytest
import requests

from issueflow.errors import RemoteError
from issueflow.models import Branch, BranchExpectation, CommitMeta, Issue
from issueflow.orchestrator import (
    Orchestrator,
    build_report,
    format_report,
    select_ready,
)
from issueflow.prioritizer import prioritize


@pytest.fixture
def orch(tracker, branch_source, flow_config):
    return Orchestrator(tracker, branch_source, flow_config)


def _ready(number, title, labels=(), **kw):
    return Issue(number=number, title=title, labels=["ready-for-development", *labels], **kw)


def test_select_ready_filters_and_bounds(now):
    issues = [
        _ready(1, "One", updated_at=now),
        Issue(number=2, title="Not ready", labels=["bug"], updated_at=now),
        _ready(3, "Busy", ["in-progress"], updated_at=now),
        _ready(4, "Critical", ["bug"], updated_at=now),
        Issue(number=5, title="First timer", labels=["good first issue"], updated_at=now),
        _ready(6, "Six", updated_at=now),
    ]
    selected = select_ready(prioritize(issues, now), 3, ["ready-for-development", "good first issue"])
    assert [p.number for p in selected] == [4, 1, 5]


def test_auto_starts_batch_and_survives_failures(orch, tracker):
    tracker.add(_ready(1, "Alpha"))
    tracker.add(_ready(2, "Beta"))
    tracker.add(_ready(3, "Gamma"))
    tracker.refs.add("feature/issue-2-beta")
    tracker.failures["create_branch:feature/issue-3-gamma"] = RemoteError("GitHub exploded", status=500)

    summary = orch.auto(5)

    assert summary["selected"] == [1, 2, 3]
    assert summary["started"] == [{"issue": 1, "branch": "feature/issue-1-alpha"}]
    assert summary["already_started"] == [2]
    assert [f["issue"] for f in summary["failed"]] == [3]
    assert summary["failed"][0]["category"] == "network"


def test_auto_catches_request_exceptions(orch, tracker):
    tracker.add(_ready(1, "Alpha"))
    tracker.failures["add_comment"] = requests.ConnectionError("connection reset by peer")
    summary = orch.auto()
    assert summary["started"] == []
    assert summary["failed"][0]["issue"] == 1


def test_auto_uses_configured_default(orch, tracker, flow_config):
    flow_config.auto_max_issues = 1
    tracker.add(_ready(1, "Alpha"))
    tracker.add(_ready(2, "Beta"))
    summary = orch.auto()
    assert summary["requested"] == 1
    assert summary["selected"] == [1]


def test_start_single_issue_recovers(orch, tracker):
    tracker.add(Issue(number=42, title="Fix login"))
    assert orch.start(42) == "feature/issue-42-fix-login"
    tracker.issues[42].labels = []
    # branch exists now; benign
    assert orch.start(42) is None
    assert len(tracker.created_branches) == 1


def test_progress_delegates_to_engine(orch, tracker):
    tracker.add(Issue(number=4, title="x"))
    assert orch.progress(4, "tests-added").applied is True
    assert orch.progress(4, "nonsense").applied is False


def test_progress_remote_failure_is_logged(tracker, branch_source, flow_config, capsys):
    # Built here, not via the `orch` fixture, so the logger binds to the capsys stream.
    orch = Orchestrator(tracker, branch_source, flow_config)
    tracker.add(Issue(number=999, title="x"))
    tracker.failures["add_comment"] = RemoteError("Not Found", status=404)
    assert orch.progress(999, "merged") is None
    assert tracker.label_updates == []
    assert "issue #999" in capsys.readouterr().out


def test_direct_commands_recover_from_remote_failures(orch, tracker):
    tracker.failures["create_issue"] = RemoteError("validation failed", status=422)
    tracker.failures["update_issue:7"] = requests.ConnectionError("connection reset")
    tracker.failures["add_comment:7"] = RemoteError("locked", status=403)

    assert orch.create_issue("New thing") is None
    assert orch.update_body(7, "text") is False
    assert orch.comment(7, "hi") is False
    assert orch.comment(8, "hi") is True
    assert tracker.comments == [(8, "hi")]


def test_detect_leaves_branch_snapshot_untouched(tracker, flow_config):
    class _FixedBranches:
        def __init__(self):
            self.snapshot = [Branch(name="feature/login-form", head_sha="abc")]

        def list_remote_branches(self):
            return self.snapshot

        def get_commit_meta(self, branch_name):
            return CommitMeta(author="jules", message="Add login form")

    source = _FixedBranches()
    proposals = Orchestrator(tracker, source, flow_config).detect()

    assert proposals[0].branch.commit is not None
    assert source.snapshot[0].commit is None


def test_branch_failures_keep_branch_name(tracker, branch_source, flow_config, capsys):
    # Built here, not via the `orch` fixture, so the logger binds to the capsys stream.
    orch = Orchestrator(tracker, branch_source, flow_config)
    branch_source.add("feature/login-form", author="jules")
    del branch_source.metas["feature/login-form"]
    orch.detect()
    out = capsys.readouterr().out
    assert "branch feature/login-form" in out
    assert "issue #0" not in out


def test_build_report_aggregates(now):
    issues = [
        Issue(number=1, title="Crash", labels=["bug", "in-progress"], assignee="amy", updated_at=now),
        Issue(number=2, title="Polish", labels=["low"], updated_at=now - timedelta(days=10)),
        Issue(number=3, title="Feature", labels=["feature", "merged"], updated_at=now),
    ]
    report = build_report(prioritize(issues, now), now, top=2)

    assert report["total_issues"] == 3
    assert report["by_priority"] == {"critical": 1, "high": 0, "medium": 1, "low": 1}
    assert report["needs_attention"] == 1
    assert report["in_progress"] == 1
    assert report["estimated_hours"] == 2 + 8 + 6
    assert report["by_step"] == {"in-progress": 1, "ready": 1, "merged": 1}
    assert report["top_priority"] == [
        {"number": 1, "title": "Crash", "priority": "critical", "estimated_hours": 2, "assignee": "amy"},
        {"number": 3, "title": "Feature", "priority": "medium", "estimated_hours": 6, "assignee": "unassigned"},
    ]
    assert report["generated_at"] == "2024-06-15T12:00:00Z"
    assert any("total issues: 3" in line for line in format_report(report))


def test_report_writes_json(orch, tracker, tmp_path, now):
    tracker.add(Issue(number=1, title="A", updated_at=now))
    out = tmp_path / "nested" / "report.json"
    report = orch.report(output=out, now=now)
    assert json.loads(out.read_text()) == report


def test_report_has_no_side_effects(orch, tracker, now):
    tracker.add(Issue(number=1, title="A", labels=["bug"], updated_at=now))
    orch.report(now=now)
    assert tracker.comments == [] and tracker.label_updates == [] and tracker.created == []


def test_detect_uses_all_issues_and_candidates_only(orch, tracker, branch_source):
    branch_source.add("main", author="jules")
    branch_source.add("feature/issue-7-x", author="jules")
    branch_source.add("feature/login-form", author="jules", message="Add login form")
    branch_source.add("feature/search", author="jules", message="feat: search")
    tracker.add(Issue(number=1, title="Search", body="`feature/search`", state="closed"))

    proposals = orch.detect()

    assert [p.branch.name for p in proposals] == ["feature/login-form"]
    assert branch_source.meta_calls == ["feature/login-form", "feature/search"]


def test_detect_skips_branch_when_metadata_fails(orch, branch_source):
    branch_source.add("feature/login-form", author="jules")
    del branch_source.metas["feature/login-form"]
    assert orch.detect() == []


def test_integrate_continues_after_failure(orch, tracker, branch_source):
    branch_source.add("feature/one", author="jules")
    branch_source.add("feature/two", author="jules")
    tracker.failures["create_issue:feature: One"] = RemoteError("validation failed", status=422)

    outcomes = orch.integrate()

    assert [o.branch for o in outcomes] == ["feature/one", "feature/two"]
    assert outcomes[0].issue_number is None and outcomes[0].error
    assert outcomes[1].issue_number is not None
    assert [i.title for i in tracker.created] == ["feature: Two"]


def test_check_orphans_and_cleanup(orch, tracker, branch_source):
    branch_source.add("feature/alive")
    tracker.add(Issue(number=1, title="Alive", body="`feature/alive`"))
    tracker.add(Issue(number=2, title="Gone", body="`feature/gone`"))
    tracker.add(Issue(number=3, title="Closed", body="`feature/old`", state="closed"))
    tracker.add(Issue(number=4, title="Also gone", body="`feature/gone-too`"))
    tracker.failures["add_comment:4"] = RemoteError("locked", status=403)

    records = orch.check_orphans()
    assert [(r.issue.number, r.deleted_branch) for r in records] == [
        (2, "feature/gone"),
        (4, "feature/gone-too"),
    ]

    outcome = orch.cleanup(records)
    assert [r.issue.number for r in outcome.marked] == [2]
    assert [r.issue.number for r, _ in outcome.failed] == [4]
    assert tracker.issues[2].labels == ["needs-review", "deleted-branch"]


def test_branch_status(orch, branch_source, flow_config):
    branch_source.add("main", author="amy", message="Merge PR #1")
    flow_config.branch_expectations = {
        "main": BranchExpectation("stable", "Should always pass", "critical"),
        "testing": BranchExpectation("testing", "Integration tests"),
    }
    rows = orch.branch_status()
    assert rows[0]["present"] is True
    assert rows[0]["last_commit"] == "Merge PR #1"
    assert rows[0]["author"] == "amy"
    assert rows[1] == {
        "branch": "testing",
        "declared_status": "testing",
        "expectation": "Integration tests",
        "priority": "medium",
        "present": False,
        "last_commit": None,
        "author": None,
    }
