from __future__ import annotations

from datetime import datetime, timezone

import pytest

from issueflow.config import FlowConfig
from issueflow.context_doc import parse_heading
from issueflow.errors import (
    BranchAlreadyExistsError,
    BranchCreationError,
    ConflictError,
    IssueAlreadyStartedError,
)
from issueflow.models import Issue, Milestone
from issueflow.prioritizer import annotate
from issueflow.workflow import (
    STEP_COMMENTS,
    WorkflowEngine,
    WorkflowStep,
    branch_name_for,
    current_step,
    merge_labels,
    render_start_comment,
    write_context_file,
)


@pytest.fixture
def engine(tracker, flow_config):
    return WorkflowEngine(tracker, flow_config)


def test_branch_name_is_deterministic():
    assert branch_name_for(42, "Fix login") == "feature/issue-42-fix-login"
    assert branch_name_for(7, "Add   OAuth / SSO!!") == "feature/issue-7-add-oauth-sso-"
    assert branch_name_for(7, "Add   OAuth / SSO!!") == branch_name_for(7, "Add   OAuth / SSO!!")


def test_branch_slug_is_truncated():
    name = branch_name_for(1, "a" * 80, max_slug=50)
    assert name == "feature/issue-1-" + "a" * 50


def test_merge_labels_is_additive():
    assert merge_labels(["bug", "ready"], ["in-progress", "bug"]) == ["bug", "ready", "in-progress"]


def test_current_step_picks_most_advanced():
    assert current_step([]) is WorkflowStep.READY
    assert current_step(["feature-branch-created"]) is WorkflowStep.IN_PROGRESS
    assert current_step(["development-started", "merged", "tests-added"]) is WorkflowStep.MERGED
    assert current_step(["in-progress", "build-passing"]) is WorkflowStep.BUILD_PASSING


def test_start_creates_branch_context_comment_and_labels(engine, tracker):
    tracker.add(Issue(number=42, title="Fix login", body="Login fails", labels=["bug"]))

    branch = engine.start(tracker.issues[42])

    assert branch == "feature/issue-42-fix-login"
    assert tracker.created_branches == [(branch, "main")]
    content, _sha = tracker.files[(branch, ".claude-context.md")]
    assert parse_heading(content) == (42, "Fix login")
    assert "Login fails" in content
    assert "- bug" in content
    assert len(tracker.comments) == 1
    number, comment = tracker.comments[0]
    assert number == 42
    assert f"`{branch}`" in comment
    assert "- [ ]" in comment
    assert tracker.label_updates == [(42, ["bug", "in-progress", "feature-branch-created"])]


def test_start_refuses_already_started_issue(engine, tracker):
    tracker.add(Issue(number=3, title="Busy", labels=["in-progress"]))
    with pytest.raises(IssueAlreadyStartedError):
        engine.start(tracker.issues[3])
    assert tracker.created_branches == []
    assert tracker.comments == []


def test_start_with_existing_branch_is_recoverable_and_writes_nothing(engine, tracker):
    tracker.add(Issue(number=42, title="Fix login"))
    tracker.refs.add("feature/issue-42-fix-login")
    tracker.files[("main", ".claude-context.md")] = ("unrelated", "sha-main")

    with pytest.raises(BranchAlreadyExistsError) as excinfo:
        engine.start(tracker.issues[42])

    assert isinstance(excinfo.value, BranchCreationError)
    assert excinfo.value.issue_number == 42
    assert excinfo.value.branch == "feature/issue-42-fix-login"
    assert tracker.file_writes == []
    assert tracker.files[("main", ".claude-context.md")] == ("unrelated", "sha-main")
    assert tracker.comments == []
    assert tracker.label_updates == []


def test_start_missing_trunk_raises_branch_creation_error(engine, tracker):
    tracker.refs.discard("main")
    tracker.add(Issue(number=9, title="Anything"))
    with pytest.raises(BranchCreationError) as excinfo:
        engine.start(tracker.issues[9])
    assert not isinstance(excinfo.value, BranchAlreadyExistsError)
    assert "#9" in str(excinfo.value)


def test_start_context_conflict_updates_with_branch_sha(engine, tracker):
    tracker.add(Issue(number=5, title="Retry me"))
    branch = "feature/issue-5-retry-me"
    # File inherited from trunk when the branch was cut
    tracker.files[(branch, ".claude-context.md")] = ("old", "sha-old")

    engine.start(tracker.issues[5])

    assert [w["sha"] for w in tracker.file_writes] == [None, "sha-old"]
    assert all(w["branch"] == branch for w in tracker.file_writes)
    assert tracker.files[(branch, ".claude-context.md")][0].startswith("# Issue #5: Retry me")


def test_start_continues_when_context_write_fails(engine, tracker):
    tracker.add(Issue(number=6, title="Keep going"))
    tracker.failures["write_repo_file"] = ConflictError("boom", status=409)
    branch = engine.start(tracker.issues[6])
    assert branch == "feature/issue-6-keep-going"
    assert tracker.label_updates


def test_write_context_file_reraises_without_sha(tracker):
    tracker.failures["write_repo_file"] = ConflictError("conflict", status=409)
    with pytest.raises(ConflictError):
        write_context_file(tracker, "ctx.md", "body", branch="feature/x", issue_number=1)


def test_start_comment_includes_milestone():
    issue = Issue(
        number=11,
        title="Ship it",
        milestone=Milestone(number=2, title="v1.0", due_on=datetime(2024, 7, 1, tzinfo=timezone.utc)),
    )
    text = render_start_comment(annotate(issue), "feature/issue-11-ship-it", FlowConfig())
    assert "v1.0" in text
    assert "Mon Jul 01 2024" in text
    assert "Issue #11: Ship it" in text


@pytest.mark.parametrize("step", list(STEP_COMMENTS))
def test_advance_known_step_comments_and_adds_label(engine, tracker, step):
    tracker.add(Issue(number=8, title="Step", labels=["in-progress", "feature-branch-created"]))

    result = engine.advance(8, step)

    assert result.applied is True
    assert tracker.comments == [(8, STEP_COMMENTS[step])]
    assert tracker.label_updates == [(8, ["in-progress", "feature-branch-created", step])]
    assert result.current_step is WorkflowStep(step)


def test_advance_keeps_earlier_step_labels(engine, tracker):
    tracker.add(Issue(number=8, title="Step", labels=["development-started"]))
    engine.advance(8, "merged")
    assert tracker.issues[8].labels == ["development-started", "merged"]


def test_advance_unknown_step_is_noop(engine, tracker):
    tracker.add(Issue(number=8, title="Step"))
    result = engine.advance(8, "deployed-to-mars")
    assert result.applied is False
    assert tracker.comments == []
    assert tracker.label_updates == []
