"""Branch / issue reconciliation.

Two independent scans compare the branch snapshot with the issue snapshot:

* ``unclaimed`` branches: feature branches not created by this tool, whose
  head commit looks agent-authored, and that no existing issue mentions.
  Each yields an :class:`~issueflow.models.IssueProposal`.
* ``orphans``: open issues whose body references (in back-ticks) a
  feature branch that no longer exists. Each yields an
  :class:`~issueflow.models.OrphanRecord`.

The scans are pure functions over snapshots; :class:`BranchReconciler`
applies their results through the tracker port. Authorship heuristics are a
list of plain predicates so rules can be swapped or tested on their own.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field

from .config import FlowConfig
from .context_doc import ContextDocument
from .errors import RemoteError
from .logging import StructuredLogger, get_logger
from .models import Branch, CommitMeta, Issue, IssueProposal, OrphanRecord, Priority
from .ports import IssueTracker
from .workflow import merge_labels, write_context_file

AuthorshipRule = Callable[[CommitMeta], bool]

REVIEW_LABELS = ("needs-review", "deleted-branch")
PROPOSAL_ESTIMATE_HOURS = 3

_AREA_LABELS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("ui", "component"), "ui"),
    (("api", "backend"), "api"),
    (("test",), "testing"),
)


# --- authorship rules --------------------------------------------------


def author_matches(identities: Iterable[str]) -> AuthorshipRule:
    needles = [i.lower() for i in identities if i]

    def rule(commit: CommitMeta) -> bool:
        author = commit.author.lower()
        return any(needle in author for needle in needles)

    return rule


def message_starts_with(prefix: str) -> AuthorshipRule:
    return lambda commit: commit.message.startswith(prefix)


def message_contains(keyword: str) -> AuthorshipRule:
    return lambda commit: keyword in commit.message


def default_rules(cfg: FlowConfig) -> list[AuthorshipRule]:
    rules: list[AuthorshipRule] = [author_matches(cfg.agent_identities)]
    rules.extend(message_starts_with(p) for p in cfg.message_prefixes)
    rules.extend(message_contains(k) for k in cfg.message_keywords)
    return rules


def is_agent_authored(commit: CommitMeta, rules: Sequence[AuthorshipRule]) -> bool:
    return any(rule(commit) for rule in rules)


# --- unclaimed branches ------------------------------------------------


def _tool_branch_re(prefix: str) -> re.Pattern[str]:
    return re.compile(rf"^{re.escape(prefix)}issue-\d+-")


def is_candidate_branch(name: str, cfg: FlowConfig) -> bool:
    if not name.startswith(cfg.branch_prefix):
        return False
    if _tool_branch_re(cfg.branch_prefix).match(name):
        return False
    return not (cfg.integration_marker and cfg.integration_marker in name)


def candidate_branches(branches: Iterable[Branch], cfg: FlowConfig) -> list[Branch]:
    return [b for b in branches if is_candidate_branch(b.name, cfg)]


def normalized_branch_title(name: str, prefix: str = "feature/") -> str:
    short = name[len(prefix):] if name.startswith(prefix) else name
    return short.replace("-", " ").lower()


def display_branch_title(name: str, prefix: str = "feature/") -> str:
    short = name[len(prefix):] if name.startswith(prefix) else name
    return re.sub(r"\b\w", lambda m: m.group().upper(), short.replace("-", " "))


def branch_has_issue(name: str, issues: Iterable[Issue], prefix: str = "feature/") -> bool:
    needle = normalized_branch_title(name, prefix)
    return any(
        name in (issue.body or "") or needle in (issue.title or "").lower() for issue in issues
    )


def infer_priority(message: str) -> Priority:
    low = message.lower()
    if "critical" in low or "urgent" in low:
        return Priority.HIGH
    if "minor" in low or "small" in low:
        return Priority.LOW
    return Priority.MEDIUM


def proposal_labels(name: str, priority: Priority) -> list[str]:
    labels = ["feature", priority.value]
    for needles, label in _AREA_LABELS:
        if any(needle in name for needle in needles):
            labels.append(label)
    return labels


def _format_date(commit: CommitMeta) -> str:
    if commit.timestamp is None:
        return "unknown"
    return commit.timestamp.strftime("%a %b %d %Y")


def build_proposal(branch: Branch, cfg: FlowConfig) -> IssueProposal:
    commit = branch.commit or CommitMeta(author="", message="")
    title = display_branch_title(branch.name, cfg.branch_prefix)
    priority = infer_priority(commit.message)
    body = "\n".join(
        [
            f"## Feature: {title}",
            "",
            f"**Implemented by:** {commit.author or 'automated agent'}",
            f"**Branch:** `{branch.name}`",
            "**Status:** ✅ Implementation started",
            "",
            "### Work Already Done:",
            commit.message or "(no commit message)",
            "",
            "### Requirements:",
            "- [ ] Review the agent's implementation",
            "- [ ] Add tests if needed",
            "- [ ] Integrate with existing codebase",
            "- [ ] Update documentation",
            "- [ ] Prepare for production",
            "",
            "### Next Steps:",
            f"1. Switch to branch: `git checkout {branch.name}`",
            "2. Review implementation details",
            f"3. Open the context file `{cfg.context_file}`",
            "4. Continue development",
            "",
            f"**Last Updated:** {_format_date(commit)}",
            f"**Priority:** {priority.value.capitalize()}",
            "**Estimated:** 2-4 hours (review + integration)",
        ]
    )
    return IssueProposal(
        branch=branch,
        title=f"feature: {title}",
        body=body,
        labels=proposal_labels(branch.name, priority),
        priority=priority,
    )


def find_unclaimed(
    branches: Iterable[Branch],
    issues: Iterable[Issue],
    cfg: FlowConfig,
    rules: Sequence[AuthorshipRule] | None = None,
) -> list[IssueProposal]:
    """Proposals for agent-authored candidate branches with no tracking issue.

    Branches must carry commit metadata; those without it are skipped.
    Snapshot order is preserved.
    """
    rules = list(rules) if rules is not None else default_rules(cfg)
    issue_list = list(issues)
    proposals: list[IssueProposal] = []
    for branch in candidate_branches(branches, cfg):
        if branch.commit is None or not is_agent_authored(branch.commit, rules):
            continue
        if branch_has_issue(branch.name, issue_list, cfg.branch_prefix):
            continue
        proposals.append(build_proposal(branch, cfg))
    return proposals


def render_link_comment(branch: Branch) -> str:
    commit = branch.commit or CommitMeta(author="", message="")
    return "\n".join(
        [
            "🔗 **Agent Branch Integration**",
            "",
            f"This issue is linked to existing branch: `{branch.name}`",
            "",
            "**Branch Details:**",
            f'- Last commit: "{commit.message}"',
            f"- Author: {commit.author}",
            f"- Created: {_format_date(commit)}",
            "",
            "**To continue work:**",
            "```bash",
            f"git checkout {branch.name}",
            "```",
            "",
            "*🤖 Automated by issueflow*",
        ]
    )


# --- orphans -------------------------------------------------------------


def branch_references(body: str, prefix: str = "feature/") -> list[str]:
    pattern = re.compile(rf"`({re.escape(prefix)}[^`]+)`")
    return list(dict.fromkeys(pattern.findall(body or "")))


def find_orphans(
    issues: Iterable[Issue], branch_names: Iterable[str], prefix: str = "feature/"
) -> list[OrphanRecord]:
    present = set(branch_names)
    records: list[OrphanRecord] = []
    for issue in issues:
        for name in branch_references(issue.body, prefix):
            if name not in present:
                records.append(OrphanRecord(issue=issue, deleted_branch=name))
    return records


def render_orphan_comment(deleted_branch: str) -> str:
    return "\n".join(
        [
            "⚠️ **Branch Deleted - Review Required**",
            "",
            f"The branch `{deleted_branch}` referenced by this issue has been deleted.",
            "",
            "**Action Required:**",
            "- [ ] Review if work was completed and merged elsewhere",
            "- [ ] Close issue if work is complete",
            "- [ ] Recreate branch if work is still needed",
            "- [ ] Archive issue if no longer relevant",
            "",
            "**Options:**",
            "1. **Work Complete**: Close this issue",
            "2. **Work Incomplete**: Create new branch or restore the deleted branch",
            "3. **No Longer Needed**: Add `archived` label and close",
            "",
            "*🤖 Automated by issueflow*",
        ]
    )


# --- applying results ----------------------------------------------------


@dataclass
class IntegrationOutcome:
    branch: str
    issue_number: int | None = None
    context_written: bool = False
    error: str | None = None


@dataclass
class CleanupOutcome:
    marked: list[OrphanRecord] = field(default_factory=list)
    failed: list[tuple[OrphanRecord, str]] = field(default_factory=list)


class BranchReconciler:
    def __init__(
        self,
        tracker: IssueTracker,
        cfg: FlowConfig,
        *,
        logger: StructuredLogger | None = None,
    ):
        self.tracker = tracker
        self.cfg = cfg
        self.logger = logger or get_logger()

    def integrate(self, proposal: IssueProposal) -> IntegrationOutcome:
        """Create the issue, link it, then drop the context document onto the branch.

        Raises on issue creation failure; comment / context failures are
        logged and reported on the outcome.
        """
        branch = proposal.branch
        issue = self.tracker.create_issue(
            title=proposal.title, body=proposal.body, labels=proposal.labels
        )
        outcome = IntegrationOutcome(branch=branch.name, issue_number=issue.number)
        self.logger.log_issue_action("created", issue.number, branch=branch.name)
        try:
            self.tracker.add_comment(issue.number, render_link_comment(branch))
            doc = ContextDocument(
                number=issue.number,
                title=issue.title or proposal.title,
                branch=branch.name,
                url=issue.url,
                priority=proposal.priority.value,
                estimated_hours=PROPOSAL_ESTIMATE_HOURS,
                body=proposal.body,
                labels=list(proposal.labels),
                agent_origin=True,
                check_command=self.cfg.check_command,
            )
            write_context_file(
                self.tracker,
                self.cfg.context_file,
                doc.render(),
                branch=branch.name,
                issue_number=issue.number,
            )
            outcome.context_written = True
        except RemoteError as exc:
            outcome.error = str(exc)
            self.logger.warning(
                f"Could not finish linking {branch.name} to issue #{issue.number}: {exc}",
                issue_number=issue.number,
                branch=branch.name,
            )
        return outcome

    def mark_for_review(self, record: OrphanRecord) -> None:
        """Comment + label an orphaned issue.

        Not guarded against repeats: running twice posts the comment twice.
        """
        number = record.issue.number
        self.tracker.add_comment(number, render_orphan_comment(record.deleted_branch))
        self.tracker.update_issue(
            number, labels=merge_labels(record.issue.labels, REVIEW_LABELS)
        )
        self.logger.log_issue_action(
            "marked_for_review", number, branch=record.deleted_branch
        )


__all__ = [
    "AuthorshipRule",
    "BranchReconciler",
    "CleanupOutcome",
    "IntegrationOutcome",
    "author_matches",
    "branch_has_issue",
    "branch_references",
    "build_proposal",
    "candidate_branches",
    "default_rules",
    "find_orphans",
    "find_unclaimed",
    "infer_priority",
    "is_agent_authored",
    "is_candidate_branch",
    "message_contains",
    "message_starts_with",
    "render_orphan_comment",
]
