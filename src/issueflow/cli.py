"""issueflow CLI.

Subcommands:
  report          -> prioritization summary (+ JSON report file)
  start           -> create branch + context for one issue
  progress        -> record a workflow step on an issue
  auto            -> start a bounded batch of ready issues
  detect          -> list unclaimed agent branches
  auto-integrate  -> create issues for unclaimed agent branches
  check-orphans   -> list issues whose referenced branch is gone
  cleanup         -> flag orphaned issues for review
  create / update / comment -> direct tracker commands
  branch-status   -> configured branch expectations vs. remote branches
  context-title   -> title of the active issue context
  schema          -> write JSON Schemas for report artifacts
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from issueflow.config import CONFIG_DEFAULT, FlowConfig
from issueflow.context_doc import resolve_context_title
from issueflow.git_remote import current_branch
from issueflow.orchestrator import Orchestrator, format_report
from issueflow.runtime import build_orchestrator, execute_command, prepare_config
from issueflow.schemas import get_schemas
from issueflow.workflow import ADVANCEABLE_STEPS

REPO_HELP = "Override target repository (owner/repo)"
SCHEMA_DEFAULT = "issueflow_report.schema.json"

_MAX_HELP_WIDTH = 100


class _HelpFormatter(argparse.HelpFormatter):
    def __init__(self, prog: str) -> None:
        super().__init__(prog, max_help_position=30, width=_MAX_HELP_WIDTH)


class _FormatterArgumentParser(argparse.ArgumentParser):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("formatter_class", _HelpFormatter)
        super().__init__(*args, **kwargs)


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--config", help=f"Config file (default: {CONFIG_DEFAULT} when present)")
    p.add_argument("--repo", help=REPO_HELP)
    p.add_argument("--dry-run", action="store_true", help="Print mutations instead of sending them")


def _build_parser() -> argparse.ArgumentParser:
    """Construct top-level CLI parser with subcommands.

    Keep ordering stable for help output readability.
    """
    p = _FormatterArgumentParser(
        prog="issueflow", description="Issue workflow orchestration for GitHub repositories"
    )
    p.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress informational logging (env: ISSUEFLOW_QUIET=1)",
    )
    sub = p.add_subparsers(
        dest="cmd",
        required=True,
        parser_class=_FormatterArgumentParser,
        metavar="<command>",
    )

    rep = sub.add_parser("report", help="Print prioritization summary")
    _add_common(rep)
    rep.add_argument("--top", type=int, default=5, help="Top-N preview size (default 5)")
    rep.add_argument("--output", help="Report JSON path (default: output.report_json)")

    st = sub.add_parser("start", help="Start work on an issue")
    _add_common(st)
    st.add_argument("issue", type=int)

    prog = sub.add_parser("progress", help="Record a workflow step on an issue")
    _add_common(prog)
    prog.add_argument("issue", type=int)
    prog.add_argument("step", help=f"One of: {', '.join(ADVANCEABLE_STEPS)}")

    auto = sub.add_parser("auto", help="Start a batch of ready issues")
    _add_common(auto)
    auto.add_argument(
        "max_issues", type=int, nargs="?", help="Batch size (default: workflow.auto_max_issues)"
    )

    det = sub.add_parser("detect", help="List unclaimed agent branches")
    _add_common(det)

    integ = sub.add_parser("auto-integrate", help="Create issues for unclaimed agent branches")
    _add_common(integ)

    orph = sub.add_parser("check-orphans", help="List issues referencing deleted branches")
    _add_common(orph)

    clean = sub.add_parser("cleanup", help="Flag issues referencing deleted branches for review")
    _add_common(clean)

    cr = sub.add_parser("create", help="Create an issue")
    _add_common(cr)
    cr.add_argument("title")
    cr.add_argument("body", nargs="?", default="")
    cr.add_argument("labels", nargs="?", default="", help="Comma-separated labels")

    up = sub.add_parser("update", help="Replace an issue body")
    _add_common(up)
    up.add_argument("issue", type=int)
    up.add_argument("body")

    com = sub.add_parser("comment", help="Comment on an issue")
    _add_common(com)
    com.add_argument("issue", type=int)
    com.add_argument("body")

    bs = sub.add_parser(
        "branch-status", help="Compare configured branch expectations with remote branches"
    )
    _add_common(bs)

    ct = sub.add_parser("context-title", help="Print the active issue context title")
    ct.add_argument("--config", help=argparse.SUPPRESS)
    ct.add_argument("--branch", help="Branch name (default: current git branch)")
    ct.add_argument("--context-file", help="Context document (default: workflow.context_file)")

    sch = sub.add_parser("schema", help="Write JSON Schemas for report artifacts")
    sch.add_argument("--config", help=argparse.SUPPRESS)
    sch.add_argument("--output", default=SCHEMA_DEFAULT)
    sch.add_argument("--stdout", action="store_true", help="Print schemas instead of writing")

    return p


def _print_lines(lines: Iterable[str]) -> None:
    for line in lines:
        print(line)


def _orchestrator(cfg: FlowConfig, args: argparse.Namespace) -> Orchestrator:
    return build_orchestrator(cfg, dry_run=bool(getattr(args, "dry_run", False)))


def _cmd_report(cfg: FlowConfig, args: argparse.Namespace) -> int:
    output = args.output or cfg.report_json
    report = _orchestrator(cfg, args).report(top=args.top, output=output)
    _print_lines(format_report(report))
    print(f"[report] wrote {output}")
    return 0


def _cmd_start(cfg: FlowConfig, args: argparse.Namespace) -> int:
    branch = _orchestrator(cfg, args).start(args.issue)
    if branch:
        print(f"[start] issue #{args.issue} -> {branch}")
    else:
        print(f"[start] issue #{args.issue} not started (see log)")
    return 0


def _cmd_progress(cfg: FlowConfig, args: argparse.Namespace) -> int:
    result = _orchestrator(cfg, args).progress(args.issue, args.step)
    if result is None:
        print(f"[progress] issue #{args.issue} not updated (see log)")
        return 0
    if not result.applied:
        print(
            f"[progress] unknown step {args.step!r}; expected one of: {', '.join(ADVANCEABLE_STEPS)}"
        )
        return 0
    step = result.current_step.value if result.current_step else args.step
    print(f"[progress] issue #{args.issue} -> {args.step} (current step: {step})")
    return 0


def _cmd_auto(cfg: FlowConfig, args: argparse.Namespace) -> int:
    summary = _orchestrator(cfg, args).auto(args.max_issues)
    print(
        f"[auto] selected={len(summary['selected'])} started={len(summary['started'])} "
        f"already_started={len(summary['already_started'])} failed={len(summary['failed'])}"
    )
    for entry in summary["started"]:
        print(f"  #{entry['issue']} -> {entry['branch']}")
    for failure in summary["failed"]:
        print(f"  #{failure['issue']} failed [{failure['category']}]: {failure['error']}")
    return 0


def _cmd_detect(cfg: FlowConfig, args: argparse.Namespace) -> int:
    proposals = _orchestrator(cfg, args).detect()
    if not proposals:
        print("[detect] no unclaimed agent branches")
        return 0
    print(f"[detect] {len(proposals)} unclaimed branch(es):")
    for proposal in proposals:
        print(f"  {proposal.branch.name} -> {proposal.title!r} labels={proposal.labels}")
    return 0


def _cmd_integrate(cfg: FlowConfig, args: argparse.Namespace) -> int:
    outcomes = _orchestrator(cfg, args).integrate()
    if not outcomes:
        print("[auto-integrate] nothing to integrate")
    for outcome in outcomes:
        target = f"#{outcome.issue_number}" if outcome.issue_number is not None else "no issue"
        suffix = f" ({outcome.error})" if outcome.error else ""
        print(f"[auto-integrate] {outcome.branch} -> {target}{suffix}")
    return 0


def _cmd_check_orphans(cfg: FlowConfig, args: argparse.Namespace) -> int:
    records = _orchestrator(cfg, args).check_orphans()
    if not records:
        print("[check-orphans] no orphaned issues")
        return 0
    print(f"[check-orphans] {len(records)} orphaned reference(s):")
    for record in records:
        print(f"  #{record.issue.number} {record.issue.title} -> {record.deleted_branch}")
    return 0


def _cmd_cleanup(cfg: FlowConfig, args: argparse.Namespace) -> int:
    outcome = _orchestrator(cfg, args).cleanup()
    print(f"[cleanup] marked={len(outcome.marked)} failed={len(outcome.failed)}")
    for record, error in outcome.failed:
        print(f"  #{record.issue.number} {record.deleted_branch}: {error}")
    return 0


def _cmd_create(cfg: FlowConfig, args: argparse.Namespace) -> int:
    labels = [label.strip() for label in args.labels.split(",") if label.strip()]
    issue = _orchestrator(cfg, args).create_issue(args.title, args.body, labels)
    if issue is None:
        print(f"[create] {args.title!r} not created (see log)")
        return 0
    print(f"[create] #{issue.number} {issue.title}")
    return 0


def _cmd_update(cfg: FlowConfig, args: argparse.Namespace) -> int:
    if _orchestrator(cfg, args).update_body(args.issue, args.body):
        print(f"[update] #{args.issue}")
    else:
        print(f"[update] #{args.issue} not updated (see log)")
    return 0


def _cmd_comment(cfg: FlowConfig, args: argparse.Namespace) -> int:
    if _orchestrator(cfg, args).comment(args.issue, args.body):
        print(f"[comment] #{args.issue}")
    else:
        print(f"[comment] #{args.issue} not commented (see log)")
    return 0


def _cmd_branch_status(cfg: FlowConfig, args: argparse.Namespace) -> int:
    rows = _orchestrator(cfg, args).branch_status()
    if not rows:
        print("[branch-status] no branch expectations configured")
        return 0
    for row in rows:
        state = "present" if row["present"] else "missing"
        commit = f" last={row['last_commit']!r} by {row['author']}" if row["last_commit"] else ""
        print(
            f"[branch-status] {row['branch']} ({row['declared_status']}, {row['priority']}): "
            f"{state}{commit} :: {row['expectation']}"
        )
    return 0


def _cmd_context_title(cfg: FlowConfig, args: argparse.Namespace) -> int:
    branch = args.branch or current_branch()
    path = Path(args.context_file or cfg.context_file)
    text = path.read_text(encoding="utf-8") if path.exists() else None
    title = resolve_context_title(branch, text)
    if not title:
        print("No issue context available")
        return 1
    print(title)
    return 0


def _cmd_schema(args: argparse.Namespace) -> int:
    schemas = get_schemas()
    if args.stdout:
        print(json.dumps(schemas, indent=2))
        return 0
    out = Path(args.output)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(json.dumps(schemas, indent=2) + "\n")
    print(f"[schema] wrote {out}")
    return 0


def _build_handlers(args: argparse.Namespace, cfg: FlowConfig) -> dict[str, Any]:
    return {
        "report": lambda: _cmd_report(cfg, args),
        "start": lambda: _cmd_start(cfg, args),
        "progress": lambda: _cmd_progress(cfg, args),
        "auto": lambda: _cmd_auto(cfg, args),
        "detect": lambda: _cmd_detect(cfg, args),
        "auto-integrate": lambda: _cmd_integrate(cfg, args),
        "check-orphans": lambda: _cmd_check_orphans(cfg, args),
        "cleanup": lambda: _cmd_cleanup(cfg, args),
        "create": lambda: _cmd_create(cfg, args),
        "update": lambda: _cmd_update(cfg, args),
        "comment": lambda: _cmd_comment(cfg, args),
        "branch-status": lambda: _cmd_branch_status(cfg, args),
        "context-title": lambda: _cmd_context_title(cfg, args),
        "schema": lambda: _cmd_schema(args),
    }


def _dispatch(args: argparse.Namespace) -> int:
    cfg = prepare_config(args)
    return int(_build_handlers(args, cfg)[args.cmd]())


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "quiet", False) and os.environ.get("ISSUEFLOW_QUIET") == "1":
        args.quiet = True
    return execute_command(lambda: _dispatch(args), args.cmd)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
