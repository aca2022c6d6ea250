"""issueflow - issue workflow orchestration for GitHub repositories.

High-level public API (stable):

from issueflow import Orchestrator, load_config, prioritize

cfg = load_config('issueflow.config.yaml')
orch = Orchestrator(tracker, branches, cfg)   # any IssueTracker / BranchSource
summary = orch.auto(max_issues=3)
print(summary['started'])

The CLI (``issueflow``) wires the GitHub REST binding into the same objects.
"""

from __future__ import annotations

from .config import FlowConfig, load_config
from .models import Branch, CommitMeta, Issue, Priority, PrioritizedIssue
from .orchestrator import Orchestrator, build_report, select_ready
from .prioritizer import prioritize
from .reconciler import BranchReconciler, find_orphans, find_unclaimed
from .workflow import WorkflowEngine, WorkflowStep, current_step

# Version constant (sync manually with pyproject)
__version__ = "0.1.0"

__all__ = [
    "Branch",
    "BranchReconciler",
    "CommitMeta",
    "FlowConfig",
    "Issue",
    "Orchestrator",
    "PrioritizedIssue",
    "Priority",
    "WorkflowEngine",
    "WorkflowStep",
    "build_report",
    "current_step",
    "find_orphans",
    "find_unclaimed",
    "load_config",
    "prioritize",
    "select_ready",
    "__version__",
]
