"""JSON Schemas for the artifacts issueflow writes.

Schemas are intentionally shallow (top-level structure plus the keys
downstream dashboards read) so the payloads can grow additively.
"""

from __future__ import annotations

from typing import Any

from .models import Priority

SCHEMA_KEY = "$schema"
SCHEMA_URL = "http://json-schema.org/draft-07/schema#"
REPORT_SCHEMA_VERSION = 1

_COUNT = {"type": "integer", "minimum": 0}


def get_schemas() -> dict[str, Any]:
    """Return a mapping of schema name -> JSON Schema dictionary.

    Keys:
        report:     Schema describing the prioritization report JSON.
        auto_start: Schema describing the ``auto`` batch summary.
    """
    tiers = [p.value for p in Priority]
    report_schema: dict[str, Any] = {
        SCHEMA_KEY: SCHEMA_URL,
        "$comment": f"issueflow report schema v{REPORT_SCHEMA_VERSION}",
        "title": "WorkflowReport",
        "type": "object",
        "required": [
            "generated_at",
            "total_issues",
            "by_priority",
            "needs_attention",
            "in_progress",
            "estimated_hours",
            "by_step",
            "top_priority",
        ],
        "properties": {
            "generated_at": {"type": "string"},
            "total_issues": _COUNT,
            "by_priority": {
                "type": "object",
                "required": tiers,
                "properties": {tier: _COUNT for tier in tiers},
            },
            "needs_attention": _COUNT,
            "in_progress": _COUNT,
            "estimated_hours": _COUNT,
            "by_step": {"type": "object", "additionalProperties": _COUNT},
            "top_priority": {
                "type": "array",
                "items": {
                    "type": "object",
                    "required": ["number", "title", "priority", "estimated_hours", "assignee"],
                    "properties": {
                        "number": {"type": "integer"},
                        "title": {"type": "string"},
                        "priority": {"type": "string", "enum": tiers},
                        "estimated_hours": _COUNT,
                        "assignee": {"type": "string"},
                    },
                },
            },
        },
        "additionalProperties": True,
    }

    auto_schema: dict[str, Any] = {
        SCHEMA_KEY: SCHEMA_URL,
        "$comment": "issueflow auto-start summary",
        "title": "AutoStartSummary",
        "type": "object",
        "required": ["requested", "selected", "started", "already_started", "failed"],
        "properties": {
            "requested": _COUNT,
            "selected": {"type": "array", "items": {"type": "integer"}},
            "started": {
                "type": "array",
                "items": {
                    "type": "object",
                    "required": ["issue", "branch"],
                    "properties": {
                        "issue": {"type": "integer"},
                        "branch": {"type": "string"},
                    },
                },
            },
            "already_started": {"type": "array", "items": {"type": "integer"}},
            "failed": {
                "type": "array",
                "items": {
                    "type": "object",
                    "required": ["issue", "error", "category"],
                    "properties": {
                        "issue": {"type": "integer"},
                        "error": {"type": "string"},
                        "category": {"type": "string"},
                    },
                },
            },
        },
    }
    return {"report": report_schema, "auto_start": auto_schema}


__all__ = ["get_schemas"]
