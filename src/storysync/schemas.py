"""JSON Schemas for the artifacts storysync writes.

Schemas stay shallow: top-level structure and the keys consumers rely on.
Nested record objects are left open so fields can be added without a
version bump.
"""

from __future__ import annotations

from typing import Any

SCHEMA_KEY = "$schema"
SCHEMA_URL = "http://json-schema.org/draft-07/schema#"
ANALYSIS_SCHEMA_VERSION = "1"
SUMMARY_SCHEMA_VERSION = "1"

_ISSUE_REF: dict[str, Any] = {
    "type": "object",
    "required": ["number", "title", "html_url"],
    "properties": {
        "number": {"type": "integer"},
        "title": {"type": "string"},
        "html_url": {"type": "string"},
        "state": {"type": "string"},
        "labels": {"type": "array", "items": {"type": "string"}},
    },
}

_CSV_ROW: dict[str, Any] = {
    "type": "object",
    "required": ["titleSummary", "gitHubIssueLink"],
    "properties": {
        "titleSummary": {"type": "string"},
        "gitHubIssueLink": {"type": "string"},
        "filePath": {"type": ["string", "null"]},
        "domain": {"type": "string"},
    },
}


def get_schemas() -> dict[str, Any]:
    """Return a mapping of schema name -> JSON Schema dictionary.

    Keys:
        analysis: the duplicate/orphan analysis artifact.
        summary:  the sync summary written by ``sync --summary-json``.
    """
    analysis_schema: dict[str, Any] = {
        SCHEMA_KEY: SCHEMA_URL,
        "$comment": f"storysync analysis schema v{ANALYSIS_SCHEMA_VERSION}",
        "title": "DuplicateAnalysis",
        "type": "object",
        "required": [
            "duplicateIssues",
            "duplicateCsvRows",
            "multiReferencedIssues",
            "rowsWithoutIssues",
        ],
        "properties": {
            "schemaVersion": {"type": "string"},
            "generated_at": {"type": "string"},
            "repo": {"type": ["string", "null"]},
            "duplicateIssues": {
                "type": "object",
                "additionalProperties": {"type": "array", "items": _ISSUE_REF},
            },
            "duplicateCsvRows": {
                "type": "object",
                "additionalProperties": {"type": "array", "items": _CSV_ROW},
            },
            "multiReferencedIssues": {
                "type": "object",
                "additionalProperties": {
                    "type": "object",
                    "required": ["issue", "csvReferences"],
                    "properties": {
                        "issue": _ISSUE_REF,
                        "csvReferences": {"type": "array", "items": _CSV_ROW},
                    },
                },
            },
            "rowsWithoutIssues": {
                "type": "array",
                "items": {
                    **_CSV_ROW,
                    "properties": {
                        **_CSV_ROW["properties"],
                        "kind": {"enum": ["absent", "corrupted"]},
                    },
                },
            },
        },
    }

    summary_schema: dict[str, Any] = {
        SCHEMA_KEY: SCHEMA_URL,
        "$comment": f"storysync summary schema v{SUMMARY_SCHEMA_VERSION}",
        "title": "SyncSummary",
        "type": "object",
        "required": ["schemaVersion", "generated_at", "dry_run", "totals", "changes"],
        "properties": {
            "schemaVersion": {"type": "string", "const": SUMMARY_SCHEMA_VERSION},
            "generated_at": {"type": "string"},
            "dry_run": {"type": "boolean"},
            "totals": {
                "type": "object",
                "required": [
                    "updated",
                    "skipped",
                    "errors",
                    "total",
                    "complexityUpdated",
                    "priorityUpdated",
                ],
                "properties": {
                    "updated": {"type": "integer"},
                    "skipped": {"type": "integer"},
                    "errors": {"type": "integer"},
                    "total": {"type": "integer"},
                    "complexityUpdated": {"type": "integer"},
                    "priorityUpdated": {"type": "integer"},
                },
            },
            "changes": {"type": "array", "items": {"type": "object"}},
            "orphans": {"type": "array", "items": _CSV_ROW},
            "multiReferenced": {"type": "object"},
            "errors": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "category": {"type": "string"},
                        "transient": {"type": "boolean"},
                        "original_type": {"type": "string"},
                        "message": {"type": "string"},
                    },
                },
            },
        },
    }

    return {"analysis": analysis_schema, "summary": summary_schema}


__all__ = ["get_schemas", "ANALYSIS_SCHEMA_VERSION", "SUMMARY_SCHEMA_VERSION"]
