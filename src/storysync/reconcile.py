"""Drift report built from a dry-run sync.

The dry run already knows everything needed: which matched issues would
change (and how), which CSV rows have no issue, and which issues are claimed
by several rows. This module flattens that into a stable structure:

```
{
    "summary": {"record_count": int, "issue_count": int, "drift_count": int},
    "drift": [
        {"kind": "diff", "number": int, "title": str, "changes": {...}},
        {"kind": "csv_only", "title": str, "file": str|None, "link": str},
        {"kind": "multi_referenced", "url": str, "titles": [str, ...]}
    ],
    "in_sync": bool
}
```
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .orchestrator import SyncSummary


def reconcile(summary: SyncSummary) -> dict[str, Any]:
    drift: list[dict[str, Any]] = []
    for change in summary.changes:
        drift.append(
            {
                "kind": "diff",
                "number": change.get("number"),
                "title": change.get("title"),
                "changes": change.get("diff", {}),
            }
        )
    for record in summary.orphans:
        drift.append(
            {
                "kind": "csv_only",
                "title": record.title_summary,
                "file": Path(record.source_path).name if record.source_path else None,
                "link": record.issue_link,
            }
        )
    for url, records in summary.multi_referenced.items():
        drift.append(
            {
                "kind": "multi_referenced",
                "url": url,
                "titles": [r.title_summary for r in records],
            }
        )
    return {
        "summary": {
            "record_count": summary.records_loaded,
            "issue_count": summary.issues_fetched,
            "drift_count": len(drift),
        },
        "drift": drift,
        "in_sync": not drift,
    }


def format_report(report: dict[str, Any]) -> list[str]:
    summary = report.get("summary", {})
    lines: list[str] = []
    if report.get("in_sync"):
        lines.append(
            f"[reconcile] No drift detected (records={summary.get('record_count', 0)}, "
            f"issues={summary.get('issue_count', 0)})"
        )
        return lines
    lines.append(
        f"[reconcile] Drift items: {summary.get('drift_count')} "
        f"(records={summary.get('record_count')}, issues={summary.get('issue_count')})"
    )
    for entry in report.get("drift", []):
        kind = entry.get("kind")
        if kind == "diff":
            changes = entry.get("changes", {})
            keys = ",".join(
                sorted(
                    k
                    for k in changes
                    if k.endswith(("_added", "_removed", "_changed")) or k == "title_to"
                )
            )
            lines.append(f"  diff: #{entry.get('number')} {entry.get('title')} fields_changed=[{keys}]")
        elif kind == "csv_only":
            lines.append(
                f"  csv_only: {entry.get('title')} ({entry.get('file')}) "
                f"link={entry.get('link') or 'none'}"
            )
        elif kind == "multi_referenced":
            titles = "; ".join(entry.get("titles", []))
            lines.append(f"  multi_referenced: {entry.get('url')} <- {titles}")
    return lines


__all__ = ["reconcile", "format_report"]
