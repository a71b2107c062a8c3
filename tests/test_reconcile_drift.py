from __future__ import annotations

from pathlib import Path

from storysync.models import CsvRecord
from storysync.orchestrator import SyncSummary
from storysync.reconcile import format_report, reconcile


def _summary(**kw) -> SyncSummary:
    base = {"dry_run": True, "records_loaded": 3, "issues_fetched": 2}
    base.update(kw)
    return SyncSummary(**base)


def test_in_sync_report():
    rep = reconcile(_summary())
    assert rep["in_sync"] is True
    assert rep["drift"] == []
    assert format_report(rep) == ["[reconcile] No drift detected (records=3, issues=2)"]


def test_drift_kinds_are_flattened():
    orphan = CsvRecord(
        title_summary="Login", source_path=Path("docs/devtools-user-stories.csv")
    )
    twin_a = CsvRecord(title_summary="A")
    twin_b = CsvRecord(title_summary="B")
    summary = _summary(
        changes=[
            {
                "number": 4,
                "title": "Save",
                "diff": {"labels_added": ["priority:low"], "body_changed": True, "body_diff": []},
            }
        ],
        orphans=[orphan],
        multi_referenced={"https://github.com/acme/game/issues/8": [twin_a, twin_b]},
    )

    rep = reconcile(summary)

    assert rep["in_sync"] is False
    assert rep["summary"]["drift_count"] == 3
    assert [d["kind"] for d in rep["drift"]] == ["diff", "csv_only", "multi_referenced"]
    assert rep["drift"][1]["file"] == "devtools-user-stories.csv"

    lines = format_report(rep)
    assert lines[0] == "[reconcile] Drift items: 3 (records=3, issues=2)"
    assert lines[1] == "  diff: #4 Save fields_changed=[body_changed,labels_added]"
    assert lines[2] == "  csv_only: Login (devtools-user-stories.csv) link=none"
    assert lines[3] == "  multi_referenced: https://github.com/acme/game/issues/8 <- A; B"
