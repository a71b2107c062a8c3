from __future__ import annotations

import difflib
from collections.abc import Iterable
from typing import Any

from .models import Issue

MAX_BODY_DIFF_LINES = 120


def label_set(labels: Iterable[str]) -> set[str]:
    return {label for label in labels if isinstance(label, str)}


def compute_issue_diff(
    issue: Issue,
    new_body: str | None = None,
    new_labels: Iterable[str] | None = None,
    new_title: str | None = None,
    *,
    max_lines: int = MAX_BODY_DIFF_LINES,
) -> dict[str, Any]:
    """Describe what an update would change; empty dict means nothing."""
    d: dict[str, Any] = {}
    if new_labels is not None:
        existing = label_set(issue.labels)
        desired = label_set(new_labels)
        if {x.lower() for x in existing} != {x.lower() for x in desired}:
            d["labels_added"] = sorted(desired - existing)
            d["labels_removed"] = sorted(existing - desired)
    if new_title is not None and new_title != issue.title:
        d["title_from"] = issue.title
        d["title_to"] = new_title
    if new_body is not None:
        old_lines = (issue.body or "").replace("\r\n", "\n").strip().splitlines()
        new_lines = new_body.strip().splitlines()
        if old_lines != new_lines:
            diff_lines = list(difflib.unified_diff(old_lines, new_lines, lineterm="", n=3))
            if len(diff_lines) > max_lines:
                diff_lines = diff_lines[:max_lines] + ["... (truncated)"]
            d["body_changed"] = True
            d["body_diff"] = diff_lines
    return d


__all__ = ["compute_issue_diff", "label_set", "MAX_BODY_DIFF_LINES"]
