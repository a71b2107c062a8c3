"""Link CSV records to tracker issues.

Two rules, applied in order:

* ``direct``  - the record's ``GitHub Issue Link`` (normalized) equals the
  issue ``html_url`` (normalized).
* ``related`` - only for records without a usable direct link: the first
  ``#<n>`` entry in *Related Issues/Stories* naming a known issue number.

A direct link always wins. Issues referenced by several records and records
with no link at all are reported as findings rather than errors.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

from .models import CsvRecord, Issue, Link

_RELATED_SPLIT_RE = re.compile(r"\\n|\r?\n|[;,]")
_ISSUE_REF_RE = re.compile(r"^#(\d+)$")


@dataclass
class MatchResult:
    links: list[Link] = field(default_factory=list)
    orphans: list[CsvRecord] = field(default_factory=list)
    multi_referenced: dict[str, list[CsvRecord]] = field(default_factory=dict)

    def links_for(self, issue: Issue) -> list[Link]:
        return [link for link in self.links if link.issue.number == issue.number]


def split_related_issues(text: str | None) -> list[str]:
    if not text:
        return []
    return [part.strip() for part in _RELATED_SPLIT_RE.split(text) if part.strip()]


def related_issue_numbers(text: str | None) -> list[int]:
    numbers: list[int] = []
    for entry in split_related_issues(text):
        m = _ISSUE_REF_RE.match(entry)
        if m:
            numbers.append(int(m.group(1)))
    return numbers


def index_issues_by_url(issues: Iterable[Issue]) -> dict[str, Issue]:
    return {issue.normalized_url: issue for issue in issues if issue.html_url}


def build_record_index(records: Iterable[CsvRecord]) -> dict[str, CsvRecord]:
    """Map normalized issue URL -> record for direct links (last row wins)."""
    index: dict[str, CsvRecord] = {}
    for record in records:
        url = record.normalized_link
        if url.startswith("https://github.com/"):
            index[url] = record
    return index


def match_records(records: Iterable[CsvRecord], issues: Iterable[Issue]) -> MatchResult:
    issue_list = [issue for issue in issues if not issue.is_pull_request]
    by_url = index_issues_by_url(issue_list)
    by_number = {issue.number: issue for issue in issue_list}
    result = MatchResult()
    per_issue: dict[str, list[CsvRecord]] = {}

    for record in records:
        issue = by_url.get(record.normalized_link) if record.normalized_link else None
        via = "direct"
        if issue is None and not record.normalized_link:
            for number in related_issue_numbers(record.related_issues):
                candidate = by_number.get(number)
                if candidate is not None:
                    issue = candidate
                    via = "related"
                    break
        if issue is None:
            result.orphans.append(record)
            continue
        result.links.append(Link(record=record, issue=issue, via=via))
        per_issue.setdefault(issue.normalized_url, []).append(record)

    result.multi_referenced = {url: recs for url, recs in per_issue.items() if len(recs) > 1}
    return result


__all__ = [
    "MatchResult",
    "split_related_issues",
    "related_issue_numbers",
    "index_issues_by_url",
    "build_record_index",
    "match_records",
]
