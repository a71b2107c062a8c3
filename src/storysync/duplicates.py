"""Duplicate and orphan detection plus the remediation actions built on it.

Detection is pure: it takes issues and CSV records and returns findings. The
resolution actions mutate the tracker or CSV files; each one isolates its
per-item failures, honours ``dry_run`` and returns a ``ResolutionReport``.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .composer import (
    ComposeSettings,
    complexity_label,
    priority_label,
    proposed_title,
    render_from_template,
)
from .csv_loader import normalize_complexity, normalize_priority
from .csv_rewrite import (
    apply_csv_redirects,
    clear_issue_link,
    read_csv_text,
    update_csv_issue_link,
    update_csv_title,
    write_csv_text,
)
from .errors import classify_error
from .github_rest import GitHubRestClient
from .logging import get_logger
from .models import CsvFile, CsvRecord, DuplicateGroup, Issue, normalize_url

DUPLICATE_COMMENT = (
    "This issue is a duplicate of #{canonical} and will be closed. "
    "Please refer to the primary issue for updates."
)
CORRUPTED_LINK_RE = re.compile(r"^https://github\.com/[\w-]+/[\w-]+/issues/\d+$")
USER_STORY_LABEL = "user-story"

ORPHAN_ABSENT = "absent"
ORPHAN_CORRUPTED = "corrupted"


@dataclass
class OrphanRow:
    record: CsvRecord
    kind: str  # absent | corrupted

    def as_dict(self) -> dict[str, Any]:
        out = self.record.as_dict()
        out["kind"] = self.kind
        return out


@dataclass
class MultiReference:
    issue: Issue
    records: list[CsvRecord]

    def as_dict(self) -> dict[str, Any]:
        return {
            "issue": self.issue.as_dict(),
            "csvReferences": [r.as_dict() for r in self.records],
        }


@dataclass
class ResolutionReport:
    action: str
    done: int = 0
    failed: int = 0
    skipped: int = 0
    details: list[str] = field(default_factory=list)
    unlinked: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "done": self.done,
            "failed": self.failed,
            "skipped": self.skipped,
            "details": list(self.details),
            "unlinked": list(self.unlinked),
        }


# ---- detection ---------------------------------------------------------


def find_duplicates(issues: Iterable[Issue]) -> dict[str, DuplicateGroup]:
    by_title: dict[str, list[Issue]] = {}
    for issue in issues:
        if issue.is_pull_request:
            continue
        by_title.setdefault(issue.title.strip(), []).append(issue)
    return {
        title: DuplicateGroup(title=title, issues=group)
        for title, group in by_title.items()
        if len(group) > 1
    }


def build_redirect_map(groups: Mapping[str, DuplicateGroup]) -> dict[str, str]:
    redirects: dict[str, str] = {}
    for group in groups.values():
        target = group.canonical.normalized_url
        for dup in group.duplicates:
            if dup.normalized_url and dup.normalized_url != target:
                redirects[dup.normalized_url] = target
    return redirects


def is_corrupted_link(link: str) -> bool:
    value = (link or "").strip()
    return bool(value) and not CORRUPTED_LINK_RE.match(value)


def find_orphan_rows(records: Iterable[CsvRecord], issues: Iterable[Issue]) -> list[OrphanRow]:
    known = {issue.normalized_url for issue in issues if not issue.is_pull_request}
    orphans: list[OrphanRow] = []
    for record in records:
        link = record.normalized_link
        if link and link in known:
            continue
        kind = ORPHAN_CORRUPTED if is_corrupted_link(record.issue_link) else ORPHAN_ABSENT
        orphans.append(OrphanRow(record=record, kind=kind))
    return orphans


def find_multi_referenced(
    records: Iterable[CsvRecord], issues: Iterable[Issue]
) -> dict[str, MultiReference]:
    by_url = {issue.normalized_url: issue for issue in issues if not issue.is_pull_request}
    refs: dict[str, list[CsvRecord]] = {}
    for record in records:
        link = record.normalized_link
        if link in by_url:
            refs.setdefault(link, []).append(record)
    return {
        url: MultiReference(issue=by_url[url], records=recs)
        for url, recs in refs.items()
        if len(recs) > 1
    }


def find_duplicate_csv_rows(files: Iterable[CsvFile]) -> dict[str, list[CsvRecord]]:
    by_title: dict[str, list[CsvRecord]] = {}
    for csv_file in files:
        for record in csv_file.records:
            title = record.title_summary.strip()
            if title:
                by_title.setdefault(title, []).append(record)
    return {title: rows for title, rows in by_title.items() if len(rows) > 1}


def build_analysis(issues: list[Issue], files: list[CsvFile]) -> dict[str, Any]:
    records = [record for f in files for record in f.records]
    groups = find_duplicates(issues)
    return {
        "duplicateIssues": {
            title: [issue.as_dict() for issue in group.issues] for title, group in groups.items()
        },
        "duplicateCsvRows": {
            title: [r.as_dict() for r in rows]
            for title, rows in find_duplicate_csv_rows(files).items()
        },
        "multiReferencedIssues": {
            url: ref.as_dict() for url, ref in find_multi_referenced(records, issues).items()
        },
        "rowsWithoutIssues": [o.as_dict() for o in find_orphan_rows(records, issues)],
    }


def groups_from_analysis(analysis: Mapping[str, Any]) -> dict[str, DuplicateGroup]:
    groups: dict[str, DuplicateGroup] = {}
    for title, entries in (analysis.get("duplicateIssues") or {}).items():
        issues = [Issue.from_api(e) for e in entries if isinstance(e, dict)]
        if len(issues) > 1:
            groups[title] = DuplicateGroup(title=title, issues=issues)
    return groups


def orphans_from_analysis(analysis: Mapping[str, Any]) -> list[OrphanRow]:
    out: list[OrphanRow] = []
    for entry in analysis.get("rowsWithoutIssues") or []:
        if not isinstance(entry, dict):
            continue
        record = CsvRecord.from_dict(entry)
        kind = entry.get("kind")
        if kind not in (ORPHAN_ABSENT, ORPHAN_CORRUPTED):
            kind = ORPHAN_CORRUPTED if is_corrupted_link(record.issue_link) else ORPHAN_ABSENT
        out.append(OrphanRow(record=record, kind=kind))
    return out


def multi_references_from_analysis(analysis: Mapping[str, Any]) -> list[MultiReference]:
    out: list[MultiReference] = []
    for entry in (analysis.get("multiReferencedIssues") or {}).values():
        if not isinstance(entry, dict) or not isinstance(entry.get("issue"), dict):
            continue
        records = [
            CsvRecord.from_dict(row)
            for row in entry.get("csvReferences") or []
            if isinstance(row, dict)
        ]
        out.append(MultiReference(issue=Issue.from_api(entry["issue"]), records=records))
    return out


# ---- resolution --------------------------------------------------------


def close_duplicates(
    client: GitHubRestClient,
    groups: Mapping[str, DuplicateGroup],
    *,
    dry_run: bool = False,
    pause: Callable[[], None] | None = None,
) -> ResolutionReport:
    log = get_logger()
    report = ResolutionReport(action="close_duplicates")
    for title, group in groups.items():
        primary = group.canonical
        for dup in group.duplicates:
            if dry_run:
                report.skipped += 1
                report.details.append(f"would close #{dup.number} (duplicate of #{primary.number})")
                log.log_issue_action("close", title, dup.number, dry_run=True)
                continue
            try:
                client.add_comment(
                    number=dup.number, body=DUPLICATE_COMMENT.format(canonical=primary.number)
                )
                if pause is not None:
                    pause()
                client.close_issue(number=dup.number, state_reason="completed")
            except Exception as exc:
                info = classify_error(exc)
                report.failed += 1
                report.details.append(f"failed to close #{dup.number}: {info.message}")
                log.log_error(
                    f"Failed to close issue #{dup.number}",
                    error=info.message,
                    category=info.category,
                    issue_number=dup.number,
                )
            else:
                report.done += 1
                report.details.append(f"closed #{dup.number} in favour of #{primary.number}")
                log.log_issue_action("close", title, dup.number, dry_run=False)
            if pause is not None:
                pause()
    return report


def redirect_csv_references(
    paths: Iterable[Path], redirect_map: Mapping[str, str], *, dry_run: bool = False
) -> ResolutionReport:
    log = get_logger()
    report = ResolutionReport(action="redirect_csv_references")
    if not redirect_map:
        return report
    for path in paths:
        try:
            text = read_csv_text(path)
            new_text, replaced = apply_csv_redirects(text, redirect_map)
            if not replaced:
                report.skipped += 1
                continue
            if not dry_run:
                write_csv_text(path, new_text)
        except Exception as exc:
            info = classify_error(exc)
            report.failed += 1
            report.details.append(f"{path.name}: {info.message}")
            log.log_error(f"Failed to redirect references in {path}", error=info.message)
            continue
        report.done += 1
        verb = "would update" if dry_run else "updated"
        report.details.append(f"{verb} {replaced} reference(s) in {path.name}")
        log.info(
            f"{verb} {replaced} duplicate reference(s) in {path.name}",
            operation="redirect_csv",
            path=str(path),
            dry_run=dry_run,
        )
    return report


def clear_corrupted_links(
    orphans: Iterable[OrphanRow], *, dry_run: bool = False
) -> ResolutionReport:
    """Blank out malformed links; rows that merely lack a link are left alone.

    Only the link cell of the orphan's own row is cleared.
    """
    log = get_logger()
    report = ResolutionReport(action="clear_corrupted_links")
    for orphan in orphans:
        record = orphan.record
        if orphan.kind != ORPHAN_CORRUPTED or record.source_path is None:
            report.skipped += 1
            continue
        link = record.issue_link.strip()
        if dry_run:
            report.skipped += 1
            report.details.append(f"would clear {link!r} in {record.source_path.name}")
            continue
        try:
            cleared = clear_issue_link(record.source_path, record.title_summary, link)
        except Exception as exc:
            info = classify_error(exc)
            report.failed += 1
            log.log_error(
                f"Failed to clear corrupted link in {record.source_path}", error=info.message
            )
            continue
        if cleared:
            report.done += 1
            report.details.append(f"cleared {link!r} in {record.source_path.name}")
        else:
            report.skipped += 1
    return report


def fix_title_mismatches(
    references: Iterable[MultiReference], *, dry_run: bool = False
) -> ResolutionReport:
    """Rename CSV rows so every row linked to one issue carries the issue's title.

    Only issues whose rows disagree on the title are touched; rows already
    matching the issue title are left as they are.
    """
    log = get_logger()
    report = ResolutionReport(action="fix_title_mismatches")
    for ref in references:
        if len({r.title_summary.strip() for r in ref.records}) < 2:
            continue
        wanted = ref.issue.title.strip()
        for record in ref.records:
            current = record.title_summary.strip()
            if current == wanted or record.source_path is None or not wanted:
                report.skipped += 1
                continue
            name = record.source_path.name
            if dry_run:
                report.skipped += 1
                report.details.append(
                    f"would rename {current!r} to {wanted!r} in {name} (#{ref.issue.number})"
                )
                continue
            try:
                renamed = update_csv_title(
                    record.source_path, current, wanted, link=record.issue_link
                )
            except Exception as exc:
                info = classify_error(exc)
                report.failed += 1
                report.details.append(f"{name}: {info.message}")
                log.log_error(f"Failed to rename {current!r} in {name}", error=info.message)
                continue
            if renamed:
                report.done += 1
                report.details.append(f"renamed {current!r} to {wanted!r} in {name}")
                log.info(
                    f"renamed CSV title {current!r} to match issue #{ref.issue.number}",
                    operation="fix_title",
                    path=str(record.source_path),
                    issue_number=ref.issue.number,
                )
            else:
                report.failed += 1
                report.details.append(f"row {current!r} not found in {name}")
    return report


def new_issue_labels(record: CsvRecord, domain: str) -> list[str]:
    labels = [USER_STORY_LABEL]
    if domain:
        labels.append(f"domain:{domain}")
    complexity = normalize_complexity(record.complexity)
    if complexity is not None:
        labels.append(complexity_label(complexity))
    priority = normalize_priority(record.priority)
    if priority is not None:
        labels.append(priority_label(priority))
    return labels


def create_missing_issues(
    client: GitHubRestClient,
    orphans: Iterable[OrphanRow],
    *,
    template: str | None,
    settings: ComposeSettings,
    dry_run: bool = False,
    limit: int | None = None,
    pause: Callable[[], None] | None = None,
) -> ResolutionReport:
    """Open an issue for every absent orphan and write its link back to the CSV."""
    log = get_logger()
    report = ResolutionReport(action="create_missing_issues")
    attempted = 0
    for orphan in orphans:
        record = orphan.record
        if orphan.kind != ORPHAN_ABSENT:
            report.skipped += 1
            continue
        if limit is not None and attempted >= limit:
            report.skipped += 1
            continue
        title = proposed_title(record, "")
        if not title:
            report.skipped += 1
            continue
        domain = record.domain
        labels = new_issue_labels(record, domain)
        body = render_from_template(template or "", record, domain, settings=settings)
        attempted += 1
        if dry_run:
            report.skipped += 1
            report.details.append(f"would create {title!r} with labels {', '.join(labels)}")
            log.log_issue_action("create", title, None, dry_run=True, labels=labels)
            continue
        try:
            issue = client.create_issue(title=title, body=body, labels=labels)
        except Exception as exc:
            info = classify_error(exc)
            report.failed += 1
            report.details.append(f"failed to create {title!r}: {info.message}")
            log.log_error(
                f"Failed to create issue for {title!r}", error=info.message, category=info.category
            )
        else:
            log.log_issue_action("create", title, issue.number, dry_run=False)
            _write_back_link(record, issue, report)
        if pause is not None:
            pause()
    return report


def _write_back_link(record: CsvRecord, issue: Issue, report: ResolutionReport) -> None:
    """Record the new issue's link in its CSV row.

    An issue that exists but whose link did not reach the CSV is counted as a
    failure and listed in ``report.unlinked`` so it is not created twice.
    """
    reason = "row not found"
    try:
        if record.source_path is None:
            reason = "record has no source file"
            written = False
        else:
            written = update_csv_issue_link(
                record.source_path, record.title_summary, issue.html_url
            )
    except Exception as exc:
        reason = classify_error(exc).message
        written = False
    if written:
        report.done += 1
        report.details.append(f"created #{issue.number} for {record.title_summary!r}")
        return
    report.failed += 1
    report.unlinked.append(issue.html_url)
    report.details.append(
        f"created #{issue.number} ({issue.html_url}) but could not write the link back: {reason}"
    )
    get_logger().log_error(
        f"Issue #{issue.number} ({issue.html_url}) created but its link was not written to the CSV",
        error=reason,
        issue_number=issue.number,
        issue_url=issue.html_url,
        path=str(record.source_path) if record.source_path else None,
    )


__all__ = [
    "DUPLICATE_COMMENT",
    "CORRUPTED_LINK_RE",
    "ORPHAN_ABSENT",
    "ORPHAN_CORRUPTED",
    "OrphanRow",
    "MultiReference",
    "ResolutionReport",
    "find_duplicates",
    "build_redirect_map",
    "is_corrupted_link",
    "find_orphan_rows",
    "find_multi_referenced",
    "find_duplicate_csv_rows",
    "build_analysis",
    "groups_from_analysis",
    "orphans_from_analysis",
    "multi_references_from_analysis",
    "close_duplicates",
    "redirect_csv_references",
    "clear_corrupted_links",
    "fix_title_mismatches",
    "new_issue_labels",
    "create_missing_issues",
]
