"""High-level orchestration of a CSV -> issue reconciliation run.

``SyncOrchestrator`` owns the sequencing: load CSV records, fetch issues,
match, compose, then update. Everything below it (loader, matcher, composer,
resolver) is stateless; the orchestrator holds the client, the pacing clock
and the counters that end up in the sync summary.

Per-record failures are classified, logged and counted; they never abort
the batch. Fatal conditions (missing labels on a live run, missing analysis
artifact for cleanup) are raised before the first mutation.
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .analysis_store import load_analysis, persist_analysis
from .composer import (
    ComposeSettings,
    complexity_label,
    compose_body,
    desired_labels,
    extract_domain,
    labels_differ,
    priority_label,
    proposed_title,
)
from .config import SyncConfig
from .csv_loader import (
    find_csv_files,
    iter_records,
    load_all,
    normalize_complexity,
    normalize_priority,
)
from .diffing import compute_issue_diff
from .duplicates import (
    ResolutionReport,
    build_analysis,
    build_redirect_map,
    clear_corrupted_links,
    close_duplicates,
    create_missing_issues,
    find_orphan_rows,
    fix_title_mismatches,
    groups_from_analysis,
    multi_references_from_analysis,
    orphans_from_analysis,
    redirect_csv_references,
)
from .errors import PreflightError, classify_error
from .github_rest import REQUIRED_LABELS, GitHubRestClient
from .logging import get_logger
from .matcher import match_records
from .models import CsvRecord, Issue, Link
from .notes import ImplementationNotesStrategy
from .reconcile import reconcile
from .schemas import SUMMARY_SCHEMA_VERSION
from .sections import (
    COMPLEXITY_OPTIONS,
    ESTIMATED_COMPLEXITY,
    PRIORITY,
    PRIORITY_OPTIONS,
    checked_option,
)


@dataclass
class SyncSummary:
    dry_run: bool
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    total: int = 0
    complexity_updated: int = 0
    priority_updated: int = 0
    records_loaded: int = 0
    issues_fetched: int = 0
    changes: list[dict[str, Any]] = field(default_factory=list)
    orphans: list[CsvRecord] = field(default_factory=list)
    multi_referenced: dict[str, list[CsvRecord]] = field(default_factory=dict)
    error_details: list[dict[str, Any]] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return self.errors > 0

    @property
    def has_drift(self) -> bool:
        return bool(self.changes)

    def totals(self) -> dict[str, int]:
        return {
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
            "total": self.total,
            "complexityUpdated": self.complexity_updated,
            "priorityUpdated": self.priority_updated,
        }

    def as_dict(self) -> dict[str, Any]:
        return {
            "schemaVersion": SUMMARY_SCHEMA_VERSION,
            "generated_at": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "dry_run": self.dry_run,
            "totals": self.totals(),
            "changes": list(self.changes),
            "orphans": [r.as_dict() for r in self.orphans],
            "multiReferenced": {
                url: [r.as_dict() for r in recs] for url, recs in self.multi_referenced.items()
            },
            "errors": list(self.error_details),
        }


@dataclass
class Inconsistency:
    number: int
    title: str
    field: str  # complexity | priority
    csv_value: str
    body_value: str | None
    label_value: str | None

    def as_dict(self) -> dict[str, Any]:
        return {
            "number": self.number,
            "title": self.title,
            "field": self.field,
            "csv": self.csv_value,
            "body": self.body_value,
            "label": self.label_value,
        }


def _select_links(links: list[Link]) -> list[tuple[Issue, Link]]:
    """One link per issue: a direct link beats a related one, later rows win."""
    chosen: dict[int, Link] = {}
    order: list[int] = []
    for link in links:
        number = link.issue.number
        current = chosen.get(number)
        if current is None:
            order.append(number)
            chosen[number] = link
        elif link.via == "direct" or current.via != "direct":
            chosen[number] = link
    return [(chosen[n].issue, chosen[n]) for n in order]


def _label_value(labels: list[str], prefix: str) -> str | None:
    for label in labels:
        if label.lower().startswith(prefix):
            return label[len(prefix) :]
    return None


class SyncOrchestrator:
    def __init__(
        self,
        config: SyncConfig,
        client: GitHubRestClient,
        *,
        sleep: Callable[[float], None] = time.sleep,
        notes_strategy: ImplementationNotesStrategy | None = None,
    ) -> None:
        self.config = config
        self.client = client
        self._sleep = sleep
        self.logger = get_logger()
        self.settings = ComposeSettings(
            owner=config.owner,
            repo=config.repo_name,
            docs_branch=config.docs_branch,
        )
        if notes_strategy is not None:
            self.settings.notes_strategy = notes_strategy

    # ---- helpers -----------------------------------------------------
    def _pause(self) -> None:
        if self.config.mutation_delay > 0:
            self._sleep(self.config.mutation_delay)

    def preflight(self, *, dry_run: bool, force: bool = False) -> list[str]:
        """Check the required complexity/priority labels exist.

        Returns the missing labels; raises ``PreflightError`` on a live run.
        """
        if force:
            return []
        check = self.client.verify_labels(REQUIRED_LABELS)
        if check.exists:
            return []
        if dry_run:
            self.logger.warning(
                "Missing required labels: " + ", ".join(check.missing),
                operation="preflight",
                dry_run=True,
            )
            return check.missing
        raise PreflightError(check.missing)

    def _load_records(self, domain: str | None) -> list[CsvRecord]:
        files = load_all(self.config.csv_root, domain)
        records = iter_records(files)
        self.logger.info(
            f"Loaded {len(records)} rows from {len(files)} CSV files",
            operation="csv_load",
            files=len(files),
        )
        return records

    # ---- sync --------------------------------------------------------
    def run(
        self,
        *,
        dry_run: bool = False,
        domain: str | None = None,
        limit: int | None = None,
        skip: int = 0,
        issue_number: int | None = None,
        force: bool = False,
        summary_path: str | Path | None = None,
    ) -> SyncSummary:
        summary = SyncSummary(dry_run=dry_run)
        self.preflight(dry_run=dry_run, force=force)

        with self.logger.timed_operation("sync", dry_run=dry_run):
            records = self._load_records(domain)
            summary.records_loaded = len(records)
            issues = self._fetch_issues(issue_number, summary)
            summary.issues_fetched = len(issues)

            result = match_records(records, issues)
            summary.orphans = list(result.orphans)
            summary.multi_referenced = dict(result.multi_referenced)

            selected = _select_links(result.links)[max(skip, 0) :]
            if limit is not None:
                selected = selected[: max(limit, 0)]

            for issue, link in selected:
                summary.total += 1
                try:
                    self._sync_one(issue, link, summary, dry_run=dry_run)
                except Exception as exc:
                    info = classify_error(exc)
                    summary.errors += 1
                    summary.error_details.append({"number": issue.number, **info.as_dict()})
                    self.logger.log_error(
                        f"Error processing issue #{issue.number}",
                        error=info.message,
                        category=info.category,
                        issue_number=issue.number,
                    )

        self.logger.log_operation(
            "sync_complete", dry_run=dry_run, **summary.totals()
        )
        target = summary_path or self.config.summary_json
        if target:
            write_summary(Path(target), summary)
        return summary

    def _fetch_issues(self, issue_number: int | None, summary: SyncSummary) -> list[Issue]:
        if issue_number is None:
            return self.client.list_issues(labels=self.config.issue_labels)
        try:
            return [self.client.get_issue(issue_number)]
        except Exception as exc:
            info = classify_error(exc)
            summary.errors += 1
            summary.error_details.append({"number": issue_number, **info.as_dict()})
            self.logger.log_error(
                f"Could not fetch issue #{issue_number}", error=info.message, category=info.category
            )
            return []

    def _sync_one(
        self, issue: Issue, link: Link, summary: SyncSummary, *, dry_run: bool
    ) -> None:
        record = link.record
        domain = record.domain or extract_domain(issue)
        composed = compose_body(issue.body, record, domain, settings=self.settings)
        labels = desired_labels(issue.labels, record)
        labels_changed = labels_differ(issue.labels, labels)
        title = proposed_title(record, issue.title)

        if not (composed.changed or labels_changed or title):
            summary.skipped += 1
            self.logger.debug(f"issue #{issue.number} already up to date", issue_number=issue.number)
            return

        current = {label.lower() for label in issue.labels}
        complexity = normalize_complexity(record.complexity)
        priority = normalize_priority(record.priority)
        complexity_touched = "complexity" in composed.steps or (
            complexity is not None and complexity_label(complexity) not in current
        )
        priority_touched = "priority" in composed.steps or (
            priority is not None and priority_label(priority) not in current
        )

        diff = compute_issue_diff(
            issue,
            composed.body if composed.changed else None,
            labels if labels_changed else None,
            title,
            max_lines=self.config.truncate_body_diff,
        )
        summary.changes.append(
            {
                "number": issue.number,
                "title": issue.title,
                "url": issue.html_url,
                "via": link.via,
                "steps": list(composed.steps),
                "diff": diff,
            }
        )

        if not dry_run:
            self.client.update_issue(
                number=issue.number,
                title=title,
                body=composed.body if composed.changed else None,
                labels=labels if labels_changed else None,
            )
        summary.updated += 1
        if complexity_touched:
            summary.complexity_updated += 1
        if priority_touched:
            summary.priority_updated += 1
        self.logger.log_issue_action(
            "update",
            issue.title,
            issue.number,
            dry_run=dry_run,
            steps=list(composed.steps),
            labels_changed=labels_changed,
        )
        if not dry_run:
            self._pause()

    # ---- duplicate / orphan passes ----------------------------------
    def analyze(self, output: str | Path | None = None) -> dict[str, Any]:
        files = load_all(self.config.csv_root)
        issues = self.client.list_issues()
        analysis = build_analysis(issues, files)
        path = Path(output) if output else self.config.analysis_file
        persist_analysis(path, analysis, repo=self.config.github_repo)
        self.logger.log_operation(
            "analyze",
            duplicate_issues=len(analysis["duplicateIssues"]),
            duplicate_rows=len(analysis["duplicateCsvRows"]),
            multi_referenced=len(analysis["multiReferencedIssues"]),
            rows_without_issues=len(analysis["rowsWithoutIssues"]),
            output=str(path),
        )
        return analysis

    def cleanup(
        self,
        *,
        fix_issues: bool = False,
        fix_csvs: bool = False,
        dry_run: bool = False,
    ) -> list[ResolutionReport]:
        analysis = load_analysis(self.config.analysis_file)
        groups = groups_from_analysis(analysis)
        reports: list[ResolutionReport] = []
        if fix_issues:
            reports.append(
                close_duplicates(self.client, groups, dry_run=dry_run, pause=self._pause)
            )
        if fix_csvs:
            reports.append(
                fix_title_mismatches(multi_references_from_analysis(analysis), dry_run=dry_run)
            )
            reports.append(
                redirect_csv_references(
                    find_csv_files(self.config.csv_root),
                    build_redirect_map(groups),
                    dry_run=dry_run,
                )
            )
            reports.append(clear_corrupted_links(orphans_from_analysis(analysis), dry_run=dry_run))
        return reports

    def create_missing(
        self, *, dry_run: bool = False, limit: int | None = None, domain: str | None = None
    ) -> ResolutionReport:
        records = self._load_records(domain)
        issues = self.client.list_issues()
        orphans = find_orphan_rows(records, issues)
        template: str | None = None
        if self.config.template_file.exists():
            template = self.config.template_file.read_text(encoding="utf-8")
        else:
            self.logger.warning(
                f"Issue template not found at {self.config.template_file}; using built-in layout",
                operation="create_missing",
            )
        return create_missing_issues(
            self.client,
            orphans,
            template=template,
            settings=self.settings,
            dry_run=dry_run,
            limit=limit,
            pause=self._pause,
        )

    # ---- read-only checks -------------------------------------------
    def validate(self, *, domain: str | None = None) -> list[Inconsistency]:
        records = self._load_records(domain)
        issues = self.client.list_issues(labels=self.config.issue_labels)
        result = match_records(records, issues)
        problems: list[Inconsistency] = []
        for issue, link in _select_links(result.links):
            record = link.record
            checks = (
                (
                    "complexity",
                    normalize_complexity(record.complexity),
                    checked_option(issue.body, ESTIMATED_COMPLEXITY, COMPLEXITY_OPTIONS),
                    _label_value(issue.labels, "complexity:"),
                ),
                (
                    "priority",
                    normalize_priority(record.priority),
                    checked_option(issue.body, PRIORITY, PRIORITY_OPTIONS),
                    _label_value(issue.labels, "priority:"),
                ),
            )
            for name, expected, body_value, label_value in checks:
                if expected is None:
                    continue
                body_ok = body_value is not None and body_value.lower() == expected.lower()
                label_ok = label_value is not None and label_value.lower() == (
                    expected.lower().replace(" ", "-")
                )
                if not (body_ok and label_ok):
                    problems.append(
                        Inconsistency(
                            number=issue.number,
                            title=issue.title,
                            field=name,
                            csv_value=expected,
                            body_value=body_value,
                            label_value=label_value,
                        )
                    )
        self.logger.log_operation("validate", inconsistencies=len(problems))
        return problems

    def report(
        self, *, domain: str | None = None, limit: int | None = None
    ) -> dict[str, Any]:
        summary = self.run(dry_run=True, domain=domain, limit=limit, force=True)
        return reconcile(summary)


def write_summary(path: Path, summary: SyncSummary) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(summary.as_dict(), indent=2) + "\n", encoding="utf-8")


__all__ = ["SyncOrchestrator", "SyncSummary", "Inconsistency", "write_summary"]
