"""storysync CLI.

Subcommands:
  sync            -> patch matched issues from the CSV rows (summary JSON)
  analyze         -> detect duplicates / orphans and write the analysis file
  cleanup         -> close duplicate issues and repair CSV links from the analysis
  create-missing  -> open issues for CSV rows that have none
  validate        -> compare complexity/priority on issues with the CSV (read-only)
  reconcile       -> dry-run drift report
  schema          -> write JSON Schemas for the analysis and summary files

Exit codes: 0 success, 1 fatal configuration/auth/preflight error, 2 drift,
inconsistencies or per-item errors.
"""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from .config import CONFIG_DEFAULT, SyncConfig
from .errors import AnalysisInvalidError, ConfigError, PreflightError, classify_error
from .orchestrator import SyncOrchestrator
from .reconcile import format_report
from .runtime import build_client, execute_command, prepare_config
from .schemas import get_schemas
from .ux import (
    print_error,
    print_operation_status,
    print_success,
    print_summary_box,
    print_warning,
)

REPO_HELP = "Override target repository (owner/repo)"
EXIT_OK = 0
EXIT_FATAL = 1
EXIT_DRIFT = 2

_MAX_HELP_WIDTH = 100


class _HelpFormatter(argparse.HelpFormatter):
    def __init__(self, prog: str) -> None:
        super().__init__(prog, max_help_position=30, width=_MAX_HELP_WIDTH)


class _FormatterArgumentParser(argparse.ArgumentParser):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("formatter_class", _HelpFormatter)
        super().__init__(*args, **kwargs)


def _build_parser() -> argparse.ArgumentParser:
    p = _FormatterArgumentParser(
        prog="storysync", description="Reconcile user-story CSV files with GitHub issues"
    )
    p.add_argument("--config", default=CONFIG_DEFAULT, help="Path to storysync YAML config")
    p.add_argument("--repo", help=REPO_HELP)
    p.add_argument("--quiet", action="store_true", help="Only print warnings and results")
    p.add_argument("--json-logs", action="store_true", help="Emit structured JSON logs")
    sub = p.add_subparsers(
        dest="cmd",
        required=True,
        parser_class=_FormatterArgumentParser,
        metavar="<command>",
    )

    ps = sub.add_parser("sync", help="Patch issue bodies, labels and titles from CSV rows")
    ps.add_argument("--dry-run", action="store_true")
    ps.add_argument("--domain", help="Only process <domain>-user-stories.csv")
    ps.add_argument("--limit", type=int)
    ps.add_argument("--skip", type=int, default=0)
    ps.add_argument("--issue", type=int, help="Process a single issue number")
    ps.add_argument("--force", action="store_true", help="Skip the required-label preflight")
    ps.add_argument("--summary-json")

    pa = sub.add_parser("analyze", help="Find duplicate issues, duplicate rows and orphans")
    pa.add_argument("--output", help="Analysis file (default from config)")

    pc = sub.add_parser("cleanup", help="Apply fixes recorded in the analysis file")
    pc.add_argument("--fix-issues", action="store_true", help="Close duplicate issues")
    pc.add_argument("--fix-csvs", action="store_true", help="Redirect/clear CSV links")
    pc.add_argument("--fix-all", action="store_true")
    pc.add_argument("--dry-run", action="store_true")

    pm = sub.add_parser("create-missing", help="Create issues for CSV rows without one")
    pm.add_argument("--dry-run", action="store_true")
    pm.add_argument("--limit", type=int)
    pm.add_argument("--domain")

    pv = sub.add_parser("validate", help="Check complexity/priority consistency")
    pv.add_argument("--domain")

    pr = sub.add_parser("reconcile", help="Report drift without mutating anything")
    pr.add_argument("--domain")
    pr.add_argument("--limit", type=int)

    sch = sub.add_parser("schema", help="Emit JSON Schema files")
    sch.add_argument("--stdout", action="store_true")
    sch.add_argument("--output-dir", default=".")
    return p


def _print_lines(lines: Iterable[str]) -> None:
    for line in lines:
        print(line)


def _orchestrator(cfg: SyncConfig) -> SyncOrchestrator:
    return SyncOrchestrator(cfg, build_client(cfg))


def _cmd_sync(cfg: SyncConfig, args: argparse.Namespace) -> int:
    dry_run = bool(args.dry_run or cfg.dry_run_default)
    orch = _orchestrator(cfg)
    if not args.quiet:
        print_operation_status("sync", "starting", "mode=DRY RUN" if dry_run else "mode=LIVE")
    summary = orch.run(
        dry_run=dry_run,
        domain=args.domain,
        limit=args.limit,
        skip=args.skip,
        issue_number=args.issue,
        force=args.force,
        summary_path=args.summary_json,
    )
    totals = summary.totals()
    if args.quiet:
        print("[sync] totals", json.dumps(totals))
    else:
        print_summary_box(
            "Sync Summary",
            [
                ("Processed", totals["total"]),
                ("Updated" if not dry_run else "Would update", totals["updated"]),
                ("Skipped", totals["skipped"]),
                ("Errors", totals["errors"]),
                ("Complexity updated", totals["complexityUpdated"]),
                ("Priority updated", totals["priorityUpdated"]),
                ("CSV rows without issue", len(summary.orphans)),
                ("Multi-referenced issues", len(summary.multi_referenced)),
            ],
        )
    return EXIT_DRIFT if summary.has_errors else EXIT_OK


def _cmd_analyze(cfg: SyncConfig, args: argparse.Namespace) -> int:
    analysis = _orchestrator(cfg).analyze(output=args.output)
    items: list[tuple[str, str | int]] = [
        ("Duplicate issue titles", len(analysis["duplicateIssues"])),
        ("Duplicate CSV titles", len(analysis["duplicateCsvRows"])),
        ("Multi-referenced issues", len(analysis["multiReferencedIssues"])),
        ("Rows without issues", len(analysis["rowsWithoutIssues"])),
    ]
    if args.quiet:
        print("[analyze]", json.dumps(dict(items)))
    else:
        print_summary_box("Duplicate Analysis", items)
        print_success(f"Analysis written to {args.output or cfg.analysis_file}")
    return EXIT_OK


def _cmd_cleanup(cfg: SyncConfig, args: argparse.Namespace) -> int:
    fix_issues = bool(args.fix_issues or args.fix_all)
    fix_csvs = bool(args.fix_csvs or args.fix_all)
    if not (fix_issues or fix_csvs):
        print_warning("Nothing to do: pass --fix-issues, --fix-csvs or --fix-all")
        return EXIT_OK
    reports = _orchestrator(cfg).cleanup(
        fix_issues=fix_issues, fix_csvs=fix_csvs, dry_run=args.dry_run
    )
    failed = 0
    for report in reports:
        failed += report.failed
        print(
            f"[cleanup] {report.action}: done={report.done} "
            f"failed={report.failed} skipped={report.skipped}"
        )
        if not args.quiet:
            _print_lines(f"  {detail}" for detail in report.details)
    return EXIT_DRIFT if failed else EXIT_OK


def _cmd_create_missing(cfg: SyncConfig, args: argparse.Namespace) -> int:
    report = _orchestrator(cfg).create_missing(
        dry_run=bool(args.dry_run or cfg.dry_run_default),
        limit=args.limit,
        domain=args.domain,
    )
    print(
        f"[create-missing] done={report.done} failed={report.failed} skipped={report.skipped}"
    )
    if not args.quiet:
        _print_lines(f"  {detail}" for detail in report.details)
    for url in report.unlinked:
        print_warning(f"Created but not linked in CSV: {url}")
    return EXIT_DRIFT if report.failed else EXIT_OK


def _cmd_validate(cfg: SyncConfig, args: argparse.Namespace) -> int:
    problems = _orchestrator(cfg).validate(domain=args.domain)
    if not problems:
        print_success("[validate] complexity and priority are consistent")
        return EXIT_OK
    print(f"[validate] {len(problems)} inconsistencies")
    for item in problems:
        print(
            f"  #{item.number} {item.field}: csv={item.csv_value} "
            f"body={item.body_value or '-'} label={item.label_value or '-'}"
        )
    return EXIT_DRIFT


def _cmd_reconcile(cfg: SyncConfig, args: argparse.Namespace) -> int:
    rep = _orchestrator(cfg).report(domain=args.domain, limit=args.limit)
    _print_lines(format_report(rep))
    return EXIT_OK if rep.get("in_sync") else EXIT_DRIFT


def _cmd_schema(args: argparse.Namespace) -> int:
    schemas = get_schemas()
    if args.stdout:
        print(json.dumps(schemas, indent=2))
        return EXIT_OK
    out_dir = Path(args.output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    written = []
    for name, schema in schemas.items():
        path = out_dir / f"{name}.schema.json"
        path.write_text(json.dumps(schema, indent=2) + "\n", encoding="utf-8")
        written.append(str(path))
    print_success(f"[schema] wrote {', '.join(written)}")
    return EXIT_OK


def _build_handlers(args: argparse.Namespace, cfg: SyncConfig) -> dict[str, Any]:
    return {
        "sync": lambda: _cmd_sync(cfg, args),
        "analyze": lambda: _cmd_analyze(cfg, args),
        "cleanup": lambda: _cmd_cleanup(cfg, args),
        "create-missing": lambda: _cmd_create_missing(cfg, args),
        "validate": lambda: _cmd_validate(cfg, args),
        "reconcile": lambda: _cmd_reconcile(cfg, args),
        "schema": lambda: _cmd_schema(args),
    }


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    try:
        cfg = prepare_config(args)
        handler = _build_handlers(args, cfg).get(args.cmd)
        if handler is None:  # pragma: no cover - argparse enforces valid choices
            parser.print_help()
            return EXIT_FATAL
        return execute_command(handler, args.cmd)
    except (ConfigError, PreflightError, AnalysisInvalidError) as exc:
        info = classify_error(exc)
        print_error(f"{info.message}", stream=sys.stderr)
        return EXIT_FATAL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
