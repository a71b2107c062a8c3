from __future__ import annotations

import json
import textwrap
from pathlib import Path
from typing import Any

import pytest

from storysync import cli
from storysync.duplicates import ResolutionReport
from storysync.errors import AnalysisMissingError, PreflightError
from storysync.orchestrator import Inconsistency, SyncSummary

MIN_CONFIG = textwrap.dedent(
    """\
    github:
      repo: acme/game
    environment:
      load_dotenv: false
    """
)


def _config(tmp_path: Path) -> Path:
    path = tmp_path / "storysync.config.yaml"
    path.write_text(MIN_CONFIG, encoding="utf-8")
    return path


class _StubOrchestrator:
    def __init__(self, **results: Any):
        self.results = results
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def _result(self, name: str, kw: dict[str, Any]) -> Any:
        self.calls.append((name, kw))
        value = self.results[name]
        if isinstance(value, Exception):
            raise value
        return value

    def run(self, **kw: Any) -> SyncSummary:
        return self._result("run", kw)

    def analyze(self, **kw: Any) -> dict[str, Any]:
        return self._result("analyze", kw)

    def cleanup(self, **kw: Any) -> list[ResolutionReport]:
        return self._result("cleanup", kw)

    def create_missing(self, **kw: Any) -> ResolutionReport:
        return self._result("create_missing", kw)

    def validate(self, **kw: Any) -> list[Inconsistency]:
        return self._result("validate", kw)

    def report(self, **kw: Any) -> dict[str, Any]:
        return self._result("report", kw)


@pytest.fixture
def stub(monkeypatch: pytest.MonkeyPatch):
    def _install(**results: Any) -> _StubOrchestrator:
        orch = _StubOrchestrator(**results)
        monkeypatch.setattr(cli, "_orchestrator", lambda cfg: orch)
        return orch

    return _install


def test_schema_writes_files(tmp_path, capsys):
    rc = cli.main(["--config", str(_config(tmp_path)), "schema", "--output-dir", str(tmp_path / "s")])

    assert rc == cli.EXIT_OK
    for name in ("analysis", "summary"):
        data = json.loads((tmp_path / "s" / f"{name}.schema.json").read_text(encoding="utf-8"))
        assert data["$schema"].startswith("http://json-schema.org/draft-07")
    assert "[schema] wrote" in capsys.readouterr().out


def test_schema_stdout(tmp_path, capsys):
    rc = cli.main(["--config", str(_config(tmp_path)), "schema", "--stdout"])
    assert rc == 0
    out = capsys.readouterr().out
    assert '"analysis"' in out


def test_missing_explicit_config_is_fatal(tmp_path, capsys):
    rc = cli.main(["--config", str(tmp_path / "nope.yaml"), "sync", "--dry-run"])
    assert rc == cli.EXIT_FATAL
    assert "Configuration file not found" in capsys.readouterr().err


def test_missing_token_is_fatal(tmp_path, capsys, no_token):
    rc = cli.main(["--config", str(_config(tmp_path)), "sync", "--dry-run"])
    assert rc == cli.EXIT_FATAL
    assert "GitHub token not found" in capsys.readouterr().err


def test_sync_passes_flags_and_exit_code(tmp_path, stub, capsys):
    orch = stub(run=SyncSummary(dry_run=True, updated=1, total=1))
    rc = cli.main(
        [
            "--config", str(_config(tmp_path)), "--quiet",
            "sync", "--dry-run", "--domain", "devtools", "--limit", "5", "--skip", "1", "--force",
        ]
    )
    assert rc == cli.EXIT_OK
    _, kw = orch.calls[0]
    assert kw["dry_run"] is True
    assert (kw["domain"], kw["limit"], kw["skip"], kw["force"]) == ("devtools", 5, 1, True)
    assert '"updated": 1' in capsys.readouterr().out


def test_sync_with_item_errors_exits_two(tmp_path, stub):
    stub(run=SyncSummary(dry_run=False, errors=1, total=1))
    assert cli.main(["--config", str(_config(tmp_path)), "sync"]) == cli.EXIT_DRIFT


def test_preflight_failure_is_fatal(tmp_path, stub, capsys):
    stub(run=PreflightError(["priority:low"]))
    rc = cli.main(["--config", str(_config(tmp_path)), "sync"])
    assert rc == cli.EXIT_FATAL
    assert "priority:low" in capsys.readouterr().err


def test_cleanup_requires_a_fix_flag(tmp_path, stub, capsys):
    orch = stub(cleanup=[])
    assert cli.main(["--config", str(_config(tmp_path)), "cleanup"]) == 0
    assert orch.calls == []
    assert "Nothing to do" in capsys.readouterr().out


def test_cleanup_fix_all_and_missing_analysis(tmp_path, stub, capsys):
    orch = stub(cleanup=[ResolutionReport(action="close_duplicates", done=2)])
    assert cli.main(["--config", str(_config(tmp_path)), "cleanup", "--fix-all"]) == 0
    assert orch.calls[0][1] == {"fix_issues": True, "fix_csvs": True, "dry_run": False}
    assert "[cleanup] close_duplicates: done=2" in capsys.readouterr().out

    stub(cleanup=AnalysisMissingError("Duplicate analysis file not found"))
    assert cli.main(["--config", str(_config(tmp_path)), "cleanup", "--fix-issues"]) == 1


def test_create_missing_failures_exit_two(tmp_path, stub):
    stub(create_missing=ResolutionReport(action="create_missing_issues", done=1, failed=1))
    assert cli.main(["--config", str(_config(tmp_path)), "create-missing", "--limit", "3"]) == 2


def test_create_missing_prints_unlinked_issues_even_when_quiet(tmp_path, stub, capsys):
    url = "https://github.com/acme/game/issues/101"
    stub(
        create_missing=ResolutionReport(
            action="create_missing_issues", failed=1, details=["hidden"], unlinked=[url]
        )
    )

    code = cli.main(["--config", str(_config(tmp_path)), "--quiet", "create-missing"])

    out = capsys.readouterr().out
    assert code == cli.EXIT_DRIFT
    assert url in out
    assert "hidden" not in out


def test_validate_exit_codes(tmp_path, stub, capsys):
    stub(validate=[])
    assert cli.main(["--config", str(_config(tmp_path)), "validate"]) == 0

    stub(validate=[Inconsistency(4, "Save", "priority", "Low", "High", "high")])
    assert cli.main(["--config", str(_config(tmp_path)), "validate"]) == cli.EXIT_DRIFT
    assert "#4 priority: csv=Low body=High label=high" in capsys.readouterr().out


def test_reconcile_exit_codes(tmp_path, stub, capsys):
    stub(report={"summary": {"record_count": 1, "issue_count": 1, "drift_count": 0}, "drift": [], "in_sync": True})
    assert cli.main(["--config", str(_config(tmp_path)), "reconcile"]) == 0
    assert "No drift detected" in capsys.readouterr().out

    stub(
        report={
            "summary": {"record_count": 1, "issue_count": 0, "drift_count": 1},
            "drift": [{"kind": "csv_only", "title": "Login", "file": "a.csv", "link": ""}],
            "in_sync": False,
        }
    )
    assert cli.main(["--config", str(_config(tmp_path)), "reconcile"]) == cli.EXIT_DRIFT


def test_analyze_prints_counts(tmp_path, stub, capsys):
    stub(
        analyze={
            "duplicateIssues": {"Login": []},
            "duplicateCsvRows": {},
            "multiReferencedIssues": {},
            "rowsWithoutIssues": [{}, {}],
        }
    )
    assert cli.main(["--config", str(_config(tmp_path)), "--quiet", "analyze"]) == 0
    out = capsys.readouterr().out
    assert '"Duplicate issue titles": 1' in out
    assert '"Rows without issues": 2' in out


def test_help_lists_commands(capsys):
    with pytest.raises(SystemExit):
        cli.main(["--help"])
    out = capsys.readouterr().out
    for command in ("sync", "analyze", "cleanup", "create-missing", "validate", "reconcile", "schema"):
        assert command in out
