from __future__ import annotations

from pathlib import Path
from typing import Any

import storysync.duplicates as duplicates
from storysync.analysis_store import validation_errors
from storysync.composer import ComposeSettings
from storysync.duplicates import (
    DUPLICATE_COMMENT,
    ORPHAN_ABSENT,
    ORPHAN_CORRUPTED,
    OrphanRow,
    build_analysis,
    build_redirect_map,
    clear_corrupted_links,
    close_duplicates,
    create_missing_issues,
    find_duplicate_csv_rows,
    find_duplicates,
    find_multi_referenced,
    find_orphan_rows,
    fix_title_mismatches,
    groups_from_analysis,
    is_corrupted_link,
    multi_references_from_analysis,
    new_issue_labels,
    orphans_from_analysis,
    redirect_csv_references,
)
from storysync.github_rest import ApiError
from storysync.models import CsvFile, CsvRecord, Issue

BASE = "https://github.com/acme/game/issues"


def _issue(number: int, title: str = "Login") -> Issue:
    return Issue(number=number, title=title, html_url=f"{BASE}/{number}")


class _RecordingClient:
    def __init__(self, fail_on: set[int] | None = None):
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.fail_on = fail_on or set()
        self._next = 100

    def add_comment(self, *, number: int, body: str) -> None:
        if number in self.fail_on:
            raise ApiError("boom", status=500)
        self.calls.append(("comment", {"number": number, "body": body}))

    def close_issue(self, *, number: int, state_reason: str = "completed") -> None:
        self.calls.append(("close", {"number": number, "state_reason": state_reason}))

    def create_issue(self, *, title: str, body: str, labels=None) -> Issue:
        self._next += 1
        self.calls.append(("create", {"title": title, "body": body, "labels": list(labels or [])}))
        return Issue(number=self._next, title=title, html_url=f"{BASE}/{self._next}")


def test_lowest_number_is_canonical():
    groups = find_duplicates([_issue(12), _issue(45), _issue(7), _issue(3, "Other")])

    assert list(groups) == ["Login"]
    group = groups["Login"]
    assert group.canonical.number == 7
    assert [i.number for i in group.duplicates] == [12, 45]
    assert build_redirect_map(groups) == {f"{BASE}/12": f"{BASE}/7", f"{BASE}/45": f"{BASE}/7"}


def test_titles_are_compared_after_trimming():
    groups = find_duplicates([_issue(1, "Login "), _issue(2, " Login"), _issue(3, "login")])
    assert [i.number for i in groups["Login"].issues] == [1, 2]


def test_orphan_rows_split_absent_and_corrupted():
    records = [
        CsvRecord(title_summary="Login"),
        CsvRecord(title_summary="Profile", issue_link=f"{BASE}/1"),
        CsvRecord(title_summary="Broken", issue_link="github.com/acme/game/issues/x"),
        CsvRecord(title_summary="Gone", issue_link=f"{BASE}/99"),
    ]
    orphans = find_orphan_rows(records, [_issue(1, "Profile")])

    assert [(o.record.title_summary, o.kind) for o in orphans] == [
        ("Login", ORPHAN_ABSENT),
        ("Broken", ORPHAN_CORRUPTED),
        ("Gone", ORPHAN_ABSENT),
    ]
    assert is_corrupted_link("https://github.com/acme/game/pull/3")
    assert not is_corrupted_link("")


def test_multi_referenced_and_duplicate_rows(tmp_path):
    a = CsvRecord(title_summary="A", issue_link=f"{BASE}/1")
    b = CsvRecord(title_summary="A", issue_link=f"{BASE}/1/")
    files = [CsvFile(path=tmp_path / "x-user-stories.csv", records=[a, b])]

    refs = find_multi_referenced([a, b], [_issue(1, "A")])
    assert list(refs) == [f"{BASE}/1"]
    assert len(refs[f"{BASE}/1"].records) == 2
    assert list(find_duplicate_csv_rows(files)) == ["A"]


def test_analysis_document_validates_and_round_trips(tmp_path):
    records = [
        CsvRecord(title_summary="Login", source_path=tmp_path / "a-user-stories.csv", domain="a"),
        CsvRecord(title_summary="Save", issue_link=f"{BASE}/7", domain="a"),
    ]
    files = [CsvFile(path=tmp_path / "a-user-stories.csv", records=records)]
    analysis = build_analysis([_issue(7), _issue(12)], files)

    assert validation_errors(analysis) == []
    assert [i["number"] for i in analysis["duplicateIssues"]["Login"]] == [7, 12]
    assert groups_from_analysis(analysis)["Login"].canonical.number == 7
    orphans = orphans_from_analysis(analysis)
    assert [(o.record.title_summary, o.kind) for o in orphans] == [("Login", ORPHAN_ABSENT)]
    assert orphans[0].record.source_path == tmp_path / "a-user-stories.csv"


def test_close_duplicates_comments_then_closes():
    client = _RecordingClient()
    pauses: list[int] = []
    groups = find_duplicates([_issue(12), _issue(7)])

    report = close_duplicates(client, groups, pause=lambda: pauses.append(1))

    assert client.calls == [
        ("comment", {"number": 12, "body": DUPLICATE_COMMENT.format(canonical=7)}),
        ("close", {"number": 12, "state_reason": "completed"}),
    ]
    assert (report.done, report.failed) == (1, 0)
    # one pause between comment and close, one after the pair
    assert pauses == [1, 1]


def test_close_duplicates_isolates_failures_and_honours_dry_run():
    groups = find_duplicates([_issue(7), _issue(12), _issue(45)])

    client = _RecordingClient(fail_on={12})
    report = close_duplicates(client, groups)
    assert (report.done, report.failed) == (1, 1)
    assert ("close", {"number": 45, "state_reason": "completed"}) in client.calls

    dry_client = _RecordingClient()
    dry = close_duplicates(dry_client, groups, dry_run=True)
    assert dry_client.calls == []
    assert dry.skipped == 2


def test_redirect_csv_references(tmp_path):
    path = tmp_path / "a-user-stories.csv"
    path.write_text(f"Title,GitHub Issue Link\nX,{BASE}/12\nY,{BASE}/120\n", encoding="utf-8")
    other = tmp_path / "b-user-stories.csv"
    other.write_text("Title,GitHub Issue Link\nZ,\n", encoding="utf-8")

    report = redirect_csv_references([path, other], {f"{BASE}/12": f"{BASE}/7"})

    assert (report.done, report.skipped) == (1, 1)
    assert path.read_text(encoding="utf-8") == (
        f"Title,GitHub Issue Link\nX,{BASE}/7\nY,{BASE}/120\n"
    )


def test_clear_corrupted_links_only_touches_corrupted_rows(tmp_path):
    path = tmp_path / "a-user-stories.csv"
    path.write_text("Title,GitHub Issue Link\nX,see-issue-4\nY,\n", encoding="utf-8")
    orphans = [
        OrphanRow(CsvRecord(title_summary="X", issue_link="see-issue-4", source_path=path), ORPHAN_CORRUPTED),
        OrphanRow(CsvRecord(title_summary="Y", source_path=path), ORPHAN_ABSENT),
    ]

    dry = clear_corrupted_links(orphans, dry_run=True)
    assert "see-issue-4" in path.read_text(encoding="utf-8")
    assert dry.done == 0

    report = clear_corrupted_links(orphans)
    assert (report.done, report.skipped) == (1, 1)
    assert path.read_text(encoding="utf-8") == "Title,GitHub Issue Link\nX,\nY,\n"


def test_create_missing_issue_writes_link_back(tmp_path):
    path = tmp_path / "journal-system-user-stories.csv"
    path.write_text(
        "User Story Title Summary,Priority,Estimated Complexity,GitHub Issue Link\n"
        "Login,High,Small,\n",
        encoding="utf-8",
    )
    record = CsvRecord(
        title_summary="Login",
        priority="High",
        complexity="Small",
        source_path=path,
        domain="journal-system",
    )
    client = _RecordingClient()

    report = create_missing_issues(
        client,
        [OrphanRow(record, ORPHAN_ABSENT)],
        template=None,
        settings=ComposeSettings(owner="acme", repo="game"),
    )

    assert report.done == 1
    kind, payload = client.calls[0]
    assert kind == "create"
    assert payload["title"] == "Login"
    assert payload["labels"] == [
        "user-story",
        "domain:journal-system",
        "complexity:small",
        "priority:high",
    ]
    assert "- [x] High (MVP)" in payload["body"]
    assert "{{" not in payload["body"]
    assert f"Login,High,Small,{BASE}/101" in path.read_text(encoding="utf-8")


def test_create_missing_respects_limit_and_dry_run(tmp_path):
    orphans = [
        OrphanRow(CsvRecord(title_summary=f"Story {n}", domain="devtools"), ORPHAN_ABSENT)
        for n in range(3)
    ]
    client = _RecordingClient()
    report = create_missing_issues(
        client,
        orphans,
        template=None,
        settings=ComposeSettings(owner="acme", repo="game"),
        dry_run=True,
        limit=2,
    )
    assert client.calls == []
    assert report.skipped == 3
    assert len(report.details) == 2


def test_new_issue_labels_without_domain():
    assert new_issue_labels(CsvRecord(priority="Low", complexity="Large"), "") == [
        "user-story",
        "complexity:large",
        "priority:low",
    ]


def test_orphan_kind_is_recomputed_when_missing(tmp_path):
    analysis = {
        "rowsWithoutIssues": [
            {"titleSummary": "X", "gitHubIssueLink": "nonsense", "filePath": str(Path("f.csv"))}
        ]
    }
    assert orphans_from_analysis(analysis)[0].kind == ORPHAN_CORRUPTED


def _orphan_in(path: Path, title: str = "Login") -> OrphanRow:
    record = CsvRecord(
        title_summary=title, priority="High", complexity="Small", source_path=path, domain="a"
    )
    return OrphanRow(record, ORPHAN_ABSENT)


def test_created_issue_without_csv_row_is_reported_unlinked(tmp_path):
    path = tmp_path / "a-user-stories.csv"
    path.write_text("Title,GitHub Issue Link\nSomething else,\n", encoding="utf-8")
    client = _RecordingClient()

    report = create_missing_issues(
        client,
        [_orphan_in(path)],
        template=None,
        settings=ComposeSettings(owner="acme", repo="game"),
    )

    assert [kind for kind, _ in client.calls] == ["create"]
    assert (report.done, report.failed) == (0, 1)
    assert report.unlinked == [f"{BASE}/101"]
    assert f"{BASE}/101" in report.details[0]
    assert report.as_dict()["unlinked"] == [f"{BASE}/101"]


def test_write_back_error_after_create_keeps_the_issue_url(tmp_path, monkeypatch, capsys):
    path = tmp_path / "a-user-stories.csv"
    path.write_text("Title,GitHub Issue Link\nLogin,\nSave,\n", encoding="utf-8")

    def _locked(*_args, **_kwargs):
        raise PermissionError("file is locked")

    monkeypatch.setattr(duplicates, "update_csv_issue_link", _locked)
    client = _RecordingClient()

    report = create_missing_issues(
        client,
        [_orphan_in(path, "Login"), _orphan_in(path, "Save")],
        template=None,
        settings=ComposeSettings(owner="acme", repo="game"),
    )

    assert [kind for kind, _ in client.calls] == ["create", "create"]
    assert report.failed == 2
    assert report.unlinked == [f"{BASE}/101", f"{BASE}/102"]
    assert "file is locked" in report.details[0]
    out = capsys.readouterr().out
    assert f"{BASE}/101" in out


def test_fix_title_mismatches_renames_only_the_linked_row(tmp_path):
    path = tmp_path / "a-user-stories.csv"
    path.write_text(
        "Title,GitHub Issue Link\n"
        f"Log in,{BASE}/7\n"
        f"Login,{BASE}/7\n"
        f"Log in,{BASE}/9\n",
        encoding="utf-8",
    )
    ref = duplicates.MultiReference(
        issue=_issue(7, "Login"),
        records=[
            CsvRecord(title_summary="Log in", issue_link=f"{BASE}/7", source_path=path),
            CsvRecord(title_summary="Login", issue_link=f"{BASE}/7", source_path=path),
        ],
    )

    dry = fix_title_mismatches([ref], dry_run=True)
    assert (dry.done, dry.skipped) == (0, 2)
    assert "would rename 'Log in' to 'Login'" in dry.details[0]
    assert path.read_text(encoding="utf-8").startswith("Title,GitHub Issue Link\nLog in,")

    report = fix_title_mismatches([ref])
    assert (report.done, report.failed, report.skipped) == (1, 0, 1)
    assert path.read_text(encoding="utf-8") == (
        "Title,GitHub Issue Link\n"
        f"Login,{BASE}/7\n"
        f"Login,{BASE}/7\n"
        f"Log in,{BASE}/9\n"
    )


def test_fix_title_mismatches_leaves_agreeing_rows_and_isolates_failures(tmp_path):
    missing = tmp_path / "gone-user-stories.csv"
    agreeing = duplicates.MultiReference(
        issue=_issue(3, "Profile"),
        records=[
            CsvRecord(title_summary="Profile", issue_link=f"{BASE}/3", source_path=missing),
            CsvRecord(title_summary="Profile", issue_link=f"{BASE}/3/", source_path=missing),
        ],
    )
    broken = duplicates.MultiReference(
        issue=_issue(4, "Save"),
        records=[
            CsvRecord(title_summary="Save game", issue_link=f"{BASE}/4", source_path=missing),
            CsvRecord(title_summary="Save", issue_link=f"{BASE}/4", source_path=missing),
        ],
    )

    report = fix_title_mismatches([agreeing, broken])

    assert report.failed == 1
    assert report.done == 0


def test_multi_references_survive_the_analysis_document(tmp_path):
    path = tmp_path / "a-user-stories.csv"
    a = CsvRecord(title_summary="Log in", issue_link=f"{BASE}/7", source_path=path, domain="a")
    b = CsvRecord(title_summary="Login", issue_link=f"{BASE}/7", source_path=path, domain="a")
    analysis = build_analysis([_issue(7)], [CsvFile(path=path, records=[a, b])])

    refs = multi_references_from_analysis(analysis)

    assert len(refs) == 1
    assert refs[0].issue.number == 7
    assert [r.title_summary for r in refs[0].records] == ["Log in", "Login"]
    assert refs[0].records[0].source_path == path


def test_unknown_values_add_no_complexity_or_priority_label():
    assert new_issue_labels(CsvRecord(priority="urgent", complexity="Huge"), "a") == [
        "user-story",
        "domain:a",
    ]
