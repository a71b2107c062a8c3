from storysync.diffing import compute_issue_diff
from storysync.models import Issue


def _issue(**kw) -> Issue:
    base = {"number": 1, "title": "Save", "body": "line a\nline b\n", "labels": ["user-story", "priority:high"]}
    base.update(kw)
    return Issue(**base)


def test_no_changes_gives_empty_diff():
    issue = _issue()
    assert compute_issue_diff(issue, "line a\r\nline b", ["priority:high", "user-story"], None) == {}
    assert compute_issue_diff(_issue(body="a\r\nb\r\n"), "a\nb") == {}


def test_label_and_title_changes():
    d = compute_issue_diff(_issue(), None, ["user-story", "priority:low"], "Save game")
    assert d["labels_added"] == ["priority:low"]
    assert d["labels_removed"] == ["priority:high"]
    assert (d["title_from"], d["title_to"]) == ("Save", "Save game")
    assert "body_changed" not in d


def test_label_case_only_change_is_ignored():
    assert compute_issue_diff(_issue(), None, ["User-Story", "Priority:High"]) == {}


def test_body_diff_is_truncated():
    old = "\n".join(f"old {i}" for i in range(50))
    new = "\n".join(f"new {i}" for i in range(50))
    d = compute_issue_diff(_issue(body=old), new, max_lines=10)
    assert d["body_changed"] is True
    assert len(d["body_diff"]) == 11
    assert d["body_diff"][-1] == "... (truncated)"
