"""Tolerant loader for ``<domain>-user-stories.csv`` requirement files.

Columns are found by header *prefix*, never by position: real-world files
drift in column order and some headers contain commas or trailing notes
(``"Priority (High/Medium/Low)"``). Rows shorter than the header get empty
strings for the missing cells; extra trailing cells are ignored.

Loading never raises. An unreadable file is logged and contributes no rows
so a multi-file run keeps going.
"""

from __future__ import annotations

import csv
import logging
import re
from collections.abc import Iterable, Sequence
from pathlib import Path

from .errors import CsvReadError, classify_error
from .logging import get_logger
from .models import CsvFile, CsvRecord

logger = logging.getLogger(__name__)

CSV_USER_STORY_PATTERN = re.compile(r".+-user-stories\.csv$")
CSV_SUFFIX = "-user-stories.csv"
CSV_DEFAULT_ENCODING = "utf-8-sig"

# attribute -> header prefix
FIELD_PREFIXES: dict[str, str] = {
    "title_summary": "User Story Title Summary",
    "plain_language_summary": "Plain Language Summary",
    "priority": "Priority",
    "complexity": "Estimated Complexity",
    "acceptance_criteria_raw": "Acceptance Criteria",
    "issue_link": "GitHub Issue Link",
    "technical_requirements": "Technical Requirements",
    "implementation_considerations": "Implementation Considerations",
    "related_documentation": "Related Documentation",
    "related_issues": "Related Issues/Stories",
}
USER_STORY_HEADER = "User Story"

# Fields whose literal "\n" escapes are doubled after extraction.
ESCAPED_FIELDS = ("technical_requirements", "implementation_considerations")

PRIORITY_VALUES = ("High", "Medium", "Low", "Post-MVP")
COMPLEXITY_VALUES = ("Small", "Medium", "Large")


def find_header(headers: Sequence[str], prefix: str) -> str | None:
    for header in headers:
        if header.startswith(prefix):
            return header
    return None


def find_user_story_header(headers: Sequence[str]) -> str | None:
    if USER_STORY_HEADER in headers:
        return USER_STORY_HEADER
    for header in headers:
        if header.startswith(USER_STORY_HEADER) and "Title" not in header:
            return header
    return None


def escape_literal_newlines(value: str) -> str:
    r"""Double the backslash of every literal ``\n`` escape.

    Formatters later split on ``\n`` and strip the dangling backslash, which
    lets them tell an escape that was in the source apart from line breaks
    the engine introduces itself.
    """
    return value.replace("\\n", "\\\\n")


def domain_from_path(path: str | Path) -> str:
    name = Path(path).name
    if name.endswith(CSV_SUFFIX):
        return name[: -len(CSV_SUFFIX)]
    return Path(name).stem


def _header_map(headers: Sequence[str]) -> dict[str, str | None]:
    mapping: dict[str, str | None] = {
        attr: find_header(headers, prefix) for attr, prefix in FIELD_PREFIXES.items()
    }
    mapping["user_story"] = find_user_story_header(headers)
    return mapping


def _build_record(
    row: dict[str, str], header_map: dict[str, str | None], path: Path, domain: str
) -> CsvRecord:
    values: dict[str, str] = {}
    for attr, header in header_map.items():
        values[attr] = row.get(header, "") if header else ""
    for attr in ESCAPED_FIELDS:
        if values[attr]:
            values[attr] = escape_literal_newlines(values[attr])
    return CsvRecord(source_path=path, domain=domain, **values)


def _read_rows(path: Path) -> tuple[list[str], list[dict[str, str]]]:
    with path.open("r", encoding=CSV_DEFAULT_ENCODING, newline="") as fh:
        reader = csv.reader(fh)
        try:
            header_row = next(reader)
        except StopIteration:
            return [], []
        headers = [h.strip() for h in header_row]
        rows: list[dict[str, str]] = []
        for raw in reader:
            cells = [c.strip() for c in raw]
            if not any(cells):
                continue
            # Short rows pad with "", long rows drop the overflow.
            padded = cells[: len(headers)] + [""] * (len(headers) - len(cells))
            row: dict[str, str] = {}
            for header, value in zip(headers, padded):
                row.setdefault(header, value)
            rows.append(row)
    return headers, rows


def load_records(path: str | Path) -> list[CsvRecord]:
    """Parse one requirements CSV into records; never raises."""
    p = Path(path)
    log = get_logger()
    try:
        if not p.exists():
            raise CsvReadError(str(p), "file not found")
        try:
            headers, rows = _read_rows(p)
        except (OSError, UnicodeDecodeError, csv.Error) as exc:
            raise CsvReadError(str(p), str(exc)) from exc
    except CsvReadError as exc:
        info = classify_error(exc)
        log.log_file_skipped(str(p), str(exc), category=info.category)
        return []
    logger.debug("CSV headers detected in %s: %s", p, headers)
    header_map = _header_map(headers)
    domain = domain_from_path(p)
    return [_build_record(row, header_map, p, domain) for row in rows]


def find_csv_files(root: str | Path, pattern: re.Pattern[str] = CSV_USER_STORY_PATTERN) -> list[Path]:
    base = Path(root)
    if not base.is_dir():
        get_logger().log_file_skipped(
            str(base), f"CSV root is not a directory: {base}", operation="csv_discover"
        )
        return []
    return sorted(p for p in base.rglob("*") if p.is_file() and pattern.search(p.name))


def load_all(root: str | Path, domain: str | None = None) -> list[CsvFile]:
    files: list[CsvFile] = []
    for path in find_csv_files(root):
        if domain and domain_from_path(path) != domain:
            continue
        files.append(CsvFile(path=path, records=load_records(path)))
    return files


def iter_records(files: Iterable[CsvFile]) -> list[CsvRecord]:
    return [record for f in files for record in f.records]


def normalize_priority(value: str | None) -> str | None:
    """Map a free-text priority onto High/Medium/Low/Post-MVP; ``None`` if unknown."""
    low = (value or "").lower()
    if "post" in low and "mvp" in low:
        return "Post-MVP"
    if "high" in low:
        return "High"
    if "medium" in low:
        return "Medium"
    if "low" in low:
        return "Low"
    return None


def normalize_complexity(value: str | None) -> str | None:
    low = (value or "").strip().lower()
    for candidate in COMPLEXITY_VALUES:
        if low.startswith(candidate.lower()):
            return candidate
    return None


__all__ = [
    "CSV_USER_STORY_PATTERN",
    "FIELD_PREFIXES",
    "PRIORITY_VALUES",
    "COMPLEXITY_VALUES",
    "find_header",
    "find_user_story_header",
    "escape_literal_newlines",
    "domain_from_path",
    "load_records",
    "find_csv_files",
    "load_all",
    "iter_records",
    "normalize_priority",
    "normalize_complexity",
]
