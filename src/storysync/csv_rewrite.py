"""In-place edits of requirements CSV files.

Duplicate-URL redirects operate on the raw file text with verbatim substring
replacement, so formatting of untouched rows is preserved. Link write-backs,
link clearing and title renames address a single cell: they parse the file
with the ``csv`` module and re-serialize it.
Every write goes through a temporary file and an atomic rename.
"""

from __future__ import annotations

import csv
import io
import logging
import re
from collections.abc import Mapping
from pathlib import Path

from .csv_loader import FIELD_PREFIXES, find_header
from .models import normalize_url

logger = logging.getLogger(__name__)

CSV_WRITE_ENCODING = "utf-8"
_BOM = "\ufeff"


def read_csv_text(path: str | Path) -> str:
    with Path(path).open("r", encoding=CSV_WRITE_ENCODING, newline="") as fh:
        return fh.read()


def write_csv_text(path: str | Path, text: str) -> None:
    p = Path(path)
    tmp = p.with_suffix(p.suffix + ".tmp")
    tmp.write_text(text, encoding=CSV_WRITE_ENCODING, newline="")
    tmp.replace(p)


def apply_csv_redirects(text: str, redirect_map: Mapping[str, str]) -> tuple[str, int]:
    """Replace every occurrence of each old URL; returns (text, replacements).

    A match must not be followed by another digit so ``.../issues/1`` never
    rewrites ``.../issues/12``.
    """
    replacements = 0
    for old, new in redirect_map.items():
        if not old or old == new:
            continue
        text, count = re.subn(re.escape(old) + r"(?!\d)", lambda _m: new, text)
        replacements += count
    return text, replacements


def _parse(text: str) -> tuple[bool, list[list[str]]]:
    has_bom = text.startswith(_BOM)
    if has_bom:
        text = text[len(_BOM) :]
    return has_bom, list(csv.reader(io.StringIO(text)))


def _serialize(rows: list[list[str]], has_bom: bool) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerows(rows)
    out = buf.getvalue()
    return (_BOM + out) if has_bom else out


def _column(headers: list[str], prefix: str) -> int | None:
    stripped = [h.strip() for h in headers]
    header = find_header(stripped, prefix)
    return stripped.index(header) if header is not None else None


def _title_column(headers: list[str]) -> int:
    idx = _column(headers, FIELD_PREFIXES["title_summary"])
    return 0 if idx is None else idx


def _cell(row: list[str], idx: int) -> str:
    return row[idx] if len(row) > idx else ""


def _set_cell(row: list[str], idx: int, value: str) -> None:
    if len(row) <= idx:
        row.extend([""] * (idx + 1 - len(row)))
    row[idx] = value


def _rewrite_link_cell(
    path: str | Path, title: str, value: str, *, current: str | None, dry_run: bool
) -> bool:
    """Set the *GitHub Issue Link* cell of the first row titled ``title``.

    With ``current`` set, only a row whose link cell holds exactly that text
    qualifies.
    """
    p = Path(path)
    has_bom, rows = _parse(read_csv_text(p))
    if len(rows) < 2:
        logger.warning("CSV file %s has insufficient rows", p)
        return False
    headers = rows[0]
    link_idx = _column(headers, FIELD_PREFIXES["issue_link"])
    if link_idx is None:
        logger.warning("GitHub Issue Link column not found in %s", p)
        return False
    title_idx = _title_column(headers)
    wanted = title.strip()
    for row in rows[1:]:
        if _cell(row, title_idx).strip() != wanted:
            continue
        if current is not None and _cell(row, link_idx).strip() != current.strip():
            continue
        _set_cell(row, link_idx, value)
        break
    else:
        logger.warning("Row with title %r not found in %s", title, p)
        return False
    if not dry_run:
        write_csv_text(p, _serialize(rows, has_bom))
    return True


def update_csv_issue_link(
    path: str | Path, title: str, link: str, *, dry_run: bool = False
) -> bool:
    """Write ``link`` into the *GitHub Issue Link* cell of the row titled ``title``.

    Returns ``False`` (and logs) when the column or row cannot be found.
    """
    return _rewrite_link_cell(path, title, link, current=None, dry_run=dry_run)


def clear_issue_link(path: str | Path, title: str, link: str, *, dry_run: bool = False) -> bool:
    """Blank the link cell of the row titled ``title`` when it holds ``link``.

    Other columns and rows are never touched, even when they contain the same
    text.
    """
    if not link.strip():
        return False
    return _rewrite_link_cell(path, title, "", current=link, dry_run=dry_run)


def update_csv_title(
    path: str | Path,
    old_title: str,
    new_title: str,
    *,
    link: str | None = None,
    dry_run: bool = False,
) -> bool:
    """Rename rows titled ``old_title``; with ``link``, only rows pointing there."""
    p = Path(path)
    has_bom, rows = _parse(read_csv_text(p))
    if not rows:
        return False
    title_idx = _title_column(rows[0])
    link_idx = _column(rows[0], FIELD_PREFIXES["issue_link"]) if link is not None else None
    if link is not None and link_idx is None:
        logger.warning("GitHub Issue Link column not found in %s", p)
        return False
    changed = False
    for row in rows[1:]:
        if _cell(row, title_idx).strip() != old_title.strip():
            continue
        if link_idx is not None and normalize_url(_cell(row, link_idx)) != normalize_url(
            link or ""
        ):
            continue
        row[title_idx] = new_title
        changed = True
    if not changed:
        logger.warning("Title %r not found in %s", old_title, p)
        return False
    if not dry_run:
        write_csv_text(p, _serialize(rows, has_bom))
    return True


__all__ = [
    "read_csv_text",
    "write_csv_text",
    "apply_csv_redirects",
    "clear_issue_link",
    "update_csv_issue_link",
    "update_csv_title",
]
