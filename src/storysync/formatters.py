r"""Markdown formatters for issue body sections.

Every formatter takes raw CSV text and returns the canonical markdown for its
section. Inputs use the literal two-character ``\n`` escape as the list-item
separator; real newlines are accepted as well.
"""

from __future__ import annotations

import re

DOMAIN_CHECKBOX_MAP: dict[str, str] = {
    "world-configuration": "World Configuration",
    "character-system": "Character System",
    "narrative-engine": "Narrative Engine",
    "journal-system": "Journal System",
    "state-management": "State Management",
    "ai-service": "AI Service Integration",
    "game-session": "Game Session UI",
    "world-interface": "World Interface",
    "character-interface": "Character Interface",
    "journal-interface": "Journal Interface",
    "utilities-and-helpers": "Utilities and Helpers",
    "devtools": "Devtools",
    "decision-relevance": "Decision Relevance System",
    "decision-relevance-system": "Decision Relevance System",
    "inventory-system": "Inventory System",
    "lore-management-system": "Lore Management System",
    "player-decision-system": "Player Decision System",
}

EMPTY_PATTERNS = frozenset(
    {
        "No technical requirements specified",
        "No implementation considerations specified",
        "No related documentation specified",
        "No plain language summary provided",
        "No acceptance criteria specified",
        "None",
        "",
    }
)

LITERAL_NEWLINE = "\\n"
DEFAULT_DOCS_BRANCH = "develop"

_MARKDOWN_LINK_RE = re.compile(r"\[.*\]\(.*\)")
_LEADING_DASH_RE = re.compile(r"^-\s*")
_LEADING_BOX_RE = re.compile(r"^\[\s*\]\s*")


def is_field_empty(value: str | None) -> bool:
    if not value:
        return True
    return value.strip() in EMPTY_PATTERNS


def is_not_applicable(value: str | None) -> bool:
    return not value or value.strip().lower() == "n/a"


def expand_newlines(text: str) -> str:
    r"""Turn literal ``\n`` escapes and CRLF into real newlines."""
    return text.replace(LITERAL_NEWLINE, "\n").replace("\r\n", "\n")


def _non_blank_lines(text: str) -> list[str]:
    return [line.strip() for line in expand_newlines(text).split("\n") if line.strip()]


def format_acceptance_criteria(text: str | None) -> str:
    """Checkbox list; a line ending in ``:`` opens a nested sub-list."""
    if not text:
        return ""
    formatted: list[str] = []
    in_group = False
    for line in _non_blank_lines(text):
        clean = _LEADING_BOX_RE.sub("", _LEADING_DASH_RE.sub("", line)).strip()
        if not clean:
            continue
        if clean.endswith(":"):
            formatted.append(f"- [ ] {clean}")
            in_group = True
        elif "github.com" in clean or "#" in clean:
            formatted.append(f"- {clean} (See linked issue)")
            in_group = False
        elif in_group:
            formatted.append(f"  - [ ] {clean}")
        else:
            formatted.append(f"- [ ] {clean}")
    return "\n".join(formatted)


def format_list_field(text: str | None) -> str:
    r"""Technical requirements / implementation considerations.

    The loader doubles literal escapes (``\n`` -> ``\\n``), so splitting on
    ``\n`` leaves a dangling backslash on each item, which is stripped here.
    A single item is returned bare; several items become a bullet list.
    """
    if not text:
        return ""
    lines: list[str] = []
    for chunk in text.replace("\r\n", "\n").split("\n"):
        for part in chunk.split(LITERAL_NEWLINE):
            item = part.rstrip("\\").strip()
            if item:
                lines.append(item)
    if not lines:
        return ""
    if len(lines) == 1:
        return lines[0]
    return "\n".join(f"- {line}" for line in lines)


format_technical_requirements = format_list_field
format_implementation_considerations = format_list_field


def format_related_issues(text: str | None) -> str:
    """Bullet list of issue references; bare numbers gain ``#``; de-duplicated."""
    if is_not_applicable(text):
        return ""
    seen: set[str] = set()
    out: list[str] = []
    for item in _non_blank_lines(text or ""):
        if item.isdigit():
            entry = f"- #{item}"
        else:
            entry = f"- {item}"
        if entry not in seen:
            seen.add(entry)
            out.append(entry)
    return "\n".join(out)


def doc_url(owner: str, repo: str, path: str, branch: str = DEFAULT_DOCS_BRANCH) -> str:
    return f"https://github.com/{owner}/{repo}/blob/{branch}/{path.lstrip('/')}"


def format_related_documentation(
    text: str | None, *, owner: str, repo: str, branch: str = DEFAULT_DOCS_BRANCH
) -> str:
    """One ``- [path](absolute-url)`` bullet per comma/newline separated path."""
    if is_not_applicable(text):
        return ""
    links: list[str] = []
    for raw in re.split(r"[\n,]", expand_newlines(text or "")):
        path = raw.strip().lstrip("/")
        if path:
            links.append(f"- [{path}]({doc_url(owner, repo, path, branch)})")
    return "\n".join(links)


def format_checkbox_block(options: dict[str, str], selected: str | None) -> list[str]:
    """``- [x]`` for the option whose key equals ``selected`` (case-insensitive)."""
    wanted = (selected or "").strip().lower()
    return [
        f"- [{'x' if key.lower() == wanted else ' '}] {label}"
        for key, label in options.items()
    ]


__all__ = [
    "DOMAIN_CHECKBOX_MAP",
    "EMPTY_PATTERNS",
    "is_field_empty",
    "is_not_applicable",
    "expand_newlines",
    "format_acceptance_criteria",
    "format_list_field",
    "format_technical_requirements",
    "format_implementation_considerations",
    "format_related_issues",
    "format_related_documentation",
    "format_checkbox_block",
    "doc_url",
]
