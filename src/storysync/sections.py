"""Idempotent patching of ``## Heading`` sections in issue bodies.

A section runs from its ``## Heading`` line to the next line starting with
``## `` (or the end of the body). An HTML comment directly below the heading
is the section *scaffold*: it is kept verbatim when present and inserted when
the caller expects one and it is missing.

Patches compare a normalized form of the current and proposed content
(literal ``\\n`` expanded, outer whitespace and trailing spaces dropped) and
only rewrite the body when they differ, so re-applying a patch with the same
input never changes the body. A heading that is absent is a no-op unless the
caller allows appending the section at the end of the body.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from .formatters import (
    DOMAIN_CHECKBOX_MAP,
    expand_newlines,
    format_acceptance_criteria,
    format_checkbox_block,
    format_list_field,
    format_related_documentation,
    format_related_issues,
    is_field_empty,
    is_not_applicable,
)

PLAIN_LANGUAGE_SUMMARY = "Plain Language Summary"
USER_STORY = "User Story"
ACCEPTANCE_CRITERIA = "Acceptance Criteria"
TECHNICAL_REQUIREMENTS = "Technical Requirements"
IMPLEMENTATION_CONSIDERATIONS = "Implementation Considerations"
RELATED_DOCUMENTATION = "Related Documentation"
RELATED_ISSUES = "Related Issues/Stories"
IMPLEMENTATION_NOTES = "Implementation Notes"
ESTIMATED_COMPLEXITY = "Estimated Complexity"
PRIORITY = "Priority"
DOMAIN = "Domain"

SCAFFOLDS: dict[str, str] = {
    TECHNICAL_REQUIREMENTS: "<!-- List specific technical implementation details -->",
    IMPLEMENTATION_CONSIDERATIONS: (
        "<!-- Describe potential challenges, dependencies, or alternative approaches -->"
    ),
    RELATED_DOCUMENTATION: "<!-- Link to requirements documents and other references -->",
    RELATED_ISSUES: (
        "<!-- Link to any related issues or stories - Each issue number should be "
        "prefixed with # to create a link -->"
    ),
    IMPLEMENTATION_NOTES: (
        "<!-- Add guidance on implementation approach, architecture considerations, etc. -->"
    ),
    ESTIMATED_COMPLEXITY: "<!-- Select the estimated complexity level -->",
    PRIORITY: "<!-- Select the priority level -->",
}

COMPLEXITY_OPTIONS: dict[str, str] = {
    "Small": "Small (1-2 days)",
    "Medium": "Medium (3-5 days)",
    "Large": "Large (1+ week)",
}

PRIORITY_OPTIONS: dict[str, str] = {
    "High": "High (MVP)",
    "Medium": "Medium (MVP Enhancement)",
    "Low": "Low (Nice to Have)",
    "Post-MVP": "Post-MVP",
}

_NEXT_HEADING_RE = re.compile(r"^## ", re.MULTILINE)
_SCAFFOLD_RE = re.compile(r"^\s*<!--.*-->\s*$")
_CHECKBOX_LINE_RE = re.compile(r"^(\s*- \[)([ xX])(\]\s+)(.+?)\s*$")


@dataclass
class PatchResult:
    body: str
    changed: bool


@dataclass(frozen=True)
class Section:
    heading: str
    start: int  # offset of the "## " line
    body_start: int  # offset right after the heading line
    end: int  # offset of the next "## " line or len(body)
    scaffold: str | None
    content: str  # text after the scaffold, untouched


def _heading_re(heading: str) -> re.Pattern[str]:
    return re.compile(rf"^##[ \t]+{re.escape(heading)}[ \t]*$", re.MULTILINE)


def find_section(body: str, heading: str) -> Section | None:
    m = _heading_re(heading).search(body or "")
    if not m:
        return None
    body_start = m.end() + 1 if m.end() < len(body) and body[m.end()] == "\n" else m.end()
    nxt = _NEXT_HEADING_RE.search(body, body_start)
    end = nxt.start() if nxt else len(body)
    raw = body[body_start:end]
    scaffold: str | None = None
    content = raw
    stripped = raw.lstrip("\n")
    first_line, sep, rest = stripped.partition("\n")
    if _SCAFFOLD_RE.match(first_line):
        scaffold = first_line.strip()
        content = rest if sep else ""
    return Section(
        heading=heading,
        start=m.start(),
        body_start=body_start,
        end=end,
        scaffold=scaffold,
        content=content,
    )


def section_text(body: str, heading: str) -> str | None:
    """Content of a section without its scaffold, stripped; ``None`` if absent."""
    sec = find_section(body, heading)
    if sec is None:
        return None
    return sec.content.strip()


def normalize_content(text: str) -> str:
    lines = expand_newlines(text or "").strip().split("\n")
    return "\n".join(line.rstrip() for line in lines).strip()


def _render_section(heading: str, scaffold: str | None, content: str, trailing: str) -> str:
    parts = [f"## {heading}"]
    if scaffold:
        parts.append(scaffold)
    if content:
        parts.append(content)
    return "\n".join(parts) + trailing


def patch_section(
    body: str,
    heading: str,
    new_content: str,
    *,
    scaffold: str | None = None,
    append_if_missing: bool = False,
) -> PatchResult:
    """Replace the content of ``## heading`` with ``new_content``.

    The existing scaffold comment wins over ``scaffold``; ``scaffold`` is only
    used when the section has none.
    """
    body = body or ""
    proposed = new_content.strip()
    sec = find_section(body, heading)
    if sec is None:
        if not append_if_missing:
            return PatchResult(body, False)
        prefix = body.rstrip("\n")
        joiner = "\n\n" if prefix else ""
        return PatchResult(prefix + joiner + _render_section(heading, scaffold, proposed, "\n"), True)

    needs_scaffold = scaffold is not None and sec.scaffold is None
    if not needs_scaffold and normalize_content(sec.content) == normalize_content(proposed):
        return PatchResult(body, False)

    at_end = sec.end >= len(body)
    trailing = "\n" if at_end else "\n\n"
    rendered = _render_section(heading, sec.scaffold or scaffold, proposed, trailing)
    new_body = body[: sec.start] + rendered + body[sec.end :]
    return PatchResult(new_body, new_body != body)


def paragraph_text(value: str) -> str:
    """Trimmed non-blank lines of ``value`` joined into one paragraph."""
    lines = (line.strip() for line in (value or "").replace("\r\n", "\n").split("\n"))
    return "\n".join(line for line in lines if line)


def patch_single_line(body: str, heading: str, value: str) -> PatchResult:
    """Replace the first paragraph of a section (story / summary).

    The paragraph runs from the first content line below the scaffold to the
    next blank line. Multi-line values have their blank lines dropped so the
    written paragraph reads back identically on the next run.
    """
    body = body or ""
    wanted = paragraph_text(value)
    sec = find_section(body, heading)
    if sec is None or not wanted:
        return PatchResult(body, False)
    raw = body[sec.body_start : sec.end]
    lines = raw.split("\n")
    start = next(
        (i for i, line in enumerate(lines) if line.strip() and not _SCAFFOLD_RE.match(line)),
        None,
    )
    if start is None:
        lines.insert(0, wanted)
    else:
        stop = start
        while stop < len(lines) and lines[stop].strip() and not _SCAFFOLD_RE.match(lines[stop]):
            stop += 1
        if paragraph_text("\n".join(lines[start:stop])) == wanted:
            return PatchResult(body, False)
        lines[start:stop] = wanted.split("\n")
    new_raw = "\n".join(lines)
    if sec.end < len(body) and not new_raw.endswith("\n\n"):
        new_raw = new_raw.rstrip("\n") + "\n\n"
    new_body = body[: sec.body_start] + new_raw + body[sec.end :]
    return PatchResult(new_body, new_body != body)


# ---- Field patchers ----------------------------------------------------


def patch_plain_language_summary(body: str, summary: str, title_summary: str = "") -> PatchResult:
    value = summary if not is_field_empty(summary) else title_summary
    return patch_single_line(body, PLAIN_LANGUAGE_SUMMARY, value or "")


def patch_user_story(body: str, user_story: str) -> PatchResult:
    return patch_single_line(body, USER_STORY, user_story or "")


def patch_acceptance_criteria(body: str, raw: str) -> PatchResult:
    if is_field_empty(raw):
        return PatchResult(body, False)
    return patch_section(body, ACCEPTANCE_CRITERIA, format_acceptance_criteria(raw))


def patch_technical_requirements(body: str, raw: str) -> PatchResult:
    if is_field_empty(raw):
        return PatchResult(body, False)
    return patch_section(
        body,
        TECHNICAL_REQUIREMENTS,
        format_list_field(raw),
        scaffold=SCAFFOLDS[TECHNICAL_REQUIREMENTS],
    )


def patch_implementation_considerations(body: str, raw: str) -> PatchResult:
    if is_field_empty(raw):
        return PatchResult(body, False)
    return patch_section(
        body,
        IMPLEMENTATION_CONSIDERATIONS,
        format_list_field(raw),
        scaffold=SCAFFOLDS[IMPLEMENTATION_CONSIDERATIONS],
    )


def patch_related_documentation(
    body: str, raw: str, *, owner: str, repo: str, branch: str = "develop"
) -> PatchResult:
    if is_field_empty(raw) or is_not_applicable(raw):
        return PatchResult(body, False)
    return patch_section(
        body,
        RELATED_DOCUMENTATION,
        format_related_documentation(raw, owner=owner, repo=repo, branch=branch),
        scaffold=SCAFFOLDS[RELATED_DOCUMENTATION],
    )


def patch_related_issues(body: str, raw: str, *, append_if_missing: bool = False) -> PatchResult:
    if is_field_empty(raw) or is_not_applicable(raw):
        return PatchResult(body, False)
    return patch_section(
        body,
        RELATED_ISSUES,
        format_related_issues(raw),
        scaffold=SCAFFOLDS[RELATED_ISSUES],
        append_if_missing=append_if_missing,
    )


def patch_implementation_notes(
    body: str, notes: list[str], *, append_if_missing: bool = False
) -> PatchResult:
    if not body or not notes:
        return PatchResult(body, False)
    return patch_section(
        body,
        IMPLEMENTATION_NOTES,
        "\n".join(f"- {note}" for note in notes),
        scaffold=SCAFFOLDS[IMPLEMENTATION_NOTES],
        append_if_missing=append_if_missing,
    )


def render_checkbox_section(options: dict[str, str], selected: str | None) -> str:
    return "\n".join(format_checkbox_block(options, selected))


def patch_complexity(body: str, complexity: str | None) -> PatchResult:
    return patch_section(
        body,
        ESTIMATED_COMPLEXITY,
        render_checkbox_section(COMPLEXITY_OPTIONS, complexity),
        scaffold=SCAFFOLDS[ESTIMATED_COMPLEXITY],
    )


def patch_priority(body: str, priority: str | None) -> PatchResult:
    return patch_section(
        body,
        PRIORITY,
        render_checkbox_section(PRIORITY_OPTIONS, priority),
        scaffold=SCAFFOLDS[PRIORITY],
    )


def checked_option(body: str, heading: str, options: dict[str, str]) -> str | None:
    """Return the option key whose box is ticked in ``heading``, if any."""
    text = section_text(body, heading)
    if not text:
        return None
    labels = {label.lower(): key for key, label in options.items()}
    for line in text.split("\n"):
        m = _CHECKBOX_LINE_RE.match(line)
        if not m or m.group(2).lower() != "x":
            continue
        label = m.group(4).strip().lower()
        if label in labels:
            return labels[label]
        for key in options:
            if label.startswith(key.lower()):
                return key
    return None


def patch_domain_checkbox(body: str, domain: str) -> PatchResult:
    """Tick the checkbox for ``domain``.

    Inside a ``## Domain`` section the box is made exclusive; elsewhere every
    unticked ``- [ ] <Domain Text>`` is ticked. Unknown domains are a no-op.
    """
    text = DOMAIN_CHECKBOX_MAP.get(domain or "")
    body = body or ""
    if not text:
        return PatchResult(body, False)
    sec = find_section(body, DOMAIN)
    if sec is not None:
        raw = body[sec.body_start : sec.end]
        out_lines: list[str] = []
        for line in raw.split("\n"):
            m = _CHECKBOX_LINE_RE.match(line)
            if m:
                mark = "x" if m.group(4) == text else " "
                line = f"{m.group(1)}{mark}{m.group(3)}{m.group(4)}"
            out_lines.append(line)
        new_raw = "\n".join(out_lines)
        if new_raw == raw:
            return PatchResult(body, False)
        return PatchResult(body[: sec.body_start] + new_raw + body[sec.end :], True)
    pattern = re.compile(rf"- \[ \] {re.escape(text)}")
    new_body = pattern.sub(f"- [x] {text}", body)
    return PatchResult(new_body, new_body != body)


__all__ = [
    "PLAIN_LANGUAGE_SUMMARY",
    "USER_STORY",
    "ACCEPTANCE_CRITERIA",
    "TECHNICAL_REQUIREMENTS",
    "IMPLEMENTATION_CONSIDERATIONS",
    "RELATED_DOCUMENTATION",
    "RELATED_ISSUES",
    "IMPLEMENTATION_NOTES",
    "ESTIMATED_COMPLEXITY",
    "PRIORITY",
    "DOMAIN",
    "SCAFFOLDS",
    "COMPLEXITY_OPTIONS",
    "PRIORITY_OPTIONS",
    "PatchResult",
    "Section",
    "find_section",
    "section_text",
    "normalize_content",
    "patch_section",
    "paragraph_text",
    "patch_single_line",
    "patch_plain_language_summary",
    "patch_user_story",
    "patch_acceptance_criteria",
    "patch_technical_requirements",
    "patch_implementation_considerations",
    "patch_related_documentation",
    "patch_related_issues",
    "patch_implementation_notes",
    "render_checkbox_section",
    "patch_complexity",
    "patch_priority",
    "checked_option",
    "patch_domain_checkbox",
]
