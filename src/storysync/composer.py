"""Body composer: run every section patch over an issue body in a fixed order.

``compose_body`` is the single entry point used for both updates and newly
created issues. The order is:

summary -> story -> criteria -> technical requirements -> implementation
considerations -> related docs -> related issues -> domain checkbox ->
implementation notes -> complexity -> priority -> documentation link repair

followed by a placeholder sweep so no ``{{TOKEN}}`` ever ships.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from . import sections
from .csv_loader import normalize_complexity, normalize_priority
from .formatters import (
    format_acceptance_criteria,
    format_related_documentation,
    format_related_issues,
    is_field_empty,
    is_not_applicable,
)
from .models import CsvRecord, Issue
from .notes import ImplementationNotesStrategy, KeywordNotesStrategy

DEFAULT_DOMAIN = "utilities-and-helpers"
USER_STORY_PREFIX = "[USER STORY] "
USER_STORY_PLACEHOLDER = "As a [type of user], I want [goal/need] so that [benefit/value]."

DEFAULT_ISSUE_TEMPLATE = """## Plain Language Summary
{{TITLE_SUMMARY}}

## User Story
As a [type of user], I want [goal/need] so that [benefit/value].

## Acceptance Criteria
{{ACCEPTANCE_CRITERIA_LIST}}

## Technical Requirements
<!-- List specific technical implementation details -->
{{TECHNICAL_REQUIREMENTS_LIST}}

## Implementation Considerations
<!-- Describe potential challenges, dependencies, or alternative approaches -->
{{IMPLEMENTATION_CONSIDERATIONS}}

## Related Documentation
<!-- Link to requirements documents and other references -->
{{RELATED_DOCUMENTATION_LIST}}

## Related Issues/Stories
<!-- Link to any related issues or stories - Each issue number should be prefixed with # to create a link -->
{{RELATED_ISSUES_LIST}}

## Implementation Notes
<!-- Add guidance on implementation approach, architecture considerations, etc. -->

## Estimated Complexity
<!-- Select the estimated complexity level -->
- [ ] Small (1-2 days)
- [ ] Medium (3-5 days)
- [ ] Large (1+ week)

## Priority
<!-- Select the priority level -->
- [ ] High (MVP)
- [ ] Medium (MVP Enhancement)
- [ ] Low (Nice to Have)
- [ ] Post-MVP
"""

_PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Z0-9_]+)\s*\}\}")
_FRONTMATTER_RE = re.compile(r"\A---\s*\n.*?^---\s*\n?", re.DOTALL | re.MULTILINE)
_REQ_DOC_LINK_RE = re.compile(
    r"- \[([^.\]]+)\.md\]\(\s*(?:https://github\.com/[\w-]+/[\w-]+/blob/(?:main|develop)/)?"
    r"docs/requirements/core/([^)]+?)\.md\s*\) - Source requirements document"
)
_REQ_DOC_HTML_RE = re.compile(
    r'<a\s+href="(?:https://github\.com/[\w-]+/[\w-]+/blob/(?:main|develop)/)?(?:/|\.\./)?'
    r'docs/requirements/core/([^"]+)\.md">([^<]+)</a>'
)
_DOMAIN_LINK_RE = re.compile(
    r"\[([^.\]]+)\.md\]\(https://github\.com/[\w-]+/[\w-]+/blob/(?:main|develop)/"
    r"docs/requirements/core/([^)]+)\.md\)"
)
_DOMAIN_TOKEN_RE = re.compile(r"domain:([a-z-]+)", re.IGNORECASE)


@dataclass
class ComposeSettings:
    owner: str
    repo: str
    docs_branch: str = "develop"
    append_missing_sections: bool = True
    notes_strategy: ImplementationNotesStrategy = field(default_factory=KeywordNotesStrategy)


@dataclass
class ComposeResult:
    body: str
    changed: bool
    steps: list[str] = field(default_factory=list)


# ---- placeholder safety net --------------------------------------------


def _lines_or_fallback(raw: str, bullet: str, fallback: str) -> str:
    if is_field_empty(raw) or is_not_applicable(raw):
        return fallback
    items = [
        line.strip().rstrip("\\").strip()
        for line in re.split(r"\\n|\r?\n", raw.replace("\\\\n", "\\n"))
    ]
    items = [item for item in items if item]
    if not items:
        return fallback
    return "\n".join(f"{bullet}{item}" for item in items)


def placeholder_values(record: CsvRecord, *, owner: str, repo: str, branch: str) -> dict[str, str]:
    docs = format_related_documentation(
        record.related_documentation, owner=owner, repo=repo, branch=branch
    )
    issues = format_related_issues(record.related_issues)
    criteria = format_acceptance_criteria(record.acceptance_criteria_raw)
    return {
        "ACCEPTANCE_CRITERIA_LIST": criteria
        if criteria and not is_field_empty(record.acceptance_criteria_raw)
        else "- [ ] (No acceptance criteria provided)",
        "TECHNICAL_REQUIREMENTS_LIST": _lines_or_fallback(
            record.technical_requirements, "- [ ] ", "- [ ] (No technical requirements provided)"
        ),
        "IMPLEMENTATION_CONSIDERATIONS": _lines_or_fallback(
            record.implementation_considerations,
            "- ",
            "- (No implementation considerations provided)",
        ),
        "TITLE_SUMMARY": record.title_summary or "N/A",
        "PRIORITY": record.priority or "N/A",
        "COMPLEXITY": record.complexity or "N/A",
        "RELATED_DOCUMENTATION_LIST": docs or "- (No related documentation provided)",
        "RELATED_ISSUES_LIST": issues or "- None",
    }


def fill_placeholders(body: str, values: dict[str, str]) -> str:
    """Replace ``{{TOKEN}}`` markers; unknown tokens are removed."""
    return _PLACEHOLDER_RE.sub(lambda m: values.get(m.group(1), ""), body)


def strip_frontmatter(template: str) -> str:
    return _FRONTMATTER_RE.sub("", template, count=1)


# ---- link repair / domain ----------------------------------------------


def fix_documentation_links(body: str, *, owner: str, repo: str, branch: str = "develop") -> str:
    if not body:
        return body
    base = f"https://github.com/{owner}/{repo}/blob/{branch}/docs/requirements/core"
    m = _REQ_DOC_LINK_RE.search(body)
    if m:
        domain = m.group(2)
        new_link = f"- [{domain}.md]({base}/{domain}.md) - Source requirements document"
        return body[: m.start()] + new_link + body[m.end() :]
    return _REQ_DOC_HTML_RE.sub(
        lambda hm: f'<a href="{base}/{hm.group(1)}.md">{hm.group(2)}</a>', body
    )


def extract_domain(issue: Issue) -> str:
    for label in issue.labels:
        if label.startswith("domain:"):
            return label[len("domain:") :]
    body = issue.body or ""
    m = _DOMAIN_LINK_RE.search(body)
    if m:
        return m.group(2)
    m2 = _DOMAIN_TOKEN_RE.search(body)
    if m2:
        return m2.group(1)
    return DEFAULT_DOMAIN


# ---- labels / title ----------------------------------------------------


def complexity_label(complexity: str) -> str:
    return f"complexity:{complexity.lower()}"


def priority_label(priority: str) -> str:
    return "priority:" + re.sub(r"\s+", "-", priority.strip().lower())


def desired_labels(current: Iterable[str], record: CsvRecord) -> list[str]:
    """Keep unrelated labels; swap complexity:/priority: for the record's values.

    A record whose complexity or priority is unknown leaves that label family
    as it is.
    """
    labels = list(current)
    wanted = (
        ("complexity:", normalize_complexity(record.complexity), complexity_label),
        ("priority:", normalize_priority(record.priority), priority_label),
    )
    added: list[str] = []
    for prefix, value, to_label in wanted:
        if value is None:
            continue
        labels = [label for label in labels if not label.lower().startswith(prefix)]
        added.append(to_label(value))
    return labels + added


def labels_differ(current: Iterable[str], desired: Iterable[str]) -> bool:
    return {label.lower() for label in current} != {label.lower() for label in desired}


def proposed_title(record: CsvRecord, current_title: str) -> str | None:
    title = (record.title_summary or "").strip()
    if title.startswith(USER_STORY_PREFIX):
        title = title[len(USER_STORY_PREFIX) :].strip()
    if not title:
        return None
    if title.lower() == (current_title or "").strip().lower():
        return None
    return title


# ---- composition -------------------------------------------------------


def _steps(
    record: CsvRecord, domain: str, settings: ComposeSettings
) -> list[tuple[str, Callable[[str], sections.PatchResult]]]:
    complexity = normalize_complexity(record.complexity)
    priority = normalize_priority(record.priority)
    append = settings.append_missing_sections

    def _notes(body: str) -> sections.PatchResult:
        notes = settings.notes_strategy.generate(body)
        return sections.patch_implementation_notes(body, notes, append_if_missing=append)

    def _links(body: str) -> sections.PatchResult:
        new_body = fix_documentation_links(
            body, owner=settings.owner, repo=settings.repo, branch=settings.docs_branch
        )
        return sections.PatchResult(new_body, new_body != body)

    return [
        (
            "plain_language_summary",
            lambda b: sections.patch_plain_language_summary(
                b, record.plain_language_summary, record.title_summary
            ),
        ),
        ("user_story", lambda b: sections.patch_user_story(b, record.user_story)),
        (
            "acceptance_criteria",
            lambda b: sections.patch_acceptance_criteria(b, record.acceptance_criteria_raw),
        ),
        (
            "technical_requirements",
            lambda b: sections.patch_technical_requirements(b, record.technical_requirements),
        ),
        (
            "implementation_considerations",
            lambda b: sections.patch_implementation_considerations(
                b, record.implementation_considerations
            ),
        ),
        (
            "related_documentation",
            lambda b: sections.patch_related_documentation(
                b,
                record.related_documentation,
                owner=settings.owner,
                repo=settings.repo,
                branch=settings.docs_branch,
            ),
        ),
        (
            "related_issues",
            lambda b: sections.patch_related_issues(
                b, record.related_issues, append_if_missing=append
            ),
        ),
        ("domain_checkbox", lambda b: sections.patch_domain_checkbox(b, domain)),
        ("implementation_notes", _notes),
        ("complexity", lambda b: sections.patch_complexity(b, complexity)),
        ("priority", lambda b: sections.patch_priority(b, priority)),
        ("documentation_links", _links),
    ]


def compose_body(
    current_body: str, record: CsvRecord, domain: str, *, settings: ComposeSettings
) -> ComposeResult:
    """Patch ``current_body`` so every known section reflects ``record``.

    CRLF line endings are normalized while patching; when nothing changes the
    original text is returned untouched.
    """
    original = current_body or ""
    body = original.replace("\r\n", "\n")
    changed_steps: list[str] = []
    for name, step in _steps(record, domain, settings):
        result = step(body)
        if result.changed:
            changed_steps.append(name)
            body = result.body
    values = placeholder_values(
        record, owner=settings.owner, repo=settings.repo, branch=settings.docs_branch
    )
    swept = fill_placeholders(body, values)
    if swept != body:
        changed_steps.append("placeholders")
        body = swept
    if not changed_steps:
        return ComposeResult(original, False, [])
    return ComposeResult(body, True, changed_steps)


def render_from_template(
    template: str, record: CsvRecord, domain: str, *, settings: ComposeSettings
) -> str:
    """Build a fresh issue body for ``record`` from the issue template."""
    body = strip_frontmatter(template or DEFAULT_ISSUE_TEMPLATE).replace("\r\n", "\n")
    if record.user_story:
        body = body.replace(USER_STORY_PLACEHOLDER, sections.paragraph_text(record.user_story))
    values = placeholder_values(
        record, owner=settings.owner, repo=settings.repo, branch=settings.docs_branch
    )
    body = fill_placeholders(body, values)
    return compose_body(body, record, domain, settings=settings).body


__all__ = [
    "DEFAULT_DOMAIN",
    "DEFAULT_ISSUE_TEMPLATE",
    "ComposeSettings",
    "ComposeResult",
    "placeholder_values",
    "fill_placeholders",
    "strip_frontmatter",
    "fix_documentation_links",
    "extract_domain",
    "complexity_label",
    "priority_label",
    "desired_labels",
    "labels_differ",
    "proposed_title",
    "compose_body",
    "render_from_template",
]
