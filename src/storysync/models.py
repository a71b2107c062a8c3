from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


def normalize_url(url: str | None) -> str:
    """Trim and drop a single trailing slash so links compare by identity."""
    if not url:
        return ""
    out = url.strip()
    if out.endswith("/"):
        out = out[:-1]
    return out


@dataclass
class CsvRecord:
    """One user-story row from a ``<domain>-user-stories.csv`` file.

    List-like fields keep the raw text from the CSV, including literal ``\\n``
    escapes; the formatters normalize them.
    """

    title_summary: str = ""
    user_story: str = ""
    priority: str = ""
    complexity: str = ""
    acceptance_criteria_raw: str = ""
    technical_requirements: str = ""
    implementation_considerations: str = ""
    related_documentation: str = ""
    related_issues: str = ""
    plain_language_summary: str = ""
    issue_link: str = ""
    source_path: Path | None = None
    domain: str = ""

    @property
    def normalized_link(self) -> str:
        return normalize_url(self.issue_link)

    def as_dict(self) -> dict[str, Any]:
        return {
            "titleSummary": self.title_summary,
            "userStory": self.user_story,
            "priority": self.priority,
            "complexity": self.complexity,
            "acceptanceCriteriaRaw": self.acceptance_criteria_raw,
            "technicalRequirements": self.technical_requirements,
            "implementationConsiderations": self.implementation_considerations,
            "relatedDocumentation": self.related_documentation,
            "relatedIssues": self.related_issues,
            "plainLanguageSummary": self.plain_language_summary,
            "gitHubIssueLink": self.issue_link,
            "filePath": str(self.source_path) if self.source_path else None,
            "domain": self.domain,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> CsvRecord:
        """Inverse of ``as_dict``; unknown keys are ignored."""

        def _s(key: str) -> str:
            value = payload.get(key)
            return value if isinstance(value, str) else ""

        file_path = payload.get("filePath")
        return cls(
            title_summary=_s("titleSummary"),
            user_story=_s("userStory"),
            priority=_s("priority"),
            complexity=_s("complexity"),
            acceptance_criteria_raw=_s("acceptanceCriteriaRaw"),
            technical_requirements=_s("technicalRequirements"),
            implementation_considerations=_s("implementationConsiderations"),
            related_documentation=_s("relatedDocumentation"),
            related_issues=_s("relatedIssues"),
            plain_language_summary=_s("plainLanguageSummary"),
            issue_link=_s("gitHubIssueLink"),
            source_path=Path(file_path) if isinstance(file_path, str) and file_path else None,
            domain=_s("domain"),
        )


@dataclass
class CsvFile:
    path: Path
    records: list[CsvRecord] = field(default_factory=list)


@dataclass
class Issue:
    number: int
    title: str
    body: str = ""
    labels: list[str] = field(default_factory=list)
    html_url: str = ""
    state: str = "open"
    is_pull_request: bool = False

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> Issue:
        labels: list[str] = []
        for entry in payload.get("labels") or []:
            if isinstance(entry, dict):
                name = entry.get("name")
                if isinstance(name, str):
                    labels.append(name)
            elif isinstance(entry, str):
                labels.append(entry)
        return cls(
            number=int(payload.get("number") or 0),
            title=str(payload.get("title") or ""),
            body=str(payload.get("body") or ""),
            labels=labels,
            html_url=str(payload.get("html_url") or ""),
            state=str(payload.get("state") or "open"),
            is_pull_request=bool(payload.get("pull_request")),
        )

    @property
    def normalized_url(self) -> str:
        return normalize_url(self.html_url)

    def has_label(self, name: str) -> bool:
        wanted = name.strip().lower()
        return any(label.strip().lower() == wanted for label in self.labels)

    def as_dict(self) -> dict[str, Any]:
        return {
            "number": self.number,
            "title": self.title,
            "html_url": self.html_url,
            "state": self.state,
            "labels": list(self.labels),
        }


@dataclass
class Link:
    record: CsvRecord
    issue: Issue
    via: str = "direct"  # direct | related

    @property
    def url(self) -> str:
        return self.issue.normalized_url


@dataclass
class DuplicateGroup:
    title: str
    issues: list[Issue]

    def __post_init__(self) -> None:
        self.issues = sorted(self.issues, key=lambda i: i.number)

    @property
    def canonical(self) -> Issue:
        return self.issues[0]

    @property
    def duplicates(self) -> list[Issue]:
        return self.issues[1:]


__all__ = [
    "normalize_url",
    "CsvRecord",
    "CsvFile",
    "Issue",
    "Link",
    "DuplicateGroup",
]
