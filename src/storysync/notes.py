"""Implementation-notes generation.

Notes are regenerated on every run from the issue body rather than copied from
CSV. The heuristic lives behind ``ImplementationNotesStrategy`` so the body
composer does not depend on the rule table.
"""

from __future__ import annotations

import re
from typing import Protocol

from .sections import TECHNICAL_REQUIREMENTS, USER_STORY, section_text

ACTION_WORDS = ("create", "implement", "develop", "build", "integrate", "manage", "track", "handle")
TDD_NOTE = "Write tests first following TDD approach"

_CATEGORY_RE = re.compile(r"domain:([a-z-]+)", re.IGNORECASE)


class ImplementationNotesStrategy(Protocol):
    def generate(self, body: str) -> list[str]: ...


class KeywordNotesStrategy:
    """Keyword-sniffing rule table.

    1. ``domain:<name>`` in the body plus an action verb in the user story ->
       module-pattern note, otherwise a generic note.
    2. Non-empty technical requirements -> one of three sentences keyed on
       "api"/"service", then "storage"/"data".
    3. Always the TDD note.
    """

    def generate(self, body: str) -> list[str]:
        content = body or ""
        category = ""
        m = _CATEGORY_RE.search(content)
        if m:
            category = m.group(1).replace("-", " ")
        story = (section_text(content, USER_STORY) or "").lower()
        tech = section_text(content, TECHNICAL_REQUIREMENTS) or ""

        notes: list[str] = []
        action = next((word for word in ACTION_WORDS if word in story), None)
        if category and action:
            notes.append(f"Follow the {category} module pattern for the {action} functionality")
        else:
            notes.append("Use standard implementation approach for this feature")

        if tech:
            low = tech.lower()
            if "api" in low or "service" in low:
                notes.append("Implement with service interface design patterns")
            elif "storage" in low or "data" in low:
                notes.append("Consider data persistence and state management requirements")
            else:
                notes.append("Ensure compatibility with existing system architecture")

        notes.append(TDD_NOTE)
        return notes


__all__ = ["ACTION_WORDS", "TDD_NOTE", "ImplementationNotesStrategy", "KeywordNotesStrategy"]
