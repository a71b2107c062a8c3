from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from jsonschema import Draft7Validator

from .errors import AnalysisInvalidError, AnalysisMissingError
from .schemas import ANALYSIS_SCHEMA_VERSION, get_schemas

logger = logging.getLogger(__name__)

DEFAULT_ANALYSIS_FILE = "duplicate-analysis.json"

_VALIDATOR: Draft7Validator | None = None


def _validator() -> Draft7Validator:
    global _VALIDATOR
    if _VALIDATOR is None:
        _VALIDATOR = Draft7Validator(get_schemas()["analysis"])
    return _VALIDATOR


def validation_errors(document: Any) -> list[str]:
    errors = sorted(_validator().iter_errors(document), key=lambda e: list(e.path))
    return [
        f"{'/'.join(str(p) for p in err.path) or '<root>'}: {err.message}" for err in errors
    ]


def persist_analysis(path: Path, analysis: dict[str, Any], *, repo: str | None = None) -> None:
    payload = dict(analysis)
    payload.setdefault("schemaVersion", ANALYSIS_SCHEMA_VERSION)
    payload.setdefault("generated_at", datetime.now(timezone.utc).isoformat())
    if repo is not None:
        payload.setdefault("repo", repo)
    problems = validation_errors(payload)
    if problems:
        raise AnalysisInvalidError(f"Refusing to write invalid analysis: {problems[0]}")
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    tmp.replace(path)
    logger.debug("analysis written to %s", path)


def load_analysis(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise AnalysisMissingError(
            f"Duplicate analysis file not found at {path}; run 'storysync analyze' first"
        )
    try:
        raw: Any = json.loads(path.read_text(encoding="utf-8"))
    except ValueError as exc:
        raise AnalysisInvalidError(f"Analysis file {path} is not valid JSON: {exc}") from exc
    problems = validation_errors(raw)
    if problems:
        raise AnalysisInvalidError(f"Analysis file {path} failed validation: {problems[0]}")
    return raw


__all__ = [
    "DEFAULT_ANALYSIS_FILE",
    "persist_analysis",
    "load_analysis",
    "validation_errors",
]
