"""Error taxonomy & redaction helpers.

Two concerns live here:

- the exception types raised by the engine outside the HTTP layer (the API
  client owns ``ApiError`` / ``RateLimitExceeded`` in ``github_rest``);
- ``classify_error`` / ``redact`` which turn any exception into a small
  ``ErrorInfo`` record safe to log or embed in a sync summary.

Public API:
- classify_error(exc) -> ErrorInfo
- redact(text) -> str
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

_SENSITIVE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"ghp_[A-Za-z0-9]{20,40}"),  # GitHub classic tokens
    re.compile(r"github_pat_\w{20,}"),  # GitHub fine-grained tokens
    re.compile(r"gh[osu]_[A-Za-z0-9]{20,40}"),  # OAuth / app / user-to-server
    re.compile(r"(?i)(authorization:\s*(?:bearer|token)\s+)\S+"),
]

_REDACTION_PLACEHOLDER = "<redacted>"


class StorySyncError(RuntimeError):
    """Base class for engine errors that are not HTTP failures."""


class CsvReadError(StorySyncError):
    """A requirements CSV could not be read or parsed."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Failed to read CSV {path}: {reason}")
        self.path = path
        self.reason = reason


class ConfigError(StorySyncError):
    pass


class AuthError(ConfigError):
    """No usable GitHub token was found."""


class PreflightError(StorySyncError):
    """Required repository labels are missing and --force was not given."""

    def __init__(self, missing: list[str]):
        super().__init__(
            "Required labels are missing: " + ", ".join(missing)
            + " (create them first or pass --force)"
        )
        self.missing = missing


class AnalysisMissingError(ConfigError):
    """The remediation pass needs an analysis artifact that does not exist."""


class AnalysisInvalidError(StorySyncError):
    """The analysis artifact exists but does not match its schema."""


@dataclass
class ErrorInfo:
    category: str
    message: str
    original_type: str
    transient: bool = False
    details: dict[str, Any] | None = None

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "category": self.category,
            "message": self.message,
            "original_type": self.original_type,
            "transient": self.transient,
        }
        if self.details:
            out["details"] = self.details
        return out


def redact(text: str) -> str:
    """Redact sensitive tokens in arbitrary text."""
    if not text:
        return text
    redacted = text
    for pat in _SENSITIVE_PATTERNS:
        if pat.groups:
            redacted = pat.sub(lambda m: m.group(1) + _REDACTION_PLACEHOLDER, redacted)
        else:
            redacted = pat.sub(_REDACTION_PLACEHOLDER, redacted)
    return redacted


def classify_error(exc: BaseException) -> ErrorInfo:
    """Best-effort classification of an exception.

    Typed errors are classified by type first; anything else falls back to
    keyword sniffing on the message.
    """
    # Local import keeps github_rest free to import this module.
    from .github_rest import ApiError, RateLimitExceeded  # noqa: PLC0415

    msg = str(exc) if exc else ""
    low = msg.lower()
    name = exc.__class__.__name__

    if isinstance(exc, RateLimitExceeded):
        return ErrorInfo(
            "github.rate_limit",
            redact(msg),
            name,
            transient=True,
            details={"reset_at": exc.reset_at},
        )
    if isinstance(exc, ApiError):
        return ErrorInfo(
            "github.api",
            redact(msg),
            name,
            transient=bool(exc.status and exc.status >= 500),
            details={"status": exc.status},
        )
    if isinstance(exc, CsvReadError):
        return ErrorInfo("csv", redact(msg), name, details={"path": exc.path})
    if isinstance(exc, ConfigError):
        return ErrorInfo("config", redact(msg), name)
    if "rate limit" in low or "secondary rate" in low:
        return ErrorInfo("github.rate_limit", redact(msg), name, transient=True)
    if "abuse" in low:
        return ErrorInfo("github.abuse", redact(msg), name, transient=True)
    if any(k in low for k in ("timeout", "timed out", "connection reset", "temporarily unavailable")):
        return ErrorInfo("network", redact(msg), name, transient=True)
    if any(k in low for k in ("csv", "delimiter", "quotechar")):
        return ErrorInfo("csv", redact(msg), name)
    return ErrorInfo("generic", redact(msg), name)


__all__ = [
    "StorySyncError",
    "CsvReadError",
    "ConfigError",
    "AuthError",
    "PreflightError",
    "AnalysisMissingError",
    "AnalysisInvalidError",
    "ErrorInfo",
    "classify_error",
    "redact",
]
