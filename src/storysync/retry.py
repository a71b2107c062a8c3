"""Centralized retry / backoff helpers.

Provides ``run_with_retries`` which wraps a single HTTP round-trip with
exponential backoff and jitter. Only transport-level failures
(``requests.ConnectionError`` / ``requests.Timeout``) and errors whose text
mentions a transient condition are retried; anything else propagates
immediately so that the caller can classify it.

Rate-limit *quota* handling is not done here: the REST client throttles
cooperatively from response headers and raises ``RateLimitExceeded`` when the
quota is exhausted.

Environment overrides:
  STORYSYNC_RETRY_ATTEMPTS (default 3)
  STORYSYNC_RETRY_BASE (seconds base, default 0.5)
  STORYSYNC_RETRY_MAX_SLEEP (optional cap in seconds)
"""

from __future__ import annotations

import logging
import os
import random
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

import requests

T = TypeVar("T")

logger = logging.getLogger(__name__)

TRANSIENT_TOKENS = (
    "abuse detection",
    "secondary rate",
    "connection reset",
    "temporarily unavailable",
    "timed out",
)

_RE_RETRY_AFTER = re.compile(r"retry[-\s]after:?\s*(\d+)", re.IGNORECASE)
_RE_SECONDS_HINT = re.compile(r"wait\s*(\d+)\s*seconds", re.IGNORECASE)
_JITTER = random.SystemRandom()


def _extract_explicit_backoff(text: str) -> float | None:
    """Extract an explicit backoff (seconds) from error output.

    Supports patterns like:
      Retry-After: 12
      retry after 12
      wait 30 seconds
    Returns None if no valid positive value found.
    """
    if not text:
        return None
    for pattern in (_RE_RETRY_AFTER, _RE_SECONDS_HINT):
        m = pattern.search(text)
        if m:
            val = float(m.group(1))
            return val if val > 0 else None
    return None


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, str(default)))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, str(default)))
    except ValueError:
        return default


@dataclass
class RetryConfig:
    attempts: int = field(default_factory=lambda: _env_int("STORYSYNC_RETRY_ATTEMPTS", 3))
    base_sleep: float = field(default_factory=lambda: _env_float("STORYSYNC_RETRY_BASE", 0.5))


def is_transient(output: str) -> bool:
    out_lower = output.lower()
    return any(tok in out_lower for tok in TRANSIENT_TOKENS)


def is_transient_exception(exc: BaseException) -> bool:
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return True
    return is_transient(str(exc))


def _compute_sleep(attempt: int, cfg: RetryConfig, out: str) -> float:
    explicit = _extract_explicit_backoff(out)
    backoff = cfg.base_sleep * (2 ** (attempt - 1)) + _JITTER.uniform(0, 0.25)
    sleep_for: float = explicit if explicit is not None else backoff
    max_cap_env = os.environ.get("STORYSYNC_RETRY_MAX_SLEEP")
    if max_cap_env:
        try:
            cap = float(max_cap_env)
        except ValueError:
            return sleep_for
        if cap >= 0:
            sleep_for = min(sleep_for, cap)
    return sleep_for


def run_with_retries(
    fn: Callable[[], T],
    *,
    cfg: RetryConfig | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    cfg = cfg or RetryConfig()
    attempts = max(1, cfg.attempts)
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except requests.RequestException as exc:
            if attempt >= attempts or not is_transient_exception(exc):
                raise
            sleep_for = _compute_sleep(attempt, cfg, str(exc))
            logger.warning(
                "transient error, attempt %d/%d, sleeping %.2fs: %s",
                attempt,
                attempts,
                sleep_for,
                exc,
            )
            sleep(sleep_for)
    raise RuntimeError("retry logic exited unexpectedly")  # pragma: no cover


__all__ = ["RetryConfig", "run_with_retries", "is_transient", "is_transient_exception"]
