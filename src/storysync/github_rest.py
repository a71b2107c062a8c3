from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import requests

from .logging import get_logger
from .models import Issue
from .retry import RetryConfig, run_with_retries

DEFAULT_API_URL = "https://api.github.com"
USER_AGENT = "storysync-rest/0.2.0"
PER_PAGE = 100
HTTP_ERROR_STATUS = 300
HTTP_FORBIDDEN = 403
DEFAULT_RATE_LIMIT = 5000

REQUIRED_LABELS = (
    "complexity:small",
    "complexity:medium",
    "complexity:large",
    "priority:high",
    "priority:medium",
    "priority:low",
    "priority:post-mvp",
)


class ApiError(RuntimeError):
    """Raised when the GitHub REST API answers with a non-2xx status."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        response_text: str | None = None,
    ):
        super().__init__(message)
        self.status = status
        self.response_text = response_text


class RateLimitExceeded(ApiError):
    """403 with an exhausted primary quota; ``reset_at`` is human-readable."""

    def __init__(self, message: str, *, reset_epoch: int, response_text: str | None = None):
        super().__init__(message, status=HTTP_FORBIDDEN, response_text=response_text)
        self.reset_epoch = reset_epoch
        self.reset_at = format_reset(reset_epoch)


def format_reset(reset_epoch: int) -> str:
    if reset_epoch <= 0:
        return "unknown"
    return datetime.fromtimestamp(reset_epoch, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


@dataclass
class LabelCheck:
    exists: bool
    missing: list[str]
    error: str | None = None


@dataclass
class GitHubRestClient:
    """Rate-limit aware REST client for GitHub issue operations.

    Quota counters are per instance: every response refreshes ``remaining``
    and ``reset_epoch`` from the ``x-ratelimit-*`` headers and, once
    ``remaining`` drops below ``rate_limit_threshold``, the next request first
    sleeps until the reset time (capped by ``max_rate_limit_pause``).
    """

    token: str
    repo: str
    base_url: str = DEFAULT_API_URL
    session: requests.Session | None = None
    rate_limit_threshold: int = 100
    max_rate_limit_pause: float = 60.0
    retry: RetryConfig | None = None
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], float] = time.time
    remaining: int = DEFAULT_RATE_LIMIT
    reset_epoch: int = 0
    _session: requests.Session = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._session = self.session or requests.Session()
        self._session.headers.setdefault("Authorization", f"Bearer {self.token}")
        self._session.headers.setdefault("Accept", "application/vnd.github+json")
        self._session.headers.setdefault("User-Agent", USER_AGENT)

    # ---- rate limit bookkeeping --------------------------------------
    def _throttle(self) -> None:
        if self.remaining >= self.rate_limit_threshold:
            return
        now = self.clock()
        if self.reset_epoch <= now:
            return
        wait = min(self.reset_epoch - now + 0.1, self.max_rate_limit_pause)
        get_logger().log_rate_limit_pause(wait, self.remaining)
        self.sleep(wait)

    def _record_rate_limit(self, response: requests.Response) -> None:
        headers = getattr(response, "headers", None) or {}
        remaining = headers.get("x-ratelimit-remaining")
        reset = headers.get("x-ratelimit-reset")
        if remaining is not None:
            try:
                self.remaining = int(remaining)
            except ValueError:
                pass
        if reset is not None:
            try:
                self.reset_epoch = int(reset)
            except ValueError:
                pass

    # ---- REST helpers -------------------------------------------------
    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
    ) -> Any:
        url = (
            path
            if path.startswith("http")
            else f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"
        )
        self._throttle()

        def _run() -> requests.Response:
            return self._session.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=self._session.headers,
                timeout=30,
            )

        response = run_with_retries(_run, cfg=self.retry, sleep=self.sleep)
        self._record_rate_limit(response)
        if response.status_code >= HTTP_ERROR_STATUS or response.status_code < 200:
            headers = getattr(response, "headers", None) or {}
            if (
                response.status_code == HTTP_FORBIDDEN
                and str(headers.get("x-ratelimit-remaining")) == "0"
            ):
                raise RateLimitExceeded(
                    "GitHub API rate limit exceeded. Resets at "
                    + format_reset(self.reset_epoch),
                    reset_epoch=self.reset_epoch,
                    response_text=response.text,
                )
            raise ApiError(
                f"GitHub API {method} {url} failed ({response.status_code}): {response.text}",
                status=response.status_code,
                response_text=response.text,
            )
        if response.text:
            try:
                return response.json()
            except ValueError:
                return response.text
        return None

    # ---- Issue operations --------------------------------------------
    def list_issues(
        self, *, labels: Iterable[str] | None = None, state: str = "all"
    ) -> list[Issue]:
        """Fetch every issue page by page until an empty page.

        A failing page ends the loop and the issues gathered so far are
        returned.
        """
        params: dict[str, Any] = {"state": state, "per_page": PER_PAGE, "page": 1}
        label_list = [label for label in (labels or []) if label]
        if label_list:
            params["labels"] = ",".join(label_list)
        out: list[Issue] = []
        while True:
            try:
                data = self._request("GET", f"/repos/{self.repo}/issues", params=dict(params))
            except ApiError as exc:
                get_logger().log_error(
                    f"Error fetching issues page {params['page']}; returning partial results",
                    error=str(exc),
                    page=params["page"],
                    fetched=len(out),
                )
                break
            if not isinstance(data, list) or not data:
                break
            page_issues = [
                Issue.from_api(entry)
                for entry in data
                if isinstance(entry, dict) and not entry.get("pull_request")
            ]
            out.extend(page_issues)
            params["page"] += 1
        return out

    def get_issue(self, number: int) -> Issue:
        data = self._request("GET", f"/repos/{self.repo}/issues/{number}")
        if not isinstance(data, dict):
            raise ApiError(f"Unexpected payload for issue #{number}", response_text=str(data))
        return Issue.from_api(data)

    def create_issue(
        self,
        *,
        title: str,
        body: str,
        labels: Iterable[str] | None = None,
    ) -> Issue:
        payload: dict[str, Any] = {"title": title, "body": body}
        if labels:
            payload["labels"] = list(labels)
        data = self._request("POST", f"/repos/{self.repo}/issues", json_body=payload)
        if not isinstance(data, dict):
            raise ApiError("Unexpected payload for created issue", response_text=str(data))
        return Issue.from_api(data)

    def update_issue(
        self,
        *,
        number: int,
        title: str | None = None,
        body: str | None = None,
        labels: Iterable[str] | None = None,
        state: str | None = None,
        state_reason: str | None = None,
    ) -> None:
        payload: dict[str, Any] = {}
        if title is not None:
            payload["title"] = title
        if body is not None:
            payload["body"] = body
        if labels is not None:
            payload["labels"] = list(labels)
        if state is not None:
            payload["state"] = state
        if state_reason is not None:
            payload["state_reason"] = state_reason
        if payload:
            self._request(
                "PATCH", f"/repos/{self.repo}/issues/{number}", json_body=payload
            )

    def close_issue(self, *, number: int, state_reason: str = "completed") -> None:
        self.update_issue(number=number, state="closed", state_reason=state_reason)

    def add_comment(self, *, number: int, body: str) -> None:
        self._request(
            "POST", f"/repos/{self.repo}/issues/{number}/comments", json_body={"body": body}
        )

    # ---- Labels ------------------------------------------------------
    def list_labels(self) -> list[str]:
        """Names of every repository label, page by page until an empty page."""
        params: dict[str, Any] = {"per_page": PER_PAGE, "page": 1}
        names: list[str] = []
        while True:
            data = self._request("GET", f"/repos/{self.repo}/labels", params=dict(params))
            if not isinstance(data, list) or not data:
                break
            for entry in data:
                if isinstance(entry, dict) and isinstance(entry.get("name"), str):
                    names.append(entry["name"])
            params["page"] += 1
        return names

    def verify_labels(self, required: Iterable[str] = REQUIRED_LABELS) -> LabelCheck:
        wanted = list(required)
        try:
            existing = {name.strip().lower() for name in self.list_labels()}
        except ApiError as exc:
            get_logger().warning(f"Could not verify labels: {exc}", operation="verify_labels")
            return LabelCheck(exists=False, missing=wanted, error=str(exc))
        missing = [label for label in wanted if label.strip().lower() not in existing]
        return LabelCheck(exists=not missing, missing=missing)


__all__ = [
    "ApiError",
    "RateLimitExceeded",
    "GitHubRestClient",
    "LabelCheck",
    "REQUIRED_LABELS",
    "format_reset",
]
