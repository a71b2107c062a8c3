from __future__ import annotations

import pytest
import requests

from storysync import retry

FIRST_SUCCESS_ATTEMPT = 2  # transient once then success


def test_is_transient_tokens():
    assert retry.is_transient('secondary rate limit triggered')
    assert retry.is_transient('ABUSE DETECTION mechanism')
    assert retry.is_transient('Connection reset by peer')
    assert not retry.is_transient('some other error')


def test_transport_errors_are_transient():
    assert retry.is_transient_exception(requests.ConnectionError("down"))
    assert retry.is_transient_exception(requests.Timeout("slow"))
    assert not retry.is_transient_exception(requests.HTTPError("bad request"))


def test_run_with_retries_transient_then_success():
    attempts: list[int] = []
    sleeps: list[float] = []

    def fn():
        attempts.append(1)
        if len(attempts) < FIRST_SUCCESS_ATTEMPT:
            raise requests.ConnectionError('connection reset')
        return 'ok'

    cfg = retry.RetryConfig(attempts=3, base_sleep=0.01)
    result = retry.run_with_retries(fn, cfg=cfg, sleep=sleeps.append)

    assert result == 'ok'
    assert len(attempts) == FIRST_SUCCESS_ATTEMPT
    assert len(sleeps) == 1


def test_non_transient_error_propagates_immediately():
    calls: list[int] = []

    def fn():
        calls.append(1)
        raise requests.HTTPError('400 bad request')

    with pytest.raises(requests.HTTPError):
        retry.run_with_retries(fn, cfg=retry.RetryConfig(attempts=5, base_sleep=0), sleep=lambda _s: None)
    assert calls == [1]


def test_gives_up_after_configured_attempts():
    calls: list[int] = []

    def fn():
        calls.append(1)
        raise requests.Timeout('timed out')

    with pytest.raises(requests.Timeout):
        retry.run_with_retries(fn, cfg=retry.RetryConfig(attempts=3, base_sleep=0), sleep=lambda _s: None)
    assert len(calls) == 3


def test_explicit_backoff_hint_is_used(monkeypatch):
    monkeypatch.delenv('STORYSYNC_RETRY_MAX_SLEEP', raising=False)
    sleeps: list[float] = []
    seen: list[int] = []

    def fn():
        seen.append(1)
        if len(seen) == 1:
            raise requests.ConnectionError('secondary rate limit, Retry-After: 7')
        return 1

    retry.run_with_retries(fn, cfg=retry.RetryConfig(attempts=2, base_sleep=0), sleep=sleeps.append)
    assert sleeps == [7.0]


def test_max_sleep_cap(monkeypatch):
    monkeypatch.setenv('STORYSYNC_RETRY_MAX_SLEEP', '0.5')
    sleeps: list[float] = []
    seen: list[int] = []

    def fn():
        seen.append(1)
        if len(seen) == 1:
            raise requests.ConnectionError('please wait 30 seconds')
        return 1

    retry.run_with_retries(fn, cfg=retry.RetryConfig(attempts=2, base_sleep=0), sleep=sleeps.append)
    assert sleeps == [0.5]


def test_env_overrides_defaults(monkeypatch):
    monkeypatch.setenv('STORYSYNC_RETRY_ATTEMPTS', '7')
    monkeypatch.setenv('STORYSYNC_RETRY_BASE', 'not-a-number')
    cfg = retry.RetryConfig()
    assert cfg.attempts == 7
    assert cfg.base_sleep == 0.5
