import time

import pytest

from gc_provider.core.errors import ApiError, RetryableError, RetryTimeoutError, ValidationError
from gc_provider.core.retry import retry_until, with_retries, with_retries_for_read
from gc_provider.core.state import ResourceData


class Flaky:
    """Fails with a retryable error *failures* times, then returns *value*."""

    def __init__(self, failures, value="done", error=None):
        self.failures = failures
        self.value = value
        self.error = error or ValueError("not yet")
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise RetryableError(self.error)
        return self.value


def test_returns_after_retryable_failures():
    op = Flaky(3)
    assert retry_until(2, op, min_delay=0.001) == "done"
    assert op.calls == 4


def test_terminal_error_is_not_retried():
    calls = []

    def op():
        calls.append(1)
        raise ValidationError("bad input")

    with pytest.raises(ValidationError):
        retry_until(2, op, min_delay=0.001)
    assert len(calls) == 1


def test_timeout_keeps_last_retryable_error():
    op = Flaky(10_000, error=ValueError("still pending"))
    with pytest.raises(RetryTimeoutError) as ei:
        retry_until(0.1, op, min_delay=0.01, max_delay=0.02)
    err = ei.value
    assert not err.stalled
    assert "still pending" in str(err)
    assert err.attempts == op.calls >= 2


def test_backoff_doubles_up_to_max(monkeypatch):
    sleeps = []
    monkeypatch.setattr("gc_provider.core.retry.time.sleep", lambda s: sleeps.append(s))
    retry_until(60, Flaky(5), min_delay=1, max_delay=4)
    assert sleeps == [1, 2, 4, 4, 4]


def test_expired_deadline_restarts_once_with_fresh_window():
    op = Flaky(1)
    expired = time.monotonic() - 1
    assert with_retries(1, op, deadline=expired, min_delay=0.001) == "done"
    assert op.calls == 2


def test_restart_is_bounded():
    op = Flaky(10_000)
    expired = time.monotonic() - 1
    with pytest.raises(RetryTimeoutError) as ei:
        with_retries(0.05, op, deadline=expired, min_delay=0.01)
    assert not ei.value.stalled
    assert op.calls >= 1


def test_read_not_found_clears_id():
    data = ResourceData(id="sg-1")

    def op():
        raise ApiError(404, "GET", "/x")

    assert with_retries_for_read(data, op, timeout=1, min_delay=0.001) is None
    assert data.id == ""


def test_read_window_ending_on_not_found_clears_id():
    data = ResourceData(id="sg-1")
    op = Flaky(10_000, error=ApiError(404, "GET", "/x"))
    assert with_retries_for_read(data, op, timeout=0.05, min_delay=0.01) is None
    assert data.id == ""


def test_read_other_timeouts_propagate():
    data = ResourceData(id="sg-1")
    op = Flaky(10_000, error=ApiError(503, "GET", "/x"))
    with pytest.raises(RetryTimeoutError):
        with_retries_for_read(data, op, timeout=0.05, min_delay=0.01)
    assert data.id == "sg-1"
