"""Tests for the retry policy."""

from __future__ import annotations

import threading
from typing import List, Tuple

import pytest
import requests

from cachecrawler.retry import RetryPolicy, execute, is_transient
from conftest import FakeResponse

NO_WAIT = RetryPolicy(max_attempts=5, initial_delay=0.0, max_delay=0.0)


class Flaky:
    """Fails ``failures`` times with a connection error, then returns ``value``."""

    def __init__(self, failures: int, value: str = "ok") -> None:
        self.failures = failures
        self.value = value
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise requests.ConnectionError(f"reset #{self.calls}")
        return self.value


def http_error(status: int) -> requests.HTTPError:
    return requests.HTTPError(f"{status} Error", response=FakeResponse(status))


def test_succeeds_after_transient_failures() -> None:
    seen: List[Tuple[int, str]] = []
    op = Flaky(failures=2)

    result = execute(op, NO_WAIT, on_failure=lambda n, e: seen.append((n, str(e))))

    assert result == "ok"
    assert op.calls == 3
    assert seen == [(1, "reset #1"), (2, "reset #2")]


def test_exhausted_attempts_raise_last_error() -> None:
    seen: List[int] = []
    op = Flaky(failures=100)

    with pytest.raises(requests.ConnectionError, match="reset #5"):
        execute(op, NO_WAIT, on_failure=lambda n, e: seen.append(n))

    assert op.calls == 5
    assert seen == [1, 2, 3, 4, 5]


def test_non_transient_error_not_retried() -> None:
    seen: List[int] = []
    calls = []

    def op() -> None:
        calls.append(1)
        raise http_error(404)

    with pytest.raises(requests.HTTPError):
        execute(op, NO_WAIT, on_failure=lambda n, e: seen.append(n))

    assert len(calls) == 1
    assert seen == [1]


def test_server_errors_are_retried() -> None:
    calls = []

    def op() -> str:
        calls.append(1)
        if len(calls) < 3:
            raise http_error(503)
        return "done"

    assert execute(op, NO_WAIT) == "done"
    assert len(calls) == 3


def test_delays_use_full_jitter_under_cap() -> None:
    policy = RetryPolicy(max_attempts=5, initial_delay=1.0, factor=2.0, max_delay=3.0)
    sleeps: List[float] = []

    with pytest.raises(requests.ConnectionError):
        execute(Flaky(failures=100), policy, sleep=sleeps.append)

    assert len(sleeps) == 4
    for delay, ceiling in zip(sleeps, [1.0, 2.0, 3.0, 3.0]):
        assert 0.0 <= delay <= ceiling


def test_cancel_stops_retrying() -> None:
    cancel = threading.Event()
    cancel.set()
    op = Flaky(failures=100)

    with pytest.raises(requests.ConnectionError):
        execute(op, RetryPolicy(max_attempts=5, initial_delay=10.0), cancel=cancel)

    assert op.calls == 1


@pytest.mark.parametrize(
    "exc, expected",
    [
        (requests.ConnectionError("reset"), True),
        (requests.Timeout("slow"), True),
        (http_error(500), True),
        (http_error(429), True),
        (http_error(403), False),
        (ValueError("bad"), False),
    ],
)
def test_is_transient(exc: BaseException, expected: bool) -> None:
    assert is_transient(exc) is expected
