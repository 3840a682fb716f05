"""
Exponential backoff with full jitter around a single network call.
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

import requests
from tenacity import (
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    stop_when_event_set,
    wait_random_exponential,
)

T = TypeVar("T")

FailureObserver = Callable[[int, BaseException], None]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Attempt budget and backoff shape shared by page fetches and probes."""
    max_attempts: int = 5
    initial_delay: float = 0.1
    factor: float = 2.0
    max_delay: float = 30.0


def is_transient(exc: BaseException) -> bool:
    """Connection errors, timeouts, 5xx and 429 are worth another attempt."""
    if isinstance(exc, requests.HTTPError):
        response = exc.response
        if response is None:
            return True
        return response.status_code >= 500 or response.status_code == 429
    return isinstance(exc, (requests.ConnectionError, requests.Timeout))


def execute(
    operation: Callable[[], T],
    policy: RetryPolicy = RetryPolicy(),
    on_failure: Optional[FailureObserver] = None,
    cancel: Optional[threading.Event] = None,
    retry_on: Callable[[BaseException], bool] = is_transient,
    sleep: Optional[Callable[[float], object]] = None,
) -> T:
    """
    Run ``operation`` until it succeeds or the policy gives up.

    Each failed attempt is passed to ``on_failure`` with its 1-based attempt
    number before the next try. The delay before attempt ``n + 1`` is drawn
    uniformly from ``[0, min(max_delay, initial_delay * factor ** (n - 1))]``.
    When the attempts run out, or ``cancel`` is set, the last error is raised.
    """
    stop = stop_after_attempt(policy.max_attempts)
    if cancel is not None:
        stop = stop | stop_when_event_set(cancel)
        # Event.wait returns early once the run is cancelled
        sleep = sleep or cancel.wait

    retrying = Retrying(
        stop=stop,
        wait=wait_random_exponential(
            multiplier=policy.initial_delay,
            max=policy.max_delay,
            exp_base=policy.factor,
        ),
        retry=retry_if_exception(retry_on),
        sleep=sleep or time.sleep,
        reraise=True,
    )

    for attempt in retrying:
        with attempt:
            try:
                result = operation()
            except Exception as exc:
                if on_failure is not None:
                    on_failure(attempt.retry_state.attempt_number, exc)
                raise
    return result
