from __future__ import annotations

import json
import time
from typing import Any, Callable

import pytest
import requests


def make_response(
    status: int = 200,
    *,
    body: Any = None,
    headers: dict[str, str] | None = None,
    url: str = "https://api.github.com/test",
    reason: str | None = None,
) -> requests.Response:
    resp = requests.Response()
    resp.status_code = status
    resp.reason = reason if reason is not None else ("OK" if status < 400 else "Error")
    resp.url = url
    resp.encoding = "utf-8"
    resp.headers.update(headers or {})
    resp._content = json.dumps(body).encode("utf-8") if body is not None else b""
    return resp


def wait_until(predicate: Callable[[], bool], timeout_s: float = 5.0, interval_s: float = 0.005) -> None:
    deadline = time.monotonic() + timeout_s
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        time.sleep(interval_s)


class ScriptedThunk:
    """Callable that plays back a list of results; exceptions in the list are raised."""

    def __init__(self, *outcomes: Any) -> None:
        self.outcomes = list(outcomes)
        self.calls = 0
        self.call_times: list[float] = []

    def __call__(self) -> Any:
        self.call_times.append(time.monotonic())
        outcome = self.outcomes[min(self.calls, len(self.outcomes) - 1)]
        self.calls += 1
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture
def fast_retry_config():
    from gh_portfolio.core.scheduler import SchedulerConfig

    return SchedulerConfig(min_interval_s=0.0, max_concurrent=4, max_retries=3, backoff_base_s=0.001, max_backoff_s=0.01)
