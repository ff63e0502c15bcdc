from __future__ import annotations

import logging
import threading
import time
from datetime import timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable

import requests

from ..core.errors import ClientError, RateLimitedError, ServerError, TransientNetworkError

RATE_LIMIT_REMAINING_HEADER = "X-RateLimit-Remaining"
RATE_LIMIT_RESET_HEADER = "X-RateLimit-Reset"
RETRY_AFTER_HEADER = "Retry-After"

# requests' own transport errors plus the builtin socket-level ones a bare thunk may raise
TRANSPORT_ERRORS = (
    requests.ConnectionError,
    requests.Timeout,
    requests.exceptions.ChunkedEncodingError,
    ConnectionError,
    TimeoutError,
)
logger = logging.getLogger(__name__)


def as_transport_failure(exc: BaseException, *, url: str | None = None) -> TransientNetworkError | None:
    """Wrap a raw transport error as ``TransientNetworkError``; anything else gives None."""
    if isinstance(exc, TransientNetworkError) or not isinstance(exc, TRANSPORT_ERRORS):
        return None
    failure = TransientNetworkError(f"{type(exc).__name__}: {exc}", url=url)
    failure.__cause__ = exc
    return failure


class GateSlot:
    """One admission; releasing it (explicitly or by leaving the ``with`` block) frees the slot."""

    def __init__(self, gate: RateGate) -> None:
        self._gate: RateGate | None = gate

    @property
    def released(self) -> bool:
        return self._gate is None

    def release(self) -> None:
        gate, self._gate = self._gate, None
        if gate is None:
            raise RuntimeError("gate slot released twice")
        gate.release()

    def __enter__(self) -> GateSlot:
        return self

    def __exit__(self, *exc_info: object) -> None:
        if self._gate is not None:
            self.release()


class RateGate:
    """
    Spacing plus concurrency limit for outgoing requests.

    ``admit`` blocks until fewer than ``max_concurrent`` requests are active and at
    least ``min_interval_s`` has passed since the previous admission. The interval is
    measured between admissions, not completions.
    """

    def __init__(
        self,
        min_interval_s: float = 0.05,
        max_concurrent: int = 6,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if int(max_concurrent) < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {max_concurrent}")
        self._min_interval_s = max(0.0, float(min_interval_s))
        self._max_concurrent = int(max_concurrent)
        self._clock = clock
        self._cond = threading.Condition()
        self._last_ts: float | None = None
        self._active = 0

    @property
    def active_count(self) -> int:
        with self._cond:
            return self._active

    def admit(self) -> GateSlot:
        with self._cond:
            while True:
                if self._active >= self._max_concurrent:
                    self._cond.wait()
                    continue
                now = self._clock()
                need = 0.0 if self._last_ts is None else self._min_interval_s - (now - self._last_ts)
                if need > 0:
                    self._cond.wait(need)
                    continue
                self._last_ts = now
                self._active += 1
                logger.debug("gate admit active=%s/%s", self._active, self._max_concurrent)
                return GateSlot(self)

    def release(self) -> None:
        with self._cond:
            if self._active <= 0:
                raise RuntimeError("RateGate.release() without a matching admit()")
            self._active -= 1
            self._cond.notify_all()


def _parse_retry_after(value: str | None, now: float) -> float | None:
    if value is None or not value.strip():
        return None
    text = value.strip()
    try:
        return max(0.0, float(text))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        # "-0000" parses naive; HTTP dates are always UTC
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, when.timestamp() - now)


def _status_message(resp: requests.Response, url: str | None) -> str:
    reason = f" {resp.reason}" if resp.reason else ""
    return f"HTTP {resp.status_code}{reason}: {url}"


def _parse_reset(value: str | None, now: float) -> float | None:
    if value is None or not value.strip():
        return None
    try:
        reset_epoch = float(value.strip())
    except ValueError:
        return None
    return max(0.0, reset_epoch - now)


class HttpClient:
    """
    Performs exactly one HTTP call per invocation and turns the response into either
    the unchanged ``requests.Response`` or a typed ``RequestFailure``.
    Retrying is the scheduler's job, not this class's.
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        *,
        default_timeout_s: float = 30.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.session = session or requests.Session()
        self.default_timeout_s = default_timeout_s
        self._clock = clock

    def get(self, url: str, *, headers: dict[str, str] | None = None, timeout_s: float | None = None) -> requests.Response:
        return self.execute("GET", url, headers=headers, timeout_s=timeout_s)

    def execute(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        timeout_s: float | None = None,
        **kwargs: Any,
    ) -> requests.Response:
        timeout = float(timeout_s or self.default_timeout_s)
        try:
            resp = self.session.request(method, url, headers=headers, timeout=timeout, **kwargs)
        except TRANSPORT_ERRORS as exc:
            raise TransientNetworkError(f"{method} {url}: {exc}", url=url) from exc
        return self.check_response(resp, url=url)

    def check_response(self, resp: requests.Response, *, url: str | None = None) -> requests.Response:
        status = resp.status_code
        url = url or resp.url
        now = self._clock()
        remaining = resp.headers.get(RATE_LIMIT_REMAINING_HEADER)
        reset = resp.headers.get(RATE_LIMIT_RESET_HEADER)

        if status == 403 and remaining is not None and remaining.strip() == "0":
            resume_after = _parse_reset(reset, now)
            logger.warning(
                "rate limit exhausted url=%s resume_after=%s",
                url,
                "unknown" if resume_after is None else f"{resume_after:.1f}s",
            )
            raise RateLimitedError(f"rate limit exceeded: {url}", status=status, resume_after_s=resume_after, url=url)

        if status == 429:
            resume_after = _parse_retry_after(resp.headers.get(RETRY_AFTER_HEADER), now)
            if resume_after is None:
                resume_after = _parse_reset(reset, now)
            raise RateLimitedError(f"too many requests: {url}", status=status, resume_after_s=resume_after, url=url)

        if status >= 500:
            raise ServerError(_status_message(resp, url), status=status, url=url)

        if not resp.ok:
            raise ClientError(_status_message(resp, url), status=status, url=url)

        return resp
