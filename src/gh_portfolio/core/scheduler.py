from __future__ import annotations

import enum
import heapq
import itertools
import logging
import os
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from ..integrations.http_client import GateSlot, RateGate, as_transport_failure
from .backoff import RandomSource
from .errors import RequestFailure
from .job_queue import Job, JobQueue, JobState
from .retry_policy import RetryConfig, RetryPolicy

logger = logging.getLogger(__name__)


class Priority(enum.IntEnum):
    """Conventional priority bands. The scheduler only compares the numbers."""

    CRITICAL = 10  # account repository listing
    HIGH = 8  # updated within 30 days
    MEDIUM = 5  # updated within 180 days
    LOW = 2
    RETRY = 1  # not used: retried jobs keep their original priority
    DEFAULT = 0


@dataclass(frozen=True)
class SchedulerConfig:
    min_interval_s: float = 0.05
    max_concurrent: int = 6
    max_retries: int = 3
    backoff_base_s: float = 0.5
    backoff_multiplier: float = 2.0
    max_backoff_s: float = 30.0

    def __post_init__(self) -> None:
        if self.max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {self.max_concurrent}")
        if self.min_interval_s < 0:
            raise ValueError(f"min_interval_s must be >= 0, got {self.min_interval_s}")
        # the remaining fields are checked by RetryConfig
        self.retry_config()

    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_attempts=self.max_retries,
            base_sleep_s=self.backoff_base_s,
            multiplier=self.backoff_multiplier,
            max_sleep_s=self.max_backoff_s,
        )


_ENV_FIELDS: tuple[tuple[str, str, type], ...] = (
    ("GH_PORTFOLIO_MIN_INTERVAL", "min_interval_s", float),
    ("GH_PORTFOLIO_MAX_CONCURRENT", "max_concurrent", int),
    ("GH_PORTFOLIO_MAX_RETRIES", "max_retries", int),
    ("GH_PORTFOLIO_BACKOFF_BASE", "backoff_base_s", float),
    ("GH_PORTFOLIO_BACKOFF_MULTIPLIER", "backoff_multiplier", float),
    ("GH_PORTFOLIO_MAX_BACKOFF", "max_backoff_s", float),
)


def load_scheduler_config_from_env(environ: Mapping[str, str] | None = None, **overrides: Any) -> SchedulerConfig:
    """
    Build a SchedulerConfig from GH_PORTFOLIO_* environment variables.

    Keyword overrides that are not None win over the environment.
    """
    env = os.environ if environ is None else environ
    values: dict[str, Any] = {}
    for var, field_name, cast in _ENV_FIELDS:
        raw = (env.get(var) or "").strip()
        if not raw:
            continue
        try:
            values[field_name] = cast(raw)
        except ValueError as exc:
            raise ValueError(f"invalid {var}={raw!r}: {exc}") from exc
    values.update({k: v for k, v in overrides.items() if v is not None})
    return SchedulerConfig(**values)


class RequestScheduler:
    """
    Runs zero-argument request thunks with priority ordering, request spacing,
    a concurrency limit and retries.

    One dispatcher thread owns the pending queue and the retry backlog; worker
    threads only execute thunks and hand results back under the same lock.
    Retry waits happen in the backlog, never while holding a gate slot.
    """

    def __init__(
        self,
        config: SchedulerConfig | None = None,
        *,
        rng: RandomSource | None = None,
        clock: Callable[[], float] | None = None,
        name: str = "scheduler",
    ) -> None:
        self.config = config or SchedulerConfig()
        self.name = name
        self._clock = clock or time.monotonic
        self._gate = RateGate(self.config.min_interval_s, self.config.max_concurrent, clock=self._clock)
        self._policy = RetryPolicy(self.config.retry_config(), rng=rng)
        self._queue = JobQueue()
        self._retry_backlog: list[tuple[float, int, Job]] = []
        self._cond = threading.Condition()
        self._job_ids = itertools.count(1)
        self._backlog_seq = itertools.count()
        self._outstanding = 0
        self._closed = False
        self._pool = ThreadPoolExecutor(max_workers=self.config.max_concurrent, thread_name_prefix=f"{name}-worker")
        self._dispatcher = threading.Thread(target=self._dispatch_loop, name=f"{name}-dispatcher", daemon=True)
        self._dispatcher.start()
        logger.debug(
            "%s started min_interval=%.3fs max_concurrent=%s max_retries=%s",
            name,
            self.config.min_interval_s,
            self.config.max_concurrent,
            self.config.max_retries,
        )

    @property
    def gate(self) -> RateGate:
        return self._gate

    def schedule(self, thunk: Callable[[], Any], priority: int = 0) -> Future:
        if not callable(thunk):
            raise TypeError(f"thunk must be callable, got {type(thunk).__name__}")
        job = Job(thunk=thunk, priority=int(priority), job_id=next(self._job_ids))
        fut = job.outcome
        assert fut is not None
        # running from the start: jobs are not cancellable once submitted
        fut.set_running_or_notify_cancel()
        with self._cond:
            if self._closed:
                raise RuntimeError(f"{self.name} is closed")
            self._outstanding += 1
            self._queue.push(job)
            self._cond.notify_all()
        return fut

    def status(self) -> dict[str, Any]:
        with self._cond:
            return {
                "queued": len(self._queue),
                "retry_waiting": len(self._retry_backlog),
                "active": self._gate.active_count,
                "outstanding": self._outstanding,
                "closed": self._closed,
            }

    def close(self, wait: bool = True) -> None:
        """
        Refuse new jobs. Outstanding jobs, pending retries included, still run to
        completion; the dispatcher shuts the worker pool down once they have.
        With ``wait=False`` this returns immediately instead of joining the threads.
        """
        with self._cond:
            self._closed = True
            self._cond.notify_all()
        if not wait:
            return
        self._dispatcher.join()
        self._pool.shutdown(wait=True)

    def __enter__(self) -> RequestScheduler:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _promote_due_retries(self) -> None:
        now = self._clock()
        while self._retry_backlog and self._retry_backlog[0][0] <= now:
            _, _, job = heapq.heappop(self._retry_backlog)
            job.move_to(JobState.QUEUED)
            self._queue.push(job)

    def _next_retry_in(self) -> float | None:
        if not self._retry_backlog:
            return None
        return max(0.0, self._retry_backlog[0][0] - self._clock())

    def _dispatch_loop(self) -> None:
        while True:
            with self._cond:
                while True:
                    self._promote_due_retries()
                    if self._queue:
                        break
                    if self._closed and self._outstanding == 0:
                        logger.debug("%s dispatcher stopped", self.name)
                        # nothing left to submit; close(wait=False) relies on this
                        self._pool.shutdown(wait=False)
                        return
                    self._cond.wait(self._next_retry_in())

            slot = self._gate.admit()

            # pop after admission so the slot goes to the best job present right now
            with self._cond:
                self._promote_due_retries()
                job = self._queue.pop()
                assert job is not None, "only the dispatcher pops"
                job.move_to(JobState.ADMITTED)
            logger.debug("dispatch job=%s priority=%s attempt=%s", job.job_id, job.priority, job.attempt)
            self._pool.submit(self._execute, job, slot)

    def _execute(self, job: Job, slot: GateSlot) -> None:
        failure: BaseException | None = None
        result: Any = None
        with slot:
            job.move_to(JobState.EXECUTING)
            try:
                result = job.thunk()
            except BaseException as exc:  # noqa: BLE001
                # SystemExit/KeyboardInterrupt end up in the job's future like any other failure
                failure = exc

        if failure is None:
            job.succeed(result)
            self._job_finished()
            return

        failure = as_transport_failure(failure) or failure
        attempt = job.attempt + 1
        decision = self._policy.evaluate(failure, attempt)
        if decision.retry:
            with self._cond:
                job.attempt = attempt
                job.move_to(JobState.RETRYING)
                heapq.heappush(
                    self._retry_backlog,
                    (self._clock() + decision.delay_s, next(self._backlog_seq), job),
                )
                self._cond.notify_all()
            logger.warning(
                "retry scheduled job=%s attempt=%s/%s delay=%.2fs reason=%s err=%s",
                job.job_id,
                attempt,
                self.config.max_retries,
                decision.delay_s,
                decision.reason,
                str(failure)[:200],
            )
            return

        if isinstance(failure, RequestFailure):
            failure.attempts = attempt
            failure.exhausted = failure.retryable
        logger.debug("job=%s failed after %s attempt(s): %s", job.job_id, attempt, decision.reason)
        job.fail(failure)
        self._job_finished()

    def _job_finished(self) -> None:
        with self._cond:
            self._outstanding -= 1
            self._cond.notify_all()
