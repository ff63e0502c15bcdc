from __future__ import annotations

import enum
import heapq
import itertools
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Callable


class JobState(str, enum.Enum):
    QUEUED = "queued"
    ADMITTED = "admitted"
    EXECUTING = "executing"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


_TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.QUEUED: frozenset({JobState.ADMITTED}),
    JobState.ADMITTED: frozenset({JobState.EXECUTING}),
    JobState.EXECUTING: frozenset({JobState.SUCCEEDED, JobState.RETRYING, JobState.FAILED}),
    JobState.RETRYING: frozenset({JobState.QUEUED}),
    JobState.SUCCEEDED: frozenset(),
    JobState.FAILED: frozenset(),
}


class InvalidTransition(RuntimeError):
    pass


@dataclass(eq=False)
class Job:
    thunk: Callable[[], Any]
    priority: int = 0
    attempt: int = 0
    state: JobState = JobState.QUEUED
    job_id: int = 0
    outcome: Future | None = field(default_factory=Future, repr=False)

    @property
    def done(self) -> bool:
        return self.state in (JobState.SUCCEEDED, JobState.FAILED)

    def move_to(self, state: JobState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise InvalidTransition(f"job {self.job_id}: {self.state.value} -> {state.value}")
        self.state = state

    def succeed(self, result: Any) -> None:
        self.move_to(JobState.SUCCEEDED)
        self._take_outcome().set_result(result)

    def fail(self, exc: BaseException) -> None:
        self.move_to(JobState.FAILED)
        self._take_outcome().set_exception(exc)

    def _take_outcome(self) -> Future:
        # the slot is consumed on write; a second write has nothing to write to
        fut, self.outcome = self.outcome, None
        if fut is None:
            raise InvalidTransition(f"job {self.job_id}: outcome already delivered")
        return fut


class JobQueue:
    """
    Pending jobs ordered by priority (highest first), then by enqueue order.

    Not thread-safe: the scheduler guards every call with its own lock. A retried job
    gets a fresh sequence number, so it queues behind jobs of its band already waiting.
    """

    def __init__(self) -> None:
        self._heap: list[tuple[int, int, Job]] = []
        self._seq = itertools.count()

    def __len__(self) -> int:
        return len(self._heap)

    def __bool__(self) -> bool:
        return bool(self._heap)

    def push(self, job: Job) -> None:
        if job.state is not JobState.QUEUED:
            raise InvalidTransition(f"job {job.job_id}: cannot enqueue in state {job.state.value}")
        heapq.heappush(self._heap, (-int(job.priority), next(self._seq), job))

    def pop(self) -> Job | None:
        if not self._heap:
            return None
        _, _, job = heapq.heappop(self._heap)
        return job

    def peek(self) -> Job | None:
        return self._heap[0][2] if self._heap else None
