from __future__ import annotations

from dataclasses import dataclass

from ..integrations.http_client import as_transport_failure
from .backoff import RandomSource, backoff_delay
from .errors import FailureKind, RequestFailure


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    base_sleep_s: float = 0.5
    multiplier: float = 2.0
    max_sleep_s: float = 30.0

    def __post_init__(self) -> None:
        if self.max_attempts < 0:
            raise ValueError(f"max_attempts must be >= 0, got {self.max_attempts}")
        if self.base_sleep_s < 0 or self.max_sleep_s < 0:
            raise ValueError("backoff durations must be >= 0")
        if self.multiplier < 1:
            raise ValueError(f"multiplier must be >= 1, got {self.multiplier}")


@dataclass(frozen=True)
class RetryDecision:
    retry: bool
    delay_s: float = 0.0
    reason: str = ""

    @classmethod
    def terminal(cls, reason: str) -> "RetryDecision":
        return cls(retry=False, reason=reason)


class RetryPolicy:
    def __init__(self, config: RetryConfig | None = None, *, rng: RandomSource | None = None) -> None:
        self.config = config or RetryConfig()
        self._rng = rng

    def backoff(self, attempt: int) -> float:
        cfg = self.config
        return backoff_delay(
            attempt,
            base_s=cfg.base_sleep_s,
            cap_s=cfg.max_sleep_s,
            multiplier=cfg.multiplier,
            rng=self._rng,
        )

    def evaluate(self, failure: BaseException, attempt: int) -> RetryDecision:
        """
        Decide what happens after a failed execution.

        ``attempt`` is the 1-indexed retry that would follow, i.e. the number of
        failures seen so far including this one. The decision never re-enqueues
        anything itself. Raw transport errors (``requests.ConnectionError``,
        builtin ``ConnectionError``/``TimeoutError``...) count as transient.
        """
        if not isinstance(failure, RequestFailure):
            wrapped = as_transport_failure(failure)
            if wrapped is None:
                return RetryDecision.terminal(f"unexpected {type(failure).__name__}")
            failure = wrapped
        if not failure.retryable:
            return RetryDecision.terminal(f"{failure.kind.value} status={failure.status}")
        if attempt > self.config.max_attempts:
            return RetryDecision.terminal(f"retries exhausted after {attempt} attempts")

        if failure.kind is FailureKind.RATE_LIMITED and failure.resume_after_s is not None:
            return RetryDecision(retry=True, delay_s=max(0.0, float(failure.resume_after_s)), reason="rate limit reset")
        return RetryDecision(retry=True, delay_s=self.backoff(attempt), reason=failure.kind.value)
