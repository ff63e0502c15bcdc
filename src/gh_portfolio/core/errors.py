from __future__ import annotations

import enum


class FailureKind(str, enum.Enum):
    TRANSIENT_NETWORK = "transient_network"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    CLIENT_ERROR = "client_error"


class RequestFailure(Exception):
    """
    A failed request as seen by the scheduler.

    Only the subclasses below are raised. When retries run out the last failure is
    surfaced as-is with ``exhausted`` set, so callers keep the original status.
    """

    kind: FailureKind

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        resume_after_s: float | None = None,
        url: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.resume_after_s = resume_after_s
        self.url = url
        self.attempts = 0
        self.exhausted = False

    @property
    def retryable(self) -> bool:
        return self.kind is not FailureKind.CLIENT_ERROR

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({str(self)!r}, status={self.status}, "
            f"resume_after_s={self.resume_after_s}, attempts={self.attempts}, exhausted={self.exhausted})"
        )


class TransientNetworkError(RequestFailure):
    kind = FailureKind.TRANSIENT_NETWORK


class RateLimitedError(RequestFailure):
    kind = FailureKind.RATE_LIMITED


class ServerError(RequestFailure):
    kind = FailureKind.SERVER_ERROR


class ClientError(RequestFailure):
    kind = FailureKind.CLIENT_ERROR
