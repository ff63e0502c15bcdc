from __future__ import annotations

import random
from typing import Protocol


class RandomSource(Protocol):
    def uniform(self, a: float, b: float) -> float: ...


def backoff_ceiling(attempt: int, *, base_s: float = 0.5, cap_s: float = 30.0, multiplier: float = 2.0) -> float:
    """Upper bound of the jitter window for the given (1-indexed) retry attempt."""
    if attempt < 0:
        raise ValueError(f"attempt must be >= 0, got {attempt}")
    base = max(0.0, float(base_s))
    cap = max(0.0, float(cap_s))
    try:
        exp = base * (float(multiplier) ** attempt)
    except OverflowError:
        return cap
    return min(cap, exp)


def backoff_delay(
    attempt: int,
    *,
    base_s: float = 0.5,
    cap_s: float = 30.0,
    multiplier: float = 2.0,
    rng: RandomSource | None = None,
) -> float:
    """
    Full-jitter exponential backoff: uniform(0, min(cap, base * multiplier**attempt)).

    Jitter spans the whole window so that jobs failing together do not retry together.
    """
    ceiling = backoff_ceiling(attempt, base_s=base_s, cap_s=cap_s, multiplier=multiplier)
    source = rng if rng is not None else random
    delay = float(source.uniform(0.0, ceiling))
    # uniform() may round to the upper bound; keep the result inside the window
    return min(max(0.0, delay), ceiling)
