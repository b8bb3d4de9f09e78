from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable
import time

from tracemark.invariants import never


@dataclass(frozen=True)
class Deadline:
    """Wall-clock budget shared by every worker of one fan-out."""

    seconds: float | None
    monotonic_fn: Callable[[], float] = time.monotonic
    started: float = field(default=-1.0)

    def __post_init__(self) -> None:
        if self.seconds is not None and self.seconds <= 0:
            never("invalid deadline budget", seconds=self.seconds)
        if self.started < 0:
            object.__setattr__(self, "started", self.monotonic_fn())

    @classmethod
    def unbounded(cls) -> "Deadline":
        return cls(seconds=None)

    @classmethod
    def from_seconds(cls, seconds: float | None) -> "Deadline":
        if seconds is None or seconds <= 0:
            return cls.unbounded()
        return cls(seconds=float(seconds))

    def remaining(self) -> float | None:
        if self.seconds is None:
            return None
        elapsed = self.monotonic_fn() - self.started
        return max(0.0, self.seconds - elapsed)

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0.0
