from __future__ import annotations

from dataclasses import dataclass
import time

from thoth.invariants import never


@dataclass(frozen=True)
class Deadline:
    """Monotonic wall-clock budget handed to capability calls."""

    deadline_ns: int

    @classmethod
    def from_timeout_ms(cls, milliseconds: int) -> "Deadline":
        value = int(milliseconds)
        if value < 0:
            never("invalid timeout milliseconds", milliseconds=milliseconds)
        return cls(deadline_ns=time.monotonic_ns() + value * 1_000_000)

    def expired(self) -> bool:
        return time.monotonic_ns() >= self.deadline_ns

    def remaining_seconds(self) -> float:
        return max(0.0, (self.deadline_ns - time.monotonic_ns()) / 1_000_000_000)
