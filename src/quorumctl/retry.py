"""Bounded polling shared by the preflight gates."""
from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

from .config import PollingConfig


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Attempt count and fixed interval between attempts."""

    attempts: int = 30
    interval: float = 0.5

    def __post_init__(self) -> None:
        """Reject policies that could never run."""
        if self.attempts < 1:
            raise ValueError("RetryPolicy.attempts must be at least 1.")
        if self.interval < 0:
            raise ValueError("RetryPolicy.interval must not be negative.")

    @classmethod
    def single(cls) -> RetryPolicy:
        """Return a policy that tries exactly once."""
        return cls(attempts=1, interval=0.0)

    @classmethod
    def from_config(cls, polling: PollingConfig) -> RetryPolicy:
        """Build a policy from the ``polling`` configuration section."""
        return cls(attempts=polling.attempts, interval=polling.interval)

    @property
    def timeout(self) -> float:
        """Upper bound on the time spent sleeping, in seconds."""
        return self.attempts * self.interval

    def poll(
        self,
        check: Callable[[], bool],
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> int | None:
        """Call *check* until it returns ``True``.

        Returns the 1-based attempt that succeeded, or ``None`` once every
        attempt has failed. The interval is slept after each failed attempt,
        so an exhausted policy takes :attr:`timeout` seconds.
        """
        for attempt in range(1, self.attempts + 1):
            if check():
                return attempt
            sleep(self.interval)
        return None


__all__ = ["RetryPolicy"]
