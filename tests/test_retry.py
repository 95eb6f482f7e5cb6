"""Tests for the bounded polling policy."""
from __future__ import annotations

import pytest

from quorumctl.config import PollingConfig
from quorumctl.retry import RetryPolicy


def test_poll_returns_first_successful_attempt() -> None:
    """The attempt number is 1-based and sleeps follow each failure."""
    outcomes = iter([False, False, True])
    sleeps: list[float] = []

    policy = RetryPolicy(attempts=5, interval=0.5)

    attempt = policy.poll(lambda: next(outcomes), sleep=sleeps.append)

    assert attempt == 3
    assert sleeps == [0.5, 0.5]


def test_poll_exhaustion_returns_none() -> None:
    """An exhausted policy sleeps once per attempt and reports ``None``."""
    calls: list[int] = []
    sleeps: list[float] = []

    def check() -> bool:
        calls.append(1)
        return False

    policy = RetryPolicy(attempts=4, interval=0.25)

    assert policy.poll(check, sleep=sleeps.append) is None
    assert len(calls) == 4
    assert sum(sleeps) == policy.timeout == 1.0


def test_single_policy_tries_once() -> None:
    """``single`` is a one-shot probe."""
    policy = RetryPolicy.single()

    assert policy.attempts == 1
    assert policy.timeout == 0.0


def test_from_config_uses_polling_section() -> None:
    """The policy mirrors the ``polling`` configuration."""
    policy = RetryPolicy.from_config(PollingConfig(attempts=60, interval=0.2))

    assert policy == RetryPolicy(attempts=60, interval=0.2)


@pytest.mark.parametrize(("attempts", "interval"), [(0, 0.5), (3, -0.1)])
def test_invalid_policy_rejected(attempts: int, interval: float) -> None:
    """Policies that could never run are rejected up front."""
    with pytest.raises(ValueError):
        RetryPolicy(attempts=attempts, interval=interval)
