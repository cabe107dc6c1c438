from __future__ import annotations

import threading
import time

import pytest

from flow_commander.core.retry import RetryPolicy, wait_with_countdown


def test_exponential_backoff_is_capped() -> None:
    policy = RetryPolicy(retry_limit=10, base_s=5.0, cap_s=60.0)
    assert [policy.wait_seconds(k) for k in range(1, 7)] == [5.0, 10.0, 20.0, 40.0, 60.0, 60.0]


def test_huge_attempt_counts_stay_at_cap() -> None:
    assert RetryPolicy(base_s=1.0, cap_s=30.0).wait_seconds(10_000) == 30.0


def test_attempts_remaining() -> None:
    policy = RetryPolicy(retry_limit=3)
    assert policy.has_attempts_remaining(1)
    assert policy.has_attempts_remaining(2)
    assert not policy.has_attempts_remaining(3)


def test_invalid_policy_values() -> None:
    with pytest.raises(ValueError):
        RetryPolicy(retry_limit=0)
    with pytest.raises(ValueError):
        RetryPolicy(base_s=-1)
    with pytest.raises(ValueError):
        RetryPolicy().wait_seconds(0)


def test_wait_reports_whole_seconds_and_completes() -> None:
    ticks: list[int] = []
    assert wait_with_countdown(0.3, threading.Event(), on_tick=ticks.append, poll_interval_s=0.05)
    assert ticks == [1]


def test_zero_wait_returns_immediately() -> None:
    assert wait_with_countdown(0, threading.Event()) is True


def test_cancel_interrupts_wait_quickly() -> None:
    cancel = threading.Event()
    threading.Timer(0.1, cancel.set).start()

    started = time.monotonic()
    completed = wait_with_countdown(30.0, cancel, poll_interval_s=0.1)

    assert completed is False
    assert time.monotonic() - started < 1.0
