import random

import pytest

from core.exceptions import HttpStatusError, RetryExhausted
from core.infra.retry import RetryPolicy, retry_with_backoff

from conftest import run


def test_window_grows_by_multiplier():
    policy = RetryPolicy(max_retries=3, min_delay=5, max_delay=15, multiplier=1.5)
    assert policy.window(1) == (5, 15)
    assert policy.window(2) == (7.5, 22.5)
    assert policy.window(3) == (11.25, 33.75)


def test_invalid_policy():
    with pytest.raises(ValueError):
        RetryPolicy(max_retries=-1, min_delay=1, max_delay=2)
    with pytest.raises(ValueError):
        RetryPolicy(max_retries=1, min_delay=3, max_delay=2)


def test_succeeds_after_retries(clock):
    outcomes = [ValueError("a"), ValueError("b"), "ok"]
    failures = []

    async def operation():
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    policy = RetryPolicy(max_retries=3, min_delay=1, max_delay=2)
    result = run(retry_with_backoff(
        operation,
        policy,
        on_failure=lambda exc, attempt: failures.append(attempt),
        sleep=clock.sleep,
        rng=random.Random(1),
    ))

    assert result == "ok"
    assert failures == [0, 1]
    assert len(clock.sleeps) == 2
    assert 1 <= clock.sleeps[0] <= 2
    assert 1.5 <= clock.sleeps[1] <= 3


def test_exhaustion_carries_every_error(clock):
    calls = []

    async def operation():
        calls.append(1)
        raise ValueError(f"fail {len(calls)}")

    policy = RetryPolicy(max_retries=2, min_delay=0, max_delay=0)
    with pytest.raises(RetryExhausted) as info:
        run(retry_with_backoff(operation, policy, sleep=clock.sleep))

    assert len(calls) == 3
    assert info.value.attempts == 2
    assert [str(e) for e in info.value.errors] == ["fail 1", "fail 2", "fail 3"]


def test_non_retryable_errors_propagate_immediately(clock):
    calls = []

    async def operation():
        calls.append(1)
        raise HttpStatusError(500, "Server Error")

    policy = RetryPolicy(max_retries=3, min_delay=0, max_delay=0)
    with pytest.raises(HttpStatusError):
        run(retry_with_backoff(
            operation,
            policy,
            retry_on=(HttpStatusError,),
            should_retry=lambda exc: exc.status == 417,
            sleep=clock.sleep,
        ))
    assert len(calls) == 1
    assert clock.sleeps == []


def test_async_failure_hook_is_awaited(clock):
    seen = []

    async def hook(exc, attempt):
        seen.append((str(exc), attempt))

    async def operation():
        raise ValueError("x")

    policy = RetryPolicy(max_retries=1, min_delay=0, max_delay=0)
    with pytest.raises(RetryExhausted):
        run(retry_with_backoff(operation, policy, on_failure=hook, sleep=clock.sleep))
    assert seen == [("x", 0), ("x", 1)]
