"""Tests for the exponential backoff retry wrapper."""

import random

import pytest

from fusion_export.utils.retry import RetryPolicy, is_retryable, retry_async


class Flaky:
    """Callable failing a fixed number of times before succeeding."""

    def __init__(self, failures, value="ok"):
        self.failures = list(failures)
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.value


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class PermanentError(Exception):
    retryable = False


class TestRetryPolicy:
    """Tests for RetryPolicy delays and validation."""

    def test_delays_grow_exponentially(self):
        """Delays double without jitter."""
        policy = RetryPolicy(base_delay=1.0, multiplier=2.0, jitter=(1.0, 1.0))
        assert [policy.delay_for(n) for n in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_delay_is_capped(self):
        """Un-jittered delay never exceeds max_delay."""
        policy = RetryPolicy(base_delay=1.0, max_delay=5.0, jitter=(1.0, 1.0))
        assert policy.delay_for(10) == 5.0

    def test_jitter_stays_within_bounds(self):
        """Jittered delays fall between the jitter bounds."""
        policy = RetryPolicy(base_delay=1.0, jitter=(1.0, 2.0))
        rng = random.Random(7)
        for _ in range(50):
            assert 4.0 <= policy.delay_for(2, rng) <= 8.0

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

    def test_rejects_inverted_jitter(self):
        with pytest.raises(ValueError):
            RetryPolicy(jitter=(2.0, 1.0))


class TestRetryAsync:
    """Tests for retry_async()."""

    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        operation = Flaky([])
        sleep = SleepRecorder()

        assert await retry_async(operation, RetryPolicy(), sleep=sleep) == "ok"
        assert operation.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_succeeds_on_third_attempt(self):
        """Two failures then success: two delays, success value returned."""
        operation = Flaky([IOError("a"), IOError("b")], value=42)
        sleep = SleepRecorder()
        policy = RetryPolicy(max_attempts=3, base_delay=1.0, jitter=(1.0, 1.0))

        result = await retry_async(operation, policy, sleep=sleep)

        assert result == 42
        assert operation.calls == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_more_attempts_than_needed(self):
        operation = Flaky([IOError("a"), IOError("b")])
        sleep = SleepRecorder()

        await retry_async(operation, RetryPolicy(max_attempts=5), sleep=sleep)

        assert len(sleep.delays) == 2

    @pytest.mark.asyncio
    async def test_propagates_last_error_unchanged(self):
        """With two attempts, the second failure is raised as-is."""
        second = IOError("second")
        operation = Flaky([IOError("first"), second])
        sleep = SleepRecorder()

        with pytest.raises(IOError) as exc_info:
            await retry_async(operation, RetryPolicy(max_attempts=2), sleep=sleep)

        assert exc_info.value is second
        assert operation.calls == 2
        assert len(sleep.delays) == 1

    @pytest.mark.asyncio
    async def test_non_retryable_error_is_raised_immediately(self):
        error = PermanentError("gone")
        operation = Flaky([error])
        sleep = SleepRecorder()

        with pytest.raises(PermanentError) as exc_info:
            await retry_async(operation, RetryPolicy(max_attempts=5), sleep=sleep)

        assert exc_info.value is error
        assert operation.calls == 1
        assert sleep.delays == []


def test_is_retryable_defaults_to_true():
    assert is_retryable(IOError("x"))
    assert not is_retryable(PermanentError("x"))
