"""Tests for the retry helper."""
import pytest

from rollcall.core.utils.retry import backoff_delay, retry_async


class TestBackoffDelay:

    def test_doubles_and_caps(self):
        assert [backoff_delay(n, 1.0, 10.0) for n in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 10.0]


class TestRetryAsync:

    async def test_returns_first_success(self, sleep):
        calls = []

        async def operation():
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("reset")
            return "done"

        result = await retry_async(
            operation,
            attempts=5,
            base_delay=0.5,
            max_delay=10.0,
            retry_on=(ConnectionError,),
            sleep=sleep
        )

        assert result == "done"
        assert sleep.delays == [0.5, 1.0]

    async def test_reraises_last_error(self, sleep):
        failures = []

        async def operation():
            raise ConnectionError(f"attempt {len(failures) + 1}")

        with pytest.raises(ConnectionError, match="attempt 3"):
            await retry_async(
                operation,
                attempts=3,
                base_delay=1.0,
                max_delay=10.0,
                retry_on=(ConnectionError,),
                sleep=sleep,
                on_failure=lambda attempt, error: failures.append(attempt)
            )

        assert failures == [1, 2, 3]
        assert sleep.delays == [1.0, 2.0]

    async def test_other_errors_are_not_retried(self, sleep):
        calls = []

        async def operation():
            calls.append(1)
            raise KeyError("bad input")

        with pytest.raises(KeyError):
            await retry_async(
                operation,
                attempts=3,
                base_delay=1.0,
                max_delay=10.0,
                retry_on=(ConnectionError,),
                sleep=sleep
            )

        assert len(calls) == 1
        assert sleep.delays == []

    async def test_rejects_zero_attempts(self, sleep):
        async def operation():
            return None

        with pytest.raises(ValueError):
            await retry_async(operation, attempts=0, base_delay=1.0, max_delay=1.0, retry_on=(), sleep=sleep)
