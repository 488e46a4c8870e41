"""Tests for the backoff helpers in hearing_ingest.utils.retry."""

import logging
from unittest.mock import AsyncMock, patch

import pytest

from hearing_ingest.utils.retry import compute_delay, retry_with_backoff, with_backoff


@pytest.fixture
def no_sleep():
    with (
        patch("hearing_ingest.utils.retry.asyncio.sleep", new_callable=AsyncMock) as sleep,
        patch("hearing_ingest.utils.retry.random.uniform", return_value=0.0),
    ):
        yield sleep


class TestComputeDelay:
    def test_doubles_per_attempt(self):
        assert compute_delay(1, 0.5, 10.0) == 0.5
        assert compute_delay(2, 0.5, 10.0) == 1.0
        assert compute_delay(3, 0.5, 10.0) == 2.0

    def test_capped_at_max_delay(self):
        assert compute_delay(10, 0.5, 10.0) == 10.0


class TestWithBackoff:
    """Tests for with_backoff()."""

    async def test_succeeds_on_first_call(self, no_sleep) -> None:
        operation = AsyncMock(return_value="ok")

        assert await with_backoff(operation) == "ok"
        assert operation.await_count == 1
        no_sleep.assert_not_awaited()

    async def test_retries_then_succeeds(self, no_sleep) -> None:
        operation = AsyncMock(side_effect=[ValueError("1"), ValueError("2"), "ok"])

        result = await with_backoff(operation, max_attempts=3, base_delay=0.1)

        assert result == "ok"
        assert operation.await_count == 3

    async def test_delays_grow_exponentially(self, no_sleep) -> None:
        operation = AsyncMock(side_effect=[ValueError("1"), ValueError("2"), "ok"])

        await with_backoff(operation, max_attempts=3, base_delay=0.1, max_delay=1.0)

        delays = [call.args[0] for call in no_sleep.await_args_list]
        assert delays == pytest.approx([0.1, 0.2])

    async def test_raises_last_error_when_exhausted(self, no_sleep) -> None:
        operation = AsyncMock(side_effect=[ValueError("1"), ValueError("2"), ValueError("3")])

        with pytest.raises(ValueError, match="3"):
            await with_backoff(operation, max_attempts=3, base_delay=0.1)
        assert operation.await_count == 3
        assert no_sleep.await_count == 2

    async def test_should_retry_false_raises_immediately(self, no_sleep) -> None:
        operation = AsyncMock(side_effect=KeyError("fatal"))

        with pytest.raises(KeyError):
            await with_backoff(operation, should_retry=lambda exc: False)
        assert operation.await_count == 1
        no_sleep.assert_not_awaited()

    async def test_logs_each_retry(self, no_sleep, caplog) -> None:
        operation = AsyncMock(side_effect=[ValueError("flaky"), "ok"])

        with caplog.at_level(logging.WARNING, logger="hearing_ingest.utils.retry"):
            await with_backoff(operation, max_attempts=2)

        assert any("Retry 1/1" in record.message for record in caplog.records)


class TestRetryWithBackoff:
    """Tests for the decorator form."""

    @pytest.mark.asyncio
    async def test_decorated_function_retried(self, no_sleep) -> None:
        call_count = 0

        @retry_with_backoff(max_attempts=3, base_delay=0.01)
        async def fail_twice_then_succeed() -> str:
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise ValueError(f"attempt {call_count}")
            return "ok"

        assert await fail_twice_then_succeed() == "ok"
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_preserves_function_name(self) -> None:
        @retry_with_backoff()
        async def my_operation() -> None:
            return None

        assert my_operation.__name__ == "my_operation"
