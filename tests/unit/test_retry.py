"""
Unit tests for the retry and polling utilities module.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from crowdfund_toolkit.shared.exceptions import (
    LedgerTransportException,
    NonRetryableException,
    RetryableException,
)
from crowdfund_toolkit.shared.retry import (
    DEFAULT_RETRYABLE_EXCEPTIONS,
    RPC_RETRY_CONFIG,
    PollPolicy,
    RetryConfig,
    poll_until,
    retry_async_operation,
)


class TestRetryAsyncOperation:
    """Tests for the functional retry helper."""

    @pytest.mark.asyncio
    async def test_succeeds_first_try(self):
        mock_fn = AsyncMock(return_value="success")

        assert await retry_async_operation(mock_fn, max_attempts=3) == "success"
        assert mock_fn.call_count == 1

    @pytest.mark.asyncio
    async def test_succeeds_after_retry(self):
        """Fails twice with transport errors, then succeeds."""
        mock_fn = AsyncMock(
            side_effect=[
                LedgerTransportException("fail"),
                httpx.ConnectError("refused"),
                "success",
            ]
        )

        result = await retry_async_operation(mock_fn, max_attempts=3, base_delay=0.01)

        assert result == "success"
        assert mock_fn.call_count == 3

    @pytest.mark.asyncio
    async def test_fails_after_max_attempts(self):
        mock_fn = AsyncMock(side_effect=RetryableException("always fail"))

        with pytest.raises(RetryableException, match="always fail"):
            await retry_async_operation(mock_fn, max_attempts=3, base_delay=0.01)
        assert mock_fn.call_count == 3

    @pytest.mark.asyncio
    async def test_non_retryable_propagates_immediately(self):
        mock_fn = AsyncMock(side_effect=NonRetryableException("bad input"))

        with pytest.raises(NonRetryableException):
            await retry_async_operation(mock_fn, max_attempts=5, base_delay=0.01)
        assert mock_fn.call_count == 1

    @pytest.mark.asyncio
    async def test_exponential_backoff_capped(self):
        mock_fn = AsyncMock(
            side_effect=[RetryableException("f")] * 3 + ["ok"]
        )
        sleep_times = []

        async def mock_sleep(delay):
            sleep_times.append(delay)

        with patch("crowdfund_toolkit.shared.retry.asyncio.sleep", mock_sleep):
            result = await retry_async_operation(
                mock_fn, max_attempts=4, base_delay=1.0, max_delay=3.0
            )

        assert result == "ok"
        assert sleep_times == [1.0, 2.0, 3.0]

    @pytest.mark.asyncio
    async def test_linear_backoff(self):
        mock_fn = AsyncMock(side_effect=[RetryableException("f")] * 2 + ["ok"])
        sleep_times = []

        async def mock_sleep(delay):
            sleep_times.append(delay)

        with patch("crowdfund_toolkit.shared.retry.asyncio.sleep", mock_sleep):
            await retry_async_operation(
                mock_fn, max_attempts=3, base_delay=0.5, exponential=False
            )

        assert sleep_times == [0.5, 0.5]

    @pytest.mark.asyncio
    async def test_passes_arguments(self):
        mock_fn = AsyncMock(return_value=7)
        result = await retry_async_operation(mock_fn, "a", key="b")
        assert result == 7
        mock_fn.assert_awaited_once_with("a", key="b")

    @pytest.mark.asyncio
    async def test_custom_retryable_exceptions(self):
        mock_fn = AsyncMock(side_effect=[KeyError("k"), "ok"])
        result = await retry_async_operation(
            mock_fn,
            max_attempts=2,
            base_delay=0.0,
            retryable_exceptions=(KeyError,),
        )
        assert result == "ok"


class TestRetryConfig:
    def test_defaults(self):
        config = RetryConfig(max_attempts=2)
        assert config.retryable_exceptions == DEFAULT_RETRYABLE_EXCEPTIONS
        assert RPC_RETRY_CONFIG.max_attempts == 3
        assert RPC_RETRY_CONFIG.max_delay == 5.0


class TestPollUntil:
    """Tests for bounded polling."""

    def test_policy_validation(self):
        with pytest.raises(ValueError):
            PollPolicy(max_attempts=0)
        with pytest.raises(ValueError):
            PollPolicy(delay=-1)

    @pytest.mark.asyncio
    async def test_stops_when_condition_met(self):
        check = AsyncMock(side_effect=[False, False, True, True])
        value, reached = await poll_until(check, PollPolicy(5, 0.0))
        assert reached is True
        assert value is True
        assert check.await_count == 3

    @pytest.mark.asyncio
    async def test_terminates_when_every_check_raises(self):
        check = AsyncMock(side_effect=LedgerTransportException("down"))
        value, reached = await poll_until(check, PollPolicy(4, 0.0))
        assert reached is False
        assert value is None
        assert check.await_count == 4

    @pytest.mark.asyncio
    async def test_sleeps_initial_delay_then_between_attempts(self):
        sleeps = []

        async def mock_sleep(delay):
            sleeps.append(delay)

        check = AsyncMock(return_value=False)
        with patch("crowdfund_toolkit.shared.retry.asyncio.sleep", mock_sleep):
            _, reached = await poll_until(
                check, PollPolicy(max_attempts=3, delay=1.0, initial_delay=3.0)
            )

        assert reached is False
        assert sleeps == [3.0, 1.0, 1.0]

    @pytest.mark.asyncio
    async def test_cancellation_stops_the_loop(self):
        check = AsyncMock(return_value=False)
        task = asyncio.ensure_future(
            poll_until(check, PollPolicy(max_attempts=1000, delay=10.0))
        )
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert check.await_count < 1000
