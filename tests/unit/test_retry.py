"""Tests for retry with exponential backoff and client-side timeouts."""

import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from ganj.core.retry import (
    RetryOptions,
    default_retry_condition,
    is_network_error,
    is_transient_error,
    with_network_retry,
    with_rate_limit_retry,
    with_retry,
    with_timeout,
)
from ganj.services.ganjoor import GanjoorApiError

NO_DELAY = RetryOptions(base_delay=0, max_delay=0)


class TestRetryCondition:
    """Test classification of retryable failures."""

    def test_network_errors_are_retried(self) -> None:
        assert default_retry_condition(ConnectionError("reset"))
        assert default_retry_condition(httpx.ConnectTimeout("slow"))
        assert is_network_error(TimeoutError())

    @pytest.mark.parametrize("status", [500, 502, 503, 429])
    def test_server_errors_and_rate_limits_are_retried(self, status: int) -> None:
        assert default_retry_condition(GanjoorApiError("failed", status=status))

    @pytest.mark.parametrize("status", [400, 401, 404])
    def test_client_errors_are_not_retried(self, status: int) -> None:
        assert not default_retry_condition(GanjoorApiError("failed", status=status))

    def test_http_status_error_uses_response_status(self) -> None:
        request = httpx.Request("GET", "https://example.test/poets")
        response = httpx.Response(503, request=request)
        error = httpx.HTTPStatusError("boom", request=request, response=response)

        assert default_retry_condition(error)

    def test_plain_errors_are_not_retried(self) -> None:
        assert not default_retry_condition(ValueError("bad"))

    def test_transient_errors_exclude_rate_limits(self) -> None:
        assert is_transient_error(GanjoorApiError("failed", status=503))
        assert is_transient_error(ConnectionError("reset"))
        assert not is_transient_error(GanjoorApiError("failed", status=429))


class TestDelay:
    """Test backoff delay computation."""

    def test_delay_grows_and_is_capped(self) -> None:
        options = RetryOptions(base_delay=1.0, max_delay=10.0, backoff_multiplier=2.0)

        assert 1.0 <= options.delay_for(0) <= 1.1
        assert 4.0 <= options.delay_for(2) <= 4.4
        assert 10.0 <= options.delay_for(10) <= 11.0


class TestWithRetry:
    """Test the retry loop."""

    @pytest.mark.asyncio
    async def test_returns_first_success(self) -> None:
        operation = AsyncMock(side_effect=[ConnectionError("reset"), "ok"])

        result = await with_retry(operation, NO_DELAY)

        assert result == "ok"
        assert operation.await_count == 2

    @pytest.mark.asyncio
    async def test_always_failing_runs_max_retries_plus_one(self) -> None:
        error = ConnectionError("down")
        operation = AsyncMock(side_effect=error)

        with pytest.raises(ConnectionError) as exc_info:
            await with_retry(
                operation, RetryOptions(max_retries=3, base_delay=0, max_delay=0)
            )

        assert exc_info.value is error
        assert operation.await_count == 4

    @pytest.mark.asyncio
    async def test_false_condition_runs_once(self) -> None:
        operation = AsyncMock(side_effect=ConnectionError("down"))

        with pytest.raises(ConnectionError):
            await with_retry(
                operation,
                RetryOptions(base_delay=0, max_delay=0, retry_condition=lambda e: False),
            )

        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_not_found_is_not_retried(self) -> None:
        operation = AsyncMock(side_effect=GanjoorApiError("missing", status=404))

        with pytest.raises(GanjoorApiError):
            await with_retry(operation, NO_DELAY)

        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_network_retry_ignores_server_errors(self) -> None:
        operation = AsyncMock(side_effect=GanjoorApiError("failed", status=500))

        with pytest.raises(GanjoorApiError):
            await with_network_retry(operation)

        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_rate_limit_retry_backs_off_slowly(self) -> None:
        rate_limited = GanjoorApiError("slow down", status=429)
        operation = AsyncMock(side_effect=[rate_limited, rate_limited, "ok"])

        with patch("ganj.core.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            assert await with_rate_limit_retry(operation) == "ok"

        delays = [call.args[0] for call in sleep.await_args_list]
        assert 2.0 <= delays[0] <= 2.2
        assert 4.0 <= delays[1] <= 4.4

    @pytest.mark.asyncio
    async def test_rate_limit_retry_ignores_server_errors(self) -> None:
        operation = AsyncMock(side_effect=GanjoorApiError("failed", status=503))

        with pytest.raises(GanjoorApiError):
            await with_rate_limit_retry(operation)

        assert operation.await_count == 1


class TestWithTimeout:
    """Test the client-side timeout wrapper."""

    @pytest.mark.asyncio
    async def test_returns_result_when_fast(self) -> None:
        async def fast() -> list[int]:
            return [1, 2]

        assert await with_timeout(fast(), 1.0, []) == [1, 2]

    @pytest.mark.asyncio
    async def test_returns_fallback_when_slow(self) -> None:
        async def slow() -> list[int]:
            await asyncio.sleep(1)
            return [1]

        assert await with_timeout(slow(), 0.01, [], operation="scan") == []

    @pytest.mark.asyncio
    async def test_slow_work_keeps_running_after_fallback(self) -> None:
        finished = asyncio.Event()

        async def slow() -> int:
            await asyncio.sleep(0.05)
            finished.set()
            return 1

        assert await with_timeout(slow(), 0.01, 0) == 0

        await asyncio.wait_for(finished.wait(), timeout=1.0)
