"""Unit tests for RetryPolicy."""
import asyncio
from unittest.mock import AsyncMock

import pytest

from app.utils.retry import RetryPolicy


class TestRetryPolicy:

    def test_linear_backoff(self):
        policy = RetryPolicy(backoff_base=0.25)
        assert [policy.backoff(n) for n in (1, 2, 3)] == [0.25, 0.5, 0.75]
        assert policy.max_attempts == 3

    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        fn = AsyncMock(return_value="ok")
        assert await RetryPolicy(sleep=AsyncMock()).run(fn, 1, key="v") == "ok"
        fn.assert_awaited_once_with(1, key="v")

    @pytest.mark.asyncio
    async def test_reraises_last_error(self):
        fn = AsyncMock(side_effect=[ValueError("1"), ValueError("2"), ValueError("3")])
        with pytest.raises(ValueError, match="3"):
            await RetryPolicy(max_retries=2, sleep=AsyncMock()).run(fn)
        assert fn.await_count == 3

    @pytest.mark.asyncio
    async def test_non_matching_error_not_retried(self):
        fn = AsyncMock(side_effect=KeyError("boom"))
        policy = RetryPolicy(retry_on=(ConnectionError,), sleep=AsyncMock())
        with pytest.raises(KeyError):
            await policy.run(fn)
        assert fn.await_count == 1

    @pytest.mark.asyncio
    async def test_per_attempt_timeout(self):
        async def slow():
            await asyncio.sleep(5)

        policy = RetryPolicy(max_retries=1, timeout=0.01, sleep=AsyncMock())
        with pytest.raises(asyncio.TimeoutError):
            await policy.run(slow)

    @pytest.mark.asyncio
    async def test_timeouts_not_retried_when_disabled(self):
        calls = []

        async def slow():
            calls.append(1)
            await asyncio.sleep(5)

        policy = RetryPolicy(max_retries=2, timeout=0.01, retry_timeouts=False, sleep=AsyncMock())
        with pytest.raises(asyncio.TimeoutError):
            await policy.run(slow)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_other_errors_still_retried_when_timeouts_disabled(self):
        fn = AsyncMock(side_effect=[ConnectionError("a"), "ok"])
        policy = RetryPolicy(retry_timeouts=False, sleep=AsyncMock())
        assert await policy.run(fn) == "ok"
        assert fn.await_count == 2
