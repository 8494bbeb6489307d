"""Tests for the retry policy."""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from kora_rent_tracker.chain.client import RateLimitError, RPCError
from kora_rent_tracker.chain.retry import RetryError, RetryPolicy


class TestRetryPolicy:
    """Tests for RetryPolicy.call."""

    @pytest.mark.asyncio
    async def test_success_first_try(self) -> None:
        func = AsyncMock(return_value="ok")

        assert await RetryPolicy(base_delay=0).call(func, 1, key="v") == "ok"
        func.assert_awaited_once_with(1, key="v")

    @pytest.mark.asyncio
    async def test_success_after_retries(self) -> None:
        func = AsyncMock(side_effect=[RateLimitError("slow down"), RPCError("timeout"), "ok"])

        assert await RetryPolicy(max_retries=3, base_delay=0).call(func) == "ok"
        assert func.await_count == 3

    @pytest.mark.asyncio
    async def test_exhausted(self) -> None:
        error = RPCError("down")
        func = AsyncMock(side_effect=error)

        with pytest.raises(RetryError) as exc_info:
            await RetryPolicy(max_retries=2, base_delay=0).call(func)

        assert func.await_count == 3
        assert exc_info.value.last_exception is error

    @pytest.mark.asyncio
    async def test_non_transient_not_retried(self) -> None:
        func = AsyncMock(side_effect=ValueError("bad input"))

        with pytest.raises(ValueError):
            await RetryPolicy(base_delay=0).call(func)
        assert func.await_count == 1

    def test_from_settings(self) -> None:
        policy = RetryPolicy.from_settings(SimpleNamespace(max_retries=5, base_delay_seconds=0.5))

        assert policy.max_retries == 5
        assert policy.base_delay == 0.5
