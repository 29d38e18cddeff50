"""Bounded rate-limit retry: attempt ceiling, waits, status flips."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from semantic_flow.errors import ProviderError, RateLimitError, RetryExhaustedError
from semantic_flow.retry import MAX_ATTEMPTS, RetryController, RetryState, compute_wait_ms
from semantic_flow.sync import SyncStatus, SyncTracker


class TestComputeWait:
    def test_hint_plus_one_second(self):
        assert compute_wait_ms(3) == 4000
        assert compute_wait_ms("2") == 3000
        assert compute_wait_ms(0.5) == 1500

    def test_no_hint(self):
        assert compute_wait_ms(None) == 2000
        assert compute_wait_ms("soon") == 2000


class TestRetryController:
    @pytest.mark.asyncio
    async def test_success_first_try(self):
        sleep = AsyncMock()
        history: list[RetryState] = []
        result = await RetryController(sleep=sleep).run(AsyncMock(return_value="ok"), history=history)
        assert result == "ok"
        assert history == [RetryState.ATTEMPTING, RetryState.SUCCEEDED]
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_always_rate_limited_calls_exactly_max_attempts(self):
        sleep = AsyncMock()
        call = AsyncMock(side_effect=RateLimitError(retry_after=None))
        with pytest.raises(RetryExhaustedError) as exc:
            await RetryController(sleep=sleep).run(call)
        assert call.await_count == MAX_ATTEMPTS == 10
        # no wait after the final attempt
        assert sleep.await_count == 9
        assert exc.value.attempts == 10
        assert str(exc.value) == "Maximum retry attempts reached due to rate limiting"

    @pytest.mark.asyncio
    async def test_waits_follow_hint(self):
        sleep = AsyncMock()
        call = AsyncMock(side_effect=[RateLimitError(retry_after=3), RateLimitError(), "done"])
        history: list[RetryState] = []
        assert await RetryController(sleep=sleep).run(call, history=history) == "done"
        assert [c.args[0] for c in sleep.await_args_list] == [4.0, 2.0]
        assert history == [
            RetryState.ATTEMPTING, RetryState.WAITING,
            RetryState.ATTEMPTING, RetryState.WAITING,
            RetryState.ATTEMPTING, RetryState.SUCCEEDED,
        ]

    @pytest.mark.asyncio
    async def test_other_errors_propagate_immediately(self):
        sleep = AsyncMock()
        call = AsyncMock(side_effect=ProviderError("boom", 500))
        with pytest.raises(ProviderError, match="boom"):
            await RetryController(sleep=sleep).run(call)
        assert call.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_custom_ceiling(self):
        call = AsyncMock(side_effect=RateLimitError())
        with pytest.raises(RetryExhaustedError):
            await RetryController(max_attempts=3, sleep=AsyncMock()).run(call)
        assert call.await_count == 3

    def test_ceiling_must_be_positive(self):
        with pytest.raises(ValueError):
            RetryController(max_attempts=0)

    @pytest.mark.asyncio
    async def test_node_waits_while_backing_off(self):
        tracker = SyncTracker()
        seen: list[SyncStatus] = []

        async def sleep(_seconds):
            seen.append(tracker.status("n1"))

        controller = RetryController(sleep=sleep, tracker=tracker)
        call = AsyncMock(side_effect=[RateLimitError(), "ok"])
        async with tracker.syncing("n1"):
            assert await controller.run(call, node_id="n1") == "ok"
            assert tracker.status("n1") == SyncStatus.SYNCING
        assert seen == [SyncStatus.WAITING]
        assert tracker.status("n1") == SyncStatus.IDLE

    @pytest.mark.asyncio
    async def test_idle_node_status_untouched(self):
        tracker = SyncTracker()
        controller = RetryController(sleep=AsyncMock(), tracker=tracker)
        await controller.run(AsyncMock(side_effect=[RateLimitError(), "ok"]), node_id="n1")
        assert tracker.status("n1") == SyncStatus.IDLE
