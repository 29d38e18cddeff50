"""Bounded retry on provider rate limiting.

The controller is a small explicit state machine around one "do the call"
coroutine factory:

    ATTEMPTING --ok--------------------------------------> SUCCEEDED
    ATTEMPTING --RateLimitError, attempts < MAX_ATTEMPTS--> WAITING
    ATTEMPTING --RateLimitError, attempts == MAX_ATTEMPTS-> EXHAUSTED
    ATTEMPTING --any other error--------------------------> (propagates)
    WAITING    --sleep elapsed----------------------------> ATTEMPTING

MAX_ATTEMPTS counts calls, so a call that is always rate limited is issued
exactly MAX_ATTEMPTS times before RetryExhaustedError is raised. While
waiting, the node the call belongs to (if any) shows the waiting status.
"""

from __future__ import annotations

import asyncio
import logging
import math
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from semantic_flow.errors import RateLimitError, RetryExhaustedError
from semantic_flow.sync import SyncStatus, SyncTracker

logger = logging.getLogger("semantic_flow.retry")

MAX_ATTEMPTS: int = 10

T = TypeVar("T")


class RetryState(str, Enum):
    ATTEMPTING = "attempting"
    WAITING = "waiting"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


def compute_wait_ms(retry_after: Any) -> int:
    """Server hint in seconds plus one second of slack; 1 s hint when absent."""
    try:
        seconds = float(retry_after)
    except (TypeError, ValueError):
        seconds = math.nan
    if not math.isfinite(seconds):
        seconds = 1.0
    return int(seconds * 1000) + 1000


class RetryController:
    """Runs a call, absorbing rate limits up to MAX_ATTEMPTS calls.

    sleep:   coroutine used for the backoff wait (asyncio.sleep by default);
             injectable so tests do not actually wait.
    tracker: optional SyncTracker; when a node_id is given to run(), the
             node's status flips to waiting for the duration of each wait.
    """

    def __init__(
        self,
        max_attempts: int = MAX_ATTEMPTS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        tracker: SyncTracker | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self._sleep = sleep
        self.tracker = tracker

    def _set_node_status(self, node_id: str | None, status: SyncStatus) -> None:
        if self.tracker is None or node_id is None:
            return
        # Only a node that is actually mid-sync has an indicator to flip.
        if self.tracker.status(node_id) == SyncStatus.IDLE:
            return
        self.tracker.set_status(node_id, status)

    async def run(
        self,
        call: Callable[[], Awaitable[T]],
        node_id: str | None = None,
        history: list[RetryState] | None = None,
    ) -> T:
        """Run call() until it succeeds, fails otherwise, or retries run out.

        history, when given, receives every state the run passes through.
        """
        trail = history if history is not None else []
        attempts = 0
        while True:
            trail.append(RetryState.ATTEMPTING)
            attempts += 1
            try:
                result = await call()
            except RateLimitError as e:
                if attempts >= self.max_attempts:
                    trail.append(RetryState.EXHAUSTED)
                    logger.warning("Giving up after %d rate-limited attempts", attempts)
                    raise RetryExhaustedError(attempts) from e
                wait_ms = compute_wait_ms(e.retry_after)
                trail.append(RetryState.WAITING)
                logger.warning(
                    "Rate limited (attempt %d/%d). Retrying in %ds...",
                    attempts, self.max_attempts, math.ceil(wait_ms / 1000),
                )
                self._set_node_status(node_id, SyncStatus.WAITING)
                try:
                    await self._sleep(wait_ms / 1000)
                finally:
                    self._set_node_status(node_id, SyncStatus.SYNCING)
                continue
            trail.append(RetryState.SUCCEEDED)
            return result
