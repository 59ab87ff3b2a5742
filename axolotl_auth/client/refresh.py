"""Throttling state for opportunistic token refresh."""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass

MAX_REFRESH_RETRIES = 3
RETRY_DELAY_SECONDS = 30


@dataclass
class RefreshState:
    """Failed attempts since the last success, and when the latest one started."""

    attempts: int = 0
    last_attempt_at: float = 0


class RefreshCoordinator:
    """Decides whether a refresh may run now and serializes the ones that do.

    Callers that find the token expiring take :attr:`lock` before refreshing,
    so concurrent callers wait for the in-flight refresh instead of issuing
    their own.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        max_retries: int = MAX_REFRESH_RETRIES,
        retry_delay: float = RETRY_DELAY_SECONDS,
    ):
        self.clock = clock
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.state = RefreshState()
        self.lock = asyncio.Lock()

    @property
    def attempts(self) -> int:
        return self.state.attempts

    @property
    def has_failed(self) -> bool:
        return self.state.attempts > 0

    def reset(self) -> None:
        self.state = RefreshState()

    def seconds_until_retry(self) -> float:
        """Remaining backoff; 0 when a refresh may be attempted."""
        if not self.has_failed:
            return 0
        elapsed = self.clock() - self.state.last_attempt_at
        return max(0.0, self.retry_delay - elapsed)

    def in_backoff(self) -> bool:
        return self.seconds_until_retry() > 0

    def exhausted(self) -> bool:
        return self.state.attempts >= self.max_retries

    def begin_attempt(self) -> int:
        """Record a refresh attempt. Returns its 1-based number."""
        self.state.attempts += 1
        self.state.last_attempt_at = self.clock()
        return self.state.attempts
