"""Retry, backoff and consecutive-failure breaking shared by the sampling engines."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

from skimmer.config import PacingSettings
from skimmer.exceptions import RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def linear_backoff(base_seconds: float, attempt: int) -> float:
    """Delay before retry ``attempt`` (1-based): base, 2*base, 3*base, ..."""

    return max(base_seconds, 0.0) * max(attempt, 1)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bounded retry with linear backoff and an optional per-attempt timeout."""

    max_attempts: int = 3
    base_delay_seconds: float = 0.1
    timeout_seconds: float | None = None
    retry_on: tuple[type[BaseException], ...] = (Exception,)
    # Raised immediately, never retried.
    fatal: tuple[type[BaseException], ...] = (MemoryError,)

    def delay_for(self, attempt: int) -> float:
        return linear_backoff(self.base_delay_seconds, attempt)

    async def run(self, operation: Callable[[], Awaitable[T]], *, label: str = "operation") -> T:
        """Await ``operation`` until it succeeds or attempts run out."""

        attempts = max(self.max_attempts, 1)
        last_error: BaseException | None = None

        for attempt in range(1, attempts + 1):
            try:
                if self.timeout_seconds is None:
                    return await operation()
                return await asyncio.wait_for(operation(), timeout=self.timeout_seconds)
            except asyncio.TimeoutError as exc:
                last_error = exc
            except self.fatal:
                raise
            except self.retry_on as exc:
                last_error = exc

            logger.debug("%s attempt %d/%d failed: %s", label, attempt, attempts, last_error)
            if attempt < attempts:
                await asyncio.sleep(self.delay_for(attempt))

        raise RetryExhaustedError(label, attempts, last_error)

    async def call_blocking(self, func: Callable[..., T], *args: Any, label: str = "operation") -> T:
        """Retry a blocking callable executed in a worker thread."""

        return await self.run(lambda: asyncio.to_thread(func, *args), label=label)


@dataclass(slots=True)
class ConsecutiveFailureBreaker:
    """Counts consecutive failures and opens once ``threshold`` is reached."""

    threshold: int = 5
    backoff_seconds: float = 0.5
    failures: int = field(default=0, init=False)

    @property
    def is_open(self) -> bool:
        return self.failures >= self.threshold

    def record_success(self) -> None:
        self.failures = 0

    def record_failure(self) -> bool:
        """Register a failure; returns True when the breaker is now open."""

        self.failures += 1
        return self.is_open

    async def backoff(self) -> None:
        await asyncio.sleep(linear_backoff(self.backoff_seconds, self.failures))


@dataclass(frozen=True, slots=True)
class Pacing:
    """Throttling applied inside sampling loops to avoid overloading the decoder."""

    read_delay_seconds: float = 0.05
    batch_size: int = 5
    batch_pause_seconds: float = 0.2
    failure_backoff_seconds: float = 0.5
    retry_backoff_seconds: float = 0.1

    @classmethod
    def from_settings(cls, settings: PacingSettings) -> Pacing:
        return cls(
            read_delay_seconds=settings.frame_read_delay_ms / 1000.0,
            batch_size=settings.batch_size,
            batch_pause_seconds=settings.batch_pause_ms / 1000.0,
            failure_backoff_seconds=settings.failure_backoff_ms / 1000.0,
            retry_backoff_seconds=settings.retry_backoff_ms / 1000.0,
        )

    @classmethod
    def disabled(cls) -> Pacing:
        return cls(
            read_delay_seconds=0.0,
            batch_size=0,
            batch_pause_seconds=0.0,
            failure_backoff_seconds=0.0,
            retry_backoff_seconds=0.0,
        )

    async def before_read(
        self,
        processed: int,
        *,
        batch_pause_seconds: float | None = None,
        read_delay_seconds: float | None = None,
    ) -> None:
        """Yield to other tasks, pausing longer after every full batch."""

        pause = self.batch_pause_seconds if batch_pause_seconds is None else batch_pause_seconds
        if self.batch_size > 0 and processed > 0 and processed % self.batch_size == 0 and pause > 0:
            await asyncio.sleep(pause)
        await asyncio.sleep(self.read_delay_seconds if read_delay_seconds is None else read_delay_seconds)

    def breaker(self, threshold: int) -> ConsecutiveFailureBreaker:
        return ConsecutiveFailureBreaker(threshold=threshold, backoff_seconds=self.failure_backoff_seconds)
