from __future__ import annotations
import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from .errors import Cancelled, ConfigurationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    growth: float = 2.0
    max_delay: float = 30.0
    attempt_timeout: Optional[float] = 60.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ConfigurationError("retry delays must be non-negative")
        if self.growth < 1:
            raise ConfigurationError("backoff growth must be >= 1")
        if self.attempt_timeout is not None and self.attempt_timeout <= 0:
            raise ConfigurationError("attempt_timeout must be positive")

    def backoff(self, attempt: int, rand: Callable[[], float] = random.random) -> float:
        """Delay after failed ``attempt`` (1-based): window plus jitter within the window."""
        window = min(self.base_delay * self.growth ** (attempt - 1), self.max_delay)
        return window + rand() * window


class CancelToken:
    """Cooperative cancellation shared between a caller and one or more runs."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason = "cancelled"

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass(frozen=True)
class RetryAttempt:
    number: int
    elapsed: float
    error: BaseException


class AttemptTimeout(Exception):
    retryable = True


class RetryError(Exception):
    """Raised when the operation finally failed; wraps the last failure."""

    def __init__(self, last_error: BaseException, attempts: int, history: List[RetryAttempt], exhausted: bool) -> None:
        kind = "exhausted" if exhausted else "aborted on terminal error"
        super().__init__(f"retries {kind} after {attempts} attempts: {last_error}")
        self.last_error = last_error
        self.attempts = attempts
        self.history = list(history)
        self.exhausted = exhausted


def is_retryable(exc: BaseException) -> bool:
    return bool(getattr(exc, "retryable", False))


async def _race(
    aw: Awaitable[Any],
    timeout: Optional[float],
    cancel: Optional[CancelToken],
    deadline: Optional[float],
    attempts: int,
) -> Any:
    """Await ``aw`` unless the timeout, the deadline or the cancel token wins first."""
    loop = asyncio.get_running_loop()
    limit = timeout
    if deadline is not None:
        remaining = max(0.0, deadline - loop.time())
        limit = remaining if limit is None else min(limit, remaining)
    task = asyncio.ensure_future(aw)
    watcher = asyncio.ensure_future(cancel.wait()) if cancel is not None else None
    try:
        waiters = {task} if watcher is None else {task, watcher}
        done, _ = await asyncio.wait(waiters, timeout=limit, return_when=asyncio.FIRST_COMPLETED)
        if task in done:
            return task.result()
    finally:
        for t in (task, watcher):
            if t is not None and not t.done():
                t.cancel()
        await asyncio.gather(*(t for t in (task, watcher) if t is not None), return_exceptions=True)
    if cancel is not None and cancel.cancelled:
        raise Cancelled(attempts, cancel.reason)
    if deadline is not None and loop.time() >= deadline:
        raise Cancelled(attempts, "deadline exceeded")
    raise AttemptTimeout(f"attempt timed out after {limit:.1f}s")


async def execute(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy = RetryPolicy(),
    *,
    cancel: Optional[CancelToken] = None,
    deadline: Optional[float] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    rand: Callable[[], float] = random.random,
    label: str = "operation",
) -> T:
    """Run ``operation`` up to ``policy.max_attempts`` times.

    Errors whose ``retryable`` attribute is true are retried after an
    exponential backoff with jitter; any other error stops the loop at once.
    Either way the caller gets a ``RetryError`` carrying the last failure and
    the number of attempts made. Cancellation and the deadline abort the
    running attempt or the backoff wait and raise ``Cancelled``.
    """
    loop = asyncio.get_running_loop()
    history: List[RetryAttempt] = []
    for attempt in range(1, policy.max_attempts + 1):
        if cancel is not None and cancel.cancelled:
            raise Cancelled(attempt - 1, cancel.reason)
        if deadline is not None and loop.time() >= deadline:
            raise Cancelled(attempt - 1, "deadline exceeded")
        started = loop.time()
        try:
            return await _race(operation(), policy.attempt_timeout, cancel, deadline, attempt)
        except Cancelled:
            raise
        except Exception as e:
            history.append(RetryAttempt(attempt, loop.time() - started, e))
            if not is_retryable(e):
                logger.error("%s failed with a non-retryable error on attempt %d: %s", label, attempt, e)
                raise RetryError(e, attempt, history, exhausted=False) from e
            if attempt >= policy.max_attempts:
                logger.error("%s failed after %d attempts; last error: %s", label, attempt, e)
                raise RetryError(e, attempt, history, exhausted=True) from e
            delay = policy.backoff(attempt, rand)
            if deadline is not None and loop.time() + delay >= deadline:
                raise Cancelled(attempt, "deadline exceeded")
            logger.warning(
                "%s attempt %d of %d failed (%s); retrying in %.2fs",
                label, attempt, policy.max_attempts, e, delay,
            )
            await _race(sleep(delay), None, cancel, None, attempt)
    raise AssertionError("unreachable")  # pragma: no cover
