"""
Retry with exponential backoff and per-attempt timeouts.

Wraps any asynchronous operation in an explicit, bounded retry loop.
Clock and sleep are injectable so tests can simulate time without
real delays.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from jobwaterfall.config import ResilienceConfig
from jobwaterfall.utils.exceptions import (
    BudgetExhaustedError,
    CircuitOpenError,
    DecodeError,
    FatalUpstreamError,
    RateLimitError,
    RetryExhaustedError,
    UpstreamTimeoutError,
    ValidationError,
)

logger = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    """Configuration for retry behavior."""

    max_attempts: int = field(default_factory=lambda: ResilienceConfig.MAX_ATTEMPTS)
    timeout: Optional[float] = field(default_factory=lambda: ResilienceConfig.ATTEMPT_TIMEOUT_SECONDS)
    base_delay: float = field(default_factory=lambda: ResilienceConfig.BASE_DELAY_SECONDS)
    max_delay: float = field(default_factory=lambda: ResilienceConfig.MAX_DELAY_SECONDS)
    jitter: float = field(default_factory=lambda: ResilienceConfig.JITTER_SECONDS)
    # Exceptions that are never retried
    no_retry_exceptions: tuple = (
        FatalUpstreamError,
        BudgetExhaustedError,
        CircuitOpenError,
        DecodeError,
        ValidationError,
    )


@dataclass
class RetryContext:
    """State of one in-flight ``ResilientCaller.call`` invocation."""

    operation: str
    max_attempts: int
    attempt: int = 0
    last_error: Optional[BaseException] = None
    next_delay: Optional[float] = None
    total_delay: float = 0.0


class ResilientCaller:
    """
    Generic retry/backoff/timeout wrapper for asynchronous operations.

    Each attempt is raced against a timeout. After a failed attempt
    ``n`` the caller sleeps ``min(base * 2**(n-1) + jitter, max_delay)``
    and tries again. Errors listed in ``no_retry_exceptions`` propagate
    immediately; exhausting all attempts raises RetryExhaustedError
    chained from the final error.

    Example:
        >>> caller = ResilientCaller()
        >>> result = await caller.call(
        ...     lambda: client.search("sales", "Edmonton, AB"),
        ...     name="jsearch:sales",
        ...     max_attempts=4,
        ... )
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        rand: Optional[Callable[[float, float], float]] = None,
    ):
        """
        Initialize caller.

        Args:
            policy: Retry policy (defaults built from ResilienceConfig)
            sleep: Async sleep function (defaults to asyncio.sleep)
            rand: Uniform random source ``rand(a, b)`` (defaults to random.uniform)
        """
        self.policy = policy or RetryPolicy()
        self._sleep = sleep or asyncio.sleep
        self._rand = rand or random.uniform

        self._stats = {
            "calls": 0,
            "successes": 0,
            "retries": 0,
            "timeouts": 0,
            "not_retried": 0,
            "exhausted": 0,
        }

    def compute_delay(self, attempt: int, error: Optional[BaseException] = None) -> float:
        """
        Backoff delay after failed attempt number ``attempt`` (1-based).

        A larger ``retry_after`` hint on a RateLimitError is honoured;
        the result never exceeds ``max_delay``.
        """
        policy = self.policy
        delay = policy.base_delay * (2 ** (attempt - 1))
        if policy.jitter > 0:
            delay += self._rand(0, policy.jitter)
        if isinstance(error, RateLimitError) and error.retry_after:
            delay = max(delay, float(error.retry_after))
        return min(delay, policy.max_delay)

    def should_retry(self, error: BaseException) -> bool:
        """Determine if an exception should trigger a retry."""
        return not isinstance(error, self.policy.no_retry_exceptions)

    async def _attempt(self, operation: Callable[[], Awaitable[Any]], timeout: Optional[float], name: str) -> Any:
        if timeout is None:
            return await operation()
        try:
            return await asyncio.wait_for(operation(), timeout=timeout)
        except asyncio.TimeoutError as e:
            self._stats["timeouts"] += 1
            raise UpstreamTimeoutError(
                f"Attempt timed out after {timeout}s",
                timeout=timeout,
                endpoint=name,
            ) from e

    async def call(
        self,
        operation: Callable[[], Awaitable[Any]],
        name: Optional[str] = None,
        max_attempts: Optional[int] = None,
        timeout: Optional[float] = None,
        on_retry: Optional[Callable[[RetryContext], None]] = None,
    ) -> Any:
        """
        Run ``operation`` with retries.

        Args:
            operation: Zero-argument callable returning a fresh awaitable per attempt
            name: Operation name for logs and errors
            max_attempts: Overrides the policy attempt count
            timeout: Per-attempt timeout in seconds (overrides the policy)
            on_retry: Callback invoked before each backoff sleep

        Returns:
            Result of the first successful attempt

        Raises:
            RetryExhaustedError: All attempts failed with retryable errors
            Exception: Any non-retryable error, unchanged
        """
        name = name or getattr(operation, "__name__", "operation")
        attempts = max_attempts if max_attempts is not None else self.policy.max_attempts
        timeout = timeout if timeout is not None else self.policy.timeout
        context = RetryContext(operation=name, max_attempts=max(1, attempts))

        self._stats["calls"] += 1

        while context.attempt < context.max_attempts:
            context.attempt += 1
            try:
                result = await self._attempt(operation, timeout, name)
                self._stats["successes"] += 1
                if context.attempt > 1:
                    logger.info(
                        f"{name} succeeded on attempt {context.attempt}/{context.max_attempts}",
                        extra={"operation": name, "attempt": context.attempt},
                    )
                return result

            except Exception as e:
                context.last_error = e

                if not self.should_retry(e):
                    self._stats["not_retried"] += 1
                    logger.debug(f"Not retrying {name}: {type(e).__name__} is not retryable")
                    raise

                if context.attempt >= context.max_attempts:
                    break

                context.next_delay = self.compute_delay(context.attempt, e)
                context.total_delay += context.next_delay
                self._stats["retries"] += 1

                logger.warning(
                    f"Retry {context.attempt}/{context.max_attempts} for {name} "
                    f"after {context.next_delay:.2f}s: {type(e).__name__}: {e}",
                    extra={
                        "operation": name,
                        "attempt": context.attempt,
                        "delay": round(context.next_delay, 3),
                        "error_type": type(e).__name__,
                    },
                )

                if on_retry:
                    on_retry(context)

                await self._sleep(context.next_delay)

        self._stats["exhausted"] += 1
        logger.error(
            f"All {context.max_attempts} attempts failed for {name}",
            extra={"operation": name, "total_delay": round(context.total_delay, 3)},
        )
        raise RetryExhaustedError(name, context.attempt, context.last_error) from context.last_error

    def get_statistics(self) -> dict:
        return {
            **self._stats,
            "policy": {
                "max_attempts": self.policy.max_attempts,
                "timeout": self.policy.timeout,
                "base_delay": self.policy.base_delay,
                "max_delay": self.policy.max_delay,
                "jitter": self.policy.jitter,
            },
        }

    def reset_statistics(self) -> None:
        for key in self._stats:
            self._stats[key] = 0

    def __repr__(self) -> str:
        return (
            f"ResilientCaller(max_attempts={self.policy.max_attempts}, "
            f"base_delay={self.policy.base_delay}, max_delay={self.policy.max_delay})"
        )
