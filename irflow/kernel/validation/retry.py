"""Retry with exponential backoff for step execution.

The step runner wraps every executor call in :func:`execute_with_retry`.
A node's ``retries`` field is the total number of attempts; engine
configuration supplies the delay and backoff.

Examples
--------
Basic usage::

    config = RetryConfig(max_attempts=3, delay=0.1)
    result = await execute_with_retry(call_executor, config)
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from irflow.kernel.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from irflow.kernel.config.models import EngineConfig

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class RetryConfig:
    """Retry behaviour for one node.

    Parameters
    ----------
    max_attempts : int
        Total number of attempts. 1 means a single attempt.
    delay : float
        Delay in seconds before the second attempt.
    backoff : float
        Multiplier applied to the delay after each failed attempt.
    max_delay : float
        Upper bound for any single delay.
    """

    max_attempts: int = 1
    delay: float = 0.5
    backoff: float = 2.0
    max_delay: float = 30.0

    @classmethod
    def for_node(cls, retries: int | None, engine: EngineConfig) -> RetryConfig:
        """Combine a node's ``retries`` with engine-wide defaults.

        Examples
        --------
        >>> from irflow.kernel.config.models import EngineConfig
        >>> RetryConfig.for_node(None, EngineConfig(default_retries=2)).max_attempts
        2
        >>> RetryConfig.for_node(4, EngineConfig()).max_attempts
        4
        """
        return cls(
            max_attempts=retries or engine.default_retries,
            delay=engine.retry_delay,
            backoff=engine.retry_backoff,
        )

    def compute_delay(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-indexed).

        Examples
        --------
        >>> cfg = RetryConfig(delay=1.0, backoff=2.0, max_delay=5.0)
        >>> [cfg.compute_delay(n) for n in (1, 2, 3, 4)]
        [1.0, 2.0, 4.0, 5.0]
        """
        return min(self.delay * (self.backoff ** (attempt - 1)), self.max_delay)


async def execute_with_retry(
    fn: Callable[[int], Awaitable[Any]],
    config: RetryConfig,
    *,
    on_retry: Callable[[int, int, Exception, float], Any] | None = None,
    retryable: Callable[[Exception], bool] | None = None,
) -> Any:
    """Call ``fn(attempt)`` until it succeeds or attempts run out.

    Parameters
    ----------
    fn : Callable[[int], Awaitable[Any]]
        Async callable receiving the 1-indexed attempt number.
    config : RetryConfig
        Retry configuration.
    on_retry : callable, optional
        Invoked before each retry sleep with
        ``(attempt, max_attempts, error, delay)``.
    retryable : callable, optional
        Errors for which this returns ``False`` are raised immediately.

    Returns
    -------
    Any
        The return value of the successful attempt.

    Raises
    ------
    Exception
        The error of the last attempt
    """
    for attempt in range(1, config.max_attempts + 1):
        try:
            return await fn(attempt)
        except Exception as exc:
            if attempt >= config.max_attempts or (retryable is not None and not retryable(exc)):
                raise
            delay = config.compute_delay(attempt)
            if on_retry is not None:
                on_retry(attempt, config.max_attempts, exc, delay)
            await asyncio.sleep(delay)
    raise RuntimeError("execute_with_retry called with max_attempts < 1")  # pragma: no cover
