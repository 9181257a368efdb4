"""Step runner: one node, one executor call, with timeout and retry.

The runner knows nothing about persistence.  It reports every attempt
through a callback so the engine can update the StepRun before the
executor is invoked, and turns anything the executor raises into an
:class:`ExecutionFailure` carrying the node key.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from irflow.kernel.exceptions import ExecutionFailure, NotFoundError, ValidationFailure
from irflow.kernel.logging import get_logger
from irflow.kernel.ports.step_executor import StepOutput, StepRequest
from irflow.kernel.utils.timer import Timer
from irflow.kernel.validation.retry import RetryConfig, execute_with_retry

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from irflow.kernel.config.models import EngineConfig
    from irflow.kernel.domain.dag import PlannedNode
    from irflow.kernel.ports.step_executor import StepExecutor

logger = get_logger(__name__)


class StepRunner:
    """Invoke the step executor for a planned node.

    Examples
    --------
    Example usage::

        runner = StepRunner(executor, EngineConfig(default_retries=2))
        output = await runner.arun(
            node, config, pipeline_run_id=run.id, step_run_id=step_run.id
        )
    """

    def __init__(self, executor: StepExecutor, config: EngineConfig) -> None:
        """Initialise the runner.

        Args
        ----
            executor: The external step executor.
            config: Engine defaults for retries and timeouts.
        """
        self._executor = executor
        self._config = config

    def timeout_for(self, node: PlannedNode) -> float | None:
        """Seconds allowed per attempt: node ``timeoutMs`` beats the engine default."""
        if node.timeout_ms is not None:
            return node.timeout_ms / 1000
        return self._config.step_timeout

    async def arun(
        self,
        node: PlannedNode,
        config: dict[str, Any],
        *,
        pipeline_run_id: str,
        step_run_id: str,
        upstream: Mapping[str, Any] | None = None,
        on_attempt: Callable[[int], Awaitable[None]] | None = None,
    ) -> StepOutput:
        """Execute the node, retrying failed attempts with backoff.

        Args
        ----
            node: The planned node.
            config: Effective (merged) configuration.
            pipeline_run_id: Owning pipeline run.
            step_run_id: The step run being recorded.
            upstream: IR of completed predecessors by node key.
            on_attempt: Awaited before each attempt with the attempt number.

        Returns
        -------
            StepOutput: the coerced executor output

        Raises
        ------
            ExecutionFailure: executor error, timeout or malformed output after the last attempt
        """
        retry = RetryConfig.for_node(node.retries, self._config)
        timeout = self.timeout_for(node)

        async def attempt(number: int) -> StepOutput:
            if on_attempt is not None:
                await on_attempt(number)
            request = StepRequest(
                step_version_id=node.step_version_id,
                step_name=node.step_name,
                node_key=node.key,
                config=config,
                pipeline_run_id=pipeline_run_id,
                step_run_id=step_run_id,
                attempt=number,
                upstream=dict(upstream or {}),
            )
            try:
                async with asyncio.timeout(timeout):
                    raw = await self._executor.arun(request)
            except TimeoutError as e:
                reason = f"timed out after {timeout:g}s" if timeout is not None else "timed out"
                raise ExecutionFailure(node.key, reason, e) from e
            return StepOutput.coerce(raw)

        def on_retry(number: int, max_attempts: int, error: Exception, delay: float) -> None:
            logger.warning(
                "Step '{}' attempt {}/{} failed: {}; retrying in {:.2f}s",
                node.key,
                number,
                max_attempts,
                error,
                delay,
            )

        timer = Timer()
        try:
            output = await execute_with_retry(
                attempt,
                retry,
                on_retry=on_retry,
                retryable=lambda e: not isinstance(e, ValidationFailure | NotFoundError),
            )
        except ExecutionFailure:
            raise
        except Exception as e:
            reason = str(e) or type(e).__name__
            raise ExecutionFailure(node.key, reason, e) from e
        logger.debug("Step '{}' returned IR in {}ms", node.key, timer.duration_str)
        return output
