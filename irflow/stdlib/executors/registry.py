"""Executor registry: select a step implementation by step definition name.

The engine talks to a single :class:`~irflow.kernel.ports.step_executor.StepExecutor`.
:class:`ExecutorRegistry` is that executor: it looks up the implementation
registered under ``request.step_name`` (case-insensitive) and delegates.

Plain functions are accepted too and wrapped in :class:`FunctionStepExecutor`::

    executors = ExecutorRegistry()

    @executors.step("ocr")
    async def ocr(request: StepRequest) -> dict:
        return {"ir": {"pages": 3}, "metrics": {"confidence": 0.97}}

    executors.register("classify", lambda request: {"label": "invoice"})
"""

from __future__ import annotations

import asyncio
import contextvars
import inspect
from collections.abc import Callable, Mapping
from typing import Any

from irflow.kernel.exceptions import NotFoundError, ValidationFailure
from irflow.kernel.logging import get_logger
from irflow.kernel.ports.step_executor import StepExecutor, StepOutput, StepRequest

logger = get_logger(__name__)

StepFunction = Callable[[StepRequest], Any]


class FunctionStepExecutor:
    """Adapt a sync or async callable taking a :class:`StepRequest`.

    A return value that is neither a :class:`StepOutput` nor a mapping with an
    ``"ir"`` key is treated as the IR itself.  Sync callables run in the
    default thread pool with the caller's context variables.
    """

    def __init__(self, fn: StepFunction, name: str | None = None) -> None:
        if not callable(fn):
            raise ValidationFailure("executor", "must be callable", type(fn).__name__)
        self._fn = fn
        self.name = name or getattr(fn, "__name__", type(fn).__name__)

    async def arun(self, request: StepRequest) -> StepOutput:
        """Call the wrapped function and normalise its result."""
        if inspect.iscoroutinefunction(self._fn):
            result = await self._fn(request)
        else:
            ctx = contextvars.copy_context()
            result = await asyncio.get_running_loop().run_in_executor(
                None, ctx.run, self._fn, request
            )
            if inspect.isawaitable(result):
                result = await result
        if isinstance(result, StepOutput) or (isinstance(result, Mapping) and "ir" in result):
            return StepOutput.coerce(result)
        return StepOutput(ir=result)

    def __repr__(self) -> str:
        return f"<FunctionStepExecutor {self.name}>"


class ExecutorRegistry:
    """Map step definition names to executors; itself a :class:`StepExecutor`."""

    def __init__(self, executors: Mapping[str, StepExecutor | StepFunction] | None = None) -> None:
        self._executors: dict[str, StepExecutor] = {}
        for name, executor in (executors or {}).items():
            self.register(name, executor)

    def register(
        self, name: str, executor: StepExecutor | StepFunction, *, replace: bool = False
    ) -> StepExecutor:
        """Register an executor (or a plain function) for a step name.

        Raises
        ------
        ValidationFailure
            If the name is empty, already registered (without ``replace``)
            or the executor is neither a StepExecutor nor callable
        """
        key = name.strip().casefold() if name else ""
        if not key:
            raise ValidationFailure("name", "must not be empty")
        if key in self._executors and not replace:
            raise ValidationFailure("name", "an executor is already registered", name)
        if not isinstance(executor, StepExecutor):
            executor = FunctionStepExecutor(executor, name)
        self._executors[key] = executor
        logger.debug("Registered executor for step '{}'", name)
        return executor

    def step(self, name: str) -> Callable[[StepFunction], StepFunction]:
        """Decorator form of :meth:`register`."""

        def decorator(fn: StepFunction) -> StepFunction:
            self.register(name, fn)
            return fn

        return decorator

    def unregister(self, name: str) -> None:
        """Remove the executor of a step name."""
        if self._executors.pop(name.strip().casefold(), None) is None:
            raise NotFoundError("step_executor", name, self.names())

    def names(self) -> list[str]:
        """Registered step names (normalised), sorted."""
        return sorted(self._executors)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.strip().casefold() in self._executors

    def get(self, name: str) -> StepExecutor:
        """Return the executor registered for ``name``.

        Raises
        ------
        NotFoundError
            If no executor is registered for the step
        """
        executor = self._executors.get(name.strip().casefold())
        if executor is None:
            raise NotFoundError("step_executor", name, self.names())
        return executor

    async def arun(self, request: StepRequest) -> StepOutput | Mapping[str, Any]:
        """Dispatch ``request`` to the executor of ``request.step_name``."""
        return await self.get(request.step_name).arun(request)
