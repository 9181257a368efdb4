"""Port interface for external step executors.

A step executor turns a merged configuration into an IR document.  How it
does that (model calls, OCR, business rules ...) is outside irflow; the
engine only awaits :meth:`StepExecutor.arun` and records the outcome.
Failures are signalled by raising.
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from irflow.kernel.exceptions import ValidationFailure


@dataclass(frozen=True, slots=True)
class StepRequest:
    """Everything an executor receives for one attempt of one node.

    Attributes
    ----------
    step_version_id : str
        The step version being executed
    step_name : str
        Name of the step definition (selects the implementation)
    node_key : str
        Key of the DAG node
    config : dict[str, Any]
        Effective configuration after merging defaults, params and overrides
    pipeline_run_id : str
        Owning pipeline run
    step_run_id : str
        The step run being recorded
    attempt : int
        1-based attempt number
    upstream : Mapping[str, Any]
        IR documents of completed predecessor nodes, keyed by node key
    """

    step_version_id: str
    step_name: str
    node_key: str
    config: dict[str, Any]
    pipeline_run_id: str
    step_run_id: str
    attempt: int = 1
    upstream: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class OutputRef:
    """A reference to something the step produced besides its IR."""

    target_type: str
    target_id: str
    meta: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class StepOutput:
    """What a step returns: its IR plus optional metrics and output refs."""

    ir: Any
    metrics: dict[str, Any] = field(default_factory=dict)
    outputs: tuple[OutputRef, ...] = ()

    @classmethod
    def coerce(cls, value: Any) -> StepOutput:
        """Accept a :class:`StepOutput` or a ``{"ir": ..., "metrics": ..., "outputs": ...}`` dict.

        Raises
        ------
        ValidationFailure
            If the value has neither shape
        """
        if isinstance(value, StepOutput):
            return value
        if isinstance(value, Mapping) and "ir" in value:
            outputs = tuple(
                ref if isinstance(ref, OutputRef) else OutputRef(**ref)
                for ref in value.get("outputs") or ()
            )
            return cls(ir=value["ir"], metrics=dict(value.get("metrics") or {}), outputs=outputs)
        raise ValidationFailure(
            "step_output", "executor must return StepOutput or a mapping with an 'ir' key"
        )


@runtime_checkable
class StepExecutor(Protocol):
    """Capability interface implemented once per step kind."""

    @abstractmethod
    async def arun(self, request: StepRequest) -> StepOutput | Mapping[str, Any]:
        """Execute one attempt of a step.

        Args
        ----
            request: The node, its merged config and upstream IR.

        Returns
        -------
            StepOutput | Mapping[str, Any]: the IR (and optional metrics/outputs)
        """
        ...


__all__ = ["OutputRef", "StepExecutor", "StepOutput", "StepRequest"]
