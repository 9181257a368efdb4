"""DAG compiler: stored DAG payload -> resolved :class:`ExecutionPlan`.

Compilation is read-only and deterministic.  The same payload against the
same step registry always yields the same plan, which is what dry runs
return.

Ordering rules
--------------
- linear DAG (no edges, no ``dependsOn``): nodes sorted by ``order``;
  ties keep their array position
- graph DAG: topological order (Kahn); among ready nodes the one with the
  lowest ``(order, position)`` goes first
"""

from __future__ import annotations

import heapq
from collections import defaultdict
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from irflow.kernel.domain.dag import (
    DagNode,
    ExecutionPlan,
    GraphDag,
    LinearDag,
    PlannedNode,
    parse_dag,
)
from irflow.kernel.exceptions import (
    CycleDetectedError,
    DuplicateNodeKeyError,
    InvalidGraphError,
    UnresolvedStepError,
)
from irflow.kernel.expression_parser import ExpressionError, compile_condition
from irflow.kernel.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Mapping

    from irflow.kernel.domain.registry import Definition
    from irflow.stdlib.lib.version_registry import StepRegistry

logger = get_logger(__name__)


def find_cycle(dependencies: Mapping[str, list[str]]) -> list[str] | None:
    """Return one cycle as a closed key path, or ``None`` for an acyclic graph.

    Uses depth-first search with three-state colouring.

    Examples
    --------
    >>> find_cycle({"a": ["b"], "b": ["a"]})
    ['a', 'b', 'a']
    >>> find_cycle({"a": [], "b": ["a"]}) is None
    True
    """
    white, gray, black = 0, 1, 2
    colours = dict.fromkeys(dependencies, white)

    def visit(key: str, path: list[str]) -> list[str] | None:
        if colours[key] == gray:
            return path[path.index(key) :] + [key]
        if colours[key] == black:
            return None
        colours[key] = gray
        path.append(key)
        for dep in dependencies.get(key, ()):
            if dep in colours and (cycle := visit(dep, path)):
                return cycle
        path.pop()
        colours[key] = black
        return None

    for key in dependencies:
        if colours[key] == white and (cycle := visit(key, [])):
            return cycle
    return None


class DagCompiler:
    """Compile DAG payloads against the step registry.

    Args
    ----
        steps: Registry used to resolve ``stepVersionId`` references.
    """

    def __init__(self, steps: StepRegistry) -> None:
        self._steps = steps

    async def acompile(
        self, dag_payload: Any, pipeline_version_id: str | None = None
    ) -> ExecutionPlan:
        """Compile a DAG payload into an ordered, resolved plan.

        Args
        ----
            dag_payload: The stored ``{nodes, edges?}`` document.
            pipeline_version_id: Recorded on the plan for reporting.

        Returns
        -------
            ExecutionPlan: nodes in execution order plus waves and warnings

        Raises
        ------
            InvalidGraphError: malformed payload, unknown node reference or bad condition
            DuplicateNodeKeyError: two nodes share a key
            CycleDetectedError: the dependencies contain a cycle
            UnresolvedStepError: a node references a missing step version
        """
        try:
            dag = parse_dag(dag_payload)
        except ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(p) for p in first["loc"])
            raise InvalidGraphError(
                f"Malformed DAG payload at '{location}': {first['msg']}"
                f" ({e.error_count()} error(s))"
            ) from e

        positions = self._index_nodes(dag.nodes)
        dependencies = self._collect_dependencies(dag, positions)
        self._check_conditions(dag.nodes)

        if isinstance(dag, LinearDag):
            ordered = sorted(dag.nodes, key=lambda n: (n.order, positions[n.key]))
            waves = tuple((n.key,) for n in ordered)
        else:
            ordered = self._topological(dag.nodes, dependencies, positions)
            waves = self._waves(ordered, dependencies, positions)

        planned, warnings = await self._resolve(ordered, dependencies, positions)
        plan = ExecutionPlan(
            mode=dag.mode,
            nodes=tuple(planned),
            waves=waves,
            warnings=tuple(warnings),
            pipeline_version_id=pipeline_version_id,
        )
        logger.debug(
            "Compiled {} plan with {} node(s) in {} wave(s)",
            plan.mode,
            len(plan.nodes),
            len(plan.waves),
        )
        return plan

    # ------------------------------------------------------------------
    # Structure checks
    # ------------------------------------------------------------------

    @staticmethod
    def _index_nodes(nodes: list[DagNode]) -> dict[str, int]:
        positions: dict[str, int] = {}
        for position, node in enumerate(nodes):
            if node.key in positions:
                raise DuplicateNodeKeyError(node.key)
            positions[node.key] = position
        return positions

    @staticmethod
    def _collect_dependencies(
        dag: LinearDag | GraphDag, positions: Mapping[str, int]
    ) -> dict[str, list[str]]:
        dependencies: dict[str, list[str]] = {key: [] for key in positions}

        def add(source: str, target: str, where: str) -> None:
            for key in (source, target):
                if key not in positions:
                    raise InvalidGraphError(f"{where} references unknown node '{key}'")
            if source == target:
                raise CycleDetectedError([source, source])
            if source not in dependencies[target]:
                dependencies[target].append(source)

        for edge in dag.edges or ():
            add(edge.from_key, edge.to_key, f"Edge '{edge.from_key}' -> '{edge.to_key}'")
        for node in dag.nodes:
            for dep in node.depends_on:
                add(dep, node.key, f"dependsOn of node '{node.key}'")
        return dependencies

    @staticmethod
    def _check_conditions(nodes: list[DagNode]) -> None:
        for node in nodes:
            if node.condition is None:
                continue
            try:
                compile_condition(node.condition)
            except ExpressionError as e:
                raise InvalidGraphError(f"Node '{node.key}' has an invalid condition: {e}") from e

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------

    @staticmethod
    def _topological(
        nodes: list[DagNode],
        dependencies: Mapping[str, list[str]],
        positions: Mapping[str, int],
    ) -> list[DagNode]:
        by_key = {n.key: n for n in nodes}
        dependents: defaultdict[str, list[str]] = defaultdict(list)
        in_degree = {key: len(deps) for key, deps in dependencies.items()}
        for key, deps in dependencies.items():
            for dep in deps:
                dependents[dep].append(key)

        ready = [(by_key[k].order, positions[k], k) for k, d in in_degree.items() if d == 0]
        heapq.heapify(ready)
        ordered: list[DagNode] = []
        while ready:
            _, _, key = heapq.heappop(ready)
            ordered.append(by_key[key])
            for dependent in dependents[key]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(
                        ready, (by_key[dependent].order, positions[dependent], dependent)
                    )

        if len(ordered) != len(nodes):
            remaining = {k: list(dependencies[k]) for k, d in in_degree.items() if d > 0}
            raise CycleDetectedError(find_cycle(remaining) or sorted(remaining))
        return ordered

    @staticmethod
    def _waves(
        ordered: list[DagNode],
        dependencies: Mapping[str, list[str]],
        positions: Mapping[str, int],
    ) -> tuple[tuple[str, ...], ...]:
        level: dict[str, int] = {}
        for node in ordered:
            level[node.key] = 1 + max((level[d] for d in dependencies[node.key]), default=-1)
        grouped: defaultdict[int, list[DagNode]] = defaultdict(list)
        for node in ordered:
            grouped[level[node.key]].append(node)
        return tuple(
            tuple(n.key for n in sorted(grouped[i], key=lambda n: (n.order, positions[n.key])))
            for i in sorted(grouped)
        )

    # ------------------------------------------------------------------
    # Step resolution
    # ------------------------------------------------------------------

    async def _resolve(
        self,
        ordered: list[DagNode],
        dependencies: Mapping[str, list[str]],
        positions: Mapping[str, int],
    ) -> tuple[list[PlannedNode], list[str]]:
        definitions: dict[str, Definition] = {}
        planned: list[PlannedNode] = []
        warnings: list[str] = []
        for node in ordered:
            version = await self._steps.afind_version(node.step_version_id)
            if version is None:
                raise UnresolvedStepError(node.key, node.step_version_id)
            if version.definition_id not in definitions:
                definitions[version.definition_id] = await self._steps.aget_definition(
                    version.definition_id
                )
            definition = definitions[version.definition_id]
            if not version.is_active:
                warnings.append(
                    f"Node '{node.key}' uses inactive version '{version.label}'"
                    f" of step '{definition.name}'"
                )
            planned.append(
                PlannedNode(
                    key=node.key,
                    step_version_id=version.id,
                    step_definition_id=definition.id,
                    step_name=definition.name,
                    step_label=version.label,
                    step_active=version.is_active,
                    order=node.order,
                    position=positions[node.key],
                    default_config=dict(version.default_config),
                    params=dict(node.params),
                    depends_on=tuple(dependencies[node.key]),
                    condition=node.condition,
                    continue_on_fail=node.continue_on_fail,
                    retries=node.retries,
                    timeout_ms=node.timeout_ms,
                    metric_profile_id=node.metric_profile_id,
                    schema_version=node.schema_version,
                )
            )
        for warning in warnings:
            logger.warning(warning)
        return planned, warnings
