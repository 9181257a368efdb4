"""Tests for the DAG compiler."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from irflow.kernel.exceptions import (
    CycleDetectedError,
    DuplicateNodeKeyError,
    InvalidGraphError,
    UnresolvedStepError,
)
from irflow.kernel.orchestration.compiler import find_cycle

if TYPE_CHECKING:
    from irflow.system import IrflowSystem


class TestFindCycle:
    def test_two_node_cycle(self) -> None:
        assert find_cycle({"a": ["b"], "b": ["a"]}) == ["a", "b", "a"]

    def test_acyclic(self) -> None:
        assert find_cycle({"a": [], "b": ["a"], "c": ["a", "b"]}) is None

    def test_cycle_behind_an_entry_node(self) -> None:
        cycle = find_cycle({"entry": ["x"], "x": ["y"], "y": ["x"]})
        assert cycle is not None
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {"x", "y"}


class TestLinearPlans:
    @pytest.mark.asyncio()
    async def test_sorted_by_order(self, system: IrflowSystem, seed) -> None:
        step = await seed.step("ocr")
        plan = await system.engine.compiler.acompile(
            {
                "nodes": [
                    {"key": "b", "stepVersionId": step.id, "order": 1},
                    {"key": "a", "stepVersionId": step.id, "order": 0},
                ]
            }
        )
        assert plan.mode == "linear"
        assert plan.order == ["a", "b"]
        assert plan.waves == (("a",), ("b",))

    @pytest.mark.asyncio()
    async def test_ties_keep_array_position(self, system: IrflowSystem, seed) -> None:
        step = await seed.step("ocr")
        nodes = [{"key": k, "stepVersionId": step.id, "order": 5} for k in ("z", "m", "a")]
        plan = await system.engine.compiler.acompile({"nodes": nodes})
        assert plan.order == ["z", "m", "a"]

    @pytest.mark.asyncio()
    async def test_compilation_is_deterministic(self, system: IrflowSystem, seed) -> None:
        step = await seed.step("ocr")
        dag = {
            "nodes": [
                {"key": "c", "stepVersionId": step.id, "order": 2.5},
                {"key": "a", "stepVersionId": step.id, "order": 1},
                {"key": "b", "stepVersionId": step.id, "order": 1},
            ]
        }
        first = await system.engine.compiler.acompile(dag)
        second = await system.engine.compiler.acompile(dag)
        assert first == second
        assert first.order == ["a", "b", "c"]

    @pytest.mark.asyncio()
    async def test_empty_dag(self, system: IrflowSystem) -> None:
        plan = await system.engine.compiler.acompile({"nodes": []})
        assert plan.nodes == ()
        assert plan.waves == ()


class TestGraphPlans:
    @pytest.mark.asyncio()
    async def test_topological_order_and_waves(self, system: IrflowSystem, seed) -> None:
        step = await seed.step("ocr")
        plan = await system.engine.compiler.acompile(
            {
                "nodes": [
                    {"key": "merge", "stepVersionId": step.id},
                    {"key": "left", "stepVersionId": step.id, "order": 2},
                    {"key": "right", "stepVersionId": step.id, "order": 1},
                    {"key": "ingest", "stepVersionId": step.id},
                ],
                "edges": [
                    {"from": "ingest", "to": "left"},
                    {"from": "ingest", "to": "right"},
                    {"from": "left", "to": "merge"},
                    {"from": "right", "to": "merge"},
                ],
            }
        )
        assert plan.mode == "graph"
        assert plan.order == ["ingest", "right", "left", "merge"]
        assert plan.waves == (("ingest",), ("right", "left"), ("merge",))
        assert plan.node("merge").depends_on == ("left", "right")

    @pytest.mark.asyncio()
    async def test_depends_on_and_edges_combine(self, system: IrflowSystem, seed) -> None:
        step = await seed.step("ocr")
        plan = await system.engine.compiler.acompile(
            {
                "nodes": [
                    {"key": "c", "stepVersionId": step.id, "dependsOn": ["a", "b"]},
                    {"key": "b", "stepVersionId": step.id},
                    {"key": "a", "stepVersionId": step.id},
                ],
                "edges": [{"from": "a", "to": "c"}],
            }
        )
        assert plan.order == ["b", "a", "c"]
        assert plan.node("c").depends_on == ("a", "b")

    @pytest.mark.asyncio()
    async def test_cycle_detected(self, system: IrflowSystem, seed) -> None:
        step = await seed.step("ocr")
        with pytest.raises(CycleDetectedError) as exc_info:
            await system.engine.compiler.acompile(
                {
                    "nodes": [
                        {"key": "a", "stepVersionId": step.id},
                        {"key": "b", "stepVersionId": step.id},
                        {"key": "c", "stepVersionId": step.id},
                    ],
                    "edges": [
                        {"from": "a", "to": "b"},
                        {"from": "b", "to": "c"},
                        {"from": "c", "to": "b"},
                    ],
                }
            )
        assert set(exc_info.value.cycle) == {"b", "c"}

    @pytest.mark.asyncio()
    async def test_self_edge_is_a_cycle(self, system: IrflowSystem, seed) -> None:
        step = await seed.step("ocr")
        with pytest.raises(CycleDetectedError):
            await system.engine.compiler.acompile(
                {
                    "nodes": [{"key": "a", "stepVersionId": step.id}],
                    "edges": [{"from": "a", "to": "a"}],
                }
            )


class TestCompileErrors:
    @pytest.mark.asyncio()
    async def test_duplicate_node_key(self, system: IrflowSystem, seed) -> None:
        step = await seed.step("ocr")
        with pytest.raises(DuplicateNodeKeyError, match="'a'"):
            await system.engine.compiler.acompile(
                {
                    "nodes": [
                        {"key": "a", "stepVersionId": step.id},
                        {"key": "a", "stepVersionId": step.id},
                    ]
                }
            )

    @pytest.mark.asyncio()
    async def test_unresolved_step_version(self, system: IrflowSystem) -> None:
        with pytest.raises(UnresolvedStepError) as exc_info:
            await system.engine.compiler.acompile(
                {"nodes": [{"key": "a", "stepVersionId": "does-not-exist"}]}
            )
        assert exc_info.value.node_key == "a"

    @pytest.mark.asyncio()
    async def test_edge_to_unknown_node(self, system: IrflowSystem, seed) -> None:
        step = await seed.step("ocr")
        with pytest.raises(InvalidGraphError, match="unknown node 'ghost'"):
            await system.engine.compiler.acompile(
                {
                    "nodes": [{"key": "a", "stepVersionId": step.id}],
                    "edges": [{"from": "a", "to": "ghost"}],
                }
            )

    @pytest.mark.asyncio()
    async def test_invalid_condition(self, system: IrflowSystem, seed) -> None:
        step = await seed.step("ocr")
        with pytest.raises(InvalidGraphError, match="invalid condition"):
            await system.engine.compiler.acompile(
                {"nodes": [{"key": "a", "stepVersionId": step.id, "condition": "open('x')"}]}
            )

    @pytest.mark.asyncio()
    async def test_malformed_payload(self, system: IrflowSystem) -> None:
        with pytest.raises(InvalidGraphError, match="Malformed DAG payload"):
            await system.engine.compiler.acompile({"nodes": [{"key": "a"}]})


class TestResolution:
    @pytest.mark.asyncio()
    async def test_resolves_step_name_and_defaults(self, system: IrflowSystem, seed) -> None:
        step = await seed.step("classify", default_config={"threshold": 0.5})
        plan = await system.engine.compiler.acompile(
            {"nodes": [{"key": "c", "stepVersionId": step.id, "params": {"threshold": 0.9}}]},
            "pv-1",
        )
        node = plan.node("c")
        assert node.step_name == "classify"
        assert node.step_label == "v1"
        assert node.default_config == {"threshold": 0.5}
        assert node.params == {"threshold": 0.9}
        assert plan.pipeline_version_id == "pv-1"
        assert plan.warnings == ()

    @pytest.mark.asyncio()
    async def test_inactive_step_version_warns(self, system: IrflowSystem, seed) -> None:
        await seed.step("ocr", "v1")
        old = await seed.step("ocr", "v0", activate=False)
        plan = await system.engine.compiler.acompile(
            {"nodes": [{"key": "a", "stepVersionId": old.id}]}
        )
        assert plan.node("a").step_active is False
        assert len(plan.warnings) == 1
        assert "inactive version 'v0'" in plan.warnings[0]
