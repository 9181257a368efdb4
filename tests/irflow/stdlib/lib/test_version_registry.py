"""Tests for pipeline and step version registries."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from irflow.kernel.exceptions import ConflictError, NotFoundError, ValidationFailure
from irflow.stdlib.lib.version_registry import PipelineRegistry, StepRegistry

if TYPE_CHECKING:
    from irflow.stdlib.adapters.memory import InMemoryCollectionStorage
    from irflow.system import IrflowSystem

DAG = {"nodes": [{"key": "ocr", "stepVersionId": "sv-1"}]}


class TestDefinitions:
    @pytest.mark.asyncio()
    async def test_create_and_lookup(self, system: IrflowSystem) -> None:
        created = await system.pipelines.acreate_definition("  Invoice Intake ", "scans in")

        assert created.name == "Invoice Intake"
        assert created.name_key == "invoice intake"
        assert await system.pipelines.aget_definition(created.id) == created
        assert await system.pipelines.aget_definition_by_name("INVOICE intake") == created

    @pytest.mark.asyncio()
    async def test_names_are_unique_ignoring_case(self, system: IrflowSystem) -> None:
        await system.steps.acreate_definition("OCR")

        with pytest.raises(ConflictError) as exc_info:
            await system.steps.acreate_definition("ocr")
        assert exc_info.value.reason == "duplicate_name"

    @pytest.mark.asyncio()
    async def test_pipelines_and_steps_are_separate(self, system: IrflowSystem) -> None:
        await system.steps.acreate_definition("ocr")
        await system.pipelines.acreate_definition("ocr")

        assert [d.kind for d in await system.steps.alist_definitions()] == ["step"]

    @pytest.mark.asyncio()
    async def test_list_is_sorted_by_name(self, system: IrflowSystem) -> None:
        for name in ("zeta", "Alpha", "mid"):
            await system.steps.acreate_definition(name)

        names = [d.name for d in await system.steps.alist_definitions()]

        assert names == ["Alpha", "mid", "zeta"]

    @pytest.mark.asyncio()
    async def test_empty_name(self, system: IrflowSystem) -> None:
        with pytest.raises(ValidationFailure):
            await system.pipelines.acreate_definition("   ")

    @pytest.mark.asyncio()
    async def test_delete_requires_no_versions(self, system: IrflowSystem) -> None:
        definition = await system.steps.acreate_definition("ocr")
        await system.steps.acreate_version(definition.id, "v1")

        with pytest.raises(ConflictError, match="still has 1 version"):
            await system.steps.adelete_definition(definition.id)

        await system.steps.adelete_version(definition.id, "v1")
        await system.steps.adelete_definition(definition.id)
        with pytest.raises(NotFoundError):
            await system.steps.aget_definition(definition.id)

    @pytest.mark.asyncio()
    async def test_unknown_name(self, system: IrflowSystem) -> None:
        with pytest.raises(NotFoundError, match="Pipeline Definition 'nope' not found"):
            await system.pipelines.aget_definition_by_name("nope")


class TestPipelineVersions:
    @pytest.mark.asyncio()
    async def test_create_version(self, system: IrflowSystem) -> None:
        definition = await system.pipelines.acreate_definition("intake")

        version = await system.pipelines.acreate_version(
            definition.id, "v1", {"dag": DAG, "config": {"failure_policy": "abort"}}
        )

        assert version.is_active is False
        assert version.dag == DAG
        assert version.config == {"failure_policy": "abort"}
        assert await system.pipelines.aget_version(version.id) == version

    @pytest.mark.asyncio()
    async def test_labels_are_unique_per_definition(self, system: IrflowSystem) -> None:
        first = await system.pipelines.acreate_definition("first")
        second = await system.pipelines.acreate_definition("second")
        await system.pipelines.acreate_version(first.id, "v1", {"dag": DAG})
        await system.pipelines.acreate_version(second.id, "v1", {"dag": DAG})

        with pytest.raises(ConflictError) as exc_info:
            await system.pipelines.acreate_version(first.id, "v1", {"dag": DAG})
        assert exc_info.value.reason == "duplicate_label"

    @pytest.mark.asyncio()
    async def test_payload_validation(self, system: IrflowSystem) -> None:
        definition = await system.pipelines.acreate_definition("intake")

        with pytest.raises(ValidationFailure, match="is required"):
            await system.pipelines.acreate_version(definition.id, "v1", {"config": {}})
        with pytest.raises(ValidationFailure, match="unknown payload keys"):
            await system.pipelines.acreate_version(definition.id, "v1", {"dag": DAG, "x": 1})
        with pytest.raises(ValidationFailure, match="must be a JSON object"):
            await system.pipelines.acreate_version(definition.id, "v1", {"dag": DAG, "config": []})

    @pytest.mark.asyncio()
    async def test_malformed_dag_lists_errors(self, system: IrflowSystem) -> None:
        definition = await system.pipelines.acreate_definition("intake")

        with pytest.raises(ValidationFailure) as exc_info:
            await system.pipelines.acreate_version(
                definition.id, "v1", {"dag": {"nodes": [{"key": "a"}]}}
            )

        assert exc_info.value.field == "dag"
        assert exc_info.value.errors

    @pytest.mark.asyncio()
    async def test_unknown_definition(self, system: IrflowSystem) -> None:
        with pytest.raises(NotFoundError):
            await system.pipelines.acreate_version("missing", "v1", {"dag": DAG})

    @pytest.mark.asyncio()
    async def test_update_version(self, system: IrflowSystem) -> None:
        definition = await system.pipelines.acreate_definition("intake")
        created = await system.pipelines.acreate_version(definition.id, "v1", {"dag": DAG})

        updated = await system.pipelines.aupdate_version(
            definition.id, "v1", {"config": {"max_concurrency": 2}}
        )

        assert updated.dag == DAG
        assert updated.config == {"max_concurrency": 2}
        assert updated.updated_at >= created.updated_at

    @pytest.mark.asyncio()
    async def test_missing_label_lists_available(self, system: IrflowSystem) -> None:
        definition = await system.pipelines.acreate_definition("intake")
        await system.pipelines.acreate_version(definition.id, "v1", {"dag": DAG})
        await system.pipelines.acreate_version(definition.id, "v2", {"dag": DAG})

        with pytest.raises(NotFoundError, match="Available: v1, v2"):
            await system.pipelines.aget_version_by_label(definition.id, "v3")

    @pytest.mark.asyncio()
    async def test_find_version(self, system: IrflowSystem) -> None:
        assert await system.pipelines.afind_version("missing") is None


class TestActivation:
    @pytest.mark.asyncio()
    async def test_one_active_version(self, system: IrflowSystem) -> None:
        definition = await system.pipelines.acreate_definition("intake")
        await system.pipelines.acreate_version(definition.id, "v1", {"dag": DAG}, activate=True)
        await system.pipelines.acreate_version(definition.id, "v2", {"dag": DAG})

        activated = await system.pipelines.aactivate(definition.id, "v2")

        versions = await system.pipelines.alist_versions(definition.id)
        assert [(v.label, v.is_active) for v in versions] == [("v1", False), ("v2", True)]
        assert activated.is_active is True
        assert (await system.pipelines.aget_active(definition.id)).label == "v2"

    @pytest.mark.asyncio()
    async def test_no_active_version(self, system: IrflowSystem) -> None:
        definition = await system.steps.acreate_definition("ocr")
        await system.steps.acreate_version(definition.id, "v1", activate=True)

        await system.steps.adeactivate(definition.id, "v1")

        with pytest.raises(NotFoundError, match="Active Step Version"):
            await system.steps.aget_active(definition.id)

    @pytest.mark.asyncio()
    async def test_active_version_cannot_be_deleted(self, system: IrflowSystem) -> None:
        definition = await system.steps.acreate_definition("ocr")
        await system.steps.acreate_version(definition.id, "v1", activate=True)

        with pytest.raises(ConflictError) as exc_info:
            await system.steps.adelete_version(definition.id, "v1")
        assert exc_info.value.reason == "active_version"


class TestStepVersions:
    @pytest.mark.asyncio()
    async def test_default_config_aliases(self, system: IrflowSystem) -> None:
        definition = await system.steps.acreate_definition("ocr")

        snake = await system.steps.acreate_version(
            definition.id, "v1", {"default_config": {"dpi": 300}}
        )
        camel = await system.steps.acreate_version(
            definition.id, "v2", {"defaultConfig": {"dpi": 600}}
        )
        empty = await system.steps.acreate_version(definition.id, "v3")

        assert snake.default_config == {"dpi": 300}
        assert camel.default_config == {"dpi": 600}
        assert empty.default_config == {}

    @pytest.mark.asyncio()
    async def test_unknown_step_payload_keys(self, system: IrflowSystem) -> None:
        definition = await system.steps.acreate_definition("ocr")

        with pytest.raises(ValidationFailure, match="unknown payload keys"):
            await system.steps.acreate_version(definition.id, "v1", {"dag": {}})


class TestConcurrentMutations:
    @pytest.mark.asyncio()
    async def test_version_is_never_created_under_a_deleted_definition(
        self, yielding_storage: InMemoryCollectionStorage
    ) -> None:
        pipelines = PipelineRegistry(yielding_storage)
        definition = await pipelines.acreate_definition("intake")

        deleted, _, created = await asyncio.gather(
            pipelines.adelete_definition(definition.id),
            asyncio.sleep(0),
            pipelines.acreate_version(definition.id, "v1", {"dag": DAG}),
            return_exceptions=True,
        )

        definitions = await yielding_storage.aquery(PipelineRegistry.definitions_collection)
        versions = await yielding_storage.aquery(PipelineRegistry.versions_collection)
        assert {v["definition_id"] for v in versions} <= {d["id"] for d in definitions}
        assert isinstance(deleted, ConflictError) or isinstance(created, NotFoundError)

    @pytest.mark.asyncio()
    async def test_racing_creates_keep_labels_unique(
        self, yielding_storage: InMemoryCollectionStorage
    ) -> None:
        steps = StepRegistry(yielding_storage)
        definition = await steps.acreate_definition("ocr")

        results = await asyncio.gather(
            steps.acreate_version(definition.id, "v1"),
            steps.acreate_version(definition.id, "v1"),
            return_exceptions=True,
        )

        assert sum(isinstance(r, ConflictError) for r in results) == 1
        assert [v.label for v in await steps.alist_versions(definition.id)] == ["v1"]
