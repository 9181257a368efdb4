"""Version registries for pipeline and step definitions.

A definition has a stable id and a unique (case-insensitive) name; it owns
any number of labelled versions, at most one of which is active.  The same
:class:`VersionRegistry` base serves both kinds; :class:`PipelineRegistry`
and :class:`StepRegistry` only differ in collections and version payload.

Usage::

    pipelines = PipelineRegistry(storage)
    definition = await pipelines.acreate_definition("invoice-intake")
    await pipelines.acreate_version(definition.id, "v1", {"dag": dag, "config": {}})
    await pipelines.aactivate(definition.id, "v1")
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, Generic, TypeVar
from uuid import uuid4

from pydantic import ValidationError

from irflow.kernel.domain.dag import parse_dag
from irflow.kernel.domain.registry import (
    Definition,
    DefinitionKind,
    PipelineVersion,
    StepVersion,
    definition_from_storage,
    definition_to_storage,
    pipeline_version_from_storage,
    pipeline_version_to_storage,
    step_version_from_storage,
    step_version_to_storage,
)
from irflow.kernel.exceptions import ConflictError, NotFoundError, ValidationFailure
from irflow.kernel.logging import get_logger
from irflow.kernel.ports.data_store import SupportsCollectionStorage
from irflow.stdlib.lib.activation import ExclusiveActivation
from irflow.stdlib.lib_base import IrflowLib

logger = get_logger(__name__)

V = TypeVar("V", PipelineVersion, StepVersion)


class VersionRegistry(IrflowLib, ABC, Generic[V]):
    """Definitions plus labelled versions with exclusive activation.

    Subclasses set the collection names and translate version payloads.
    """

    kind: DefinitionKind
    definitions_collection: str
    versions_collection: str

    def __init__(self, storage: SupportsCollectionStorage) -> None:
        """Initialise the registry.

        Args
        ----
            storage: Backend holding definitions and versions.
        """
        self._storage = storage
        self._definitions_lock = asyncio.Lock()
        self._activation = ExclusiveActivation(
            storage, self.versions_collection, "definition_id", f"{self.kind}_version"
        )

    @property
    def version_lock(self) -> asyncio.Lock:
        """Lock held while versions are created, activated or deleted."""
        return self._activation.lock

    # ------------------------------------------------------------------
    # Payload hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _new_version(self, definition_id: str, label: str, payload: Mapping[str, Any]) -> V: ...

    @abstractmethod
    def _apply_payload(self, version: V, payload: Mapping[str, Any]) -> None: ...

    @abstractmethod
    def _to_storage(self, version: V) -> dict[str, Any]: ...

    @abstractmethod
    def _from_storage(self, data: dict[str, Any]) -> V: ...

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------

    async def acreate_definition(self, name: str, description: str | None = None) -> Definition:
        """Create a definition; names are unique regardless of case."""
        name = name.strip() if name else ""
        if not name:
            raise ValidationFailure("name", "must not be empty")

        async with self._definitions_lock:
            existing = await self._storage.aquery(
                self.definitions_collection, {"name_key": name.casefold()}
            )
            if existing:
                raise ConflictError(
                    f"{self.kind}_definition",
                    name,
                    "duplicate_name",
                    f"a {self.kind} named '{existing[0]['name']}' already exists",
                )
            definition = Definition(
                id=str(uuid4()),
                kind=self.kind,
                name=name,
                name_key=name.casefold(),
                description=description,
            )
            await self._storage.asave(
                self.definitions_collection, definition.id, definition_to_storage(definition)
            )

        logger.info("Created {} definition '{}' ({})", self.kind, name, definition.id)
        return definition

    async def aget_definition(self, definition_id: str) -> Definition:
        """Get a definition by id."""
        data = await self._storage.aload(self.definitions_collection, definition_id)
        if data is None:
            raise NotFoundError(f"{self.kind}_definition", definition_id)
        return definition_from_storage(data)

    async def aget_definition_by_name(self, name: str) -> Definition:
        """Get a definition by name (case-insensitive)."""
        found = await self._storage.aquery(
            self.definitions_collection, {"name_key": name.strip().casefold()}
        )
        if not found:
            raise NotFoundError(f"{self.kind}_definition", name)
        return definition_from_storage(found[0])

    async def alist_definitions(self) -> list[Definition]:
        """List every definition, sorted by name."""
        docs = await self._storage.aquery(self.definitions_collection)
        return sorted((definition_from_storage(d) for d in docs), key=lambda d: d.name_key)

    async def adelete_definition(self, definition_id: str) -> None:
        """Delete a definition that has no versions left."""
        await self.aget_definition(definition_id)
        async with self._activation.atransaction():
            versions = await self._storage.aquery(
                self.versions_collection, {"definition_id": definition_id}
            )
            if versions:
                raise ConflictError(
                    f"{self.kind}_definition",
                    definition_id,
                    "has_versions",
                    f"definition still has {len(versions)} version(s)",
                )
            await self._storage.adelete(self.definitions_collection, definition_id)
        logger.info("Deleted {} definition '{}'", self.kind, definition_id)

    # ------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------

    async def acreate_version(
        self,
        definition_id: str,
        label: str,
        payload: Mapping[str, Any] | None = None,
        *,
        activate: bool = False,
    ) -> V:
        """Create a labelled version; labels are unique within the definition."""
        label = label.strip() if label else ""
        if not label:
            raise ValidationFailure("label", "must not be empty")
        version = self._new_version(definition_id, label, payload or {})

        async with self._activation.atransaction():
            await self.aget_definition(definition_id)
            if await self._afind_by_label(definition_id, label) is not None:
                raise ConflictError(
                    f"{self.kind}_version",
                    label,
                    "duplicate_label",
                    f"label already used by definition '{definition_id}'",
                )
            await self._storage.asave(
                self.versions_collection, version.id, self._to_storage(version)
            )

        logger.info("Created {} version '{}' ({})", self.kind, label, version.id)
        if activate:
            return await self.aactivate(definition_id, label)
        return version

    async def aupdate_version(
        self, definition_id: str, label: str, payload: Mapping[str, Any]
    ) -> V:
        """Replace payload fields of an existing version."""
        async with self._activation.atransaction():
            version = await self.aget_version_by_label(definition_id, label)
            self._apply_payload(version, payload)
            version.updated_at = time.time()
            await self._storage.asave(
                self.versions_collection, version.id, self._to_storage(version)
            )
        return version

    async def aget_version(self, version_id: str) -> V:
        """Get a version by id."""
        data = await self._storage.aload(self.versions_collection, version_id)
        if data is None:
            raise NotFoundError(f"{self.kind}_version", version_id)
        return self._from_storage(data)

    async def afind_version(self, version_id: str) -> V | None:
        """Get a version by id, or ``None`` when it does not exist."""
        data = await self._storage.aload(self.versions_collection, version_id)
        return self._from_storage(data) if data is not None else None

    async def aget_version_by_label(self, definition_id: str, label: str) -> V:
        """Get a version by its label within a definition."""
        data = await self._afind_by_label(definition_id, label)
        if data is None:
            available = [v.label for v in await self.alist_versions(definition_id)]
            raise NotFoundError(f"{self.kind}_version", label, available)
        return self._from_storage(data)

    async def alist_versions(self, definition_id: str) -> list[V]:
        """List a definition's versions in creation order."""
        docs = await self._storage.aquery(
            self.versions_collection, {"definition_id": definition_id}
        )
        return sorted((self._from_storage(d) for d in docs), key=lambda v: v.created_at)

    async def adelete_version(self, definition_id: str, label: str) -> None:
        """Delete an inactive version."""
        async with self._activation.atransaction():
            data = await self._afind_by_label(definition_id, label)
            if data is None:
                raise NotFoundError(f"{self.kind}_version", label)
            if data.get("is_active"):
                raise ConflictError(
                    f"{self.kind}_version",
                    label,
                    "active_version",
                    "cannot delete an active version; activate another or deactivate it first",
                )
            await self._aguard_delete(data)
            await self._storage.adelete(self.versions_collection, data["id"])
        logger.info("Deleted {} version '{}'", self.kind, label)

    # ------------------------------------------------------------------
    # Activation
    # ------------------------------------------------------------------

    async def aactivate(self, definition_id: str, label: str) -> V:
        """Atomically make ``label`` the only active version of the definition."""
        version = await self.aget_version_by_label(definition_id, label)
        return self._from_storage(await self._activation.aactivate(definition_id, version.id))

    async def adeactivate(self, definition_id: str, label: str) -> V:
        """Deactivate ``label``; the definition may be left with no active version."""
        version = await self.aget_version_by_label(definition_id, label)
        return self._from_storage(await self._activation.adeactivate(definition_id, version.id))

    async def aget_active(self, definition_id: str) -> V:
        """Get the active version of a definition."""
        data = await self._activation.aget_active(definition_id)
        if data is None:
            raise NotFoundError(f"active_{self.kind}_version", definition_id)
        return self._from_storage(data)

    async def _afind_by_label(self, definition_id: str, label: str) -> dict[str, Any] | None:
        found = await self._storage.aquery(
            self.versions_collection, {"definition_id": definition_id, "label": label}
        )
        return found[0] if found else None

    async def _aguard_delete(self, data: dict[str, Any]) -> None:
        """Raise when something still depends on the version being deleted."""


def _check_keys(kind: str, payload: Mapping[str, Any], allowed: set[str]) -> None:
    unknown = sorted(set(payload) - allowed)
    if unknown:
        raise ValidationFailure(
            f"{kind}_version", f"unknown payload keys {unknown}; expected {sorted(allowed)}"
        )


def _check_object(field: str, value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValidationFailure(field, "must be a JSON object", type(value).__name__)
    return dict(value)


class PipelineRegistry(VersionRegistry[PipelineVersion]):
    """Pipeline definitions and versions; a version payload is ``{dag, config}``."""

    kind = DefinitionKind.PIPELINE
    definitions_collection = "pipeline_definitions"
    versions_collection = "pipeline_versions"

    @staticmethod
    def _checked_dag(dag: Any) -> dict[str, Any]:
        try:
            parse_dag(dag)
        except ValidationError as e:
            raise ValidationFailure(
                "dag",
                f"not a valid DAG payload ({e.error_count()} error(s))",
                errors=[{"path": list(err["loc"]), "message": err["msg"]} for err in e.errors()],
            ) from e
        return dict(dag)

    def _new_version(
        self, definition_id: str, label: str, payload: Mapping[str, Any]
    ) -> PipelineVersion:
        _check_keys(self.kind, payload, {"dag", "config"})
        if "dag" not in payload:
            raise ValidationFailure("dag", "is required for a pipeline version")
        return PipelineVersion(
            id=str(uuid4()),
            definition_id=definition_id,
            label=label,
            dag=self._checked_dag(payload["dag"]),
            config=_check_object("config", payload.get("config")),
        )

    def _apply_payload(self, version: PipelineVersion, payload: Mapping[str, Any]) -> None:
        _check_keys(self.kind, payload, {"dag", "config"})
        if "dag" in payload:
            version.dag = self._checked_dag(payload["dag"])
        if "config" in payload:
            version.config = _check_object("config", payload["config"])

    def _to_storage(self, version: PipelineVersion) -> dict[str, Any]:
        return pipeline_version_to_storage(version)

    def _from_storage(self, data: dict[str, Any]) -> PipelineVersion:
        return pipeline_version_from_storage(data)


class StepRegistry(VersionRegistry[StepVersion]):
    """Step definitions and versions; a version payload is ``{default_config}``."""

    kind = DefinitionKind.STEP
    definitions_collection = "step_definitions"
    versions_collection = "step_versions"
    schemas_collection = "ir_schemas"

    @staticmethod
    def _default_config(payload: Mapping[str, Any]) -> Any:
        return payload.get("default_config", payload.get("defaultConfig"))

    def _new_version(
        self, definition_id: str, label: str, payload: Mapping[str, Any]
    ) -> StepVersion:
        _check_keys(self.kind, payload, {"default_config", "defaultConfig"})
        return StepVersion(
            id=str(uuid4()),
            definition_id=definition_id,
            label=label,
            default_config=_check_object("default_config", self._default_config(payload)),
        )

    def _apply_payload(self, version: StepVersion, payload: Mapping[str, Any]) -> None:
        _check_keys(self.kind, payload, {"default_config", "defaultConfig"})
        version.default_config = _check_object(
            "default_config", self._default_config(payload)
        )

    def _to_storage(self, version: StepVersion) -> dict[str, Any]:
        return step_version_to_storage(version)

    def _from_storage(self, data: dict[str, Any]) -> StepVersion:
        return step_version_from_storage(data)

    async def _aguard_delete(self, data: dict[str, Any]) -> None:
        schemas = await self._storage.aquery(
            self.schemas_collection, {"step_version_id": data["id"]}
        )
        if schemas:
            raise ConflictError(
                "step_version",
                data["label"],
                "has_schemas",
                f"step version still has {len(schemas)} IR schema(s)",
            )
