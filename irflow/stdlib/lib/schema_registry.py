"""IR schema registry: versioned JSON-Schemas per step version.

Each step version owns any number of schema versions, at most one of which
is active.  :meth:`SchemaRegistry.avalidate` checks an IR payload against
the pinned schema version, or the active one when nothing is pinned.

When a step version has no schema at all, the outcome depends on the
missing-schema policy:

- ``permit`` (default): valid, ``schema_version=None``, plus a warning in
  the outcome and in the log
- ``reject``: invalid, with a single ``missing_schema`` error
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from uuid import uuid4

import jsonschema
from jsonschema.exceptions import SchemaError
from referencing.exceptions import Unresolvable

from irflow.kernel.config.models import MissingSchemaPolicyName
from irflow.kernel.domain.registry import (
    IRSchema,
    ValidationOutcome,
    ir_schema_from_storage,
    ir_schema_to_storage,
)
from irflow.kernel.exceptions import ConflictError, NotFoundError, ValidationFailure
from irflow.kernel.logging import get_logger
from irflow.stdlib.lib.activation import ExclusiveActivation
from irflow.stdlib.lib.version_registry import StepRegistry
from irflow.stdlib.lib_base import IrflowLib

if TYPE_CHECKING:
    from irflow.kernel.ports.data_store import SupportsCollectionStorage

logger = get_logger(__name__)

_COLLECTION = StepRegistry.schemas_collection
NO_SCHEMA_WARNING = "no IR schema registered for step version '{}'; validation skipped"


def _pointer(path: Any) -> str:
    return "/" + "/".join(str(p) for p in path) if path else ""


def check_schema_document(schema: Any) -> dict[str, Any]:
    """Ensure ``schema`` is a usable Draft 2020-12 JSON-Schema.

    Raises
    ------
    ValidationFailure
        If the document is not an object or not a valid JSON-Schema
    """
    if not isinstance(schema, dict):
        raise ValidationFailure("schema", "must be a JSON object", type(schema).__name__)
    try:
        jsonschema.Draft202012Validator.check_schema(schema)
    except SchemaError as e:
        raise ValidationFailure(
            "schema",
            f"not a valid JSON-Schema: {e.message}",
            errors=[{"path": _pointer(e.absolute_path), "message": e.message}],
        ) from e
    return schema


def validate_against(schema: dict[str, Any], payload: Any) -> list[dict[str, Any]]:
    """Validate ``payload`` and return structured errors sorted by path.

    A ``$ref`` that cannot be resolved is reported as a single ``$ref`` error
    instead of raising, since ``check_schema`` does not follow references.
    """
    validator = jsonschema.Draft202012Validator(schema)
    try:
        errors = sorted(validator.iter_errors(payload), key=lambda e: [str(p) for p in e.path])
    except Unresolvable as e:
        return [{"path": "", "message": f"unresolvable reference: {e}", "validator": "$ref"}]
    return [
        {"path": _pointer(e.absolute_path), "message": e.message, "validator": e.validator}
        for e in errors
    ]


class SchemaRegistry(IrflowLib):
    """Versioned IR schemas scoped to step versions.

    Exposed operations
    ------------------
    - ``acreate_schema(step_version_id, version, schema, ...)``
    - ``aactivate`` / ``adeactivate`` / ``adelete_schema``
    - ``aget_active`` / ``aget_schema`` / ``alist_schemas``
    - ``avalidate(step_version_id, payload, schema_version?)``
    """

    def __init__(
        self,
        storage: SupportsCollectionStorage,
        steps: StepRegistry | None = None,
        missing_schema_policy: MissingSchemaPolicyName = "permit",
    ) -> None:
        """Initialise the registry.

        Args
        ----
            storage: Backend holding schemas.
            steps: When given, schemas can only be created for existing step versions,
                and creation shares the step registry's version lock.
            missing_schema_policy: ``"permit"`` or ``"reject"`` IR of schema-less steps.
        """
        if missing_schema_policy not in ("permit", "reject"):
            raise ValidationFailure("missing_schema_policy", "must be 'permit' or 'reject'")
        self._storage = storage
        self._steps = steps
        self.missing_schema_policy = missing_schema_policy
        self._activation = ExclusiveActivation(
            storage,
            _COLLECTION,
            "step_version_id",
            "ir_schema",
            lock=steps.version_lock if steps is not None else None,
        )

    async def acreate_schema(
        self,
        step_version_id: str,
        version: str,
        schema: dict[str, Any],
        name: str | None = None,
        *,
        activate: bool = False,
    ) -> IRSchema:
        """Register a schema version for a step version."""
        version = version.strip() if version else ""
        if not version:
            raise ValidationFailure("version", "must not be empty")
        check_schema_document(schema)
        record = IRSchema(
            id=str(uuid4()),
            step_version_id=step_version_id,
            version=version,
            schema=schema,
            name=name,
        )
        async with self._activation.atransaction():
            if self._steps is not None:
                await self._steps.aget_version(step_version_id)
            if await self._afind(step_version_id, version) is not None:
                raise ConflictError(
                    "ir_schema",
                    version,
                    "duplicate_label",
                    f"schema version already exists for step version '{step_version_id}'",
                )
            await self._storage.asave(_COLLECTION, record.id, ir_schema_to_storage(record))

        logger.info("Registered IR schema '{}' for step version '{}'", version, step_version_id)
        if activate:
            return await self.aactivate(step_version_id, version)
        return record

    async def aget_schema(self, step_version_id: str, version: str) -> IRSchema:
        """Get one schema version of a step version."""
        data = await self._afind(step_version_id, version)
        if data is None:
            available = [s.version for s in await self.alist_schemas(step_version_id)]
            raise NotFoundError("ir_schema", version, available)
        return ir_schema_from_storage(data)

    async def alist_schemas(self, step_version_id: str) -> list[IRSchema]:
        """List the schemas of a step version in creation order."""
        docs = await self._storage.aquery(_COLLECTION, {"step_version_id": step_version_id})
        return sorted((ir_schema_from_storage(d) for d in docs), key=lambda s: s.created_at)

    async def aactivate(self, step_version_id: str, version: str) -> IRSchema:
        """Atomically make ``version`` the only active schema of the step version."""
        record = await self.aget_schema(step_version_id, version)
        return ir_schema_from_storage(await self._activation.aactivate(step_version_id, record.id))

    async def adeactivate(self, step_version_id: str, version: str) -> IRSchema:
        """Deactivate ``version``; the step version may be left without an active schema."""
        record = await self.aget_schema(step_version_id, version)
        return ir_schema_from_storage(
            await self._activation.adeactivate(step_version_id, record.id)
        )

    async def aget_active(self, step_version_id: str) -> IRSchema:
        """Get the active schema of a step version."""
        data = await self._activation.aget_active(step_version_id)
        if data is None:
            raise NotFoundError("active_ir_schema", step_version_id)
        return ir_schema_from_storage(data)

    async def adelete_schema(self, step_version_id: str, version: str) -> None:
        """Delete an inactive schema version."""
        async with self._activation.atransaction():
            data = await self._afind(step_version_id, version)
            if data is None:
                raise NotFoundError("ir_schema", version)
            if data.get("is_active"):
                raise ConflictError(
                    "ir_schema", version, "active_version", "cannot delete an active schema"
                )
            await self._storage.adelete(_COLLECTION, data["id"])
        logger.info("Deleted IR schema '{}' of step version '{}'", version, step_version_id)

    async def avalidate(
        self, step_version_id: str, payload: Any, schema_version: str | None = None
    ) -> ValidationOutcome:
        """Validate an IR payload against the pinned or active schema.

        Args
        ----
            step_version_id: Step version whose schemas apply.
            payload: The IR document.
            schema_version: Pin a specific schema version instead of the active one.

        Returns
        -------
            ValidationOutcome: validity, structured errors and the schema used

        Raises
        ------
            NotFoundError: If ``schema_version`` is pinned but does not exist
        """
        if schema_version is not None:
            record: IRSchema | None = await self.aget_schema(step_version_id, schema_version)
        else:
            data = await self._activation.aget_active(step_version_id)
            record = ir_schema_from_storage(data) if data is not None else None

        if record is None:
            return self._missing_schema_outcome(step_version_id)

        errors = validate_against(record.schema, payload)
        if errors:
            logger.debug(
                "IR for step version '{}' failed schema '{}' with {} error(s)",
                step_version_id,
                record.version,
                len(errors),
            )
        return ValidationOutcome(
            is_valid=not errors,
            errors=tuple(errors),
            schema_id=record.id,
            schema_version=record.version,
        )

    def _missing_schema_outcome(self, step_version_id: str) -> ValidationOutcome:
        warning = NO_SCHEMA_WARNING.format(step_version_id)
        if self.missing_schema_policy == "reject":
            logger.warning("Rejecting IR: {}", warning)
            return ValidationOutcome(
                is_valid=False,
                errors=({"path": "", "message": warning, "validator": "missing_schema"},),
                warnings=(warning,),
            )
        logger.warning(warning)
        return ValidationOutcome(is_valid=True, warnings=(warning,))

    async def _afind(self, step_version_id: str, version: str) -> dict[str, Any] | None:
        found = await self._storage.aquery(
            _COLLECTION, {"step_version_id": step_version_id, "version": version}
        )
        return found[0] if found else None
