"""Metric registry: metric definitions, profiles and profile items.

A :class:`MetricDefinition` names a measurement (``key``), how samples are
combined (``aggregation``) and an optional ``target``.  A
:class:`MetricProfile` bundles definitions with weights and thresholds;
at most one profile is active per scope (``step`` or ``pipeline``), using
the same exclusive-activation primitive as the version registries.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from irflow.kernel.domain.metrics import (
    Aggregation,
    Comparison,
    MetricDefinition,
    MetricProfile,
    MetricProfileItem,
    MetricScope,
    metric_definition_from_storage,
    metric_definition_to_storage,
    metric_profile_from_storage,
    metric_profile_to_storage,
    profile_item_from_storage,
    profile_item_to_storage,
)
from irflow.kernel.exceptions import ConflictError, NotFoundError, ValidationFailure
from irflow.kernel.logging import get_logger
from irflow.stdlib.lib.activation import ExclusiveActivation
from irflow.stdlib.lib_base import IrflowLib

if TYPE_CHECKING:
    from irflow.kernel.ports.data_store import SupportsCollectionStorage

logger = get_logger(__name__)

_DEFINITIONS = "metric_definitions"
_PROFILES = "metric_profiles"
_ITEMS = "metric_profile_items"

_ITEM_CONFIG_KEYS = frozenset({"comparison", "history", "expected"})


def _check_item_config(config: Mapping[str, Any] | None) -> dict[str, Any]:
    config = dict(config or {})
    unknown = sorted(set(config) - _ITEM_CONFIG_KEYS)
    if unknown:
        raise ValidationFailure("config", f"unknown keys {unknown}")
    if "comparison" in config:
        try:
            Comparison(config["comparison"])
        except ValueError as e:
            raise ValidationFailure(
                "config.comparison", "must be one of gte, lte, eq", config["comparison"]
            ) from e
    history = config.get("history")
    if history is not None and (not isinstance(history, int) or history < 1):
        raise ValidationFailure("config.history", "must be a positive integer", history)
    return config


class MetricRegistry(IrflowLib):
    """Metric definitions and weighted profiles.

    Exposed operations
    ------------------
    - definitions: ``acreate_metric``, ``aupdate_metric``, ``aget_metric``,
      ``aget_metric_by_key``, ``alist_metrics``, ``adelete_metric``
    - profiles: ``acreate_profile``, ``aactivate_profile``,
      ``adeactivate_profile``, ``aget_active_profile``, ``alist_profiles``,
      ``adelete_profile``
    - items: ``aadd_item``, ``aremove_item``, ``alist_items``
    """

    def __init__(self, storage: SupportsCollectionStorage) -> None:
        self._storage = storage
        self._lock = asyncio.Lock()
        self._activation = ExclusiveActivation(storage, _PROFILES, "scope", "metric_profile")

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------

    async def acreate_metric(
        self,
        key: str,
        aggregation: Aggregation | str = Aggregation.LATEST,
        scope: MetricScope | str = MetricScope.STEP,
        target: float | None = None,
        name: str | None = None,
        description: str | None = None,
        unit: str | None = None,
    ) -> MetricDefinition:
        """Create a metric definition; keys are unique."""
        key = key.strip() if key else ""
        if not key:
            raise ValidationFailure("key", "must not be empty")
        try:
            definition = MetricDefinition(
                id=str(uuid4()),
                key=key,
                aggregation=Aggregation(aggregation),
                scope=MetricScope(scope),
                target=float(target) if target is not None else None,
                name=name,
                description=description,
                unit=unit,
            )
        except ValueError as e:
            raise ValidationFailure("metric_definition", str(e)) from e

        async with self._lock:
            if await self._storage.aquery(_DEFINITIONS, {"key": key}):
                raise ConflictError(
                    "metric_definition", key, "duplicate_key", "metric key already exists"
                )
            await self._storage.asave(
                _DEFINITIONS, definition.id, metric_definition_to_storage(definition)
            )
        logger.info("Created metric '{}' ({}, {})", key, definition.aggregation, definition.scope)
        return definition

    async def aupdate_metric(self, metric_id: str, **changes: Any) -> MetricDefinition:
        """Change aggregation, scope, target, name, description or unit of a metric."""
        allowed = {"aggregation", "scope", "target", "name", "description", "unit"}
        unknown = sorted(set(changes) - allowed)
        if unknown:
            raise ValidationFailure("metric_definition", f"cannot update {unknown}")
        definition = await self.aget_metric(metric_id)
        try:
            if "aggregation" in changes:
                definition.aggregation = Aggregation(changes.pop("aggregation"))
            if "scope" in changes:
                definition.scope = MetricScope(changes.pop("scope"))
        except ValueError as e:
            raise ValidationFailure("metric_definition", str(e)) from e
        if "target" in changes:
            target = changes.pop("target")
            definition.target = float(target) if target is not None else None
        for field_name, value in changes.items():
            setattr(definition, field_name, value)
        await self._storage.asave(
            _DEFINITIONS, definition.id, metric_definition_to_storage(definition)
        )
        return definition

    async def aget_metric(self, metric_id: str) -> MetricDefinition:
        """Get a metric definition by id."""
        data = await self._storage.aload(_DEFINITIONS, metric_id)
        if data is None:
            raise NotFoundError("metric_definition", metric_id)
        return metric_definition_from_storage(data)

    async def afind_metric_by_key(self, key: str) -> MetricDefinition | None:
        """Get a metric definition by key, or ``None``."""
        found = await self._storage.aquery(_DEFINITIONS, {"key": key})
        return metric_definition_from_storage(found[0]) if found else None

    async def aget_metric_by_key(self, key: str) -> MetricDefinition:
        """Get a metric definition by key."""
        definition = await self.afind_metric_by_key(key)
        if definition is None:
            raise NotFoundError("metric_definition", key)
        return definition

    async def alist_metrics(self, scope: MetricScope | str | None = None) -> list[MetricDefinition]:
        """List metric definitions, optionally for one scope, sorted by key."""
        filters = {"scope": str(MetricScope(scope))} if scope is not None else None
        docs = await self._storage.aquery(_DEFINITIONS, filters)
        return sorted((metric_definition_from_storage(d) for d in docs), key=lambda m: m.key)

    async def adelete_metric(self, metric_id: str) -> None:
        """Delete a metric definition that no profile references."""
        await self.aget_metric(metric_id)
        async with self._lock:
            items = await self._storage.aquery(_ITEMS, {"metric_id": metric_id})
            if items:
                raise ConflictError(
                    "metric_definition",
                    metric_id,
                    "in_use",
                    f"metric is used by {len(items)} profile item(s)",
                )
            await self._storage.adelete(_DEFINITIONS, metric_id)

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    async def acreate_profile(
        self,
        name: str,
        scope: MetricScope | str = MetricScope.STEP,
        description: str | None = None,
        *,
        activate: bool = False,
    ) -> MetricProfile:
        """Create a metric profile for a scope."""
        name = name.strip() if name else ""
        if not name:
            raise ValidationFailure("name", "must not be empty")
        try:
            profile = MetricProfile(
                id=str(uuid4()), name=name, scope=MetricScope(scope), description=description
            )
        except ValueError as e:
            raise ValidationFailure("scope", str(e)) from e
        await self._storage.asave(_PROFILES, profile.id, metric_profile_to_storage(profile))
        logger.info("Created {} metric profile '{}'", profile.scope, name)
        if activate:
            return await self.aactivate_profile(profile.id)
        return profile

    async def aget_profile(self, profile_id: str) -> MetricProfile:
        """Get a metric profile by id."""
        data = await self._storage.aload(_PROFILES, profile_id)
        if data is None:
            raise NotFoundError("metric_profile", profile_id)
        return metric_profile_from_storage(data)

    async def alist_profiles(self, scope: MetricScope | str | None = None) -> list[MetricProfile]:
        """List profiles, optionally for one scope, in creation order."""
        filters = {"scope": str(MetricScope(scope))} if scope is not None else None
        docs = await self._storage.aquery(_PROFILES, filters)
        return sorted((metric_profile_from_storage(d) for d in docs), key=lambda p: p.created_at)

    async def aactivate_profile(self, profile_id: str) -> MetricProfile:
        """Make the profile the only active one of its scope."""
        profile = await self.aget_profile(profile_id)
        return metric_profile_from_storage(
            await self._activation.aactivate(str(profile.scope), profile_id)
        )

    async def adeactivate_profile(self, profile_id: str) -> MetricProfile:
        """Deactivate the profile; its scope may be left without an active profile."""
        profile = await self.aget_profile(profile_id)
        return metric_profile_from_storage(
            await self._activation.adeactivate(str(profile.scope), profile_id)
        )

    async def aget_active_profile(self, scope: MetricScope | str) -> MetricProfile | None:
        """Return the active profile of ``scope``, or ``None``."""
        data = await self._activation.aget_active(str(MetricScope(scope)))
        return metric_profile_from_storage(data) if data is not None else None

    async def adelete_profile(self, profile_id: str) -> None:
        """Delete an inactive profile together with its items."""
        async with self._activation.atransaction():
            data = await self._storage.aload(_PROFILES, profile_id)
            if data is None:
                raise NotFoundError("metric_profile", profile_id)
            if data.get("is_active"):
                raise ConflictError(
                    "metric_profile",
                    profile_id,
                    "active_version",
                    "cannot delete an active profile",
                )
            for item in await self._storage.aquery(_ITEMS, {"profile_id": profile_id}):
                await self._storage.adelete(_ITEMS, item["id"])
            await self._storage.adelete(_PROFILES, profile_id)

    # ------------------------------------------------------------------
    # Profile items
    # ------------------------------------------------------------------

    async def aadd_item(
        self,
        profile_id: str,
        metric_id: str,
        weight: float = 1.0,
        threshold: float | None = None,
        config: Mapping[str, Any] | None = None,
    ) -> MetricProfileItem:
        """Add a metric to a profile; a metric appears at most once per profile."""
        await self.aget_profile(profile_id)
        await self.aget_metric(metric_id)
        if weight < 0:
            raise ValidationFailure("weight", "must not be negative", weight)
        item = MetricProfileItem(
            id=str(uuid4()),
            profile_id=profile_id,
            metric_id=metric_id,
            weight=float(weight),
            threshold=float(threshold) if threshold is not None else None,
            config=_check_item_config(config),
        )
        async with self._lock:
            existing = await self._storage.aquery(
                _ITEMS, {"profile_id": profile_id, "metric_id": metric_id}
            )
            if existing:
                raise ConflictError(
                    "metric_profile_item",
                    metric_id,
                    "duplicate_item",
                    f"metric already part of profile '{profile_id}'",
                )
            await self._storage.asave(_ITEMS, item.id, profile_item_to_storage(item))
        return item

    async def aremove_item(self, item_id: str) -> None:
        """Remove an item from its profile."""
        if not await self._storage.adelete(_ITEMS, item_id):
            raise NotFoundError("metric_profile_item", item_id)

    async def alist_items(self, profile_id: str) -> list[MetricProfileItem]:
        """List the items of a profile."""
        docs = await self._storage.aquery(_ITEMS, {"profile_id": profile_id})
        return [profile_item_from_storage(d) for d in docs]

    async def aresolve_profile(
        self, profile_id: str
    ) -> list[tuple[MetricProfileItem, MetricDefinition]]:
        """Return each item of a profile paired with its metric definition."""
        resolved: list[tuple[MetricProfileItem, MetricDefinition]] = []
        for item in await self.alist_items(profile_id):
            resolved.append((item, await self.aget_metric(item.metric_id)))
        return resolved
