"""Base class for irflow libraries (registries and stores).

Every public async method whose name starts with ``a`` (``acreate_definition``,
``aactivate``, ``alist_runs`` ...) is part of the library's management
surface.  An admin or HTTP layer can discover those operations with
:meth:`IrflowLib.get_operations` instead of hard-coding them.

Lifecycle
---------
1. :func:`~irflow.system.create_system` instantiates the lib; entering the
   system calls :meth:`asetup`.
2. Callers invoke operations.
3. Closing the system calls :meth:`ateardown`.
"""

from __future__ import annotations

import inspect
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable


class IrflowLib:
    """Base class for management-surface libraries.

    Subclasses receive their storage via constructor injection and expose
    public async ``a*`` methods as operations.
    """

    async def asetup(self) -> None:
        """Called once before first use."""

    async def ateardown(self) -> None:
        """Called once on shutdown."""

    def get_operations(self) -> dict[str, Callable[..., Any]]:
        """Return a mapping of operation name -> bound async method."""
        operations: dict[str, Callable[..., Any]] = {}
        for name in dir(self):
            if name.startswith("_") or not name.startswith("a"):
                continue
            if name in ("asetup", "ateardown"):
                continue
            attr = getattr(self, name)
            if callable(attr) and inspect.iscoroutinefunction(attr):
                operations[name] = attr
        return operations

    def describe_operations(self) -> list[dict[str, Any]]:
        """Return name, parameters and summary line for every operation."""
        described: list[dict[str, Any]] = []
        for name, method in sorted(self.get_operations().items()):
            params = [p for p in inspect.signature(method).parameters if p != "self"]
            described.append(
                {
                    "name": name,
                    "parameters": params,
                    "summary": (method.__doc__ or "").strip().split("\n")[0],
                }
            )
        return described

    def __repr__(self) -> str:
        """Return developer-friendly string representation."""
        return f"{type(self).__name__}(operations={sorted(self.get_operations())})"
