"""Resolve archive entries to the classes they define."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import ModuleType
from typing import Iterator

from bundleloader.archive import module_name_for
from bundleloader.context import BundleContext
from bundleloader.errors import ResolutionFailure
from bundleloader.handles import TypeHandle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedUnit:
    """One code unit after resolution."""

    entry_name: str
    """Archive entry the unit came from (e.g. ``plugins/csv.py``)."""

    module_name: str
    """Dotted module name (e.g. ``plugins.csv``)."""

    module: ModuleType = field(repr=False)
    """The module object, owned by the context."""

    types: tuple[TypeHandle, ...] = ()
    """Classes the module defines in definition order, each followed by its nested classes."""


def _nested_classes(cls: type) -> Iterator[type]:
    for value in list(vars(cls).values()):
        if (
            isinstance(value, type)
            and value.__module__ == cls.__module__
            and value.__qualname__ == f"{cls.__qualname__}.{value.__name__}"
        ):
            yield value
            yield from _nested_classes(value)


def defined_types(module: ModuleType, context: BundleContext | None = None) -> tuple[TypeHandle, ...]:
    """Return handles for classes the module itself defines.

    Classes nested in a class body (``Outer.Inner``) are included. Imported
    classes and aliases of the same class are skipped.
    """
    seen: set[int] = set()
    handles = []
    for value in list(vars(module).values()):
        if not isinstance(value, type) or value.__module__ != module.__name__:
            continue
        for cls in (value, *_nested_classes(value)):
            if id(cls) in seen:
                continue
            seen.add(id(cls))
            handles.append(TypeHandle(cls=cls, context=context))
    return tuple(handles)


def resolve_unit(context: BundleContext, entry_name: str) -> ResolvedUnit:
    """Resolve one unit entry through ``context``.

    Raises:
        ResolutionFailure: If the entry name does not map to a module name,
            or the module cannot be loaded.
    """
    try:
        module_name = module_name_for(entry_name, context.unit_suffix)
    except ValueError as exc:
        raise ResolutionFailure(
            str(exc), bundle_path=context.bundle_path, entry_name=entry_name
        ) from exc

    module = context.resolve_module(module_name)
    types = defined_types(module, context)
    logger.debug("resolved unit entry=%s module=%s types=%d", entry_name, module_name, len(types))
    return ResolvedUnit(
        entry_name=entry_name,
        module_name=module_name,
        module=module,
        types=types,
    )
