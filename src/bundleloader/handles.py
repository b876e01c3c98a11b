"""Type handles for classes resolved from a bundle."""

from __future__ import annotations

from abc import ABC, ABCMeta
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from bundleloader.markers import declared_tags

if TYPE_CHECKING:
    from bundleloader.context import BundleContext


def is_capability_contract(obj: Any) -> bool:
    """Return True if ``obj`` is an interface-like class.

    Protocols always qualify. An ABC qualifies while it still has abstract
    methods, or when it is the root of its ABC hierarchy (marker interfaces
    such as ``class Exportable(ABC): pass``). Concrete subclasses of an ABC
    are implementations, not contracts.
    """
    if not isinstance(obj, type):
        return False
    if getattr(obj, "_is_protocol", False):
        return True
    if not isinstance(obj, ABCMeta) or obj is ABC:
        return False
    if obj.__abstractmethods__:
        return True
    return not any(isinstance(base, ABCMeta) for base in obj.__bases__ if base is not ABC)


@dataclass(frozen=True)
class TypeHandle:
    """A class defined by a bundle, resolved through a BundleContext.

    Equality and hashing follow the class object, so the same class reached
    through two entries collapses to one handle in a set.
    """

    cls: type
    """The resolved class."""

    context: "BundleContext | None" = field(default=None, compare=False, repr=False)
    """The context the class was resolved through."""

    @property
    def module_name(self) -> str:
        return self.cls.__module__

    @property
    def qualname(self) -> str:
        return self.cls.__qualname__

    @property
    def name(self) -> str:
        """Fully qualified name, e.g. ``plugins.csv.CsvExporter``."""
        return f"{self.module_name}.{self.qualname}"

    @property
    def tags(self) -> frozenset:
        """Markers declared directly on the class."""
        return declared_tags(self.cls)

    @property
    def ancestors(self) -> tuple[type, ...]:
        """Every ancestor in method resolution order, excluding the class."""
        return self.cls.__mro__[1:]

    @property
    def contracts(self) -> tuple[type, ...]:
        """Capability contracts the class inherits from explicitly."""
        return tuple(base for base in self.ancestors if is_capability_contract(base))

    def __str__(self) -> str:
        return self.name
