"""Predicates that classify resolved types.

Three structural questions can be asked of a type:
- has_tag: does the class declare a metadata marker?
- is_derived_from: is a base class anywhere in its ancestry?
- implements_capability: does it implement an interface-like contract?

All three accept a TypeHandle or a bare class and answer False rather than
raising for arguments they cannot interpret. The TypePredicate classes wrap
them as callables the loader can apply to every type in a bundle.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Hashable

from bundleloader.handles import TypeHandle, is_capability_contract
from bundleloader.markers import declared_tags

logger = logging.getLogger(__name__)


def _as_class(obj: Any) -> type | None:
    if isinstance(obj, TypeHandle):
        return obj.cls
    if isinstance(obj, type):
        return obj
    return None


def _label(obj: Any) -> str:
    if isinstance(obj, type):
        return f"{obj.__module__}.{obj.__qualname__}"
    return repr(obj)


def has_tag(obj: TypeHandle | type, tag: Hashable) -> bool:
    """Return True if the class itself declares ``tag`` (exact match)."""
    cls = _as_class(obj)
    if cls is None:
        return False
    try:
        return tag in declared_tags(cls)
    except TypeError:
        # Unhashable tag: nothing can declare it.
        return False


def is_derived_from(obj: TypeHandle | type, base: type) -> bool:
    """Return True if ``base`` is a proper ancestor of the class.

    Walks the full MRO, so indirect and multiple-inheritance ancestors count.
    """
    cls = _as_class(obj)
    if cls is None or not isinstance(base, type):
        return False
    return base in cls.__mro__[1:]


def implements_capability(
    obj: TypeHandle | type,
    contract: type,
    *,
    structural: bool = False,
) -> bool:
    """Return True if the class implements the capability contract.

    By default the contract must be declared: it appears in the class's
    ancestry, or the class was registered with ``Contract.register``. A
    ``__subclasshook__`` that accepts the class on its members alone (as
    ``collections.abc.Hashable`` does for nearly everything) is duck typing
    and only counts when ``structural`` is set. Protocol contracts also need
    ``@runtime_checkable`` to match structurally.
    """
    cls = _as_class(obj)
    if cls is None or cls is contract or not is_capability_contract(contract):
        return False

    if contract in cls.__mro__:
        return True
    if getattr(contract, "_is_protocol", False):
        if not (structural and getattr(contract, "_is_runtime_protocol", False)):
            return False

    try:
        if not issubclass(cls, contract):
            return False
        return structural or contract.__subclasshook__(cls) is not True
    except TypeError as exc:
        logger.debug(
            "subclass check unsupported contract=%s type=%s error=%s",
            _label(contract),
            _label(cls),
            exc,
        )
        return False


class TypePredicate(ABC):
    """A test applied to each type found in a bundle."""

    @abstractmethod
    def __call__(self, handle: TypeHandle) -> bool:
        """Return True if the type should be collected."""

    @abstractmethod
    def describe(self) -> str:
        """Short human-readable form used in logs."""

    def __str__(self) -> str:
        return self.describe()


@dataclass(frozen=True)
class TagPredicate(TypePredicate):
    """Match classes declaring a metadata marker."""

    tag: Hashable

    def __call__(self, handle: TypeHandle) -> bool:
        return has_tag(handle, self.tag)

    def describe(self) -> str:
        return f"tagged({_label(self.tag)})"


@dataclass(frozen=True)
class AncestorPredicate(TypePredicate):
    """Match classes derived from a base class."""

    base: type

    def __call__(self, handle: TypeHandle) -> bool:
        return is_derived_from(handle, self.base)

    def describe(self) -> str:
        return f"derived_from({_label(self.base)})"


@dataclass(frozen=True)
class CapabilityPredicate(TypePredicate):
    """Match classes implementing a capability contract."""

    contract: type
    structural: bool = False

    def __call__(self, handle: TypeHandle) -> bool:
        return implements_capability(handle, self.contract, structural=self.structural)

    def describe(self) -> str:
        return f"implements({_label(self.contract)})"
