"""Metadata markers attached to classes.

Bundle authors tag plugin classes so hosts can find them without importing
anything but this module::

    from bundleloader.markers import tagged

    @tagged("exporter", ExportPlugin)
    class CsvExporter:
        ...

A marker is any hashable value. Strings work, but a host-defined marker class
is harder to collide with. Tags are declared per class: a subclass of a tagged
class carries no tags unless it is decorated itself.
"""

from __future__ import annotations

from typing import Any, Callable, Hashable, TypeVar

TAGS_ATTRIBUTE = "__bundle_tags__"

T = TypeVar("T", bound=type)


def tagged(*markers: Hashable) -> Callable[[T], T]:
    """Class decorator declaring metadata markers on a class."""
    if not markers:
        raise TypeError("tagged() requires at least one marker")

    def decorate(cls: T) -> T:
        if not isinstance(cls, type):
            raise TypeError(f"tagged() can only decorate classes, got {cls!r}")
        existing = cls.__dict__.get(TAGS_ATTRIBUTE, frozenset())
        setattr(cls, TAGS_ATTRIBUTE, frozenset(existing) | frozenset(markers))
        return cls

    return decorate


def declared_tags(cls: Any) -> frozenset:
    """Return the markers declared directly on ``cls`` (never inherited ones)."""
    tags = getattr(cls, "__dict__", {}).get(TAGS_ATTRIBUTE)
    if isinstance(tags, frozenset):
        return tags
    return frozenset()
