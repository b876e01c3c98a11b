"""Failure types raised while loading a bundle.

Every failure is a BundleLoadError carrying a FailureKind, so callers that
only care about success can check the kind-less outcome while tests and
diagnostics can still tell the cases apart.
"""

from __future__ import annotations

from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Iterator


class FailureKind(Enum):
    """Which step of a load failed."""

    ARCHIVE_OPEN = "archive_open"
    """The archive is missing, unreadable, or not a valid container."""

    RESOLUTION = "resolution"
    """A code unit could not be mapped to a loaded module."""

    PREDICATE = "predicate"
    """A caller-supplied predicate raised while classifying a type."""


class BundleLoadError(Exception):
    """Base class for all bundle loading failures."""

    kind: FailureKind = FailureKind.RESOLUTION

    def __init__(self, message: str, *, bundle_path: Path | str | None = None):
        super().__init__(message)
        self.bundle_path = Path(bundle_path) if bundle_path is not None else None

    def __str__(self) -> str:
        message = super().__str__()
        if self.bundle_path is None:
            return message
        return f"{message} (bundle={self.bundle_path})"


class ArchiveOpenFailure(BundleLoadError):
    """The bundle archive could not be opened."""

    kind = FailureKind.ARCHIVE_OPEN


class ResolutionFailure(BundleLoadError):
    """A name could not be resolved to a module or type inside a bundle."""

    kind = FailureKind.RESOLUTION

    def __init__(
        self,
        message: str,
        *,
        bundle_path: Path | str | None = None,
        entry_name: str | None = None,
        module_name: str | None = None,
    ):
        super().__init__(message, bundle_path=bundle_path)
        self.entry_name = entry_name
        self.module_name = module_name


class PredicateFailure(BundleLoadError):
    """A predicate raised instead of answering."""

    kind = FailureKind.PREDICATE


@contextmanager
def reraise_as(
    error_type: type[BundleLoadError],
    message: str,
    **fields,
) -> Iterator[None]:
    """Convert any exception raised in the block into ``error_type``.

    BundleLoadErrors pass through untouched so the innermost failure wins.

    Example:
        with reraise_as(ArchiveOpenFailure, "cannot open", bundle_path=path):
            zipfile.ZipFile(path)
    """
    try:
        yield
    except BundleLoadError:
        raise
    except Exception as exc:
        raise error_type(f"{message}: {type(exc).__name__}: {exc}", **fields) from exc
