"""Access to bundle archives.

A bundle is a zip container whose entries mirror the module hierarchy:
``pkg/sub/mod.py`` holds module ``pkg.sub.mod`` and ``pkg/__init__.py``
holds package ``pkg``. Everything else in the archive (data files,
``*.dist-info`` metadata, directory entries) is ignored by the loader.
"""

from __future__ import annotations

import logging
import zipfile
from pathlib import Path
from typing import Iterator

from bundleloader.errors import ArchiveOpenFailure, reraise_as

logger = logging.getLogger(__name__)

UNIT_SUFFIX = ".py"
PACKAGE_INIT = "__init__"


def open_archive(path: Path | str) -> zipfile.ZipFile:
    """Open a bundle archive for reading.

    The caller owns the returned handle and must close it, preferably with a
    ``with`` block.

    Raises:
        ArchiveOpenFailure: If the file is missing, unreadable or not a zip.
    """
    path = Path(path)
    with reraise_as(ArchiveOpenFailure, "cannot open bundle archive", bundle_path=path):
        archive = zipfile.ZipFile(path)
    logger.debug("opened archive path=%s", path)
    return archive


def iter_entries(archive: zipfile.ZipFile) -> Iterator[str]:
    """Yield entry names in archive order, skipping directory entries."""
    for info in archive.infolist():
        if info.is_dir():
            continue
        yield info.filename


def is_unit_entry(name: str, suffix: str = UNIT_SUFFIX) -> bool:
    """Return True if the entry holds a code unit."""
    return name.endswith(suffix) and len(name) > len(suffix) and not name.endswith("/" + suffix)


def module_name_for(name: str, suffix: str = UNIT_SUFFIX) -> str:
    """Map a unit entry name to the dotted module name it defines.

    >>> module_name_for("pkg/sub/mod.py")
    'pkg.sub.mod'
    >>> module_name_for("pkg/__init__.py")
    'pkg'

    Raises:
        ValueError: If the entry does not form a valid dotted module name.
    """
    if not is_unit_entry(name, suffix):
        raise ValueError(f"Not a code unit entry: {name!r}")
    parts = name[: -len(suffix)].split("/")
    if parts[-1] == PACKAGE_INIT:
        parts = parts[:-1]
    if not parts or not all(part.isidentifier() for part in parts):
        raise ValueError(f"Entry does not name a module: {name!r}")
    return ".".join(parts)


def read_entry(path: Path | str, name: str) -> bytes:
    """Read a single entry, opening and closing the archive around the read.

    Raises:
        ArchiveOpenFailure: If the archive or the entry cannot be read.
    """
    with open_archive(path) as archive:
        with reraise_as(ArchiveOpenFailure, f"cannot read entry {name!r}", bundle_path=path):
            return archive.read(name)
