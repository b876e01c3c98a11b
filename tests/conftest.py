"""Shared fixtures: bundle archives and a host API module."""

import sys
import textwrap
import zipfile
from pathlib import Path
from types import ModuleType

import pytest

HOSTAPP_SOURCE = '''
from abc import ABC, abstractmethod
from typing import Protocol, runtime_checkable


class Plugin:
    """Plain base class plugins derive from."""


class Exporter(ABC):
    @abstractmethod
    def export(self, data):
        ...


class Closeable(ABC):
    """Marker interface without methods."""


@runtime_checkable
class Startable(Protocol):
    def start(self) -> None:
        ...


class Marker:
    """Marker object used with @tagged."""


class OtherMarker:
    """A second, unrelated marker."""
'''


@pytest.fixture
def make_bundle(tmp_path: Path):
    """Return a factory that writes a bundle archive from {entry: source}.

    Sources are dedented. Entries are written in dict order; names listed in
    ``directories`` are written first as directory entries.
    """

    def _make(
        entries: dict[str, str | bytes],
        name: str = "bundle.zip",
        directories: tuple[str, ...] = (),
    ) -> Path:
        path = tmp_path / name
        with zipfile.ZipFile(path, "w") as archive:
            for directory in directories:
                archive.writestr(directory.rstrip("/") + "/", "")
            for entry, content in entries.items():
                if isinstance(content, str):
                    content = textwrap.dedent(content)
                archive.writestr(entry, content)
        return path

    return _make


@pytest.fixture
def hostapp(monkeypatch) -> ModuleType:
    """Install a ``hostapp`` module that bundle code can import from the host."""
    module = ModuleType("hostapp")
    exec(HOSTAPP_SOURCE, module.__dict__)
    monkeypatch.setitem(sys.modules, "hostapp", module)
    return module


@pytest.fixture
def clean_env(monkeypatch):
    """Remove BUNDLELOADER_* variables for the duration of a test."""
    for name in (
        "BUNDLELOADER_UNIT_SUFFIX",
        "BUNDLELOADER_HOST_FIRST",
        "BUNDLELOADER_SKIP_UNRESOLVABLE",
        "BUNDLELOADER_LOG_LEVEL",
        "BUNDLELOADER_LOG_FILE",
    ):
        monkeypatch.delenv(name, raising=False)
