"""Isolated loading contexts.

A BundleContext resolves module and class names for exactly one bundle.
Modules defined by the bundle are executed from the archive into a private
registry instead of ``sys.modules``, so two bundles (or two loads of the same
bundle) never share module objects. Names the bundle does not define fall back
to the host's regular import system, which keeps shared types such as the
host's plugin base classes identical inside and outside the bundle.

Bundle code runs with its own ``__builtins__`` mapping whose ``__import__``
routes through the context. That is the whole isolation mechanism: it
separates namespaces, it is not a security boundary.
"""

from __future__ import annotations

import builtins
import importlib
import importlib.util
import logging
import threading
import zipfile
from contextlib import contextmanager
from importlib.machinery import ModuleSpec
from pathlib import Path
from types import MappingProxyType, ModuleType
from typing import Any, Callable, Iterator, Mapping, Sequence

from bundleloader.archive import (
    PACKAGE_INIT,
    UNIT_SUFFIX,
    is_unit_entry,
    iter_entries,
    module_name_for,
    open_archive,
    read_entry,
)
from bundleloader.errors import (
    ArchiveOpenFailure,
    BundleLoadError,
    ResolutionFailure,
    reraise_as,
)

logger = logging.getLogger(__name__)

ImportFunction = Callable[..., ModuleType]


class BundleContext:
    """Module registry for one bundle, chained to the host's import system.

    The archive is indexed on first use, so constructing a context never
    fails; a missing or corrupt archive surfaces as ResolutionFailure from
    the first resolve call.
    """

    def __init__(
        self,
        bundle_path: Path | str,
        *,
        host_first: bool = False,
        unit_suffix: str = UNIT_SUFFIX,
        host_import: ImportFunction | None = None,
    ):
        """Create a context.

        Args:
            bundle_path: The archive this context reads units from.
            host_first: Try the host import system before the bundle when
                bundle code imports a name both could provide.
            unit_suffix: Entry suffix that marks a code unit.
            host_import: Replacement for ``builtins.__import__`` used for
                fallback lookups (mainly for tests).
        """
        self.bundle_path = Path(bundle_path)
        self.host_first = host_first
        self.unit_suffix = unit_suffix
        self._host_import = host_import
        self._modules: dict[str, ModuleType] = {}
        self._index: dict[str, str | None] | None = None
        self._packages: set[str] = set()
        self._archive: zipfile.ZipFile | None = None
        self._lock = threading.RLock()
        self._builtins: dict[str, Any] = dict(builtins.__dict__)
        self._builtins["__import__"] = self._import

    def __repr__(self) -> str:
        return f"<BundleContext(bundle='{self.bundle_path}', loaded={len(self._modules)})>"

    # =========================================================================
    # Archive access
    # =========================================================================

    @contextmanager
    def reading(self, archive: zipfile.ZipFile) -> Iterator[BundleContext]:
        """Serve entry reads from an already open ``archive`` inside the block.

        The caller keeps ownership of the handle. Outside the block every read
        opens and closes the archive on its own.
        """
        with self._lock:
            previous, self._archive = self._archive, archive
        try:
            yield self
        finally:
            with self._lock:
                self._archive = previous

    def _entries(self) -> list[str]:
        if self._archive is not None:
            return list(iter_entries(self._archive))
        with open_archive(self.bundle_path) as archive:
            return list(iter_entries(archive))

    def _read(self, entry: str) -> bytes:
        archive = self._archive
        if archive is None:
            return read_entry(self.bundle_path, entry)
        with reraise_as(
            ArchiveOpenFailure, f"cannot read entry {entry!r}", bundle_path=self.bundle_path
        ):
            return archive.read(entry)

    # =========================================================================
    # Index: which names does the bundle define?
    # =========================================================================

    def _load_index(self) -> dict[str, str | None]:
        """Map every module name the bundle defines to its entry.

        Implicit namespace packages map to None.
        """
        if self._index is not None:
            return self._index

        try:
            entries = self._entries()
        except BundleLoadError as exc:
            raise ResolutionFailure(
                f"cannot index bundle: {exc}", bundle_path=self.bundle_path
            ) from exc

        index: dict[str, str | None] = {}
        packages: set[str] = set()
        init_name = PACKAGE_INIT + self.unit_suffix
        for entry in entries:
            if not is_unit_entry(entry, self.unit_suffix):
                continue
            try:
                name = module_name_for(entry, self.unit_suffix)
            except ValueError:
                logger.debug("unindexable entry bundle=%s entry=%s", self.bundle_path, entry)
                continue
            if index.get(name) is None:
                index[name] = entry
            if entry.rsplit("/", 1)[-1] == init_name:
                packages.add(name)
            parts = name.split(".")
            for i in range(1, len(parts)):
                prefix = ".".join(parts[:i])
                packages.add(prefix)
                index.setdefault(prefix, None)

        self._index = index
        self._packages = packages
        logger.debug("indexed bundle path=%s modules=%d", self.bundle_path, len(index))
        return index

    def defines(self, name: str) -> bool:
        """Return True if the bundle itself provides module ``name``."""
        return name in self._load_index()

    @property
    def module_names(self) -> tuple[str, ...]:
        """All module names the bundle defines, in archive order."""
        return tuple(self._load_index())

    @property
    def loaded_modules(self) -> Mapping[str, ModuleType]:
        """Read-only view of the modules executed so far."""
        return MappingProxyType(self._modules)

    # =========================================================================
    # Resolution
    # =========================================================================

    def resolve_module(self, name: str) -> ModuleType:
        """Return bundle module ``name``, executing it (and its parents) once.

        Raises:
            ResolutionFailure: If the bundle does not define ``name`` or its
                code fails to compile or run.
        """
        with self._lock:
            module = self._modules.get(name)
            if module is not None:
                return module

            index = self._load_index()
            if name not in index:
                raise ResolutionFailure(
                    f"module {name!r} is not defined by this bundle",
                    bundle_path=self.bundle_path,
                    module_name=name,
                )

            parent_name, _, child_name = name.rpartition(".")
            parent = self.resolve_module(parent_name) if parent_name else None

            # The parent's __init__ may already have imported this module.
            module = self._modules.get(name)
            if module is not None:
                return module

            entry = index[name]
            module = self._create_module(name, entry)
            self._modules[name] = module
            try:
                self._exec_module(module, entry)
            except BaseException as exc:
                self._modules.pop(name, None)
                # sys.exit() in plugin code fails the unit; KeyboardInterrupt stays fatal.
                if not isinstance(exc, (Exception, SystemExit)):
                    raise
                raise ResolutionFailure(
                    f"cannot load module {name!r}: {type(exc).__name__}: {exc}",
                    bundle_path=self.bundle_path,
                    entry_name=entry,
                    module_name=name,
                ) from exc

            if parent is not None:
                setattr(parent, child_name, module)
            logger.debug("loaded module bundle=%s module=%s", self.bundle_path, name)
            return module

    def resolve_type(self, qualified_name: str) -> type:
        """Resolve a class by name, looking in the bundle then the host.

        Accepts ``"pkg.mod.Class"`` or ``"pkg.mod:Outer.Inner"``.

        Raises:
            ResolutionFailure: If no module provides the name or it is not a class.
        """
        module_name, attr_path = self._split_qualified(qualified_name)
        obj: Any = self._module_for(module_name)
        for part in attr_path:
            try:
                obj = getattr(obj, part)
            except AttributeError as exc:
                raise ResolutionFailure(
                    f"{qualified_name!r} not found: {exc}",
                    bundle_path=self.bundle_path,
                    module_name=module_name,
                ) from exc
        if not isinstance(obj, type):
            raise ResolutionFailure(
                f"{qualified_name!r} is not a class",
                bundle_path=self.bundle_path,
                module_name=module_name,
            )
        return obj

    def get_source(self, fullname: str) -> str | None:
        """Loader protocol hook so tracebacks can show bundle source lines."""
        try:
            entry = self._load_index().get(fullname)
            if entry is None:
                return None
            return importlib.util.decode_source(self._read(entry))
        except BundleLoadError:
            return None

    def _split_qualified(self, qualified_name: str) -> tuple[str, list[str]]:
        if ":" in qualified_name:
            module_name, _, attrs = qualified_name.partition(":")
            if module_name and attrs:
                return module_name, attrs.split(".")
        else:
            parts = qualified_name.split(".")
            # Longest prefix the bundle defines wins; otherwise assume the
            # last segment is the class.
            for i in range(len(parts) - 1, 0, -1):
                prefix = ".".join(parts[:i])
                if self.defines(prefix):
                    return prefix, parts[i:]
            if len(parts) > 1 and all(parts):
                return ".".join(parts[:-1]), parts[-1:]
        raise ResolutionFailure(
            f"malformed type name {qualified_name!r}", bundle_path=self.bundle_path
        )

    def _module_for(self, module_name: str) -> ModuleType:
        if self.defines(module_name):
            return self.resolve_module(module_name)
        try:
            return importlib.import_module(module_name)
        except ImportError as exc:
            raise ResolutionFailure(
                f"module {module_name!r} not found in bundle or host: {exc}",
                bundle_path=self.bundle_path,
                module_name=module_name,
            ) from exc

    def _create_module(self, name: str, entry: str | None) -> ModuleType:
        is_package = name in self._packages
        origin = f"{self.bundle_path}/{entry}" if entry is not None else None
        module = ModuleType(name)
        module.__builtins__ = self._builtins
        module.__loader__ = self
        module.__package__ = name if is_package else name.rpartition(".")[0]
        module.__spec__ = ModuleSpec(name, self, origin=origin, is_package=is_package)
        if origin is not None:
            module.__file__ = origin
        if is_package:
            module.__path__ = [f"{self.bundle_path}/{name.replace('.', '/')}"]
        return module

    def _exec_module(self, module: ModuleType, entry: str | None) -> None:
        if entry is None:
            return
        source = self._read(entry)
        code = compile(source, module.__file__, "exec", dont_inherit=True)
        exec(code, module.__dict__)

    # =========================================================================
    # Import hook installed as __import__ for bundle code
    # =========================================================================

    def _host(
        self,
        name: str,
        globals: dict | None,
        locals: dict | None,
        fromlist: Sequence[str],
        level: int,
    ) -> ModuleType:
        host_import = self._host_import or builtins.__import__
        return host_import(name, globals, locals, fromlist, level)

    def _import(
        self,
        name: str,
        globals: dict | None = None,
        locals: dict | None = None,
        fromlist: Sequence[str] | None = (),
        level: int = 0,
    ) -> ModuleType:
        fromlist = fromlist or ()
        if level > 0:
            package = (globals or {}).get("__package__")
            absolute = importlib.util.resolve_name("." * level + name, package)
        else:
            absolute = name

        top_name = absolute.partition(".")[0]
        if level == 0 and not self.defines(top_name):
            return self._host(name, globals, locals, fromlist, level)

        if level == 0 and self.host_first:
            try:
                return self._host(name, globals, locals, fromlist, level)
            except ModuleNotFoundError as exc:
                if exc.name is None or not (absolute + ".").startswith(exc.name + "."):
                    raise
                logger.debug("host miss, using bundle module=%s", absolute)

        module = self._import_from_bundle(absolute)
        if not fromlist:
            return self._modules[top_name] if level == 0 else module

        for item in fromlist:
            if item == "*":
                for public in getattr(module, "__all__", ()):
                    self._import_submodule(module, public)
            elif not hasattr(module, item):
                self._import_submodule(module, item)
        return module

    def _import_from_bundle(self, name: str) -> ModuleType:
        if not self.defines(name):
            raise ModuleNotFoundError(f"No module named {name!r} in bundle", name=name)
        try:
            return self.resolve_module(name)
        except ResolutionFailure as exc:
            raise ImportError(str(exc), name=name) from exc

    def _import_submodule(self, package: ModuleType, item: str) -> None:
        subname = f"{package.__name__}.{item}"
        if self.defines(subname):
            self._import_from_bundle(subname)


def create_context(
    bundle_path: Path | str,
    *,
    host_first: bool = False,
    unit_suffix: str = UNIT_SUFFIX,
) -> BundleContext:
    """Create a fresh isolated context scoped to one bundle."""
    context = BundleContext(bundle_path, host_first=host_first, unit_suffix=unit_suffix)
    logger.debug("created context bundle=%s host_first=%s", context.bundle_path, host_first)
    return context
