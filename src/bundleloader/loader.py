"""Load bundles and discover the types they define.

Every load follows the same path: open the archive, create an isolated
context for it, and, for filtered loads, resolve each code unit and collect
the classes a predicate accepts. The archive is closed before the call
returns, whatever the outcome.

Failures never escape a load call. They come back as a failed LoadResult
carrying the BundleLoadError, so callers can either branch on ``result.ok``
or call ``result.unwrap()`` to get the bundle or the exception.

Example:
    from bundleloader import BundleLoader

    result = BundleLoader().load_derived("plugins/exporters.zip", Exporter)
    if result:
        for handle in result.bundle.matches:
            registry.register(handle.cls())
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Hashable

from bundleloader.archive import is_unit_entry, iter_entries, open_archive
from bundleloader.config import LoaderConfig
from bundleloader.context import BundleContext, create_context
from bundleloader.errors import (
    ArchiveOpenFailure,
    BundleLoadError,
    FailureKind,
    PredicateFailure,
    ResolutionFailure,
    reraise_as,
)
from bundleloader.handles import TypeHandle
from bundleloader.predicates import (
    AncestorPredicate,
    CapabilityPredicate,
    TagPredicate,
)
from bundleloader.resolver import resolve_unit

logger = logging.getLogger(__name__)

Predicate = Callable[[TypeHandle], bool]


@dataclass(frozen=True)
class LoadedBundle:
    """A bundle loaded into its own context."""

    bundle_path: Path
    """Absolute path of the archive."""

    context: BundleContext = field(repr=False)
    """The isolated context every match was resolved through."""

    matches: frozenset[TypeHandle] | None = None
    """Types accepted by the predicate; None for a plain load."""

    skipped: tuple[str, ...] = ()
    """Unit entries skipped because they failed to resolve."""

    @property
    def filtered(self) -> bool:
        return self.matches is not None

    def match_names(self) -> list[str]:
        """Sorted qualified names of the matches."""
        return sorted(handle.name for handle in self.matches or ())

    def resolve_type(self, qualified_name: str) -> type:
        """Resolve a class by name through this bundle's context."""
        return self.context.resolve_type(qualified_name)

    def __str__(self) -> str:
        if self.matches is None:
            return f"{self.bundle_path} (loaded)"
        return f"{self.bundle_path} ({len(self.matches)} match(es))"


@dataclass(frozen=True)
class LoadResult:
    """Outcome of a load call: a LoadedBundle or the error that stopped it."""

    bundle: LoadedBundle | None = None
    error: BundleLoadError | None = None

    def __post_init__(self) -> None:
        if (self.bundle is None) == (self.error is None):
            raise ValueError("LoadResult needs exactly one of bundle or error")

    @classmethod
    def success(cls, bundle: LoadedBundle) -> "LoadResult":
        return cls(bundle=bundle)

    @classmethod
    def failure(cls, error: BundleLoadError) -> "LoadResult":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.bundle is not None

    @property
    def failure_kind(self) -> FailureKind | None:
        return self.error.kind if self.error is not None else None

    def unwrap(self) -> LoadedBundle:
        """Return the bundle, or raise the stored error."""
        if self.error is not None:
            raise self.error
        return self.bundle

    def __bool__(self) -> bool:
        return self.ok

    def __str__(self) -> str:
        if self.error is not None:
            return f"Error: {self.error}"
        return str(self.bundle)


class BundleLoader:
    """Loads bundles into isolated contexts and classifies their types.

    Loaders hold configuration only; every call builds a fresh context, so one
    loader can serve concurrent calls.
    """

    def __init__(self, config: LoaderConfig | None = None):
        self.config = config or LoaderConfig()

    def load(self, bundle_path: Path | str) -> LoadResult:
        """Load a bundle without resolving any of its units."""
        return self._run(bundle_path, None)

    def load_filtered(self, bundle_path: Path | str, predicate: Predicate) -> LoadResult:
        """Load a bundle and collect every defined type ``predicate`` accepts."""
        return self._run(bundle_path, predicate)

    def load_tagged(self, bundle_path: Path | str, tag: Hashable) -> LoadResult:
        """Load a bundle and collect classes declaring ``tag``."""
        return self._run(bundle_path, TagPredicate(tag))

    def load_derived(self, bundle_path: Path | str, base: type) -> LoadResult:
        """Load a bundle and collect classes derived from ``base``."""
        return self._run(bundle_path, AncestorPredicate(base))

    def load_implementing(
        self,
        bundle_path: Path | str,
        contract: type,
        *,
        structural: bool = False,
    ) -> LoadResult:
        """Load a bundle and collect classes implementing ``contract``."""
        return self._run(bundle_path, CapabilityPredicate(contract, structural=structural))

    def _run(self, bundle_path: Path | str, predicate: Predicate | None) -> LoadResult:
        try:
            with reraise_as(
                ArchiveOpenFailure, "cannot resolve bundle path", bundle_path=bundle_path
            ):
                path = Path(bundle_path).expanduser().resolve()
            bundle = self._load(path, predicate)
        except BundleLoadError as exc:
            logger.warning(
                "load failed path=%s kind=%s error=%s", bundle_path, exc.kind.value, exc
            )
            return LoadResult.failure(exc)

        if bundle.matches is None:
            logger.info("loaded bundle path=%s", path)
        else:
            logger.info(
                "loaded bundle path=%s predicate=%s matches=%d skipped=%d",
                path,
                predicate,
                len(bundle.matches),
                len(bundle.skipped),
            )
        return LoadResult.success(bundle)

    def _load(self, path: Path, predicate: Predicate | None) -> LoadedBundle:
        with open_archive(path) as archive:
            context = create_context(
                path,
                host_first=self.config.host_first,
                unit_suffix=self.config.unit_suffix,
            )
            if predicate is None:
                return LoadedBundle(bundle_path=path, context=context)

            matches: set[TypeHandle] = set()
            skipped: list[str] = []
            with context.reading(archive):
                for entry in iter_entries(archive):
                    if not is_unit_entry(entry, self.config.unit_suffix):
                        continue
                    try:
                        unit = resolve_unit(context, entry)
                    except ResolutionFailure as exc:
                        if not self.config.skip_unresolvable:
                            raise
                        logger.warning(
                            "skipping unit path=%s entry=%s error=%s", path, entry, exc
                        )
                        skipped.append(entry)
                        continue
                    for handle in unit.types:
                        if self._evaluate(predicate, handle, path):
                            matches.add(handle)

            return LoadedBundle(
                bundle_path=path,
                context=context,
                matches=frozenset(matches),
                skipped=tuple(skipped),
            )

    @staticmethod
    def _evaluate(predicate: Predicate, handle: TypeHandle, path: Path) -> bool:
        with reraise_as(
            PredicateFailure,
            f"predicate {predicate} failed on {handle.name}",
            bundle_path=path,
        ):
            return bool(predicate(handle))


def load(bundle_path: Path | str, config: LoaderConfig | None = None) -> LoadResult:
    """Load a bundle with a default-configured loader."""
    return BundleLoader(config).load(bundle_path)


def load_filtered(
    bundle_path: Path | str,
    predicate: Predicate,
    config: LoaderConfig | None = None,
) -> LoadResult:
    return BundleLoader(config).load_filtered(bundle_path, predicate)


def load_tagged(
    bundle_path: Path | str,
    tag: Hashable,
    config: LoaderConfig | None = None,
) -> LoadResult:
    return BundleLoader(config).load_tagged(bundle_path, tag)


def load_derived(
    bundle_path: Path | str,
    base: type,
    config: LoaderConfig | None = None,
) -> LoadResult:
    return BundleLoader(config).load_derived(bundle_path, base)


def load_implementing(
    bundle_path: Path | str,
    contract: type,
    config: LoaderConfig | None = None,
    *,
    structural: bool = False,
) -> LoadResult:
    return BundleLoader(config).load_implementing(bundle_path, contract, structural=structural)
