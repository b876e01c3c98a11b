"""bundleloader: discover plugin types in zipped code bundles.

This package provides:
- Isolated loading of a bundle's modules from a single zip archive
- Discovery of the classes a bundle defines
- Classification of those classes by metadata marker, base class, or
  capability contract (ABC or Protocol)
- An explicit result type that keeps the failure kind

Key Components:
- BundleLoader: Opens a bundle, builds its context, collects matching types
- BundleContext: Per-bundle module registry chained to the host imports
- TypeHandle: A class resolved from a bundle
- tagged: Decorator bundle authors use to declare markers
- LoadResult / LoadedBundle: Outcome of a load call

Example:
    from bundleloader import load_tagged

    result = load_tagged("plugins.zip", "exporter")
    if result:
        print(result.bundle.match_names())
"""

from bundleloader.config import LoaderConfig
from bundleloader.context import BundleContext, create_context
from bundleloader.errors import (
    ArchiveOpenFailure,
    BundleLoadError,
    FailureKind,
    PredicateFailure,
    ResolutionFailure,
)
from bundleloader.handles import TypeHandle, is_capability_contract
from bundleloader.loader import (
    BundleLoader,
    LoadedBundle,
    LoadResult,
    load,
    load_derived,
    load_filtered,
    load_implementing,
    load_tagged,
)
from bundleloader.markers import declared_tags, tagged
from bundleloader.predicates import (
    AncestorPredicate,
    CapabilityPredicate,
    TagPredicate,
    TypePredicate,
    has_tag,
    implements_capability,
    is_derived_from,
)
from bundleloader.resolver import ResolvedUnit, resolve_unit

__version__ = "0.1.0"

__all__ = [
    # Loading
    "BundleLoader",
    "LoadedBundle",
    "LoadResult",
    "LoaderConfig",
    "load",
    "load_filtered",
    "load_tagged",
    "load_derived",
    "load_implementing",
    # Contexts and resolution
    "BundleContext",
    "create_context",
    "ResolvedUnit",
    "resolve_unit",
    "TypeHandle",
    # Markers and predicates
    "tagged",
    "declared_tags",
    "has_tag",
    "is_derived_from",
    "implements_capability",
    "is_capability_contract",
    "TypePredicate",
    "TagPredicate",
    "AncestorPredicate",
    "CapabilityPredicate",
    # Errors
    "BundleLoadError",
    "ArchiveOpenFailure",
    "ResolutionFailure",
    "PredicateFailure",
    "FailureKind",
]
