"""Tests for BundleLoader and the load result types."""

import collections.abc
import logging
import os
import zipfile
from concurrent.futures import ThreadPoolExecutor

import pytest

import bundleloader
from bundleloader.config import LoaderConfig
from bundleloader.context import BundleContext
from bundleloader.errors import (
    ArchiveOpenFailure,
    FailureKind,
    PredicateFailure,
    ResolutionFailure,
)
from bundleloader.loader import BundleLoader, LoadedBundle, LoadResult

TAGGED_SOURCE = """
    from bundleloader import tagged
    from hostapp import Marker


    @tagged(Marker, "M")
    class Tagged:
        pass


    class Untagged:
        pass
"""

HIERARCHY_ENTRIES = {
    "hier/__init__.py": "",
    "hier/a.py": """
        from hostapp import Plugin


        class A(Plugin):
            pass
    """,
    "hier/b.py": """
        from hier.a import A


        class B(A):
            pass
    """,
    "hier/c.py": """
        from .b import B


        class C(B):
            pass


        class Loose:
            pass
    """,
}

EXPORTER_SOURCE = """
    from hostapp import Closeable, Exporter


    class CsvExporter(Exporter):
        def export(self, data):
            return ",".join(data)


    class JsonExporter:
        def export(self, data):
            return data


    Exporter.register(JsonExporter)


    class AbstractExporter(Exporter):
        pass


    class Handle(Closeable):
        pass


    class NotAnExporter:
        pass
"""

NESTED_SOURCE = """
    from bundleloader import tagged


    class Outer:
        @tagged("M")
        class Inner:
            class Deepest:
                pass


    class Other:
        Reused = Outer.Inner
"""


@pytest.fixture
def track_archives(monkeypatch):
    """Record every ZipFile opened for reading while loading."""
    opened = []
    real_zipfile = zipfile.ZipFile

    class TrackingZipFile(real_zipfile):
        def __init__(self, *args, **kwargs):
            super().__init__(*args, **kwargs)
            if self.mode == "r":
                opened.append(self)

    monkeypatch.setattr(zipfile, "ZipFile", TrackingZipFile)
    return opened


class TestPlainLoad:
    """Tests for load()."""

    def test_load_returns_bundle_without_matches(self, make_bundle):
        path = make_bundle({"plain/mod.py": "X = 1"})

        result = BundleLoader().load(path)

        assert result.ok
        assert bool(result)
        bundle = result.unwrap()
        assert bundle.bundle_path == path.resolve()
        assert isinstance(bundle.context, BundleContext)
        assert bundle.matches is None
        assert not bundle.filtered

    def test_load_does_not_execute_units(self, make_bundle):
        path = make_bundle({"lazy.py": "raise RuntimeError('should not run')"})

        result = BundleLoader().load(path)

        assert result.ok
        assert result.bundle.context.loaded_modules == {}

    def test_loaded_bundle_resolves_types(self, make_bundle):
        path = make_bundle({"later/mod.py": "class Late:\n    pass\n"})

        bundle = BundleLoader().load(path).unwrap()
        cls = bundle.resolve_type("later.mod.Late")

        assert cls.__name__ == "Late"
        assert bundle.context.loaded_modules["later.mod"].Late is cls


class TestFilteredLoad:
    """Tests for the predicate-driven loads."""

    def test_empty_bundle_gives_empty_matches(self, make_bundle):
        """A valid archive without units yields an empty set, not a failure."""
        path = make_bundle({"README.txt": "docs", "META-INF/MANIFEST.MF": ""})

        result = BundleLoader().load_filtered(path, lambda handle: True)

        assert result.ok
        assert result.bundle.matches == frozenset()

    def test_archive_with_no_entries(self, make_bundle):
        path = make_bundle({})

        result = BundleLoader().load_tagged(path, "M")

        assert result.ok
        assert result.bundle.matches == frozenset()

    def test_all_false_matches_plain_load(self, make_bundle):
        path = make_bundle({"nothing/mod.py": "class Quiet:\n    pass\n"})
        loader = BundleLoader()

        plain = loader.load(path).unwrap()
        filtered = loader.load_filtered(path, lambda handle: False).unwrap()

        assert plain.bundle_path == filtered.bundle_path
        assert plain.context is not filtered.context
        assert plain.context.bundle_path == filtered.context.bundle_path
        assert filtered.matches == frozenset()

    def test_load_tagged(self, make_bundle, hostapp):
        path = make_bundle({"tagged_plugins/mod.py": TAGGED_SOURCE})
        loader = BundleLoader()

        by_string = loader.load_tagged(path, "M").unwrap()
        by_marker = loader.load_tagged(path, hostapp.Marker).unwrap()
        other = loader.load_tagged(path, "M2").unwrap()

        assert by_string.match_names() == ["tagged_plugins.mod.Tagged"]
        assert by_marker.match_names() == ["tagged_plugins.mod.Tagged"]
        assert other.matches == frozenset()
        assert loader.load_tagged(path, hostapp.OtherMarker).unwrap().matches == frozenset()

    def test_load_derived_any_depth(self, make_bundle, hostapp):
        path = make_bundle(HIERARCHY_ENTRIES)

        bundle = BundleLoader().load_derived(path, hostapp.Plugin).unwrap()

        assert bundle.match_names() == ["hier.a.A", "hier.b.B", "hier.c.C"]

    def test_load_implementing(self, make_bundle, hostapp):
        path = make_bundle({"exporters.py": EXPORTER_SOURCE})
        loader = BundleLoader()

        exporters = loader.load_implementing(path, hostapp.Exporter).unwrap()
        closeables = loader.load_implementing(path, hostapp.Closeable).unwrap()

        assert exporters.match_names() == [
            "exporters.AbstractExporter",
            "exporters.CsvExporter",
            "exporters.JsonExporter",
        ]
        assert closeables.match_names() == ["exporters.Handle"]

    def test_implementing_with_plain_base_matches_nothing(self, make_bundle, hostapp):
        path = make_bundle(HIERARCHY_ENTRIES)

        bundle = BundleLoader().load_implementing(path, hostapp.Plugin).unwrap()

        assert bundle.matches == frozenset()

    def test_undeclared_collections_abc_contract_matches_nothing(self, make_bundle):
        path = make_bundle({"plain.py": "class Plain:\n    pass\n"})
        loader = BundleLoader()

        declared = loader.load_implementing(path, collections.abc.Hashable).unwrap()
        duck = loader.load_implementing(path, collections.abc.Hashable, structural=True).unwrap()

        assert declared.matches == frozenset()
        assert duck.match_names() == ["plain.Plain"]

    def test_nested_classes_are_classified(self, make_bundle):
        path = make_bundle({"nested.py": NESTED_SOURCE})
        loader = BundleLoader()

        everything = loader.load_filtered(path, lambda handle: True).unwrap()
        tagged = loader.load_tagged(path, "M").unwrap()

        assert everything.match_names() == [
            "nested.Other",
            "nested.Outer",
            "nested.Outer.Inner",
            "nested.Outer.Inner.Deepest",
        ]
        assert tagged.match_names() == ["nested.Outer.Inner"]

    def test_matches_resolved_through_bundle_context(self, make_bundle, hostapp):
        path = make_bundle(HIERARCHY_ENTRIES)

        bundle = BundleLoader().load_derived(path, hostapp.Plugin).unwrap()

        for handle in bundle.matches:
            assert handle.context is bundle.context
            module = bundle.context.loaded_modules[handle.module_name]
            assert getattr(module, handle.qualname) is handle.cls

    def test_matches_are_deduplicated(self, make_bundle):
        path = make_bundle(
            {
                "dupe/__init__.py": "from dupe.impl import Impl\n",
                "dupe/impl.py": "class Impl:\n    pass\n\nAlias = Impl\n",
            }
        )

        bundle = BundleLoader().load_filtered(path, lambda handle: True).unwrap()

        assert bundle.match_names() == ["dupe.impl.Impl"]

    def test_separate_loads_are_independent(self, make_bundle, hostapp):
        path = make_bundle(HIERARCHY_ENTRIES)
        loader = BundleLoader()

        first = loader.load_derived(path, hostapp.Plugin).unwrap()
        second = loader.load_derived(path, hostapp.Plugin).unwrap()

        assert first.match_names() == second.match_names()
        assert first.matches.isdisjoint(second.matches)

    def test_custom_unit_suffix(self, make_bundle):
        path = make_bundle(
            {
                "suffixed/mod.plug": "class Found:\n    pass\n",
                "suffixed/ignored.py": "class Ignored:\n    pass\n",
            }
        )
        loader = BundleLoader(LoaderConfig(unit_suffix=".plug"))

        bundle = loader.load_filtered(path, lambda handle: True).unwrap()

        assert bundle.match_names() == ["suffixed.mod.Found"]


class TestFailures:
    """Tests for the failure policy."""

    @pytest.mark.parametrize(
        "call",
        [
            lambda loader, path: loader.load(path),
            lambda loader, path: loader.load_filtered(path, lambda handle: True),
            lambda loader, path: loader.load_tagged(path, "M"),
            lambda loader, path: loader.load_derived(path, object),
            lambda loader, path: loader.load_implementing(path, object),
        ],
    )
    def test_missing_file_fails_every_variant(self, tmp_path, call):
        result = call(BundleLoader(), tmp_path / "missing.zip")

        assert not result.ok
        assert not result
        assert result.bundle is None
        assert result.failure_kind is FailureKind.ARCHIVE_OPEN
        with pytest.raises(ArchiveOpenFailure):
            result.unwrap()

    def test_unexpandable_home_fails_without_raising(self):
        result = BundleLoader().load("~no_such_user_zz9/plugin.zip")

        assert not result.ok
        assert result.failure_kind is FailureKind.ARCHIVE_OPEN

    def test_symlink_loop_fails_without_raising(self, tmp_path):
        loop = tmp_path / "loop.zip"
        loop.symlink_to(loop)

        result = BundleLoader().load_filtered(loop, lambda handle: True)

        assert not result.ok
        assert result.failure_kind is FailureKind.ARCHIVE_OPEN

    def test_system_exit_in_unit_fails_the_load(self, make_bundle):
        path = make_bundle(
            {
                "good.py": "class Good:\n    pass\n",
                "quitter.py": "raise SystemExit(3)\n",
            }
        )

        result = BundleLoader().load_filtered(path, lambda handle: True)
        skipping = BundleLoader(LoaderConfig(skip_unresolvable=True))
        bundle = skipping.load_filtered(path, lambda handle: True).unwrap()

        assert result.failure_kind is FailureKind.RESOLUTION
        assert result.error.entry_name == "quitter.py"
        assert isinstance(result.error.__cause__, SystemExit)
        assert bundle.match_names() == ["good.Good"]
        assert bundle.skipped == ("quitter.py",)

    def test_malformed_archive(self, tmp_path):
        path = tmp_path / "bad.zip"
        path.write_bytes(b"PK\x03\x04 but not really")

        result = BundleLoader().load(path)

        assert result.failure_kind is FailureKind.ARCHIVE_OPEN

    def test_resolution_failure_aborts_load(self, make_bundle):
        path = make_bundle(
            {
                "good.py": "class Good:\n    pass\n",
                "broken.py": "import no_such_dependency_anywhere_42\n",
            }
        )

        result = BundleLoader().load_filtered(path, lambda handle: True)

        assert result.bundle is None
        assert result.failure_kind is FailureKind.RESOLUTION
        assert isinstance(result.error, ResolutionFailure)
        assert result.error.entry_name == "broken.py"

    def test_malformed_entry_name_is_a_resolution_failure(self, make_bundle):
        path = make_bundle({"my-plugin/mod.py": "X = 1"})

        result = BundleLoader().load_filtered(path, lambda handle: True)

        assert result.failure_kind is FailureKind.RESOLUTION
        assert result.error.entry_name == "my-plugin/mod.py"

    def test_skip_unresolvable(self, make_bundle):
        path = make_bundle(
            {
                "good.py": "class Good:\n    pass\n",
                "broken.py": "def oops(:\n",
            }
        )
        loader = BundleLoader(LoaderConfig(skip_unresolvable=True))

        bundle = loader.load_filtered(path, lambda handle: True).unwrap()

        assert bundle.match_names() == ["good.Good"]
        assert bundle.skipped == ("broken.py",)

    def test_predicate_failure(self, make_bundle):
        path = make_bundle({"mod.py": "class Thing:\n    pass\n"})

        def explode(handle):
            raise RuntimeError("boom")

        result = BundleLoader().load_filtered(path, explode)

        assert result.failure_kind is FailureKind.PREDICATE
        assert isinstance(result.error, PredicateFailure)
        assert isinstance(result.error.__cause__, RuntimeError)

    def test_failure_is_logged(self, tmp_path, caplog):
        with caplog.at_level(logging.WARNING, logger="bundleloader"):
            BundleLoader().load(tmp_path / "missing.zip")

        assert "load failed" in caplog.text
        assert "kind=archive_open" in caplog.text


class TestArchiveRelease:
    """The archive is closed on every exit path."""

    def test_closed_after_success(self, make_bundle, track_archives, hostapp):
        path = make_bundle(HIERARCHY_ENTRIES)

        assert BundleLoader().load_derived(path, hostapp.Plugin).ok

        assert track_archives
        assert all(archive.fp is None for archive in track_archives)

    def test_closed_after_resolution_failure(self, make_bundle, track_archives):
        path = make_bundle({"broken.py": "raise ValueError('nope')\n"})

        assert not BundleLoader().load_filtered(path, lambda handle: True).ok

        assert track_archives
        assert all(archive.fp is None for archive in track_archives)

    def test_closed_after_predicate_failure(self, make_bundle, track_archives):
        path = make_bundle({"mod.py": "class Thing:\n    pass\n"})

        def explode(handle):
            raise RuntimeError("boom")

        assert not BundleLoader().load_filtered(path, explode).ok

        assert all(archive.fp is None for archive in track_archives)

    def test_filtered_load_opens_archive_once(self, make_bundle, track_archives, hostapp):
        path = make_bundle(HIERARCHY_ENTRIES)

        bundle = BundleLoader().load_derived(path, hostapp.Plugin).unwrap()

        assert len(bundle.context.loaded_modules) == 4
        assert len(track_archives) == 1
        assert track_archives[0].fp is None

    def test_archive_reopenable_after_load(self, make_bundle, tmp_path):
        path = make_bundle({"mod.py": "class Thing:\n    pass\n"})

        BundleLoader().load_filtered(path, lambda handle: True)
        moved = tmp_path / "moved.zip"
        os.replace(path, moved)

        with zipfile.ZipFile(moved) as archive:
            assert archive.namelist() == ["mod.py"]


class TestLoadResult:
    """Tests for LoadResult and LoadedBundle."""

    def test_requires_exactly_one_outcome(self, tmp_path):
        with pytest.raises(ValueError):
            LoadResult()

        bundle = LoadedBundle(bundle_path=tmp_path, context=BundleContext(tmp_path))
        with pytest.raises(ValueError):
            LoadResult(bundle=bundle, error=ArchiveOpenFailure("x"))

    def test_str(self, tmp_path):
        bundle = LoadedBundle(
            bundle_path=tmp_path / "b.zip",
            context=BundleContext(tmp_path / "b.zip"),
            matches=frozenset(),
        )

        assert "0 match(es)" in str(LoadResult.success(bundle))
        assert str(LoadResult.failure(ArchiveOpenFailure("gone"))).startswith("Error: gone")


class TestModuleFunctions:
    """Tests for the package-level shortcuts."""

    def test_shortcuts(self, make_bundle, hostapp):
        path = make_bundle(HIERARCHY_ENTRIES)

        assert bundleloader.load(path).ok
        assert bundleloader.load_derived(path, hostapp.Plugin).unwrap().match_names() == [
            "hier.a.A",
            "hier.b.B",
            "hier.c.C",
        ]
        assert bundleloader.load_tagged(path, "M").unwrap().matches == frozenset()
        assert bundleloader.load_implementing(path, hostapp.Exporter).unwrap().matches == frozenset()
        assert len(bundleloader.load_filtered(path, lambda handle: True).unwrap().matches) == 4

    def test_implementing_shortcut_passes_structural(self, make_bundle, hostapp):
        path = make_bundle({"starter.py": "class Engine:\n    def start(self):\n        pass\n"})

        declared = bundleloader.load_implementing(path, hostapp.Startable).unwrap()
        duck = bundleloader.load_implementing(path, hostapp.Startable, structural=True).unwrap()

        assert declared.matches == frozenset()
        assert duck.match_names() == ["starter.Engine"]


class TestConcurrentLoads:
    """Loads running at the same time do not share state."""

    def test_parallel_loads_are_independent(self, make_bundle, hostapp):
        path = make_bundle(HIERARCHY_ENTRIES)
        loader = BundleLoader()

        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(pool.map(lambda _: loader.load_derived(path, hostapp.Plugin), range(8)))

        bundles = [result.unwrap() for result in results]
        assert all(bundle.match_names() == ["hier.a.A", "hier.b.B", "hier.c.C"] for bundle in bundles)
        classes = {id(handle.cls) for bundle in bundles for handle in bundle.matches}
        assert len(classes) == 3 * len(bundles)
