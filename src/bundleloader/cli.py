"""CLI for inspecting bundles."""

from __future__ import annotations

import argparse
import dataclasses
import json
import pkgutil
import sys
from typing import Any, Sequence

from bundleloader.config import LoaderConfig
from bundleloader.loader import BundleLoader, LoadResult
from bundleloader.logging_utils import configure_logging


def _resolve_ref(parser: argparse.ArgumentParser, option: str, value: str) -> Any:
    try:
        return pkgutil.resolve_name(value)
    except (ImportError, AttributeError, ValueError) as exc:
        parser.error(f"{option}: cannot resolve {value!r}: {exc}")


def _print_result(result: LoadResult, as_json: bool) -> None:
    if not result.ok:
        print(f"error kind={result.failure_kind.value}: {result.error}", file=sys.stderr)
        sys.exit(1)

    bundle = result.unwrap()
    handles = sorted(bundle.matches or (), key=lambda handle: handle.name)
    if as_json:
        payload = {
            "bundle": str(bundle.bundle_path),
            "types": [
                {
                    "name": handle.name,
                    "module": handle.module_name,
                    "tags": sorted(str(tag) for tag in handle.tags),
                }
                for handle in handles
            ],
            "skipped": list(bundle.skipped),
        }
        print(json.dumps(payload, indent=2))
        return

    for handle in handles:
        print(handle.name)
    for entry in bundle.skipped:
        print(f"skipped: {entry}", file=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bundleloader",
        description="Load plugin bundles and list the types they define",
    )
    parser.add_argument("--log-level", default=None, help="Log level (or BUNDLELOADER_LOG_LEVEL)")
    parser.add_argument("--log-file", default=None, help="Write logs to this file")
    parser.add_argument(
        "--host-first",
        action="store_true",
        default=None,
        help="Prefer host modules over bundle modules with the same name",
    )
    parser.add_argument(
        "--skip-unresolvable",
        action="store_true",
        default=None,
        help="Skip units that fail to load instead of failing",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    scan_parser = sub.add_parser("scan", help="List every type defined by a bundle")
    scan_parser.add_argument("bundle", help="Path to the bundle archive")
    scan_parser.add_argument("--json", action="store_true", help="Output JSON")

    find_parser = sub.add_parser("find", help="List types matching a predicate")
    find_parser.add_argument("bundle", help="Path to the bundle archive")
    find_parser.add_argument("--json", action="store_true", help="Output JSON")
    group = find_parser.add_mutually_exclusive_group(required=True)
    group.add_argument(
        "--tag",
        help="Marker to match: module:attr for a host object, otherwise a plain string",
    )
    group.add_argument("--base", help="Base class as module:attr")
    group.add_argument("--implements", help="Capability contract as module:attr")
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level, args.log_file)

    config = LoaderConfig.from_env()
    overrides = {
        key: value
        for key, value in (
            ("host_first", args.host_first),
            ("skip_unresolvable", args.skip_unresolvable),
        )
        if value is not None
    }
    loader = BundleLoader(dataclasses.replace(config, **overrides))

    if args.command == "scan":
        _print_result(loader.load_filtered(args.bundle, lambda handle: True), args.json)
        return

    if args.command == "find":
        if args.tag is not None:
            tag = _resolve_ref(parser, "--tag", args.tag) if ":" in args.tag else args.tag
            result = loader.load_tagged(args.bundle, tag)
        elif args.base is not None:
            result = loader.load_derived(args.bundle, _resolve_ref(parser, "--base", args.base))
        else:
            contract = _resolve_ref(parser, "--implements", args.implements)
            result = loader.load_implementing(args.bundle, contract)
        _print_result(result, args.json)
        return


if __name__ == "__main__":
    main()
