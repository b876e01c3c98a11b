"""Loader configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass

from bundleloader.archive import UNIT_SUFFIX

ENV_PREFIX = "BUNDLELOADER_"
_TRUTHY = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(ENV_PREFIX + name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUTHY


@dataclass(frozen=True)
class LoaderConfig:
    """Configuration for a BundleLoader."""

    unit_suffix: str = UNIT_SUFFIX
    """Archive entries ending in this suffix are code units."""

    host_first: bool = False
    """Let the host import system answer before the bundle for shared names."""

    skip_unresolvable: bool = False
    """Skip units that fail to resolve instead of failing the whole load."""

    @classmethod
    def from_env(cls) -> "LoaderConfig":
        """Build a config from ``BUNDLELOADER_*`` environment variables."""
        suffix = os.environ.get(ENV_PREFIX + "UNIT_SUFFIX") or UNIT_SUFFIX
        return cls(
            unit_suffix=suffix,
            host_first=_env_flag("HOST_FIRST", False),
            skip_unresolvable=_env_flag("SKIP_UNRESOLVABLE", False),
        )
