"""Semantic version parsing, constraints and tag resolution."""
from __future__ import annotations

from oci_plugins.versioning.constraints import Constraints, PluginVersion, parse_version
from oci_plugins.versioning.resolver import (
    fetch_latest_version,
    filter_major_version,
    find_latest_version,
)

__all__ = [
    "Constraints",
    "PluginVersion",
    "fetch_latest_version",
    "filter_major_version",
    "find_latest_version",
    "parse_version",
]
