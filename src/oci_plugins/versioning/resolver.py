"""Version resolution over registry tags.

Turns the tag list of a plugin repository into the single version to
install.  Tags that do not parse as semantic versions are never
candidates; each one is logged as a warning and skipped.  A repository
with no parseable tag is indistinguishable from one with no releases:
both raise :class:`~oci_plugins.errors.NoVersionsFoundError`.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from oci_plugins.errors import InvalidVersionError, NoVersionsFoundError, RegistryError
from oci_plugins.versioning.constraints import PluginVersion, parse_version

if TYPE_CHECKING:
    from oci_plugins.registry.service import PluginService

logger = logging.getLogger(__name__)


def _parse_tags(tags: Iterable[str]) -> list[PluginVersion]:
    parsed: list[PluginVersion] = []
    for tag in tags:
        try:
            parsed.append(parse_version(tag))
        except InvalidVersionError:
            logger.warning("Ignoring tag %r: not a semantic version", tag)
    return parsed


def find_latest_version(tags: Iterable[str]) -> PluginVersion:
    """Return the greatest semantic version among *tags*.

    Ordering follows semantic-version precedence (major, minor, patch,
    then pre-release).  When two tags parse to the same version the one
    listed first wins.

    Raises
    ------
    NoVersionsFoundError
        If no tag parses as a semantic version.
    """
    latest: PluginVersion | None = None
    for version in _parse_tags(tags):
        if latest is None or latest.semver.compare(version.semver) < 0:
            latest = version

    if latest is None:
        raise NoVersionsFoundError("no versions found")
    return latest


def filter_major_version(tags: Iterable[str], major: int) -> list[str]:
    """Keep only the tags whose major component equals *major*.

    Raises
    ------
    NoVersionsFoundError
        If no tag matches.
    """
    matching = [version.original for version in _parse_tags(tags) if version.major == major]
    if not matching:
        raise NoVersionsFoundError(f"no versions found for major version: {major}")
    return matching


def fetch_latest_version(
    service: PluginService,
    plugin_name: str,
    use_major: int | None = None,
) -> PluginVersion:
    """List *plugin_name* tags from the registry and return the latest.

    Parameters
    ----------
    service:
        Plugin service wrapping the registry client.
    plugin_name:
        Repository name of the plugin.
    use_major:
        Restrict the candidates to this major version when given.

    Raises
    ------
    RegistryError
        If the tag listing fails.
    NoVersionsFoundError
        If no usable tag remains.
    """
    try:
        tags = service.list_plugin_tags(plugin_name)
    except RegistryError as exc:
        logger.warning("Failed to list plugin tags for %s: %s", plugin_name, exc)
        raise RegistryError(f"failed to list plugin tags for {plugin_name}: {exc}") from exc

    try:
        if use_major is not None:
            tags = filter_major_version(tags, use_major)
        return find_latest_version(tags)
    except NoVersionsFoundError as exc:
        logger.warning("Failed to fetch latest version for %s: %s", plugin_name, exc)
        raise NoVersionsFoundError(
            f"failed to fetch latest version of {plugin_name}: {exc}"
        ) from exc


__all__ = [
    "fetch_latest_version",
    "filter_major_version",
    "find_latest_version",
]
