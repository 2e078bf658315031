"""Filesystem layout of the plugin root.

::

    <root>/
      plugins/<name>/
        current                 -> <root>/plugins/<name>/v<major>/<name>
        v<major>/<name>         plugin binary
        v<major>/<name>.old     previous binary, kept for manual recovery
        v<major>/<name>.lock    present while an install holds the lock
      cache/contracts/<name>.json
"""
from __future__ import annotations

from pathlib import Path

CURRENT_LINK: str = "current"


class PluginLayout:
    """Path arithmetic for one plugin root directory.

    Parameters
    ----------
    root:
        The plugin root, e.g. ``/opt/oci-plugins``.
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    @property
    def plugins_dir(self) -> Path:
        return self._root / "plugins"

    @property
    def contracts_dir(self) -> Path:
        return self._root / "cache" / "contracts"

    def plugin_dir(self, name: str) -> Path:
        return self.plugins_dir / name

    def version_dir(self, name: str, major: int) -> Path:
        return self.plugin_dir(name) / f"v{major}"

    def binary_path(self, name: str, major: int) -> Path:
        return self.version_dir(name, major) / name

    def old_binary_path(self, name: str, major: int) -> Path:
        return self.version_dir(name, major) / f"{name}.old"

    def lock_path(self, name: str, major: int) -> Path:
        return self.version_dir(name, major) / f"{name}.lock"

    def current_link(self, name: str) -> Path:
        return self.plugin_dir(name) / CURRENT_LINK

    def installed_plugins(self) -> list[str]:
        """Return the names of the directories under ``plugins/``, sorted."""
        if not self.plugins_dir.is_dir():
            return []
        return sorted(entry.name for entry in self.plugins_dir.iterdir() if entry.is_dir())

    def is_installed(self, name: str) -> bool:
        """Return True when the plugin has an active ``current`` binary."""
        return self.current_link(name).exists()

    def __repr__(self) -> str:
        return f"PluginLayout(root={str(self._root)!r})"


__all__ = [
    "CURRENT_LINK",
    "PluginLayout",
]
