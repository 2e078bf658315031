"""Plugin installation: layout, locking, layer extraction and the installer."""
from __future__ import annotations

from oci_plugins.installer.extractor import TarExtractor
from oci_plugins.installer.installer import (
    InstalledPlugin,
    InstallOptions,
    InstallResult,
    InstallState,
    PluginInstaller,
)
from oci_plugins.installer.layout import CURRENT_LINK, PluginLayout
from oci_plugins.installer.lock import FileLockManager, LockManager

__all__ = [
    "CURRENT_LINK",
    "FileLockManager",
    "InstallOptions",
    "InstallResult",
    "InstallState",
    "InstalledPlugin",
    "LockManager",
    "PluginInstaller",
    "PluginLayout",
    "TarExtractor",
]
