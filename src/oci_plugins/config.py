"""Runtime configuration for the plugin manager.

Classes
-------
- ManagerConfig   Frozen settings: plugin root, registry and credentials.

Functions
---------
- prepare_plugins_dir   Create the plugin root, falling back to the home directory.
- build_installer       Wire registry client, service and installer from a config.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import TYPE_CHECKING

from oci_plugins.errors import PluginFilesystemError

if TYPE_CHECKING:
    from oci_plugins.installer.installer import PluginInstaller
    from oci_plugins.registry.client import RegistryClient

logger = logging.getLogger(__name__)

DEFAULT_PLUGINS_DIR: str = "/opt/oci-plugins"
HOME_PLUGINS_DIR_NAME: str = ".oci-plugins"
DEFAULT_REGISTRY_REPO: str = "registry.example.com/oci-plugins"


@dataclass(frozen=True)
class ManagerConfig:
    """Settings for one plugin manager invocation.

    Attributes
    ----------
    plugins_dir:
        Plugin root holding ``plugins/`` and ``cache/``.
    registry_repo:
        ``host/prefix`` the plugin repositories live under.
    insecure:
        Talk to the registry over plain HTTP.
    tls_skip_verify:
        Skip TLS certificate verification.
    registry_login:
        Registry user name.  Takes priority over the license token.
    registry_password:
        Password for ``registry_login``.
    license_token:
        License token, sent as the password of the ``license-token`` user.
    timeout_seconds:
        Per-request registry timeout.
    """

    plugins_dir: Path = Path(DEFAULT_PLUGINS_DIR)
    registry_repo: str = DEFAULT_REGISTRY_REPO
    insecure: bool = False
    tls_skip_verify: bool = False
    registry_login: str = ""
    registry_password: str = ""
    license_token: str = ""
    timeout_seconds: float = 30.0

    def __repr__(self) -> str:
        return (
            f"ManagerConfig(plugins_dir={str(self.plugins_dir)!r}, "
            f"registry_repo={self.registry_repo!r}, insecure={self.insecure}, "
            f"tls_skip_verify={self.tls_skip_verify}, "
            f"registry_login={self.registry_login!r})"
        )


def prepare_plugins_dir(config: ManagerConfig) -> ManagerConfig:
    """Ensure ``<plugins_dir>/plugins`` exists.

    When the configured root cannot be created for lack of permission the
    root moves to ``~/.oci-plugins``.

    Returns
    -------
    ManagerConfig
        *config*, or a copy pointing at the fallback root.

    Raises
    ------
    PluginFilesystemError
        If neither root can be created.
    """
    try:
        (config.plugins_dir / "plugins").mkdir(parents=True, exist_ok=True)
        return config
    except PermissionError as exc:
        fallback = Path.home() / HOME_PLUGINS_DIR_NAME
        logger.warning(
            "Cannot use %s (%s); using %s instead", config.plugins_dir, exc, fallback
        )
    except OSError as exc:
        raise PluginFilesystemError(
            f"failed to create plugins directory {config.plugins_dir}: {exc}"
        ) from exc

    try:
        (fallback / "plugins").mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise PluginFilesystemError(f"failed to create plugins directory {fallback}: {exc}") from exc
    return replace(config, plugins_dir=fallback)


def build_installer(
    config: ManagerConfig,
    client: RegistryClient | None = None,
) -> PluginInstaller:
    """Assemble a :class:`PluginInstaller` for *config*.

    Parameters
    ----------
    config:
        Manager settings.
    client:
        Registry client to use instead of an :class:`OCIRegistryClient`
        built from the config.
    """
    from oci_plugins.installer.installer import PluginInstaller
    from oci_plugins.installer.layout import PluginLayout
    from oci_plugins.registry.oci import OCIRegistryClient, resolve_auth, split_registry_repo
    from oci_plugins.registry.service import PluginService

    if client is None:
        host, _ = split_registry_repo(config.registry_repo)
        auth = resolve_auth(
            host,
            login=config.registry_login,
            password=config.registry_password,
            license_token=config.license_token,
        )
        logger.debug(
            "Creating registry client for %s (insecure=%s, tls_skip_verify=%s)",
            config.registry_repo,
            config.insecure,
            config.tls_skip_verify,
        )
        client = OCIRegistryClient(
            config.registry_repo,
            auth=auth,
            insecure=config.insecure,
            tls_skip_verify=config.tls_skip_verify,
            timeout=config.timeout_seconds,
        )
    return PluginInstaller(PluginLayout(config.plugins_dir), PluginService(client))


__all__ = [
    "DEFAULT_PLUGINS_DIR",
    "DEFAULT_REGISTRY_REPO",
    "ManagerConfig",
    "build_installer",
    "prepare_plugins_dir",
]
