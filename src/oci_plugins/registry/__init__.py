"""Registry access: the client capability, its OCI implementation and the plugin service."""
from __future__ import annotations

from oci_plugins.registry.client import LayerHandler, LayerStream, RegistryClient
from oci_plugins.registry.oci import OCIRegistryClient, RegistryAuth, resolve_auth
from oci_plugins.registry.service import PluginService

__all__ = [
    "LayerHandler",
    "LayerStream",
    "OCIRegistryClient",
    "PluginService",
    "RegistryAuth",
    "RegistryClient",
    "resolve_auth",
]
