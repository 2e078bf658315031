"""High-level plugin operations over a :class:`RegistryClient`.

Classes
-------
- PluginService   Contract fetch, tag and catalog listing, image extraction.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from oci_plugins.contract.models import CONTRACT_LABEL, PluginContract, parse_registry_contract
from oci_plugins.errors import ContractError, PluginFilesystemError, RegistryError
from oci_plugins.registry.client import LayerStream, RegistryClient

if TYPE_CHECKING:
    from oci_plugins.installer.extractor import TarExtractor

logger = logging.getLogger(__name__)


class PluginService:
    """Plugin-level view of a registry.

    Parameters
    ----------
    client:
        The registry capability.
    """

    def __init__(self, client: RegistryClient) -> None:
        self._client = client

    @property
    def client(self) -> RegistryClient:
        return self._client

    def list_plugins(self) -> list[str]:
        """Return the plugin names in the registry catalog.

        Raises
        ------
        RegistryError
            If the registry denies or fails the catalog request.
        """
        logger.debug("Listing all plugins")
        try:
            names = self._client.list_plugins()
        except NotImplementedError as exc:
            raise RegistryError("registry does not support catalog listing") from exc
        except RegistryError as exc:
            logger.warning(
                "Failed to list repositories; the registry may not allow catalog access: %s",
                exc,
            )
            raise RegistryError(
                f"failed to list repositories (registry may not allow catalog access): {exc}"
            ) from exc
        logger.debug("Plugins listed successfully: %d", len(names))
        return names

    def list_plugin_tags(self, plugin_name: str) -> list[str]:
        """Return every tag published for *plugin_name*."""
        logger.debug("Listing tags for %s", plugin_name)
        try:
            tags = self._client.list_tags(plugin_name)
        except RegistryError as exc:
            raise RegistryError(f"failed to list tags for plugin {plugin_name}: {exc}") from exc
        logger.debug("Listed %d tags for %s", len(tags), plugin_name)
        return tags

    def get_plugin_contract(self, plugin_name: str, tag: str) -> PluginContract:
        """Read and parse the ``plugin-contract`` label of *plugin_name*:*tag*.

        Raises
        ------
        RegistryError
            If the label cannot be read.
        ContractError
            If the label is missing or does not hold a valid contract.
        """
        logger.debug("Getting contract for %s:%s", plugin_name, tag)
        try:
            raw, found = self._client.get_label(plugin_name, tag, CONTRACT_LABEL)
        except RegistryError as exc:
            raise RegistryError(f"failed to get image labels of {plugin_name}:{tag}: {exc}") from exc

        if not found:
            logger.debug("No contract label on %s:%s", plugin_name, tag)
            raise ContractError(
                f"{CONTRACT_LABEL} label not found in image metadata of {plugin_name}:{tag}"
            )

        contract = parse_registry_contract(raw)
        if contract.name != plugin_name:
            logger.warning(
                "Contract of %s:%s declares a different name: %s",
                plugin_name,
                tag,
                contract.name,
            )
        logger.debug(
            "Parsed contract of %s:%s (name=%s, version=%s)",
            plugin_name,
            tag,
            contract.name,
            contract.version,
        )
        return contract

    def extract_plugin(
        self,
        plugin_name: str,
        tag: str,
        destination: Path,
        extractor: TarExtractor,
    ) -> None:
        """Stream every layer of *plugin_name*:*tag* into *destination*.

        Layers are applied in order, so later layers overwrite files from
        earlier ones.  A failure part-way leaves whatever was already
        written in place.
        """
        logger.debug("Extracting %s:%s into %s", plugin_name, tag, destination)
        try:
            destination.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PluginFilesystemError(
                f"failed to create destination directory {destination}: {exc}"
            ) from exc

        def handle(stream: LayerStream) -> None:
            logger.info("Extracting layer %d/%d of %s", stream.index, stream.total, plugin_name)
            try:
                extractor.extract(stream.reader, destination)
            finally:
                stream.close()

        try:
            self._client.extract_image_layers(plugin_name, tag, handle)
        except RegistryError as exc:
            raise RegistryError(f"failed to pull layers of {plugin_name}:{tag}: {exc}") from exc


__all__ = [
    "PluginService",
]
