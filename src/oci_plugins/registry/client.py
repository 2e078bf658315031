"""Registry capability consumed by the plugin manager.

The installer never talks to a registry directly.  It goes through a
:class:`RegistryClient`, which only has to list tags, read one image
label and stream the image layers as uncompressed tar archives.
:mod:`oci_plugins.registry.oci` provides the HTTP implementation; tests
substitute an in-memory one.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import BinaryIO


@dataclass
class LayerStream:
    """One uncompressed image layer handed to an extraction handler.

    Attributes
    ----------
    index:
        1-based position of the layer in the image.
    total:
        Number of layers in the image.
    reader:
        Readable binary stream of the tar archive.  The consumer closes it.
    """

    index: int
    total: int
    reader: BinaryIO

    def close(self) -> None:
        self.reader.close()


LayerHandler = Callable[[LayerStream], None]


class RegistryClient(ABC):
    """Capability interface over a plugin registry.

    All methods take the bare plugin name; the implementation knows the
    repository prefix the plugins live under.  Failures are raised as
    :class:`~oci_plugins.errors.RegistryError`.
    """

    @abstractmethod
    def list_tags(self, plugin_name: str) -> list[str]:
        """Return every tag published for *plugin_name*."""

    @abstractmethod
    def get_label(self, plugin_name: str, tag: str, label_key: str) -> tuple[str, bool]:
        """Return ``(value, found)`` for an image config label."""

    @abstractmethod
    def extract_image_layers(self, plugin_name: str, tag: str, handler: LayerHandler) -> None:
        """Call *handler* once per image layer, in order."""

    def list_plugins(self) -> list[str]:
        """Return the plugin names published in the registry catalog.

        Registries often deny catalog access, so this is optional.
        """
        raise NotImplementedError("registry catalog listing is not supported")


__all__ = [
    "LayerHandler",
    "LayerStream",
    "RegistryClient",
]
