"""Shared fixtures: an in-memory registry and a plugin root under tmp_path."""
from __future__ import annotations

import io
import json
import tarfile
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from oci_plugins.contract.models import CONTRACT_LABEL
from oci_plugins.errors import RegistryError
from oci_plugins.installer.installer import PluginInstaller
from oci_plugins.installer.layout import PluginLayout
from oci_plugins.registry.client import LayerHandler, LayerStream, RegistryClient
from oci_plugins.registry.service import PluginService

LayerBuilder = Callable[..., bytes]


def build_layer(
    files: dict[str, bytes] | None = None,
    *,
    mode: int = 0o755,
    symlinks: dict[str, str] | None = None,
    directories: list[str] | None = None,
) -> bytes:
    """Return an uncompressed tar archive with the given entries."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as archive:
        for name in directories or []:
            info = tarfile.TarInfo(name)
            info.type = tarfile.DIRTYPE
            info.mode = 0o755
            archive.addfile(info)
        for name, content in (files or {}).items():
            info = tarfile.TarInfo(name)
            info.size = len(content)
            info.mode = mode
            archive.addfile(info, io.BytesIO(content))
        for name, target in (symlinks or {}).items():
            info = tarfile.TarInfo(name)
            info.type = tarfile.SYMTYPE
            info.linkname = target
            archive.addfile(info)
    return buffer.getvalue()


def plugin_script(version: str) -> bytes:
    return f"#!/bin/sh\necho {version}\n".encode()


@dataclass
class FakeImage:
    labels: dict[str, str]
    layers: list[bytes]


@dataclass
class FakeRegistryClient(RegistryClient):
    """In-memory registry keyed by plugin name and tag."""

    images: dict[str, dict[str, FakeImage]] = field(default_factory=dict)
    extract_calls: list[tuple[str, str]] = field(default_factory=list)
    catalog_error: bool = False

    def publish(
        self,
        name: str,
        tag: str,
        *,
        description: str = "",
        requires: list[dict[str, str]] | None = None,
        contract: dict[str, object] | None = None,
        label: str | None = None,
        layers: list[bytes] | None = None,
    ) -> None:
        """Add an image; by default its contract and binary match *name* and *tag*."""
        if label is None:
            document = contract or {
                "name": name,
                "version": tag,
                "description": description,
                "requirements": {"plugins": requires or []},
            }
            label = json.dumps(document)
        labels = {} if label == "" else {CONTRACT_LABEL: label}
        if layers is None:
            layers = [build_layer({name: plugin_script(tag)})]
        self.images.setdefault(name, {})[tag] = FakeImage(labels, layers)

    def publish_tags(self, name: str, *tags: str) -> None:
        for tag in tags:
            self.publish(name, tag)

    def _image(self, plugin_name: str, tag: str) -> FakeImage:
        try:
            return self.images[plugin_name][tag]
        except KeyError:
            raise RegistryError(f"manifest unknown: {plugin_name}:{tag}") from None

    def list_tags(self, plugin_name: str) -> list[str]:
        if plugin_name not in self.images:
            raise RegistryError(f"repository unknown: {plugin_name}")
        return list(self.images[plugin_name])

    def get_label(self, plugin_name: str, tag: str, label_key: str) -> tuple[str, bool]:
        labels = self._image(plugin_name, tag).labels
        if label_key not in labels:
            return "", False
        return labels[label_key], True

    def extract_image_layers(self, plugin_name: str, tag: str, handler: LayerHandler) -> None:
        image = self._image(plugin_name, tag)
        self.extract_calls.append((plugin_name, tag))
        total = len(image.layers)
        for index, layer in enumerate(image.layers, start=1):
            handler(LayerStream(index=index, total=total, reader=io.BytesIO(layer)))

    def list_plugins(self) -> list[str]:
        if self.catalog_error:
            raise RegistryError("UNAUTHORIZED: catalog access denied")
        return sorted(self.images)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def registry() -> FakeRegistryClient:
    return FakeRegistryClient()


@pytest.fixture()
def plugin_root(tmp_path: Path) -> Path:
    return tmp_path / "root"


@pytest.fixture()
def layout(plugin_root: Path) -> PluginLayout:
    return PluginLayout(plugin_root)


@pytest.fixture()
def installer(registry: FakeRegistryClient, layout: PluginLayout) -> PluginInstaller:
    return PluginInstaller(layout, PluginService(registry))


@pytest.fixture()
def layer_builder() -> LayerBuilder:
    return build_layer
