"""On-disk cache of installed plugin contracts.

Each successfully installed plugin leaves ``cache/contracts/<name>.json``
behind.  The file holds a narrower document than the registry label:
plugin-to-plugin requirements are not stored, so a contract loaded from
the cache reports ``requirements.plugins`` as ``None``.

File format (UTF-8, two-space indent, trailing newline)::

    {
      "name": "demo",
      "version": "v1.2.0",
      "description": "Demo plugin",
      "env": [{"name": "DEMO_TOKEN"}],
      "flags": [{"name": "--verbose"}],
      "requirements": {
        "kubernetes": {"constraint": ">= 1.26"},
        "modules": [{"name": "console", "constraint": ">= 1.0.0"}]
      }
    }

``env``, ``flags`` and ``modules`` are omitted when empty;
``kubernetes.constraint`` is always written.

Classes
-------
- CachedRequirements   Requirement subset stored in the cache.
- CachedContract       Pydantic DTO for the cache file.
- ContractCache        Read / write / delete cache files by plugin name.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from oci_plugins.contract.models import (
    EnvVar,
    Flag,
    KubernetesRequirement,
    ModuleRequirement,
    PluginContract,
    Requirements,
)
from oci_plugins.errors import ContractError, PluginFilesystemError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# DTOs
# ---------------------------------------------------------------------------


class CachedRequirements(BaseModel):
    """Requirement groups kept in the cache file."""

    kubernetes: KubernetesRequirement = Field(default_factory=KubernetesRequirement)
    modules: list[ModuleRequirement] = Field(default_factory=list)


class CachedContract(BaseModel):
    """Serialised form of an installed plugin's contract."""

    name: str = ""
    version: str = ""
    description: str = ""
    env: list[EnvVar] = Field(default_factory=list)
    flags: list[Flag] = Field(default_factory=list)
    requirements: CachedRequirements = Field(default_factory=CachedRequirements)

    @classmethod
    def from_domain(cls, contract: PluginContract) -> CachedContract:
        """Build the cache DTO from a domain contract, dropping plugin requirements."""
        return cls(
            name=contract.name,
            version=contract.version,
            description=contract.description,
            env=[EnvVar(name=env.name) for env in contract.env],
            flags=[Flag(name=flag.name) for flag in contract.flags],
            requirements=CachedRequirements(
                kubernetes=KubernetesRequirement(
                    constraint=contract.requirements.kubernetes.constraint
                ),
                modules=[
                    ModuleRequirement(name=mod.name, constraint=mod.constraint)
                    for mod in contract.requirements.modules
                ],
            ),
        )

    def to_domain(self) -> PluginContract:
        """Return the domain contract; ``requirements.plugins`` is ``None``."""
        return PluginContract(
            name=self.name,
            version=self.version,
            description=self.description,
            env=list(self.env),
            flags=list(self.flags),
            requirements=Requirements(
                kubernetes=self.requirements.kubernetes,
                plugins=None,
                modules=list(self.requirements.modules),
            ),
        )

    def to_json(self) -> str:
        """Render the cache file text."""
        data = self.model_dump(mode="json")
        for key in ("env", "flags"):
            if not data[key]:
                del data[key]
        if not data["requirements"]["modules"]:
            del data["requirements"]["modules"]
        return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


def encode_contract(contract: PluginContract) -> str:
    """Return the cache-file text for *contract*."""
    return CachedContract.from_domain(contract).to_json()


def decode_contract(text: str | bytes) -> PluginContract:
    """Parse cache-file text into a domain contract.

    Raises
    ------
    ContractError
        If *text* is not a valid cached contract.
    """
    try:
        cached = CachedContract.model_validate_json(text)
    except ValidationError as exc:
        raise ContractError(f"failed to unmarshal contract: {exc}") from exc
    return cached.to_domain()


def load_contract_file(path: Path) -> PluginContract:
    """Read a cached contract from an explicit *path*."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ContractError(f"failed to read contract file {path}: {exc}") from exc
    return decode_contract(text)


# ---------------------------------------------------------------------------
# Cache directory
# ---------------------------------------------------------------------------


class ContractCache:
    """Contract files under ``<root>/cache/contracts``.

    Parameters
    ----------
    directory:
        The ``cache/contracts`` directory.  Created on first write.
    """

    def __init__(self, directory: Path) -> None:
        self._directory = directory

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, plugin_name: str) -> Path:
        return self._directory / f"{plugin_name}.json"

    def exists(self, plugin_name: str) -> bool:
        return self.path_for(plugin_name).is_file()

    def load(self, plugin_name: str) -> PluginContract:
        """Return the cached contract of *plugin_name*.

        Raises
        ------
        ContractError
            If the file is missing or malformed.
        """
        return load_contract_file(self.path_for(plugin_name))

    def get(self, plugin_name: str) -> PluginContract | None:
        """Return the cached contract, or None when no cache file exists."""
        if not self.exists(plugin_name):
            return None
        return self.load(plugin_name)

    def save(self, contract: PluginContract, plugin_name: str | None = None) -> Path:
        """Write *contract*, replacing any previous content.

        Parameters
        ----------
        contract:
            The contract to cache.
        plugin_name:
            File name stem; defaults to ``contract.name``.

        Returns
        -------
        Path
            The written file.
        """
        path = self.path_for(plugin_name or contract.name)
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            path.write_text(encode_contract(contract), encoding="utf-8")
        except OSError as exc:
            raise PluginFilesystemError(f"failed to cache contract {path}: {exc}") from exc
        logger.debug("Cached contract for %s at %s", contract.name, path)
        return path

    def delete(self, plugin_name: str) -> bool:
        """Delete the cache file; return False when it did not exist."""
        try:
            self.path_for(plugin_name).unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise PluginFilesystemError(
                f"failed to remove cached contract of {plugin_name}: {exc}"
            ) from exc
        return True

    def __repr__(self) -> str:
        return f"ContractCache(directory={str(self._directory)!r})"


__all__ = [
    "CachedContract",
    "CachedRequirements",
    "ContractCache",
    "decode_contract",
    "encode_contract",
    "load_contract_file",
]
