"""Plugin contract domain model.

A contract is the self-description a plugin image publishes in its
``plugin-contract`` label: name, version, description, the environment
variables and flags it understands, and its requirements on Kubernetes,
platform modules and other plugins.

``Requirements.plugins`` distinguishes "not recorded" (``None``) from
"declared empty" (``[]``).  Contracts read from the registry always
carry a list; contracts loaded from the on-disk cache carry ``None``
because the cache format does not store plugin requirements.

Classes
-------
- EnvVar                  Environment variable declared by a plugin.
- Flag                    Command-line flag declared by a plugin.
- KubernetesRequirement   Kubernetes version constraint.
- ModuleRequirement       Required module with a version constraint.
- PluginRequirement       Required plugin with a version constraint.
- Requirements            All requirement groups.
- PluginContract          Pydantic v2 model for the full contract.
"""
from __future__ import annotations

from pydantic import BaseModel, Field, ValidationError, field_validator

from oci_plugins.errors import ContractError, InvalidVersionError
from oci_plugins.versioning.constraints import parse_version

CONTRACT_LABEL: str = "plugin-contract"


# ---------------------------------------------------------------------------
# Leaf models
# ---------------------------------------------------------------------------


class EnvVar(BaseModel):
    """An environment variable read by the plugin."""

    name: str


class Flag(BaseModel):
    """A command-line flag supported by the plugin."""

    name: str


class KubernetesRequirement(BaseModel):
    """Kubernetes version constraint (empty string means unconstrained)."""

    constraint: str = ""


class ModuleRequirement(BaseModel):
    """A module the plugin needs, with an optional version constraint."""

    name: str
    constraint: str = ""


class PluginRequirement(BaseModel):
    """Another plugin this plugin needs.

    An empty ``constraint`` means any installed version is acceptable;
    only presence is checked.
    """

    name: str
    constraint: str = ""


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------


class Requirements(BaseModel):
    """All requirement groups declared by a plugin.

    Attributes
    ----------
    kubernetes:
        Kubernetes version constraint.
    plugins:
        Plugin-to-plugin requirements, or ``None`` when not recorded.
    modules:
        Module requirements.  Validation of these is not implemented.
    """

    kubernetes: KubernetesRequirement = Field(default_factory=KubernetesRequirement)
    plugins: list[PluginRequirement] | None = None
    modules: list[ModuleRequirement] = Field(default_factory=list)

    @field_validator("kubernetes", mode="before")
    @classmethod
    def _null_kubernetes(cls, value: object) -> object:
        return {} if value is None else value

    @field_validator("modules", mode="before")
    @classmethod
    def _null_modules(cls, value: object) -> object:
        return [] if value is None else value

    @property
    def plugins_recorded(self) -> bool:
        """Return True when plugin requirements were part of the source document."""
        return self.plugins is not None

    @property
    def plugin_requirements(self) -> list[PluginRequirement]:
        """Return the plugin requirements, treating "not recorded" as none."""
        return list(self.plugins or [])


class PluginContract(BaseModel):
    """Full self-description of a plugin.

    Attributes
    ----------
    name:
        Plugin name, identical to its repository name.
    version:
        Semantic version string, usually the image tag (``"v1.2.0"``).
    description:
        One-line human-readable description.
    env:
        Environment variables the plugin reads, in declaration order.
    flags:
        Flags the plugin accepts, in declaration order.
    requirements:
        Kubernetes, module and plugin requirements.
    """

    name: str = ""
    version: str = ""
    description: str = ""
    env: list[EnvVar] = Field(default_factory=list)
    flags: list[Flag] = Field(default_factory=list)
    requirements: Requirements = Field(default_factory=Requirements)

    @field_validator("env", "flags", mode="before")
    @classmethod
    def _null_lists(cls, value: object) -> object:
        return [] if value is None else value

    @field_validator("requirements", mode="before")
    @classmethod
    def _null_requirements(cls, value: object) -> object:
        return {} if value is None else value


# ---------------------------------------------------------------------------
# Registry parsing
# ---------------------------------------------------------------------------


def parse_registry_contract(raw: str | bytes) -> PluginContract:
    """Parse the JSON value of a ``plugin-contract`` label.

    Plugin requirements absent from the document are normalised to an
    empty list: the registry is the authoritative source, so absence
    means "none declared".

    Raises
    ------
    ContractError
        If *raw* is not a valid contract document, lacks a name or
        version, or the version is not a semantic version.
    """
    try:
        contract = PluginContract.model_validate_json(raw)
    except ValidationError as exc:
        raise ContractError(f"failed to parse plugin contract: {exc}") from exc

    if contract.requirements.plugins is None:
        contract.requirements.plugins = []

    if not contract.name:
        raise ContractError("plugin contract has an empty name")
    if not contract.version:
        raise ContractError(f"plugin contract for {contract.name} has an empty version")
    try:
        parse_version(contract.version)
    except InvalidVersionError as exc:
        raise ContractError(f"plugin contract for {contract.name}: {exc}") from exc
    return contract


__all__ = [
    "CONTRACT_LABEL",
    "EnvVar",
    "Flag",
    "KubernetesRequirement",
    "ModuleRequirement",
    "PluginContract",
    "PluginRequirement",
    "Requirements",
    "parse_registry_contract",
]
