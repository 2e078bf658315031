"""Plugin contract model and the installed-contract cache."""
from __future__ import annotations

from oci_plugins.contract.cache import (
    CachedContract,
    ContractCache,
    decode_contract,
    encode_contract,
    load_contract_file,
)
from oci_plugins.contract.models import (
    CONTRACT_LABEL,
    EnvVar,
    Flag,
    KubernetesRequirement,
    ModuleRequirement,
    PluginContract,
    PluginRequirement,
    Requirements,
    parse_registry_contract,
)

__all__ = [
    "CONTRACT_LABEL",
    "CachedContract",
    "ContractCache",
    "EnvVar",
    "Flag",
    "KubernetesRequirement",
    "ModuleRequirement",
    "PluginContract",
    "PluginRequirement",
    "Requirements",
    "decode_contract",
    "encode_contract",
    "load_contract_file",
    "parse_registry_contract",
]
