"""oci-plugins: install and manage CLI plugins distributed as OCI images.

Public API
----------
The stable public surface is everything exported from this module.
Anything inside submodules not re-exported here is considered private
and may change without notice.

Example
-------
>>> import oci_plugins
>>> oci_plugins.__version__
'0.1.0'

Versioning
----------
>>> from oci_plugins import Constraints, find_latest_version, parse_version
>>> str(find_latest_version(["v1.0.0", "v1.2.0", "bad-tag"]))
'v1.2.0'
>>> Constraints(">= 1.0.0, < 2.0.0").check(parse_version("v1.4.2"))
True

Contracts
---------
>>> from oci_plugins import PluginContract, encode_contract, decode_contract
>>> contract = PluginContract(name="demo", version="v1.2.0")
>>> decode_contract(encode_contract(contract)).requirements.plugins is None
True

Installer
---------
>>> from oci_plugins import ManagerConfig, build_installer
>>> installer = build_installer(ManagerConfig(plugins_dir=Path("/tmp/plugins")))  # doctest: +SKIP
>>> installer.install_plugin("demo")  # doctest: +SKIP
"""
from __future__ import annotations

__version__: str = "0.1.0"

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------
from oci_plugins.errors import (
    ContractError,
    ExtractionError,
    InvalidConstraintError,
    InvalidVersionError,
    NoVersionsFoundError,
    PathTraversalError,
    PluginConflictError,
    PluginError,
    PluginFilesystemError,
    PluginLockedError,
    RegistryError,
    RequirementsError,
    RequirementsNotSatisfiedError,
    ResolutionError,
)

# ---------------------------------------------------------------------------
# Versioning
# ---------------------------------------------------------------------------
from oci_plugins.versioning.constraints import Constraints, PluginVersion, parse_version
from oci_plugins.versioning.resolver import (
    fetch_latest_version,
    filter_major_version,
    find_latest_version,
)

# ---------------------------------------------------------------------------
# Contracts
# ---------------------------------------------------------------------------
from oci_plugins.contract.cache import ContractCache, decode_contract, encode_contract
from oci_plugins.contract.models import (
    CONTRACT_LABEL,
    PluginContract,
    PluginRequirement,
    Requirements,
)

# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
from oci_plugins.registry.client import LayerStream, RegistryClient
from oci_plugins.registry.oci import OCIRegistryClient, RegistryAuth, resolve_auth
from oci_plugins.registry.service import PluginService

# ---------------------------------------------------------------------------
# Requirements
# ---------------------------------------------------------------------------
from oci_plugins.requirements.validator import (
    FailedConstraints,
    RequirementValidator,
    validate_module_requirement,
    validate_plugin_conflicts,
    validate_plugin_requirement,
)

# ---------------------------------------------------------------------------
# Installer
# ---------------------------------------------------------------------------
from oci_plugins.installer.extractor import TarExtractor
from oci_plugins.installer.installer import (
    InstalledPlugin,
    InstallOptions,
    InstallResult,
    InstallState,
    PluginInstaller,
)
from oci_plugins.installer.layout import PluginLayout
from oci_plugins.installer.lock import FileLockManager, LockManager

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------
from oci_plugins.config import ManagerConfig, build_installer, prepare_plugins_dir

__all__ = [
    "__version__",
    # Errors
    "ContractError",
    "ExtractionError",
    "InvalidConstraintError",
    "InvalidVersionError",
    "NoVersionsFoundError",
    "PathTraversalError",
    "PluginConflictError",
    "PluginError",
    "PluginFilesystemError",
    "PluginLockedError",
    "RegistryError",
    "RequirementsError",
    "RequirementsNotSatisfiedError",
    "ResolutionError",
    # Versioning
    "Constraints",
    "PluginVersion",
    "fetch_latest_version",
    "filter_major_version",
    "find_latest_version",
    "parse_version",
    # Contracts
    "CONTRACT_LABEL",
    "ContractCache",
    "PluginContract",
    "PluginRequirement",
    "Requirements",
    "decode_contract",
    "encode_contract",
    # Registry
    "LayerStream",
    "OCIRegistryClient",
    "PluginService",
    "RegistryAuth",
    "RegistryClient",
    "resolve_auth",
    # Requirements
    "FailedConstraints",
    "RequirementValidator",
    "validate_module_requirement",
    "validate_plugin_conflicts",
    "validate_plugin_requirement",
    # Installer
    "FileLockManager",
    "InstallOptions",
    "InstallResult",
    "InstallState",
    "InstalledPlugin",
    "LockManager",
    "PluginInstaller",
    "PluginLayout",
    "TarExtractor",
    # Configuration
    "ManagerConfig",
    "build_installer",
    "prepare_plugins_dir",
]
