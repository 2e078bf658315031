"""Exception hierarchy for oci-plugins.

Every error raised by the resolution and installation protocol derives
from :class:`PluginError` so the CLI can report it uniformly.

Classes
-------
- PluginError                    Base class.
- ResolutionError                Version could not be resolved.
- NoVersionsFoundError           No tag parsed as a semantic version.
- InvalidVersionError            An explicit version string is not semver.
- PluginLockedError              Another install holds the lock file.
- ContractError                  Contract label missing or malformed.
- RequirementsError              Requirement validation failed.
- InvalidConstraintError         A constraint string is malformed.
- PluginConflictError            Candidate breaks an installed plugin.
- RequirementsNotSatisfiedError  Candidate dependencies are missing.
- ExtractionError                Layer extraction failed.
- PathTraversalError             A tar entry escapes the destination.
- RegistryError                  The registry call failed.
- PluginFilesystemError          Directory, symlink or cache I/O failed.
"""
from __future__ import annotations


class PluginError(Exception):
    """Base class for all plugin manager errors."""


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


class ResolutionError(PluginError):
    """Raised when a target version cannot be resolved."""


class NoVersionsFoundError(ResolutionError):
    """Raised when no tag parses as a semantic version."""


class InvalidVersionError(ResolutionError):
    """Raised when an explicit version string is not a semantic version."""


# ---------------------------------------------------------------------------
# Locking and contracts
# ---------------------------------------------------------------------------


class PluginLockedError(PluginError):
    """Raised when the plugin-major lock file already exists."""

    def __init__(self, lock_path: object) -> None:
        super().__init__(f"plugin is locked by: {lock_path}")
        self.lock_path = lock_path


class ContractError(PluginError):
    """Raised when a plugin contract is missing or cannot be parsed."""


# ---------------------------------------------------------------------------
# Requirements
# ---------------------------------------------------------------------------


class RequirementsError(PluginError):
    """Raised when requirement validation fails."""


class InvalidConstraintError(RequirementsError):
    """Raised when a version constraint string cannot be parsed."""


class PluginConflictError(RequirementsError):
    """Raised when installing a candidate breaks an installed plugin."""


class RequirementsNotSatisfiedError(RequirementsError):
    """Raised when dependencies are unmet and repair was not requested."""


# ---------------------------------------------------------------------------
# Extraction, registry, filesystem
# ---------------------------------------------------------------------------


class ExtractionError(PluginError):
    """Raised when an image layer cannot be extracted."""


class PathTraversalError(ExtractionError):
    """Raised when a tar entry would be written outside the destination."""


class RegistryError(PluginError):
    """Raised when a registry operation fails."""


class PluginFilesystemError(PluginError):
    """Raised when plugin directories, symlinks or cache files cannot be written."""


__all__ = [
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
]
