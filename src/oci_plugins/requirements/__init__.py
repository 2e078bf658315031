"""Plugin requirement validation (forward, backward and module checks)."""
from __future__ import annotations

from oci_plugins.requirements.validator import (
    FailedConstraints,
    RequirementValidator,
    validate_module_requirement,
    validate_plugin_conflicts,
    validate_plugin_requirement,
)

__all__ = [
    "FailedConstraints",
    "RequirementValidator",
    "validate_module_requirement",
    "validate_plugin_conflicts",
    "validate_plugin_requirement",
]
