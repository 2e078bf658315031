"""Plugin requirement validation.

Two checks guard an install:

* the forward check asks whether the candidate's own plugin dependencies
  are installed at acceptable versions, and collects the ones that are not;
* the backward check asks whether an installed plugin declares a
  requirement on the candidate that the candidate's version breaks.  An
  installed plugin cannot be changed retroactively, so this is fatal.

Module requirements are declared in contracts but not validated yet;
:func:`validate_module_requirement` is the hook for that.

Classes
-------
- RequirementValidator   Runs all checks against the installed plugin set.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING

from oci_plugins.contract.cache import ContractCache
from oci_plugins.contract.models import PluginContract
from oci_plugins.errors import PluginConflictError
from oci_plugins.versioning.constraints import Constraints, parse_version

if TYPE_CHECKING:
    from oci_plugins.installer.layout import PluginLayout

logger = logging.getLogger(__name__)

#: Dependency name -> ``None`` when it is missing, or the constraint its
#: installed version fails.
FailedConstraints = dict[str, "Constraints | None"]


def validate_plugin_requirement(
    candidate: PluginContract,
    installed: Mapping[str, PluginContract],
) -> FailedConstraints:
    """Return the candidate's unsatisfied plugin dependencies.

    Parameters
    ----------
    candidate:
        Contract of the plugin about to be installed.
    installed:
        Cached contracts of the installed plugins, by name.

    Returns
    -------
    FailedConstraints
        Empty when every dependency is satisfied.
    """
    failed: FailedConstraints = {}
    for requirement in candidate.requirements.plugin_requirements:
        contract = installed.get(requirement.name)
        if contract is None:
            logger.info(
                "%s requires plugin %s, which is not installed",
                candidate.name,
                requirement.name,
            )
            failed[requirement.name] = None
            continue

        if not requirement.constraint:
            continue

        constraints = Constraints(requirement.constraint)
        version = parse_version(contract.version)
        if not constraints.check(version):
            logger.info(
                "%s requires plugin %s %s, installed version is %s",
                candidate.name,
                requirement.name,
                constraints,
                version,
            )
            failed[requirement.name] = constraints
    return failed


def validate_plugin_conflicts(
    candidate: PluginContract,
    installed: Mapping[str, PluginContract],
) -> None:
    """Fail if the candidate's version breaks an installed plugin's requirement.

    Installed contracts whose plugin requirements were not recorded (the
    on-disk cache drops them) cannot be checked; each one is logged as a
    warning and skipped.

    Raises
    ------
    PluginConflictError
        On the first installed plugin whose requirement on the candidate
        rejects the candidate's version.
    """
    version = None
    for name, contract in installed.items():
        if name == candidate.name:
            continue
        if not contract.requirements.plugins_recorded:
            logger.warning(
                "Plugin requirements of installed plugin %s are not recorded; "
                "cannot check its constraints on %s",
                name,
                candidate.name,
            )
            continue
        for requirement in contract.requirements.plugin_requirements:
            if requirement.name != candidate.name or not requirement.constraint:
                continue
            if version is None:
                version = parse_version(candidate.version)
            constraints = Constraints(requirement.constraint)
            if not constraints.check(version):
                raise PluginConflictError(
                    f"installing plugin {candidate.name} {version} will make conflict "
                    f"with existing plugin {name} constraint {constraints}"
                )


def validate_module_requirement(candidate: PluginContract) -> None:
    """Check the candidate's module requirements.  Not implemented; always passes."""
    if candidate.requirements.modules:
        logger.debug(
            "Skipping module requirement validation for %s (%d modules)",
            candidate.name,
            len(candidate.requirements.modules),
        )


class RequirementValidator:
    """Validate candidates against the plugins installed under a layout.

    A plugin counts as installed when its ``current`` link resolves.  Its
    version and requirements come from the contract cache; installed
    plugins without a cache file are skipped with a warning.

    Parameters
    ----------
    layout:
        Plugin root layout.
    cache:
        Contract cache of the same root.
    """

    def __init__(self, layout: PluginLayout, cache: ContractCache) -> None:
        self._layout = layout
        self._cache = cache

    def installed_contracts(self) -> dict[str, PluginContract]:
        """Return cached contracts of every installed plugin."""
        contracts: dict[str, PluginContract] = {}
        for name in self._layout.installed_plugins():
            if not self._layout.is_installed(name):
                continue
            contract = self._cache.get(name)
            if contract is None:
                logger.warning("Installed plugin %s has no cached contract; skipping", name)
                continue
            contracts[name] = contract
        return contracts

    def validate(self, candidate: PluginContract) -> FailedConstraints:
        """Run the backward, forward and module checks.

        Raises
        ------
        PluginConflictError
            If the backward check fails.
        """
        installed = self.installed_contracts()
        validate_plugin_conflicts(candidate, installed)
        failed = validate_plugin_requirement(candidate, installed)
        validate_module_requirement(candidate)
        return failed


__all__ = [
    "FailedConstraints",
    "RequirementValidator",
    "validate_module_requirement",
    "validate_plugin_conflicts",
    "validate_plugin_requirement",
]
