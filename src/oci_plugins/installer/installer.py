"""Plugin installation, update and removal.

An install moves through these states; every exit after ``LOCKED``
releases the plugin-major lock::

    IDLE -> DIRECTORY_PREPARED -> LOCKED -> CONTRACT_FETCHED
         -> REQUIREMENTS_CHECKED -> EXTRACTED -> ACTIVATED
         -> CONTRACT_CACHED -> IDLE

Classes
-------
- InstallOptions    Version selection and conflict-repair switches.
- InstallState      Install state machine states.
- InstallResult     Outcome of one install.
- InstalledPlugin   Row of the installed-plugins listing.
- PluginInstaller   Install / update / remove orchestration.
"""
from __future__ import annotations

import enum
import logging
import os
import shutil
import subprocess
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path

from oci_plugins.contract.cache import ContractCache
from oci_plugins.contract.models import PluginContract
from oci_plugins.errors import (
    ExtractionError,
    PluginError,
    PluginFilesystemError,
    RequirementsNotSatisfiedError,
)
from oci_plugins.installer.extractor import TarExtractor
from oci_plugins.installer.layout import PluginLayout
from oci_plugins.installer.lock import FileLockManager, LockManager
from oci_plugins.registry.service import PluginService
from oci_plugins.requirements.validator import RequirementValidator
from oci_plugins.versioning.constraints import PluginVersion, parse_version
from oci_plugins.versioning.resolver import fetch_latest_version

logger = logging.getLogger(__name__)

_VERSION_PROBE_TIMEOUT_SECONDS = 10.0


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InstallOptions:
    """How an install picks its version and handles unmet dependencies.

    Attributes
    ----------
    version:
        Exact version or tag to install.  Wins over ``use_major``.
    use_major:
        Restrict the latest-version search to this major version.
    resolve_plugins_conflicts:
        Install missing or mismatched plugin dependencies instead of
        failing.
    """

    version: str | None = None
    use_major: int | None = None
    resolve_plugins_conflicts: bool = False


class InstallState(str, enum.Enum):
    """States of a single install."""

    IDLE = "idle"
    DIRECTORY_PREPARED = "directory_prepared"
    LOCKED = "locked"
    CONTRACT_FETCHED = "contract_fetched"
    REQUIREMENTS_CHECKED = "requirements_checked"
    EXTRACTED = "extracted"
    ACTIVATED = "activated"
    CONTRACT_CACHED = "contract_cached"


@dataclass
class InstallResult:
    """Outcome of one :meth:`PluginInstaller.install_plugin` call.

    Attributes
    ----------
    name:
        Installed plugin.
    version:
        Installed version, as tagged in the registry.
    binary_path:
        Version-scoped binary the ``current`` link points at.
    contract:
        Contract fetched from the registry.
    dependencies:
        Results of dependency installs triggered by conflict repair.
    states:
        States passed through, in order.
    """

    name: str
    version: PluginVersion
    binary_path: Path
    contract: PluginContract
    dependencies: list[InstallResult] = field(default_factory=list)
    states: list[InstallState] = field(default_factory=list)


@dataclass(frozen=True)
class InstalledPlugin:
    """One installed plugin as shown by ``list``."""

    name: str
    version: str
    description: str


# ---------------------------------------------------------------------------
# Installer
# ---------------------------------------------------------------------------


class PluginInstaller:
    """Install plugins from a registry into a plugin root.

    Parameters
    ----------
    layout:
        Plugin root layout.
    service:
        Registry plugin service.
    cache:
        Contract cache; defaults to the layout's ``cache/contracts``.
    lock_manager:
        Lock implementation; defaults to :class:`FileLockManager`.
    extractor:
        Layer extractor; defaults to :class:`TarExtractor`.
    """

    def __init__(
        self,
        layout: PluginLayout,
        service: PluginService,
        cache: ContractCache | None = None,
        lock_manager: LockManager | None = None,
        extractor: TarExtractor | None = None,
    ) -> None:
        self._layout = layout
        self._service = service
        self._cache = cache if cache is not None else ContractCache(layout.contracts_dir)
        self._locks = lock_manager if lock_manager is not None else FileLockManager()
        self._extractor = extractor if extractor is not None else TarExtractor()
        self._validator = RequirementValidator(layout, self._cache)

    @property
    def layout(self) -> PluginLayout:
        return self._layout

    @property
    def cache(self) -> ContractCache:
        return self._cache

    @property
    def service(self) -> PluginService:
        return self._service

    # ------------------------------------------------------------------
    # Version resolution
    # ------------------------------------------------------------------

    def resolve_version(
        self,
        plugin_name: str,
        version: str | None = None,
        use_major: int | None = None,
    ) -> PluginVersion:
        """Return the version to install.

        An explicit *version* is parsed and used as is; otherwise the
        registry tags are listed and the latest one (within *use_major*
        when given) is taken.
        """
        if version:
            return parse_version(version)
        return fetch_latest_version(self._service, plugin_name, use_major)

    # ------------------------------------------------------------------
    # Install
    # ------------------------------------------------------------------

    def install_plugin(
        self,
        plugin_name: str,
        options: InstallOptions | None = None,
    ) -> InstallResult:
        """Install *plugin_name* and make it the active version.

        Raises
        ------
        ResolutionError
            If no version can be resolved.
        PluginLockedError
            If another install of the same plugin major is running.
        ContractError
            If the image has no usable contract.
        PluginConflictError
            If the version breaks an installed plugin's requirement.
        RequirementsNotSatisfiedError
            If dependencies are unmet and repair was not requested.
        ExtractionError
            If the layers cannot be extracted.
        """
        return self._install(plugin_name, options or InstallOptions(), visited={plugin_name})

    def _install(
        self,
        plugin_name: str,
        options: InstallOptions,
        visited: set[str],
    ) -> InstallResult:
        version = self.resolve_version(plugin_name, options.version, options.use_major)
        tag = version.original
        states = [InstallState.IDLE]

        def advance(state: InstallState) -> None:
            logger.debug("%s: %s -> %s", plugin_name, states[-1].value, state.value)
            states.append(state)

        version_dir = self._layout.version_dir(plugin_name, version.major)
        try:
            version_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PluginFilesystemError(
                f"failed to create plugin directory {version_dir}: {exc}"
            ) from exc
        advance(InstallState.DIRECTORY_PREPARED)

        logger.info("Installing plugin %s %s", plugin_name, tag)
        with self._locks.hold(self._layout.lock_path(plugin_name, version.major)):
            advance(InstallState.LOCKED)

            contract = self._service.get_plugin_contract(plugin_name, tag)
            advance(InstallState.CONTRACT_FETCHED)
            logger.info("Plugin %s %s: %s", contract.name, contract.version, contract.description)

            dependencies = self._check_requirements(contract, options, visited)
            advance(InstallState.REQUIREMENTS_CHECKED)

            binary_path = self._layout.binary_path(plugin_name, version.major)
            self._backup_binary(plugin_name, version.major)
            logger.info("Downloading and extracting %s:%s into %s", plugin_name, tag, version_dir)
            self._service.extract_plugin(plugin_name, tag, version_dir, self._extractor)
            if not binary_path.is_file():
                raise ExtractionError(
                    f"image {plugin_name}:{tag} does not contain the plugin binary {binary_path.name}"
                )
            advance(InstallState.EXTRACTED)

            self._activate(plugin_name, binary_path)
            advance(InstallState.ACTIVATED)

            self._cache.save(contract, plugin_name)
            advance(InstallState.CONTRACT_CACHED)

        advance(InstallState.IDLE)
        logger.info("Plugin %s %s installed", plugin_name, tag)
        return InstallResult(
            name=plugin_name,
            version=version,
            binary_path=binary_path,
            contract=contract,
            dependencies=dependencies,
            states=states,
        )

    def _check_requirements(
        self,
        contract: PluginContract,
        options: InstallOptions,
        visited: set[str],
    ) -> list[InstallResult]:
        failed = self._validator.validate(contract)
        if not failed:
            return []

        for name, constraints in failed.items():
            if constraints is None:
                logger.warning("%s: required plugin %s is not installed", contract.name, name)
            else:
                logger.warning(
                    "%s: installed plugin %s does not satisfy %s", contract.name, name, constraints
                )
        if not options.resolve_plugins_conflicts:
            raise RequirementsNotSatisfiedError("plugin requirements not satisfied")

        results: list[InstallResult] = []
        pending = deque(failed)
        while pending:
            dependency = pending.popleft()
            if dependency in visited:
                logger.warning(
                    "%s: dependency %s is already being installed in this run; skipping",
                    contract.name,
                    dependency,
                )
                continue
            visited.add(dependency)
            logger.info("%s: installing dependency %s", contract.name, dependency)
            results.append(
                self._install(dependency, InstallOptions(resolve_plugins_conflicts=True), visited)
            )
        return results

    def _backup_binary(self, plugin_name: str, major: int) -> None:
        binary_path = self._layout.binary_path(plugin_name, major)
        if not binary_path.is_file():
            return
        old_path = self._layout.old_binary_path(plugin_name, major)
        try:
            binary_path.replace(old_path)
        except OSError as exc:
            raise PluginFilesystemError(f"failed to save old version of {plugin_name}: {exc}") from exc
        logger.debug("Saved previous binary to %s", old_path)

    def _activate(self, plugin_name: str, binary_path: Path) -> None:
        current = self._layout.current_link(plugin_name)
        staging = current.with_name(f".{current.name}.{os.getpid()}.tmp")
        try:
            if os.path.lexists(staging):
                staging.unlink()
            staging.symlink_to(binary_path.absolute())
            os.replace(staging, current)
        except OSError as exc:
            if os.path.lexists(staging):
                staging.unlink()
            raise PluginFilesystemError(
                f"failed to point {current} at {binary_path}: {exc}"
            ) from exc
        logger.debug("Activated %s -> %s", current, binary_path)

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def update(self, plugin_name: str) -> InstallResult:
        """Reinstall *plugin_name* at the latest available version."""
        logger.info("Updating plugin %s", plugin_name)
        return self.install_plugin(plugin_name)

    def update_all(self) -> list[InstallResult]:
        """Update every plugin under ``plugins/``; stop at the first failure."""
        return [self.update(name) for name in self._layout.installed_plugins()]

    def ensure_installed(self, plugin_name: str) -> Path:
        """Return the ``current`` link, installing the plugin first if needed."""
        if not self._layout.is_installed(plugin_name):
            logger.info("Plugin %s is not installed; installing", plugin_name)
            self.install_plugin(plugin_name)
        return self._layout.current_link(plugin_name)

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    def remove(self, plugin_name: str) -> None:
        """Delete ``plugins/<name>/`` and its cached contract.

        Removing a plugin that is not installed is not an error.
        """
        plugin_dir = self._layout.plugin_dir(plugin_name)
        logger.info("Removing plugin %s from %s", plugin_name, plugin_dir)
        try:
            shutil.rmtree(plugin_dir)
        except FileNotFoundError:
            logger.debug("Plugin directory %s does not exist", plugin_dir)
        except OSError as exc:
            raise PluginFilesystemError(
                f"failed to remove plugin directory {plugin_dir}: {exc}"
            ) from exc
        if not self._cache.delete(plugin_name):
            logger.debug("No cached contract for %s", plugin_name)

    def remove_all(self) -> list[str]:
        """Remove every plugin under ``plugins/``; stop at the first failure."""
        names = self._layout.installed_plugins()
        for name in names:
            self.remove(name)
        return names

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def installed_version(self, plugin_name: str) -> PluginVersion:
        """Ask the active binary for its version.

        Runs ``current --version`` and falls back to ``current version``.

        Raises
        ------
        PluginError
            If neither invocation succeeds or the output is not a version.
        """
        current = self._layout.current_link(plugin_name)
        output = None
        for args in (["--version"], ["version"]):
            try:
                completed = subprocess.run(
                    [str(current), *args],
                    capture_output=True,
                    text=True,
                    timeout=_VERSION_PROBE_TIMEOUT_SECONDS,
                    check=True,
                )
            except (OSError, subprocess.SubprocessError) as exc:
                logger.warning("Failed to call %s %s: %s", plugin_name, " ".join(args), exc)
                continue
            output = completed.stdout.strip()
            break
        if output is None:
            raise PluginError(f"failed to call plugin {plugin_name}")
        return parse_version(output)

    def list_installed(self) -> list[InstalledPlugin]:
        """Describe every plugin directory under ``plugins/``.

        Version and description come from the cached contract.  Without
        one, the version is probed from the binary and shown as
        ``ERROR`` when that fails too.
        """
        rows: list[InstalledPlugin] = []
        for name in self._layout.installed_plugins():
            try:
                contract = self._cache.get(name)
            except PluginError as exc:
                logger.warning("Failed to read cached contract of %s: %s", name, exc)
                contract = None
            if contract is not None:
                rows.append(InstalledPlugin(name, contract.version, contract.description))
                continue
            try:
                version = str(self.installed_version(name))
            except PluginError as exc:
                logger.warning("Failed to get version of %s: %s", name, exc)
                version = "ERROR"
            rows.append(InstalledPlugin(name, version, ""))
        return rows


__all__ = [
    "InstallOptions",
    "InstallResult",
    "InstallState",
    "InstalledPlugin",
    "PluginInstaller",
]
