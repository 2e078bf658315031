"""End-to-end tests for oci_plugins.installer.installer.PluginInstaller.

Runs against the in-memory registry from conftest and a real plugin root
under tmp_path.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path

import pytest

from conftest import build_layer, plugin_script
from oci_plugins.contract.cache import ContractCache
from oci_plugins.contract.models import PluginContract
from oci_plugins.errors import (
    ContractError,
    ExtractionError,
    InvalidVersionError,
    NoVersionsFoundError,
    PathTraversalError,
    PluginConflictError,
    PluginError,
    PluginLockedError,
    RequirementsNotSatisfiedError,
)
from oci_plugins.installer.installer import InstallOptions, InstallState, PluginInstaller
from oci_plugins.installer.layout import PluginLayout
from oci_plugins.installer.lock import LockManager
from oci_plugins.registry.service import PluginService


# ---------------------------------------------------------------------------
# Install
# ---------------------------------------------------------------------------


class TestInstallPlugin:
    def test_installs_latest_version(
        self, registry, installer: PluginInstaller, layout: PluginLayout
    ) -> None:
        registry.publish_tags("demo", "v1.0.0", "v1.2.0", "bad-tag")

        result = installer.install_plugin("demo")

        binary = layout.plugin_dir("demo") / "v1" / "demo"
        current = layout.plugin_dir("demo") / "current"
        assert result.version.original == "v1.2.0"
        assert result.binary_path == binary
        assert binary.read_bytes() == plugin_script("v1.2.0")
        assert current.is_symlink()
        assert os.readlink(current) == str(binary.absolute())
        assert os.path.isabs(os.readlink(current))
        assert registry.extract_calls == [("demo", "v1.2.0")]

    def test_caches_contract(self, registry, installer: PluginInstaller, layout: PluginLayout) -> None:
        registry.publish("demo", "v1.2.0", description="Demo plugin")
        installer.install_plugin("demo")
        cached = ContractCache(layout.contracts_dir).load("demo")
        assert (cached.name, cached.version, cached.description) == ("demo", "v1.2.0", "Demo plugin")

    def test_walks_every_state_and_releases_lock(
        self, registry, installer: PluginInstaller, layout: PluginLayout
    ) -> None:
        registry.publish_tags("demo", "v1.2.0")
        result = installer.install_plugin("demo")
        assert result.states == [
            InstallState.IDLE,
            InstallState.DIRECTORY_PREPARED,
            InstallState.LOCKED,
            InstallState.CONTRACT_FETCHED,
            InstallState.REQUIREMENTS_CHECKED,
            InstallState.EXTRACTED,
            InstallState.ACTIVATED,
            InstallState.CONTRACT_CACHED,
            InstallState.IDLE,
        ]
        assert not layout.lock_path("demo", 1).exists()

    def test_explicit_version(self, registry, installer: PluginInstaller) -> None:
        registry.publish_tags("demo", "v1.0.0", "v1.2.0")
        result = installer.install_plugin("demo", InstallOptions(version="v1.0.0"))
        assert result.version.original == "v1.0.0"

    def test_invalid_explicit_version(self, registry, installer: PluginInstaller) -> None:
        with pytest.raises(InvalidVersionError):
            installer.install_plugin("demo", InstallOptions(version="latest"))

    def test_use_major(self, registry, installer: PluginInstaller, layout: PluginLayout) -> None:
        registry.publish_tags("demo", "v1.0.0", "v1.3.0", "v2.0.0")
        result = installer.install_plugin("demo", InstallOptions(use_major=1))
        assert result.version.original == "v1.3.0"
        assert os.readlink(layout.current_link("demo")) == str(layout.binary_path("demo", 1).absolute())

    def test_use_major_without_match(self, registry, installer: PluginInstaller) -> None:
        registry.publish_tags("demo", "v1.0.0")
        with pytest.raises(NoVersionsFoundError, match="major version: 3"):
            installer.install_plugin("demo", InstallOptions(use_major=3))

    def test_majors_live_side_by_side(
        self, registry, installer: PluginInstaller, layout: PluginLayout
    ) -> None:
        registry.publish_tags("demo", "v1.0.0", "v2.0.0")
        installer.install_plugin("demo", InstallOptions(use_major=1))
        installer.install_plugin("demo")
        assert layout.binary_path("demo", 1).is_file()
        assert layout.binary_path("demo", 2).is_file()
        assert os.readlink(layout.current_link("demo")) == str(layout.binary_path("demo", 2).absolute())

    def test_reinstall_keeps_previous_binary_as_old(
        self, registry, installer: PluginInstaller, layout: PluginLayout
    ) -> None:
        registry.publish_tags("demo", "v1.0.0")
        installer.install_plugin("demo")
        registry.publish_tags("demo", "v1.1.0")

        installer.update("demo")

        assert layout.old_binary_path("demo", 1).read_bytes() == plugin_script("v1.0.0")
        assert layout.binary_path("demo", 1).read_bytes() == plugin_script("v1.1.0")

    def test_no_temporary_link_left_behind(
        self, registry, installer: PluginInstaller, layout: PluginLayout
    ) -> None:
        registry.publish_tags("demo", "v1.0.0")
        installer.install_plugin("demo")
        installer.install_plugin("demo")
        assert sorted(p.name for p in layout.plugin_dir("demo").iterdir()) == ["current", "v1"]


# ---------------------------------------------------------------------------
# Install failures
# ---------------------------------------------------------------------------


class TestInstallFailures:
    def test_locked_plugin_is_rejected_without_extraction(
        self, registry, installer: PluginInstaller, layout: PluginLayout
    ) -> None:
        registry.publish_tags("demo", "v1.0.0")
        lock = layout.lock_path("demo", 1)
        lock.parent.mkdir(parents=True)
        lock.touch()

        with pytest.raises(PluginLockedError, match="plugin is locked by: "):
            installer.install_plugin("demo")

        assert registry.extract_calls == []
        assert lock.exists()
        assert not layout.current_link("demo").exists()

    def test_missing_contract_label(self, registry, installer: PluginInstaller, layout: PluginLayout) -> None:
        registry.publish("demo", "v1.0.0", label="")
        with pytest.raises(ContractError, match="label not found"):
            installer.install_plugin("demo")
        assert not layout.lock_path("demo", 1).exists()
        assert registry.extract_calls == []

    def test_malformed_contract(self, registry, installer: PluginInstaller, layout: PluginLayout) -> None:
        registry.publish("demo", "v1.0.0", label="{not json")
        with pytest.raises(ContractError):
            installer.install_plugin("demo")
        assert not layout.lock_path("demo", 1).exists()

    def test_image_without_binary(self, registry, installer: PluginInstaller, layout: PluginLayout) -> None:
        registry.publish("demo", "v1.0.0", layers=[build_layer({"README": b"docs"})])
        with pytest.raises(ExtractionError, match="does not contain the plugin binary"):
            installer.install_plugin("demo")
        assert not layout.current_link("demo").exists()
        assert not layout.lock_path("demo", 1).exists()
        assert not ContractCache(layout.contracts_dir).exists("demo")

    def test_traversal_in_layer(self, registry, installer: PluginInstaller, layout: PluginLayout) -> None:
        registry.publish("demo", "v1.0.0", layers=[build_layer({"../../escape": b"x"})])
        with pytest.raises(PathTraversalError):
            installer.install_plugin("demo")
        assert not layout.lock_path("demo", 1).exists()
        assert not layout.current_link("demo").exists()

    def test_later_layers_overwrite_earlier(
        self, registry, installer: PluginInstaller, layout: PluginLayout
    ) -> None:
        registry.publish(
            "demo",
            "v1.0.0",
            layers=[
                build_layer({"demo": b"first", "extra": b"kept"}),
                build_layer({"demo": plugin_script("v1.0.0")}),
            ],
        )
        installer.install_plugin("demo")
        assert layout.binary_path("demo", 1).read_bytes() == plugin_script("v1.0.0")
        assert (layout.version_dir("demo", 1) / "extra").read_bytes() == b"kept"

    def test_injected_lock_manager_is_used(self, registry, layout: PluginLayout) -> None:
        class RecordingLocks(LockManager):
            def __init__(self) -> None:
                self.events: list[tuple[str, Path]] = []

            def acquire(self, lock_path: Path) -> None:
                self.events.append(("acquire", lock_path))

            def release(self, lock_path: Path) -> None:
                self.events.append(("release", lock_path))

        registry.publish("demo", "v1.0.0", label="")
        locks = RecordingLocks()
        installer = PluginInstaller(layout, PluginService(registry), lock_manager=locks)
        with pytest.raises(ContractError):
            installer.install_plugin("demo")
        lock = layout.lock_path("demo", 1)
        assert locks.events == [("acquire", lock), ("release", lock)]


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


class TestDependencies:
    def test_unmet_dependency_fails_without_repair(
        self, registry, installer: PluginInstaller, layout: PluginLayout
    ) -> None:
        registry.publish("app", "v1.0.0", requires=[{"name": "tool", "constraint": ">=1.0.0"}])
        with pytest.raises(RequirementsNotSatisfiedError, match="plugin requirements not satisfied"):
            installer.install_plugin("app")
        assert registry.extract_calls == []
        assert not layout.lock_path("app", 1).exists()

    def test_repair_installs_missing_dependency(
        self, registry, installer: PluginInstaller, layout: PluginLayout
    ) -> None:
        registry.publish("app", "v1.0.0", requires=[{"name": "tool", "constraint": ">=1.0.0"}])
        registry.publish_tags("tool", "v1.0.0", "v1.5.0")

        result = installer.install_plugin("app", InstallOptions(resolve_plugins_conflicts=True))

        assert [dep.name for dep in result.dependencies] == ["tool"]
        assert result.dependencies[0].version.original == "v1.5.0"
        assert layout.is_installed("tool")
        assert layout.is_installed("app")
        assert registry.extract_calls == [("tool", "v1.5.0"), ("app", "v1.0.0")]

    def test_repair_upgrades_mismatched_dependency(
        self, registry, installer: PluginInstaller, layout: PluginLayout
    ) -> None:
        registry.publish_tags("tool", "v1.0.0")
        installer.install_plugin("tool")
        registry.publish_tags("tool", "v2.0.0")
        registry.publish("app", "v1.0.0", requires=[{"name": "tool", "constraint": ">=2.0.0"}])

        installer.install_plugin("app", InstallOptions(resolve_plugins_conflicts=True))

        assert ContractCache(layout.contracts_dir).load("tool").version == "v2.0.0"

    def test_satisfied_dependency_not_reinstalled(self, registry, installer: PluginInstaller) -> None:
        registry.publish_tags("tool", "v1.0.0")
        installer.install_plugin("tool")
        registry.publish("app", "v1.0.0", requires=[{"name": "tool", "constraint": "^1.0.0"}])

        result = installer.install_plugin("app")

        assert result.dependencies == []
        assert registry.extract_calls == [("tool", "v1.0.0"), ("app", "v1.0.0")]

    def test_backward_conflict_fails_even_with_repair(self, registry, layout: PluginLayout) -> None:
        class FullContractCache(ContractCache):
            """Cache that keeps plugin requirements in memory."""

            def __init__(self, directory: Path) -> None:
                super().__init__(directory)
                self.contracts: dict[str, PluginContract] = {}

            def save(self, contract: PluginContract, plugin_name: str | None = None) -> Path:
                self.contracts[plugin_name or contract.name] = contract
                return super().save(contract, plugin_name)

            def get(self, plugin_name: str) -> PluginContract | None:
                if not self.exists(plugin_name):
                    return None
                if plugin_name in self.contracts:
                    return self.contracts[plugin_name]
                return super().get(plugin_name)

        installer = PluginInstaller(
            layout, PluginService(registry), cache=FullContractCache(layout.contracts_dir)
        )
        registry.publish_tags("b", "v1.0.0", "v2.0.0")
        registry.publish("a", "v1.0.0", requires=[{"name": "b", "constraint": "^1.0.0"}])
        installer.install_plugin("b", InstallOptions(version="v1.0.0"))
        installer.install_plugin("a")

        with pytest.raises(PluginConflictError, match="will make conflict with existing plugin a"):
            installer.install_plugin("b", InstallOptions(resolve_plugins_conflicts=True))

        assert ("b", "v2.0.0") not in registry.extract_calls
        assert not layout.lock_path("b", 2).exists()
        assert os.readlink(layout.current_link("b")) == str(layout.binary_path("b", 1).absolute())

    def test_default_cache_warns_that_backward_check_is_skipped(
        self,
        registry,
        installer: PluginInstaller,
        layout: PluginLayout,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        registry.publish_tags("b", "v1.0.0", "v2.0.0")
        registry.publish("a", "v1.0.0", requires=[{"name": "b", "constraint": "^1.0.0"}])
        installer.install_plugin("b", InstallOptions(version="v1.0.0"))
        installer.install_plugin("a")

        with caplog.at_level(logging.WARNING, logger="oci_plugins"):
            result = installer.install_plugin("b")

        assert result.version.original == "v2.0.0"
        assert "installed plugin a are not recorded" in caplog.text
        assert "constraints on b" in caplog.text

    def test_dependency_cycle_terminates(
        self, registry, installer: PluginInstaller, layout: PluginLayout
    ) -> None:
        registry.publish("a", "v1.0.0", requires=[{"name": "b", "constraint": ""}])
        registry.publish("b", "v1.0.0", requires=[{"name": "a", "constraint": ""}])

        result = installer.install_plugin("a", InstallOptions(resolve_plugins_conflicts=True))

        assert [dep.name for dep in result.dependencies] == ["b"]
        assert result.dependencies[0].dependencies == []
        assert layout.is_installed("a")
        assert layout.is_installed("b")
        assert registry.extract_calls == [("b", "v1.0.0"), ("a", "v1.0.0")]


# ---------------------------------------------------------------------------
# Update / remove / inspection
# ---------------------------------------------------------------------------


class TestUpdateAndRemove:
    def test_update_all_visits_plugins_in_order(self, registry, installer: PluginInstaller) -> None:
        registry.publish_tags("beta", "v1.0.0")
        registry.publish_tags("alpha", "v1.0.0")
        installer.install_plugin("beta")
        installer.install_plugin("alpha")
        registry.extract_calls.clear()

        results = installer.update_all()

        assert [r.name for r in results] == ["alpha", "beta"]
        assert registry.extract_calls == [("alpha", "v1.0.0"), ("beta", "v1.0.0")]

    def test_update_all_stops_on_first_error(
        self, registry, installer: PluginInstaller, layout: PluginLayout
    ) -> None:
        registry.publish_tags("beta", "v1.0.0")
        installer.install_plugin("beta")
        layout.plugin_dir("alpha").mkdir()
        registry.extract_calls.clear()

        with pytest.raises(PluginError):
            installer.update_all()
        assert registry.extract_calls == []

    def test_remove_deletes_directory_and_cache(
        self, registry, installer: PluginInstaller, layout: PluginLayout
    ) -> None:
        registry.publish_tags("demo", "v1.0.0")
        installer.install_plugin("demo")
        cache_file = layout.contracts_dir / "demo.json"
        assert cache_file.exists()

        installer.remove("demo")

        assert not layout.plugin_dir("demo").exists()
        assert not cache_file.exists()
        installer.remove("demo")

    def test_remove_all(self, registry, installer: PluginInstaller, layout: PluginLayout) -> None:
        registry.publish_tags("alpha", "v1.0.0")
        registry.publish_tags("beta", "v1.0.0")
        installer.install_plugin("alpha")
        installer.install_plugin("beta")

        assert installer.remove_all() == ["alpha", "beta"]
        assert layout.installed_plugins() == []
        assert list(layout.contracts_dir.iterdir()) == []

    def test_remove_all_on_empty_root(self, installer: PluginInstaller) -> None:
        assert installer.remove_all() == []

    def test_ensure_installed(self, registry, installer: PluginInstaller, layout: PluginLayout) -> None:
        registry.publish_tags("demo", "v1.0.0")
        assert installer.ensure_installed("demo") == layout.current_link("demo")
        assert installer.ensure_installed("demo") == layout.current_link("demo")
        assert registry.extract_calls == [("demo", "v1.0.0")]


class TestInspection:
    def test_installed_version_probes_binary(self, registry, installer: PluginInstaller) -> None:
        registry.publish_tags("demo", "v1.2.0")
        installer.install_plugin("demo")
        assert str(installer.installed_version("demo")) == "v1.2.0"

    def test_list_installed_prefers_cache(self, registry, installer: PluginInstaller) -> None:
        registry.publish("demo", "v1.2.0", description="Demo plugin")
        installer.install_plugin("demo")
        [row] = installer.list_installed()
        assert (row.name, row.version, row.description) == ("demo", "v1.2.0", "Demo plugin")

    def test_list_installed_falls_back_to_binary(
        self, registry, installer: PluginInstaller, layout: PluginLayout
    ) -> None:
        registry.publish_tags("demo", "v1.2.0")
        installer.install_plugin("demo")
        (layout.contracts_dir / "demo.json").unlink()
        [row] = installer.list_installed()
        assert row.version == "v1.2.0"

    def test_list_installed_reports_error(
        self, registry, installer: PluginInstaller, layout: PluginLayout
    ) -> None:
        layout.plugin_dir("broken").mkdir(parents=True)
        [row] = installer.list_installed()
        assert (row.name, row.version) == ("broken", "ERROR")
