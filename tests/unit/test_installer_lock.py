"""Tests for oci_plugins.installer.lock."""
from __future__ import annotations

import logging
from pathlib import Path

import pytest

from oci_plugins.errors import PluginFilesystemError, PluginLockedError
from oci_plugins.installer.lock import FileLockManager


@pytest.fixture()
def locks() -> FileLockManager:
    return FileLockManager()


@pytest.fixture()
def lock_path(tmp_path: Path) -> Path:
    return tmp_path / "demo.lock"


class TestFileLockManager:
    def test_acquire_creates_lock_file(self, locks: FileLockManager, lock_path: Path) -> None:
        locks.acquire(lock_path)
        assert lock_path.exists()

    def test_second_acquire_fails_immediately(self, locks: FileLockManager, lock_path: Path) -> None:
        locks.acquire(lock_path)
        with pytest.raises(PluginLockedError) as excinfo:
            locks.acquire(lock_path)
        assert str(excinfo.value) == f"plugin is locked by: {lock_path}"
        assert excinfo.value.lock_path == lock_path

    def test_release_removes_lock_file(self, locks: FileLockManager, lock_path: Path) -> None:
        locks.acquire(lock_path)
        locks.release(lock_path)
        assert not lock_path.exists()
        locks.acquire(lock_path)

    def test_release_of_missing_lock_is_tolerated(self, locks: FileLockManager, lock_path: Path) -> None:
        locks.release(lock_path)

    def test_hold_releases_on_error(self, locks: FileLockManager, lock_path: Path) -> None:
        with pytest.raises(RuntimeError):
            with locks.hold(lock_path):
                assert lock_path.exists()
                raise RuntimeError("boom")
        assert not lock_path.exists()

    def test_locked_hold_leaves_foreign_lock_in_place(
        self, locks: FileLockManager, lock_path: Path
    ) -> None:
        lock_path.touch()
        with pytest.raises(PluginLockedError):
            with locks.hold(lock_path):
                pass
        assert lock_path.exists()

    def test_missing_directory_is_a_filesystem_error(
        self, locks: FileLockManager, tmp_path: Path
    ) -> None:
        with pytest.raises(PluginFilesystemError):
            locks.acquire(tmp_path / "absent" / "demo.lock")


class _StuckLockManager(FileLockManager):
    def release(self, lock_path: Path) -> None:
        raise PluginFilesystemError(f"failed to remove lock file {lock_path}: busy")


class TestReleaseFailures:
    def test_release_failure_does_not_mask_block_error(
        self, lock_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.ERROR, logger="oci_plugins"):
            with pytest.raises(RuntimeError, match="install failed"):
                with _StuckLockManager().hold(lock_path):
                    raise RuntimeError("install failed")
        assert "Failed to release lock" in caplog.text

    def test_release_failure_after_success_is_raised(self, lock_path: Path) -> None:
        with pytest.raises(PluginFilesystemError, match="busy"):
            with _StuckLockManager().hold(lock_path):
                pass
