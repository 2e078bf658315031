"""Per plugin-major install locks.

Classes
-------
- LockManager       Interface the installer acquires locks through.
- FileLockManager   Lock files created with ``O_CREAT | O_EXCL``.
"""
from __future__ import annotations

import contextlib
import logging
import os
from abc import ABC, abstractmethod
from collections.abc import Iterator
from pathlib import Path

from oci_plugins.errors import PluginFilesystemError, PluginLockedError

logger = logging.getLogger(__name__)


class LockManager(ABC):
    """Non-blocking mutual exclusion keyed by a lock path."""

    @abstractmethod
    def acquire(self, lock_path: Path) -> None:
        """Take the lock or raise :class:`PluginLockedError` at once."""

    @abstractmethod
    def release(self, lock_path: Path) -> None:
        """Release a lock taken by :meth:`acquire`."""

    @contextlib.contextmanager
    def hold(self, lock_path: Path) -> Iterator[Path]:
        """Hold the lock for the duration of a ``with`` block.

        A release failure is raised when the block succeeded, and only
        logged when the block is already raising.
        """
        self.acquire(lock_path)
        try:
            yield lock_path
        except BaseException:
            try:
                self.release(lock_path)
            except PluginFilesystemError as exc:
                logger.error("Failed to release lock %s: %s", lock_path, exc)
            raise
        self.release(lock_path)


class FileLockManager(LockManager):
    """Lock by exclusive creation of an empty file.

    A stale lock file left by a crashed process keeps the plugin-major
    locked until it is deleted by hand.
    """

    def acquire(self, lock_path: Path) -> None:
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError as exc:
            raise PluginLockedError(lock_path) from exc
        except OSError as exc:
            raise PluginFilesystemError(f"failed to create lock file {lock_path}: {exc}") from exc
        os.close(fd)
        logger.debug("Acquired lock %s", lock_path)

    def release(self, lock_path: Path) -> None:
        try:
            os.unlink(lock_path)
        except FileNotFoundError:
            logger.warning("Lock file %s was already removed", lock_path)
            return
        except OSError as exc:
            raise PluginFilesystemError(f"failed to remove lock file {lock_path}: {exc}") from exc
        logger.debug("Released lock %s", lock_path)


__all__ = [
    "FileLockManager",
    "LockManager",
]
