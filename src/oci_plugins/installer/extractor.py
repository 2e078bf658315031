"""Streaming extraction of uncompressed tar layers.

Classes
-------
- TarExtractor   Apply one tar stream onto a destination directory.
"""
from __future__ import annotations

import logging
import os
import shutil
import tarfile
from pathlib import Path
from typing import BinaryIO

from oci_plugins.errors import ExtractionError, PathTraversalError

logger = logging.getLogger(__name__)


def _safe_target(destination: str, entry_name: str) -> str:
    target = os.path.normpath(destination + os.sep + entry_name)
    relative = os.path.relpath(target, destination)
    if not relative or relative == os.pardir or relative.startswith(os.pardir + os.sep):
        raise PathTraversalError(f"tar entry {entry_name!r} escapes {destination}")
    return target


def _remove_existing(path: str) -> None:
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    elif os.path.lexists(path):
        os.unlink(path)


class TarExtractor:
    """Write the entries of a tar stream below a destination directory.

    Directories, regular files, symlinks and hard links are supported;
    any other entry type is skipped with a warning.  Symlink targets are
    written as given and not checked against the destination.

    Parameters
    ----------
    copy_buffer_size:
        Chunk size used when copying file contents.
    """

    def __init__(self, copy_buffer_size: int = 1024 * 1024) -> None:
        self._copy_buffer_size = copy_buffer_size

    def extract(self, stream: BinaryIO, destination: Path) -> int:
        """Extract every entry of *stream* into *destination*.

        Parameters
        ----------
        stream:
            Readable uncompressed tar archive.  Read sequentially once.
        destination:
            Root directory entries are written under.

        Returns
        -------
        int
            Number of entries written.

        Raises
        ------
        PathTraversalError
            If an entry resolves outside *destination*.  Extraction stops
            at that entry.
        ExtractionError
            On a malformed archive or a write failure.
        """
        root = os.path.normpath(os.fspath(destination))
        written = 0
        try:
            with tarfile.open(fileobj=stream, mode="r|") as archive:
                for member in archive:
                    target = _safe_target(root, member.name)
                    if self._extract_member(archive, member, target, root):
                        written += 1
        except tarfile.TarError as exc:
            raise ExtractionError(f"failed to read tar stream: {exc}") from exc
        except OSError as exc:
            raise ExtractionError(f"failed to extract into {root}: {exc}") from exc
        logger.debug("Extracted %d entries into %s", written, root)
        return written

    def _extract_member(
        self,
        archive: tarfile.TarFile,
        member: tarfile.TarInfo,
        target: str,
        root: str,
    ) -> bool:
        mode = member.mode & 0o7777

        if member.isdir():
            os.makedirs(target, mode=mode or 0o755, exist_ok=True)
            return True

        if member.isreg():
            os.makedirs(os.path.dirname(target), exist_ok=True)
            if os.path.islink(target):
                os.unlink(target)
            source = archive.extractfile(member)
            if source is None:
                raise ExtractionError(f"cannot read tar entry {member.name!r}")
            fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
            with os.fdopen(fd, "wb") as out:
                shutil.copyfileobj(source, out, self._copy_buffer_size)
            os.chmod(target, mode)
            return True

        if member.issym():
            os.makedirs(os.path.dirname(target), exist_ok=True)
            _remove_existing(target)
            os.symlink(member.linkname, target)
            return True

        if member.islnk():
            link_source = _safe_target(root, member.linkname)
            os.makedirs(os.path.dirname(target), exist_ok=True)
            _remove_existing(target)
            os.link(link_source, target)
            return True

        logger.warning("Skipping unsupported tar entry %s (type %r)", member.name, member.type)
        return False


__all__ = [
    "TarExtractor",
]
