from __future__ import annotations

import logging
import os
import stat
import tempfile
from pathlib import Path, PurePosixPath
from typing import Protocol

from pkgregistry_core.errors import ConflictError, NotFoundError, StorageIOError, UsageError
from pkgregistry_core.schemas import PackageMeta, canonical_name

FS_SCHEME = "fs"
DEFAULT_EXTENSION = ".tar.gz"
_SCRATCH_PREFIX = ".pkgregistry-"
_SCRATCH_SUFFIX = ".tmp"
_PREPARE_ATTEMPTS = 5

logger = logging.getLogger(__name__)


class ArtifactStore(Protocol):
    def location_for(
        self,
        name: str,
        version: str,
        filename: str | None = None,
        *,
        revision: str | None = None,
    ) -> str:
        """Build a location locator for a new artifact."""

    def resolve(self, meta: PackageMeta) -> Path:
        """Map a package location to a concrete storage address."""

    def save(self, address: Path, data: bytes, *, overwrite: bool = True) -> None:
        """Atomically persist bytes at address; ConflictError if it exists and not overwrite."""

    def load(self, address: Path) -> bytes:
        """Return the bytes stored at address."""

    def delete(self, address: Path) -> None:
        """Remove the bytes stored at address."""

    def exists(self, address: Path) -> bool:
        """Return True when address holds an artifact."""


class FileArtifactStore:
    """Artifact bytes on the local filesystem under a single root directory.

    Locations look like ``fs://<name>/<version>/<file>`` and are always
    resolved relative to the root. Writes go to a scratch file in the
    destination directory and are moved into place with ``os.replace``, so a
    reader sees either the previous file or the complete new one. With
    ``overwrite=False`` the scratch file is hard-linked instead, which fails
    when the address is taken and so never clobbers another writer's bytes.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = _validate_root(Path(root))

    def location_for(
        self,
        name: str,
        version: str,
        filename: str | None = None,
        *,
        revision: str | None = None,
    ) -> str:
        normalized = canonical_name(name)
        file_part = filename or f"{normalized}-{version}{DEFAULT_EXTENSION}"
        if not _is_plain_segment(file_part):
            raise UsageError(f"invalid artifact filename: {file_part!r}")
        if revision is None:
            return f"{FS_SCHEME}://{normalized}/{version}/{file_part}"
        if not _is_plain_segment(revision):
            raise UsageError(f"invalid artifact revision: {revision!r}")
        return f"{FS_SCHEME}://{normalized}/{version}/{revision}/{file_part}"

    def resolve(self, meta: PackageMeta) -> Path:
        if meta.scheme != FS_SCHEME:
            raise UsageError(f"unsupported location scheme {meta.scheme!r} in {meta.location}")

        relative = PurePosixPath(meta.path)
        if relative.is_absolute() or ".." in relative.parts or not relative.parts:
            raise UsageError(f"location escapes the artifact root: {meta.location}")
        return self.root.joinpath(*relative.parts)

    def save(self, address: Path, data: bytes, *, overwrite: bool = True) -> None:
        address = self._contained(address)
        fd, scratch = self._open_scratch(address)

        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            if overwrite:
                os.replace(scratch, address)
            else:
                os.link(scratch, address)
        except FileExistsError as exc:
            _discard(scratch)
            raise ConflictError(f"artifact {address} already exists") from exc
        except OSError as exc:
            _discard(scratch)
            raise StorageIOError(f"cannot write artifact {address}") from exc
        except BaseException:
            _discard(scratch)
            raise

        if not overwrite:
            _discard(scratch)
        _fsync_directory(address.parent)
        logger.info("artifact_store save path=%s bytes=%d", address, len(data))

    def load(self, address: Path) -> bytes:
        address = self._contained(address)
        try:
            data = address.read_bytes()
        except FileNotFoundError as exc:
            raise NotFoundError(f"artifact {address} does not exist") from exc
        except OSError as exc:
            raise StorageIOError(f"cannot read artifact {address}") from exc
        logger.info("artifact_store load path=%s bytes=%d", address, len(data))
        return data

    def delete(self, address: Path) -> None:
        address = self._contained(address)
        try:
            address.unlink()
        except FileNotFoundError as exc:
            raise NotFoundError(f"artifact {address} does not exist") from exc
        except OSError as exc:
            raise StorageIOError(f"cannot delete artifact {address}") from exc
        self._prune_empty_parents(address.parent)
        logger.info("artifact_store delete path=%s", address)

    def exists(self, address: Path) -> bool:
        return self._contained(address).is_file()

    def _contained(self, address: Path) -> Path:
        candidate = Path(address)
        if not candidate.is_absolute():
            candidate = self.root / candidate
        if not candidate.resolve().is_relative_to(self.root) or candidate.resolve() == self.root:
            raise UsageError(f"address {address} is outside the artifact root {self.root}")
        return candidate

    def _open_scratch(self, address: Path) -> tuple[int, Path]:
        vanished: FileNotFoundError | None = None
        for attempt in range(1, _PREPARE_ATTEMPTS + 1):
            try:
                address.parent.mkdir(parents=True, exist_ok=True)
                fd, scratch = tempfile.mkstemp(
                    dir=address.parent,
                    prefix=_SCRATCH_PREFIX,
                    suffix=_SCRATCH_SUFFIX,
                )
            except FileNotFoundError as exc:
                # a concurrent delete pruned the directory before the scratch file existed
                vanished = exc
                logger.warning(
                    "artifact_store directory vanished path=%s attempt=%d",
                    address.parent,
                    attempt,
                )
                continue
            except OSError as exc:
                raise StorageIOError(f"cannot prepare write for {address}") from exc
            return fd, Path(scratch)
        raise StorageIOError(f"cannot prepare write for {address}") from vanished

    def _prune_empty_parents(self, directory: Path) -> None:
        while directory != self.root and directory.is_relative_to(self.root):
            try:
                directory.rmdir()
            except OSError:
                # not empty, or a concurrent save just created a file in it
                return
            directory = directory.parent


def _is_plain_segment(value: str) -> bool:
    return bool(value) and "/" not in value and value not in {".", ".."}


def _validate_root(root: Path) -> Path:
    if not root.exists():
        raise UsageError(f"{root} does not exist")
    if not root.is_dir():
        raise UsageError(f"{root} is not a directory")
    write_bits = stat.S_IWUSR | stat.S_IWGRP | stat.S_IWOTH
    if not root.stat().st_mode & write_bits or not os.access(root, os.W_OK | os.X_OK):
        raise UsageError(f"{root} is not writeable")
    return root.resolve()


def _discard(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError:
        logger.exception("artifact_store scratch cleanup failed path=%s", path)


def _fsync_directory(directory: Path) -> None:
    if os.name != "posix":
        return
    try:
        fd = os.open(directory, os.O_RDONLY)
    except OSError:
        logger.warning("artifact_store directory fsync skipped path=%s", directory)
        return
    try:
        os.fsync(fd)
    except OSError:
        logger.warning("artifact_store directory fsync failed path=%s", directory)
    finally:
        os.close(fd)
