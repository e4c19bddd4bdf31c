from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from pkgregistry_core.config import RegistryConfig
from pkgregistry_core.errors import (
    ConflictError,
    InconsistentError,
    NotFoundError,
    PartialDeleteError,
    RegistryError,
)
from pkgregistry_core.schemas import Package, PackageMeta, canonical_name
from pkgregistry_core.storage import (
    ArtifactStore,
    FileArtifactStore,
    MetadataRepository,
    SqliteCatalog,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _KeyLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


class KeyLocks:
    """Per-(name, version) mutual exclusion; idle keys are discarded."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[tuple[str, str], _KeyLock] = {}

    @contextmanager
    def hold(self, name: str, version: str) -> Iterator[None]:
        key = (canonical_name(name), version)
        with self._guard:
            entry = self._locks.setdefault(key, _KeyLock())
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class PackageRegistry:
    """Keeps the catalog and the artifact store coherent.

    Neither store can join a transaction with the other, so every write is a
    two-phase sequence with a compensating step when the second phase fails.
    Writes to the same key are serialized in-process.
    """

    def __init__(self, *, catalog: MetadataRepository, store: ArtifactStore) -> None:
        self.catalog = catalog
        self.store = store
        self._locks = KeyLocks()

    @classmethod
    def from_config(cls, config: RegistryConfig) -> PackageRegistry:
        store = FileArtifactStore(config.artifact_path)
        catalog = SqliteCatalog(config.catalog_path)
        return cls(catalog=catalog, store=store)

    def new_meta(self, name: str, version: str, filename: str | None = None) -> PackageMeta:
        return PackageMeta(
            name=name,
            version=version,
            location=self.store.location_for(name, version, filename),
        )

    def publish(self, meta: PackageMeta, data: bytes) -> Package:
        with self._locks.hold(meta.name, meta.version):
            address = self.store.resolve(meta)
            if self.catalog.get(meta.name, meta.version) is not None:
                raise ConflictError(f"package {meta.name}=={meta.version} already exists")

            # exclusive write; a file left by another publisher is never overwritten
            self.store.save(address, data, overwrite=False)
            try:
                self.catalog.add(meta)
            except RegistryError as exc:
                self._discard_orphan(meta, exc)
                raise

        logger.info(
            "registry publish name=%s version=%s bytes=%d",
            meta.name,
            meta.version,
            len(data),
        )
        return Package(meta=meta, data=data)

    def replace(self, meta: PackageMeta, data: bytes) -> Package:
        with self._locks.hold(meta.name, meta.version):
            current = self.catalog.get(meta.name, meta.version)
            if current is None:
                raise NotFoundError(f"package {meta.name}=={meta.version} does not exist")

            # new bytes get a fresh address so the old artifact stays readable until the switch
            target = current.model_copy(
                update={
                    "location": self.store.location_for(
                        current.name,
                        current.version,
                        meta.filename,
                        revision=uuid.uuid4().hex,
                    )
                }
            )
            self.store.save(self.store.resolve(target), data, overwrite=False)
            try:
                self.catalog.update(target)
            except RegistryError as exc:
                self._discard_orphan(target, exc)
                raise

            self._delete_superseded(current)

        logger.info(
            "registry replace name=%s version=%s bytes=%d old_location=%s new_location=%s",
            target.name,
            target.version,
            len(data),
            current.location,
            target.location,
        )
        return Package(meta=target, data=data)

    def delete(self, meta: PackageMeta) -> None:
        with self._locks.hold(meta.name, meta.version):
            address = self.store.resolve(meta)
            self.catalog.delete(meta)
            try:
                self.store.delete(address)
            except NotFoundError:
                logger.warning(
                    "registry delete artifact already missing name=%s version=%s location=%s",
                    meta.name,
                    meta.version,
                    meta.location,
                )
            except RegistryError as exc:
                logger.error(
                    "registry partial_delete name=%s version=%s location=%s error=%s",
                    meta.name,
                    meta.version,
                    meta.location,
                    exc,
                )
                raise PartialDeleteError(
                    f"package {meta.name}=={meta.version} removed from catalog "
                    f"but artifact {meta.location} could not be deleted",
                    location=meta.location,
                ) from exc

        logger.info("registry delete name=%s version=%s", meta.name, meta.version)

    def get(self, meta: PackageMeta) -> Package | None:
        stored = self.catalog.get(meta.name, meta.version)
        if stored is None:
            return None

        try:
            data = self.store.load(self.store.resolve(stored))
        except NotFoundError as exc:
            raise InconsistentError(
                f"package {stored.name}=={stored.version} is catalogued "
                f"but artifact {stored.location} is missing"
            ) from exc
        return Package(meta=stored, data=data)

    def versions(self, name: str) -> list[PackageMeta]:
        return self.catalog.with_name(name)

    def packages(self) -> list[PackageMeta]:
        return self.catalog.get_all()

    def _discard_orphan(self, meta: PackageMeta, primary: RegistryError) -> None:
        try:
            self.store.delete(self.store.resolve(meta))
        except RegistryError as cleanup_exc:
            logger.exception(
                "registry compensation failed name=%s version=%s location=%s",
                meta.name,
                meta.version,
                meta.location,
            )
            primary.add_compensation_error(cleanup_exc)
        else:
            logger.info(
                "registry compensation removed orphan name=%s version=%s location=%s",
                meta.name,
                meta.version,
                meta.location,
            )

    def _delete_superseded(self, previous: PackageMeta) -> None:
        try:
            self.store.delete(self.store.resolve(previous))
        except RegistryError:
            logger.exception(
                "registry superseded artifact left behind name=%s version=%s location=%s",
                previous.name,
                previous.version,
                previous.location,
            )
