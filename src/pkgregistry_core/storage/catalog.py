from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Protocol

from pkgregistry_core.errors import ConflictError, NotFoundError, StorageIOError, UsageError
from pkgregistry_core.schemas import PackageMeta, canonical_name

DROP_SCHEMA = """
DROP INDEX IF EXISTS idx_name_version;
DROP TABLE IF EXISTS packages;
"""

logger = logging.getLogger(__name__)


class MetadataRepository(Protocol):
    def add(self, meta: PackageMeta) -> None:
        """Insert a new record; ConflictError if (name, version) exists."""

    def update(self, meta: PackageMeta) -> PackageMeta:
        """Point an existing key at a new location and return the previous record."""

    def delete(self, meta: PackageMeta) -> None:
        """Remove the record matching name, version and location exactly."""

    def get(self, name: str, version: str) -> PackageMeta | None:
        """Return the record for (name, version), or None."""

    def with_name(self, name: str) -> list[PackageMeta]:
        """Return every version of a package in creation order."""

    def get_all(self) -> list[PackageMeta]:
        """Return the full catalog in creation order."""


class SqliteCatalog:
    def __init__(self, db_path: str | Path, *, timeout_seconds: float = 5.0) -> None:
        if str(db_path) == ":memory:":
            raise UsageError("sqlite catalog needs a file path; use InMemoryCatalog instead")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0.")

        self.db_path = Path(db_path)
        self.timeout_seconds = timeout_seconds
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageIOError(f"cannot create catalog directory {self.db_path.parent}") from exc
        self._init_schema()

    def add(self, meta: PackageMeta) -> None:
        query = """
        INSERT INTO packages (name, version, location)
        VALUES (?, ?, ?)
        """
        with self._connect() as conn:
            try:
                conn.execute(query, (meta.name, meta.version, meta.location))
            except sqlite3.IntegrityError as exc:
                raise ConflictError(
                    f"package {meta.name}=={meta.version} already exists"
                ) from exc
        logger.info("catalog add name=%s version=%s", meta.name, meta.version)

    def update(self, meta: PackageMeta) -> PackageMeta:
        select_query = """
        SELECT name, version, location
        FROM packages
        WHERE canonical_name(name) = ? AND version = ?
        """
        update_query = """
        UPDATE packages
        SET location = ?
        WHERE canonical_name(name) = ? AND version = ?
        """
        key_name = canonical_name(meta.name)
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(select_query, (key_name, meta.version)).fetchone()
            if row is None:
                raise NotFoundError(f"package {meta.name}=={meta.version} does not exist")
            conn.execute(update_query, (meta.location, key_name, meta.version))

        previous = self._row_to_meta(row)
        logger.info(
            "catalog update name=%s version=%s old_location=%s new_location=%s",
            meta.name,
            meta.version,
            previous.location,
            meta.location,
        )
        return previous

    def delete(self, meta: PackageMeta) -> None:
        query = """
        DELETE FROM packages
        WHERE canonical_name(name) = ? AND version = ? AND location = ?
        """
        with self._connect() as conn:
            cursor = conn.execute(
                query, (canonical_name(meta.name), meta.version, meta.location)
            )
            if cursor.rowcount == 0:
                raise NotFoundError(
                    f"package {meta.name}=={meta.version} at {meta.location} does not exist"
                )
        logger.info("catalog delete name=%s version=%s", meta.name, meta.version)

    def get(self, name: str, version: str) -> PackageMeta | None:
        query = """
        SELECT name, version, location
        FROM packages
        WHERE canonical_name(name) = ? AND version = ?
        """
        with self._connect() as conn:
            row = conn.execute(query, (canonical_name(name), version)).fetchone()

        if row is None:
            return None
        return self._row_to_meta(row)

    def with_name(self, name: str) -> list[PackageMeta]:
        query = """
        SELECT name, version, location
        FROM packages
        WHERE canonical_name(name) = ?
        ORDER BY id ASC
        """
        with self._connect() as conn:
            rows = conn.execute(query, (canonical_name(name),)).fetchall()

        return [self._row_to_meta(row) for row in rows]

    def get_all(self) -> list[PackageMeta]:
        query = """
        SELECT name, version, location
        FROM packages
        ORDER BY id ASC
        """
        with self._connect() as conn:
            rows = conn.execute(query).fetchall()

        return [self._row_to_meta(row) for row in rows]

    def drop_schema(self) -> None:
        with self._connect() as conn:
            conn.executescript(DROP_SCHEMA)
        logger.warning("catalog schema dropped path=%s", self.db_path)

    def _init_schema(self) -> None:
        schema_path = Path(__file__).with_name("schema.sql")
        schema = schema_path.read_text(encoding="utf-8")
        with self._connect() as conn:
            conn.executescript(schema)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn: sqlite3.Connection | None = None
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout_seconds)
            conn.row_factory = sqlite3.Row
            conn.create_function("canonical_name", 1, canonical_name, deterministic=True)
            # the unique index calls canonical_name, so it must be callable from the schema
            conn.execute("PRAGMA trusted_schema = ON")
            with conn:
                yield conn
        except sqlite3.Error as exc:
            raise StorageIOError(f"sqlite operation failed path={self.db_path}: {exc}") from exc
        finally:
            if conn is not None:
                conn.close()

    @staticmethod
    def _row_to_meta(row: sqlite3.Row) -> PackageMeta:
        return PackageMeta(
            name=row["name"],
            version=row["version"],
            location=row["location"],
        )


class InMemoryCatalog:
    """Process-local catalog with the same semantics as SqliteCatalog."""

    def __init__(self) -> None:
        self._records: list[PackageMeta] = []
        self._lock = threading.Lock()

    def add(self, meta: PackageMeta) -> None:
        with self._lock:
            if self._find(meta.name, meta.version) is not None:
                raise ConflictError(f"package {meta.name}=={meta.version} already exists")
            self._records.append(meta)

    def update(self, meta: PackageMeta) -> PackageMeta:
        with self._lock:
            index = self._find(meta.name, meta.version)
            if index is None:
                raise NotFoundError(f"package {meta.name}=={meta.version} does not exist")
            previous = self._records[index]
            self._records[index] = previous.model_copy(update={"location": meta.location})
            return previous

    def delete(self, meta: PackageMeta) -> None:
        with self._lock:
            index = self._find(meta.name, meta.version)
            if index is None or self._records[index].location != meta.location:
                raise NotFoundError(
                    f"package {meta.name}=={meta.version} at {meta.location} does not exist"
                )
            del self._records[index]

    def get(self, name: str, version: str) -> PackageMeta | None:
        with self._lock:
            index = self._find(name, version)
            return None if index is None else self._records[index]

    def with_name(self, name: str) -> list[PackageMeta]:
        target = canonical_name(name)
        with self._lock:
            return [meta for meta in self._records if canonical_name(meta.name) == target]

    def get_all(self) -> list[PackageMeta]:
        with self._lock:
            return list(self._records)

    def _find(self, name: str, version: str) -> int | None:
        target = canonical_name(name)
        for index, meta in enumerate(self._records):
            if canonical_name(meta.name) == target and meta.version == version:
                return index
        return None
