"""Typed failures raised by the registry core.

Stores wrap the lowest-level failure (``sqlite3.Error``, ``OSError``) with a
kind tag and chain the original exception as ``__cause__``. Only
``PackageRegistry`` performs compensating actions; when one of those fails
the secondary error is attached to the primary one via
``compensation_errors`` instead of replacing it.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    USAGE = "usage"
    IO_FAILURE = "io_failure"
    INCONSISTENT = "inconsistent"
    PARTIAL_DELETE = "partial_delete"


class RegistryError(Exception):
    kind: ErrorKind = ErrorKind.IO_FAILURE

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
        self.compensation_errors: list[Exception] = []

    def __str__(self) -> str:
        return f"{self.kind} error: {self.message}"

    def add_compensation_error(self, error: Exception) -> None:
        self.compensation_errors.append(error)
        self.add_note(f"compensation failed: {error}")


class ConflictError(RegistryError):
    kind = ErrorKind.CONFLICT


class NotFoundError(RegistryError):
    kind = ErrorKind.NOT_FOUND


class UsageError(RegistryError):
    kind = ErrorKind.USAGE


class StorageIOError(RegistryError):
    kind = ErrorKind.IO_FAILURE


class InconsistentError(RegistryError):
    kind = ErrorKind.INCONSISTENT


class PartialDeleteError(InconsistentError):
    """Catalog row is gone but the artifact bytes are still on disk."""

    kind = ErrorKind.PARTIAL_DELETE

    def __init__(self, message: str, *, location: str) -> None:
        super().__init__(message)
        self.location = location


_HTTP_STATUS_BY_KIND = {
    ErrorKind.CONFLICT: 409,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.USAGE: 500,
    ErrorKind.IO_FAILURE: 503,
    ErrorKind.INCONSISTENT: 500,
    ErrorKind.PARTIAL_DELETE: 500,
}


def http_status_for(error: RegistryError) -> int:
    return _HTTP_STATUS_BY_KIND[error.kind]
