"""Package registry core: catalog, artifact store and simple-index projection."""

from .config import RegistryConfig, load_config
from .errors import (
    ConflictError,
    ErrorKind,
    InconsistentError,
    NotFoundError,
    PartialDeleteError,
    RegistryError,
    StorageIOError,
    UsageError,
)
from .index import IndexProjector
from .registry import PackageRegistry
from .schemas import IndexEntry, Package, PackageMeta, canonical_name

__all__ = [
    "ConflictError",
    "ErrorKind",
    "InconsistentError",
    "IndexEntry",
    "IndexProjector",
    "NotFoundError",
    "Package",
    "PackageMeta",
    "PackageRegistry",
    "PartialDeleteError",
    "RegistryConfig",
    "RegistryError",
    "StorageIOError",
    "UsageError",
    "canonical_name",
    "load_config",
]
