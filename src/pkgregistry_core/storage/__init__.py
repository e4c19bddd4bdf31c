"""Storage layer for package bytes + SQLite metadata."""

from .artifacts import ArtifactStore, FileArtifactStore
from .catalog import InMemoryCatalog, MetadataRepository, SqliteCatalog

__all__ = [
    "ArtifactStore",
    "FileArtifactStore",
    "InMemoryCatalog",
    "MetadataRepository",
    "SqliteCatalog",
]
