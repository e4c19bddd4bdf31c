from __future__ import annotations

from collections.abc import Iterable, Iterator

from pkgregistry_core.schemas import IndexEntry, PackageMeta, canonical_name


class IndexProjector:
    """Turn catalog records into simple-index listing rows.

    Links use the same canonical name that ``MetadataRepository.with_name``
    matches on, so every root link resolves back to its package page.
    Values are handed over unescaped; markup belongs to the renderer.
    """

    def __init__(self, *, base_url: str = "") -> None:
        self.base_url = base_url.rstrip("/")

    def render_root(self, metas: Iterable[PackageMeta]) -> Iterator[IndexEntry]:
        seen: set[str] = set()
        for meta in metas:
            normalized = canonical_name(meta.name)
            if normalized in seen:
                continue
            seen.add(normalized)
            yield IndexEntry(display_name=meta.name, link=self._link(f"{normalized}/"))

    def render_package(self, metas: Iterable[PackageMeta]) -> Iterator[IndexEntry]:
        for meta in metas:
            yield IndexEntry(display_name=meta.filename, link=self._link(meta.path))

    def _link(self, path: str) -> str:
        if not self.base_url:
            return path
        return f"{self.base_url}/{path.lstrip('/')}"
