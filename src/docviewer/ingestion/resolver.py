"""Turn a configured source into the ordered list of document stubs."""

from __future__ import annotations

import logging
import posixpath
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Set, Tuple, runtime_checkable

from docviewer.config import DocumentSpec, GitHubSource, InlineSource, LocalSource, Source, UrlSource
from docviewer.errors import SourceResolutionError
from docviewer.ingestion.fetchers import RepositoryClient
from docviewer.models import DocumentStub
from docviewer.utils.files import filter_locators
from docviewer.utils.text import (
    filename_to_title,
    first_heading,
    first_paragraph,
    order_prefix,
    parse_tags,
    slugify,
    split_frontmatter,
)

LOGGER = logging.getLogger(__name__)

INLINE_PREFIX = "inline:"


@runtime_checkable
class Discovery(Protocol):
    """Lists document locators below a base location."""

    async def discover(self, base: str, include: Sequence[str], exclude: Sequence[str]) -> List[str]:
        ...


def category_from_path(relative: str) -> Tuple[str, ...]:
    folder = posixpath.dirname(relative.strip("/"))
    return tuple(part for part in folder.split("/") if part and part != ".")


class _IdAllocator:
    """Deterministic ids: a slug of the locator, ``-2``, ``-3``... on clashes.

    Reserved ids (explicitly declared ones) are never handed out.
    """

    def __init__(self, reserved: Iterable[str] = ()) -> None:
        self._seen: Dict[str, int] = {}
        self._taken: Set[str] = set(reserved)

    def allocate(self, base: str) -> str:
        count = self._seen.get(base, 0)
        while True:
            count += 1
            candidate = base if count == 1 else f"{base}-{count}"
            if candidate not in self._taken:
                break
        self._seen[base] = count
        self._taken.add(candidate)
        return candidate


def _sort_discovered(stubs: List[DocumentStub]) -> List[DocumentStub]:
    # Explicit order first, then titles alphabetically.
    return sorted(
        stubs,
        key=lambda s: (s.order is None, s.order if s.order is not None else 0, s.title.lower(), s.id),
    )


class SourceResolver:
    """Resolves Local, Url, GitHub and Inline sources into document stubs."""

    def __init__(
        self,
        *,
        discovery: Optional[Discovery] = None,
        repository_client: Optional[RepositoryClient] = None,
    ) -> None:
        self.discovery = discovery
        self.repository_client = repository_client

    async def resolve(self, source: Source) -> List[DocumentStub]:
        if isinstance(source, InlineSource):
            stubs = self._from_inline(source.documents)
        elif isinstance(source, (LocalSource, UrlSource)):
            base = source.base_path if isinstance(source, LocalSource) else source.base_url
            if source.documents is not None:
                stubs = self._from_specs(source.documents)
            else:
                stubs = await self._from_discovery(base, source.include, source.exclude)
        elif isinstance(source, GitHubSource):
            stubs = await self._from_github(source)
        else:
            raise TypeError(f"Unsupported source: {source!r}")

        LOGGER.info("Resolved %d documents", len(stubs))
        return stubs

    def _from_specs(self, specs: Sequence[DocumentSpec]) -> List[DocumentStub]:
        ids = _IdAllocator(spec.id for spec in specs if spec.id)
        stubs = []
        for spec in specs:
            doc_id = spec.id or ids.allocate(slugify(spec.file or spec.title or "document"))
            filename = posixpath.basename(spec.file) if spec.file else ""
            stubs.append(
                DocumentStub(
                    id=doc_id,
                    title=spec.title or (filename_to_title(filename) if filename else "Untitled"),
                    locator=spec.file or f"{INLINE_PREFIX}{doc_id}",
                    category=spec.category or (category_from_path(spec.file) if spec.file else ()),
                    order=spec.order if spec.order is not None else order_prefix(filename),
                    tags=spec.tags,
                    description=spec.description,
                )
            )
        return stubs

    def _from_inline(self, specs: Sequence[DocumentSpec]) -> List[DocumentStub]:
        ids = _IdAllocator(spec.id for spec in specs if spec.id)
        stubs = []
        for spec in specs:
            content = spec.content or ""
            meta, _ = split_frontmatter(content)
            title = spec.title or meta.get("title") or first_heading(content) or "Untitled"
            doc_id = spec.id or ids.allocate(slugify(spec.file or title))
            order = spec.order
            if order is None and meta.get("order", "").isdigit():
                order = int(meta["order"])
            stubs.append(
                DocumentStub(
                    id=doc_id,
                    title=title,
                    locator=f"{INLINE_PREFIX}{doc_id}",
                    category=spec.category or tuple(
                        part.strip() for part in meta.get("category", "").split("/") if part.strip()
                    ),
                    order=order,
                    tags=spec.tags or parse_tags(meta.get("tags", "")),
                    description=spec.description or meta.get("description") or first_paragraph(content),
                )
            )
        return stubs

    def _stubs_from_listing(self, locators: Sequence[str], *, strip_prefix: str = "") -> List[DocumentStub]:
        ids = _IdAllocator()
        stubs = []
        for locator in locators:
            relative = locator[len(strip_prefix):] if locator.startswith(strip_prefix) else locator
            filename = posixpath.basename(relative)
            stubs.append(
                DocumentStub(
                    id=ids.allocate(slugify(relative)),
                    title=filename_to_title(filename),
                    locator=locator,
                    category=category_from_path(relative),
                    order=order_prefix(filename),
                )
            )
        return _sort_discovered(stubs)

    async def _from_discovery(
        self, base: str, include: Sequence[str], exclude: Sequence[str]
    ) -> List[DocumentStub]:
        if self.discovery is None:
            raise SourceResolutionError(
                "Source has no document list and no discovery collaborator is configured"
            )
        locators = await self.discovery.discover(base, include, exclude)
        # ids depend on listing order, so fix it before allocating
        return self._stubs_from_listing(sorted(set(locators)))

    async def _from_github(self, source: GitHubSource) -> List[DocumentStub]:
        if self.repository_client is None:
            raise SourceResolutionError("GitHub source needs a repository client")
        listing = await self.repository_client.list_files(source.repo, source.ref, source.path)
        prefix = f"{source.path}/" if source.path else ""
        relative = [loc[len(prefix):] if loc.startswith(prefix) else loc for loc in listing]
        kept = set(filter_locators(relative, source.include, source.exclude))
        locators = sorted(loc for loc, rel in zip(listing, relative) if rel in kept)
        return self._stubs_from_listing(locators, strip_prefix=prefix)
