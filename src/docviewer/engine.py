"""DocViewerEngine: one viewer instance tying sources, loading, search and navigation together."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp

from docviewer.config import (
    GitHubSource,
    InlineSource,
    LocalSource,
    UrlSource,
    ViewerConfig,
    validate_config,
)
from docviewer.errors import (
    ConfigValidationError,
    DocViewerError,
    FetchTimeoutError,
    LoadCancelledError,
    NotFoundError,
    SourceResolutionError,
    classify,
)
from docviewer.index.indexer import SearchIndexer
from docviewer.index.storage import DocumentCache
from docviewer.ingestion.fetchers import (
    Fetcher,
    GitHubClient,
    HttpFetcher,
    InlineFetcher,
    LocalFetcher,
    RepositoryClient,
    RoutingFetcher,
)
from docviewer.ingestion.loader import DocumentLoader
from docviewer.ingestion.resolver import Discovery, SourceResolver
from docviewer.models import Document, DocumentStub, LoadState, NavigationNode, NodeKind, SearchHit, TocEntry
from docviewer.navigation import (
    InMemoryStateStore,
    NavigationBuilder,
    StateStore,
    build_toc,
    collapse_key,
    find_node,
    history_key,
    read_collapsed,
    read_history,
    record_search,
)
from docviewer.utils.files import FileSystemDiscovery

LOGGER = logging.getLogger(__name__)


class DocViewerEngine:
    """A documentation viewer instance.

    ``config`` may be a validated :class:`ViewerConfig` or the raw JSON-like
    mapping; invalid raw input raises :class:`ConfigValidationError` with
    every issue found. Collaborators that are not injected are created from
    the source type and closed again by :meth:`close`.
    """

    def __init__(
        self,
        config: ViewerConfig | Dict[str, Any],
        *,
        fetcher: Optional[Fetcher] = None,
        discovery: Optional[Discovery] = None,
        repository_client: Optional[RepositoryClient] = None,
        state_store: Optional[StateStore] = None,
        instance_id: str = "default",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if not isinstance(config, ViewerConfig):
            result = validate_config(config)
            if isinstance(result, list):
                raise ConfigValidationError(result)
            config = result
        self.config = config
        self.instance_id = instance_id
        self.state_store: StateStore = state_store if state_store is not None else InMemoryStateStore()
        self._owned: List[Any] = []

        source = config.source
        self._inline = InlineFetcher()
        if isinstance(source, GitHubSource) and (repository_client is None or fetcher is None):
            client = GitHubClient(
                source.repo, source.ref, token=source.token, timeout_ms=config.load.timeout_ms
            )
            self._owned.append(client)
            if repository_client is None:
                repository_client = client
            if fetcher is None:
                fetcher = client
        if isinstance(source, LocalSource) and discovery is None:
            discovery = FileSystemDiscovery()
        if fetcher is None:
            fetcher = self._default_fetcher()

        self.fetcher: Fetcher = (
            self._inline if fetcher is self._inline else RoutingFetcher(fetcher, self._inline)
        )
        self.resolver = SourceResolver(discovery=discovery, repository_client=repository_client)
        self.cache = DocumentCache(config.cache.max_entries, ttl_ms=config.cache.ttl_ms)
        self.loader = DocumentLoader(
            self.fetcher,
            self.cache,
            timeout_ms=config.load.timeout_ms,
            max_retries=config.load.max_retries,
            max_concurrent_loads=config.load.max_concurrent_loads,
            retry_base_delay_ms=config.load.retry_base_delay_ms,
            retry_max_delay_ms=config.load.retry_max_delay_ms,
            sleep=sleep,
        )
        self.indexer = SearchIndexer(
            fuzzy=config.search.fuzzy_search,
            max_edit_distance=config.search.max_edit_distance,
            max_results=config.search.max_results,
            backfill=self._schedule_backfill,
        )
        if config.search.enabled:
            self.loader.add_listener(self._on_loaded)
            self.loader.add_failure_listener(self._on_failed)
        self.navigation_builder = NavigationBuilder()

        self._stubs: Optional[List[DocumentStub]] = None
        self._by_id: Dict[str, DocumentStub] = {}
        self._init_lock = asyncio.Lock()
        self._backfill: Dict[str, "asyncio.Task[Document]"] = {}
        self._closed = False

    def _default_fetcher(self) -> Fetcher:
        source = self.config.source
        if isinstance(source, LocalSource):
            return LocalFetcher(source.base_path)
        if isinstance(source, UrlSource):
            client = HttpFetcher(
                source.base_url, headers=source.headers, timeout_ms=self.config.load.timeout_ms
            )
            self._owned.append(client)
            return client
        if isinstance(source, InlineSource):
            return self._inline
        raise TypeError(f"Unsupported source: {source!r}")

    async def __aenter__(self) -> "DocViewerEngine":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def initialized(self) -> bool:
        return self._stubs is not None

    async def initialize(self, *, force: bool = False) -> List[DocumentStub]:
        """Resolve the source into stubs; repeated calls reuse the first result."""
        async with self._init_lock:
            if self._stubs is not None and not force:
                return list(self._stubs)
            try:
                stubs = await self.resolver.resolve(self.config.source)
            except DocViewerError:
                raise
            except (aiohttp.ClientError, OSError, asyncio.TimeoutError, ValueError) as exc:
                record = classify(exc)
                raise SourceResolutionError(record.detail, kind=record.kind) from exc
            self._inline.contents = self._embedded_contents(stubs)
            self.loader.retain(stubs)
            self.indexer.expect(stub.id for stub in stubs)
            self._stubs = stubs
            self._by_id = {stub.id: stub for stub in stubs}
            LOGGER.info("Viewer %s initialized with %d documents", self.instance_id, len(stubs))
            return list(stubs)

    def _embedded_contents(self, stubs: List[DocumentStub]) -> Dict[str, str]:
        specs = getattr(self.config.source, "documents", None)
        if specs is None:
            return {}
        # Declared documents resolve to one stub each, in declared order.
        return {
            stub.locator: spec.content
            for spec, stub in zip(specs, stubs)
            if spec.content is not None
        }

    async def _ensure_initialized(self) -> None:
        if self._closed:
            raise LoadCancelledError(f"Viewer {self.instance_id} is closed")
        if self._stubs is None:
            await self.initialize()

    def _stub(self, document_id: str) -> DocumentStub:
        stub = self._by_id.get(document_id)
        if stub is None:
            raise NotFoundError(f"Unknown document: {document_id}", document_id=document_id)
        return stub

    @property
    def stubs(self) -> List[DocumentStub]:
        return list(self._stubs or [])

    @property
    def documents(self) -> List[Document]:
        return [self.loader.documents[stub.id] for stub in self._stubs or []]

    def document(self, document_id: str) -> Document:
        self._stub(document_id)
        return self.loader.documents[document_id]

    @property
    def navigation(self) -> List[NavigationNode]:
        return self.navigation_builder.build(
            self.stubs,
            auto_sort=self.config.navigation.auto_sort,
            collapsed=read_collapsed(self.state_store, self.instance_id),
        )

    async def load(self, document_id: str, *, force: bool = False) -> Document:
        await self._ensure_initialized()
        return await self.loader.load(self._stub(document_id), force=force)

    async def load_all(self, *, force: bool = False) -> List[Document]:
        """Load every document; failures stay on their own Document."""
        await self._ensure_initialized()
        return await self.loader.load_many(self.stubs, force=force)

    async def retry(self, document_id: str) -> Document:
        document = self.document(document_id) if self.initialized else None
        if document is not None and document.state is LoadState.FAILED:
            LOGGER.info("Retrying %s after %s failure", document_id, document.last_error.kind.value)
        return await self.load(document_id)

    async def reload(self, document_id: str) -> Document:
        """Drop the cached copy and fetch again."""
        await self._ensure_initialized()
        self.cache.invalidate(self._stub(document_id).id)
        return await self.load(document_id, force=True)

    async def get(self, document_id: str) -> Document:
        return await self.load(document_id)

    async def get_content(self, document_id: str) -> Optional[str]:
        """Content of a loaded document, or None when loading failed."""
        document = await self.load(document_id)
        while document.state is LoadState.LOADED:
            entry = self.cache.get(document_id)
            if entry is not None:
                return entry.content
            # evicted or expired since the load settled
            document = await self.load(document_id)
        return None

    def invalidate(self, document_id: str) -> bool:
        return self.cache.invalidate(self._stub(document_id).id)

    def query(self, text: str, limit: Optional[int] = None) -> List[SearchHit]:
        if not self.config.search.enabled:
            return []
        hits = self.indexer.query(text, limit=limit)
        if text.strip():
            record_search(self.state_store, self.instance_id, text.strip(), len(hits))
        return hits

    def suggest(self, prefix: str, limit: int = 5) -> List[str]:
        """Earlier queries containing ``prefix``, then titles and indexed words."""
        if not self.config.search.enabled or not prefix.strip():
            return []
        needle = prefix.strip().lower()
        suggestions = [
            item["query"]
            for item in read_history(self.state_store, self.instance_id)
            if needle in item["query"].lower()
        ]
        seen = {suggestion.casefold() for suggestion in suggestions}
        for candidate in self.indexer.suggest(prefix, limit=limit):
            if candidate.casefold() not in seen:
                suggestions.append(candidate)
                seen.add(candidate.casefold())
        return suggestions[:limit]

    def search_history(self) -> List[Dict[str, Any]]:
        return read_history(self.state_store, self.instance_id)

    def clear_search_history(self) -> None:
        self.state_store.set(history_key(self.instance_id), [])

    async def toc(self, document_id: str, max_depth: int = 3) -> List[TocEntry]:
        """Heading tree of a document; empty when it cannot be loaded."""
        content = await self.get_content(document_id)
        if content is None:
            return []
        return build_toc(content, max_depth=max_depth)

    async def wait_until_loaded(self, document_id: str, timeout: float) -> Document:
        """Load (or join the running load of) a document under one deadline."""
        await self._ensure_initialized()
        stub = self._stub(document_id)
        document = self.loader.documents[document_id]
        if document.state is LoadState.FAILED and not self.loader.is_loading(document_id):
            return document
        try:
            return await asyncio.wait_for(asyncio.shield(self.loader.load(stub)), timeout)
        except asyncio.TimeoutError as exc:
            raise FetchTimeoutError(
                f"{document_id} did not finish loading within {timeout}s", document_id=document_id
            ) from exc

    def set_collapsed(self, node_id: str, collapsed: bool) -> NavigationNode:
        node = find_node(self.navigation, node_id)
        if node is None:
            raise NotFoundError(f"Unknown navigation node: {node_id}")
        if node.kind is not NodeKind.CATEGORY:
            raise ValueError(f"Only categories can be collapsed: {node_id}")
        flags = read_collapsed(self.state_store, self.instance_id)
        flags[node_id] = bool(collapsed)
        self.state_store.set(collapse_key(self.instance_id), flags)
        node.collapsed = bool(collapsed)
        return node

    def cache_stats(self) -> Dict[str, int]:
        return self.cache.stats()

    async def close(self) -> None:
        """Cancel loads and background indexing, then release owned clients."""
        if self._closed:
            return
        self._closed = True
        tasks = list(self._backfill.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._backfill.clear()
        await self.loader.close()
        for client in self._owned:
            await client.close()
        LOGGER.debug("Viewer %s closed", self.instance_id)

    def _on_loaded(self, document: Document, content: str) -> None:
        self.indexer.index(document, content)

    def _on_failed(self, document: Document) -> None:
        self.indexer.remove(document.id)

    def _schedule_backfill(self, missing: List[str]) -> None:
        if self._closed:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        for doc_id in missing:
            document = self.loader.documents.get(doc_id)
            if document is None or doc_id in self._backfill or self.loader.is_loading(doc_id):
                continue
            if document.state is not LoadState.NOT_LOADED:
                continue
            task = loop.create_task(self.loader.load(document.stub), name=f"backfill:{doc_id}")
            self._backfill[doc_id] = task
            task.add_done_callback(lambda _t, d=doc_id: self._backfill.pop(d, None))
        if self._backfill:
            LOGGER.debug("Background indexing of %d documents", len(self._backfill))
