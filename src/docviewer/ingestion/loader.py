"""Document loading: cache-first reads, coalesced fetches, retries and timeouts."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from docviewer.errors import (
    FetchTimeoutError,
    NetworkError,
    NotFoundError,
    ParseError,
    classify,
)
from docviewer.index.storage import DocumentCache
from docviewer.ingestion.fetchers import FetchResponse, Fetcher
from docviewer.models import Document, DocumentStub, LoadState
from docviewer.utils.files import compute_fingerprint

LOGGER = logging.getLogger(__name__)

LoadListener = Callable[[Document, str], None]
FailureListener = Callable[[Document], None]

NOT_FOUND_STATUSES = frozenset({401, 403, 404, 410})


class DocumentLoader:
    """Loads document content through a fetch capability into the cache.

    At most one fetch runs per document id, at most ``max_concurrent_loads``
    fetches run at all, and failures never escape a single document.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        cache: DocumentCache,
        *,
        timeout_ms: int = 10_000,
        max_retries: int = 3,
        max_concurrent_loads: int = 6,
        retry_base_delay_ms: int = 200,
        retry_max_delay_ms: int = 5_000,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.fetcher = fetcher
        self.cache = cache
        self.timeout_ms = timeout_ms
        self.max_retries = max_retries
        self.max_concurrent_loads = max_concurrent_loads
        self.retry_base_delay_ms = retry_base_delay_ms
        self.retry_max_delay_ms = retry_max_delay_ms
        self._sleep = sleep
        self._semaphore = asyncio.Semaphore(max_concurrent_loads)
        self._documents: Dict[str, Document] = {}
        self._inflight: Dict[str, "asyncio.Task[Document]"] = {}
        self._listeners: List[LoadListener] = []
        self._failure_listeners: List[FailureListener] = []
        self._closed = False
        cache.add_invalidation_listener(self._mark_stale)

    @property
    def documents(self) -> Dict[str, Document]:
        return self._documents

    @property
    def closed(self) -> bool:
        return self._closed

    def add_listener(self, listener: LoadListener) -> None:
        """Call ``listener(document, content)`` after every successful load."""
        self._listeners.append(listener)

    def add_failure_listener(self, listener: FailureListener) -> None:
        """Call ``listener(document)`` whenever a load settles as FAILED."""
        self._failure_listeners.append(listener)

    def register(self, stub: DocumentStub) -> Document:
        document = self._documents.get(stub.id)
        if document is None:
            document = Document(stub=stub)
            self._documents[stub.id] = document
        elif document.stub != stub:
            document.stub = stub
        return document

    def retain(self, stubs: Iterable[DocumentStub]) -> None:
        """Register ``stubs`` and forget documents no longer resolved."""
        stubs = list(stubs)
        keep = {stub.id for stub in stubs}
        for stub in stubs:
            self.register(stub)
        for doc_id in [d for d in self._documents if d not in keep]:
            del self._documents[doc_id]

    def is_loading(self, document_id: str) -> bool:
        return document_id in self._inflight

    async def load(self, stub: DocumentStub, *, force: bool = False) -> Document:
        """Load one document; never raises for per-document failures."""
        document = self.register(stub)
        if self._closed:
            return document

        task = self._inflight.get(document.id)
        if task is None:
            if not force and not document.stale:
                entry = self.cache.get(document.id)
                if entry is not None:
                    document.state = LoadState.LOADED
                    document.fingerprint = entry.fingerprint
                    document.last_error = None
                    self._notify(document, entry.content)
                    return document
            task = asyncio.create_task(self._run(document), name=f"load:{document.id}")
            self._inflight[document.id] = task
            task.add_done_callback(lambda done, doc_id=document.id: self._forget_task(doc_id, done))
        else:
            LOGGER.debug("Joining in-flight load of %s", document.id)

        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                # Shutdown cancelled the fetch itself; that is not a document failure.
                return document
            raise

    async def load_many(self, stubs: Sequence[DocumentStub], *, force: bool = False) -> List[Document]:
        """Load documents concurrently; one result per stub, in order."""
        return list(await asyncio.gather(*(self.load(stub, force=force) for stub in stubs)))

    async def wait_until_settled(self, document_id: str, timeout: float) -> Document:
        """Wait for an in-flight load of ``document_id`` under one deadline."""
        document = self._documents.get(document_id)
        if document is None:
            raise NotFoundError(f"Unknown document: {document_id}", document_id=document_id)
        task = self._inflight.get(document_id)
        if task is None:
            return document
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError as exc:
            raise FetchTimeoutError(
                f"{document_id} did not finish loading within {timeout}s", document_id=document_id
            ) from exc
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
        return document

    async def close(self) -> None:
        """Cancel in-flight loads; anything finishing later is discarded."""
        self._closed = True
        tasks = list(self._inflight.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()

    def _forget_task(self, document_id: str, task: "asyncio.Task[Document]") -> None:
        if self._inflight.get(document_id) is task:
            del self._inflight[document_id]

    def _mark_stale(self, document_id: str) -> None:
        document = self._documents.get(document_id)
        if document is not None:
            document.stale = True

    def _notify(self, document: Document, content: str) -> None:
        for listener in self._listeners:
            try:
                listener(document, content)
            except Exception:
                LOGGER.exception("Post-load hook failed for %s", document.id)

    def _notify_failure(self, document: Document) -> None:
        for listener in self._failure_listeners:
            try:
                listener(document)
            except Exception:
                LOGGER.exception("Failure hook failed for %s", document.id)

    async def _run(self, document: Document) -> Document:
        previous = document.state
        document.state = LoadState.LOADING
        try:
            data = await self._fetch_with_retry(document)
            content = _decode(document.id, data)
        except asyncio.CancelledError:
            document.state = previous
            raise
        except Exception as exc:
            if self._closed:
                document.state = previous
                return document
            record = classify(exc, document_id=document.id)
            document.state = LoadState.FAILED
            document.last_error = record
            LOGGER.warning(
                "Failed to load %s after %d attempt(s): [%s] %s",
                document.id,
                document.attempts,
                record.kind.value,
                record.detail,
            )
            self._notify_failure(document)
            return document

        if self._closed:
            LOGGER.debug("Discarding result for %s loaded after shutdown", document.id)
            document.state = previous
            return document

        fingerprint = compute_fingerprint(data)
        self.cache.put(self.cache.new_entry(document.id, content, fingerprint))
        document.fingerprint = fingerprint
        document.state = LoadState.LOADED
        document.last_error = None
        document.stale = False
        LOGGER.debug("Loaded %s (%d bytes)", document.id, len(data))
        self._notify(document, content)
        return document

    def _backoff(self, attempt: int) -> float:
        delay_ms = min(self.retry_base_delay_ms * (2 ** (attempt - 1)), self.retry_max_delay_ms)
        return delay_ms / 1000.0

    async def _fetch_with_retry(self, document: Document) -> bytes:
        max_attempts = self.max_retries + 1
        attempt = 0
        while True:
            attempt += 1
            document.attempts = attempt
            try:
                async with self._semaphore:
                    response = await asyncio.wait_for(
                        self.fetcher.fetch(document.stub.locator), self.timeout_ms / 1000.0
                    )
                return _check_response(document.id, response)
            except asyncio.TimeoutError as exc:
                failure: Exception = FetchTimeoutError(
                    f"Timed out after {self.timeout_ms}ms loading {document.stub.locator}",
                    document_id=document.id,
                )
                failure.__cause__ = exc
            except Exception as exc:
                failure = exc

            record = classify(failure, document_id=document.id)
            if not record.retryable or attempt >= max_attempts:
                raise failure
            delay = self._backoff(attempt)
            LOGGER.info(
                "Retrying %s in %.2fs (attempt %d/%d): %s",
                document.id,
                delay,
                attempt,
                max_attempts,
                record.detail,
            )
            await self._sleep(delay)


def _check_response(document_id: str, response: Optional[FetchResponse]) -> bytes:
    if response is None:
        raise NetworkError(f"No response while loading {document_id}", document_id=document_id)
    if response.ok:
        return response.body
    if response.status in NOT_FOUND_STATUSES:
        raise NotFoundError(
            f"Document {document_id} not available (HTTP {response.status})", document_id=document_id
        )
    raise NetworkError(
        f"Request for {document_id} failed with HTTP {response.status}",
        document_id=document_id,
        status=response.status,
    )


def _decode(document_id: str, data: bytes) -> str:
    if b"\x00" in data:
        raise ParseError(f"{document_id} looks like binary content", document_id=document_id)
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ParseError(f"{document_id} is not valid UTF-8 text", document_id=document_id) from exc