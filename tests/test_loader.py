"""Tests for DocumentLoader."""

from __future__ import annotations

import asyncio
from typing import Dict, List, Optional

import pytest

from docviewer.errors import FetchTimeoutError, NetworkError, NotFoundError
from docviewer.index.storage import DocumentCache
from docviewer.ingestion.fetchers import FetchResponse
from docviewer.ingestion.loader import DocumentLoader
from docviewer.models import DocumentStub, ErrorKind, LoadState


def _stub(doc_id: str) -> DocumentStub:
    return DocumentStub(id=doc_id, title=doc_id.title(), locator=f"{doc_id}.md")


class FakeFetcher:
    """Returns scripted outcomes per locator; a list is consumed one call at a time."""

    def __init__(self, outcomes: Dict[str, object]) -> None:
        self.outcomes = outcomes
        self.calls: List[str] = []

    async def fetch(self, locator: str) -> Optional[FetchResponse]:
        self.calls.append(locator)
        await asyncio.sleep(0)
        outcome = self.outcomes[locator]
        if isinstance(outcome, list):
            outcome = outcome.pop(0) if len(outcome) > 1 else outcome[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class HangingFetcher:
    def __init__(self) -> None:
        self.started = asyncio.Event()

    async def fetch(self, locator: str) -> Optional[FetchResponse]:
        self.started.set()
        await asyncio.Event().wait()
        return None


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _ok(body: bytes = b"# Doc\n") -> FetchResponse:
    return FetchResponse(status=200, body=body)


def _loader(fetcher, **kwargs) -> DocumentLoader:
    kwargs.setdefault("sleep", RecordingSleep())
    cache = DocumentCache(kwargs.pop("max_entries", 10))
    return DocumentLoader(fetcher, cache, **kwargs)


class TestLoad:
    """Test successful loading and caching."""

    @pytest.mark.asyncio
    async def test_load_success(self) -> None:
        fetcher = FakeFetcher({"a.md": _ok(b"# Alpha\n")})
        loader = _loader(fetcher)

        document = await loader.load(_stub("a"))

        assert document.state is LoadState.LOADED
        assert document.fingerprint is not None
        assert document.last_error is None
        assert loader.cache.get("a").content == "# Alpha\n"

    @pytest.mark.asyncio
    async def test_repeated_loads_fetch_once(self) -> None:
        fetcher = FakeFetcher({"a.md": _ok()})
        loader = _loader(fetcher)

        first = await loader.load(_stub("a"))
        fingerprint = first.fingerprint
        for _ in range(3):
            again = await loader.load(_stub("a"))
            assert again.fingerprint == fingerprint

        assert fetcher.calls == ["a.md"]

    @pytest.mark.asyncio
    async def test_concurrent_loads_coalesce(self) -> None:
        fetcher = FakeFetcher({"a.md": _ok()})
        loader = _loader(fetcher)

        documents = await asyncio.gather(*(loader.load(_stub("a")) for _ in range(5)))

        assert fetcher.calls == ["a.md"]
        assert all(doc is documents[0] for doc in documents)
        assert documents[0].state is LoadState.LOADED

    @pytest.mark.asyncio
    async def test_force_refetches(self) -> None:
        fetcher = FakeFetcher({"a.md": [_ok(b"v1"), _ok(b"v2")]})
        loader = _loader(fetcher)

        first = await loader.load(_stub("a"))
        fingerprint = first.fingerprint
        second = await loader.load(_stub("a"), force=True)

        assert len(fetcher.calls) == 2
        assert second.fingerprint != fingerprint
        assert loader.cache.get("a").content == "v2"

    @pytest.mark.asyncio
    async def test_invalidation_triggers_refetch(self) -> None:
        fetcher = FakeFetcher({"a.md": _ok()})
        loader = _loader(fetcher)
        await loader.load(_stub("a"))

        loader.cache.invalidate("a")
        assert loader.documents["a"].stale

        document = await loader.load(_stub("a"))
        assert len(fetcher.calls) == 2
        assert not document.stale

    @pytest.mark.asyncio
    async def test_listener_receives_content(self) -> None:
        fetcher = FakeFetcher({"a.md": _ok(b"hello")})
        loader = _loader(fetcher)
        seen = []
        loader.add_listener(lambda doc, content: seen.append((doc.id, content)))

        await loader.load(_stub("a"))
        await loader.load(_stub("a"))

        assert seen == [("a", "hello"), ("a", "hello")]

    @pytest.mark.asyncio
    async def test_listener_errors_are_isolated(self) -> None:
        fetcher = FakeFetcher({"a.md": _ok()})
        loader = _loader(fetcher)

        def broken(doc, content):
            raise RuntimeError("hook failed")

        loader.add_listener(broken)
        document = await loader.load(_stub("a"))

        assert document.state is LoadState.LOADED

    @pytest.mark.asyncio
    async def test_failure_listener(self) -> None:
        fetcher = FakeFetcher({"a.md": [_ok(b"hello"), FetchResponse(status=404)]})
        loader = _loader(fetcher)
        failed = []
        loader.add_failure_listener(lambda doc: failed.append((doc.id, doc.state)))

        await loader.load(_stub("a"))
        assert failed == []
        document = await loader.load(_stub("a"), force=True)

        assert document.state is LoadState.FAILED
        assert failed == [("a", LoadState.FAILED)]

    @pytest.mark.asyncio
    async def test_admission_control(self) -> None:
        class Tracking:
            active = 0
            peak = 0

            async def fetch(self, locator):
                self.active += 1
                self.peak = max(self.peak, self.active)
                await asyncio.sleep(0.01)
                self.active -= 1
                return _ok()

        fetcher = Tracking()
        loader = _loader(fetcher, max_concurrent_loads=2)

        documents = await loader.load_many([_stub(f"d{i}") for i in range(6)])

        assert fetcher.peak == 2
        assert [doc.id for doc in documents] == [f"d{i}" for i in range(6)]
        assert all(doc.state is LoadState.LOADED for doc in documents)


class TestFailures:
    """Test retry and failure classification."""

    @pytest.mark.asyncio
    async def test_transient_failure_exhausts_retries(self) -> None:
        fetcher = FakeFetcher({"a.md": NetworkError("connection reset")})
        sleep = RecordingSleep()
        loader = _loader(fetcher, max_retries=3, sleep=sleep)

        document = await loader.load(_stub("a"))

        assert document.state is LoadState.FAILED
        assert document.last_error.kind is ErrorKind.NETWORK
        assert document.last_error.retryable is True
        assert len(fetcher.calls) == 4
        assert document.attempts == 4
        assert sleep.delays == [0.2, 0.4, 0.8]

    @pytest.mark.asyncio
    async def test_backoff_is_capped(self) -> None:
        fetcher = FakeFetcher({"a.md": NetworkError("down")})
        sleep = RecordingSleep()
        loader = _loader(fetcher, max_retries=4, retry_base_delay_ms=1000, retry_max_delay_ms=3000, sleep=sleep)

        await loader.load(_stub("a"))

        assert sleep.delays == [1.0, 2.0, 3.0, 3.0]

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self) -> None:
        fetcher = FakeFetcher({"a.md": [NetworkError("blip"), _ok()]})
        loader = _loader(fetcher)

        document = await loader.load(_stub("a"))

        assert document.state is LoadState.LOADED
        assert document.attempts == 2

    @pytest.mark.asyncio
    async def test_not_found_is_not_retried(self) -> None:
        fetcher = FakeFetcher({"a.md": FetchResponse(status=404)})
        loader = _loader(fetcher)

        document = await loader.load(_stub("a"))

        assert document.state is LoadState.FAILED
        assert document.last_error.kind is ErrorKind.NOT_FOUND
        assert document.last_error.retryable is False
        assert fetcher.calls == ["a.md"]

    @pytest.mark.asyncio
    async def test_server_error_is_retryable(self) -> None:
        fetcher = FakeFetcher({"a.md": FetchResponse(status=503)})
        loader = _loader(fetcher, max_retries=1)

        document = await loader.load(_stub("a"))

        assert document.last_error.kind is ErrorKind.NETWORK
        assert len(fetcher.calls) == 2

    @pytest.mark.asyncio
    async def test_no_response_is_network_error(self) -> None:
        fetcher = FakeFetcher({"a.md": None})
        loader = _loader(fetcher, max_retries=0)

        document = await loader.load(_stub("a"))

        assert document.last_error.kind is ErrorKind.NETWORK
        assert document.last_error.retryable is True

    @pytest.mark.asyncio
    async def test_binary_content_is_parse_error(self) -> None:
        fetcher = FakeFetcher({"a.md": _ok(b"\x89PNG\x00\x00")})
        loader = _loader(fetcher)

        document = await loader.load(_stub("a"))

        assert document.last_error.kind is ErrorKind.PARSE
        assert fetcher.calls == ["a.md"]

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        loader = _loader(HangingFetcher(), timeout_ms=10, max_retries=0)

        document = await loader.load(_stub("a"))

        assert document.state is LoadState.FAILED
        assert document.last_error.kind is ErrorKind.TIMEOUT
        assert document.last_error.retryable is True

    @pytest.mark.asyncio
    async def test_failures_are_isolated(self) -> None:
        fetcher = FakeFetcher({"a.md": _ok(), "b.md": FetchResponse(status=404), "c.md": _ok()})
        loader = _loader(fetcher)

        documents = await loader.load_many([_stub("a"), _stub("b"), _stub("c")])

        assert [doc.state for doc in documents] == [LoadState.LOADED, LoadState.FAILED, LoadState.LOADED]

    @pytest.mark.asyncio
    async def test_success_clears_previous_error(self) -> None:
        fetcher = FakeFetcher({"a.md": [FetchResponse(status=404), _ok()]})
        loader = _loader(fetcher)

        failed = await loader.load(_stub("a"))
        assert failed.state is LoadState.FAILED

        document = await loader.load(_stub("a"))
        assert document.state is LoadState.LOADED
        assert document.last_error is None


class TestShutdownAndWaiting:
    """Test cancellation and waiting on loads."""

    @pytest.mark.asyncio
    async def test_close_discards_inflight_load(self) -> None:
        fetcher = HangingFetcher()
        loader = _loader(fetcher)
        pending = asyncio.create_task(loader.load(_stub("a")))
        await fetcher.started.wait()
        assert loader.is_loading("a")

        await loader.close()
        document = await pending

        assert loader.closed
        assert document.state is LoadState.NOT_LOADED
        assert document.last_error is None
        assert not loader.is_loading("a")

    @pytest.mark.asyncio
    async def test_load_after_close_is_noop(self) -> None:
        fetcher = FakeFetcher({"a.md": _ok()})
        loader = _loader(fetcher)
        await loader.close()

        document = await loader.load(_stub("a"))

        assert document.state is LoadState.NOT_LOADED
        assert fetcher.calls == []

    @pytest.mark.asyncio
    async def test_wait_until_settled_timeout(self) -> None:
        fetcher = HangingFetcher()
        loader = _loader(fetcher)
        pending = asyncio.create_task(loader.load(_stub("a")))
        await fetcher.started.wait()

        with pytest.raises(FetchTimeoutError):
            await loader.wait_until_settled("a", timeout=0.01)

        await loader.close()
        await pending

    @pytest.mark.asyncio
    async def test_wait_until_settled_unknown(self) -> None:
        loader = _loader(FakeFetcher({}))

        with pytest.raises(NotFoundError):
            await loader.wait_until_settled("nope", timeout=1)

    @pytest.mark.asyncio
    async def test_retain_forgets_removed_documents(self) -> None:
        loader = _loader(FakeFetcher({}))
        loader.retain([_stub("a"), _stub("b")])
        loader.retain([_stub("b")])

        assert list(loader.documents) == ["b"]
