"""FastAPI application exposing a DocViewerEngine as a JSON API."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from docviewer.engine import DocViewerEngine
from docviewer.errors import DocViewerError, NotFoundError, classify, render_message
from docviewer.models import Document, LoadState

LOGGER = logging.getLogger(__name__)

router = APIRouter()


class SearchPayload(BaseModel):
    query: str
    limit: int = 10


class CollapsePayload(BaseModel):
    node_id: str
    collapsed: bool


def _document_dict(document: Document) -> dict[str, Any]:
    error = None
    if document.last_error is not None:
        error = {**document.last_error.to_dict(), "message": render_message(document.last_error)}
    return {
        "id": document.id,
        "title": document.title,
        "category": list(document.stub.category),
        "tags": list(document.stub.tags),
        "description": document.stub.description,
        "state": document.state.value,
        "stale": document.stale,
        "error": error,
    }


async def get_engine(request: Request) -> DocViewerEngine:
    engine: DocViewerEngine | None = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Viewer is not configured")
    if not engine.initialized:
        try:
            await engine.initialize()
        except DocViewerError as exc:
            record = classify(exc)
            LOGGER.error("Unable to resolve documentation source: %s", record.detail)
            detail = {**record.to_dict(), "message": render_message(record)}
            raise HTTPException(status_code=503, detail=detail) from exc
    return engine


def _lookup(engine: DocViewerEngine, doc_id: str) -> Document:
    try:
        return engine.document(doc_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"Document not found: {doc_id}") from exc


@router.get("/documents")
async def list_documents(engine: DocViewerEngine = Depends(get_engine)) -> dict[str, Any]:
    return {"documents": [_document_dict(doc) for doc in engine.documents]}


@router.get("/documents/{doc_id}")
async def get_document(doc_id: str, engine: DocViewerEngine = Depends(get_engine)) -> dict[str, Any]:
    return _document_dict(_lookup(engine, doc_id))


@router.get("/documents/{doc_id}/content")
async def get_document_content(doc_id: str, engine: DocViewerEngine = Depends(get_engine)) -> dict[str, Any]:
    _lookup(engine, doc_id)
    content = await engine.get_content(doc_id)
    document = engine.document(doc_id)
    if content is None:
        payload = _document_dict(document)
        raise HTTPException(status_code=502, detail=payload["error"] or payload)
    return {
        "id": document.id,
        "title": document.title,
        "fingerprint": document.fingerprint,
        "content": content,
    }


@router.post("/documents/{doc_id}/invalidate")
async def invalidate_document(doc_id: str, engine: DocViewerEngine = Depends(get_engine)) -> dict[str, Any]:
    _lookup(engine, doc_id)
    return {"status": "ok", "invalidated": engine.invalidate(doc_id)}


@router.post("/documents/{doc_id}/retry")
async def retry_document(doc_id: str, engine: DocViewerEngine = Depends(get_engine)) -> dict[str, Any]:
    _lookup(engine, doc_id)
    document = await engine.retry(doc_id)
    if document.state is LoadState.FAILED:
        LOGGER.info("Retry of %s failed again", doc_id)
    return _document_dict(document)


@router.get("/documents/{doc_id}/toc")
async def get_document_toc(
    doc_id: str, max_depth: int = 3, engine: DocViewerEngine = Depends(get_engine)
) -> dict[str, Any]:
    _lookup(engine, doc_id)
    entries = await engine.toc(doc_id, max_depth=max(1, min(max_depth, 6)))
    return {"id": doc_id, "toc": [entry.to_dict() for entry in entries]}


@router.get("/search/suggest")
async def suggest(q: str = "", limit: int = 5, engine: DocViewerEngine = Depends(get_engine)) -> dict[str, List[str]]:
    return {"suggestions": engine.suggest(q, limit=max(1, min(limit, 20)))}


@router.get("/search/history")
async def search_history(engine: DocViewerEngine = Depends(get_engine)) -> dict[str, List[dict[str, Any]]]:
    return {"history": engine.search_history()}


@router.delete("/search/history")
async def clear_search_history(engine: DocViewerEngine = Depends(get_engine)) -> dict[str, str]:
    engine.clear_search_history()
    return {"status": "ok"}


@router.post("/search")
async def search_documents(
    payload: SearchPayload, engine: DocViewerEngine = Depends(get_engine)
) -> dict[str, List[dict[str, Any]]]:
    limit = max(1, min(payload.limit, 50))
    hits = engine.query(payload.query, limit=limit)
    return {
        "results": [
            {"id": hit.document_id, "title": hit.title, "score": hit.score, "snippet": hit.snippet}
            for hit in hits
        ]
    }


@router.get("/navigation")
async def get_navigation(engine: DocViewerEngine = Depends(get_engine)) -> dict[str, Any]:
    return {"navigation": [node.to_dict() for node in engine.navigation]}


@router.post("/navigation/collapse")
async def set_collapsed(payload: CollapsePayload, engine: DocViewerEngine = Depends(get_engine)) -> dict[str, Any]:
    try:
        node = engine.set_collapsed(payload.node_id, payload.collapsed)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return node.to_dict()


@router.get("/cache/stats")
async def cache_stats(engine: DocViewerEngine = Depends(get_engine)) -> dict[str, int]:
    return engine.cache_stats()


def create_app(engine: DocViewerEngine | None = None) -> FastAPI:
    """Build the API around ``engine``; the engine is closed on shutdown."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        if app.state.engine is not None:
            await app.state.engine.close()

    app = FastAPI(title="DocViewer Web", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.engine = engine
    app.include_router(router)
    return app
