"""Core docviewer data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


class LoadState(str, Enum):
    NOT_LOADED = "not_loaded"
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NETWORK = "network"
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"
    PARSE = "parse"
    CANCELLED = "cancelled"


class NodeKind(str, Enum):
    CATEGORY = "category"
    LEAF = "leaf"


@dataclass(frozen=True, slots=True)
class DocumentStub:
    """Pre-fetch descriptor of a document, produced once per resolution pass."""

    id: str
    title: str
    locator: str
    category: Tuple[str, ...] = ()
    order: Optional[int] = None
    tags: Tuple[str, ...] = ()
    description: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ErrorRecord:
    """Classified failure handed to the presentation layer."""

    kind: ErrorKind
    template_key: str
    retryable: bool
    document_id: Optional[str] = None
    detail: str = ""

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "template_key": self.template_key,
            "retryable": self.retryable,
            "document_id": self.document_id,
            "detail": self.detail,
        }


@dataclass(slots=True)
class Document:
    """A stub plus its load state.

    The content itself lives in the document cache; the document only keeps
    the fingerprint of what was last loaded.
    """

    stub: DocumentStub
    state: LoadState = LoadState.NOT_LOADED
    fingerprint: Optional[str] = None
    last_error: Optional[ErrorRecord] = None
    stale: bool = False
    attempts: int = 0

    @property
    def id(self) -> str:
        return self.stub.id

    @property
    def title(self) -> str:
        return self.stub.title

    @property
    def is_settled(self) -> bool:
        return self.state in (LoadState.LOADED, LoadState.FAILED)


@dataclass(frozen=True, slots=True)
class CacheEntry:
    document_id: str
    content: str
    fingerprint: str
    inserted_at: float
    expires_at: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


@dataclass(frozen=True, slots=True)
class Posting:
    """Occurrences of one token inside one document."""

    document_id: str
    frequency: float
    positions: Tuple[int, ...] = ()


@dataclass(frozen=True, slots=True)
class SearchHit:
    document_id: str
    score: float
    snippet: str
    title: str = ""


@dataclass(slots=True)
class NavigationNode:
    id: str
    title: str
    kind: NodeKind
    children: List["NavigationNode"] = field(default_factory=list)
    collapsed: Optional[bool] = None
    document_id: Optional[str] = None

    def iter_leaves(self):
        """Yield leaf nodes below (or equal to) this node in tree order."""
        if self.kind is NodeKind.LEAF:
            yield self
            return
        for child in self.children:
            yield from child.iter_leaves()

    def to_dict(self) -> dict:
        data = {"id": self.id, "title": self.title, "kind": self.kind.value}
        if self.kind is NodeKind.CATEGORY:
            data["collapsed"] = bool(self.collapsed)
            data["children"] = [child.to_dict() for child in self.children]
        else:
            data["document_id"] = self.document_id
        return data


@dataclass(slots=True)
class TocEntry:
    """One heading of a document's table of contents."""

    id: str
    title: str
    level: int
    children: List["TocEntry"] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "level": self.level,
            "children": [child.to_dict() for child in self.children],
        }
