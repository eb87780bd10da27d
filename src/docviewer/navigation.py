"""Navigation tree built from document stubs."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple, runtime_checkable

from docviewer.models import DocumentStub, NavigationNode, NodeKind, TocEntry
from docviewer.utils.text import heading_anchor, iter_headings, slugify

LOGGER = logging.getLogger(__name__)


@runtime_checkable
class StateStore(Protocol):
    """Key-value store holding persisted UI state such as collapse flags."""

    def get(self, key: str) -> Any:
        ...

    def set(self, key: str, value: Any) -> None:
        ...


class InMemoryStateStore:
    def __init__(self) -> None:
        self._data: Dict[str, Any] = {}

    def get(self, key: str) -> Any:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value


def collapse_key(instance_id: str) -> str:
    return f"docviewer:{instance_id}:collapsed"


def read_collapsed(store: Optional[StateStore], instance_id: str) -> Dict[str, bool]:
    """Collapse flags for ``instance_id``; missing or malformed values mean expanded."""
    if store is None:
        return {}
    value = store.get(collapse_key(instance_id))
    if not isinstance(value, Mapping):
        return {}
    return {str(node_id): bool(flag) for node_id, flag in value.items()}


def category_id(path: Tuple[str, ...]) -> str:
    return "category:" + "/".join(slugify(part) for part in path)


def _sort_key(node: NavigationNode) -> Tuple[int, str, str]:
    return (0 if node.kind is NodeKind.CATEGORY else 1, node.title.casefold(), node.id)


def _sort_tree(nodes: List[NavigationNode]) -> None:
    nodes.sort(key=_sort_key)
    for node in nodes:
        if node.kind is NodeKind.CATEGORY:
            _sort_tree(node.children)


class NavigationBuilder:
    """Groups stubs into nested category nodes.

    Pure transformation: collapse flags are read from the mapping handed in,
    never written.
    """

    def build(
        self,
        stubs: Sequence[DocumentStub],
        *,
        auto_sort: bool = False,
        collapsed: Optional[Mapping[str, bool]] = None,
    ) -> List[NavigationNode]:
        collapsed = collapsed or {}
        roots: List[NavigationNode] = []
        categories: Dict[Tuple[str, ...], NavigationNode] = {}

        def category_for(path: Tuple[str, ...]) -> List[NavigationNode]:
            if not path:
                return roots
            node = categories.get(path)
            if node is None:
                node_id = category_id(path)
                node = NavigationNode(
                    id=node_id,
                    title=path[-1],
                    kind=NodeKind.CATEGORY,
                    collapsed=bool(collapsed.get(node_id, False)),
                )
                categories[path] = node
                category_for(path[:-1]).append(node)
            return node.children

        for stub in stubs:
            category_for(tuple(stub.category)).append(
                NavigationNode(id=stub.id, title=stub.title, kind=NodeKind.LEAF, document_id=stub.id)
            )

        if auto_sort:
            _sort_tree(roots)
        LOGGER.debug("Built navigation with %d categories", len(categories))
        return roots


def find_node(nodes: Sequence[NavigationNode], node_id: str) -> Optional[NavigationNode]:
    for node in nodes:
        if node.id == node_id:
            return node
        found = find_node(node.children, node_id)
        if found is not None:
            return found
    return None


def build_toc(content: str, *, max_depth: int = 3) -> List[TocEntry]:
    """Nest the headings of ``content`` (down to ``max_depth``) into a tree.

    Anchors are unique within the document: repeats get ``-1``, ``-2``...
    """
    roots: List[TocEntry] = []
    stack: List[TocEntry] = []
    used: set = set()
    for level, title in iter_headings(content):
        if level > max_depth:
            continue
        base = heading_anchor(title)
        anchor, counter = base, 1
        while anchor in used:
            anchor = f"{base}-{counter}"
            counter += 1
        used.add(anchor)

        entry = TocEntry(id=anchor, title=title, level=level)
        while stack and stack[-1].level >= level:
            stack.pop()
        (stack[-1].children if stack else roots).append(entry)
        stack.append(entry)
    return roots


def history_key(instance_id: str) -> str:
    return f"docviewer:{instance_id}:search-history"


def _count(value: Any) -> int:
    return value if isinstance(value, int) and not isinstance(value, bool) else 0


def read_history(store: Optional[StateStore], instance_id: str) -> List[Dict[str, Any]]:
    """Recent searches, newest first; malformed entries are skipped."""
    if store is None:
        return []
    value = store.get(history_key(instance_id))
    if not isinstance(value, list):
        return []
    return [
        {"query": item["query"], "result_count": _count(item.get("result_count"))}
        for item in value
        if isinstance(item, Mapping) and isinstance(item.get("query"), str)
    ]


def record_search(
    store: StateStore, instance_id: str, query: str, result_count: int, *, limit: int = 20
) -> None:
    history = [item for item in read_history(store, instance_id) if item["query"] != query]
    history.insert(0, {"query": query, "result_count": result_count})
    store.set(history_key(instance_id), history[:limit])
