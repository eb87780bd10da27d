"""Viewer configuration: option defaults, validation and config files."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

DEFAULT_INCLUDE: Tuple[str, ...] = ("*.md", "*.markdown")
DEFAULT_EXCLUDE: Tuple[str, ...] = ("**/node_modules/**", "**/.*", "**/_*")

# Looked up in this order by find_config_file.
CONFIG_FILES = ("docs-config.json", "docs.config.json", ".docs.json", "markdown-docs.json")

SOURCE_TYPES = ("local", "url", "github", "inline", "content")


@dataclass(frozen=True, slots=True)
class DocumentSpec:
    """A document entry declared explicitly in the source."""

    file: Optional[str] = None
    id: Optional[str] = None
    title: Optional[str] = None
    category: Tuple[str, ...] = ()
    order: Optional[int] = None
    content: Optional[str] = None
    tags: Tuple[str, ...] = ()
    description: Optional[str] = None


@dataclass(frozen=True, slots=True)
class LocalSource:
    base_path: str
    documents: Optional[Tuple[DocumentSpec, ...]] = None
    include: Tuple[str, ...] = DEFAULT_INCLUDE
    exclude: Tuple[str, ...] = DEFAULT_EXCLUDE


@dataclass(frozen=True, slots=True)
class UrlSource:
    base_url: str
    documents: Optional[Tuple[DocumentSpec, ...]] = None
    include: Tuple[str, ...] = DEFAULT_INCLUDE
    exclude: Tuple[str, ...] = DEFAULT_EXCLUDE
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class GitHubSource:
    repo: str
    ref: str = "main"
    path: str = ""
    include: Tuple[str, ...] = DEFAULT_INCLUDE
    exclude: Tuple[str, ...] = DEFAULT_EXCLUDE
    token: Optional[str] = None


@dataclass(frozen=True, slots=True)
class InlineSource:
    documents: Tuple[DocumentSpec, ...] = ()


Source = Union[LocalSource, UrlSource, GitHubSource, InlineSource]


@dataclass(slots=True)
class NavigationOptions:
    auto_sort: bool = False


@dataclass(slots=True)
class SearchOptions:
    enabled: bool = True
    fuzzy_search: bool = True
    max_edit_distance: int = 2
    max_results: int = 10


@dataclass(slots=True)
class CacheOptions:
    max_entries: int = 100
    # None disables expiry.
    ttl_ms: Optional[int] = 300_000


@dataclass(slots=True)
class LoadOptions:
    timeout_ms: int = 10_000
    max_retries: int = 3
    max_concurrent_loads: int = 6
    retry_base_delay_ms: int = 200
    retry_max_delay_ms: int = 5_000


@dataclass(slots=True)
class ViewerConfig:
    container: Any
    source: Source
    navigation: NavigationOptions = field(default_factory=NavigationOptions)
    search: SearchOptions = field(default_factory=SearchOptions)
    cache: CacheOptions = field(default_factory=CacheOptions)
    load: LoadOptions = field(default_factory=LoadOptions)
    theme: Any = None


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    field: str
    message: str

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


class _Collector:
    """Accumulates issues so every violation is reported in one pass."""

    def __init__(self) -> None:
        self.issues: List[ValidationIssue] = []

    def add(self, field_name: str, message: str) -> None:
        self.issues.append(ValidationIssue(field_name, message))

    def section(self, raw: Mapping[str, Any], name: str) -> Mapping[str, Any]:
        value = raw.get(name)
        if value is None:
            return {}
        if not isinstance(value, Mapping):
            self.add(name, "must be an object")
            return {}
        return value

    def boolean(self, section: Mapping[str, Any], path: str, key: str, default: bool) -> bool:
        value = section.get(key)
        if value is None:
            return default
        if not isinstance(value, bool):
            self.add(f"{path}.{key}", "must be a boolean")
            return default
        return value

    def integer(
        self,
        section: Mapping[str, Any],
        path: str,
        key: str,
        default: Optional[int],
        *,
        minimum: int,
    ) -> Optional[int]:
        value = section.get(key)
        if value is None:
            return default
        if isinstance(value, bool) or not isinstance(value, int):
            self.add(f"{path}.{key}", "must be an integer")
            return default
        if value < minimum:
            self.add(f"{path}.{key}", f"must be >= {minimum}")
            return default
        return value


def _patterns(
    collector: _Collector, raw: Mapping[str, Any], key: str, default: Tuple[str, ...]
) -> Tuple[str, ...]:
    value = raw.get(key)
    if value is None:
        return default
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)) or not all(isinstance(p, str) for p in value):
        collector.add(f"source.{key}", "must be a list of glob patterns")
        return default
    return tuple(value)


def _category(value: Any) -> Tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split("/") if part.strip())
    return tuple(str(part).strip() for part in value if str(part).strip())


def _document_specs(
    collector: _Collector, raw_docs: Any, *, require_content: bool
) -> Tuple[DocumentSpec, ...]:
    if not isinstance(raw_docs, (list, tuple)):
        collector.add("source.documents", "must be a list")
        return ()

    specs: List[DocumentSpec] = []
    seen_ids: Dict[str, int] = {}
    for position, entry in enumerate(raw_docs):
        path = f"source.documents[{position}]"
        if isinstance(entry, str):
            entry = {"file": entry}
        if not isinstance(entry, Mapping):
            collector.add(path, "must be an object or a file path")
            continue

        file = entry.get("file") or entry.get("path")
        content = entry.get("content")
        if require_content and not isinstance(content, str):
            collector.add(f"{path}.content", "inline documents need embedded content")
            continue
        if not require_content and not file and not isinstance(content, str):
            collector.add(f"{path}.file", "is required")
            continue

        order = entry.get("order")
        if order is not None and (isinstance(order, bool) or not isinstance(order, int)):
            collector.add(f"{path}.order", "must be an integer")
            order = None

        doc_id = str(entry["id"]) if entry.get("id") else None
        if doc_id is not None:
            if doc_id in seen_ids:
                collector.add(f"{path}.id", f"duplicates source.documents[{seen_ids[doc_id]}].id")
                continue
            seen_ids[doc_id] = position

        tags = entry.get("tags") or ()
        specs.append(
            DocumentSpec(
                file=str(file) if file else None,
                id=doc_id,
                title=entry.get("title") or None,
                category=_category(entry.get("category")),
                order=order,
                content=content if isinstance(content, str) else None,
                tags=tuple(str(tag) for tag in tags),
                description=entry.get("description") or None,
            )
        )
    return tuple(specs)


def _parse_source(collector: _Collector, raw: Any) -> Optional[Source]:
    if raw is None:
        collector.add("source", "is required")
        return None
    if not isinstance(raw, Mapping):
        collector.add("source", "must be an object")
        return None

    source_type = raw.get("type")
    if source_type not in SOURCE_TYPES:
        collector.add("source.type", f"must be one of {', '.join(SOURCE_TYPES)}")
        return None

    if source_type in ("inline", "content"):
        if raw.get("documents") is None:
            collector.add("source.documents", "is required for inline sources")
            return None
        return InlineSource(documents=_document_specs(collector, raw["documents"], require_content=True))

    include = _patterns(collector, raw, "include", DEFAULT_INCLUDE)
    exclude = _patterns(collector, raw, "exclude", DEFAULT_EXCLUDE)

    if source_type == "github":
        repo = raw.get("repo")
        if not isinstance(repo, str) or repo.count("/") != 1 or not all(repo.split("/")):
            collector.add("source.repo", "must look like 'owner/name'")
            return None
        return GitHubSource(
            repo=repo,
            ref=str(raw.get("ref") or "main"),
            path=str(raw.get("path") or "").strip("/"),
            include=include,
            exclude=exclude,
            token=raw.get("token") or None,
        )

    documents: Optional[Tuple[DocumentSpec, ...]] = None
    if raw.get("documents") is not None:
        documents = _document_specs(collector, raw["documents"], require_content=False)
        if "include" in raw or "exclude" in raw:
            collector.add(
                "source.documents",
                "explicit documents conflict with include/exclude discovery patterns",
            )

    if source_type == "local":
        base_path = raw.get("basePath")
        if not isinstance(base_path, str) or not base_path.strip():
            collector.add("source.basePath", "is required for local sources")
            return None
        return LocalSource(base_path=base_path, documents=documents, include=include, exclude=exclude)

    base_url = raw.get("baseUrl")
    if not isinstance(base_url, str) or not base_url.startswith(("http://", "https://")):
        collector.add("source.baseUrl", "must be an http(s) URL for url sources")
        return None
    headers = raw.get("headers") or {}
    if not isinstance(headers, Mapping):
        collector.add("source.headers", "must be an object")
        headers = {}
    return UrlSource(
        base_url=base_url.rstrip("/"),
        documents=documents,
        include=include,
        exclude=exclude,
        headers={str(k): str(v) for k, v in headers.items()},
    )


def validate_config(raw: Any) -> Union[ViewerConfig, List[ValidationIssue]]:
    """Validate a raw (JSON-like) configuration.

    Returns the normalized ViewerConfig, or the complete list of issues when
    anything is wrong. Never raises for bad input.
    """
    collector = _Collector()
    if not isinstance(raw, Mapping):
        collector.add("config", "must be an object")
        return collector.issues

    container = raw.get("container")
    if container is None or (isinstance(container, str) and not container.strip()):
        collector.add("container", "is required")

    source = _parse_source(collector, raw.get("source"))

    nav_raw = collector.section(raw, "navigation")
    navigation = NavigationOptions(
        auto_sort=collector.boolean(nav_raw, "navigation", "autoSort", False),
    )

    search_raw = collector.section(raw, "search")
    search = SearchOptions(
        enabled=collector.boolean(search_raw, "search", "enabled", True),
        fuzzy_search=collector.boolean(search_raw, "search", "fuzzySearch", True),
        max_edit_distance=collector.integer(search_raw, "search", "maxEditDistance", 2, minimum=0),
        max_results=collector.integer(search_raw, "search", "maxResults", 10, minimum=1),
    )
    if search_raw.get("enabled") is False and search_raw.get("fuzzySearch") is True:
        collector.add("search.fuzzySearch", "conflicts with search.enabled=false")

    cache_raw = collector.section(raw, "cache")
    ttl_ms = collector.integer(cache_raw, "cache", "ttlMs", 300_000, minimum=0)
    cache = CacheOptions(
        max_entries=collector.integer(cache_raw, "cache", "maxEntries", 100, minimum=1),
        ttl_ms=ttl_ms or None,
    )

    load_raw = collector.section(raw, "load")
    load = LoadOptions(
        timeout_ms=collector.integer(load_raw, "load", "timeoutMs", 10_000, minimum=1),
        max_retries=collector.integer(load_raw, "load", "maxRetries", 3, minimum=0),
        max_concurrent_loads=collector.integer(load_raw, "load", "maxConcurrentLoads", 6, minimum=1),
        retry_base_delay_ms=collector.integer(load_raw, "load", "retryBaseDelayMs", 200, minimum=0),
        retry_max_delay_ms=collector.integer(load_raw, "load", "retryMaxDelayMs", 5_000, minimum=0),
    )
    if load.retry_max_delay_ms < load.retry_base_delay_ms:
        collector.add("load.retryMaxDelayMs", "must not be smaller than load.retryBaseDelayMs")

    if collector.issues:
        return collector.issues

    if source is None:
        collector.add("source", "is required")
        return collector.issues
    return ViewerConfig(
        container=container,
        source=source,
        navigation=navigation,
        search=search,
        cache=cache,
        load=load,
        theme=raw.get("theme"),
    )


def load_config_file(path: Path) -> Dict[str, Any]:
    """Read a raw JSON configuration file."""
    with Path(path).open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a JSON object")
    return data


def find_config_file(base_dir: Path) -> Optional[Path]:
    for name in CONFIG_FILES:
        candidate = Path(base_dir) / name
        if candidate.is_file():
            return candidate
    return None
