"""Tests for viewer configuration validation."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from docviewer.config import (
    DEFAULT_EXCLUDE,
    DEFAULT_INCLUDE,
    GitHubSource,
    InlineSource,
    LocalSource,
    UrlSource,
    ValidationIssue,
    ViewerConfig,
    find_config_file,
    load_config_file,
    validate_config,
)


def _valid(**overrides):
    raw = {"container": "#docs", "source": {"type": "local", "basePath": "docs"}}
    raw.update(overrides)
    return raw


class TestValidateConfig:
    """Test validate_config."""

    def test_minimal_config_gets_defaults(self) -> None:
        """Should fill every option with its default."""
        config = validate_config(_valid())

        assert isinstance(config, ViewerConfig)
        assert config.container == "#docs"
        assert config.navigation.auto_sort is False
        assert config.search.enabled is True
        assert config.search.fuzzy_search is True
        assert config.search.max_edit_distance == 2
        assert config.search.max_results == 10
        assert config.cache.max_entries == 100
        assert config.cache.ttl_ms == 300_000
        assert config.load.timeout_ms == 10_000
        assert config.load.max_retries == 3
        assert config.load.max_concurrent_loads == 6

    def test_missing_container_and_source(self) -> None:
        """Should report exactly two issues, one per missing field."""
        issues = validate_config({})

        assert isinstance(issues, list)
        assert len(issues) == 2
        assert {issue.field for issue in issues} == {"container", "source"}

    def test_missing_source_only(self) -> None:
        issues = validate_config({"container": "#docs", "source": None})

        assert issues == [ValidationIssue("source", "is required")]

    def test_not_a_mapping(self) -> None:
        """Should reject non-object input without raising."""
        issues = validate_config(["nope"])

        assert issues == [ValidationIssue("config", "must be an object")]

    def test_collects_all_issues(self) -> None:
        """Should report every problem in one pass."""
        raw = _valid(
            cache={"maxEntries": 0},
            load={"timeoutMs": "fast", "maxRetries": -1},
            navigation={"autoSort": "yes"},
        )
        issues = validate_config(raw)

        fields = {issue.field for issue in issues}
        assert fields == {
            "cache.maxEntries",
            "load.timeoutMs",
            "load.maxRetries",
            "navigation.autoSort",
        }

    def test_unknown_source_type(self) -> None:
        issues = validate_config(_valid(source={"type": "ftp"}))

        assert len(issues) == 1
        assert issues[0].field == "source.type"

    def test_local_source_requires_base_path(self) -> None:
        issues = validate_config(_valid(source={"type": "local"}))

        assert [issue.field for issue in issues] == ["source.basePath"]

    def test_url_source_requires_http_url(self) -> None:
        issues = validate_config(_valid(source={"type": "url", "baseUrl": "docs.example.com"}))

        assert [issue.field for issue in issues] == ["source.baseUrl"]

    def test_github_repo_format(self) -> None:
        issues = validate_config(_valid(source={"type": "github", "repo": "just-a-name"}))

        assert [issue.field for issue in issues] == ["source.repo"]

    def test_documents_conflict_with_patterns(self) -> None:
        """Explicit documents and discovery patterns cannot be combined."""
        raw = _valid(
            source={"type": "local", "basePath": "docs", "documents": ["a.md"], "include": ["*.md"]}
        )
        issues = validate_config(raw)

        assert [issue.field for issue in issues] == ["source.documents"]

    def test_fuzzy_conflicts_with_disabled_search(self) -> None:
        issues = validate_config(_valid(search={"enabled": False, "fuzzySearch": True}))

        assert [issue.field for issue in issues] == ["search.fuzzySearch"]

    def test_retry_delay_bounds(self) -> None:
        issues = validate_config(_valid(load={"retryBaseDelayMs": 1000, "retryMaxDelayMs": 10}))

        assert [issue.field for issue in issues] == ["load.retryMaxDelayMs"]

    def test_inline_documents_need_content(self) -> None:
        raw = _valid(source={"type": "inline", "documents": [{"title": "No body"}]})
        issues = validate_config(raw)

        assert [issue.field for issue in issues] == ["source.documents[0].content"]

    def test_duplicate_document_ids(self) -> None:
        raw = _valid(
            source={
                "type": "inline",
                "documents": [
                    {"id": "guide", "content": "# First"},
                    {"title": "Guide", "content": "# Guide"},
                    {"id": "guide", "content": "# Third"},
                ],
            }
        )
        issues = validate_config(raw)

        assert [issue.field for issue in issues] == ["source.documents[2].id"]
        assert issues[0].message == "duplicates source.documents[0].id"

    def test_issue_str(self) -> None:
        assert str(ValidationIssue("source", "is required")) == "source: is required"


class TestSourceVariants:
    """Test the normalized source objects."""

    def test_local_source(self) -> None:
        config = validate_config(_valid())

        assert config.source == LocalSource(base_path="docs")
        assert config.source.include == DEFAULT_INCLUDE
        assert config.source.exclude == DEFAULT_EXCLUDE

    def test_url_source_with_documents(self) -> None:
        raw = _valid(
            source={
                "type": "url",
                "baseUrl": "https://example.com/docs/",
                "documents": [
                    "intro.md",
                    {"file": "guide/setup.md", "title": "Setup", "category": "Guides/Basics", "order": 2},
                ],
            }
        )
        config = validate_config(raw)

        source = config.source
        assert isinstance(source, UrlSource)
        assert source.base_url == "https://example.com/docs"
        assert source.documents[0].file == "intro.md"
        assert source.documents[1].title == "Setup"
        assert source.documents[1].category == ("Guides", "Basics")
        assert source.documents[1].order == 2

    def test_github_source(self) -> None:
        raw = _valid(source={"type": "github", "repo": "octo/docs", "path": "/docs/", "token": "t"})
        config = validate_config(raw)

        assert config.source == GitHubSource(repo="octo/docs", ref="main", path="docs", token="t")

    def test_content_alias_is_inline(self) -> None:
        raw = _valid(source={"type": "content", "documents": [{"content": "# Hi"}]})
        config = validate_config(raw)

        assert isinstance(config.source, InlineSource)
        assert config.source.documents[0].content == "# Hi"

    def test_zero_ttl_disables_expiry(self) -> None:
        config = validate_config(_valid(cache={"ttlMs": 0}))

        assert config.cache.ttl_ms is None


class TestConfigFiles:
    """Test config file helpers."""

    def test_load_config_file(self, tmp_path: Path) -> None:
        path = tmp_path / "docs-config.json"
        path.write_text(json.dumps(_valid()), encoding="utf-8")

        assert load_config_file(path) == _valid()

    def test_load_config_file_requires_object(self, tmp_path: Path) -> None:
        path = tmp_path / "docs-config.json"
        path.write_text("[1, 2]", encoding="utf-8")

        with pytest.raises(ValueError):
            load_config_file(path)

    def test_find_config_file_order(self, tmp_path: Path) -> None:
        """Should prefer names earlier in the lookup list."""
        (tmp_path / ".docs.json").write_text("{}", encoding="utf-8")
        (tmp_path / "docs.config.json").write_text("{}", encoding="utf-8")

        assert find_config_file(tmp_path) == tmp_path / "docs.config.json"

    def test_find_config_file_missing(self, tmp_path: Path) -> None:
        assert find_config_file(tmp_path) is None
