"""Tests for file utility functions."""

from __future__ import annotations

import hashlib
from pathlib import Path

import pytest

from docviewer.config import DEFAULT_EXCLUDE, DEFAULT_INCLUDE
from docviewer.utils.files import (
    FileSystemDiscovery,
    compute_fingerprint,
    filter_locators,
    iter_markdown_paths,
    matches_pattern,
)


def _touch(path: Path, text: str = "# doc\n") -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


class TestComputeFingerprint:
    """Test compute_fingerprint function."""

    def test_sha256(self) -> None:
        assert compute_fingerprint(b"hello") == hashlib.sha256(b"hello").hexdigest()

    def test_changes_with_content(self) -> None:
        assert compute_fingerprint(b"a") != compute_fingerprint(b"b")


class TestPatterns:
    """Test glob matching helpers."""

    def test_double_star_matches_top_level(self) -> None:
        assert matches_pattern(".hidden.md", "**/.*")
        assert matches_pattern("guide/.hidden.md", "**/.*")

    def test_node_modules_excluded(self) -> None:
        assert matches_pattern("node_modules/pkg/readme.md", "**/node_modules/**")

    def test_filter_locators(self) -> None:
        locators = ["intro.md", "guide/setup.md", "_draft.md", "image.png", "notes.markdown"]

        assert filter_locators(locators, DEFAULT_INCLUDE, DEFAULT_EXCLUDE) == [
            "intro.md",
            "guide/setup.md",
            "notes.markdown",
        ]


class TestIterMarkdownPaths:
    """Test iter_markdown_paths function."""

    def test_finds_nested_files_sorted(self, tmp_path: Path) -> None:
        _touch(tmp_path / "b.md")
        _touch(tmp_path / "a.md")
        _touch(tmp_path / "guide" / "setup.md")
        _touch(tmp_path / "guide" / "_partial.md")
        _touch(tmp_path / ".git" / "notes.md")
        _touch(tmp_path / "image.png")

        paths = list(iter_markdown_paths(tmp_path, DEFAULT_INCLUDE, DEFAULT_EXCLUDE))

        assert paths == ["a.md", "b.md", "guide/setup.md"]

    def test_empty_directory(self, tmp_path: Path) -> None:
        assert list(iter_markdown_paths(tmp_path, DEFAULT_INCLUDE, DEFAULT_EXCLUDE)) == []


class TestFileSystemDiscovery:
    @pytest.mark.asyncio
    async def test_discover(self, tmp_path: Path) -> None:
        _touch(tmp_path / "intro.md")

        found = await FileSystemDiscovery().discover(str(tmp_path), DEFAULT_INCLUDE, DEFAULT_EXCLUDE)

        assert found == ["intro.md"]

    @pytest.mark.asyncio
    async def test_missing_folder(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            await FileSystemDiscovery().discover(str(tmp_path / "nope"), DEFAULT_INCLUDE, DEFAULT_EXCLUDE)
