"""Utility helpers for working with files and locators."""

from __future__ import annotations

import asyncio
import hashlib
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Iterable, Iterator, List, Sequence


def compute_fingerprint(data: bytes) -> str:
    """Compute the SHA256 fingerprint of raw document bytes."""
    return hashlib.sha256(data).hexdigest()


def matches_pattern(relative: str, pattern: str) -> bool:
    """Glob match on a posix relative path; a leading ``**/`` also matches the top level."""
    if fnmatchcase(relative, pattern):
        return True
    if pattern.startswith("**/"):
        return fnmatchcase(relative, pattern[3:])
    return False


def matches_any(relative: str, patterns: Iterable[str]) -> bool:
    return any(matches_pattern(relative, pattern) for pattern in patterns)


def filter_locators(
    locators: Iterable[str], include: Sequence[str], exclude: Sequence[str]
) -> List[str]:
    """Keep locators matching an include pattern and no exclude pattern."""
    return [
        loc
        for loc in locators
        if matches_any(loc, include) and not matches_any(loc, exclude)
    ]


def iter_markdown_paths(
    base: Path, include: Sequence[str], exclude: Sequence[str]
) -> Iterator[str]:
    """Yield posix paths relative to ``base`` for matching files, sorted."""
    for item in sorted(base.rglob("*")):
        if not item.is_file():
            continue
        relative = item.relative_to(base).as_posix()
        if matches_any(relative, include) and not matches_any(relative, exclude):
            yield relative


class FileSystemDiscovery:
    """Discovery collaborator listing markdown files below a local directory."""

    async def discover(
        self, base: str, include: Sequence[str], exclude: Sequence[str]
    ) -> List[str]:
        root = Path(base).expanduser()
        if not root.is_dir():
            raise FileNotFoundError(f"Documentation folder not found: {root}")
        return await asyncio.to_thread(lambda: list(iter_markdown_paths(root, include, exclude)))
