"""Text helpers: markdown flattening, tokenization and title inference."""

from __future__ import annotations

import re
from bisect import bisect_right
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

STOP_WORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "by", "for", "from",
        "has", "he", "in", "is", "it", "its", "of", "on", "that", "the",
        "to", "was", "were", "will", "with", "but", "or", "not", "can",
    }
)

_FRONTMATTER_RE = re.compile(r"\A---\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)
_HEADING_RE = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")
_FENCE_RE = re.compile(r"^\s*(```|~~~)")
_BLOCK_PREFIX_RE = re.compile(r"^\s{0,3}(?:#{1,6}\s+|>\s?|[-*+]\s+|\d+[.)]\s+)")
_INLINE_RE = re.compile(
    r"!?\[(?P<label>[^\]]*)\]\((?P<target>[^)\s]*)(?:\s+\"[^\"]*\")?\)"
    r"|`(?P<code>[^`]+)`"
)
_EMPHASIS_RE = re.compile(r"\*{1,3}|~~|(?<!\w)_+|_+(?!\w)")
_TOKEN_RE = re.compile(r"\w+", re.UNICODE)
_ORDER_PREFIX_RE = re.compile(r"^(\d+)[-_. ]+")


@dataclass(slots=True)
class PlainText:
    """Markdown flattened to display text.

    ``excluded`` lists ``(start, end)`` spans of code and link targets: they
    stay in ``text`` for snippets but carry no search weight.
    """

    text: str
    excluded: List[Tuple[int, int]]
    _starts: List[int] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        # spans are appended in text order and never overlap
        self._starts = [start for start, _ in self.excluded]

    def is_excluded(self, offset: int) -> bool:
        position = bisect_right(self._starts, offset) - 1
        return position >= 0 and offset < self.excluded[position][1]


class _Builder:
    def __init__(self) -> None:
        self.parts: List[str] = []
        self.length = 0
        self.excluded: List[Tuple[int, int]] = []

    def add(self, text: str, *, excluded: bool = False) -> None:
        if not text:
            return
        if excluded:
            self.excluded.append((self.length, self.length + len(text)))
        self.parts.append(text)
        self.length += len(text)

    def build(self) -> PlainText:
        return PlainText("".join(self.parts), self.excluded)


def split_frontmatter(content: str) -> Tuple[Dict[str, str], str]:
    """Split a leading ``---`` block of ``key: value`` lines from the body."""
    match = _FRONTMATTER_RE.match(content)
    if not match:
        return {}, content
    meta: Dict[str, str] = {}
    for line in match.group(1).splitlines():
        key, sep, value = line.partition(":")
        if sep and key.strip():
            meta[key.strip().lower()] = value.strip().strip("'\"")
    return meta, content[match.end():]


def parse_tags(value: str) -> Tuple[str, ...]:
    value = value.strip().lstrip("[").rstrip("]")
    return tuple(tag.strip().strip("'\"") for tag in value.split(",") if tag.strip())


def iter_headings(content: str) -> Iterator[Tuple[int, str]]:
    """Yield ``(level, text)`` for ATX headings outside code fences."""
    _, body = split_frontmatter(content)
    in_fence = False
    for line in body.splitlines():
        if _FENCE_RE.match(line):
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        match = _HEADING_RE.match(line)
        if match:
            yield len(match.group(1)), match.group(2).strip()


def first_heading(content: str) -> Optional[str]:
    for _, text in iter_headings(content):
        return text
    return None


def heading_anchor(text: str) -> str:
    """Anchor id for a heading: ``Getting Started!`` becomes ``getting-started``."""
    anchor = re.sub(r"[^\w\s-]", "", text.lower())
    anchor = re.sub(r"\s+", "-", anchor)
    return re.sub(r"-+", "-", anchor).strip("-") or "section"


def first_paragraph(content: str, *, limit: int = 200) -> Optional[str]:
    _, body = split_frontmatter(content)
    for block in re.split(r"\n\s*\n", body):
        block = block.strip()
        if block and not block.startswith(("#", "```", "~~~")):
            text = " ".join(block.split())
            return text[:limit] + ("..." if len(text) > limit else "")
    return None


def order_prefix(filename: str) -> Optional[int]:
    match = _ORDER_PREFIX_RE.match(filename)
    return int(match.group(1)) if match else None


def filename_to_title(filename: str) -> str:
    """Turn ``01-getting_started.md`` into ``Getting Started``."""
    stem = re.sub(r"\.(md|markdown)$", "", filename, flags=re.IGNORECASE)
    stem = _ORDER_PREFIX_RE.sub("", stem) or stem
    title = re.sub(r"[-_]+", " ", stem).strip()
    title = re.sub(r"\b\w", lambda m: m.group(0).upper(), title)
    if title.lower() == "readme":
        return "Overview"
    return title or filename


def slugify(value: str) -> str:
    value = re.sub(r"\.(md|markdown)$", "", value, flags=re.IGNORECASE)
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug or "document"


def _add_inline(builder: _Builder, line: str) -> None:
    cursor = 0
    for match in _INLINE_RE.finditer(line):
        builder.add(_EMPHASIS_RE.sub("", line[cursor:match.start()]))
        if match.group("code") is not None:
            builder.add(match.group("code"), excluded=True)
        else:
            builder.add(_EMPHASIS_RE.sub("", match.group("label")))
            if match.group("target"):
                builder.add(" (")
                builder.add(match.group("target"), excluded=True)
                builder.add(")")
        cursor = match.end()
    builder.add(_EMPHASIS_RE.sub("", line[cursor:]))


def markdown_to_text(content: str) -> PlainText:
    """Flatten markdown into display text, tracking zero-weight spans."""
    _, body = split_frontmatter(content)
    builder = _Builder()
    in_fence = False
    for line in body.splitlines():
        if _FENCE_RE.match(line):
            in_fence = not in_fence
            continue
        if in_fence:
            builder.add(line, excluded=True)
            builder.add("\n")
            continue
        _add_inline(builder, _BLOCK_PREFIX_RE.sub("", line))
        builder.add("\n")
    return builder.build()


def iter_tokens(text: str) -> Iterator[Tuple[str, int]]:
    """Yield ``(token, offset)`` pairs: lower-cased, stop words dropped."""
    for match in _TOKEN_RE.finditer(text):
        token = match.group(0).lower()
        if len(token) > 1 and token not in STOP_WORDS:
            yield token, match.start()


def tokenize(text: str) -> List[str]:
    return [token for token, _ in iter_tokens(text)]


def normalize_whitespace(text: str) -> str:
    """Collapse runs of whitespace into single spaces."""
    return " ".join(text.split())
