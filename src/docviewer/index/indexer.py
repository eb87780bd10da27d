"""Incremental inverted index over loaded documents."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

from docviewer.index.search import idf, make_snippet, match_terms, tf_weight
from docviewer.models import Document, LoadState, Posting, SearchHit
from docviewer.utils.text import iter_tokens, markdown_to_text, tokenize

LOGGER = logging.getLogger(__name__)

TITLE_WEIGHT = 3.0

BackfillCallback = Callable[[List[str]], None]


def build_postings(doc_id: str, title: str, content: str) -> Tuple[Dict[str, Posting], str]:
    """Compute postings for one document without touching any index state.

    Returns the postings by token and the display text used for snippets.
    """
    plain = markdown_to_text(content)
    frequencies: Dict[str, float] = defaultdict(float)
    positions: Dict[str, List[int]] = defaultdict(list)

    for token, offset in iter_tokens(plain.text):
        if plain.is_excluded(offset):
            continue
        frequencies[token] += 1.0
        positions[token].append(offset)

    for token in tokenize(title):
        frequencies[token] += TITLE_WEIGHT

    postings = {
        token: Posting(document_id=doc_id, frequency=freq, positions=tuple(positions.get(token, ())))
        for token, freq in frequencies.items()
    }
    return postings, plain.text


class SearchIndexer:
    """Token -> posting list index, updated one document at a time.

    Only loaded documents are indexed. A document's postings are replaced in a
    single synchronous step, so queries never see a half-updated document.
    """

    def __init__(
        self,
        *,
        fuzzy: bool = True,
        max_edit_distance: int = 2,
        max_results: int = 10,
        backfill: Optional[BackfillCallback] = None,
    ) -> None:
        self.fuzzy = fuzzy
        self.max_edit_distance = max_edit_distance
        self.max_results = max_results
        self.backfill = backfill
        self._postings: Dict[str, Dict[str, Posting]] = {}
        self._doc_tokens: Dict[str, FrozenSet[str]] = {}
        self._texts: Dict[str, str] = {}
        self._titles: Dict[str, str] = {}
        self._fingerprints: Dict[str, str] = {}
        self._expected: List[str] = []

    @property
    def indexed_ids(self) -> List[str]:
        return sorted(self._fingerprints)

    def __len__(self) -> int:
        return len(self._fingerprints)

    def expect(self, document_ids: Iterable[str]) -> None:
        """Declare the full document set the index should eventually cover."""
        self._expected = list(document_ids)
        expected = set(self._expected)
        for doc_id in [d for d in self._fingerprints if d not in expected]:
            self.remove(doc_id)

    def fingerprint(self, document_id: str) -> Optional[str]:
        return self._fingerprints.get(document_id)

    def index(self, document: Document, content: str) -> bool:
        """(Re)index a loaded document; returns False when nothing changed."""
        if document.state is not LoadState.LOADED or document.fingerprint is None:
            LOGGER.debug("Skipping index of %s in state %s", document.id, document.state.value)
            return False
        if self._fingerprints.get(document.id) == document.fingerprint:
            return False

        postings, text = build_postings(document.id, document.title, content)
        self._swap(document.id, postings)
        self._texts[document.id] = text
        self._titles[document.id] = document.title
        self._fingerprints[document.id] = document.fingerprint
        LOGGER.debug("Indexed %s: %d tokens", document.id, len(postings))
        return True

    def remove(self, document_id: str) -> None:
        self._swap(document_id, {})
        self._texts.pop(document_id, None)
        self._titles.pop(document_id, None)
        self._fingerprints.pop(document_id, None)

    def _swap(self, doc_id: str, postings: Dict[str, Posting]) -> None:
        for token in self._doc_tokens.pop(doc_id, frozenset()):
            bucket = self._postings.get(token)
            if bucket is None:
                continue
            bucket.pop(doc_id, None)
            if not bucket:
                del self._postings[token]
        for token, posting in postings.items():
            self._postings.setdefault(token, {})[doc_id] = posting
        if postings:
            self._doc_tokens[doc_id] = frozenset(postings)

    def postings(self, token: str) -> List[Posting]:
        """Posting list for ``token`` ordered by document id."""
        bucket = self._postings.get(token.lower(), {})
        return [bucket[doc_id] for doc_id in sorted(bucket)]

    def tokens(self) -> List[str]:
        return sorted(self._postings)

    def suggest(self, prefix: str, *, limit: int = 5) -> List[str]:
        """Completions for ``prefix``: matching titles, then indexed words.

        Words are ranked by how many documents contain them.
        """
        needle = prefix.strip().lower()
        if not needle:
            return []
        suggestions = sorted(
            {title for title in self._titles.values() if needle in title.lower()},
            key=str.casefold,
        )
        words = sorted(
            (token for token in self._postings if token.startswith(needle)),
            key=lambda token: (-len(self._postings[token]), token),
        )
        seen = {suggestion.casefold() for suggestion in suggestions}
        for word in words:
            if word not in seen:
                suggestions.append(word)
                seen.add(word)
        return suggestions[:limit]

    def missing_ids(self) -> List[str]:
        return [doc_id for doc_id in self._expected if doc_id not in self._fingerprints]

    def query(self, text: str, *, limit: Optional[int] = None) -> List[SearchHit]:
        """Ranked hits for ``text`` over the currently indexed documents."""
        if not text or not text.strip():
            return []
        terms = tokenize(text)
        if not terms:
            return []

        missing = self.missing_ids()
        if missing and self.backfill is not None:
            LOGGER.debug("Query over partial index, %d documents pending", len(missing))
            self.backfill(missing)

        document_count = len(self._fingerprints)
        if not document_count:
            return []

        scores: Dict[str, float] = defaultdict(float)
        # doc id -> (match weight, offset) of the best positioned match
        anchors: Dict[str, Tuple[float, int]] = {}

        for term in terms:
            matches = match_terms(
                term,
                self._postings,
                fuzzy=self.fuzzy,
                max_edit_distance=self.max_edit_distance,
            )
            for token, weight in matches.items():
                bucket = self._postings[token]
                token_idf = idf(document_count, len(bucket))
                for doc_id, posting in bucket.items():
                    scores[doc_id] += weight * tf_weight(posting.frequency) * token_idf
                    if posting.positions:
                        candidate = (weight, -posting.positions[0])
                        best = anchors.get(doc_id)
                        if best is None or candidate > (best[0], -best[1]):
                            anchors[doc_id] = (weight, posting.positions[0])

        ranked = sorted(scores.items(), key=lambda item: (-item[1], item[0]))
        limit = self.max_results if limit is None else limit
        hits = []
        for doc_id, score in ranked[:limit]:
            anchor = anchors.get(doc_id)
            hits.append(
                SearchHit(
                    document_id=doc_id,
                    score=score,
                    snippet=make_snippet(self._texts.get(doc_id, ""), anchor[1] if anchor else None),
                    title=self._titles.get(doc_id, ""),
                )
            )
        return hits

