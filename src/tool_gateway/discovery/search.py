"""Tool discovery via TF-IDF weighting and cosine similarity."""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from math import floor, log, sqrt

from tool_gateway.types import SearchResult, ToolEntry

logger = logging.getLogger(__name__)

_NON_WORD = re.compile(r"[^a-z0-9_]")

STOP_WORDS = frozenset(
    {
        "a", "an", "the", "is", "are", "was", "were", "be", "been", "being",
        "have", "has", "had", "do", "does", "did", "will", "would", "could",
        "should", "may", "might", "shall", "can", "to", "of", "in", "for",
        "on", "with", "at", "by", "from", "as", "into", "through", "during",
        "before", "after", "and", "but", "or", "nor", "not", "so", "yet",
        "both", "either", "neither", "each", "every", "all", "any", "few",
        "more", "most", "other", "some", "such", "no", "only", "own", "same",
        "than", "too", "very", "just", "because", "if", "when", "where",
        "how", "what", "which", "who", "whom", "this", "that", "these",
        "those", "it", "its", "i", "me", "my", "we", "our", "you", "your",
        "he", "him", "his", "she", "her", "they", "them", "their",
    }
)


def tokenize(text: str) -> list[str]:
    """Lowercase, split on anything outside `[a-z0-9_]`, drop noise tokens."""
    return [
        token
        for token in _NON_WORD.sub(" ", text.lower()).split()
        if len(token) > 1 and token not in STOP_WORDS
    ]


def _round_score(score: float) -> float:
    # Half-up to 3 decimals; round() would send 0.0625 to 0.062.
    return floor(score * 1000 + 0.5) / 1000


@dataclass(slots=True, frozen=True)
class _IndexSnapshot:
    entries: tuple[ToolEntry, ...] = ()
    term_counts: tuple[Counter[str], ...] = ()
    idf: dict[str, float] = field(default_factory=dict)


class ToolSearchIndex:
    """In-memory ranking over the tool catalogue.

    `index()` rebuilds everything from scratch; there is no incremental path,
    so any catalogue change means re-indexing the whole list. The new state
    is published with a single attribute assignment, which keeps concurrent
    `search()` calls on either the old or the new snapshot, never a mix.
    """

    def __init__(self) -> None:
        self._snapshot = _IndexSnapshot()

    @property
    def size(self) -> int:
        return len(self._snapshot.entries)

    def index(self, tools: list[ToolEntry]) -> None:
        entries = tuple(tools)
        term_counts = tuple(
            Counter(tokenize(f"{entry.tool_name} {entry.description}")) for entry in entries
        )

        document_frequency: Counter[str] = Counter()
        for counts in term_counts:
            document_frequency.update(counts.keys())

        total = len(entries) or 1
        idf = {term: log(total / df) for term, df in document_frequency.items()}

        self._snapshot = _IndexSnapshot(entries=entries, term_counts=term_counts, idf=idf)
        logger.info("indexed %d tools (%d terms)", len(entries), len(idf))

    def search(self, query: str, top_k: int = 10) -> list[SearchResult]:
        """Rank catalogue entries against a free-text query.

        Score is the cosine similarity of the query and document TF-IDF
        vectors. The document norm covers all of the document's terms, not
        just the ones shared with the query. Zero scores are dropped, ties
        keep catalogue order, and scores are rounded to 3 decimals.
        """
        snapshot = self._snapshot
        if not snapshot.entries:
            return []

        query_counts = Counter(tokenize(query))
        if not query_counts:
            return []

        idf = snapshot.idf
        query_weights = {term: tf * idf.get(term, 0.0) for term, tf in query_counts.items()}
        query_norm = sqrt(sum(weight * weight for weight in query_weights.values()))

        scored: list[tuple[int, float]] = []
        for position, doc_counts in enumerate(snapshot.term_counts):
            if not doc_counts:
                continue

            dot = sum(
                weight * doc_counts.get(term, 0) * idf.get(term, 0.0)
                for term, weight in query_weights.items()
            )
            doc_norm = sqrt(
                sum((tf * idf.get(term, 0.0)) ** 2 for term, tf in doc_counts.items())
            )
            if query_norm == 0 or doc_norm == 0:
                continue

            score = dot / (query_norm * doc_norm)
            if score > 0:
                scored.append((position, score))

        # sorted() is stable, so equal scores stay in catalogue order.
        ranked = sorted(scored, key=lambda item: item[1], reverse=True)
        results: list[SearchResult] = []
        for position, score in ranked[:top_k]:
            entry = snapshot.entries[position]
            results.append(
                SearchResult(
                    backend_id=entry.backend_id,
                    backend_name=entry.backend_name,
                    tool_name=entry.tool_name,
                    description=entry.description,
                    score=_round_score(score),
                )
            )
        return results
