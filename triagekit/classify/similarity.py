"""Similarity scoring between conversational units and tracker items."""

from __future__ import annotations

import logging

from triagekit.classify.embeddings import CachedEmbedder, cosine_similarity
from triagekit.classify.keywords import KeywordScore, Query, keyword_score
from triagekit.models import Match, Signal, Thread

logger = logging.getLogger(__name__)

# Blend used when both embeddings are available
EMBEDDING_WEIGHT = 0.6
KEYWORD_WEIGHT = 0.3
CONTEXT_WEIGHT = 0.1

DEFAULT_MIN_SCORE = 0.2
DEFAULT_TOP_N = 5


def unit_text(unit: Thread) -> str:
    """Text used to classify a unit: thread name (if any) then its messages."""
    if unit.is_standalone:
        return unit.text
    return f"{unit.name}\n\n{unit.text}"


def candidate_text(candidate: Signal) -> str:
    return f"{candidate.title}\n\n{candidate.body}"


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


class SimilarityEngine:
    """Scores how likely a unit and a candidate describe the same problem.

    Scores are in [0, 1]. With embeddings for both sides the score is
    0.6 * embedding cosine + 0.3 * keyword overlap + 0.1 * title boost.
    Otherwise it is the keyword overlap plus title boost alone.
    """

    def __init__(self, embedder: CachedEmbedder | None = None, top_n: int = DEFAULT_TOP_N) -> None:
        self._embedder = embedder
        self.top_n = top_n

    @property
    def uses_embeddings(self) -> bool:
        return self._embedder is not None

    def score(self, text: str, title: str, body: str = "") -> float:
        """Score free text against a candidate's title and body."""
        keywords = keyword_score(Query.from_text(text), title, body)
        unit_vector = candidate_vector = None
        if self._embedder is not None:
            unit_vector, candidate_vector = self._embedder.embed_many([text, f"{title}\n\n{body}"])
        return self._combine(keywords, unit_vector, candidate_vector)

    def rank(
        self,
        unit: Thread,
        candidates: list[Signal],
        min_score: float = DEFAULT_MIN_SCORE,
    ) -> list[Match]:
        """Matches scoring at least `min_score`, best first, at most `top_n`.

        Equal scores go to the more recently active candidate, then the
        higher id.
        """
        if not candidates:
            return []

        text = unit_text(unit)
        query = Query.from_text(text)

        unit_vector = None
        candidate_vectors: list[list[float] | None] = [None] * len(candidates)
        if self._embedder is not None:
            vectors = self._embedder.embed_many([text] + [candidate_text(c) for c in candidates])
            unit_vector, candidate_vectors = vectors[0], vectors[1:]

        scored = []
        for candidate, vector in zip(candidates, candidate_vectors):
            keywords = keyword_score(query, candidate.title, candidate.body)
            value = self._combine(keywords, unit_vector, vector)
            if value >= min_score:
                scored.append((value, candidate, keywords.matched_terms))

        scored.sort(
            key=lambda s: (s[0], s[1].last_activity, s[1].source_id.zfill(20)),
            reverse=True,
        )
        return [
            Match(unit_id=unit.thread_id, target_id=c.source_id, score=round(v, 4), matched_terms=terms)
            for v, c, terms in scored[: self.top_n]
        ]

    def _combine(
        self,
        keywords: KeywordScore,
        unit_vector: list[float] | None,
        candidate_vector: list[float] | None,
    ) -> float:
        if unit_vector is None or candidate_vector is None:
            return _clamp(keywords.combined)
        return _clamp(
            EMBEDDING_WEIGHT * cosine_similarity(unit_vector, candidate_vector)
            + KEYWORD_WEIGHT * keywords.overlap
            + CONTEXT_WEIGHT * keywords.context
        )
