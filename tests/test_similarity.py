"""Tests for triagekit.classify.similarity."""

from __future__ import annotations

from unittest.mock import MagicMock

from triagekit.classify.embeddings import CachedEmbedder
from triagekit.classify.similarity import SimilarityEngine, unit_text
from triagekit.errors import EmbeddingError
from triagekit.models import Thread

from conftest import make_issue, make_message, make_unit

CSRF_REPORT = "Getting a CSRF error on login after configuring trusted origins"


def _embedder(vector=(1.0, 0.0)):
    provider = MagicMock()
    provider.model = "test-model"
    provider.embed.side_effect = lambda texts: [list(vector) for _ in texts]
    return CachedEmbedder(provider)


class TestScore:
    def test_keyword_only_bounded(self, issues):
        engine = SimilarityEngine()
        assert not engine.uses_embeddings
        for issue in issues:
            value = engine.score(CSRF_REPORT, issue.title, issue.body)
            assert 0.0 <= value <= 1.0

    def test_with_embeddings_bounded(self, issues):
        engine = SimilarityEngine(embedder=_embedder())
        assert engine.uses_embeddings
        for issue in issues:
            value = engine.score(CSRF_REPORT, issue.title, issue.body)
            assert 0.0 <= value <= 1.0

    def test_identical_vectors_dominate(self):
        engine = SimilarityEngine(embedder=_embedder())
        assert engine.score("completely unrelated words", "Dark mode", "") >= 0.6

    def test_embedding_failure_degrades_to_keywords(self, issues):
        provider = MagicMock()
        provider.model = "test-model"
        provider.embed.side_effect = EmbeddingError("offline")
        with_failure = SimilarityEngine(embedder=CachedEmbedder(provider))
        keyword_only = SimilarityEngine()

        issue = issues[0]
        assert with_failure.score(CSRF_REPORT, issue.title, issue.body) == keyword_only.score(
            CSRF_REPORT, issue.title, issue.body
        )


class TestRank:
    def test_best_match_first_and_filtered(self, issues):
        unit = make_unit("m1", CSRF_REPORT)
        matches = SimilarityEngine().rank(unit, issues, min_score=0.2)

        assert [m.target_id for m in matches] == ["101"]
        assert matches[0].unit_id == "m1"
        assert matches[0].matched_terms

    def test_ties_go_to_newer_candidate(self):
        older = make_issue(1, "Login fails", "csrf error", hours=1)
        newer = make_issue(2, "Login fails", "csrf error", hours=5)
        unit = make_unit("m1", "Login fails with a csrf error")

        matches = SimilarityEngine().rank(unit, [older, newer], min_score=0.0)

        assert matches[0].score == matches[1].score
        assert [m.target_id for m in matches] == ["2", "1"]

    def test_top_n(self):
        candidates = [make_issue(n, "Login fails", "csrf error", hours=n) for n in range(1, 8)]
        unit = make_unit("m1", "Login fails with a csrf error")

        matches = SimilarityEngine(top_n=5).rank(unit, candidates, min_score=0.0)

        assert len(matches) == 5
        assert [m.target_id for m in matches] == ["7", "6", "5", "4", "3"]

    def test_no_candidates(self):
        assert SimilarityEngine().rank(make_unit("m1", "anything"), []) == []

    def test_scores_rounded(self, issues):
        matches = SimilarityEngine(embedder=_embedder()).rank(
            make_unit("m1", CSRF_REPORT), issues, min_score=0.0
        )
        assert all(m.score == round(m.score, 4) for m in matches)
        assert len(matches) == 3


class TestUnitText:
    def test_thread_includes_name(self):
        thread = Thread(
            thread_id="t1",
            name="Login bug",
            messages=[make_message("1", "it broke", author="alice")],
        )
        assert unit_text(thread) == "Login bug\n\nalice: it broke"

    def test_standalone_is_message_text(self):
        assert unit_text(make_unit("1", "it broke")) == "alice: it broke"
