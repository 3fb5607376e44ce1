"""Tests for triagekit.classify.keywords."""

from __future__ import annotations

from triagekit.classify.keywords import (
    KeywordScore,
    Query,
    extract_keywords,
    extract_phrases,
    jaccard,
    keyword_score,
    word_set,
)


class TestExtractKeywords:
    def test_drops_short_and_stop_words(self):
        assert extract_keywords("The CSRF token is rejected") == ["csrf", "token", "rejected"]

    def test_drops_urls_and_numbers(self):
        keywords = extract_keywords("See https://example.com/issues/42 for 404 errors")
        assert "404" not in keywords
        assert not any("example" in k for k in keywords)
        assert "errors" in keywords

    def test_hyphenated_terms_expand(self):
        keywords = extract_keywords("trusted-origins")
        assert {"trusted-origins", "trustedorigins", "trusted_origins", "trusted", "origins"} <= set(
            keywords
        )

    def test_domain_concepts_first(self):
        keywords = extract_keywords("dashboard crashes with drizzle migration")
        assert keywords.index("migration") < keywords.index("drizzle") < keywords.index("dashboard")

    def test_empty(self):
        assert extract_keywords("") == []
        assert extract_keywords(None) == []


class TestExtractPhrases:
    def test_two_and_three_word_phrases(self):
        assert extract_phrases(["login", "csrf", "error"]) == [
            "login csrf",
            "csrf error",
            "login csrf error",
        ]


class TestKeywordScore:
    def test_empty_query_scores_zero(self):
        score = keyword_score(Query.from_text("the and"), "Login bug", "")
        assert score.overlap == 0.0
        assert score.context == 0.0

    def test_unrelated_item_scores_zero(self):
        query = Query.from_text("drizzle migration fails on postgres")
        score = keyword_score(query, "Support dark mode", "Dark theme for the dashboard")
        assert score.combined == 0.0
        assert score.matched_terms == []

    def test_related_item_scores_with_title_boost(self):
        query = Query.from_text("drizzle migration fails on postgres")
        score = keyword_score(
            query, "Drizzle adapter migration fails on postgres", "Schema migration throws"
        )
        assert 0 < score.overlap <= 1
        assert 0 < score.context <= 1
        assert "drizzle" in " ".join(score.matched_terms)

    def test_phrase_match_reported_quoted(self):
        query = Query.from_text("trusted origins")
        score = keyword_score(query, "CSRF check ignores trusted origins", "")
        assert '"trusted origins"' in score.matched_terms

    def test_exact_beats_partial(self):
        query = Query.from_text("session cookie expired")
        exact = keyword_score(query, "", "session cookie expired early")
        partial = keyword_score(query, "", "sessions cookies expiredness")
        assert exact.overlap > partial.overlap > 0

    def test_combined_is_capped(self):
        assert KeywordScore(overlap=1.0, context=1.0).combined == 1.0
        assert KeywordScore(overlap=0.5, context=0.25).combined == 0.6


class TestWordSets:
    def test_jaccard(self):
        a = word_set("login fails on safari")
        b = word_set("login fails on firefox")
        assert jaccard(a, b) == 2 / 4

    def test_jaccard_empty(self):
        assert jaccard(set(), set()) == 0.0
