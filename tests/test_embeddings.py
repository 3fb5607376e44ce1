"""Tests for triagekit.classify.embeddings with the OpenAI client mocked."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from triagekit.classify.embeddings import (
    CachedEmbedder,
    OpenAIEmbeddingProvider,
    content_hash,
    cosine_similarity,
)
from triagekit.errors import EmbeddingError


def _provider():
    provider = MagicMock()
    provider.model = "test-model"
    provider.embed.side_effect = lambda texts: [[1.0, float(len(t))] for t in texts]
    return provider


class TestCosineSimilarity:
    def test_identical(self):
        assert cosine_similarity([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)

    def test_opposite(self):
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(0.0)

    def test_orthogonal(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.5)

    def test_mismatched_or_zero(self):
        assert cosine_similarity([1.0], [1.0, 0.0]) == 0.0
        assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0
        assert cosine_similarity([], []) == 0.0


class TestCachedEmbedder:
    def test_same_text_embedded_once(self):
        provider = _provider()
        embedder = CachedEmbedder(provider)

        first = embedder.embed("login broken")
        second = embedder.embed("login broken")

        assert first == second
        provider.embed.assert_called_once_with(["login broken"])

    def test_duplicates_in_one_call(self):
        provider = _provider()
        vectors = CachedEmbedder(provider).embed_many(["a", "bb", "a"])
        provider.embed.assert_called_once_with(["a", "bb"])
        assert vectors[0] == vectors[2]

    def test_repository_cache_survives_instances(self, repo):
        CachedEmbedder(_provider(), repo).embed("login broken")

        provider = _provider()
        vector = CachedEmbedder(provider, repo).embed("login broken")

        assert vector == [1.0, 12.0]
        provider.embed.assert_not_called()
        assert repo.get_embedding(content_hash("login broken"), "test-model") == [1.0, 12.0]

    def test_provider_failure_returns_none(self):
        provider = _provider()
        provider.embed.side_effect = EmbeddingError("quota")
        embedder = CachedEmbedder(provider)

        assert embedder.embed_many(["a", "b"]) == [None, None]

        provider.embed.side_effect = lambda texts: [[1.0] for _ in texts]
        assert embedder.embed("a") == [1.0]


class TestOpenAIEmbeddingProvider:
    def test_orders_by_index(self):
        client = MagicMock()
        client.embeddings.create.return_value.data = [
            MagicMock(index=1, embedding=[0.0, 1.0]),
            MagicMock(index=0, embedding=[1.0, 0.0]),
        ]
        provider = OpenAIEmbeddingProvider(model="text-embedding-3-small", client=client)

        assert provider.embed(["first", "second"]) == [[1.0, 0.0], [0.0, 1.0]]
        client.embeddings.create.assert_called_once_with(
            model="text-embedding-3-small", input=["first", "second"]
        )

    def test_request_failure_wrapped(self):
        client = MagicMock()
        client.embeddings.create.side_effect = RuntimeError("connection reset")
        provider = OpenAIEmbeddingProvider(client=client)
        with pytest.raises(EmbeddingError):
            provider.embed(["text"])

    def test_count_mismatch(self):
        client = MagicMock()
        client.embeddings.create.return_value.data = [MagicMock(index=0, embedding=[1.0])]
        with pytest.raises(EmbeddingError):
            OpenAIEmbeddingProvider(client=client).embed(["a", "b"])
