"""Text embeddings with a content-hash cache.

The provider is optional. Every failure is logged and reported as a missing
vector so callers fall back to keyword scoring.
"""

from __future__ import annotations

import hashlib
import logging
import math
from typing import Protocol

from openai import OpenAI

from triagekit.config import DEFAULT_EMBEDDING_MODEL
from triagekit.errors import EmbeddingError
from triagekit.storage.repository import Repository

logger = logging.getLogger(__name__)

# Texts per embeddings request
EMBED_BATCH_SIZE = 100
# Rough character cap that keeps inputs under the model's token limit
MAX_INPUT_CHARS = 8000


class EmbeddingProvider(Protocol):
    model: str

    def embed(self, texts: list[str]) -> list[list[float]]: ...


class OpenAIEmbeddingProvider:
    """Embeddings from the OpenAI API."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_EMBEDDING_MODEL,
        client: OpenAI | None = None,
    ) -> None:
        self.model = model
        self._client = client or OpenAI(api_key=api_key or None)

    def embed(self, texts: list[str]) -> list[list[float]]:
        try:
            response = self._client.embeddings.create(
                model=self.model,
                input=[t[:MAX_INPUT_CHARS] or " " for t in texts],
            )
        except Exception as e:
            raise EmbeddingError(f"Embedding request failed: {e}") from e

        data = sorted(response.data, key=lambda d: d.index)
        if len(data) != len(texts):
            raise EmbeddingError(f"Expected {len(texts)} embeddings, got {len(data)}")
        return [list(d.embedding) for d in data]


def content_hash(text: str) -> str:
    return hashlib.md5(text.encode("utf-8"), usedforsecurity=False).hexdigest()


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity rescaled from [-1, 1] to [0, 1]."""
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    cosine = max(-1.0, min(1.0, dot / (norm_a * norm_b)))
    return (cosine + 1) / 2


class CachedEmbedder:
    """Looks vectors up by content hash before asking the provider.

    Hits come from memory first, then from the repository's embeddings table
    when one is given. New vectors are written back to both.
    """

    def __init__(self, provider: EmbeddingProvider, repository: Repository | None = None) -> None:
        self._provider = provider
        self._repository = repository
        self._memory: dict[str, list[float]] = {}

    @property
    def model(self) -> str:
        return self._provider.model

    def embed(self, text: str) -> list[float] | None:
        return self.embed_many([text])[0]

    def embed_many(self, texts: list[str]) -> list[list[float] | None]:
        hashes = [content_hash(t) for t in texts]
        results: dict[str, list[float] | None] = {}

        missing: dict[str, str] = {}
        for text, key in zip(texts, hashes):
            if key in results or key in missing:
                continue
            vector = self._lookup(key)
            if vector is not None:
                results[key] = vector
            else:
                missing[key] = text

        keys = list(missing)
        for start in range(0, len(keys), EMBED_BATCH_SIZE):
            chunk = keys[start:start + EMBED_BATCH_SIZE]
            try:
                vectors = self._provider.embed([missing[k] for k in chunk])
            except EmbeddingError as e:
                logger.warning(f"Embeddings unavailable, using keyword scoring only: {e}")
                break
            for key, vector in zip(chunk, vectors):
                self._store(key, vector)
                results[key] = vector

        if missing:
            logger.debug(f"Embedded {len(missing)} new text(s), {len(texts) - len(missing)} cached")
        return [results.get(key) for key in hashes]

    def _lookup(self, key: str) -> list[float] | None:
        if key in self._memory:
            return self._memory[key]
        if self._repository is not None:
            vector = self._repository.get_embedding(key, self.model)
            if vector is not None:
                self._memory[key] = vector
            return vector
        return None

    def _store(self, key: str, vector: list[float]) -> None:
        self._memory[key] = vector
        if self._repository is not None:
            self._repository.save_embedding(key, self.model, vector)
