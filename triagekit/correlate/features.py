"""Mapping units to product feature areas."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from triagekit.classify.embeddings import CachedEmbedder, cosine_similarity
from triagekit.classify.keywords import Query, keyword_score
from triagekit.classify.similarity import unit_text
from triagekit.errors import SourceSchemaError
from triagekit.models import Thread

logger = logging.getLogger(__name__)

FEATURE_MATCH_THRESHOLD = 0.5
MAX_FEATURES = 5


@dataclass
class Feature:
    id: str
    name: str
    description: str = ""
    keywords: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return " ".join([self.name, self.description, *self.keywords]).strip()


def load_features(path: Path) -> list[Feature]:
    """Read features from a JSON list of {id, name, description?, keywords?}."""
    data = json.loads(Path(path).read_text())
    if isinstance(data, dict):
        data = data.get("features", [])
    features = []
    for entry in data:
        if not isinstance(entry, dict) or not entry.get("id") or not entry.get("name"):
            raise SourceSchemaError(f"Feature entries need 'id' and 'name': {entry!r}")
        features.append(
            Feature(
                id=str(entry["id"]),
                name=entry["name"],
                description=entry.get("description", ""),
                keywords=list(entry.get("keywords", [])),
            )
        )
    return features


class FeatureMatcher:
    """Returns the ids of features a unit touches, best first.

    Uses embedding similarity when vectors are available for both the unit
    and the feature, keyword overlap otherwise.
    """

    def __init__(
        self,
        features: list[Feature],
        embedder: CachedEmbedder | None = None,
        threshold: float = FEATURE_MATCH_THRESHOLD,
        max_features: int = MAX_FEATURES,
    ) -> None:
        self._features = features
        self._embedder = embedder
        self.threshold = threshold
        self.max_features = max_features
        self._feature_vectors: list[list[float] | None] | None = None

    def __call__(self, unit: Thread) -> list[str]:
        if not self._features:
            return []
        text = unit_text(unit)
        query = Query.from_text(text)
        unit_vector = self._embedder.embed(text) if self._embedder else None
        vectors = self._vectors()

        scored = []
        for feature, vector in zip(self._features, vectors):
            if unit_vector is not None and vector is not None:
                similarity = cosine_similarity(unit_vector, vector)
            else:
                similarity = keyword_score(query, feature.name, feature.text).combined
            if similarity >= self.threshold:
                scored.append((similarity, feature.id))

        scored.sort(key=lambda s: s[0], reverse=True)
        return [feature_id for _, feature_id in scored[: self.max_features]]

    def _vectors(self) -> list[list[float] | None]:
        if self._feature_vectors is None:
            if self._embedder is None:
                self._feature_vectors = [None] * len(self._features)
            else:
                self._feature_vectors = self._embedder.embed_many([f.text for f in self._features])
        return self._feature_vectors
