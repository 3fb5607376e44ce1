"""Grouping of classified units into deduplicated issue candidates.

Two modes:

* Issue-based: each unit joins the group of its best matching tracker item
  (if that match clears the threshold). Groups take their title from the item.
* Semantic: units are clustered by pairwise similarity (embedding cosine, or
  word overlap when vectors are missing) and a canonical unit is picked for
  each cluster.

Both modes tag groups that span more than one feature area as cross-cutting
and assign a priority from the group's title and labels.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from triagekit.classify.embeddings import CachedEmbedder, cosine_similarity
from triagekit.classify.keywords import jaccard, word_set
from triagekit.classify.similarity import unit_text
from triagekit.correlate.priority import assign_priority
from triagekit.correlate.titles import TitleSuggester, fallback_title
from triagekit.models import Group, MatchRef, Signal, Thread

logger = logging.getLogger(__name__)

DEFAULT_GROUP_MIN_SIMILARITY = 0.6
DUPLICATE_THRESHOLD = 0.9
MAX_GROUPS = 50
MAX_FEATURES = 5

FeatureClassifier = Callable[[Thread], list[str]]


class _UnionFind:
    def __init__(self) -> None:
        self._parent: dict[str, str] = {}

    def find(self, node: str) -> str:
        self._parent.setdefault(node, node)
        root = node
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[node] != root:
            self._parent[node], node = root, self._parent[node]
        return root

    def union(self, a: str, b: str) -> None:
        root_a, root_b = self.find(a), self.find(b)
        if root_a != root_b:
            # Smaller id becomes the root so results do not depend on input order
            if root_b < root_a:
                root_a, root_b = root_b, root_a
            self._parent[root_b] = root_a


@dataclass
class GroupingResult:
    groups: list[Group]
    ungrouped: list[str] = field(default_factory=list)

    @property
    def stats(self) -> dict:
        grouped = sum(len(g.unit_ids) for g in self.groups)
        return {
            "groups": len(self.groups),
            "grouped_units": grouped,
            "ungrouped_units": len(self.ungrouped),
            "cross_cutting_groups": sum(1 for g in self.groups if g.is_cross_cutting),
        }


class GroupingEngine:
    """Unions correlated units into groups.

    Usage:
        engine = GroupingEngine(embedder=embedder, feature_classifier=matcher)
        result = engine.group_by_matches(units, history_matches, issues_by_id)
        result = engine.group_semantic(units)
    """

    def __init__(
        self,
        embedder: CachedEmbedder | None = None,
        feature_classifier: FeatureClassifier | None = None,
        titles: TitleSuggester | None = None,
        max_groups: int = MAX_GROUPS,
    ) -> None:
        self._embedder = embedder
        self._feature_classifier = feature_classifier
        self._titles = titles or TitleSuggester()
        self.max_groups = max_groups

    def group_by_matches(
        self,
        units: list[Thread],
        matches: dict[str, list[MatchRef]],
        targets: dict[str, Signal],
        min_similarity: float = DEFAULT_GROUP_MIN_SIMILARITY,
    ) -> GroupingResult:
        """Group units whose best match above `min_similarity` is the same target."""
        uf = _UnionFind()
        best_score: dict[str, float] = {}
        member_units: list[str] = []

        for unit in units:
            best = self._best_match(matches.get(unit.thread_id, []), min_similarity)
            if best is None:
                continue
            uf.union(f"target:{best.target_id}", f"unit:{unit.thread_id}")
            best_score[unit.thread_id] = best.score
            member_units.append(unit.thread_id)

        by_id = {unit.thread_id: unit for unit in units}
        clusters: dict[str, list[str]] = {}
        for unit_id in member_units:
            clusters.setdefault(uf.find(f"unit:{unit_id}"), []).append(unit_id)

        groups = []
        for root, unit_ids in clusters.items():
            target_id = root.split(":", 1)[1]
            members = [by_id[u] for u in unit_ids]
            target = targets.get(target_id)
            title = fallback_title(members, target)
            canonical = max(
                members, key=lambda u: (best_score[u.thread_id], u.newest_at, u.thread_id)
            )
            groups.append(
                self._build_group(
                    group_id=f"issue-{target_id}",
                    title=title,
                    members=members,
                    target_ids=[target_id],
                    similarity=sum(best_score[u] for u in unit_ids) / len(unit_ids),
                    canonical_unit_id=canonical.thread_id,
                    labels=target.labels if target else [],
                )
            )

        return self._finish(groups, units, "issue-based")

    def group_semantic(
        self,
        units: list[Thread],
        min_similarity: float = DEFAULT_GROUP_MIN_SIMILARITY,
        min_group_size: int = 1,
    ) -> GroupingResult:
        """Cluster units by mutual similarity at or above `min_similarity`."""
        if not units:
            return GroupingResult(groups=[])

        texts = [unit_text(u) for u in units]
        vectors: list[list[float] | None] = [None] * len(units)
        if self._embedder is not None:
            vectors = self._embedder.embed_many(texts)
        words = [word_set(t) for t in texts]

        def similarity(i: int, j: int) -> float:
            if vectors[i] is not None and vectors[j] is not None:
                return cosine_similarity(vectors[i], vectors[j])
            return jaccard(words[i], words[j])

        uf = _UnionFind()
        pair_scores: dict[tuple[int, int], float] = {}
        for i in range(len(units)):
            uf.find(units[i].thread_id)
            for j in range(i + 1, len(units)):
                score = similarity(i, j)
                pair_scores[(i, j)] = score
                if score >= min_similarity:
                    uf.union(units[i].thread_id, units[j].thread_id)

        index = {unit.thread_id: i for i, unit in enumerate(units)}
        clusters: dict[str, list[Thread]] = {}
        for unit in units:
            clusters.setdefault(uf.find(unit.thread_id), []).append(unit)

        groups = []
        # Group ids use the smallest member id, which is the union-find root
        for root, members in clusters.items():
            if len(members) < min_group_size:
                continue
            positions = [index[u.thread_id] for u in members]
            canonical, cohesion = self._canonical(members, positions, pair_scores)
            groups.append(
                self._build_group(
                    group_id=f"semantic-{root}",
                    title=self._titles.suggest(members),
                    members=members,
                    target_ids=[],
                    similarity=cohesion,
                    canonical_unit_id=canonical.thread_id,
                    labels=[],
                )
            )

        return self._finish(groups, units, "semantic")

    def find_duplicates(
        self, units: list[Thread], threshold: float = DUPLICATE_THRESHOLD
    ) -> list[tuple[str, str, float]]:
        """Pairs of near-identical units by word overlap, most similar first."""
        words = [word_set(unit_text(u)) for u in units]
        duplicates = []
        for i in range(len(units)):
            for j in range(i + 1, len(units)):
                score = jaccard(words[i], words[j])
                if score >= threshold:
                    duplicates.append((units[i].thread_id, units[j].thread_id, score))
        duplicates.sort(key=lambda d: d[2], reverse=True)
        return duplicates

    def _build_group(
        self,
        group_id: str,
        title: str,
        members: list[Thread],
        target_ids: list[str],
        similarity: float,
        canonical_unit_id: str,
        labels: list[str],
    ) -> Group:
        features = self._features_for(members)
        return Group(
            id=group_id,
            title=title,
            unit_ids=[u.thread_id for u in members],
            target_ids=target_ids,
            is_cross_cutting=len(features) > 1,
            affected_features=features,
            priority=assign_priority(title, labels, unit_count=len(members)),
            similarity=round(similarity, 4),
            canonical_unit_id=canonical_unit_id,
        )

    def _features_for(self, members: list[Thread]) -> list[str]:
        if self._feature_classifier is None:
            return []
        counts: dict[str, int] = {}
        for unit in members:
            for feature_id in self._feature_classifier(unit):
                counts[feature_id] = counts.get(feature_id, 0) + 1
        ranked = sorted(counts, key=lambda f: counts[f], reverse=True)
        return ranked[:MAX_FEATURES]

    def _finish(self, groups: list[Group], units: list[Thread], mode: str) -> GroupingResult:
        groups.sort(key=lambda g: (-len(g.unit_ids), g.id))
        groups = groups[: self.max_groups]
        grouped = {unit_id for g in groups for unit_id in g.unit_ids}
        result = GroupingResult(
            groups=groups,
            ungrouped=[u.thread_id for u in units if u.thread_id not in grouped],
        )
        stats = result.stats
        logger.info(
            f"{mode.capitalize()} grouping: {stats['groups']} group(s), "
            f"{stats['grouped_units']} unit(s) grouped, {stats['cross_cutting_groups']} cross-cutting"
        )
        return result

    @staticmethod
    def _best_match(matches: list[MatchRef], min_similarity: float) -> MatchRef | None:
        eligible = [m for m in matches if m.score >= min_similarity]
        if not eligible:
            return None
        return max(eligible, key=lambda m: (m.score, m.target_id))

    @staticmethod
    def _canonical(
        members: list[Thread],
        positions: list[int],
        pair_scores: dict[tuple[int, int], float],
    ) -> tuple[Thread, float]:
        """Member with the highest mean similarity to the rest; newest wins ties."""
        if len(members) == 1:
            return members[0], 1.0

        means = []
        for member, i in zip(members, positions):
            scores = [pair_scores[(min(i, j), max(i, j))] for j in positions if j != i]
            means.append(sum(scores) / len(scores))

        cohesion = sum(means) / len(means)
        best = max(
            range(len(members)),
            key=lambda k: (means[k], members[k].newest_at, members[k].thread_id),
        )
        return members[best], cohesion
