"""Batch classification of units against tracker items with checkpointing."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from triagekit.classify.similarity import DEFAULT_MIN_SCORE, SimilarityEngine
from triagekit.classify.state import DEFAULT_LIMIT, ClassificationStateMachine
from triagekit.models import COMPLETED, Match, Signal, Thread

logger = logging.getLogger(__name__)

CLASSIFICATION_BATCH_SIZE = 50


@dataclass
class RunReport:
    first_run: bool = False
    recovered: int = 0
    migrated: int = 0
    selected: int = 0
    classified: int = 0
    matched: int = 0  # units with at least one match
    batches: int = 0
    matches: dict[str, list[Match]] = field(default_factory=dict)


class ClassificationRunner:
    """Runs classification one batch at a time.

    Each batch is marked `classifying` and saved before any scoring happens,
    then marked `completed` and saved once scored. If scoring raises, the
    unfinished units of the batch are marked `failed` and saved before the
    error propagates; the next run resets them to `pending`.
    """

    def __init__(
        self,
        state: ClassificationStateMachine,
        engine: SimilarityEngine,
        batch_size: int = CLASSIFICATION_BATCH_SIZE,
        min_score: float = DEFAULT_MIN_SCORE,
    ) -> None:
        self._state = state
        self._engine = engine
        self.batch_size = batch_size
        self.min_score = min_score

    def run(
        self,
        units: list[Thread],
        targets: list[Signal],
        re_classify: bool = False,
        limit: int | None = DEFAULT_LIMIT,
        classify_all: bool = False,
    ) -> RunReport:
        report = RunReport(first_run=self._state.first_run, recovered=self._state.recovered)
        report.migrated = self._state.migrate(units)

        selected = self._state.select_unprocessed(
            units, re_classify=re_classify, limit=limit, classify_all=classify_all
        )
        report.selected = len(selected)
        if not selected:
            logger.info("Nothing to classify")
            return report

        logger.info(
            f"Classifying {len(selected)} unit(s) against {len(targets)} item(s) "
            f"in batches of {self.batch_size}"
        )
        for start in range(0, len(selected), self.batch_size):
            batch = selected[start:start + self.batch_size]
            self._run_batch(batch, targets, report)
            report.batches += 1
            logger.info(
                f"Batch {report.batches}: {report.classified}/{len(selected)} classified, "
                f"{report.matched} with matches"
            )

        return report

    def _run_batch(self, batch: list[Thread], targets: list[Signal], report: RunReport) -> None:
        self._state.mark_in_progress(batch)
        try:
            for unit in batch:
                matches = self._engine.rank(unit, targets, self.min_score)
                self._state.mark_completed(unit, matches)
                report.matches[unit.thread_id] = matches
                report.classified += 1
                if matches:
                    report.matched += 1
        except Exception:
            unfinished = [u for u in batch if self._state.status_of(u.thread_id) != COMPLETED]
            logger.error(f"Classification batch failed, marking {len(unfinished)} unit(s) failed")
            self._state.mark_failed(unfinished)
            raise
        self._state.save()
