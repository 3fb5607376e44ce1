"""Classification lifecycle tracking for conversational units.

Each unit (a thread, or a standalone message treated as a one-message thread)
moves pending -> classifying -> completed, or classifying -> failed. The only
backward move happens when the state machine is created: anything left in
`classifying` by an interrupted run, and anything `failed`, goes back to
`pending` before new work starts.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from triagekit.models import (
    CLASSIFYING,
    COMPLETED,
    FAILED,
    PENDING,
    ClassificationRecord,
    Match,
    MatchRef,
    Thread,
    utcnow,
)
from triagekit.storage.history import HistoryStore

logger = logging.getLogger(__name__)

FIRST_RUN_CAP = 200
DEFAULT_LIMIT = 30


class ClassificationStateMachine:
    """Tracks per-unit status and persists it through a HistoryStore.

    Usage:
        state = ClassificationStateMachine(HistoryStore(path))
        state.migrate(units)
        todo = state.select_unprocessed(units, re_classify=False, limit=30)
        state.mark_in_progress(batch)
        ...
        state.mark_completed(unit, matches)
        state.save()
    """

    def __init__(
        self,
        store: HistoryStore,
        first_run_cap: int = FIRST_RUN_CAP,
        clock: Callable = utcnow,
    ) -> None:
        self._store = store
        self._clock = clock
        self.first_run_cap = first_run_cap
        self._records = store.load()
        self.first_run = not self._records
        self.recovered = self._recover_stale()

    @property
    def records(self) -> dict[str, ClassificationRecord]:
        return self._records

    def get(self, unit_id: str) -> ClassificationRecord | None:
        return self._records.get(unit_id)

    def status_of(self, unit_id: str) -> str | None:
        record = self._records.get(unit_id)
        return record.status if record else None

    def migrate(self, units: Iterable[Thread]) -> int:
        """Carry completed standalone classifications over to their thread.

        A message first seen on its own is classified under its message id.
        When it later turns out to belong to a thread, the thread inherits the
        union of those matches (highest score per target) and the most recent
        classification time, instead of being classified from scratch.
        Returns the number of threads migrated.
        """
        migrated = 0
        for unit in units:
            if unit.is_standalone:
                continue
            existing = self._records.get(unit.thread_id)
            if existing and existing.status == COMPLETED:
                continue

            prior = [
                self._records[message_id]
                for message_id in unit.message_ids
                if message_id != unit.thread_id
                and message_id in self._records
                and self._records[message_id].status == COMPLETED
            ]
            if not prior:
                continue

            best: dict[str, float] = {}
            for record in prior:
                for match in record.matches:
                    if match.score > best.get(match.target_id, -1.0):
                        best[match.target_id] = match.score

            self._records[unit.thread_id] = ClassificationRecord(
                unit_id=unit.thread_id,
                status=COMPLETED,
                matches=[MatchRef(target_id=t, score=s) for t, s in best.items()],
                updated_at=max(record.updated_at for record in prior),
                message_ids=unit.message_ids,
            )
            migrated += 1

        if migrated:
            logger.info(f"Migrated {migrated} standalone classification(s) to threads")
            self.save()
        return migrated

    def select_unprocessed(
        self,
        units: list[Thread],
        re_classify: bool = False,
        limit: int | None = DEFAULT_LIMIT,
        classify_all: bool = False,
    ) -> list[Thread]:
        """Pick the units to classify this run.

        Without `re_classify`, completed units are skipped. A first-ever run
        takes the oldest units up to `first_run_cap` regardless of `limit`;
        later runs take the newest units up to `limit` (all of them with
        `classify_all`).
        """
        if re_classify:
            candidates = list(units)
        else:
            candidates = [u for u in units if self.status_of(u.thread_id) != COMPLETED]

        if self.first_run:
            candidates.sort(key=lambda u: (u.oldest_at is None, u.oldest_at))
            selected = candidates[: self.first_run_cap]
            logger.info(
                f"First classification run: {len(selected)} of {len(candidates)} unit(s), oldest first"
            )
            return selected

        candidates.sort(key=lambda u: (u.newest_at is not None, u.newest_at), reverse=True)
        if classify_all or not limit:
            return candidates
        return candidates[:limit]

    def mark_in_progress(self, units: Iterable[Thread]) -> None:
        """Mark units as classifying and persist before any work starts."""
        for unit in units:
            self._set(unit, CLASSIFYING)
        self.save()

    def mark_completed(self, unit: Thread, matches: list[Match]) -> None:
        self._set(unit, COMPLETED, [m.to_ref() for m in matches])

    def mark_failed(self, units: Iterable[Thread]) -> None:
        """Mark units as failed and persist."""
        for unit in units:
            self._set(unit, FAILED)
        self.save()

    def save(self) -> None:
        self._store.save(self._records)

    def counts(self) -> dict[str, int]:
        totals = {PENDING: 0, CLASSIFYING: 0, COMPLETED: 0, FAILED: 0}
        for record in self._records.values():
            totals[record.status] += 1
        return totals

    def _set(self, unit: Thread, status: str, matches: list[MatchRef] | None = None) -> None:
        record = self._records.get(unit.thread_id)
        if record is None:
            record = ClassificationRecord(unit_id=unit.thread_id, status=status)
            self._records[unit.thread_id] = record
        record.status = status
        if matches is not None:
            record.matches = matches
        record.updated_at = self._clock()
        record.message_ids = unit.message_ids

    def _recover_stale(self) -> int:
        stale = [r for r in self._records.values() if r.status in (CLASSIFYING, FAILED)]
        for record in stale:
            record.status = PENDING
            record.updated_at = self._clock()
        if stale:
            logger.info(f"Reset {len(stale)} stale or failed unit(s) to pending")
            self.save()
        return len(stale)
