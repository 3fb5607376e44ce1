"""Incremental sync of a paged collection into the signal cache."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from triagekit.errors import CredentialsExhaustedError
from triagekit.github.fetcher import FetchResult, PagedFetcher
from triagekit.models import Signal, utcnow
from triagekit.storage.cache import SignalStore

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    collection: str
    since: datetime | None = None
    pages: int = 0
    listed: int = 0
    fetched: int = 0
    reused: int = 0
    missing: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    total: int = 0
    error: CredentialsExhaustedError | None = None

    @property
    def exhausted(self) -> bool:
        return self.error is not None


def _reusable(cached: dict[str, Signal], updated_at: dict[str, datetime | None]) -> dict[str, Signal]:
    """Cached items that are at least as new as their listed summary."""
    reusable = {}
    for item_id, listed_at in updated_at.items():
        item = cached.get(item_id)
        if item is None:
            continue
        if listed_at is None or item.last_activity >= listed_at:
            reusable[item_id] = item
    return reusable


def sync_collection(
    fetcher: PagedFetcher,
    store: SignalStore,
    collection: str,
    limit: int | None = None,
    full: bool = False,
) -> SyncReport:
    """Fetch new and updated items and merge them into the cached collection.

    The cache is saved after every detail batch, so an interrupted sync resumes
    without refetching what was already saved. Until a sync finishes cleanly
    the cache carries the cursor it started from, and the next sync lists from
    that cursor again so listed but unfetched items are not skipped. Running
    out of API quota ends the sync early with everything fetched so far saved
    and the error on the report.
    """
    cached = store.load(collection)
    if full:
        since = None
    elif cached.incomplete:
        since = cached.resume_since
        logger.info(f"Previous sync of {collection} did not finish, resuming from its cursor")
    else:
        since = store.most_recent_update(cached.items)
    report = SyncReport(collection=collection, since=since)
    if since:
        logger.info(f"Incremental sync of {collection} since {since.isoformat()}")
    else:
        logger.info(f"Full sync of {collection}")

    merged = list(cached.items)

    def checkpoint(batch: list[Signal]) -> None:
        nonlocal merged
        merged = store.merge(merged, batch)
        try:
            store.save(collection, merged, incomplete=True, resume_since=since)
        except OSError as e:
            logger.error(f"Failed to save checkpoint for {collection}: {e}")

    result = FetchResult(items=[])
    complete = False
    try:
        listing = fetcher.list_ids(since=since, limit=limit)
        report.pages = listing.pages
        report.listed = len(listing.ids)

        result = fetcher.fetch_details(
            listing.ids,
            existing_by_id=_reusable(cached.by_id(), listing.updated_at),
            on_batch_complete=checkpoint,
        )
        report.error = listing.error or result.error
        complete = not report.exhausted and not result.failed
    finally:
        report.fetched = len(result.items)
        report.reused = result.reused
        report.missing = result.missing
        report.failed = result.failed

        merged = store.merge(merged, result.items)
        store.save(
            collection,
            merged,
            fetched_at=utcnow(),
            incomplete=not complete,
            resume_since=since,
        )
        report.total = len(merged)

    if report.exhausted:
        logger.warning(
            f"Sync of {collection} stopped early: {report.fetched} fetched, {report.total} cached. {report.error}"
        )
    elif report.failed:
        logger.warning(
            f"Synced {collection} with {len(report.failed)} failed item(s), they are retried next sync"
        )
    else:
        logger.info(
            f"Synced {collection}: {report.fetched} fetched, {report.reused} reused, {report.total} cached"
        )
    return report
