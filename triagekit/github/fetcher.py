"""Two-phase paged fetching: collect ids across list pages, then fetch details."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Protocol

import requests
from github.GithubException import GithubException, UnknownObjectException

from triagekit.errors import CredentialsExhaustedError, SourceSchemaError
from triagekit.models import ListedItem, Signal

logger = logging.getLogger(__name__)

# Concurrent detail requests per batch
DETAIL_BATCH_SIZE = 10
ANONYMOUS_BATCH_SIZE = 3


class PagedSource(Protocol):
    page_size: int

    @property
    def authenticated(self) -> bool: ...

    def list_page(self, page: int, since: datetime | None = None) -> list[ListedItem]: ...

    def fetch_detail(self, item_id: str) -> Signal: ...


@dataclass
class ListResult:
    ids: list[str]
    updated_at: dict[str, datetime | None] = field(default_factory=dict)
    pages: int = 0
    error: CredentialsExhaustedError | None = None

    @property
    def exhausted(self) -> bool:
        return self.error is not None


@dataclass
class FetchResult:
    items: list[Signal]
    reused: int = 0  # ids skipped because they were already cached
    missing: list[str] = field(default_factory=list)  # 404s
    failed: list[str] = field(default_factory=list)
    error: CredentialsExhaustedError | None = None

    @property
    def exhausted(self) -> bool:
        return self.error is not None


class PagedFetcher:
    """Fetches a paginated collection with resume support.

    Phase one walks list pages in order and collects ids. Phase two fetches
    full details for ids not already cached, in bounded concurrent batches,
    handing each finished batch to a checkpoint callback before starting the
    next one.
    """

    def __init__(self, source: PagedSource, batch_size: int | None = None) -> None:
        self._source = source
        if batch_size is None:
            batch_size = DETAIL_BATCH_SIZE if source.authenticated else ANONYMOUS_BATCH_SIZE
        self.batch_size = batch_size

    def list_ids(self, since: datetime | None = None, limit: int | None = None) -> ListResult:
        """Collect ids across list pages, most recently updated first.

        Stops on a short page, once `limit` ids are collected, or when every
        credential is exhausted (the partial result carries the error).
        """
        result = ListResult(ids=[])
        seen: set[str] = set()
        page = 0

        while True:
            try:
                items = self._source.list_page(page, since)
            except CredentialsExhaustedError as e:
                logger.warning(f"Stopped listing after {result.pages} page(s): {e}")
                result.error = e
                return result
            result.pages += 1

            for item in items:
                if not item.included or item.id in seen:
                    continue
                seen.add(item.id)
                result.ids.append(item.id)
                result.updated_at[item.id] = item.updated_at
                if limit and len(result.ids) >= limit:
                    break

            logger.info(f"Page {page + 1}: {len(items)} items, {len(result.ids)} collected")

            if limit and len(result.ids) >= limit:
                break
            if len(items) < self._source.page_size:
                break
            page += 1

        return result

    def fetch_details(
        self,
        ids: list[str],
        existing_by_id: dict[str, Signal] | None = None,
        on_batch_complete: Callable[[list[Signal]], None] | None = None,
    ) -> FetchResult:
        """Fetch full items for ids not in `existing_by_id`.

        `on_batch_complete` runs synchronously after every batch that produced
        items; the next batch does not start until it returns.
        """
        existing_by_id = existing_by_id or {}
        todo = [item_id for item_id in ids if item_id not in existing_by_id]
        result = FetchResult(items=[], reused=len(ids) - len(todo))

        if result.reused:
            logger.info(f"Skipping {result.reused} already cached item(s)")
        if not todo:
            return result

        total_batches = (len(todo) + self.batch_size - 1) // self.batch_size
        for number, start in enumerate(range(0, len(todo), self.batch_size), start=1):
            batch = todo[start:start + self.batch_size]
            fetched, error = self._fetch_batch(batch, result)
            result.items.extend(fetched)
            logger.info(
                f"Batch {number}/{total_batches}: fetched {len(fetched)}/{len(batch)} "
                f"({len(result.items)} total)"
            )

            if fetched and on_batch_complete:
                on_batch_complete(fetched)

            if error is not None:
                logger.warning(f"Stopped after batch {number}/{total_batches}: {error}")
                result.error = error
                break

        return result

    def _fetch_batch(
        self, batch: list[str], result: FetchResult
    ) -> tuple[list[Signal], CredentialsExhaustedError | None]:
        by_id: dict[str, Signal] = {}
        error: CredentialsExhaustedError | None = None

        with ThreadPoolExecutor(max_workers=len(batch)) as executor:
            futures = {executor.submit(self._source.fetch_detail, item_id): item_id for item_id in batch}
            for future in as_completed(futures):
                item_id = futures[future]
                try:
                    by_id[item_id] = future.result()
                except UnknownObjectException:
                    logger.warning(f"Item {item_id} not found, skipping")
                    result.missing.append(item_id)
                except CredentialsExhaustedError as e:
                    error = e
                except (GithubException, SourceSchemaError, requests.RequestException) as e:
                    logger.error(f"Failed to fetch item {item_id}: {e}")
                    result.failed.append(item_id)

        return [by_id[item_id] for item_id in batch if item_id in by_id], error
