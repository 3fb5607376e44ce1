"""Tests for triagekit.github.fetcher against an in-memory paged source."""

from __future__ import annotations

from unittest.mock import MagicMock

import requests
from github.GithubException import GithubException, UnknownObjectException

from triagekit.errors import CredentialsExhaustedError
from triagekit.github.fetcher import ANONYMOUS_BATCH_SIZE, DETAIL_BATCH_SIZE, PagedFetcher

from conftest import BASE_TIME, FakeSource, make_issue


def _issues(count: int):
    return [make_issue(n, hours=n) for n in range(1, count + 1)]


class TestListIds:
    def test_two_pages_for_150_items(self):
        source = FakeSource(_issues(150))
        result = PagedFetcher(source).list_ids()

        assert source.pages_requested == [0, 1]
        assert result.pages == 2
        assert len(result.ids) == 150
        assert len(set(result.ids)) == 150
        assert not result.exhausted

    def test_newest_first(self):
        result = PagedFetcher(FakeSource(_issues(5))).list_ids()
        assert result.ids == ["5", "4", "3", "2", "1"]

    def test_full_last_page_requests_one_more(self):
        source = FakeSource(_issues(200))
        PagedFetcher(source).list_ids()
        assert source.pages_requested == [0, 1, 2]

    def test_limit_stops_early(self):
        source = FakeSource(_issues(250))
        result = PagedFetcher(source).list_ids(limit=120)
        assert len(result.ids) == 120
        assert source.pages_requested == [0, 1]

    def test_filters_excluded_items(self):
        source = FakeSource(_issues(5))
        source.pull_requests = {"2", "4"}
        result = PagedFetcher(source).list_ids()
        assert result.ids == ["5", "3", "1"]

    def test_records_updated_at(self):
        result = PagedFetcher(FakeSource(_issues(2))).list_ids()
        assert result.updated_at["2"] > result.updated_at["1"]

    def test_exhaustion_returns_partial(self):
        source = FakeSource(_issues(150))
        original = source.list_page
        error = CredentialsExhaustedError(BASE_TIME)

        def list_page(page, since=None):
            if page == 1:
                raise error
            return original(page, since)

        source.list_page = list_page
        result = PagedFetcher(source).list_ids()

        assert len(result.ids) == 100
        assert result.exhausted
        assert result.error is error


class TestFetchDetails:
    def test_batch_size_depends_on_authentication(self):
        assert PagedFetcher(FakeSource([])).batch_size == DETAIL_BATCH_SIZE
        assert PagedFetcher(FakeSource([], authenticated=False)).batch_size == ANONYMOUS_BATCH_SIZE

    def test_skips_existing_ids(self):
        items = _issues(5)
        source = FakeSource(items)
        existing = {"1": items[0], "2": items[1]}

        result = PagedFetcher(source).fetch_details(["5", "4", "3", "2", "1"], existing)

        assert sorted(source.details_requested) == ["3", "4", "5"]
        assert [i.source_id for i in result.items] == ["5", "4", "3"]
        assert result.reused == 2

    def test_checkpoint_after_every_batch(self):
        source = FakeSource(_issues(25))
        checkpoint = MagicMock()

        result = PagedFetcher(source, batch_size=10).fetch_details(
            [str(n) for n in range(1, 26)], on_batch_complete=checkpoint
        )

        assert checkpoint.call_count == 3
        assert [len(c.args[0]) for c in checkpoint.call_args_list] == [10, 10, 5]
        assert len(result.items) == 25

    def test_not_found_skipped(self):
        source = FakeSource(_issues(3))
        original = source.fetch_detail

        def fetch_detail(item_id):
            if item_id == "2":
                raise UnknownObjectException(404, None, {})
            return original(item_id)

        source.fetch_detail = fetch_detail
        result = PagedFetcher(source).fetch_details(["1", "2", "3"])

        assert [i.source_id for i in result.items] == ["1", "3"]
        assert result.missing == ["2"]
        assert not result.exhausted

    def test_other_errors_skipped_and_reported(self):
        source = FakeSource(_issues(2))
        original = source.fetch_detail

        def fetch_detail(item_id):
            if item_id == "1":
                raise GithubException(500, None, {})
            return original(item_id)

        source.fetch_detail = fetch_detail
        result = PagedFetcher(source).fetch_details(["1", "2"])

        assert result.failed == ["1"]
        assert [i.source_id for i in result.items] == ["2"]

    def test_connection_error_keeps_batch_siblings(self):
        source = FakeSource(_issues(3))
        original = source.fetch_detail

        def fetch_detail(item_id):
            if item_id == "2":
                raise requests.ConnectionError("connection reset")
            return original(item_id)

        source.fetch_detail = fetch_detail
        checkpoints = []
        result = PagedFetcher(source).fetch_details(["3", "2", "1"], on_batch_complete=checkpoints.append)

        assert result.failed == ["2"]
        assert [i.source_id for i in result.items] == ["3", "1"]
        assert [[i.source_id for i in batch] for batch in checkpoints] == [["3", "1"]]

    def test_exhaustion_stops_after_current_batch(self):
        source = FakeSource(_issues(6))
        original = source.fetch_detail

        def fetch_detail(item_id):
            if item_id == "3":
                raise CredentialsExhaustedError(BASE_TIME)
            return original(item_id)

        source.fetch_detail = fetch_detail
        checkpoint = MagicMock()
        result = PagedFetcher(source, batch_size=3).fetch_details(
            ["1", "2", "3", "4", "5", "6"], on_batch_complete=checkpoint
        )

        assert result.exhausted
        assert [i.source_id for i in result.items] == ["1", "2"]
        checkpoint.assert_called_once()
        assert "4" not in source.details_requested
