"""Thin wrapper around PyGithub for rate-limited, multi-credential access."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, TypeVar

from github import Auth, Github
from github.GithubException import GithubException, RateLimitExceededException
from github.Issue import Issue
from github.Repository import Repository

from triagekit.errors import CredentialsExhaustedError
from triagekit.github.credentials import CredentialPool
from triagekit.models import Credential, ListedItem, Signal, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

PAGE_SIZE = 100
MAX_RETRIES = 3
RETRY_BASE_DELAY = 2.0  # seconds, doubled per 5xx retry
ROTATION_DELAY = 1.0  # seconds to pause after switching credentials
COMMENT_LIMIT = 20


def _is_quota_error(error: GithubException) -> bool:
    if isinstance(error, RateLimitExceededException) or error.status == 429:
        return True
    if error.status != 403:
        return False
    headers = error.headers or {}
    if headers.get("x-ratelimit-remaining") == "0" or "retry-after" in headers:
        return True
    message = str(error.data.get("message", "")) if isinstance(error.data, dict) else ""
    return "rate limit" in message.lower()


def _reset_from_headers(headers: dict | None) -> datetime | None:
    headers = headers or {}
    retry_after = headers.get("retry-after")
    if retry_after and str(retry_after).isdigit():
        return utcnow() + timedelta(seconds=int(retry_after))
    reset = headers.get("x-ratelimit-reset")
    if reset and str(reset).isdigit():
        return datetime.fromtimestamp(int(reset), tz=timezone.utc)
    return None


class GitHubClient:
    """GitHub client scoped to a single repository, backed by a credential pool.

    Every API access goes through `call()`, which runs the callable under the
    pool's current credential, records the rate-limit headers of the response,
    rotates to another credential on quota errors and retries server errors.
    Without a pool the client is anonymous and simply surfaces exhaustion.

    Usage:
        client = GitHubClient(repo="owner/repo", pool=CredentialPool(tokens=[...]))
        issue = client.call(lambda repo: repo.get_issue(42))
    """

    def __init__(
        self,
        repo: str,
        pool: CredentialPool | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._repo_name = repo
        self._pool = pool
        self._sleep = sleep
        self._clients: dict[str, Github] = {}
        self._lock = threading.Lock()

    @property
    def authenticated(self) -> bool:
        return self._pool is not None

    @property
    def repo_name(self) -> str:
        return self._repo_name

    def call(self, fn: Callable[[Repository], T]) -> T:
        """Run `fn` against the repository with rotation and retries."""
        server_errors = 0
        rotations = 0
        while True:
            credential = self._select()
            gh = self._github(credential)
            try:
                result = fn(gh.get_repo(self._repo_name, lazy=True))
            except GithubException as e:
                if _is_quota_error(e):
                    rotations += 1
                    self._handle_quota_error(credential, e, rotations)
                    continue
                if e.status is not None and e.status >= 500 and server_errors < MAX_RETRIES:
                    server_errors += 1
                    delay = RETRY_BASE_DELAY * (2 ** (server_errors - 1))
                    logger.warning(
                        f"GitHub returned {e.status}, retrying in {delay:.0f}s "
                        f"(attempt {server_errors}/{MAX_RETRIES})"
                    )
                    self._sleep(delay)
                    continue
                raise
            self._record(credential, gh)
            return result

    def close(self) -> None:
        with self._lock:
            for gh in self._clients.values():
                gh.close()
            self._clients.clear()

    def _select(self) -> Credential | None:
        if self._pool is None:
            return None
        with self._lock:
            credential = self._pool.current()
            if credential.has_quota():
                return credential
            credential = self._pool.next()
            if credential is None:
                raise CredentialsExhaustedError(self._pool.earliest_reset())
            return credential

    def _github(self, credential: Credential | None) -> Github:
        key = credential.token if credential else ""
        with self._lock:
            gh = self._clients.get(key)
            if gh is None:
                # retry=None: rotation and 5xx retries happen in call()
                if credential is None:
                    gh = Github(per_page=PAGE_SIZE, retry=None)
                else:
                    gh = Github(auth=Auth.Token(credential.token), per_page=PAGE_SIZE, retry=None)
                self._clients[key] = gh
            return gh

    def _record(self, credential: Credential | None, gh: Github) -> None:
        if credential is None or self._pool is None:
            return
        remaining, ceiling = gh.rate_limiting
        if ceiling < 0:
            return
        with self._lock:
            self._pool.record_usage(credential, remaining, ceiling, gh.rate_limiting_resettime)

    def _handle_quota_error(
        self, credential: Credential | None, error: GithubException, rotations: int
    ) -> None:
        reset_at = _reset_from_headers(error.headers)
        if self._pool is None or credential is None:
            logger.warning("Anonymous GitHub rate limit reached")
            raise CredentialsExhaustedError(reset_at) from error

        with self._lock:
            self._pool.mark_exhausted(credential, reset_at)
            replacement = self._pool.next()
            if replacement is None or rotations > len(self._pool.credentials) + MAX_RETRIES:
                raise CredentialsExhaustedError(self._pool.earliest_reset()) from error

        logger.warning(
            f"Rate limited on {credential.identifier}, switching to {replacement.identifier}"
        )
        self._sleep(ROTATION_DELAY)


class IssueSource:
    """Paged access to a repository's issues (open and closed), pull requests excluded."""

    page_size = PAGE_SIZE

    def __init__(self, client: GitHubClient, comment_limit: int = COMMENT_LIMIT) -> None:
        self._client = client
        self._comment_limit = comment_limit

    @property
    def authenticated(self) -> bool:
        return self._client.authenticated

    def list_page(self, page: int, since: datetime | None = None) -> list[ListedItem]:
        """Fetch one page (0-based) of issues, most recently updated first."""
        kwargs = {"state": "all", "sort": "updated", "direction": "desc"}
        if since is not None:
            kwargs["since"] = since

        def fetch(repo: Repository) -> list[ListedItem]:
            return [
                ListedItem(
                    id=str(issue.number),
                    updated_at=issue.updated_at,
                    included=issue.pull_request is None,
                )
                for issue in repo.get_issues(**kwargs).get_page(page)
            ]

        return self._client.call(fetch)

    def fetch_detail(self, item_id: str) -> Signal:
        return self._client.call(lambda repo: self._to_signal(repo.get_issue(int(item_id))))

    def _to_signal(self, issue: Issue) -> Signal:
        comments = []
        for comment in issue.get_comments():
            if len(comments) >= self._comment_limit:
                break
            if comment.body:
                comments.append(
                    {"author": comment.user.login if comment.user else None, "body": comment.body}
                )

        return Signal(
            source="tracker",
            source_id=str(issue.number),
            title=issue.title or "",
            body=issue.body or "",
            permalink=issue.html_url,
            created_at=issue.created_at,
            updated_at=issue.updated_at,
            metadata={
                "number": issue.number,
                "state": issue.state,
                "labels": [label.name for label in issue.labels],
                "author": issue.user.login if issue.user else None,
                "comments": comments,
                "closed_at": issue.closed_at.isoformat() if issue.closed_at else None,
            },
        )
