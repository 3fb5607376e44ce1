"""Credential pool with rate-limit tracking and rotation.

Holds static personal access tokens and GitHub App installations. An
installation mints short-lived tokens on demand; the pool caches each minted
token until shortly before it expires. Installations are always preferred
over static tokens because their quota scales with the installation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

from github import Auth, GithubIntegration

from triagekit.config import Config
from triagekit.errors import NoCredentialsError
from triagekit.models import Credential, utcnow

logger = logging.getLogger(__name__)

# Re-mint installation tokens this long before GitHub expires them
TOKEN_EXPIRY_MARGIN = timedelta(minutes=2)

Minter = Callable[[], "tuple[str, datetime | None]"]


class InstallationMinter:
    """Mints installation access tokens for one GitHub App installation."""

    def __init__(self, app_id: str, private_key: str, installation_id: str) -> None:
        self._integration = GithubIntegration(auth=Auth.AppAuth(int(app_id), private_key))
        self._installation_id = int(installation_id)

    def __call__(self) -> tuple[str, datetime | None]:
        authorization = self._integration.get_access_token(self._installation_id)
        return authorization.token, authorization.expires_at

    @classmethod
    def from_config(cls, config: Config) -> InstallationMinter | None:
        if not config.has_github_app:
            return None
        private_key = Path(config.github_app_private_key_path).read_text()
        return cls(config.github_app_id, private_key, config.github_app_installation_id)


@dataclass
class _Installation:
    identifier: str
    minter: Minter
    credential: Credential | None = None


class CredentialPool:
    """Selects and rotates API credentials based on remaining quota.

    Usage:
        pool = CredentialPool(tokens=["ghp_a", "ghp_b"])
        credential = pool.current()
        ...
        pool.record_usage(credential, remaining=4999, ceiling=5000, reset_at=1700000000)
        credential = pool.next()  # None once everything is exhausted
    """

    def __init__(
        self,
        tokens: list[str] | None = None,
        installations: list[tuple[str, Minter]] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._clock = clock
        self._tokens = [
            Credential(identifier=f"token:{i + 1}", kind="token", token=token.strip())
            for i, token in enumerate(t for t in (tokens or []) if t and t.strip())
        ]
        self._installations = [
            _Installation(identifier=f"installation:{name}", minter=minter)
            for name, minter in (installations or [])
        ]
        if not self._tokens and not self._installations:
            raise NoCredentialsError("No valid GitHub tokens or GitHub App installations provided")

        self._token_index = 0
        self._active: Credential | None = None
        logger.info(
            f"Credential pool initialized with {len(self._tokens)} token(s) "
            f"and {len(self._installations)} installation(s)"
        )

    @classmethod
    def from_config(cls, config: Config) -> CredentialPool:
        installations: list[tuple[str, Minter]] = []
        minter = InstallationMinter.from_config(config)
        if minter is not None:
            installations.append((config.github_app_installation_id, minter))
        return cls(tokens=config.github_tokens, installations=installations)

    @property
    def credentials(self) -> list[Credential]:
        """Every credential known so far (minted installations, then tokens)."""
        minted = [i.credential for i in self._installations if i.credential is not None]
        return minted + self._tokens

    def current(self) -> Credential:
        """Return the primary usable credential, preferring installations."""
        if self._active is not None and not self._is_expired(self._active):
            return self._active

        for installation in self._installations:
            credential = self._mint(installation)
            if credential is not None:
                self._active = credential
                return credential

        if not self._tokens:
            raise NoCredentialsError("No static tokens and every installation failed to refresh")
        self._active = self._tokens[self._token_index]
        return self._active

    def next(self) -> Credential | None:
        """Find a credential with remaining quota, installations first.

        Returns None only when every credential is exhausted.
        """
        now = self._clock()

        for installation in self._installations:
            credential = self._mint(installation)
            if credential is None:
                continue
            if credential.has_quota(now):
                self._active = credential
                return credential
            logger.warning(
                f"{credential.identifier} exhausted, resets in {self._minutes_until(credential.reset_at)} min"
            )

        for offset in range(len(self._tokens)):
            index = (self._token_index + offset) % len(self._tokens)
            credential = self._tokens[index]
            if credential.has_quota(now):
                self._token_index = index
                self._active = credential
                return credential
            logger.warning(
                f"{credential.identifier} exhausted, resets in {self._minutes_until(credential.reset_at)} min"
            )

        reset_at = self.earliest_reset()
        if reset_at:
            logger.warning(
                f"All credentials exhausted, next reset in ~{self._minutes_until(reset_at)} min"
            )
        else:
            logger.warning("All credentials exhausted")
        return None

    def record_usage(
        self,
        credential: Credential,
        remaining: int,
        ceiling: int,
        reset_at: datetime | int | float,
    ) -> None:
        """Update a credential from an API response's rate-limit headers."""
        if isinstance(reset_at, (int, float)):
            reset_at = datetime.fromtimestamp(reset_at, tz=timezone.utc)
        credential.ceiling = max(int(ceiling), 0)
        credential.remaining = min(max(int(remaining), 0), credential.ceiling)
        credential.reset_at = reset_at
        credential.last_used = self._clock()
        logger.debug(
            f"{credential.identifier}: {credential.remaining}/{credential.ceiling} remaining"
        )

    def mark_exhausted(self, credential: Credential, reset_at: datetime | None = None) -> None:
        credential.remaining = 0
        if reset_at is not None:
            credential.reset_at = reset_at

    def earliest_reset(self) -> datetime | None:
        return min((c.reset_at for c in self.credentials), default=None)

    def status(self) -> list[dict]:
        """Per-credential quota summary for display."""
        return [
            {
                "identifier": c.identifier,
                "kind": c.kind,
                "remaining": c.remaining,
                "ceiling": c.ceiling,
                "reset_in_minutes": self._minutes_until(c.reset_at),
            }
            for c in self.credentials
        ]

    def _mint(self, installation: _Installation) -> Credential | None:
        """Return a fresh installation credential, minting if needed.

        A failed refresh is logged and reported as None so callers fall back
        to static tokens; the next call tries the installation again.
        """
        cached = installation.credential
        if cached is not None and not self._is_expired(cached):
            return cached

        try:
            token, expires_at = installation.minter()
        except Exception as e:
            logger.warning(
                f"Failed to refresh {installation.identifier}, falling back to static tokens: {e}"
            )
            return None

        if cached is None:
            cached = Credential(identifier=installation.identifier, kind="installation")
            installation.credential = cached
        cached.token = token
        cached.expires_at = expires_at
        cached.last_used = self._clock()
        return cached

    def _is_expired(self, credential: Credential) -> bool:
        if not credential.is_installation or credential.expires_at is None:
            return False
        return self._clock() >= credential.expires_at - TOKEN_EXPIRY_MARGIN

    def _minutes_until(self, moment: datetime) -> int:
        seconds = (moment - self._clock()).total_seconds()
        return max(0, int(-(-seconds // 60)))
