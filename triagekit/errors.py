"""Exception types raised by triagekit."""

from __future__ import annotations

from datetime import datetime


class TriagekitError(Exception):
    """Base class for triagekit errors."""


class NoCredentialsError(TriagekitError):
    """Raised when a credential pool is built with nothing usable."""


class CredentialsExhaustedError(TriagekitError):
    """Every configured credential is out of quota.

    `reset_at` is the earliest moment any credential regains quota, or None
    if no reset time is known.
    """

    def __init__(self, reset_at: datetime | None = None) -> None:
        self.reset_at = reset_at
        if reset_at:
            message = f"All credentials exhausted, try again after {reset_at.isoformat()}"
        else:
            message = "All credentials exhausted"
        super().__init__(message)


class SourceSchemaError(TriagekitError):
    """A source response or export record is missing a required field."""


class EmbeddingError(TriagekitError):
    """The embedding provider failed to produce vectors."""
