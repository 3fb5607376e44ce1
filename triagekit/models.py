"""Core data models for triagekit."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from triagekit.errors import SourceSchemaError

DEFAULT_QUOTA = 5000  # GitHub's hourly quota for an authenticated token
QUOTA_WINDOW = timedelta(hours=1)

# Classification lifecycle
PENDING = "pending"
CLASSIFYING = "classifying"
COMPLETED = "completed"
FAILED = "failed"
UNIT_STATUSES = (PENDING, CLASSIFYING, COMPLETED, FAILED)

# Group export lifecycle
EXPORT_PENDING = "pending"
EXPORTED = "exported"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse an ISO 8601 timestamp (or pass a datetime through) as aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError as e:
            raise SourceSchemaError(f"Invalid timestamp: {value!r}") from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class Credential:
    identifier: str  # "token:1", "installation:12345"
    kind: str  # "token" | "installation"
    token: str = ""
    remaining: int = DEFAULT_QUOTA
    ceiling: int = DEFAULT_QUOTA
    reset_at: datetime = field(default_factory=lambda: utcnow() + QUOTA_WINDOW)
    last_used: datetime | None = None
    expires_at: datetime | None = None  # installation tokens only

    @property
    def is_installation(self) -> bool:
        return self.kind == "installation"

    def refresh_quota(self, now: datetime | None = None) -> None:
        """Restore the full quota once the reset time has passed."""
        now = now or utcnow()
        if now >= self.reset_at:
            self.remaining = self.ceiling
            self.reset_at = now + QUOTA_WINDOW

    def has_quota(self, now: datetime | None = None) -> bool:
        self.refresh_quota(now)
        return self.remaining > 0


@dataclass
class ListedItem:
    """A summary row from a list endpoint page."""

    id: str
    updated_at: datetime | None = None
    included: bool = True  # False for rows the source filters out (e.g. pull requests)


@dataclass
class Signal:
    """A single fetched item: a chat message or a tracker work item."""

    source: str  # "chat" | "tracker"
    source_id: str
    title: str
    body: str
    permalink: str
    created_at: datetime
    updated_at: datetime | None = None
    metadata: dict = field(default_factory=dict)

    @property
    def last_activity(self) -> datetime:
        if self.updated_at and self.updated_at > self.created_at:
            return self.updated_at
        return self.created_at

    @property
    def thread_id(self) -> str | None:
        return self.metadata.get("thread_id") or None

    @property
    def labels(self) -> list[str]:
        return list(self.metadata.get("labels", []))

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "source_id": self.source_id,
            "title": self.title,
            "body": self.body,
            "permalink": self.permalink,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Signal:
        """Build a Signal from its serialized form. Unknown keys are ignored."""
        if not isinstance(data, dict):
            raise SourceSchemaError(f"Expected an object, got {type(data).__name__}")
        for required in ("source", "source_id", "created_at"):
            if data.get(required) in (None, ""):
                raise SourceSchemaError(f"Signal is missing required field '{required}'")
        return cls(
            source=str(data["source"]),
            source_id=str(data["source_id"]),
            title=data.get("title") or "",
            body=data.get("body") or "",
            permalink=data.get("permalink") or "",
            created_at=parse_timestamp(data["created_at"]),
            updated_at=parse_timestamp(data.get("updated_at")),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class Thread:
    """A conversation unit: messages sharing a thread id, oldest first.

    A message outside any thread becomes a standalone Thread whose id is the
    message id.
    """

    thread_id: str
    name: str
    messages: list[Signal] = field(default_factory=list)
    is_standalone: bool = False

    @classmethod
    def standalone(cls, message: Signal) -> Thread:
        preview = message.body[:50]
        return cls(
            thread_id=message.source_id,
            name=f"Standalone message: {preview}",
            messages=[message],
            is_standalone=True,
        )

    @property
    def message_ids(self) -> list[str]:
        return [m.source_id for m in self.messages]

    @property
    def oldest_at(self) -> datetime | None:
        return min((m.created_at for m in self.messages), default=None)

    @property
    def newest_at(self) -> datetime | None:
        return max((m.created_at for m in self.messages), default=None)

    @property
    def permalink(self) -> str:
        return self.messages[0].permalink if self.messages else ""

    @property
    def text(self) -> str:
        """Messages oldest first as 'author: content'."""
        ordered = sorted(self.messages, key=lambda m: m.created_at)
        parts = []
        for message in ordered:
            author = message.metadata.get("author")
            parts.append(f"{author}: {message.body}" if author else message.body)
        return "\n\n".join(parts)


@dataclass
class MatchRef:
    """A persisted (target, score) pair inside a classification record."""

    target_id: str
    score: float


@dataclass
class Match:
    unit_id: str
    target_id: str
    score: float  # 0-1
    matched_terms: list[str] = field(default_factory=list)

    def to_ref(self) -> MatchRef:
        return MatchRef(target_id=self.target_id, score=self.score)


@dataclass
class ClassificationRecord:
    unit_id: str
    status: str  # one of UNIT_STATUSES
    matches: list[MatchRef] = field(default_factory=list)
    updated_at: datetime = field(default_factory=utcnow)
    message_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "matches": [{"target_id": m.target_id, "score": m.score} for m in self.matches],
            "updated_at": format_timestamp(self.updated_at),
            "message_ids": self.message_ids,
        }

    @classmethod
    def from_dict(cls, unit_id: str, data: dict) -> ClassificationRecord:
        status = data.get("status")
        if status not in UNIT_STATUSES:
            raise SourceSchemaError(f"Unit {unit_id} has unknown status {status!r}")
        matches = [
            MatchRef(target_id=str(m["target_id"]), score=float(m["score"]))
            for m in data.get("matches", [])
            if "target_id" in m and "score" in m
        ]
        return cls(
            unit_id=unit_id,
            status=status,
            matches=matches,
            updated_at=parse_timestamp(data.get("updated_at")) or utcnow(),
            message_ids=[str(i) for i in data.get("message_ids", [])],
        )


@dataclass
class Group:
    """A deduplicated cluster of units intended to become one tracker issue."""

    id: str  # "issue-<target>" or "semantic-<canonical unit>"
    title: str
    unit_ids: list[str] = field(default_factory=list)
    target_ids: list[str] = field(default_factory=list)
    is_cross_cutting: bool = False
    affected_features: list[str] = field(default_factory=list)
    priority: str = "medium"
    similarity: float = 0.0
    canonical_unit_id: str | None = None
    export_status: str = EXPORT_PENDING
    external_id: str | None = None
    external_url: str | None = None
    external_identifier: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    exported_at: datetime | None = None
