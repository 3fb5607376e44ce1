"""File-backed cache of fetched signals, one JSON file per collection."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from triagekit.chat.export import parse_messages
from triagekit.errors import SourceSchemaError
from triagekit.models import Signal, Thread, format_timestamp, parse_timestamp, utcnow

logger = logging.getLogger(__name__)


def write_json_atomic(path: Path, data: dict) -> None:
    """Write JSON to a temporary sibling, then replace `path` in one step."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _id_sort_key(signal: Signal) -> tuple:
    sid = signal.source_id
    return (sid.isdigit(), int(sid) if sid.isdigit() else 0, sid)


@dataclass
class Collection:
    """A cached collection.

    `incomplete` is set while a sync that started from `resume_since` has
    not finished; the next sync lists from that cursor again instead of
    from the newest cached item.
    """

    items: list[Signal] = field(default_factory=list)
    fetched_at: datetime | None = None
    incomplete: bool = False
    resume_since: datetime | None = None

    @property
    def total_count(self) -> int:
        return len(self.items)

    def by_id(self) -> dict[str, Signal]:
        return {item.source_id: item for item in self.items}


class SignalStore:
    """Persisted, mergeable signal collections under one directory.

    Usage:
        store = SignalStore(Path(".triagekit"))
        cached = store.load("issues")
        merged = store.merge(cached.items, new_items)
        store.save("issues", merged)
    """

    def __init__(self, directory: Path) -> None:
        self._directory = Path(directory)

    def path_for(self, name: str) -> Path:
        return self._directory / f"{name}.json"

    def load(self, name: str) -> Collection:
        """Load a collection. Missing or unreadable files load as empty."""
        path = self.path_for(name)
        if not path.exists():
            return Collection()

        try:
            data = json.loads(path.read_text())
            if not isinstance(data, dict):
                raise SourceSchemaError("cache root is not an object")
            resume = data.get("resume")
            return Collection(
                items=self._items_from(data),
                fetched_at=parse_timestamp(data.get("fetched_at")),
                incomplete=isinstance(resume, dict),
                resume_since=parse_timestamp(resume.get("since")) if isinstance(resume, dict) else None,
            )
        except (OSError, ValueError, KeyError, TypeError, SourceSchemaError) as e:
            logger.warning(f"Ignoring unreadable cache {path}, doing a full fetch: {e}")
            return Collection()

    def save(
        self,
        name: str,
        items: list[Signal],
        fetched_at: datetime | None = None,
        incomplete: bool = False,
        resume_since: datetime | None = None,
    ) -> Path:
        """Rewrite a collection. With `incomplete`, the resume cursor is stored too."""
        path = self.path_for(name)
        data = {
            "fetched_at": format_timestamp(fetched_at or utcnow()),
            "total_count": len(items),
            "items": [item.to_dict() for item in items],
        }
        if incomplete:
            data["resume"] = {"since": format_timestamp(resume_since)}
        write_json_atomic(path, data)
        return path

    def load_units(self, name: str) -> list[Thread]:
        """Load a chat collection as classification units (threads and standalones)."""
        threads, standalone = self.organize_by_thread(self.load(name).items)
        return list(threads.values()) + [Thread.standalone(m) for m in standalone]

    @staticmethod
    def merge(existing: list[Signal], new_items: list[Signal]) -> list[Signal]:
        """Merge by id, later entries winning, sorted by descending id."""
        merged: dict[str, Signal] = {}
        for item in existing:
            merged[item.source_id] = item
        for item in new_items:
            merged[item.source_id] = item
        return sorted(merged.values(), key=_id_sort_key, reverse=True)

    @staticmethod
    def most_recent_update(items: list[Signal]) -> datetime | None:
        """Latest created or updated timestamp across all items."""
        latest = None
        for item in items:
            for moment in (item.created_at, item.updated_at):
                if moment and (latest is None or moment > latest):
                    latest = moment
        return latest

    @staticmethod
    def organize_by_thread(messages: list[Signal]) -> tuple[dict[str, Thread], list[Signal]]:
        """Split messages into threads (oldest message first) and standalone messages."""
        threads: dict[str, Thread] = {}
        standalone: list[Signal] = []

        for message in messages:
            thread_id = message.thread_id
            if not thread_id:
                standalone.append(message)
                continue
            if thread_id not in threads:
                name = message.metadata.get("thread_name") or f"Thread {thread_id}"
                threads[thread_id] = Thread(thread_id=thread_id, name=name)
            threads[thread_id].messages.append(message)

        for thread in threads.values():
            thread.messages.sort(key=lambda m: m.created_at)
        standalone.sort(key=lambda m: m.created_at)
        return threads, standalone

    def _items_from(self, data: dict) -> list[Signal]:
        if "items" in data:
            return [Signal.from_dict(item) for item in data["items"]]

        # Older chat caches stored raw messages, flat or split by thread
        raw_messages = list(data.get("messages") or [])
        raw_messages += data.get("main_messages") or []
        for thread in (data.get("threads") or {}).values():
            raw_messages += thread.get("messages", [])
        if not raw_messages and "messages" not in data and "threads" not in data:
            raise SourceSchemaError("cache has no items")
        logger.info(f"Converting {len(raw_messages)} messages from legacy cache format")
        return parse_messages(raw_messages, data.get("channel_id"))
