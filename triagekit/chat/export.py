"""Parse chat-platform message exports into Signals.

Exports are JSON files in the Discord message shape: a list of messages, or
an object with a `messages` list. Each message needs `id`, `content` and a
creation timestamp (`created_at` or `timestamp`); messages posted inside a
thread carry `thread: {id, name}`.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from triagekit.errors import SourceSchemaError
from triagekit.models import Signal, parse_timestamp

logger = logging.getLogger(__name__)


def _permalink(raw: dict, channel_id: str | None) -> str:
    if raw.get("url"):
        return raw["url"]
    guild_id = raw.get("guild_id")
    if guild_id and channel_id:
        return f"https://discord.com/channels/{guild_id}/{channel_id}/{raw['id']}"
    return ""


def parse_message(raw: dict, channel_id: str | None = None) -> Signal:
    """Convert one exported message into a chat Signal."""
    if not isinstance(raw, dict):
        raise SourceSchemaError(f"Expected a message object, got {type(raw).__name__}")
    if not raw.get("id"):
        raise SourceSchemaError("Message is missing required field 'id'")
    created = raw.get("created_at") or raw.get("timestamp")
    if not created:
        raise SourceSchemaError(f"Message {raw['id']} has no creation timestamp")

    author = raw.get("author")
    if isinstance(author, dict):
        author = author.get("username") or author.get("id")
    thread = raw.get("thread") or {}
    channel_id = raw.get("channel_id") or channel_id

    return Signal(
        source="chat",
        source_id=str(raw["id"]),
        title=thread.get("name") or "",
        body=raw.get("content") or "",
        permalink=_permalink(raw, channel_id),
        created_at=parse_timestamp(created),
        updated_at=parse_timestamp(raw.get("edited_at")),
        metadata={
            "author": author,
            "channel_id": channel_id,
            "channel_name": raw.get("channel_name"),
            "thread_id": str(thread["id"]) if thread.get("id") else None,
            "thread_name": thread.get("name"),
        },
    )


def parse_messages(raw_messages: list, channel_id: str | None = None) -> list[Signal]:
    """Parse a list of exported messages, skipping (and logging) malformed ones."""
    signals = []
    for raw in raw_messages:
        try:
            signals.append(parse_message(raw, channel_id))
        except SourceSchemaError as e:
            logger.warning(f"Skipping malformed message: {e}")
    return signals


def load_export(path: Path, channel_id: str | None = None) -> list[Signal]:
    """Read a chat export file.

    Raises:
        SourceSchemaError: if the file is not a message list or an object
            holding one.
    """
    data = json.loads(Path(path).read_text())
    if isinstance(data, dict):
        channel_id = channel_id or data.get("channel_id")
        data = data.get("messages")
    if not isinstance(data, list):
        raise SourceSchemaError(f"{path} does not contain a list of messages")

    signals = parse_messages(data, channel_id)
    logger.info(f"Parsed {len(signals)}/{len(data)} messages from {path}")
    return signals
