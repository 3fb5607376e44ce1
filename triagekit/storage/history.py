"""Classification history file: per-unit status and matches."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from triagekit.errors import SourceSchemaError
from triagekit.models import ClassificationRecord, format_timestamp, utcnow
from triagekit.storage.cache import write_json_atomic

logger = logging.getLogger(__name__)

HISTORY_FILENAME = "classification-history.json"


class HistoryStore:
    """Reads and rewrites the whole classification history file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> dict[str, ClassificationRecord]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
            units = data["units"]
            if not isinstance(units, dict):
                raise SourceSchemaError("'units' is not an object")
        except (OSError, ValueError, KeyError, TypeError, SourceSchemaError) as e:
            logger.warning(f"Ignoring unreadable classification history {self.path}: {e}")
            return {}

        records: dict[str, ClassificationRecord] = {}
        for unit_id, entry in units.items():
            try:
                records[unit_id] = ClassificationRecord.from_dict(unit_id, entry)
            except (SourceSchemaError, AttributeError, TypeError, ValueError) as e:
                logger.warning(f"Dropping unreadable history entry {unit_id}: {e}")
        return records

    def save(self, records: dict[str, ClassificationRecord]) -> None:
        write_json_atomic(
            self.path,
            {
                "last_updated": format_timestamp(utcnow()),
                "units": {unit_id: record.to_dict() for unit_id, record in records.items()},
            },
        )
