from __future__ import annotations

import json
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

from .config import logger
from .ctftime import event_finish
from .errors import PersistenceError


class JsonCollection:
    """A JSON array of records rewritten whole on every mutation.

    A missing or unreadable file reads as an empty collection. Write failures
    raise :class:`PersistenceError`.
    """

    def __init__(self, path: str, key: str):
        self.path = path
        self.key = key

    def load(self) -> List[Dict[str, Any]]:
        try:
            if not os.path.exists(self.path):
                return []
            with open(self.path, "r") as f:
                data = json.load(f)
        except Exception as e:
            logger.error(f"Could not load {self.path}: {e}")
            return []
        if not isinstance(data, list):
            logger.error(f"Ignoring {self.path}: expected a JSON array")
            return []
        return [r for r in data if isinstance(r, dict) and self.key in r]

    def save(self, records: List[Dict[str, Any]]) -> None:
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            tmp_path = f"{self.path}.tmp"
            with open(tmp_path, "w") as f:
                json.dump(records, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise PersistenceError(f"Could not save {self.path}: {e}") from e
        logger.debug(f"Saved {len(records)} records to {self.path}")

    def get(self, record_id: Any) -> Optional[Dict[str, Any]]:
        for record in self.load():
            if record.get(self.key) == record_id:
                return record
        return None

    def upsert(self, record: Dict[str, Any]) -> None:
        records = [r for r in self.load() if r.get(self.key) != record[self.key]]
        records.append(record)
        self.save(records)

    def remove(self, record_id: Any) -> bool:
        records = self.load()
        kept = [r for r in records if r.get(self.key) != record_id]
        if len(kept) == len(records):
            return False
        self.save(kept)
        return True


class ReminderStore(JsonCollection):
    """Scheduled CTFtime reminders keyed by event id."""

    def __init__(self, path: str):
        super().__init__(path, key="id")

    def get_scheduled_events(self) -> List[Dict[str, Any]]:
        return self.load()

    def is_event_scheduled(self, event_id: int) -> bool:
        record = self.get(event_id)
        return bool(record and record.get("scheduled"))

    def mark_event_scheduled(self, event: Dict[str, Any]) -> None:
        existing = self.get(event["id"])
        notified = bool(existing and existing.get("notified"))
        self.upsert({**event, "scheduled": True, "notified": notified})

    def mark_event_notified(self, event_id: int) -> None:
        records = self.load()
        for record in records:
            if record.get("id") == event_id:
                record["scheduled"] = True
                record["notified"] = True
                self.save(records)
                return

    def cleanup_finished_events(self, now: datetime) -> int:
        """Drop reminders whose contest already finished; returns how many were dropped."""
        records = self.load()
        active = []
        for record in records:
            try:
                if event_finish(record) > now:
                    active.append(record)
            except (KeyError, ValueError, AttributeError):
                logger.warning(f"Dropping reminder with unreadable finish time: {record.get('id')}")
        removed = len(records) - len(active)
        if removed:
            self.save(active)
            logger.info(f"Removed {removed} finished events from {self.path}")
        return removed


class SessionStore(JsonCollection):
    """Active tracking sessions keyed by chat id."""

    def __init__(self, path: str):
        super().__init__(path, key="chat_id")

    def load_sessions(self) -> List[Dict[str, Any]]:
        return self.load()

    def save_session(self, record: Dict[str, Any]) -> None:
        self.upsert(record)

    def remove_session(self, chat_id: int) -> bool:
        return self.remove(chat_id)

    def has_session(self, chat_id: int) -> bool:
        return self.get(chat_id) is not None
