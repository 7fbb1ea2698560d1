"""
Repository: the event history.

This file owns the ordered list of received events and the id index over
it. It knows nothing about feeds or health delays; business rules live in
`service_events.py`.

Important notes:
- Every record's `index` equals its position. `append` and `purge` keep
  that true before they return.
- Every mutation rewrites the whole history file through `db`. A failed
  write is logged and swallowed: memory stays authoritative and the next
  mutation tries again.
"""

import logging
import secrets
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from db import read_history, write_history
from models import Event, WebHookPayload

logger = logging.getLogger("history")


def new_event_id() -> str:
    return secrets.token_urlsafe(12)


class HistoryRepo:
    """In-memory history plus its on-disk copy.

    Responsibilities:
    - Assign id, timestamp and index to new events
    - Keep `records` and the id index consistent
    - Persist after each mutation
    """

    def __init__(self, history_file: str):
        self.history_file = history_file
        self._records: List[Event] = []
        self._by_id: Dict[str, Event] = {}

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> Sequence[Event]:
        """Read-only view in chronological order."""

        return tuple(self._records)

    def get(self, event_id: str) -> Optional[Event]:
        return self._by_id.get(event_id)

    def load(self) -> None:
        """Replace in-memory history with the persisted document.

        A missing file means no events have been received yet. An
        unreadable file is logged and treated the same way. Records that
        fail validation are logged and skipped one by one so the rest of
        the history survives.
        """

        try:
            rows = read_history(self.history_file)
        except (OSError, ValueError) as e:
            logger.warning(f"History file {self.history_file} cannot be read. {e}")
            logger.warning("Starting with empty history")
            rows = []

        records = []
        for position, row in enumerate(rows):
            try:
                records.append(Event.model_validate(row))
            except ValidationError as e:
                logger.warning(f"Skipping unreadable history record {position}: {e}")
        if len(records) != len(rows):
            logger.warning(f"Loaded {len(records)} of {len(rows)} history records")
        self.replace(records)

    def replace(self, records: Sequence[Event]) -> None:
        """Install `records` as the whole history, renumbering indices."""

        self._records = list(records)
        self._by_id = {}
        for position, event in enumerate(self._records):
            event.index = position
            self._by_id[event.id] = event

    def append(self, payload: WebHookPayload, timestamp: int) -> Event:
        """Wrap `payload` in a new record at the end of history.

        Persisting is left to the caller so the write happens once the
        event has been classified (and possibly purged).
        """

        event = Event(
            id=new_event_id(),
            timestamp=timestamp,
            index=len(self._records),
            event=payload,
        )
        self._records.append(event)
        self._by_id[event.id] = event
        return event

    def purge(self, *indices: int) -> bool:
        """Remove records by index, e.g. a HealthRestored and the Health it clears.

        Records are removed highest index first so the lower indices still
        point at the right records. Returns False (and changes nothing) unless
        at least two distinct, in-bounds indices are given.
        """

        ordered = sorted(indices, reverse=True)
        size = len(self._records)
        if (
            len(ordered) < 2
            or ordered[-1] < 0
            or ordered[0] >= size
            or len(set(ordered)) != len(ordered)
        ):
            names = " and ".join(str(i) for i in indices)
            logger.error(f"Cannot purge history records {names}, history has {size} records")
            return False

        for index in ordered:
            removed = self._records.pop(index)
            self._by_id.pop(removed.id, None)

        for position in range(ordered[-1], len(self._records)):
            event = self._records[position]
            event.index = position
            if self._by_id.get(event.id) is not event:
                logger.error(f"History id index out of step for event {event.id}, repairing")
                self._by_id[event.id] = event
        return True

    def add(self, event: Event) -> Event:
        """Re-append an existing record (offline replay), keeping id and timestamp."""

        event.index = len(self._records)
        self._records.append(event)
        self._by_id[event.id] = event
        return event

    def dump(self) -> List[Dict[str, Any]]:
        return [event.model_dump(mode="json", by_alias=True, exclude_none=True) for event in self._records]

    def persist(self) -> bool:
        """Write the whole history to disk. Returns False if the write failed."""

        rows = self.dump()
        try:
            write_history(self.history_file, rows)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to write history file {self.history_file}. {e}")
            return False
        return True
