"""Stores owned by the delivery queue.

``ActiveItemStore`` holds pending/processing/sent items in memory;
``DeadLetterStore`` persists exhausted items so operator action survives
a restart.  Both are passed into ``DeliveryQueue`` explicitly, giving each
test and each process its own isolated instance.
"""
from __future__ import annotations

import itertools
from collections.abc import Iterator
from datetime import datetime

from sqlalchemy.orm import Session, sessionmaker

from courier.core.constants import ItemStatus
from courier.core.timeutil import ensure_utc
from courier.db.models import DeadLetter
from courier.db.repositories import DeadLetterRepository
from courier.queue.models import AttemptRecord, DeadLetterEntry, QueuedItem


class ActiveItemStore:
    """In-memory map of live queue items keyed by id."""

    def __init__(self) -> None:
        self._items: dict[str, QueuedItem] = {}
        self._seq = itertools.count(1)

    def next_seq(self) -> int:
        return next(self._seq)

    def add(self, item: QueuedItem) -> None:
        self._items[item.id] = item

    def get(self, item_id: str) -> QueuedItem | None:
        return self._items.get(item_id)

    def remove(self, item_id: str) -> QueuedItem | None:
        return self._items.pop(item_id, None)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    def __iter__(self) -> Iterator[QueuedItem]:
        return iter(list(self._items.values()))

    def __len__(self) -> int:
        return len(self._items)

    def ready(self, now: datetime) -> list[QueuedItem]:
        """Pending items eligible at *now*, in delivery order."""
        ready = [
            item
            for item in self._items.values()
            if item.status is ItemStatus.PENDING and item.next_attempt_at <= now
        ]
        ready.sort(key=QueuedItem.sort_key)
        return ready

    def count_by_status(self) -> dict[str, int]:
        counts = {status.value: 0 for status in ItemStatus}
        for item in self._items.values():
            counts[item.status.value] += 1
        return counts


class DeadLetterStore:
    """Durable dead-letter store backed by the ``dead_letters`` table."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self.repo = DeadLetterRepository(session_factory)

    def put(self, entry: DeadLetterEntry) -> None:
        item = entry.item
        self.repo.put(
            item_id=item.id,
            notification_type=item.type.value,
            recipient_email=item.recipient.email,
            payload=item.snapshot(),
            attempt_history=[a.to_dict() for a in entry.attempt_history],
            last_error=item.last_error,
            failed_at=entry.failed_at,
        )

    def get(self, item_id: str) -> DeadLetterEntry | None:
        row = self.repo.get(item_id)
        return _to_entry(row) if row is not None else None

    def list(self) -> list[DeadLetterEntry]:
        return [_to_entry(row) for row in self.repo.list_all()]

    def ids(self) -> list[str]:
        return [row.item_id for row in self.repo.list_all()]

    def pop(self, item_id: str) -> DeadLetterEntry | None:
        row = self.repo.pop(item_id)
        return _to_entry(row) if row is not None else None

    def delete(self, item_id: str) -> bool:
        return self.repo.pop(item_id) is not None

    def count(self) -> int:
        return self.repo.count()

    def prune(self, cutoff: datetime) -> int:
        return self.repo.delete_before(cutoff)


def _to_entry(row: DeadLetter) -> DeadLetterEntry:
    return DeadLetterEntry(
        item=QueuedItem.from_snapshot(row.payload),
        attempt_history=[AttemptRecord.from_dict(a) for a in row.attempt_history or []],
        failed_at=ensure_utc(row.failed_at),
    )
