"""Idempotency tracker.

Guarantees that each ``TrackedType`` batch fires at most once per calendar
day (in the tracker's timezone), across restarts and overlapping triggers.

Two layers:

- a per-``(type, date)`` ``asyncio.Lock`` serializes ``check_and_send`` in
  this process, so "check, send, mark" runs as one critical section;
- the ``dedup_records`` unique constraint makes the mark itself an atomic
  insert-or-reject, so the record survives restarts and a second writer can
  never create a duplicate row.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from courier.core.constants import TrackedType
from courier.core.errors import ConfigurationError
from courier.core.timeutil import Clock, ensure_utc, isoformat, utcnow
from courier.db.repositories import DedupRepository

logger = logging.getLogger(__name__)

ALREADY_SENT = "already sent today"
LOST_RACE = "already claimed by a concurrent sender"


@dataclass(frozen=True)
class BatchResult:
    """What a batch ``send_fn`` reports back to the tracker."""

    success: bool
    recipient_count: int = 0
    detail: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "recipient_count": self.recipient_count, "detail": self.detail}


@dataclass(frozen=True)
class CheckResult:
    sent: bool
    skipped: bool
    reason: str | None = None
    result: BatchResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sent": self.sent,
            "skipped": self.skipped,
            "reason": self.reason,
            "result": self.result.to_dict() if self.result else None,
        }


SendFn = Callable[[], Awaitable[BatchResult]]


class IdempotencyTracker:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        timezone: str = "Asia/Riyadh",
        clock: Clock = utcnow,
    ) -> None:
        try:
            self.tz = ZoneInfo(timezone)
        except ZoneInfoNotFoundError:
            raise ConfigurationError(f"Unknown timezone {timezone!r}") from None
        self.repo = DedupRepository(session_factory)
        self._clock = clock
        self._locks: dict[tuple[TrackedType, str], asyncio.Lock] = {}

    def today(self) -> str:
        return self._local_date().isoformat()

    def _local_date(self) -> date:
        return self._clock().astimezone(self.tz).date()

    def was_sent_today(self, notification_type: TrackedType | str) -> bool:
        tracked = TrackedType(notification_type)
        return self.repo.find(tracked.value, self.today()) is not None

    def mark_as_sent(
        self,
        notification_type: TrackedType | str,
        recipient_count: int,
        details: str | None = None,
    ) -> bool:
        """Claim today's record; ``False`` (and a warning) if it already exists.

        A database failure is logged and also reported as ``False``.
        """
        tracked = TrackedType(notification_type)
        try:
            return self._mark(tracked, self.today(), recipient_count, details)
        except SQLAlchemyError:
            logger.exception("Could not record %s as sent", tracked.value)
            return False

    def _mark(self, tracked: TrackedType, send_date: str, recipient_count: int, details: str | None) -> bool:
        claimed = self.repo.claim(
            tracked.value,
            send_date,
            sent_at=self._clock(),
            recipient_count=recipient_count,
            details=details,
        )
        if claimed:
            logger.info("Marked %s as sent for %s (%d recipients)", tracked.value, send_date, recipient_count)
        else:
            logger.warning("Dedup record for %s on %s already exists", tracked.value, send_date)
        return claimed

    def _lock_for(self, tracked: TrackedType, send_date: str) -> asyncio.Lock:
        return self._locks.setdefault((tracked, send_date), asyncio.Lock())

    async def check_and_send(self, notification_type: TrackedType | str, send_fn: SendFn) -> CheckResult:
        """Run *send_fn* unless this type already fired today, then mark it.

        Never raises for a failing *send_fn*: the failure comes back as
        ``sent=False, skipped=False`` with the error in ``reason``.
        """
        tracked = TrackedType(notification_type)
        send_date = self.today()

        async with self._lock_for(tracked, send_date):
            if self.repo.find(tracked.value, send_date) is not None:
                logger.info("Skipping %s: %s (%s)", tracked.value, ALREADY_SENT, send_date)
                return CheckResult(sent=False, skipped=True, reason=ALREADY_SENT)

            try:
                result = await send_fn()
            except Exception as exc:
                logger.exception("Batch send for %s failed", tracked.value)
                return CheckResult(sent=False, skipped=False, reason=str(exc) or type(exc).__name__)

            if not isinstance(result, BatchResult):
                logger.error("Batch send for %s returned %s, not BatchResult", tracked.value, type(result).__name__)
                return CheckResult(
                    sent=False, skipped=False, reason=f"send returned {type(result).__name__}, not BatchResult"
                )

            if not result.success:
                logger.warning("Batch send for %s reported failure: %s", tracked.value, result.detail)
                return CheckResult(
                    sent=False, skipped=False, reason=result.detail or "send reported failure", result=result
                )

            try:
                claimed = self._mark(tracked, send_date, result.recipient_count, result.detail)
            except SQLAlchemyError as exc:
                logger.exception("Batch for %s was sent but could not be recorded", tracked.value)
                return CheckResult(
                    sent=False, skipped=False, reason=f"could not record dedup record: {exc}", result=result
                )
            if not claimed:
                return CheckResult(sent=False, skipped=True, reason=LOST_RACE, result=result)

        return CheckResult(sent=True, skipped=False, result=result)

    # -- inspection ---------------------------------------------------------

    def today_records(self) -> list[dict[str, Any]]:
        return [
            {
                "type": row.notification_type,
                "date": row.send_date,
                "sent_at": isoformat(ensure_utc(row.sent_at)),
                "recipient_count": row.recipient_count,
                "details": row.details,
            }
            for row in self.repo.list_for_date(self.today())
        ]

    def status(self) -> dict[str, Any]:
        """Per tracked type: whether it fired today, when, and to how many."""
        records = {r["type"]: r for r in self.today_records()}
        types = {}
        for tracked in TrackedType:
            record = records.get(tracked.value)
            types[tracked.value] = {
                "sent": record is not None,
                "sent_at": record["sent_at"] if record else None,
                "recipient_count": record["recipient_count"] if record else 0,
            }
        return {"date": self.today(), "timezone": str(self.tz), "types": types}

    def prune(self, older_than_days: int = 7) -> int:
        """Delete dedup records dated more than *older_than_days* ago."""
        if older_than_days < 1:
            raise ValueError("older_than_days must be >= 1")
        cutoff = (self._local_date() - timedelta(days=older_than_days)).isoformat()
        deleted = self.repo.delete_before(cutoff)
        for key in [k for k, lock in self._locks.items() if k[1] < cutoff and not lock.locked()]:
            del self._locks[key]
        if deleted:
            logger.info("Pruned %d dedup record(s) older than %s", deleted, cutoff)
        return deleted
