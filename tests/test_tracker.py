"""Tests for courier/tracking — the once-per-day idempotency guard."""
from __future__ import annotations

import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from courier.core.constants import TrackedType
from courier.db.repositories import DedupRepository
from courier.tracking.tracker import BatchResult, IdempotencyTracker


@pytest.fixture
def tracker(session_factory, clock) -> IdempotencyTracker:
    return IdempotencyTracker(session_factory, timezone="Asia/Riyadh", clock=clock)


def _broken_claim(*args, **kwargs):
    raise OperationalError("INSERT INTO dedup_records", {}, Exception("database is locked"))


class CountingSend:
    def __init__(self, result: BatchResult | None = None, delay: float = 0.0):
        self.calls = 0
        self.result = result or BatchResult(success=True, recipient_count=4)
        self.delay = delay

    async def __call__(self) -> BatchResult:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.result


# ===========================================================================
# Dates and marks
# ===========================================================================

class TestMarks:
    def test_today_uses_tracker_timezone(self, tracker, clock):
        clock.now = clock.now.replace(hour=22)  # 01:00 next day in Riyadh
        assert tracker.today() == "2026-03-02"

    def test_mark_then_was_sent_today(self, tracker):
        assert tracker.was_sent_today(TrackedType.WEEKLY_REPORT) is False
        assert tracker.mark_as_sent(TrackedType.WEEKLY_REPORT, 12, "weekly") is True
        assert tracker.was_sent_today("weekly_report") is True

    def test_duplicate_mark_is_rejected_without_raising(self, tracker, session_factory, caplog):
        tracker.mark_as_sent(TrackedType.PAYROLL_REMINDER, 3)

        with caplog.at_level("WARNING", logger="courier.tracking.tracker"):
            assert tracker.mark_as_sent(TrackedType.PAYROLL_REMINDER, 5) is False

        assert "already exists" in caplog.text
        assert DedupRepository(session_factory).count() == 1

    def test_database_failure_is_logged_not_raised(self, tracker, monkeypatch, caplog):
        monkeypatch.setattr(tracker.repo, "claim", _broken_claim)

        with caplog.at_level("ERROR", logger="courier.tracking.tracker"):
            assert tracker.mark_as_sent(TrackedType.WEEKLY_REPORT, 2) is False

        assert "Could not record weekly_report" in caplog.text

    def test_new_day_is_a_new_key(self, tracker, clock):
        tracker.mark_as_sent(TrackedType.DAILY_REVENUE_REMINDER, 1)
        clock.advance(days=1)
        assert tracker.was_sent_today(TrackedType.DAILY_REVENUE_REMINDER) is False

    def test_unknown_type_is_rejected(self, tracker):
        with pytest.raises(ValueError):
            tracker.was_sent_today("not_tracked")

    def test_records_survive_a_new_tracker(self, tracker, session_factory, clock):
        tracker.mark_as_sent(TrackedType.WEEKLY_REPORT, 2)
        restarted = IdempotencyTracker(session_factory, clock=clock)
        assert restarted.was_sent_today(TrackedType.WEEKLY_REPORT) is True


# ===========================================================================
# check_and_send
# ===========================================================================

class TestCheckAndSend:
    def test_second_call_is_skipped(self, tracker):
        send = CountingSend()

        async def scenario():
            first = await tracker.check_and_send(TrackedType.INVENTORY_REMINDER, send)
            second = await tracker.check_and_send(TrackedType.INVENTORY_REMINDER, send)
            return first, second

        first, second = asyncio.run(scenario())

        assert send.calls == 1
        assert (first.sent, first.skipped) == (True, False)
        assert first.result.recipient_count == 4
        assert (second.sent, second.skipped) == (False, True)
        assert second.reason

    def test_overlapping_calls_send_once(self, tracker):
        send = CountingSend(delay=0.05)

        async def scenario():
            return await asyncio.gather(
                tracker.check_and_send(TrackedType.WEEKLY_REPORT, send),
                tracker.check_and_send(TrackedType.WEEKLY_REPORT, send),
                tracker.check_and_send(TrackedType.WEEKLY_REPORT, send),
            )

        results = asyncio.run(scenario())

        assert send.calls == 1
        assert sum(r.sent for r in results) == 1
        assert sum(r.skipped for r in results) == 2

    def test_different_types_do_not_block_each_other(self, tracker):
        send = CountingSend()

        async def scenario():
            return await asyncio.gather(
                tracker.check_and_send(TrackedType.WEEKLY_REPORT, send),
                tracker.check_and_send(TrackedType.PAYROLL_REMINDER, send),
            )

        results = asyncio.run(scenario())
        assert send.calls == 2
        assert all(r.sent for r in results)

    def test_failing_send_is_reported_and_not_marked(self, tracker):
        async def boom() -> BatchResult:
            raise RuntimeError("database unavailable")

        result = asyncio.run(tracker.check_and_send(TrackedType.LOW_STOCK_ALERT, boom))

        assert (result.sent, result.skipped) == (False, False)
        assert result.reason == "database unavailable"
        assert tracker.was_sent_today(TrackedType.LOW_STOCK_ALERT) is False

    def test_unsuccessful_batch_is_not_marked(self, tracker):
        send = CountingSend(BatchResult(success=False, detail="no recipients resolved"))

        result = asyncio.run(tracker.check_and_send(TrackedType.PERFORMANCE_ALERT, send))

        assert result.sent is False
        assert result.reason == "no recipients resolved"
        assert tracker.was_sent_today(TrackedType.PERFORMANCE_ALERT) is False

    def test_lost_insert_race_is_skipped(self, tracker):
        async def send_and_race() -> BatchResult:
            # Another writer claims the key while this batch is being sent.
            tracker.mark_as_sent(TrackedType.DOCUMENT_EXPIRY_REMINDER, 1)
            return BatchResult(success=True, recipient_count=2)

        result = asyncio.run(tracker.check_and_send(TrackedType.DOCUMENT_EXPIRY_REMINDER, send_and_race))

        assert (result.sent, result.skipped) == (False, True)

    def test_send_returning_wrong_type_is_a_failure(self, tracker):
        async def sloppy():
            return None

        result = asyncio.run(tracker.check_and_send(TrackedType.INVENTORY_REMINDER, sloppy))

        assert (result.sent, result.skipped) == (False, False)
        assert result.reason == "send returned NoneType, not BatchResult"
        assert tracker.was_sent_today(TrackedType.INVENTORY_REMINDER) is False

    def test_unrecordable_batch_is_reported_not_raised(self, tracker, monkeypatch):
        send = CountingSend()
        monkeypatch.setattr(tracker.repo, "claim", _broken_claim)

        result = asyncio.run(tracker.check_and_send(TrackedType.WEEKLY_REPORT, send))

        assert send.calls == 1
        assert (result.sent, result.skipped) == (False, False)
        assert result.reason.startswith("could not record dedup record")
        assert result.result.recipient_count == 4


# ===========================================================================
# Status and pruning
# ===========================================================================

class TestStatus:
    def test_status_lists_every_tracked_type(self, tracker):
        tracker.mark_as_sent(TrackedType.WEEKLY_REPORT, 7)

        status = tracker.status()

        assert status["date"] == "2026-03-01"
        assert set(status["types"]) == {t.value for t in TrackedType}
        assert status["types"]["weekly_report"]["sent"] is True
        assert status["types"]["weekly_report"]["recipient_count"] == 7
        assert status["types"]["payroll_reminder"]["sent"] is False

    def test_prune_removes_old_days_only(self, tracker, clock):
        tracker.mark_as_sent(TrackedType.WEEKLY_REPORT, 1)
        clock.advance(days=3)
        tracker.mark_as_sent(TrackedType.WEEKLY_REPORT, 1)
        clock.advance(days=5)

        assert tracker.prune(older_than_days=7) == 1
        assert len(tracker.repo.list_for_date("2026-03-04")) == 1
