from datetime import datetime, timezone

import pytest

from courier.scheduler.schedule import Schedule


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def test_next_fire_is_computed_in_job_timezone():
    schedule = Schedule("0 10 * * *", "Asia/Riyadh")

    # 06:00 UTC is 09:00 in Riyadh; 10:00 Riyadh is 07:00 UTC the same day.
    assert schedule.next_after(_utc(2026, 3, 1, 6, 0)) == _utc(2026, 3, 1, 7, 0)
    assert schedule.next_after(_utc(2026, 3, 1, 7, 0)) == _utc(2026, 3, 2, 7, 0)


def test_weekly_schedule_fires_on_sunday():
    schedule = Schedule("0 8 * * 0", "Asia/Riyadh")
    fire = schedule.next_after(_utc(2026, 3, 2, 0, 0))  # Monday
    assert fire == _utc(2026, 3, 8, 5, 0)
    assert fire.astimezone(schedule.zone).weekday() == 6


def test_next_after_accepts_naive_utc():
    schedule = Schedule("30 7 * * *", "UTC")
    assert schedule.next_after(datetime(2026, 3, 1, 7, 0)) == _utc(2026, 3, 1, 7, 30)


def test_invalid_expression_is_rejected():
    with pytest.raises(ValueError, match="cron"):
        Schedule("61 25 * * *")


def test_unknown_timezone_is_rejected():
    with pytest.raises(ValueError, match="timezone"):
        Schedule("0 8 * * *", "Mars/Olympus")
