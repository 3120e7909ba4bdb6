from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from courier.core.timeutil import ensure_utc

DEFAULT_TIMEZONE = "Asia/Riyadh"


@dataclass(frozen=True)
class Schedule:
    """A five-field cron expression evaluated in an IANA timezone.

    Fire times are absolute: ``next_after`` always recomputes from the
    expression, so there is no drift between runs and a restart picks up
    exactly where the calendar says it should.
    """

    expression: str
    timezone: str = DEFAULT_TIMEZONE

    def __post_init__(self) -> None:
        if not croniter.is_valid(self.expression):
            raise ValueError(f"Invalid cron expression {self.expression!r}")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone {self.timezone!r}") from None

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def next_after(self, moment: datetime) -> datetime:
        """First fire time strictly after *moment*, in UTC."""
        local = ensure_utc(moment).astimezone(self.zone)
        fire = croniter(self.expression, local).get_next(datetime)
        return fire.astimezone(timezone.utc)

    def to_dict(self) -> dict[str, str]:
        return {"expression": self.expression, "timezone": self.timezone}
