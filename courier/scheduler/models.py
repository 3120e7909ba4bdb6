"""Scheduler domain types."""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from courier.core.constants import ExecutionOutcome, ExecutionTrigger
from courier.core.timeutil import isoformat
from courier.scheduler.schedule import Schedule

# Sync or async callable; the return value (dict or None) is stored as the
# execution's result summary.
JobHandler = Callable[[], Any]


@dataclass
class ScheduledJob:
    id: str
    name: str
    schedule: Schedule
    handler: JobHandler
    description: str = ""
    is_active: bool = True
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None
    last_outcome: ExecutionOutcome | None = None
    last_error: str | None = None
    run_count: int = 0
    fail_count: int = 0
    consecutive_failures: int = 0
    active_runs: int = 0

    @property
    def running(self) -> bool:
        return self.active_runs > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "schedule": self.schedule.to_dict(),
            "is_active": self.is_active,
            "last_run_at": isoformat(self.last_run_at),
            "next_run_at": isoformat(self.next_run_at),
            "last_outcome": self.last_outcome.value if self.last_outcome else None,
            "last_error": self.last_error,
            "run_count": self.run_count,
            "fail_count": self.fail_count,
            "consecutive_failures": self.consecutive_failures,
            "running": self.running,
        }


@dataclass
class JobDeadLetter:
    """A job flagged for operator attention after repeated failures."""

    job_id: str
    job_name: str
    failed_at: datetime
    error: str | None
    failure_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "job_name": self.job_name,
            "failed_at": isoformat(self.failed_at),
            "error": self.error,
            "failure_count": self.failure_count,
        }


@dataclass(frozen=True)
class JobRun:
    """Outcome of one handler invocation, as recorded in ``job_executions``."""

    job_id: str
    trigger: ExecutionTrigger
    started_at: datetime
    finished_at: datetime
    outcome: ExecutionOutcome
    error: str | None = None
    result: dict[str, Any] | None = None
    execution_id: str | None = None

    @property
    def success(self) -> bool:
        return self.outcome is ExecutionOutcome.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "job_id": self.job_id,
            "trigger": self.trigger.value,
            "started_at": isoformat(self.started_at),
            "finished_at": isoformat(self.finished_at),
            "outcome": self.outcome.value,
            "success": self.success,
            "error": self.error,
            "result": self.result,
        }
