"""Recurring notification jobs.

``JobName`` is the closed set of jobs the service runs; ``JOB_DEFINITIONS``
maps every member to its calendar and dedup type, and the module refuses
to import if a member is missing.  The recipients and rendered payloads of
each batch come from caller-supplied *batch builders*; the handlers here
only wire a builder to the idempotency guard and the delivery queue.
"""
from __future__ import annotations

import inspect
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from courier.core.constants import TrackedType
from courier.queue.delivery_queue import DeliveryQueue
from courier.queue.models import Notification
from courier.scheduler.job_scheduler import JobScheduler
from courier.scheduler.models import ScheduledJob
from courier.scheduler.schedule import DEFAULT_TIMEZONE, Schedule
from courier.tracking.tracker import BatchResult, IdempotencyTracker

logger = logging.getLogger(__name__)


class JobName(str, Enum):
    DAILY_REVENUE_CHECK = "daily_revenue_check"
    WEEKLY_REPORT = "weekly_report"
    MONTHLY_REMINDERS = "monthly_reminders"
    DOCUMENT_EXPIRY_CHECK = "document_expiry_check"
    PERFORMANCE_ALERTS = "performance_alerts"
    DEDUP_CLEANUP = "dedup_cleanup"


@dataclass(frozen=True)
class JobDefinition:
    description: str
    cron: str
    # None marks a maintenance job that sends nothing.
    tracked_type: TrackedType | None


JOB_DEFINITIONS: dict[JobName, JobDefinition] = {
    JobName.DAILY_REVENUE_CHECK: JobDefinition(
        "Remind branches that have not entered yesterday's revenue",
        "0 10 * * *",
        TrackedType.DAILY_REVENUE_REMINDER,
    ),
    JobName.WEEKLY_REPORT: JobDefinition(
        "Send the weekly summary report to administrators",
        "0 8 * * 0",
        TrackedType.WEEKLY_REPORT,
    ),
    JobName.MONTHLY_REMINDERS: JobDefinition(
        "Send the reminders that are due on today's day of month",
        "0 9 * * *",
        TrackedType.INVENTORY_REMINDER,
    ),
    JobName.DOCUMENT_EXPIRY_CHECK: JobDefinition(
        "Warn about employee documents approaching expiry",
        "0 8 * * *",
        TrackedType.DOCUMENT_EXPIRY_REMINDER,
    ),
    JobName.PERFORMANCE_ALERTS: JobDefinition(
        "Alert supervisors about under-performing branches",
        "30 7 * * *",
        TrackedType.PERFORMANCE_ALERT,
    ),
    JobName.DEDUP_CLEANUP: JobDefinition(
        "Delete expired once-per-day dedup records",
        "0 3 * * *",
        None,
    ),
}

_missing = set(JobName) - set(JOB_DEFINITIONS)
if _missing:
    raise RuntimeError(f"JOB_DEFINITIONS is missing {sorted(m.value for m in _missing)}")

# Sync or async callable returning the rendered notifications of one batch.
BatchBuilder = Callable[[], Any]


async def _empty_batch() -> list[Notification]:
    return []


async def _build(builder: BatchBuilder) -> list[Notification]:
    batch = builder()
    if inspect.isawaitable(batch):
        batch = await batch
    return list(batch or [])


def _batch_handler(
    name: JobName,
    tracked_type: TrackedType,
    queue: DeliveryQueue,
    tracker: IdempotencyTracker,
    builder: BatchBuilder,
):
    async def send() -> BatchResult:
        notifications = await _build(builder)
        ids = await queue.enqueue_batch(notifications) if notifications else []
        return BatchResult(success=True, recipient_count=len(ids), detail=f"queued {len(ids)} notification(s)")

    async def handler() -> dict[str, Any]:
        outcome = await tracker.check_and_send(tracked_type, send)
        if not outcome.sent and not outcome.skipped:
            raise RuntimeError(f"{name.value}: {outcome.reason}")
        return outcome.to_dict()

    return handler


def _cleanup_handler(tracker: IdempotencyTracker, retention_days: int):
    def handler() -> dict[str, Any]:
        return {"deleted": tracker.prune(retention_days)}

    return handler


def register_builtin_jobs(
    scheduler: JobScheduler,
    queue: DeliveryQueue,
    tracker: IdempotencyTracker,
    batch_builders: Mapping[JobName | str, BatchBuilder] | None = None,
    *,
    timezone: str = DEFAULT_TIMEZONE,
    dedup_retention_days: int = 7,
) -> list[ScheduledJob]:
    """Register every ``JobName``; jobs without a builder send an empty batch."""
    builders = {JobName(key): builder for key, builder in (batch_builders or {}).items()}
    unused = [name.value for name, d in JOB_DEFINITIONS.items() if d.tracked_type is None and name in builders]
    if unused:
        raise ValueError(f"Maintenance jobs take no batch builder: {unused}")

    jobs = []
    for name, definition in JOB_DEFINITIONS.items():
        if definition.tracked_type is None:
            handler = _cleanup_handler(tracker, dedup_retention_days)
        else:
            builder = builders.get(name, _empty_batch)
            if name not in builders:
                logger.debug("No batch builder for %s; it will send empty batches", name.value)
            handler = _batch_handler(name, definition.tracked_type, queue, tracker, builder)
        jobs.append(
            scheduler.register_job(
                name.value,
                Schedule(definition.cron, timezone),
                handler,
                description=definition.description,
            )
        )
    return jobs
