"""Admin control surface.

Thin request/response facade over the delivery queue, the job scheduler and
the idempotency tracker, consumed by the HTTP routes (or any other
operator tooling).  Every method returns JSON-safe dicts and lists.
"""
from __future__ import annotations

from typing import Any

from courier.queue.delivery_queue import DeliveryQueue
from courier.queue.models import Notification
from courier.scheduler.job_scheduler import JobScheduler
from courier.tracking.tracker import IdempotencyTracker


class AdminService:
    def __init__(self, queue: DeliveryQueue, scheduler: JobScheduler, tracker: IdempotencyTracker):
        self.queue = queue
        self.scheduler = scheduler
        self.tracker = tracker

    # -- delivery queue -----------------------------------------------------

    def get_queue_stats(self) -> dict[str, Any]:
        return self.queue.get_stats()

    async def enqueue_notification(self, notification: Notification) -> dict[str, Any]:
        return {"id": await self.queue.enqueue(notification)}

    def get_notification_status(self, item_id: str) -> dict[str, Any] | None:
        item = self.queue.get_status(item_id)
        return item.snapshot() if item is not None else None

    async def cancel_notification(self, item_id: str) -> dict[str, Any]:
        return {"id": item_id, "cancelled": await self.queue.cancel(item_id)}

    def get_dead_letter_notifications(self) -> list[dict[str, Any]]:
        return [entry.to_dict() for entry in self.queue.list_dead_letters()]

    async def retry_failed_notification(self, item_id: str) -> dict[str, Any]:
        return {"id": item_id, "retried": await self.queue.retry(item_id)}

    async def retry_all_failed_notifications(self) -> dict[str, Any]:
        return {"retried": await self.queue.retry_all()}

    async def purge_failed_notification(self, item_id: str) -> dict[str, Any]:
        return {"id": item_id, "purged": await self.queue.purge(item_id)}

    # -- scheduler ----------------------------------------------------------

    def get_scheduler_status(self) -> dict[str, Any]:
        return self.scheduler.status()

    def get_scheduled_jobs(self) -> list[dict[str, Any]]:
        return [job.to_dict() for job in self.scheduler.get_jobs()]

    def get_scheduled_job(self, job_id: str) -> dict[str, Any] | None:
        job = self.scheduler.get_job(job_id)
        return job.to_dict() if job is not None else None

    def toggle_scheduled_job(self, job_id: str, is_active: bool) -> dict[str, Any]:
        """Raises ``UnknownJobError`` for an unregistered job."""
        return self.scheduler.toggle(job_id, is_active).to_dict()

    async def run_scheduled_job_manually(self, job_id: str) -> dict[str, Any]:
        run = await self.scheduler.run_manually(job_id)
        return run.to_dict()

    def get_job_executions(self, limit: int = 20, job_id: str | None = None) -> list[dict[str, Any]]:
        return self.scheduler.get_executions(limit, job_id)

    def get_scheduler_dead_letter(self) -> list[dict[str, Any]]:
        return [entry.to_dict() for entry in self.scheduler.get_dead_letter_queue()]

    async def retry_scheduler_dead_letter(self, job_id: str) -> dict[str, Any]:
        run = await self.scheduler.retry_dead_letter(job_id)
        return {"job_id": job_id, "retried": run is not None, "run": run.to_dict() if run else None}

    def clear_scheduler_dead_letter(self) -> dict[str, Any]:
        return {"cleared": self.scheduler.clear_dead_letter_queue()}

    # -- idempotency --------------------------------------------------------

    def get_dedup_status(self) -> dict[str, Any]:
        return self.tracker.status()
