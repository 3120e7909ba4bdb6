"""Process-wide wiring of the delivery core.

``CourierRuntime.build`` turns ``Settings`` into a connected set of
components (engine, adapter, queue, tracker, scheduler with the builtin
jobs, admin service); the FastAPI lifespan starts and stops it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from courier.admin.service import AdminService
from courier.core.errors import ConfigurationError
from courier.core.settings import Settings, get_settings
from courier.core.timeutil import Clock, utcnow
from courier.db.repositories import DeliveryLogRepository
from courier.db.session import build_engine, init_db, make_session_factory
from courier.delivery import DeliveryAdapter, build_adapter
from courier.queue.delivery_queue import DeliveryQueue
from courier.queue.store import DeadLetterStore
from courier.scheduler.builtin import BatchBuilder, JobName, register_builtin_jobs
from courier.scheduler.job_scheduler import JobScheduler
from courier.tracking.tracker import IdempotencyTracker

logger = logging.getLogger(__name__)


@dataclass
class CourierRuntime:
    settings: Settings
    engine: Engine
    session_factory: sessionmaker[Session]
    adapter: DeliveryAdapter
    queue: DeliveryQueue
    tracker: IdempotencyTracker
    scheduler: JobScheduler
    admin: AdminService
    startup_error: str | None = None

    @classmethod
    def build(
        cls,
        settings: Settings | None = None,
        *,
        engine: Engine | None = None,
        adapter: DeliveryAdapter | None = None,
        batch_builders: dict[JobName | str, BatchBuilder] | None = None,
        clock: Clock = utcnow,
    ) -> CourierRuntime:
        settings = settings or get_settings()
        engine = engine or build_engine(settings.database_url)
        init_db(engine)
        session_factory = make_session_factory(engine)

        # Transport problems surface from ``queue.start()`` so the API can
        # still come up and report them.
        adapter = adapter or build_adapter(settings, check=False)

        queue = DeliveryQueue(
            adapter,
            DeadLetterStore(session_factory),
            concurrency_limit=settings.queue_concurrency,
            default_max_attempts=settings.queue_default_max_attempts,
            base_delay_ms=settings.queue_base_delay_ms,
            max_delay_ms=settings.queue_max_delay_ms,
            send_timeout=settings.queue_send_timeout_seconds,
            tick_interval=settings.queue_tick_seconds,
            sent_retention=timedelta(seconds=settings.queue_sent_retention_seconds),
            dead_letter_retention=timedelta(days=settings.queue_dead_letter_retention_days),
            cleanup_interval=settings.queue_cleanup_seconds,
            delivery_log=DeliveryLogRepository(session_factory),
            clock=clock,
        )
        tracker = IdempotencyTracker(session_factory, timezone=settings.scheduler_timezone, clock=clock)
        scheduler = JobScheduler(
            session_factory,
            failure_threshold=settings.scheduler_failure_threshold,
            tick_interval=settings.scheduler_tick_seconds,
            execution_history=settings.scheduler_execution_history,
            clock=clock,
        )
        register_builtin_jobs(
            scheduler,
            queue,
            tracker,
            batch_builders,
            timezone=settings.scheduler_timezone,
            dedup_retention_days=settings.dedup_retention_days,
        )
        return cls(
            settings=settings,
            engine=engine,
            session_factory=session_factory,
            adapter=adapter,
            queue=queue,
            tracker=tracker,
            scheduler=scheduler,
            admin=AdminService(queue, scheduler, tracker),
        )

    async def start(self) -> None:
        """Start queue then scheduler; on a transport misconfiguration start neither."""
        try:
            await self.queue.start()
        except ConfigurationError as exc:
            self.startup_error = str(exc)
            logger.error("Notification delivery disabled: %s", exc)
            return
        self.startup_error = None
        await self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        await self.queue.stop()
        close = getattr(self.adapter, "close", None)
        if close is not None:
            await close()

    def health(self) -> dict[str, Any]:
        healthy = self.startup_error is None
        return {
            "status": "ok" if healthy else "degraded",
            "queue_running": self.queue.is_running,
            "scheduler_running": self.scheduler.is_running,
            "error": self.startup_error,
        }
