"""Recurring job scheduler.

Jobs are registered statically at process start.  Each ``tick`` compares
every active job's absolute ``next_run_at`` with the clock, advances it to
the following fire time and launches the handler in its own task.  Every
invocation (scheduled, manual or dead-letter retry) is appended to
``job_executions``; job bookkeeping lives in ``scheduled_job_states`` so a
toggle, a dead-letter flag or a missed run survives a restart.

Per-invocation state machine: ``scheduled → running → {completed | failed}``.
A failure never disables the job; after ``failure_threshold`` consecutive
failures the job is flagged in the dead-letter list until an operator
retries or clears it.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from courier.core.constants import ExecutionOutcome, ExecutionTrigger
from courier.core.errors import UnknownJobError
from courier.core.timeutil import Clock, ensure_utc, isoformat, utcnow
from courier.db.models import JobExecution
from courier.db.repositories import JobExecutionRepository, ScheduledJobStateRepository
from courier.scheduler.models import JobDeadLetter, JobHandler, JobRun, ScheduledJob
from courier.scheduler.schedule import Schedule

logger = logging.getLogger(__name__)


class JobScheduler:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        failure_threshold: int = 3,
        tick_interval: float = 60.0,
        execution_history: int | None = 100,
        clock: Clock = utcnow,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self.executions = JobExecutionRepository(session_factory)
        self.states = ScheduledJobStateRepository(session_factory)
        self.failure_threshold = failure_threshold
        self.tick_interval = tick_interval
        self.execution_history = execution_history
        self._clock = clock

        self._jobs: dict[str, ScheduledJob] = {}
        self._dead_letters: dict[str, JobDeadLetter] = {}
        self._tasks: set[asyncio.Task] = set()
        self._loop_task: asyncio.Task | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    # -- registration -------------------------------------------------------

    def register_job(
        self,
        name: str,
        schedule: Schedule,
        handler: JobHandler,
        *,
        is_active: bool = True,
        description: str = "",
    ) -> ScheduledJob:
        """Register (or replace) a job, restoring any persisted state.

        A persisted toggle wins over *is_active*, and so does the persisted
        ``next_run_at``: a fire time missed while the process was down is
        still due and fires once on the next tick.  Without a stored fire
        time the next one is computed from the last recorded run.
        """
        now = self._clock()
        job = ScheduledJob(id=name, name=name, schedule=schedule, handler=handler, description=description)

        next_run_at = None
        state = self.states.get(name)
        if state is not None:
            job.is_active = state.is_active
            job.last_run_at = ensure_utc(state.last_run_at)
            job.consecutive_failures = state.consecutive_failures or 0
            next_run_at = ensure_utc(state.next_run_at)
            if state.dead_lettered_at is not None:
                self._dead_letters[name] = JobDeadLetter(
                    job_id=name,
                    job_name=name,
                    failed_at=ensure_utc(state.dead_lettered_at),
                    error=state.dead_letter_error,
                    failure_count=job.consecutive_failures,
                )
        else:
            job.is_active = is_active

        if name in self._jobs:
            logger.info("Replacing job definition %s", name)

        job.next_run_at = next_run_at or schedule.next_after(job.last_run_at or now)
        self._jobs[name] = job
        self._persist(job)
        logger.info(
            "Registered job %s (%s %s) active=%s next_run_at=%s",
            name, schedule.expression, schedule.timezone, job.is_active, isoformat(job.next_run_at),
        )
        return job

    # -- queries ------------------------------------------------------------

    def get_jobs(self) -> list[ScheduledJob]:
        return list(self._jobs.values())

    def get_job(self, job_id: str) -> ScheduledJob | None:
        return self._jobs.get(job_id)

    def _require(self, job_id: str) -> ScheduledJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise UnknownJobError(job_id)
        return job

    def get_executions(self, limit: int = 20, job_id: str | None = None) -> list[dict[str, Any]]:
        return [_execution_to_dict(row) for row in self.executions.list_recent(limit, job_id)]

    def get_dead_letter_queue(self) -> list[JobDeadLetter]:
        return sorted(self._dead_letters.values(), key=lambda d: d.failed_at, reverse=True)

    def status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "tick_interval": self.tick_interval,
            "failure_threshold": self.failure_threshold,
            "jobs": len(self._jobs),
            "active_jobs": sum(1 for job in self._jobs.values() if job.is_active),
            "running_jobs": sum(1 for job in self._jobs.values() if job.running),
            "dead_letters": len(self._dead_letters),
        }

    # -- control ------------------------------------------------------------

    def toggle(self, job_id: str, is_active: bool) -> ScheduledJob:
        """Enable or disable future runs; an in-flight run is not interrupted."""
        job = self._require(job_id)
        job.is_active = is_active
        if is_active:
            job.next_run_at = job.schedule.next_after(self._clock())
        self._persist(job)
        logger.info("Job %s %s", job_id, "enabled" if is_active else "disabled")
        return job

    async def run_manually(self, job_id: str) -> JobRun:
        """Run now, regardless of schedule, active flag or an in-flight run."""
        job = self._require(job_id)
        job.active_runs += 1
        return await self._execute(job, ExecutionTrigger.MANUAL)

    async def retry_dead_letter(self, job_id: str) -> JobRun | None:
        """Clear the job's dead-letter flag and force one manual run.

        Returns ``None`` if the job is not flagged.
        """
        job = self._require(job_id)
        if self._dead_letters.pop(job_id, None) is None:
            return None
        job.consecutive_failures = 0
        self._persist(job)
        logger.info("Retrying dead-lettered job %s", job_id)
        job.active_runs += 1
        return await self._execute(job, ExecutionTrigger.DEAD_LETTER_RETRY)

    def clear_dead_letter_queue(self) -> int:
        count = len(self._dead_letters)
        for job_id in list(self._dead_letters):
            del self._dead_letters[job_id]
            job = self._jobs.get(job_id)
            if job is not None:
                job.consecutive_failures = 0
                self._persist(job)
        if count:
            logger.info("Cleared %d job dead letter(s)", count)
        return count

    # -- ticking ------------------------------------------------------------

    async def tick(self) -> list[str]:
        """Launch every due active job; return the ids launched.

        ``next_run_at`` is advanced before the handler starts.  A job whose
        previous invocation is still running is skipped for this fire time.
        Launched handlers run in background tasks; ``join()`` waits for them.
        """
        now = self._clock()
        launched = []
        for job in list(self._jobs.values()):
            if not job.is_active or job.next_run_at is None or job.next_run_at > now:
                continue
            job.next_run_at = job.schedule.next_after(now)
            self._persist(job)
            if job.running:
                logger.warning("Skipping %s: previous run still in progress", job.id)
                continue
            job.active_runs += 1
            task = asyncio.create_task(self._execute(job, ExecutionTrigger.SCHEDULED), name=f"job:{job.id}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            launched.append(job.id)
        return launched

    async def join(self) -> None:
        """Wait for every job launched by ``tick`` to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _execute(self, job: ScheduledJob, trigger: ExecutionTrigger) -> JobRun:
        # Callers increment ``active_runs`` before scheduling this coroutine.
        started = self._clock()
        logger.info("Running job %s (%s)", job.id, trigger.value)
        error = None
        summary = None
        try:
            try:
                result = job.handler()
                if inspect.isawaitable(result):
                    result = await result
                summary = _summarize(result)
            except Exception as exc:
                error = str(exc) or type(exc).__name__
                logger.exception("Job %s failed", job.id)
        finally:
            job.active_runs -= 1

        finished = self._clock()
        outcome = ExecutionOutcome.FAILURE if error is not None else ExecutionOutcome.SUCCESS
        job.last_run_at = started
        job.last_outcome = outcome
        job.last_error = error

        if outcome is ExecutionOutcome.SUCCESS:
            job.run_count += 1
            job.consecutive_failures = 0
            logger.info("Job %s completed in %.2fs", job.id, (finished - started).total_seconds())
        else:
            job.fail_count += 1
            job.consecutive_failures += 1
            if job.consecutive_failures >= self.failure_threshold:
                self._flag_dead_letter(job, finished, error)

        self._persist(job)
        execution_id = self._record_execution(job, trigger, started, finished, outcome, error, summary)
        return JobRun(
            job_id=job.id,
            trigger=trigger,
            started_at=started,
            finished_at=finished,
            outcome=outcome,
            error=error,
            result=summary,
            execution_id=execution_id,
        )

    def _flag_dead_letter(self, job: ScheduledJob, failed_at, error: str | None) -> None:
        entry = self._dead_letters.get(job.id)
        if entry is None:
            self._dead_letters[job.id] = JobDeadLetter(
                job_id=job.id,
                job_name=job.name,
                failed_at=failed_at,
                error=error,
                failure_count=job.consecutive_failures,
            )
            logger.error(
                "Job %s dead-lettered after %d consecutive failures: %s",
                job.id, job.consecutive_failures, error,
            )
        else:
            entry.failed_at = failed_at
            entry.error = error
            entry.failure_count = job.consecutive_failures

    def _record_execution(self, job, trigger, started, finished, outcome, error, summary) -> str | None:
        try:
            row = self.executions.create(
                job_id=job.id,
                trigger=trigger.value,
                started_at=started,
                finished_at=finished,
                outcome=outcome.value,
                error=error,
                result_summary=summary,
            )
            if self.execution_history:
                self.executions.trim(self.execution_history)
        except SQLAlchemyError:
            logger.exception("Could not record execution of %s", job.id)
            return None
        return str(row.id)

    def _persist(self, job: ScheduledJob) -> None:
        dead = self._dead_letters.get(job.id)
        try:
            self.states.save(
                job.id,
                is_active=job.is_active,
                last_run_at=job.last_run_at,
                next_run_at=job.next_run_at,
                consecutive_failures=job.consecutive_failures,
                dead_lettered_at=dead.failed_at if dead else None,
                dead_letter_error=dead.error if dead else None,
            )
        except SQLAlchemyError:
            logger.exception("Could not persist state of job %s", job.id)

    # -- lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            logger.debug("Scheduler already running")
            return
        self._running = True
        self._loop_task = asyncio.create_task(self._run(), name="job-scheduler")
        logger.info("Scheduler started with %d job(s), tick=%.1fs", len(self._jobs), self.tick_interval)

    async def stop(self) -> None:
        """Stop ticking and wait for running jobs; a no-op if stopped."""
        if not self._running:
            return
        self._running = False
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        await self.join()
        logger.info("Scheduler stopped")

    async def _run(self) -> None:
        while True:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Scheduler tick failed")
            await asyncio.sleep(self.tick_interval)


def _summarize(result: Any) -> dict[str, Any] | None:
    if result is None or isinstance(result, dict):
        return result
    to_dict = getattr(result, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return {"value": str(result)}


def _execution_to_dict(row: JobExecution) -> dict[str, Any]:
    return {
        "id": str(row.id),
        "job_id": row.job_id,
        "trigger": row.trigger,
        "started_at": isoformat(row.started_at),
        "finished_at": isoformat(row.finished_at),
        "outcome": row.outcome,
        "error": row.error,
        "result": row.result_summary,
    }
