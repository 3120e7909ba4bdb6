"""Calendar-driven job scheduler with execution history and a job dead-letter list."""
from courier.scheduler.builtin import JOB_DEFINITIONS, JobName, register_builtin_jobs
from courier.scheduler.job_scheduler import JobScheduler
from courier.scheduler.models import JobDeadLetter, JobRun, ScheduledJob
from courier.scheduler.schedule import DEFAULT_TIMEZONE, Schedule

__all__ = [
    "DEFAULT_TIMEZONE",
    "JOB_DEFINITIONS",
    "JobDeadLetter",
    "JobName",
    "JobRun",
    "JobScheduler",
    "Schedule",
    "ScheduledJob",
    "register_builtin_jobs",
]
