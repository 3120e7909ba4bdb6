"""Once-per-day idempotency guard for scheduled notification batches."""
from courier.tracking.tracker import BatchResult, CheckResult, IdempotencyTracker

__all__ = ["BatchResult", "CheckResult", "IdempotencyTracker"]
