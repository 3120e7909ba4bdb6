#!/usr/bin/env python3
"""Seed demo data: dead-lettered notifications and today's dedup records.

Only durable state is seeded; the active queue lives in memory and is
empty on every start.

Usage:
    python scripts/seed_demo.py          # uses DATABASE_URL from env / .env
    DATABASE_URL=... python scripts/seed_demo.py
"""
from __future__ import annotations

from datetime import timedelta

from courier.core.constants import ItemStatus, NotificationType, Priority, TrackedType
from courier.core.settings import get_settings
from courier.core.timeutil import utcnow
from courier.db.session import build_engine, init_db, make_session_factory
from courier.queue.models import AttemptRecord, DeadLetterEntry, QueuedItem, Recipient
from courier.queue.store import DeadLetterStore
from courier.tracking.tracker import IdempotencyTracker

DEMO_DEAD_LETTERS = [
    # (id, type, email, subject, errors)
    ("notif_demo_payroll", NotificationType.PAYROLL_CREATED, "hr@example.com", "Payroll ready",
     ["timeout", "timeout", "421 service not available"]),
    ("notif_demo_expiry", NotificationType.DOCUMENT_EXPIRY, "staff@example.com", "Residency permit expiring",
     ["550 mailbox unavailable"]),
]


def seed(dead_letters: DeadLetterStore, tracker: IdempotencyTracker) -> None:
    now = utcnow()

    for item_id, notification_type, email, subject, errors in DEMO_DEAD_LETTERS:
        history = [
            AttemptRecord(attempt=n, at=now - timedelta(minutes=len(errors) - n), error=error)
            for n, error in enumerate(errors, start=1)
        ]
        item = QueuedItem(
            id=item_id,
            type=notification_type,
            recipient=Recipient(email=email),
            subject=subject,
            body_html=f"<p>{subject}</p>",
            body_text=None,
            priority=Priority.NORMAL,
            status=ItemStatus.DEAD,
            attempts=len(errors),
            max_attempts=3,
            next_attempt_at=now,
            created_at=history[0].at,
            seq=0,
            last_error=errors[-1],
            attempt_history=history,
        )
        dead_letters.put(DeadLetterEntry(item=item, attempt_history=history, failed_at=now))

    tracker.mark_as_sent(TrackedType.DAILY_REVENUE_REMINDER, 6, "demo")
    tracker.mark_as_sent(TrackedType.PERFORMANCE_ALERT, 2, "demo")


def main() -> None:
    settings = get_settings()
    engine = build_engine(settings.database_url)
    init_db(engine)
    session_factory = make_session_factory(engine)

    seed(DeadLetterStore(session_factory), IdempotencyTracker(session_factory, timezone=settings.scheduler_timezone))
    print(f"Seeded {len(DEMO_DEAD_LETTERS)} dead letters and 2 dedup records into {settings.database_url}")


if __name__ == "__main__":
    main()
