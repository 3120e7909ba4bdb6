"""Asynchronous notification delivery queue.

Items move ``pending → processing → {sent | pending (retry) | dead}``.
A worker loop ticks on a fixed interval; each tick reserves up to
``concurrency_limit`` minus the deliveries still in flight, ordered by
priority then age, and hands each one to the delivery adapter in its own
task.  Failed attempts are retried after ``base * 2**(attempt-1)``; items
that exhaust ``max_attempts`` (or fail permanently) move to the durable
dead-letter store and are only revived by an explicit ``retry``.

All mutations of the active store and the dead-letter store happen under
one ``asyncio.Lock``, so selection and reservation are atomic with
respect to ``cancel``/``retry`` and to overlapping ticks.
"""
from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Iterable
from datetime import datetime, timedelta
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError

from courier.core.constants import ItemStatus
from courier.core.errors import ConfigurationError, DeliveryError
from courier.core.timeutil import Clock, utcnow
from courier.db.repositories import DeliveryLogRepository
from courier.delivery.base import DeliveryAdapter, DeliveryResult
from courier.queue.backoff import backoff_delay
from courier.queue.models import AttemptRecord, DeadLetterEntry, Notification, QueuedItem
from courier.queue.store import ActiveItemStore, DeadLetterStore

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 3
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_MS = 1000
DEFAULT_MAX_DELAY_MS = 60_000


class DeliveryQueue:
    """Bounded-concurrency delivery queue with retry and dead-letter handling."""

    def __init__(
        self,
        adapter: DeliveryAdapter,
        dead_letters: DeadLetterStore,
        *,
        store: ActiveItemStore | None = None,
        concurrency_limit: int = DEFAULT_CONCURRENCY,
        default_max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        max_delay_ms: int | None = DEFAULT_MAX_DELAY_MS,
        send_timeout: float = 30.0,
        tick_interval: float = 1.0,
        sent_retention: timedelta = timedelta(hours=24),
        dead_letter_retention: timedelta | None = timedelta(days=7),
        cleanup_interval: float = 300.0,
        delivery_log: DeliveryLogRepository | None = None,
        clock: Clock = utcnow,
    ) -> None:
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be >= 1")
        if default_max_attempts < 1:
            raise ValueError("default_max_attempts must be >= 1")

        self.adapter = adapter
        self.dead_letters = dead_letters
        self.store = store if store is not None else ActiveItemStore()
        self.concurrency_limit = concurrency_limit
        self.default_max_attempts = default_max_attempts
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.send_timeout = send_timeout
        self.tick_interval = tick_interval
        self.sent_retention = sent_retention
        self.dead_letter_retention = dead_letter_retention
        self.cleanup_interval = cleanup_interval
        self.delivery_log = delivery_log
        self._clock = clock

        self._lock = asyncio.Lock()
        self._in_flight: dict[str, asyncio.Task] = {}
        self._loop_task: asyncio.Task | None = None
        self._running = False
        self._totals = {
            "sent": 0,
            "dead": 0,
            "failed_attempts": 0,
            "processed": 0,
            "attempts_of_processed": 0,
        }

    @property
    def is_running(self) -> bool:
        return self._running

    # -- enqueue ------------------------------------------------------------

    async def enqueue(self, notification: Notification) -> str:
        """Validate and queue one notification; return its id immediately."""
        ids = await self.enqueue_batch([notification])
        return ids[0]

    async def enqueue_batch(self, notifications: Iterable[Notification]) -> list[str]:
        """Queue every notification or none of them."""
        batch = list(notifications)
        for notification in batch:
            notification.validate()

        async with self._lock:
            now = self._clock()
            items = [self._new_item(n, now) for n in batch]
            for item in items:
                self.store.add(item)

        for item in items:
            logger.info(
                "Queued %s type=%s priority=%s max_attempts=%d",
                item.id, item.type.value, item.priority.value, item.max_attempts,
            )
        if len(items) > 1:
            logger.info("Queued batch of %d notifications", len(items))
        return [item.id for item in items]

    def _new_item(self, notification: Notification, now: datetime) -> QueuedItem:
        return QueuedItem(
            id=f"notif_{uuid4().hex}",
            type=notification.type,
            recipient=notification.recipient,
            subject=notification.subject,
            body_html=notification.body_html,
            body_text=notification.body_text,
            priority=notification.priority,
            status=ItemStatus.PENDING,
            attempts=0,
            max_attempts=notification.max_attempts or self.default_max_attempts,
            next_attempt_at=now,
            created_at=now,
            seq=self.store.next_seq(),
            metadata=dict(notification.metadata),
        )

    # -- cancel / query -----------------------------------------------------

    async def cancel(self, item_id: str) -> bool:
        """Remove a still-pending item; ``False`` for any other state or id."""
        async with self._lock:
            item = self.store.get(item_id)
            if item is None or item.status is not ItemStatus.PENDING:
                return False
            self.store.remove(item_id)
        logger.info("Cancelled %s", item_id)
        return True

    def get_status(self, item_id: str) -> QueuedItem | None:
        item = self.store.get(item_id)
        if item is not None:
            return copy.deepcopy(item)
        entry = self.dead_letters.get(item_id)
        return entry.item if entry is not None else None

    def get_stats(self) -> dict:
        counts = self.store.count_by_status()
        dead_letter_size = self.dead_letters.count()
        processed = self._totals["processed"]
        return {
            "pending": counts[ItemStatus.PENDING.value],
            "processing": counts[ItemStatus.PROCESSING.value],
            "sent": counts[ItemStatus.SENT.value],
            # Items never rest in ``failed``; this is the number of failed
            # attempts that were rescheduled for retry.
            "failed": self._totals["failed_attempts"] - self._totals["dead"],
            "dead": counts[ItemStatus.DEAD.value] + dead_letter_size,
            "queue_size": len(self.store),
            "dead_letter_size": dead_letter_size,
            "in_flight": len(self._in_flight),
            "total_processed": processed,
            "total_sent": self._totals["sent"],
            "total_dead": self._totals["dead"],
            "total_failed_attempts": self._totals["failed_attempts"],
            "average_attempts": (
                round(self._totals["attempts_of_processed"] / processed, 2) if processed else 0.0
            ),
            "running": self._running,
        }

    # -- worker loop --------------------------------------------------------

    async def tick(self) -> list[str]:
        """Reserve ready items and start delivering them; return their ids.

        Does not wait for delivery — use ``join()`` for that.
        """
        async with self._lock:
            slots = self.concurrency_limit - len(self._in_flight)
            if slots <= 0:
                return []
            now = self._clock()
            selected = self.store.ready(now)[:slots]
            for item in selected:
                item.status = ItemStatus.PROCESSING
                item.last_attempt_at = now
                task = asyncio.create_task(self._deliver(item), name=f"deliver:{item.id}")
                self._in_flight[item.id] = task
                task.add_done_callback(lambda t, item_id=item.id: self._release(item_id, t))

        if selected:
            logger.debug("Tick dispatched %d item(s)", len(selected))
        return [item.id for item in selected]

    def _release(self, item_id: str, task: asyncio.Task) -> None:
        # A revived item may already hold a newer slot under the same id.
        if self._in_flight.get(item_id) is task:
            del self._in_flight[item_id]

    async def join(self) -> None:
        """Wait until every in-flight delivery has finished."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight.values()), return_exceptions=True)

    async def _deliver(self, item: QueuedItem) -> None:
        attempt = item.attempts + 1
        logger.info("Delivering %s attempt %d/%d", item.id, attempt, item.max_attempts)
        try:
            result = await asyncio.wait_for(
                self.adapter.send(item.recipient.email, item.subject, item.body_html, item.body_text),
                timeout=self.send_timeout,
            )
        except asyncio.TimeoutError:
            result = DeliveryResult.failed(f"delivery timed out after {self.send_timeout:g}s")
        except DeliveryError as exc:
            result = DeliveryResult.failed(str(exc) or type(exc).__name__, permanent=exc.permanent)
        except Exception as exc:
            logger.exception("Adapter raised while delivering %s", item.id)
            result = DeliveryResult.failed(f"{type(exc).__name__}: {exc}")

        if not isinstance(result, DeliveryResult):
            result = DeliveryResult.failed(f"adapter returned {type(result).__name__}, not DeliveryResult")

        async with self._lock:
            self._record_outcome(item, result)

    def _record_outcome(self, item: QueuedItem, result: DeliveryResult) -> None:
        now = self._clock()
        item.attempts += 1
        item.attempt_history.append(
            AttemptRecord(attempt=item.attempts, at=now, error=None if result.success else result.error)
        )

        if result.success:
            item.status = ItemStatus.SENT
            item.sent_at = now
            item.provider_id = result.id
            item.last_error = None
            self._totals["sent"] += 1
            self._count_processed(item)
            self._log_delivery(item, now)
            logger.info("Sent %s after %d attempt(s)", item.id, item.attempts)
            return

        item.last_error = result.error or "delivery failed"
        self._totals["failed_attempts"] += 1

        if result.permanent or item.attempts >= item.max_attempts:
            self._move_to_dead_letter(item, now, permanent=result.permanent)
            return

        delay = backoff_delay(item.attempts, self.base_delay_ms, self.max_delay_ms)
        item.next_attempt_at = now + delay
        item.status = ItemStatus.PENDING
        logger.warning(
            "Attempt %d/%d failed for %s: %s; retrying in %.1fs",
            item.attempts, item.max_attempts, item.id, item.last_error, delay.total_seconds(),
        )

    def _move_to_dead_letter(self, item: QueuedItem, now: datetime, *, permanent: bool) -> None:
        item.status = ItemStatus.DEAD
        entry = DeadLetterEntry(
            item=copy.deepcopy(item),
            attempt_history=list(item.attempt_history),
            failed_at=now,
        )
        self._totals["dead"] += 1
        self._count_processed(item)
        self._log_delivery(item, now)

        try:
            self.dead_letters.put(entry)
        except SQLAlchemyError:
            # Keep the item visible as ``dead`` in the active store.
            logger.exception("Could not persist dead letter %s", item.id)
            return

        self.store.remove(item.id)
        logger.error(
            "Dead-lettered %s after %d attempt(s)%s: %s",
            item.id, item.attempts, " (permanent failure)" if permanent else "", item.last_error,
        )

    def _count_processed(self, item: QueuedItem) -> None:
        self._totals["processed"] += 1
        self._totals["attempts_of_processed"] += item.attempts

    def _log_delivery(self, item: QueuedItem, now: datetime) -> None:
        if self.delivery_log is None:
            return
        try:
            self.delivery_log.create(
                item_id=item.id,
                notification_type=item.type.value,
                recipient_email=item.recipient.email,
                recipient_name=item.recipient.name or None,
                subject=item.subject,
                status=item.status.value,
                attempts=item.attempts,
                provider_message_id=item.provider_id,
                error=item.last_error,
                recorded_at=now,
            )
        except SQLAlchemyError:
            logger.exception("Could not write delivery log for %s", item.id)

    # -- dead letters -------------------------------------------------------

    def list_dead_letters(self) -> list[DeadLetterEntry]:
        return self.dead_letters.list()

    async def retry(self, item_id: str) -> bool:
        """Move one dead letter back to ``pending`` with ``attempts = 0``."""
        async with self._lock:
            revived = self._revive(item_id, self._clock())
        if revived:
            logger.info("Re-queued dead letter %s", item_id)
        return revived

    async def retry_all(self) -> int:
        async with self._lock:
            now = self._clock()
            count = sum(1 for item_id in self.dead_letters.ids() if self._revive(item_id, now))
        if count:
            logger.info("Re-queued %d dead letter(s)", count)
        return count

    def _revive(self, item_id: str, now: datetime) -> bool:
        entry = self.dead_letters.pop(item_id)
        if entry is None:
            return False
        item = entry.item
        item.status = ItemStatus.PENDING
        item.attempts = 0
        item.attempt_history = []
        item.last_error = None
        item.sent_at = None
        item.provider_id = None
        item.next_attempt_at = now
        item.created_at = now
        item.seq = self.store.next_seq()
        self.store.add(item)
        return True

    async def purge(self, item_id: str) -> bool:
        """Permanently discard one dead letter."""
        async with self._lock:
            deleted = self.dead_letters.delete(item_id)
        if deleted:
            logger.info("Purged dead letter %s", item_id)
        return deleted

    # -- housekeeping -------------------------------------------------------

    async def prune(self) -> int:
        """Drop sent items past retention and dead letters past retention."""
        async with self._lock:
            now = self._clock()
            cutoff = now - self.sent_retention
            stale = [
                item.id
                for item in self.store
                if item.status is ItemStatus.SENT and item.sent_at is not None and item.sent_at <= cutoff
            ]
            for item_id in stale:
                self.store.remove(item_id)
            pruned = len(stale)
            if self.dead_letter_retention is not None:
                pruned += self.dead_letters.prune(now - self.dead_letter_retention)
        if pruned:
            logger.info("Pruned %d queue record(s)", pruned)
        return pruned

    # -- lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Start the worker loop; a no-op if already running.

        Raises ``ConfigurationError`` (and stays stopped) when the delivery
        transport is not configured.
        """
        if self._running:
            logger.debug("Delivery queue already running")
            return
        try:
            self.adapter.check()
        except ConfigurationError as exc:
            logger.error("Delivery queue not started: %s", exc)
            raise

        self._running = True
        self._loop_task = asyncio.create_task(self._run(), name="delivery-queue")
        logger.info(
            "Delivery queue started (concurrency=%d, tick=%.2fs)", self.concurrency_limit, self.tick_interval
        )

    async def stop(self) -> None:
        """Stop ticking and wait for in-flight deliveries; a no-op if stopped."""
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
        logger.info("Delivery queue stopped")

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        last_cleanup = loop.time()
        while True:
            try:
                await self.tick()
                if loop.time() - last_cleanup >= self.cleanup_interval:
                    await self.prune()
                    last_cleanup = loop.time()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Delivery queue tick failed")
            await asyncio.sleep(self.tick_interval)
