"""Delivery queue: bounded-concurrency worker loop with retry and dead letters."""
from courier.queue.backoff import backoff_delay
from courier.queue.delivery_queue import DeliveryQueue
from courier.queue.models import AttemptRecord, DeadLetterEntry, Notification, QueuedItem, Recipient
from courier.queue.store import ActiveItemStore, DeadLetterStore

__all__ = [
    "ActiveItemStore",
    "AttemptRecord",
    "DeadLetterEntry",
    "DeadLetterStore",
    "DeliveryQueue",
    "Notification",
    "QueuedItem",
    "Recipient",
    "backoff_delay",
]
