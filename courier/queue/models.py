"""Queue domain types.

``Notification`` is what callers enqueue; ``QueuedItem`` is the queue's
own record of it and is owned exclusively by ``DeliveryQueue``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from courier.core.constants import ItemStatus, NotificationType, Priority
from courier.core.errors import NotificationValidationError
from courier.core.timeutil import ensure_utc, isoformat


@dataclass(frozen=True)
class Recipient:
    email: str
    name: str = ""
    id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"email": self.email, "name": self.name, "id": self.id}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Recipient:
        return cls(email=data["email"], name=data.get("name") or "", id=data.get("id"))


@dataclass
class Notification:
    """A rendered notification ready to be enqueued."""

    type: NotificationType | str
    recipient: Recipient | None
    subject: str
    body_html: str
    body_text: str | None = None
    priority: Priority | str = Priority.NORMAL
    max_attempts: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        """Coerce enum fields in place; raise ``NotificationValidationError``."""
        try:
            self.type = NotificationType(self.type)
        except ValueError:
            raise NotificationValidationError(f"Unknown notification type {self.type!r}") from None
        try:
            self.priority = Priority(self.priority)
        except ValueError:
            raise NotificationValidationError(
                f"Unknown priority {self.priority!r}; must be one of {[p.value for p in Priority]}"
            ) from None

        if self.recipient is None or not (self.recipient.email or "").strip():
            raise NotificationValidationError("recipient email is required")
        if not (self.subject or "").strip():
            raise NotificationValidationError("subject is required")
        if not (self.body_html or "").strip():
            raise NotificationValidationError("body_html is required")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise NotificationValidationError("max_attempts must be >= 1")


@dataclass(frozen=True)
class AttemptRecord:
    attempt: int
    at: datetime
    error: str | None

    def to_dict(self) -> dict[str, Any]:
        return {"attempt": self.attempt, "at": isoformat(self.at), "error": self.error}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AttemptRecord:
        return cls(
            attempt=int(data["attempt"]),
            at=ensure_utc(datetime.fromisoformat(data["at"])),
            error=data.get("error"),
        )


@dataclass
class QueuedItem:
    id: str
    type: NotificationType
    recipient: Recipient
    subject: str
    body_html: str
    body_text: str | None
    priority: Priority
    status: ItemStatus
    attempts: int
    max_attempts: int
    next_attempt_at: datetime
    created_at: datetime
    seq: int
    metadata: dict[str, Any] = field(default_factory=dict)
    last_error: str | None = None
    last_attempt_at: datetime | None = None
    sent_at: datetime | None = None
    provider_id: str | None = None
    attempt_history: list[AttemptRecord] = field(default_factory=list)

    @property
    def payload(self) -> dict[str, Any]:
        return {"subject": self.subject, "body_html": self.body_html, "body_text": self.body_text}

    def sort_key(self) -> tuple[int, datetime, int]:
        """Higher priority first, then oldest, then enqueue order."""
        return (self.priority.rank, self.created_at, self.seq)

    def snapshot(self) -> dict[str, Any]:
        """JSON-safe copy, used for status queries and dead-letter storage."""
        return {
            "id": self.id,
            "type": self.type.value,
            "recipient": self.recipient.to_dict(),
            "subject": self.subject,
            "body_html": self.body_html,
            "body_text": self.body_text,
            "priority": self.priority.value,
            "status": self.status.value,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "next_attempt_at": isoformat(self.next_attempt_at),
            "created_at": isoformat(self.created_at),
            "seq": self.seq,
            "metadata": dict(self.metadata),
            "last_error": self.last_error,
            "last_attempt_at": isoformat(self.last_attempt_at),
            "sent_at": isoformat(self.sent_at),
            "provider_id": self.provider_id,
            "attempt_history": [a.to_dict() for a in self.attempt_history],
        }

    @classmethod
    def from_snapshot(cls, data: dict[str, Any]) -> QueuedItem:
        def _dt(key: str) -> datetime | None:
            value = data.get(key)
            return ensure_utc(datetime.fromisoformat(value)) if value else None

        return cls(
            id=data["id"],
            type=NotificationType(data["type"]),
            recipient=Recipient.from_dict(data["recipient"]),
            subject=data["subject"],
            body_html=data["body_html"],
            body_text=data.get("body_text"),
            priority=Priority(data["priority"]),
            status=ItemStatus(data["status"]),
            attempts=int(data["attempts"]),
            max_attempts=int(data["max_attempts"]),
            next_attempt_at=_dt("next_attempt_at"),
            created_at=_dt("created_at"),
            seq=int(data.get("seq", 0)),
            metadata=dict(data.get("metadata") or {}),
            last_error=data.get("last_error"),
            last_attempt_at=_dt("last_attempt_at"),
            sent_at=_dt("sent_at"),
            provider_id=data.get("provider_id"),
            attempt_history=[AttemptRecord.from_dict(a) for a in data.get("attempt_history") or []],
        )


@dataclass(frozen=True)
class DeadLetterEntry:
    item: QueuedItem
    attempt_history: list[AttemptRecord]
    failed_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "item": self.item.snapshot(),
            "attempt_history": [a.to_dict() for a in self.attempt_history],
            "failed_at": isoformat(self.failed_at),
        }
