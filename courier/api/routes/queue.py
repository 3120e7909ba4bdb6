"""Delivery queue routes.

GET    /queue/stats                          counts per status and totals
POST   /queue/items                          enqueue one notification
GET    /queue/items/{item_id}                status of one item (active or dead)
DELETE /queue/items/{item_id}                cancel a pending item
GET    /queue/dead-letters                   list dead letters
POST   /queue/dead-letters/retry-all         re-queue every dead letter
POST   /queue/dead-letters/{item_id}/retry   re-queue one dead letter
DELETE /queue/dead-letters/{item_id}         purge one dead letter
"""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from courier.admin.service import AdminService
from courier.api.deps import get_admin
from courier.core.constants import NotificationType, Priority
from courier.core.errors import NotificationValidationError
from courier.queue.models import Notification, Recipient

router = APIRouter(prefix="/queue", tags=["queue"])


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class RecipientBody(BaseModel):
    email: str
    name: str = ""
    id: int | None = None


class EnqueueBody(BaseModel):
    type: NotificationType
    recipient: RecipientBody
    subject: str
    body_html: str
    body_text: str | None = None
    priority: Priority = Priority.NORMAL
    max_attempts: int | None = Field(default=None, ge=1)
    metadata: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.get("/stats", summary="Queue statistics")
def get_stats(admin: AdminService = Depends(get_admin)):
    return admin.get_queue_stats()


@router.post("/items", status_code=201, summary="Enqueue a notification")
async def enqueue(body: EnqueueBody, admin: AdminService = Depends(get_admin)):
    notification = Notification(
        type=body.type,
        recipient=Recipient(email=body.recipient.email, name=body.recipient.name, id=body.recipient.id),
        subject=body.subject,
        body_html=body.body_html,
        body_text=body.body_text,
        priority=body.priority,
        max_attempts=body.max_attempts,
        metadata=body.metadata,
    )
    try:
        return await admin.enqueue_notification(notification)
    except NotificationValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc))


@router.get("/items/{item_id}", summary="Status of a queued item")
def get_item(item_id: str, admin: AdminService = Depends(get_admin)):
    item = admin.get_notification_status(item_id)
    if item is None:
        raise HTTPException(status_code=404, detail=f"Notification {item_id} not found")
    return item


@router.delete("/items/{item_id}", summary="Cancel a pending item")
async def cancel_item(item_id: str, admin: AdminService = Depends(get_admin)):
    return await admin.cancel_notification(item_id)


@router.get("/dead-letters", summary="List dead letters")
def list_dead_letters(admin: AdminService = Depends(get_admin)):
    return admin.get_dead_letter_notifications()


@router.post("/dead-letters/retry-all", summary="Re-queue every dead letter")
async def retry_all(admin: AdminService = Depends(get_admin)):
    return await admin.retry_all_failed_notifications()


@router.post("/dead-letters/{item_id}/retry", summary="Re-queue one dead letter")
async def retry_dead_letter(item_id: str, admin: AdminService = Depends(get_admin)):
    result = await admin.retry_failed_notification(item_id)
    if not result["retried"]:
        raise HTTPException(status_code=404, detail=f"Dead letter {item_id} not found")
    return result


@router.delete("/dead-letters/{item_id}", summary="Purge one dead letter")
async def purge_dead_letter(item_id: str, admin: AdminService = Depends(get_admin)):
    result = await admin.purge_failed_notification(item_id)
    if not result["purged"]:
        raise HTTPException(status_code=404, detail=f"Dead letter {item_id} not found")
    return result
