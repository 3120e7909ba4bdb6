from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Generic, TypeVar

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from courier.db import models

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT")


class BaseRepository(Generic[ModelT]):
    """Session-factory backed repository; each public call is one transaction."""

    model: type[ModelT]

    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    def create(self, **kwargs) -> ModelT:
        with self.session_factory() as db, db.begin():
            entity = self.model(**kwargs)
            db.add(entity)
            db.flush()
            return entity

    def get(self, entity_id: Any) -> ModelT | None:
        with self.session_factory() as db:
            return db.get(self.model, entity_id)

    def list(self, limit: int = 100, offset: int = 0) -> list[ModelT]:
        with self.session_factory() as db:
            stmt = select(self.model).offset(offset).limit(limit)
            return list(db.execute(stmt).scalars().all())

    def count(self) -> int:
        with self.session_factory() as db:
            return db.execute(select(func.count()).select_from(self.model)).scalar_one()


class DedupRepository(BaseRepository[models.DedupRecord]):
    model = models.DedupRecord

    def claim(
        self,
        notification_type: str,
        send_date: str,
        *,
        sent_at: datetime,
        recipient_count: int,
        details: str | None = None,
    ) -> bool:
        """Insert the ``(type, date)`` row; ``False`` if it already exists."""
        try:
            with self.session_factory() as db, db.begin():
                db.add(
                    models.DedupRecord(
                        notification_type=notification_type,
                        send_date=send_date,
                        sent_at=sent_at,
                        recipient_count=recipient_count,
                        details=details,
                    )
                )
        except IntegrityError:
            return False
        return True

    def find(self, notification_type: str, send_date: str) -> models.DedupRecord | None:
        with self.session_factory() as db:
            stmt = select(models.DedupRecord).where(
                models.DedupRecord.notification_type == notification_type,
                models.DedupRecord.send_date == send_date,
            )
            return db.execute(stmt).scalar_one_or_none()

    def list_for_date(self, send_date: str) -> list[models.DedupRecord]:
        with self.session_factory() as db:
            stmt = (
                select(models.DedupRecord)
                .where(models.DedupRecord.send_date == send_date)
                .order_by(models.DedupRecord.sent_at.asc())
            )
            return list(db.execute(stmt).scalars().all())

    def delete_before(self, send_date: str) -> int:
        with self.session_factory() as db, db.begin():
            result = db.execute(
                delete(models.DedupRecord).where(models.DedupRecord.send_date < send_date)
            )
            return result.rowcount or 0


class JobExecutionRepository(BaseRepository[models.JobExecution]):
    model = models.JobExecution

    def list_recent(self, limit: int = 20, job_id: str | None = None) -> list[models.JobExecution]:
        """Newest first."""
        with self.session_factory() as db:
            stmt = select(models.JobExecution)
            if job_id is not None:
                stmt = stmt.where(models.JobExecution.job_id == job_id)
            stmt = stmt.order_by(
                models.JobExecution.started_at.desc(),
                models.JobExecution.recorded_at.desc(),
            ).limit(limit)
            return list(db.execute(stmt).scalars().all())

    def trim(self, keep: int) -> int:
        """Delete all but the newest *keep* executions."""
        with self.session_factory() as db, db.begin():
            stale = (
                select(models.JobExecution.id)
                .order_by(models.JobExecution.started_at.desc(), models.JobExecution.recorded_at.desc())
                .offset(keep)
            )
            result = db.execute(
                delete(models.JobExecution).where(models.JobExecution.id.in_(stale.scalar_subquery()))
            )
            return result.rowcount or 0


class DeadLetterRepository(BaseRepository[models.DeadLetter]):
    model = models.DeadLetter

    def put(self, **fields) -> models.DeadLetter:
        """Insert or overwrite the dead letter for ``fields['item_id']``."""
        with self.session_factory() as db, db.begin():
            entity = db.merge(models.DeadLetter(**fields))
            db.flush()
            return entity

    def list_all(self) -> list[models.DeadLetter]:
        with self.session_factory() as db:
            stmt = select(models.DeadLetter).order_by(models.DeadLetter.failed_at.desc())
            return list(db.execute(stmt).scalars().all())

    def pop(self, item_id: str) -> models.DeadLetter | None:
        with self.session_factory() as db, db.begin():
            entity = db.get(models.DeadLetter, item_id)
            if entity is None:
                return None
            db.delete(entity)
            return entity

    def delete_before(self, cutoff: datetime) -> int:
        with self.session_factory() as db, db.begin():
            result = db.execute(delete(models.DeadLetter).where(models.DeadLetter.failed_at < cutoff))
            return result.rowcount or 0


class ScheduledJobStateRepository(BaseRepository[models.ScheduledJobState]):
    model = models.ScheduledJobState

    def save(self, job_id: str, **fields) -> models.ScheduledJobState:
        with self.session_factory() as db, db.begin():
            state = db.get(models.ScheduledJobState, job_id)
            if state is None:
                state = models.ScheduledJobState(job_id=job_id)
                db.add(state)
            for key, value in fields.items():
                setattr(state, key, value)
            db.flush()
            return state


class DeliveryLogRepository(BaseRepository[models.DeliveryLogEntry]):
    model = models.DeliveryLogEntry

    def list_for_item(self, item_id: str) -> list[models.DeliveryLogEntry]:
        with self.session_factory() as db:
            stmt = (
                select(models.DeliveryLogEntry)
                .where(models.DeliveryLogEntry.item_id == item_id)
                .order_by(models.DeliveryLogEntry.recorded_at.asc())
            )
            return list(db.execute(stmt).scalars().all())
