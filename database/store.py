"""
SQL stores — Portable SQLAlchemy queries for PostgreSQL, MySQL, SQLite.

Every job update is a conditional UPDATE ... WHERE status = 'PENDING', so
a terminal job can never be moved again regardless of which worker run
holds a stale copy of it.
"""
from __future__ import annotations

import structlog
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import select, update, and_

from database.models import ContactRow, MessageJobRow, TenantSettingsRow
from database.session import get_session
from database.store_base import (
    BaseContactStore, BaseJobStore, BaseTenantSettingsStore, created_window,
)
from models.schemas import (
    Contact, Job, JobPayload, JobStatus, TenantMessagingSettings,
)

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class SqlJobStore(BaseJobStore):
    """Persistent job queue backed by any SQLAlchemy-supported database."""

    async def insert_batch(self, jobs: list[Job]) -> None:
        if not jobs:
            return
        async with get_session() as db:
            db.add_all([self._job_to_row(job) for job in jobs])
        logger.info("jobs_inserted", count=len(jobs), tenant_id=jobs[0].tenant_id)

    async def select_due_pending(self, limit: int, now: Optional[datetime] = None) -> list[Job]:
        now = now or _utcnow()
        async with get_session() as db:
            stmt = (
                select(MessageJobRow)
                .where(and_(
                    MessageJobRow.status == JobStatus.PENDING.value,
                    MessageJobRow.scheduled_at <= now,
                ))
                .order_by(MessageJobRow.scheduled_at.asc())
                .limit(limit)
            )
            result = await db.execute(stmt)
            return [self._row_to_job(row) for row in result.scalars()]

    async def update_on_success(self, job_id: str, provider_message_id: Optional[str],
                                sent_at: Optional[datetime] = None) -> bool:
        now = _utcnow()
        async with get_session() as db:
            stmt = (
                update(MessageJobRow)
                .where(and_(
                    MessageJobRow.id == job_id,
                    MessageJobRow.status == JobStatus.PENDING.value,
                ))
                .values(
                    status=JobStatus.SENT.value,
                    provider_message_id=provider_message_id,
                    sent_at=sent_at or now,
                    last_error=None,
                    updated_at=now,
                )
            )
            result = await db.execute(stmt)
            return result.rowcount > 0

    async def update_on_failure(self, job_id: str, status: JobStatus, attempts: int,
                                scheduled_at: datetime, error: str) -> bool:
        async with get_session() as db:
            stmt = (
                update(MessageJobRow)
                .where(and_(
                    MessageJobRow.id == job_id,
                    MessageJobRow.status == JobStatus.PENDING.value,
                ))
                .values(
                    status=status.value,
                    attempts=attempts,
                    scheduled_at=scheduled_at,
                    last_error=error,
                    updated_at=_utcnow(),
                )
            )
            result = await db.execute(stmt)
            return result.rowcount > 0

    async def get_job(self, job_id: str) -> Optional[Job]:
        async with get_session() as db:
            row = await db.get(MessageJobRow, job_id)
            return self._row_to_job(row) if row else None

    async def list_jobs(self, tenant_id: str, status: Optional[JobStatus] = None,
                        limit: int = 100) -> list[Job]:
        async with get_session() as db:
            stmt = select(MessageJobRow).where(MessageJobRow.tenant_id == tenant_id)
            if status is not None:
                stmt = stmt.where(MessageJobRow.status == status.value)
            stmt = stmt.order_by(MessageJobRow.created_at.desc()).limit(limit)
            result = await db.execute(stmt)
            return [self._row_to_job(row) for row in result.scalars()]

    # ── Mapping ───────────────────────────────────────────

    @staticmethod
    def _job_to_row(job: Job) -> MessageJobRow:
        return MessageJobRow(
            id=job.id,
            tenant_id=job.tenant_id,
            contact_id=job.contact_id,
            channel=job.channel.value,
            type=job.type.value,
            status=job.status.value,
            payload=job.payload.model_dump(mode="json"),
            attempts=job.attempts,
            scheduled_at=job.scheduled_at,
            last_error=job.last_error,
            provider_message_id=job.provider_message_id,
            sent_at=job.sent_at,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )

    @staticmethod
    def _row_to_job(row: MessageJobRow) -> Job:
        return Job(
            id=row.id,
            tenant_id=row.tenant_id,
            contact_id=row.contact_id,
            channel=row.channel,
            type=row.type,
            status=row.status,
            payload=JobPayload.model_validate(row.payload or {}),
            attempts=row.attempts or 0,
            scheduled_at=_as_utc(row.scheduled_at),
            last_error=row.last_error,
            provider_message_id=row.provider_message_id,
            sent_at=_as_utc(row.sent_at),
            created_at=_as_utc(row.created_at),
            updated_at=_as_utc(row.updated_at),
        )


class SqlContactStore(BaseContactStore):

    async def get_contacts(self, contact_ids: list[str]) -> dict[str, Contact]:
        ids = list(set(contact_ids))
        if not ids:
            return {}
        async with get_session() as db:
            result = await db.execute(select(ContactRow).where(ContactRow.id.in_(ids)))
            return {row.id: self._row_to_contact(row) for row in result.scalars()}

    async def find_opted_in_between(self, tenant_id: str, date_from: date,
                                    date_to: date) -> list[Contact]:
        start, end = created_window(date_from, date_to)
        async with get_session() as db:
            stmt = (
                select(ContactRow)
                .where(and_(
                    ContactRow.tenant_id == tenant_id,
                    ContactRow.opt_in_whatsapp.is_(True),
                    ContactRow.created_at >= start,
                    ContactRow.created_at <= end,
                ))
                .order_by(ContactRow.created_at.asc())
            )
            result = await db.execute(stmt)
            return [self._row_to_contact(row) for row in result.scalars()]

    @staticmethod
    def _row_to_contact(row: ContactRow) -> Contact:
        return Contact(
            id=row.id,
            tenant_id=row.tenant_id,
            name=row.name or "",
            phone=row.phone_e164 or "",
            opt_in_whatsapp=bool(row.opt_in_whatsapp),
            created_at=_as_utc(row.created_at),
        )


class SqlTenantSettingsStore(BaseTenantSettingsStore):

    async def get_settings(self, tenant_id: str) -> Optional[TenantMessagingSettings]:
        async with get_session() as db:
            row = await db.get(TenantSettingsRow, tenant_id)
            if not row:
                return None
            return TenantMessagingSettings(
                tenant_id=row.tenant_id,
                group_link=row.group_link or "",
                template_name=row.template_name or "",
                messaging_enabled=bool(row.messaging_enabled),
            )

    async def upsert_settings(self, settings: TenantMessagingSettings) -> TenantMessagingSettings:
        async with get_session() as db:
            row = await db.get(TenantSettingsRow, settings.tenant_id)
            if row:
                row.group_link = settings.group_link or None
                row.template_name = settings.template_name
                row.messaging_enabled = settings.messaging_enabled
            else:
                db.add(TenantSettingsRow(
                    tenant_id=settings.tenant_id,
                    group_link=settings.group_link or None,
                    template_name=settings.template_name,
                    messaging_enabled=settings.messaging_enabled,
                ))
        return settings
