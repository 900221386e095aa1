"""
In-memory stores — Dict-backed backends for development and testing.

Features:
  - Zero dependencies (no database)
  - Full interface compatibility with the SQL stores
  - Safe within a single event loop (no awaits inside a mutation)
  - All data lost on process restart

Best for: local development, unit tests, quick prototyping.
"""
from __future__ import annotations

import structlog
from datetime import date, datetime, timezone
from typing import Optional

from database.store_base import (
    BaseContactStore, BaseJobStore, BaseTenantSettingsStore, created_window,
)
from models.schemas import Contact, Job, JobStatus, TenantMessagingSettings

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class InMemoryJobStore(BaseJobStore):
    """Job queue kept in a dict; returns copies so callers never alias stored rows."""

    def __init__(self):
        self._jobs: dict[str, Job] = {}
        logger.info("inmemory_job_store_initialized")

    async def insert_batch(self, jobs: list[Job]) -> None:
        ids = [job.id for job in jobs]
        if len(set(ids)) != len(ids) or any(i in self._jobs for i in ids):
            raise ValueError("Duplicate job id in batch")
        for job in jobs:
            self._jobs[job.id] = job.model_copy(deep=True)

    async def select_due_pending(self, limit: int, now: Optional[datetime] = None) -> list[Job]:
        now = now or _utcnow()
        due = [
            j for j in self._jobs.values()
            if j.status == JobStatus.PENDING and _as_utc(j.scheduled_at) <= now
        ]
        due.sort(key=lambda j: _as_utc(j.scheduled_at))
        return [j.model_copy(deep=True) for j in due[:limit]]

    async def update_on_success(self, job_id: str, provider_message_id: Optional[str],
                                sent_at: Optional[datetime] = None) -> bool:
        job = self._jobs.get(job_id)
        if not job or job.status != JobStatus.PENDING:
            return False
        now = _utcnow()
        job.status = JobStatus.SENT
        job.provider_message_id = provider_message_id
        job.sent_at = sent_at or now
        job.last_error = None
        job.updated_at = now
        return True

    async def update_on_failure(self, job_id: str, status: JobStatus, attempts: int,
                                scheduled_at: datetime, error: str) -> bool:
        job = self._jobs.get(job_id)
        if not job or job.status != JobStatus.PENDING:
            return False
        job.status = status
        job.attempts = attempts
        job.scheduled_at = scheduled_at
        job.last_error = error
        job.updated_at = _utcnow()
        return True

    async def get_job(self, job_id: str) -> Optional[Job]:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def list_jobs(self, tenant_id: str, status: Optional[JobStatus] = None,
                        limit: int = 100) -> list[Job]:
        rows = [
            j for j in self._jobs.values()
            if j.tenant_id == tenant_id and (status is None or j.status == status)
        ]
        rows.sort(key=lambda j: _as_utc(j.created_at), reverse=True)
        return [j.model_copy(deep=True) for j in rows[:limit]]


class InMemoryContactStore(BaseContactStore):

    def __init__(self, contacts: Optional[list[Contact]] = None):
        self._contacts: dict[str, Contact] = {}
        for contact in contacts or []:
            self.upsert_contact(contact)

    def upsert_contact(self, contact: Contact) -> Contact:
        self._contacts[contact.id] = contact.model_copy(deep=True)
        return contact

    def remove_contact(self, contact_id: str) -> None:
        self._contacts.pop(contact_id, None)

    async def get_contacts(self, contact_ids: list[str]) -> dict[str, Contact]:
        return {
            cid: self._contacts[cid].model_copy(deep=True)
            for cid in set(contact_ids) if cid in self._contacts
        }

    async def find_opted_in_between(self, tenant_id: str, date_from: date,
                                    date_to: date) -> list[Contact]:
        start, end = created_window(date_from, date_to)
        rows = [
            c for c in self._contacts.values()
            if c.tenant_id == tenant_id
            and c.opt_in_whatsapp
            and start <= _as_utc(c.created_at) <= end
        ]
        rows.sort(key=lambda c: _as_utc(c.created_at))
        return [c.model_copy(deep=True) for c in rows]


class InMemoryTenantSettingsStore(BaseTenantSettingsStore):

    def __init__(self):
        self._settings: dict[str, TenantMessagingSettings] = {}

    async def get_settings(self, tenant_id: str) -> Optional[TenantMessagingSettings]:
        found = self._settings.get(tenant_id)
        return found.model_copy() if found else None

    async def upsert_settings(self, settings: TenantMessagingSettings) -> TenantMessagingSettings:
        self._settings[settings.tenant_id] = settings.model_copy()
        return settings
