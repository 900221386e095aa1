"""
Abstract stores — interfaces for all storage backends.

Implementations:
  - Sql*Store      (PostgreSQL / MySQL / SQLite via SQLAlchemy)
  - InMemory*Store (dict-based, single-process, no persistence)

BaseJobStore is the only way anything reads or writes message jobs, so
the job status invariants are enforced here: updates only ever apply to
PENDING rows. Contacts and tenant settings belong to the surrounding
application and are read fresh on every call.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, datetime, time, timezone
from typing import Optional

from models.schemas import Contact, Job, JobStatus, TenantMessagingSettings


class BaseJobStore(ABC):
    """Persisted dispatch queue."""

    @abstractmethod
    async def insert_batch(self, jobs: list[Job]) -> None:
        """Insert all jobs or none of them."""
        ...

    @abstractmethod
    async def select_due_pending(self, limit: int, now: Optional[datetime] = None) -> list[Job]:
        """PENDING jobs with scheduled_at <= now, oldest due first."""
        ...

    @abstractmethod
    async def update_on_success(self, job_id: str, provider_message_id: Optional[str],
                                sent_at: Optional[datetime] = None) -> bool:
        """Mark a PENDING job SENT. Attempts are left unchanged."""
        ...

    @abstractmethod
    async def update_on_failure(self, job_id: str, status: JobStatus, attempts: int,
                                scheduled_at: datetime, error: str) -> bool:
        """Record a failed attempt on a PENDING job (retry or exhaustion)."""
        ...

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[Job]:
        ...

    @abstractmethod
    async def list_jobs(self, tenant_id: str, status: Optional[JobStatus] = None,
                        limit: int = 100) -> list[Job]:
        """Most recently created first, for operator inspection."""
        ...


class BaseContactStore(ABC):
    """Read access to the tenant contact registry."""

    @abstractmethod
    async def get_contacts(self, contact_ids: list[str]) -> dict[str, Contact]:
        ...

    @abstractmethod
    async def find_opted_in_between(self, tenant_id: str, date_from: date,
                                    date_to: date) -> list[Contact]:
        """Opted-in contacts created in [date_from 00:00, date_to 23:59:59.999999] UTC."""
        ...


class BaseTenantSettingsStore(ABC):

    @abstractmethod
    async def get_settings(self, tenant_id: str) -> Optional[TenantMessagingSettings]:
        ...

    @abstractmethod
    async def upsert_settings(self, settings: TenantMessagingSettings) -> TenantMessagingSettings:
        ...


def created_window(date_from: date, date_to: date) -> tuple[datetime, datetime]:
    """Inclusive UTC bounds covering both calendar days entirely."""
    start = datetime.combine(date_from, time.min, tzinfo=timezone.utc)
    end = datetime.combine(date_to, time.max, tzinfo=timezone.utc)
    return start, end
