"""
Dispatch Worker — delivers one batch of due jobs through the provider.

Runs as a stateless execution, triggered on a schedule or on demand:

  ┌──────────────┐  select due   ┌────────────┐  send   ┌──────────────┐
  │  Job Store   │──────────────▶│   Worker   │────────▶│   Provider   │
  │ (PENDING,    │◀──────────────│  run_once  │◀────────│   Client     │
  │  due first)  │ update per job└────────────┘  result └──────────────┘
  └──────────────┘

Every job is processed and persisted on its own: a provider failure, a
missing recipient or a failed row update for one job never touches its
siblings. A run killed midway leaves unprocessed jobs PENDING at their
previous scheduled_at, so re-running is always safe.

There is no claim step before sending; two overlapping runs can select the
same due job and send it twice.
"""
from __future__ import annotations

import asyncio
import structlog
from datetime import datetime, timezone
from typing import Callable, Optional

from channels.base import ProviderClient
from channels.whatsapp_adapter import normalize_phone
from config.settings import DispatchConfig
from database.store_base import BaseContactStore, BaseJobStore
from job_queue.errors import StorageError
from job_queue.rendering import display_name, render_welcome_text
from job_queue.retry_policy import RetryPolicy
from models.schemas import (
    Contact, DispatchMode, Job, MessageMode, ProviderRequest, TemplateRequest,
    TextRequest, WorkerRunResult,
)

logger = structlog.get_logger()


class DeliveryError(Exception):
    """A job could not be delivered this attempt; consumes an attempt."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def resolve_destination(job: Job, contact: Optional[Contact]) -> str:
    """
    TEST override wins when present; otherwise the destination recorded at
    enqueue time, falling back to the contact's live phone.
    """
    payload = job.payload
    test_phone = normalize_phone(payload.test_phone or "")
    if payload.dispatch_mode == DispatchMode.TEST and test_phone:
        return test_phone
    recorded = normalize_phone(payload.to)
    if recorded:
        return recorded
    return normalize_phone(contact.phone) if contact else ""


class DispatchWorker:
    """
    Processes due PENDING jobs.

    Usage:
        worker = DispatchWorker(stores.jobs, stores.contacts, provider, config)
        result = await worker.run_once()   # {processed, sent, failed}
    """

    def __init__(
        self,
        jobs: BaseJobStore,
        contacts: BaseContactStore,
        provider: ProviderClient,
        config: DispatchConfig = None,
        language_code: str = "pt_BR",
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.jobs = jobs
        self.contacts = contacts
        self.provider = provider
        self.config = config or DispatchConfig()
        self.language_code = language_code
        self.policy = RetryPolicy(
            max_attempts=self.config.max_attempts,
            backoff_seconds=self.config.retry_backoff_seconds,
        )
        self._clock = clock

    async def run_once(self) -> WorkerRunResult:
        now = self._clock()
        try:
            due = await self.jobs.select_due_pending(self.config.batch_size, now)
        except Exception as e:
            logger.error("worker_select_failed", error=str(e))
            raise StorageError(f"Failed to load due jobs: {e}") from e

        if not due:
            return WorkerRunResult()

        try:
            contacts = await self.contacts.get_contacts([job.contact_id for job in due])
        except Exception as e:
            logger.error("worker_contacts_load_failed", error=str(e), jobs=len(due))
            raise StorageError(f"Failed to load recipients: {e}") from e

        semaphore = asyncio.Semaphore(max(1, self.config.concurrency))

        async def guarded(job: Job) -> bool:
            async with semaphore:
                return await self._process(job, contacts.get(job.contact_id))

        outcomes = await asyncio.gather(*(guarded(job) for job in due))

        result = WorkerRunResult(
            processed=len(outcomes),
            sent=sum(1 for ok in outcomes if ok),
            failed=sum(1 for ok in outcomes if not ok),
        )
        logger.info("worker_run_complete", **result.model_dump())
        return result

    # ── Per job ───────────────────────────────────────────

    async def _process(self, job: Job, contact: Optional[Contact]) -> bool:
        """Deliver and persist one job. Returns True when the provider accepted it."""
        try:
            message_id = await self._deliver(job, contact)
        except Exception as e:
            await self._record_failure(job, str(e) or type(e).__name__)
            return False

        try:
            updated = await self.jobs.update_on_success(job.id, message_id, self._clock())
        except Exception as e:
            # Sent but not recorded: the job stays PENDING and may be sent again.
            logger.error("job_update_failed", job_id=job.id, outcome="sent", error=str(e))
            return True

        if not updated:
            logger.warning("job_update_skipped", job_id=job.id, outcome="sent")
        else:
            logger.info("job_sent", job_id=job.id, tenant_id=job.tenant_id,
                        attempts=job.attempts, provider_message_id=message_id)
        return True

    async def _deliver(self, job: Job, contact: Optional[Contact]) -> Optional[str]:
        if contact is None:
            raise DeliveryError("Contact not found")
        if not contact.opt_in_whatsapp:
            raise DeliveryError("Contact has no WhatsApp opt-in")

        to = resolve_destination(job, contact)
        if not to:
            raise DeliveryError("Invalid destination phone")

        result = await self.provider.send(self.build_request(job, contact, to))
        if not result.ok:
            raise DeliveryError(result.error or f"Provider returned status {result.status_code}")
        return result.provider_message_id

    def build_request(self, job: Job, contact: Optional[Contact], to: str) -> ProviderRequest:
        payload = job.payload
        name = display_name(payload.name or (contact.name if contact else ""),
                            self.config.fallback_name)
        group_link = payload.group_link.strip()

        if payload.mode == MessageMode.TEMPLATE:
            return TemplateRequest(
                to=to,
                template_name=payload.template_name.strip() or self.config.default_template,
                language=self.language_code,
                parameters=[name, group_link],
            )
        if payload.mode == MessageMode.TEXT:
            body = payload.text.strip() or render_welcome_text(name, group_link)
            return TextRequest(to=to, body=body)
        raise ValueError(f"Unknown message mode: {payload.mode}")

    async def _record_failure(self, job: Job, error: str) -> None:
        transition = self.policy.on_failure(job.attempts, self._clock())
        try:
            updated = await self.jobs.update_on_failure(
                job.id,
                status=transition.status,
                attempts=transition.attempts,
                scheduled_at=transition.scheduled_at,
                error=error,
            )
        except Exception as e:
            logger.error("job_update_failed", job_id=job.id, outcome="failed", error=str(e))
            return

        if not updated:
            logger.warning("job_update_skipped", job_id=job.id, outcome="failed")
        elif transition.will_retry:
            logger.info("job_scheduled_for_retry",
                        job_id=job.id,
                        attempts=transition.attempts,
                        scheduled_at=transition.scheduled_at.isoformat(),
                        error=error[:500])
        else:
            logger.warning("job_failed_permanently",
                           job_id=job.id,
                           attempts=transition.attempts,
                           error=error[:500])
