"""
Welcome Enqueuer — turns newly registered contacts into PENDING jobs.

Given a caller scope and a closed date range, selects the tenant's
consenting contacts created in that range, renders one payload per
contact and inserts all jobs in a single batch.

The enqueuer does not deduplicate against earlier batches: enqueuing the
same range twice queues every contact twice. Choosing non-overlapping
ranges is the caller's job.
"""
from __future__ import annotations

import re
import structlog
from datetime import date, datetime, timezone
from typing import Optional

from channels.whatsapp_adapter import normalize_phone
from config.settings import DispatchConfig
from database.store_base import BaseContactStore, BaseJobStore, BaseTenantSettingsStore
from job_queue.errors import (
    InvalidRange, MessagingDisabled, MissingTenant, MissingTestDestination,
    PermissionDenied, ScopeViolation, StorageError,
)
from job_queue.rendering import display_name, render_welcome_text
from models.schemas import (
    CallerScope, DispatchMode, EnqueueRequest, EnqueueResult, Job, JobPayload,
    MessageMode, TenantMessagingSettings,
)

logger = structlog.get_logger()

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_iso_date(value: Optional[str], field: str) -> date:
    value = (value or "").strip()
    if not _ISO_DATE.match(value):
        raise InvalidRange(f"{field} must be a YYYY-MM-DD date")
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise InvalidRange(f"{field} is not a valid calendar date") from None


def resolve_tenant(scope: CallerScope, requested: Optional[str], allowed_roles: list[str]) -> str:
    """Effective tenant for a caller, enforcing role and tenant scope."""
    if not scope.has_any_role(allowed_roles):
        raise PermissionDenied()

    tenant_id = (requested or "").strip() or (scope.tenant_id or "")
    if not tenant_id:
        raise MissingTenant("Could not resolve tenant_id")

    if not scope.is_global and tenant_id != scope.tenant_id:
        raise ScopeViolation(tenant_id)
    return tenant_id


class WelcomeEnqueuer:
    """Creates one welcome job per consenting contact in a date range."""

    def __init__(
        self,
        jobs: BaseJobStore,
        contacts: BaseContactStore,
        tenant_settings: BaseTenantSettingsStore,
        config: DispatchConfig = None,
    ):
        self.jobs = jobs
        self.contacts = contacts
        self.tenant_settings = tenant_settings
        self.config = config or DispatchConfig()

    async def enqueue(self, scope: CallerScope, request: EnqueueRequest) -> EnqueueResult:
        date_from = parse_iso_date(request.date_from, "date_from")
        date_to = parse_iso_date(request.date_to, "date_to")
        if date_from > date_to:
            raise InvalidRange("date_from cannot be after date_to")

        tenant_id = resolve_tenant(scope, request.tenant_id, self.config.enqueue_roles)

        dispatch_mode = (
            DispatchMode.TEST
            if (request.dispatch_mode or "").strip().upper() == DispatchMode.TEST.value
            else DispatchMode.PRODUCTION
        )
        test_phone = normalize_phone(request.test_phone or "")
        if dispatch_mode == DispatchMode.TEST and not test_phone:
            raise MissingTestDestination()

        settings = await self._load_settings(tenant_id)
        if not settings.messaging_enabled:
            raise MessagingDisabled(tenant_id)

        group_link = settings.group_link.strip()
        template_name = settings.template_name.strip()
        mode = self._resolve_mode(request.mode, template_name)

        try:
            contacts = await self.contacts.find_opted_in_between(tenant_id, date_from, date_to)
        except Exception as e:
            logger.error("enqueue_contacts_load_failed", tenant_id=tenant_id, error=str(e))
            raise StorageError(f"Failed to load contacts: {e}") from e

        now = datetime.now(timezone.utc)
        jobs: list[Job] = []
        for contact in contacts:
            to = normalize_phone(contact.phone)
            if not to:
                continue
            name = display_name(contact.name, self.config.fallback_name)
            jobs.append(Job(
                tenant_id=tenant_id,
                contact_id=contact.id,
                scheduled_at=now,
                created_at=now,
                updated_at=now,
                payload=JobPayload(
                    to=to,
                    name=name,
                    group_link=group_link,
                    template_name=template_name,
                    mode=mode,
                    text=render_welcome_text(name, group_link),
                    dispatch_mode=dispatch_mode,
                    test_phone=test_phone if dispatch_mode == DispatchMode.TEST else None,
                ),
            ))

        skipped = len(contacts) - len(jobs)
        if jobs:
            try:
                await self.jobs.insert_batch(jobs)
            except Exception as e:
                logger.error("enqueue_insert_failed",
                             tenant_id=tenant_id, count=len(jobs), error=str(e))
                raise StorageError(f"Failed to enqueue jobs: {e}") from e

        logger.info("welcome_jobs_enqueued",
                    tenant_id=tenant_id,
                    queued=len(jobs),
                    skipped_invalid_phone=skipped,
                    mode=mode.value,
                    dispatch_mode=dispatch_mode.value,
                    user_id=scope.user_id)

        return EnqueueResult(
            queued=len(jobs),
            skipped_invalid_phone=skipped,
            tenant_id=tenant_id,
            mode=mode,
            dispatch_mode=dispatch_mode,
        )

    async def _load_settings(self, tenant_id: str) -> TenantMessagingSettings:
        try:
            settings = await self.tenant_settings.get_settings(tenant_id)
        except Exception as e:
            logger.error("enqueue_settings_load_failed", tenant_id=tenant_id, error=str(e))
            raise StorageError(f"Failed to load tenant settings: {e}") from e
        if settings is None:
            return TenantMessagingSettings(
                tenant_id=tenant_id, template_name=self.config.default_template,
            )
        return settings

    @staticmethod
    def _resolve_mode(requested: Optional[str], template_name: str) -> MessageMode:
        requested = (requested or "").strip().lower()
        if requested == MessageMode.TEMPLATE.value:
            return MessageMode.TEMPLATE
        if requested == MessageMode.TEXT.value:
            return MessageMode.TEXT
        return MessageMode.TEMPLATE if template_name else MessageMode.TEXT
