"""
Core data models for the welcome dispatch pipeline.
These are the universal types shared across all modules.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class ChannelType(str, Enum):
    WHATSAPP = "whatsapp"


class JobType(str, Enum):
    WELCOME = "welcome"


class JobStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"       # terminal after max attempts


TERMINAL_STATUSES = frozenset({JobStatus.SENT, JobStatus.FAILED})


class DispatchMode(str, Enum):
    TEST = "TEST"               # every send goes to the override destination
    PRODUCTION = "PRODUCTION"


class MessageMode(str, Enum):
    TEMPLATE = "template"
    TEXT = "text"


# ──────────────────────────────────────────────────────────────
#  External collaborators — read-only from this pipeline
# ──────────────────────────────────────────────────────────────

class Contact(BaseModel):
    """A registered person of a tenant (owned by the contact registry)."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    tenant_id: str
    name: str = ""
    phone: str = ""                           # as typed at registration, may be unformatted
    opt_in_whatsapp: bool = False
    created_at: datetime = Field(default_factory=_utcnow)


class TenantMessagingSettings(BaseModel):
    """Per-tenant messaging configuration. Missing settings mean these defaults."""
    tenant_id: str
    group_link: str = ""
    template_name: str = "welcome_ccm"
    messaging_enabled: bool = True


class CallerScope(BaseModel):
    """What the auth collaborator tells us about the caller."""
    user_id: str = ""
    roles: list[str] = []
    tenant_id: Optional[str] = None
    is_global_admin: bool = False

    @property
    def is_global(self) -> bool:
        return self.is_global_admin or "SUPER_ADMIN" in self.roles

    def has_any_role(self, roles: list[str]) -> bool:
        return any(role in roles for role in self.roles)


# ──────────────────────────────────────────────────────────────
#  Job — one queued outbound message
# ──────────────────────────────────────────────────────────────

class JobPayload(BaseModel):
    """
    Everything the worker needs to render and send one message.
    Fixed at enqueue time; the job store never looks inside.
    """
    to: str = ""                              # normalized digits, may be empty
    name: str = ""
    group_link: str = ""
    template_name: str = ""
    mode: MessageMode = MessageMode.TEXT
    text: str = ""                            # rendered fallback body
    dispatch_mode: DispatchMode = DispatchMode.PRODUCTION
    test_phone: Optional[str] = None          # only set in TEST mode


class Job(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    tenant_id: str
    contact_id: str
    channel: ChannelType = ChannelType.WHATSAPP
    type: JobType = JobType.WELCOME
    status: JobStatus = JobStatus.PENDING
    payload: JobPayload = Field(default_factory=JobPayload)
    attempts: int = 0
    scheduled_at: datetime = Field(default_factory=_utcnow)
    last_error: Optional[str] = None
    provider_message_id: Optional[str] = None
    sent_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


# ──────────────────────────────────────────────────────────────
#  Provider requests — tagged variant, one per message shape
# ──────────────────────────────────────────────────────────────

class TemplateRequest(BaseModel):
    kind: Literal["template"] = "template"
    to: str
    template_name: str
    language: str = "pt_BR"
    parameters: list[str] = []                # ordered body parameters


class TextRequest(BaseModel):
    kind: Literal["text"] = "text"
    to: str
    body: str


ProviderRequest = Annotated[Union[TemplateRequest, TextRequest], Field(discriminator="kind")]


class ProviderResult(BaseModel):
    ok: bool
    provider_message_id: Optional[str] = None
    error: str = ""
    status_code: Optional[int] = None


# ──────────────────────────────────────────────────────────────
#  Operation inputs / outputs
# ──────────────────────────────────────────────────────────────

class EnqueueRequest(BaseModel):
    tenant_id: Optional[str] = None
    date_from: str = ""                       # YYYY-MM-DD
    date_to: str = ""                         # YYYY-MM-DD
    mode: Optional[str] = None                # "template" | "text" | None → tenant default
    dispatch_mode: Optional[str] = None       # "TEST" | anything else → PRODUCTION
    test_phone: Optional[str] = None


class EnqueueResult(BaseModel):
    queued: int = 0
    skipped_invalid_phone: int = 0
    tenant_id: str
    mode: MessageMode
    dispatch_mode: DispatchMode


class WorkerRunResult(BaseModel):
    processed: int = 0
    sent: int = 0
    failed: int = 0
