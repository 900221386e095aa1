"""Shared test fixtures for the welcome dispatch pipeline."""
import pytest
import pytest_asyncio
from datetime import datetime, timedelta, timezone

from channels.base import ProviderClient
from config.settings import DispatchConfig
from database.store_factory import Stores
from database.store_memory import (
    InMemoryContactStore, InMemoryJobStore, InMemoryTenantSettingsStore,
)
from job_queue.enqueuer import WelcomeEnqueuer
from job_queue.worker import DispatchWorker
from models.schemas import (
    CallerScope, ChannelType, Contact, ProviderRequest, ProviderResult,
    TenantMessagingSettings,
)

TENANT = "tenant-sede"
OTHER_TENANT = "tenant-norte"
T0 = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeProvider(ProviderClient):
    """Records every request; fails for destinations in fail_for."""

    channel_type = ChannelType.WHATSAPP

    def __init__(self, fail_for=(), error='{"error":{"code":131026,"message":"Message undeliverable"}}',
                 raise_for=()):
        super().__init__()
        self.requests: list = []
        self.fail_for = set(fail_for)
        self.raise_for = set(raise_for)
        self.error = error

    async def _do_send(self, request: ProviderRequest) -> ProviderResult:
        self.requests.append(request)
        if request.to in self.raise_for:
            raise RuntimeError("connection reset by peer")
        if request.to in self.fail_for:
            return ProviderResult(ok=False, error=self.error, status_code=400)
        return ProviderResult(ok=True, provider_message_id=f"wamid.{len(self.requests)}",
                              status_code=200)

    @property
    def destinations(self) -> list[str]:
        return [r.to for r in self.requests]


def make_contact(idx: int, phone: str = None, tenant_id: str = TENANT, opt_in: bool = True,
                 created_at: datetime = None, name: str = None) -> Contact:
    return Contact(
        id=f"contact-{idx:03d}",
        tenant_id=tenant_id,
        name=f"Membro {idx}" if name is None else name,
        phone=phone if phone is not None else f"+55 (11) 9{idx:04d}-{idx:04d}",
        opt_in_whatsapp=opt_in,
        created_at=created_at or datetime(2026, 9, 15, 10, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def dispatch_config() -> DispatchConfig:
    return DispatchConfig(concurrency=1)


@pytest.fixture
def stores() -> Stores:
    return Stores(
        jobs=InMemoryJobStore(),
        contacts=InMemoryContactStore(),
        tenant_settings=InMemoryTenantSettingsStore(),
        backend="memory",
    )


@pytest_asyncio.fixture
async def tenant_settings(stores) -> TenantMessagingSettings:
    settings = TenantMessagingSettings(
        tenant_id=TENANT,
        group_link="https://chat.whatsapp.com/abc123",
        template_name="welcome_ccm",
        messaging_enabled=True,
    )
    await stores.tenant_settings.upsert_settings(settings)
    return settings


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def enqueuer(stores, dispatch_config) -> WelcomeEnqueuer:
    return WelcomeEnqueuer(stores.jobs, stores.contacts, stores.tenant_settings, dispatch_config)


@pytest.fixture
def worker(stores, provider, dispatch_config, clock) -> DispatchWorker:
    return DispatchWorker(stores.jobs, stores.contacts, provider, dispatch_config, clock=clock)


@pytest.fixture
def secretary() -> CallerScope:
    return CallerScope(user_id="user-sec", roles=["SECRETARIA"], tenant_id=TENANT)


@pytest.fixture
def global_admin() -> CallerScope:
    return CallerScope(user_id="user-root", roles=["ADMIN_MASTER"], tenant_id=OTHER_TENANT,
                       is_global_admin=True)
