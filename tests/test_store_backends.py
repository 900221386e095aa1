"""
Tests for the storage backends.

Tests:
  - InMemoryJobStore / InMemoryContactStore / InMemoryTenantSettingsStore
  - SqlJobStore / SqlContactStore / SqlTenantSettingsStore (via SQLite for test portability)
  - Session URL translation
  - Store factory
"""
import pytest
import pytest_asyncio
from datetime import date, datetime, timedelta, timezone

from models.schemas import Job, JobPayload, JobStatus, TenantMessagingSettings
from conftest import T0, TENANT, OTHER_TENANT, make_contact


def make_job(idx: int, scheduled_at: datetime = T0, tenant_id: str = TENANT) -> Job:
    return Job(
        tenant_id=tenant_id,
        contact_id=f"contact-{idx:03d}",
        scheduled_at=scheduled_at,
        created_at=scheduled_at,
        updated_at=scheduled_at,
        payload=JobPayload(to=f"55119000000{idx:02d}", name=f"Membro {idx}",
                           template_name="welcome_ccm"),
    )


# ──────────────────────────────────────────────────────────────
#  Shared job store contract
# ──────────────────────────────────────────────────────────────


class JobStoreContract:
    """Behaviour every job store must share. Subclasses provide the `store` fixture."""

    @pytest.mark.asyncio
    async def test_insert_and_get(self, store):
        job = make_job(1)
        await store.insert_batch([job])
        fetched = await store.get_job(job.id)
        assert fetched.id == job.id
        assert fetched.status == JobStatus.PENDING
        assert fetched.attempts == 0
        assert fetched.payload.to == job.payload.to
        assert fetched.scheduled_at == T0

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        assert await store.get_job("nope") is None

    @pytest.mark.asyncio
    async def test_select_due_order_and_limit(self, store):
        jobs = [
            make_job(1, T0 - timedelta(minutes=1)),
            make_job(2, T0 - timedelta(minutes=30)),
            make_job(3, T0 + timedelta(minutes=5)),
            make_job(4, T0 - timedelta(minutes=10)),
        ]
        await store.insert_batch(jobs)

        due = await store.select_due_pending(10, T0)
        assert [j.contact_id for j in due] == ["contact-002", "contact-004", "contact-001"]

        due = await store.select_due_pending(1, T0)
        assert [j.contact_id for j in due] == ["contact-002"]

    @pytest.mark.asyncio
    async def test_success_update(self, store):
        job = make_job(1)
        await store.insert_batch([job])

        assert await store.update_on_success(job.id, "wamid.1", T0)

        fetched = await store.get_job(job.id)
        assert fetched.status == JobStatus.SENT
        assert fetched.provider_message_id == "wamid.1"
        assert fetched.sent_at == T0
        assert await store.select_due_pending(10, T0 + timedelta(days=1)) == []

    @pytest.mark.asyncio
    async def test_failure_update(self, store):
        job = make_job(1)
        await store.insert_batch([job])
        retry_at = T0 + timedelta(minutes=5)

        assert await store.update_on_failure(job.id, status=JobStatus.PENDING, attempts=1,
                                             scheduled_at=retry_at, error="boom")

        fetched = await store.get_job(job.id)
        assert fetched.attempts == 1
        assert fetched.scheduled_at == retry_at
        assert fetched.last_error == "boom"
        assert await store.select_due_pending(10, T0) == []
        assert len(await store.select_due_pending(10, retry_at)) == 1

    @pytest.mark.asyncio
    async def test_terminal_jobs_are_frozen(self, store):
        sent, failed = make_job(1), make_job(2)
        await store.insert_batch([sent, failed])
        await store.update_on_success(sent.id, "wamid.1", T0)
        await store.update_on_failure(failed.id, status=JobStatus.FAILED, attempts=3,
                                      scheduled_at=T0, error="gone")

        assert not await store.update_on_failure(sent.id, status=JobStatus.PENDING, attempts=1,
                                                 scheduled_at=T0, error="late")
        assert not await store.update_on_success(failed.id, "wamid.2", T0)

        assert (await store.get_job(sent.id)).status == JobStatus.SENT
        fetched = await store.get_job(failed.id)
        assert fetched.status == JobStatus.FAILED
        assert fetched.provider_message_id is None

    @pytest.mark.asyncio
    async def test_update_unknown_job(self, store):
        assert not await store.update_on_success("nope", "wamid.1", T0)

    @pytest.mark.asyncio
    async def test_list_jobs(self, store):
        await store.insert_batch([
            make_job(1, T0 - timedelta(minutes=2)),
            make_job(2, T0 - timedelta(minutes=1)),
            make_job(3, tenant_id=OTHER_TENANT),
        ])
        jobs = await store.list_jobs(TENANT)
        assert [j.contact_id for j in jobs] == ["contact-002", "contact-001"]

        await store.update_on_success(jobs[0].id, "wamid.1", T0)
        sent = await store.list_jobs(TENANT, JobStatus.SENT)
        assert [j.contact_id for j in sent] == ["contact-002"]
        assert len(await store.list_jobs(TENANT, limit=1)) == 1


class ContactStoreContract:

    @pytest.mark.asyncio
    async def test_get_contacts(self, contacts):
        found = await contacts.get_contacts(["contact-001", "contact-002", "missing"])
        assert set(found) == {"contact-001", "contact-002"}
        assert found["contact-001"].phone == "5511900000001"

    @pytest.mark.asyncio
    async def test_get_no_contacts(self, contacts):
        assert await contacts.get_contacts([]) == {}

    @pytest.mark.asyncio
    async def test_find_opted_in_between(self, contacts):
        found = await contacts.find_opted_in_between(TENANT, date(2026, 9, 1), date(2026, 9, 30))
        # contact-003 has no opt-in, contact-004 is out of range, contact-005 is another tenant
        assert [c.id for c in found] == ["contact-001", "contact-002"]
        assert found[0].created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_range_end_is_inclusive(self, contacts):
        found = await contacts.find_opted_in_between(TENANT, date(2026, 9, 30), date(2026, 9, 30))
        assert [c.id for c in found] == ["contact-002"]


def contact_fixtures():
    return [
        make_contact(1, phone="5511900000001",
                     created_at=datetime(2026, 9, 1, 0, 0, tzinfo=timezone.utc)),
        make_contact(2, phone="5511900000002",
                     created_at=datetime(2026, 9, 30, 23, 59, 59, tzinfo=timezone.utc)),
        make_contact(3, phone="5511900000003", opt_in=False),
        make_contact(4, phone="5511900000004",
                     created_at=datetime(2026, 10, 1, 0, 0, tzinfo=timezone.utc)),
        make_contact(5, phone="5511900000005", tenant_id=OTHER_TENANT),
    ]


class SettingsStoreContract:

    @pytest.mark.asyncio
    async def test_missing(self, settings_store):
        assert await settings_store.get_settings(TENANT) is None

    @pytest.mark.asyncio
    async def test_upsert(self, settings_store):
        await settings_store.upsert_settings(TenantMessagingSettings(
            tenant_id=TENANT, group_link="https://chat.whatsapp.com/x", template_name="welcome_ccm",
        ))
        await settings_store.upsert_settings(TenantMessagingSettings(
            tenant_id=TENANT, group_link="", template_name="boas_vindas", messaging_enabled=False,
        ))
        found = await settings_store.get_settings(TENANT)
        assert found.group_link == ""
        assert found.template_name == "boas_vindas"
        assert found.messaging_enabled is False


# ──────────────────────────────────────────────────────────────
#  In-memory backend
# ──────────────────────────────────────────────────────────────


class TestInMemoryJobStore(JobStoreContract):

    @pytest.fixture
    def store(self):
        from database.store_memory import InMemoryJobStore
        return InMemoryJobStore()

    @pytest.mark.asyncio
    async def test_returns_copies(self, store):
        job = make_job(1)
        await store.insert_batch([job])
        fetched = await store.get_job(job.id)
        fetched.status = JobStatus.SENT
        assert (await store.get_job(job.id)).status == JobStatus.PENDING

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self, store):
        job = make_job(1)
        await store.insert_batch([job])
        with pytest.raises(ValueError):
            await store.insert_batch([make_job(2), job])
        assert len(await store.list_jobs(TENANT)) == 1


class TestInMemoryContactStore(ContactStoreContract):

    @pytest.fixture
    def contacts(self):
        from database.store_memory import InMemoryContactStore
        return InMemoryContactStore(contact_fixtures())


class TestInMemorySettingsStore(SettingsStoreContract):

    @pytest.fixture
    def settings_store(self):
        from database.store_memory import InMemoryTenantSettingsStore
        return InMemoryTenantSettingsStore()


# ──────────────────────────────────────────────────────────────
#  SQL backend (SQLite file)
# ──────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def sqlite_db(tmp_path):
    from database import session as s
    s._engine = None
    s._session_factory = None
    await s.init_db(f"sqlite:///{tmp_path}/dispatch_test.db")
    yield
    await s.close_db()


class TestSqlJobStore(JobStoreContract):

    @pytest_asyncio.fixture
    async def store(self, sqlite_db):
        from database.store import SqlJobStore
        return SqlJobStore()

    @pytest.mark.asyncio
    async def test_payload_round_trips_through_json(self, store):
        job = make_job(1)
        job.payload.group_link = "https://chat.whatsapp.com/abc123"
        await store.insert_batch([job])
        fetched = await store.get_job(job.id)
        assert fetched.payload == job.payload

    @pytest.mark.asyncio
    async def test_duplicate_id_rolls_back_batch(self, store):
        job = make_job(1)
        await store.insert_batch([job])
        with pytest.raises(Exception):
            await store.insert_batch([make_job(2), job])
        assert len(await store.list_jobs(TENANT)) == 1


class TestSqlContactStore(ContactStoreContract):

    @pytest_asyncio.fixture
    async def contacts(self, sqlite_db):
        from database.models import ContactRow
        from database.session import get_session
        from database.store import SqlContactStore
        async with get_session() as db:
            db.add_all([
                ContactRow(id=c.id, tenant_id=c.tenant_id, name=c.name, phone_e164=c.phone,
                           opt_in_whatsapp=c.opt_in_whatsapp, created_at=c.created_at)
                for c in contact_fixtures()
            ])
        return SqlContactStore()


class TestSqlSettingsStore(SettingsStoreContract):

    @pytest_asyncio.fixture
    async def settings_store(self, sqlite_db):
        from database.store import SqlTenantSettingsStore
        return SqlTenantSettingsStore()


# ──────────────────────────────────────────────────────────────
#  Session URL translation
# ──────────────────────────────────────────────────────────────


class TestSessionUrlTranslation:

    def test_postgres_url(self):
        from database.session import _to_async_url
        assert _to_async_url("postgresql://u:p@h:5432/db") == "postgresql+asyncpg://u:p@h:5432/db"

    def test_postgres_short_url(self):
        from database.session import _to_async_url
        assert _to_async_url("postgres://u:p@h/db") == "postgresql+asyncpg://u:p@h/db"

    def test_mysql_url(self):
        from database.session import _to_async_url
        assert _to_async_url("mysql://u:p@h:3306/db") == "mysql+aiomysql://u:p@h:3306/db"

    def test_sqlite_url(self):
        from database.session import _to_async_url
        assert _to_async_url("sqlite:///./x.db") == "sqlite+aiosqlite:///./x.db"

    def test_already_async(self):
        from database.session import _to_async_url
        assert _to_async_url("postgresql+asyncpg://h/db") == "postgresql+asyncpg://h/db"

    def test_sqlite_engine_kwargs(self):
        from database.session import _engine_kwargs
        kwargs = _engine_kwargs("sqlite+aiosqlite:///./x.db")
        assert "pool_size" not in kwargs
        assert kwargs["connect_args"] == {"check_same_thread": False}

    def test_pooled_engine_kwargs_follow_config(self):
        from config.settings import DatabaseConfig
        from database.session import _engine_kwargs
        config = DatabaseConfig(pool_size=2, max_overflow=1, pool_timeout=5,
                                pool_recycle=120, echo=True)
        kwargs = _engine_kwargs("postgresql+asyncpg://u:p@h/db", config)
        assert kwargs["pool_size"] == 2
        assert kwargs["max_overflow"] == 1
        assert kwargs["pool_timeout"] == 5
        assert kwargs["pool_recycle"] == 120
        assert kwargs["pool_pre_ping"] is True
        assert kwargs["echo"] is True
        assert "connect_args" not in kwargs

    def test_sqlite_ignores_pool_config(self):
        from config.settings import DatabaseConfig
        from database.session import _engine_kwargs
        kwargs = _engine_kwargs("sqlite+aiosqlite:///./x.db", DatabaseConfig(pool_size=50))
        assert "pool_size" not in kwargs


# ──────────────────────────────────────────────────────────────
#  Store factory
# ──────────────────────────────────────────────────────────────


class TestStoreFactory:

    def setup_method(self):
        from database.store_factory import reset_stores
        reset_stores()

    def teardown_method(self):
        from database.store_factory import reset_stores
        reset_stores()

    def test_memory_default(self):
        from database.store_factory import create_stores
        from database.store_memory import InMemoryJobStore
        stores = create_stores()
        assert stores.backend == "memory"
        assert isinstance(stores.jobs, InMemoryJobStore)

    def test_sql_backend(self):
        from database.store import SqlContactStore, SqlJobStore, SqlTenantSettingsStore
        from database.store_factory import create_stores
        stores = create_stores({"store_backend": "sql"})
        assert stores.backend == "sql"
        assert isinstance(stores.jobs, SqlJobStore)
        assert isinstance(stores.contacts, SqlContactStore)
        assert isinstance(stores.tenant_settings, SqlTenantSettingsStore)

    def test_singleton(self):
        from database.store_factory import create_stores, get_stores
        s1 = create_stores({"store_backend": "memory"})
        assert create_stores({"store_backend": "sql"}) is s1
        assert get_stores() is s1

    def test_reset(self):
        from database.store_factory import create_stores, reset_stores
        s1 = create_stores()
        reset_stores()
        assert create_stores() is not s1
