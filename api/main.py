"""
FastAPI Application — welcome dispatch REST API.

Provides:
- Enqueue endpoint for authenticated staff (bearer session → caller scope)
- Worker run endpoint for the scheduler (shared X-Worker-Token secret)
- Job inspection and tenant messaging settings for operators
- Health with provider metrics
"""
from __future__ import annotations

import hmac
import structlog
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional
from contextlib import asynccontextmanager

# Load .env before any config is read
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from auth.scope import ScopeResolver, create_scope_resolver
from channels.base import ProviderClient
from channels.whatsapp_adapter import WhatsAppCloudClient
from config.settings import Settings, get_settings
from database.session import close_db, init_db
from database.store_factory import Stores, create_stores
from job_queue.enqueuer import WelcomeEnqueuer, resolve_tenant
from job_queue.errors import DispatchError, InvalidRange, StorageError, Unauthorized
from job_queue.worker import DispatchWorker
from models.schemas import (
    CallerScope, EnqueueRequest, EnqueueResult, JobStatus, TenantMessagingSettings,
    WorkerRunResult,
)

logger = structlog.get_logger()


# ──────────────────────────────────────────────────────────────
#  Request/Response Models
# ──────────────────────────────────────────────────────────────

class MessagingSettingsUpdate(BaseModel):
    group_link: str = ""
    template_name: str = ""
    messaging_enabled: bool = True


@dataclass
class Services:
    settings: Settings
    stores: Stores
    provider: ProviderClient
    resolver: ScopeResolver
    enqueuer: WelcomeEnqueuer
    worker: DispatchWorker


def build_services(
    settings: Settings = None,
    stores: Stores = None,
    provider: ProviderClient = None,
    resolver: ScopeResolver = None,
) -> Services:
    settings = settings or get_settings()
    stores = stores or create_stores({"store_backend": settings.database.store_backend})
    provider = provider or WhatsAppCloudClient.from_config(settings.whatsapp)
    resolver = resolver or create_scope_resolver(settings.auth)
    return Services(
        settings=settings,
        stores=stores,
        provider=provider,
        resolver=resolver,
        enqueuer=WelcomeEnqueuer(
            stores.jobs, stores.contacts, stores.tenant_settings, settings.dispatch,
        ),
        worker=DispatchWorker(
            stores.jobs, stores.contacts, provider, settings.dispatch,
            language_code=settings.whatsapp.language_code,
        ),
    )


def _bearer_token(authorization: Optional[str]) -> str:
    authorization = authorization or ""
    if not authorization.startswith("Bearer "):
        raise Unauthorized("Missing bearer token")
    token = authorization[len("Bearer "):].strip()
    if not token:
        raise Unauthorized("Missing bearer token")
    return token


def _validation_message(errors: list[dict[str, Any]]) -> str:
    parts = []
    for err in errors:
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {err.get('msg', 'invalid')}" if loc else err.get("msg", "invalid"))
    return "; ".join(parts) or "Invalid request"


def create_app(services: Services = None) -> FastAPI:
    services = services or build_services()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if services.stores.backend == "sql":
            await init_db()
        logger.info("welcome_dispatch_started",
                    store_backend=services.stores.backend,
                    batch_size=services.settings.dispatch.batch_size)
        yield
        await services.provider.close()
        await services.resolver.close()
        if services.stores.backend == "sql":
            await close_db()
        logger.info("welcome_dispatch_stopped")

    app = FastAPI(
        title="Welcome Dispatch API",
        description="Outbound welcome message queue and delivery worker",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(DispatchError)
    async def dispatch_error_handler(request: Request, exc: DispatchError):
        if exc.status_code >= 500:
            logger.error("request_failed", path=request.url.path, error=str(exc))
        return JSONResponse({"error": str(exc)}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse({"error": _validation_message(exc.errors())}, status_code=400)

    async def caller_scope(authorization: Optional[str]) -> CallerScope:
        return await services.resolver.resolve(_bearer_token(authorization))

    # ══════════════════════════════════════════════════════════════
    #  HEALTH
    # ══════════════════════════════════════════════════════════════

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "store_backend": services.stores.backend,
            "provider": await services.provider.health_check(),
        }

    # ══════════════════════════════════════════════════════════════
    #  ENQUEUE
    # ══════════════════════════════════════════════════════════════

    @app.post("/api/v1/welcome/enqueue", response_model=EnqueueResult)
    async def enqueue_welcome(
        request: Request,
        authorization: Optional[str] = Header(default=None),
    ):
        # Authenticate before looking at the body; a broken body reads as {}
        scope = await caller_scope(authorization)
        try:
            raw = await request.json()
        except ValueError:
            raw = {}
        try:
            body = EnqueueRequest.model_validate(raw if isinstance(raw, dict) else {})
        except ValidationError as e:
            raise InvalidRange(_validation_message(e.errors())) from None
        return await services.enqueuer.enqueue(scope, body)

    @app.get("/api/v1/welcome/jobs")
    async def list_jobs(
        tenant_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = Query(100, ge=1, le=500),
        authorization: Optional[str] = Header(default=None),
    ):
        scope = await caller_scope(authorization)
        tenant = resolve_tenant(scope, tenant_id, services.settings.dispatch.enqueue_roles)

        status_filter = None
        if status:
            try:
                status_filter = JobStatus(status.upper())
            except ValueError:
                raise DispatchError(f"Unknown status: {status}", 400) from None

        try:
            jobs = await services.stores.jobs.list_jobs(tenant, status_filter, limit)
            contacts = await services.stores.contacts.get_contacts([j.contact_id for j in jobs])
        except Exception as e:
            raise StorageError(f"Failed to load jobs: {e}") from e

        return {
            "tenant_id": tenant,
            "count": len(jobs),
            "jobs": [job.model_dump(mode="json") for job in jobs],
            "contacts": {
                cid: {"name": c.name, "phone": c.phone} for cid, c in contacts.items()
            },
        }

    # ══════════════════════════════════════════════════════════════
    #  WORKER
    # ══════════════════════════════════════════════════════════════

    @app.post("/api/v1/worker/run", response_model=WorkerRunResult)
    async def run_worker(x_worker_token: Optional[str] = Header(default=None)):
        expected = services.settings.worker.token
        if not expected:
            raise DispatchError("Worker token not configured", 500)
        if not hmac.compare_digest((x_worker_token or "").encode(), expected.encode()):
            raise Unauthorized("Unauthorized")
        try:
            return await services.worker.run_once()
        except DispatchError:
            raise
        except Exception as e:
            logger.error("worker_run_failed", error=str(e))
            raise DispatchError(f"Worker run failed: {e}", 500) from e

    # ══════════════════════════════════════════════════════════════
    #  TENANT MESSAGING SETTINGS
    # ══════════════════════════════════════════════════════════════

    @app.get("/api/v1/tenants/{tenant_id}/messaging-settings")
    async def get_messaging_settings(
        tenant_id: str,
        authorization: Optional[str] = Header(default=None),
    ) -> dict[str, Any]:
        scope = await caller_scope(authorization)
        tenant = resolve_tenant(scope, tenant_id, services.settings.dispatch.enqueue_roles)
        found = await services.stores.tenant_settings.get_settings(tenant)
        if found is None:
            found = TenantMessagingSettings(
                tenant_id=tenant, template_name=services.settings.dispatch.default_template,
            )
        return found.model_dump()

    @app.put("/api/v1/tenants/{tenant_id}/messaging-settings")
    async def put_messaging_settings(
        tenant_id: str,
        body: MessagingSettingsUpdate,
        authorization: Optional[str] = Header(default=None),
    ) -> dict[str, Any]:
        scope = await caller_scope(authorization)
        tenant = resolve_tenant(scope, tenant_id, services.settings.dispatch.enqueue_roles)
        saved = await services.stores.tenant_settings.upsert_settings(TenantMessagingSettings(
            tenant_id=tenant,
            group_link=body.group_link.strip(),
            template_name=body.template_name.strip() or services.settings.dispatch.default_template,
            messaging_enabled=body.messaging_enabled,
        ))
        logger.info("messaging_settings_saved",
                    tenant_id=tenant, enabled=saved.messaging_enabled, user_id=scope.user_id)
        return saved.model_dump()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
