"""
Caller scope resolution — adapters for the external auth collaborator.

Authorization policy lives outside this service. A resolver only turns a
bearer token into a CallerScope {roles, tenant_id, is_global_admin}:

  - HttpScopeResolver   calls the application's context endpoint with the
                        caller's own token (production)
  - StaticScopeResolver looks tokens up in a configured map (development,
                        tests)
"""
from __future__ import annotations

import abc
import structlog
from typing import Any, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config.settings import AuthConfig
from job_queue.errors import PermissionDenied, Unauthorized
from models.schemas import CallerScope

logger = structlog.get_logger()


def scope_from_context(raw: dict[str, Any]) -> CallerScope:
    """Map a context document to a CallerScope, accepting the legacy field names."""
    roles = raw.get("roles")
    return CallerScope(
        user_id=str(raw.get("user_id", "") or ""),
        roles=[str(r) for r in roles] if isinstance(roles, list) else [],
        tenant_id=raw.get("tenant_id", raw.get("congregation_id")) or None,
        is_global_admin=bool(raw.get("is_global_admin", raw.get("is_admin_master", False))),
    )


class ScopeResolver(abc.ABC):

    @abc.abstractmethod
    async def resolve(self, token: str) -> CallerScope:
        """Raise Unauthorized for unknown or invalid tokens."""
        ...

    async def close(self) -> None:
        pass


class StaticScopeResolver(ScopeResolver):

    def __init__(self, tokens: dict[str, dict[str, Any]] = None):
        self._tokens = {k: scope_from_context(v) for k, v in (tokens or {}).items()}

    def register(self, token: str, scope: CallerScope) -> None:
        self._tokens[token] = scope

    async def resolve(self, token: str) -> CallerScope:
        scope = self._tokens.get(token)
        if scope is None:
            raise Unauthorized("Invalid session")
        return scope


class HttpScopeResolver(ScopeResolver):
    """Resolves the caller against the application's context endpoint."""

    def __init__(self, context_url: str, timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.context_url = context_url
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(2),
        wait=wait_exponential(min=0.5, max=2),
        reraise=True,
    )
    async def _fetch(self, token: str) -> httpx.Response:
        client = await self._get_client()
        return await client.get(self.context_url, headers={"Authorization": f"Bearer {token}"})

    async def resolve(self, token: str) -> CallerScope:
        if not self.context_url:
            raise Unauthorized("Auth context endpoint not configured")
        try:
            resp = await self._fetch(token)
        except httpx.HTTPError as e:
            logger.error("scope_resolve_failed", error=str(e))
            raise Unauthorized("Could not verify session") from e

        if resp.status_code == 401:
            raise Unauthorized("Invalid session")
        if resp.status_code == 403:
            raise PermissionDenied(resp.text[:200] or "Forbidden")
        if resp.status_code >= 400:
            logger.error("scope_resolve_error", status=resp.status_code, body=resp.text[:500])
            raise PermissionDenied(f"Context lookup failed ({resp.status_code})")

        try:
            data = resp.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            raise PermissionDenied("Malformed caller context")
        return scope_from_context(data)

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


def create_scope_resolver(config: AuthConfig) -> ScopeResolver:
    if config.resolver == "http":
        return HttpScopeResolver(config.context_url)
    return StaticScopeResolver(config.static_tokens)
