"""
Error taxonomy for the dispatch pipeline.

Every error raised synchronously to a caller carries the HTTP-style status
the API answers with. Delivery failures are never raised to callers; they
are recorded on the job row by the worker.
"""
from __future__ import annotations


class DispatchError(Exception):
    """Base exception for enqueue/worker operations surfaced to callers."""

    status_code: int = 500

    def __init__(self, message: str, status_code: int = None):
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


# ── Validation (400) ──────────────────────────────────────────

class InvalidRange(DispatchError):
    status_code = 400


class MissingTenant(DispatchError):
    status_code = 400


class MissingTestDestination(DispatchError):
    status_code = 400

    def __init__(self, message: str = "TEST dispatch mode requires test_phone"):
        super().__init__(message)


# ── Configuration (400) ───────────────────────────────────────

class MessagingDisabled(DispatchError):
    status_code = 400

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(f"Welcome messaging is disabled for tenant {tenant_id}")


# ── Auth / scope (401 / 403) ──────────────────────────────────

class Unauthorized(DispatchError):
    status_code = 401


class PermissionDenied(DispatchError):
    status_code = 403

    def __init__(self, message: str = "Insufficient permission"):
        super().__init__(message)


class ScopeViolation(DispatchError):
    status_code = 403

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(f"tenant_id {tenant_id} is outside the caller's scope")


# ── Storage (500) ─────────────────────────────────────────────

class StorageError(DispatchError):
    status_code = 500
