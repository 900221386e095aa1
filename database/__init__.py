"""
Database layer — Multi-backend persistence for the dispatch queue.

Backends:
  - SQL (PostgreSQL / MySQL / SQLite via SQLAlchemy async)
  - In-memory (dict-based, for development/testing)

Quick start:
  from database import create_stores
  stores = create_stores({"store_backend": "memory"})
  due = await stores.jobs.select_due_pending(limit=50)
"""
from database.models import Base, MessageJobRow, ContactRow, TenantSettingsRow
from database.session import get_engine, get_session, init_db, close_db
from database.store_base import BaseJobStore, BaseContactStore, BaseTenantSettingsStore
from database.store import SqlJobStore, SqlContactStore, SqlTenantSettingsStore
from database.store_memory import InMemoryJobStore, InMemoryContactStore, InMemoryTenantSettingsStore
from database.store_factory import Stores, create_stores, get_stores, reset_stores

__all__ = [
    # ORM models
    "Base", "MessageJobRow", "ContactRow", "TenantSettingsRow",
    # Session management
    "get_engine", "get_session", "init_db", "close_db",
    # Store interfaces
    "BaseJobStore", "BaseContactStore", "BaseTenantSettingsStore",
    # Store backends
    "SqlJobStore", "SqlContactStore", "SqlTenantSettingsStore",
    "InMemoryJobStore", "InMemoryContactStore", "InMemoryTenantSettingsStore",
    # Factory
    "Stores", "create_stores", "get_stores", "reset_stores",
]
