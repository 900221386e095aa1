"""
Configuration loader for the welcome dispatch service.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class DatabaseConfig:
    url: str = "sqlite:///./welcome_dispatch.db"      # postgresql:// | mysql:// | sqlite://
    store_backend: str = "memory"                      # "sql" | "memory"
    echo: bool = False
    # Connection pool (PostgreSQL / MySQL only; SQLite ignores these)
    pool_size: int = 5                  # a worker run holds at most `concurrency` sessions
    max_overflow: int = 5
    pool_timeout: int = 30
    pool_recycle: int = 1800


@dataclass
class WhatsAppConfig:
    access_token: str = ""
    phone_number_id: str = ""
    api_version: str = "v22.0"
    base_url: str = "https://graph.facebook.com"
    language_code: str = "pt_BR"
    timeout_seconds: float = 15.0


@dataclass
class DispatchConfig:
    batch_size: int = 50
    max_attempts: int = 3
    retry_backoff_seconds: int = 300    # fixed, not exponential
    concurrency: int = 5                # max concurrent sends per worker run
    default_template: str = "welcome_ccm"
    fallback_name: str = "Irmão(ã)"
    enqueue_roles: list[str] = field(
        default_factory=lambda: ["ADMIN_MASTER", "SUPER_ADMIN", "SECRETARIA"]
    )


@dataclass
class WorkerConfig:
    token: str = ""
    loop_interval_seconds: int = 60     # used by scripts/run_worker.py --loop


@dataclass
class AuthConfig:
    resolver: str = "static"            # "static" | "http"
    context_url: str = ""               # http resolver: endpoint returning the caller context
    static_tokens: dict[str, dict[str, Any]] = field(default_factory=dict)


@dataclass
class Settings:
    app_name: str = "WelcomeDispatch"
    debug: bool = False
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    whatsapp: WhatsAppConfig = field(default_factory=WhatsAppConfig)
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def _unresolved(value: str) -> str:
    """An unset ${VAR} placeholder counts as empty."""
    if isinstance(value, str) and value.startswith("${") and value.endswith("}"):
        return ""
    return value


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "WELCOME_DISPATCH_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = raw.get("debug", settings.debug)

        if "database" in raw:
            db = raw["database"]
            defaults = DatabaseConfig()
            settings.database = DatabaseConfig(
                url=_unresolved(db.get("url", "")) or defaults.url,
                store_backend=db.get("store_backend", defaults.store_backend),
                echo=bool(db.get("echo", defaults.echo)),
                pool_size=int(db.get("pool_size", defaults.pool_size)),
                max_overflow=int(db.get("max_overflow", defaults.max_overflow)),
                pool_timeout=int(db.get("pool_timeout", defaults.pool_timeout)),
                pool_recycle=int(db.get("pool_recycle", defaults.pool_recycle)),
            )

        if "whatsapp" in raw:
            wa = raw["whatsapp"]
            defaults = WhatsAppConfig()
            settings.whatsapp = WhatsAppConfig(
                access_token=_unresolved(wa.get("access_token", "")),
                phone_number_id=_unresolved(wa.get("phone_number_id", "")),
                api_version=_unresolved(wa.get("api_version", "")) or defaults.api_version,
                base_url=wa.get("base_url", defaults.base_url),
                language_code=wa.get("language_code", defaults.language_code),
                timeout_seconds=float(wa.get("timeout_seconds", defaults.timeout_seconds)),
            )

        if "dispatch" in raw:
            d = raw["dispatch"]
            defaults = DispatchConfig()
            settings.dispatch = DispatchConfig(
                batch_size=int(d.get("batch_size", defaults.batch_size)),
                max_attempts=int(d.get("max_attempts", defaults.max_attempts)),
                retry_backoff_seconds=int(d.get("retry_backoff_seconds", defaults.retry_backoff_seconds)),
                concurrency=int(d.get("concurrency", defaults.concurrency)),
                default_template=d.get("default_template", defaults.default_template),
                fallback_name=d.get("fallback_name", defaults.fallback_name),
                enqueue_roles=d.get("enqueue_roles", defaults.enqueue_roles),
            )

        if "worker" in raw:
            w = raw["worker"]
            settings.worker = WorkerConfig(
                token=_unresolved(w.get("token", "")),
                loop_interval_seconds=int(w.get("loop_interval_seconds", 60)),
            )

        if "auth" in raw:
            a = raw["auth"]
            settings.auth = AuthConfig(
                resolver=a.get("resolver", "static"),
                context_url=_unresolved(a.get("context_url", "")),
                static_tokens=a.get("static_tokens", {}) or {},
            )

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings (for testing)."""
    global _settings
    _settings = None
