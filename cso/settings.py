from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_list(name: str, default: str) -> tuple[str, ...]:
    raw = os.getenv(name, default)
    return tuple(x.strip() for x in raw.split(",") if x.strip())


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = os.getenv("CSO_DB_PATH", "cso.db")
    poll_interval_s: int = _env_int("CSO_POLL_INTERVAL_S", 5)

    # Cluster management backend
    api_base: str = os.getenv("CSO_API_BASE", "http://localhost:8080")
    api_prefix: str = os.getenv("CSO_API_PREFIX", "/api/v1")
    cluster_name: str = os.getenv("CSO_CLUSTER_NAME", "cluster")
    api_user: str = os.getenv("CSO_API_USER", "admin")
    api_password: str = os.getenv("CSO_API_PASSWORD", "admin")
    requested_by: str = os.getenv("CSO_REQUESTED_BY", "cso")
    http_timeout_s: int = _env_int("CSO_HTTP_TIMEOUT_S", 10)

    # Orchestration
    bg_operations_update_interval_s: int = _env_int("CSO_BG_OPERATIONS_UPDATE_INTERVAL_S", 6)
    batch_interval_s: int = _env_int("CSO_BATCH_INTERVAL_S", 1)
    batch_tolerate_size: int = _env_int("CSO_BATCH_TOLERATE_SIZE", 0)
    show_bg_operations: bool = _env_bool("CSO_SHOW_BG_OPERATIONS", True)

    # Stop safety: services whose metadata checkpoint must be fresh before stop-all.
    checkpoint_services: tuple[str, ...] = _env_list("CSO_CHECKPOINT_SERVICES", "HDFS")
    checkpoint_max_age_s: int = _env_int("CSO_CHECKPOINT_MAX_AGE_S", 12 * 3600)
    checkpoint_max_txns: int = _env_int("CSO_CHECKPOINT_MAX_TXNS", 2_000_000)

    # Control API
    admin_user: str = os.getenv("CSO_ADMIN_USER", "admin")
    admin_password: str = os.getenv("CSO_ADMIN_PASSWORD", "change-me")

    # Email alerting (optional)
    enable_email: bool = _env_bool("CSO_ENABLE_EMAIL", False)
    smtp_host: str = os.getenv("CSO_SMTP_HOST", "smtp.gmail.com")
    smtp_port: int = _env_int("CSO_SMTP_PORT", 587)
    smtp_user: str | None = os.getenv("CSO_SMTP_USER")
    smtp_password: str | None = os.getenv("CSO_SMTP_PASSWORD")
    email_from: str | None = os.getenv("CSO_EMAIL_FROM")
    email_to: str | None = os.getenv("CSO_EMAIL_TO")


settings = Settings()
