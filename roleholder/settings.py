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


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = os.getenv("RHR_DB_PATH", "roleholder.db")
    catalog_path: str | None = os.getenv("RHR_CATALOG_PATH")
    platform_seed_path: str | None = os.getenv("RHR_PLATFORM_SEED_PATH")
    default_user: int = _env_int("RHR_DEFAULT_USER", 0)

    # Dispatch grant/revoke on a background thread. Turn off for deterministic runs.
    run_async: bool = _env_bool("RHR_RUN_ASYNC", True)
    wait_timeout_s: int = _env_int("RHR_WAIT_TIMEOUT_S", 30)

    # Admin API credentials
    admin_user: str = os.getenv("RHR_ADMIN_USER", "admin")
    admin_password: str = os.getenv("RHR_ADMIN_PASSWORD", "change-me")


settings = Settings()
