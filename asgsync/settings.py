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
    config_path: str = os.getenv("ASGSYNC_CONFIG_PATH", "/etc/nginx/config.yaml")
    log_level: str = os.getenv("ASGSYNC_LOG_LEVEL", "INFO")
    # Empty disables the sqlite event journal; events still go to the log.
    db_path: str = os.getenv("ASGSYNC_DB_PATH", "asgsync.db")

    # Timeouts for the NGINX Plus API and the cloud APIs.
    api_timeout_s: int = _env_int("ASGSYNC_API_TIMEOUT_S", 10)
    metadata_timeout_s: int = _env_int("ASGSYNC_METADATA_TIMEOUT_S", 2)

    # Parallel upstream passes; 0 means one worker per upstream.
    max_workers: int = _env_int("ASGSYNC_MAX_WORKERS", 0)

    # Log the diff without calling the NGINX Plus API write endpoints.
    dry_run: bool = _env_bool("ASGSYNC_DRY_RUN", False)


settings = Settings()
