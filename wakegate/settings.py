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


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Core
    config_path: str = os.getenv("WAKEGATE_CONFIG_PATH", "/config/config.json")
    template_dir: str = os.getenv("WAKEGATE_TEMPLATE_DIR", "/config/static")
    listen_host: str = os.getenv("WAKEGATE_HOST", "0.0.0.0")
    listen_port: int = _env_int("WAKEGATE_PORT", 10000)
    log_level: str = os.getenv("WAKEGATE_LOG_LEVEL", "INFO")

    # Backend timing
    probe_timeout_s: float = _env_float("WAKEGATE_PROBE_TIMEOUT_S", 2.0)
    proxy_timeout_s: float = _env_float("WAKEGATE_PROXY_TIMEOUT_S", 30.0)
    probe_debounce_s: int = _env_int("WAKEGATE_PROBE_DEBOUNCE_S", 5)

    # Container lifecycle
    stop_grace_s: int = _env_int("WAKEGATE_STOP_GRACE_S", 5)
    reaper_interval_s: int = _env_int("WAKEGATE_REAPER_INTERVAL_S", 60)

    # Event log
    events_db_path: str = os.getenv("WAKEGATE_EVENTS_DB", "wakegate.db")
    enable_event_log: bool = _env_bool("WAKEGATE_ENABLE_EVENT_LOG", True)
    event_log_max_rows: int = _env_int("WAKEGATE_EVENT_LOG_MAX_ROWS", 10000)


settings = Settings()
