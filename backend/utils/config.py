"""Runtime configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str
    database_path: Path
    database_busy_timeout_seconds: float
    transaction_max_attempts: int
    transaction_retry_backoff_seconds: float
    round_one_large_course_threshold: int
    round_one_large_course_cap: int
    round_one_small_course_cap: int
    admin_email: str
    smtp_host: str | None
    smtp_port: int
    smtp_username: str | None
    smtp_password: str | None
    smtp_use_tls: bool
    smtp_from_email: str
    notification_workers: int
    live_update_queue_size: int
    seed_demo_data: bool


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process; tests call ``cache_clear``."""
    return Settings(
        app_name=os.getenv("APP_NAME", "TA Allocation Portal"),
        app_version=os.getenv("APP_VERSION", "1.0.0"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        database_path=Path(
            os.getenv("DATABASE_PATH", str(PROJECT_ROOT / "data" / "ta_allocation.db"))
        ),
        database_busy_timeout_seconds=float(os.getenv("DATABASE_BUSY_TIMEOUT_SECONDS", "5.0")),
        transaction_max_attempts=int(os.getenv("TRANSACTION_MAX_ATTEMPTS", "3")),
        transaction_retry_backoff_seconds=float(
            os.getenv("TRANSACTION_RETRY_BACKOFF_SECONDS", "0.05")
        ),
        round_one_large_course_threshold=int(
            os.getenv("ROUND_ONE_LARGE_COURSE_THRESHOLD", "100")
        ),
        round_one_large_course_cap=int(os.getenv("ROUND_ONE_LARGE_COURSE_CAP", "2")),
        round_one_small_course_cap=int(os.getenv("ROUND_ONE_SMALL_COURSE_CAP", "1")),
        admin_email=os.getenv("ADMIN_EMAIL", "ta-admin@example.edu"),
        smtp_host=os.getenv("SMTP_HOST") or None,
        smtp_port=int(os.getenv("SMTP_PORT", "587")),
        smtp_username=os.getenv("SMTP_USERNAME") or None,
        smtp_password=os.getenv("SMTP_PASSWORD") or None,
        smtp_use_tls=_env_bool("SMTP_USE_TLS", True),
        smtp_from_email=os.getenv("SMTP_FROM_EMAIL", "ta-allocation@example.edu"),
        notification_workers=int(os.getenv("NOTIFICATION_WORKERS", "2")),
        live_update_queue_size=int(os.getenv("LIVE_UPDATE_QUEUE_SIZE", "100")),
        seed_demo_data=_env_bool("SEED_DEMO_DATA", True),
    )
