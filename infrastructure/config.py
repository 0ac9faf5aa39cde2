"""Runtime configuration read from environment variables"""
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import find_dotenv, load_dotenv


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


def _database_url() -> Optional[str]:
    database_url = os.getenv("DATABASE_URL", "").strip()
    if not database_url:
        return None
    # Hosting providers still hand out postgres:// URLs
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    return database_url


@dataclass(frozen=True)
class Settings:
    secret_key: str
    algorithm: str
    access_token_expire_minutes: int
    database_url: Optional[str]
    max_recurrence_months: int
    reschedule_applies_duration: bool
    sweep_enabled: bool
    sweep_cron: str
    sweep_timezone: str
    log_level: str


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Build settings from the environment, filling gaps from a .env file.

    Variables already set in the process environment win over the file.
    """
    load_dotenv(env_file or find_dotenv(usecwd=True), override=False)
    return Settings(
        secret_key=os.getenv("SECRET_KEY", "court-reservations-dev-secret"),
        algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        access_token_expire_minutes=_env_int("ACCESS_TOKEN_EXPIRE_MINUTES", 30),
        database_url=_database_url(),
        max_recurrence_months=_env_int("MAX_RECURRENCE_MONTHS", 12),
        reschedule_applies_duration=_env_bool("RESCHEDULE_APPLIES_DURATION", False),
        sweep_enabled=_env_bool("SWEEP_ENABLED", True),
        sweep_cron=os.getenv("SWEEP_CRON", "0 2 * * *"),
        sweep_timezone=os.getenv("SWEEP_TIMEZONE", "America/Sao_Paulo"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


@lru_cache
def get_settings() -> Settings:
    return load_settings()
