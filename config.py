import logging
import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        log_level: str,
        scheduler_enabled: bool,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.log_level = log_level
        self.scheduler_enabled = scheduler_enabled


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGET_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _log_level(name: str, default: str) -> str:
    level = os.getenv(name, default).strip().upper()
    if level not in logging.getLevelNamesMapping():
        return default
    return level


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "budget.db"
    database_url = os.getenv("BUDGET_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("BUDGET_TIMEZONE", "Europe/Berlin")
    log_level = _log_level("BUDGET_LOG_LEVEL", "INFO")
    scheduler_enabled = _env_flag("BUDGET_SCHEDULER_ENABLED", "1")
    return Settings(
        database_url=database_url,
        timezone=timezone,
        log_level=log_level,
        scheduler_enabled=scheduler_enabled,
    )
