import os
import socket
from typing import List, Union
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


class Settings(BaseSettings):
    # Application
    ENVIRONMENT: str = "development"
    NAME: str = "certwatch"
    VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./certwatch.db"
    DATABASE_ECHO: bool = False

    # Scheduler
    SCHEDULER_INTERVAL_SECONDS: int = 300
    DISPATCH_BATCH_SIZE: int = 50
    DISPATCH_LEASE_SECONDS: int = 600
    WORKER_ID: str = _default_worker_id()
    INIT_DB_ON_START: bool = False

    # Certification lifecycle
    EXPIRING_SOON_WINDOW_DAYS: int = 30
    """Pydantic v2 doesn't support parsing List[int] from a plain comma-separated string by default anymore."""
    DEFAULT_REMINDER_DAYS: Union[str, List[int]] = "30,7,1"

    # Email transport
    EMAIL_TRANSPORT: str = "log"
    EMAIL_API_URL: str = "<your-email-api-url>"
    EMAIL_API_KEY: str = "<your-email-api-key>"
    EMAIL_FROM_ADDRESS: str = "reminders@example.com"
    EMAIL_TIMEOUT_SECONDS: float = 10.0

    @field_validator("DEFAULT_REMINDER_DAYS", mode="before")
    def assemble_reminder_days(cls, v: Union[str, List[int]]) -> List[int]:
        if not v:
            return []
        if isinstance(v, str) and not v.startswith("["):
            days = [int(i.strip()) for i in v.split(",") if i.strip()]
        elif isinstance(v, str):
            days = [int(i) for i in v.strip("[]").split(",") if i.strip()]
        else:
            days = [int(i) for i in v]
        if any(d <= 0 for d in days):
            raise ValueError("DEFAULT_REMINDER_DAYS must only contain positive integers")
        return days

    @field_validator("EMAIL_TRANSPORT", mode="before")
    def normalize_transport(cls, v: str) -> str:
        return (v or "log").strip().lower()

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()
