import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict, Field
from typing import Optional


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Subscription terms
    FREE_TERM_MONTHS: int = Field(default=1, ge=1)
    PAID_TERM_MONTHS: int = Field(default=12, ge=1)

    # Quota windows
    AI_CONSULTATION_WINDOW_HOURS: int = Field(default=24, ge=1)

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Production must point at a real database; the in-memory store loses
    everything on restart.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("roadtrip")
    strict_mode = strict if strict is not None else cfg.CONFIG_STRICT

    problems = []
    if cfg.ENV.lower() == "production":
        if not cfg.DATABASE_URL:
            problems.append("DATABASE_URL")
        elif cfg.DATABASE_URL.startswith("sqlite"):
            problems.append("DATABASE_URL (sqlite is not allowed in production)")

    if problems:
        message = f"Missing required configuration: {', '.join(problems)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)
        return False

    return True
