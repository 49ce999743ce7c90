import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Key-value persistence
    KV_BACKEND: str = "memory"  # memory | redis
    REDIS_URL: Optional[str] = None

    # Plans
    DEFAULT_PLAN_ID: str = "free"

    # Usage metering
    USAGE_IDEMPOTENCY_TTL_SECONDS: int = 24 * 60 * 60

    # Audit logging
    AUDIT_ENABLED: bool = True

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("pawfect")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    problems = []
    backend = str(cfg.KV_BACKEND).lower()
    if backend not in {"memory", "redis"}:
        problems.append(f"KV_BACKEND must be 'memory' or 'redis', got {cfg.KV_BACKEND!r}")
    if backend == "redis" and not cfg.REDIS_URL:
        problems.append("Missing required configuration: REDIS_URL")
    if cfg.USAGE_IDEMPOTENCY_TTL_SECONDS <= 0:
        problems.append("USAGE_IDEMPOTENCY_TTL_SECONDS must be positive")

    if problems:
        message = "; ".join(problems)
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
