import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _default_database_url() -> str:
    user = os.getenv("POSTGRES_USER", "postgres")
    password = os.getenv("POSTGRES_PASSWORD", "postgres")
    host = os.getenv("POSTGRES_HOST", "localhost")  # In Docker, this will be 'postgres'
    port = os.getenv("POSTGRES_PORT", "5432")
    name = os.getenv("POSTGRES_DB", "inventory")
    return f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{name}"


@dataclass(frozen=True)
class Settings:
    database_url: str
    db_echo: bool = False
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_pool_recycle: int = 1800
    statement_timeout: float = 5.0

    # Retry policy: delay = base * 2^(attempt-1) + uniform(0, jitter), capped at max_delay
    retry_max_attempts: int = 5
    retry_base_delay: float = 0.1
    retry_max_delay: float = 10.0
    retry_jitter: float = 0.5

    health_check_interval: float = 30.0

    service_name: str = "fulfillment_core"
    log_level: str = "INFO"
    otlp_endpoint: Optional[str] = None
    metrics_port: Optional[int] = None

    @classmethod
    def from_env(cls) -> "Settings":
        """Read settings from the process environment (and an optional .env file)."""
        load_dotenv()
        metrics_port = os.getenv("METRICS_PORT")
        return cls(
            database_url=os.getenv("DATABASE_URL") or _default_database_url(),
            db_echo=_env_bool("DB_ECHO", False),
            db_pool_size=int(os.getenv("DB_POOL_SIZE", "10")),
            db_max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "20")),
            db_pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "30")),
            db_pool_recycle=int(os.getenv("DB_POOL_RECYCLE", "1800")),
            statement_timeout=float(os.getenv("DB_STATEMENT_TIMEOUT", "5")),
            retry_max_attempts=int(os.getenv("DB_RETRY_MAX_ATTEMPTS", "5")),
            retry_base_delay=float(os.getenv("DB_RETRY_BASE_DELAY", "0.1")),
            retry_max_delay=float(os.getenv("DB_RETRY_MAX_DELAY", "10")),
            retry_jitter=float(os.getenv("DB_RETRY_JITTER", "0.5")),
            health_check_interval=float(os.getenv("DB_HEALTH_CHECK_INTERVAL", "30")),
            service_name=os.getenv("SERVICE_NAME", "fulfillment_core"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            otlp_endpoint=os.getenv("OTLP_ENDPOINT") or None,
            metrics_port=int(metrics_port) if metrics_port else None,
        )

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")
