import logging
import os
from dataclasses import dataclass
from decimal import Decimal


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url: str = "postgresql+asyncpg://idempay:idempay_dev@db:5432/idempay"
    api_key: str | None = None
    idempotency_ttl_hours: int = 24
    stuck_threshold_minutes: int = 5
    cleanup_interval_minutes: int = 5
    max_json_bytes: int = 10 * 1024
    charge_retry_attempts: int = 3
    charge_retry_delay_seconds: float = 1.0
    conflict_retry_attempts: int = 3
    conflict_retry_delay_seconds: float = 0.1
    charge_timeout_seconds: float = 30.0
    provider_amount_limit: Decimal = Decimal("10000")
    sync_provider_latency_seconds: float = 1.0
    sql_echo: bool = False
    log_level: str = "INFO"

    def charge_window_seconds(self) -> float:
        """Longest a single admission can spend inside the provider call, backoff included."""
        backoff = self.charge_retry_delay_seconds * (2 ** (self.charge_retry_attempts - 1) - 1)
        return self.charge_timeout_seconds * self.charge_retry_attempts + backoff

    def validate(self) -> "Settings":
        # The sweep must never fail a row whose charge may still be running
        if (
            self.stuck_threshold_minutes > 0
            and self.stuck_threshold_minutes * 60 <= self.charge_window_seconds()
        ):
            raise ValueError(
                f"STUCK_THRESHOLD_MINUTES={self.stuck_threshold_minutes} must exceed the charge "
                f"window of {self.charge_window_seconds():.0f}s "
                "(CHARGE_TIMEOUT_SECONDS x CHARGE_RETRY_ATTEMPTS plus backoff)"
            )
        return self

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.environ.get("DATABASE_URL", cls.database_url),
            api_key=os.environ.get("API_KEY") or None,
            idempotency_ttl_hours=int(os.environ.get("IDEMPOTENCY_TTL_HOURS", 24)),
            stuck_threshold_minutes=int(os.environ.get("STUCK_THRESHOLD_MINUTES", 5)),
            cleanup_interval_minutes=int(os.environ.get("CLEANUP_INTERVAL_MINUTES", 5)),
            max_json_bytes=int(os.environ.get("MAX_JSON_BYTES", 10 * 1024)),
            charge_retry_attempts=int(os.environ.get("CHARGE_RETRY_ATTEMPTS", 3)),
            charge_retry_delay_seconds=float(os.environ.get("CHARGE_RETRY_DELAY_SECONDS", 1.0)),
            conflict_retry_attempts=int(os.environ.get("CONFLICT_RETRY_ATTEMPTS", 3)),
            conflict_retry_delay_seconds=float(
                os.environ.get("CONFLICT_RETRY_DELAY_SECONDS", 0.1)
            ),
            charge_timeout_seconds=float(os.environ.get("CHARGE_TIMEOUT_SECONDS", 30)),
            provider_amount_limit=Decimal(os.environ.get("PROVIDER_AMOUNT_LIMIT", "10000")),
            sync_provider_latency_seconds=float(
                os.environ.get("SYNC_PROVIDER_LATENCY_SECONDS", 1.0)
            ),
            sql_echo=_env_bool("SQL_ECHO", False),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        ).validate()


settings = Settings.from_env()


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=level or settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
