"""Project-level configuration and path helpers."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DATA_DIR = PROJECT_ROOT / "03_data"
LOGS_DIR = PROJECT_ROOT / "04_logs"
DEFAULT_DB_PATH = DATA_DIR / "oldvoice.db"
DEFAULT_LOG_PATH = LOGS_DIR / "app.log"

DATA_DIR.mkdir(parents=True, exist_ok=True)
LOGS_DIR.mkdir(parents=True, exist_ok=True)


PathLike = Union[str, Path]


def resolve_db_path(env_value: PathLike | None = None) -> PathLike:
    """Resolve DATABASE_URL to an absolute path."""
    if not env_value:
        return DEFAULT_DB_PATH

    if str(env_value) == ":memory:":
        return ":memory:"

    candidate = Path(env_value)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str) -> list[str]:
    return [item.strip() for item in os.getenv(name, "").split(",") if item.strip()]


@dataclass
class Settings:
    """Runtime settings read from the environment."""

    database_url: str | None = None
    redis_url: str = "redis://localhost:6379/0"

    session_ttl_seconds: int = 3600
    rate_limit_max_messages: int = 50
    rate_limit_window_seconds: int = 3600
    dispatch_delay_seconds: float = 1.0
    cleanup_interval_seconds: float = 3600
    pending_interval_seconds: float = 300
    schedule_timezone: str = "UTC"

    twilio_account_sid: str | None = None
    twilio_auth_token: str | None = None
    twilio_phone_number: str | None = None
    twilio_validate_signature: bool = True

    telegram_bot_token: str | None = None

    vapi_api_key: str | None = None
    vapi_phone_number_id: str | None = None

    app_url: str = "http://localhost:8000"
    cors_origins: list[str] = field(default_factory=list)

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, falling back to defaults."""
        api_host = os.getenv("API_HOST", "localhost")
        api_port = os.getenv("API_PORT", "8000")
        return cls(
            database_url=os.getenv("DATABASE_URL"),
            redis_url=os.getenv("REDIS_URL", cls.redis_url),
            session_ttl_seconds=int(
                os.getenv("SESSION_TTL_SECONDS", cls.session_ttl_seconds)
            ),
            rate_limit_max_messages=int(
                os.getenv("RATE_LIMIT_MAX_MESSAGES", cls.rate_limit_max_messages)
            ),
            rate_limit_window_seconds=int(
                os.getenv("RATE_LIMIT_WINDOW_SECONDS", cls.rate_limit_window_seconds)
            ),
            dispatch_delay_seconds=float(
                os.getenv("DISPATCH_DELAY_SECONDS", cls.dispatch_delay_seconds)
            ),
            cleanup_interval_seconds=float(
                os.getenv("CLEANUP_INTERVAL_SECONDS", cls.cleanup_interval_seconds)
            ),
            pending_interval_seconds=float(
                os.getenv("PENDING_INTERVAL_SECONDS", cls.pending_interval_seconds)
            ),
            schedule_timezone=os.getenv("SCHEDULE_TIMEZONE", cls.schedule_timezone),
            twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID"),
            twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN"),
            twilio_phone_number=os.getenv("TWILIO_PHONE_NUMBER"),
            twilio_validate_signature=_env_bool("TWILIO_VALIDATE_SIGNATURE", True),
            telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN"),
            vapi_api_key=os.getenv("VAPI_API_KEY"),
            vapi_phone_number_id=os.getenv("VAPI_PHONE_NUMBER_ID"),
            app_url=os.getenv("APP_URL", f"http://{api_host}:{api_port}"),
            cors_origins=_env_list("CORS_ORIGINS"),
        )
