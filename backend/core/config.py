import os
from datetime import timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if value is None:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")

SLOT_FIT_FULL = "full"
SLOT_FIT_START_ONLY = "start_only"
SLOT_FIT_MODES = {SLOT_FIT_FULL, SLOT_FIT_START_ONLY}

SCHEDULE_TIMEZONE = os.getenv("SCHEDULE_TIMEZONE", "UTC")

AVAILABILITY_SLOT_FIT_MODE = os.getenv("AVAILABILITY_SLOT_FIT_MODE", SLOT_FIT_FULL).strip().lower()
AVAILABILITY_OPEN_WHEN_UNCONFIGURED = _get_bool(os.getenv("AVAILABILITY_OPEN_WHEN_UNCONFIGURED"), default=False)

AVAILABILITY_DEFAULT_DURATION_MINUTES = int(os.getenv("AVAILABILITY_DEFAULT_DURATION_MINUTES", "60"))
AVAILABILITY_HORIZON_DAYS = int(os.getenv("AVAILABILITY_HORIZON_DAYS", "7"))
AVAILABILITY_MAX_RESULTS = int(os.getenv("AVAILABILITY_MAX_RESULTS", "6"))
AVAILABILITY_MAX_HORIZON_DAYS = int(os.getenv("AVAILABILITY_MAX_HORIZON_DAYS", "60"))

CORS_ALLOW_ORIGINS = _get_list(os.getenv("CORS_ALLOW_ORIGINS"), ["http://localhost:4200"])


def get_schedule_timezone() -> tzinfo:
    if SCHEDULE_TIMEZONE.strip().upper() == "UTC":
        return timezone.utc
    return ZoneInfo(SCHEDULE_TIMEZONE)


def validate_runtime_config() -> None:
    if AVAILABILITY_SLOT_FIT_MODE not in SLOT_FIT_MODES:
        raise RuntimeError(
            f"AVAILABILITY_SLOT_FIT_MODE must be one of {sorted(SLOT_FIT_MODES)}, got {AVAILABILITY_SLOT_FIT_MODE!r}."
        )
    try:
        get_schedule_timezone()
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise RuntimeError(f"SCHEDULE_TIMEZONE {SCHEDULE_TIMEZONE!r} is not a known timezone.") from exc
