import os
from dataclasses import dataclass, field

from backend.booking.filters import build_search_url

# Almaty, limited to guesthouses / B&Bs / homestays / country houses
DEFAULT_DEST_ID = "-2335204"
DEFAULT_ACCOMMODATION_TYPES = (213, 220, 214, 216)


def _env_bool(name: str) -> bool:
    return os.getenv(name, "").lower() in {"1", "true", "yes"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else default


@dataclass(frozen=True)
class HarvestConfig:
    summary_url: str = field(
        default_factory=lambda: build_search_url(DEFAULT_DEST_ID, accommodation_type_ids=DEFAULT_ACCOMMODATION_TYPES)
    )
    country: str = "kz"
    session_cookie: str | None = None
    proxy: str | None = None
    http_debug: bool = False
    timeout: float = 25.0
    max_attempts: int = 3
    backoff_unit: float = 2.0
    item_delay: float = 3.0
    backup_path: str = "final_data.json"
    persist_workers: int = 4
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db: str = "mytravel_db"

    @classmethod
    def from_env(cls) -> "HarvestConfig":
        """Read overrides from the environment; unset variables keep the defaults."""
        defaults = cls()
        return cls(
            summary_url=os.getenv("BOOKING_SUMMARY_URL", "").strip() or defaults.summary_url,
            country=os.getenv("BOOKING_COUNTRY", "").strip() or defaults.country,
            session_cookie=os.getenv("BOOKING_COOKIE", "").strip() or None,
            proxy=os.getenv("BOOKING_PROXY", "").strip() or None,
            http_debug=_env_bool("HTTP_DEBUG"),
            timeout=_env_float("BOOKING_TIMEOUT", defaults.timeout),
            max_attempts=_env_int("BOOKING_MAX_ATTEMPTS", defaults.max_attempts),
            backoff_unit=_env_float("BOOKING_BACKOFF_SEC", defaults.backoff_unit),
            item_delay=_env_float("BOOKING_ITEM_DELAY_SEC", defaults.item_delay),
            backup_path=os.getenv("BOOKING_BACKUP_PATH", "").strip() or defaults.backup_path,
            persist_workers=_env_int("BOOKING_PERSIST_WORKERS", defaults.persist_workers),
            mongo_uri=os.getenv("MONGO_URI", "").strip() or defaults.mongo_uri,
            mongo_db=os.getenv("MONGO_DB", "").strip() or defaults.mongo_db,
        )
