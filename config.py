import os
from dataclasses import dataclass
from typing import Tuple

from dotenv import load_dotenv

# Load environment variables from .env file (if present)
load_dotenv()

DEFAULT_SLOT_TIMES = (
    "09:00", "09:30",
    "10:00", "10:30",
    "11:00", "11:30",
    "13:00", "13:30",
    "14:00", "14:30",
    "15:00", "15:30",
    "16:00",
)


def _split_times(raw: str | None) -> Tuple[str, ...]:
    if not raw:
        return DEFAULT_SLOT_TIMES
    return tuple(t.strip() for t in raw.split(",") if t.strip())


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite+aiosqlite:///./queue.db"
    slot_times: Tuple[str, ...] = DEFAULT_SLOT_TIMES
    slot_capacity: int = 1

    # LINE Messaging API
    line_channel_secret: str | None = None
    line_channel_access_token: str | None = None
    line_api_base: str = "https://api.line.me"

    log_level: str = "INFO"
    api_host: str = "0.0.0.0"
    api_port: int = 3000
    cors_origins: Tuple[str, ...] = ("*",)


def load_settings() -> Settings:
    """Build Settings from the current environment."""
    return Settings(
        database_url=os.getenv("DATABASE_URL", Settings.database_url),
        slot_times=_split_times(os.getenv("SLOT_TIMES")),
        slot_capacity=int(os.getenv("SLOT_CAPACITY", "1")),
        line_channel_secret=os.getenv("LINE_CHANNEL_SECRET") or None,
        line_channel_access_token=os.getenv("LINE_CHANNEL_ACCESS_TOKEN") or None,
        line_api_base=os.getenv("LINE_API_BASE", Settings.line_api_base),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        api_host=os.getenv("API_HOST", "0.0.0.0"),
        api_port=int(os.getenv("API_PORT", os.getenv("PORT", "3000"))),
    )
