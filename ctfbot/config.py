import os
import logging

from dotenv import load_dotenv


# Load env early
load_dotenv()

# Logging configuration
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, log_level, logging.INFO),
)
logger = logging.getLogger("ctfbot")

# Reduce noisy libraries
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("httpcore.connection").setLevel(logging.WARNING)
logging.getLogger("httpcore.http11").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("aiohttp").setLevel(logging.WARNING)
logging.getLogger("telegram.ext.ExtBot").setLevel(logging.WARNING)
logging.getLogger("telegram.ext.Updater").setLevel(logging.WARNING)
logging.getLogger("telegram.ext.Application").setLevel(logging.WARNING)
logging.getLogger("telegram.bot").setLevel(logging.WARNING)
logging.getLogger("asyncio").setLevel(logging.WARNING)


class Config:
    """Application configuration read from the environment."""

    # Telegram Bot Configuration
    BOT_TOKEN: str | None = os.getenv("BOT_TOKEN")
    TELEGRAM_CHAT_ID: str = os.getenv("TELEGRAM_CHAT_ID", "").strip()

    # Tracking sessions
    POLL_SECS: int = int(os.getenv("POLL_SECS", "30"))
    SUMMARY_LEAD_SECS: int = int(os.getenv("SUMMARY_LEAD_SECS", "120"))

    # CTFtime reminders
    CTFTIME_API_URL: str = os.getenv("CTFTIME_API_URL", "https://ctftime.org/api/v1/events/").strip()
    CTFTIME_WINDOW_DAYS: int = int(os.getenv("CTFTIME_WINDOW_DAYS", "7"))
    CTFTIME_REFRESH_SECS: int = int(os.getenv("CTFTIME_REFRESH_SECS", "3600"))

    # Upstream HTTP
    HTTP_TIMEOUT_SECS: float = float(os.getenv("HTTP_TIMEOUT_SECS", "25"))
    CTFD_CACHE_TTL: int = int(os.getenv("CTFD_CACHE_TTL", "300"))

    # Persistence
    DATA_DIR: str = os.getenv("DATA_DIR", "database").strip()

    # Message rendering
    DISPLAY_TZ: str = os.getenv("DISPLAY_TZ", "Asia/Jakarta").strip()
    DISPLAY_TZ_LABEL: str = os.getenv("DISPLAY_TZ_LABEL", "WIB").strip()

    @classmethod
    def validate_config(cls) -> None:
        if not cls.BOT_TOKEN:
            raise ValueError("BOT_TOKEN environment variable is required")
        if not cls.TELEGRAM_CHAT_ID:
            raise ValueError("TELEGRAM_CHAT_ID environment variable is required")

    @classmethod
    def events_file(cls) -> str:
        return os.path.join(cls.DATA_DIR, "events.json")

    @classmethod
    def sessions_file(cls) -> str:
        return os.path.join(cls.DATA_DIR, "sessions.json")


# Expose commonly used constants
config = Config()
BOT_TOKEN = config.BOT_TOKEN
TELEGRAM_CHAT_ID = config.TELEGRAM_CHAT_ID

POLL_SECS = config.POLL_SECS
SUMMARY_LEAD_SECS = config.SUMMARY_LEAD_SECS

CTFTIME_API_URL = config.CTFTIME_API_URL
CTFTIME_WINDOW_DAYS = config.CTFTIME_WINDOW_DAYS
CTFTIME_REFRESH_SECS = config.CTFTIME_REFRESH_SECS

HTTP_TIMEOUT_SECS = config.HTTP_TIMEOUT_SECS
CTFD_CACHE_TTL = config.CTFD_CACHE_TTL

DISPLAY_TZ = config.DISPLAY_TZ
DISPLAY_TZ_LABEL = config.DISPLAY_TZ_LABEL
