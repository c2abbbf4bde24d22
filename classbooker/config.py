from functools import lru_cache
from pathlib import Path

from diskcache import Cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PACKAGE_DIR = Path(__file__).parent


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=PACKAGE_DIR.parent / ".env", extra="ignore", populate_by_name=True
    )

    base_url: str = Field(default="https://backend.arca.dk", alias="ARCA_BASE_URL")
    session_secret: str = Field(default="your-secret-key", alias="SESSION_SECRET")
    app_env: str = Field(default="development", alias="APP_ENV")

    reference_timezone: str = Field(
        default="Europe/Copenhagen", alias="REFERENCE_TIMEZONE"
    )
    max_days_ahead: int = Field(default=13, alias="MAX_DAYS_AHEAD")
    max_concurrent_fetches: int = Field(default=5, alias="MAX_CONCURRENT_FETCHES")
    max_concurrent_users: int = Field(default=2, alias="MAX_CONCURRENT_USERS")
    run_timeout_seconds: float = Field(default=240, alias="RUN_TIMEOUT_SECONDS")
    request_timeout_seconds: float = Field(default=15, alias="REQUEST_TIMEOUT_SECONDS")

    store_path: Path = Field(
        default=PACKAGE_DIR.parent / ".classbooker-store", alias="STORE_PATH"
    )

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"


class BookingConstants:
    """Centralized constants for the upstream booking platform."""

    LOGIN_PAGE_PATH = "/user_sessions/new"
    LOGIN_ACTION_PATH = "/user_sessions"
    SESSION_PROBE_PATH = "/booking"
    REACT_LOGIN_PATH = "/react/login"
    GYMS_PATH = "/react/gyms"
    EVENTS_PATH = "/react/events"
    BOOK_EVENT_PATH = "/react/events/{event_id}/book"
    MY_BOOKINGS_PATH = "/react/participations/bookings"

    SESSION_COOKIE_NAME = "_cfc2_session"
    CSRF_FIELD_NAME = "authenticity_token"
    CSRF_META_NAME = "csrf-token"

    # HTTP Headers
    USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
    ACCEPT_HTML = "text/html"
    ACCEPT_JSON = "application/json, text/javascript, */*; q=0.01"
    AJAX_HEADER = ("X-Requested-With", "XMLHttpRequest")

    SCHEDULER_HEADER = "X-Cloudscheduler"

    NO_MORE_BOOKINGS_MESSAGE = "Hov! Du har ikke flere holdbookinger tilbage."
    NO_MORE_BOOKINGS_CODE = "no_more_bookings"

    HISTORY_LIMIT = 50


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def open_store(settings: Settings | None = None) -> Cache:
    """Open the persistent document store configured for this process."""
    settings = settings or get_settings()
    return Cache(str(settings.store_path))
