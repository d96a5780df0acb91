"""Engine configuration. Loads from env vars."""
from pydantic_settings import BaseSettings

_MINUTE_MS = 60 * 1000
_HOUR_MS = 60 * _MINUTE_MS


class Settings(BaseSettings):
    """Engine settings. Override via environment variables."""

    # Rolling leaderboard: selectable trailing windows (minutes)
    TALK_WINDOW_OPTIONS: list[int] = [1, 5, 15, 60]
    DEFAULT_WINDOW_MINUTES: int = 5

    # Speaking segments: lookback kept in memory. Must cover the largest window and a full day.
    RETENTION_WINDOW_MS: int = max((60 + 5) * _MINUTE_MS, 24 * _HOUR_MS)
    # End event without an observed start: synthesized interval length
    FALLBACK_SEGMENT_DURATION_MS: int = 1000

    # Daily histogram: fixed one-hour bins
    HOURS_IN_DAY: int = 24
    HOUR_MS: int = _HOUR_MS
    TIMEZONE: str = ""  # IANA name, e.g. "Europe/Paris"; empty = local time

    # Listener counts: long history vs short display window
    LISTENER_HISTORY_RETENTION_MS: int = 24 * _HOUR_MS
    LISTENER_DISPLAY_WINDOW_MS: int = 6 * _HOUR_MS
    LISTENER_FALLBACK_SAMPLES: int = 240  # used when display window is empty
    LISTENER_CHART_WIDTH: int = 800
    LISTENER_CHART_HEIGHT: int = 220

    # Read-side clock: views recomputed and published every N ms
    VIEW_TICK_INTERVAL_MS: int = 1000

    # History backfill (GET {base}/history?since=). Empty = disabled.
    HISTORY_BASE_URL: str = ""
    HISTORY_TIMEOUT_SECONDS: float = 10.0

    # Logging: level (DEBUG, INFO, WARNING, ERROR); file path empty = console only
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    class Config:
        env_file = ".env"
        extra = "ignore"


def get_settings() -> Settings:
    return Settings()
