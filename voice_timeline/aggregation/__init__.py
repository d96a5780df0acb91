"""Read-side projections of the timeline: daily histogram, rolling leaderboard, listener trend."""
from .formatting import format_duration, format_share
from .hourly import DailyActivity, HourlyBin, build_daily_activity, local_day_start
from .leaderboard import Leaderboard, LeaderboardItem, build_talk_leaderboard, normalize_window_minutes
from .listeners import ChartPoint, ListenerChart, build_listener_chart, select_display_window

__all__ = [
    "ChartPoint",
    "DailyActivity",
    "HourlyBin",
    "Leaderboard",
    "LeaderboardItem",
    "ListenerChart",
    "build_daily_activity",
    "build_listener_chart",
    "build_talk_leaderboard",
    "format_duration",
    "format_share",
    "local_day_start",
    "normalize_window_minutes",
    "select_display_window",
]
