"""CTF Notify Bot package.

Modules:
- config: environment, constants and logging
- http: aiohttp session and request helpers
- ctftime: CTFtime event listing
- ctfd: CTFd platform reader
- formatting: MarkdownV2 message building
- storage: JSON persistence of reminders and tracking sessions
- timers: one-shot and recurring timer capabilities
- state: tracking session entity and registry
- reminders: contest-start reminder scheduling
- tracker: tracking session lifecycle
- commands: command parsing and telegram handlers
- app: application bootstrap and wiring
"""

from .config import Config, BOT_TOKEN, TELEGRAM_CHAT_ID, POLL_SECS, SUMMARY_LEAD_SECS
from .errors import UserInputError, UpstreamUnavailable, PersistenceError
from .http import make_session, fetch_json, build_headers
from .ctftime import fetch_ctftime_events, is_accepted_event, parse_instant
from .ctfd import CTFdClient, extract_standings, total_points
from .formatting import (
    escape_markdown_v2,
    strip_ordinal,
    fmt_solve_notification,
    fmt_summary,
    fmt_contest_reminder,
    fmt_event_details,
    fmt_upcoming_events,
    fmt_easy_challenges,
)
from .storage import JsonCollection, ReminderStore, SessionStore
from .timers import AsyncioTimers, OneShotTimer, RecurringTimer, utc_now
from .state import TrackingSession, SessionRegistry
from .reminders import ReminderScheduler
from .tracker import TrackingManager
from .commands import (
    Command,
    StartTracking,
    StopTracking,
    FindEasy,
    ListUpcoming,
    ShowStatus,
    parse_command,
)
from .app import main, build_application

__all__ = [
    # Config / errors / HTTP
    "Config", "BOT_TOKEN", "TELEGRAM_CHAT_ID", "POLL_SECS", "SUMMARY_LEAD_SECS",
    "UserInputError", "UpstreamUnavailable", "PersistenceError",
    "make_session", "fetch_json", "build_headers",
    # Upstream readers
    "fetch_ctftime_events", "is_accepted_event", "parse_instant",
    "CTFdClient", "extract_standings", "total_points",
    # Formatting
    "escape_markdown_v2", "strip_ordinal", "fmt_solve_notification", "fmt_summary",
    "fmt_contest_reminder", "fmt_event_details", "fmt_upcoming_events", "fmt_easy_challenges",
    # Storage / timers / state
    "JsonCollection", "ReminderStore", "SessionStore",
    "AsyncioTimers", "OneShotTimer", "RecurringTimer", "utc_now",
    "TrackingSession", "SessionRegistry",
    # Scheduling / commands / app
    "ReminderScheduler", "TrackingManager",
    "Command", "StartTracking", "StopTracking", "FindEasy", "ListUpcoming", "ShowStatus", "parse_command",
    "main", "build_application",
]
