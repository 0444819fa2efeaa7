from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Union
from urllib.parse import urlparse
from zoneinfo import ZoneInfo

from telegram import Update
from telegram.constants import ParseMode
from telegram.ext import ContextTypes

from .config import DISPLAY_TZ, DISPLAY_TZ_LABEL, logger
from .errors import UserInputError
from .formatting import fmt_upcoming_events

TRACK_USAGE = (
    "Usage: /track <ctfd_url> <access_token> <YYYY-MM-DD> <HH:MM> <team name>\n"
    f"End time is in {DISPLAY_TZ_LABEL} ({DISPLAY_TZ})."
)
EASY_DEFAULT_LIMIT = 5
EASY_MAX_LIMIT = 20

HELP_TEXT = (
    "CTF Notify Bot\n\n"
    "/ctf - Upcoming CTFtime events\n"
    "/track <ctfd_url> <access_token> <YYYY-MM-DD> <HH:MM> <team name> - Announce a team's solves until the CTF ends\n"
    "/easy [n] - Most solved challenges your team has not solved yet\n"
    "/status - Show the tracking session of this chat\n"
    "/stop - Stop tracking"
)


@dataclass(frozen=True)
class StartTracking:
    ctfd_url: str
    access_token: str
    end_time: datetime
    team_name: str


@dataclass(frozen=True)
class StopTracking:
    pass


@dataclass(frozen=True)
class FindEasy:
    limit: int = EASY_DEFAULT_LIMIT


@dataclass(frozen=True)
class ListUpcoming:
    pass


@dataclass(frozen=True)
class ShowStatus:
    pass


Command = Union[StartTracking, StopTracking, FindEasy, ListUpcoming, ShowStatus]


def parse_end_time(text: str) -> datetime:
    """Parse ``YYYY-MM-DD HH:MM`` in the display timezone, or an ISO timestamp with an offset."""
    try:
        parsed = datetime.fromisoformat(text.strip().replace("Z", "+00:00"))
    except ValueError:
        raise UserInputError(f"Invalid end time '{text}'. Expected YYYY-MM-DD HH:MM.")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=ZoneInfo(DISPLAY_TZ))
    return parsed.astimezone(timezone.utc)


def normalize_ctfd_url(url: str) -> str:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise UserInputError(f"Invalid CTFd URL '{url}'. Expected something like https://ctf.example.com")
    return url.rstrip("/")


def _parse_track(args: list[str]) -> StartTracking:
    if len(args) < 4:
        raise UserInputError(TRACK_USAGE)
    ctfd_url, access_token = args[0], args[1]

    # End time is either one ISO token or a date token plus a time token
    if "T" in args[2]:
        end_text, team_parts = args[2], args[3:]
    else:
        if len(args) < 5:
            raise UserInputError(TRACK_USAGE)
        end_text, team_parts = f"{args[2]} {args[3]}", args[4:]

    team_name = " ".join(team_parts).strip().strip('"')
    if not team_name:
        raise UserInputError(TRACK_USAGE)
    return StartTracking(
        ctfd_url=normalize_ctfd_url(ctfd_url),
        access_token=access_token,
        end_time=parse_end_time(end_text),
        team_name=team_name,
    )


def _parse_easy(args: list[str]) -> FindEasy:
    if not args:
        return FindEasy()
    try:
        limit = int(args[0])
    except ValueError:
        raise UserInputError("Usage: /easy [n]")
    return FindEasy(limit=max(1, min(limit, EASY_MAX_LIMIT)))


def parse_command(text: str) -> Command:
    """Turn a message like ``/track https://ctf.example.com tok 2025-01-01 18:00 My Team`` into a command."""
    parts = (text or "").split()
    if not parts or not parts[0].startswith(("/", "!")):
        raise UserInputError(HELP_TEXT)

    # "/track@SomeBot" in groups
    name = parts[0][1:].split("@", 1)[0].lower()
    args = parts[1:]

    if name == "track":
        return _parse_track(args)
    if name in ("stop", "untrack"):
        return StopTracking()
    if name == "easy":
        return _parse_easy(args)
    if name == "ctf":
        return ListUpcoming()
    if name == "status":
        return ShowStatus()
    raise UserInputError(HELP_TEXT)


async def _parse_or_reply(update: Update) -> Command | None:
    try:
        return parse_command(update.message.text)
    except UserInputError as e:
        await update.message.reply_text(str(e))
        return None


async def start_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await update.message.reply_text(HELP_TEXT)


async def track_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE):
    command = await _parse_or_reply(update)
    if not isinstance(command, StartTracking):
        return

    tracker = context.application.bot_data["tracker"]
    chat_id = update.effective_chat.id
    logger.info(f"/track from chat {chat_id}: team '{command.team_name}' on {command.ctfd_url}")
    outcome = await tracker.start(
        chat_id,
        command.ctfd_url,
        command.team_name,
        command.access_token,
        command.end_time,
    )
    await update.message.reply_text(outcome)


async def stop_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE):
    tracker = context.application.bot_data["tracker"]
    if tracker.stop(update.effective_chat.id):
        await update.message.reply_text("Stopped tracking.")
    else:
        await update.message.reply_text("Not currently tracking anything.")


async def easy_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE):
    command = await _parse_or_reply(update)
    if not isinstance(command, FindEasy):
        return

    tracker = context.application.bot_data["tracker"]
    try:
        message = await tracker.find_easy(update.effective_chat.id, command.limit)
    except UserInputError as e:
        await update.message.reply_text(str(e))
        return
    await update.message.reply_text(message, parse_mode=ParseMode.MARKDOWN_V2)


async def ctf_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE):
    reminders = context.application.bot_data["reminders"]
    message = fmt_upcoming_events(reminders.upcoming_events())
    await update.message.reply_text(message, parse_mode=ParseMode.MARKDOWN_V2)


async def status_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE):
    tracker = context.application.bot_data["tracker"]
    await update.message.reply_text(tracker.status(update.effective_chat.id))
