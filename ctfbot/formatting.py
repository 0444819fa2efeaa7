from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from .config import DISPLAY_TZ, DISPLAY_TZ_LABEL
from .ctftime import event_finish, event_start


MARKDOWN_V2_SPECIAL = re.compile(r"([_*\[\]()~`>#+\-=|{}.!])")
ORDINAL_SUFFIX = re.compile(r"^\s*(\d+)\s*(st|nd|rd|th)\s*$", re.IGNORECASE)
EVENT_SEPARATOR = "\n\n" + "\\-" * 10 + "\n\n"


def escape_markdown_v2(text: Any) -> str:
    return MARKDOWN_V2_SPECIAL.sub(r"\\\1", str(text))


def strip_ordinal(rank: Any) -> str:
    """``"1st"`` -> ``"1"``; anything else is returned unchanged."""
    text = str(rank)
    m = ORDINAL_SUFFIX.match(text)
    return m.group(1) if m else text


def format_points(points: float) -> str:
    if isinstance(points, float) and points.is_integer():
        points = int(points)
    return escape_markdown_v2(points)


def format_local_time(when: datetime) -> str:
    """Render an aware datetime in the display timezone, e.g. ``Friday, 10 May 2024 17:00 WIB``."""
    local = when.astimezone(ZoneInfo(DISPLAY_TZ))
    return f"{local.strftime('%A, %d %B %Y %H:%M')} {DISPLAY_TZ_LABEL}"


def _rank_line(rank: str, total_teams: int) -> str:
    return f"Current rank: *{escape_markdown_v2(strip_ordinal(rank))}/{total_teams}*"


def _event_line(event_name: Optional[str]) -> str:
    return f"Event: *{escape_markdown_v2(event_name)}*\n" if event_name else ""


def fmt_solve_notification(
    event_name: Optional[str],
    team_name: str,
    challenge_name: str,
    category: str,
    points: float,
    total_points: float,
    rank: str,
    total_teams: int,
) -> str:
    return (
        "*CHALLENGE SOLVED*\n\n"
        f"{_event_line(event_name)}"
        f"Team name: *{escape_markdown_v2(team_name)}*\n"
        f"Chall name: *{escape_markdown_v2(challenge_name)}*\n"
        f"Category: *{escape_markdown_v2(category)}*\n"
        f"Points: *{format_points(points)}*\n"
        f"Total points: *{format_points(total_points)}*\n"
        f"{_rank_line(rank, total_teams)}"
    )


def fmt_summary(
    event_name: Optional[str],
    team_name: str,
    solve_count: int,
    total_challenges: int,
    total_points: float,
    rank: str,
    total_teams: int,
) -> str:
    return (
        "*CTF SUMMARY*\n\n"
        f"{_event_line(event_name)}"
        f"Team name: *{escape_markdown_v2(team_name)}*\n"
        f"Total solves: *{solve_count}/{total_challenges}*\n"
        f"Total points: *{format_points(total_points)}*\n"
        f"{_rank_line(rank, total_teams)}"
    )


def fmt_event_details(event: Dict[str, Any], include_starting: bool = False) -> str:
    """Detail block for one CTFtime event."""
    duration = event.get("duration") or {}
    total_minutes = int(duration.get("days", 0)) * 24 * 60 + int(duration.get("hours", 0)) * 60
    days, rest = divmod(total_minutes, 24 * 60)
    hours, minutes = divmod(rest, 60)

    title = escape_markdown_v2(event.get("title", "Unknown CTF"))
    title_line = f"*{title} STARTING\\!*" if include_starting else f"*{title}*"
    weight = escape_markdown_v2(f"{float(event.get('weight') or 0):.2f}")
    participants = escape_markdown_v2(event.get("participants", 0))

    return (
        f"{title_line}\n\n"
        f"Start: *{escape_markdown_v2(format_local_time(event_start(event)))}*\n"
        f"End: *{escape_markdown_v2(format_local_time(event_finish(event)))}*\n"
        f"Duration: *{days}* days *{hours}* hours *{minutes}* minutes\n"
        f"Weight: *{weight}*\n"
        f"Participants: *{participants}* teams\n\n"
        f"URL: {escape_markdown_v2(event.get('url', ''))}"
    )


def fmt_contest_reminder(event: Dict[str, Any]) -> str:
    return fmt_event_details(event, include_starting=True)


def fmt_upcoming_events(events: List[Dict[str, Any]]) -> str:
    if not events:
        return "No upcoming CTF events"
    blocks = [fmt_event_details(e) for e in events]
    return "*UPCOMING CTF*\n\n" + EVENT_SEPARATOR.join(blocks)


def fmt_easy_challenges(event_name: Optional[str], team_name: str, challenges: List[Dict[str, Any]]) -> str:
    """List of unsolved challenges, most solved first."""
    header = (
        "*EASIEST UNSOLVED*\n\n"
        f"{_event_line(event_name)}"
        f"Team name: *{escape_markdown_v2(team_name)}*\n\n"
    )
    if not challenges:
        return header + "Nothing left to solve\\!"

    lines: List[str] = []
    for i, chall in enumerate(challenges, 1):
        solves = chall.get("solves")
        solves_text = escape_markdown_v2(solves) if solves is not None else "?"
        lines.append(
            f"{i}\\. *{escape_markdown_v2(chall.get('name', 'Unknown'))}* "
            f"\\({escape_markdown_v2(chall.get('category', '?'))}, "
            f"{format_points(chall.get('value', 0))} pts\\) · {solves_text} solves"
        )
    return header + "\n".join(lines)
