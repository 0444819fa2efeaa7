from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

from .config import CTFTIME_API_URL, CTFTIME_WINDOW_DAYS, logger
from .errors import UpstreamUnavailable
from .http import fetch_json, make_session


UTC_SUFFIX = "+00:00"
ACCEPTED_FORMAT = "Jeopardy"


def parse_instant(value: str) -> datetime:
    """Parse a CTFtime ISO timestamp into an aware UTC datetime."""
    parsed = datetime.fromisoformat(value.replace("Z", UTC_SUFFIX))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def event_start(event: Dict[str, Any]) -> datetime:
    return parse_instant(event["start"])


def event_finish(event: Dict[str, Any]) -> datetime:
    return parse_instant(event["finish"])


def has_readable_times(event: Dict[str, Any]) -> bool:
    try:
        event_start(event)
        event_finish(event)
    except (KeyError, ValueError, AttributeError):
        return False
    return True


def is_accepted_event(event: Dict[str, Any]) -> bool:
    """Only online Jeopardy-style contests get a reminder."""
    return event.get("format") == ACCEPTED_FORMAT and not event.get("onsite", False)


async def fetch_ctftime_events(now: datetime | None = None) -> List[Dict[str, Any]]:
    now = now or datetime.now(timezone.utc)
    start = int(now.timestamp())
    finish = int((now + timedelta(days=CTFTIME_WINDOW_DAYS)).timestamp())
    params = {"limit": "100", "start": str(start), "finish": str(finish)}

    async with make_session() as session:
        data = await fetch_json(session, CTFTIME_API_URL, params=params)

    if not isinstance(data, list):
        raise UpstreamUnavailable(f"Unexpected CTFtime payload: {type(data).__name__}")
    events = []
    for e in data:
        if not isinstance(e, dict) or "id" not in e:
            continue
        if not has_readable_times(e):
            logger.warning(f"Ignoring CTFtime event {e.get('id')} with unreadable start/finish")
            continue
        events.append(e)
    logger.info(f"Fetched {len(events)} CTFtime events")
    return events
