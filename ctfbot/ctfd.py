"""
Read-only CTFd API client.

Every public coroutine degrades to "no data" (empty list, ``None``, rank
``"?"``) when the platform is unreachable or answers with something
unexpected, so polling and summaries always complete. The scoreboard and
team listing shapes differ between CTFd versions and plugins, so payloads
are validated here and nowhere else.
"""

from __future__ import annotations

from functools import wraps
from typing import Any, Dict, List, Optional, Tuple

import aiohttp
from cachetools import TTLCache

from .config import CTFD_CACHE_TTL, logger
from .errors import UpstreamUnavailable
from .http import fetch_json, make_session


MAX_TEAM_PAGES = 200
UNKNOWN_RANK = "?"

# Slow-changing platform metadata (event name)
ctfd_cache: TTLCache = TTLCache(maxsize=256, ttl=CTFD_CACHE_TTL)


def cached_api_call(cache_key_func):
    """Cache a client coroutine's result in ``ctfd_cache``; ``None`` results are not cached."""
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            cache_key = cache_key_func(*args, **kwargs)
            if cache_key in ctfd_cache:
                logger.debug(f"Cache hit: {cache_key}")
                return ctfd_cache[cache_key]
            result = await func(*args, **kwargs)
            if result is not None:
                ctfd_cache[cache_key] = result
            return result
        return wrapper
    return decorator


def _payload_data(payload: Any) -> Any:
    """Unwrap CTFd's ``{"success": true, "data": ...}`` envelope."""
    if isinstance(payload, dict):
        if payload.get("success") is False:
            raise UpstreamUnavailable(f"CTFd reported failure: {payload.get('errors') or payload.get('message')}")
        return payload.get("data")
    return payload


def extract_standings(payload: Any) -> List[Dict[str, Any]]:
    """Find the standings list in a scoreboard payload.

    Seen in the wild: ``data`` is the list, ``data.standings`` is the list,
    or a bare top-level ``standings``.
    """
    if isinstance(payload, dict) and isinstance(payload.get("standings"), list):
        data: Any = payload["standings"]
    else:
        data = _payload_data(payload)
        if isinstance(data, dict):
            data = data.get("standings")
    if not isinstance(data, list):
        return []
    return [row for row in data if isinstance(row, dict)]


def standing_team_id(row: Dict[str, Any]) -> Optional[int]:
    for key in ("id", "account_id", "team_id"):
        value = row.get(key)
        if isinstance(value, int):
            return value
    return None


def solve_challenge_id(solve: Dict[str, Any]) -> Optional[int]:
    cid = solve.get("challenge_id")
    if isinstance(cid, int):
        return cid
    challenge = solve.get("challenge") or {}
    cid = challenge.get("id")
    return cid if isinstance(cid, int) else None


def solve_value(solve: Dict[str, Any]) -> float:
    challenge = solve.get("challenge") or {}
    value = challenge.get("value", solve.get("value", 0))
    return value if isinstance(value, (int, float)) else 0


def total_points(solves: List[Dict[str, Any]]) -> float:
    return sum(solve_value(s) for s in solves)


class CTFdClient:
    """Thin reader over one CTFd deployment using a bearer access token."""

    def __init__(self, base_url: str, access_token: str):
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token

    def _url(self, path: str) -> str:
        return f"{self.base_url}/api/v1{path}"

    async def _get(self, session: aiohttp.ClientSession, path: str, params: Dict[str, Any] | None = None) -> Any:
        return await fetch_json(session, self._url(path), params=params)

    async def find_team(self, team_name: str) -> Optional[Dict[str, Any]]:
        """Resolve a team by case-insensitive exact name.

        Tries the paginated ``/teams`` listing first and falls back to the
        scoreboard when the listing is unavailable or has no match.
        """
        wanted = team_name.strip().lower()
        try:
            team = await self._find_team_in_listing(wanted)
            if team:
                return team
        except (UpstreamUnavailable, PermissionError) as e:
            logger.warning(f"Team listing unavailable on {self.base_url}: {e}")

        try:
            async with make_session(self.access_token) as session:
                payload = await self._get(session, "/scoreboard")
            standings = extract_standings(payload)
        except (UpstreamUnavailable, PermissionError) as e:
            logger.warning(f"Scoreboard unavailable on {self.base_url}: {e}")
            return None

        for row in standings:
            team_id = standing_team_id(row)
            if team_id is not None and str(row.get("name", "")).lower() == wanted:
                return {"id": team_id, "name": row.get("name")}
        return None

    async def _find_team_in_listing(self, wanted: str) -> Optional[Dict[str, Any]]:
        page = 1
        async with make_session(self.access_token) as session:
            while page <= MAX_TEAM_PAGES:
                payload = await self._get(session, "/teams", params={"page": str(page)})
                teams = _payload_data(payload)
                if not isinstance(teams, list):
                    return None
                for team in teams:
                    if not isinstance(team, dict):
                        continue
                    if str(team.get("name", "")).lower() == wanted and isinstance(team.get("id"), int):
                        return {"id": team["id"], "name": team.get("name")}

                meta = payload.get("meta") if isinstance(payload, dict) else None
                pages = ((meta or {}).get("pagination") or {}).get("pages")
                if not isinstance(pages, int) or page >= pages:
                    return None
                page += 1
        return None

    async def get_team_solves(self, team_id: int) -> List[Dict[str, Any]]:
        try:
            async with make_session(self.access_token) as session:
                payload = await self._get(session, f"/teams/{team_id}/solves")
            solves = _payload_data(payload)
        except (UpstreamUnavailable, PermissionError) as e:
            logger.warning(f"Could not fetch solves for team {team_id} on {self.base_url}: {e}")
            return []
        if not isinstance(solves, list):
            return []
        return [s for s in solves if isinstance(s, dict) and solve_challenge_id(s) is not None]

    async def get_challenges(self) -> List[Dict[str, Any]]:
        try:
            async with make_session(self.access_token) as session:
                payload = await self._get(session, "/challenges")
            challenges = _payload_data(payload)
        except (UpstreamUnavailable, PermissionError) as e:
            logger.warning(f"Could not fetch challenges on {self.base_url}: {e}")
            return []
        if not isinstance(challenges, list):
            return []
        return [c for c in challenges if isinstance(c, dict)]

    async def count_challenges(self) -> int:
        return len(await self.get_challenges())

    async def get_challenge_solve_count(self, challenge_id: int) -> Optional[int]:
        try:
            async with make_session(self.access_token) as session:
                payload = await self._get(session, f"/challenges/{challenge_id}/solves")
            solves = _payload_data(payload)
        except (UpstreamUnavailable, PermissionError) as e:
            logger.warning(f"Could not fetch solve count for challenge {challenge_id}: {e}")
            return None
        return len(solves) if isinstance(solves, list) else None

    async def get_team_rank(self, team_id: int) -> Tuple[str, int]:
        """Return ``(place, total_teams)``; place is ``"?"`` when unknown."""
        try:
            async with make_session(self.access_token) as session:
                payload = await self._get(session, "/scoreboard")
            standings = extract_standings(payload)
        except (UpstreamUnavailable, PermissionError) as e:
            logger.warning(f"Could not fetch rank for team {team_id} on {self.base_url}: {e}")
            return UNKNOWN_RANK, 0

        for index, row in enumerate(standings):
            if standing_team_id(row) == team_id:
                place = row.get("place", row.get("pos"))
                return (str(place) if place not in (None, "") else str(index + 1)), len(standings)
        return UNKNOWN_RANK, len(standings)

    @cached_api_call(lambda self: f"event_name:{self.base_url}")
    async def get_event_name(self) -> Optional[str]:
        try:
            async with make_session(self.access_token) as session:
                payload = await self._get(session, "/configs")
            configs = _payload_data(payload)
        except (UpstreamUnavailable, PermissionError) as e:
            logger.debug(f"Could not fetch event name on {self.base_url}: {e}")
            return None

        if isinstance(configs, dict):
            configs = [{"key": k, "value": v} for k, v in configs.items()]
        if not isinstance(configs, list):
            return None
        values = {c.get("key"): c.get("value") for c in configs if isinstance(c, dict)}
        for key in ("ctf_name", "name"):
            if values.get(key):
                return str(values[key])
        return None
