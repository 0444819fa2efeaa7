from __future__ import annotations

import asyncio

import aiohttp
from typing import Any, Dict
from .config import HTTP_TIMEOUT_SECS, logger
from .errors import UpstreamUnavailable


def build_headers(access_token: str | None = None) -> Dict[str, str]:
    h = {
        "accept": "application/json",
        "content-type": "application/json",
        "user-agent": "ctfbot/1.0 (+https://ctftime.org)",
    }
    if access_token:
        h["authorization"] = f"Token {access_token}"
    return h


def make_session(access_token: str | None = None) -> aiohttp.ClientSession:
    timeout = aiohttp.ClientTimeout(total=HTTP_TIMEOUT_SECS)
    return aiohttp.ClientSession(
        timeout=timeout,
        headers=build_headers(access_token),
        trust_env=True,
    )


async def fetch_json(session: aiohttp.ClientSession, url: str, params: Dict[str, Any] | None = None) -> Any:
    logger.debug(f"API request: {url}")
    try:
        async with session.get(url, params=params) as r:
            if r.status in (401, 403):
                txt = await r.text()
                logger.warning(f"API auth failure for {url}: {r.status}")
                raise PermissionError(f"Auth failed ({r.status}) for {url}. Body: {txt[:180]}")
            if r.status != 200:
                txt = await r.text()
                logger.error(f"API error for {url}: {r.status}")
                raise UpstreamUnavailable(f"HTTP {r.status} for {url} :: {txt[:300]}")
            data = await r.json(content_type=None)
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        raise UpstreamUnavailable(f"Request to {url} failed: {e}") from e
    logger.debug(f"API success: {url}")
    return data
