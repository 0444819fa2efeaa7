"""
Tracking session lifecycle.

A session moves ABSENT -> ACTIVE -> SUMMARIZED/STOPPED -> ABSENT. While
ACTIVE its recurring poll timer announces new solves; its one-shot summary
timer fires ``SUMMARY_LEAD_SECS`` before the contest ends, sends the summary
and tears the session down.

Known limitation: the store is read-modify-write per call. A poll that is
still awaiting CTFd when the session is stopped or superseded finishes its
loop, but it skips sends and store writes because it is no longer the
registered session for its chat. Polls of one session never overlap because
the recurring timer waits for each poll to return before sleeping again; a
summary can still run while a poll of the same session is in flight.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from telegram.constants import ParseMode

from .config import POLL_SECS, SUMMARY_LEAD_SECS, logger
from .ctfd import CTFdClient, solve_challenge_id, solve_value, total_points
from .errors import PersistenceError, UserInputError
from .formatting import (
    fmt_easy_challenges,
    fmt_solve_notification,
    fmt_summary,
    format_local_time,
)
from .state import SessionRegistry, TrackingSession
from .storage import SessionStore
from .timers import AsyncioTimers, utc_now


ALREADY_ENDED_MSG = "Error: CTF has already ended"
ENDED_IMMEDIATELY_MSG = "CTF ends in less than 2 minutes. Summary sent."
NOT_TRACKING_MSG = "Not tracking any team in this chat. Use /track first."


def team_not_found_msg(team_name: str) -> str:
    return f'Error: Team "{team_name}" not found'


def started_msg(team_name: str) -> str:
    return f'Started tracking team "{team_name}". Will send summary 2 minutes before CTF ends.'


class TrackingManager:
    def __init__(
        self,
        bot,
        store: SessionStore,
        registry: Optional[SessionRegistry] = None,
        timers=None,
        client_factory: Callable[[str, str], CTFdClient] = CTFdClient,
        clock: Callable[[], datetime] = utc_now,
        poll_secs: float = POLL_SECS,
        summary_lead_secs: float = SUMMARY_LEAD_SECS,
    ):
        self.bot = bot
        self.store = store
        self.registry = registry if registry is not None else SessionRegistry()
        self.timers = timers if timers is not None else AsyncioTimers()
        self.client_factory = client_factory
        self.clock = clock
        self.poll_secs = poll_secs
        self.summary_lead_secs = summary_lead_secs

    def _client(self, session: TrackingSession) -> CTFdClient:
        return self.client_factory(session.ctfd_url, session.access_token)

    async def start(
        self,
        chat_id: int,
        ctfd_url: str,
        team_name: str,
        access_token: str,
        end_time: datetime,
        now: Optional[datetime] = None,
    ) -> str:
        """Start tracking ``team_name`` for ``chat_id``; returns a plain-text outcome."""
        pinned_now = now
        now = now or self.clock()
        if end_time <= now:
            return ALREADY_ENDED_MSG

        self.stop(chat_id)

        client = self.client_factory(ctfd_url, access_token)
        team = await client.find_team(team_name)
        if not team:
            logger.info(f"Team '{team_name}' not found on {ctfd_url} for chat {chat_id}")
            return team_not_found_msg(team_name)

        total_challenges = await client.count_challenges()
        initial_solves = await client.get_team_solves(team["id"])
        known = {solve_challenge_id(s) for s in initial_solves}

        session = TrackingSession(
            chat_id=chat_id,
            ctfd_url=ctfd_url,
            team_name=team_name,
            access_token=access_token,
            end_time=end_time,
            team_id=team["id"],
            total_challenges=total_challenges,
            known_solves=known,
        )

        # A concurrent /track for this chat may have registered while we awaited CTFd
        self.stop(chat_id)
        self.registry.add(session)
        self._save(session)
        logger.info(
            f"Tracking team '{team_name}' (id {team['id']}) on {ctfd_url} for chat {chat_id}: "
            f"{len(known)} existing solves, {total_challenges} challenges"
        )

        # The CTFd lookups above take time; measure the summary delay from after them
        if not await self._arm(session, pinned_now or self.clock()):
            return ENDED_IMMEDIATELY_MSG
        return started_msg(team_name)

    async def _arm(self, session: TrackingSession, now: datetime) -> bool:
        """Arm the poll and summary timers. Returns False if the summary already ran."""
        chat_id = session.chat_id

        async def poll_tick():
            await self.poll(chat_id)

        async def summary_tick():
            await self.summarize(chat_id)

        session.poll_timer = self.timers.schedule_recurring(
            self.poll_secs, poll_tick, f"solve poll for chat {chat_id}"
        )

        delay = (session.end_time - now).total_seconds() - self.summary_lead_secs
        if delay > 0:
            session.summary_timer = self.timers.schedule_once(
                delay, summary_tick, f"summary for chat {chat_id}"
            )
            return True

        logger.info(f"Less than {self.summary_lead_secs:.0f}s left for chat {chat_id}, summarizing now")
        await self.summarize(chat_id)
        return False

    async def poll(self, chat_id: int) -> None:
        session = self.registry.get(chat_id)
        if session is None or session.team_id is None:
            return

        client = self._client(session)
        solves = await client.get_team_solves(session.team_id)

        for solve in solves:
            challenge_id = solve_challenge_id(solve)
            if not session.mark_known(challenge_id):
                continue
            if challenge_id in session.notified_solves:
                continue
            if not self.registry.is_current(session):
                logger.debug(f"Session for chat {chat_id} ended mid-poll; not announcing {challenge_id}")
                return

            rank, total_teams = await client.get_team_rank(session.team_id)
            event_name = await client.get_event_name()
            challenge = solve.get("challenge") or {}
            message = fmt_solve_notification(
                event_name,
                session.team_name,
                challenge.get("name", "Unknown"),
                challenge.get("category", "?"),
                solve_value(solve),
                total_points(solves),
                rank,
                total_teams,
            )

            if self.registry.is_current(session) and await self._send(chat_id, message):
                session.mark_notified(challenge_id)
                logger.info(f"Announced solve of challenge {challenge_id} for chat {chat_id}")
            self._save(session)

    async def summarize(self, chat_id: int) -> None:
        session = self.registry.get(chat_id)
        if session is None:
            return

        try:
            if session.team_id is not None:
                client = self._client(session)
                solves = await client.get_team_solves(session.team_id)
                rank, total_teams = await client.get_team_rank(session.team_id)
                event_name = await client.get_event_name()
                message = fmt_summary(
                    event_name,
                    session.team_name,
                    len(solves),
                    session.total_challenges,
                    total_points(solves),
                    rank,
                    total_teams,
                )
                if self.registry.is_current(session):
                    await self._send(chat_id, message)
        finally:
            self._teardown(session)
            logger.info(f"Summary done, stopped tracking for chat {chat_id}")

    def stop(self, chat_id: int) -> bool:
        """Tear down the chat's session without a message. Returns whether one existed."""
        session = self.registry.get(chat_id)
        if session is None:
            return False
        self._teardown(session)
        logger.info(f"Stopped tracking for chat {chat_id}")
        return True

    async def restore_all(self, now: Optional[datetime] = None) -> int:
        """Re-arm persisted sessions after a restart; returns how many are tracking again."""
        now = now or self.clock()
        restored = 0
        for record in self.store.load_sessions():
            chat_id = record.get("chat_id")
            try:
                session = TrackingSession.from_record(record)
            except (KeyError, ValueError, TypeError) as e:
                logger.error(f"Dropping unreadable session for chat {chat_id}: {e}")
                self._remove_record(chat_id)
                continue

            if session.end_time <= now or session.team_id is None:
                logger.info(f"Dropping stale session for chat {chat_id} (ended {session.end_time.isoformat()})")
                self._remove_record(session.chat_id)
                continue

            self.registry.add(session)
            logger.info(f"Restored session for chat {chat_id}: team '{session.team_name}'")
            if await self._arm(session, now):
                restored += 1
        return restored

    async def find_easy(self, chat_id: int, limit: int = 5) -> str:
        """MarkdownV2 list of the most-solved challenges the team has not solved yet."""
        session = self.registry.get(chat_id)
        if session is None or session.team_id is None:
            raise UserInputError(NOT_TRACKING_MSG)

        client = self._client(session)
        solved = set(session.known_solves)
        solved.update(solve_challenge_id(s) for s in await client.get_team_solves(session.team_id))

        unsolved: List[Dict[str, Any]] = []
        for challenge in await client.get_challenges():
            if challenge.get("id") in solved:
                continue
            solves = challenge.get("solves")
            if not isinstance(solves, int) and isinstance(challenge.get("id"), int):
                solves = await client.get_challenge_solve_count(challenge["id"])
            unsolved.append({**challenge, "solves": solves})

        unsolved.sort(key=lambda c: (-(c["solves"] if isinstance(c["solves"], int) else -1), c.get("value") or 0))
        event_name = await client.get_event_name()
        return fmt_easy_challenges(event_name, session.team_name, unsolved[:limit])

    def status(self, chat_id: int) -> str:
        session = self.registry.get(chat_id)
        if session is None:
            return NOT_TRACKING_MSG
        return (
            f'Tracking team "{session.team_name}" on {session.ctfd_url}\n'
            f"Solves seen: {len(session.known_solves)}/{session.total_challenges}, "
            f"announced: {len(session.notified_solves)}\n"
            f"Ends: {format_local_time(session.end_time)}"
        )

    def _teardown(self, session: TrackingSession) -> None:
        session.cancel_timers()
        if not self.registry.is_current(session):
            return
        self.registry.pop(session.chat_id)
        self._remove_record(session.chat_id)

    def _save(self, session: TrackingSession) -> None:
        if not self.registry.is_current(session):
            logger.debug(f"Skipping save for superseded session of chat {session.chat_id}")
            return
        try:
            self.store.save_session(session.to_record())
        except PersistenceError as e:
            logger.error(f"Could not persist session for chat {session.chat_id}: {e}")

    def _remove_record(self, chat_id: Any) -> None:
        try:
            self.store.remove_session(chat_id)
        except PersistenceError as e:
            logger.error(f"Could not remove session for chat {chat_id}: {e}")

    async def _send(self, chat_id: int, text: str) -> bool:
        try:
            await self.bot.send_message(chat_id, text, parse_mode=ParseMode.MARKDOWN_V2)
            return True
        except Exception as e:
            logger.error(f"Failed to send message to chat {chat_id}: {e}")
            return False
