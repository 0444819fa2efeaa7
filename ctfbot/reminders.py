"""
Contest-start reminders for CTFtime events.

Reminders are persisted as soon as they are armed so a restart can re-arm
the ones that have not fired yet. A reminder whose send fails is still
marked notified; the bot prefers a missed reminder over a duplicate one.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from telegram.constants import ParseMode

from .config import logger
from .ctftime import event_start, fetch_ctftime_events, is_accepted_event
from .errors import PersistenceError
from .formatting import fmt_contest_reminder
from .storage import ReminderStore
from .timers import AsyncioTimers, OneShotTimer, utc_now


class ReminderScheduler:
    def __init__(
        self,
        bot,
        chat_id: int | str,
        store: ReminderStore,
        timers=None,
        clock: Callable[[], datetime] = utc_now,
        fetch_events: Callable[[], Awaitable[List[Dict[str, Any]]]] = fetch_ctftime_events,
    ):
        self.bot = bot
        self.chat_id = chat_id
        self.store = store
        self.timers = timers if timers is not None else AsyncioTimers()
        self.clock = clock
        self.fetch_events = fetch_events
        self._armed: Dict[int, OneShotTimer] = {}

    def schedule_reminder(self, event: Dict[str, Any], force: bool = False) -> bool:
        """Arm a reminder at the event start. Returns whether a timer was armed."""
        event_id = event["id"]
        if not force and (event_id in self._armed or self.store.is_event_scheduled(event_id)):
            return False

        delay = (event_start(event) - self.clock()).total_seconds()
        if delay <= 0:
            return False

        previous = self._armed.pop(event_id, None)
        if previous is not None:
            previous.cancel()

        async def fire():
            await self._fire(event)

        self._armed[event_id] = self.timers.schedule_once(
            delay, fire, f"reminder for '{event.get('title')}' ({event_id})"
        )
        try:
            self.store.mark_event_scheduled(event)
        except PersistenceError as e:
            logger.error(f"Could not persist reminder for event {event_id}, it will not survive a restart: {e}")
        logger.info(f"Scheduled reminder for '{event.get('title')}' ({event_id}) in {delay:.0f}s")
        return True

    async def _fire(self, event: Dict[str, Any]) -> None:
        event_id = event["id"]
        self._armed.pop(event_id, None)
        try:
            await self.bot.send_message(
                self.chat_id, fmt_contest_reminder(event), parse_mode=ParseMode.MARKDOWN_V2
            )
            logger.info(f"Sent start reminder for '{event.get('title')}' ({event_id})")
        except Exception as e:
            logger.error(f"Failed to send reminder for event {event_id}: {e}")
        try:
            self.store.mark_event_notified(event_id)
        except PersistenceError as e:
            logger.error(f"Could not mark event {event_id} notified: {e}")

    def reconcile_on_startup(self) -> int:
        """Re-arm persisted reminders that are still pending; returns how many."""
        now = self.clock()
        rearmed = 0
        for event in self.store.get_scheduled_events():
            try:
                pending = event_start(event) > now and not event.get("notified", False)
            except (KeyError, ValueError, AttributeError) as e:
                logger.warning(f"Skipping reminder with unreadable start time {event.get('id')}: {e}")
                continue
            if pending and self._schedule_logged(event, force=True):
                rearmed += 1
        logger.info(f"Re-armed {rearmed} pending reminders")
        return rearmed

    def ingest_fetched_events(self, events: List[Dict[str, Any]]) -> int:
        """Drop finished reminders, then schedule every accepted event. Returns how many were armed."""
        try:
            self.store.cleanup_finished_events(self.clock())
        except PersistenceError as e:
            logger.error(f"Could not purge finished reminders: {e}")
        scheduled = 0
        for event in events:
            if is_accepted_event(event) and self._schedule_logged(event):
                scheduled += 1
        return scheduled

    def _schedule_logged(self, event: Dict[str, Any], force: bool = False) -> bool:
        """``schedule_reminder`` for batch callers: one unreadable event never stops the rest."""
        try:
            return self.schedule_reminder(event, force=force)
        except (KeyError, ValueError, AttributeError) as e:
            logger.warning(f"Skipping CTFtime event {event.get('id')} with unreadable times: {e}")
        return False

    def cancel_all(self) -> None:
        """Cancel every armed reminder timer; persisted reminders are re-armed on next startup."""
        for timer in self._armed.values():
            timer.cancel()
        self._armed.clear()

    async def refresh(self) -> None:
        """Hourly job: fetch CTFtime and schedule new contests. Failures wait for the next tick."""
        try:
            events = await self.fetch_events()
            scheduled = self.ingest_fetched_events(events)
            logger.info(f"CTFtime refresh: {len(events)} events, {scheduled} new reminders")
        except Exception as e:
            logger.error(f"Error fetching and scheduling events: {e}")

    def upcoming_events(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        now = now or self.clock()
        upcoming = []
        for event in self.store.get_scheduled_events():
            try:
                if event_start(event) > now and not event.get("notified", False):
                    upcoming.append(event)
            except (KeyError, ValueError):
                continue
        return sorted(upcoming, key=event_start)
