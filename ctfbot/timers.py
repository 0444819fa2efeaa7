"""
Timer capabilities backed by asyncio tasks.

``schedule_once`` returns a :class:`OneShotTimer`, ``schedule_recurring``
returns a :class:`RecurringTimer`. The two handle types are kept apart so a
session cannot mistake its summary timer for its poll timer.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from .config import logger


TimerCallback = Callable[[], Awaitable[None]]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class _TaskTimer:
    def __init__(self, description: str):
        self.description = description
        self.cancelled = False
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return not self.cancelled and self._task is not None and not self._task.done()

    def cancel(self) -> None:
        self.cancelled = True
        if self._task is None or self._task.done():
            return
        # Inside our own callback: the flag stops the loop once the callback returns
        if self._task is asyncio.current_task():
            return
        self._task.cancel()


class OneShotTimer(_TaskTimer):
    """Fires its callback once after a delay."""


class RecurringTimer(_TaskTimer):
    """Fires its callback every ``interval`` seconds until cancelled."""


class AsyncioTimers:
    """Default timer factory used by the running bot."""

    def schedule_once(self, delay: float, callback: TimerCallback, description: str = "timer") -> OneShotTimer:
        handle = OneShotTimer(description)

        async def scheduled_task():
            try:
                if delay > 0:
                    logger.debug(f"Scheduling {description} in {delay:.0f}s")
                    await asyncio.sleep(delay)
                if not handle.cancelled:
                    await callback()
            except asyncio.CancelledError:
                logger.debug(f"Cancelled {description}")
                raise
            except Exception as e:
                logger.error(f"{description} failed: {e}", exc_info=True)

        handle._task = asyncio.create_task(scheduled_task())
        return handle

    def schedule_recurring(self, interval: float, callback: TimerCallback, description: str = "timer") -> RecurringTimer:
        handle = RecurringTimer(description)

        async def recurring_task():
            # The next tick is armed only after the previous callback returns
            while not handle.cancelled:
                try:
                    await asyncio.sleep(interval)
                    if handle.cancelled:
                        break
                    await callback()
                except asyncio.CancelledError:
                    logger.debug(f"Cancelled {description}")
                    raise
                except Exception as e:
                    logger.error(f"{description} failed: {e}", exc_info=True)

        handle._task = asyncio.create_task(recurring_task())
        return handle
