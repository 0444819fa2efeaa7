from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterator, Optional, Set

from .ctftime import parse_instant
from .timers import OneShotTimer, RecurringTimer


@dataclass
class TrackingSession:
    """One chat's subscription to a team's progress on a CTFd deployment.

    ``known_solves`` holds every challenge id seen on the scoreboard,
    ``notified_solves`` the ones actually announced. ``notified_solves`` is
    always a subset of ``known_solves``.
    """

    chat_id: int
    ctfd_url: str
    team_name: str
    access_token: str
    end_time: datetime
    team_id: Optional[int] = None
    total_challenges: int = 0
    known_solves: Set[int] = field(default_factory=set)
    notified_solves: Set[int] = field(default_factory=set)
    poll_timer: Optional[RecurringTimer] = field(default=None, repr=False, compare=False)
    summary_timer: Optional[OneShotTimer] = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.check_invariant()

    def check_invariant(self) -> None:
        stray = self.notified_solves - self.known_solves
        if stray:
            raise ValueError(f"Session {self.chat_id}: notified solves {sorted(stray)} were never marked known")

    def mark_known(self, challenge_id: int) -> bool:
        """Record a solve as seen; returns False if it was already known."""
        if challenge_id in self.known_solves:
            return False
        self.known_solves.add(challenge_id)
        return True

    def mark_notified(self, challenge_id: int) -> None:
        if challenge_id not in self.known_solves:
            raise ValueError(f"Session {self.chat_id}: challenge {challenge_id} notified before it was known")
        self.notified_solves.add(challenge_id)

    def cancel_timers(self) -> None:
        if self.poll_timer is not None:
            self.poll_timer.cancel()
            self.poll_timer = None
        if self.summary_timer is not None:
            self.summary_timer.cancel()
            self.summary_timer = None

    def to_record(self) -> Dict[str, Any]:
        return {
            "chat_id": self.chat_id,
            "ctfd_url": self.ctfd_url,
            "team_name": self.team_name,
            "access_token": self.access_token,
            "team_id": self.team_id,
            "end_time": self.end_time.isoformat(),
            "total_challenges": self.total_challenges,
            "known_solves": sorted(self.known_solves),
            "notified_solves": sorted(self.notified_solves),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "TrackingSession":
        return cls(
            chat_id=int(record["chat_id"]),
            ctfd_url=record["ctfd_url"],
            team_name=record["team_name"],
            access_token=record.get("access_token", ""),
            end_time=parse_instant(record["end_time"]),
            team_id=record.get("team_id"),
            total_challenges=int(record.get("total_challenges", 0)),
            known_solves={int(c) for c in record.get("known_solves", [])},
            notified_solves={int(c) for c in record.get("notified_solves", [])},
        )


class SessionRegistry:
    """Live tracking sessions keyed by chat id; one registry per process."""

    def __init__(self) -> None:
        self._sessions: Dict[int, TrackingSession] = {}

    def get(self, chat_id: int) -> Optional[TrackingSession]:
        return self._sessions.get(chat_id)

    def add(self, session: TrackingSession) -> None:
        self._sessions[session.chat_id] = session

    def pop(self, chat_id: int) -> Optional[TrackingSession]:
        return self._sessions.pop(chat_id, None)

    def is_current(self, session: TrackingSession) -> bool:
        return self._sessions.get(session.chat_id) is session

    def __contains__(self, chat_id: object) -> bool:
        return chat_id in self._sessions

    def __iter__(self) -> Iterator[TrackingSession]:
        return iter(list(self._sessions.values()))

    def __len__(self) -> int:
        return len(self._sessions)
