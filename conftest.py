"""Shared fakes for the CTF Notify Bot tests: bot, clock, timers and CTFd platform."""

from datetime import datetime, timedelta, timezone

import pytest

from ctfbot.storage import ReminderStore, SessionStore
from ctfbot.tracker import TrackingManager


START = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeBot:
    def __init__(self):
        self.sent = []
        self.fail = False

    async def send_message(self, chat_id, text, parse_mode=None, **kwargs):
        if self.fail:
            raise RuntimeError("telegram is down")
        self.sent.append((chat_id, text, parse_mode))


class FakeTimer:
    def __init__(self, due, interval, callback, description):
        self.due = due
        self.interval = interval
        self.callback = callback
        self.description = description
        self.cancelled = False
        self.fired = 0

    @property
    def recurring(self):
        return self.interval is not None

    def cancel(self):
        self.cancelled = True


class FakeTimers:
    """Manual timer factory; ``advance`` runs due callbacks and moves the clock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.elapsed = 0.0
        self.handles = []

    def schedule_once(self, delay, callback, description="timer"):
        handle = FakeTimer(self.elapsed + delay, None, callback, description)
        self.handles.append(handle)
        return handle

    def schedule_recurring(self, interval, callback, description="timer"):
        handle = FakeTimer(self.elapsed + interval, interval, callback, description)
        self.handles.append(handle)
        return handle

    @property
    def active(self):
        return [h for h in self.handles if not h.cancelled and not (h.fired and not h.recurring)]

    async def advance(self, seconds):
        target = self.elapsed + seconds
        while True:
            due = [h for h in self.active if h.due <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.due)
            self._move_to(handle.due)
            handle.fired += 1
            if handle.recurring:
                handle.due += handle.interval
            await handle.callback()
        self._move_to(target)

    def _move_to(self, elapsed):
        if elapsed > self.elapsed:
            self.clock.now += timedelta(seconds=elapsed - self.elapsed)
            self.elapsed = elapsed


def make_solve(challenge_id, name="chall", category="web", value=100):
    return {
        "challenge_id": challenge_id,
        "challenge": {"id": challenge_id, "name": name, "category": category, "value": value},
        "date": "2025-03-01T12:00:00Z",
    }


class FakePlatform:
    """Stands in for CTFdClient; ``client`` is the factory handed to TrackingManager."""

    def __init__(self):
        self.teams = {"Team Rocket": 7}
        self.solves = {7: []}
        self.challenges = [{"id": i, "name": f"chall{i}", "category": "misc", "value": 100} for i in range(1, 6)]
        self.rank = ("2nd", 40)
        self.event_name = "Test CTF 2025"
        self.solve_fetches = []
        self.on_rank = None

    def client(self, ctfd_url, access_token):
        self.last_url = ctfd_url
        self.last_token = access_token
        return self

    async def find_team(self, team_name):
        for name, team_id in self.teams.items():
            if name.lower() == team_name.lower():
                return {"id": team_id, "name": name}
        return None

    async def get_team_solves(self, team_id):
        self.solve_fetches.append(team_id)
        return list(self.solves.get(team_id, []))

    async def get_challenges(self):
        return list(self.challenges)

    async def count_challenges(self):
        return len(self.challenges)

    async def get_challenge_solve_count(self, challenge_id):
        return None

    async def get_team_rank(self, team_id):
        if self.on_rank is not None:
            self.on_rank()
        return self.rank

    async def get_event_name(self):
        return self.event_name


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def timers(clock):
    return FakeTimers(clock)


@pytest.fixture
def bot():
    return FakeBot()


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def session_store(tmp_path):
    return SessionStore(str(tmp_path / "sessions.json"))


@pytest.fixture
def reminder_store(tmp_path):
    return ReminderStore(str(tmp_path / "events.json"))


@pytest.fixture
def tracker(bot, session_store, timers, platform, clock):
    return TrackingManager(
        bot,
        session_store,
        timers=timers,
        client_factory=platform.client,
        clock=clock,
        poll_secs=30,
        summary_lead_secs=120,
    )
