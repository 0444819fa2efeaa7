"""
Tracking session lifecycle tests: start, poll, summary, stop, restore.
"""

from datetime import timedelta

import pytest

from conftest import START, make_solve
from ctfbot.state import TrackingSession
from ctfbot.tracker import (
    ALREADY_ENDED_MSG,
    ENDED_IMMEDIATELY_MSG,
    NOT_TRACKING_MSG,
    TrackingManager,
    started_msg,
    team_not_found_msg,
)
from ctfbot.errors import UserInputError

CHAT = 1001
URL = "https://ctf.example.com"
TOKEN = "ctfd_abc123"


def solve_messages(bot):
    return [text for _, text, _ in bot.sent if text.startswith("*CHALLENGE SOLVED*")]


def summary_messages(bot):
    return [text for _, text, _ in bot.sent if text.startswith("*CTF SUMMARY*")]


@pytest.mark.asyncio
async def test_start_rejects_ended_ctf(tracker, session_store, timers, platform):
    outcome = await tracker.start(CHAT, URL, "Team Rocket", TOKEN, START - timedelta(minutes=1))

    assert outcome == ALREADY_ENDED_MSG
    assert session_store.load_sessions() == []
    assert timers.handles == []
    assert CHAT not in tracker.registry
    assert platform.solve_fetches == []


@pytest.mark.asyncio
async def test_start_unknown_team(tracker, session_store, timers):
    outcome = await tracker.start(CHAT, URL, "Team Magma", TOKEN, START + timedelta(hours=5))

    assert outcome == team_not_found_msg("Team Magma")
    assert session_store.load_sessions() == []
    assert timers.handles == []
    assert CHAT not in tracker.registry


@pytest.mark.asyncio
async def test_start_seeds_existing_solves_and_arms_timers(tracker, session_store, timers, platform, bot):
    platform.solves[7] = [make_solve(1), make_solve(2)]
    end = START + timedelta(hours=5)

    outcome = await tracker.start(CHAT, URL, "team rocket", TOKEN, end)

    assert outcome == started_msg("team rocket")
    assert platform.last_token == TOKEN
    [record] = session_store.load_sessions()
    assert record["chat_id"] == CHAT
    assert record["team_id"] == 7
    assert record["known_solves"] == [1, 2]
    assert record["notified_solves"] == []
    assert record["total_challenges"] == 5

    recurring = [h for h in timers.active if h.recurring]
    once = [h for h in timers.active if not h.recurring]
    assert [h.interval for h in recurring] == [30]
    assert [h.due for h in once] == [5 * 3600 - 120]

    # Solves from before tracking started are not announced
    await timers.advance(30)
    assert bot.sent == []


@pytest.mark.asyncio
async def test_new_solve_announced_once(tracker, session_store, timers, platform, bot):
    platform.solves[7] = [make_solve(1, value=50)]
    await tracker.start(CHAT, URL, "Team Rocket", TOKEN, START + timedelta(hours=5))

    platform.solves[7].append(make_solve(2, name="baby_pwn", category="pwn", value=250))
    await timers.advance(30)
    await timers.advance(30)
    await timers.advance(30)

    [message] = solve_messages(bot)
    assert bot.sent[0][0] == CHAT
    assert bot.sent[0][2] == "MarkdownV2"
    assert "Chall name: *baby\\_pwn*" in message
    assert "Category: *pwn*" in message
    assert "Points: *250*" in message
    assert "Total points: *300*" in message
    assert "Current rank: *2/40*" in message
    assert "Event: *Test CTF 2025*" in message

    [record] = session_store.load_sessions()
    assert record["known_solves"] == [1, 2]
    assert record["notified_solves"] == [2]


@pytest.mark.asyncio
async def test_notified_is_subset_of_known_across_polls(tracker, timers, platform):
    await tracker.start(CHAT, URL, "Team Rocket", TOKEN, START + timedelta(hours=5))
    for cid in (3, 4, 5):
        platform.solves[7].append(make_solve(cid))
        await timers.advance(30)
        session = tracker.registry.get(CHAT)
        assert session.notified_solves <= session.known_solves

    assert tracker.registry.get(CHAT).notified_solves == {3, 4, 5}


def test_session_invariant_is_enforced():
    with pytest.raises(ValueError):
        TrackingSession(
            chat_id=CHAT, ctfd_url=URL, team_name="x", access_token=TOKEN,
            end_time=START, team_id=1, known_solves={1}, notified_solves={1, 2},
        )

    session = TrackingSession(chat_id=CHAT, ctfd_url=URL, team_name="x", access_token=TOKEN, end_time=START)
    with pytest.raises(ValueError):
        session.mark_notified(9)
    assert session.mark_known(9) is True
    assert session.mark_known(9) is False
    session.mark_notified(9)
    assert session.notified_solves == {9}


@pytest.mark.asyncio
async def test_restore_does_not_reannounce(bot, session_store, timers, platform, clock):
    # Persisted mid-session: solve 1 seen (not announced), solve 2 already announced
    session_store.save_session(TrackingSession(
        chat_id=CHAT, ctfd_url=URL, team_name="Team Rocket", access_token=TOKEN,
        end_time=START + timedelta(hours=3), team_id=7, total_challenges=5,
        known_solves={1, 2}, notified_solves={2},
    ).to_record())
    platform.solves[7] = [make_solve(1), make_solve(2), make_solve(3)]

    tracker = TrackingManager(
        bot, session_store, timers=timers, client_factory=platform.client, clock=clock,
        poll_secs=30, summary_lead_secs=120,
    )
    assert await tracker.restore_all() == 1

    restored = tracker.registry.get(CHAT)
    assert restored.known_solves == {1, 2}
    assert restored.notified_solves == {2}

    await timers.advance(30)
    await timers.advance(30)

    [message] = solve_messages(bot)
    assert "chall" in message
    [record] = session_store.load_sessions()
    assert record["known_solves"] == [1, 2, 3]
    assert record["notified_solves"] == [2, 3]


@pytest.mark.asyncio
async def test_second_start_supersedes_first(tracker, session_store, timers, platform):
    platform.teams["Team Aqua"] = 8
    platform.solves[8] = []

    await tracker.start(CHAT, URL, "Team Rocket", TOKEN, START + timedelta(hours=5))
    first_timers = list(timers.handles)
    await tracker.start(CHAT, "https://other.example.com", "Team Aqua", "tok2", START + timedelta(hours=2))

    assert all(h.cancelled for h in first_timers)
    fetches_before = list(platform.solve_fetches)
    await timers.advance(31)

    assert platform.solve_fetches[len(fetches_before):] == [8]
    [record] = session_store.load_sessions()
    assert record["team_name"] == "Team Aqua"
    assert record["ctfd_url"] == "https://other.example.com"


@pytest.mark.asyncio
async def test_restore_with_less_than_lead_time_summarizes(bot, session_store, timers, platform, clock):
    session_store.save_session(TrackingSession(
        chat_id=CHAT, ctfd_url=URL, team_name="Team Rocket", access_token=TOKEN,
        end_time=START + timedelta(minutes=1), team_id=7, total_challenges=5,
        known_solves={1}, notified_solves=set(),
    ).to_record())
    platform.solves[7] = [make_solve(1, value=100), make_solve(4, value=300)]

    tracker = TrackingManager(
        bot, session_store, timers=timers, client_factory=platform.client, clock=clock,
        poll_secs=30, summary_lead_secs=120,
    )
    assert await tracker.restore_all() == 0

    [summary] = summary_messages(bot)
    assert "Total solves: *2/5*" in summary
    assert "Total points: *400*" in summary
    assert session_store.load_sessions() == []
    assert CHAT not in tracker.registry
    assert timers.active == []


@pytest.mark.asyncio
async def test_restore_drops_ended_sessions(bot, session_store, timers, platform, clock):
    session_store.save_session(TrackingSession(
        chat_id=CHAT, ctfd_url=URL, team_name="Team Rocket", access_token=TOKEN,
        end_time=START - timedelta(hours=1), team_id=7,
    ).to_record())

    tracker = TrackingManager(
        bot, session_store, timers=timers, client_factory=platform.client, clock=clock,
        poll_secs=30, summary_lead_secs=120,
    )
    assert await tracker.restore_all() == 0

    assert bot.sent == []
    assert session_store.load_sessions() == []
    assert timers.handles == []


@pytest.mark.asyncio
async def test_start_close_to_end_summarizes_immediately(tracker, session_store, timers, bot):
    outcome = await tracker.start(CHAT, URL, "Team Rocket", TOKEN, START + timedelta(seconds=90))

    assert outcome == ENDED_IMMEDIATELY_MSG
    assert len(summary_messages(bot)) == 1
    assert session_store.load_sessions() == []
    assert timers.active == []


@pytest.mark.asyncio
async def test_summary_timer_ends_session(tracker, session_store, timers, platform, bot):
    await tracker.start(CHAT, URL, "Team Rocket", TOKEN, START + timedelta(hours=1))
    platform.solves[7] = [make_solve(1, value=100), make_solve(2, value=200)]

    await timers.advance(3600 - 120)

    [summary] = summary_messages(bot)
    assert "Team name: *Team Rocket*" in summary
    assert "Total solves: *2/5*" in summary
    assert "Total points: *300*" in summary
    assert "Current rank: *2/40*" in summary
    assert session_store.load_sessions() == []
    assert timers.active == []

    sent = len(bot.sent)
    await timers.advance(600)
    assert len(bot.sent) == sent


@pytest.mark.asyncio
async def test_stop(tracker, session_store, timers, bot):
    await tracker.start(CHAT, URL, "Team Rocket", TOKEN, START + timedelta(hours=5))

    assert tracker.stop(CHAT) is True
    assert tracker.stop(CHAT) is False
    assert session_store.load_sessions() == []
    assert timers.active == []
    assert bot.sent == []


@pytest.mark.asyncio
async def test_stop_during_poll_skips_send_and_write(tracker, session_store, timers, platform, bot):
    await tracker.start(CHAT, URL, "Team Rocket", TOKEN, START + timedelta(hours=5))
    platform.solves[7] = [make_solve(3)]
    platform.on_rank = lambda: tracker.stop(CHAT)

    await timers.advance(30)

    assert bot.sent == []
    assert session_store.load_sessions() == []


@pytest.mark.asyncio
async def test_failed_send_is_not_retried(tracker, session_store, timers, platform, bot):
    await tracker.start(CHAT, URL, "Team Rocket", TOKEN, START + timedelta(hours=5))
    platform.solves[7] = [make_solve(3)]
    bot.fail = True

    await timers.advance(30)
    bot.fail = False
    await timers.advance(30)

    assert solve_messages(bot) == []
    [record] = session_store.load_sessions()
    assert record["known_solves"] == [3]
    assert record["notified_solves"] == []


@pytest.mark.asyncio
async def test_unknown_rank_when_scoreboard_missing(tracker, timers, platform, bot):
    await tracker.start(CHAT, URL, "Team Rocket", TOKEN, START + timedelta(hours=5))
    platform.rank = ("?", 0)
    platform.event_name = None
    platform.solves[7] = [make_solve(3)]

    await timers.advance(30)

    [message] = solve_messages(bot)
    assert "Current rank: *?/0*" in message
    assert "Event:" not in message


@pytest.mark.asyncio
async def test_find_easy_lists_unsolved_by_solve_count(tracker, platform):
    platform.challenges = [
        {"id": 1, "name": "warmup", "category": "misc", "value": 50, "solves": 300},
        {"id": 2, "name": "sanity", "category": "misc", "value": 10, "solves": 500},
        {"id": 3, "name": "kernel", "category": "pwn", "value": 500, "solves": 2},
        {"id": 4, "name": "mystery", "category": "rev", "value": 400},
    ]
    platform.solves[7] = [make_solve(2)]
    await tracker.start(CHAT, URL, "Team Rocket", TOKEN, START + timedelta(hours=5))

    message = await tracker.find_easy(CHAT, limit=3)

    assert "sanity" not in message
    assert message.index("warmup") < message.index("kernel") < message.index("mystery")
    assert "300 solves" in message


@pytest.mark.asyncio
async def test_find_easy_without_session(tracker):
    with pytest.raises(UserInputError):
        await tracker.find_easy(CHAT)
    assert tracker.status(CHAT) == NOT_TRACKING_MSG


@pytest.mark.asyncio
async def test_summary_delay_measured_after_ctfd_lookups(tracker, timers, platform, clock):
    find_team = platform.find_team

    async def slow_find_team(team_name):
        clock.now += timedelta(seconds=40)
        return await find_team(team_name)

    platform.find_team = slow_find_team
    await tracker.start(CHAT, URL, "Team Rocket", TOKEN, START + timedelta(hours=1))

    summary_timer = tracker.registry.get(CHAT).summary_timer
    assert summary_timer.due == 3600 - 40 - 120
