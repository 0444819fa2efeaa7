from __future__ import annotations

from telegram import BotCommand
from telegram.ext import Application, CommandHandler
from telegram.request import HTTPXRequest

from .config import Config, CTFTIME_REFRESH_SECS, logger
from .commands import (
    start_cmd,
    track_cmd,
    stop_cmd,
    easy_cmd,
    ctf_cmd,
    status_cmd,
)
from .reminders import ReminderScheduler
from .state import SessionRegistry
from .storage import ReminderStore, SessionStore
from .timers import AsyncioTimers
from .tracker import TrackingManager


BOT_COMMANDS = [
    BotCommand("start", "Show help and available commands"),
    BotCommand("ctf", "List upcoming CTFtime events"),
    BotCommand("track", "Announce a team's CTFd solves"),
    BotCommand("easy", "Most solved challenges not solved yet"),
    BotCommand("status", "Show the current tracking session"),
    BotCommand("stop", "Stop tracking"),
]


def build_application() -> Application:
    # Configure request with longer timeout to prevent startup failures
    request = HTTPXRequest(
        connection_pool_size=8,
        connect_timeout=30.0,
        read_timeout=30.0,
        write_timeout=30.0,
        pool_timeout=30.0,
    )
    app = Application.builder().token(Config.BOT_TOKEN).request(request).build()

    timers = AsyncioTimers()
    registry = SessionRegistry()
    app.bot_data["registry"] = registry
    app.bot_data["reminders"] = ReminderScheduler(
        app.bot, Config.TELEGRAM_CHAT_ID, ReminderStore(Config.events_file()), timers=timers
    )
    app.bot_data["tracker"] = TrackingManager(
        app.bot, SessionStore(Config.sessions_file()), registry=registry, timers=timers
    )

    async def post_init(application: Application) -> None:
        try:
            logger.info("🔧 Setting up bot commands...")
            await application.bot.set_my_commands(BOT_COMMANDS)
            logger.info("✅ Bot commands configured successfully")
        except Exception as e:
            logger.error(f"❌ Failed to set bot commands: {e}")
            logger.warning("⚠️ Bot will continue but commands may not be visible in Telegram")

        reminders: ReminderScheduler = application.bot_data["reminders"]
        tracker: TrackingManager = application.bot_data["tracker"]

        reminders.reconcile_on_startup()
        restored = await tracker.restore_all()
        logger.info(f"Restored {restored} tracking sessions")

        await reminders.refresh()
        application.bot_data["refresh_timer"] = timers.schedule_recurring(
            CTFTIME_REFRESH_SECS, reminders.refresh, "CTFtime refresh"
        )

    async def post_shutdown(application: Application) -> None:
        refresh_timer = application.bot_data.get("refresh_timer")
        if refresh_timer is not None:
            refresh_timer.cancel()
        application.bot_data["reminders"].cancel_all()
        for session in application.bot_data["registry"]:
            session.cancel_timers()

    app.post_init = post_init
    app.post_shutdown = post_shutdown

    app.add_handler(CommandHandler("start", start_cmd))
    app.add_handler(CommandHandler("help", start_cmd))
    app.add_handler(CommandHandler("ctf", ctf_cmd))
    app.add_handler(CommandHandler("track", track_cmd))
    app.add_handler(CommandHandler(["stop", "untrack"], stop_cmd))
    app.add_handler(CommandHandler("easy", easy_cmd))
    app.add_handler(CommandHandler("status", status_cmd))
    return app


def main():
    try:
        Config.validate_config()
    except ValueError as e:
        raise SystemExit(f"❌ {e}. Check your .env file.")

    app = build_application()
    app.run_polling(drop_pending_updates=True)
