# -*- coding: utf-8 -*-
import logging

from saldo_core.logging_setup import configure_logging

# Centralized, share-friendly logs (set LOG_PRESET=verbose to restore noisy debug).
configure_logging()

from telegram import Update
from telegram.ext import Application, ContextTypes, MessageHandler, filters

from saldo_core.clients.lunchcheck import LunchCheckClient
from saldo_core.clients.telegram_gateway import TelegramGateway
from saldo_core.config import get_env
from saldo_core.conversation import ConversationRouter
from saldo_core.scheduler import CronScheduler, next_fire_time
from saldo_core.services.monitoring import MonitoringEngine
from saldo_core.storage import SnapshotWriter, load_from_file


logger = logging.getLogger(__name__)


# =================== Handlers ===================

async def text_router(update: Update, context: ContextTypes.DEFAULT_TYPE):
    message = update.effective_message
    chat = update.effective_chat
    if message is None or chat is None or message.text is None:
        return
    router: ConversationRouter = context.bot_data["router"]
    await router.handle_text(chat.id, message.text, chat.to_dict())


async def _on_error(update, context):
    logger.error("unhandled error while processing update %s", getattr(update, "update_id", None), exc_info=context.error)


async def _snapshot_job(context: ContextTypes.DEFAULT_TYPE):
    writer: SnapshotWriter = context.bot_data["snapshot_writer"]
    await writer.flush()


# =================== Main ===================

async def _post_init_start(app: Application) -> None:
    cfg = get_env()
    scheduler: CronScheduler = app.bot_data["scheduler"]
    scheduler.start()
    for job in scheduler.jobs:
        logger.info("job %s (%s) first run at %s", job.name, job.expression, next_fire_time(job.trigger))

    if app.job_queue:
        app.job_queue.run_repeating(_snapshot_job, interval=cfg.snapshot_interval, first=cfg.snapshot_interval, name="snapshot")
    else:
        logger.warning("JobQueue unavailable (install python-telegram-bot[job-queue]); snapshots are only written on shutdown")


async def _post_stop_scheduler(app: Application) -> None:
    """Stop the cron jobs while the bot can still deliver; waits for a running scan."""

    scheduler: CronScheduler = app.bot_data["scheduler"]
    await scheduler.stop()


async def _post_shutdown_cleanup(app: Application) -> None:
    # Best effort only: a crash between flushes loses at most one interval.
    writer: SnapshotWriter = app.bot_data["snapshot_writer"]
    await writer.flush()

    client: LunchCheckClient = app.bot_data["lunchcheck"]
    await client.aclose()


def main():
    cfg = get_env()
    if not cfg.bot_token:
        raise RuntimeError("Set TELEGRAM_BOT_TOKEN in .env")
    app = (
        Application.builder()
        .token(cfg.bot_token)
        .concurrent_updates(True)
        .post_init(_post_init_start)
        .post_stop(_post_stop_scheduler)
        .post_shutdown(_post_shutdown_cleanup)
        .build()
    )

    store = load_from_file(cfg.data_file)
    client = LunchCheckClient(cfg.lunchcheck_url, timeout=cfg.lunchcheck_timeout)
    gateway = TelegramGateway(app.bot)
    engine = MonitoringEngine(
        store,
        client,
        gateway,
        concurrency=cfg.scan_concurrency,
        base_url=cfg.lunchcheck_url,
    )
    scheduler = CronScheduler(timezone=cfg.check_timezone)
    scheduler.schedule(cfg.check_cron, engine.run_tick, name="card_check")

    app.bot_data.update(
        {
            "store": store,
            "lunchcheck": client,
            "engine": engine,
            "router": ConversationRouter(engine, gateway),
            "scheduler": scheduler,
            "snapshot_writer": SnapshotWriter(store, cfg.data_file),
        }
    )

    # Commands are exact texts, so they go through the same router as card numbers.
    app.add_handler(MessageHandler(filters.TEXT, text_router, block=False))

    # Error handler
    app.add_error_handler(_on_error)

    logger.info("Bot is ready!")
    app.run_polling()


if __name__ == "__main__":
    main()
