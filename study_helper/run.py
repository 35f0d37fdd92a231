"""Main entry point for Study Helper."""
import asyncio
import logging
import os
import sys

from aiogram import Bot, Dispatcher
from aiogram.fsm.storage.memory import MemoryStorage
from aiogram.types import BotCommand

from study_helper.config import settings
from study_helper.db.database import get_db, close_db
from study_helper.handlers import admin, start, plan, quiz, blueprint, materials
from study_helper.middleware.entitlement import EntitlementMiddleware
from study_helper.payments.webhook import start_webhook_server

logger = logging.getLogger(__name__)


def setup_logging():
    handlers = [logging.StreamHandler(sys.stdout)]
    if settings.LOG_FILE:
        log_dir = os.path.dirname(settings.LOG_FILE)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(settings.LOG_FILE, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )


async def main():
    """Main function to start the bot."""
    if not settings.BOT_TOKEN:
        logger.error("BOT_TOKEN is not set. Create a .env file based on .env.example")
        sys.exit(1)

    logger.info("Starting Study Helper...")
    await get_db()

    bot = Bot(token=settings.BOT_TOKEN)
    dp = Dispatcher(storage=MemoryStorage())

    dp.message.outer_middleware(EntitlementMiddleware())
    dp.callback_query.outer_middleware(EntitlementMiddleware())

    # Quiz answers come before the material handlers so typed answers are not taken as notes
    dp.include_router(start.router)
    dp.include_router(admin.router)
    dp.include_router(plan.router)
    dp.include_router(quiz.router)
    dp.include_router(blueprint.router)
    dp.include_router(materials.router)

    await bot.set_my_commands([
        BotCommand(command="start", description="Main menu"),
        BotCommand(command="help", description="How it works"),
        BotCommand(command="plan", description="My plan and daily limit"),
    ])

    runner = None
    if settings.WEBHOOK_ENABLED:
        runner = await start_webhook_server()

    try:
        logger.info("Starting bot polling...")
        await dp.start_polling(bot, allowed_updates=dp.resolve_used_update_types())
    finally:
        if runner is not None:
            await runner.cleanup()
        await bot.session.close()
        await close_db()
        logger.info("Bot stopped")


def cli():
    setup_logging()
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bot stopped by user")


if __name__ == "__main__":
    cli()
