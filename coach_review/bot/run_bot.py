# bot/run_bot.py
import asyncio
import logging

from aiogram.client.session.aiohttp import AiohttpSession
from aiogram.client.telegram import TelegramAPIServer
from aiogram import Bot, Dispatcher
from aiogram.enums import ParseMode
from aiogram.client.default import DefaultBotProperties

from coach_review.config import Settings
from coach_review.bot.middlewares.user import UserMiddleware
from coach_review.bot.middlewares.rate_limit import RateLimitMiddleware
from coach_review.bot.middlewares.whitelist import WhitelistMiddleware
from coach_review.bot.routers.core import router as CoreRouter
from coach_review.bot.routers.athlete_submit import router as AthleteSubmitRouter
from coach_review.bot.routers.coach_queue import router as CoachQueueRouter
from coach_review.bot.routers.submission_detail import router as SubmissionDetailRouter
from coach_review.bot.routers.review import router as ReviewRouter
from coach_review.db.database import DataBase
from coach_review.bot.services.submission_notifications import submission_notifier
from coach_review.bot.services.live_query import LiveQueryHub

logging.basicConfig(level=logging.INFO)


def setup_dispatcher(dp: Dispatcher) -> None:
    dp.update.outer_middleware(UserMiddleware())
    dp.update.outer_middleware(WhitelistMiddleware())
    dp.update.outer_middleware(RateLimitMiddleware())

def setup_routers(dp: Dispatcher) -> None:
    dp.include_router(CoreRouter)
    dp.include_router(ReviewRouter)
    dp.include_router(AthleteSubmitRouter)
    dp.include_router(CoachQueueRouter)
    dp.include_router(SubmissionDetailRouter)

def build_session(settings: Settings) -> AiohttpSession:
    # a local Bot API server lifts the 20 MB download cap for videos
    if settings.telegram_api_base:
        return AiohttpSession(api=TelegramAPIServer.from_base(settings.telegram_api_base, is_local=True))
    return AiohttpSession()

async def main() -> None:
    settings = Settings()
    BOT_TOKEN = settings.bot_token

    if not BOT_TOKEN:
        raise RuntimeError("Bot token is not set.")

    bot = Bot(
        BOT_TOKEN,
        session=build_session(settings),
        default=DefaultBotProperties(
            parse_mode=ParseMode.HTML,
        ),
    )

    dp = Dispatcher()
    setup_dispatcher(dp)
    setup_routers(dp)

    submission_notifier.bind_bot(bot)

    await DataBase().create_all()

    try:
        await dp.start_polling(bot, allowed_updates=dp.resolve_used_update_types())
    finally:
        await LiveQueryHub().drain()
        await DataBase().dispose()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
