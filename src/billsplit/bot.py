from __future__ import annotations

import asyncio

from aiogram import Bot, Dispatcher

from billsplit.config import get_settings
from billsplit.db.repo import BillRepository, Database, set_global_repository
from billsplit.handlers import basic_router, bills_router, claims_router
from billsplit.logging import configure_logging, get_logger


async def main() -> None:
    configure_logging()
    settings = get_settings()
    bot = Bot(token=settings.bot_token)
    dp = Dispatcher()
    db = Database(settings.database_url)
    await db.connect()
    repo = BillRepository(db)

    dp.include_router(basic_router)
    dp.include_router(bills_router)
    dp.include_router(claims_router)

    set_global_repository(repo)

    log = get_logger(__name__)
    log.info("bot.start")
    try:
        await dp.start_polling(bot)
    finally:
        await db.close()
        await bot.session.close()
        log.info("bot.stop")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
