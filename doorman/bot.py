import asyncio
import logging
from functools import partial

from aiogram import Bot, Dispatcher
from aiogram.client.session.aiohttp import AiohttpSession

from doorman import config
from doorman.container import CURSOR_FILE, build_from_config
from doorman.handlers import handlers_router
from doorman.polling import UpdatePoller
from doorman.services import redis_conn
from doorman.utils import background
from doorman.utils.logger import setup_logging

logger = logging.getLogger(__name__)


async def main():
    setup_logging(config.LOG_LEVEL)
    logging.info(f"⚙️ Конфигурация: {config.describe_config()}")

    # Redis нужен для токенов кнопок, меток обработки и счётчиков разбана
    if not await redis_conn.test_connection():
        logging.warning("⚠️ Redis недоступен: повторная обработка и кнопка ban будут работать хуже")

    session = AiohttpSession(timeout=60.0)
    bot = Bot(token=config.BOT_TOKEN, session=session)

    services = build_from_config(bot, redis_conn.redis)
    await services.load_state()

    # Сервисы доступны в хэндлерах как аргумент services
    dp = Dispatcher(services=services)
    dp.include_router(handlers_router)

    poller = UpdatePoller(
        bot,
        partial(dp.feed_update, bot),
        services.settings.data_path(CURSOR_FILE),
        limit=services.settings.poll_limit,
        timeout=services.settings.poll_timeout,
        retry_delay=services.settings.poll_retry_delay,
        save_every=services.settings.cursor_save_every,
    )
    poller.load_offset()

    periodic = [
        asyncio.create_task(services.captcha.run_sweeper(), name="captcha-sweeper"),
        asyncio.create_task(services.stats.run_digest_loop(), name="stats-digest"),
        asyncio.create_task(
            services.trust.run_snapshot_loop(services.settings.trust_snapshot_interval),
            name="trust-snapshot",
        ),
    ]

    me = await bot.me()
    logging.info(f"🤖 Бот @{me.username} успешно запущен и готов к работе.")
    try:
        await poller.run()
    finally:
        logging.info("🛑 Остановка бота...")
        poller.stop()
        services.trust.save()
        for task in periodic:
            task.cancel()
        await asyncio.gather(*periodic, return_exceptions=True)
        await background.cancel_all()
        await bot.session.close()
        await redis_conn.redis.aclose()


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n🛑 Бот остановлен пользователем")
