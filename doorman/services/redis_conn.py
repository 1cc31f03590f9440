import logging

from redis.asyncio import Redis

from doorman.config import REDIS_URL

logger = logging.getLogger(__name__)

# Клиент создаётся лениво при первом запросе; тесты подменяют его на fakeredis
redis = Redis.from_url(REDIS_URL, decode_responses=True)


async def test_connection() -> bool:
    try:
        await redis.ping()
        logger.info(f"✅ Соединение с Redis ({REDIS_URL}) установлено")
        return True
    except Exception as e:
        logger.error(f"❌ Ошибка подключения к Redis ({REDIS_URL}): {e}")
        return False
