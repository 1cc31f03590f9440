# ============================================================
# ОТЛОЖЕННЫЕ ДЕЙСТВИЯ: РАЗБАН И УДАЛЕНИЕ СООБЩЕНИЙ
# ============================================================
# После непройденной капчи пользователь получает бан на 20 минут,
# а отдельной задачей планируется досрочный разбан. Задержка
# растёт экспоненциально с числом попыток: e^N секунд, счётчик
# попыток живёт в Redis 4 часа с продлением при каждой попытке.
#
# Redis ключи:
#   doorman:unban_attempts:{user_id} - число попыток (INCR + EXPIRE)
# ============================================================

import asyncio
import logging
import math

from aiogram import Bot
from redis.asyncio import Redis
from redis.exceptions import RedisError

from doorman.utils.background import fire_and_forget
from doorman.utils.retry_utils import safe_call

logger = logging.getLogger(__name__)

UNBAN_ATTEMPTS_KEY = "doorman:unban_attempts:{user_id}"


class EscalationScheduler:
    def __init__(self, bot: Bot, redis: Redis, attempts_ttl: int = 4 * 60 * 60):
        self.bot = bot
        self.redis = redis
        self.attempts_ttl = attempts_ttl

    async def next_attempt(self, user_id: int) -> int:
        """Атомарно увеличивает счётчик попыток и продлевает его TTL."""
        key = UNBAN_ATTEMPTS_KEY.format(user_id=user_id)
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.expire(key, self.attempts_ttl)
                attempts, _ = await pipe.execute()
            return int(attempts)
        except RedisError as e:
            logger.warning(f"[ESCALATION] Redis недоступен, считаем попытку первой: {e}")
            return 1

    @staticmethod
    def unban_delay(attempts: int) -> float:
        return math.exp(attempts)

    def schedule_unban(self, chat_id: int, user_id: int) -> asyncio.Task:
        """Запускает фоновый отложенный разбан и сразу возвращает задачу."""
        return fire_and_forget(
            self._unban_later(chat_id, user_id),
            name=f"unban:{chat_id}:{user_id}",
        )

    async def _unban_later(self, chat_id: int, user_id: int) -> None:
        attempts = await self.next_attempt(user_id)
        delay = self.unban_delay(attempts)
        logger.info(
            f"[ESCALATION] ⏳ Разбан user={user_id} в чате {chat_id} через {delay:.1f}с (попытка {attempts})"
        )
        await asyncio.sleep(delay)
        # only_if_banned: не выкидываем из чата того, кто уже разбанен
        result, _ = await safe_call(
            lambda: self.bot.unban_chat_member(chat_id, user_id, only_if_banned=True),
            f"unban user={user_id} chat={chat_id}",
        )
        if result.ok:
            logger.info(f"[ESCALATION] ✅ user={user_id} разбанен в чате {chat_id}")

    def delete_message_later(self, chat_id: int, message_id: int, delay: float) -> asyncio.Task:
        """
        Удаляет сообщение через delay секунд.

        Возвращённую задачу можно отменить - тогда удаления не будет.
        """
        return fire_and_forget(
            self._delete_later(chat_id, message_id, delay),
            name=f"delete:{chat_id}:{message_id}",
        )

    async def _delete_later(self, chat_id: int, message_id: int, delay: float) -> None:
        await asyncio.sleep(delay)
        await safe_call(
            lambda: self.bot.delete_message(chat_id, message_id),
            f"delayed delete msg={message_id} chat={chat_id}",
        )
