# ============================================================
# СТАТИСТИКА АВТОМАТИЧЕСКОЙ ЗАЩИТЫ
# ============================================================
# Считаем по каждому чату: баны за непройденную капчу, баны по
# блеклисту и баны за известные спам-сообщения. Раз в сутки
# (в DIGEST_HOUR по UTC) счётчики атомарно забираются и обнуляются,
# а сводка отправляется в админский чат.
# ============================================================

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional

from aiogram import Bot

from doorman.utils.retry_utils import safe_call

logger = logging.getLogger(__name__)


@dataclass
class ChatStats:
    title: str
    stopped_captcha: int = 0
    blacklist_banned: int = 0
    known_bad_message: int = 0

    @property
    def total(self) -> int:
        return self.stopped_captcha + self.blacklist_banned + self.known_bad_message


class StatsAggregator:
    def __init__(self, bot: Bot, admin_chat_id: int, digest_hour: int = 12):
        self.bot = bot
        self.admin_chat_id = admin_chat_id
        self.digest_hour = digest_hour
        self._stats: Dict[int, ChatStats] = {}

    def _for_chat(self, chat_id: int, title: Optional[str]) -> ChatStats:
        stats = self._stats.get(chat_id)
        if stats is None:
            stats = ChatStats(title=title or str(chat_id))
            self._stats[chat_id] = stats
        return stats

    def record_captcha(self, chat_id: int, title: Optional[str]) -> None:
        self._for_chat(chat_id, title).stopped_captcha += 1

    def record_blacklist(self, chat_id: int, title: Optional[str]) -> None:
        self._for_chat(chat_id, title).blacklist_banned += 1

    def record_known_bad(self, chat_id: int, title: Optional[str]) -> None:
        self._for_chat(chat_id, title).known_bad_message += 1

    def get(self, chat_id: int) -> Optional[ChatStats]:
        return self._stats.get(chat_id)

    def swap(self) -> Dict[int, ChatStats]:
        """Забирает накопленную статистику и начинает новый период."""
        report, self._stats = self._stats, {}
        return report

    @staticmethod
    def format_digest(report: Dict[int, ChatStats]) -> str:
        lines = ["За последние 24 часа в чатах:"]
        for stats in sorted(report.values(), key=lambda s: s.title):
            lines.append(f"В {stats.title}: {stats.total} раза сработала защита автоматом")
            lines.append(
                f"По блеклистам известных аккаунтов спамеров забанено: {stats.blacklist_banned}, "
                f"не прошло капчу: {stats.stopped_captcha}, "
                f"за известные спам сообщения забанено: {stats.known_bad_message}"
            )
        return "\n".join(lines)

    async def tick(self, now: Optional[datetime] = None) -> bool:
        """
        Один шаг периодической задачи.

        Returns:
            True если в этот час была отправлена сводка
        """
        now = now or datetime.now(timezone.utc)
        if now.hour != self.digest_hour:
            return False

        report = self.swap()
        text = self.format_digest(report)
        result, _ = await safe_call(
            lambda: self.bot.send_message(self.admin_chat_id, text),
            "send stats digest",
        )
        if result.ok:
            logger.info(f"[STATS] 📊 Сводка отправлена ({len(report)} чатов)")
        else:
            logger.warning(f"[STATS] Не удалось отправить сводку в админский чат: {result.value}")
        return True

    async def run_digest_loop(self, interval: float = 3600) -> None:
        while True:
            await asyncio.sleep(interval)
            await self.tick()
