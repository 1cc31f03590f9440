# ============================================================
# ПОЛУЧЕНИЕ АПДЕЙТОВ (LONG POLLING С СОХРАНЯЕМЫМ OFFSET)
# ============================================================
# Апдейты забираются пачками через getUpdates и обрабатываются
# строго по порядку. offset (id последнего апдейта + 1) пишется
# в файл каждые 100 апдейтов и при остановке. После падения
# часть апдейтов может прийти повторно - обработчики к этому готовы.
#
# Альбом приходит несколькими сообщениями с одним media_group_id,
# подпись есть только у первого: остальные части подряд пропускаются.
# ============================================================

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from aiogram import Bot
from aiogram.types import Update

from doorman.services.persistence import atomic_write_text, read_text

logger = logging.getLogger(__name__)

ALLOWED_UPDATES = ["message", "chat_member", "callback_query"]


class UpdatePoller:
    def __init__(
        self,
        bot: Bot,
        handle_update: Callable[[Update], Awaitable[object]],
        cursor_path: str,
        limit: int = 100,
        timeout: int = 100,
        retry_delay: float = 15.0,
        save_every: int = 100,
    ):
        self.bot = bot
        self.handle_update = handle_update
        self.cursor_path = cursor_path
        self.limit = limit
        self.timeout = timeout
        self.retry_delay = retry_delay
        self.save_every = save_every
        self.offset = 0
        self._since_save = 0
        self._running = False

    # ─────────────────────────────────────────────────────────
    # OFFSET
    # ─────────────────────────────────────────────────────────

    def load_offset(self) -> int:
        content = read_text(self.cursor_path)
        if content and content.strip():
            try:
                self.offset = int(content.strip())
                logger.info(f"[POLLING] Восстановлен offset={self.offset}")
            except ValueError:
                logger.warning(f"[POLLING] Некорректный offset в {self.cursor_path}: {content!r}, начинаем с 0")
                self.offset = 0
        return self.offset

    def save_offset(self) -> bool:
        saved = atomic_write_text(self.cursor_path, str(self.offset))
        if saved:
            self._since_save = 0
            logger.debug(f"[POLLING] offset={self.offset} сохранён")
        return saved

    # ─────────────────────────────────────────────────────────
    # ЦИКЛ
    # ─────────────────────────────────────────────────────────

    async def fetch(self) -> List[Update]:
        return await self.bot.get_updates(
            offset=self.offset,
            limit=self.limit,
            timeout=self.timeout,
            allowed_updates=ALLOWED_UPDATES,
            # HTTP таймаут должен быть больше таймаута long polling
            request_timeout=self.timeout + 10,
        )

    async def process_batch(self, updates: List[Update]) -> int:
        """
        Обрабатывает пачку по порядку.

        Returns:
            Количество переданных обработчику апдейтов
        """
        handled = 0
        previous_group: Optional[str] = None
        for update in updates:
            self.offset = update.update_id + 1
            self._since_save += 1

            group = update.message.media_group_id if update.message else None
            if group is not None and group == previous_group:
                logger.debug(f"[POLLING] Часть альбома {group} пропущена (update={update.update_id})")
            else:
                try:
                    await self.handle_update(update)
                    handled += 1
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(f"[POLLING] Ошибка обработки update={update.update_id}: {e}", exc_info=True)
            previous_group = group

            if self._since_save >= self.save_every:
                self.save_offset()
        return handled

    async def poll_once(self) -> int:
        updates = await self.fetch()
        if not updates:
            return 0
        return await self.process_batch(updates)

    async def run(self) -> None:
        """Бесконечный цикл получения апдейтов до stop() или отмены задачи."""
        self._running = True
        logger.info(f"[POLLING] 🚀 Старт с offset={self.offset}")
        while self._running:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"[POLLING] Ошибка получения апдейтов: {e}. Повтор через {self.retry_delay}с")
                await asyncio.sleep(self.retry_delay)

    def stop(self) -> None:
        self._running = False
        self.save_offset()
