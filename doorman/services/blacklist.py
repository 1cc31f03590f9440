# ============================================================
# БЛЕКЛИСТ СПАМЕРОВ
# ============================================================
# Пользователь считается спамером, если он есть:
# - в локальном файле banlist.txt (по id на строку)
# - в публичной базе lols.bot (GET ?id=XXX -> {"banned": true})
#
# Положительные ответы кэшируются в памяти: спамер из базы
# не исчезает. Отрицательные не кэшируются, база пополняется.
# Ошибка удалённой проверки = "не в блеклисте" (лучше пропустить
# спамера дальше по фильтрам, чем забанить человека).
# ============================================================

import asyncio
import logging
from typing import Optional, Set

import aiohttp

from doorman.services.persistence import read_lines

logger = logging.getLogger(__name__)

BANLIST_FILE = "banlist.txt"
# Таймаут запроса в секундах (чтобы не зависать если сервис недоступен)
LOOKUP_TIMEOUT_SECONDS = 5


class Blacklist:
    def __init__(self, path: str, api_url: Optional[str] = None):
        self.path = path
        self.api_url = api_url
        self._known: Set[int] = set()

    def load(self) -> int:
        ids = set()
        for line in read_lines(self.path):
            try:
                ids.add(int(line.split()[0]))
            except ValueError:
                logger.debug(f"[BLACKLIST] Пропущена строка {line!r}")
        self._known = ids
        logger.info(f"[BLACKLIST] Загружено {len(ids)} id из {self.path}")
        return len(ids)

    def add(self, user_id: int) -> None:
        self._known.add(user_id)

    async def is_blacklisted(self, user_id: int) -> bool:
        if user_id in self._known:
            return True
        if not self.api_url:
            return False
        if await self._remote_lookup(user_id):
            self._known.add(user_id)
            return True
        return False

    async def _remote_lookup(self, user_id: int) -> bool:
        try:
            timeout = aiohttp.ClientTimeout(total=LOOKUP_TIMEOUT_SECONDS)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(self.api_url, params={"id": str(user_id)}) as response:
                    if response.status != 200:
                        logger.warning(
                            f"[BLACKLIST] API вернул статус {response.status} для user_id={user_id}"
                        )
                        return False
                    data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(f"[BLACKLIST] Ошибка проверки user_id={user_id}: {e!r}")
            return False

        banned = bool(isinstance(data, dict) and data.get("banned"))
        if banned:
            logger.info(f"[BLACKLIST] 🚫 user_id={user_id} найден в базе спамеров")
        return banned
