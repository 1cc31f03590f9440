# ============================================================
# УЧАСТНИКИ КЛУБА
# ============================================================
# Участники клуба проходят без проверок. API клуба по telegram id
# возвращает профиль: {"user": {"slug": "username", ...}}.
# Без CLUB_URL проверка отключена и всегда даёт None.
# ============================================================

import asyncio
import logging
from typing import Dict, Optional

import aiohttp

logger = logging.getLogger(__name__)

LOOKUP_TIMEOUT_SECONDS = 5


class ClubDirectory:
    def __init__(self, base_url: str = "", service_token: str = ""):
        self.base_url = base_url.rstrip("/")
        self.service_token = service_token
        # Клубный статус не отзывается за время жизни процесса
        self._cache: Dict[int, str] = {}

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    async def get_club_username(self, user_id: int) -> Optional[str]:
        """
        Возвращает имя участника клуба или None.

        Ошибки сети и неожиданные ответы логируются и дают None.
        """
        if not self.enabled:
            return None
        cached = self._cache.get(user_id)
        if cached is not None:
            return cached

        url = f"{self.base_url}/user/by_telegram_id/{user_id}.json"
        headers = {"X-Service-Token": self.service_token} if self.service_token else {}
        try:
            timeout = aiohttp.ClientTimeout(total=LOOKUP_TIMEOUT_SECONDS)
            async with aiohttp.ClientSession(timeout=timeout, headers=headers) as session:
                async with session.get(url) as response:
                    if response.status == 404:
                        return None
                    if response.status != 200:
                        logger.warning(f"[CLUB] API вернул статус {response.status} для user_id={user_id}")
                        return None
                    data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(f"[CLUB] Ошибка запроса для user_id={user_id}: {e!r}")
            return None

        user = data.get("user") if isinstance(data, dict) else None
        name = (user or {}).get("slug") or (user or {}).get("full_name")
        if not name:
            return None
        self._cache[user_id] = name
        logger.debug(f"[CLUB] user_id={user_id} - участник клуба {name}")
        return name
