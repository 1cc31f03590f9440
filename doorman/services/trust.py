# doorman/services/trust.py
"""
Счётчики доверия.

Каждое сообщение неодобренного пользователя, признанное нормальным,
увеличивает его счётчик. Набрав порог (3), пользователь одобряется,
а счётчик удаляется. Счётчики живут в памяти и периодически
сохраняются в JSON, чтобы пережить перезапуск.
"""

import asyncio
import json
import logging
from typing import Dict

from doorman.services.persistence import atomic_write_json, read_text

logger = logging.getLogger(__name__)

TRUST_FILE = "message_counts.json"


class TrustCounters:
    def __init__(self, path: str):
        self.path = path
        self._counts: Dict[int, int] = {}

    def record_ham(self, user_id: int) -> int:
        """Увеличивает счётчик и возвращает новое значение."""
        count = self._counts.get(user_id, 0) + 1
        self._counts[user_id] = count
        return count

    def get(self, user_id: int) -> int:
        return self._counts.get(user_id, 0)

    def remove(self, user_id: int) -> None:
        self._counts.pop(user_id, None)

    def __len__(self) -> int:
        return len(self._counts)

    def restore(self) -> int:
        content = read_text(self.path)
        if not content:
            return 0
        try:
            raw = json.loads(content)
            self._counts = {int(k): int(v) for k, v in raw.items()}
        except (ValueError, TypeError, AttributeError) as e:
            logger.error(f"[TRUST] Не удалось восстановить счётчики из {self.path}: {e}")
            return 0
        logger.info(f"[TRUST] Восстановлено {len(self._counts)} счётчиков доверия")
        return len(self._counts)

    def save(self) -> bool:
        snapshot = {str(k): v for k, v in self._counts.items()}
        saved = atomic_write_json(self.path, snapshot)
        if saved:
            logger.debug(f"[TRUST] Сохранено {len(snapshot)} счётчиков")
        return saved

    async def run_snapshot_loop(self, interval: float) -> None:
        """Периодически сохраняет счётчики до отмены задачи."""
        while True:
            await asyncio.sleep(interval)
            self.save()
