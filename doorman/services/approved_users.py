# doorman/services/approved_users.py
"""
Хранилище одобренных пользователей.

Одобренный пользователь пропускает все проверки модерации. Список
хранится в памяти и сохраняется в JSON-файл (список id) после каждого
изменения. Старый формат файла ({"id": "время одобрения"}) тоже
читается и при первом сохранении переписывается в новый.
"""

import json
import logging
from typing import Iterable, Set

from doorman.services.persistence import atomic_write_json, read_text

logger = logging.getLogger(__name__)

APPROVED_USERS_FILE = "approved-users.json"


def _parse_ids(raw: object) -> Set[int]:
    # Новый формат - список, старый - словарь id -> timestamp
    if isinstance(raw, dict):
        items: Iterable = raw.keys()
    elif isinstance(raw, list):
        items = raw
    else:
        raise ValueError(f"неожиданный формат: {type(raw).__name__}")
    return {int(item) for item in items}


class ApprovedUsersStore:
    def __init__(self, path: str):
        self.path = path
        self._users: Set[int] = set()

    def load(self) -> int:
        """
        Загружает список из файла.

        Повреждённый файл не роняет бота: пишем ошибку и начинаем
        с пустого списка (файл будет перезаписан при следующем approve).
        """
        content = read_text(self.path)
        if not content or not content.strip():
            logger.info(f"[APPROVED] Файл {self.path} пуст или отсутствует")
            return 0
        try:
            self._users = _parse_ids(json.loads(content))
        except (ValueError, TypeError) as e:
            logger.error(f"[APPROVED] Не удалось разобрать {self.path}: {e}")
            self._users = set()
        logger.info(f"[APPROVED] Загружено {len(self._users)} одобренных пользователей")
        return len(self._users)

    def is_approved(self, user_id: int) -> bool:
        return user_id in self._users

    def approve(self, user_id: int) -> bool:
        """
        Одобряет пользователя. Повторный вызов ничего не меняет.

        Returns:
            True если пользователь добавлен впервые
        """
        if user_id in self._users:
            return False
        self._users.add(user_id)
        logger.info(f"[APPROVED] ✅ Пользователь {user_id} одобрен")
        self._save()
        return True

    def remove(self, user_id: int) -> bool:
        if user_id not in self._users:
            return False
        self._users.discard(user_id)
        logger.info(f"[APPROVED] Пользователь {user_id} удалён из одобренных")
        self._save()
        return True

    def __len__(self) -> int:
        return len(self._users)

    def _save(self) -> None:
        # Ошибку записи логирует atomic_write_json, память остаётся источником правды
        atomic_write_json(self.path, sorted(self._users))
