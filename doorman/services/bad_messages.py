# doorman/services/bad_messages.py
"""
Известные спам-сообщения.

Храним не сами тексты, а SHA-256 от нормализованного текста: так
одинаковый спам с другим регистром или "красивыми" буквами даёт тот же
отпечаток. Отпечатки дописываются в файл по одному на строку.
"""

import hashlib
import logging
from typing import Set

from doorman.services.persistence import append_line, read_lines
from doorman.services.text_normalizer import normalize

logger = logging.getLogger(__name__)

BAD_MESSAGES_FILE = "bad-messages.txt"


def fingerprint(text: str) -> str:
    return hashlib.sha256(normalize(text).encode("utf-8")).hexdigest()


class BadMessageStore:
    def __init__(self, path: str):
        self.path = path
        self._hashes: Set[str] = set()

    def load(self) -> int:
        self._hashes = set(read_lines(self.path))
        logger.info(f"[BAD_MESSAGES] Загружено {len(self._hashes)} отпечатков спама")
        return len(self._hashes)

    def is_known_bad(self, text: str) -> bool:
        if not text or not text.strip():
            return False
        return fingerprint(text) in self._hashes

    def mark_bad(self, text: str) -> bool:
        """Запоминает текст как спам. Возвращает True, если он новый."""
        if not text or not text.strip():
            return False
        digest = fingerprint(text)
        if digest in self._hashes:
            return False
        self._hashes.add(digest)
        append_line(self.path, digest)
        logger.info(f"[BAD_MESSAGES] Новый отпечаток спама {digest[:12]}...")
        return True

    def __len__(self) -> int:
        return len(self._hashes)
