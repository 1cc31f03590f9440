# ============================================================
# ПРОСТЫЕ ФИЛЬТРЫ - ЭВРИСТИКИ БЕЗ ML
# ============================================================
# Чистые функции над текстом:
# - too_many_emojis: перебор эмодзи (рекламный стиль)
# - lookalike_words: русские слова с латинскими буквами-двойниками
# - has_stop_words: совпадение со списком стоп-слов
#
# lookalike_words и has_stop_words ожидают уже нормализованный текст
# (см. text_normalizer.normalize).
# ============================================================

import logging
import re
from typing import Iterable, List, Optional

from doorman.services.persistence import read_lines
from doorman.services.text_normalizer import normalize

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────
# ЭМОДЗИ
# ─────────────────────────────────────────────────────────
# Пиктограммы без модификаторов цвета кожи (U+1F3FB..U+1F3FF)
EMOJI_RE = re.compile(
    "["
    "\U0001F000-\U0001F3FA"
    "\U0001F400-\U0001FAFF"
    "\u2300-\u23FF"
    "\u2600-\u27BF"
    "\u2B00-\u2BFF"
    "]"
)
_WORD_RE = re.compile(r"\w+")

# Больше этого количества - всегда перебор
MAX_EMOJIS = 10
# Начиная с этого количества смотрим на плотность
MIN_EMOJIS_FOR_DENSITY = 5
# Эмодзи на одно слово
MAX_EMOJI_DENSITY = 0.5


def count_emojis(text: str) -> int:
    return len(EMOJI_RE.findall(text or ""))


def too_many_emojis(text: str) -> bool:
    """
    Проверяет, не перегружено ли сообщение эмодзи.

    Срабатывает если эмодзи больше MAX_EMOJIS, либо их хотя бы
    MIN_EMOJIS_FOR_DENSITY и на каждое слово приходится не меньше
    MAX_EMOJI_DENSITY эмодзи.
    """
    emojis = count_emojis(text)
    if emojis > MAX_EMOJIS:
        return True
    if emojis < MIN_EMOJIS_FOR_DENSITY:
        return False
    words = len(_WORD_RE.findall(text))
    return emojis / max(words, 1) >= MAX_EMOJI_DENSITY


# ─────────────────────────────────────────────────────────
# СЛОВА С ЛАТИНСКИМИ ДВОЙНИКАМИ
# ─────────────────────────────────────────────────────────
_CYRILLIC_RE = re.compile(r"[а-я]")
_LATIN_RE = re.compile(r"[a-z]")
# Латинские буквы, которые на глаз не отличить от русских (в нижнем регистре)
LOOKALIKE_LATIN = frozenset("acehkmoptxyb")


def _is_lookalike_word(word: str) -> bool:
    cyrillic = len(_CYRILLIC_RE.findall(word))
    if cyrillic == 0:
        return False
    latin = _LATIN_RE.findall(word)
    if not latin:
        return False
    # "iPhoneами" - английское слово с русским окончанием, не маскировка
    if len(latin) > cyrillic:
        return False
    return any(ch in LOOKALIKE_LATIN for ch in latin)


def lookalike_words(normalized_text: str) -> List[str]:
    """
    Находит русские слова, в которые подмешаны латинские буквы-двойники.

    Args:
        normalized_text: Нормализованный текст

    Returns:
        Уникальные подозрительные слова в порядке появления
    """
    found: List[str] = []
    seen = set()
    for word in _WORD_RE.findall(normalized_text or ""):
        if word in seen:
            continue
        if _is_lookalike_word(word):
            seen.add(word)
            found.append(word)
    return found


# ─────────────────────────────────────────────────────────
# СТОП-СЛОВА
# ─────────────────────────────────────────────────────────
DEFAULT_STOP_WORDS = (
    "заработок",
    "заработка",
    "без вложений",
    "пассивный доход",
    "доход от",
    "в лс",
    "пишите в личку",
    "пишите в личные",
    "в личные сообщения",
    "набираю людей",
    "набор в команду",
    "удаленная работа",
    "удаленную работу",
    "арбитраж",
    "криптовалют",
    "инвестиц",
    "$ в день",
    "в день от",
    "интим",
    "казино",
)


class StopWordList:
    """
    Список стоп-слов (подстрок), сравниваемых с нормализованным текстом.

    Список читается из файла по строке на стоп-слово; если файла нет
    или он пуст - используется DEFAULT_STOP_WORDS.
    """

    def __init__(self, words: Optional[Iterable[str]] = None):
        source = DEFAULT_STOP_WORDS if words is None else words
        # Нормализуем и сами стоп-слова, иначе "ё"/регистр не совпадут
        self._words = tuple(w for w in (normalize(x) for x in source) if w)

    @classmethod
    def load(cls, path: str) -> "StopWordList":
        lines = [line for line in read_lines(path) if not line.startswith("#")]
        if not lines:
            logger.info(f"[FILTERS] Файл стоп-слов {path} пуст или отсутствует, используется встроенный список")
            return cls()
        logger.info(f"[FILTERS] Загружено {len(lines)} стоп-слов из {path}")
        return cls(lines)

    def __len__(self) -> int:
        return len(self._words)

    def match(self, normalized_text: str) -> Optional[str]:
        """Возвращает первое найденное стоп-слово или None."""
        if not normalized_text:
            return None
        for word in self._words:
            if word in normalized_text:
                return word
        return None


_default_stop_words = StopWordList()


def has_stop_words(normalized_text: str, stop_words: Optional[StopWordList] = None) -> bool:
    return (stop_words or _default_stop_words).match(normalized_text) is not None
