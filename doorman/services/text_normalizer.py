# ============================================================
# TEXT NORMALIZER - ПРИВЕДЕНИЕ ТЕКСТА К ЕДИНОМУ ВИДУ
# ============================================================
# Спамеры обходят фильтры "красивыми" символами: полноширинные
# буквы, математический алфавит, греческие и армянские двойники,
# диакритика, невидимые символы. Нормализатор сводит всё это к
# обычной латинице/кириллице в нижнем регистре.
#
# ВАЖНО: латинские буквы внутри русских слов НЕ заменяются на
# кириллицу - их ищет фильтр lookalike_words после нормализации.
# ============================================================

import re
import unicodedata

# Комбинируемый знак "кратка" - без него "й" превратится в "и"
_BREVE = "\u0306"

# Двойники из других алфавитов -> латиница
_HOMOGLYPHS = str.maketrans({
    # Греческий
    "α": "a", "β": "b", "ε": "e", "η": "n", "ι": "i", "κ": "k", "ν": "v",
    "ο": "o", "ρ": "p", "τ": "t", "υ": "u", "χ": "x", "γ": "y",
    # Армянский
    "օ": "o", "ս": "u", "հ": "h", "ո": "n", "ց": "g",
    # Латинские капители и прочие "маленькие заглавные"
    "ᴀ": "a", "ʙ": "b", "ᴄ": "c", "ᴅ": "d", "ᴇ": "e", "ɢ": "g", "ʜ": "h",
    "ɪ": "i", "ᴊ": "j", "ᴋ": "k", "ʟ": "l", "ᴍ": "m", "ɴ": "n", "ᴏ": "o",
    "ᴘ": "p", "ʀ": "r", "ᴛ": "t", "ᴜ": "u", "ᴠ": "v", "ᴡ": "w", "ʏ": "y", "ᴢ": "z",
    # Украинские/белорусские буквы, которыми маскируют русские
    "і": "i", "ї": "i", "ў": "у", "ґ": "г",
})

_WHITESPACE_RE = re.compile(r"\s+")


def _strip_marks(text: str) -> str:
    """Убирает диакритику (кроме кратки) и невидимые форматирующие символы."""
    decomposed = unicodedata.normalize("NFD", text)
    kept = []
    for ch in decomposed:
        category = unicodedata.category(ch)
        if category == "Mn" and ch != _BREVE:
            continue
        # Cf: zero-width space/joiner, soft hyphen, RTL/LTR marks
        if category == "Cf":
            continue
        kept.append(ch)
    return unicodedata.normalize("NFC", "".join(kept))


def normalize(text: str) -> str:
    """
    Нормализует текст для фильтров и классификатора.

    Функция чистая и детерминированная:
    1. NFKC - полноширинные и "математические" буквы -> обычные
    2. нижний регистр, ё -> е
    3. удаление диакритики и невидимых символов
    4. замена двойников из других алфавитов
    5. схлопывание пробелов

    Args:
        text: Исходный текст сообщения

    Returns:
        Нормализованный текст (пустая строка для пустого ввода)
    """
    if not text:
        return ""
    result = unicodedata.normalize("NFKC", text)
    result = result.lower().replace("ё", "е")
    result = _strip_marks(result)
    result = result.translate(_HOMOGLYPHS)
    return _WHITESPACE_RE.sub(" ", result).strip()
