# ============================================================
# ФАЙЛОВОЕ ХРАНЕНИЕ СОСТОЯНИЯ
# ============================================================
# offset, approved users, счётчики доверия - небольшие файлы,
# которые переписываются целиком. Запись идёт во временный файл
# в том же каталоге и затем атомарно заменяет целевой (os.replace),
# чтобы падение посреди записи не оставило обрезанный файл.
# ============================================================

import json
import logging
import os
import tempfile
from typing import Any, List, Optional

logger = logging.getLogger(__name__)


def atomic_write_text(path: str, data: str) -> bool:
    """
    Атомарно записывает текст в файл.

    Returns:
        True при успехе; при ошибке пишет в лог и возвращает False,
        состояние в памяти остаётся источником правды до следующей записи
    """
    directory = os.path.dirname(os.path.abspath(path))
    tmp_path = None
    try:
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-", suffix=os.path.basename(path))
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
        return True
    except OSError as e:
        logger.error(f"[PERSISTENCE] Не удалось записать {path}: {e}")
        if tmp_path and os.path.exists(tmp_path):
            try:
                os.remove(tmp_path)
            except OSError:
                pass
        return False


def atomic_write_json(path: str, payload: Any) -> bool:
    return atomic_write_text(path, json.dumps(payload, ensure_ascii=False))


def read_text(path: str) -> Optional[str]:
    """Читает файл целиком; None если файла нет или он не читается."""
    if not os.path.exists(path):
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()
    except OSError as e:
        logger.error(f"[PERSISTENCE] Не удалось прочитать {path}: {e}")
        return None


def read_lines(path: str) -> List[str]:
    """Непустые строки файла без пробелов по краям."""
    content = read_text(path)
    if not content:
        return []
    return [line.strip() for line in content.splitlines() if line.strip()]


def append_line(path: str, line: str) -> bool:
    try:
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(line.replace("\n", " ") + "\n")
        return True
    except OSError as e:
        logger.error(f"[PERSISTENCE] Не удалось дописать в {path}: {e}")
        return False
