# ============================================================
# ФОНОВЫЕ ЗАДАЧИ (fire-and-forget)
# ============================================================
# Отложенное удаление, отложенный разбан, пересылка в админку -
# всё это запускается без ожидания. asyncio хранит только слабые
# ссылки на задачи, поэтому держим их в множестве до завершения.
# ============================================================

import asyncio
import logging
from typing import Coroutine, Optional, Set

logger = logging.getLogger(__name__)

_tasks: Set[asyncio.Task] = set()


def _on_done(task: asyncio.Task) -> None:
    _tasks.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.warning(f"[BACKGROUND] Задача {task.get_name()} завершилась с ошибкой: {error!r}")


def fire_and_forget(coro: Coroutine, name: Optional[str] = None) -> asyncio.Task:
    """Запускает корутину в фоне; ошибки только логируются."""
    task = asyncio.create_task(coro, name=name)
    _tasks.add(task)
    task.add_done_callback(_on_done)
    return task


async def drain(timeout: Optional[float] = None) -> None:
    """Дожидается всех фоновых задач (для остановки бота и тестов)."""
    while _tasks:
        await asyncio.wait(list(_tasks), timeout=timeout)
        if timeout is not None:
            break


async def cancel_all() -> None:
    """Отменяет все незавершённые фоновые задачи."""
    tasks = list(_tasks)
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)
