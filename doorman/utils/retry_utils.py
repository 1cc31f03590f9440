# ============================================================
# RETRY UTILS - ОГРАЖДЕНИЕ ВЫЗОВОВ TELEGRAM API
# ============================================================
# Каждое действие бота (удалить, забанить, переслать) выполняется
# через safe_call: ошибка одного действия логируется и превращается
# в ActionResult, а следующее действие в том же решении всё равно
# выполняется. Сетевые ошибки и rate limit повторяются.
# ============================================================

import asyncio
import enum
import logging
from typing import Awaitable, Callable, Optional, Tuple, TypeVar

from aiogram.exceptions import (
    TelegramAPIError,
    TelegramBadRequest,
    TelegramForbiddenError,
    TelegramNetworkError,
    TelegramRetryAfter,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')


class ActionResult(enum.Enum):
    """Итог вызова Telegram API."""
    OK = "ok"
    # Сообщение/пользователь уже отсутствует (повторная доставка апдейта)
    NOT_FOUND = "not_found"
    # У бота нет прав на действие
    FORBIDDEN = "forbidden"
    FAILED = "failed"

    @property
    def ok(self) -> bool:
        return self is ActionResult.OK


# Фрагменты описаний ошибок Bot API, означающие "уже сделано / нечего делать"
_NOT_FOUND_MARKERS = (
    "message to delete not found",
    "message can't be deleted",
    "message not found",
    "user not found",
    "participant_id_invalid",
    "message is not modified",
)

_PERMISSION_MARKERS = (
    "not enough rights",
    "need administrator rights",
    "can't remove chat owner",
    "user is an administrator",
    "method is available only for supergroups",
)


def classify_error(error: BaseException) -> ActionResult:
    """Переводит исключение aiogram в ActionResult."""
    if isinstance(error, TelegramForbiddenError):
        return ActionResult.FORBIDDEN
    if isinstance(error, TelegramBadRequest):
        text = str(error).lower()
        if any(marker in text for marker in _NOT_FOUND_MARKERS):
            return ActionResult.NOT_FOUND
        if any(marker in text for marker in _PERMISSION_MARKERS):
            return ActionResult.FORBIDDEN
    return ActionResult.FAILED


async def retry_on_network_error(
    call: Callable[[], Awaitable[T]],
    max_retries: int = 1,
    delay: float = 1.0,
    backoff: float = 2.0,
) -> T:
    """
    Выполняет вызов с повтором при сетевых ошибках и rate limit.

    Принимает фабрику корутины, а не саму корутину: корутину нельзя
    await-ить повторно.

    Args:
        call: Функция без аргументов, возвращающая новую корутину
        max_retries: Сколько раз повторять после первой неудачи
        delay: Начальная задержка между попытками (секунды)
        backoff: Множитель задержки для каждой следующей попытки

    Raises:
        Последнее исключение, если все попытки неудачны
    """
    current_delay = delay
    attempt = 0
    while True:
        try:
            return await call()
        except TelegramRetryAfter as e:
            if attempt >= max_retries:
                raise
            # Telegram просит подождать
            wait_time = e.retry_after + 1
            logger.warning(f"[Retry] Telegram rate limit. Ожидание {wait_time}с...")
            await asyncio.sleep(wait_time)
        except TelegramNetworkError as e:
            if attempt >= max_retries:
                raise
            logger.warning(
                f"[Retry] Сетевая ошибка (попытка {attempt + 1}/{max_retries + 1}): {e}. "
                f"Повтор через {current_delay:.1f}с..."
            )
            await asyncio.sleep(current_delay)
            current_delay *= backoff
        attempt += 1


async def safe_call(
    call: Callable[[], Awaitable[T]],
    action: str,
    max_retries: int = 1,
) -> Tuple[ActionResult, Optional[T]]:
    """
    Выполняет действие Telegram API и никогда не бросает исключение.

    Args:
        call: Фабрика корутины, например lambda: bot.delete_message(chat_id, msg_id)
        action: Человекочитаемое описание действия для лога
        max_retries: Повторы при сетевых ошибках

    Returns:
        (ActionResult, результат вызова или None)

    Example:
        result, _ = await safe_call(
            lambda: bot.ban_chat_member(chat_id, user_id),
            f"ban user={user_id} chat={chat_id}",
        )
        if not result.ok:
            ...
    """
    try:
        value = await retry_on_network_error(call, max_retries=max_retries)
        return ActionResult.OK, value
    except asyncio.CancelledError:
        raise
    except TelegramAPIError as e:
        result = classify_error(e)
        if result is ActionResult.NOT_FOUND:
            # Повторная доставка апдейта: действие уже было выполнено
            logger.debug(f"[SAFE_CALL] {action}: уже выполнено ({e})")
        else:
            logger.warning(f"[SAFE_CALL] {action}: {result.value} ({e})")
        return result, None
    except Exception as e:
        logger.warning(f"[SAFE_CALL] {action}: непредвиденная ошибка {type(e).__name__}: {e}")
        return ActionResult.FAILED, None
