import asyncio
import logging
from typing import Optional

import aiohttp

from doorman import config


# ==== ОТПРАВКА ЛОГОВ В TELEGRAM ====

async def send_formatted_log(message: str, token: Optional[str] = None, chat_id: Optional[str] = None) -> None:
    """Отправляет сообщение в канал логов в Telegram напрямую через Bot HTTP API"""
    token = token or config.BOT_TOKEN
    chat_id = chat_id or config.LOG_CHANNEL_ID
    if not token or not chat_id:
        return

    url = f"https://api.telegram.org/bot{token}/sendMessage"
    payload = {
        "chat_id": chat_id,
        # Лимит Telegram на длину сообщения
        "text": message[:4000],
        "disable_web_page_preview": True,
    }

    async with aiohttp.ClientSession() as session:
        try:
            resp = await session.post(url, data=payload)
            if resp.status != 200:
                text = await resp.text()
                print(f"❌ Telegram API Error: {resp.status}: {text}")
        except Exception as e:
            # Не логируем через logging - иначе рекурсия через TelegramLogHandler
            print(f"❌ Ошибка при отправке лога в Telegram: {e}")


class TelegramLogHandler(logging.Handler):
    """
    Хэндлер, отправляющий записи лога в LOG_CHANNEL_ID.

    Отправка идёт фоновой задачей и не блокирует код, который пишет лог.
    Вне запущенного event loop запись молча пропускается.
    """

    def __init__(self, level: int = logging.ERROR, chat_id: Optional[str] = None):
        super().__init__(level=level)
        self.chat_id = chat_id
        self._tasks: set = set()

    def emit(self, record: logging.LogRecord) -> None:
        if not (self.chat_id or config.LOG_CHANNEL_ID):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        try:
            text = self.format(record)
        except Exception:
            self.handleError(record)
            return
        task = loop.create_task(send_formatted_log(text, chat_id=self.chat_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Настраивает корневой логгер: консоль + ERROR в Telegram канал."""
    logger = logging.getLogger()
    logger.setLevel(level)

    formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(name)s - %(message)s')

    # Обработчик для консоли
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # Обработчик для Telegram
    if config.LOG_CHANNEL_ID:
        telegram_handler = TelegramLogHandler(level=logging.ERROR)
        telegram_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))
        logger.addHandler(telegram_handler)

    # Встроенное логирование aiogram про каждый апдейт слишком шумное
    for logger_name in ("aiogram", "aiogram.dispatcher", "aiogram.event"):
        log = logging.getLogger(logger_name)
        log.setLevel(logging.WARNING)

    return logger
