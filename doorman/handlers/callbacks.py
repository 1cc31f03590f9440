# Нажатия кнопок: в админском чате - "ban"/"ok", в группах - ответы на капчу
import logging

from aiogram import Router
from aiogram.types import CallbackQuery

from doorman.container import ModerationServices

logger = logging.getLogger(__name__)

callbacks_router = Router(name="callbacks")


@callbacks_router.callback_query()
async def on_callback(callback: CallbackQuery, services: ModerationServices):
    if not callback.data:
        return
    message = callback.message
    if message is None or message.chat.id == services.settings.admin_chat_id:
        await services.review.handle_review_callback(callback)
    else:
        await services.captcha.handle_answer(callback)
