# ============================================================
# КОМАНДЫ АДМИНСКОГО ЧАТА
# ============================================================
# Работают ответом (reply) на пересланное ботом сообщение:
# /check   - прогнать текст через все фильтры и показать результат
# /spam    - добавить в датасет как спам + запомнить как известный спам
# /ham     - добавить в датасет как НЕ спам
# /approve - одобрить автора пересланного сообщения
# ============================================================

import logging
from typing import Optional

from aiogram import Bot, F, Router
from aiogram.filters import Command, CommandObject
from aiogram.types import Message, MessageOriginUser, User

from doorman.container import ModerationServices
from doorman.services.filters import lookalike_words, too_many_emojis
from doorman.services.text_normalizer import normalize
from doorman.utils.retry_utils import safe_call
from doorman.utils.telegram_links import user_full_name

logger = logging.getLogger(__name__)

admin_chat_router = Router(name="admin_chat")


def is_admin_chat(message: Message, services: ModerationServices) -> bool:
    return message.chat.id == services.settings.admin_chat_id


def forwarded_author(message: Message) -> Optional[User]:
    """Автор пересланного сообщения, если Telegram его раскрывает."""
    origin = message.forward_origin
    if isinstance(origin, MessageOriginUser):
        return origin.sender_user
    return None


async def _reply(bot: Bot, chat_id: int, text: str, reply_to: Optional[int] = None) -> None:
    await safe_call(
        lambda: bot.send_message(chat_id, text, reply_to_message_id=reply_to),
        f"reply in admin chat {chat_id}",
    )


async def build_check_report(text: str, services: ModerationServices) -> str:
    normalized = normalize(text)
    emojis = too_many_emojis(text)
    lookalike = lookalike_words(normalized)
    has_stop_words = services.stop_words.match(normalized) is not None
    is_spam, score = await services.classifier.classify(normalized)
    lookalike_text = ", ".join(lookalike) if lookalike else "отсутствуют"
    return (
        "Результат:\n"
        f"Много эмодзи: {emojis}\n"
        f"Найдены стоп-слова: {has_stop_words}\n"
        f"Маскирующиеся слова: {lookalike_text}\n"
        f"ML классификатор: спам {is_spam}, скор {score}\n\n"
        "Если простые фильтры отработали, то в датасет добавлять не нужно"
    )


@admin_chat_router.message(is_admin_chat, Command("spam", "ham", "check"), F.reply_to_message)
async def dataset_command(message: Message, command: CommandObject, bot: Bot, services: ModerationServices):
    reply = message.reply_to_message
    if reply.from_user and reply.from_user.id == bot.id and reply.forward_origin is None:
        await _reply(
            bot,
            message.chat.id,
            "Похоже, что вы промахнулись и реплайнули на сообщение бота, а не форвард",
            reply.message_id,
        )
        return

    text = reply.text or reply.caption
    if not text or not text.strip():
        return

    if command.command == "check":
        await _reply(bot, message.chat.id, await build_check_report(text, services))
    elif command.command == "spam":
        await services.classifier.add_spam(text)
        services.bad_messages.mark_bad(text)
        await _reply(bot, message.chat.id, "Сообщение добавлено как пример спама в датасет", reply.message_id)
    elif command.command == "ham":
        await services.classifier.add_ham(text)
        await _reply(bot, message.chat.id, "Сообщение добавлено как пример НЕ-спама в датасет", reply.message_id)
    logger.info(f"[ADMIN] /{command.command} от {message.from_user.id if message.from_user else '?'}")


@admin_chat_router.message(is_admin_chat, Command("approve"), F.reply_to_message)
async def approve_command(message: Message, bot: Bot, services: ModerationServices):
    original = message.reply_to_message
    author = forwarded_author(original)
    if author is None or author.id == bot.id:
        await _reply(
            bot,
            message.chat.id,
            "Не могу определить пользователя для одобрения. Убедитесь, что команда /approve "
            "используется в ответ на пересланное сообщение с валидным автором.",
            original.message_id,
        )
        return

    services.approved.approve(author.id)
    services.trust.remove(author.id)
    await _reply(
        bot,
        message.chat.id,
        f"Пользователь {user_full_name(author)} одобрен и добавлен в approved-users.",
        original.message_id,
    )
    logger.info(f"[ADMIN] Пользователь {user_full_name(author)} ({author.id}) одобрен админом")
