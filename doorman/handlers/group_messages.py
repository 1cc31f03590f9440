# ============================================================
# СООБЩЕНИЯ В ГРУППАХ - ЕДИНАЯ ТОЧКА ВХОДА
# ============================================================
# Порядок обработки:
# 1. /approve от админа группы в ответ на пересланное сообщение
# 2. Вход новых участников -> капча
# 3. Прочие сервисные сообщения -> пропуск
# 4. Сообщения от имени каналов (анонимный админ, связанный канал,
#    чужие каналы)
# 5. Всё остальное -> конвейер решений
# ============================================================

import logging

from aiogram import Bot, F, Router
from aiogram.enums import ChatMemberStatus, ContentType
from aiogram.types import Message

from doorman.container import ModerationServices
from doorman.handlers.admin_chat import forwarded_author
from doorman.utils.retry_utils import safe_call
from doorman.utils.telegram_links import user_full_name

logger = logging.getLogger(__name__)

group_messages_router = Router(name="group_messages")

# Сервисные сообщения, которые не проверяются на спам
SERVICE_CONTENT_TYPES = {
    ContentType.LEFT_CHAT_MEMBER,
    ContentType.NEW_CHAT_TITLE,
    ContentType.NEW_CHAT_PHOTO,
    ContentType.DELETE_CHAT_PHOTO,
    ContentType.GROUP_CHAT_CREATED,
    ContentType.SUPERGROUP_CHAT_CREATED,
    ContentType.MIGRATE_TO_CHAT_ID,
    ContentType.MIGRATE_FROM_CHAT_ID,
    ContentType.PINNED_MESSAGE,
    ContentType.MESSAGE_AUTO_DELETE_TIMER_CHANGED,
    ContentType.VIDEO_CHAT_STARTED,
    ContentType.VIDEO_CHAT_ENDED,
    ContentType.VIDEO_CHAT_SCHEDULED,
    ContentType.VIDEO_CHAT_PARTICIPANTS_INVITED,
    ContentType.FORUM_TOPIC_CREATED,
    ContentType.FORUM_TOPIC_EDITED,
    ContentType.FORUM_TOPIC_CLOSED,
    ContentType.FORUM_TOPIC_REOPENED,
}

ADMIN_STATUSES = {ChatMemberStatus.ADMINISTRATOR, ChatMemberStatus.CREATOR}


async def is_chat_admin(bot: Bot, chat_id: int, user_id: int) -> bool:
    result, member = await safe_call(
        lambda: bot.get_chat_member(chat_id, user_id),
        f"get_chat_member user={user_id} chat={chat_id}",
    )
    return result.ok and member is not None and member.status in ADMIN_STATUSES


# ═══════════════════════════════════════════════════════════════════════════
# /approve В ГРУППЕ
# ═══════════════════════════════════════════════════════════════════════════

async def handle_group_approve(message: Message, bot: Bot, services: ModerationServices) -> bool:
    """
    Returns:
        False если команду прислал не админ: такое сообщение модерируется как обычное
    """
    if message.from_user is None or not await is_chat_admin(bot, message.chat.id, message.from_user.id):
        logger.debug(f"[GROUP] /approve не от админа в чате {message.chat.id}, проверяем как обычное сообщение")
        return False

    author = forwarded_author(message.reply_to_message)
    if author is None or author.id == bot.id:
        await safe_call(
            lambda: bot.send_message(
                message.chat.id,
                "Не могу определить пользователя для одобрения. Убедитесь, что вы отвечаете "
                "на пересланное сообщение с валидным автором.",
            ),
            "group approve: no author",
        )
        return True

    services.approved.approve(author.id)
    services.trust.remove(author.id)
    await safe_call(
        lambda: bot.send_message(
            message.chat.id,
            f"Пользователь {user_full_name(author)} одобрен и добавлен в approved-users.",
            reply_to_message_id=message.message_id,
        ),
        "group approve: confirm",
    )
    logger.info(f"[GROUP] Пользователь {user_full_name(author)} ({author.id}) одобрен админом группы")
    return True


# ═══════════════════════════════════════════════════════════════════════════
# СООБЩЕНИЯ ОТ ИМЕНИ КАНАЛОВ
# ═══════════════════════════════════════════════════════════════════════════

async def is_linked_channel(message: Message, bot: Bot) -> bool:
    """Пост связанного канала, автоматически пересланный в группу обсуждения."""
    if message.is_automatic_forward:
        return True
    result, chat_info = await safe_call(lambda: bot.get_chat(message.chat.id), f"get_chat {message.chat.id}")
    linked = getattr(chat_info, "linked_chat_id", None) if result.ok else None
    return linked is not None and linked == message.sender_chat.id


async def ban_channel_sender(message: Message, bot: Bot, services: ModerationServices) -> bool:
    """
    Пересылает сообщение канала админам, удаляет его и банит канал в чате.

    Returns:
        True если всё получилось
    """
    chat = message.chat
    sender = message.sender_chat
    admin_chat_id = services.settings.admin_chat_id

    forwarded, forward = await safe_call(
        lambda: bot.forward_message(admin_chat_id, chat.id, message.message_id),
        f"forward channel msg={message.message_id} chat={chat.id}",
    )
    deleted, _ = await safe_call(
        lambda: bot.delete_message(chat.id, message.message_id),
        f"delete channel msg={message.message_id} chat={chat.id}",
    )
    banned, _ = await safe_call(
        lambda: bot.ban_chat_sender_chat(chat.id, sender.id),
        f"ban sender_chat={sender.id} chat={chat.id}",
    )

    if deleted.ok and banned.ok:
        await services.review.notify(
            f"Сообщение удалено, в чате {chat.title} забанен канал {sender.title}",
            reply_to=forward.message_id if forwarded.ok and forward is not None else None,
        )
        logger.info(f"[GROUP] 📢 Канал {sender.id} забанен в чате {chat.id}")
        return True

    await services.review.notify(
        f"Не могу удалить или забанить в чате {chat.title} сообщение от имени канала {sender.title}. "
        f"Не хватает могущества?"
    )
    return False


# ═══════════════════════════════════════════════════════════════════════════
# ХЭНДЛЕР
# ═══════════════════════════════════════════════════════════════════════════

@group_messages_router.message(F.chat.type.in_({"group", "supergroup"}))
async def on_group_message(message: Message, bot: Bot, services: ModerationServices):
    chat = message.chat
    if chat.id == services.settings.admin_chat_id:
        return

    if message.text and message.text.startswith("/approve") and message.reply_to_message:
        if await handle_group_approve(message, bot, services):
            return

    if message.new_chat_members:
        for user in message.new_chat_members:
            if user.is_bot:
                continue
            await services.captcha.start_challenge(chat, user, join_message=message)
        return

    if message.content_type in SERVICE_CONTENT_TYPES:
        return

    sent_as_channel = False
    if message.sender_chat is not None:
        # Анонимный админ пишет от имени самой группы
        if message.sender_chat.id == chat.id:
            return
        if await is_linked_channel(message, bot):
            return
        if services.settings.channel_auto_ban:
            await ban_channel_sender(message, bot, services)
            return
        sent_as_channel = True

    await services.pipeline.process(message, sent_as_channel=sent_as_channel)
