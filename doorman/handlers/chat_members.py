# ============================================================
# ИЗМЕНЕНИЯ УЧАСТНИКОВ ЧАТА (chat_member)
# ============================================================
# left -> member       : новичок, капча через 2 секунды (если
#                        раньше не пришло сервисное сообщение о входе)
# -> kicked/restricted : кто-то из админов ограничил пользователя,
#                        сообщаем в админский чат с его последним
#                        сообщением - возможно, ML пропустил спам
# Изменения, сделанные самим ботом, игнорируются.
# ============================================================

import logging

from aiogram import Bot, Router
from aiogram.enums import ChatMemberStatus
from aiogram.types import ChatMemberUpdated

from doorman.container import ModerationServices

logger = logging.getLogger(__name__)

chat_members_router = Router(name="chat_members")

RESTRICTED_STATUSES = {ChatMemberStatus.KICKED, ChatMemberStatus.RESTRICTED}


@chat_members_router.chat_member()
async def on_chat_member(event: ChatMemberUpdated, bot: Bot, services: ModerationServices):
    if event.from_user.id == bot.id:
        return
    if event.chat.id == services.settings.admin_chat_id:
        return

    new_status = event.new_chat_member.status
    old_status = event.old_chat_member.status
    user = event.new_chat_member.user

    if new_status == ChatMemberStatus.MEMBER and old_status == ChatMemberStatus.LEFT:
        logger.debug(f"[MEMBERS] user={user.id} вошёл в чат {event.chat.id}")
        services.captcha.schedule_intro(event.chat, user, services.settings.intro_delay_seconds)
    elif new_status in RESTRICTED_STATUSES:
        logger.info(f"[MEMBERS] user={user.id} ограничен в чате {event.chat.id} пользователем {event.from_user.id}")
        await services.review.report_external_restriction(event.chat, user)
