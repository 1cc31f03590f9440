# Форматирование пользователей и ссылок на сообщения для админского чата
from typing import Optional

from aiogram.enums import ChatType
from aiogram.types import Chat, User


def full_name(first_name: str, last_name: Optional[str] = None) -> str:
    return f"{first_name} {last_name}" if last_name else first_name


def user_full_name(user: User) -> str:
    return full_name(user.first_name, user.last_name)


def at_username_or_name(user: User) -> str:
    """@username, а если его нет - имя и фамилия."""
    if user.username:
        return f"@{user.username}"
    return user_full_name(user)


def link_to_message(chat: Chat, message_id: int) -> str:
    """
    Ссылка на сообщение в группе.

    Для супергрупп - приватная ссылка t.me/c/<id без -100>/<msg>,
    для обычных групп - только при наличии публичного username.
    """
    if chat.type == ChatType.SUPERGROUP:
        return f"https://t.me/c/{str(chat.id).replace('-100', '', 1)}/{message_id}"
    if chat.username:
        return f"https://t.me/{chat.username}/{message_id}"
    return ""


def user_link(user_id: int) -> str:
    return f"tg://user?id={user_id}"
