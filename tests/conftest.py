import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional
from unittest.mock import AsyncMock

import pytest

# КРИТИЧНО: обязательные переменные ДО импорта doorman.config,
# иначе он упадёт с "BOT_TOKEN не установлен!"
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("BOT_TOKEN", "123456:TEST-TOKEN")
os.environ.setdefault("ADMIN_CHAT_ID", "-1009999")

# Гарантируем, что пакет doorman доступен для импортов из тестов
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from aiogram import Bot
from aiogram.types import CallbackQuery, ChatMemberUpdated, Message, Update
from fakeredis import aioredis as fakeredis_aioredis

from doorman.config import ModerationSettings
from doorman.container import build_services
from doorman.utils import background

ADMIN_CHAT_ID = -1009999
GROUP_CHAT_ID = -1001234567890
BOT_ID = 424242


@pytest.fixture(autouse=True)
async def _cancel_background_tasks():
    """Отменяет фоновые задачи (отложенные удаления, разбаны) после теста."""
    yield
    await background.cancel_all()


@pytest.fixture
async def fake_redis(monkeypatch):
    """Patch project-wide redis client with fakeredis for unit tests."""
    client = fakeredis_aioredis.FakeRedis(decode_responses=True)

    monkeypatch.setattr("doorman.services.redis_conn.redis", client)

    try:
        yield client
    finally:
        await client.flushall()
        await client.aclose()


@pytest.fixture
def bot_mock():
    """Async mock for aiogram Bot."""
    bot = AsyncMock(spec=Bot)
    bot.send_message = AsyncMock()
    bot.delete_message = AsyncMock()
    bot.forward_message = AsyncMock()
    bot.ban_chat_member = AsyncMock()
    bot.unban_chat_member = AsyncMock()
    bot.ban_chat_sender_chat = AsyncMock()
    bot.edit_message_reply_markup = AsyncMock()
    bot.answer_callback_query = AsyncMock()
    bot.get_chat = AsyncMock()
    bot.get_chat_member = AsyncMock()
    bot.get_updates = AsyncMock(return_value=[])
    bot.session = AsyncMock()
    bot.id = BOT_ID
    return bot


@pytest.fixture
def settings(tmp_path) -> ModerationSettings:
    return ModerationSettings(admin_chat_id=ADMIN_CHAT_ID, data_dir=str(tmp_path))


@pytest.fixture
def services(bot_mock, fake_redis, settings):
    """Полный набор сервисов поверх моков (клуб и удалённый блеклист отключены)."""
    return build_services(bot_mock, fake_redis, settings)


@pytest.fixture
def message_factory() -> Callable[..., Message]:
    """Factory for aiogram Message instances."""

    def _factory(
        *,
        message_id: int = 1,
        user_id: int = 100,
        chat_id: int = GROUP_CHAT_ID,
        text: Optional[str] = "Привет всем",
        caption: Optional[str] = None,
        chat_type: str = "supergroup",
        chat_title: str = "Test chat",
        first_name: str = "Test",
        last_name: Optional[str] = None,
        username: Optional[str] = None,
        photo: bool = False,
        media_group_id: Optional[str] = None,
        sender_chat: Optional[dict] = None,
        forward_from: Optional[dict] = None,
        reply_to: Optional[Message] = None,
        new_chat_members: Optional[list] = None,
        is_automatic_forward: Optional[bool] = None,
    ) -> Message:
        user = {"id": user_id, "is_bot": False, "first_name": first_name}
        if last_name:
            user["last_name"] = last_name
        if username:
            user["username"] = username
        payload = {
            "message_id": message_id,
            "date": datetime.now(timezone.utc),
            "chat": {"id": chat_id, "type": chat_type, "title": chat_title},
            "from": user,
        }
        if text is not None:
            payload["text"] = text
        if caption is not None:
            payload["caption"] = caption
        if photo:
            payload["photo"] = [{"file_id": "photo", "file_unique_id": "photo-u", "width": 10, "height": 10}]
        if media_group_id:
            payload["media_group_id"] = media_group_id
        if sender_chat:
            payload["sender_chat"] = sender_chat
        if forward_from:
            payload["forward_origin"] = {
                "type": "user",
                "date": datetime.now(timezone.utc),
                "sender_user": forward_from,
            }
        if reply_to is not None:
            payload["reply_to_message"] = reply_to.model_dump(by_alias=True, exclude_none=True)
        if new_chat_members:
            payload["new_chat_members"] = new_chat_members
        if is_automatic_forward is not None:
            payload["is_automatic_forward"] = is_automatic_forward
        return Message.model_validate(payload)

    return _factory


@pytest.fixture
def callback_query_factory() -> Callable[..., CallbackQuery]:
    """Factory for aiogram CallbackQuery instances."""

    def _factory(
        *,
        data: str = "test",
        from_user_id: int = 100,
        chat_id: int = GROUP_CHAT_ID,
        message_id: int = 500,
        first_name: str = "Tester",
    ) -> CallbackQuery:
        payload = {
            "id": "test-callback",
            "data": data,
            "chat_instance": "test-instance",
            "message": {
                "message_id": message_id,
                "date": datetime.now(timezone.utc),
                "chat": {"id": chat_id, "type": "supergroup", "title": "Test chat"},
                "from": {"id": BOT_ID, "is_bot": True, "first_name": "Doorman"},
                "text": "Привет! Антиспам: на какой кнопке собака?",
            },
            "from": {"id": from_user_id, "is_bot": False, "first_name": first_name},
        }
        return CallbackQuery.model_validate(payload)

    return _factory


@pytest.fixture
def chat_member_factory() -> Callable[..., ChatMemberUpdated]:
    """Factory for chat_member updates (old status -> new status)."""

    def _factory(
        *,
        old_status: str = "left",
        new_status: str = "member",
        user_id: int = 100,
        from_user_id: Optional[int] = None,
        chat_id: int = GROUP_CHAT_ID,
    ) -> ChatMemberUpdated:
        user = {"id": user_id, "is_bot": False, "first_name": "Newbie"}

        def member(status: str) -> dict:
            data = {"status": status, "user": user}
            if status == "kicked":
                data["until_date"] = 0
            return data

        payload = {
            "chat": {"id": chat_id, "type": "supergroup", "title": "Test chat"},
            "from": {"id": from_user_id or user_id, "is_bot": False, "first_name": "Actor"},
            "date": datetime.now(timezone.utc),
            "old_chat_member": member(old_status),
            "new_chat_member": member(new_status),
        }
        return ChatMemberUpdated.model_validate(payload)

    return _factory


@pytest.fixture
def update_factory() -> Callable[..., Update]:
    """Factory for aiogram Update objects."""

    def _factory(update_id: int = 1, message: Optional[Message] = None) -> Update:
        payload = {"update_id": update_id}
        if message is not None:
            payload["message"] = message.model_dump(by_alias=True, exclude_none=True)
        return Update.model_validate(payload)

    return _factory
