# ============================================================
# АДМИНСКИЙ ЧАТ: ПЕРЕСЫЛКА ПОДОЗРИТЕЛЬНЫХ СООБЩЕНИЙ
# ============================================================
# Всё, что бот не может решить сам, уходит людям:
# - пересылка сообщения + пояснение с кнопками "🤖 ban" / "👍 ok"
# - уведомления о недостатке прав
# - уведомления о ридонли/бане, выданных не ботом
#
# Кнопка "ban" ссылается на токен ban_{chat_id}_{user_id}, под
# которым в Redis 12 часов лежит исходное сообщение. По нажатию
# токен забирается (GETDEL), текст запоминается как спам, автор
# банится, сообщение удаляется.
#
# Redis ключи:
#   doorman:ban_token:{token}              - JSON исходного сообщения
#   doorman:last_message:{chat_id}:{user}  - последний текст (1 час)
#
# Каждый шаг обёрнут отдельно: неудача пересылки не отменяет
# удаление, неудача удаления не отменяет отчёт.
# ============================================================

import logging
from typing import Optional, Tuple

from aiogram import Bot
from aiogram.types import (
    CallbackQuery,
    Chat,
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    Message,
    User,
)
from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from doorman.services.bad_messages import BadMessageStore
from doorman.utils.retry_utils import ActionResult, safe_call
from doorman.utils.telegram_links import link_to_message, user_full_name, user_link

logger = logging.getLogger(__name__)

BAN_TOKEN_KEY = "doorman:ban_token:{token}"
LAST_MESSAGE_KEY = "doorman:last_message:{chat_id}:{user_id}"
NOOP_CALLBACK = "noop"


def ban_token(chat_id: int, user_id: int) -> str:
    return f"ban_{chat_id}_{user_id}"


def parse_ban_token(data: str) -> Optional[Tuple[int, int]]:
    """ban_{chat_id}_{user_id} -> (chat_id, user_id) или None."""
    parts = data.split("_")
    if len(parts) != 3 or parts[0] != "ban":
        return None
    try:
        return int(parts[1]), int(parts[2])
    except ValueError:
        return None


def review_keyboard(token: str) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[[
        InlineKeyboardButton(text="🤖 ban", callback_data=token),
        InlineKeyboardButton(text="👍 ok", callback_data=NOOP_CALLBACK),
    ]])


class ReviewService:
    def __init__(
        self,
        bot: Bot,
        redis: Redis,
        admin_chat_id: int,
        bad_messages: BadMessageStore,
        ban_token_ttl: int = 12 * 60 * 60,
        recent_message_ttl: int = 60 * 60,
    ):
        self.bot = bot
        self.redis = redis
        self.admin_chat_id = admin_chat_id
        self.bad_messages = bad_messages
        self.ban_token_ttl = ban_token_ttl
        self.recent_message_ttl = recent_message_ttl

    # ─────────────────────────────────────────────────────────
    # ПОСЛЕДНЕЕ СООБЩЕНИЕ ПОЛЬЗОВАТЕЛЯ
    # ─────────────────────────────────────────────────────────

    async def remember_last_message(self, chat_id: int, user_id: int, text: str) -> None:
        key = LAST_MESSAGE_KEY.format(chat_id=chat_id, user_id=user_id)
        try:
            await self.redis.set(key, text, ex=self.recent_message_ttl)
        except RedisError as e:
            logger.warning(f"[REVIEW] Не удалось сохранить последнее сообщение {key}: {e}")

    async def last_message(self, chat_id: int, user_id: int) -> Optional[str]:
        key = LAST_MESSAGE_KEY.format(chat_id=chat_id, user_id=user_id)
        try:
            return await self.redis.get(key)
        except RedisError as e:
            logger.warning(f"[REVIEW] Не удалось прочитать последнее сообщение {key}: {e}")
            return None

    # ─────────────────────────────────────────────────────────
    # ТОКЕНЫ КНОПКИ "BAN"
    # ─────────────────────────────────────────────────────────

    async def store_ban_token(self, message: Message, user: User) -> str:
        token = ban_token(message.chat.id, user.id)
        try:
            await self.redis.set(
                BAN_TOKEN_KEY.format(token=token),
                message.model_dump_json(exclude_none=True, by_alias=True),
                ex=self.ban_token_ttl,
            )
        except RedisError as e:
            # Кнопка всё равно забанит автора, но без удаления и без отпечатка
            logger.warning(f"[REVIEW] Не удалось сохранить токен {token}: {e}")
        return token

    async def pop_ban_token(self, token: str) -> Optional[Message]:
        """Забирает сообщение по токену. Повторное нажатие вернёт None."""
        try:
            raw = await self.redis.getdel(BAN_TOKEN_KEY.format(token=token))
        except RedisError as e:
            logger.warning(f"[REVIEW] Не удалось прочитать токен {token}: {e}")
            return None
        if not raw:
            return None
        try:
            return Message.model_validate_json(raw)
        except ValidationError as e:
            logger.debug(f"[REVIEW] Повреждённые данные токена {token}: {e}")
            return None

    # ─────────────────────────────────────────────────────────
    # ОТЧЁТЫ
    # ─────────────────────────────────────────────────────────

    async def _forward(self, message: Message) -> Optional[int]:
        result, forwarded = await safe_call(
            lambda: self.bot.forward_message(self.admin_chat_id, message.chat.id, message.message_id),
            f"forward msg={message.message_id} chat={message.chat.id}",
        )
        return forwarded.message_id if result.ok and forwarded is not None else None

    async def notify(
        self,
        text: str,
        reply_to: Optional[int] = None,
        reply_markup: Optional[InlineKeyboardMarkup] = None,
    ) -> ActionResult:
        result, _ = await safe_call(
            lambda: self.bot.send_message(
                self.admin_chat_id,
                text,
                reply_to_message_id=reply_to,
                reply_markup=reply_markup,
                disable_web_page_preview=True,
            ),
            "notify admin chat",
        )
        return result

    async def report_and_delete(self, message: Message, user: User, reason: str) -> ActionResult:
        """
        Пересылает сообщение админам, удаляет его из группы и
        отправляет пояснение с кнопками.

        Returns:
            Результат удаления
        """
        forwarded_id = await self._forward(message)
        deleted, _ = await safe_call(
            lambda: self.bot.delete_message(message.chat.id, message.message_id),
            f"delete msg={message.message_id} chat={message.chat.id}",
        )
        if deleted.ok or deleted is ActionResult.NOT_FOUND:
            status = f"{reason}, сообщение удалено."
        else:
            status = f"{reason}, сообщение НЕ удалено (не хватило могущества?)."

        token = await self.store_ban_token(message, user)
        text = (
            f"{status}\n"
            f"Юзер {user_full_name(user)} из чата {message.chat.title}\n"
            f"{link_to_message(message.chat, message.message_id)}"
        )
        await self.notify(text, reply_to=forwarded_id, reply_markup=review_keyboard(token))
        logger.info(f"[REVIEW] 📨 Сообщение user={user.id} chat={message.chat.id} отправлено на проверку: {reason}")
        return deleted

    async def report_without_delete(self, message: Message, user: User) -> None:
        """Медиа без подписи или сообщение от канала: пересылаем, но не удаляем."""
        forwarded_id = await self._forward(message)
        token = await self.store_ban_token(message, user)
        text = (
            "Это подозрительное сообщение - например, картинка/видео/кружок/голосовуха без подписи "
            "от 'нового' юзера, или сообщение от канала. Сообщение НЕ удалено.\n"
            f"Юзер {user_full_name(user)} из чата {message.chat.title}"
        )
        await self.notify(text, reply_to=forwarded_id, reply_markup=review_keyboard(token))

    async def report_low_confidence(self, message: Message, user: User, score: float) -> None:
        forwarded_id = await self._forward(message)
        text = (
            f"Классифаер думает что это НЕ спам, но конфиденс низкий: скор {score}. "
            f"Хорошая идея - добавить сообщение в датасет.\n"
            f"Юзер {user_full_name(user)} из чата {message.chat.title}\n"
            f"{link_to_message(message.chat, message.message_id)}"
        )
        await self.notify(text, reply_to=forwarded_id)

    async def report_external_restriction(self, chat: Chat, user: User) -> None:
        """Кто-то (не бот) выдал пользователю ридонли или бан."""
        last = await self.last_message(chat.id, user.id)
        tail = f" Его/её последним сообщением было:\n{last}" if last and last.strip() else ""
        await self.notify(
            f"В чате {chat.title} юзеру {user_full_name(user)} {user_link(user.id)} дали ридонли "
            f"или забанили, посмотрите в Recent actions, возможно ML пропустил спам. "
            f"Если это так - кидайте его сюда.{tail}"
        )

    # ─────────────────────────────────────────────────────────
    # КНОПКИ В АДМИНСКОМ ЧАТЕ
    # ─────────────────────────────────────────────────────────

    async def handle_review_callback(self, callback: CallbackQuery) -> None:
        """Обрабатывает "🤖 ban" и "👍 ok" и убирает кнопки."""
        data = callback.data or ""
        target = parse_ban_token(data)
        if target is not None:
            await self._ban_from_review(callback, data, *target)
        elif data != NOOP_CALLBACK:
            logger.debug(f"[REVIEW] Неизвестный callback в админском чате: {data!r}")

        if callback.message is not None:
            await safe_call(
                lambda: self.bot.edit_message_reply_markup(
                    chat_id=callback.message.chat.id,
                    message_id=callback.message.message_id,
                    reply_markup=None,
                ),
                "clear review buttons",
            )
        await safe_call(lambda: self.bot.answer_callback_query(callback.id), "answer review callback")

    async def _ban_from_review(self, callback: CallbackQuery, token: str, chat_id: int, user_id: int) -> None:
        original = await self.pop_ban_token(token)
        text = (original.caption or original.text) if original else None
        if text and text.strip():
            self.bad_messages.mark_bad(text)

        reply_to = callback.message.message_id if callback.message else None
        banned, _ = await safe_call(
            lambda: self.bot.ban_chat_member(chat_id, user_id),
            f"ban from review user={user_id} chat={chat_id}",
        )
        if banned.ok:
            logger.info(f"[REVIEW] 🔨 {callback.from_user.id} забанил user={user_id} в чате {chat_id}")
            await self.notify(f"{user_full_name(callback.from_user)} забанил", reply_to=reply_to)
        else:
            await self.notify("Не могу забанить. Не хватает могущества? Сходите забаньте руками", reply_to=reply_to)

        if original is not None:
            await safe_call(
                lambda: self.bot.delete_message(original.chat.id, original.message_id),
                f"delete reviewed msg={original.message_id} chat={original.chat.id}",
            )
