# doorman/services/captcha/flow_service.py
"""
Сервис потока капчи для новичков.

Отвечает за:
- Выдачу капчи при входе в группу (с пропуском одобренных,
  участников клуба и спамеров из блеклиста)
- Обработку нажатия кнопки с ответом
- Бан по таймауту (периодическая проверка)

Состояния: нет капчи -> ожидание -> {верно, неверно, таймаут}.
На каждую пару (чат, пользователь) не больше одной капчи. Слот
резервируется до отправки сообщения, поэтому повторный вход того же
пользователя, пока капча отправляется, вторую капчу не создаст.

Капча выдаётся только при входе: служебное сообщение new_chat_members
или переход left -> member в chat_member. Первое сообщение незнакомого
пользователя капчу не запускает.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from aiogram import Bot
from aiogram.types import CallbackQuery, Chat, InlineKeyboardButton, InlineKeyboardMarkup, Message, User

from doorman.config import ModerationSettings
from doorman.services.approved_users import ApprovedUsersStore
from doorman.services.blacklist import Blacklist
from doorman.services.captcha.challenges import CATALOGUE, pick_options
from doorman.services.club_directory import ClubDirectory
from doorman.services.escalation import EscalationScheduler
from doorman.services.review import ReviewService
from doorman.services.stats import StatsAggregator
from doorman.utils.background import fire_and_forget
from doorman.utils.retry_utils import safe_call
from doorman.utils.telegram_links import at_username_or_name

logger = logging.getLogger(__name__)

CALLBACK_PREFIX = "cap"

ChallengeKey = Tuple[int, int]


@dataclass
class PendingChallenge:
    chat_id: int
    chat_title: Optional[str]
    user: User
    correct_answer: int
    issued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    join_message_id: Optional[int] = None
    challenge_message_id: Optional[int] = None
    cleanup_tasks: List[asyncio.Task] = field(default_factory=list)

    @property
    def key(self) -> ChallengeKey:
        return self.chat_id, self.user.id

    def cancel_cleanup(self) -> None:
        for task in self.cleanup_tasks:
            task.cancel()
        self.cleanup_tasks.clear()


def build_callback_data(user_id: int, option: int) -> str:
    return f"{CALLBACK_PREFIX}_{user_id}_{option}"


def parse_callback_data(data: Optional[str]) -> Optional[Tuple[int, int]]:
    """cap_{user_id}_{option} -> (user_id, option) или None для мусора."""
    if not data:
        return None
    parts = data.split("_")
    if len(parts) != 3 or parts[0] != CALLBACK_PREFIX:
        return None
    try:
        return int(parts[1]), int(parts[2])
    except ValueError:
        return None


class CaptchaService:
    def __init__(
        self,
        bot: Bot,
        settings: ModerationSettings,
        approved: ApprovedUsersStore,
        club: ClubDirectory,
        blacklist: Blacklist,
        stats: StatsAggregator,
        escalation: EscalationScheduler,
        review: ReviewService,
    ):
        self.bot = bot
        self.settings = settings
        self.approved = approved
        self.club = club
        self.blacklist = blacklist
        self.stats = stats
        self.escalation = escalation
        self.review = review
        self._pending: Dict[ChallengeKey, PendingChallenge] = {}

    def has_pending(self, chat_id: int, user_id: int) -> bool:
        return (chat_id, user_id) in self._pending

    def get_pending(self, chat_id: int, user_id: int) -> Optional[PendingChallenge]:
        return self._pending.get((chat_id, user_id))

    def __len__(self) -> int:
        return len(self._pending)

    # ═══════════════════════════════════════════════════════════════════════════
    # ВЫДАЧА КАПЧИ
    # ═══════════════════════════════════════════════════════════════════════════

    def schedule_intro(self, chat: Chat, user: User, delay: float) -> asyncio.Task:
        """
        Отложенный вход через chat_member.

        Задержка даёт шанс сервисному сообщению о входе прийти первым:
        тогда капча будет ответом на него, а этот вызов увидит занятый слот.
        """
        async def _later() -> None:
            await asyncio.sleep(delay)
            await self.start_challenge(chat, user)

        return fire_and_forget(_later(), name=f"intro:{chat.id}:{user.id}")

    async def start_challenge(self, chat: Chat, user: User, join_message: Optional[Message] = None) -> bool:
        """
        Выдаёт капчу новичку.

        Returns:
            True если капча отправлена
        """
        if user.is_bot:
            return False
        if self.approved.is_approved(user.id):
            logger.debug(f"[CAPTCHA] user={user.id} одобрен, капча не нужна")
            return False
        club_name = await self.club.get_club_username(user.id)
        if club_name:
            logger.debug(f"[CAPTCHA] user={user.id} из клуба ({club_name}), капча не нужна")
            return False
        if await self._ban_if_blacklisted(chat, user):
            return False

        key = (chat.id, user.id)
        if key in self._pending:
            logger.debug(f"[CAPTCHA] user={user.id} уже проходит капчу в чате {chat.id}")
            return False

        options, correct = pick_options(self.settings.captcha_options)
        challenge = PendingChallenge(
            chat_id=chat.id,
            chat_title=chat.title,
            user=user,
            correct_answer=correct,
            join_message_id=join_message.message_id if join_message else None,
        )
        # Резервируем слот до первого await
        self._pending[key] = challenge

        keyboard = InlineKeyboardMarkup(inline_keyboard=[[
            InlineKeyboardButton(text=CATALOGUE[i].emoji, callback_data=build_callback_data(user.id, i))
            for i in options
        ]])
        question = CATALOGUE[correct].description
        if join_message is not None:
            text = f"Привет! Антиспам: на какой кнопке {question}?"
        else:
            text = f"Привет {at_username_or_name(user)}! Антиспам: на какой кнопке {question}?"

        result, sent = await safe_call(
            lambda: self.bot.send_message(
                chat.id,
                text,
                reply_to_message_id=challenge.join_message_id,
                reply_markup=keyboard,
            ),
            f"send captcha user={user.id} chat={chat.id}",
        )
        if not result.ok or sent is None:
            if self._pending.get(key) is challenge:
                del self._pending[key]
            logger.warning(f"[CAPTCHA] ❌ Не удалось отправить капчу user={user.id} chat={chat.id}")
            return False

        challenge.challenge_message_id = sent.message_id
        delay = self.settings.captcha_cleanup_delay
        challenge.cleanup_tasks.append(self.escalation.delete_message_later(chat.id, sent.message_id, delay))
        if challenge.join_message_id is not None:
            challenge.cleanup_tasks.append(
                self.escalation.delete_message_later(chat.id, challenge.join_message_id, delay)
            )
        logger.info(f"[CAPTCHA] 🧩 Капча выдана user={user.id} chat={chat.id}")
        return True

    async def _ban_if_blacklisted(self, chat: Chat, user: User) -> bool:
        if not self.settings.blacklist_auto_ban:
            return False
        if not await self.blacklist.is_blacklisted(user.id):
            return False

        result, _ = await safe_call(
            lambda: self.bot.ban_chat_member(chat.id, user.id),
            f"ban blacklisted user={user.id} chat={chat.id}",
        )
        if result.ok:
            self.stats.record_blacklist(chat.id, chat.title)
            logger.info(f"[CAPTCHA] 🚫 user={user.id} из блеклиста забанен при входе в {chat.id}")
            return True

        await self.review.notify(
            f"Не могу забанить юзера из блеклиста. Не хватает могущества? "
            f"Сходите забаньте руками, чат {chat.title}"
        )
        return False

    # ═══════════════════════════════════════════════════════════════════════════
    # ОТВЕТ НА КАПЧУ
    # ═══════════════════════════════════════════════════════════════════════════

    async def handle_answer(self, callback: CallbackQuery) -> Optional[bool]:
        """
        Обрабатывает нажатие кнопки капчи.

        Returns:
            True - верный ответ, False - неверный, None - нажатие проигнорировано
        """
        parsed = parse_callback_data(callback.data)
        if parsed is None or callback.message is None:
            logger.debug(f"[CAPTCHA] Некорректный callback: {callback.data!r}")
            return None
        user_id, chosen = parsed

        # Чужие нажатия не трогают капчу
        if callback.from_user.id != user_id:
            await safe_call(lambda: self.bot.answer_callback_query(callback.id), "answer foreign captcha press")
            return None

        chat_id = callback.message.chat.id
        challenge = self._pending.pop((chat_id, user_id), None)
        await safe_call(
            lambda: self.bot.delete_message(chat_id, callback.message.message_id),
            f"delete captcha msg={callback.message.message_id} chat={chat_id}",
        )
        await safe_call(lambda: self.bot.answer_callback_query(callback.id), "answer captcha press")
        if challenge is None:
            logger.warning(f"[CAPTCHA] Нет активной капчи для user={user_id} chat={chat_id}")
            return None

        challenge.cancel_cleanup()
        if chosen != challenge.correct_answer:
            logger.info(f"[CAPTCHA] ❌ user={user_id} ответил неверно в чате {chat_id}")
            await self._restrict(challenge)
            if challenge.join_message_id is not None:
                await safe_call(
                    lambda: self.bot.delete_message(chat_id, challenge.join_message_id),
                    f"delete join msg={challenge.join_message_id} chat={chat_id}",
                )
            return False

        logger.info(f"[CAPTCHA] ✅ user={user_id} прошёл капчу в чате {chat_id}")
        return True

    async def _restrict(self, challenge: PendingChallenge) -> None:
        chat_id, user_id = challenge.key
        self.stats.record_captcha(chat_id, challenge.chat_title)
        until = datetime.now(timezone.utc) + timedelta(minutes=self.settings.restriction_minutes)
        result, _ = await safe_call(
            lambda: self.bot.ban_chat_member(chat_id, user_id, until_date=until, revoke_messages=False),
            f"captcha ban user={user_id} chat={chat_id}",
        )
        if result.ok:
            self.escalation.schedule_unban(chat_id, user_id)

    # ═══════════════════════════════════════════════════════════════════════════
    # ТАЙМАУТ
    # ═══════════════════════════════════════════════════════════════════════════

    async def sweep(self, now: Optional[datetime] = None) -> int:
        """
        Банит всех, кто не ответил на капчу вовремя.

        Каждая капча обрабатывается ровно один раз: ответ, пришедший
        во время обхода, уже удалил её из словаря. Запланированная
        очистка сообщений не отменяется.

        Returns:
            Количество обработанных капч
        """
        now = now or datetime.now(timezone.utc)
        timeout = self.settings.captcha_timeout_seconds
        expired = [
            (key, challenge)
            for key, challenge in list(self._pending.items())
            if (now - challenge.issued_at).total_seconds() > timeout
        ]
        handled = 0
        for key, challenge in expired:
            if self._pending.get(key) is not challenge:
                continue
            del self._pending[key]
            logger.info(f"[CAPTCHA] ⏰ user={challenge.user.id} не ответил на капчу в чате {challenge.chat_id}")
            await self._restrict(challenge)
            handled += 1
        return handled

    async def run_sweeper(self, interval: Optional[float] = None) -> None:
        interval = interval or self.settings.captcha_sweep_interval
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"[CAPTCHA] Ошибка при проверке таймаутов: {e}", exc_info=True)
