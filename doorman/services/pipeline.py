# ============================================================
# КОНВЕЙЕР РЕШЕНИЙ ПО СООБЩЕНИЮ В ГРУППЕ
# ============================================================
# Каждое сообщение проходит упорядоченный список правил. Первое
# сработавшее правило выполняет действие и возвращает итоговое
# решение, остальные правила не проверяются.
#
# Порядок правил:
#  1. pending-challenge - автор проходит капчу: молча удалить
#  2. approved          - одобренный пользователь: пропустить
#  3. club-member       - участник клуба: пропустить
#  4. blacklist         - спамер из базы: бан или админам
#  5. no-text           - медиа без подписи: админам без удаления
#  6. known-bad         - известный спам: удалить и забанить
#  7. emoji             - перебор эмодзи: удалить и админам
#  8. lookalike         - слова с латинскими двойниками: удалить и админам
#  9. stop-word         - стоп-слова: удалить и админам
# 10. ml-spam           - классификатор: удалить и админам
# 11. channel           - сообщение от канала: админам без удаления
# 12. ham               - нормальное сообщение: счётчик доверия
#
# Перед правилами сообщение помечается как обработанное
# (Redis SET NX): повторная доставка после рестарта не даст
# второго бана и второго отчёта.
#
# Redis ключи:
#   doorman:processed:{chat_id}:{message_id} - метка обработки (24 часа)
# ============================================================

import enum
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from aiogram import Bot
from aiogram.types import Message, User
from redis.asyncio import Redis
from redis.exceptions import RedisError

from doorman.config import ModerationSettings
from doorman.services.approved_users import ApprovedUsersStore
from doorman.services.bad_messages import BadMessageStore
from doorman.services.blacklist import Blacklist
from doorman.services.captcha import CaptchaService
from doorman.services.classifier import SpamHamClassifier
from doorman.services.club_directory import ClubDirectory
from doorman.services.filters import StopWordList, lookalike_words, too_many_emojis
from doorman.services.review import ReviewService
from doorman.services.stats import StatsAggregator
from doorman.services.text_normalizer import normalize
from doorman.services.trust import TrustCounters
from doorman.utils.background import fire_and_forget
from doorman.utils.retry_utils import safe_call
from doorman.utils.telegram_links import user_full_name

logger = logging.getLogger(__name__)

PROCESSED_KEY = "doorman:processed:{chat_id}:{message_id}"
# Сколько слов-двойников перечислять в отчёте
LOOKALIKE_REPORT_LIMIT = 5


class Action(str, enum.Enum):
    ALLOW = "allow"
    # Молча удалить (автор проходит капчу)
    SUPPRESS = "suppress"
    BAN = "ban"
    DELETE_AND_REVIEW = "delete_and_review"
    # Переслать админам, не удаляя
    REVIEW = "review"
    # Сообщение уже обрабатывалось
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class Decision:
    rule: str
    action: Action
    reason: str = ""


class MessageContext:
    """Сообщение и всё, что о нём уже вычислено правилами."""

    def __init__(self, message: Message, user: User, sent_as_channel: bool = False):
        self.message = message
        self.user = user
        self.sent_as_channel = sent_as_channel
        self.text: Optional[str] = message.text or message.caption
        self._normalized: Optional[str] = None
        self.club_name: Optional[str] = None
        self.lookalike: List[str] = []
        self.is_spam = False
        self.score: Optional[float] = None

    @property
    def chat(self):
        return self.message.chat

    @property
    def normalized(self) -> str:
        if self._normalized is None:
            self._normalized = normalize(self.text or "")
        return self._normalized


@dataclass(frozen=True)
class Rule:
    tag: str
    check: Callable[[MessageContext], Awaitable[bool]]
    act: Callable[[MessageContext], Awaitable[Decision]]


class DecisionPipeline:
    def __init__(
        self,
        bot: Bot,
        redis: Redis,
        settings: ModerationSettings,
        captcha: CaptchaService,
        approved: ApprovedUsersStore,
        club: ClubDirectory,
        blacklist: Blacklist,
        bad_messages: BadMessageStore,
        classifier: SpamHamClassifier,
        stop_words: StopWordList,
        trust: TrustCounters,
        stats: StatsAggregator,
        review: ReviewService,
    ):
        self.bot = bot
        self.redis = redis
        self.settings = settings
        self.captcha = captcha
        self.approved = approved
        self.club = club
        self.blacklist = blacklist
        self.bad_messages = bad_messages
        self.classifier = classifier
        self.stop_words = stop_words
        self.trust = trust
        self.stats = stats
        self.review = review
        self.rules: List[Rule] = [
            Rule("pending-challenge", self._has_pending_challenge, self._suppress),
            Rule("approved", self._is_approved, self._allow),
            Rule("club-member", self._is_club_member, self._allow),
            Rule("blacklist", self._is_blacklisted, self._handle_blacklisted),
            Rule("no-text", self._has_no_text, self._review_without_delete),
            Rule("known-bad", self._is_known_bad, self._ban_known_bad),
            Rule("emoji", self._has_too_many_emojis, self._report_emojis),
            Rule("lookalike", self._has_lookalike_words, self._report_lookalike),
            Rule("stop-word", self._has_stop_words, self._report_stop_words),
            Rule("ml-spam", self._is_ml_spam, self._report_ml_spam),
            Rule("channel", self._is_sent_as_channel, self._review_without_delete),
            Rule("ham", self._always, self._accept_ham),
        ]

    # ═══════════════════════════════════════════════════════════════════════════
    # ТОЧКИ ВХОДА
    # ═══════════════════════════════════════════════════════════════════════════

    async def process(self, message: Message, sent_as_channel: bool = False) -> Decision:
        """
        Обрабатывает сообщение из группы.

        Args:
            message: Сообщение с автором (from_user)
            sent_as_channel: Сообщение отправлено от имени канала

        Returns:
            Итоговое решение
        """
        user = message.from_user
        if user is None:
            return Decision("no-sender", Action.ALLOW)

        if not await self._claim(message):
            logger.debug(f"[PIPELINE] Повтор msg={message.message_id} chat={message.chat.id}, пропуск")
            return Decision("duplicate", Action.DUPLICATE)

        ctx = MessageContext(message, user, sent_as_channel)
        try:
            if ctx.text:
                await self.review.remember_last_message(message.chat.id, user.id, ctx.text)
            return await self.evaluate(ctx)
        except Exception:
            # Повторная доставка апдейта должна проверить сообщение заново
            await self._release(message)
            raise

    async def evaluate(self, ctx: MessageContext) -> Decision:
        for rule in self.rules:
            if await rule.check(ctx):
                decision = await rule.act(ctx)
                log = logger.debug if decision.action is Action.ALLOW else logger.info
                log(
                    f"[PIPELINE] user={ctx.user.id} chat={ctx.chat.id} msg={ctx.message.message_id} "
                    f"rule={decision.rule} action={decision.action.value}"
                    + (f" reason={decision.reason!r}" if decision.reason else "")
                )
                return decision
        # Последнее правило срабатывает всегда
        raise RuntimeError("no terminal rule matched")

    async def _claim(self, message: Message) -> bool:
        key = PROCESSED_KEY.format(chat_id=message.chat.id, message_id=message.message_id)
        try:
            claimed = await self.redis.set(key, "1", nx=True, ex=self.settings.processed_marker_ttl)
        except RedisError as e:
            # Без Redis повторы не отсекаются, сообщение всё равно проверяется
            logger.warning(f"[PIPELINE] Не удалось поставить метку {key}: {e}")
            return True
        return bool(claimed)

    async def _release(self, message: Message) -> None:
        key = PROCESSED_KEY.format(chat_id=message.chat.id, message_id=message.message_id)
        try:
            await self.redis.delete(key)
        except RedisError as e:
            logger.warning(f"[PIPELINE] Не удалось снять метку {key}: {e}")

    # ═══════════════════════════════════════════════════════════════════════════
    # ПРОВЕРКИ
    # ═══════════════════════════════════════════════════════════════════════════

    async def _always(self, ctx: MessageContext) -> bool:
        return True

    async def _has_pending_challenge(self, ctx: MessageContext) -> bool:
        return self.captcha.has_pending(ctx.chat.id, ctx.user.id)

    async def _is_approved(self, ctx: MessageContext) -> bool:
        return self.approved.is_approved(ctx.user.id)

    async def _is_club_member(self, ctx: MessageContext) -> bool:
        ctx.club_name = await self.club.get_club_username(ctx.user.id)
        return bool(ctx.club_name)

    async def _is_blacklisted(self, ctx: MessageContext) -> bool:
        return await self.blacklist.is_blacklisted(ctx.user.id)

    async def _has_no_text(self, ctx: MessageContext) -> bool:
        return not ctx.text or not ctx.text.strip()

    async def _is_known_bad(self, ctx: MessageContext) -> bool:
        return self.bad_messages.is_known_bad(ctx.text)

    async def _has_too_many_emojis(self, ctx: MessageContext) -> bool:
        return too_many_emojis(ctx.text)

    async def _has_lookalike_words(self, ctx: MessageContext) -> bool:
        ctx.lookalike = lookalike_words(ctx.normalized)
        return len(ctx.lookalike) > 1

    async def _has_stop_words(self, ctx: MessageContext) -> bool:
        return self.stop_words.match(ctx.normalized) is not None

    async def _is_ml_spam(self, ctx: MessageContext) -> bool:
        ctx.is_spam, ctx.score = await self.classifier.classify(ctx.normalized)
        return ctx.is_spam

    async def _is_sent_as_channel(self, ctx: MessageContext) -> bool:
        return ctx.sent_as_channel

    # ═══════════════════════════════════════════════════════════════════════════
    # ДЕЙСТВИЯ
    # ═══════════════════════════════════════════════════════════════════════════

    async def _delete(self, ctx: MessageContext):
        result, _ = await safe_call(
            lambda: self.bot.delete_message(ctx.chat.id, ctx.message.message_id),
            f"delete msg={ctx.message.message_id} chat={ctx.chat.id}",
        )
        return result

    async def _ban(self, ctx: MessageContext):
        result, _ = await safe_call(
            lambda: self.bot.ban_chat_member(ctx.chat.id, ctx.user.id, revoke_messages=False),
            f"ban user={ctx.user.id} chat={ctx.chat.id}",
        )
        return result

    async def _suppress(self, ctx: MessageContext) -> Decision:
        await self._delete(ctx)
        return Decision("pending-challenge", Action.SUPPRESS)

    async def _allow(self, ctx: MessageContext) -> Decision:
        if ctx.club_name:
            return Decision("club-member", Action.ALLOW, ctx.club_name)
        return Decision("approved", Action.ALLOW)

    async def _handle_blacklisted(self, ctx: MessageContext) -> Decision:
        if self.settings.blacklist_auto_ban:
            self.stats.record_blacklist(ctx.chat.id, ctx.chat.title)
            await self._ban(ctx)
            await self._delete(ctx)
            return Decision("blacklist", Action.BAN)
        reason = "Пользователь в блеклисте спамеров"
        await self.review.report_and_delete(ctx.message, ctx.user, reason)
        return Decision("blacklist", Action.DELETE_AND_REVIEW, reason)

    async def _review_without_delete(self, ctx: MessageContext) -> Decision:
        await self.review.report_without_delete(ctx.message, ctx.user)
        rule = "channel" if ctx.text and ctx.text.strip() else "no-text"
        return Decision(rule, Action.REVIEW)

    async def _ban_known_bad(self, ctx: MessageContext) -> Decision:
        self.stats.record_known_bad(ctx.chat.id, ctx.chat.title)
        await self._delete(ctx)
        await self._ban(ctx)
        return Decision("known-bad", Action.BAN)

    async def _report(self, ctx: MessageContext, rule: str, reason: str) -> Decision:
        await self.review.report_and_delete(ctx.message, ctx.user, reason)
        return Decision(rule, Action.DELETE_AND_REVIEW, reason)

    async def _report_emojis(self, ctx: MessageContext) -> Decision:
        return await self._report(ctx, "emoji", "В этом сообщении многовато эмоджи")

    async def _report_lookalike(self, ctx: MessageContext) -> Decision:
        words = ", ".join(ctx.lookalike[:LOOKALIKE_REPORT_LIMIT])
        tail = ", и другие" if len(ctx.lookalike) > LOOKALIKE_REPORT_LIMIT else ""
        return await self._report(ctx, "lookalike", f"Были найдены слова маскирующиеся под русские: {words}{tail}")

    async def _report_stop_words(self, ctx: MessageContext) -> Decision:
        return await self._report(ctx, "stop-word", "В этом сообщении есть стоп-слова")

    async def _report_ml_spam(self, ctx: MessageContext) -> Decision:
        return await self._report(ctx, "ml-spam", f"ML решил что это спам, скор {ctx.score}")

    async def _accept_ham(self, ctx: MessageContext) -> Decision:
        if (
            self.settings.low_confidence_forward
            and self.classifier.trained
            and ctx.score is not None
            and ctx.score > self.settings.low_confidence_threshold
        ):
            fire_and_forget(
                self.review.report_low_confidence(ctx.message, ctx.user, ctx.score),
                name=f"low-confidence:{ctx.chat.id}:{ctx.message.message_id}",
            )

        count = self.trust.record_ham(ctx.user.id)
        if count >= self.settings.trust_threshold:
            logger.info(
                f"[PIPELINE] 🤝 {user_full_name(ctx.user)} ({ctx.user.id}) написал {count} нормальных "
                f"сообщений подряд, одобряем"
            )
            self.approved.approve(ctx.user.id)
            self.trust.remove(ctx.user.id)
            return Decision("ham", Action.ALLOW, "promoted")
        return Decision("ham", Action.ALLOW)
