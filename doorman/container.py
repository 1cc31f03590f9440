# doorman/container.py
"""
Сборка сервисов модерации.

Все сервисы с состоянием живут в одном ModerationServices, который
передаётся в хэндлеры через workflow data диспетчера (ключ "services").
"""

import logging
from dataclasses import dataclass

from aiogram import Bot
from redis.asyncio import Redis

from doorman import config
from doorman.config import ModerationSettings
from doorman.services.approved_users import APPROVED_USERS_FILE, ApprovedUsersStore
from doorman.services.bad_messages import BAD_MESSAGES_FILE, BadMessageStore
from doorman.services.blacklist import BANLIST_FILE, Blacklist
from doorman.services.captcha import CaptchaService
from doorman.services.classifier import DATASET_FILE, SpamHamClassifier
from doorman.services.club_directory import ClubDirectory
from doorman.services.escalation import EscalationScheduler
from doorman.services.filters import StopWordList
from doorman.services.pipeline import DecisionPipeline
from doorman.services.review import ReviewService
from doorman.services.stats import StatsAggregator
from doorman.services.trust import TRUST_FILE, TrustCounters

logger = logging.getLogger(__name__)

STOP_WORDS_FILE = "stop-words.txt"
CURSOR_FILE = "offset.txt"


@dataclass
class ModerationServices:
    settings: ModerationSettings
    approved: ApprovedUsersStore
    bad_messages: BadMessageStore
    blacklist: Blacklist
    club: ClubDirectory
    classifier: SpamHamClassifier
    stop_words: StopWordList
    trust: TrustCounters
    stats: StatsAggregator
    escalation: EscalationScheduler
    review: ReviewService
    captcha: CaptchaService
    pipeline: DecisionPipeline

    async def load_state(self) -> None:
        """Читает файлы состояния и обучает классификатор."""
        self.approved.load()
        self.bad_messages.load()
        self.blacklist.load()
        self.trust.restore()
        await self.classifier.train()


def build_services(
    bot: Bot,
    redis: Redis,
    settings: ModerationSettings,
    club_url: str = "",
    club_token: str = "",
    blacklist_api_url: str = "",
) -> ModerationServices:
    approved = ApprovedUsersStore(settings.data_path(APPROVED_USERS_FILE))
    bad_messages = BadMessageStore(settings.data_path(BAD_MESSAGES_FILE))
    blacklist = Blacklist(settings.data_path(BANLIST_FILE), api_url=blacklist_api_url or None)
    club = ClubDirectory(club_url, club_token)
    classifier = SpamHamClassifier(settings.data_path(DATASET_FILE))
    stop_words = StopWordList.load(settings.data_path(STOP_WORDS_FILE))
    trust = TrustCounters(settings.data_path(TRUST_FILE))
    stats = StatsAggregator(bot, settings.admin_chat_id, settings.digest_hour)
    escalation = EscalationScheduler(bot, redis, attempts_ttl=settings.unban_attempts_ttl)
    review = ReviewService(
        bot,
        redis,
        settings.admin_chat_id,
        bad_messages,
        ban_token_ttl=settings.ban_token_ttl,
        recent_message_ttl=settings.recent_message_ttl,
    )
    captcha = CaptchaService(bot, settings, approved, club, blacklist, stats, escalation, review)
    pipeline = DecisionPipeline(
        bot,
        redis,
        settings,
        captcha,
        approved,
        club,
        blacklist,
        bad_messages,
        classifier,
        stop_words,
        trust,
        stats,
        review,
    )
    return ModerationServices(
        settings=settings,
        approved=approved,
        bad_messages=bad_messages,
        blacklist=blacklist,
        club=club,
        classifier=classifier,
        stop_words=stop_words,
        trust=trust,
        stats=stats,
        escalation=escalation,
        review=review,
        captcha=captcha,
        pipeline=pipeline,
    )


def build_from_config(bot: Bot, redis: Redis) -> ModerationServices:
    return build_services(
        bot,
        redis,
        ModerationSettings.from_config(),
        club_url=config.CLUB_URL,
        club_token=config.CLUB_SERVICE_TOKEN,
        blacklist_api_url=config.LOLS_API_URL,
    )
