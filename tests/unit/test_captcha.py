"""
Unit тесты капчи: выдача, ответы, таймаут.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from aiogram.exceptions import TelegramBadRequest
from aiogram.types import Chat, User

from doorman.services.captcha import (
    CATALOGUE,
    build_callback_data,
    parse_callback_data,
    pick_options,
)
from doorman.utils import background

ADMIN_CHAT_ID = -1009999
CHAT_ID = -1001234567890
USER_ID = 100


@pytest.fixture
def chat() -> Chat:
    return Chat(id=CHAT_ID, type="supergroup", title="Test chat")


@pytest.fixture
def newbie() -> User:
    return User(id=USER_ID, is_bot=False, first_name="Newbie", username="newbie")


@pytest.fixture
def captcha(services, bot_mock):
    bot_mock.send_message.return_value = MagicMock(message_id=900)
    return services.captcha


def _keyboard_data(bot_mock):
    markup = bot_mock.send_message.await_args.kwargs["reply_markup"]
    return [button.callback_data for button in markup.inline_keyboard[0]]


class TestCallbackData:
    def test_roundtrip(self):
        assert parse_callback_data(build_callback_data(42, 7)) == (42, 7)

    @pytest.mark.parametrize("data", [None, "", "cap_1", "cap_x_1", "ban_1_2", "cap_1_2_3"])
    def test_garbage(self, data):
        assert parse_callback_data(data) is None


def test_pick_options_are_distinct_and_contain_answer():
    options, correct = pick_options(8)
    assert len(options) == 8
    assert len(set(options)) == 8
    assert correct in options
    assert all(0 <= i < len(CATALOGUE) for i in options)


class TestStartChallenge:
    @pytest.mark.asyncio
    async def test_issues_challenge_with_eight_buttons(self, captcha, bot_mock, chat, newbie):
        assert await captcha.start_challenge(chat, newbie) is True

        pending = captcha.get_pending(CHAT_ID, USER_ID)
        assert pending is not None
        assert pending.challenge_message_id == 900

        args = bot_mock.send_message.await_args
        assert args.args[0] == CHAT_ID
        assert "@newbie" in args.args[1]
        assert CATALOGUE[pending.correct_answer].description in args.args[1]

        data = _keyboard_data(bot_mock)
        assert len(data) == 8
        assert len(set(data)) == 8
        assert build_callback_data(USER_ID, pending.correct_answer) in data

    @pytest.mark.asyncio
    async def test_reply_to_join_message(self, captcha, bot_mock, chat, newbie, message_factory):
        join = message_factory(message_id=33, text=None)

        await captcha.start_challenge(chat, newbie, join_message=join)

        assert bot_mock.send_message.await_args.kwargs["reply_to_message_id"] == 33
        pending = captcha.get_pending(CHAT_ID, USER_ID)
        assert pending.join_message_id == 33
        assert len(pending.cleanup_tasks) == 2

    @pytest.mark.asyncio
    async def test_second_join_does_not_issue_second_challenge(self, captcha, bot_mock, chat, newbie):
        assert await captcha.start_challenge(chat, newbie) is True
        assert await captcha.start_challenge(chat, newbie) is False

        assert bot_mock.send_message.await_count == 1
        assert len(captcha) == 1

    @pytest.mark.asyncio
    async def test_bots_and_approved_users_skipped(self, captcha, services, bot_mock, chat):
        bot_user = User(id=555, is_bot=True, first_name="Other bot")
        services.approved.approve(USER_ID)
        approved = User(id=USER_ID, is_bot=False, first_name="Old")

        assert await captcha.start_challenge(chat, bot_user) is False
        assert await captcha.start_challenge(chat, approved) is False
        bot_mock.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_blacklisted_user_banned_instead(self, captcha, services, bot_mock, chat, newbie):
        services.blacklist.add(USER_ID)

        assert await captcha.start_challenge(chat, newbie) is False

        bot_mock.ban_chat_member.assert_awaited_once_with(CHAT_ID, USER_ID)
        bot_mock.send_message.assert_not_awaited()
        assert services.stats.get(CHAT_ID).blacklist_banned == 1
        assert not captcha.has_pending(CHAT_ID, USER_ID)

    @pytest.mark.asyncio
    async def test_blacklist_ban_failure_notifies_admins_and_continues(
        self, captcha, services, bot_mock, chat, newbie
    ):
        services.blacklist.add(USER_ID)
        bot_mock.ban_chat_member.side_effect = TelegramBadRequest(
            method=MagicMock(), message="Bad Request: not enough rights to restrict/ban chat member"
        )

        assert await captcha.start_challenge(chat, newbie) is True

        first_call = bot_mock.send_message.await_args_list[0]
        assert first_call.args[0] == ADMIN_CHAT_ID
        assert "Не могу забанить юзера из блеклиста" in first_call.args[1]
        assert services.stats.get(CHAT_ID) is None
        assert captcha.has_pending(CHAT_ID, USER_ID)

    @pytest.mark.asyncio
    async def test_send_failure_frees_slot(self, captcha, bot_mock, chat, newbie):
        bot_mock.send_message.side_effect = TelegramBadRequest(method=MagicMock(), message="Bad Request: chat not found")

        assert await captcha.start_challenge(chat, newbie) is False
        assert not captcha.has_pending(CHAT_ID, USER_ID)


class TestHandleAnswer:
    @pytest.mark.asyncio
    async def test_correct_answer(self, captcha, bot_mock, chat, newbie, callback_query_factory):
        await captcha.start_challenge(chat, newbie)
        pending = captcha.get_pending(CHAT_ID, USER_ID)
        callback = callback_query_factory(
            data=build_callback_data(USER_ID, pending.correct_answer), from_user_id=USER_ID, message_id=900
        )

        cleanup = list(pending.cleanup_tasks)

        assert await captcha.handle_answer(callback) is True

        assert not captcha.has_pending(CHAT_ID, USER_ID)
        bot_mock.delete_message.assert_awaited_once_with(CHAT_ID, 900)
        bot_mock.ban_chat_member.assert_not_awaited()
        await asyncio.gather(*cleanup, return_exceptions=True)
        assert all(task.cancelled() for task in cleanup)

    @pytest.mark.asyncio
    async def test_message_after_correct_answer_runs_full_pipeline(
        self, captcha, services, chat, newbie, callback_query_factory, message_factory
    ):
        await captcha.start_challenge(chat, newbie)
        pending = captcha.get_pending(CHAT_ID, USER_ID)
        callback = callback_query_factory(
            data=build_callback_data(USER_ID, pending.correct_answer), from_user_id=USER_ID, message_id=900
        )
        assert await captcha.handle_answer(callback) is True

        decision = await services.pipeline.process(message_factory(message_id=40, user_id=USER_ID))

        assert decision.rule == "ham"
        assert not services.approved.is_approved(USER_ID)

    @pytest.mark.asyncio
    async def test_wrong_answer_bans_for_twenty_minutes(
        self, captcha, services, fake_redis, bot_mock, chat, newbie, callback_query_factory, message_factory
    ):
        await captcha.start_challenge(chat, newbie, join_message=message_factory(message_id=33, text=None))
        pending = captcha.get_pending(CHAT_ID, USER_ID)
        wrong = (pending.correct_answer + 1) % len(CATALOGUE)
        callback = callback_query_factory(data=build_callback_data(USER_ID, wrong), from_user_id=USER_ID)

        before = datetime.now(timezone.utc)
        with patch("asyncio.sleep", new_callable=AsyncMock):
            assert await captcha.handle_answer(callback) is False
            await background.drain()

        kwargs = bot_mock.ban_chat_member.await_args.kwargs
        assert kwargs["revoke_messages"] is False
        assert timedelta(minutes=19) < kwargs["until_date"] - before <= timedelta(minutes=21)
        assert services.stats.get(CHAT_ID).stopped_captcha == 1
        assert not captcha.has_pending(CHAT_ID, USER_ID)

        bot_mock.delete_message.assert_any_await(CHAT_ID, 33)
        assert await fake_redis.get(f"doorman:unban_attempts:{USER_ID}") == "1"
        bot_mock.unban_chat_member.assert_awaited_once_with(CHAT_ID, USER_ID, only_if_banned=True)

    @pytest.mark.asyncio
    async def test_foreign_press_is_ignored(self, captcha, bot_mock, chat, newbie, callback_query_factory):
        await captcha.start_challenge(chat, newbie)
        pending = captcha.get_pending(CHAT_ID, USER_ID)
        callback = callback_query_factory(
            data=build_callback_data(USER_ID, pending.correct_answer), from_user_id=777
        )

        assert await captcha.handle_answer(callback) is None

        assert captcha.has_pending(CHAT_ID, USER_ID)
        bot_mock.answer_callback_query.assert_awaited_once()
        bot_mock.delete_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_malformed_data_is_ignored(self, captcha, bot_mock, callback_query_factory):
        assert await captcha.handle_answer(callback_query_factory(data="cap_abc")) is None
        bot_mock.delete_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_press_after_timeout_is_harmless(self, captcha, bot_mock, callback_query_factory):
        callback = callback_query_factory(data=build_callback_data(USER_ID, 0), from_user_id=USER_ID)

        assert await captcha.handle_answer(callback) is None
        bot_mock.ban_chat_member.assert_not_awaited()


class TestSweep:
    @pytest.mark.asyncio
    async def test_expired_challenge_banned_exactly_once(self, captcha, services, bot_mock, chat, newbie):
        await captcha.start_challenge(chat, newbie)
        now = datetime.now(timezone.utc) + timedelta(seconds=61)

        assert await captcha.sweep(now) == 1
        assert await captcha.sweep(now) == 0

        bot_mock.ban_chat_member.assert_awaited_once()
        assert services.stats.get(CHAT_ID).stopped_captcha == 1
        assert not captcha.has_pending(CHAT_ID, USER_ID)

    @pytest.mark.asyncio
    async def test_fresh_challenge_kept(self, captcha, bot_mock, chat, newbie):
        await captcha.start_challenge(chat, newbie)

        assert await captcha.sweep(datetime.now(timezone.utc) + timedelta(seconds=30)) == 0
        assert captcha.has_pending(CHAT_ID, USER_ID)

    @pytest.mark.asyncio
    async def test_timeout_keeps_scheduled_cleanup(self, captcha, chat, newbie):
        await captcha.start_challenge(chat, newbie)
        pending = captcha.get_pending(CHAT_ID, USER_ID)

        await captcha.sweep(datetime.now(timezone.utc) + timedelta(seconds=61))

        assert pending.cleanup_tasks
        assert not any(task.done() for task in pending.cleanup_tasks)

    @pytest.mark.asyncio
    async def test_failed_ban_does_not_schedule_unban(self, captcha, services, bot_mock, chat, newbie):
        await captcha.start_challenge(chat, newbie)
        bot_mock.ban_chat_member.side_effect = TelegramBadRequest(
            method=MagicMock(), message="Bad Request: not enough rights to restrict/ban chat member"
        )

        await captcha.sweep(datetime.now(timezone.utc) + timedelta(seconds=61))

        assert services.stats.get(CHAT_ID).stopped_captcha == 1
        assert await services.escalation.redis.get(f"doorman:unban_attempts:{USER_ID}") is None
