"""
Unit тесты классификации ошибок Telegram API и повторов.
"""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from aiogram.exceptions import (
    TelegramBadRequest,
    TelegramForbiddenError,
    TelegramNetworkError,
    TelegramRetryAfter,
)

from doorman.utils.retry_utils import ActionResult, classify_error, safe_call


def _bad_request(text: str) -> TelegramBadRequest:
    return TelegramBadRequest(method=MagicMock(), message=text)


class TestClassifyError:
    def test_not_found(self):
        assert classify_error(_bad_request("Bad Request: message to delete not found")) is ActionResult.NOT_FOUND

    def test_not_enough_rights(self):
        error = _bad_request("Bad Request: not enough rights to restrict/ban chat member")
        assert classify_error(error) is ActionResult.FORBIDDEN

    def test_forbidden(self):
        error = TelegramForbiddenError(method=MagicMock(), message="Forbidden: bot was kicked")
        assert classify_error(error) is ActionResult.FORBIDDEN

    def test_other(self):
        assert classify_error(_bad_request("Bad Request: chat not found")) is ActionResult.FAILED


@pytest.mark.asyncio
async def test_safe_call_returns_value():
    call = AsyncMock(return_value=42)

    result, value = await safe_call(call, "test")

    assert result is ActionResult.OK
    assert value == 42


@pytest.mark.asyncio
async def test_safe_call_never_raises():
    call = AsyncMock(side_effect=_bad_request("Bad Request: message can't be deleted"))

    result, value = await safe_call(call, "delete")

    assert result is ActionResult.NOT_FOUND
    assert value is None


@pytest.mark.asyncio
async def test_safe_call_unexpected_error():
    call = AsyncMock(side_effect=RuntimeError("boom"))

    result, _ = await safe_call(call, "test")

    assert result is ActionResult.FAILED


@pytest.mark.asyncio
async def test_network_error_retried_once():
    call = AsyncMock(side_effect=[TelegramNetworkError(method=MagicMock(), message="timeout"), "done"])

    with patch("asyncio.sleep", new_callable=AsyncMock) as sleep_mock:
        result, value = await safe_call(call, "test")

    assert result is ActionResult.OK
    assert value == "done"
    assert call.await_count == 2
    sleep_mock.assert_awaited_once_with(1.0)


@pytest.mark.asyncio
async def test_retry_after_waits_requested_time():
    error = TelegramRetryAfter(method=MagicMock(), message="Too Many Requests", retry_after=3)
    call = AsyncMock(side_effect=[error, "done"])

    with patch("asyncio.sleep", new_callable=AsyncMock) as sleep_mock:
        result, _ = await safe_call(call, "test")

    assert result is ActionResult.OK
    sleep_mock.assert_awaited_once_with(4)


@pytest.mark.asyncio
async def test_network_error_gives_up():
    call = AsyncMock(side_effect=TelegramNetworkError(method=MagicMock(), message="timeout"))

    with patch("asyncio.sleep", new_callable=AsyncMock):
        result, _ = await safe_call(call, "test", max_retries=2)

    assert result is ActionResult.FAILED
    assert call.await_count == 3
