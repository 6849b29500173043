"""Tests for Telegram operator commands, driven with mocked updates."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from settler.services.telegram_bot import TelegramBot

from tests.conftest import complete_without_credit, make_account, make_bot

AUTHORIZED = 111


def _update(user_id: int = AUTHORIZED):
    message = SimpleNamespace(reply_text=AsyncMock())
    return SimpleNamespace(effective_user=SimpleNamespace(id=user_id), message=message)


def _callback(data: str, user_id: int = AUTHORIZED):
    query = SimpleNamespace(
        from_user=SimpleNamespace(id=user_id),
        data=data,
        answer=AsyncMock(),
        edit_message_text=AsyncMock(),
    )
    return SimpleNamespace(callback_query=query)


@pytest.fixture
def bot():
    return TelegramBot(token="123:abc", chat_ids=[AUTHORIZED])


@pytest.mark.asyncio
async def test_unauthorized_user_is_rejected(bot):
    update = _update(user_id=999)
    await bot._cmd_due(update, MagicMock())
    update.message.reply_text.assert_awaited_once_with("Unauthorized.")


@pytest.mark.asyncio
async def test_due_lists_bots(bot):
    user_id = make_account()
    bot_id = make_bot(user_id)
    update = _update()

    await bot._cmd_due(update, MagicMock())

    text = update.message.reply_text.await_args.args[0]
    assert text.startswith(f"#{bot_id} BTC | 1000.00")


@pytest.mark.asyncio
async def test_due_when_empty(bot):
    update = _update()
    await bot._cmd_due(update, MagicMock())
    update.message.reply_text.assert_awaited_once_with("No bots due.")


@pytest.mark.asyncio
async def test_status_counts(bot):
    user_id = make_account()
    make_bot(user_id)
    make_bot(user_id, status="processing")
    update = _update()

    await bot._cmd_status(update, MagicMock())

    text = update.message.reply_text.await_args.args[0]
    assert "Scheduler: stopped" in text
    assert "Active bots: 1" in text
    assert "Claimed (processing): 1" in text


@pytest.mark.asyncio
async def test_reconcile_asks_then_applies(bot):
    user_id = make_account()
    complete_without_credit(make_bot(user_id))
    update = _update()

    await bot._cmd_reconcile(update, MagicMock())
    text = update.message.reply_text.await_args.args[0]
    assert text.startswith("1 settlements are missing")

    callback = _callback("confirm_reconcile")
    await bot._handle_callback(callback, MagicMock())
    callback.callback_query.edit_message_text.assert_awaited_with("Credited 1 of 1 settlements.")


@pytest.mark.asyncio
async def test_reconcile_nothing_to_do(bot):
    update = _update()
    await bot._cmd_reconcile(update, MagicMock())
    update.message.reply_text.assert_awaited_once_with("All settlements reconciled.")


@pytest.mark.asyncio
async def test_callback_from_stranger_is_ignored(bot):
    callback = _callback("confirm_reconcile", user_id=999)
    await bot._handle_callback(callback, MagicMock())
    callback.callback_query.answer.assert_not_awaited()


@pytest.mark.asyncio
async def test_send_notification_without_app_is_noop(bot):
    await bot.send_notification("hello")
