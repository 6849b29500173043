"""Tests for operator-driven completion with a chosen direction and target."""

import asyncio

import pytest
from sqlmodel import Session, select

from settler.database import engine
from settler.engine.manual_completion import complete_bot_manually, preview_manual_completion
from settler.errors import BotNotFoundError, ClaimError, InsufficientDataError
from settler.models.trade import BotTrade
from settler.services import ledger

from tests.conftest import NOW, add_prices, get_bot, make_account, make_bot


@pytest.fixture
def bot_with_prices():
    user_id = make_account()
    bot_id = make_bot(user_id, start_amount=1000.0)
    add_prices("BTC", [100, 100.5, 101, 99, 100.2])
    return user_id, bot_id


def test_preview_writes_nothing(bot_with_prices):
    user_id, bot_id = bot_with_prices

    trade = preview_manual_completion(bot_id, "long", 2.0, now=NOW)

    assert trade["trade_type"] == "long"
    assert abs(trade["profit_percent"] - 2.0) <= 0.5
    assert trade["final_balance"] == pytest.approx(1000.0 + trade["profit_amount"])
    assert trade["price_points_analyzed"] == 5
    assert get_bot(bot_id).status == "active"
    assert ledger.list_transactions(user_id) == []


def test_preview_unlucky_is_a_loss(bot_with_prices):
    _, bot_id = bot_with_prices

    trade = preview_manual_completion(bot_id, "long", 2.0, unlucky=True, now=NOW)

    assert trade["profit_percent"] < 0
    assert trade["final_balance"] < 1000.0


@pytest.mark.parametrize("target", [0.5, 3.5])
def test_target_outside_range_rejected(bot_with_prices, target):
    _, bot_id = bot_with_prices
    with pytest.raises(ValueError):
        preview_manual_completion(bot_id, "long", target, now=NOW)


def test_unknown_bot():
    with pytest.raises(BotNotFoundError):
        preview_manual_completion(999, "long", 2.0, now=NOW)


def test_preview_requires_active_bot():
    user_id = make_account()
    bot_id = make_bot(user_id, status="stopped")
    with pytest.raises(ClaimError):
        preview_manual_completion(bot_id, "short", 2.0, now=NOW)


def test_preview_needs_two_samples():
    user_id = make_account()
    bot_id = make_bot(user_id)
    add_prices("BTC", [100])
    with pytest.raises(InsufficientDataError):
        preview_manual_completion(bot_id, "long", 2.0, now=NOW)


@pytest.mark.asyncio
async def test_complete_short_records_trade_and_credit(bot_with_prices, events):
    user_id, bot_id = bot_with_prices

    outcome = await complete_bot_manually(bot_id, "short", 1.5, now=NOW)

    assert outcome.status == "completed"
    with Session(engine) as session:
        trade = session.exec(select(BotTrade).where(BotTrade.bot_id == bot_id)).one()
    assert trade.trade_type == "short"
    assert trade.entry_price > trade.exit_price
    assert ledger.get_balance(user_id) == pytest.approx(outcome.final_balance)
    assert get_bot(bot_id).status == "completed"
    await asyncio.sleep(0)
    assert events[0][0] == "bot_completed"


@pytest.mark.asyncio
async def test_complete_unlucky_credits_reduced_principal(bot_with_prices):
    user_id, bot_id = bot_with_prices

    outcome = await complete_bot_manually(bot_id, "long", 1.0, unlucky=True, now=NOW)

    assert outcome.status == "completed"
    assert outcome.profit_amount < 0
    txn = ledger.list_transactions(user_id)[0]
    assert txn.amount == pytest.approx(1000.0 + outcome.profit_amount)
    assert "loss" in txn.description


@pytest.mark.asyncio
async def test_complete_twice_is_rejected(bot_with_prices):
    _, bot_id = bot_with_prices
    await complete_bot_manually(bot_id, "long", 2.0, now=NOW)

    with pytest.raises(ClaimError):
        await complete_bot_manually(bot_id, "long", 2.0, now=NOW)
