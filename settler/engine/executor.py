"""Settlement of a single bot.

Orchestrates one bot's completion:
claim → price window → scenario search → trade + bot transition (one DB
transaction) → ledger credit → bot_completed event.

The trade and the bot transition commit together; the ledger credit follows in
its own transaction keyed by the bot's settlement reference. A crash or credit
failure in between leaves "trade recorded, bot completed, no credit", which
reconciliation detects and repairs exactly once.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable

import numpy as np
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from settler.config import settings
from settler.database import engine
from settler.errors import InsufficientDataError, NoProfitableScenarioError, PersistenceError
from settler.models.bot import TradingBot
from settler.models.job_log import JobLog
from settler.models.price import PriceSample
from settler.models.trade import BotTrade
from settler.services import ledger
from settler.services.notifications import notify
from settler.services.price_history import fetch_price_window
from settler.services.scenario_analyzer import Scenario, analyze, downsample
from settler.utils.constants import (
    BOT_ACTIVE,
    BOT_COMPLETED,
    BOT_PROCESSING,
    EVENT_BOT_COMPLETED,
    EVENT_SETTLEMENT_PARTIAL,
    OUTCOME_COMPLETED,
    OUTCOME_ERROR,
    OUTCOME_NO_DATA,
    OUTCOME_NO_SCENARIO,
    OUTCOME_PARTIAL,
    OUTCOME_SKIPPED,
    OUTCOME_TIMEOUT,
    settlement_reference,
)

logger = logging.getLogger(__name__)

Chooser = Callable[[list[PriceSample]], Scenario]


@dataclass
class SettlementOutcome:
    """Result of one settlement attempt."""
    bot_id: int
    status: str  # one of utils.constants.OUTCOMES
    message: str | None = None
    trade_id: int | None = None
    profit_percent: float | None = None
    profit_amount: float | None = None
    final_balance: float | None = None
    new_balance: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Claiming
# ---------------------------------------------------------------------------

def claim_bot(bot_id: int, claimed_at: datetime) -> bool:
    """Move an active bot to processing. Returns False if it was not active.

    The conditional update is the mutual-exclusion point: of any number of
    concurrent claimers exactly one sees rowcount == 1.
    """
    with Session(engine) as session:
        result = session.exec(
            update(TradingBot)
            .where(TradingBot.id == bot_id)
            .where(TradingBot.status == BOT_ACTIVE)
            .values(status=BOT_PROCESSING, claimed_at=claimed_at, updated_at=claimed_at)
        )
        session.commit()
        return result.rowcount == 1


def release_claim(bot_id: int, claimed_at: datetime, reason: str) -> bool:
    """Return a claimed bot to active. No-op unless this claim still holds it."""
    with Session(engine) as session:
        result = session.exec(
            update(TradingBot)
            .where(TradingBot.id == bot_id)
            .where(TradingBot.status == BOT_PROCESSING)
            .where(TradingBot.claimed_at == claimed_at)
            .values(status=BOT_ACTIVE, claimed_at=None, updated_at=datetime.now(timezone.utc))
        )
        session.commit()
        released = result.rowcount == 1
    if released:
        logger.info(f"[bot_{bot_id}] Claim released ({reason}), bot is active again")
    return released


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------

def default_chooser(rng: np.random.Generator | None = None) -> Chooser:
    """Scenario search over the (thinned) window using configured bounds."""
    def choose(samples: list[PriceSample]) -> Scenario:
        kept = downsample([s.price for s in samples], settings.max_price_samples)
        picked = [samples[k] for k in kept]
        return analyze(
            [s.price for s in picked],
            timestamps=[s.timestamp for s in picked],
            profit_band=settings.profit_band,
            leverage_range=settings.leverage_range,
            min_movement_pct=settings.min_movement_pct,
            top_fraction=settings.top_fraction,
            rng=rng,
        )
    return choose


async def settle_bot(
    bot_id: int,
    now: datetime | None = None,
    rng: np.random.Generator | None = None,
    chooser: Chooser | None = None,
) -> SettlementOutcome:
    """Claim and settle one bot. A bot that is not active is skipped untouched."""
    now = now or datetime.now(timezone.utc)
    if not claim_bot(bot_id, now):
        logger.info(f"[bot_{bot_id}] Not active or already claimed, skipping")
        return SettlementOutcome(bot_id, OUTCOME_SKIPPED, "Bot is not active or already claimed")
    return await settle_claimed_bot(bot_id, now, rng=rng, chooser=chooser)


async def settle_claimed_bot(
    bot_id: int,
    claimed_at: datetime,
    rng: np.random.Generator | None = None,
    chooser: Chooser | None = None,
) -> SettlementOutcome:
    """Settle a bot this flow has claimed at `claimed_at`.

    If anything fails, times out or is cancelled before the trade/bot commit,
    the claim is released and the bot stays active.
    """
    try:
        return await _settle_once(bot_id, claimed_at, chooser or default_chooser(rng))
    finally:
        # No-op once the bot has been completed
        release_claim(bot_id, claimed_at, reason="settlement did not complete")


async def _settle_once(bot_id: int, now: datetime, choose: Chooser) -> SettlementOutcome:
    with Session(engine) as session:
        bot = session.get(TradingBot, bot_id)
        if bot is None or bot.status != BOT_PROCESSING:
            return SettlementOutcome(bot_id, OUTCOME_SKIPPED, "Bot disappeared or lost its claim")
        session.expunge(bot)

    logger.info(f"[bot_{bot_id}] Settling {bot.symbol} principal={bot.start_amount:.2f}")

    # Step 1: price window over the bot's lifetime
    try:
        samples = await fetch_price_window(
            bot.symbol, bot.created_at, now, timeout=settings.price_fetch_timeout_seconds
        )
    except asyncio.TimeoutError:
        message = f"Price store did not answer within {settings.price_fetch_timeout_seconds}s"
        logger.warning(f"[bot_{bot_id}] {message}")
        log_settlement(bot_id, OUTCOME_TIMEOUT, action="fetch_prices", message=message)
        return SettlementOutcome(bot_id, OUTCOME_TIMEOUT, message)

    # Step 2: scenario search
    try:
        scenario = choose(samples)
    except InsufficientDataError as e:
        logger.info(f"[bot_{bot_id}] Insufficient price data: {e}")
        log_settlement(bot_id, OUTCOME_NO_DATA, action="analyze", message=str(e),
                       details={"samples": len(samples)})
        return SettlementOutcome(bot_id, OUTCOME_NO_DATA, str(e))
    except NoProfitableScenarioError as e:
        logger.warning(f"[bot_{bot_id}] No profitable scenario: {e}")
        log_settlement(bot_id, OUTCOME_NO_SCENARIO, action="analyze", message=str(e),
                       details={"samples": len(samples)})
        return SettlementOutcome(bot_id, OUTCOME_NO_SCENARIO, str(e))

    # Step 3: amounts
    profit_amount = round(bot.start_amount * scenario.profit_percent / 100, 2)
    final_balance = round(bot.start_amount + profit_amount, 2)

    # Steps 4-5: trade record and bot transition, one transaction
    try:
        trade_id = _commit_trade_and_bot(bot, now, scenario, profit_amount, final_balance)
    except PersistenceError as e:
        logger.error(f"[bot_{bot_id}] Persisting settlement failed: {e}", exc_info=True)
        log_settlement(bot_id, OUTCOME_ERROR, action="persist", message=str(e))
        return SettlementOutcome(bot_id, OUTCOME_ERROR, str(e))

    details = _scenario_details(scenario, samples, profit_amount, final_balance, trade_id)

    # Step 6: ledger credit (principal back plus profit)
    try:
        new_balance = ledger.credit_balance(
            bot.user_id,
            final_balance,
            credit_description(bot.cryptocurrency, scenario.profit_percent),
            reference=settlement_reference(bot_id),
        )
    except Exception as e:
        logger.error(
            f"[bot_{bot_id}] PARTIAL settlement: trade {trade_id} recorded and bot completed, "
            f"but crediting {final_balance:.2f} to user {bot.user_id} failed: {e}. "
            f"Manual reconciliation required.",
            exc_info=True,
        )
        log_settlement(bot_id, OUTCOME_PARTIAL, action="credit", message=str(e), details=details)
        notify(EVENT_SETTLEMENT_PARTIAL, {
            "bot_id": bot_id,
            "user_id": bot.user_id,
            "trade_id": trade_id,
            "final_balance": final_balance,
            "error": str(e),
        })
        return SettlementOutcome(
            bot_id, OUTCOME_PARTIAL, f"Ledger credit failed: {e}",
            trade_id=trade_id,
            profit_percent=scenario.profit_percent,
            profit_amount=profit_amount,
            final_balance=final_balance,
        )

    logger.info(
        f"[bot_{bot_id}] Completed {scenario.direction} {scenario.leverage}x "
        f"{scenario.entry_price:.4f} -> {scenario.exit_price:.4f}: "
        f"{scenario.profit_percent:+.2f}% ({profit_amount:+.2f}), balance now {new_balance:.2f}"
    )
    log_settlement(bot_id, OUTCOME_COMPLETED, action="settle",
                   message=f"Profit {scenario.profit_percent:+.2f}% ({profit_amount:+.2f})",
                   details=details)

    # Step 7: fire-and-forget
    notify(EVENT_BOT_COMPLETED, {
        "user_id": bot.user_id,
        "bot_id": bot_id,
        "cryptocurrency": bot.cryptocurrency,
        "symbol": bot.symbol,
        "trade_type": scenario.direction,
        "buy_price": scenario.buy_price,
        "sell_price": scenario.sell_price,
        "leverage": scenario.leverage,
        "start_amount": bot.start_amount,
        "profit_amount": profit_amount,
        "profit_percent": scenario.profit_percent,
        "started_at": bot.created_at.isoformat(),
        "completed_at": now.isoformat(),
    })

    return SettlementOutcome(
        bot_id, OUTCOME_COMPLETED,
        trade_id=trade_id,
        profit_percent=scenario.profit_percent,
        profit_amount=profit_amount,
        final_balance=final_balance,
        new_balance=new_balance,
    )


def credit_description(cryptocurrency: str, profit_percent: float) -> str:
    if profit_percent < 0:
        return f"Trading Bot completed - {cryptocurrency} ({abs(profit_percent):.2f}% loss)"
    return f"Trading Bot completed - {cryptocurrency} (+{profit_percent:.2f}% profit)"


def _commit_trade_and_bot(
    bot: TradingBot,
    now: datetime,
    scenario: Scenario,
    profit_amount: float,
    final_balance: float,
) -> int:
    """Insert the BotTrade, then complete the bot, in one transaction. Returns the trade id."""
    try:
        with Session(engine) as session:
            trade = BotTrade(
                bot_id=bot.id,
                trade_type=scenario.direction,
                amount=bot.start_amount,
                buy_price=scenario.buy_price,
                sell_price=scenario.sell_price,
                entry_price=scenario.entry_price,
                exit_price=scenario.exit_price,
                natural_movement=round(scenario.natural_movement, 6),
                leverage=scenario.leverage,
                profit_amount=profit_amount,
                profit_percentage=scenario.profit_percent,
                status="completed",
                started_at=bot.created_at,
                completed_at=now,
            )
            session.add(trade)
            session.flush()
            trade_id = trade.id

            result = session.exec(
                update(TradingBot)
                .where(TradingBot.id == bot.id)
                .where(TradingBot.status == BOT_PROCESSING)
                .where(TradingBot.claimed_at == now)
                .values(
                    status=BOT_COMPLETED,
                    current_balance=final_balance,
                    position_type=scenario.direction,
                    leverage=scenario.leverage,
                    buy_price=scenario.buy_price,
                    sell_price=scenario.sell_price,
                    entry_price=scenario.entry_price,
                    exit_price=scenario.exit_price,
                    claimed_at=None,
                    updated_at=now,
                )
            )
            if result.rowcount != 1:
                session.rollback()
                raise PersistenceError(f"Bot {bot.id} lost its claim before completion")

            session.commit()
            return trade_id
    except SQLAlchemyError as e:
        raise PersistenceError(f"Settlement write failed for bot {bot.id}: {e}") from e


def _scenario_details(
    scenario: Scenario,
    samples: list[PriceSample],
    profit_amount: float,
    final_balance: float,
    trade_id: int,
) -> dict[str, Any]:
    return {
        "trade_id": trade_id,
        "trade_type": scenario.direction,
        "entry_price": scenario.entry_price,
        "exit_price": scenario.exit_price,
        "leverage": scenario.leverage,
        "natural_movement": scenario.natural_movement,
        "profit_percent": scenario.profit_percent,
        "profit_amount": profit_amount,
        "final_balance": final_balance,
        "candidates": scenario.candidate_count,
        "price_points_analyzed": len(samples),
        "price_data_from": samples[0].timestamp.isoformat() if samples else None,
        "price_data_to": samples[-1].timestamp.isoformat() if samples else None,
    }


def log_settlement(
    bot_id: int | None,
    status: str,
    action: str | None = None,
    message: str | None = None,
    details: dict[str, Any] | None = None,
):
    """Write a JobLog entry."""
    try:
        with Session(engine) as session:
            session.add(JobLog(
                bot_id=bot_id,
                status=status,
                action=action,
                message=message,
                details=details,
            ))
            session.commit()
    except SQLAlchemyError as e:
        logger.warning(f"[bot_{bot_id}] Could not write job log ({status}): {e}")
