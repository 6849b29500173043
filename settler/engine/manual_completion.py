"""Operator-driven completion of a single bot with a chosen direction and result.

The scenario comes from `find_target_scenario` instead of the randomized
analyzer; everything after that (claim, trade + bot commit, credit, event)
is the regular settlement path.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from sqlmodel import Session

from settler.config import settings
from settler.database import engine
from settler.engine.executor import Chooser, SettlementOutcome, settle_bot
from settler.errors import BotNotFoundError, ClaimError, InsufficientDataError
from settler.models.bot import TradingBot
from settler.models.price import PriceSample
from settler.services.price_history import get_prices
from settler.services.scenario_analyzer import Scenario, downsample, find_target_scenario
from settler.utils.constants import BOT_ACTIVE, LONG, SHORT

logger = logging.getLogger(__name__)

MANUAL_TARGET_MIN = 1.0
MANUAL_TARGET_MAX = 3.0


def validate_manual_request(trade_type: str, target_percent: float):
    if trade_type not in (LONG, SHORT):
        raise ValueError(f"trade_type must be '{LONG}' or '{SHORT}'")
    if not MANUAL_TARGET_MIN <= target_percent <= MANUAL_TARGET_MAX:
        raise ValueError(
            f"target_percent must be between {MANUAL_TARGET_MIN} and {MANUAL_TARGET_MAX}"
        )


def target_chooser(trade_type: str, target_percent: float, unlucky: bool = False) -> Chooser:
    def choose(samples: list[PriceSample]) -> Scenario:
        kept = downsample([s.price for s in samples], settings.max_price_samples)
        picked = [samples[k] for k in kept]
        return find_target_scenario(
            [s.price for s in picked],
            trade_type,
            target_percent,
            timestamps=[s.timestamp for s in picked],
            loss=unlucky,
            leverage_range=settings.leverage_range,
        )
    return choose


def _load_active_bot(bot_id: int) -> TradingBot:
    with Session(engine) as session:
        bot = session.get(TradingBot, bot_id)
        if bot is None:
            raise BotNotFoundError(f"Bot {bot_id} not found")
        if bot.status != BOT_ACTIVE:
            raise ClaimError(f"Bot {bot_id} is {bot.status}, not active")
        session.expunge(bot)
        return bot


def preview_manual_completion(
    bot_id: int,
    trade_type: str,
    target_percent: float,
    unlucky: bool = False,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Compute the trade a manual completion would record. Writes nothing.

    Raises BotNotFoundError, ClaimError (bot not active), InsufficientDataError
    or NoProfitableScenarioError.
    """
    validate_manual_request(trade_type, target_percent)
    now = now or datetime.now(timezone.utc)
    bot = _load_active_bot(bot_id)

    samples = get_prices(bot.symbol, bot.created_at, now)
    if len(samples) < 2:
        raise InsufficientDataError(
            f"Insufficient price data for {bot.symbol}: {len(samples)} samples"
        )

    scenario = target_chooser(trade_type, target_percent, unlucky)(samples)
    profit_amount = round(bot.start_amount * scenario.profit_percent / 100, 2)
    logger.info(
        f"[bot_{bot_id}] Manual preview {trade_type} target={target_percent}% "
        f"unlucky={unlucky}: {scenario.leverage}x {scenario.profit_percent:+.2f}%"
    )
    return {
        "bot_id": bot_id,
        "trade_type": scenario.direction,
        "buy_price": scenario.buy_price,
        "sell_price": scenario.sell_price,
        "entry_price": scenario.entry_price,
        "exit_price": scenario.exit_price,
        "natural_movement": scenario.natural_movement,
        "leverage": scenario.leverage,
        "profit_percent": scenario.profit_percent,
        "profit_amount": profit_amount,
        "final_balance": round(bot.start_amount + profit_amount, 2),
        "price_data_from": samples[0].timestamp.isoformat(),
        "price_data_to": samples[-1].timestamp.isoformat(),
        "price_points_analyzed": len(samples),
    }


async def complete_bot_manually(
    bot_id: int,
    trade_type: str,
    target_percent: float,
    unlucky: bool = False,
    now: datetime | None = None,
) -> SettlementOutcome:
    """Settle one bot now using the targeted scenario."""
    validate_manual_request(trade_type, target_percent)
    _load_active_bot(bot_id)
    logger.info(
        f"[bot_{bot_id}] Manual completion requested: {trade_type} "
        f"target={target_percent}% unlucky={unlucky}"
    )
    return await settle_bot(
        bot_id,
        now=now,
        chooser=target_chooser(trade_type, target_percent, unlucky),
    )
