"""Settlement pass — the function APScheduler calls on each interval.

Lists bots whose completion time has passed and settles each one
independently: a failing, hanging or contended bot never stops the rest of
the batch, and never leaves the pass without a recorded outcome.
"""

import asyncio
import logging
import time
from collections import Counter
from datetime import datetime, timezone
from typing import Any

import numpy as np
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from settler.config import settings
from settler.database import engine
from settler.engine.executor import (
    SettlementOutcome,
    claim_bot,
    log_settlement,
    release_claim,
    settle_claimed_bot,
)
from settler.engine.reconcile import release_stale_claims
from settler.models.bot import TradingBot
from settler.services.notifications import notify
from settler.utils.constants import (
    BOT_ACTIVE,
    EVENT_PASS_ERRORS,
    OUTCOME_ERROR,
    OUTCOME_PARTIAL,
    OUTCOME_SKIPPED,
    OUTCOME_TIMEOUT,
    OUTCOMES,
)

logger = logging.getLogger(__name__)

_last_pass: dict[str, Any] | None = None


def list_due_bots(now: datetime) -> list[TradingBot]:
    """Active bots whose expected completion time is at or before `now`."""
    with Session(engine) as session:
        return list(session.exec(
            select(TradingBot)
            .where(TradingBot.status == BOT_ACTIVE)
            .where(TradingBot.expected_completion_time != None)  # noqa: E711
            .where(TradingBot.expected_completion_time <= now)
            .order_by(TradingBot.expected_completion_time, TradingBot.id)
        ).all())


def get_last_pass() -> dict[str, Any] | None:
    return _last_pass


async def run_settlement_pass(
    now: datetime | None = None,
    rng: np.random.Generator | None = None,
) -> dict[str, Any]:
    """Settle every due bot once. Returns summary counts per outcome.

    Steps:
    1. Return claims abandoned by crashed passes to active
    2. List due bots
    3. Claim and settle each, bounded by max_concurrent_settlements and a
       per-bot timeout
    4. Log and return the counts
    """
    global _last_pass
    now = now or datetime.now(timezone.utc)
    started = time.monotonic()
    logger.info(f"Settlement pass starting at {now.isoformat()}")

    try:
        released = release_stale_claims(now, settings.claim_ttl_minutes)
        bots = list_due_bots(now)
    except SQLAlchemyError as e:
        # Store unavailable: nothing was claimed, the next pass retries
        logger.error(f"Settlement pass aborted, could not list due bots: {e}", exc_info=True)
        _last_pass = {"started_at": now.isoformat(), "due": 0, "counts": {}, "error": str(e)}
        return _last_pass

    logger.info(f"Found {len(bots)} bots ready to complete")

    semaphore = asyncio.Semaphore(max(1, settings.max_concurrent_settlements))

    async def _bounded(bot_id: int) -> SettlementOutcome:
        async with semaphore:
            return await _settle_one(bot_id, now, rng)

    outcomes = await asyncio.gather(*(_bounded(bot.id) for bot in bots))

    counts = {status: 0 for status in OUTCOMES}
    counts.update(Counter(o.status for o in outcomes))
    summary = {
        "started_at": now.isoformat(),
        "due": len(bots),
        "counts": counts,
        "released_stale_claims": released,
        "duration_seconds": round(time.monotonic() - started, 3),
    }
    logger.info(
        f"Settlement pass done in {summary['duration_seconds']}s: "
        + ", ".join(f"{k}={v}" for k, v in counts.items() if v)
    )
    if counts[OUTCOME_ERROR] or counts[OUTCOME_PARTIAL]:
        notify(EVENT_PASS_ERRORS, {"counts": {k: v for k, v in counts.items() if v}})

    _last_pass = summary
    return summary


async def _settle_one(
    bot_id: int,
    now: datetime,
    rng: np.random.Generator | None,
) -> SettlementOutcome:
    """Claim and settle one bot, converting every failure into an outcome."""
    claimed = False
    try:
        if not claim_bot(bot_id, now):
            logger.info(f"[bot_{bot_id}] Claimed elsewhere or no longer active, skipping")
            return SettlementOutcome(bot_id, OUTCOME_SKIPPED, "Claimed elsewhere or no longer active")
        claimed = True

        return await asyncio.wait_for(
            settle_claimed_bot(bot_id, now, rng=rng),
            timeout=settings.settlement_timeout_seconds,
        )
    except asyncio.TimeoutError:
        message = f"Settlement exceeded {settings.settlement_timeout_seconds}s, retrying next pass"
        logger.warning(f"[bot_{bot_id}] {message}")
        log_settlement(bot_id, OUTCOME_TIMEOUT, action="settle", message=message)
        release_claim(bot_id, now, reason="timeout")
        return SettlementOutcome(bot_id, OUTCOME_TIMEOUT, message)
    except Exception as e:
        logger.error(f"[bot_{bot_id}] Settlement error: {e}", exc_info=True)
        log_settlement(bot_id, OUTCOME_ERROR, action="settle", message=str(e))
        if claimed:
            release_claim(bot_id, now, reason="error")
        return SettlementOutcome(bot_id, OUTCOME_ERROR, str(e))
