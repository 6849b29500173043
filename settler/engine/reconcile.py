"""Settlement reconciliation — repair state left behind by crashes and credit failures.

Scenarios handled:
1. Bot completed, trade recorded, no ledger credit for "bot:<id>" → partial
   settlement; reported, and credited when applying
2. Bot stuck in processing past the claim TTL → claim returned to active so
   the next pass retries it
3. Bot completed without any trade record → reported for manual review
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import update
from sqlmodel import Session, select

from settler.database import engine
from settler.models.bot import TradingBot
from settler.models.job_log import JobLog
from settler.models.ledger import LedgerTransaction
from settler.models.trade import BotTrade
from settler.services import ledger
from settler.utils.constants import (
    BOT_ACTIVE,
    BOT_COMPLETED,
    BOT_PROCESSING,
    settlement_reference,
)

logger = logging.getLogger(__name__)


def release_stale_claims(now: datetime, ttl_minutes: int) -> int:
    """Return bots claimed more than `ttl_minutes` ago to active. Returns the count."""
    cutoff = now - timedelta(minutes=ttl_minutes)
    with Session(engine) as session:
        stale = session.exec(
            select(TradingBot.id)
            .where(TradingBot.status == BOT_PROCESSING)
            .where(TradingBot.claimed_at < cutoff)
        ).all()
        if not stale:
            return 0

        session.exec(
            update(TradingBot)
            .where(TradingBot.id.in_(stale))
            .where(TradingBot.status == BOT_PROCESSING)
            .where(TradingBot.claimed_at < cutoff)
            .values(status=BOT_ACTIVE, claimed_at=None, updated_at=now)
        )
        for bot_id in stale:
            logger.warning(f"[bot_{bot_id}] Releasing stale claim older than {ttl_minutes}m")
            _log_reconcile_event(
                session, bot_id, "claim_released",
                f"Stale processing claim older than {ttl_minutes}m returned to active",
            )
        session.commit()
    return len(stale)


def find_unreconciled_settlements(session: Session) -> list[tuple[TradingBot, BotTrade]]:
    """Completed bots with a completed trade but no settlement credit."""
    rows = session.exec(
        select(TradingBot, BotTrade)
        .join(BotTrade, BotTrade.bot_id == TradingBot.id)
        .where(TradingBot.status == BOT_COMPLETED)
        .where(BotTrade.status == "completed")
        .order_by(TradingBot.id)
    ).all()
    if not rows:
        return []

    credited = set(session.exec(
        select(LedgerTransaction.reference)
        .where(LedgerTransaction.reference.in_([settlement_reference(b.id) for b, _ in rows]))
    ).all())
    return [(bot, trade) for bot, trade in rows if settlement_reference(bot.id) not in credited]


def find_completed_without_trade(session: Session) -> list[TradingBot]:
    return list(session.exec(
        select(TradingBot)
        .outerjoin(BotTrade, BotTrade.bot_id == TradingBot.id)
        .where(TradingBot.status == BOT_COMPLETED)
        .where(BotTrade.id == None)  # noqa: E711
    ).all())


def reconcile_settlements(apply: bool = False) -> dict[str, Any]:
    """Report settlements missing their credit and, with `apply`, credit them.

    Crediting uses the settlement reference, so running this twice (or
    concurrently with a late credit) never credits a bot more than once.
    Returns counts plus per-bot error messages.
    """
    from settler.engine.executor import credit_description

    result = {"unreconciled": 0, "credited": 0, "missing_trade": 0, "errors": []}

    with Session(engine) as session:
        pending = find_unreconciled_settlements(session)
        orphans = find_completed_without_trade(session)
        for bot, trade in pending:
            session.expunge(bot)
            session.expunge(trade)

    result["unreconciled"] = len(pending)
    result["missing_trade"] = len(orphans)

    for bot in orphans:
        logger.warning(
            f"[bot_{bot.id}] Completed without a trade record. Manual review recommended."
        )

    for bot, trade in pending:
        amount = round(trade.amount + trade.profit_amount, 2)
        logger.warning(
            f"[bot_{bot.id}] Settlement credit missing: trade {trade.id} recorded, "
            f"{amount:.2f} not credited to user {bot.user_id}"
        )
        if not apply:
            continue
        try:
            new_balance = ledger.credit_balance(
                bot.user_id,
                amount,
                credit_description(bot.cryptocurrency, trade.profit_percentage),
                reference=settlement_reference(bot.id),
            )
        except Exception as e:
            message = f"Bot {bot.id}: credit of {amount:.2f} failed: {e}"
            logger.error(message)
            result["errors"].append(message)
            continue

        result["credited"] += 1
        with Session(engine) as session:
            _log_reconcile_event(
                session, bot.id, "reconcile",
                f"Applied missing settlement credit {amount:.2f} (balance now {new_balance:.2f})",
                status="completed",
            )
            session.commit()

    if pending or orphans:
        logger.info(
            f"Reconciliation: {result['unreconciled']} missing credits, "
            f"{result['credited']} applied, {result['missing_trade']} completed without trade"
        )
    return result


def reconcile_on_startup() -> dict[str, Any]:
    """Release stale claims and report (not apply) missing credits.

    Called once during startup before the scheduler begins running.
    """
    from settler.config import settings

    released = release_stale_claims(datetime.now(timezone.utc), settings.claim_ttl_minutes)
    report = reconcile_settlements(apply=False)
    report["released_stale_claims"] = released
    if report["unreconciled"]:
        logger.error(
            f"Startup reconciliation: {report['unreconciled']} settlements need their ledger "
            f"credit applied (python -m settler.cli reconcile --apply)"
        )
    else:
        logger.info("Startup reconciliation complete, all settlements credited")
    return report


def _log_reconcile_event(
    session: Session,
    bot_id: int,
    action: str,
    message: str,
    status: str = "warning",
):
    """Write a reconciliation event to the job log."""
    session.add(JobLog(
        bot_id=bot_id,
        status=status,
        action=action,
        message=message,
    ))
