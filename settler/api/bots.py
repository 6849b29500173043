"""Bot API — listing, due bots, on-demand settlement and manual completion."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import update
from sqlmodel import Session, select

from settler.database import get_session
from settler.errors import (
    BotNotFoundError,
    ClaimError,
    InsufficientDataError,
    NoProfitableScenarioError,
)
from settler.models.bot import TradingBot
from settler.models.trade import BotTrade
from settler.schemas.bot import BotStatusUpdate, ManualCompleteRequest, USER_SETTABLE_STATUSES
from settler.api.deps import require_admin

router = APIRouter(prefix="/api/bots", tags=["bots"], dependencies=[Depends(require_admin)])


@router.get("")
def list_bots(
    status: str | None = None,
    user_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
    session: Session = Depends(get_session),
):
    stmt = select(TradingBot).order_by(TradingBot.id.desc())
    if status is not None:
        stmt = stmt.where(TradingBot.status == status)
    if user_id is not None:
        stmt = stmt.where(TradingBot.user_id == user_id)
    stmt = stmt.offset(offset).limit(limit)
    return session.exec(stmt).all()


@router.get("/due")
def due_bots():
    """Active bots whose completion time has passed."""
    from settler.engine.settlement_job import list_due_bots
    return list_due_bots(datetime.now(timezone.utc))


@router.get("/{bot_id}")
def get_bot(bot_id: int, session: Session = Depends(get_session)):
    bot = session.get(TradingBot, bot_id)
    if not bot:
        raise HTTPException(status_code=404, detail="Bot not found")
    trade = session.exec(select(BotTrade).where(BotTrade.bot_id == bot_id)).first()
    return {"bot": bot, "trade": trade}


@router.put("/{bot_id}/status")
def update_status(
    bot_id: int,
    data: BotStatusUpdate,
    session: Session = Depends(get_session),
):
    """Pause, resume or stop a bot. Claimed and completed bots are left alone."""
    bot = session.get(TradingBot, bot_id)
    if not bot:
        raise HTTPException(status_code=404, detail="Bot not found")

    result = session.exec(
        update(TradingBot)
        .where(TradingBot.id == bot_id)
        .where(TradingBot.status.in_(USER_SETTABLE_STATUSES))
        .values(status=data.status, updated_at=datetime.now(timezone.utc))
    )
    if result.rowcount != 1:
        session.rollback()
        raise HTTPException(status_code=409, detail=f"Bot is {bot.status}, status cannot change")
    session.commit()
    session.refresh(bot)
    return bot


@router.post("/{bot_id}/settle")
async def settle(bot_id: int, session: Session = Depends(get_session)):
    """Settle one bot now, regardless of its completion time."""
    from settler.engine.executor import settle_bot

    if not session.get(TradingBot, bot_id):
        raise HTTPException(status_code=404, detail="Bot not found")
    outcome = await settle_bot(bot_id)
    return outcome.to_dict()


@router.post("/{bot_id}/complete")
async def complete(bot_id: int, data: ManualCompleteRequest):
    """Complete a bot with a chosen direction and target result, or preview it."""
    from settler.engine.manual_completion import complete_bot_manually, preview_manual_completion

    try:
        if data.preview:
            trade = preview_manual_completion(
                bot_id, data.trade_type, data.target_profit_percent, unlucky=data.is_unlucky
            )
            return {"preview": True, "trade": trade}
        outcome = await complete_bot_manually(
            bot_id, data.trade_type, data.target_profit_percent, unlucky=data.is_unlucky
        )
    except BotNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ClaimError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except (InsufficientDataError, NoProfitableScenarioError, ValueError) as e:
        raise HTTPException(status_code=422, detail=str(e))

    return {"preview": False, "outcome": outcome.to_dict()}
