"""Trade history API."""

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from settler.database import get_session
from settler.models.trade import BotTrade
from settler.api.deps import require_admin

router = APIRouter(prefix="/api/trades", tags=["trades"], dependencies=[Depends(require_admin)])


@router.get("")
def list_trades(
    bot_id: int | None = None,
    trade_type: str | None = None,
    limit: int = 50,
    offset: int = 0,
    session: Session = Depends(get_session),
):
    stmt = select(BotTrade).order_by(BotTrade.completed_at.desc())
    if bot_id is not None:
        stmt = stmt.where(BotTrade.bot_id == bot_id)
    if trade_type is not None:
        stmt = stmt.where(BotTrade.trade_type == trade_type)
    stmt = stmt.offset(offset).limit(limit)
    return session.exec(stmt).all()


@router.get("/{trade_id}")
def get_trade(trade_id: int, session: Session = Depends(get_session)):
    trade = session.get(BotTrade, trade_id)
    if not trade:
        raise HTTPException(status_code=404, detail="Trade not found")
    return trade
