"""BotTrade model — immutable settlement record, at most one per bot."""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class BotTrade(SQLModel, table=True):
    __tablename__ = "bot_trade"

    id: int | None = Field(default=None, primary_key=True)
    bot_id: int = Field(foreign_key="trading_bot.id", index=True, unique=True)
    trade_type: str  # "long" or "short"
    amount: float  # principal
    buy_price: float
    sell_price: float
    entry_price: float
    exit_price: float
    natural_movement: float  # % move between entry and exit, before leverage
    leverage: int
    profit_amount: float
    profit_percentage: float
    status: str = "completed"  # "completed" or "failed"
    started_at: datetime
    completed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
