"""TradingBot model — a simulated leveraged position awaiting settlement."""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class TradingBot(SQLModel, table=True):
    __tablename__ = "trading_bot"

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user_account.id", index=True)
    cryptocurrency: str  # display name, e.g. "Bitcoin"
    symbol: str = Field(index=True)  # e.g. "BTC"
    start_amount: float  # principal, debited from the owner's balance at creation
    current_balance: float = 0.0  # mirrors start_amount until completed
    status: str = Field(default="active", index=True)  # see utils.constants.BOT_STATUSES

    # Filled in at settlement, for display
    position_type: str | None = None  # "long" or "short"
    leverage: int | None = None
    buy_price: float | None = None
    sell_price: float | None = None
    entry_price: float | None = None
    exit_price: float | None = None

    expected_completion_time: datetime | None = Field(default=None, index=True)
    claimed_at: datetime | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
