"""PriceSample model — historical prices written by the ingestion feed."""

from datetime import datetime, timezone

from sqlalchemy import Index
from sqlmodel import SQLModel, Field


class PriceSample(SQLModel, table=True):
    __tablename__ = "price_history"
    __table_args__ = (Index("ix_price_history_symbol_timestamp", "symbol", "timestamp"),)

    id: int | None = Field(default=None, primary_key=True)
    symbol: str
    price: float
    volume: float | None = None
    change_24h: float | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
