"""Ledger models — user balances and the append-only transaction log."""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class UserAccount(SQLModel, table=True):
    __tablename__ = "user_account"

    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True)
    balance: float = 0.0  # equals new_balance of the latest LedgerTransaction
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class LedgerTransaction(SQLModel, table=True):
    __tablename__ = "ledger_transaction"

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user_account.id", index=True)
    type: str  # "credit" or "debit"
    amount: float  # signed delta
    previous_balance: float
    new_balance: float
    description: str
    # Idempotency key, e.g. "bot:42" for a settlement credit
    reference: str | None = Field(default=None, unique=True, index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
