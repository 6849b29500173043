"""JobLog model — audit entry for every settlement attempt and reconciliation event."""

from datetime import datetime, timezone
from typing import Any

from sqlmodel import SQLModel, Field, Column
from sqlalchemy import JSON


class JobLog(SQLModel, table=True):
    __tablename__ = "job_log"

    id: int | None = Field(default=None, primary_key=True)
    bot_id: int | None = Field(default=None, index=True)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status: str  # an outcome from utils.constants.OUTCOMES, or "warning"
    action: str | None = None  # "settle", "claim_released", "reconcile", ...
    message: str | None = None
    details: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
