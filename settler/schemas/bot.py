"""Pydantic schemas for the bot admin API."""

from pydantic import BaseModel, Field, field_validator

from settler.utils.constants import BOT_ACTIVE, BOT_PAUSED, BOT_STOPPED, TRADE_TYPES

USER_SETTABLE_STATUSES = [BOT_ACTIVE, BOT_PAUSED, BOT_STOPPED]


class ManualCompleteRequest(BaseModel):
    trade_type: str
    target_profit_percent: float = Field(ge=1.0, le=3.0)
    is_unlucky: bool = False
    preview: bool = False

    @field_validator("trade_type")
    @classmethod
    def _validate_trade_type(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in TRADE_TYPES:
            allowed = ", ".join(TRADE_TYPES)
            raise ValueError(f"must be one of: {allowed}")
        return value


class BotStatusUpdate(BaseModel):
    status: str

    @field_validator("status")
    @classmethod
    def _validate_status(cls, value: str) -> str:
        if value not in USER_SETTABLE_STATUSES:
            allowed = ", ".join(USER_SETTABLE_STATUSES)
            raise ValueError(f"must be one of: {allowed}")
        return value
