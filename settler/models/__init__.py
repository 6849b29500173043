"""Database models."""

from settler.models.ledger import UserAccount, LedgerTransaction
from settler.models.bot import TradingBot
from settler.models.trade import BotTrade
from settler.models.price import PriceSample
from settler.models.job_log import JobLog

__all__ = [
    "UserAccount",
    "LedgerTransaction",
    "TradingBot",
    "BotTrade",
    "PriceSample",
    "JobLog",
]
