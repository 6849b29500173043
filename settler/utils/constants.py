"""Shared status values and defaults."""

# TradingBot.status
BOT_ACTIVE = "active"
BOT_PAUSED = "paused"
BOT_STOPPED = "stopped"
BOT_PROCESSING = "processing"  # transient claim held by one settlement flow
BOT_COMPLETED = "completed"

BOT_STATUSES = [BOT_ACTIVE, BOT_PAUSED, BOT_STOPPED, BOT_PROCESSING, BOT_COMPLETED]

# Trade direction
LONG = "long"
SHORT = "short"
TRADE_TYPES = [LONG, SHORT]

# Settlement outcomes, also used as JobLog.status
OUTCOME_COMPLETED = "completed"
OUTCOME_SKIPPED = "skipped"
OUTCOME_NO_DATA = "no_data"
OUTCOME_NO_SCENARIO = "no_scenario"
OUTCOME_TIMEOUT = "timeout"
OUTCOME_PARTIAL = "partial"
OUTCOME_ERROR = "error"

OUTCOMES = [
    OUTCOME_COMPLETED,
    OUTCOME_SKIPPED,
    OUTCOME_NO_DATA,
    OUTCOME_NO_SCENARIO,
    OUTCOME_TIMEOUT,
    OUTCOME_PARTIAL,
    OUTCOME_ERROR,
]

# Notification event types
EVENT_BOT_COMPLETED = "bot_completed"
EVENT_SETTLEMENT_PARTIAL = "settlement_partial"
EVENT_PASS_ERRORS = "settlement_pass_errors"


def settlement_reference(bot_id: int) -> str:
    """Idempotency key for the ledger credit of one bot."""
    return f"bot:{bot_id}"
