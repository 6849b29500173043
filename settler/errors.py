"""Settlement error taxonomy."""


class SettlementError(Exception):
    """Base class for per-bot settlement failures."""


class InsufficientDataError(SettlementError):
    """Fewer than two price samples in the bot's window."""


class NoProfitableScenarioError(SettlementError):
    """No (pair, leverage) candidate satisfies the requested band."""


class ClaimError(SettlementError):
    """The bot is not active, or another flow already holds its claim."""


class PersistenceError(SettlementError):
    """The trade insert or bot transition could not be committed."""


class LedgerError(SettlementError):
    """A balance change could not be applied."""


class AccountNotFoundError(LedgerError):
    pass


class BotNotFoundError(SettlementError):
    pass
