"""Shared fixtures: a file-backed SQLite database recreated for every test."""

import os
import tempfile
from datetime import datetime, timedelta, timezone

_db_dir = tempfile.mkdtemp(prefix="settler-tests-")
os.environ["BS_DATABASE_URL"] = f"sqlite:///{os.path.join(_db_dir, 'settler.db')}"
os.environ["BS_ADMIN_API_KEY"] = "test-admin-key"
os.environ.setdefault("BS_TELEGRAM_BOT_TOKEN", "")

import pytest  # noqa: E402
from sqlmodel import Session, SQLModel  # noqa: E402

import settler.models  # noqa: E402,F401
from settler.database import create_db_and_tables, engine  # noqa: E402
from settler.engine import settlement_job  # noqa: E402
from settler.models.bot import TradingBot  # noqa: E402
from settler.models.ledger import UserAccount  # noqa: E402
from settler.models.price import PriceSample  # noqa: E402
from settler.models.trade import BotTrade  # noqa: E402
from settler.services import notifications  # noqa: E402

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def db():
    SQLModel.metadata.drop_all(engine)
    create_db_and_tables()
    notifications._subscribers.clear()
    settlement_job._last_pass = None
    yield
    notifications._subscribers.clear()


@pytest.fixture
def events():
    """Collect notification events published during the test."""
    received = []
    notifications.subscribe(lambda event_type, payload: received.append((event_type, payload)))
    return received


def make_account(balance: float = 0.0, email: str = "trader@example.com") -> int:
    with Session(engine) as session:
        account = UserAccount(email=email, balance=balance)
        session.add(account)
        session.commit()
        session.refresh(account)
        return account.id


def make_bot(
    user_id: int,
    start_amount: float = 1000.0,
    symbol: str = "BTC",
    status: str = "active",
    created_at: datetime | None = None,
    expected_completion_time: datetime | None = None,
) -> int:
    created_at = created_at or NOW - timedelta(hours=4)
    with Session(engine) as session:
        bot = TradingBot(
            user_id=user_id,
            cryptocurrency="Bitcoin",
            symbol=symbol,
            start_amount=start_amount,
            current_balance=start_amount,
            status=status,
            created_at=created_at,
            updated_at=created_at,
            expected_completion_time=expected_completion_time or NOW - timedelta(minutes=1),
        )
        session.add(bot)
        session.commit()
        session.refresh(bot)
        return bot.id


def add_prices(symbol: str, prices: list[float], start: datetime | None = None, step_minutes: int = 30):
    start = start or NOW - timedelta(hours=3)
    with Session(engine) as session:
        for k, price in enumerate(prices):
            session.add(PriceSample(
                symbol=symbol,
                price=price,
                timestamp=start + timedelta(minutes=step_minutes * k),
            ))
        session.commit()


def get_bot(bot_id: int) -> TradingBot:
    with Session(engine) as session:
        bot = session.get(TradingBot, bot_id)
        session.expunge(bot)
        return bot


def complete_without_credit(bot_id: int, amount: float = 1000.0, profit: float = 21.5):
    """Simulate a crash between the trade commit and the ledger credit."""
    with Session(engine) as session:
        bot = session.get(TradingBot, bot_id)
        bot.status = "completed"
        bot.current_balance = amount + profit
        session.add(bot)
        session.add(BotTrade(
            bot_id=bot_id,
            trade_type="short",
            amount=amount,
            buy_price=99.0,
            sell_price=101.0,
            entry_price=101.0,
            exit_price=99.0,
            natural_movement=1.98,
            leverage=1,
            profit_amount=profit,
            profit_percentage=profit / amount * 100,
            started_at=NOW - timedelta(hours=4),
            completed_at=NOW,
        ))
        session.commit()
