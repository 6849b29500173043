"""SQLModel database engine and session management."""

import logging

from sqlalchemy import inspect
from sqlmodel import SQLModel, create_engine, Session

from settler.config import settings

logger = logging.getLogger(__name__)

# SQLite needs check_same_thread=False; PostgreSQL does not
connect_args = {}
if settings.database_url.startswith("sqlite"):
    connect_args["check_same_thread"] = False

engine = create_engine(
    settings.database_url,
    echo=False,
    connect_args=connect_args,
)

# Unique indexes that settlement correctness relies on: (table, column, index name)
_REQUIRED_UNIQUE_INDEXES = [
    ("bot_trade", "bot_id", "ix_bot_trade_bot_id_unique"),
    ("ledger_transaction", "reference", "ix_ledger_transaction_reference_unique"),
]


def _run_migrations():
    """Ensure one-trade-per-bot and one-credit-per-reference on databases created
    before those constraints existed."""
    from sqlalchemy import text

    inspector = inspect(engine)
    tables = set(inspector.get_table_names())

    for table, column, index_name in _REQUIRED_UNIQUE_INDEXES:
        if table not in tables:
            continue
        has_unique = any(
            idx.get("unique") and idx["column_names"] == [column]
            for idx in inspector.get_indexes(table)
        ) or any(
            uc["column_names"] == [column]
            for uc in inspector.get_unique_constraints(table)
        )
        if not has_unique:
            logger.info(f"Migrating: adding unique index {index_name} on {table}.{column}")
            with engine.connect() as conn:
                conn.execute(text(f"CREATE UNIQUE INDEX {index_name} ON {table} ({column})"))
                conn.commit()


def create_db_and_tables():
    """Create all tables. Called on startup."""
    import settler.models  # noqa: F401  registers tables on SQLModel.metadata

    SQLModel.metadata.create_all(engine)
    _run_migrations()


def get_session() -> Session:
    """Dependency that yields a database session."""
    with Session(engine) as session:
        yield session
