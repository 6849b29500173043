"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from settler.config import settings
from settler.database import create_db_and_tables
from settler.utils.logging import setup_logging
from settler.api import bots, ledger, system, trades


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    setup_logging()
    create_db_and_tables()
    # Release abandoned claims and report missing credits before the first pass
    from settler.engine.reconcile import reconcile_on_startup
    reconcile_on_startup()
    from settler.engine.scheduler import start_scheduler, stop_scheduler
    start_scheduler()

    # Start Telegram bot if configured
    telegram_bot = None
    if settings.telegram_bot_token:
        from settler.services.telegram_bot import init_bot
        telegram_bot = init_bot()
        telegram_bot.start()

    yield

    if telegram_bot:
        telegram_bot.stop()
    stop_scheduler()


app = FastAPI(
    title="Bot Settlement Engine",
    description="Scheduled settlement of simulated trading bots with admin API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(bots.router)
app.include_router(trades.router)
app.include_router(ledger.router)
app.include_router(system.router)
