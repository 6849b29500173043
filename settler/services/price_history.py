"""Price window queries against the historical price store.

The store is populated by an external ingestion feed; this module only reads it.
"""

import asyncio
import logging
from datetime import datetime

from sqlmodel import Session, select

from settler.database import engine
from settler.models.price import PriceSample

logger = logging.getLogger(__name__)


def get_prices(symbol: str, start: datetime, end: datetime) -> list[PriceSample]:
    """Samples for `symbol` with start <= timestamp <= end, oldest first.

    An empty or single-sample result is a valid answer; callers treat it as
    insufficient data.
    """
    with Session(engine) as session:
        return list(session.exec(
            select(PriceSample)
            .where(PriceSample.symbol == symbol)
            .where(PriceSample.timestamp >= start)
            .where(PriceSample.timestamp <= end)
            .order_by(PriceSample.timestamp, PriceSample.id)
        ).all())


async def fetch_price_window(
    symbol: str,
    start: datetime,
    end: datetime,
    timeout: float,
) -> list[PriceSample]:
    """Run `get_prices` off the event loop, bounded by `timeout` seconds.

    Raises asyncio.TimeoutError if the store does not answer in time. The
    worker thread is left to finish on its own; it only reads.
    """
    loop = asyncio.get_running_loop()
    # get_prices is synchronous DB I/O, run it off the event loop
    samples = await asyncio.wait_for(
        loop.run_in_executor(None, get_prices, symbol, start, end),
        timeout=timeout,
    )
    logger.debug(f"Fetched {len(samples)} {symbol} samples from {start} to {end}")
    return samples
