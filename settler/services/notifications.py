"""Outbound notification events (fire-and-forget).

Settlement publishes events here and moves on; delivery happens on the
subscribers' and the Telegram bot's own time. A failing sink is logged and
never propagates to the caller.
"""

import asyncio
import logging
from typing import Any, Callable

from settler.utils.constants import (
    EVENT_BOT_COMPLETED,
    EVENT_PASS_ERRORS,
    EVENT_SETTLEMENT_PARTIAL,
)

logger = logging.getLogger(__name__)

Subscriber = Callable[[str, dict[str, Any]], None]
_subscribers: list[Subscriber] = []


def subscribe(callback: Subscriber):
    """Register an in-process sink called with (event_type, payload)."""
    _subscribers.append(callback)


def unsubscribe(callback: Subscriber):
    if callback in _subscribers:
        _subscribers.remove(callback)


def format_message(event_type: str, payload: dict[str, Any]) -> str:
    """Render an event as a one-line operator message."""
    bot = f"[bot_{payload.get('bot_id', '?')}]"
    if event_type == EVENT_BOT_COMPLETED:
        return (
            f"{bot} Completed {payload.get('symbol')} {payload.get('trade_type')} "
            f"{payload.get('leverage')}x | {payload.get('profit_percent', 0):+.2f}% "
            f"({payload.get('profit_amount', 0):+.2f}) on {payload.get('start_amount', 0):.2f}"
        )
    if event_type == EVENT_SETTLEMENT_PARTIAL:
        return (
            f"{bot} PARTIAL settlement: trade recorded but credit of "
            f"{payload.get('final_balance', 0):.2f} to user {payload.get('user_id')} failed. "
            f"Run reconcile. ({payload.get('error')})"
        )
    if event_type == EVENT_PASS_ERRORS:
        return f"Settlement pass finished with errors: {payload.get('counts')}"
    return f"{event_type}: {payload}"


def _deliver(callback: Subscriber, event_type: str, payload: dict[str, Any]):
    try:
        callback(event_type, payload)
    except Exception as e:
        logger.warning(f"Notification subscriber failed for {event_type}: {e}")


def notify(event_type: str, payload: dict[str, Any]):
    """Publish an event to every subscriber and to Telegram, if running.

    On a running event loop subscribers are scheduled with ``call_soon`` and
    run once the caller yields. Without a loop they are called inline.
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None
    for callback in list(_subscribers):
        if loop is not None:
            loop.call_soon(_deliver, callback, event_type, payload)
        else:
            _deliver(callback, event_type, payload)

    try:
        from settler.services.telegram_bot import get_bot
        bot = get_bot()
        if bot and bot._loop:
            asyncio.run_coroutine_threadsafe(
                bot.send_notification(format_message(event_type, payload)), bot._loop
            )
    except Exception as e:
        logger.warning(f"Failed to dispatch {event_type} notification to Telegram: {e}")
