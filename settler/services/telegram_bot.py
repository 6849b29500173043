"""Telegram bot for settlement notifications and operator commands."""

import asyncio
import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.ext import (
    Application,
    CommandHandler,
    CallbackQueryHandler,
    ContextTypes,
)
from sqlmodel import Session, select, func

from settler.config import settings

logger = logging.getLogger(__name__)

_bot_instance: Optional["TelegramBot"] = None


class TelegramBot:
    """Telegram bot running in a background thread with its own event loop."""

    def __init__(self, token: str, chat_ids: list[int]):
        self.token = token
        self.chat_ids = set(chat_ids)
        self._app: Optional[Application] = None
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def _is_authorized(self, user_id: int) -> bool:
        return user_id in self.chat_ids

    async def _check_auth(self, update: Update) -> bool:
        if not update.effective_user or not self._is_authorized(update.effective_user.id):
            if update.message:
                await update.message.reply_text("Unauthorized.")
            return False
        return True

    async def _cmd_status(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return

        from settler.engine.scheduler import get_scheduler_status
        from settler.database import engine
        from settler.models.bot import TradingBot
        from settler.utils.constants import BOT_ACTIVE, BOT_PROCESSING

        status = get_scheduler_status()
        with Session(engine) as session:
            active = session.exec(
                select(func.count()).select_from(TradingBot).where(TradingBot.status == BOT_ACTIVE)
            ).one()
            processing = session.exec(
                select(func.count()).select_from(TradingBot).where(TradingBot.status == BOT_PROCESSING)
            ).one()

        scheduler_str = "running" if status["running"] else "stopped"
        last = status.get("last_pass") or {}
        text = (
            f"Scheduler: {scheduler_str}\n"
            f"Active bots: {active}\n"
            f"Claimed (processing): {processing}\n"
            f"Last pass: {last.get('counts', 'n/a')}"
        )
        await update.message.reply_text(text)

    async def _cmd_due(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return

        from settler.engine.settlement_job import list_due_bots

        bots = list_due_bots(datetime.now(timezone.utc))
        if not bots:
            await update.message.reply_text("No bots due.")
            return

        lines = [
            f"#{b.id} {b.symbol} | {b.start_amount:.2f} | due {b.expected_completion_time:%Y-%m-%d %H:%M}"
            for b in bots[:30]
        ]
        if len(bots) > 30:
            lines.append(f"... and {len(bots) - 30} more")
        await update.message.reply_text("\n".join(lines))

    async def _cmd_run(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return

        from settler.engine.scheduler import submit_pass

        await update.message.reply_text("Running settlement pass...")
        # The pass runs on the service's event loop, not this thread's
        summary = await asyncio.wrap_future(submit_pass())
        await update.message.reply_text(f"Pass done: {summary['counts']}")

    async def _cmd_reconcile(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return

        from settler.engine.reconcile import reconcile_settlements

        report = reconcile_settlements(apply=False)
        if not report["unreconciled"]:
            await update.message.reply_text("All settlements reconciled.")
            return

        keyboard = InlineKeyboardMarkup([
            [
                InlineKeyboardButton("Yes, apply credits", callback_data="confirm_reconcile"),
                InlineKeyboardButton("Cancel", callback_data="cancel"),
            ]
        ])
        await update.message.reply_text(
            f"{report['unreconciled']} settlements are missing their ledger credit. Apply now?",
            reply_markup=keyboard,
        )

    async def _handle_callback(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        query = update.callback_query
        if not query or not query.from_user or not self._is_authorized(query.from_user.id):
            return

        await query.answer()

        if query.data == "cancel":
            await query.edit_message_text("Cancelled.")
            return

        if query.data == "confirm_reconcile":
            from settler.engine.reconcile import reconcile_settlements

            await query.edit_message_text("Applying missing credits...")
            report = reconcile_settlements(apply=True)
            errors = f"\nErrors: {len(report['errors'])}" if report["errors"] else ""
            await query.edit_message_text(
                f"Credited {report['credited']} of {report['unreconciled']} settlements.{errors}"
            )

    async def send_notification(self, message: str):
        """Send a message to all whitelisted chat IDs."""
        if not self._app or not self._app.bot:
            return
        for chat_id in self.chat_ids:
            try:
                await self._app.bot.send_message(chat_id=chat_id, text=message)
            except Exception as e:
                logger.warning(f"Failed to send Telegram notification to {chat_id}: {e}")

    def _run_bot(self):
        """Run the bot in a background thread with its own event loop."""
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)

        self._app = (
            Application.builder()
            .token(self.token)
            .build()
        )

        self._app.add_handler(CommandHandler("status", self._cmd_status))
        self._app.add_handler(CommandHandler("due", self._cmd_due))
        self._app.add_handler(CommandHandler("run", self._cmd_run))
        self._app.add_handler(CommandHandler("reconcile", self._cmd_reconcile))
        self._app.add_handler(CallbackQueryHandler(self._handle_callback))

        logger.info("Telegram bot starting...")
        self._loop.run_until_complete(self._app.initialize())
        self._loop.run_until_complete(self._app.start())
        self._loop.run_until_complete(self._app.updater.start_polling())
        self._loop.run_forever()

    def start(self):
        self._thread = threading.Thread(target=self._run_bot, daemon=True)
        self._thread.start()

    def stop(self):
        if self._loop and self._app:
            async def _shutdown():
                await self._app.updater.stop()
                await self._app.stop()
                await self._app.shutdown()

            asyncio.run_coroutine_threadsafe(_shutdown(), self._loop).result(timeout=10)
            self._loop.call_soon_threadsafe(self._loop.stop)


def init_bot() -> TelegramBot:
    """Initialize and return the bot singleton."""
    global _bot_instance
    _bot_instance = TelegramBot(
        token=settings.telegram_bot_token,
        chat_ids=settings.telegram_chat_ids,
    )
    return _bot_instance


def get_bot() -> Optional[TelegramBot]:
    """Get the bot singleton, or None if not initialized."""
    return _bot_instance
