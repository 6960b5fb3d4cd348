"""Telegram bot for spread bot notifications and remote control."""

import asyncio
import logging
import threading
from typing import TYPE_CHECKING, Optional

from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.ext import (
    Application,
    CommandHandler,
    CallbackQueryHandler,
    ContextTypes,
)

from spreadlab.services.notifier import BotEvent
from spreadlab.utils.timeutils import format_duration

if TYPE_CHECKING:
    from spreadlab.engine.bot import SpreadBot

logger = logging.getLogger(__name__)

REASON_LABELS = {
    "stop_loss": "Stop loss",
    "mean_reversion": "Mean reversion",
    "take_profit": "Take profit",
    "max_holding_time": "Max holding time",
    "manual": "Manual",
}


def _signed(value: float) -> str:
    return f"{value:+.2f}"


def _win_rate(stats: dict) -> str:
    total = stats.get("total_trades", 0)
    return f"{stats.get('winning_trades', 0) / total * 100:.1f}%" if total else "0%"


def format_event(event: BotEvent) -> str | None:
    """Plain-text message for a notifier event, or None for events not forwarded."""
    d = event.data
    if event.type == "spread_opened":
        tag = " [OPT]" if d.get("is_optimized") else ""
        return (
            f"OPENED {d['pair_id'].upper()} ({d['mode'].upper()}){tag}\n"
            f"Signal: {d['signal']}\n"
            f"Size: {d['size_usd']:.0f} USD\n"
            f"Z-score: {d['z_score']:.2f} (exit < {d['z_exit']})"
        )
    if event.type == "spread_closed":
        pct = d["pnl"] / d["size_usd"] * 100 if d["size_usd"] else 0.0
        reason = d.get("detail") or REASON_LABELS.get(d["reason"], d["reason"])
        return (
            f"CLOSED {d['pair_id'].upper()} ({d['mode'].upper()})\n"
            f"PnL: {_signed(d['pnl'])} USD ({_signed(pct)}%)\n"
            f"Reason: {reason}\n"
            f"Duration: {format_duration(d['duration_ms'])}"
        )
    if event.type == "bot_started":
        c = d["config"]
        return (
            f"Bot started ({c['mode'].upper()})\n"
            f"Position size: {c['max_position_usd']:.0f} USD | Max spreads: {c['max_concurrent_spreads']}\n"
            f"Min quality: {c['min_quality_stars']} stars | Z-entry: ±{c['z_entry_threshold']}\n"
            f"Stop loss: {c['stop_loss_percent']}%"
        )
    if event.type == "bot_stopped":
        s = d["stats"]
        return (
            f"Bot stopped\n"
            f"Total PnL: {_signed(s['total_pnl'])} USD\n"
            f"Trades: {s['total_trades']} | Win rate: {_win_rate(s)}"
        )
    if event.type == "daily_report":
        s = d["stats"]
        return (
            f"Daily report\n"
            f"Balance: {s['paper_balance']:.2f} USD | Equity: {s['equity']:.2f} USD\n"
            f"Today: {d['trades_today']} trades, {_signed(d['pnl_today'])} USD, "
            f"{d['wins_today']}/{d['trades_today']} winners\n"
            f"Overall: {s['total_trades']} trades, win rate {_win_rate(s)}, "
            f"PnL {_signed(s['total_pnl'])} USD\n"
            f"Open spreads: {d['open_spreads']}"
        )
    if event.type in ("error", "warning"):
        prefix = "ERROR" if event.type == "error" else "WARNING"
        return f"{prefix}: {d.get('message', '')}"
    return None


class TelegramBot:
    """Telegram bot running in a background thread with its own event loop.

    Commands that change bot state are submitted to the main loop, which owns
    the bot's lock.
    """

    def __init__(self, token: str, chat_ids: list[int], bot: "SpreadBot"):
        self.token = token
        self.chat_ids = set(chat_ids)
        self.bot = bot
        self._app: Optional[Application] = None
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._main_loop: Optional[asyncio.AbstractEventLoop] = None
        self._unsubscribe = None

    def _is_authorized(self, user_id: int) -> bool:
        return user_id in self.chat_ids

    async def _check_auth(self, update: Update) -> bool:
        if not update.effective_user or not self._is_authorized(update.effective_user.id):
            if update.message:
                await update.message.reply_text("Unauthorized.")
            return False
        return True

    async def _on_main_loop(self, coro):
        """Run a bot coroutine on the main loop and await its result from here."""
        future = asyncio.run_coroutine_threadsafe(coro, self._main_loop)
        return await asyncio.wrap_future(future)

    async def _cmd_status(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return

        state = self.bot.get_state(recent_trades=0)
        text = (
            f"Bot: {'running' if state.config.enabled else 'stopped'} ({state.config.mode.upper()})\n"
            f"Balance: {state.paper_balance:.2f} USD\n"
            f"Equity: {state.equity:.2f} USD (drawdown {state.drawdown_pct:.2f}%)\n"
            f"Total PnL: {_signed(state.total_pnl)} USD\n"
            f"Trades: {state.total_trades} ({state.winning_trades} winners)\n"
            f"Open spreads: {len(state.open_spreads)}"
        )
        await update.message.reply_text(text)

    async def _cmd_positions(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return

        spreads = self.bot.repository.get_open_spreads()
        if not spreads:
            await update.message.reply_text("No open spreads.")
            return

        lines = [
            f"{s.pair_id.upper()}: {s.signal} | z={s.entry_z_score:.2f} | "
            f"${s.size_usd:.0f} | PnL {_signed(s.current_pnl)}"
            for s in spreads
        ]
        await update.message.reply_text("\n".join(lines))

    async def _cmd_close_all(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return

        keyboard = InlineKeyboardMarkup([
            [
                InlineKeyboardButton("Yes, close all", callback_data="confirm_close_all"),
                InlineKeyboardButton("Cancel", callback_data="cancel"),
            ]
        ])
        await update.message.reply_text(
            "Close all spreads (bot keeps running)?",
            reply_markup=keyboard,
        )

    async def _cmd_stop(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return

        keyboard = InlineKeyboardMarkup([
            [
                InlineKeyboardButton("Yes, stop the bot", callback_data="confirm_stop"),
                InlineKeyboardButton("Cancel", callback_data="cancel"),
            ]
        ])
        await update.message.reply_text(
            "Stop the bot? Open spreads stay open.",
            reply_markup=keyboard,
        )

    async def _cmd_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return

        config = await self._on_main_loop(self.bot.start())
        await update.message.reply_text(f"Bot enabled ({config.mode.upper()}).")

    async def _handle_callback(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        query = update.callback_query
        if not query or not query.from_user or not self._is_authorized(query.from_user.id):
            return

        await query.answer()

        if query.data == "cancel":
            await query.edit_message_text("Cancelled.")
            return

        if query.data == "confirm_close_all":
            await query.edit_message_text("Closing all spreads...")
            result = await self._on_main_loop(self.bot.close_all())
            errors = f"\nErrors: {len(result['errors'])}" if result["errors"] else ""
            await query.edit_message_text(
                f"Closed {result['positions_closed']} spreads.{errors}"
            )

        elif query.data == "confirm_stop":
            await self._on_main_loop(self.bot.stop())
            await query.edit_message_text("Bot stopped.")

    async def send_notification(self, message: str):
        """Send a message to all whitelisted chat IDs."""
        if not self._app or not self._app.bot:
            return
        for chat_id in self.chat_ids:
            try:
                await self._app.bot.send_message(chat_id=chat_id, text=message)
            except Exception as e:
                logger.warning(f"Failed to send Telegram notification to {chat_id}: {e}")

    def handle_event(self, event: BotEvent):
        """Notifier handler: forward the event to the bot thread."""
        text = format_event(event)
        if text is None or self._loop is None:
            return
        asyncio.run_coroutine_threadsafe(self.send_notification(text), self._loop)

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
        self._app.add_handler(CommandHandler("positions", self._cmd_positions))
        self._app.add_handler(CommandHandler("close_all", self._cmd_close_all))
        self._app.add_handler(CommandHandler("stop", self._cmd_stop))
        self._app.add_handler(CommandHandler("start", self._cmd_start))
        self._app.add_handler(CallbackQueryHandler(self._handle_callback))

        logger.info("Telegram bot starting...")
        self._loop.run_until_complete(self._app.initialize())
        self._loop.run_until_complete(self._app.start())
        self._loop.run_until_complete(self._app.updater.start_polling())
        self._loop.run_forever()

    def start(self):
        """Start polling; must be called from the main event loop."""
        self._main_loop = asyncio.get_running_loop()
        self._unsubscribe = self.bot.notifier.subscribe(self.handle_event)
        self._thread = threading.Thread(target=self._run_bot, daemon=True)
        self._thread.start()

    def stop(self):
        if self._unsubscribe:
            self._unsubscribe()
        if self._loop and self._app:
            async def _shutdown():
                await self._app.updater.stop()
                await self._app.stop()
                await self._app.shutdown()

            asyncio.run_coroutine_threadsafe(_shutdown(), self._loop).result(timeout=10)
            self._loop.call_soon_threadsafe(self._loop.stop)
