"""Tests for the in-process notifier and Telegram message formatting."""

import logging

import pytest

from spreadlab.services.notifier import BotEvent, Notifier
from spreadlab.services.telegram_bot import format_event
from spreadlab.models.spread import TradeRecord
from factories import NOW, make_spread


# ---------------------------------------------------------------------------
# 1. Notifier
# ---------------------------------------------------------------------------

class TestNotifier:
    def test_sync_handlers_receive_events(self):
        notifier = Notifier()
        received = []
        notifier.subscribe(received.append)

        notifier.publish("warning", message="careful")

        assert len(received) == 1
        assert received[0].type == "warning"
        assert received[0].data == {"message": "careful"}

    def test_unknown_event_type_rejected(self):
        notifier = Notifier()
        received = []
        notifier.subscribe(received.append)

        with pytest.raises(ValueError, match="spread_exploded"):
            notifier.publish("spread_exploded")
        assert received == []

    def test_unsubscribe(self):
        notifier = Notifier()
        received = []
        unsubscribe = notifier.subscribe(received.append)
        unsubscribe()
        unsubscribe()
        notifier.publish("error", message="x")
        assert received == []

    def test_failing_handler_does_not_block_others(self, caplog):
        notifier = Notifier()
        received = []

        def broken(event):
            raise RuntimeError("sink down")

        notifier.subscribe(broken)
        notifier.subscribe(received.append)
        with caplog.at_level(logging.WARNING):
            notifier.publish("error", message="x")

        assert len(received) == 1
        assert "sink down" in caplog.text

    @pytest.mark.asyncio
    async def test_async_handlers_are_scheduled(self):
        notifier = Notifier()
        received = []

        async def handler(event):
            received.append(event.type)

        notifier.subscribe(handler)
        notifier.publish("bot_started", config={})
        await notifier.flush()
        assert received == ["bot_started"]

    def test_async_handler_without_loop_is_dropped(self, caplog):
        notifier = Notifier()

        async def handler(event):
            pass

        notifier.subscribe(handler)
        with caplog.at_level(logging.WARNING):
            notifier.publish("bot_started", config={})
        assert "No event loop" in caplog.text

    def test_notify_closed_payload(self):
        notifier = Notifier()
        received = []
        notifier.subscribe(received.append)
        trade = TradeRecord.from_spread(
            make_spread(), exit_price_a=2200.0, exit_price_b=50000.0,
            exit_time=NOW + 3_600_000, exit_reason="take_profit", final_pnl=9.0,
        )

        notifier.notify_closed(trade, "Take profit")

        data = received[0].data
        assert data["pair_id"] == "eth-btc"
        assert data["pnl"] == 9.0
        assert data["duration_ms"] == 3_600_000


# ---------------------------------------------------------------------------
# 2. Telegram formatting
# ---------------------------------------------------------------------------

class TestFormatEvent:
    def test_spread_opened(self):
        text = format_event(BotEvent("spread_opened", {
            "pair_id": "eth-btc", "mode": "paper", "signal": "LONG", "size_usd": 100.0,
            "z_score": -2.31, "z_exit": 0.5, "is_optimized": True,
        }))
        assert text.startswith("OPENED ETH-BTC (PAPER) [OPT]")
        assert "Z-score: -2.31" in text

    def test_spread_closed(self):
        text = format_event(BotEvent("spread_closed", {
            "pair_id": "eth-btc", "mode": "live", "pnl": -5.0, "size_usd": 100.0,
            "reason": "stop_loss", "detail": None, "duration_ms": 90 * 60_000,
        }))
        assert "PnL: -5.00 USD (-5.00%)" in text
        assert "Reason: Stop loss" in text
        assert "Duration: 1h 30m" in text

    def test_daily_report(self):
        stats = {"paper_balance": 1010.0, "equity": 1012.5, "total_trades": 4,
                 "winning_trades": 3, "total_pnl": 10.0}
        text = format_event(BotEvent("daily_report", {
            "stats": stats, "open_spreads": 2, "trades_today": 1, "pnl_today": 2.5, "wins_today": 1,
        }))
        assert "win rate 75.0%" in text
        assert "Open spreads: 2" in text

    def test_warning(self):
        assert format_event(BotEvent("warning", {"message": "leg missing"})) == "WARNING: leg missing"

    def test_unknown_event_is_not_forwarded(self):
        assert format_event(BotEvent("heartbeat", {})) is None
