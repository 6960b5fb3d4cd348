"""In-process event bus for bot notifications.

The bot publishes events; sinks (Telegram, tests) subscribe. A failing sink is
logged and never affects trading.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from spreadlab.utils.timeutils import now_ms

logger = logging.getLogger(__name__)

EVENT_TYPES = (
    "spread_opened",
    "spread_closed",
    "error",
    "bot_started",
    "bot_stopped",
    "daily_report",
    "warning",
)


@dataclass
class BotEvent:
    type: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: int = field(default_factory=now_ms)


Handler = Callable[[BotEvent], Any]


class Notifier:
    def __init__(self):
        self._handlers: list[Handler] = []
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        """Register a sync or async handler. Returns an unsubscribe callable."""
        self._handlers.append(handler)

        def _unsubscribe():
            if handler in self._handlers:
                self._handlers.remove(handler)

        return _unsubscribe

    def publish(self, event_type: str, **data):
        """Deliver an event to every handler without waiting on async ones."""
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event_type}")
        event = BotEvent(type=event_type, data=data)
        for handler in list(self._handlers):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    try:
                        asyncio.get_running_loop()
                    except RuntimeError:
                        logger.warning(f"No event loop, dropping async handler for {event_type}")
                        if inspect.iscoroutine(result):
                            result.close()
                        continue
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._on_done)
            except Exception as e:
                logger.warning(f"Notification handler failed for {event_type}: {e}")

    def _on_done(self, task: asyncio.Task):
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Async notification handler failed: {task.exception()}")

    async def flush(self):
        """Wait for in-flight async handlers."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # Convenience publishers

    def notify_opened(self, spread, mode: str):
        self.publish(
            "spread_opened",
            spread_id=spread.id,
            pair_id=spread.pair_id,
            coin_a=spread.coin_a,
            coin_b=spread.coin_b,
            signal=spread.signal,
            size_usd=spread.size_usd,
            z_score=spread.entry_z_score,
            z_exit=spread.z_exit_threshold,
            is_optimized=spread.is_optimized,
            mode=mode,
        )

    def notify_closed(self, trade, reason_detail: str | None = None):
        self.publish(
            "spread_closed",
            spread_id=trade.spread_id,
            pair_id=trade.pair_id,
            coin_a=trade.coin_a,
            coin_b=trade.coin_b,
            signal=trade.signal,
            size_usd=trade.size_usd,
            pnl=trade.final_pnl,
            reason=trade.exit_reason,
            detail=reason_detail,
            duration_ms=trade.exit_time - trade.entry_time,
            mode=trade.mode,
        )

    def notify_error(self, message: str, **context):
        self.publish("error", message=message, **context)
