"""Spread bot controller.

One cycle per call: refresh open spreads -> evaluate exits -> open the best new
opportunity if there is capacity. A single asyncio.Lock makes the cycle
single-flight and serializes manual operations with it; every state change
goes through one store transaction.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from spreadlab.errors import DataUnavailable, GatewayError, PersistenceError
from spreadlab.models.optimized_params import OptimizedParams
from spreadlab.models.spread import OpenSpread, TradeRecord
from spreadlab.repository import BotRepository
from spreadlab.schemas.bot_config import BotConfig
from spreadlab.services import optimizer
from spreadlab.services.notifier import Notifier
from spreadlab.services.scanner import (
    Opportunity,
    fetch_histories,
    generate_pairs,
    make_pair_id,
    resolve_universe,
    scan_opportunities,
)
from spreadlab.services.signal_engine import (
    evaluate_exit,
    leg_sides,
    pnl_percent,
    spread_pnl,
    stop_loss_hit,
)
from spreadlab.services.statistics import current_stat, ratio_series
from spreadlab.utils.constants import (
    EXIT_FEE_RATE,
    HISTORY_DAYS,
    LOOKBACK_DAYS,
    MS_PER_DAY,
    OPEN_FEE_RATE,
)
from spreadlab.utils.timeutils import now_ms

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class CycleAction:
    type: str  # "OPEN" or "CLOSE"
    spread_id: str
    pair_id: str
    mode: str
    signal: str | None = None
    size_usd: float | None = None
    reason: str | None = None
    pnl: float | None = None


@dataclass
class CycleResult:
    executed: bool
    actions: list[CycleAction] = field(default_factory=list)
    reason: str | None = None  # why nothing was executed, or why no entry was made
    error: str | None = None


@dataclass
class PricedSpread:
    spread: OpenSpread
    price_a: float
    price_b: float
    pnl: float


@dataclass
class BotState:
    config: BotConfig
    paper_balance: float
    total_trades: int
    winning_trades: int
    total_pnl: float
    peak_equity: float
    equity: float
    drawdown_pct: float
    open_spreads: list[OpenSpread]
    recent_trades: list[TradeRecord]

    @property
    def win_rate(self) -> float:
        return self.winning_trades / self.total_trades if self.total_trades else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "config": self.config.model_dump(),
            "stats": {
                "paper_balance": self.paper_balance,
                "total_trades": self.total_trades,
                "winning_trades": self.winning_trades,
                "win_rate": self.win_rate,
                "total_pnl": self.total_pnl,
                "peak_equity": self.peak_equity,
                "equity": self.equity,
                "drawdown_pct": self.drawdown_pct,
            },
            "open_spreads": [s.model_dump() for s in self.open_spreads],
            "recent_trades": [t.model_dump() for t in self.recent_trades],
        }


def drawdown_percent(peak: float, equity: float) -> float:
    if peak <= 0:
        return 0.0
    return max(0.0, (peak - equity) / peak * 100)


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------

class SpreadBot:
    def __init__(
        self,
        repository: BotRepository,
        gateway,
        notifier: Notifier | None = None,
        call_timeout: float = 15.0,
        clock: Callable[[], int] = now_ms,
        lookback_days: float = LOOKBACK_DAYS,
    ):
        self.repository = repository
        self.gateway = gateway
        self.notifier = notifier or Notifier()
        self.call_timeout = call_timeout
        self.clock = clock
        self.lookback_days = lookback_days
        self._lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def record_log(self, level: str, message: str, data: dict | None = None):
        """Write a BotLog row; a store failure here is logged, not raised."""
        getattr(logger, level)(message)
        try:
            self.repository.log(level, message, data, now=self.clock())
        except PersistenceError as e:
            logger.error(f"Could not persist log entry: {e}")

    # -----------------------------------------------------------------------
    # Control surface
    # -----------------------------------------------------------------------

    async def start(self) -> BotConfig:
        async with self._lock:
            config = self.repository.set_enabled(True, now=self.clock())
        self.record_log("info", f"Bot started in {config.mode.upper()} mode")
        self.notifier.publish("bot_started", config=config.model_dump())
        return config

    async def stop(self) -> BotConfig:
        async with self._lock:
            config = self.repository.set_enabled(False, now=self.clock())
        self.record_log("info", "Bot stopped")
        self.notifier.publish("bot_stopped", stats=self.get_state().to_dict()["stats"])
        return config

    async def reset(self, initial_balance: float = 1000.0):
        """Restart paper accounting. Open spreads are dropped, history is kept."""
        async with self._lock:
            self.repository.reset(initial_balance, now=self.clock())
        self.record_log("info", f"Bot reset with balance {initial_balance:.2f}")

    async def update_config(self, update_data: dict[str, Any]) -> BotConfig:
        """Apply a partial config update; raises ConfigValidationError and keeps the old config."""
        async with self._lock:
            config = self.repository.update_config(update_data, now=self.clock())
        self.record_log("info", "Config updated", {"changes": update_data})
        return config

    def get_state(self, recent_trades: int = 20) -> BotState:
        config = self.repository.get_config()
        stats = self.repository.get_stats()
        spreads = self.repository.get_open_spreads()
        equity = stats.paper_balance + sum(s.current_pnl for s in spreads)
        return BotState(
            config=config,
            paper_balance=stats.paper_balance,
            total_trades=stats.total_trades,
            winning_trades=stats.winning_trades,
            total_pnl=stats.total_pnl,
            peak_equity=stats.peak_equity,
            equity=equity,
            drawdown_pct=drawdown_percent(stats.peak_equity, equity),
            open_spreads=spreads,
            recent_trades=self.repository.get_trades(limit=recent_trades),
        )

    # -----------------------------------------------------------------------
    # Cycle
    # -----------------------------------------------------------------------

    async def run_cycle(self) -> CycleResult:
        """Run one cycle, skipping if a prior cycle is still in-flight."""
        if self._lock.locked():
            logger.warning("Skipping overlapping cycle")
            return CycleResult(executed=False, reason="cycle_in_progress")

        async with self._lock:
            return await self._run_cycle_once()

    async def drain(self):
        """Wait for an in-flight cycle or manual operation to finish."""
        async with self._lock:
            pass

    async def _run_cycle_once(self) -> CycleResult:
        actions: list[CycleAction] = []
        try:
            config = self.repository.get_config()
            if not config.enabled:
                return CycleResult(executed=False, reason="bot_not_running")

            # Step 1: refresh PnL of open spreads
            priced = await self._refresh()

            # Step 2: exits, first matching rule per spread
            for item in priced:
                action = await self._evaluate_and_close(item, config)
                if action:
                    actions.append(action)

            # Step 3: entry, capacity permitting
            open_spreads = self.repository.get_open_spreads()
            if len(open_spreads) >= config.max_concurrent_spreads:
                return CycleResult(executed=True, actions=actions, reason="max_concurrent_spreads")

            opportunities = await self._scan(config)
            open_pairs = {s.pair_id for s in open_spreads}
            candidates = [o for o in opportunities if o.pair_id not in open_pairs]
            if not candidates:
                return CycleResult(executed=True, actions=actions, reason="no_opportunity")

            spread = await self._open_best(candidates[0], config)
            if spread:
                actions.append(CycleAction(
                    type="OPEN",
                    spread_id=spread.id,
                    pair_id=spread.pair_id,
                    mode=spread.mode,
                    signal=spread.signal,
                    size_usd=spread.size_usd,
                ))
            return CycleResult(executed=True, actions=actions)

        except PersistenceError as e:
            # Already logged by the store; the store itself is unusable for a BotLog row
            logger.error(f"Cycle aborted: {e}")
            self.notifier.notify_error(f"Cycle aborted: {e}")
            return CycleResult(executed=False, actions=actions, error=str(e))
        except Exception as e:
            logger.error(f"Cycle error: {e}", exc_info=True)
            self.record_log("error", f"Cycle error: {e}")
            self.notifier.notify_error(f"Cycle error: {e}")
            return CycleResult(executed=False, actions=actions, error=str(e))

    # -----------------------------------------------------------------------
    # Refresh
    # -----------------------------------------------------------------------

    async def _fetch_prices(self, coins: list[str]) -> dict[str, float]:
        """Batched mid prices, falling back to one call per missing coin."""
        prices: dict[str, float] = {}
        try:
            prices = await asyncio.wait_for(
                self.gateway.get_mid_prices(coins), timeout=self.call_timeout
            )
        except (DataUnavailable, asyncio.TimeoutError) as e:
            logger.warning(f"Batch price fetch failed, fetching per coin: {e!r}")

        missing = [c for c in coins if c not in prices]
        if not missing:
            return dict(prices)

        results = await asyncio.gather(
            *(asyncio.wait_for(self.gateway.get_mid_price(c), timeout=self.call_timeout) for c in missing),
            return_exceptions=True,
        )
        prices = dict(prices)
        for coin, result in zip(missing, results):
            if isinstance(result, (DataUnavailable, asyncio.TimeoutError)):
                logger.warning(f"No price for {coin}: {result!r}")
                continue
            if isinstance(result, BaseException):
                raise result
            prices[coin] = result
        return prices

    async def _refresh(self) -> list[PricedSpread]:
        spreads = self.repository.get_open_spreads()
        if not spreads:
            return []

        coins = list(dict.fromkeys(c for s in spreads for c in (s.coin_a, s.coin_b)))
        prices = await self._fetch_prices(coins)

        priced: list[PricedSpread] = []
        updates = []
        for spread in spreads:
            price_a = prices.get(spread.coin_a)
            price_b = prices.get(spread.coin_b)
            if price_a is None or price_b is None:
                logger.warning(f"[{spread.pair_id}] Missing price, skipping refresh")
                continue
            pnl = spread_pnl(spread, price_a, price_b)
            updates.append((spread.id, pnl, price_a / price_b))
            priced.append(PricedSpread(spread, price_a, price_b, pnl))

        if updates:
            _stats, equity = self.repository.apply_refresh(updates, now=self.clock())
            logger.info(f"Refreshed {len(updates)}/{len(spreads)} spreads, equity={equity:.2f}")
        return priced

    async def refresh_positions(self) -> list[PricedSpread] | None:
        """PnL refresh only. Returns None when a cycle is running."""
        if self._lock.locked():
            return None
        async with self._lock:
            return await self._refresh()

    # -----------------------------------------------------------------------
    # Exits
    # -----------------------------------------------------------------------

    async def _current_z(self, coin_a: str, coin_b: str) -> float | None:
        now = self.clock()
        histories = await fetch_histories(
            self.gateway, [coin_a, coin_b], now - HISTORY_DAYS * MS_PER_DAY, now, self.call_timeout
        )
        if coin_a not in histories or coin_b not in histories:
            return None
        samples = ratio_series(histories[coin_a], histories[coin_b])
        if samples is None:
            return None
        stat = current_stat(samples, self.lookback_days)
        return stat.z if stat else None

    async def _evaluate_and_close(self, item: PricedSpread, config: BotConfig) -> CycleAction | None:
        spread = item.spread
        pct = pnl_percent(item.pnl, spread.size_usd)

        # The z-score is only needed when the stop loss has not already fired
        current_z = None
        if not stop_loss_hit(pct, config.stop_loss_percent):
            current_z = await self._current_z(spread.coin_a, spread.coin_b)

        signal = evaluate_exit(spread, item.pnl, current_z, config.stop_loss_percent, self.clock())
        if not signal.should_exit:
            return None

        try:
            trade = await self._close_spread(
                spread, signal.exit_reason, signal.detail, item.price_a, item.price_b
            )
        except GatewayError as e:
            self._report_close_failure(spread, e)
            return None

        if trade is None:
            return None
        return CycleAction(
            type="CLOSE",
            spread_id=spread.id,
            pair_id=spread.pair_id,
            mode=spread.mode,
            reason=trade.exit_reason,
            pnl=trade.final_pnl,
        )

    async def _close_spread(
        self,
        spread: OpenSpread,
        reason: str,
        detail: str | None = None,
        price_a: float | None = None,
        price_b: float | None = None,
    ) -> TradeRecord | None:
        """Close one spread and settle it. None if it was already closed."""
        if price_a is None or price_b is None:
            prices = await self._fetch_prices([spread.coin_a, spread.coin_b])
            if spread.coin_a not in prices or spread.coin_b not in prices:
                raise DataUnavailable(spread.pair_id, "no prices to close with")
            price_a, price_b = prices[spread.coin_a], prices[spread.coin_b]

        if spread.mode == "live":
            try:
                result_a, result_b = await asyncio.wait_for(
                    self.gateway.close_spread(spread.leg_a, spread.leg_b),
                    timeout=self.call_timeout,
                )
            except asyncio.TimeoutError as e:
                raise GatewayError("close timed out") from e
            price_a = result_a.filled_price or price_a
            price_b = result_b.filled_price or price_b

        fee = spread.size_usd * EXIT_FEE_RATE[spread.mode]
        final_pnl = spread_pnl(spread, price_a, price_b) - fee

        trade = self.repository.record_close(
            spread.id,
            exit_price_a=price_a,
            exit_price_b=price_b,
            exit_reason=reason,
            final_pnl=final_pnl,
            exit_time=self.clock(),
        )
        if trade is None:
            logger.info(f"[{spread.pair_id}] Spread {spread.id} already closed")
            return None

        self.record_log(
            "info",
            f"[{spread.pair_id}] Closed ({reason}): PnL={final_pnl:+.2f}",
            {"spread_id": spread.id, "reason": reason, "detail": detail, "pnl": final_pnl},
        )
        self.notifier.notify_closed(trade, detail)
        return trade

    def _report_close_failure(self, spread: OpenSpread, error: Exception):
        self.record_log(
            "error",
            f"[{spread.pair_id}] Close failed, position left open: {error}",
            {"spread_id": spread.id},
        )
        self.notifier.notify_error(f"Close failed: {error}", pair_id=spread.pair_id)

    async def close_position(self, spread_id: str, reason: str = "manual") -> TradeRecord | None:
        """Close a spread by id. Unknown or already closed ids return None."""
        async with self._lock:
            spread = self.repository.get_open_spread(spread_id)
            if spread is None:
                return None
            try:
                return await self._close_spread(spread, reason, "Manual close")
            except (GatewayError, DataUnavailable) as e:
                self._report_close_failure(spread, e)
                raise

    async def close_all(self, reason: str = "manual") -> dict:
        """Close every open spread; failures are reported per spread."""
        closed, errors = [], []
        async with self._lock:
            for spread in self.repository.get_open_spreads():
                try:
                    trade = await self._close_spread(spread, reason, "Close all")
                except (GatewayError, DataUnavailable) as e:
                    self._report_close_failure(spread, e)
                    errors.append({"spread_id": spread.id, "error": str(e)})
                    continue
                if trade:
                    closed.append(trade)
        return {"positions_closed": len(closed), "trades": closed, "errors": errors}

    # -----------------------------------------------------------------------
    # Entries
    # -----------------------------------------------------------------------

    async def _scan(self, config: BotConfig) -> list[Opportunity]:
        now = self.clock()
        return await scan_opportunities(
            self.gateway,
            config.active_universes,
            min_quality_stars=config.min_quality_stars,
            min_win_rate=config.min_win_rate,
            z_entry_threshold=config.z_entry_threshold,
            z_exit_threshold=config.z_exit_threshold,
            now=now,
            optimized=self.repository.get_optimized_params_map(now),
            timeout=self.call_timeout,
        )

    async def scan(self) -> list[Opportunity]:
        """Ranked opportunities under the current config, without trading."""
        return await self._scan(self.repository.get_config())

    async def _open_best(self, opp: Opportunity, config: BotConfig) -> OpenSpread | None:
        prices = await self._fetch_prices([opp.coin_a, opp.coin_b])
        if opp.coin_a not in prices or opp.coin_b not in prices:
            self.record_log("warning", f"[{opp.pair_id}] No prices, entry skipped")
            return None
        price_a, price_b = prices[opp.coin_a], prices[opp.coin_b]

        now = self.clock()
        size_usd = config.max_position_usd
        side_a, side_b = leg_sides(opp.signal)
        size_a = size_usd / 2 / price_a
        size_b = size_usd / 2 / price_b
        spread_id = f"{now}-{opp.pair_id}"

        if config.mode == "live":
            try:
                result_a, result_b = await asyncio.wait_for(
                    self.gateway.open_spread(opp.coin_a, side_a, size_a, opp.coin_b, side_b, size_b),
                    timeout=self.call_timeout,
                )
            except (GatewayError, asyncio.TimeoutError) as e:
                self.record_log("error", f"[{opp.pair_id}] Live open failed: {e!r}")
                self.notifier.notify_error(f"Open failed: {e!r}", pair_id=opp.pair_id)
                return None
            price_a = result_a.filled_price or price_a
            price_b = result_b.filled_price or price_b
            size_a = result_a.filled_amount or size_a
            size_b = result_b.filled_amount or size_b
            spread_id = f"live-{spread_id}"

        spread = OpenSpread(
            id=spread_id,
            pair_id=opp.pair_id,
            coin_a=opp.coin_a,
            coin_b=opp.coin_b,
            signal=opp.signal,
            size_usd=size_usd,
            leg_a_side=side_a,
            leg_a_entry_price=price_a,
            leg_a_size=size_a,
            leg_b_side=side_b,
            leg_b_entry_price=price_b,
            leg_b_size=size_b,
            entry_ratio=price_a / price_b,
            entry_z_score=opp.z_score,
            z_exit_threshold=opp.z_exit_threshold,
            is_optimized=opp.is_optimized,
            entry_time=now,
            current_ratio=price_a / price_b,
            last_update=now,
            mode=config.mode,
        )
        recorded = self.repository.record_open(spread, fee=size_usd * OPEN_FEE_RATE)
        if recorded is None:
            if config.mode == "live":
                self.record_log("error", f"[{opp.pair_id}] Live orders filled but spread already recorded")
            return None

        tag = " [OPT]" if opp.is_optimized else ""
        self.record_log(
            "info",
            f"[{opp.pair_id}] Opened {opp.signal} {size_usd:.0f} USD at z={opp.z_score:.2f}{tag}",
            {"spread_id": spread.id, "score": opp.score, "stars": opp.quality_stars},
        )
        self.notifier.notify_opened(spread, config.mode)
        return spread

    # -----------------------------------------------------------------------
    # Optimization
    # -----------------------------------------------------------------------

    async def optimize_pair(
        self, coin_a: str, coin_b: str, **options
    ) -> tuple[optimizer.OptimizationResult, OptimizedParams | None]:
        """Optimize thresholds for a pair and persist the winner."""
        now = self.clock()
        histories = await fetch_histories(
            self.gateway, [coin_a, coin_b], now - HISTORY_DAYS * MS_PER_DAY, now, self.call_timeout
        )
        if coin_a not in histories or coin_b not in histories:
            return optimizer.OptimizationResult(success=False, error="data_unavailable"), None
        return await self._optimize_and_save(coin_a, coin_b, histories, now, **options)

    async def _optimize_and_save(self, coin_a, coin_b, histories, now, **options):
        options.setdefault("lookback_days", self.lookback_days)
        result = await asyncio.get_running_loop().run_in_executor(
            None,
            lambda: optimizer.optimize_pair(histories[coin_a], histories[coin_b], **options),
        )
        if not result.success:
            logger.info(f"[{coin_a}-{coin_b}] Optimization found nothing: {result.error}")
            return result, None

        params = optimizer.build_optimized_params(
            make_pair_id(coin_a, coin_b), coin_a, coin_b, result, now
        )
        saved = self.repository.save_optimized_params(params)
        logger.info(
            f"[{saved.pair_id}] Optimized: entry={saved.z_entry} exit={saved.z_exit} "
            f"score={saved.score:.2f}"
        )
        return result, saved

    async def optimize_all(self, **options) -> dict:
        """Re-optimize every pair of the active universes."""
        config = self.repository.get_config()
        coins = resolve_universe(config.active_universes)
        now = self.clock()
        histories = await fetch_histories(
            self.gateway, coins, now - HISTORY_DAYS * MS_PER_DAY, now, self.call_timeout
        )

        optimized, skipped = [], 0
        for coin_a, coin_b in generate_pairs([c for c in coins if c in histories]):
            _result, saved = await self._optimize_and_save(coin_a, coin_b, histories, now, **options)
            if saved:
                optimized.append(saved.pair_id)
            else:
                skipped += 1

        self.record_log("info", f"Optimized {len(optimized)} pairs ({skipped} without a valid combination)")
        return {"optimized": optimized, "skipped": skipped}
