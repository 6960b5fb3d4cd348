"""Grid search over entry/exit z thresholds for a single pair."""

import logging
from dataclasses import dataclass, field

from spreadlab.models.optimized_params import OptimizedParams
from spreadlab.services.backtest import BacktestResult, simulate
from spreadlab.services.statistics import (
    Candle,
    RatioSample,
    ratio_series,
    rolling_stats,
    window_size,
)
from spreadlab.utils.constants import (
    DEFAULT_Z_ENTRY,
    DEFAULT_Z_EXIT,
    LOOKBACK_DAYS,
    OPTIMIZED_PARAMS_TTL_MS,
    Z_ENTRY_GRID,
    Z_EXIT_GRID,
)

logger = logging.getLogger(__name__)

MAX_ALTERNATIVES = 4


@dataclass
class OptimizationResult:
    success: bool
    error: str | None = None
    best: BacktestResult | None = None
    baseline: BacktestResult | None = None
    improvement_pct: float | None = None
    alternatives: list[BacktestResult] = field(default_factory=list)
    tested_combinations: int = 0


def optimize_samples(
    samples: list[RatioSample] | None,
    z_entry_grid: list[float] = Z_ENTRY_GRID,
    z_exit_grid: list[float] = Z_EXIT_GRID,
    lookback_days: float = LOOKBACK_DAYS,
    min_trades: int = 5,
    min_win_rate: float = 0.5,
) -> OptimizationResult:
    """Backtest every (entry, exit) combination with exit < entry and pick the best.

    Combinations with fewer than `min_trades` trades are dropped. The winner is
    the highest composite score among combinations meeting `min_win_rate`,
    falling back to all combinations when none does. Ties keep the first
    enumerated combination.
    """
    if samples is None or len(samples) < window_size(samples, lookback_days) + 20:
        return OptimizationResult(success=False, error="insufficient_data")

    # Rolling stats do not depend on the thresholds; compute once for the grid
    stats = rolling_stats(samples, lookback_days)

    results: list[BacktestResult] = []
    for z_entry in z_entry_grid:
        for z_exit in z_exit_grid:
            if z_exit >= z_entry:
                continue
            result = simulate(
                samples, z_entry, z_exit, lookback_days,
                stats=stats, min_trades=min_trades,
            )
            if result.valid:
                results.append(result)

    if not results:
        return OptimizationResult(success=False, error="no_valid_combination")

    # sorted() is stable, so equal scores stay in enumeration order
    ranked = sorted(results, key=lambda r: r.metrics.score, reverse=True)
    filtered = [r for r in ranked if r.metrics.win_rate >= min_win_rate]
    candidates = filtered or ranked
    best = candidates[0]

    baseline = simulate(samples, DEFAULT_Z_ENTRY, DEFAULT_Z_EXIT, lookback_days, stats=stats)
    improvement = None
    if baseline.valid and baseline.metrics.score > 0:
        improvement = (best.metrics.score - baseline.metrics.score) / baseline.metrics.score * 100

    return OptimizationResult(
        success=True,
        best=best,
        baseline=baseline,
        improvement_pct=improvement,
        alternatives=candidates[1:1 + MAX_ALTERNATIVES],
        tested_combinations=len(results),
    )


def optimize_pair(
    series_a: list[Candle],
    series_b: list[Candle],
    **options,
) -> OptimizationResult:
    """Optimize thresholds for two candle series (see optimize_samples)."""
    return optimize_samples(ratio_series(series_a, series_b), **options)


def build_optimized_params(
    pair_id: str,
    coin_a: str,
    coin_b: str,
    result: OptimizationResult,
    now: int,
) -> OptimizedParams:
    """Row to persist for a successful optimization, valid for a week."""
    best = result.best
    return OptimizedParams(
        pair_id=pair_id,
        coin_a=coin_a,
        coin_b=coin_b,
        z_entry=best.z_entry,
        z_exit=best.z_exit,
        win_rate=best.metrics.win_rate,
        avg_return=best.metrics.avg_return,
        score=best.metrics.score,
        optimized_at=now,
        expires_at=now + OPTIMIZED_PARAMS_TTL_MS,
    )


def summarize(result: OptimizationResult) -> dict:
    """JSON-friendly view of an optimization for the API and logs."""
    def _row(r: BacktestResult | None) -> dict | None:
        if r is None or not r.valid:
            return None
        m = r.metrics
        return {
            "z_entry": r.z_entry,
            "z_exit": r.z_exit,
            "trade_count": m.trade_count,
            "win_rate": m.win_rate,
            "avg_return": m.avg_return,
            "max_drawdown": m.max_drawdown,
            "sharpe": m.sharpe,
            "profit_factor": m.profit_factor,
            "score": m.score,
        }

    return {
        "success": result.success,
        "error": result.error,
        "optimal": _row(result.best),
        "default": _row(result.baseline),
        "improvement_pct": result.improvement_pct,
        "alternatives": [_row(r) for r in result.alternatives],
        "tested_combinations": result.tested_combinations,
    }
