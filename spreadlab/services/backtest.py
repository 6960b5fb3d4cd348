"""Backtest simulator: replays a ratio series through the entry/exit rules.

Flat -> Entered(side, entry ratio, entry z) -> Flat. Enter short when z is
above +entry, long when below -entry; exit once |z| drops under the exit
threshold. Undefined z never triggers a transition.
"""

from dataclasses import dataclass, field

import numpy as np

from spreadlab.services.statistics import RatioSample, RollingStat, rolling_stats
from spreadlab.utils.constants import LOOKBACK_DAYS

INITIAL_EQUITY = 100.0
PROFIT_FACTOR_CAP = 999.0
MIN_TRADES = 3


@dataclass(frozen=True)
class SimulatedTrade:
    side: str  # "long" or "short"
    entry_index: int
    exit_index: int
    entry_ratio: float
    exit_ratio: float
    entry_z: float
    exit_z: float
    pct: float  # realized return as a fraction

    @property
    def duration(self) -> int:
        return self.exit_index - self.entry_index


@dataclass
class BacktestMetrics:
    trade_count: int = 0
    win_rate: float = 0.0
    avg_return: float = 0.0
    avg_duration: float = 0.0
    max_drawdown: float = 0.0  # fraction of peak equity
    sharpe: float = 0.0
    profit_factor: float = 0.0
    final_equity: float = INITIAL_EQUITY
    score: float = 0.0


@dataclass
class BacktestResult:
    z_entry: float
    z_exit: float
    valid: bool
    reason: str | None = None  # set when not valid
    trades: list[SimulatedTrade] = field(default_factory=list)
    metrics: BacktestMetrics = field(default_factory=BacktestMetrics)


def composite_score(
    win_rate: float,
    avg_return: float,
    sharpe: float,
    profit_factor: float,
    max_drawdown: float,
) -> float:
    """Weighted ranking score used by the optimizer."""
    return (
        win_rate * 30
        + min(avg_return * 100, 30)
        + min(sharpe, 3) * 6.67
        + min(profit_factor, 3) * 3.33
        - max_drawdown * 10
    )


def _compute_metrics(trades: list[SimulatedTrade], annualization: float) -> BacktestMetrics:
    if not trades:
        return BacktestMetrics()

    returns = np.array([t.pct for t in trades], dtype=float)
    durations = np.array([t.duration for t in trades], dtype=float)

    # Equity compounds per closed trade; the peak starts at the initial equity
    equity_curve = INITIAL_EQUITY * np.cumprod(1.0 + returns)
    peaks = np.maximum.accumulate(np.concatenate(([INITIAL_EQUITY], equity_curve)))[1:]
    drawdowns = (peaks - equity_curve) / peaks
    max_drawdown = float(max(drawdowns.max(), 0.0))

    trade_count = len(trades)
    win_rate = float(np.count_nonzero(returns > 0)) / trade_count
    avg_return = float(returns.mean())
    avg_duration = float(durations.mean())

    sharpe = 0.0
    if trade_count > 1 and avg_duration > 0:
        std = float(returns.std(ddof=1))
        if std > 0:
            sharpe = (avg_return / std) * float(np.sqrt(annualization / avg_duration))

    gross_profit = float(returns[returns > 0].sum())
    gross_loss = float(abs(returns[returns < 0].sum()))
    if gross_loss > 0:
        profit_factor = gross_profit / gross_loss
    else:
        profit_factor = PROFIT_FACTOR_CAP if gross_profit > 0 else 0.0

    return BacktestMetrics(
        trade_count=trade_count,
        win_rate=win_rate,
        avg_return=avg_return,
        avg_duration=avg_duration,
        max_drawdown=max_drawdown,
        sharpe=sharpe,
        profit_factor=profit_factor,
        final_equity=float(equity_curve[-1]),
        score=composite_score(win_rate, avg_return, sharpe, profit_factor, max_drawdown),
    )


def simulate(
    samples: list[RatioSample],
    z_entry: float,
    z_exit: float,
    lookback_days: float = LOOKBACK_DAYS,
    stats: list[RollingStat | None] | None = None,
    min_trades: int = MIN_TRADES,
    annualization: float = 252.0,
) -> BacktestResult:
    """Replay `samples` with the given thresholds.

    `stats` may be passed in when the caller already computed the rolling
    statistics (the optimizer reuses them across the whole grid). Results
    with fewer than `min_trades` trades are returned with valid=False; their
    metrics are still filled in.
    """
    if stats is None:
        stats = rolling_stats(samples, lookback_days)

    trades: list[SimulatedTrade] = []
    position = None  # (side, entry_index, entry_ratio, entry_z)

    for i, stat in enumerate(stats):
        if stat is None or stat.z is None:
            continue
        z = stat.z
        r = samples[i].ratio

        if position is None:
            if z > z_entry:
                position = ("short", i, r, z)
            elif z < -z_entry:
                position = ("long", i, r, z)
        elif abs(z) < z_exit:
            side, entry_index, entry_ratio, entry_z = position
            if side == "short":
                pct = (entry_ratio - r) / entry_ratio
            else:
                pct = (r - entry_ratio) / entry_ratio
            trades.append(SimulatedTrade(
                side=side,
                entry_index=entry_index,
                exit_index=i,
                entry_ratio=entry_ratio,
                exit_ratio=r,
                entry_z=entry_z,
                exit_z=z,
                pct=pct,
            ))
            position = None

    metrics = _compute_metrics(trades, annualization)
    if len(trades) < min_trades:
        return BacktestResult(
            z_entry=z_entry,
            z_exit=z_exit,
            valid=False,
            reason="no_signal",
            trades=trades,
            metrics=metrics,
        )
    return BacktestResult(
        z_entry=z_entry,
        z_exit=z_exit,
        valid=True,
        trades=trades,
        metrics=metrics,
    )
