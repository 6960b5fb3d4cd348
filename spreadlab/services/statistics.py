"""Pair statistics: price ratios, rolling z-scores, correlation, quality rating.

All functions are pure computation, no I/O. Undefined statistics (too little
history, zero variance) come back as None rather than a sentinel value.
"""

from dataclasses import dataclass

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from spreadlab.utils.constants import (
    DEFAULT_Z_ENTRY,
    DEFAULT_Z_EXIT,
    LOOKBACK_DAYS,
    MIN_DATA_POINTS,
    MS_PER_DAY,
)

# Relative tolerance under which a standard deviation counts as zero
_STD_EPS = 1e-12


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Candle:
    time: int  # epoch ms
    close: float | None


@dataclass(frozen=True)
class RatioSample:
    time: int
    ratio: float


@dataclass(frozen=True)
class RollingStat:
    mean: float
    std: float
    z: float | None  # None when std is zero


# ---------------------------------------------------------------------------
# Core helpers
# ---------------------------------------------------------------------------

def _valid_close(value: float | None) -> bool:
    return value is not None and np.isfinite(value) and value > 0


def ratio_series(
    series_a: list[Candle],
    series_b: list[Candle],
) -> list[RatioSample] | None:
    """Align two candle series by index and return closeA/closeB samples.

    Indices where either close is missing or non-positive are dropped.
    Returns None when fewer than MIN_DATA_POINTS samples survive.
    """
    n = min(len(series_a), len(series_b))
    samples = []
    for i in range(n):
        ca, cb = series_a[i], series_b[i]
        if not _valid_close(ca.close) or not _valid_close(cb.close):
            continue
        samples.append(RatioSample(time=ca.time, ratio=ca.close / cb.close))

    if len(samples) < MIN_DATA_POINTS:
        return None
    return samples


def window_size(samples: list[RatioSample], lookback_days: float = LOOKBACK_DAYS) -> int:
    """Number of samples covering `lookback_days` at the series' average spacing."""
    if len(samples) < 2:
        return MIN_DATA_POINTS
    span = samples[-1].time - samples[0].time
    avg_interval = span / (len(samples) - 1)
    if avg_interval <= 0:
        return MIN_DATA_POINTS
    return max(MIN_DATA_POINTS, round(lookback_days * MS_PER_DAY / avg_interval))


def rolling_stats(
    samples: list[RatioSample],
    lookback_days: float = LOOKBACK_DAYS,
) -> list[RollingStat | None]:
    """Trailing mean/std/z for every sample.

    The window holds the samples strictly before the point. When the series is
    shorter than the lookback, the window shrinks to everything available
    (n - 1). Points with no full window before them get None.
    """
    n = len(samples)
    result: list[RollingStat | None] = [None] * n
    w = min(window_size(samples, lookback_days), n - 1)
    if w < 2:
        return result

    ratios = np.array([s.ratio for s in samples], dtype=float)
    windows = sliding_window_view(ratios[:-1], w)
    means = windows.mean(axis=1)
    stds = windows.std(axis=1, ddof=1)

    for k, (mean, std) in enumerate(zip(means, stds)):
        i = k + w
        mean, std = float(mean), float(std)
        if std <= _STD_EPS * max(abs(mean), 1.0):
            z = None
        else:
            z = (float(ratios[i]) - mean) / std
        result[i] = RollingStat(mean=mean, std=std, z=z)
    return result


def rolling_z(
    samples: list[RatioSample],
    lookback_days: float = LOOKBACK_DAYS,
) -> list[float | None]:
    """Z-score per sample (None where undefined)."""
    return [s.z if s is not None else None for s in rolling_stats(samples, lookback_days)]


def current_stat(
    samples: list[RatioSample],
    lookback_days: float = LOOKBACK_DAYS,
) -> RollingStat | None:
    """Rolling stat of the most recent sample."""
    if not samples:
        return None
    return rolling_stats(samples, lookback_days)[-1]


def correlation(series_a: list[Candle], series_b: list[Candle]) -> float | None:
    """Pearson correlation of log returns over the overlapping window.

    Uses population moments. None when either return series has zero
    variance or there are fewer than two returns.
    """
    n = min(len(series_a), len(series_b))
    closes = [
        (series_a[i].close, series_b[i].close)
        for i in range(n)
        if _valid_close(series_a[i].close) and _valid_close(series_b[i].close)
    ]
    if len(closes) < 3:
        return None

    prices = np.array(closes, dtype=float)
    rets = np.diff(np.log(prices), axis=0)
    ra = rets[:, 0] - rets[:, 0].mean()
    rb = rets[:, 1] - rets[:, 1].mean()
    var_a = float(np.mean(ra * ra))
    var_b = float(np.mean(rb * rb))
    if var_a <= 0 or var_b <= 0:
        return None
    cov = float(np.mean(ra * rb))
    return cov / np.sqrt(var_a * var_b)


def _round_half_up(value: float) -> int:
    return int(np.floor(value + 0.5))


def quality_stars(
    avg_return: float,
    win_rate: float,
    max_drawdown: float,
    z_score: float | None,
    trade_count: int,
) -> int:
    """Deterministic 0-5 rating from backtest metrics.

    avg_return, win_rate and max_drawdown are fractions (0.08 == 8%).
    """
    cap = 5
    if avg_return < 0 or max_drawdown > 0.5:
        cap = 1
    elif max_drawdown > 0.4 or win_rate < 0.5 or trade_count < 3:
        cap = 2

    stars = 0.0
    if avg_return >= 0.08:
        stars += 2
    elif avg_return >= 0.05:
        stars += 1.5
    elif avg_return >= 0.02:
        stars += 1
    elif avg_return > 0:
        stars += 0.5

    if win_rate >= 0.8:
        stars += 1.5
    elif win_rate >= 0.7:
        stars += 1
    elif win_rate >= 0.6:
        stars += 0.5

    if max_drawdown <= 0.2:
        stars += 1
    elif max_drawdown <= 0.3:
        stars += 0.5

    if z_score is not None and 1.5 <= abs(z_score) <= 2.5:
        stars += 0.5

    return min(cap, _round_half_up(stars))


# ---------------------------------------------------------------------------
# Per-pair bundle
# ---------------------------------------------------------------------------

@dataclass
class PairStats:
    """Everything the scanner needs to rank a pair."""
    samples: list[RatioSample]
    current: RollingStat | None
    correlation: float | None
    trade_count: int
    win_rate: float
    avg_return: float
    max_drawdown: float
    quality_stars: int

    @property
    def z_score(self) -> float | None:
        return self.current.z if self.current else None

    @property
    def last_ratio(self) -> float:
        return self.samples[-1].ratio


def compute_pair_stats(
    series_a: list[Candle],
    series_b: list[Candle],
    lookback_days: float = LOOKBACK_DAYS,
) -> PairStats | None:
    """Ratio stats, correlation and a default-threshold backtest for one pair."""
    from spreadlab.services.backtest import simulate

    samples = ratio_series(series_a, series_b)
    if samples is None:
        return None

    stats = rolling_stats(samples, lookback_days)
    result = simulate(samples, DEFAULT_Z_ENTRY, DEFAULT_Z_EXIT, lookback_days, stats=stats)
    metrics = result.metrics
    current = stats[-1]

    return PairStats(
        samples=samples,
        current=current,
        correlation=correlation(series_a, series_b),
        trade_count=metrics.trade_count,
        win_rate=metrics.win_rate,
        avg_return=metrics.avg_return,
        max_drawdown=metrics.max_drawdown,
        quality_stars=quality_stars(
            metrics.avg_return,
            metrics.win_rate,
            metrics.max_drawdown,
            current.z if current else None,
            metrics.trade_count,
        ),
    )
