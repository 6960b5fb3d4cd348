"""Tests for the backtest simulator and its metrics."""

import math

import pytest

from spreadlab.services.backtest import (
    INITIAL_EQUITY,
    PROFIT_FACTOR_CAP,
    SimulatedTrade,
    _compute_metrics,
    composite_score,
    simulate,
)
from factories import make_samples, noisy_ratios


def _trade(pct: float, duration: int = 1) -> SimulatedTrade:
    return SimulatedTrade(
        side="long", entry_index=0, exit_index=duration,
        entry_ratio=1.0, exit_ratio=1.0 + pct, entry_z=-2.0, exit_z=0.0, pct=pct,
    )


# ---------------------------------------------------------------------------
# 1. Trade generation
# ---------------------------------------------------------------------------

class TestSimulate:
    def test_spike_above_mean_enters_short_and_reverts(self):
        samples = make_samples(noisy_ratios(40, tail=[1.05, 1.0]))
        result = simulate(samples, z_entry=2.0, z_exit=0.5, lookback_days=20, min_trades=1)

        assert result.valid is True
        assert len(result.trades) == 1
        trade = result.trades[0]
        assert trade.side == "short"
        assert trade.entry_index == 40
        assert trade.exit_index == 41
        assert abs(trade.entry_z) >= 2
        assert abs(trade.exit_z) < 0.5
        assert trade.pct == pytest.approx((1.05 - 1.0) / 1.05)

    def test_dip_below_mean_enters_long(self):
        samples = make_samples(noisy_ratios(40, tail=[0.95, 1.0]))
        result = simulate(samples, z_entry=2.0, z_exit=0.5, lookback_days=20, min_trades=1)

        trade = result.trades[0]
        assert trade.side == "long"
        assert trade.entry_z <= -2
        assert trade.pct == pytest.approx((1.0 - 0.95) / 0.95)

    def test_two_round_trips(self):
        ratios = noisy_ratios(40, tail=[1.05, 1.0]) + noisy_ratios(30, tail=[0.95, 1.0])
        result = simulate(make_samples(ratios), z_entry=2.0, z_exit=0.5, lookback_days=20, min_trades=1)
        assert [t.side for t in result.trades] == ["short", "long"]

    def test_too_few_trades_is_not_valid_but_keeps_metrics(self):
        samples = make_samples(noisy_ratios(40, tail=[1.05, 1.0]))
        result = simulate(samples, z_entry=2.0, z_exit=0.5, lookback_days=20)

        assert result.valid is False
        assert result.reason == "no_signal"
        assert result.metrics.trade_count == 1

    def test_quiet_series_has_no_trades(self):
        result = simulate(make_samples(noisy_ratios(60)), z_entry=1.5, z_exit=0.5, lookback_days=20)
        assert result.trades == []
        assert result.valid is False
        assert result.metrics.final_equity == INITIAL_EQUITY

    def test_undefined_z_never_enters(self):
        samples = make_samples([1.0] * 30 + [2.0])
        result = simulate(samples, z_entry=1.5, z_exit=0.5, lookback_days=20, min_trades=1)
        assert result.trades == []

    def test_open_position_at_end_is_not_counted(self):
        samples = make_samples(noisy_ratios(40, tail=[1.05]))
        result = simulate(samples, z_entry=2.0, z_exit=0.5, lookback_days=20, min_trades=1)
        assert result.trades == []

    def test_precomputed_stats_give_same_result(self):
        from spreadlab.services.statistics import rolling_stats

        samples = make_samples(noisy_ratios(40, tail=[1.05, 1.0]))
        stats = rolling_stats(samples, lookback_days=20)
        a = simulate(samples, 2.0, 0.5, lookback_days=20, min_trades=1)
        b = simulate(samples, 2.0, 0.5, lookback_days=20, stats=stats, min_trades=1)
        assert a.trades == b.trades


# ---------------------------------------------------------------------------
# 2. Metrics
# ---------------------------------------------------------------------------

class TestMetrics:
    def test_no_trades(self):
        metrics = _compute_metrics([], 252.0)
        assert metrics.trade_count == 0
        assert metrics.score == 0.0

    def test_drawdown_from_running_peak(self):
        metrics = _compute_metrics([_trade(0.1), _trade(-0.2), _trade(0.05)], 252.0)
        assert metrics.max_drawdown == pytest.approx(0.2)
        assert metrics.final_equity == pytest.approx(100 * 1.1 * 0.8 * 1.05)

    def test_first_trade_loss_counts_against_initial_equity(self):
        metrics = _compute_metrics([_trade(-0.1)], 252.0)
        assert metrics.max_drawdown == pytest.approx(0.1)

    def test_win_rate_and_average(self):
        metrics = _compute_metrics([_trade(0.1), _trade(-0.05), _trade(0.04), _trade(0.03)], 252.0)
        assert metrics.win_rate == pytest.approx(0.75)
        assert metrics.avg_return == pytest.approx(0.03)

    def test_profit_factor(self):
        metrics = _compute_metrics([_trade(0.1), _trade(-0.05)], 252.0)
        assert metrics.profit_factor == pytest.approx(2.0)

    def test_profit_factor_capped_without_losses(self):
        metrics = _compute_metrics([_trade(0.1), _trade(0.05)], 252.0)
        assert metrics.profit_factor == PROFIT_FACTOR_CAP

    def test_sharpe_needs_two_trades(self):
        assert _compute_metrics([_trade(0.1)], 252.0).sharpe == 0.0

    def test_sharpe_annualized_by_duration(self):
        metrics = _compute_metrics([_trade(0.1, 4), _trade(0.05, 4)], 252.0)
        mean, std = 0.075, math.sqrt(2 * 0.025 ** 2)
        assert metrics.avg_duration == 4
        assert metrics.sharpe == pytest.approx(mean / std * math.sqrt(252 / 4))


def test_composite_score_weights():
    assert composite_score(0.5, 0.1, 1.0, 2.0, 0.1) == pytest.approx(15 + 10 + 6.67 + 6.66 - 1)


def test_composite_score_caps():
    assert composite_score(1.0, 0.5, 10.0, PROFIT_FACTOR_CAP, 0.0) == pytest.approx(30 + 30 + 3 * 6.67 + 3 * 3.33)
