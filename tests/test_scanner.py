"""Tests for universe resolution, pair generation and opportunity ranking."""

import asyncio
from unittest.mock import patch

import pytest

from spreadlab.errors import DataUnavailable
from spreadlab.models.optimized_params import OptimizedParams
from spreadlab.services.scanner import (
    fetch_histories,
    generate_pairs,
    make_pair_id,
    opportunity_score,
    rank_pairs,
    resolve_universe,
    scan_opportunities,
)
from factories import NOW, make_candles, noisy_ratios


class FakeCandleGateway:
    """Serves fixed candle lists; coins in `failing` raise, coins in `slow` hang."""

    def __init__(self, candles: dict, failing=(), slow=()):
        self.candles = candles
        self.failing = set(failing)
        self.slow = set(slow)
        self.requested = []

    async def get_candles(self, coin, interval, start, end):
        self.requested.append((coin, interval))
        if coin in self.failing:
            raise DataUnavailable(coin, "boom")
        if coin in self.slow:
            await asyncio.sleep(10)
        return self.candles[coin]


def _spiked_histories(coins):
    """First coin spikes on the last day against all the flat others."""
    n = 41
    histories = {coin: make_candles([100.0] * n) for coin in coins}
    histories[coins[0]] = make_candles([100.0 * r for r in noisy_ratios(40, tail=[1.05])])
    return histories


# ---------------------------------------------------------------------------
# Pair enumeration
# ---------------------------------------------------------------------------

class TestPairs:
    def test_resolve_universe_dedupes_in_order(self):
        coins = resolve_universe(["l2", "gaming"])
        assert coins.count("IMX") == 1
        assert coins[0] == "OP"
        assert coins.index("IMX") < coins.index("GALA")

    def test_unknown_universe_is_empty(self):
        assert resolve_universe(["nope"]) == []

    def test_generate_pairs(self):
        assert generate_pairs(["A", "B", "C"]) == [("A", "B"), ("A", "C"), ("B", "C")]

    def test_pair_count(self):
        assert len(generate_pairs([str(i) for i in range(8)])) == 28

    def test_pair_id(self):
        assert make_pair_id("ETH", "BTC") == "eth-btc"

    def test_opportunity_score(self):
        assert opportunity_score(4, -2.0, 0.5, True) == pytest.approx(80 + 20 + 7.5 + 10)


# ---------------------------------------------------------------------------
# History fetch
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_fetch_histories_drops_failed_coin():
    coins = ["A", "B", "C", "D", "E"]
    gateway = FakeCandleGateway({c: make_candles([1.0] * 25) for c in coins}, failing={"C"})
    histories = await fetch_histories(gateway, coins, 0, NOW, timeout=1.0)
    assert sorted(histories) == ["A", "B", "D", "E"]
    assert all(interval == "1d" for _, interval in gateway.requested)


@pytest.mark.asyncio
async def test_fetch_histories_drops_timed_out_coin():
    gateway = FakeCandleGateway({"A": make_candles([1.0] * 25), "B": []}, slow={"B"})
    histories = await fetch_histories(gateway, ["A", "B"], 0, NOW, timeout=0.05)
    assert list(histories) == ["A"]


@pytest.mark.asyncio
async def test_scan_skips_pairs_with_failed_asset():
    coins = ["A", "B", "C", "D", "E"]
    gateway = FakeCandleGateway({c: make_candles([1.0] * 25) for c in coins}, failing={"C"})
    evaluated = []

    def fake_stats(series_a, series_b, lookback_days):
        evaluated.append((series_a, series_b))
        return None

    with patch("spreadlab.services.scanner.resolve_universe", return_value=coins), \
            patch("spreadlab.services.scanner.compute_pair_stats", side_effect=fake_stats):
        result = await scan_opportunities(
            gateway, ["any"], min_quality_stars=0, min_win_rate=0.0,
            z_entry_threshold=1.5, z_exit_threshold=0.5, now=NOW,
        )

    assert result == []
    assert len(evaluated) == 6


# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------

class TestRankPairs:
    def test_spiked_coin_pairs_are_short_signals(self):
        coins = ["X", "Y", "Z"]
        opps = rank_pairs(
            _spiked_histories(coins), coins,
            min_quality_stars=0, min_win_rate=0.0,
            z_entry_threshold=1.5, z_exit_threshold=0.5, lookback_days=20,
        )
        assert [o.pair_id for o in opps] == ["x-y", "x-z"]
        assert all(o.signal == "SHORT" for o in opps)
        assert all(o.z_score > 1.5 for o in opps)
        assert opps[0].is_optimized is False
        assert opps[0].z_exit_threshold == 0.5

    def test_pair_ids_follow_input_order(self):
        coins = ["Y", "X"]
        histories = _spiked_histories(["X", "Y"])
        opps = rank_pairs(
            histories, coins,
            min_quality_stars=0, min_win_rate=0.0,
            z_entry_threshold=1.5, z_exit_threshold=0.5, lookback_days=20,
        )
        assert opps[0].pair_id == "y-x"
        assert opps[0].signal == "LONG"

    def test_quality_filter(self):
        coins = ["X", "Y"]
        opps = rank_pairs(
            _spiked_histories(coins), coins,
            min_quality_stars=5, min_win_rate=0.0,
            z_entry_threshold=1.5, z_exit_threshold=0.5, lookback_days=20,
        )
        assert opps == []

    def test_optimized_thresholds_override_defaults(self):
        coins = ["X", "Y", "Z"]
        optimized = {
            "x-y": OptimizedParams(
                pair_id="x-y", coin_a="X", coin_b="Y", z_entry=2.0, z_exit=0.3,
                win_rate=0.8, avg_return=0.05, score=50.0,
                optimized_at=NOW, expires_at=NOW + 1,
            ),
            "x-z": OptimizedParams(
                pair_id="x-z", coin_a="X", coin_b="Z", z_entry=9.0, z_exit=0.3,
                win_rate=0.8, avg_return=0.05, score=50.0,
                optimized_at=NOW, expires_at=NOW + 1,
            ),
        }
        opps = rank_pairs(
            _spiked_histories(coins), coins,
            min_quality_stars=0, min_win_rate=0.0,
            z_entry_threshold=1.5, z_exit_threshold=0.5,
            optimized=optimized, lookback_days=20,
        )
        assert [o.pair_id for o in opps] == ["x-y"]
        assert opps[0].is_optimized is True
        assert opps[0].z_entry_threshold == 2.0
        assert opps[0].z_exit_threshold == 0.3

    def test_missing_history_is_skipped(self):
        histories = _spiked_histories(["X", "Y"])
        opps = rank_pairs(
            histories, ["X", "Y", "Q"],
            min_quality_stars=0, min_win_rate=0.0,
            z_entry_threshold=1.5, z_exit_threshold=0.5, lookback_days=20,
        )
        assert [o.pair_id for o in opps] == ["x-y"]
