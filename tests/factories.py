"""Builders for spreads, ratio samples and candles used across tests."""

from spreadlab.models.spread import OpenSpread
from spreadlab.services.statistics import Candle, RatioSample
from spreadlab.utils.constants import MS_PER_DAY

NOW = 1_700_000_000_000


def noisy_ratios(n: int, tail: list[float] | None = None) -> list[float]:
    """Ratios alternating 1.01/0.99 around a flat mean of 1.0, then `tail`."""
    ratios = [1.0 + 0.01 * (-1) ** i for i in range(n)]
    return ratios + list(tail or [])


def make_samples(ratios: list[float], start: int = 0) -> list[RatioSample]:
    return [RatioSample(time=start + i * MS_PER_DAY, ratio=r) for i, r in enumerate(ratios)]


def make_candles(closes: list[float | None], start: int = 0) -> list[Candle]:
    return [Candle(time=start + i * MS_PER_DAY, close=c) for i, c in enumerate(closes)]


def make_spread(**overrides) -> OpenSpread:
    """ETH/BTC LONG spread: long 0.025 ETH @ 2000, short 0.001 BTC @ 50000."""
    fields = dict(
        id=f"{NOW}-eth-btc",
        pair_id="eth-btc",
        coin_a="ETH",
        coin_b="BTC",
        signal="LONG",
        size_usd=100.0,
        leg_a_side="LONG",
        leg_a_entry_price=2000.0,
        leg_a_size=0.025,
        leg_b_side="SHORT",
        leg_b_entry_price=50000.0,
        leg_b_size=0.001,
        entry_ratio=0.04,
        entry_z_score=-2.0,
        z_exit_threshold=0.5,
        is_optimized=False,
        entry_time=NOW,
        mode="paper",
    )
    fields.update(overrides)
    return OpenSpread(**fields)
