"""Opportunity scanner.

Fetches daily history for every asset in the active universes, builds all
unordered pairs, and keeps the pairs whose current z-score clears the entry
threshold. Results are ranked by a composite score, best first.
"""

import asyncio
import logging
from dataclasses import dataclass

from spreadlab.models.optimized_params import OptimizedParams
from spreadlab.services.statistics import Candle, compute_pair_stats
from spreadlab.utils.constants import (
    CANDLE_INTERVAL,
    HISTORY_DAYS,
    LOOKBACK_DAYS,
    MS_PER_DAY,
    UNIVERSES,
)

logger = logging.getLogger(__name__)


@dataclass
class Opportunity:
    pair_id: str
    coin_a: str
    coin_b: str
    signal: str  # "LONG" or "SHORT"
    z_score: float
    z_entry_threshold: float
    z_exit_threshold: float
    is_optimized: bool
    quality_stars: int
    win_rate: float
    avg_return: float
    correlation: float | None
    last_ratio: float
    score: float


def resolve_universe(names: list[str]) -> list[str]:
    """Union of the named asset lists, deduplicated in first-seen order."""
    coins: dict[str, None] = {}
    for name in names:
        for coin in UNIVERSES.get(name, []):
            coins.setdefault(coin, None)
    return list(coins)


def generate_pairs(coins: list[str]) -> list[tuple[str, str]]:
    """All unordered pairs (i < j) in input order."""
    return [
        (coins[i], coins[j])
        for i in range(len(coins))
        for j in range(i + 1, len(coins))
    ]


def make_pair_id(coin_a: str, coin_b: str) -> str:
    return f"{coin_a}-{coin_b}".lower()


def opportunity_score(stars: int, z_score: float, win_rate: float, is_optimized: bool) -> float:
    return stars * 20 + abs(z_score) * 10 + win_rate * 15 + (10 if is_optimized else 0)


async def fetch_histories(
    gateway,
    coins: list[str],
    start: int,
    end: int,
    timeout: float,
    interval: str = CANDLE_INTERVAL,
) -> dict[str, list[Candle]]:
    """Fetch candles for all coins concurrently, each bounded by `timeout`.

    Coins whose fetch fails or times out are left out of the result.
    """
    async def _fetch(coin: str) -> list[Candle]:
        return await asyncio.wait_for(
            gateway.get_candles(coin, interval, start, end), timeout=timeout
        )

    results = await asyncio.gather(*(_fetch(c) for c in coins), return_exceptions=True)

    histories: dict[str, list[Candle]] = {}
    for coin, result in zip(coins, results):
        if isinstance(result, BaseException):
            if isinstance(result, asyncio.CancelledError):
                raise result
            logger.warning(f"Scan: dropping {coin}, candle fetch failed: {result!r}")
            continue
        histories[coin] = result
    return histories


def rank_pairs(
    histories: dict[str, list[Candle]],
    coins: list[str],
    min_quality_stars: int,
    min_win_rate: float,
    z_entry_threshold: float,
    z_exit_threshold: float,
    optimized: dict[str, OptimizedParams] | None = None,
    lookback_days: float = LOOKBACK_DAYS,
) -> list[Opportunity]:
    """Evaluate every pair of `coins` that has history and rank the qualifying ones."""
    optimized = optimized or {}
    available = [c for c in coins if c in histories]
    opportunities = []

    for coin_a, coin_b in generate_pairs(available):
        stats = compute_pair_stats(histories[coin_a], histories[coin_b], lookback_days)
        if stats is None:
            continue
        if stats.quality_stars < min_quality_stars or stats.win_rate < min_win_rate:
            continue

        pair_id = make_pair_id(coin_a, coin_b)
        params = optimized.get(pair_id)
        entry = params.z_entry if params else z_entry_threshold
        exit_ = params.z_exit if params else z_exit_threshold

        z = stats.z_score
        if z is None or abs(z) < entry:
            continue

        opportunities.append(Opportunity(
            pair_id=pair_id,
            coin_a=coin_a,
            coin_b=coin_b,
            signal="SHORT" if z > 0 else "LONG",
            z_score=z,
            z_entry_threshold=entry,
            z_exit_threshold=exit_,
            is_optimized=params is not None,
            quality_stars=stats.quality_stars,
            win_rate=stats.win_rate,
            avg_return=stats.avg_return,
            correlation=stats.correlation,
            last_ratio=stats.last_ratio,
            score=opportunity_score(stats.quality_stars, z, stats.win_rate, params is not None),
        ))

    # Stable: equal scores keep pair enumeration order
    opportunities.sort(key=lambda o: o.score, reverse=True)
    return opportunities


async def scan_opportunities(
    gateway,
    universes: list[str],
    min_quality_stars: int,
    min_win_rate: float,
    z_entry_threshold: float,
    z_exit_threshold: float,
    now: int,
    optimized: dict[str, OptimizedParams] | None = None,
    timeout: float = 15.0,
) -> list[Opportunity]:
    """Full scan: fetch a year of daily candles per coin, then rank all pairs."""
    coins = resolve_universe(universes)
    start = now - HISTORY_DAYS * MS_PER_DAY
    histories = await fetch_histories(gateway, coins, start, now, timeout)
    logger.info(f"Scan: {len(histories)}/{len(coins)} coins with history")

    # Pair statistics are CPU bound; keep the event loop responsive
    return await asyncio.get_running_loop().run_in_executor(
        None,
        lambda: rank_pairs(
            histories,
            coins,
            min_quality_stars=min_quality_stars,
            min_win_rate=min_win_rate,
            z_entry_threshold=z_entry_threshold,
            z_exit_threshold=z_exit_threshold,
            optimized=optimized,
        ),
    )
