"""Stateless PnL and exit evaluation for open spreads.

All functions are pure computation; no I/O, no database access.
"""

from dataclasses import dataclass

from spreadlab.models.spread import Leg, OpenSpread
from spreadlab.utils.constants import MAX_HOLDING_MS, TAKE_PROFIT_PERCENT


# ---------------------------------------------------------------------------
# PnL helpers
# ---------------------------------------------------------------------------

def leg_pnl(leg: Leg, price: float) -> float:
    """Unrealized PnL of one leg at `price`."""
    if leg.side == "LONG":
        return (price - leg.entry_price) * leg.size
    return (leg.entry_price - price) * leg.size


def spread_pnl(spread: OpenSpread, price_a: float, price_b: float) -> float:
    """Two-leg PnL of a spread at the given prices."""
    return leg_pnl(spread.leg_a, price_a) + leg_pnl(spread.leg_b, price_b)


def pnl_percent(pnl: float, size_usd: float) -> float:
    return pnl / size_usd * 100 if size_usd else 0.0


def leg_sides(signal: str) -> tuple[str, str]:
    """(side A, side B) for a spread signal. LONG buys A and sells B."""
    if signal == "LONG":
        return "LONG", "SHORT"
    return "SHORT", "LONG"


def stop_loss_hit(pnl_pct: float, stop_loss_percent: float) -> bool:
    return pnl_pct < -stop_loss_percent


# ---------------------------------------------------------------------------
# Exit decision
# ---------------------------------------------------------------------------

@dataclass
class ExitSignal:
    """Exit decision."""
    should_exit: bool
    exit_reason: str | None = None  # "stop_loss", "mean_reversion", "take_profit", "max_holding_time"
    detail: str | None = None
    unrealized_pnl: float = 0.0
    unrealized_pct: float = 0.0


def evaluate_exit(
    spread: OpenSpread,
    current_pnl: float,
    current_z: float | None,
    stop_loss_percent: float,
    now: int,
) -> ExitSignal:
    """Evaluate exit rules in priority order; the first match wins.

    1. stop loss: pnl% below -stop_loss_percent
    2. mean reversion: |z| under the spread's exit threshold while in profit
    3. take profit: pnl% above TAKE_PROFIT_PERCENT
    4. max holding time exceeded

    `current_z` may be None when it was not fetched or is undefined; the
    mean reversion rule is then skipped.
    """
    pct = pnl_percent(current_pnl, spread.size_usd)

    if stop_loss_hit(pct, stop_loss_percent):
        return ExitSignal(
            should_exit=True,
            exit_reason="stop_loss",
            detail=f"Stop loss ({pct:.2f}% < -{stop_loss_percent}%)",
            unrealized_pnl=current_pnl,
            unrealized_pct=pct,
        )

    # Reversion alone never closes a losing spread
    if current_z is not None and abs(current_z) < spread.z_exit_threshold and current_pnl > 0:
        tag = " [OPT]" if spread.is_optimized else ""
        return ExitSignal(
            should_exit=True,
            exit_reason="mean_reversion",
            detail=f"Mean reversion (z={current_z:.2f} < {spread.z_exit_threshold}){tag}",
            unrealized_pnl=current_pnl,
            unrealized_pct=pct,
        )

    if pct > TAKE_PROFIT_PERCENT:
        return ExitSignal(
            should_exit=True,
            exit_reason="take_profit",
            detail=f"Take profit ({pct:.2f}% > {TAKE_PROFIT_PERCENT}%)",
            unrealized_pnl=current_pnl,
            unrealized_pct=pct,
        )

    held = now - spread.entry_time
    if held > MAX_HOLDING_MS:
        return ExitSignal(
            should_exit=True,
            exit_reason="max_holding_time",
            detail=f"Max holding time ({held / 3_600_000:.1f}h)",
            unrealized_pnl=current_pnl,
            unrealized_pct=pct,
        )

    return ExitSignal(
        should_exit=False,
        unrealized_pnl=current_pnl,
        unrealized_pct=pct,
    )
