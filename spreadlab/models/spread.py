"""OpenSpread and TradeRecord models.

An OpenSpread is a live two-leg position; at most one exists per pair. A
TradeRecord is the append-only snapshot written when a spread closes.
"""

from dataclasses import dataclass

from sqlmodel import SQLModel, Field


@dataclass(frozen=True)
class Leg:
    coin: str
    side: str  # "LONG" or "SHORT"
    entry_price: float
    size: float


class _SpreadFields(SQLModel):
    pair_id: str = Field(index=True)  # e.g. "eth-btc"
    coin_a: str
    coin_b: str
    signal: str  # "LONG" (long A / short B) or "SHORT"
    size_usd: float
    leg_a_side: str
    leg_a_entry_price: float
    leg_a_size: float
    leg_b_side: str
    leg_b_entry_price: float
    leg_b_size: float
    entry_ratio: float
    entry_z_score: float
    z_exit_threshold: float
    is_optimized: bool = False
    entry_time: int  # epoch ms
    mode: str = "paper"

    @property
    def leg_a(self) -> Leg:
        return Leg(self.coin_a, self.leg_a_side, self.leg_a_entry_price, self.leg_a_size)

    @property
    def leg_b(self) -> Leg:
        return Leg(self.coin_b, self.leg_b_side, self.leg_b_entry_price, self.leg_b_size)


class OpenSpread(_SpreadFields, table=True):
    __tablename__ = "open_spread"

    id: str = Field(primary_key=True)
    pair_id: str = Field(index=True, unique=True)
    current_pnl: float = 0.0
    current_ratio: float | None = None
    last_update: int | None = None


class TradeRecord(_SpreadFields, table=True):
    __tablename__ = "trade_history"

    id: int | None = Field(default=None, primary_key=True)
    spread_id: str = Field(index=True)
    leg_a_exit_price: float
    leg_b_exit_price: float
    exit_ratio: float
    exit_time: int = Field(index=True)
    exit_reason: str  # "stop_loss", "mean_reversion", "take_profit", "max_holding_time", "manual"
    final_pnl: float

    @classmethod
    def from_spread(
        cls,
        spread: OpenSpread,
        exit_price_a: float,
        exit_price_b: float,
        exit_time: int,
        exit_reason: str,
        final_pnl: float,
    ) -> "TradeRecord":
        fields = spread.model_dump(
            exclude={"id", "current_pnl", "current_ratio", "last_update"}
        )
        return cls(
            **fields,
            spread_id=spread.id,
            leg_a_exit_price=exit_price_a,
            leg_b_exit_price=exit_price_b,
            exit_ratio=exit_price_a / exit_price_b,
            exit_time=exit_time,
            exit_reason=exit_reason,
            final_pnl=final_pnl,
        )
