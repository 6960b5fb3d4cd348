"""OptimizedParams model: per-pair thresholds found by the optimizer."""

from sqlmodel import SQLModel, Field


class OptimizedParams(SQLModel, table=True):
    __tablename__ = "optimized_params"

    pair_id: str = Field(primary_key=True)
    coin_a: str
    coin_b: str
    z_entry: float
    z_exit: float
    win_rate: float
    avg_return: float
    score: float
    optimized_at: int
    expires_at: int = Field(index=True)  # rows are ignored once now >= expires_at

    def is_valid(self, now: int) -> bool:
        return now < self.expires_at
