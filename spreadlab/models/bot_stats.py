"""BotStats model: paper balance and cumulative trade counters."""

from sqlmodel import SQLModel, Field


class BotStats(SQLModel, table=True):
    __tablename__ = "bot_stats"

    id: int = Field(default=1, primary_key=True)
    paper_balance: float = 1000.0
    total_trades: int = 0
    winning_trades: int = 0
    total_pnl: float = 0.0
    peak_equity: float = 1000.0  # only raised, except by reset
    updated_at: int = 0
