"""BotConfigRecord model: the single persisted bot configuration row."""

from sqlmodel import SQLModel, Field, Column
from sqlalchemy import JSON


class BotConfigRecord(SQLModel, table=True):
    __tablename__ = "bot_config"

    id: int = Field(default=1, primary_key=True)
    enabled: bool = False
    mode: str = "paper"  # "paper" or "live"
    max_position_usd: float = 100.0
    max_concurrent_spreads: int = 3
    min_quality_stars: int = 4
    min_win_rate: float = 0.6
    z_entry_threshold: float = 1.5
    z_exit_threshold: float = 0.5
    stop_loss_percent: float = 10.0
    active_universes: list[str] = Field(
        default_factory=lambda: ["l2", "bluechips", "defi"],
        sa_column=Column(JSON),
    )
    updated_at: int = 0
