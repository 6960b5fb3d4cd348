"""BotLog model: structured log of bot decisions and errors."""

from typing import Any

from sqlmodel import SQLModel, Field, Column
from sqlalchemy import JSON


class BotLog(SQLModel, table=True):
    __tablename__ = "bot_log"

    id: int | None = Field(default=None, primary_key=True)
    timestamp: int = Field(index=True)  # epoch ms
    level: str  # "info", "warning", "error"
    message: str
    data: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
