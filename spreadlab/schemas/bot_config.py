"""Pydantic schemas for the bot configuration."""

from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from spreadlab.utils.constants import UNIVERSES


def _check_universes(value: list[str]) -> list[str]:
    unknown = [u for u in value if u not in UNIVERSES]
    if unknown:
        allowed = ", ".join(UNIVERSES)
        raise ValueError(f"unknown universes {unknown}; must be among: {allowed}")
    # Keep first-seen order, drop duplicates
    return list(dict.fromkeys(value))


class BotConfig(BaseModel):
    enabled: bool = False
    mode: Literal["paper", "live"] = "paper"
    max_position_usd: float = Field(default=100.0, gt=0, le=100_000)
    max_concurrent_spreads: int = Field(default=3, ge=1, le=20)
    min_quality_stars: int = Field(default=4, ge=2, le=5)
    min_win_rate: float = Field(default=0.6, ge=0, le=1)
    z_entry_threshold: float = Field(default=1.5, gt=0, le=5)
    z_exit_threshold: float = Field(default=0.5, gt=0, le=5)
    stop_loss_percent: float = Field(default=10.0, gt=0, le=100)
    active_universes: list[str] = Field(
        default_factory=lambda: ["l2", "bluechips", "defi"], min_length=1
    )

    model_config = {"from_attributes": True}

    @field_validator("active_universes")
    @classmethod
    def _validate_universes(cls, value: list[str]) -> list[str]:
        return _check_universes(value)

    @model_validator(mode="after")
    def _validate_thresholds(self):
        if self.z_exit_threshold >= self.z_entry_threshold:
            raise ValueError("z_exit_threshold must be less than z_entry_threshold")
        return self


class BotConfigUpdate(BaseModel):
    """Partial update; merged onto the stored config and re-validated as a whole."""
    mode: Literal["paper", "live"] | None = None
    max_position_usd: float | None = Field(default=None, gt=0, le=100_000)
    max_concurrent_spreads: int | None = Field(default=None, ge=1, le=20)
    min_quality_stars: int | None = Field(default=None, ge=2, le=5)
    min_win_rate: float | None = Field(default=None, ge=0, le=1)
    z_entry_threshold: float | None = Field(default=None, gt=0, le=5)
    z_exit_threshold: float | None = Field(default=None, gt=0, le=5)
    stop_loss_percent: float | None = Field(default=None, gt=0, le=100)
    active_universes: list[str] | None = Field(default=None, min_length=1)

    @field_validator("active_universes")
    @classmethod
    def _validate_optional_universes(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        return _check_universes(value)
