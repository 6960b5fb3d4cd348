"""Credential model: encrypted Hyperliquid API wallet credentials."""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class Credential(SQLModel, table=True):
    __tablename__ = "credential"

    id: int | None = Field(default=None, primary_key=True)
    name: str = "default"
    wallet_address: str  # account the API wallet trades for
    secret_encrypted: str = ""  # Fernet-encrypted API wallet private key
    is_active: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
