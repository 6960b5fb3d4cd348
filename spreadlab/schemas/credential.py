"""Pydantic schemas for Credential API."""

from datetime import datetime
import re

from pydantic import BaseModel, Field, field_validator

_HEX_KEY_RE = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")
_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def _clean_name(value: str) -> str:
    text = value.strip()
    if not text:
        raise ValueError("must not be empty")
    return text


def _clean_address(value: str) -> str:
    address = value.strip()
    if not _ADDRESS_RE.fullmatch(address):
        raise ValueError("must be a 0x-prefixed 40-hex-char address")
    return address.lower()


def _clean_secret(value: str) -> str:
    key = value.strip()
    if not key:
        raise ValueError("must not be empty")
    if not _HEX_KEY_RE.fullmatch(key):
        raise ValueError("must be a 64-char hex private key, with optional 0x prefix")
    return key if key.startswith("0x") else f"0x{key}"


class CredentialCreate(BaseModel):
    name: str = Field(default="default", min_length=1, max_length=120)
    wallet_address: str
    secret: str  # API wallet private key; encrypted before storage

    @field_validator("name")
    @classmethod
    def _trim_name(cls, value: str) -> str:
        return _clean_name(value)

    @field_validator("wallet_address")
    @classmethod
    def _validate_address(cls, value: str) -> str:
        return _clean_address(value)

    @field_validator("secret")
    @classmethod
    def _validate_secret(cls, value: str) -> str:
        return _clean_secret(value)


class CredentialUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=120)
    wallet_address: str | None = None
    secret: str | None = None  # If provided, re-encrypts
    is_active: bool | None = None

    @field_validator("name")
    @classmethod
    def _trim_optional_name(cls, value: str | None) -> str | None:
        return None if value is None else _clean_name(value)

    @field_validator("wallet_address")
    @classmethod
    def _validate_optional_address(cls, value: str | None) -> str | None:
        return None if value is None else _clean_address(value)

    @field_validator("secret")
    @classmethod
    def _validate_optional_secret(cls, value: str | None) -> str | None:
        return None if value is None else _clean_secret(value)


class CredentialRead(BaseModel):
    id: int
    name: str
    wallet_address: str
    is_active: bool
    created_at: datetime
    # secret is NEVER exposed

    model_config = {"from_attributes": True}
