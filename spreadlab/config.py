"""Application configuration via environment variables."""

from pathlib import Path
from pydantic_settings import BaseSettings

PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    database_url: str = f"sqlite:///{PROJECT_ROOT / 'data' / 'spreadlab.db'}"
    encryption_key: str = ""  # Fernet key; generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:5173"]

    # Control API
    api_token: str = ""  # empty disables the API (every request is rejected)

    # Market data / execution
    hyperliquid_base_url: str = "https://api.hyperliquid.xyz"
    call_timeout_seconds: float = 15.0

    # Worker
    run_worker: bool = True
    cycle_interval_seconds: int = 60
    check_interval_seconds: int = 30
    cleanup_interval_seconds: int = 3600
    daily_report_hour: int = 20
    initial_balance: float = 1000.0

    # Telegram
    telegram_bot_token: str = ""
    telegram_chat_ids: list[int] = []

    model_config = {"env_prefix": "SL_", "env_file": ".env"}


settings = Settings()
