"""Build the object graph shared by the API, the worker and the CLI."""

import logging
from dataclasses import dataclass

from sqlalchemy.engine import Engine

from spreadlab.config import Settings
from spreadlab.database import create_db_and_tables, make_engine
from spreadlab.engine.bot import SpreadBot
from spreadlab.engine.scheduler import BotWorker
from spreadlab.repository import BotRepository
from spreadlab.services.encryption import FernetSecretStore
from spreadlab.services.hyperliquid_client import HyperliquidGateway
from spreadlab.services.notifier import Notifier

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    settings: Settings
    engine: Engine
    repository: BotRepository
    gateway: HyperliquidGateway
    notifier: Notifier
    bot: SpreadBot
    worker: BotWorker
    secrets: FernetSecretStore | None


def build_runtime(settings: Settings, engine: Engine | None = None) -> Runtime:
    engine = engine or make_engine(settings.database_url)
    create_db_and_tables(engine)

    repository = BotRepository(engine, initial_balance=settings.initial_balance)
    repository.ensure_defaults()

    secrets = FernetSecretStore(settings.encryption_key) if settings.encryption_key else None
    if secrets is None:
        logger.warning("SL_ENCRYPTION_KEY not set; credentials and live mode are unavailable")

    def load_credential() -> tuple[str, str] | None:
        cred = repository.get_active_credential()
        if cred is None or secrets is None:
            return None
        return cred.wallet_address, secrets.decrypt(cred.secret_encrypted)

    gateway = HyperliquidGateway(settings.hyperliquid_base_url, credential_loader=load_credential)
    notifier = Notifier()
    bot = SpreadBot(
        repository,
        gateway,
        notifier,
        call_timeout=settings.call_timeout_seconds,
    )
    worker = BotWorker(
        bot,
        cycle_interval=settings.cycle_interval_seconds,
        check_interval=settings.check_interval_seconds,
        cleanup_interval=settings.cleanup_interval_seconds,
        daily_report_hour=settings.daily_report_hour,
        has_credential=lambda: secrets is not None and repository.get_active_credential() is not None,
    )
    return Runtime(
        settings=settings,
        engine=engine,
        repository=repository,
        gateway=gateway,
        notifier=notifier,
        bot=bot,
        worker=worker,
        secrets=secrets,
    )
