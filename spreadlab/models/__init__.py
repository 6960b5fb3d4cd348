"""Database models."""

from spreadlab.models.bot_config import BotConfigRecord
from spreadlab.models.bot_stats import BotStats
from spreadlab.models.spread import OpenSpread, TradeRecord
from spreadlab.models.bot_log import BotLog
from spreadlab.models.optimized_params import OptimizedParams
from spreadlab.models.worker_status import WorkerStatus
from spreadlab.models.credential import Credential

__all__ = [
    "BotConfigRecord",
    "BotStats",
    "OpenSpread",
    "TradeRecord",
    "BotLog",
    "OptimizedParams",
    "WorkerStatus",
    "Credential",
]
