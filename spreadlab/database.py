"""SQLModel database engine construction."""

import logging
from pathlib import Path

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

# Register table metadata
import spreadlab.models  # noqa: F401

logger = logging.getLogger(__name__)


def make_engine(database_url: str, **kwargs) -> Engine:
    """Create an engine for the given URL.

    SQLite needs check_same_thread=False since the scheduler, the API and the
    Telegram thread all share one engine; file databases get their parent
    directory created.
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        _, sep, path = database_url.partition(":///")
        if sep and path and path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)

    return create_engine(
        database_url,
        echo=False,
        connect_args=connect_args,
        **kwargs,
    )


def create_db_and_tables(engine: Engine):
    """Create all tables. Called on startup."""
    SQLModel.metadata.create_all(engine)
    logger.info("Database tables ready")
