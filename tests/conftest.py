"""Shared fixtures: an in-memory store per test."""

import pytest
from sqlalchemy.pool import StaticPool

from spreadlab.database import create_db_and_tables, make_engine
from spreadlab.repository import BotRepository


@pytest.fixture
def engine():
    engine = make_engine("sqlite://", poolclass=StaticPool)
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def repo(engine):
    repository = BotRepository(engine, initial_balance=1000.0)
    repository.ensure_defaults()
    return repository
