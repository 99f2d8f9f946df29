"""Shared fixtures: a throwaway SQLite store and a fixed calendar."""
import sys
from pathlib import Path

import pytest

# Make the top-level packages importable without installing the project
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from database.db_manager import DatabaseManager  # noqa: E402
from engagement.aggregation import AggregationEngine  # noqa: E402
from engagement.queries import QueryFacade  # noqa: E402
from factories import TODAY  # noqa: E402


@pytest.fixture
def db(tmp_path):
    return DatabaseManager(f"sqlite:///{tmp_path / 'engagement.db'}")


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def engine(db):
    return AggregationEngine(db, window_days=90, today_fn=lambda: TODAY)


@pytest.fixture
def queries(db, engine):
    return QueryFacade(db, engine=engine)
