"""Shared test fixtures for Orb tests.

This module provides common fixtures used across all test modules:
- Database isolation with temporary files
- Standard test user/session ids
- A fixed clock and ready-made engine components

Usage:
    def test_something(temp_db):
        # temp_db is automatically cleaned up after the test
        ...
"""

import os
import sqlite3
import tempfile
from collections.abc import Generator
from datetime import datetime
from pathlib import Path

import pytest

from orb.config_models import EngineConfig
from orb.constraints.evaluator import ConstraintEvaluator
from orb.constraints.store import InMemoryConstraintStore
from orb.engine import OrbEngine, build_engine
from orb.preferences.store import InMemoryProfileStore


# ─────────────────────────────────────────────────────────────────────────────
# Path Constants
# ─────────────────────────────────────────────────────────────────────────────

PROJECT_ROOT = Path(__file__).parent.parent
PACKAGE_DIR = PROJECT_ROOT / "orb"


# ─────────────────────────────────────────────────────────────────────────────
# Database Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def temp_db() -> Generator[Path, None, None]:
    """Create a temporary database file for testing.

    The database file is automatically deleted after the test completes.

    Yields:
        Path to the temporary database file
    """
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)

    yield db_path

    # Cleanup
    if db_path.exists():
        os.unlink(db_path)


@pytest.fixture
def temp_db_connection(temp_db: Path) -> Generator[sqlite3.Connection, None, None]:
    """Create a SQLite connection to the temporary database.

    Yields:
        sqlite3.Connection with row_factory set
    """
    conn = sqlite3.connect(str(temp_db))
    conn.row_factory = sqlite3.Row

    yield conn

    conn.close()


# ─────────────────────────────────────────────────────────────────────────────
# User Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def mock_user_id() -> str:
    """Standard test user ID."""
    return "test_user_123"


@pytest.fixture
def mock_session_id() -> str:
    """Standard test session ID."""
    return "session_abc456"


# ─────────────────────────────────────────────────────────────────────────────
# Clock Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def fixed_now() -> datetime:
    """A Wednesday afternoon, 14:30."""
    return datetime(2025, 6, 11, 14, 30, 0)


# ─────────────────────────────────────────────────────────────────────────────
# Engine Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def constraint_store() -> InMemoryConstraintStore:
    return InMemoryConstraintStore()


@pytest.fixture
def evaluator(constraint_store: InMemoryConstraintStore, fixed_now: datetime) -> ConstraintEvaluator:
    return ConstraintEvaluator(constraint_store, clock=lambda: fixed_now)


@pytest.fixture
def profile_store() -> InMemoryProfileStore:
    return InMemoryProfileStore()


@pytest.fixture
def engine(constraint_store: InMemoryConstraintStore, profile_store: InMemoryProfileStore) -> OrbEngine:
    """Engine on in-memory stores with default configuration."""
    return build_engine(EngineConfig(), constraint_store=constraint_store, profile_store=profile_store)
