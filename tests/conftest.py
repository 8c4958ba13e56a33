"""
Pytest configuration and fixtures for dejacmd tests.

This module provides shared fixtures used across unit and integration
tests: throwaway config directories, SQLite database URLs and an engine
wired to them.
"""

import sqlite3
import tempfile
from pathlib import Path
from typing import Callable, Generator

import pytest

from dejacmd.engine import HistoryEngine
from dejacmd.schema import Settings
from dejacmd.settings import SettingsStore

FIXTURES_DIR = Path(__file__).parent / "fixtures"


def sqlite_url(path: Path) -> str:
    """sqlite:// URL for an absolute file path."""
    return f"sqlite://{path.as_posix()}"


def query_rows(db_path: Path, sql: str, params: tuple = ()) -> list[tuple]:
    """Read rows straight from a SQLite file, bypassing dejacmd."""
    conn = sqlite3.connect(db_path)
    try:
        return conn.execute(sql, params).fetchall()
    finally:
        conn.close()


def count_history(db_path: Path) -> int:
    return query_rows(db_path, "SELECT COUNT(*) FROM history")[0][0]


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def fixtures_dir() -> Path:
    """Directory holding sample shell history files."""
    return FIXTURES_DIR


@pytest.fixture
def store(temp_dir: Path) -> SettingsStore:
    """Settings store in a private config directory, no lock backoff."""
    return SettingsStore(temp_dir / "config", lock_backoff=0)


@pytest.fixture
def local_db(temp_dir: Path) -> Path:
    return temp_dir / "local.sqlite"


@pytest.fixture
def central_db(temp_dir: Path) -> Path:
    return temp_dir / "central.sqlite"


@pytest.fixture
def make_engine(
    store: SettingsStore,
    local_db: Path,
    central_db: Path,
) -> Callable[..., HistoryEngine]:
    """
    Factory for engines over SQLite stores in temp_dir.

    Usage:
        engine = make_engine()                  # local only
        engine = make_engine(central=True)      # local and central
    """

    def _make(central: bool = False, local_url: str | None = None) -> HistoryEngine:
        settings = Settings(
            local_database_url=local_url or sqlite_url(local_db),
            central_database_url=sqlite_url(central_db) if central else None,
        )
        store.save(settings)
        return HistoryEngine(store, settings)

    return _make
