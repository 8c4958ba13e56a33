"""
Integration tests for history import and export.

Tests cover:
- Importing bash (with and without timestamps), zsh and mixed files
- Truncate versus append imports
- Writing to both stores
- Foreign SQLite history files
- Export in both formats and re-import round trips
- Search over imported history
"""

import asyncio
import sqlite3
from pathlib import Path
from typing import Callable

import pytest
from conftest import count_history, query_rows

from dejacmd.engine import HistoryEngine, ProgressHook
from dejacmd.errors import ConfigurationError, HistoryFileError
from dejacmd.schema import ExportFormat, Settings, TargetName
from dejacmd.settings import SettingsStore
from dejacmd.store.search import SearchQuery, parse_time_range

EngineFactory = Callable[..., HistoryEngine]


def commands(db_path: Path) -> list[str]:
    return [row[0] for row in query_rows(db_path, "SELECT command FROM history ORDER BY command_timestamp")]


class RecordingProgress(ProgressHook):
    """Collects progress callbacks."""

    def __init__(self) -> None:
        self.total = 0
        self.advanced = 0
        self.warnings: list[str] = []

    def start(self, total: int, description: str) -> None:
        self.total = total

    def advance(self, amount: int = 1) -> None:
        self.advanced += amount

    def warn(self, text: str) -> None:
        self.warnings.append(text)


# =============================================================================
# Text Imports
# =============================================================================


class TestTextImport:
    """Tests for bash and zsh history files."""

    def test_bash_no_date(self, make_engine: EngineFactory, fixtures_dir: Path, local_db: Path) -> None:
        summary = asyncio.run(make_engine().import_history(fixtures_dir / "bash-no-date", truncate_first=True))
        assert summary.imported == 4
        assert summary.errors == 0
        assert set(commands(local_db)) == {"ls -l", "rm -rf /tmp", "fdisk -l", "rsync -avzz /x/ /y/"}
        stamps = {row[0] for row in query_rows(local_db, "SELECT command_timestamp FROM history")}
        assert stamps == {"1970-01-01 00:00:00"}

    def test_bash_with_date(self, make_engine: EngineFactory, fixtures_dir: Path, local_db: Path) -> None:
        asyncio.run(make_engine().import_history(fixtures_dir / "bash_date", truncate_first=True))
        assert count_history(local_db) == 4
        rows = query_rows(local_db, "SELECT command_timestamp, shell FROM history WHERE command = ?", ("ls -l",))
        assert rows == [("2026-01-11 04:33:25", "bash")]

    def test_zsh(self, make_engine: EngineFactory, fixtures_dir: Path, local_db: Path) -> None:
        summary = asyncio.run(make_engine().import_history(fixtures_dir / "zsh", truncate_first=True))
        assert summary.imported == 6
        assert summary.skipped == 1
        assert count_history(local_db) == 6
        assert 'sqlite3 .dejacmd.sqlite "select * from history limit 5"' in commands(local_db)
        assert query_rows(local_db, "SELECT shell FROM history WHERE command = ?", ("env",)) == [("zsh",)]

    def test_mixed(self, make_engine: EngineFactory, fixtures_dir: Path, local_db: Path) -> None:
        asyncio.run(make_engine().import_history(fixtures_dir / "zsh_bash_mix", truncate_first=True))
        assert count_history(local_db) == 9
        shells = dict(query_rows(local_db, "SELECT shell, COUNT(*) FROM history GROUP BY shell"))
        assert shells == {"zsh": 6, "bash": 3}
        assert "ls -ltrh" in commands(local_db)

    def test_entries_have_ids_and_os(self, make_engine: EngineFactory, fixtures_dir: Path, local_db: Path) -> None:
        asyncio.run(make_engine().import_history(fixtures_dir / "bash_date"))
        rows = query_rows(local_db, "SELECT id, os, exit_status FROM history")
        assert len({row[0] for row in rows}) == 4
        assert all(row[1] for row in rows)
        assert all(row[2] == -1 for row in rows)

    def test_progress_covers_every_line(self, make_engine: EngineFactory, fixtures_dir: Path) -> None:
        progress = RecordingProgress()
        asyncio.run(make_engine().import_history(fixtures_dir / "zsh_bash_mix", progress=progress))
        assert progress.total == 12
        assert progress.advanced == 12

    def test_invalid_utf8_line_is_an_error(
        self, make_engine: EngineFactory, temp_dir: Path, local_db: Path
    ) -> None:
        """A line that is not UTF-8 is counted as an error, never stored altered."""
        history = temp_dir / "latin1_history"
        history.write_bytes(b"ls -l\necho caf\xe9\npwd\n")
        progress = RecordingProgress()
        summary = asyncio.run(make_engine().import_history(history, progress=progress))
        assert summary.imported == 2
        assert summary.errors == 1
        assert summary.lines == 3
        assert progress.advanced == 3
        assert sorted(commands(local_db)) == ["ls -l", "pwd"]
        assert progress.warnings == ["Line 2: not valid UTF-8"]

    def test_unrepresentable_epoch_skips_entry(
        self, make_engine: EngineFactory, temp_dir: Path, local_db: Path
    ) -> None:
        """An epoch beyond year 9999 fails that entry only; the run continues."""
        history = temp_dir / "far_future"
        history.write_text("#99999999999999\nls\npwd\n")
        progress = RecordingProgress()
        summary = asyncio.run(make_engine().import_history(history, progress=progress))
        assert summary.errors == 1
        assert summary.imported == 1
        assert commands(local_db) == ["pwd"]
        assert progress.warnings[0].startswith("Line 1: Invalid timestamp: 99999999999999")


class TestTruncate:
    def test_truncate_before_import(self, make_engine: EngineFactory, fixtures_dir: Path, local_db: Path) -> None:
        engine = make_engine()
        asyncio.run(engine.import_history(fixtures_dir / "bash-no-date", truncate_first=True))
        assert count_history(local_db) == 4
        asyncio.run(engine.import_history(fixtures_dir / "zsh", truncate_first=True))
        assert count_history(local_db) == 6

    def test_append_without_truncate(self, make_engine: EngineFactory, fixtures_dir: Path, local_db: Path) -> None:
        engine = make_engine()
        asyncio.run(engine.import_history(fixtures_dir / "bash-no-date"))
        asyncio.run(engine.import_history(fixtures_dir / "zsh"))
        assert count_history(local_db) == 10


class TestBothStores:
    def test_import_writes_both(
        self,
        make_engine: EngineFactory,
        fixtures_dir: Path,
        local_db: Path,
        central_db: Path,
    ) -> None:
        summary = asyncio.run(make_engine(central=True).import_history(fixtures_dir / "bash_date"))
        assert summary.imported == 4
        assert count_history(local_db) == 4
        assert count_history(central_db) == 4

    def test_broken_central_is_reported_and_skipped(
        self,
        make_engine: EngineFactory,
        fixtures_dir: Path,
        local_db: Path,
        central_db: Path,
    ) -> None:
        conn = sqlite3.connect(central_db)
        conn.execute("CREATE TABLE history (x INTEGER)")
        conn.close()
        summary = asyncio.run(make_engine(central=True).import_history(fixtures_dir / "bash_date"))
        assert TargetName.CENTRAL.value in summary.target_errors
        assert summary.imported == 4
        assert count_history(local_db) == 4


class TestImportErrors:
    def test_missing_file(self, make_engine: EngineFactory, temp_dir: Path) -> None:
        with pytest.raises(HistoryFileError) as exc:
            asyncio.run(make_engine().import_history(temp_dir / "nonexistent"))
        assert "No such file" in exc.value.message

    def test_empty_file(self, make_engine: EngineFactory, temp_dir: Path) -> None:
        empty = temp_dir / "empty_history"
        empty.write_text("")
        with pytest.raises(HistoryFileError):
            asyncio.run(make_engine().import_history(empty))

    def test_no_usable_store(self, store: SettingsStore, fixtures_dir: Path) -> None:
        engine = HistoryEngine(store, Settings(local_database_url=""))
        with pytest.raises(ConfigurationError):
            asyncio.run(engine.import_history(fixtures_dir / "bash_date"))


# =============================================================================
# Foreign SQLite Imports
# =============================================================================


@pytest.fixture
def foreign_db(temp_dir: Path) -> Path:
    path = temp_dir / "recent.db"
    conn = sqlite3.connect(path)
    conn.execute(
        "CREATE TABLE commands (command_dt timestamp, command text, pid int, "
        "return_val int, pwd text, session text, json_data json)"
    )
    conn.executemany(
        "INSERT INTO commands (command_dt, command, pid, return_val, pwd) VALUES (?, ?, ?, ?, ?)",
        [
            ("2026-01-12 10:00:00", "ls -la", 100, 0, "/home/me"),
            ("2026-01-12 10:01:00", "make", 100, 2, None),
            ("not a date", "oops", 100, 0, "/tmp"),
        ],
    )
    conn.commit()
    conn.close()
    return path


class TestForeignImport:
    """Tests for SQLite "recent" history files."""

    def test_import(self, make_engine: EngineFactory, foreign_db: Path, local_db: Path) -> None:
        progress = RecordingProgress()
        summary = asyncio.run(make_engine().import_history(foreign_db, progress=progress))
        assert summary.imported == 2
        assert summary.errors == 1
        assert progress.total == 3
        assert len(progress.warnings) == 1
        rows = query_rows(
            local_db,
            "SELECT command_timestamp, command, exit_status, cwd, shell FROM history ORDER BY command_timestamp",
        )
        assert rows[0] == ("2026-01-12 10:00:00", "ls -la", 0, "/home/me", "bash")
        assert rows[1][1:3] == ("make", 2)
        assert rows[1][3]

    def test_foreign_file_not_modified(self, make_engine: EngineFactory, foreign_db: Path) -> None:
        before = foreign_db.read_bytes()
        asyncio.run(make_engine().import_history(foreign_db))
        assert foreign_db.read_bytes() == before

    def test_empty_foreign_file(self, make_engine: EngineFactory, temp_dir: Path) -> None:
        path = temp_dir / "empty.db"
        conn = sqlite3.connect(path)
        conn.execute("CREATE TABLE commands (command_dt timestamp, command text, return_val int, pwd text)")
        conn.close()
        with pytest.raises(HistoryFileError) as exc:
            asyncio.run(make_engine().import_history(path))
        assert "no history entries" in exc.value.message


# =============================================================================
# Export
# =============================================================================


class TestExport:
    """Tests for bash and zsh export."""

    def test_bash_format(self, make_engine: EngineFactory, fixtures_dir: Path, temp_dir: Path) -> None:
        engine = make_engine()
        asyncio.run(engine.import_history(fixtures_dir / "bash_date"))
        out = temp_dir / "out_bash"
        summary = asyncio.run(engine.export_history(out, ExportFormat.BASH))
        assert summary.exported == 4
        lines = out.read_text().splitlines()
        assert lines[:2] == ["#1768106005", "ls -l"]
        assert len(lines) == 8

    def test_zsh_format(self, make_engine: EngineFactory, fixtures_dir: Path, temp_dir: Path) -> None:
        engine = make_engine()
        asyncio.run(engine.import_history(fixtures_dir / "zsh"))
        out = temp_dir / "out_zsh"
        asyncio.run(engine.export_history(out, ExportFormat.ZSH))
        lines = out.read_text().splitlines()
        assert len(lines) == 6
        assert all(line.startswith(": ") and ";" in line for line in lines)
        assert lines[0] == ": 1768106544:0;ls -altrh"

    @pytest.mark.parametrize(
        "fixture,fmt",
        [("bash_date", ExportFormat.BASH), ("zsh", ExportFormat.ZSH), ("bash-no-date", ExportFormat.ZSH)],
    )
    def test_reimport_round_trip(
        self,
        make_engine: EngineFactory,
        fixtures_dir: Path,
        temp_dir: Path,
        local_db: Path,
        fixture: str,
        fmt: ExportFormat,
    ) -> None:
        engine = make_engine()
        asyncio.run(engine.import_history(fixtures_dir / fixture, truncate_first=True))
        original = sorted(commands(local_db))
        out = temp_dir / "exported"
        asyncio.run(engine.export_history(out, fmt))
        asyncio.run(engine.import_history(out, truncate_first=True))
        assert sorted(commands(local_db)) == original

    def test_empty_store_writes_no_file(self, make_engine: EngineFactory, temp_dir: Path, local_db: Path) -> None:
        engine = make_engine()
        conn = sqlite3.connect(local_db)
        conn.execute("CREATE TABLE history (id TEXT, command_timestamp TEXT, command TEXT)")
        conn.close()
        out = temp_dir / "nothing"
        summary = asyncio.run(engine.export_history(out))
        assert summary.exported == 0
        assert not out.exists()

    def test_from_central(
        self,
        make_engine: EngineFactory,
        fixtures_dir: Path,
        temp_dir: Path,
    ) -> None:
        engine = make_engine(central=True)
        asyncio.run(engine.import_history(fixtures_dir / "bash_date"))
        out = temp_dir / "central_out"
        summary = asyncio.run(engine.export_history(out, use_central=True))
        assert summary.exported == 4

    def test_central_not_configured(self, make_engine: EngineFactory, temp_dir: Path) -> None:
        with pytest.raises(ConfigurationError):
            asyncio.run(make_engine().export_history(temp_dir / "x", use_central=True))


# =============================================================================
# Search
# =============================================================================


class TestSearch:
    """Tests for searching imported history."""

    @pytest.fixture
    def engine(self, make_engine: EngineFactory, fixtures_dir: Path) -> HistoryEngine:
        engine = make_engine()
        asyncio.run(engine.import_history(fixtures_dir / "bash_date"))
        asyncio.run(engine.import_history(fixtures_dir / "bash_date"))
        return engine

    def test_substring(self, engine: HistoryEngine) -> None:
        hits = asyncio.run(engine.search(SearchQuery(term="rm ")))
        assert [h.command for h in hits] == ["rm -rf /tmp", "rm -rf /tmp"]

    def test_newest_first_with_time(self, engine: HistoryEngine) -> None:
        hits = asyncio.run(engine.search(SearchQuery(show_time=True, limit=1)))
        assert len(hits) == 1
        assert hits[0].command == "cp .zshenv ../me"
        assert hits[0].command_timestamp == "2026-01-11 04:33:50"

    def test_unique(self, engine: HistoryEngine) -> None:
        hits = asyncio.run(engine.search(SearchQuery(unique=True)))
        assert [h.command for h in hits] == ["cp .zshenv ../me", "fdisk -l", "rm -rf /tmp", "ls -l"]

    def test_ignore_case(self, engine: HistoryEngine) -> None:
        hits = asyncio.run(engine.search(SearchQuery(term="FDISK", ignore_case=True, unique=True)))
        assert [h.command for h in hits] == ["fdisk -l"]

    def test_time_window(self, engine: HistoryEngine) -> None:
        start, end = parse_time_range("2026-01-11_04:33:35", "2026-01-11_04:33:45")
        hits = asyncio.run(engine.search(SearchQuery(start=start, end=end, unique=True)))
        assert [h.command for h in hits] == ["fdisk -l"]
