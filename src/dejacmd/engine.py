"""
History engine for dejacmd.

The engine is the orchestration layer between the settings file, the
history formats and the two stores. It coordinates:
- SettingsStore: URLs, credentials and migration watermarks
- Connection resolution: one target per configured URL
- Schema migrations: run opportunistically before live recording
- Dual writes: every entry goes to both targets independently

Operations:
    - record_live: one `history 1` line from a shell hook
    - import_history: bash/zsh text or a foreign SQLite history file
    - export_history: bash or zsh text from one store
    - search: substring/time-window query against one store

Design Principles:
    - Per-target isolation: a target that cannot be opened, migrated or
      written is reported and skipped; the other target carries on
    - Per-entry isolation: during import a bad line or failed insert is
      counted and the run continues
    - Settings are loaded once and passed explicitly; only save() writes
"""

import asyncio
import logging
import re
import uuid
from pathlib import Path
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from dejacmd.errors import (
    ConfigurationError,
    DejacmdError,
    HistoryFileError,
    HistoryParseError,
    HistoryReadError,
    HistoryWriteError,
)
from dejacmd.history.export import write_history
from dejacmd.history.foreign import count_foreign, is_sqlite_file, open_foreign, read_foreign
from dejacmd.history.parser import iter_history
from dejacmd.schema import (
    ExportFormat,
    ExportSummary,
    HistoryEntry,
    ImportSummary,
    Settings,
    TargetName,
    format_timestamp,
)
from dejacmd.settings import SettingsStore
from dejacmd.store.connection import (
    UNCONFIGURED,
    Configured,
    DatabaseTarget,
    dispose_targets,
    resolve_database,
)
from dejacmd.store.migrate import TargetMigration, apply_migrations, discover_scripts, needs_pass
from dejacmd.store.search import SearchHit, SearchQuery, search_history
from dejacmd.store.sql import COUNT_HISTORY_SQL, EXPORT_HISTORY_SQL
from dejacmd.store.writer import (
    DualWriteOutcome,
    TargetOutcome,
    ensure_schema,
    record,
    truncate,
    write_target,
)
from dejacmd.sysinfo import current_dir, current_user_name, local_ip, os_tag, process_info

logger = logging.getLogger(__name__)

# Output of `history 1` with HISTTIMEFORMAT="%F %T ":
#   "66774  2026-01-13 17:45:51 ls -ltrh"
LIVE_LINE_RE = re.compile(r"^\s*(\d+)\s+(\d{4}-\d{2}-\d{2}\s+\d{2}:\d{2}:\d{2})\s+(.+)$")


def new_entry_id() -> str:
    return uuid.uuid4().hex


def parse_live_line(line: str) -> tuple[str, str]:
    """
    Split a `history 1` line into (timestamp, command).

    Raises:
        HistoryParseError: If the line is not in the expected shape
    """
    match = LIVE_LINE_RE.match(line)
    if match is None:
        raise HistoryParseError(line=line)
    return " ".join(match.group(2).split()), match.group(3)


class ProgressHook:
    """
    Progress callbacks for long operations; the default does nothing.

    The CLI subclasses this to drive a rich progress bar.
    """

    def start(self, total: int, description: str) -> None:
        pass

    def advance(self, amount: int = 1) -> None:
        pass

    def warn(self, text: str) -> None:
        logger.warning(text)

    def finish(self, text: str) -> None:
        pass


class HistoryEngine:
    """
    Main orchestration object for dejacmd.

    Usage:
        engine = HistoryEngine(SettingsStore())
        summary = asyncio.run(engine.import_history("~/.bash_history"))
        print(f"{summary.imported} commands imported")

    Attributes:
        store: Settings and key file access
        settings: Settings for this invocation (updated by migrate())
    """

    def __init__(self, store: SettingsStore, settings: Settings | None = None) -> None:
        self.store = store
        self.settings = settings if settings is not None else store.load_or_default()
        self._user_name = ""
        self._ip = ""

    # =========================================================================
    # Targets
    # =========================================================================

    async def open_target(
        self,
        name: TargetName,
        create_schema: bool = False,
        clear: bool = False,
    ) -> DatabaseTarget:
        """
        Resolve one target and optionally prepare it for writes.

        Raises:
            DejacmdError: If credentials, connection, schema creation or
                truncation fail
        """
        url = self.settings.database_url(name)
        if not url.strip():
            return UNCONFIGURED
        user, password = self.store.get_credentials(self.settings, name)
        target = await resolve_database(url, user, password)
        if not isinstance(target, Configured):
            return target
        try:
            if create_schema:
                try:
                    await ensure_schema(target.pool)
                except (SQLAlchemyError, OSError) as e:
                    raise HistoryWriteError(
                        target=name.value,
                        operation="create",
                        underlying_error=target.pool.scrub(str(e)),
                    ) from e
            if clear:
                await truncate(name, target)
        except DejacmdError:
            await target.pool.dispose()
            raise
        return target

    async def _open_for_import(
        self,
        truncate_first: bool,
        summary: ImportSummary,
    ) -> tuple[DatabaseTarget, DatabaseTarget]:
        opened: dict[TargetName, DatabaseTarget] = {}
        failures: list[DejacmdError] = []
        for name in (TargetName.LOCAL, TargetName.CENTRAL):
            try:
                opened[name] = await self.open_target(name, create_schema=True, clear=truncate_first)
            except DejacmdError as e:
                logger.error("Skipping %s database: %s", name.value, e.message)
                summary.target_errors[name.value] = e.message
                failures.append(e)
                opened[name] = UNCONFIGURED

        local, central = opened[TargetName.LOCAL], opened[TargetName.CENTRAL]
        if not isinstance(local, Configured) and not isinstance(central, Configured):
            if failures:
                raise failures[0]
            raise ConfigurationError(message="No database URL configured")
        return local, central

    # =========================================================================
    # Migrations
    # =========================================================================

    async def migrate(self) -> dict[TargetName, TargetMigration]:
        """
        Bring both targets up to the newest bundled migration script.

        Never raises for database problems; failures are logged and the
        affected target keeps its old watermark.
        """
        scripts = discover_scripts()
        watermarks = [
            self.settings.watermark(name)
            for name in (TargetName.LOCAL, TargetName.CENTRAL)
            if self.settings.database_url(name).strip()
        ]
        if not needs_pass(scripts, *watermarks):
            return {}

        targets: dict[TargetName, DatabaseTarget] = {}
        for name in (TargetName.LOCAL, TargetName.CENTRAL):
            try:
                targets[name] = await self.open_target(name)
            except DejacmdError as e:
                logger.error("%s migration: %s", name.value.capitalize(), e.message)
                targets[name] = UNCONFIGURED

        try:
            updated, results = await apply_migrations(
                self.settings,
                targets[TargetName.LOCAL],
                targets[TargetName.CENTRAL],
                scripts,
            )
        finally:
            await dispose_targets(*targets.values())

        if updated is not self.settings:
            try:
                self.store.save(updated)
            except DejacmdError as e:
                logger.error("Error saving updated migration watermark to settings: %s", e.message)
            self.settings = updated
        return results

    # =========================================================================
    # Live Recording
    # =========================================================================

    def live_entry(self, line: str, exit_status: int = -1) -> HistoryEntry:
        """Build the entry for one live `history 1` line."""
        command_timestamp, command = parse_live_line(line)
        info = process_info()
        return HistoryEntry(
            id=new_entry_id(),
            command_timestamp=command_timestamp,
            cwd=info.cwd,
            shell=info.shell,
            user_id=info.user_id,
            user_name=info.user_name,
            ip=local_ip(),
            os=os_tag(),
            exit_status=exit_status,
            command=command,
        )

    async def _record_one(self, name: TargetName, entry: HistoryEntry) -> TargetOutcome:
        try:
            target = await self.open_target(name)
        except DejacmdError as e:
            return TargetOutcome.failed(name, f"Error connecting to {name.value} database: {e.message}")
        try:
            return await write_target(name, target, entry, create_schema=True)
        finally:
            await dispose_targets(target)

    async def record_entry(self, entry: HistoryEntry) -> DualWriteOutcome:
        """Resolve and write to both targets, each in its own task."""
        local, central = await asyncio.gather(
            self._record_one(TargetName.LOCAL, entry),
            self._record_one(TargetName.CENTRAL, entry),
        )
        outcome = DualWriteOutcome(local=local, central=central)
        for failure in outcome.failures():
            logger.error(failure.describe())
        return outcome

    async def record_live(self, line: str, exit_status: int = -1) -> DualWriteOutcome:
        """
        Record one live history line.

        Raises:
            HistoryParseError: If the line is not a `history 1` line
        """
        entry = self.live_entry(line, exit_status)
        await self.migrate()
        return await self.record_entry(entry)

    # =========================================================================
    # Import
    # =========================================================================

    def _import_entry(self, timestamp: int, command: str, shell: str, cwd: str, exit_status: int) -> HistoryEntry:
        return HistoryEntry(
            id=new_entry_id(),
            command_timestamp=format_timestamp(timestamp),
            cwd=cwd,
            shell=shell,
            user_id=None,
            user_name=self._user_name,
            ip=self._ip,
            os=os_tag(),
            exit_status=exit_status,
            command=command,
        )

    async def _store(
        self,
        entry: HistoryEntry,
        local: DatabaseTarget,
        central: DatabaseTarget,
        summary: ImportSummary,
        progress: ProgressHook,
    ) -> None:
        outcome = await record(entry, local, central)
        if outcome.ok:
            summary.imported += 1
        else:
            summary.errors += 1
            progress.warn(outcome.describe())

    async def import_history(
        self,
        path: str | Path,
        truncate_first: bool = False,
        progress: ProgressHook | None = None,
    ) -> ImportSummary:
        """
        Import a history file into every usable target.

        Foreign SQLite files are recognized by their header; anything else
        is read as bash/zsh text.

        Raises:
            HistoryFileError: If the file is missing, empty or unreadable
            DejacmdError: If no target could be opened
        """
        path = Path(path).expanduser()
        progress = progress or ProgressHook()
        if not path.is_file():
            raise HistoryFileError(path=str(path), underlying_error="No such file")

        self._user_name = current_user_name()
        self._ip = local_ip()
        try:
            foreign = is_sqlite_file(path)
        except OSError as e:
            raise HistoryFileError(path=str(path), underlying_error=str(e)) from e
        if foreign:
            return await self._import_foreign(path, truncate_first, progress)
        return await self._import_text(path, truncate_first, progress)

    async def _import_text(self, path: Path, truncate_first: bool, progress: ProgressHook) -> ImportSummary:
        try:
            with path.open("rb") as f:
                line_count = sum(1 for _ in f)
        except OSError as e:
            raise HistoryFileError(path=str(path), underlying_error=str(e)) from e
        if line_count == 0:
            raise HistoryFileError(path=str(path), underlying_error="Shell history file is empty")

        summary = ImportSummary()
        local, central = await self._open_for_import(truncate_first, summary)
        cwd = current_dir()
        progress.start(line_count, "Importing shell history...")
        try:
            with path.open("rb") as f:
                for item in iter_history(f):
                    summary.lines += item.lines
                    if item.undecodable:
                        summary.errors += 1
                        progress.warn(f"Line {item.lineno}: not valid UTF-8")
                    elif item.skipped:
                        summary.skipped += 1
                    elif item.parsed is not None:
                        try:
                            entry = self._import_entry(
                                item.parsed.timestamp, item.parsed.command, item.parsed.shell, cwd, -1
                            )
                        except HistoryParseError as e:
                            summary.errors += 1
                            progress.warn(f"Line {item.lineno}: {e.message}")
                        else:
                            await self._store(entry, local, central, summary, progress)
                    progress.advance(item.lines)
        except OSError as e:
            raise HistoryFileError(path=str(path), underlying_error=str(e)) from e
        finally:
            await dispose_targets(local, central)

        progress.finish(f"{summary.imported} commands imported")
        logger.info(
            "Imported %d commands from %s (%d errors, %d skipped)",
            summary.imported, path, summary.errors, summary.skipped,
        )
        return summary

    async def _import_foreign(self, path: Path, truncate_first: bool, progress: ProgressHook) -> ImportSummary:
        pool = await open_foreign(path)
        try:
            total = await count_foreign(pool, path)
            rows = await read_foreign(pool, path)
        finally:
            await pool.dispose()

        summary = ImportSummary()
        local, central = await self._open_for_import(truncate_first, summary)
        fallback_cwd = current_dir()
        progress.start(total, "Importing SQLite shell history...")
        try:
            for row in rows:
                summary.lines += 1
                try:
                    entry = self._import_entry(
                        row.timestamp, row.command or "", "bash", row.pwd or fallback_cwd, row.exit_status
                    )
                except HistoryParseError as e:
                    summary.errors += 1
                    progress.warn(e.message)
                else:
                    await self._store(entry, local, central, summary, progress)
                progress.advance(1)
        finally:
            await dispose_targets(local, central)

        progress.finish(f"{summary.imported} commands imported")
        logger.info("Imported %d commands from %s (%d errors)", summary.imported, path, summary.errors)
        return summary

    # =========================================================================
    # Export and Search
    # =========================================================================

    async def _open_existing(self, name: TargetName) -> Configured:
        target = await self.open_target(name)
        if not isinstance(target, Configured):
            raise ConfigurationError(message=f"No {name.value} database URL configured")
        return target

    async def export_history(
        self,
        path: str | Path,
        fmt: ExportFormat = ExportFormat.BASH,
        use_central: bool = False,
        progress: ProgressHook | None = None,
    ) -> ExportSummary:
        """
        Write one store's history to a bash or zsh history file.

        An empty store writes no file.

        Raises:
            ConfigurationError: If the chosen store is not configured
            HistoryReadError: If the store cannot be read
            HistoryFileError: If the output file cannot be written
        """
        name = TargetName.CENTRAL if use_central else TargetName.LOCAL
        path = Path(path).expanduser()
        progress = progress or ProgressHook()
        target = await self._open_existing(name)
        try:
            try:
                total = await target.pool.fetch_value(COUNT_HISTORY_SQL)
                if not total:
                    logger.info("No history entries found to export")
                    return ExportSummary(exported=0, path=str(path), format=fmt)
                rows: list[Any] = await target.pool.fetch_all(EXPORT_HISTORY_SQL)
            except (SQLAlchemyError, OSError) as e:
                raise HistoryReadError(
                    target=name.value,
                    operation="export",
                    underlying_error=target.pool.scrub(str(e)),
                ) from e
        finally:
            await target.pool.dispose()

        progress.start(len(rows), f"Exporting shell history to {path}...")
        try:
            with path.open("w", encoding="utf-8", newline="\n") as out:
                exported = write_history(out, rows, fmt)
        except OSError as e:
            raise HistoryFileError(path=str(path), underlying_error=str(e)) from e
        progress.advance(exported)
        progress.finish(f"{exported} commands exported to {path}")
        return ExportSummary(exported=exported, path=str(path), format=fmt)

    async def search(self, query: SearchQuery, use_central: bool = False) -> list[SearchHit]:
        """
        Search one store.

        Raises:
            ConfigurationError: If the chosen store is not configured
            HistoryReadError: If the query fails
        """
        name = TargetName.CENTRAL if use_central else TargetName.LOCAL
        target = await self._open_existing(name)
        try:
            return await search_history(name, target, query)
        finally:
            await target.pool.dispose()
