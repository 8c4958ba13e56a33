"""
Foreign SQLite "recent" history databases.

Some shells' history tools keep commands in a SQLite file with a table

    commands(command_dt timestamp, command text, pid int, return_val int,
             pwd text, session text, json_data json)

Such files are recognized by the SQLite header, not by their name.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError

from dejacmd.errors import HistoryFileError, InvalidTimestampError
from dejacmd.schema import TIMESTAMP_FORMAT
from dejacmd.store.connection import HistoryPool, open_sqlite_file
from dejacmd.store.sql import FOREIGN_COUNT_SQL, FOREIGN_SELECT_SQL

logger = logging.getLogger(__name__)

SQLITE_SIGNATURE = b"SQLite format 3\x00"


@dataclass(frozen=True)
class ForeignCommand:
    """One row of a foreign commands table."""

    command_dt: str
    command: str
    return_val: int | None
    pwd: str | None

    @property
    def timestamp(self) -> int:
        """
        command_dt as a Unix epoch, read as UTC.

        Raises:
            InvalidTimestampError: If command_dt is not "YYYY-MM-DD HH:MM:SS"
        """
        try:
            dt = datetime.strptime(self.command_dt, TIMESTAMP_FORMAT).replace(tzinfo=UTC)
        except (TypeError, ValueError) as e:
            raise InvalidTimestampError(
                line=str(self.command_dt),
                message=f"Error parsing timestamp '{self.command_dt}': {e}",
            ) from e
        return int(dt.timestamp())

    @property
    def exit_status(self) -> int:
        return -1 if self.return_val is None else int(self.return_val)


def is_sqlite_file(path: str | Path) -> bool:
    """Whether the file starts with the SQLite 3 header."""
    with open(path, "rb") as f:
        return f.read(len(SQLITE_SIGNATURE)) == SQLITE_SIGNATURE


async def open_foreign(path: str | Path) -> HistoryPool:
    """Open a foreign history database read-only."""
    return await open_sqlite_file(path, mode="ro")


async def count_foreign(pool: HistoryPool, path: str | Path) -> int:
    """
    Number of rows in the foreign commands table.

    Raises:
        HistoryFileError: If the table cannot be read or holds no rows
    """
    try:
        total = await pool.fetch_value(FOREIGN_COUNT_SQL)
    except (SQLAlchemyError, OSError) as e:
        raise HistoryFileError(
            path=str(path),
            underlying_error=f"Error querying history count from recent SQLite database: {e}",
        ) from e
    if not total:
        raise HistoryFileError(
            path=str(path),
            underlying_error="Recent SQLite history file contains no history entries",
        )
    return int(total)


async def read_foreign(pool: HistoryPool, path: str | Path) -> list[ForeignCommand]:
    """
    Read every row of the foreign commands table.

    Raises:
        HistoryFileError: If the query fails
    """
    try:
        rows = await pool.fetch_all(FOREIGN_SELECT_SQL)
    except (SQLAlchemyError, OSError) as e:
        raise HistoryFileError(path=str(path), underlying_error=str(e)) from e
    logger.debug("Read %d foreign history rows from %s", len(rows), path)
    return [
        ForeignCommand(command_dt=row[0], command=row[1], return_val=row[2], pwd=row[3])
        for row in rows
    ]
