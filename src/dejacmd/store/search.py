"""
History search.

Builds one parameterized SELECT over the history table from a SearchQuery:
substring match on the command (LIKE, optionally case-insensitive), an
optional time window on command_timestamp, newest first, with a row limit.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError

from dejacmd.errors import HistoryReadError, InvalidTimeRangeError
from dejacmd.schema import TIMESTAMP_FORMAT, Dialect, TargetName
from dejacmd.store.connection import Configured

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_LIMIT = 25


class SearchQuery(BaseModel):
    """
    Parameters of one history search.

    Attributes:
        term: Substring to look for; empty matches everything
        limit: Maximum rows, 0 means DEFAULT_SEARCH_LIMIT
        ignore_case: Compare lower-cased command and term
        show_time: Also return command_timestamp
        unique: One row per distinct command (no timestamps)
        start: Inclusive lower bound, "YYYY-MM-DD HH:MM:SS"
        end: Inclusive upper bound, "YYYY-MM-DD HH:MM:SS"
    """

    model_config = ConfigDict(frozen=True)

    term: str = ""
    limit: int = Field(default=0, ge=0)
    ignore_case: bool = False
    show_time: bool = False
    unique: bool = False
    start: str | None = None
    end: str | None = None

    @property
    def effective_limit(self) -> int:
        return self.limit or DEFAULT_SEARCH_LIMIT


@dataclass(frozen=True)
class SearchHit:
    command: str
    command_timestamp: str = ""


# =============================================================================
# Time Window Parsing
# =============================================================================


def parse_datetime_string(text: str) -> str:
    """
    Normalize a user-supplied bound to "YYYY-MM-DD HH:MM:SS".

    Accepts YYYY-MM-DD, YYYY-MM-DD_HH:MM and YYYY-MM-DD_HH:MM:SS; a space
    may be used instead of the underscore.

    Raises:
        InvalidTimeRangeError: If text matches none of the accepted forms
    """
    text = text.strip()
    if "_" in text or ":" in text:
        normalized = text.replace("_", " ")
        for fmt in (TIMESTAMP_FORMAT, "%Y-%m-%d %H:%M"):
            try:
                return datetime.strptime(normalized, fmt).strftime(TIMESTAMP_FORMAT)
            except ValueError:
                continue
        raise InvalidTimeRangeError(
            line=text,
            message=(
                f"Invalid datetime format '{text}'. "
                "Expected YYYY-MM-DD_HH:MM:SS or YYYY-MM-DD_HH:MM"
            ),
        )
    try:
        return datetime.strptime(text, "%Y-%m-%d").strftime(TIMESTAMP_FORMAT)
    except ValueError as e:
        raise InvalidTimeRangeError(
            line=text,
            message=f"Invalid date format '{text}'. Expected YYYY-MM-DD. Error: {e}",
        ) from e


def parse_time_range(
    start: str | None,
    end: str | None,
    now: datetime | None = None,
) -> tuple[str | None, str | None]:
    """
    Resolve the search window.

    A start without an end ends now (UTC). Blank values count as absent.

    Raises:
        InvalidTimeRangeError: If an end is given without a start, or a bound
            is malformed
    """
    start = start.strip() if start else ""
    end = end.strip() if end else ""
    if end and not start:
        raise InvalidTimeRangeError(
            line=end,
            message="End time cannot be specified without a start time",
        )
    if not start:
        return None, None
    start_text = parse_datetime_string(start)
    if end:
        return start_text, parse_datetime_string(end)
    now = now or datetime.now(UTC)
    return start_text, now.strftime(TIMESTAMP_FORMAT)


# =============================================================================
# Query Building
# =============================================================================


def build_search_sql(query: SearchQuery, dialect: Dialect | None = None) -> tuple[str, list[str]]:
    """
    Build the SELECT and its bound values for a search.

    Returns:
        (sql with "?" markers, parameters in marker order)
    """
    conditions: list[str] = []
    params: list[str] = []
    if query.term.strip():
        if query.ignore_case:
            conditions.append("LOWER(command) LIKE LOWER(?)")
        else:
            conditions.append("command LIKE ?")
        params.append(f"%{query.term}%")
    if query.start:
        conditions.append("command_timestamp >= ?")
        params.append(query.start)
    if query.end:
        conditions.append("command_timestamp <= ?")
        params.append(query.end)

    where = " AND ".join(conditions) if conditions else "1=1"
    limit = query.effective_limit
    top = f"TOP {limit} " if dialect == Dialect.MSSQL else ""
    tail = "" if dialect == Dialect.MSSQL else f" LIMIT {limit}"

    if query.unique:
        # GROUP BY keeps ORDER BY valid on dialects that reject DISTINCT + ORDER BY
        sql = (
            f"SELECT {top}command FROM history WHERE {where} "
            f"GROUP BY command ORDER BY MAX(command_timestamp) DESC{tail}"
        )
    else:
        columns = "command_timestamp, command" if query.show_time else "command"
        sql = (
            f"SELECT {top}{columns} FROM history WHERE {where} "
            f"ORDER BY command_timestamp DESC{tail}"
        )
    return sql, params


async def search_history(name: TargetName, target: Configured, query: SearchQuery) -> list[SearchHit]:
    """
    Run a search against one store.

    Raises:
        HistoryReadError: If the query fails
    """
    sql, params = build_search_sql(query, target.dialect)
    logger.debug("Searching %s history: %s %s", name.value, sql, params)
    try:
        rows = await target.pool.fetch_all(sql, params)
    except (SQLAlchemyError, OSError) as e:
        raise HistoryReadError(
            target=name.value,
            operation="search",
            underlying_error=target.pool.scrub(str(e)),
        ) from e

    if query.show_time and not query.unique:
        return [SearchHit(command=row[1] or "", command_timestamp=row[0] or "") for row in rows]
    return [SearchHit(command=row[0] or "") for row in rows]
