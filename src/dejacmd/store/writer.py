"""
Dual-write coordinator.

Every entry is written to the local and the central store as two
independent concurrent tasks. Each task returns its own TargetOutcome; the
only shared point is the gather that collects both. There is no atomicity
across the stores: a failure on one side never rolls back or blocks the
other.

Usage:
    outcome = await record(entry, local, central)
    if not outcome.ok:
        logger.error(outcome.describe())
    outcome.raise_for_failure()   # PartialWriteError naming failed targets
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError

from dejacmd.errors import PartialWriteError, TruncateError
from dejacmd.schema import HistoryEntry, TargetName
from dejacmd.store.connection import Configured, DatabaseTarget, HistoryPool
from dejacmd.store.sql import (
    CREATE_INDEX_SQL,
    CREATE_TABLE_SQL,
    INSERT_HISTORY_SQL,
    TRUNCATE_HISTORY_SQL,
)

logger = logging.getLogger(__name__)


class FailureKind(str, Enum):
    """Which side(s) of a dual write failed."""

    NONE = "none"
    LOCAL = "local"
    CENTRAL = "central"
    BOTH = "both"


@dataclass(frozen=True)
class TargetOutcome:
    """
    Result of writing one entry to one target.

    Attributes:
        target: Which target
        success: True if the insert ran (or the target is unconfigured)
        configured: False when the target was a no-op
        error: Driver error text (password scrubbed)
        statement: Dialect-specific INSERT that failed
        values: Bound values of the failed INSERT
    """

    target: TargetName
    success: bool
    configured: bool = True
    error: str = ""
    statement: str = ""
    values: tuple = field(default_factory=tuple)

    @classmethod
    def skipped(cls, target: TargetName) -> "TargetOutcome":
        return cls(target=target, success=True, configured=False)

    @classmethod
    def failed(cls, target: TargetName, error: str, statement: str = "", values: tuple = ()) -> "TargetOutcome":
        return cls(target=target, success=False, error=error, statement=statement, values=values)

    def describe(self) -> str:
        """Diagnostic block for a failed write."""
        if self.success:
            return ""
        text = f"Error inserting command into {self.target.value} history database: [{self.error}]"
        if self.statement:
            rendered = ", ".join("NULL" if v is None else str(v) for v in self.values)
            text += f"\n{self.statement} VALUES ( {rendered} )"
        return text


@dataclass(frozen=True)
class DualWriteOutcome:
    """Both targets' outcomes for one entry."""

    local: TargetOutcome
    central: TargetOutcome

    @property
    def kind(self) -> FailureKind:
        if self.local.success and self.central.success:
            return FailureKind.NONE
        if not self.local.success and not self.central.success:
            return FailureKind.BOTH
        return FailureKind.LOCAL if not self.local.success else FailureKind.CENTRAL

    @property
    def ok(self) -> bool:
        return self.kind == FailureKind.NONE

    @property
    def exit_code(self) -> int:
        """Bit set: 1 when local failed, 2 when central failed."""
        return (0 if self.local.success else 1) | (0 if self.central.success else 2)

    def failures(self) -> list[TargetOutcome]:
        return [outcome for outcome in (self.local, self.central) if not outcome.success]

    def describe(self) -> str:
        return "\n".join(outcome.describe() for outcome in self.failures())

    def raise_for_failure(self) -> None:
        """
        Raises:
            PartialWriteError: If either target failed
        """
        failures = self.failures()
        if failures:
            raise PartialWriteError(
                failed_targets=[outcome.target.value for outcome in failures],
                details=[outcome.describe() for outcome in failures],
            )


# =============================================================================
# Per-target Operations
# =============================================================================


async def ensure_schema(pool: HistoryPool) -> None:
    """Create the history table and its timestamp index if missing."""
    await pool.execute_many([CREATE_TABLE_SQL, CREATE_INDEX_SQL])


async def truncate(name: TargetName, target: DatabaseTarget) -> int:
    """
    Delete every row from a target's history table.

    Returns:
        Rows deleted (0 for an unconfigured target)

    Raises:
        TruncateError: If the delete fails
    """
    if not isinstance(target, Configured):
        return 0
    try:
        deleted = await target.pool.execute(TRUNCATE_HISTORY_SQL)
    except (SQLAlchemyError, OSError) as e:
        raise TruncateError(target=name.value, underlying_error=target.pool.scrub(str(e))) from e
    logger.info("Truncated %s history table (%d rows)", name.value, max(deleted, 0))
    return deleted


async def write_target(
    name: TargetName,
    target: DatabaseTarget,
    entry: HistoryEntry,
    create_schema: bool = False,
) -> TargetOutcome:
    """
    Insert one entry into one target.

    Never raises for driver errors; they are returned in the outcome.
    """
    if not isinstance(target, Configured):
        return TargetOutcome.skipped(name)

    pool = target.pool
    statement = pool.prepare(INSERT_HISTORY_SQL)
    values = entry.as_params()
    try:
        if create_schema:
            await ensure_schema(pool)
        await pool.execute(INSERT_HISTORY_SQL, values)
    except (SQLAlchemyError, OSError) as e:
        outcome = TargetOutcome.failed(name, pool.scrub(str(e)), statement, values)
        logger.debug("%s", outcome.describe())
        return outcome
    return TargetOutcome(target=name, success=True)


async def record(
    entry: HistoryEntry,
    local: DatabaseTarget,
    central: DatabaseTarget,
    create_schema: bool = False,
) -> DualWriteOutcome:
    """Write entry to both targets concurrently and collect both outcomes."""
    local_outcome, central_outcome = await asyncio.gather(
        write_target(TargetName.LOCAL, local, entry, create_schema),
        write_target(TargetName.CENTRAL, central, entry, create_schema),
    )
    return DualWriteOutcome(local=local_outcome, central=central_outcome)
