"""
Schema migrations for the history stores.

Migration scripts ship inside the package (dejacmd/sql/NNNNNNN_name.sql).
Each target keeps its own watermark in the settings file: the filename of
the last script applied to it. A script whose name sorts at or below a
target's watermark is never run on that target again.

Design Principles:
    - Filename order is execution order
    - Targets are independent: both run concurrently, and a failure on one
      stops only that target's progress for this pass
    - Watermarks only move forward, and unchanged watermarks are not
      written back
    - Failures are logged and reported, never raised to the caller
"""

import asyncio
import logging
from dataclasses import dataclass, field
from importlib import resources

from sqlalchemy.exc import SQLAlchemyError

from dejacmd.errors import MigrationError
from dejacmd.schema import INITIAL_WATERMARK, Settings, TargetName
from dejacmd.store.connection import Configured, DatabaseTarget

logger = logging.getLogger(__name__)

SCRIPTS_PACKAGE = "dejacmd"
SCRIPTS_DIRECTORY = "sql"
PREFIX_DIGITS = 7


@dataclass(frozen=True)
class MigrationScript:
    """One bundled SQL patch."""

    name: str
    sql: str

    def statements(self) -> list[str]:
        """Split the script into statements, dropping "--" comment lines."""
        return split_sql_statements(self.sql)


@dataclass
class TargetMigration:
    """
    Result of one migration pass on one target.

    Attributes:
        target: Which target
        previous: Watermark before the pass
        watermark: Watermark after the pass
        applied: Scripts executed successfully, in order
        error: First failure, if any
    """

    target: TargetName
    previous: str
    watermark: str
    applied: list[str] = field(default_factory=list)
    error: MigrationError | None = None

    @property
    def changed(self) -> bool:
        return self.watermark != self.previous


def is_migration_name(name: str) -> bool:
    """A script name starts with 7 ASCII digits and ends in ".sql"."""
    prefix = name[:PREFIX_DIGITS]
    return (
        name.endswith(".sql")
        and len(prefix) == PREFIX_DIGITS
        and all("0" <= ch <= "9" for ch in prefix)
    )


def split_sql_statements(sql: str) -> list[str]:
    lines = [line for line in sql.splitlines() if not line.strip().startswith("--")]
    return [stmt.strip() for stmt in "\n".join(lines).split(";") if stmt.strip()]


def discover_scripts(
    package: str = SCRIPTS_PACKAGE,
    directory: str = SCRIPTS_DIRECTORY,
) -> list[MigrationScript]:
    """Load every bundled migration script, sorted by filename."""
    root = resources.files(package) / directory
    scripts = [
        MigrationScript(name=entry.name, sql=entry.read_text(encoding="utf-8"))
        for entry in root.iterdir()
        if entry.is_file() and is_migration_name(entry.name)
    ]
    return sorted(scripts, key=lambda script: script.name)


def latest_script_name(scripts: list[MigrationScript]) -> str:
    return max((script.name for script in scripts), default="")


def needs_pass(scripts: list[MigrationScript], *watermarks: str) -> bool:
    """
    Whether any target may be behind.

    False when the newest script sorts at or below every given watermark,
    which lets callers skip opening connections entirely.
    """
    latest = latest_script_name(scripts)
    if not latest:
        return False
    return any(latest > (watermark or INITIAL_WATERMARK) for watermark in watermarks)


async def apply_to_target(
    name: TargetName,
    target: DatabaseTarget,
    watermark: str,
    scripts: list[MigrationScript],
) -> TargetMigration:
    """
    Apply every script above watermark to one target, in order.

    Stops at the first failing script; the watermark then names the last
    script that succeeded.
    """
    watermark = watermark or INITIAL_WATERMARK
    result = TargetMigration(target=name, previous=watermark, watermark=watermark)
    if not isinstance(target, Configured):
        return result

    for script in scripts:
        if script.name <= watermark:
            continue
        try:
            await target.pool.execute_many(script.statements())
        except (SQLAlchemyError, OSError) as e:
            result.error = MigrationError(
                target=name.value,
                script=script.name,
                underlying_error=target.pool.scrub(str(e)),
            )
            logger.error("%s migration: %s", name.value.capitalize(), result.error.message)
            break
        result.applied.append(script.name)
        result.watermark = script.name
        logger.info("Applied %s to %s database", script.name, name.value)
    return result


async def apply_migrations(
    settings: Settings,
    local: DatabaseTarget,
    central: DatabaseTarget,
    scripts: list[MigrationScript] | None = None,
) -> tuple[Settings, dict[TargetName, TargetMigration]]:
    """
    Run one migration pass against both targets concurrently.

    Returns:
        (settings with advanced watermarks, per-target results). The
        settings value is the input itself when no watermark moved.
    """
    if scripts is None:
        scripts = discover_scripts()

    local_result, central_result = await asyncio.gather(
        apply_to_target(TargetName.LOCAL, local, settings.watermark(TargetName.LOCAL), scripts),
        apply_to_target(TargetName.CENTRAL, central, settings.watermark(TargetName.CENTRAL), scripts),
    )

    updated = settings
    for result in (local_result, central_result):
        if result.changed:
            updated = updated.with_watermark(result.target, result.watermark)
    return updated, {TargetName.LOCAL: local_result, TargetName.CENTRAL: central_result}
