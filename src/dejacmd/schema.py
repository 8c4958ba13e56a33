"""
Schema definitions for dejacmd.

This module defines the Pydantic models and enums shared across dejacmd:
- HistoryEntry: One recorded command, as stored in the history table
- Settings: The persisted configuration record (both database targets)
- Dialect / ExportFormat: Closed sets used by the store and exporter
- ImportSummary / ExportSummary: Outcome counters for bulk operations

Design Decisions:
    - Entries and settings are immutable (frozen=True); updates go through
      model_copy so there is no ambient mutable configuration
    - Settings ignore unknown keys and default every optional field, so
      older or newer settings files still load
"""

import os
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from dejacmd.errors import InvalidTimestampError

PROGRAM = "dejacmd"

# Fixed text format of command_timestamp; lexically sortable.
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

# Watermark used when a target has never been migrated.
INITIAL_WATERMARK = "0000000.sql"


# =============================================================================
# Enums
# =============================================================================


class Dialect(str, Enum):
    """SQL dialect of a configured database target."""

    SQLITE = "sqlite"
    POSTGRES = "postgres"
    MYSQL = "mysql"
    MSSQL = "mssql"

    @classmethod
    def from_scheme(cls, scheme: str) -> "Dialect | None":
        """Map a URL scheme (e.g. 'postgresql') to its dialect, if supported."""
        for dialect in cls:
            if scheme.startswith(dialect.value):
                return dialect
        return None


class ExportFormat(str, Enum):
    """Shell history text formats dejacmd can write."""

    BASH = "bash"
    ZSH = "zsh"


class TargetName(str, Enum):
    """The two database targets."""

    LOCAL = "local"
    CENTRAL = "central"


# =============================================================================
# History Models
# =============================================================================


class HistoryEntry(BaseModel):
    """
    One recorded shell command.

    Attributes:
        id: Globally unique identifier generated at write time
        command_timestamp: When the command ran, "YYYY-MM-DD HH:MM:SS"
        cwd: Working directory, if known
        shell: Normalized shell name (bash, zsh, ...)
        user_id: Numeric OS user id, None if unknown
        user_name: OS user name
        ip: Best-effort local IP of the recording host
        os: Platform tag (linux, macos, windows)
        exit_status: Exit status of the command, -1 if unknown
        command: Raw command text, never interpolated into SQL
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    command_timestamp: str = Field(..., min_length=1)
    cwd: str | None = None
    shell: str = ""
    user_id: int | None = None
    user_name: str = ""
    ip: str = ""
    os: str = ""
    exit_status: int = -1
    command: str

    def as_params(self) -> tuple:
        """Bind values in the column order of INSERT_HISTORY_SQL."""
        return (
            self.id,
            self.command_timestamp,
            self.cwd,
            self.shell,
            self.user_id,
            self.user_name,
            self.ip,
            self.os,
            self.exit_status,
            self.command,
        )


def format_timestamp(epoch: int) -> str:
    """
    Render a Unix epoch as UTC "YYYY-MM-DD HH:MM:SS".

    Raises:
        InvalidTimestampError: If the value is outside the representable range
    """
    try:
        return datetime.fromtimestamp(epoch, UTC).strftime(TIMESTAMP_FORMAT)
    except (OverflowError, OSError, ValueError) as e:
        raise InvalidTimestampError(timestamp=epoch, line=str(epoch)) from e


def parse_timestamp(text: str) -> int:
    """
    Convert a stored "YYYY-MM-DD HH:MM:SS" (UTC) back to a Unix epoch.

    Raises:
        InvalidTimestampError: If the text is not in the fixed format
    """
    try:
        dt = datetime.strptime(text, TIMESTAMP_FORMAT).replace(tzinfo=UTC)
    except ValueError as e:
        raise InvalidTimestampError(
            line=text,
            message=f"Error parsing timestamp '{text}': {e}",
        ) from e
    return int(dt.timestamp())


# =============================================================================
# Settings Model
# =============================================================================


def home_dir() -> Path:
    """The user's home directory, with a per-platform fallback."""
    try:
        return Path.home()
    except RuntimeError:
        if os.name == "nt":
            return Path("C:/Users/Public")
        return Path("~/")


def default_local_database_url() -> str:
    """sqlite URL of the default local database in the home directory."""
    if os.name == "nt":
        path = home_dir() / f"{PROGRAM}.sqlite"
    else:
        path = home_dir() / f".{PROGRAM}.sqlite"
    return f"sqlite://{path.as_posix()}"


class Settings(BaseModel):
    """
    Persisted dejacmd configuration.

    Attributes:
        local_database_url: URL of the local store (defaults to SQLite in ~)
        local_user: Optional user for the local URL
        local_encrypted_password: Hex AES-GCM ciphertext, None if no password
        central_database_url: URL of the central store, None if unconfigured
        central_user: Optional user for the central URL
        central_encrypted_password: Hex AES-GCM ciphertext, None if no password
        last_local_update_file: Migration watermark of the local store
        last_central_update_file: Migration watermark of the central store
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    local_database_url: str = Field(default_factory=default_local_database_url)
    local_user: str | None = None
    local_encrypted_password: str | None = None

    central_database_url: str | None = None
    central_user: str | None = None
    central_encrypted_password: str | None = None

    last_local_update_file: str | None = None
    last_central_update_file: str | None = None

    def get_local_database_url(self) -> str:
        return self.local_database_url

    def get_central_database_url(self) -> str:
        return self.central_database_url or ""

    def database_url(self, target: TargetName) -> str:
        """URL of the given target ("" when unconfigured)."""
        if target == TargetName.LOCAL:
            return self.get_local_database_url()
        return self.get_central_database_url()

    def user(self, target: TargetName) -> str:
        if target == TargetName.LOCAL:
            return self.local_user or ""
        return self.central_user or ""

    def encrypted_password(self, target: TargetName) -> str:
        if target == TargetName.LOCAL:
            return self.local_encrypted_password or ""
        return self.central_encrypted_password or ""

    def watermark(self, target: TargetName) -> str:
        """Last applied migration filename for a target."""
        if target == TargetName.LOCAL:
            return self.last_local_update_file or INITIAL_WATERMARK
        return self.last_central_update_file or INITIAL_WATERMARK

    def with_watermark(self, target: TargetName, filename: str) -> "Settings":
        field_name = f"last_{target.value}_update_file"
        return self.model_copy(update={field_name: filename})

    def to_document(self) -> dict:
        """Plain dict for the settings file; unset optional fields are omitted."""
        return self.model_dump(exclude_none=True)


# =============================================================================
# Bulk Operation Summaries
# =============================================================================


class ImportSummary(BaseModel):
    """
    Outcome of one import run.

    Attributes:
        imported: Entries written to every usable target
        errors: Entries that failed to parse or write
        skipped: Recognized units that are deliberately not stored
        lines: Input lines (or foreign rows) consumed
        target_errors: Per-target open/truncate failures that disabled a target
    """

    imported: int = 0
    errors: int = 0
    skipped: int = 0
    lines: int = 0
    target_errors: dict[str, str] = Field(default_factory=dict)


class ExportSummary(BaseModel):
    """Outcome of one export run."""

    exported: int = 0
    path: str = ""
    format: ExportFormat = ExportFormat.BASH
