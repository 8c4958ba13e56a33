"""
Exception hierarchy for dejacmd.

All dejacmd exceptions inherit from DejacmdError, allowing callers to catch
every dejacmd-specific exception with a single except clause.

Exception Categories:
    - ConfigurationError: Missing/invalid database URL, unsupported scheme
    - DatabaseConnectionError: Driver-level connect failure (password masked)
    - CryptoError: Missing key, authentication failure, malformed ciphertext
    - MigrationError: Schema patch failed on one target
    - HistoryParseError: Malformed history line or timestamp (one entry)
    - PersistenceError: Insert/truncate/read failure on one target
    - DejacmdIOError: Settings, key or history file could not be used

Design Principles:
    - All errors have error codes for programmatic handling
    - All errors include context (target, url, filename where applicable)
    - Error text never contains a database password
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Configuration errors: 1xxx
ERROR_CONFIG_INVALID_URL = 1001
ERROR_CONFIG_UNSUPPORTED_SCHEME = 1002

# Connection errors: 2xxx
ERROR_CONNECTION_FAILED = 2001
ERROR_CONNECTION_DRIVER_MISSING = 2002

# Crypto errors: 3xxx
ERROR_CRYPTO_MISSING_KEY = 3001
ERROR_CRYPTO_AUTH_FAILED = 3002
ERROR_CRYPTO_MALFORMED = 3003
ERROR_CRYPTO_INVALID_KEY = 3004

# Migration errors: 4xxx
ERROR_MIGRATION_FAILED = 4001

# Parse errors: 5xxx
ERROR_PARSE_TIMESTAMP = 5001
ERROR_PARSE_LINE = 5002
ERROR_PARSE_DATETIME = 5003

# Persistence errors: 6xxx
ERROR_PERSIST_WRITE = 6001
ERROR_PERSIST_PARTIAL = 6002
ERROR_PERSIST_TRUNCATE = 6003
ERROR_PERSIST_READ = 6004

# IO errors: 7xxx
ERROR_IO_SETTINGS_READ = 7001
ERROR_IO_SETTINGS_WRITE = 7002
ERROR_IO_SETTINGS_LOCK = 7003
ERROR_IO_KEY_FILE = 7004
ERROR_IO_HISTORY_FILE = 7005


SUPPORTED_SCHEMES_TEXT = "Supported schemes are: sqlite, postgres, mysql, mssql"


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class DejacmdError(Exception):
    """
    Base exception for all dejacmd errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Configuration Errors
# =============================================================================


@dataclass
class ConfigurationError(DejacmdError):
    """
    Base class for configuration errors.

    Attributes:
        url: The (masked) database URL involved, if any
    """

    url: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if self.code == 0:
            self.code = ERROR_CONFIG_INVALID_URL
        self.context["url"] = self.url


@dataclass
class InvalidDatabaseUrlError(ConfigurationError):
    """Raised when a database URL cannot be used at all."""

    reason: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid database URL {self.url}: {self.reason}"
        super().__post_init__()
        self.context["reason"] = self.reason


@dataclass
class UnsupportedSchemeError(ConfigurationError):
    """Raised when a URL scheme is not one of the supported dialects."""

    scheme: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Unsupported database scheme: {self.scheme} [{SUPPORTED_SCHEMES_TEXT}]"
            )
        if self.code == 0:
            self.code = ERROR_CONFIG_UNSUPPORTED_SCHEME
        if not self.suggestion:
            self.suggestion = "Use a URL such as sqlite://~/.dejacmd.sqlite"
        super().__post_init__()
        self.context["scheme"] = self.scheme


# =============================================================================
# Connection Errors
# =============================================================================


@dataclass
class DatabaseConnectionError(DejacmdError):
    """
    Raised when a database connection cannot be established.

    Attributes:
        url: The attempted URL with the password replaced by asterisks
        underlying_error: Driver error text, scrubbed of the password
    """

    url: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Error connecting to database: {self.url} [{self.underlying_error}]"
            )
        if self.code == 0:
            self.code = ERROR_CONNECTION_FAILED
        self.context.update({
            "url": self.url,
            "underlying_error": self.underlying_error,
        })


@dataclass
class DriverMissingError(DatabaseConnectionError):
    """Raised when the async driver for a dialect is not installed."""

    extra: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if self.code == 0:
            self.code = ERROR_CONNECTION_DRIVER_MISSING
        if not self.suggestion and self.extra:
            self.suggestion = f"Install the driver with: pip install 'dejacmd[{self.extra}]'"
        super().__post_init__()


# =============================================================================
# Crypto Errors
# =============================================================================


@dataclass
class CryptoError(DejacmdError):
    """Base class for password encryption errors."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if self.code == 0:
            self.code = ERROR_CRYPTO_MALFORMED


@dataclass
class MissingKeyError(CryptoError):
    """Raised when a stored password exists but the key file does not."""

    key_path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = "Encryption key is missing"
        if self.code == 0:
            self.code = ERROR_CRYPTO_MISSING_KEY
        if not self.suggestion:
            self.suggestion = "Set the database password again to generate a new key"
        super().__post_init__()
        self.context["key_path"] = self.key_path


@dataclass
class AuthenticationFailedError(CryptoError):
    """Raised when ciphertext fails authentication (wrong key or tampering)."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = "Failed to decrypt database password: authentication failed"
        if self.code == 0:
            self.code = ERROR_CRYPTO_AUTH_FAILED
        super().__post_init__()


@dataclass
class MalformedCiphertextError(CryptoError):
    """Raised when stored ciphertext is not valid hex or is truncated."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = "Encrypted password is malformed"
        if self.code == 0:
            self.code = ERROR_CRYPTO_MALFORMED
        super().__post_init__()


@dataclass
class InvalidKeyError(CryptoError):
    """Raised when a key is not 64 hex characters."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = "Invalid encryption key format. Key must be 64 hex characters."
        if self.code == 0:
            self.code = ERROR_CRYPTO_INVALID_KEY
        if not self.suggestion:
            self.suggestion = "Generate a new key with: dejacmd-passwd genkey"
        super().__post_init__()


# =============================================================================
# Migration Errors
# =============================================================================


@dataclass
class MigrationError(DejacmdError):
    """
    Raised when a schema patch fails on one target.

    Attributes:
        target: "local" or "central"
        script: Filename of the failing script
        underlying_error: Driver error text
    """

    target: str = ""
    script: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to execute update {self.script}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_MIGRATION_FAILED
        self.context.update({
            "target": self.target,
            "script": self.script,
            "underlying_error": self.underlying_error,
        })


# =============================================================================
# Parse Errors
# =============================================================================


@dataclass
class HistoryParseError(DejacmdError):
    """
    Raised when one history record cannot be turned into an entry.

    Attributes:
        line: The offending input (line text or timestamp)
        lineno: 1-based line number, if known
    """

    line: str = ""
    lineno: int | None = None

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to parse history line: '{self.line}'"
        if self.code == 0:
            self.code = ERROR_PARSE_LINE
        self.context.update({
            "line": self.line,
            "lineno": self.lineno,
        })


@dataclass
class InvalidTimestampError(HistoryParseError):
    """Raised when an epoch value cannot be rendered as a UTC datetime."""

    timestamp: int = 0

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid timestamp: {self.timestamp}"
        if self.code == 0:
            self.code = ERROR_PARSE_TIMESTAMP
        super().__post_init__()
        self.context["timestamp"] = self.timestamp


@dataclass
class InvalidTimeRangeError(HistoryParseError):
    """Raised when a search window bound is malformed or incomplete."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid datetime format '{self.line}'"
        if self.code == 0:
            self.code = ERROR_PARSE_DATETIME
        if not self.suggestion:
            self.suggestion = "Use YYYY-MM-DD, YYYY-MM-DD_HH:MM or YYYY-MM-DD_HH:MM:SS"
        super().__post_init__()


# =============================================================================
# Persistence Errors
# =============================================================================


@dataclass
class PersistenceError(DejacmdError):
    """
    Base class for database read/write errors.

    Attributes:
        target: "local" or "central"
        operation: The operation that failed (e.g., "insert", "truncate")
    """

    target: str = ""
    operation: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context.update({
            "target": self.target,
            "operation": self.operation,
        })


@dataclass
class HistoryWriteError(PersistenceError):
    """Raised when an insert (or schema creation) fails on one target."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Error inserting command into {self.target} history database: "
                f"{self.underlying_error}"
            )
        if self.code == 0:
            self.code = ERROR_PERSIST_WRITE
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class PartialWriteError(PersistenceError):
    """
    Raised when a dual write failed on one or both targets.

    Attributes:
        failed_targets: Names of the targets that failed
        details: One diagnostic block per failed target
    """

    failed_targets: list[str] = field(default_factory=list)
    details: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            joined = " and ".join(self.failed_targets) or "unknown"
            self.message = f"History write failed on {joined} database"
            if self.details:
                self.message += ":\n" + "\n".join(self.details)
        if self.code == 0:
            self.code = ERROR_PERSIST_PARTIAL
        if not self.operation:
            self.operation = "insert"
        super().__post_init__()
        self.context["failed_targets"] = list(self.failed_targets)


@dataclass
class TruncateError(PersistenceError):
    """Raised when clearing a target before import fails."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Error truncating {self.target} history table: {self.underlying_error}"
            )
        if self.code == 0:
            self.code = ERROR_PERSIST_TRUNCATE
        if not self.operation:
            self.operation = "truncate"
        super().__post_init__()


@dataclass
class HistoryReadError(PersistenceError):
    """Raised when reading history back (search, export) fails."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Error reading {self.target} history: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_PERSIST_READ
        super().__post_init__()


# =============================================================================
# IO Errors
# =============================================================================


@dataclass
class DejacmdIOError(DejacmdError):
    """
    Base class for file errors.

    Attributes:
        path: The file that could not be used
    """

    path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["path"] = self.path


@dataclass
class SettingsReadError(DejacmdIOError):
    """Raised when the settings file exists but cannot be read or validated."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Error reading settings {self.path}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_IO_SETTINGS_READ
        super().__post_init__()


@dataclass
class SettingsWriteError(DejacmdIOError):
    """Raised when the settings file cannot be written."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to write settings file {self.path}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_IO_SETTINGS_WRITE
        super().__post_init__()


@dataclass
class SettingsLockError(DejacmdIOError):
    """Raised when the settings lock could not be taken within the retry budget."""

    attempts: int = 0

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Failed to lock settings file {self.path} after {self.attempts} attempts"
            )
        if self.code == 0:
            self.code = ERROR_IO_SETTINGS_LOCK
        if not self.suggestion:
            self.suggestion = "Another dejacmd process may be writing settings; retry shortly"
        super().__post_init__()
        self.context["attempts"] = self.attempts


@dataclass
class KeyFileError(DejacmdIOError):
    """Raised when the key file cannot be read or created."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Error accessing key file {self.path}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_IO_KEY_FILE
        super().__post_init__()


@dataclass
class HistoryFileError(DejacmdIOError):
    """Raised when a history file to import or export cannot be used."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"{self.path}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_IO_HISTORY_FILE
        super().__post_init__()
