"""
Database connection resolution.

A target URL from the settings file is turned into a validated async
connection pool (a SQLAlchemy AsyncEngine wrapped in HistoryPool), or into
Unconfigured when the URL is empty.

URL rules:
    - The scheme is whatever precedes "://"
    - sqlite: a leading "~" is expanded, Windows drive-letter paths get the
      extra "/" they need, and "mode=rwc" is appended so the file is created
      on first use (not for ":memory:" or URLs that already ask for rwc)
    - postgres/mysql/mssql: with no user and no password, an embedded
      "user:pass@" segment is dropped; otherwise the {{user}} and
      {{password}} tokens are substituted
    - anything else raises UnsupportedSchemeError

Every URL that appears in a log line or an exception is the display form,
with the password replaced by asterisks of the same length.
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Sequence
from urllib.parse import quote

from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from dejacmd.errors import (
    DatabaseConnectionError,
    DriverMissingError,
    InvalidDatabaseUrlError,
    UnsupportedSchemeError,
)
from dejacmd.schema import Dialect, home_dir
from dejacmd.store.dialect import adapt_placeholders

logger = logging.getLogger(__name__)

# aiosqlite stops its worker thread after a failed connect and posts the
# result back to the loop; the loop must still be running when it does.
SQLITE_FAILED_CONNECT_SETTLE = 0.05

USER_TOKEN = "{{user}}"
PASSWORD_TOKEN = "{{password}}"

# Async SQLAlchemy driver and pip extra per dialect.
DRIVERS: dict[Dialect, tuple[str, str]] = {
    Dialect.SQLITE: ("sqlite+aiosqlite", ""),
    Dialect.POSTGRES: ("postgresql+asyncpg", "postgres"),
    Dialect.MYSQL: ("mysql+aiomysql", "mysql"),
    Dialect.MSSQL: ("mssql+aioodbc", "mssql"),
}

DEFAULT_MSSQL_ODBC_DRIVER = "ODBC Driver 18 for SQL Server"


# =============================================================================
# URL Normalization
# =============================================================================


@dataclass(frozen=True)
class ResolvedUrl:
    """
    A normalized target URL.

    Attributes:
        scheme: Text before "://" as written by the user
        dialect: Dialect derived from the scheme
        url: Normalized URL including the real password
        display_url: Same URL with the password masked
        password: Password that was substituted (used to scrub error text)
    """

    scheme: str
    dialect: Dialect
    url: str
    display_url: str
    password: str = field(default="", repr=False)


def url_scheme(url: str) -> str:
    """Substring before '://' (the whole string if there is none)."""
    return url.split("://", 1)[0]


def mask_password(text: str, password: str) -> str:
    """Replace every occurrence of password, raw or URL-encoded, with asterisks."""
    if not password:
        return text
    encoded = quote(password, safe="")
    if encoded != password:
        text = text.replace(encoded, "*" * len(encoded))
    return text.replace(password, "*" * len(password))


def expand_tilde(url: str, home: str | None = None) -> str:
    """Expand "~/" (or a leading "~") in a URL to the home directory."""
    home = home if home is not None else home_dir().as_posix()
    if "~/" in url:
        return url.replace("~/", f"{home.rstrip('/')}/")
    if url.startswith("~"):
        return url.replace("~", home, 1)
    return url


def normalize_sqlite_url(url: str, windows: bool | None = None, home: str | None = None) -> str:
    """
    Normalize a sqlite:// URL.

    Args:
        url: URL as configured
        windows: Treat as Windows (defaults to the running platform)
        home: Home directory used for "~" expansion
    """
    if windows is None:
        windows = os.name == "nt"
    prefix = "sqlite://"
    path_part = url[len(prefix):] if url.startswith(prefix) else url
    if "~" in path_part:
        url = prefix + expand_tilde(path_part, home)
        path_part = url[len(prefix):]
    if windows and len(path_part) >= 2 and path_part[1] == ":":
        url = f"sqlite:///{path_part}"
    if "mode=rwc" not in url and ":memory:" not in url:
        separator = "&" if "?" in url else "?"
        url = f"{url}{separator}mode=rwc"
    return url


def normalize_network_url(url: str, user: str, password: str) -> tuple[str, str]:
    """
    Apply credentials to a networked URL.

    Returns:
        (url, display_url); the display form has the password masked.
    """
    if not user and not password:
        scheme = url_scheme(url)
        at = url.find("@")
        if at != -1:
            url = f"{scheme}://{url[at + 1:]}"
        return url, url

    with_user = url.replace(USER_TOKEN, quote(user, safe=""))
    real = with_user.replace(PASSWORD_TOKEN, quote(password, safe=""))
    display = with_user.replace(PASSWORD_TOKEN, "*" * len(password))
    return real, display


def resolve_url(url: str, user: str = "", password: str = "") -> ResolvedUrl | None:
    """
    Normalize a configured URL without connecting.

    Returns:
        None for an empty URL, else the ResolvedUrl

    Raises:
        UnsupportedSchemeError: If the scheme is not a supported dialect
    """
    if not url.strip():
        return None
    url = url.strip()
    scheme = url_scheme(url)
    dialect = Dialect.from_scheme(scheme)
    if dialect is None:
        raise UnsupportedSchemeError(scheme=scheme, url=mask_password(url, password))
    if dialect == Dialect.SQLITE:
        normalized = normalize_sqlite_url(url)
        return ResolvedUrl(scheme, dialect, normalized, normalized)
    real, display = normalize_network_url(url, user, password)
    return ResolvedUrl(scheme, dialect, real, display, password)


def to_sqlalchemy_url(resolved: ResolvedUrl) -> URL:
    """Build the async driver URL for a normalized target URL."""
    drivername, _ = DRIVERS[resolved.dialect]
    if resolved.dialect == Dialect.SQLITE:
        rest = resolved.url[len("sqlite://"):] if resolved.url.startswith("sqlite://") else resolved.url
        path, _, query_text = rest.partition("?")
        query = dict(
            pair.split("=", 1) if "=" in pair else (pair, "")
            for pair in query_text.split("&")
            if pair
        )
        if path == ":memory:" or path == "":
            return URL.create(drivername, database=":memory:")
        if path.startswith("/") and len(path) > 2 and path[2] == ":":
            # "/C:/..." from the Windows form "sqlite:///C:/..."
            path = path[1:]
        query["uri"] = "true"
        return URL.create(drivername, database=f"file:{path}", query=query)

    try:
        sa_url = make_url(resolved.url)
    except ArgumentError as e:
        raise InvalidDatabaseUrlError(url=resolved.display_url, reason=str(e)) from e
    sa_url = sa_url.set(drivername=drivername)
    if resolved.dialect == Dialect.MSSQL and "driver" not in sa_url.query:
        sa_url = sa_url.update_query_dict({"driver": DEFAULT_MSSQL_ODBC_DRIVER})
    return sa_url


def sqlite_open_problem(sa_url: URL) -> str | None:
    """Why SQLite would refuse to open a file URL, checked without the driver."""
    database = sa_url.database or ""
    if not database.startswith("file:"):
        return None
    path = Path(database[len("file:"):])
    mode = sa_url.query.get("mode", "rwc")
    if mode == "memory":
        return None
    if mode == "rwc":
        if not path.parent.is_dir():
            return f"unable to open database file: directory {path.parent} does not exist"
    elif not path.is_file():
        return f"unable to open database file: {path} does not exist"
    return None


# =============================================================================
# Pools and Targets
# =============================================================================


class HistoryPool:
    """
    Async connection pool for one history database.

    Statements are written with "?" markers and translated for the dialect
    before execution, then handed to the driver with positional parameters.

    Usage:
        pool = await connect(resolved)
        await pool.execute(INSERT_HISTORY_SQL, entry.as_params())
        rows = await pool.fetch_all("SELECT command FROM history")
        await pool.dispose()
    """

    def __init__(self, engine: AsyncEngine, dialect: Dialect, display_url: str, password: str = "") -> None:
        self._engine = engine
        self.dialect = dialect
        self.display_url = display_url
        self._password = password

    def prepare(self, sql: str, has_params: bool = True) -> str:
        """Translate placeholders for this pool's dialect and driver."""
        sql = adapt_placeholders(sql, self.dialect)
        paramstyle = self._engine.dialect.paramstyle
        if has_params and paramstyle in ("format", "pyformat"):
            sql = sql.replace("%", "%%").replace("?", "%s")
        return sql

    def scrub(self, text: str) -> str:
        """Remove this pool's password from driver error text."""
        return mask_password(text, self._password)

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Execute one statement in its own transaction; returns rowcount."""
        params = tuple(params)
        async with self._engine.begin() as conn:
            result = await conn.exec_driver_sql(
                self.prepare(sql, bool(params)), params if params else None
            )
            return result.rowcount

    async def execute_many(self, statements: Sequence[str]) -> None:
        """Execute parameterless statements in a single transaction."""
        async with self._engine.begin() as conn:
            for sql in statements:
                await conn.exec_driver_sql(self.prepare(sql, False))

    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[tuple]:
        """Run a query and return all rows as tuples."""
        params = tuple(params)
        async with self._engine.connect() as conn:
            result = await conn.exec_driver_sql(
                self.prepare(sql, bool(params)), params if params else None
            )
            return [tuple(row) for row in result.fetchall()]

    async def fetch_value(self, sql: str, params: Sequence[Any] = ()) -> Any:
        """Run a query and return the first column of the first row."""
        rows = await self.fetch_all(sql, params)
        return rows[0][0] if rows else None

    async def dispose(self) -> None:
        await self._engine.dispose()


@dataclass(frozen=True)
class Configured:
    """A target with a live pool."""

    pool: HistoryPool
    scheme: str

    @property
    def dialect(self) -> Dialect:
        return self.pool.dialect

    @property
    def is_configured(self) -> bool:
        return True


@dataclass(frozen=True)
class Unconfigured:
    """A target whose URL is empty; treated as absent everywhere."""

    pool: None = None
    scheme: str = ""

    @property
    def is_configured(self) -> bool:
        return False


DatabaseTarget = Configured | Unconfigured

UNCONFIGURED = Unconfigured()


async def connect(resolved: ResolvedUrl) -> HistoryPool:
    """
    Create a pool for a normalized URL and verify it with one connection.

    Raises:
        DriverMissingError: If the dialect's async driver is not installed
        DatabaseConnectionError: If the database cannot be reached
    """
    _, extra = DRIVERS[resolved.dialect]
    sa_url = to_sqlalchemy_url(resolved)
    if resolved.dialect == Dialect.SQLITE:
        problem = sqlite_open_problem(sa_url)
        if problem:
            raise DatabaseConnectionError(url=resolved.display_url, underlying_error=problem)
    try:
        engine = create_async_engine(sa_url)
    except ImportError as e:
        raise DriverMissingError(
            url=resolved.display_url,
            underlying_error=str(e),
            extra=extra,
        ) from e

    try:
        async with engine.connect():
            pass
    except (SQLAlchemyError, OSError) as e:
        await engine.dispose()
        if resolved.dialect == Dialect.SQLITE:
            await asyncio.sleep(SQLITE_FAILED_CONNECT_SETTLE)
        raise DatabaseConnectionError(
            url=resolved.display_url,
            underlying_error=mask_password(str(e), resolved.password),
        ) from e

    logger.debug("Connected to %s", resolved.display_url)
    return HistoryPool(engine, resolved.dialect, resolved.display_url, resolved.password)


async def open_sqlite_file(path: str | Path, mode: str = "ro") -> HistoryPool:
    """
    Open an arbitrary SQLite file, read-only by default.

    Used for foreign history databases, which must exist already.
    """
    url = f"sqlite://{Path(path).resolve().as_posix()}?mode={mode}"
    resolved = ResolvedUrl("sqlite", Dialect.SQLITE, url, url)
    return await connect(resolved)


async def resolve_database(url: str, user: str = "", password: str = "") -> DatabaseTarget:
    """
    Resolve a configured URL into a database target.

    Returns:
        Unconfigured for an empty URL, else Configured with a verified pool

    Raises:
        UnsupportedSchemeError: If the scheme is not supported
        DatabaseConnectionError: If the connection fails (password masked)
    """
    resolved = resolve_url(url, user, password)
    if resolved is None:
        return UNCONFIGURED
    pool = await connect(resolved)
    return Configured(pool=pool, scheme=resolved.scheme)


async def dispose_targets(*targets: DatabaseTarget) -> None:
    """Dispose the pools of every configured target."""
    for target in targets:
        if isinstance(target, Configured):
            await target.pool.dispose()
