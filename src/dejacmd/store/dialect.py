"""
Placeholder translation between SQL dialects.

All SQL in dejacmd is written once with positional "?" markers. PostgreSQL
wants numbered "$1, $2, ..." parameters instead; every other supported
dialect takes the template unchanged.
"""

from dejacmd.schema import Dialect

PLACEHOLDER = "?"


def adapt_placeholders(sql: str, dialect: Dialect | str | None) -> str:
    """
    Rewrite "?" markers for the target dialect.

    For PostgreSQL the Nth "?" (left to right, 1-indexed) becomes "$N".
    For SQLite, MySQL and SQL Server (or no dialect) sql is returned as is.

    Example:
        >>> adapt_placeholders("VALUES (?, ?)", Dialect.POSTGRES)
        'VALUES ($1, $2)'
    """
    if dialect is None:
        return sql
    if isinstance(dialect, str) and not isinstance(dialect, Dialect):
        dialect = Dialect.from_scheme(dialect)
    if dialect != Dialect.POSTGRES:
        return sql

    pieces = sql.split(PLACEHOLDER)
    out = [pieces[0]]
    for number, piece in enumerate(pieces[1:], start=1):
        out.append(f"${number}")
        out.append(piece)
    return "".join(out)
