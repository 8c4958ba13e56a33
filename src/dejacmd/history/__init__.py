"""
History formats for dejacmd.

This package turns shell history into commands and commands back into
shell history:
    - parser: bash (with and without timestamps) and zsh extended history
    - foreign: SQLite "recent" history databases
    - export: bash and zsh text rendering
"""

from dejacmd.history.export import render_entry, write_history
from dejacmd.history.foreign import ForeignCommand, is_sqlite_file
from dejacmd.history.parser import (
    HistoryRecord,
    ParsedCommand,
    iter_history,
    parse_line,
    parse_zsh_line,
)

__all__ = [
    "ForeignCommand",
    "HistoryRecord",
    "ParsedCommand",
    "is_sqlite_file",
    "iter_history",
    "parse_line",
    "parse_zsh_line",
    "render_entry",
    "write_history",
]
