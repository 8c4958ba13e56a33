"""
Render stored history as shell history text.

    bash:  "#<epoch>\n<command>\n"
    zsh:   ": <epoch>:0;<command>\n"

Both forms are read back by dejacmd.history.parser, so an export can be
re-imported with the same number of entries.
"""

from typing import Iterable, TextIO

from dejacmd.schema import ExportFormat, parse_timestamp


def render_entry(command: str, epoch: int, fmt: ExportFormat) -> str:
    if fmt == ExportFormat.ZSH:
        return f": {epoch}:0;{command}\n"
    return f"#{epoch}\n{command}\n"


def write_history(out: TextIO, rows: Iterable[tuple[str, str]], fmt: ExportFormat) -> int:
    """
    Write (command, command_timestamp) rows to out.

    Returns:
        Number of entries written

    Raises:
        InvalidTimestampError: If a stored timestamp is not in the fixed format
    """
    written = 0
    for command, command_timestamp in rows:
        out.write(render_entry(command or "", parse_timestamp(command_timestamp), fmt))
        written += 1
    return written
