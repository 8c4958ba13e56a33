"""
Shell history text parser.

One history file may mix three line shapes, tried in this order:

    1. zsh extended:      ": <epoch>:<elapsed>;<command>"
    2. bash timestamped:  "#<epoch>" followed by the command on the next line
    3. bash plain:        "<command>" (timestamp 0, unknown)

Each rule is a function (line, next_line) -> ParsedCommand | None and the
first rule that returns a command wins. iter_history() walks a line stream
and yields one HistoryRecord per unit, including the units that are
recognized but deliberately not stored, so callers can keep line-accurate
progress.
"""

import re
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator

I64_MIN = -(2**63)
I64_MAX = 2**63 - 1

_INTEGER_RE = re.compile(r"[+-]?[0-9]+")

SHELL_BASH = "bash"
SHELL_ZSH = "zsh"


@dataclass(frozen=True)
class ParsedCommand:
    """
    One command recognized in a history file.

    Attributes:
        timestamp: Unix epoch seconds (0 if the format carries none)
        command: Command text exactly as found
        shell: "bash" or "zsh"
        consumed: Input lines this command used (2 for timestamped bash)
    """

    timestamp: int
    command: str
    shell: str
    consumed: int = 1


@dataclass(frozen=True)
class HistoryRecord:
    """
    One unit of a history file.

    Attributes:
        lineno: 1-based number of the unit's first line
        lines: Input lines the unit covers
        parsed: The recognized command, None for blank or unusable lines
        skipped: True when the unit is recognized but must not be stored
        undecodable: True when the line is not valid UTF-8
    """

    lineno: int
    lines: int
    parsed: ParsedCommand | None = None
    skipped: bool = False
    undecodable: bool = False

    @property
    def is_entry(self) -> bool:
        return self.parsed is not None and not self.skipped


def parse_int64(text: str) -> int | None:
    """Parse a signed decimal integer that fits in 64 bits, else None."""
    if not _INTEGER_RE.fullmatch(text):
        return None
    value = int(text)
    if value < I64_MIN or value > I64_MAX:
        return None
    return value


# =============================================================================
# Rules
# =============================================================================


def parse_zsh_line(line: str) -> ParsedCommand | None:
    """
    Parse one zsh extended-history line.

    Only the first ";" separates metadata from the command, so commands may
    themselves contain ";". An empty command is still a valid parse.

    Example:
        >>> parse_zsh_line(": 1768106544:0;ls -altrh")
        ParsedCommand(timestamp=1768106544, command='ls -altrh', shell='zsh', consumed=1)
    """
    if not line.startswith(": "):
        return None
    meta, sep, command = line[2:].partition(";")
    if not sep:
        return None
    time_parts = meta.split(":")
    if len(time_parts) != 2:
        return None
    timestamp = parse_int64(time_parts[0])
    if timestamp is None:
        return None
    return ParsedCommand(timestamp=timestamp, command=command, shell=SHELL_ZSH)


def _zsh_rule(line: str, next_line: str | None) -> ParsedCommand | None:
    return parse_zsh_line(line)


def parse_bash_timestamped(line: str, next_line: str | None) -> ParsedCommand | None:
    """Pair a "#<epoch>" line with the following command line."""
    stripped = line.strip()
    if not stripped.startswith("#"):
        return None
    timestamp = parse_int64(stripped[1:].strip())
    if timestamp is None:
        return None
    if not next_line or next_line.startswith("#"):
        return None
    return ParsedCommand(timestamp=timestamp, command=next_line, shell=SHELL_BASH, consumed=2)


def parse_bash_plain(line: str, next_line: str | None = None) -> ParsedCommand | None:
    """Any non-empty line not starting with "#" is a command with no timestamp."""
    if not line or line.startswith("#"):
        return None
    return ParsedCommand(timestamp=0, command=line, shell=SHELL_BASH)


Rule = Callable[[str, str | None], ParsedCommand | None]

RULES: tuple[Rule, ...] = (
    _zsh_rule,
    parse_bash_timestamped,
    parse_bash_plain,
)


def parse_line(line: str, next_line: str | None = None) -> ParsedCommand | None:
    """Apply RULES in order and return the first match."""
    for rule in RULES:
        parsed = rule(line, next_line)
        if parsed is not None:
            return parsed
    return None


# =============================================================================
# Filters and Stream Parsing
# =============================================================================


def is_spurious(parsed: ParsedCommand) -> bool:
    """
    Whether a zsh entry is metadata noise rather than a command.

    zsh sometimes records a bare bash timestamp comment (e.g.
    ": 1768106083:0;#1768105585"); such commands are "#" plus 10 characters.
    """
    return (
        parsed.shell == SHELL_ZSH
        and parsed.command.startswith("#")
        and len(parsed.command) == 11
    )


def should_skip(parsed: ParsedCommand) -> bool:
    """Recognized units that are never stored: empty zsh commands and noise."""
    if parsed.shell == SHELL_ZSH and not parsed.command:
        return True
    return is_spurious(parsed)


def _decode(raw: str | bytes) -> str | None:
    if isinstance(raw, str):
        return raw
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return None


def _strip_newline(line: str) -> str:
    if line.endswith("\n"):
        line = line[:-1]
    if line.endswith("\r"):
        line = line[:-1]
    return line


def iter_history(lines: Iterable[str | bytes]) -> Iterator[HistoryRecord]:
    """
    Parse a stream of history lines.

    Blank lines and unpaired "#" lines yield records without a command so
    that every input line is accounted for exactly once. Byte lines are
    decoded as strict UTF-8; a line that fails yields an undecodable record
    and never pairs with a preceding "#<epoch>" line.
    """
    iterator = iter(lines)
    current = next(iterator, None)
    lineno = 1
    while current is not None:
        decoded = _decode(current)
        following = next(iterator, None)
        if decoded is None:
            yield HistoryRecord(lineno=lineno, lines=1, undecodable=True)
            current, lineno = following, lineno + 1
            continue

        line = _strip_newline(decoded)
        next_decoded = _decode(following) if following is not None else None
        next_line = _strip_newline(next_decoded) if next_decoded is not None else None

        if not line.strip():
            yield HistoryRecord(lineno=lineno, lines=1)
            current, lineno = following, lineno + 1
            continue

        parsed = parse_line(line, next_line)
        if parsed is None:
            yield HistoryRecord(lineno=lineno, lines=1, skipped=True)
            current, lineno = following, lineno + 1
            continue

        yield HistoryRecord(
            lineno=lineno,
            lines=parsed.consumed,
            parsed=parsed,
            skipped=should_skip(parsed),
        )
        if parsed.consumed == 2:
            current = next(iterator, None)
        else:
            current = following
        lineno += parsed.consumed
