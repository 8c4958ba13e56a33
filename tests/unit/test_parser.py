"""
Unit tests for the shell history parser.

Tests cover:
- zsh extended history lines
- bash timestamp/command pairs and plain lines
- Rule order for mixed files
- Skipped units (spurious zsh entries, empty commands, stray comments)
- Line accounting in iter_history
- Strict UTF-8 decoding of byte lines
"""

from pathlib import Path

import pytest

from dejacmd.history.parser import (
    SHELL_BASH,
    SHELL_ZSH,
    ParsedCommand,
    is_spurious,
    iter_history,
    parse_bash_plain,
    parse_bash_timestamped,
    parse_int64,
    parse_line,
    parse_zsh_line,
    should_skip,
)


class TestParseInt64:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("0", 0),
            ("1768106544", 1768106544),
            ("-5", -5),
            ("+7", 7),
            ("9223372036854775807", 2**63 - 1),
        ],
    )
    def test_valid(self, text: str, expected: int) -> None:
        assert parse_int64(text) == expected

    @pytest.mark.parametrize(
        "text", ["", "abc", "12a", "1.5", " 1", "9223372036854775808", "\u0661\u0662\u0663"]
    )
    def test_invalid(self, text: str) -> None:
        assert parse_int64(text) is None


class TestParseZshLine:
    """Tests for ": <epoch>:<elapsed>;<command>" lines."""

    def test_valid(self) -> None:
        parsed = parse_zsh_line(": 1768106544:0;ls -altrh")
        assert parsed == ParsedCommand(timestamp=1768106544, command="ls -altrh", shell=SHELL_ZSH)

    def test_semicolon_in_command(self) -> None:
        parsed = parse_zsh_line(': 1768106544:0;echo "test; with semicolon"')
        assert parsed is not None
        assert parsed.command == 'echo "test; with semicolon"'

    def test_empty_command_still_parses(self) -> None:
        parsed = parse_zsh_line(": 1768106544:0;")
        assert parsed is not None
        assert parsed.command == ""

    @pytest.mark.parametrize(
        "line",
        [
            "1768106544:0;ls",
            ": 1768106544:0 ls",
            ": abc:0;ls",
            ": 1768106544;ls",
            ": 1:2:3;ls",
        ],
    )
    def test_invalid(self, line: str) -> None:
        assert parse_zsh_line(line) is None

    def test_non_ascii_digits_fall_through(self) -> None:
        line = ": \u0661\u0662\u0663:0;ls"
        assert parse_zsh_line(line) is None
        parsed = parse_line(line)
        assert parsed is not None
        assert parsed.shell == SHELL_BASH
        assert parsed.command == line


class TestBashRules:
    """Tests for bash timestamp pairs and plain lines."""

    def test_timestamped_pair(self) -> None:
        parsed = parse_bash_timestamped("#1768106005", "ls -l")
        assert parsed == ParsedCommand(
            timestamp=1768106005, command="ls -l", shell=SHELL_BASH, consumed=2
        )

    def test_timestamp_without_command(self) -> None:
        assert parse_bash_timestamped("#1768106005", None) is None
        assert parse_bash_timestamped("#1768106005", "") is None
        assert parse_bash_timestamped("#1768106005", "#1768106010") is None

    def test_comment_is_not_timestamp(self) -> None:
        assert parse_bash_timestamped("# just a note", "ls") is None

    def test_plain_line(self) -> None:
        parsed = parse_bash_plain("rsync -avzz /x/ /y/")
        assert parsed == ParsedCommand(timestamp=0, command="rsync -avzz /x/ /y/", shell=SHELL_BASH)

    def test_plain_rejects_comment_and_empty(self) -> None:
        assert parse_bash_plain("#note") is None
        assert parse_bash_plain("") is None


class TestParseLine:
    """Rule order: zsh, then bash timestamped, then bash plain."""

    def test_zsh_wins(self) -> None:
        parsed = parse_line(": 1768106544:0;env", "next")
        assert parsed is not None
        assert parsed.shell == SHELL_ZSH

    def test_timestamp_pair_before_plain(self) -> None:
        parsed = parse_line("#1768106005", "ls -l")
        assert parsed is not None
        assert parsed.consumed == 2

    def test_unpaired_comment_unparsed(self) -> None:
        assert parse_line("#1768106005", None) is None


class TestFilters:
    def test_spurious_zsh_timestamp(self) -> None:
        parsed = ParsedCommand(timestamp=1, command="#1768105585", shell=SHELL_ZSH)
        assert is_spurious(parsed)
        assert should_skip(parsed)

    def test_only_exact_length_is_spurious(self) -> None:
        assert not is_spurious(ParsedCommand(timestamp=1, command="#17681055851", shell=SHELL_ZSH))
        assert not is_spurious(ParsedCommand(timestamp=1, command="#176810558", shell=SHELL_ZSH))

    def test_bash_never_spurious(self) -> None:
        assert not is_spurious(ParsedCommand(timestamp=1, command="#1768105585", shell=SHELL_BASH))

    def test_empty_zsh_command_skipped(self) -> None:
        assert should_skip(ParsedCommand(timestamp=1, command="", shell=SHELL_ZSH))


class TestIterHistory:
    """Tests for whole-file parsing."""

    def _entries(self, path: Path) -> list[ParsedCommand]:
        with path.open(encoding="utf-8") as f:
            return [record.parsed for record in iter_history(f) if record.is_entry]

    def test_bash_no_date(self, fixtures_dir: Path) -> None:
        entries = self._entries(fixtures_dir / "bash-no-date")
        assert [e.command for e in entries] == ["ls -l", "rm -rf /tmp", "fdisk -l", "rsync -avzz /x/ /y/"]
        assert all(e.timestamp == 0 and e.shell == SHELL_BASH for e in entries)

    def test_bash_date(self, fixtures_dir: Path) -> None:
        entries = self._entries(fixtures_dir / "bash_date")
        assert len(entries) == 4
        assert entries[0].timestamp == 1768106005
        assert entries[-1].command == "cp .zshenv ../me"

    def test_zsh_skips_spurious_entry(self, fixtures_dir: Path) -> None:
        with (fixtures_dir / "zsh").open(encoding="utf-8") as f:
            records = list(iter_history(f))
        assert sum(1 for r in records if r.is_entry) == 6
        assert sum(1 for r in records if r.skipped) == 1

    def test_mixed_file(self, fixtures_dir: Path) -> None:
        entries = self._entries(fixtures_dir / "zsh_bash_mix")
        assert len(entries) == 9
        assert sum(1 for e in entries if e.shell == SHELL_ZSH) == 6
        assert sum(1 for e in entries if e.shell == SHELL_BASH) == 3

    def test_every_line_accounted_for(self, fixtures_dir: Path) -> None:
        path = fixtures_dir / "zsh_bash_mix"
        with path.open(encoding="utf-8") as f:
            total = sum(record.lines for record in iter_history(f))
        assert total == len(path.read_text(encoding="utf-8").splitlines())

    def test_line_numbers(self) -> None:
        records = list(iter_history(["#100\n", "ls\n", "\n", "pwd\n"]))
        assert [(r.lineno, r.lines) for r in records] == [(1, 2), (3, 1), (4, 1)]
        assert records[1].parsed is None
        assert not records[1].skipped

    def test_stray_comment_is_skipped(self) -> None:
        records = list(iter_history(["#100\n", "#200\n", "ls\n"]))
        assert records[0].skipped
        assert records[1].parsed is not None
        assert records[1].parsed.command == "ls"
        assert records[1].parsed.timestamp == 200

    def test_crlf_lines(self) -> None:
        records = list(iter_history(["#100\r\n", "ls -l\r\n"]))
        assert records[0].parsed is not None
        assert records[0].parsed.command == "ls -l"

    def test_byte_lines_decoded(self) -> None:
        records = list(iter_history([b"#100\n", b"echo caf\xc3\xa9\n"]))
        assert records[0].parsed is not None
        assert records[0].parsed.command == "echo caf\u00e9"

    def test_undecodable_line(self) -> None:
        records = list(iter_history([b"ls\n", b"echo caf\xe9\n", b"pwd\n"]))
        assert [(r.lineno, r.undecodable) for r in records] == [(1, False), (2, True), (3, False)]
        assert records[1].parsed is None
        assert not records[1].is_entry

    def test_undecodable_line_does_not_pair(self) -> None:
        records = list(iter_history([b"#100\n", b"\xff\xfe\n", b"pwd\n"]))
        assert records[0].skipped
        assert records[1].undecodable
        assert records[2].parsed is not None
        assert records[2].parsed.command == "pwd"
