"""
Best-effort facts about the recording host and invoking shell.

Nothing here raises: every lookup falls back to an empty or "unknown"
value, since a missing detail must never stop a command from being
recorded.
"""

import getpass
import os
import socket
import sys
from dataclasses import dataclass
from pathlib import Path

import psutil

from dejacmd.schema import home_dir

SHELL_NAMES = ("bash", "zsh", "pwsh", "fish")

# Used only to pick the outbound interface; nothing is sent.
PROBE_ADDRESS = ("192.0.2.1", 80)


@dataclass(frozen=True)
class ProcessInfo:
    """Who recorded a command and from where."""

    shell: str
    user_id: int | None
    user_name: str
    cwd: str


def os_tag() -> str:
    """Platform tag: linux, macos, windows or the raw sys.platform."""
    if sys.platform.startswith("linux"):
        return "linux"
    if sys.platform == "darwin":
        return "macos"
    if sys.platform in ("win32", "cygwin"):
        return "windows"
    return sys.platform


def normalize_shell_name(shell: str) -> str:
    """Base name of a shell path with login dashes removed ("-zsh" -> "zsh")."""
    if not shell:
        return ""
    name = Path(shell).name or shell
    return name.replace("-", "", 2).strip()


def local_ip() -> str:
    """Address of the interface used for outbound traffic, "" if unknown."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(PROBE_ADDRESS)
            return sock.getsockname()[0]
    except OSError:
        return ""


def current_user_name() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return os.environ.get("USER") or os.environ.get("USERNAME") or ""


def current_user_id() -> int | None:
    getuid = getattr(os, "getuid", None)
    return getuid() if getuid is not None else None


def current_dir() -> str:
    try:
        return os.getcwd()
    except OSError:
        return str(home_dir())


def find_shell(pid: int | None = None) -> tuple[str, str]:
    """
    Walk up from pid's parent to the nearest shell process.

    Returns:
        (command of the shell, its working directory); ("", "") if none found
    """
    try:
        proc = psutil.Process(pid).parent()
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return "", ""

    while proc is not None:
        try:
            cmdline = proc.cmdline()
            command = cmdline[0] if cmdline else proc.name()
            if any(name in command for name in SHELL_NAMES):
                try:
                    cwd = proc.cwd()
                except (psutil.NoSuchProcess, psutil.AccessDenied):
                    cwd = ""
                return command, cwd
            proc = proc.parent()
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            return "", ""
    return "", ""


def process_info() -> ProcessInfo:
    """Shell, user and working directory of the invoking shell."""
    if os.name == "nt":
        shell = os.environ.get("COMSPEC", "")
        cwd = current_dir()
    else:
        shell, cwd = find_shell()
        if not shell:
            shell = os.environ.get("SHELL", "")
        cwd = cwd or current_dir()
    return ProcessInfo(
        shell=normalize_shell_name(shell),
        user_id=current_user_id(),
        user_name=current_user_name(),
        cwd=cwd,
    )
