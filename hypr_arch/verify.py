"""
Postcondition checks run after risky stages.

A check never raises for a failed condition and never decides whether the
failure is fatal: it returns a VerificationResult and the stage runner applies
the stage's criticality.
"""

import shlex
import stat
from pathlib import Path
from typing import List, Union

from pydantic import BaseModel, ConfigDict

from hypr_arch.utils.exceptions import ShellCommandError
from hypr_arch.utils.executor import Executor

MIB = 1024 ** 2
GIB = 1024 ** 3

# Shown entries when a token is missing from a listing
LISTING_PREVIEW = 10


class VerificationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    passed: bool
    diagnostic: str = ""

    @classmethod
    def ok(cls, diagnostic: str = "") -> "VerificationResult":
        return cls(passed=True, diagnostic=diagnostic)

    @classmethod
    def fail(cls, diagnostic: str) -> "VerificationResult":
        return cls(passed=False, diagnostic=diagnostic)


_KIND_TESTS = {
    "block_device": stat.S_ISBLK,
    "file": stat.S_ISREG,
    "directory": stat.S_ISDIR,
}

_KIND_NAMES = {
    "block_device": "block device",
    "file": "regular file",
    "directory": "directory",
}


def check_exists(path: Union[str, Path], kind: str) -> VerificationResult:
    """The path must exist and be of the expected kind ('block_device', 'file' or 'directory')."""
    if kind not in _KIND_TESTS:
        raise ValueError(f"Unknown path kind: {kind}")

    expected = _KIND_NAMES[kind]
    try:
        mode = Path(path).stat().st_mode
    except FileNotFoundError:
        return VerificationResult.fail(f"{path} does not exist (expected a {expected})")
    except OSError as e:
        return VerificationResult.fail(f"{path} cannot be inspected ({e.strerror}); expected a {expected}")

    if not _KIND_TESTS[kind](mode):
        return VerificationResult.fail(f"{path} exists but is not a {expected}")
    return VerificationResult.ok(f"{path} is a {expected}")


def bytes_to_mib(size_bytes: int) -> int:
    return size_bytes // MIB


def bytes_to_gib(size_bytes: int) -> int:
    return size_bytes // GIB


def check_bounds(value: int, low: int, high: int, unit: str, what: str = "value") -> VerificationResult:
    """Inclusive range check on an already converted quantity."""
    if low <= value <= high:
        return VerificationResult.ok(f"{what} is {value} {unit}")
    return VerificationResult.fail(f"{what} is {value} {unit}, expected between {low} and {high} {unit}")


def check_command(executor: Executor, command: List[str], chroot: bool = False) -> VerificationResult:
    """The command must exit with status zero."""
    try:
        exit_code, stdout, stderr = executor.query(command, chroot=chroot)
    except ShellCommandError as e:
        return VerificationResult.fail(f"'{e.command}' could not run: {e.output or e}")

    command_str = shlex.join(command)
    if exit_code != 0:
        output = (stderr.strip() or stdout.strip() or "no output")
        return VerificationResult.fail(f"'{command_str}' exited with {exit_code}: {output}")
    return VerificationResult.ok(f"'{command_str}' succeeded")


def check_listing(executor: Executor, command: List[str], token: str,
                  chroot: bool = False, ignore_case: bool = False) -> VerificationResult:
    """
    The token must appear as a whole word on some line of the command's output,
    e.g. a package name in 'pacman -Qq' or a boot entry in 'efibootmgr'.
    """
    command_str = shlex.join(command)
    try:
        exit_code, stdout, stderr = executor.query(command, chroot=chroot)
    except ShellCommandError as e:
        return VerificationResult.fail(f"'{e.command}' could not run: {e.output or e}")

    if exit_code != 0:
        return VerificationResult.fail(f"'{command_str}' exited with {exit_code}: {stderr.strip() or 'no output'}")

    needle = token.lower() if ignore_case else token
    lines = [line.strip() for line in stdout.splitlines() if line.strip()]
    for line in lines:
        haystack = line.lower() if ignore_case else line
        if needle in haystack.split() or (" " in needle and needle in haystack):
            return VerificationResult.ok(f"'{token}' found in output of '{command_str}'")

    if not lines:
        return VerificationResult.fail(f"'{token}' not found: '{command_str}' printed nothing")

    preview = ", ".join(lines[:LISTING_PREVIEW])
    more = f" (+{len(lines) - LISTING_PREVIEW} more)" if len(lines) > LISTING_PREVIEW else ""
    return VerificationResult.fail(f"'{token}' not found in output of '{command_str}'; found: {preview}{more}")
