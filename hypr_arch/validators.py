"""
Field predicates for the installation answers.

Every validator returns None when the value is acceptable, or a short,
field-specific diagnostic that is shown to the user before re-prompting.
The pure ones are reused by the pydantic models; the ones that touch the
running system (zone database, keymap loader, block devices) are only used
by the collector.
"""

import re
from pathlib import Path
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from hypr_arch.executors.disk import DiskManager
    from hypr_arch.utils.executor import Executor

LOCALE_PATTERN = re.compile(r"[a-z]{2}_[A-Z]{2}\.UTF-8")
HOSTNAME_PATTERN = re.compile(r"[a-zA-Z0-9-]+")
USERNAME_PATTERN = re.compile(r"[a-z_][a-z0-9_-]*")
KEYMAP_PATTERN = re.compile(r"[A-Za-z0-9_.+-]+")

MIN_PASSWORD_LENGTH = 6

# Accounts that already exist on the installed system (greetd ships 'greeter')
RESERVED_USERNAMES = frozenset({
    "root", "bin", "daemon", "mail", "ftp", "http", "nobody", "dbus", "greeter",
})

GIB = 1024 ** 3
MIB = 1024 ** 2


def validate_timezone(value: str, zoneinfo_dir: str = "/usr/share/zoneinfo") -> Optional[str]:
    hint = f"Try: ls {zoneinfo_dir}/ | less"
    if not value:
        return f"Timezone cannot be empty. {hint}"
    if value.startswith("/") or ".." in Path(value).parts:
        return f"Invalid timezone '{value}'. Use a zone name such as Europe/London"
    # Any regular file under the zone directory passes, zone.tab included
    if not (Path(zoneinfo_dir) / value).is_file():
        return f"Invalid timezone '{value}'. {hint}"
    return None


def validate_locale(value: str) -> Optional[str]:
    if not LOCALE_PATTERN.fullmatch(value or ""):
        return f"Invalid locale '{value}'. Use: language_COUNTRY.UTF-8 (e.g. en_GB.UTF-8)"
    return None


def validate_keymap_name(value: str) -> Optional[str]:
    if not KEYMAP_PATTERN.fullmatch(value or ""):
        return f"Invalid keymap '{value}'. Try: localectl list-keymaps | less"
    return None


def validate_keymap(value: str, executor: "Executor") -> Optional[str]:
    """
    Loads the keymap into the running console with loadkeys. In dry-run mode the
    keymap is only parsed, so the console layout is left alone.
    """
    problem = validate_keymap_name(value)
    if problem:
        return problem

    command = ["loadkeys", value]
    if executor.dry_run:
        command = ["loadkeys", "--parse", value]

    exit_code, _, _ = executor.execute_command(command, check=False)
    if exit_code != 0:
        return f"Invalid keymap '{value}'. Try: localectl list-keymaps | less"
    return None


def validate_hostname(value: str) -> Optional[str]:
    if not HOSTNAME_PATTERN.fullmatch(value or ""):
        return "Invalid hostname. Use letters, numbers, and hyphens only"
    return None


def validate_username(value: str) -> Optional[str]:
    if not USERNAME_PATTERN.fullmatch(value or ""):
        return ("Invalid username. Must start with a lowercase letter or underscore, "
                "then use lowercase letters, numbers, underscore or hyphen")
    if value in RESERVED_USERNAMES:
        return f"Username '{value}' is reserved by the system. Choose another one"
    return None


def validate_password_strength(password: str) -> Optional[str]:
    if len(password or "") < MIN_PASSWORD_LENGTH:
        return f"Password too short (min {MIN_PASSWORD_LENGTH} characters)"
    return None


def validate_password(password: str, confirmation: str) -> Optional[str]:
    if password != confirmation:
        return "Passwords don't match"
    return validate_password_strength(password)


def validate_literal(value: str, expected: str) -> Optional[str]:
    """Exact, case-sensitive match. Used for confirmations guarding destructive steps."""
    if value != expected:
        return f"Type '{expected}' exactly"
    return None


def validate_disk(path: str, disks: "DiskManager", min_gib: int = 32) -> Optional[str]:
    if not path:
        return "Disk path cannot be empty (e.g. /dev/sda)"
    if not path.startswith("/dev/"):
        return f"Disk must be a /dev path (e.g. /dev/sda), got '{path}'"
    if not Path(path).is_block_device():
        return f"Disk not found: {path} is not a block device"

    size_bytes = disks.device_size_bytes(path)
    if size_bytes is None:
        return f"Could not read the size of {path}"

    size_gib = size_bytes // GIB
    if size_gib < min_gib:
        return f"Disk too small ({size_gib} GiB, need {min_gib} GiB+)"
    return None
