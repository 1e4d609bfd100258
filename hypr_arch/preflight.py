"""Checks that the live environment can run an installation at all."""

import os
import shutil
from typing import Callable, List, Optional

from hypr_arch.config.models import InstallerSettings
from hypr_arch.executors.disk import DiskManager
from hypr_arch.utils.exceptions import PreconditionError
from hypr_arch.utils.logger import RichAppLogger
from hypr_arch.verify import bytes_to_gib

EFI_FIRMWARE_DIR = "/sys/firmware/efi"

# Tools of the live ISO used before the handoff (reflector is installed by the first stage)
REQUIRED_TOOLS = [
    "sgdisk", "wipefs", "partprobe", "lsblk", "blkid", "mkfs.fat", "mkfs.ext4",
    "mkfs.btrfs", "mkfs.xfs", "btrfs", "mount", "umount", "pacman", "pacstrap",
    "genfstab", "arch-chroot", "loadkeys", "mkswap", "chattr",
]


def check_uefi(efi_dir: str = EFI_FIRMWARE_DIR) -> Optional[str]:
    if not os.path.isdir(efi_dir):
        return "This installer requires UEFI boot mode; the system appears to be in BIOS/Legacy mode"
    return None


def check_root(geteuid: Callable[[], int] = os.geteuid) -> Optional[str]:
    if geteuid() != 0:
        return "The installer must be run as root"
    return None


def missing_tools(tools: List[str] = REQUIRED_TOOLS) -> List[str]:
    return [tool for tool in tools if shutil.which(tool) is None]


def check_tools(tools: List[str] = REQUIRED_TOOLS) -> Optional[str]:
    missing = missing_tools(tools)
    if missing:
        return f"Missing tools: {', '.join(missing)}. Boot the Arch Linux live ISO"
    return None


def check_disk_available(disks: DiskManager, min_gib: int) -> Optional[str]:
    """At least one whole disk must be large enough for the installation."""
    found = disks.list_disks()
    if not found:
        return "No disks found (lsblk listed no devices of type 'disk')"
    largest_path, largest_bytes = max(found, key=lambda disk: disk[1])
    if bytes_to_gib(largest_bytes) < min_gib:
        return (f"No disk has at least {min_gib} GiB; the largest is {largest_path} "
                f"({bytes_to_gib(largest_bytes)} GiB)")
    return None


def run_preflight(logger: RichAppLogger, disks: DiskManager, settings: InstallerSettings, dry_run: bool = False) -> None:
    """
    Raises PreconditionError on the first failed check. In dry-run mode the
    failures are only logged, so the prompts can be tried on any machine.
    """
    logger.section("Pre-flight checks")
    checks = [
        ("UEFI boot mode", check_uefi),
        ("root privileges", check_root),
        ("required tools", check_tools),
        ("disk space", lambda: check_disk_available(disks, settings.min_disk_gib)),
    ]
    for name, check in checks:
        problem = check()
        if problem is None:
            logger.success(f"Pre-flight: {name}")
            continue
        if dry_run:
            logger.warning(f"DRY RUN: ignoring failed pre-flight check ({name}): {problem}")
            continue
        raise PreconditionError(problem)
