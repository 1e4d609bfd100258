"""
Stages run from the live ISO, up to and including the handoff into the new root.

Filesystem and bootloader branches are resolved here, when the plan is built:
a value without an entry in the branch tables stops the run before anything
is touched.
"""

from pathlib import Path
from typing import Callable, Dict, List, TypeVar

from hypr_arch.config.models import Encryption, Filesystem
from hypr_arch.executors.disk import DiskManager
from hypr_arch.executors.system import PackageManager, enable_parallel_downloads
from hypr_arch.handoff import HandoffSerializer
from hypr_arch.install import templates
from hypr_arch.stages import Criticality, Stage, StageContext
from hypr_arch.utils.exceptions import UnsupportedChoiceError
from hypr_arch.utils.executor import NO_TIMEOUT
from hypr_arch.verify import (
    VerificationResult, bytes_to_mib, check_bounds, check_command, check_exists, check_listing,
)

LIVE_PACMAN_CONF = Path("/etc/pacman.conf")

# Stands in for the blkid result when nothing was formatted
DRY_RUN_UUID = "00000000-0000-0000-0000-000000000000"

K = TypeVar("K")
V = TypeVar("V")


def select_branch(table: Dict[K, V], field: str, value: K) -> V:
    if value not in table:
        raise UnsupportedChoiceError(field, getattr(value, "value", value))
    return table[value]


# --- Actions ---

def refresh_mirrors(ctx: StageContext) -> None:
    PackageManager(ctx.executor).refresh_mirrors(ctx.settings.mirror_countries)


def enable_live_parallel_downloads(ctx: StageContext) -> None:
    if ctx.dry_run:
        ctx.logger.info(f"DRY RUN: would enable ParallelDownloads in {LIVE_PACMAN_CONF}")
        return
    if enable_parallel_downloads(LIVE_PACMAN_CONF):
        ctx.logger.info("Parallel downloads enabled")
    else:
        ctx.logger.info("ParallelDownloads is not commented out, leaving pacman.conf as is")


def load_keymap(ctx: StageContext) -> None:
    ctx.executor.run(f"Loading keymap {ctx.config.keymap}", ["loadkeys", ctx.config.keymap])


def wipe_disk(ctx: StageContext) -> None:
    DiskManager(ctx.executor).wipe_disk(ctx.config.target_disk)


def create_partitions(ctx: StageContext) -> None:
    disks = DiskManager(ctx.executor)
    disk = ctx.config.target_disk
    disks.create_partition(disk, 1, ctx.settings.efi_size, "ef00")
    disks.create_partition(disk, 2, "0", "8300")
    disks.reread_partition_table(disk)


def format_efi(ctx: StageContext) -> None:
    DiskManager(ctx.executor).format_partition(ctx.config.efi_partition, "fat32")


def encrypt_root(ctx: StageContext) -> None:
    disks = DiskManager(ctx.executor)
    partition = ctx.config.root_partition
    disks.luks_format(partition, ctx.config.password.get_secret_value())
    # The bootloader unlocks the container by the UUID of the raw partition
    ctx.facts.luks_uuid = DRY_RUN_UUID if ctx.dry_run else disks.filesystem_uuid(partition)
    ctx.logger.info(f"LUKS container UUID: {ctx.facts.luks_uuid or 'unknown'}")


def open_encrypted_root(ctx: StageContext) -> None:
    DiskManager(ctx.executor).luks_open(ctx.config.root_partition, ctx.config.password.get_secret_value())


def _format_root_as(filesystem: str) -> Callable[[StageContext], None]:
    def action(ctx: StageContext) -> None:
        disks = DiskManager(ctx.executor)
        disks.format_partition(ctx.config.root_device, filesystem)
        if ctx.dry_run:
            ctx.facts.root_uuid = DRY_RUN_UUID
        else:
            ctx.facts.root_uuid = disks.filesystem_uuid(ctx.config.root_device)
        ctx.logger.info(f"Root filesystem UUID: {ctx.facts.root_uuid or 'unknown'}")
    return action


ROOT_FORMAT_ACTIONS = {
    Filesystem.EXT4: _format_root_as("ext4"),
    Filesystem.BTRFS: _format_root_as("btrfs"),
    Filesystem.XFS: _format_root_as("xfs"),
}


def _mount_direct(ctx: StageContext) -> None:
    DiskManager(ctx.executor).mount_partition(ctx.config.root_device, str(ctx.root))


def _mount_btrfs(ctx: StageContext) -> None:
    DiskManager(ctx.executor).setup_btrfs_layout(ctx.config.root_device, str(ctx.root))


ROOT_MOUNT_ACTIONS = {
    Filesystem.EXT4: _mount_direct,
    Filesystem.BTRFS: _mount_btrfs,
    Filesystem.XFS: _mount_direct,
}


def _then_mount_efi(mount_root: Callable[[StageContext], None]) -> Callable[[StageContext], None]:
    def action(ctx: StageContext) -> None:
        mount_root(ctx)
        DiskManager(ctx.executor).mount_partition(ctx.config.efi_partition, str(ctx.path("boot")))
    return action


def install_packages(ctx: StageContext) -> None:
    packages = ctx.settings.packages_for(ctx.config)
    ctx.logger.debug(f"pacstrap package list: {' '.join(packages)}")
    PackageManager(ctx.executor).pacstrap(str(ctx.root), packages)


def generate_fstab(ctx: StageContext) -> None:
    DiskManager(ctx.executor).generate_fstab(str(ctx.root))


def configure_zram(ctx: StageContext) -> None:
    ctx.write_file("etc/systemd/zram-generator.conf", templates.zram_generator())


def _btrfs_swap_preparation(swapfile: str) -> List[List[str]]:
    # Copy-on-write and compression must be off before the file gets any data
    return [
        ["truncate", "-s", "0", swapfile],
        ["chattr", "+C", swapfile],
        ["btrfs", "property", "set", swapfile, "compression", "none"],
    ]


SWAP_PREPARATION = {
    Filesystem.EXT4: lambda swapfile: [],
    Filesystem.BTRFS: _btrfs_swap_preparation,
    Filesystem.XFS: lambda swapfile: [],
}


def _create_swapfile_with(prepare: Callable[[str], List[List[str]]]) -> Callable[[StageContext], None]:
    def action(ctx: StageContext) -> None:
        size_mib = ctx.settings.swapfile_mib
        if size_mib == 0:
            ctx.logger.info("Swap file disabled (swapfile_mib = 0)")
            return
        swapfile = str(ctx.path("swapfile"))
        for command in prepare(swapfile):
            ctx.executor.run(f"Preparing {swapfile}: {command[0]}", command)
        ctx.executor.run(
            f"Allocating {size_mib} MiB swap file",
            ["dd", "if=/dev/zero", f"of={swapfile}", "bs=1M", f"count={size_mib}"],
            timeout=NO_TIMEOUT,
        )
        ctx.executor.run(f"Restricting permissions of {swapfile}", ["chmod", "600", swapfile])
        ctx.executor.run(f"Formatting {swapfile} as swap", ["mkswap", swapfile])
        ctx.write_file("etc/fstab", templates.swap_fstab_entry("/swapfile"), append=True)
    return action


def hand_off(ctx: StageContext) -> None:
    serializer = HandoffSerializer(ctx.logger)
    payload = serializer.build(ctx.config, ctx.facts, ctx.settings)
    if ctx.dry_run:
        rendered = serializer.dumps(payload)
        ctx.logger.info(f"DRY RUN: would write a {len(rendered)} byte handoff payload and run arch-chroot {ctx.root}")
        return
    serializer.write(payload, ctx.root)
    serializer.execute(ctx.executor, ctx.root)


def sync_filesystems(ctx: StageContext) -> None:
    ctx.executor.run("Syncing filesystems", ["sync"])


# --- Checks ---

def check_efi_exists(ctx: StageContext) -> VerificationResult:
    return check_exists(ctx.config.efi_partition, "block_device")


def check_efi_size(ctx: StageContext) -> VerificationResult:
    efi = ctx.config.efi_partition
    size_bytes = DiskManager(ctx.executor).device_size_bytes(efi)
    if size_bytes is None:
        return VerificationResult.fail(f"Could not read the size of EFI partition {efi}")
    return check_bounds(bytes_to_mib(size_bytes), ctx.settings.efi_min_mib, ctx.settings.efi_max_mib,
                        "MiB", what=f"EFI partition {efi}")


def check_root_exists(ctx: StageContext) -> VerificationResult:
    return check_exists(ctx.config.root_partition, "block_device")


def check_root_uuid(ctx: StageContext) -> VerificationResult:
    if not ctx.facts.root_uuid:
        return VerificationResult.fail(f"blkid reported no filesystem UUID for {ctx.config.root_device}")
    return VerificationResult.ok(f"root UUID {ctx.facts.root_uuid}")


def check_luks_uuid(ctx: StageContext) -> VerificationResult:
    if not ctx.facts.luks_uuid:
        return VerificationResult.fail(f"blkid reported no LUKS UUID for {ctx.config.root_partition}")
    return VerificationResult.ok(f"LUKS UUID {ctx.facts.luks_uuid}")


def check_mapper_exists(ctx: StageContext) -> VerificationResult:
    return check_exists(ctx.config.root_device, "block_device")


def check_boot_mounted(ctx: StageContext) -> VerificationResult:
    return check_command(ctx.executor, ["mountpoint", "-q", str(ctx.path("boot"))])


def check_base_devel(ctx: StageContext) -> VerificationResult:
    result = check_command(ctx.executor, ["pacman", "-Si", "base-devel"])
    if result.passed:
        return result
    return VerificationResult.fail(f"base-devel not available in repositories ({result.diagnostic})")


def _package_installed(package: str) -> Callable[[StageContext], VerificationResult]:
    def check(ctx: StageContext) -> VerificationResult:
        result = check_listing(ctx.executor, ["pacman", "-Qq"], package, chroot=True)
        if result.passed:
            return result
        return VerificationResult.fail(f"Critical package '{package}' is not installed; the system will not boot")
    return check


def check_swapfile(ctx: StageContext) -> VerificationResult:
    if ctx.settings.swapfile_mib == 0:
        return VerificationResult.ok("no swap file requested")
    return check_exists(ctx.path("swapfile"), "file")


# --- Plan ---

ENCRYPTION_STAGES: Dict[Encryption, List[Stage]] = {
    Encryption.NONE: [],
    Encryption.LUKS: [
        Stage("Encrypt root partition", encrypt_root, checks=[check_luks_uuid]),
        Stage("Open encrypted root", open_encrypted_root, checks=[check_mapper_exists]),
    ],
}


def build_live_plan(ctx: StageContext) -> List[Stage]:
    """The ordered stage list for the live environment; raises UnsupportedChoiceError for unknown branches."""
    filesystem = ctx.config.filesystem
    format_root = select_branch(ROOT_FORMAT_ACTIONS, "filesystem", filesystem)
    mount_root = select_branch(ROOT_MOUNT_ACTIONS, "filesystem", filesystem)
    swap_preparation = select_branch(SWAP_PREPARATION, "filesystem", filesystem)
    encryption_stages = select_branch(ENCRYPTION_STAGES, "encryption", ctx.config.encryption)
    critical = ctx.settings.critical_packages_for(ctx.config)

    return [
        Stage("Refresh mirror list", refresh_mirrors),
        Stage("Enable parallel downloads", enable_live_parallel_downloads),
        Stage("Load console keymap", load_keymap),
        Stage("Wipe target disk", wipe_disk),
        Stage("Create partitions", create_partitions),
        Stage("Verify EFI partition", checks=[check_efi_exists, check_efi_size]),
        Stage("Format EFI partition", format_efi),
        Stage("Verify root partition", checks=[check_root_exists]),
        *encryption_stages,
        Stage(f"Format root partition ({filesystem.value})", format_root, checks=[check_root_uuid]),
        Stage("Mount filesystems", _then_mount_efi(mount_root), checks=[check_boot_mounted]),
        Stage("Check build dependencies", checks=[check_base_devel]),
        Stage("Install base system", install_packages, criticality=Criticality.CONFIRM),
        Stage("Verify critical packages", checks=[_package_installed(package) for package in critical]),
        Stage("Generate fstab", generate_fstab, checks=[lambda c: check_exists(c.path("etc/fstab"), "file")]),
        Stage("Configure zram", configure_zram),
        Stage("Create swap file", _create_swapfile_with(swap_preparation), checks=[check_swapfile]),
        Stage("Continue inside the new system", hand_off),
        Stage("Sync filesystems", sync_filesystems),
    ]
