# hypr_arch/executors/disk.py
import os
import shlex
from typing import List, Optional, Tuple

from hypr_arch.utils.executor import Executor

# Mount options used for every btrfs subvolume of the root filesystem
BTRFS_MOUNT_OPTIONS = "compress=zstd,noatime,space_cache=v2"

# (subvolume, mount point relative to the mount root)
BTRFS_SUBVOLUMES: List[Tuple[str, str]] = [("@", ""), ("@home", "home")]

MKFS_COMMANDS = {
    "fat32": ["mkfs.fat", "-F32"],
    "ext4": ["mkfs.ext4", "-F"],
    "btrfs": ["mkfs.btrfs", "-f"],
    "xfs": ["mkfs.xfs", "-f"],
}

# Name under /dev/mapper of the opened LUKS container
LUKS_MAPPER_NAME = "cryptroot"


class DiskManager:
    """
    Disk and partition management for the target machine.
    All state-changing operations are delegated to the provided Executor instance;
    read-only lookups (sizes, UUIDs) go through Executor.query.
    """

    def __init__(self, executor: Executor):
        self.executor = executor

    # --- LOOKUPS ---

    def list_disks(self) -> List[Tuple[str, int]]:
        """
        Lists whole disks as (device path, size in bytes) using lsblk.
        Loop devices, ROMs and partitions are left out.
        """
        exit_code, stdout, _ = self.executor.query(["lsblk", "-d", "-n", "-b", "-o", "NAME,SIZE,TYPE"])
        if exit_code != 0:
            return []

        disks = []
        for line in stdout.splitlines():
            fields = line.split()
            if len(fields) != 3 or fields[2] != "disk":
                continue
            name, size, _ = fields
            try:
                disks.append((f"/dev/{name}", int(size)))
            except ValueError:
                continue
        return disks

    def device_size_bytes(self, device: str) -> Optional[int]:
        """Size of a disk or partition in bytes, or None when lsblk cannot tell."""
        exit_code, stdout, _ = self.executor.query(["lsblk", "-b", "-d", "-n", "-o", "SIZE", device])
        if exit_code != 0:
            return None
        try:
            return int(stdout.strip().splitlines()[0])
        except (ValueError, IndexError):
            return None

    def filesystem_uuid(self, partition_path: str) -> str:
        """Filesystem UUID of a formatted partition; empty string when blkid finds none."""
        _, stdout, _ = self.executor.query(["blkid", "-s", "UUID", "-o", "value", partition_path])
        return stdout.strip()

    # --- DISK LEVEL OPERATIONS ---

    def wipe_disk(self, device: str) -> None:
        """
        Removes every partition table and filesystem signature from the disk,
        then writes a fresh, empty GPT.
        """
        self.executor.run(f"Removing partition tables on {device}", ["sgdisk", "--zap-all", device])
        self.executor.run(f"Removing filesystem signatures on {device}", ["wipefs", "-a", device])
        self.executor.run(f"Creating empty GPT on {device}", ["sgdisk", "-o", device])

    def create_partition(self, device: str, number: int, end: str, type_code: str, start: str = "0") -> Tuple[int, str, str]:
        """
        Creates a new GPT partition using sgdisk.

        Args:
            device (str): The disk device path (e.g., '/dev/sda').
            number (int): Partition number.
            end (str): End sector or size (e.g., '+512M', or '0' for the rest of the disk).
            type_code (str): GPT partition type code (e.g., 'ef00' for EFI, '8300' for Linux).
            start (str): Start sector; '0' means the first free sector.
        """
        return self.executor.run(
            description=f"Creating partition {number} on {device} (end: {end}, type: {type_code})",
            command=["sgdisk", "-n", f"{number}:{start}:{end}", "-t", f"{number}:{type_code}", device],
        )

    def reread_partition_table(self, device: str) -> Tuple[int, str, str]:
        """Asks the kernel to pick up the new partitions so their device nodes appear."""
        return self.executor.run(
            description=f"Updating kernel partition table for {device}",
            command=["partprobe", device],
        )

    def format_partition(self, partition_path: str, filesystem: str) -> Tuple[int, str, str]:
        """Formats a partition as 'fat32', 'ext4', 'btrfs' or 'xfs', overwriting any existing signature."""
        if filesystem not in MKFS_COMMANDS:
            raise ValueError(f"Unsupported filesystem: {filesystem}")
        fs_cmd = MKFS_COMMANDS[filesystem] + [partition_path]

        return self.executor.run(
            description=f"Formatting {partition_path} as {filesystem}",
            command=fs_cmd,
        )

    # --- LUKS ENCRYPTION ---

    def luks_format(self, partition_path: str, passphrase: str) -> Tuple[int, str, str]:
        """
        Creates a LUKS2 container on the partition. The passphrase is read from
        stdin (--key-file=-), so it never shows up in argv or in the log.
        """
        return self.executor.run(
            description=f"Creating LUKS container on {partition_path}",
            command=["cryptsetup", "luksFormat", "--batch-mode", "--type", "luks2", "--key-file=-", partition_path],
            input_text=passphrase,
        )

    def luks_open(self, partition_path: str, passphrase: str, name: str = LUKS_MAPPER_NAME) -> Tuple[int, str, str]:
        """Opens the container as /dev/mapper/<name>."""
        return self.executor.run(
            description=f"Opening {partition_path} as /dev/mapper/{name}",
            command=["cryptsetup", "open", "--key-file=-", partition_path, name],
            input_text=passphrase,
        )

    # --- MOUNT/UNMOUNT OPERATIONS ---

    def mount_partition(self, source: str, target: str, options: Optional[str] = None) -> Tuple[int, str, str]:
        """
        Mounts a filesystem/partition to a target directory, creating the
        directory first when it is missing.
        """
        if not os.path.isdir(target):
            self.executor.run(
                description=f"Creating mount point {target}",
                command=["mkdir", "-p", target],
            )

        command = ["mount"]
        if options:
            command.extend(["-o", options])
        command.extend([source, target])

        return self.executor.run(
            description=f"Mounting {source} to {target} (Options: {options or 'default'})",
            command=command,
        )

    def unmount_partition(self, target_or_source: str) -> Tuple[int, str, str]:
        return self.executor.run(
            description=f"Unmounting {target_or_source}",
            command=["umount", target_or_source],
        )

    # --- BTRFS SPECIFIC OPERATIONS ---

    def create_btrfs_subvolume(self, mount_point: str, subvolume_name: str) -> Tuple[int, str, str]:
        """Creates a Btrfs subvolume. Requires the top-level volume to be mounted first."""
        full_path = os.path.join(mount_point, subvolume_name)
        return self.executor.run(
            description=f"Creating Btrfs subvolume {subvolume_name}",
            command=["btrfs", "subvolume", "create", full_path],
        )

    def mount_btrfs_subvolume(self, source: str, target: str, subvolume_name: str,
                              options: Optional[str] = BTRFS_MOUNT_OPTIONS) -> Tuple[int, str, str]:
        full_options = f"subvol={subvolume_name},{options}" if options else f"subvol={subvolume_name}"
        return self.mount_partition(source=source, target=target, options=full_options)

    def setup_btrfs_layout(self, root_partition: str, mount_root: str) -> None:
        """
        Creates the @ and @home subvolumes on a freshly formatted btrfs partition
        and mounts them at the mount root.
        """
        self.mount_partition(root_partition, mount_root)
        for subvolume, _ in BTRFS_SUBVOLUMES:
            self.create_btrfs_subvolume(mount_root, subvolume)
        self.unmount_partition(mount_root)

        for subvolume, relative in BTRFS_SUBVOLUMES:
            target = os.path.join(mount_root, relative) if relative else mount_root
            self.mount_btrfs_subvolume(root_partition, target, subvolume)

    # --- FSTAB GENERATION ---

    def generate_fstab(self, mount_root: str = "/mnt") -> Tuple[int, str, str]:
        """
        Appends UUID-based entries for everything mounted under mount_root
        to <mount_root>/etc/fstab.
        """
        target_path = os.path.join(mount_root, "etc", "fstab")
        command = f"genfstab -U {shlex.quote(mount_root)} >> {shlex.quote(target_path)}"

        # The redirection needs a shell
        return self.executor.run(
            description=f"Generating fstab to {target_path}",
            command=command,
            shell=True,
        )
