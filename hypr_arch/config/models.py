# hypr_arch/config/models.py

import tomlkit
import typer
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, SecretStr, computed_field, field_validator

from hypr_arch import validators
from hypr_arch.executors.disk import LUKS_MAPPER_NAME


# --- 1. Enumerated choices ---

class Bootloader(str, Enum):
    SYSTEMD_BOOT = "systemd-boot"
    GRUB = "grub"


class Filesystem(str, Enum):
    EXT4 = "ext4"
    BTRFS = "btrfs"
    XFS = "xfs"


class Encryption(str, Enum):
    NONE = "none"
    LUKS = "luks"


# --- 2. Partition naming ---

def derive_partitions(target_disk: str) -> Tuple[str, str]:
    """
    Returns (efi_partition, root_partition) for the two-partition layout.
    NVMe namespaces put a 'p' between the device and the partition number.
    """
    separator = "p" if "nvme" in target_disk else ""
    return f"{target_disk}{separator}1", f"{target_disk}{separator}2"


# --- 3. Installation answers ---

class InstallConfig(BaseModel):
    """Answers collected once at the start; read by every stage, never modified."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    timezone: str
    locale: str
    keymap: str
    hostname: str
    username: str
    password: SecretStr
    bootloader: Bootloader
    filesystem: Filesystem
    target_disk: str
    # The LUKS passphrase is the account password
    encryption: Encryption = Encryption.NONE

    @field_validator("locale")
    @classmethod
    def _check_locale(cls, value: str) -> str:
        return _raise_on(validators.validate_locale(value), value)

    @field_validator("keymap")
    @classmethod
    def _check_keymap(cls, value: str) -> str:
        return _raise_on(validators.validate_keymap_name(value), value)

    @field_validator("hostname")
    @classmethod
    def _check_hostname(cls, value: str) -> str:
        return _raise_on(validators.validate_hostname(value), value)

    @field_validator("username")
    @classmethod
    def _check_username(cls, value: str) -> str:
        return _raise_on(validators.validate_username(value), value)

    @field_validator("password")
    @classmethod
    def _check_password(cls, value: SecretStr) -> SecretStr:
        _raise_on(validators.validate_password_strength(value.get_secret_value()), value)
        return value

    @field_validator("timezone")
    @classmethod
    def _check_timezone_shape(cls, value: str) -> str:
        if not value or value.startswith("/") or ".." in value.split("/"):
            raise ValueError(f"Invalid timezone '{value}'")
        return value

    @field_validator("target_disk")
    @classmethod
    def _check_disk_path(cls, value: str) -> str:
        if not value.startswith("/dev/"):
            raise ValueError(f"Target disk must be a /dev path, got '{value}'")
        return value

    @computed_field
    @property
    def efi_partition(self) -> str:
        return derive_partitions(self.target_disk)[0]

    @computed_field
    @property
    def root_partition(self) -> str:
        return derive_partitions(self.target_disk)[1]

    @property
    def root_device(self) -> str:
        """Block device holding the root filesystem: the opened mapper device under LUKS."""
        if self.encryption is Encryption.LUKS:
            return f"/dev/mapper/{LUKS_MAPPER_NAME}"
        return self.root_partition

    def display_summary(self, disk_size_gib: Optional[int] = None, swapfile_mib: int = 2048) -> str:
        """Generates the summary shown before the final confirmation."""
        size = f" ({disk_size_gib} GB)" if disk_size_gib is not None else ""
        s = typer.style("\n=== FINAL CONFIRMATION ===", fg=typer.colors.BLUE, bold=True) + "\n"
        s += f"  Timezone:   {self.timezone}\n"
        s += f"  Locale:     {self.locale}\n"
        s += f"  Keymap:     {self.keymap}\n"
        s += f"  Hostname:   {self.hostname}\n"
        s += f"  Username:   {self.username}\n"
        s += f"  Bootloader: {self.bootloader.value}\n"
        s += f"  Filesystem: {self.filesystem.value}\n"
        if self.encryption is Encryption.LUKS:
            s += f"  Encryption: LUKS on {self.root_partition} (passphrase: your account password)\n"
        else:
            s += "  Encryption: none\n"
        s += f"  Disk:       {self.target_disk}{size}\n"
        s += f"  Partitions: EFI {self.efi_partition}, root {self.root_partition}\n"
        s += f"  Swap:       zram + {swapfile_mib}MB swap file\n"
        s += "\n" + typer.style(f"⚠️  {self.target_disk} WILL BE COMPLETELY WIPED", fg=typer.colors.RED, bold=True) + "\n"
        return s


def _raise_on(problem: Optional[str], value):
    if problem:
        raise ValueError(problem)
    return value


class InstallFacts(BaseModel):
    """Values discovered while the live plan runs, threaded into later stages."""
    root_uuid: Optional[str] = None
    # UUID of the LUKS container (the raw root partition), only with encryption
    luks_uuid: Optional[str] = None


# --- 4. Installer settings (optional TOML file) ---

DEFAULT_BASE_PACKAGES = [
    "base", "base-devel", "linux", "linux-firmware", "intel-ucode", "neovim", "git", "sudo",
    "networkmanager", "wpa_supplicant", "hyprland", "wayland-protocols", "waybar", "hyprpaper",
    "sof-firmware", "mako", "xdg-desktop-portal-hyprland", "xorg-xwayland", "kitty", "zsh",
    "starship", "efibootmgr", "htop", "ncdu", "firefox", "curl", "wget", "pipewire",
    "pipewire-pulse", "pipewire-alsa", "wireplumber", "pavucontrol", "playerctl", "ttf-fira-code",
    "noto-fonts", "noto-fonts-emoji", "libinput", "xf86-input-libinput", "greetd",
    "greetd-agreety", "brightnessctl", "swaylock", "thunar", "dosfstools", "broadcom-wl-dkms",
    "linux-headers", "reflector", "tlp", "tlp-rdw", "thermald", "acpi", "acpid", "ntfs-3g",
    "exfatprogs", "unzip", "polkit", "polkit-gnome", "xdg-user-dirs", "grim", "slurp",
    "wl-clipboard", "satty", "ufw", "zram-generator", "man-db", "man-pages", "fuzzel",
]

# Needed by the installer itself to continue inside the new root
INSTALLER_RUNTIME_PACKAGES = [
    "python", "python-rich", "python-pydantic", "python-typer", "python-tomlkit",
]

FILESYSTEM_PACKAGES = {
    Filesystem.EXT4: [],
    Filesystem.BTRFS: ["btrfs-progs"],
    Filesystem.XFS: ["xfsprogs"],
}

BOOTLOADER_PACKAGES = {
    Bootloader.SYSTEMD_BOOT: ["efibootmgr"],
    Bootloader.GRUB: ["grub", "efibootmgr"],
}

# The encrypt mkinitcpio hook comes with cryptsetup
ENCRYPTION_PACKAGES = {
    Encryption.NONE: [],
    Encryption.LUKS: ["cryptsetup"],
}


class InstallerSettings(BaseModel):
    """Tunables of the installer. Every field has a default; a TOML file may override them."""
    model_config = ConfigDict(extra="forbid")

    mount_root: str = "/mnt"
    zoneinfo_dir: str = "/usr/share/zoneinfo"
    mirror_countries: List[str] = Field(default_factory=lambda: ["GB", "FR", "DE", "NL", "BE", "SE", "NO", "DK", "PL"])
    min_disk_gib: int = Field(32, ge=1)
    efi_size: str = "+512M"
    efi_min_mib: int = Field(256, ge=1)
    efi_max_mib: int = Field(1024, ge=1)
    swapfile_mib: int = Field(2048, ge=0)
    base_packages: List[str] = Field(default_factory=lambda: list(DEFAULT_BASE_PACKAGES))
    critical_packages: List[str] = Field(default_factory=lambda: ["linux", "linux-firmware", "base", "sudo", "networkmanager"])
    aur_packages: List[str] = Field(default_factory=lambda: ["mbpfan-git", "bcwc-pcie-git", "libinput-gestures", "kbdlight"])
    services: List[str] = Field(default_factory=lambda: [
        "NetworkManager", "systemd-timesyncd", "tlp", "thermald", "acpid", "greetd", "reflector.timer", "mbpfan",
    ])
    # Empty string: no wallpaper download
    wallpaper_url: str = "https://gruvbox-wallpapers.pages.dev/wallpapers/minimalistic/great-wave-of-kanagawa-gruvbox.png"
    macbook_tweaks: bool = True
    command_timeout: float = Field(600.0, gt=0)

    def packages_for(self, config: InstallConfig) -> List[str]:
        """Complete pacstrap list for the chosen filesystem, bootloader and encryption, without duplicates."""
        packages = list(self.base_packages)
        packages += FILESYSTEM_PACKAGES[config.filesystem]
        packages += BOOTLOADER_PACKAGES[config.bootloader]
        packages += ENCRYPTION_PACKAGES[config.encryption]
        packages += INSTALLER_RUNTIME_PACKAGES
        return list(dict.fromkeys(packages))

    def critical_packages_for(self, config: InstallConfig) -> List[str]:
        packages = list(self.critical_packages) + BOOTLOADER_PACKAGES[config.bootloader]
        packages += ENCRYPTION_PACKAGES[config.encryption]
        return list(dict.fromkeys(packages))

    @classmethod
    def load_from_file(cls, path: Path) -> 'InstallerSettings':
        """Loads and validates a TOML settings file against the schema."""
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ValueError(f"Error reading settings file {path}: {e}")

        try:
            data = tomlkit.parse(content).unwrap()
        except Exception as e:
            raise ValueError(f"Invalid TOML format in {path}: {e}")

        return cls(**data)
