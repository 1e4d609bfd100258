import pytest
from pydantic import ValidationError

from hypr_arch.config.models import (
    INSTALLER_RUNTIME_PACKAGES, Bootloader, Encryption, Filesystem, InstallConfig, InstallerSettings,
    derive_partitions,
)

# ======= Execute with: pytest tests/test_models.py ========


def make_config(**overrides) -> InstallConfig:
    values = dict(
        timezone="Europe/London", locale="en_GB.UTF-8", keymap="uk", hostname="archbook",
        username="alice", password="hunter22", bootloader="systemd-boot", filesystem="ext4",
        target_disk="/dev/sda",
    )
    values.update(overrides)
    return InstallConfig(**values)


# --- derive_partitions ---

@pytest.mark.parametrize("disk,expected", [
    ("/dev/sda", ("/dev/sda1", "/dev/sda2")),
    ("/dev/vdb", ("/dev/vdb1", "/dev/vdb2")),
    ("/dev/nvme0n1", ("/dev/nvme0n1p1", "/dev/nvme0n1p2")),
])
def test_derive_partitions(disk, expected):
    assert derive_partitions(disk) == expected


def test_derive_partitions_is_pure():
    assert derive_partitions("/dev/nvme1n1") == derive_partitions("/dev/nvme1n1")


# --- InstallConfig ---

def test_config_computed_partitions():
    config = make_config(target_disk="/dev/nvme0n1")
    assert config.efi_partition == "/dev/nvme0n1p1"
    assert config.root_partition == "/dev/nvme0n1p2"


def test_config_choices_are_enums():
    config = make_config(bootloader="grub", filesystem="btrfs")
    assert config.bootloader is Bootloader.GRUB
    assert config.filesystem is Filesystem.BTRFS


def test_config_is_frozen():
    config = make_config()
    with pytest.raises(ValidationError):
        config.hostname = "other"


@pytest.mark.parametrize("field,value", [
    ("locale", "en_GB"),
    ("hostname", "bad host"),
    ("username", "Alice"),
    ("username", "greeter"),
    ("password", "12345"),
    ("bootloader", "lilo"),
    ("filesystem", "zfs"),
    ("timezone", "../../etc/passwd"),
    ("target_disk", "sda"),
])
def test_config_rejects_invalid_values(field, value):
    with pytest.raises(ValidationError):
        make_config(**{field: value})


def test_config_rejects_unknown_fields():
    with pytest.raises(ValidationError):
        make_config(shell="fish")


def test_password_hidden_in_repr():
    config = make_config()
    assert "hunter22" not in repr(config)
    assert config.password.get_secret_value() == "hunter22"


def test_display_summary():
    summary = make_config(target_disk="/dev/nvme0n1").display_summary(disk_size_gib=476, swapfile_mib=2048)
    assert "FINAL CONFIRMATION" in summary
    assert "/dev/nvme0n1 (476 GB)" in summary
    assert "EFI /dev/nvme0n1p1, root /dev/nvme0n1p2" in summary
    assert "2048MB swap file" in summary
    assert "WILL BE COMPLETELY WIPED" in summary
    assert "hunter22" not in summary


# --- InstallerSettings ---

def test_settings_defaults():
    settings = InstallerSettings()
    assert settings.min_disk_gib == 32
    assert (settings.efi_min_mib, settings.efi_max_mib) == (256, 1024)
    assert settings.swapfile_mib == 2048
    assert settings.services[-1] == "mbpfan"


def test_packages_for_branches():
    settings = InstallerSettings()

    btrfs_grub = settings.packages_for(make_config(filesystem="btrfs", bootloader="grub"))
    assert "btrfs-progs" in btrfs_grub
    assert "grub" in btrfs_grub
    assert "xfsprogs" not in btrfs_grub

    ext4_sdboot = settings.packages_for(make_config())
    assert "grub" not in ext4_sdboot
    assert "btrfs-progs" not in ext4_sdboot
    for package in INSTALLER_RUNTIME_PACKAGES:
        assert package in ext4_sdboot
    assert len(ext4_sdboot) == len(set(ext4_sdboot))


def test_critical_packages_for_grub():
    settings = InstallerSettings()
    assert settings.critical_packages_for(make_config()) == [
        "linux", "linux-firmware", "base", "sudo", "networkmanager", "efibootmgr",
    ]
    assert "grub" in settings.critical_packages_for(make_config(bootloader="grub"))


def test_encryption_defaults_to_none():
    config = make_config()
    assert config.encryption is Encryption.NONE
    assert config.root_device == "/dev/sda2"
    assert "Encryption: none" in config.display_summary()


def test_luks_root_device_and_packages():
    config = make_config(encryption="luks", target_disk="/dev/nvme0n1")
    settings = InstallerSettings()

    assert config.root_partition == "/dev/nvme0n1p2"
    assert config.root_device == "/dev/mapper/cryptroot"
    assert "cryptsetup" in settings.packages_for(config)
    assert settings.critical_packages_for(config)[-1] == "cryptsetup"
    assert "cryptsetup" not in settings.packages_for(make_config())
    assert "Encryption: LUKS on /dev/nvme0n1p2" in config.display_summary()


def test_unknown_encryption_rejected():
    with pytest.raises(ValidationError):
        make_config(encryption="veracrypt")


def test_settings_load_from_file(tmp_path):
    path = tmp_path / "settings.toml"
    path.write_text('mirror_countries = ["US", "CA"]\nswapfile_mib = 4096\nmacbook_tweaks = false\n')

    settings = InstallerSettings.load_from_file(path)

    assert settings.mirror_countries == ["US", "CA"]
    assert settings.swapfile_mib == 4096
    assert settings.macbook_tweaks is False
    assert settings.min_disk_gib == 32


def test_settings_load_rejects_unknown_keys(tmp_path):
    path = tmp_path / "settings.toml"
    path.write_text('swap_size = 1\n')
    with pytest.raises(ValueError):
        InstallerSettings.load_from_file(path)


def test_settings_load_invalid_toml(tmp_path):
    path = tmp_path / "settings.toml"
    path.write_text('swapfile_mib = = 1\n')
    with pytest.raises(ValueError, match="Invalid TOML"):
        InstallerSettings.load_from_file(path)


def test_settings_load_missing_file(tmp_path):
    with pytest.raises(ValueError, match="Error reading settings file"):
        InstallerSettings.load_from_file(tmp_path / "missing.toml")
