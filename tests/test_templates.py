import json

import pytest
import tomlkit

from hypr_arch.install import templates

# ======= Execute with: pytest tests/test_templates.py ========

UUID = "3f1c2a9e-6b7d-4c1e-9a55-0d2e8f7b1c44"


@pytest.mark.parametrize("btrfs,expected", [
    (False, f"root=UUID={UUID} rw"),
    (True, f"root=UUID={UUID} rootflags=subvol=@ rw"),
])
def test_kernel_options(btrfs, expected):
    assert templates.kernel_options(UUID, btrfs) == expected


def test_loader_entries():
    main = templates.loader_entry(UUID, btrfs=True)
    fallback = templates.loader_entry(UUID, btrfs=True, fallback=True)

    assert f"options root=UUID={UUID} rootflags=subvol=@ rw quiet splash\n" in main
    assert "initrd  /initramfs-linux.img" in main
    assert "title   Arch Linux (Fallback)" in fallback
    assert "initrd  /initramfs-linux-fallback.img" in fallback
    assert "quiet" not in fallback


def test_luks_kernel_options_unlock_cryptroot():
    luks = "9b2e77c4-1d0a-4f55-8c3e-2a6d5e0f1b98"

    assert templates.kernel_options(UUID, False, luks_uuid=luks) == (
        f"cryptdevice=UUID={luks}:cryptroot root=/dev/mapper/cryptroot rw"
    )
    entry = templates.loader_entry(UUID, btrfs=True, luks_uuid=luks)
    assert f"options cryptdevice=UUID={luks}:cryptroot root=/dev/mapper/cryptroot rootflags=subvol=@ rw quiet splash\n" in entry
    assert f"root=UUID={UUID}" not in entry
    assert templates.grub_cmdline_linux(luks) == (
        f'GRUB_CMDLINE_LINUX="cryptdevice=UUID={luks}:cryptroot root=/dev/mapper/cryptroot"'
    )


def test_mkinitcpio_hooks():
    assert "encrypt" not in templates.mkinitcpio_hooks(encrypted=False)
    assert templates.mkinitcpio_hooks(encrypted=True).startswith("HOOKS=(")
    assert " block encrypt filesystems " in templates.mkinitcpio_hooks(encrypted=True)


def test_locale_files():
    assert templates.locale_gen_line("en_GB.UTF-8") == "en_GB.UTF-8 UTF-8\n"
    assert templates.locale_conf("en_GB.UTF-8") == "LANG=en_GB.UTF-8\n"
    assert templates.vconsole_conf("uk") == "KEYMAP=uk\n"


def test_hosts_maps_hostname():
    assert "127.0.1.1   archbook.localdomain archbook\n" in templates.hosts("archbook")


def test_replace_setting_replaces_existing_line():
    content = "MODULES=()\nHOOKS=(base udev)\nCOMPRESSION=\"zstd\"\n"
    result = templates.replace_setting(content, "HOOKS", f"HOOKS={templates.MKINITCPIO_HOOKS}")
    assert result.splitlines() == ["MODULES=()", f"HOOKS={templates.MKINITCPIO_HOOKS}", 'COMPRESSION="zstd"']


def test_replace_setting_appends_when_missing():
    result = templates.replace_setting("GRUB_TIMEOUT=5\n", "GRUB_CMDLINE_LINUX_DEFAULT", templates.GRUB_CMDLINE)
    assert result == f"GRUB_TIMEOUT=5\n{templates.GRUB_CMDLINE}\n"


def test_replace_setting_ignores_commented_lines():
    result = templates.replace_setting("#HOOKS=(old)\n", "HOOKS", "HOOKS=(new)")
    assert result == "#HOOKS=(old)\nHOOKS=(new)\n"


def test_hyprland_conf():
    conf = templates.hyprland_conf("de")

    assert "kb_layout = de" in conf
    assert "bind = $mainMod, 1, workspace, 1" in conf
    assert "bind = $mainMod, 0, workspace, 10" in conf
    assert "bind = $mainMod SHIFT, 0, movetoworkspace, 10" in conf
    assert "@" + "KEYMAP@" not in conf


def test_waybar_config_is_json():
    config = json.loads(templates.waybar_config())
    assert config["modules-center"] == ["clock"]


def test_hyprpaper_conf():
    assert templates.hyprpaper_conf(None) == templates.HYPRPAPER_NO_WALLPAPER
    assert templates.hyprpaper_conf(".config/hypr/wallpaper.png").startswith(
        "preload = ~/.config/hypr/wallpaper.png\nwallpaper = ,~/.config/hypr/wallpaper.png\n")


def test_greetd_config_is_valid_toml():
    config = tomlkit.parse(templates.greetd_config("alice")).unwrap()

    assert config["terminal"]["vt"] == 1
    assert config["default_session"]["command"] == "agreety --cmd 'Hyprland' --username 'alice'"
    assert config["default_session"]["user"] == "greeter"


def test_broadcom_blacklist():
    assert templates.broadcom_blacklist().splitlines() == [f"blacklist {m}" for m in templates.BROADCOM_BLACKLIST]


def test_sudoers_rules():
    assert templates.sudoers_wheel() == "%wheel ALL=(ALL:ALL) ALL\n"
    assert templates.sudoers_nopasswd("alice") == "alice ALL=(ALL:ALL) NOPASSWD: ALL\n"


def test_reflector_conf():
    assert "--country GB,FR\n" in templates.reflector_conf(["GB", "FR"])
