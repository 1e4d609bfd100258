"""
Stages run inside the new root (`hypr-arch continue`, started through arch-chroot).

The process is already chrooted, so every path is taken relative to ctx.root
('/') and no command needs the arch-chroot prefix.
"""

import shlex
from contextlib import contextmanager
from typing import Callable, List

from hypr_arch.config.models import Bootloader, Encryption, Filesystem
from hypr_arch.executors.system import AccountManager, ServiceManager, enable_parallel_downloads
from hypr_arch.install import templates
from hypr_arch.install.live import select_branch
from hypr_arch.stages import Criticality, Stage, StageContext
from hypr_arch.utils.executor import NO_TIMEOUT
from hypr_arch.verify import VerificationResult, check_command, check_exists, check_listing

AUR_BUILD_SUDOERS = "etc/sudoers.d/99-hypr-arch-aur"
YAY_REPOSITORY = "https://aur.archlinux.org/yay.git"
POLKIT_AGENT = "usr/lib/polkit-gnome/polkit-gnome-authentication-agent-1"
WALLPAPER = ".config/hypr/wallpaper.png"
BLUETOOTH_UNITS = ["bluetooth.service", "bluetooth.target"]


def _home(ctx: StageContext, relative: str = "") -> str:
    home = f"home/{ctx.config.username}"
    return f"{home}/{relative}" if relative else home


def _chown_to_user(ctx: StageContext, relative: str) -> None:
    user = ctx.config.username
    ctx.executor.run(f"Handing {relative} to {user}", ["chown", "-R", f"{user}:{user}", str(ctx.path(relative))])


def _edit_file(ctx: StageContext, relative: str, transform: Callable[[str], str]) -> None:
    target = ctx.path(relative)
    if ctx.dry_run:
        ctx.logger.info(f"DRY RUN: would edit {target}")
        return
    content = target.read_text(encoding="utf-8")
    target.write_text(transform(content), encoding="utf-8")
    ctx.logger.debug(f"Edited {target}")


def _installed(ctx: StageContext, relative: str) -> bool:
    """True when a file exists in the new root; always True in dry-run so the commands get logged."""
    return ctx.dry_run or ctx.path(relative).exists()


# --- Base system ---

def parallel_downloads(ctx: StageContext) -> None:
    if ctx.dry_run:
        ctx.logger.info("DRY RUN: would enable ParallelDownloads")
        return
    enable_parallel_downloads(ctx.path("etc/pacman.conf"))


def set_timezone(ctx: StageContext) -> None:
    zone = f"{ctx.settings.zoneinfo_dir}/{ctx.config.timezone}"
    ctx.executor.run(f"Setting timezone {ctx.config.timezone}", ["ln", "-sf", zone, str(ctx.path("etc/localtime"))])
    ctx.executor.run("Syncing hardware clock", ["hwclock", "--systohc"])


def set_locale(ctx: StageContext) -> None:
    ctx.write_file("etc/locale.gen", templates.locale_gen_line(ctx.config.locale), append=True)
    ctx.executor.run("Generating locales", ["locale-gen"])
    ctx.write_file("etc/locale.conf", templates.locale_conf(ctx.config.locale))


def set_console_keymap(ctx: StageContext) -> None:
    ctx.write_file("etc/vconsole.conf", templates.vconsole_conf(ctx.config.keymap))


def set_hostname(ctx: StageContext) -> None:
    ctx.write_file("etc/hostname", f"{ctx.config.hostname}\n")
    ctx.write_file("etc/hosts", templates.hosts(ctx.config.hostname))


def configure_root_account(ctx: StageContext) -> None:
    accounts = AccountManager(ctx.executor)
    accounts.set_password("root", ctx.config.password.get_secret_value())
    accounts.set_shell("root", "/bin/zsh")


def _encrypted(ctx: StageContext) -> bool:
    return ctx.config.encryption is Encryption.LUKS


def build_initramfs(ctx: StageContext) -> None:
    hooks = templates.mkinitcpio_hooks(_encrypted(ctx))
    _edit_file(ctx, "etc/mkinitcpio.conf", lambda content: templates.replace_setting(content, "HOOKS", hooks))
    ctx.executor.run("Building initramfs images", ["mkinitcpio", "-P"], timeout=NO_TIMEOUT)


# --- Bootloader branches ---

def install_systemd_boot(ctx: StageContext) -> None:
    ctx.executor.run("Installing systemd-boot", ["bootctl", "--path=/boot", "install"])


def write_loader_entries(ctx: StageContext) -> None:
    uuid = ctx.facts.root_uuid
    btrfs = ctx.config.filesystem is Filesystem.BTRFS
    ctx.write_file("boot/loader/loader.conf", templates.loader_conf())
    luks_uuid = ctx.facts.luks_uuid if _encrypted(ctx) else None
    ctx.write_file("boot/loader/entries/arch.conf", templates.loader_entry(uuid, btrfs, luks_uuid=luks_uuid))
    ctx.write_file("boot/loader/entries/arch-fallback.conf",
                   templates.loader_entry(uuid, btrfs, fallback=True, luks_uuid=luks_uuid))


def install_grub(ctx: StageContext) -> None:
    ctx.executor.run(
        "Installing GRUB",
        ["grub-install", "--target=x86_64-efi", "--efi-directory=/boot", "--bootloader-id=GRUB"],
    )


def configure_grub(ctx: StageContext) -> None:
    def transform(content: str) -> str:
        content = templates.replace_setting(content, "GRUB_CMDLINE_LINUX_DEFAULT", templates.GRUB_CMDLINE)
        if _encrypted(ctx):
            content = templates.replace_setting(content, "GRUB_CMDLINE_LINUX",
                                                templates.grub_cmdline_linux(ctx.facts.luks_uuid))
        return content

    _edit_file(ctx, "etc/default/grub", transform)
    ctx.executor.run("Generating GRUB configuration", ["grub-mkconfig", "-o", "/boot/grub/grub.cfg"])


def _systemd_boot_stages() -> List[Stage]:
    return [
        Stage("Install systemd-boot", install_systemd_boot,
              checks=[lambda c: check_exists(c.path("boot/EFI/systemd/systemd-bootx64.efi"), "file")]),
        Stage("Write boot loader entries", write_loader_entries,
              checks=[lambda c: check_exists(c.path("boot/loader/entries/arch.conf"), "file")]),
    ]


def _grub_stages() -> List[Stage]:
    return [
        Stage("Install GRUB", install_grub,
              checks=[lambda c: check_exists(c.path("boot/EFI/GRUB/grubx64.efi"), "file")]),
        Stage("Configure GRUB", configure_grub,
              checks=[lambda c: check_exists(c.path("boot/grub/grub.cfg"), "file")]),
    ]


BOOTLOADER_STAGES = {
    Bootloader.SYSTEMD_BOOT: _systemd_boot_stages,
    Bootloader.GRUB: _grub_stages,
}

# Label of the NVRAM entry each bootloader registers
NVRAM_LABELS = {
    Bootloader.SYSTEMD_BOOT: "Linux Boot Manager",
    Bootloader.GRUB: "GRUB",
}


def _nvram_entry_check(label: str) -> Callable[[StageContext], VerificationResult]:
    def check(ctx: StageContext) -> VerificationResult:
        result = check_listing(ctx.executor, ["efibootmgr"], label, ignore_case=True)
        if result.passed:
            return result
        return VerificationResult.fail(f"No '{label}' boot entry in NVRAM, verify with efibootmgr after reboot "
                                       f"({result.diagnostic})")
    return check


# --- User ---

def create_user(ctx: StageContext) -> None:
    accounts = AccountManager(ctx.executor)
    accounts.create_user(ctx.config.username, templates.USER_GROUPS)
    accounts.set_password(ctx.config.username, ctx.config.password.get_secret_value())
    ctx.write_file("etc/sudoers.d/10-wheel", templates.sudoers_wheel(), mode=0o440)


def check_user_exists(ctx: StageContext) -> VerificationResult:
    result = check_command(ctx.executor, ["id", ctx.config.username])
    if result.passed:
        return result
    return VerificationResult.fail(f"User {ctx.config.username} does not exist after creation ({result.diagnostic})")


def check_home_exists(ctx: StageContext) -> VerificationResult:
    return check_exists(ctx.path(_home(ctx)), "directory")


def create_user_dirs(ctx: StageContext) -> None:
    AccountManager(ctx.executor).run_as(ctx.config.username, "Creating user directories", "xdg-user-dirs-update")


def configure_shells(ctx: StageContext) -> None:
    ctx.write_file(_home(ctx, ".zshrc"), templates.user_zshrc())
    _chown_to_user(ctx, _home(ctx, ".zshrc"))
    ctx.write_file("root/.zshrc", templates.root_zshrc())


def configure_reflector(ctx: StageContext) -> None:
    ctx.write_file("etc/xdg/reflector/reflector.conf", templates.reflector_conf(ctx.settings.mirror_countries))


# --- Desktop ---

def configure_desktop(ctx: StageContext) -> None:
    ctx.write_file(_home(ctx, ".config/hypr/hyprland.conf"), templates.hyprland_conf(ctx.config.keymap))
    ctx.write_file(_home(ctx, ".config/waybar/config"), templates.waybar_config())
    ctx.write_file(_home(ctx, ".config/waybar/style.css"), templates.waybar_style())
    ctx.write_file(_home(ctx, ".config/hypr/hyprpaper.conf"), templates.hyprpaper_conf(None))
    _chown_to_user(ctx, _home(ctx, ".config"))


def download_wallpaper(ctx: StageContext) -> None:
    url = ctx.settings.wallpaper_url
    if not url:
        ctx.logger.info("No wallpaper URL configured, skipping download")
        return
    target = str(ctx.path(_home(ctx, WALLPAPER)))
    ctx.executor.run("Downloading wallpaper", ["curl", "-fsSL", "-o", target, url], timeout=120)
    ctx.write_file(_home(ctx, ".config/hypr/hyprpaper.conf"), templates.hyprpaper_conf(WALLPAPER))
    _chown_to_user(ctx, _home(ctx, ".config/hypr"))


def create_screenshot_dir(ctx: StageContext) -> None:
    ctx.executor.run("Creating screenshots directory",
                     ["mkdir", "-p", str(ctx.path(_home(ctx, "Pictures/Screenshots")))])
    _chown_to_user(ctx, _home(ctx, "Pictures"))


def check_polkit_agent(ctx: StageContext) -> VerificationResult:
    result = check_exists(ctx.path(POLKIT_AGENT), "file")
    if result.passed:
        return result
    return VerificationResult.fail(f"polkit-gnome agent not found at /{POLKIT_AGENT}; "
                                   "elevation prompts may not work correctly")


# --- AUR ---

@contextmanager
def passwordless_sudo(ctx: StageContext):
    """makepkg -si and yay call sudo; the rule exists only while an AUR build runs."""
    path = ctx.write_file(AUR_BUILD_SUDOERS, templates.sudoers_nopasswd(ctx.config.username), mode=0o440)
    try:
        yield
    finally:
        if not ctx.dry_run:
            path.unlink(missing_ok=True)


def install_yay(ctx: StageContext) -> None:
    script = f"cd /tmp && rm -rf yay && git clone {YAY_REPOSITORY} && cd yay && makepkg -si --noconfirm"
    with passwordless_sudo(ctx):
        AccountManager(ctx.executor).run_as(ctx.config.username, "Building yay (AUR helper)", script)


def _install_aur_package(package: str) -> Callable[[StageContext], None]:
    def action(ctx: StageContext) -> None:
        if not _installed(ctx, "usr/bin/yay"):
            ctx.logger.warning(f"⚠️  yay is not installed, skipping {package}")
            return
        with passwordless_sudo(ctx):
            AccountManager(ctx.executor).run_as(
                ctx.config.username, f"Installing {package} from the AUR",
                f"yay -S --noconfirm {shlex.quote(package)}",
            )
    return action


def configure_gestures(ctx: StageContext) -> None:
    if not _installed(ctx, "usr/bin/libinput-gestures-setup"):
        ctx.logger.warning("⚠️  libinput-gestures not installed, skipping gesture configuration")
        return
    ctx.write_file(_home(ctx, ".config/libinput-gestures.conf"), templates.libinput_gestures())
    _chown_to_user(ctx, _home(ctx, ".config"))
    AccountManager(ctx.executor).run_as(ctx.config.username, "Enabling gesture autostart",
                                        "libinput-gestures-setup autostart")


# --- Services and system tweaks ---

def enable_services(ctx: StageContext) -> None:
    services = ServiceManager(ctx.executor)
    available = services.unit_files()
    for service in ctx.settings.services:
        if ctx.dry_run or ServiceManager.unit_name(service) in available:
            services.enable(service)
        else:
            ctx.logger.warning(f"⚠️  {service} not available, skipping")


def mask_bluetooth(ctx: StageContext) -> None:
    services = ServiceManager(ctx.executor)
    for unit in BLUETOOTH_UNITS:
        services.mask(unit)


def blacklist_broadcom(ctx: StageContext) -> None:
    ctx.write_file("etc/modprobe.d/blacklist-broadcom.conf", templates.broadcom_blacklist())
    ctx.write_file("etc/modules-load.d/wl.conf", "wl\n")


def configure_wifi_backend(ctx: StageContext) -> None:
    ctx.write_file("etc/NetworkManager/conf.d/wifi_backend.conf", templates.networkmanager_wifi_backend())


def configure_firewall(ctx: StageContext) -> None:
    if not _installed(ctx, "usr/bin/ufw"):
        ctx.logger.warning("⚠️  UFW not installed, skipping firewall configuration")
        return
    ctx.executor.run("Firewall: deny incoming by default", ["ufw", "--force", "default", "deny", "incoming"])
    ctx.executor.run("Firewall: allow outgoing by default", ["ufw", "--force", "default", "allow", "outgoing"])
    ctx.logger.info("UFW is installed but NOT enabled. Enable it with: sudo ufw enable")


def configure_greeter(ctx: StageContext) -> None:
    ctx.write_file("etc/greetd/config.toml", templates.greetd_config(ctx.config.username))


def configure_power(ctx: StageContext) -> None:
    ctx.write_file("etc/tlp.d/01-battery.conf", templates.tlp_battery_conf())


# --- Plan ---

def build_target_plan(ctx: StageContext) -> List[Stage]:
    bootloader = ctx.config.bootloader
    bootloader_stages = select_branch(BOOTLOADER_STAGES, "bootloader", bootloader)()
    nvram_label = select_branch(NVRAM_LABELS, "bootloader", bootloader)
    optional = Criticality.OPTIONAL

    stages = [
        Stage("Enable parallel downloads", parallel_downloads),
        Stage("Set timezone", set_timezone, checks=[lambda c: check_exists(c.path("etc/localtime"), "file")]),
        Stage("Set locale", set_locale),
        Stage("Set console keymap", set_console_keymap),
        Stage("Set hostname", set_hostname),
        Stage("Configure root account", configure_root_account),
        Stage("Build initramfs", build_initramfs),
        *bootloader_stages,
        Stage("Verify NVRAM boot entry", checks=[_nvram_entry_check(nvram_label)], criticality=optional),
        Stage(f"Create user {ctx.config.username}", create_user, checks=[check_user_exists, check_home_exists]),
        Stage("Create user directories", create_user_dirs),
        Stage("Configure shells", configure_shells),
        Stage("Configure mirror list updates", configure_reflector),
        Stage("Configure desktop", configure_desktop),
        Stage("Download wallpaper", download_wallpaper, criticality=optional),
        Stage("Create screenshots directory", create_screenshot_dir),
        Stage("Check polkit agent", checks=[check_polkit_agent], criticality=optional),
        Stage("Install AUR helper", install_yay,
              checks=[lambda c: check_exists(c.path("usr/bin/yay"), "file")], criticality=optional),
    ]
    stages += [
        Stage(f"Install {package} (AUR)", _install_aur_package(package), criticality=optional)
        for package in ctx.settings.aur_packages
    ]
    stages += [
        Stage("Configure touchpad gestures", configure_gestures, criticality=optional),
        Stage("Enable services", enable_services),
        Stage("Mask bluetooth", mask_bluetooth),
    ]
    if ctx.settings.macbook_tweaks:
        stages.append(Stage("Blacklist conflicting Broadcom drivers", blacklist_broadcom))
    stages += [
        Stage("Configure NetworkManager Wi-Fi backend", configure_wifi_backend),
        Stage("Configure firewall rules", configure_firewall),
        Stage("Configure greetd", configure_greeter),
        Stage("Configure TLP", configure_power),
    ]
    return stages
