"""
Contents of the files the installer writes into the new system.

All functions are pure: they return the text and leave writing to the stages.
"""

from typing import List, Optional

import tomlkit

MKINITCPIO_HOOKS = "(base udev autodetect modconf kms keyboard keymap consolefont block filesystems fsck)"
# 'encrypt' asks for the LUKS passphrase at boot; it must sit between block and filesystems
MKINITCPIO_HOOKS_LUKS = "(base udev autodetect modconf kms keyboard keymap consolefont block encrypt filesystems fsck)"

LUKS_MAPPER_DEVICE = "/dev/mapper/cryptroot"

USER_GROUPS = ["wheel", "audio", "video", "storage", "optical"]

HYPRPAPER_NO_WALLPAPER = """\
# Add your wallpaper configuration here
# preload = ~/.config/hypr/wallpaper.png
# wallpaper = ,~/.config/hypr/wallpaper.png
"""


def zram_generator() -> str:
    return "[zram0]\nzram-size = ram / 8\ncompression-algorithm = zstd\n"


def swap_fstab_entry(path: str = "/swapfile") -> str:
    return f"{path} none swap defaults 0 0\n"


def hosts(hostname: str) -> str:
    return (
        "127.0.0.1   localhost\n"
        "::1         localhost\n"
        f"127.0.1.1   {hostname}.localdomain {hostname}\n"
    )


def locale_gen_line(locale: str) -> str:
    # locale.gen lists the charset separately, e.g. "en_GB.UTF-8 UTF-8"
    return f"{locale} UTF-8\n"


def locale_conf(locale: str) -> str:
    return f"LANG={locale}\n"


def vconsole_conf(keymap: str) -> str:
    return f"KEYMAP={keymap}\n"


def mkinitcpio_hooks(encrypted: bool) -> str:
    return "HOOKS=" + (MKINITCPIO_HOOKS_LUKS if encrypted else MKINITCPIO_HOOKS)


def unlock_options(luks_uuid: str) -> str:
    """The encrypt hook opens the container as cryptroot; the root filesystem is then on the mapper device."""
    return f"cryptdevice=UUID={luks_uuid}:cryptroot root={LUKS_MAPPER_DEVICE}"


def root_options(root_uuid: str, luks_uuid: Optional[str] = None) -> str:
    return unlock_options(luks_uuid) if luks_uuid else f"root=UUID={root_uuid}"


def kernel_options(root_uuid: str, btrfs: bool, luks_uuid: Optional[str] = None) -> str:
    options = root_options(root_uuid, luks_uuid)
    if btrfs:
        options += " rootflags=subvol=@"
    return f"{options} rw"


def loader_conf() -> str:
    return "default arch.conf\ntimeout 3\nconsole-mode max\neditor no\n"


def loader_entry(root_uuid: str, btrfs: bool, fallback: bool = False, luks_uuid: Optional[str] = None) -> str:
    """systemd-boot entry; the fallback entry boots the full initramfs without quiet/splash."""
    options = kernel_options(root_uuid, btrfs, luks_uuid)
    title = "Arch Linux (Fallback)" if fallback else "Arch Linux"
    initramfs = "/initramfs-linux-fallback.img" if fallback else "/initramfs-linux.img"
    if not fallback:
        options += " quiet splash"
    return (
        f"title   {title}\n"
        "linux   /vmlinuz-linux\n"
        "initrd  /intel-ucode.img\n"
        f"initrd  {initramfs}\n"
        f"options {options}\n"
    )


GRUB_CMDLINE = 'GRUB_CMDLINE_LINUX_DEFAULT="quiet splash"'


def grub_cmdline_linux(luks_uuid: str) -> str:
    """Kernel arguments grub-mkconfig adds to every entry."""
    return f'GRUB_CMDLINE_LINUX="{unlock_options(luks_uuid)}"'


def replace_setting(content: str, key: str, new_line: str) -> str:
    """Replaces every line starting with 'KEY=' by new_line; appends it when missing."""
    lines = content.splitlines()
    replaced = False
    for index, line in enumerate(lines):
        if line.startswith(f"{key}="):
            lines[index] = new_line
            replaced = True
    if not replaced:
        lines.append(new_line)
    return "\n".join(lines) + "\n"


def sudoers_wheel() -> str:
    return "%wheel ALL=(ALL:ALL) ALL\n"


def sudoers_nopasswd(username: str) -> str:
    """Temporary rule so makepkg/yay can call pacman while building AUR packages."""
    return f"{username} ALL=(ALL:ALL) NOPASSWD: ALL\n"


def user_zshrc() -> str:
    return """\
# Starship prompt
eval "$(starship init zsh)"

# History
HISTSIZE=10000
SAVEHIST=10000
HISTFILE=~/.zsh_history
setopt SHARE_HISTORY
setopt HIST_IGNORE_DUPS

# Aliases
alias ls='ls --color=auto'
alias ll='ls -lah'
alias grep='grep --color=auto'
alias update='sudo pacman -Syu'
alias cleanup='sudo pacman -Rns $(pacman -Qtdq) 2>/dev/null || echo "No orphans to remove"'

# Auto-completion
autoload -Uz compinit
compinit

# Key bindings
bindkey '^[[A' history-search-backward
bindkey '^[[B' history-search-forward
"""


def root_zshrc() -> str:
    return """\
eval "$(starship init zsh)"
HISTSIZE=10000
SAVEHIST=10000
HISTFILE=~/.zsh_history
alias ls='ls --color=auto'
alias ll='ls -lah'
"""


def reflector_conf(countries: List[str]) -> str:
    return (
        "--save /etc/pacman.d/mirrorlist\n"
        f"--country {','.join(countries)}\n"
        "--protocol https\n"
        "--latest 20\n"
        "--sort rate\n"
    )


_HYPRLAND_CONF = """\
# Monitor configuration
monitor=,preferred,auto,1

# HiDPI scaling for Retina displays
env = GDK_SCALE,1.5
env = XCURSOR_SIZE,32

# Autostart
exec-once = waybar
exec-once = mako
exec-once = hyprpaper
exec-once = /usr/lib/polkit-gnome/polkit-gnome-authentication-agent-1

input {
    kb_layout = @KEYMAP@
    follow_mouse = 1
    touchpad {
        natural_scroll = yes
        tap-to-click = yes
        disable_while_typing = yes
    }
    sensitivity = 0
}

general {
    gaps_in = 5
    gaps_out = 10
    border_size = 2
    col.active_border = rgba(33ccffee) rgba(00ff99ee) 45deg
    col.inactive_border = rgba(595959aa)
    layout = dwindle
}

decoration {
    rounding = 8
    blur {
        enabled = true
        size = 3
        passes = 1
    }
}

animations {
    enabled = yes
    bezier = myBezier, 0.05, 0.9, 0.1, 1.05
    animation = windows, 1, 7, myBezier
    animation = windowsOut, 1, 7, default, popin 80%
    animation = border, 1, 10, default
    animation = fade, 1, 7, default
    animation = workspaces, 1, 6, default
}

dwindle {
    pseudotile = yes
    preserve_split = yes
}

$mainMod = SUPER

bind = $mainMod, RETURN, exec, kitty
bind = $mainMod, Q, killactive,
bind = $mainMod, M, exit,
bind = $mainMod, E, exec, thunar
bind = $mainMod, V, togglefloating,
bind = $mainMod, SPACE, exec, fuzzel
bind = $mainMod, P, pseudo,
bind = $mainMod, J, togglesplit,
bind = $mainMod, F, fullscreen,
bind = $mainMod, L, exec, swaylock -c 000000

# Screenshot
bind = $mainMod SHIFT, S, exec, grim -g "$(slurp)" - | satty --filename - --fullscreen --output-filename ~/Pictures/Screenshots/satty-$(date '+%Y%m%d-%H:%M:%S').png

bind = $mainMod, left, movefocus, l
bind = $mainMod, right, movefocus, r
bind = $mainMod, up, movefocus, u
bind = $mainMod, down, movefocus, d

@WORKSPACE_BINDS@

bind = $mainMod, mouse_down, workspace, e+1
bind = $mainMod, mouse_up, workspace, e-1

bindm = $mainMod, mouse:272, movewindow
bindm = $mainMod, mouse:273, resizewindow

bind = , XF86MonBrightnessUp, exec, brightnessctl set +5%
bind = , XF86MonBrightnessDown, exec, brightnessctl set 5%-
bind = , XF86KbdBrightnessUp, exec, kbdlight up
bind = , XF86KbdBrightnessDown, exec, kbdlight down
bind = , XF86AudioRaiseVolume, exec, pactl set-sink-volume @DEFAULT_SINK@ +5%
bind = , XF86AudioLowerVolume, exec, pactl set-sink-volume @DEFAULT_SINK@ -5%
bind = , XF86AudioMute, exec, pactl set-sink-mute @DEFAULT_SINK@ toggle

windowrule = float, ^(pavucontrol)$
windowrule = float, ^(thunar)$
"""


def hyprland_conf(keymap: str) -> str:
    binds = []
    for number in range(1, 11):
        key = number % 10
        binds.append(f"bind = $mainMod, {key}, workspace, {number}")
    for number in range(1, 11):
        key = number % 10
        binds.append(f"bind = $mainMod SHIFT, {key}, movetoworkspace, {number}")
    return _HYPRLAND_CONF.replace("@KEYMAP@", keymap).replace("@WORKSPACE_BINDS@", "\n".join(binds))


def waybar_config() -> str:
    return """\
{
    "layer": "top",
    "position": "top",
    "height": 30,
    "modules-left": ["hyprland/workspaces", "hyprland/window"],
    "modules-center": ["clock"],
    "modules-right": ["pulseaudio", "network", "battery", "tray"],

    "hyprland/workspaces": {
        "disable-scroll": false,
        "all-outputs": true
    },

    "clock": {
        "format": "{:%H:%M}",
        "format-alt": "{:%Y-%m-%d}",
        "tooltip-format": "<big>{:%Y %B}</big>\\n<tt><small>{calendar}</small></tt>"
    },

    "battery": {
        "states": {
            "warning": 30,
            "critical": 15
        },
        "format": "{capacity}%",
        "format-charging": "{capacity}% +"
    },

    "network": {
        "format-wifi": "{essid}",
        "format-ethernet": "{ipaddr}",
        "format-disconnected": "Disconnected",
        "tooltip-format": "{ifname}: {ipaddr}"
    },

    "pulseaudio": {
        "format": "{volume}%",
        "format-muted": "muted",
        "on-click": "pavucontrol"
    }
}
"""


def waybar_style() -> str:
    return """\
* {
    border: none;
    border-radius: 0;
    font-family: "Fira Code", monospace;
    font-size: 13px;
    min-height: 0;
}

window#waybar {
    background: rgba(30, 30, 46, 0.9);
    color: #cdd6f4;
}

#workspaces button {
    padding: 0 10px;
    color: #cdd6f4;
    background: transparent;
}

#workspaces button.active {
    background: rgba(137, 180, 250, 0.3);
    color: #89b4fa;
}

#clock, #battery, #network, #pulseaudio, #tray {
    padding: 0 10px;
    margin: 0 2px;
}

#battery.warning:not(.charging) {
    color: #f9e2af;
}

#battery.critical:not(.charging) {
    color: #f38ba8;
}
"""


def hyprpaper_conf(wallpaper: Optional[str]) -> str:
    """wallpaper is a path relative to the home directory, or None when there is none."""
    if wallpaper is None:
        return HYPRPAPER_NO_WALLPAPER
    return f"preload = ~/{wallpaper}\nwallpaper = ,~/{wallpaper}\nsplash = false\n"


def libinput_gestures() -> str:
    return (
        "gesture swipe left 3 hyprctl dispatch workspace e-1\n"
        "gesture swipe right 3 hyprctl dispatch workspace e+1\n"
        "gesture swipe up 3 hyprctl dispatch fullscreen 1\n"
        "gesture swipe down 3 hyprctl dispatch fullscreen 0\n"
    )


BROADCOM_BLACKLIST = ["b43", "bcma", "brcmsmac", "brcmfmac", "ssb"]


def broadcom_blacklist() -> str:
    return "".join(f"blacklist {module}\n" for module in BROADCOM_BLACKLIST)


def networkmanager_wifi_backend() -> str:
    return "[device]\nwifi.backend=wpa_supplicant\n"


def greetd_config(username: str) -> str:
    doc = tomlkit.document()
    doc.add("terminal", {"vt": 1})
    doc.add("default_session", {
        "command": f"agreety --cmd 'Hyprland' --username '{username}'",
        "user": "greeter",
    })
    return tomlkit.dumps(doc)


def tlp_battery_conf() -> str:
    return """\
# Battery thresholds (helps prolong battery life)
START_CHARGE_THRESH_BAT0=75
STOP_CHARGE_THRESH_BAT0=80

# CPU scaling
CPU_SCALING_GOVERNOR_ON_AC=performance
CPU_SCALING_GOVERNOR_ON_BAT=powersave

# Audio power saving
SOUND_POWER_SAVE_ON_AC=0
SOUND_POWER_SAVE_ON_BAT=1
"""
