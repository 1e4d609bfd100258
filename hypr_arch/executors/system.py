# hypr_arch/executors/system.py
from pathlib import Path
from typing import Iterable, List, Set, Tuple

from hypr_arch.utils.executor import NO_TIMEOUT, Executor


class PackageManager:
    """pacman/pacstrap operations for the live environment and the new root."""

    def __init__(self, executor: Executor):
        self.executor = executor

    def refresh_mirrors(self, countries: Iterable[str]) -> None:
        """Installs reflector in the live environment and ranks the fastest mirrors."""
        self.executor.run(
            "Installing reflector",
            ["pacman", "-Sy", "--noconfirm", "reflector"],
            timeout=NO_TIMEOUT,
        )
        self.executor.run(
            "Ranking mirrors with reflector",
            ["reflector", "--country", ",".join(countries), "--protocol", "https",
             "--latest", "20", "--sort", "rate", "--save", "/etc/pacman.d/mirrorlist"],
            timeout=NO_TIMEOUT,
        )

    def pacstrap(self, mount_root: str, packages: List[str]) -> Tuple[int, str, str]:
        """Installs the package list into the new root. May fail for individual packages."""
        return self.executor.run(
            f"Installing {len(packages)} packages into {mount_root} (this will take a while)",
            ["pacstrap", mount_root] + list(packages),
            timeout=NO_TIMEOUT,
        )


def enable_parallel_downloads(pacman_conf: Path) -> bool:
    """
    Uncomments ParallelDownloads in a pacman.conf. Returns False when the
    option is not present in commented form (already enabled or removed).
    """
    content = pacman_conf.read_text(encoding="utf-8")
    if "#ParallelDownloads" not in content:
        return False
    lines = [
        line[1:] if line.startswith("#ParallelDownloads") else line
        for line in content.splitlines(keepends=True)
    ]
    pacman_conf.write_text("".join(lines), encoding="utf-8")
    return True


class ServiceManager:
    """systemd unit handling inside the new root (the process is already chrooted)."""

    def __init__(self, executor: Executor):
        self.executor = executor

    def unit_files(self) -> Set[str]:
        """Names of all installed unit files, e.g. {'greetd.service', 'reflector.timer'}."""
        exit_code, stdout, _ = self.executor.query(["systemctl", "list-unit-files", "--no-legend", "--no-pager"])
        if exit_code != 0:
            return set()
        return {line.split()[0] for line in stdout.splitlines() if line.strip()}

    @staticmethod
    def unit_name(service: str) -> str:
        return service if "." in service else f"{service}.service"

    def enable(self, service: str) -> Tuple[int, str, str]:
        return self.executor.run(f"Enabling {service}", ["systemctl", "enable", self.unit_name(service)])

    def mask(self, unit: str) -> Tuple[int, str, str]:
        return self.executor.run(f"Masking {unit}", ["systemctl", "mask", unit])


class AccountManager:
    """User accounts inside the new root. Passwords go through stdin, never argv."""

    def __init__(self, executor: Executor):
        self.executor = executor

    def set_password(self, user: str, password: str) -> Tuple[int, str, str]:
        return self.executor.run(
            f"Setting password for {user}",
            ["chpasswd"],
            input_text=f"{user}:{password}\n",
        )

    def set_shell(self, user: str, shell: str) -> Tuple[int, str, str]:
        return self.executor.run(f"Changing shell of {user} to {shell}", ["chsh", "-s", shell, user])

    def create_user(self, user: str, groups: List[str], shell: str = "/bin/zsh") -> Tuple[int, str, str]:
        return self.executor.run(
            f"Creating user {user}",
            ["useradd", "-m", "-G", ",".join(groups), "-s", shell, user],
        )

    def run_as(self, user: str, description: str, script: str, check: bool = True) -> Tuple[int, str, str]:
        """Runs a bash snippet as the given user (e.g. building AUR packages)."""
        return self.executor.run(
            description,
            ["sudo", "-u", user, "bash", "-c", script],
            check=check,
            timeout=NO_TIMEOUT,
        )
