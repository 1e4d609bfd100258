"""
Interactive collection of the installation answers.

Every question goes through ConfigCollector.acquire: read, validate, and on
failure print the field-specific diagnostic and ask again. A field is locked
once it is accepted, so the InstallConfig returned by collect() is always
valid. Nothing on disk is touched until the final 'YES'.
"""

from enum import Enum
from typing import Callable, List, Optional, Tuple, TypeVar

from rich.prompt import Prompt
from rich.table import Table
from rich.text import Text

from hypr_arch import validators
from hypr_arch.config.models import Bootloader, Encryption, Filesystem, InstallConfig, InstallerSettings
from hypr_arch.executors.disk import DiskManager
from hypr_arch.utils.executor import Executor
from hypr_arch.utils.logger import RichAppLogger
from hypr_arch.verify import bytes_to_gib

T = TypeVar("T")
E = TypeVar("E", bound=Enum)

BOOTLOADER_OPTIONS = [
    (Bootloader.SYSTEMD_BOOT, "simple, recommended"),
    (Bootloader.GRUB, "traditional"),
]

FILESYSTEM_OPTIONS = [
    (Filesystem.EXT4, "recommended, stable"),
    (Filesystem.BTRFS, "snapshots, compression"),
    (Filesystem.XFS, "high performance"),
]

ENCRYPTION_OPTIONS = [
    (Encryption.NONE, "plain root partition"),
    (Encryption.LUKS, "unlocked at boot with your account password"),
]


def parse_choice(raw: str, options: List[Tuple[E, str]]) -> Optional[E]:
    """Accepts the 1-based number of an option or its value (case-insensitive)."""
    raw = raw.strip()
    for number, (option, _) in enumerate(options, start=1):
        if raw == str(number) or raw.lower() == option.value.lower():
            return option
    return None


def _choice_hint(options: List[Tuple[Enum, str]]) -> str:
    numbers = [str(n) for n in range(1, len(options) + 1)]
    if len(numbers) == 2:
        return f"Enter {numbers[0]} or {numbers[1]}"
    return f"Enter {', '.join(numbers[:-1])}, or {numbers[-1]}"


class ConfigCollector:

    def __init__(self,
                 logger: RichAppLogger,
                 executor: Executor,
                 disks: DiskManager,
                 settings: InstallerSettings,
                 ask: Callable[..., str] = Prompt.ask):
        self.logger = logger
        self.executor = executor
        self.disks = disks
        self.settings = settings
        self._ask = ask
        self._disk_size_gib: Optional[int] = None

    # --- Generic acquisition ---

    def acquire(self,
                read: Callable[[], T],
                validate: Callable[[T], Optional[str]],
                accepted: Callable[[T], str]) -> T:
        """Repeats read/validate until the validator returns None, then confirms the value."""
        while True:
            value = read()
            problem = validate(value)
            if problem is None:
                self.logger.success(accepted(value))
                return value
            self.logger.rejected(problem)

    def _prompt(self, question: str, password: bool = False) -> str:
        answer = self._ask(f"[yellow]{question}[/]", console=self.logger.console, password=password,
                           default="", show_default=False)
        return answer if password else answer.strip()

    def _reader(self, question: str) -> Callable[[], str]:
        return lambda: self._prompt(question)

    # --- Fields ---

    def ask_timezone(self) -> str:
        return self.acquire(
            self._reader("Timezone (e.g., Europe/London, America/New_York)"),
            lambda value: validators.validate_timezone(value, self.settings.zoneinfo_dir),
            lambda value: f"Valid timezone: {value}",
        )

    def ask_locale(self) -> str:
        return self.acquire(
            self._reader("Locale (e.g., en_GB.UTF-8, en_US.UTF-8)"),
            validators.validate_locale,
            lambda value: f"Valid locale format: {value}",
        )

    def ask_keymap(self) -> str:
        return self.acquire(
            self._reader("Keyboard layout (e.g., us, uk, de, fr)"),
            lambda value: validators.validate_keymap(value, self.executor),
            lambda value: f"Keymap loaded successfully: {value}",
        )

    def ask_hostname(self) -> str:
        return self.acquire(
            self._reader("Hostname (computer name)"),
            validators.validate_hostname,
            lambda value: f"Valid hostname: {value}",
        )

    def ask_username(self) -> str:
        return self.acquire(
            self._reader("Username (lowercase letters/numbers)"),
            validators.validate_username,
            lambda value: f"Valid username: {value}",
        )

    def ask_password(self) -> str:
        def read() -> Tuple[str, str]:
            password = self._prompt(f"Password (min {validators.MIN_PASSWORD_LENGTH} characters)", password=True)
            confirmation = self._prompt("Confirm password", password=True)
            return password, confirmation

        password, _ = self.acquire(
            read,
            lambda pair: validators.validate_password(*pair),
            lambda pair: "Password set",
        )
        return password

    def _ask_option(self, title: str, options: List[Tuple[E, str]]) -> E:
        def read() -> str:
            self.logger.console.print(f"\n{title}:")
            for number, (option, note) in enumerate(options, start=1):
                self.logger.console.print(f"  {number}) {option.value} ({note})", highlight=False)
            numbers = "/".join(str(n) for n in range(1, len(options) + 1))
            return self._prompt(f"Choice ({numbers})")

        raw = self.acquire(
            read,
            lambda value: None if parse_choice(value, options) is not None else _choice_hint(options),
            lambda value: f"{parse_choice(value, options).value} selected",
        )
        return parse_choice(raw, options)

    def ask_bootloader(self) -> Bootloader:
        return self._ask_option("Bootloader", BOOTLOADER_OPTIONS)

    def ask_filesystem(self) -> Filesystem:
        return self._ask_option("Root filesystem", FILESYSTEM_OPTIONS)

    def ask_encryption(self) -> Encryption:
        return self._ask_option("Root partition encryption", ENCRYPTION_OPTIONS)

    def show_disks(self) -> None:
        table = Table(title="Available Disks")
        table.add_column("Device Name", style="success")
        table.add_column("Size", justify="right")
        for path, size_bytes in self.disks.list_disks():
            table.add_row(path, f"{bytes_to_gib(size_bytes)} GiB")
        self.logger.console.print(table)

    def ask_disk(self) -> str:
        def read() -> str:
            self.show_disks()
            self.logger.console.print("[bold red]⚠️  WARNING: Target disk will be COMPLETELY WIPED[/]")
            return self._prompt("Target disk (e.g., /dev/sda)")

        def accepted(path: str) -> str:
            size_bytes = self.disks.device_size_bytes(path) or 0
            self._disk_size_gib = bytes_to_gib(size_bytes)
            return f"Valid disk: {path} ({self._disk_size_gib} GiB)"

        return self.acquire(
            read,
            lambda path: validators.validate_disk(path, self.disks, self.settings.min_disk_gib),
            accepted,
        )

    def acknowledge_firewall(self) -> None:
        def read() -> str:
            self.logger.console.print("\n[bold]=== SECURITY NOTICE ===[/]")
            self.logger.console.print("UFW firewall will be installed but NOT enabled.")
            self.logger.console.print("After installation, enable it with: sudo ufw enable\n")
            return self._prompt("Type 'OK' to acknowledge")

        self.acquire(read, lambda value: validators.validate_literal(value, "OK"),
                     lambda value: "Firewall notice acknowledged")

    def confirm(self, config: InstallConfig) -> None:
        """Shows the summary until the user types YES. Ctrl+C is the only way out."""
        def read() -> str:
            summary = config.display_summary(self._disk_size_gib, self.settings.swapfile_mib)
            self.logger.console.print(Text.from_ansi(summary))
            return self._prompt("Type 'YES' to proceed")

        def validate(value: str) -> Optional[str]:
            problem = validators.validate_literal(value, "YES")
            return f"{problem} (or Ctrl+C to abort)" if problem else None

        self.acquire(read, validate, lambda value: "Starting installation...")

    # --- Whole sequence ---

    def collect(self) -> InstallConfig:
        self.logger.section("Installation settings")
        answers = dict(
            timezone=self.ask_timezone(),
            locale=self.ask_locale(),
            keymap=self.ask_keymap(),
            hostname=self.ask_hostname(),
            username=self.ask_username(),
            password=self.ask_password(),
            bootloader=self.ask_bootloader(),
            filesystem=self.ask_filesystem(),
            encryption=self.ask_encryption(),
            target_disk=self.ask_disk(),
        )
        config = InstallConfig(**answers)
        self.acknowledge_firewall()
        self.confirm(config)
        self.logger.info(f"Configuration locked: {config.hostname}, {config.bootloader.value}, "
                         f"{config.filesystem.value} on {config.target_disk}")
        return config
