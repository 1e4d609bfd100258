from .models import (
    Bootloader,
    Encryption,
    Filesystem,
    InstallConfig,
    InstallFacts,
    InstallerSettings,
    derive_partitions,
)

__all__ = [
    "Bootloader",
    "Encryption",
    "Filesystem",
    "InstallConfig",
    "InstallFacts",
    "InstallerSettings",
    "derive_partitions",
]
