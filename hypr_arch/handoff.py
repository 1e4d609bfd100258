"""
Handoff from the live environment to the new root.

Everything the second half of the installation needs is written as a TOML
payload into the new root, next to a copy of this package and a small
launcher. The launcher is run with arch-chroot; inside, `hypr-arch continue`
loads the payload, checks it and runs the target plan.
"""

import os
import shutil
from pathlib import Path
from typing import Literal, Optional

import tomlkit
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

import hypr_arch
from hypr_arch.config.models import Encryption, InstallConfig, InstallerSettings, InstallFacts, derive_partitions
from hypr_arch.utils.exceptions import HandoffError, ShellCommandError
from hypr_arch.utils.executor import NO_TIMEOUT, Executor
from hypr_arch.utils.logger import RichAppLogger

SCHEMA_VERSION = 1

# All paths below are relative to the root of the new system
HANDOFF_DIR = "root/hypr-arch"
PAYLOAD_FILE = f"{HANDOFF_DIR}/handoff.toml"
LAUNCHER_FILE = f"{HANDOFF_DIR}/continue.sh"
LIBRARY_DIR = f"{HANDOFF_DIR}/lib"
LOG_DIR = f"{HANDOFF_DIR}/logs"

LAUNCHER_SCRIPT = f"""#!/bin/sh
# Second half of the hypr-arch installation, run inside the new root.
export PYTHONPATH=/{LIBRARY_DIR}
exec python3 -m hypr_arch continue /{PAYLOAD_FILE} --log-dir /{LOG_DIR}
"""


class DerivedValues(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    efi_partition: str
    root_partition: str
    root_uuid: str = Field(min_length=1)
    luks_uuid: Optional[str] = None


class HandoffPayload(BaseModel):
    """The complete input of the nested run. Unknown and missing keys are rejected."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    schema_version: Literal[1]
    config: InstallConfig
    derived: DerivedValues
    settings: InstallerSettings

    @model_validator(mode="after")
    def _check_partitions(self) -> "HandoffPayload":
        efi, root = derive_partitions(self.config.target_disk)
        if (efi, root) != (self.derived.efi_partition, self.derived.root_partition):
            raise ValueError(
                f"partitions {self.derived.efi_partition}/{self.derived.root_partition} do not match "
                f"{efi}/{root} derived from {self.config.target_disk}"
            )
        if self.config.encryption is Encryption.LUKS and not self.derived.luks_uuid:
            raise ValueError("an encrypted install needs the LUKS UUID of the root partition")
        return self

    @property
    def facts(self) -> InstallFacts:
        return InstallFacts(root_uuid=self.derived.root_uuid, luks_uuid=self.derived.luks_uuid)


class HandoffSerializer:

    def __init__(self, logger: RichAppLogger):
        self.logger = logger

    @staticmethod
    def build(config: InstallConfig, facts: InstallFacts, settings: InstallerSettings) -> HandoffPayload:
        try:
            return HandoffPayload(
                schema_version=SCHEMA_VERSION,
                config=config,
                derived=DerivedValues(
                    efi_partition=config.efi_partition,
                    root_partition=config.root_partition,
                    root_uuid=facts.root_uuid or "",
                    luks_uuid=facts.luks_uuid,
                ),
                settings=settings,
            )
        except ValidationError as e:
            raise HandoffError(f"Cannot build handoff payload: {_summarize(e)}")

    @staticmethod
    def dumps(payload: HandoffPayload) -> str:
        """Renders the payload as TOML. The password is written in plain text."""
        config = payload.config.model_dump(mode="json", exclude={"efi_partition", "root_partition", "password"})
        config["password"] = payload.config.password.get_secret_value()

        doc = tomlkit.document()
        doc.add(tomlkit.comment("hypr-arch handoff payload; deleted once the installation finishes"))
        doc.add("schema_version", payload.schema_version)
        doc.add("config", config)
        doc.add("derived", payload.derived.model_dump(mode="json", exclude_none=True))
        doc.add("settings", payload.settings.model_dump(mode="json"))
        return tomlkit.dumps(doc)

    @staticmethod
    def loads(content: str) -> HandoffPayload:
        try:
            data = tomlkit.parse(content).unwrap()
        except Exception as e:
            raise HandoffError(f"Handoff payload is not valid TOML: {e}")

        version = data.get("schema_version")
        if version != SCHEMA_VERSION:
            raise HandoffError(f"Unsupported handoff schema version {version!r} (expected {SCHEMA_VERSION})")

        try:
            return HandoffPayload.model_validate(data)
        except ValidationError as e:
            raise HandoffError(f"Invalid handoff payload: {_summarize(e)}")

    def load(self, path: Path) -> HandoffPayload:
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            raise HandoffError(f"Cannot read handoff payload {path}: {e.strerror or e}")
        payload = self.loads(content)
        self.logger.info(f"Loaded handoff payload for {payload.config.hostname} ({payload.config.target_disk})")
        return payload

    def write(self, payload: HandoffPayload, root: Path) -> Path:
        """
        Places the package copy, the launcher (0755) and the payload (0600)
        into the new root. Returns the payload path. The payload goes last and
        is removed again when writing it fails.
        """
        handoff_dir = root / HANDOFF_DIR
        library_dir = root / LIBRARY_DIR
        package_source = Path(hypr_arch.__file__).resolve().parent

        handoff_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(handoff_dir, 0o700)
        shutil.copytree(
            package_source,
            library_dir / package_source.name,
            ignore=shutil.ignore_patterns("__pycache__", "*.pyc"),
            dirs_exist_ok=True,
        )
        self.logger.debug(f"Copied {package_source} to {library_dir}")

        launcher_path = root / LAUNCHER_FILE
        launcher_path.write_text(LAUNCHER_SCRIPT, encoding="utf-8")
        os.chmod(launcher_path, 0o755)

        payload_path = root / PAYLOAD_FILE
        try:
            # Created with 0600 before the password is written
            fd = os.open(payload_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(self.dumps(payload))
            os.chmod(payload_path, 0o600)
        except Exception:
            self.remove_payload(root)
            raise

        self.logger.info(f"Handoff payload written to {payload_path}")
        return payload_path

    def execute(self, executor: Executor, root: Path) -> None:
        """
        Runs the launcher under arch-chroot with the terminal attached. The payload
        is removed afterwards whatever the outcome.
        """
        command = ["arch-chroot", str(root), f"/{LAUNCHER_FILE}"]
        self.logger.section("Continuing inside the new system")
        try:
            exit_code, _, _ = executor.execute_command(command, capture_output=False, timeout=NO_TIMEOUT, check=False)
        except ShellCommandError as e:
            raise HandoffError(f"Could not start the installation inside {root}: {e.output or e}")
        finally:
            self.remove_payload(root)

        if exit_code != 0:
            raise HandoffError(
                f"Installation inside the new root exited with {exit_code}; see {root / LOG_DIR / 'continue.log'}"
            )

    def remove_payload(self, root: Path) -> None:
        payload_path = root / PAYLOAD_FILE
        try:
            payload_path.unlink()
            self.logger.debug(f"Removed handoff payload {payload_path}")
        except FileNotFoundError:
            pass


def _summarize(error: ValidationError) -> str:
    """One line per pydantic error, joined. Input values are left out, they may hold the password."""
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "payload"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)
