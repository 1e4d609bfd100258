# hypr_arch/cli.py
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

import typer
from rich.text import Text

from hypr_arch import core
from hypr_arch.collector import ConfigCollector
from hypr_arch.config.models import Encryption, InstallConfig, InstallerSettings
from hypr_arch.executors.disk import DiskManager
from hypr_arch.handoff import LOG_DIR, HandoffSerializer
from hypr_arch.install.live import build_live_plan
from hypr_arch.install.target import build_target_plan
from hypr_arch.preflight import run_preflight
from hypr_arch.stages import StageContext, StageRunner
from hypr_arch.utils.exceptions import InstallAborted, InstallerError, PreconditionError
from hypr_arch.utils.executor import Executor
from hypr_arch.utils.logger import RichAppLogger, initialize_app_logger

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    help="Interactive Arch Linux installer with a Hyprland desktop (UEFI only).",
)


def start_logging(log_dir: Path, log_file: str) -> RichAppLogger:
    core.app_logger = initialize_app_logger(app_name="hypr_arch", log_directory=str(log_dir), log_file_name=log_file)
    return core.app_logger


@contextmanager
def fatal_errors(logger: RichAppLogger):
    """Turns installer errors into a one-line FATAL message and the matching exit code."""
    try:
        yield
    except InstallerError as e:
        logger.debug(f"{type(e).__name__} raised", exc_info=True)
        logger.fatal(e.message)
        raise typer.Exit(code=e.exit_code)
    except (KeyboardInterrupt, EOFError):
        logger.fatal("Installation aborted by user")
        raise typer.Exit(code=InstallAborted.exit_code)
    except Exception as e:
        logger.debug("Unexpected error", exc_info=True)
        logger.fatal(f"Unexpected {type(e).__name__}: {e} (details in {logger.log_file or 'the log file'})")
        raise typer.Exit(code=1)


def load_settings(path: Optional[Path]) -> InstallerSettings:
    if path is None:
        return InstallerSettings()
    try:
        return InstallerSettings.load_from_file(path)
    except ValueError as e:
        raise PreconditionError(f"Invalid settings file {path}: {e}")


def final_report(config: InstallConfig, settings: InstallerSettings) -> str:
    s = typer.style("\n=== Installation finished successfully! ===", fg=typer.colors.GREEN, bold=True) + "\n"
    s += f"  Bootloader: {config.bootloader.value}\n"
    s += f"  Filesystem: {config.filesystem.value}\n"
    if config.encryption is Encryption.LUKS:
        s += "  Encryption: LUKS, unlocked at boot with your account password\n"
    s += f"  Swap:       zram + {settings.swapfile_mib}MB swap file\n"
    s += "  Firewall:   UFW installed but not enabled\n"
    s += typer.style("\nNext steps:", bold=True) + "\n"
    s += f"  1. Run: umount -R {settings.mount_root}\n"
    s += "  2. Run: reboot\n"
    s += "  3. Remove the USB drive when prompted\n"
    s += typer.style("\nAfter first boot:", bold=True) + "\n"
    s += "  - Connect to Wi-Fi: nmtui or nmcli\n"
    s += "  - Enable the firewall: sudo ufw enable\n"
    s += "  - SUPER+Enter terminal, SUPER+SPACE launcher, SUPER+Q close window\n"
    return s


@app.command()
def install(
    dry_run: bool = typer.Option(False, "--dry-run", help="Log every command instead of running it."),
    settings_file: Optional[Path] = typer.Option(None, "--settings", help="TOML file overriding installer settings."),
    log_dir: Path = typer.Option(Path("logs"), "--log-dir", help="Directory for install.log."),
):
    """Collect the answers, prepare the disk and install the system."""
    logger = start_logging(log_dir, "install.log")
    if dry_run:
        logger.warning("Running in DRY-RUN mode: nothing will be changed on this machine.")

    with fatal_errors(logger):
        settings = load_settings(settings_file)
        executor = Executor(logger, default_timeout=settings.command_timeout,
                            chroot_path=settings.mount_root, dry_run=dry_run)
        disks = DiskManager(executor)

        run_preflight(logger, disks, settings, dry_run=dry_run)
        config = ConfigCollector(logger, executor, disks, settings).collect()

        ctx = StageContext(config=config, settings=settings, executor=executor,
                           logger=logger, root=Path(settings.mount_root))
        plan = build_live_plan(ctx)
        logger.section("Installing")
        StageRunner(logger).run_all(plan, ctx)

        logger.console.print(Text.from_ansi(final_report(config, settings)))


@app.command("continue")
def continue_install(
    payload: Path = typer.Argument(..., help="Handoff payload written by 'install'."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Log every command instead of running it."),
    log_dir: Path = typer.Option(Path(f"/{LOG_DIR}"), "--log-dir", help="Directory for continue.log."),
):
    """Configure the new system. Started by 'install' through arch-chroot."""
    logger = start_logging(log_dir, "continue.log")

    with fatal_errors(logger):
        handoff = HandoffSerializer(logger).load(payload)
        executor = Executor(logger, default_timeout=handoff.settings.command_timeout, chroot_path="/", dry_run=dry_run)

        ctx = StageContext(config=handoff.config, settings=handoff.settings, executor=executor,
                           logger=logger, root=Path("/"), facts=handoff.facts)
        plan = build_target_plan(ctx)
        logger.section(f"Configuring {handoff.config.hostname}")
        StageRunner(logger).run_all(plan, ctx)
        logger.success("System configuration complete")


def main() -> None:
    app(prog_name="hypr-arch")
