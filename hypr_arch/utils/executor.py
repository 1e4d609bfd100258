"""
Runs the external tools of the installation (sgdisk, mkfs.*, pacstrap, ...).

`run` is for commands that change the machine: it honours dry-run and shows a
progress line. `query` is for read-only probes and always runs. Both go
through `execute_command`, which turns failures into ShellCommandError
subclasses.
"""

import shlex
import subprocess
from typing import List, Optional, Tuple, Union

from hypr_arch.utils.exceptions import (
    CommandNotFoundError, CommandTimeoutError, InvalidCommandError,
    PermissionDeniedError, ShellCommandError,
)
from hypr_arch.utils.logger import RichAppLogger

Command = Union[str, List[str]]
CommandResult = Tuple[int, str, str]

DRY_RUN_STDOUT = "DRY_RUN_STDOUT"
DRY_RUN_STDERR = "DRY_RUN_STDERR"

# Timeout value for commands without an upper bound (pacstrap, dd, arch-chroot)
NO_TIMEOUT = 0.0


def _command_line(command: Command) -> str:
    return shlex.join(command) if isinstance(command, list) else command


def _as_text(output) -> str:
    if isinstance(output, bytes):
        return output.decode(errors="replace")
    return output or ""


def _failure(command_line: str, exit_code: int, stdout: str, stderr: str) -> ShellCommandError:
    lowered = stderr.lower()
    if exit_code == 127 or "command not found" in lowered:
        return CommandNotFoundError(command=command_line, stdout=stdout, stderr=stderr)
    if exit_code == 126 or "permission denied" in lowered:
        return PermissionDeniedError(command=command_line, stdout=stdout, stderr=stderr)
    return ShellCommandError(command=command_line, exit_code=exit_code, stdout=stdout, stderr=stderr,
                             message=f"Command failed with exit code {exit_code}")


class Executor:

    def __init__(self,
                 logger_instance: RichAppLogger,
                 default_timeout: Optional[float] = 30.0,
                 chroot_path: str = "/mnt",
                 dry_run: bool = False):
        self.logger = logger_instance
        if default_timeout is not None and default_timeout <= 0:
            raise ValueError("Default timeout must be a positive number or None.")
        if not isinstance(chroot_path, str) or not chroot_path:
            raise ValueError("Chroot path must be a non-empty string.")

        self._default_timeout = default_timeout
        self._chroot_path = chroot_path
        self.dry_run = dry_run
        self.logger.debug(f"Executor: default timeout {default_timeout}s, chroot {chroot_path}, dry run {dry_run}")

    @property
    def chroot_path(self) -> str:
        return self._chroot_path

    def _prepare_command(self, command: Command, chroot: bool) -> List[str]:
        """Splits a string command into argv and prefixes `arch-chroot <root>` when asked."""
        if not command:
            raise InvalidCommandError(str(command), "Command cannot be empty.")
        if isinstance(command, str):
            try:
                argv = shlex.split(command)
            except ValueError as e:
                raise InvalidCommandError(command, f"Failed to parse command string: {e}")
        elif isinstance(command, list):
            if not all(isinstance(arg, str) for arg in command):
                raise InvalidCommandError(str(command), "All elements in command list must be strings.")
            argv = command
        else:
            raise InvalidCommandError(str(command), "Command must be a string or a list of strings.")

        return ["arch-chroot", self._chroot_path, *argv] if chroot else argv

    def _resolve_timeout(self, timeout: Optional[float]) -> Optional[float]:
        if timeout == NO_TIMEOUT:
            return None
        return self._default_timeout if timeout is None else timeout

    def execute_command(self,
                        command: Command,
                        capture_output: bool = True,
                        timeout: Optional[float] = None,
                        check: bool = True,
                        shell: bool = False,
                        input_text: Optional[str] = None,
                        ) -> CommandResult:
        """
        Runs one command and returns (exit code, stdout, stderr).

        `input_text` goes to stdin; it is how passwords reach chpasswd, so it is
        never logged. With `check`, a non-zero exit raises.
        """
        command_line = _command_line(command)
        actual_timeout = self._resolve_timeout(timeout)
        self.logger.debug(f"exec: {command_line} (timeout={actual_timeout}, shell={shell})")

        if shell:
            target = command_line
        elif isinstance(command, str):
            target = self._prepare_command(command, chroot=False)
        else:
            target = command

        try:
            process = subprocess.run(
                target,
                capture_output=capture_output,
                text=True,
                timeout=actual_timeout,
                check=False,
                shell=shell,
                input=input_text,
            )
        except FileNotFoundError:
            self.logger.error(f"'{command_line}': executable not found in PATH")
            raise CommandNotFoundError(command=command_line, stderr="Command not found. Check PATH.")
        except subprocess.TimeoutExpired as e:
            self.logger.warning(f"'{command_line}' timed out after {actual_timeout} seconds")
            raise CommandTimeoutError(command=command_line, timeout=actual_timeout,
                                      stdout=_as_text(e.stdout), stderr=_as_text(e.stderr))
        except (TypeError, ValueError) as e:
            raise InvalidCommandError(command_line, f"Argument error in command execution: {e}")

        stdout = (process.stdout or "") if capture_output else ""
        stderr = (process.stderr or "") if capture_output else ""
        if check and process.returncode != 0:
            self.logger.error(f"'{command_line}' exited with {process.returncode}: {stderr.strip()}")
            raise _failure(command_line, process.returncode, stdout, stderr)

        self.logger.debug(f"exit {process.returncode}: {command_line}")
        return process.returncode, stdout, stderr

    def run(self,
            description: str,
            command: Command,
            chroot: bool = False,
            dryrun: Optional[bool] = None,
            capture_output: bool = True,
            timeout: Optional[float] = None,
            check: bool = True,
            shell: bool = False,
            input_text: Optional[str] = None,
            ) -> CommandResult:
        """
        Runs a command that changes the system, as an execution_step titled
        `description`. In dry-run nothing is executed and the DRY_RUN_* markers
        are returned with exit code 0. `dryrun` overrides the executor setting.
        """
        argv = self._prepare_command(command, chroot=chroot)
        if dryrun is None:
            dryrun = self.dry_run

        if dryrun:
            self.logger.info(f"DRY RUN: Execution skipped for: '{description}'")
            self.logger.debug(f"DRY RUN command: {shlex.join(argv)}")
            return 0, DRY_RUN_STDOUT, DRY_RUN_STDERR

        with self.logger.execution_step(description):
            exit_code, stdout, stderr = self.execute_command(
                command=_command_line(command) if shell else argv,
                capture_output=capture_output,
                timeout=timeout,
                check=check,
                shell=shell,
                input_text=input_text,
            )
            for stream, text in (("stdout", stdout), ("stderr", stderr)):
                if text.strip():
                    self.logger.debug(f"{description} {stream}:\n{text.strip()}")
            return exit_code, stdout, stderr

    def query(self,
              command: Command,
              chroot: bool = False,
              check: bool = False,
              timeout: Optional[float] = None,
              ) -> CommandResult:
        """Read-only lookup (lsblk, blkid, pacman -Q); runs in dry-run too, without a progress line."""
        return self.execute_command(self._prepare_command(command, chroot=chroot), timeout=timeout, check=check)
