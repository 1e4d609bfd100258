import subprocess
from unittest.mock import MagicMock, patch

import pytest

from hypr_arch.utils.exceptions import (
    CommandNotFoundError, CommandTimeoutError, InvalidCommandError,
    PermissionDeniedError, ShellCommandError,
)
from hypr_arch.utils.executor import DRY_RUN_STDOUT, NO_TIMEOUT, Executor
from hypr_arch.utils.logger import RichAppLogger

# ======= Execute with: pytest tests/test_executor.py ========


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def mock_rich_logger():
    mock_logger = MagicMock(spec=RichAppLogger)
    step = MagicMock()
    step.__exit__.return_value = None
    mock_logger.execution_step.return_value = step
    return mock_logger


@pytest.fixture
def executor(mock_rich_logger):
    return Executor(logger_instance=mock_rich_logger, default_timeout=5.0)


@pytest.fixture
def subprocess_run():
    with patch("hypr_arch.utils.executor.subprocess.run") as mock_run:
        mock_run.return_value = completed()
        yield mock_run


# --- Construction ---

def test_defaults(mock_rich_logger):
    exec_instance = Executor(logger_instance=mock_rich_logger)
    assert exec_instance.chroot_path == "/mnt"
    assert exec_instance.dry_run is False


@pytest.mark.parametrize("kwargs,match", [
    ({"default_timeout": -1}, "positive number"),
    ({"default_timeout": 0}, "positive number"),
    ({"chroot_path": ""}, "non-empty string"),
])
def test_invalid_construction(mock_rich_logger, kwargs, match):
    with pytest.raises(ValueError, match=match):
        Executor(logger_instance=mock_rich_logger, **kwargs)


# --- Command preparation ---

def test_string_command_in_chroot(mock_rich_logger):
    exec_instance = Executor(logger_instance=mock_rich_logger, chroot_path="/newroot")
    assert exec_instance._prepare_command("pacman -Qq linux", chroot=True) == [
        "arch-chroot", "/newroot", "pacman", "-Qq", "linux",
    ]


def test_list_command_kept_as_is(executor):
    assert executor._prepare_command(["lsblk", "-d"], chroot=False) == ["lsblk", "-d"]


@pytest.mark.parametrize("command", ["", None, [], ["ls", 123], "echo 'unterminated"])
def test_invalid_commands(executor, command):
    with pytest.raises(InvalidCommandError):
        executor._prepare_command(command, chroot=False)


# --- execute_command ---

def test_execute_returns_output_with_default_timeout(executor, subprocess_run):
    subprocess_run.return_value = completed(stdout="sda 32G disk")

    assert executor.execute_command(["lsblk", "-d"]) == (0, "sda 32G disk", "")
    assert subprocess_run.call_args.args[0] == ["lsblk", "-d"]
    assert subprocess_run.call_args.kwargs["timeout"] == 5.0


def test_no_timeout_means_unbounded(executor, subprocess_run):
    executor.execute_command(["pacstrap", "/mnt", "base"], timeout=NO_TIMEOUT)
    assert subprocess_run.call_args.kwargs["timeout"] is None


def test_stdin_is_passed_but_not_logged(executor, subprocess_run):
    executor.execute_command(["chpasswd"], input_text="alice:secret\n")

    assert subprocess_run.call_args.kwargs["input"] == "alice:secret\n"
    assert all("secret" not in str(logged) for logged in executor.logger.debug.call_args_list)


def test_shell_command_keeps_redirection(executor, subprocess_run):
    executor.execute_command("genfstab -U /mnt >> /mnt/etc/fstab", shell=True)

    assert subprocess_run.call_args.args[0] == "genfstab -U /mnt >> /mnt/etc/fstab"
    assert subprocess_run.call_args.kwargs["shell"] is True


def test_uncaptured_output_is_empty(executor, subprocess_run):
    subprocess_run.return_value = completed(stdout=None, stderr=None)

    assert executor.execute_command(["arch-chroot", "/mnt", "true"], capture_output=False) == (0, "", "")
    assert subprocess_run.call_args.kwargs["capture_output"] is False


def test_nonzero_exit_without_check(executor, subprocess_run):
    subprocess_run.return_value = completed(1, stderr="blkid: no such device")

    assert executor.execute_command(["blkid", "/dev/sda9"], check=False) == (1, "", "blkid: no such device")
    executor.logger.error.assert_not_called()


@pytest.mark.parametrize("returncode,stderr,error_class", [
    (5, "Unknown failure", ShellCommandError),
    (127, "bash: mkfs.foo: command not found", CommandNotFoundError),
    (1, "sh: mkfs.foo: command not found", CommandNotFoundError),
    (126, "", PermissionDeniedError),
    (1, "wipefs: /dev/sda: Permission denied", PermissionDeniedError),
])
def test_failures_are_classified(executor, subprocess_run, returncode, stderr, error_class):
    subprocess_run.return_value = completed(returncode, stderr=stderr)

    with pytest.raises(error_class) as excinfo:
        executor.execute_command("sgdisk -o /dev/sda")

    assert type(excinfo.value) is error_class
    assert excinfo.value.command == "sgdisk -o /dev/sda"
    executor.logger.error.assert_called_once()


def test_failure_keeps_output(executor, subprocess_run):
    subprocess_run.return_value = completed(32, stdout="", stderr="mount: wrong fs type\n")

    with pytest.raises(ShellCommandError) as excinfo:
        executor.execute_command(["mount", "/dev/sda2", "/mnt"])

    assert excinfo.value.exit_code == 32
    assert excinfo.value.output == "mount: wrong fs type"


def test_missing_binary(executor, subprocess_run):
    subprocess_run.side_effect = FileNotFoundError()

    with pytest.raises(CommandNotFoundError) as excinfo:
        executor.execute_command(["arch-chroot", "/mnt", "true"])

    assert excinfo.value.exit_code == 127


def test_timeout(executor, subprocess_run):
    subprocess_run.side_effect = subprocess.TimeoutExpired(cmd=["reflector"], timeout=5.0, output=b"partial", stderr=None)

    with pytest.raises(CommandTimeoutError) as excinfo:
        executor.execute_command(["reflector"])

    assert excinfo.value.timeout == 5.0
    assert excinfo.value.stdout == "partial"
    assert "timed out" in str(excinfo.value)
    executor.logger.warning.assert_called_once()


# --- run ---

@patch.object(Executor, "execute_command", return_value=(0, "Success!", ""))
def test_run_wraps_command_in_execution_step(mock_execute_command, executor, mock_rich_logger):
    assert executor.run("Formatting /dev/sda1", "mkfs.fat -F32 /dev/sda1") == (0, "Success!", "")

    mock_rich_logger.execution_step.assert_called_once_with("Formatting /dev/sda1")
    assert mock_execute_command.call_args.kwargs["command"] == ["mkfs.fat", "-F32", "/dev/sda1"]


@patch.object(Executor, "execute_command")
def test_run_failure_propagates(mock_execute_command, executor, mock_rich_logger):
    mock_execute_command.side_effect = ShellCommandError(command="mount /dev/sda2 /mnt", exit_code=32, stderr="bad fs")

    with pytest.raises(ShellCommandError):
        executor.run("Mounting root", "mount /dev/sda2 /mnt")

    mock_rich_logger.execution_step.assert_called_once_with("Mounting root")


@patch.object(Executor, "execute_command", return_value=(0, "", ""))
def test_run_in_chroot(mock_execute_command, mock_rich_logger):
    exec_instance = Executor(logger_instance=mock_rich_logger, chroot_path="/mnt/arch")

    exec_instance.run("Install base system", "pacman -S base", chroot=True)

    assert mock_execute_command.call_args.kwargs["command"] == ["arch-chroot", "/mnt/arch", "pacman", "-S", "base"]


@patch.object(Executor, "execute_command", return_value=(0, "", ""))
def test_run_forwards_stdin_and_timeout(mock_execute_command, executor):
    executor.run("Setting password for root", ["chpasswd"], input_text="root:pw\n", timeout=NO_TIMEOUT)

    assert mock_execute_command.call_args.kwargs["input_text"] == "root:pw\n"
    assert mock_execute_command.call_args.kwargs["timeout"] == NO_TIMEOUT


@patch.object(Executor, "execute_command")
def test_explicit_dryrun(mock_execute_command, executor, mock_rich_logger):
    assert executor.run("Wiping disk", "wipefs -a /dev/sda", dryrun=True) == (0, DRY_RUN_STDOUT, "DRY_RUN_STDERR")

    mock_execute_command.assert_not_called()
    mock_rich_logger.execution_step.assert_not_called()
    mock_rich_logger.info.assert_called_once_with("DRY RUN: Execution skipped for: 'Wiping disk'")


@patch.object(Executor, "execute_command")
def test_executor_wide_dry_run(mock_execute_command, mock_rich_logger):
    dry = Executor(logger_instance=mock_rich_logger, dry_run=True)

    dry.run("Wiping disk", ["sgdisk", "--zap-all", "/dev/sda"])

    mock_execute_command.assert_not_called()


@patch.object(Executor, "execute_command", return_value=(0, "", ""))
def test_dryrun_false_overrides_executor_setting(mock_execute_command, mock_rich_logger):
    dry = Executor(logger_instance=mock_rich_logger, dry_run=True)

    dry.run("Syncing filesystems", ["sync"], dryrun=False)

    mock_execute_command.assert_called_once()


@patch.object(Executor, "execute_command")
def test_run_rejects_invalid_command_even_in_dry_run(mock_execute_command, mock_rich_logger):
    dry = Executor(logger_instance=mock_rich_logger, dry_run=True)

    with pytest.raises(InvalidCommandError):
        dry.run("Broken", "")


# --- query ---

@patch.object(Executor, "execute_command", return_value=(0, "linux\n", ""))
def test_query_runs_in_dry_run_without_step(mock_execute_command, mock_rich_logger):
    dry = Executor(logger_instance=mock_rich_logger, chroot_path="/mnt", dry_run=True)

    assert dry.query(["pacman", "-Qq"], chroot=True) == (0, "linux\n", "")

    mock_execute_command.assert_called_once_with(["arch-chroot", "/mnt", "pacman", "-Qq"], timeout=None, check=False)
    mock_rich_logger.execution_step.assert_not_called()
