# hypr_arch/utils/exceptions.py

# --- Shell command failures (raised by the Executor) ---

class ShellCommandError(Exception):
    """Base class for errors related to shell command execution."""

    def __init__(self, command: str, exit_code: int = -1, stdout: str = "", stderr: str = "", message: str = "Command execution failed."):
        self.command = command
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(f"{message} (Command: '{command}', Exit Code: {exit_code})")

    @property
    def output(self) -> str:
        """Captured output of the command, stderr first, stripped."""
        return (self.stderr.strip() or self.stdout.strip())


class CommandNotFoundError(ShellCommandError):
    """Raised when the executable specified in the command cannot be found."""

    def __init__(self, command: str, stdout: str = "", stderr: str = ""):
        super().__init__(command, exit_code=127, stdout=stdout, stderr=stderr, message="Command not found.")


class CommandTimeoutError(ShellCommandError):
    """Raised when the command exceeds the execution timeout."""

    def __init__(self, command: str, timeout: float, stdout: str = "", stderr: str = ""):
        self.timeout = timeout
        super().__init__(command, exit_code=124, stdout=stdout, stderr=stderr, message=f"Command timed out after {timeout} seconds.")


class InvalidCommandError(ShellCommandError):
    """Raised when the command string/list is invalid, empty, or improperly formatted."""

    def __init__(self, command: str, message: str):
        super().__init__(command, exit_code=-2, message=message)


class PermissionDeniedError(ShellCommandError):
    """Raised when command execution fails due to permissions."""

    def __init__(self, command: str, stdout: str = "", stderr: str = ""):
        super().__init__(command, exit_code=126, stdout=stdout, stderr=stderr, message="Permission denied.")


# --- Installer failures (handled by the CLI, always fatal) ---

class InstallerError(Exception):
    """
    Base class for fatal installer errors. The message is shown to the user
    as a single line, so it must say what failed and what to do about it.
    """
    exit_code = 1

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class PreconditionError(InstallerError):
    """The live environment cannot run the installation (no UEFI, not root, ...)."""
    exit_code = 2


class StageFailedError(InstallerError):
    """A critical stage failed its action or one of its postcondition checks."""
    exit_code = 3

    def __init__(self, stage: str, diagnostic: str):
        self.stage = stage
        self.diagnostic = diagnostic
        super().__init__(f"Stage '{stage}' failed: {diagnostic}")


class UnsupportedChoiceError(InstallerError):
    """A bootloader/filesystem value outside the known set reached the stage planner."""
    exit_code = 3

    def __init__(self, field: str, value: object):
        self.field = field
        self.value = value
        super().__init__(f"Unsupported {field} '{value}'; no stage sequence is defined for it")


class HandoffError(InstallerError):
    """The payload for the new root is invalid or the nested run failed."""
    exit_code = 4


class InstallAborted(InstallerError):
    """The user declined to continue at a confirmation prompt."""
    exit_code = 1
