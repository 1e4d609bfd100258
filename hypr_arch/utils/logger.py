"""
Installer logging: a detailed log file plus a Rich console.

Everything goes to the file. The console gets standard records through a
RichHandler, except records whose text the RichAppLogger already printed
itself (section headers, step status lines, prompt feedback and the fatal
line).
"""

import logging
import os
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.text import Text
from rich.theme import Theme

SECTION_LEVEL_NUM = 25
EXECUTE_LEVEL_NUM = 26
logging.addLevelName(SECTION_LEVEL_NUM, "SECTION")
logging.addLevelName(EXECUTE_LEVEL_NUM, "EXECUTE")

# Set on records that were already rendered on the console
SHOWN_ON_CONSOLE = "shown_on_console"

LOG_FILE_FORMAT = "%(asctime)s - %(levelname)-9s - %(name)-15s - %(filename)-20s:%(lineno)-5d - %(message)s"

INSTALLER_THEME = Theme({
    "section": "bold yellow on black",
    "success": "green",
    "warning": "bold yellow",
    "fatal": "bold reverse red",
})


class AppLogger(logging.Logger):
    """logging.Logger with the two installer levels."""

    def section(self, msg, *args, **kwargs):
        if self.isEnabledFor(SECTION_LEVEL_NUM):
            self._log(SECTION_LEVEL_NUM, msg, args, **kwargs)

    def execute(self, msg, *args, **kwargs):
        if self.isEnabledFor(EXECUTE_LEVEL_NUM):
            self._log(EXECUTE_LEVEL_NUM, msg, args, **kwargs)


logging.setLoggerClass(AppLogger)


class ExecuteFilter(logging.Filter):
    """
    Keeps EXECUTE records and records flagged with SHOWN_ON_CONSOLE away from
    the console handler. Both still reach the log file.
    """

    def filter(self, record):
        if record.levelno == EXECUTE_LEVEL_NUM:
            return False
        return not getattr(record, SHOWN_ON_CONSOLE, False)


class RichAppLogger:
    """
    Console front end of the installer. Prompt feedback, stage progress and
    the final fatal line are printed here; the wrapped AppLogger records the
    same text in the install log.
    """

    log_file: Optional[Path] = None

    def __init__(self, console: Console, logger: AppLogger, log_file: Optional[Path] = None):
        self.console = console
        self.logger: AppLogger = logger
        self.log_file = log_file

    def _echo(self, markup: str, record_level: int, record_text: str, **print_kwargs):
        self.console.print(markup, **print_kwargs)
        self.logger.log(record_level, record_text, extra={SHOWN_ON_CONSOLE: True})

    def section(self, message: str):
        """Prints a section header, e.g. before the live or the target plan starts."""
        self.console.print(Text(f"SECTION: {message}", style="section"))
        self.logger.section(f"SECTION: {message}", extra={SHOWN_ON_CONSOLE: True})

    @contextmanager
    def execution_step(self, message: str):
        """
        Shows a spinner while the body runs, then replaces it with a COMPLETED
        or FAILED line. On failure the exception propagates unchanged and its
        traceback is written to the log file only.
        """
        with self.console.status(f"[bold green]...[/] [RUNNING] {message}", spinner="dots") as status:
            self.logger.execute(f"[RUNNING] {message}")
            try:
                yield status
            except Exception:
                self.console.print(f"[bold red]✘ [FAILED][/bold red] {message}")
                self.logger.execute(f"[FAILED] {message}")
                self.logger.debug(f"Traceback of failed step '{message}'", exc_info=True)
                raise
            self.console.print(f"[green]✔ [COMPLETED][/green] {message}")
            self.logger.execute(f"[COMPLETED] {message}")

    def success(self, message: str):
        self._echo(f"[success]✓ {escape(message)}[/success]", logging.INFO, f"✓ {message}")

    def rejected(self, message: str):
        """An answer the collector refused; the prompt is asked again."""
        self._echo(f"[bold red]✗ {escape(message)}[/bold red]", logging.INFO, f"✗ {message}")

    def fatal(self, message: str):
        """The one console line printed before the installer exits non-zero."""
        self._echo(f"[fatal]✘ FATAL:[/fatal] {escape(message)}", logging.CRITICAL, f"FATAL: {message}",
                   highlight=False)

    def info(self, message, *args, **kwargs):
        self.logger.info(message, *args, **kwargs)

    def warning(self, message, *args, **kwargs):
        self.logger.warning(message, *args, **kwargs)

    def error(self, message, *args, **kwargs):
        self.logger.error(message, *args, **kwargs)

    def debug(self, message, *args, **kwargs):
        self.logger.debug(message, *args, **kwargs)


def initialize_app_logger(
    app_name: str,
    log_directory: str = "logs",
    log_file_name: str = "install.log",
    file_log_level: int = logging.DEBUG,
    console_log_level: int = logging.INFO,
) -> RichAppLogger:
    """
    Attaches a file handler and a RichHandler (stderr) to the named logger.
    Calling it again for the same name replaces the handlers, which is what
    happens when `continue` starts inside the new root after `install`.
    """
    logger: AppLogger = logging.getLogger(app_name)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    os.makedirs(log_directory, exist_ok=True)
    log_file = Path(log_directory) / log_file_name
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(file_log_level)
    file_handler.setFormatter(logging.Formatter(LOG_FILE_FORMAT))
    logger.addHandler(file_handler)

    console = Console(file=sys.stderr, theme=INSTALLER_THEME, soft_wrap=True)
    console_handler = RichHandler(
        console=console,
        level=console_log_level,
        show_time=False,
        show_path=False,
        keywords=[],
    )
    console_handler.addFilter(ExecuteFilter())
    logger.addHandler(console_handler)

    return RichAppLogger(console, logger, log_file)
