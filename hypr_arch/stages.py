"""
Ordered, fail-fast execution of installation stages.

A Stage is a named action plus postcondition checks. The runner executes
stages strictly in order; what happens on failure depends on the stage's
criticality:

* CRITICAL  - the whole installation stops (StageFailedError).
* CONFIRM   - the user decides whether to go on (bulk package installation).
* OPTIONAL  - a warning is logged and the run continues.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from rich.prompt import Prompt

from hypr_arch.config.models import InstallConfig, InstallerSettings, InstallFacts
from hypr_arch.utils.exceptions import InstallAborted, ShellCommandError, StageFailedError
from hypr_arch.utils.executor import Executor
from hypr_arch.utils.logger import RichAppLogger
from hypr_arch.verify import VerificationResult


class Criticality(str, Enum):
    CRITICAL = "critical"
    CONFIRM = "confirm"
    OPTIONAL = "optional"


@dataclass
class StageContext:
    """Everything a stage may read. The config is frozen; facts are filled in by earlier stages."""
    config: InstallConfig
    settings: InstallerSettings
    executor: Executor
    logger: RichAppLogger
    root: Path
    facts: InstallFacts = field(default_factory=InstallFacts)

    @property
    def dry_run(self) -> bool:
        return self.executor.dry_run

    def path(self, relative: str) -> Path:
        """Path inside the root being configured ('/mnt' before the handoff, '/' after)."""
        return self.root / relative.lstrip("/")

    def write_file(self, relative: str, content: str, mode: Optional[int] = None, append: bool = False) -> Path:
        target = self.path(relative)
        if self.dry_run:
            self.logger.info(f"DRY RUN: would {'append to' if append else 'write'} {target}")
            return target

        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "a" if append else "w", encoding="utf-8") as handle:
            handle.write(content)
        if mode is not None:
            os.chmod(target, mode)
        self.logger.debug(f"Wrote {len(content)} bytes to {target}")
        return target


StageAction = Callable[[StageContext], None]
StageCheck = Callable[[StageContext], VerificationResult]


@dataclass(frozen=True)
class Stage:
    name: str
    action: Optional[StageAction] = None
    checks: List[StageCheck] = field(default_factory=list)
    criticality: Criticality = Criticality.CRITICAL


class StageRunner:
    """Runs stages in order and applies their failure policy."""

    def __init__(self, logger: RichAppLogger, ask: Callable[..., str] = Prompt.ask):
        self.logger = logger
        self._ask = ask

    def run(self, stage: Stage, ctx: StageContext) -> VerificationResult:
        """
        Executes the stage action and its checks, then applies the failure policy.
        Returns the result when the run may go on; raises otherwise.
        """
        result = self._execute(stage, ctx)
        if result.passed:
            return result

        if stage.criticality is Criticality.CRITICAL:
            raise StageFailedError(stage.name, result.diagnostic)

        if stage.criticality is Criticality.CONFIRM:
            self._confirm_continue(stage, result)
            return result

        if stage.criticality is Criticality.OPTIONAL:
            self.logger.warning(f"⚠️  {stage.name} failed, skipping: {result.diagnostic}")
            return result

        raise ValueError(f"Unknown criticality {stage.criticality!r} for stage '{stage.name}'")

    def run_all(self, stages: List[Stage], ctx: StageContext) -> List[VerificationResult]:
        results = []
        for number, stage in enumerate(stages, start=1):
            self.logger.info(f"[{number}/{len(stages)}] {stage.name}")
            results.append(self.run(stage, ctx))
        return results

    def _execute(self, stage: Stage, ctx: StageContext) -> VerificationResult:
        try:
            if stage.action is not None:
                stage.action(ctx)
        except ShellCommandError as e:
            ctx.logger.debug(f"Stage '{stage.name}' raised {type(e).__name__}", exc_info=True)
            output = e.output or "no output"
            return VerificationResult.fail(f"'{e.command}' exited with {e.exit_code}: {output}")
        except OSError as e:
            ctx.logger.debug(f"Stage '{stage.name}' raised {type(e).__name__}", exc_info=True)
            return VerificationResult.fail(f"{e.filename or 'file operation'}: {e.strerror or e}")

        if ctx.dry_run:
            if stage.checks:
                self.logger.info(f"DRY RUN: skipping {len(stage.checks)} check(s) for '{stage.name}'")
            return VerificationResult.ok("dry run")

        for check in stage.checks:
            result = check(ctx)
            if not result.passed:
                return result
            self.logger.debug(f"Check passed for '{stage.name}': {result.diagnostic}")

        return VerificationResult.ok(f"{stage.name} completed")

    def _confirm_continue(self, stage: Stage, result: VerificationResult) -> None:
        self.logger.warning(f"⚠️  {stage.name} did not complete: {result.diagnostic}")
        self.logger.warning("The system may be missing some features")
        choice = self._ask("Continue anyway? (y/n)", console=self.logger.console, default="", show_default=False)
        if choice in ("y", "Y"):
            self.logger.info("Continuing with partial installation...")
            return
        raise InstallAborted(f"Installation aborted after '{stage.name}' failed: {result.diagnostic}")
