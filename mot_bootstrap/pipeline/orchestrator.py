from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Sequence

from mot_bootstrap.errors import IncompleteStepError, StepFailedError
from mot_bootstrap.pipeline.checkpointing import StepLedger
from mot_bootstrap.pipeline.progress_ui import Ui

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProvisioningStep:
    """A probe/action pair.

    ``probe`` must report False before a successful ``action`` and True
    after it; the action's output on disk is the completion record.
    """

    name: str
    probe: Callable[[], bool]
    action: Callable[[], object]
    description: str = ""


class StepStatus(str, Enum):
    SKIPPED = "skipped"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class StepOutcome:
    name: str
    status: StepStatus
    duration_s: float = 0.0
    error: str | None = None


@dataclass
class RunReport:
    outcomes: list[StepOutcome] = field(default_factory=list)

    def names(self, status: StepStatus) -> list[str]:
        return [o.name for o in self.outcomes if o.status == status]


def _check_unique(steps: Sequence[ProvisioningStep]) -> None:
    seen: set[str] = set()
    for step in steps:
        if step.name in seen:
            raise ValueError(f"Duplicate step name: {step.name}")
        seen.add(step.name)


@dataclass
class Orchestrator:
    """Run provisioning steps in order, skipping the ones already done.

    Fails fast: the first action that raises stops the run, and nothing
    already on disk is rolled back. Running the same list again resumes at
    the first step whose probe is still False.
    """

    ui: Ui | None = None
    ledger: StepLedger | None = None

    def _say(self, message: str) -> None:
        if self.ui is not None:
            self.ui.log(message)

    def _fail(self, report: RunReport, step: ProvisioningStep, exc: Exception, elapsed: float) -> StepFailedError:
        logger.error("Step %s failed after %.1fs: %s", step.name, elapsed, exc)
        report.outcomes.append(StepOutcome(step.name, StepStatus.FAILED, elapsed, str(exc)))
        if self.ledger is not None:
            self.ledger.record_failure(step.name, str(exc))
        done = tuple(o.name for o in report.outcomes if o.status != StepStatus.FAILED)
        return StepFailedError(step.name, exc, completed=done)

    def run(self, steps: Sequence[ProvisioningStep]) -> RunReport:
        _check_unique(steps)
        report = RunReport()
        total = len(steps)
        for i, step in enumerate(steps, start=1):
            label = f"Step {i}/{total} - {step.description or step.name}"
            logger.info(label)

            # A probe can shell out (conda env list) and fail like an action does.
            try:
                already_done = step.probe()
            except Exception as exc:
                raise self._fail(report, step, exc, 0.0) from exc

            if already_done:
                logger.info("%s already complete, skipping", step.name)
                self._say(f"[green]{label}: already done, skipping.[/green]")
                report.outcomes.append(StepOutcome(step.name, StepStatus.SKIPPED))
                if self.ledger is not None and not self.ledger.is_step_recorded(step.name):
                    self.ledger.record_step(step.name, StepStatus.SKIPPED.value)
                continue

            self._say(f"[bold]{label}[/bold]")
            started = time.monotonic()
            try:
                step.action()
                if not step.probe():
                    raise IncompleteStepError(f"{step.name}: action finished but output is missing")
            except Exception as exc:
                raise self._fail(report, step, exc, time.monotonic() - started) from exc

            elapsed = time.monotonic() - started
            report.outcomes.append(StepOutcome(step.name, StepStatus.COMPLETED, elapsed))
            if self.ledger is not None:
                self.ledger.record_step(
                    step.name, StepStatus.COMPLETED.value, meta={"duration_s": round(elapsed, 3)}
                )
            self._say(f"[green]{label}: done ({elapsed:.1f}s).[/green]")
        return report

    def status(self, steps: Sequence[ProvisioningStep]) -> list[tuple[ProvisioningStep, bool]]:
        """Probe every step without running any action."""
        _check_unique(steps)
        return [(step, bool(step.probe())) for step in steps]
