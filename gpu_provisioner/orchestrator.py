# /*
# Copyright 2026 The GPU Provisioner Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */


"""Orchestrator: walk a provisioning plan phase by phase and record the run."""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict
from rich.markup import escape
from rich.panel import Panel

from gpu_provisioner import console, logger
from gpu_provisioner.errors import Cancelled
from gpu_provisioner.phase import PhaseContext, PhaseOutcome, PhaseReport
from gpu_provisioner.plan import PlanVariant, ProvisioningPlan
from gpu_provisioner.probe import EnvironmentProber
from gpu_provisioner.report import render_summary

_OUTCOME_STYLE = {
    PhaseOutcome.SUCCEEDED: "[green]\u2705 {name} succeeded[/green]",
    PhaseOutcome.SKIPPED: "[green]\u2713 {name} already done, skipped[/green]",
    PhaseOutcome.FAILED_SOFT: "[yellow]\u26a0\ufe0f  {name} finished with warnings: {reason}[/yellow]",
    PhaseOutcome.FAILED_FATAL: "[red]\u274c {name} failed: {reason}[/red]",
}


class RunOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class PhaseRecord(BaseModel):
    """What happened to one phase during a run."""

    model_config = ConfigDict(frozen=True)

    name: str
    outcome: PhaseOutcome
    duration_seconds: float = 0.0
    reason: str = ""
    error_kind: str | None = None
    warnings: tuple[str, ...] = ()


class RunResult(BaseModel):
    """Immutable record of one orchestrator run.

    Attributes:
        variant: Plan variant that was executed.
        started_at: UTC start time.
        finished_at: UTC finish time.
        phases: One record per phase that was reached, in plan order.
        outcome: ``success`` unless a phase failed fatally.
        failed_phase: Name of the fatal phase, if any.
        failure_reason: Reason recorded by the fatal phase.
        error_kind: Error kind recorded by the fatal phase.
    """

    model_config = ConfigDict(frozen=True)

    variant: PlanVariant
    started_at: datetime
    finished_at: datetime
    phases: tuple[PhaseRecord, ...] = ()
    outcome: RunOutcome = RunOutcome.SUCCESS
    failed_phase: str | None = None
    failure_reason: str | None = None
    error_kind: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is RunOutcome.SUCCESS

    @property
    def warnings(self) -> list[str]:
        return [f"{record.name}: {warning}" for record in self.phases for warning in record.warnings]


class Orchestrator:
    """Execute a ProvisioningPlan strictly in order.

    The first fatal phase ends the run. Phases are never retried and nothing
    is rolled back.

    Args:
        context: Initial phase context, including the run's cancel token.
        prober: Re-probes the host before phases flagged ``refresh_env``.
        clock: Monotonic clock used for phase durations.
    """

    def __init__(
        self,
        context: PhaseContext,
        prober: EnvironmentProber | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.context = context
        self.prober = prober
        self.clock = clock

    def run(self, plan: ProvisioningPlan) -> RunResult:
        """Run every phase of *plan* until one fails fatally or the run is cancelled."""
        started_at = datetime.now(timezone.utc)
        ctx = self.context
        records: list[PhaseRecord] = []
        total = len(plan.phases)
        logger.info("Starting %s run with %d phases", plan.variant.value, total)

        for index, phase in enumerate(plan.phases, start=1):
            if ctx.cancel_token.cancelled:
                logger.warning("Run cancelled before phase %s", phase.name)
                records.append(self._record(phase.name, PhaseReport.cancelled(), 0.0))
                break

            console.print(Panel.fit(f"[{index}/{total}] {phase.description}", style="bold blue"))
            started = self.clock()
            try:
                if phase.refresh_env and self.prober is not None:
                    ctx = ctx.with_env(self.prober.probe())
                report = phase.execute(ctx)
            except Cancelled:
                report = PhaseReport.cancelled()
            except Exception as err:
                logger.exception("Refreshing the environment before %s failed", phase.name)
                report = PhaseReport.unexpected(err)
            record = self._record(phase.name, report, self.clock() - started)
            records.append(record)
            console.print(_OUTCOME_STYLE[record.outcome].format(name=record.name, reason=escape(record.reason)))
            if record.outcome is PhaseOutcome.FAILED_FATAL:
                break

        self.context = ctx
        fatal = next((r for r in records if r.outcome is PhaseOutcome.FAILED_FATAL), None)
        result = RunResult(
            variant=plan.variant,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            phases=tuple(records),
            outcome=RunOutcome.FAILED if fatal else RunOutcome.SUCCESS,
            failed_phase=fatal.name if fatal else None,
            failure_reason=fatal.reason if fatal else None,
            error_kind=fatal.error_kind if fatal else None,
        )
        logger.info("Run finished: %s", result.outcome.value)
        render_summary(result)
        return result

    @staticmethod
    def _record(name: str, report: PhaseReport, duration: float) -> PhaseRecord:
        logger.info("Phase %s: %s %s", name, report.outcome.value, report.reason)
        return PhaseRecord(
            name=name,
            outcome=report.outcome,
            duration_seconds=round(duration, 3),
            reason=report.reason,
            error_kind=report.error_kind,
            warnings=report.warnings,
        )
