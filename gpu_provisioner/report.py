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


"""Operator-facing reports and the persisted run state."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import ValidationError
from rich.markup import escape
from rich.table import Table

from gpu_provisioner import console, logger
from gpu_provisioner.constants import LAST_RUN_NAME, RUN_LOG_NAME

if TYPE_CHECKING:
    from gpu_provisioner.orchestrator import RunResult
    from gpu_provisioner.plan import ProvisioningPlan
    from gpu_provisioner.probe import EnvironmentSnapshot

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_OUTCOME_COLORS = {
    "succeeded": "green",
    "skipped": "cyan",
    "failed-soft": "yellow",
    "failed-fatal": "red",
}


# ============================================================================
# Persisted state
# ============================================================================

class RunStore:
    """Keeps the last RunResult as JSON in the state directory.

    Args:
        state_dir: Directory holding ``last-run.json`` and ``run.log``.
    """

    def __init__(self, state_dir: Path) -> None:
        self.state_dir = Path(state_dir).expanduser()

    @property
    def last_run_path(self) -> Path:
        return self.state_dir / LAST_RUN_NAME

    @property
    def run_log_path(self) -> Path:
        return self.state_dir / RUN_LOG_NAME

    def save(self, result: RunResult) -> Path:
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self.last_run_path.write_text(result.model_dump_json(indent=2) + "\n")
        logger.debug("Saved run result to %s", self.last_run_path)
        return self.last_run_path

    def load(self) -> RunResult | None:
        """Return the last saved RunResult, or None if there is none.

        Raises:
            ValueError: If the saved file is not a valid RunResult.
        """
        from gpu_provisioner.orchestrator import RunResult

        if not self.last_run_path.exists():
            return None
        try:
            return RunResult.model_validate_json(self.last_run_path.read_text())
        except ValidationError as err:
            raise ValueError(f"Corrupt run state in {self.last_run_path}: {err}") from err


@contextmanager
def run_log(path: Path) -> Iterator[Path]:
    """Mirror package log records into *path* for the duration of the block."""
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    try:
        yield path
    finally:
        logger.removeHandler(handler)
        handler.close()


# ============================================================================
# Rendering
# ============================================================================

def render_summary(result: RunResult) -> None:
    """Print the per-phase outcome table and the overall verdict."""
    table = Table(title=f"Provisioning run ({result.variant.value})", show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Phase")
    table.add_column("Outcome")
    table.add_column("Duration", justify="right")
    table.add_column("Details")
    for index, record in enumerate(result.phases, start=1):
        color = _OUTCOME_COLORS.get(record.outcome.value, "white")
        details = record.reason
        if record.warnings and not details:
            details = f"{len(record.warnings)} warning(s)"
        table.add_row(
            str(index),
            record.name,
            f"[{color}]{record.outcome.value}[/{color}]",
            f"{record.duration_seconds:.1f}s",
            escape(details),
        )
    console.print(table)

    if result.succeeded:
        console.print("[green]\u2705 Provisioning completed successfully[/green]")
        for warning in result.warnings:
            console.print(f"[yellow]   {escape(warning)}[/yellow]")
    else:
        console.print(
            f"[red]\u274c Provisioning failed at {result.failed_phase}: "
            f"{escape(result.failure_reason or '')} ({result.error_kind})[/red]"
        )


def render_plan(plan: ProvisioningPlan) -> None:
    """Print the phases of *plan* without executing anything."""
    table = Table(title=f"Plan ({plan.variant.value})", show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Phase")
    table.add_column("Description")
    table.add_column("Idempotent")
    table.add_column("Waits for")
    for index, phase in enumerate(plan.phases, start=1):
        waits = "-"
        if phase.postcondition is not None:
            readiness = phase.postcondition
            waits = f"{readiness.description} ({readiness.severity.value}, {readiness.deadline:g}s)"
        table.add_row(
            str(index),
            phase.name,
            phase.description,
            "yes" if phase.exists is not None else "no",
            waits,
        )
    console.print(table)


def render_snapshot(snapshot: EnvironmentSnapshot) -> None:
    """Print the host facts as a readiness report."""
    table = Table(title="Environment", show_header=True, header_style="bold")
    table.add_column("Check")
    table.add_column("Value")
    for name, value in snapshot.facts().items():
        table.add_row(name, value)
    console.print(table)
    for device in snapshot.gpu_devices:
        console.print(f"[green]  \u2713 {escape(device)}[/green]")
