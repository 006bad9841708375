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


"""Phase: one named unit of provisioning work with pre- and postconditions."""

from __future__ import annotations

import dataclasses
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from rich.markup import escape

from gpu_provisioner import console, logger
from gpu_provisioner.config import StackConfig
from gpu_provisioner.errors import Cancelled, PreconditionUnmet, ProvisionError, ReadinessTimedOut
from gpu_provisioner.guard import IdempotencyGuard
from gpu_provisioner.kube import ClusterClient, HelmClient
from gpu_provisioner.poller import Severity, wait_for
from gpu_provisioner.probe import EnvironmentSnapshot
from gpu_provisioner.runner import CancelToken, CommandRunner


class PhaseOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED_FATAL = "failed-fatal"
    FAILED_SOFT = "failed-soft"


@dataclass(frozen=True)
class PhaseContext:
    """Everything a phase may read or call; replaced, never mutated."""

    env: EnvironmentSnapshot
    runner: CommandRunner
    cluster: ClusterClient
    helm: HelmClient
    guard: IdempotencyGuard
    config: StackConfig
    cancel_token: CancelToken

    def with_env(self, env: EnvironmentSnapshot) -> PhaseContext:
        return dataclasses.replace(self, env=env)


@dataclass(frozen=True)
class Readiness:
    """A postcondition polled after the action.

    Attributes:
        check: Read-only predicate over the context.
        interval: Seconds between checks.
        deadline: Seconds before the wait gives up.
        severity: Whether a timeout fails the run or only warns.
        description: What is being waited for, used in messages.
    """

    check: Callable[[PhaseContext], bool]
    interval: float
    deadline: float
    severity: Severity = Severity.HARD
    description: str = "postcondition"


@dataclass(frozen=True)
class PhaseReport:
    """Outcome of one phase execution."""

    outcome: PhaseOutcome
    reason: str = ""
    error_kind: str | None = None
    warnings: tuple[str, ...] = ()

    @classmethod
    def cancelled(cls, warnings: tuple[str, ...] = ()) -> PhaseReport:
        return cls(PhaseOutcome.FAILED_FATAL, "Cancelled", Cancelled.__name__, warnings)

    @classmethod
    def unexpected(cls, err: Exception, warnings: tuple[str, ...] = ()) -> PhaseReport:
        """Fatal report for an exception outside the provisioning error taxonomy."""
        kind = type(err).__name__
        return cls(PhaseOutcome.FAILED_FATAL, f"unexpected {kind}: {err}", kind, warnings)


@dataclass(frozen=True)
class Phase:
    """A named, orderable unit of provisioning work.

    Attributes:
        name: Stable identifier, unique within a plan.
        description: One-line summary shown to the operator.
        action: Side-effecting operation, or None for verify-only phases.
        precondition: Read-only predicate evaluated first.
        precondition_reason: Message used when the precondition does not hold.
        precondition_required: Whether an unmet precondition is fatal.
        exists: Idempotency check; True means the work is already done.
        skip_on_exists: Skip the action when ``exists`` returns True.
        postcondition: Readiness polled after the action.
        best_effort: Action failures become soft instead of fatal.
        refresh_env: Re-probe the host before this phase runs.
    """

    name: str
    description: str
    action: Callable[[PhaseContext], None] | None = None
    precondition: Callable[[PhaseContext], bool] | None = None
    precondition_reason: str = ""
    precondition_required: bool = True
    exists: Callable[[PhaseContext], bool] | None = None
    skip_on_exists: bool = True
    postcondition: Readiness | None = None
    best_effort: bool = False
    refresh_env: bool = False

    def execute(self, ctx: PhaseContext) -> PhaseReport:
        """Run precondition, idempotency check, action, and postcondition in order."""
        warnings: list[str] = []
        try:
            return self._execute(ctx, warnings)
        except Cancelled:
            logger.warning("Phase %s cancelled", self.name)
            return PhaseReport.cancelled(tuple(warnings))
        except Exception as err:
            logger.exception("Phase %s raised an unexpected error", self.name)
            return PhaseReport.unexpected(err, tuple(warnings))

    def _execute(self, ctx: PhaseContext, warnings: list[str]) -> PhaseReport:
        if self.precondition is not None:
            try:
                met = self.precondition(ctx)
            except Cancelled:
                raise
            except ProvisionError as err:
                met = False
                warnings.append(f"precondition check failed: {err}")
            if not met:
                reason = "precondition unmet"
                if self.precondition_reason:
                    reason += f": {self.precondition_reason}"
                if self.precondition_required:
                    return self._fatal(reason, PreconditionUnmet.__name__, warnings)
                self._warn(reason, warnings)

        if self.exists is not None and self.skip_on_exists:
            try:
                already_done = self.exists(ctx)
            except Cancelled:
                raise
            except ProvisionError as err:
                return self._fatal(f"existence check failed: {err}", err.kind, warnings)
            if already_done:
                console.print(f"[yellow]   {self.name}: already present, skipping[/yellow]")
                return PhaseReport(PhaseOutcome.SKIPPED, "already present", None, tuple(warnings))

        action_error: ProvisionError | None = None
        if self.action is not None:
            try:
                self.action(ctx)
            except Cancelled:
                raise
            except (ProvisionError, OSError) as err:
                kind = err.kind if isinstance(err, ProvisionError) else type(err).__name__
                if not self.best_effort:
                    return self._fatal(str(err), kind, warnings)
                self._warn(f"best-effort action failed: {err}", warnings)
                action_error = err if isinstance(err, ProvisionError) else ProvisionError(str(err))

        if self.postcondition is not None:
            readiness = self.postcondition
            result = wait_for(
                lambda: readiness.check(ctx),
                readiness.interval,
                readiness.deadline,
                cancel_token=ctx.cancel_token,
                description=readiness.description,
            )
            if result.timed_out:
                err = ReadinessTimedOut(
                    readiness.description, readiness.severity.value, readiness.deadline, result.last_error,
                )
                if readiness.severity is Severity.HARD:
                    return self._fatal(str(err), err.kind, warnings)
                self._warn(str(err), warnings)
                return PhaseReport(PhaseOutcome.FAILED_SOFT, str(err), err.kind, tuple(warnings))

        if action_error is not None:
            return PhaseReport(PhaseOutcome.FAILED_SOFT, str(action_error), action_error.kind, tuple(warnings))
        return PhaseReport(PhaseOutcome.SUCCEEDED, "", None, tuple(warnings))

    def _fatal(self, reason: str, kind: str, warnings: list[str]) -> PhaseReport:
        logger.error("Phase %s failed: %s", self.name, reason)
        return PhaseReport(PhaseOutcome.FAILED_FATAL, reason, kind, tuple(warnings))

    def _warn(self, message: str, warnings: list[str]) -> None:
        logger.warning("Phase %s: %s", self.name, message)
        console.print(f"[yellow]\u26a0\ufe0f  {escape(message)}[/yellow]")
        warnings.append(message)


def resource_exists(kind: str, identifier: str, namespace: str | None = None) -> Callable[[PhaseContext], bool]:
    """Build an ``exists`` check that delegates to the idempotency guard."""
    def _exists(ctx: PhaseContext) -> bool:
        return ctx.guard.exists(kind, identifier, namespace)
    return _exists
