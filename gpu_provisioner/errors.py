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


"""Structured error taxonomy shared by the runner, poller, phases, and plan builder."""

from __future__ import annotations

import shlex
from collections.abc import Sequence


class ProvisionError(Exception):
    """Base class for every failure the orchestrator knows how to record."""

    @property
    def kind(self) -> str:
        return type(self).__name__


class PreconditionUnmet(ProvisionError):
    """A required precondition did not hold."""


class Cancelled(ProvisionError):
    """The run was interrupted by the operator."""

    def __init__(self, message: str = "Cancelled") -> None:
        super().__init__(message)


class UnsupportedEnvironment(ProvisionError):
    """The probed host cannot be provisioned by any plan variant."""

    def __init__(self, reasons: Sequence[str]) -> None:
        self.reasons = list(reasons)
        super().__init__("Unsupported environment: " + "; ".join(self.reasons))


class ReadinessTimedOut(ProvisionError):
    """A postcondition was not satisfied before its deadline."""

    def __init__(self, description: str, severity: str, deadline: float, last_error: str | None = None) -> None:
        self.description = description
        self.severity = severity
        self.deadline = deadline
        self.last_error = last_error
        message = f"{description} not ready after {deadline:g}s ({severity})"
        if last_error:
            message += f": {last_error}"
        super().__init__(message)


class CommandError(ProvisionError):
    """Base class for failures reported by the command runner."""

    def __init__(self, command: Sequence[str], message: str, stdout: str = "", stderr: str = "") -> None:
        self.command = list(command)
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(message)

    @property
    def command_line(self) -> str:
        return shlex.join(self.command)


class LaunchFailure(CommandError):
    """The executable could not be started."""

    def __init__(self, command: Sequence[str], reason: str) -> None:
        self.reason = reason
        super().__init__(command, f"Failed to launch '{shlex.join(command)}': {reason}")


class ExecutionTimeout(CommandError):
    """The command exceeded its deadline and was terminated."""

    def __init__(self, command: Sequence[str], timeout: float, stdout: str = "", stderr: str = "") -> None:
        self.timeout = timeout
        super().__init__(command, f"'{shlex.join(command)}' timed out after {timeout:g}s", stdout, stderr)


class UnexpectedExitCode(CommandError):
    """The command exited with a status outside the accepted set."""

    def __init__(
        self,
        command: Sequence[str],
        exit_code: int,
        expected: Sequence[int],
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        self.exit_code = exit_code
        self.expected = tuple(expected)
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else ""
        message = f"'{shlex.join(command)}' exited with {exit_code}"
        if detail:
            message += f": {detail[:200]}"
        super().__init__(command, message, stdout, stderr)


class MalformedOutput(CommandError):
    """The command succeeded but its output could not be parsed."""

    def __init__(self, command: Sequence[str], reason: str, stdout: str = "") -> None:
        self.reason = reason
        super().__init__(command, f"Unparseable output from '{shlex.join(command)}': {reason}", stdout)
