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


"""Command runner: one bounded, cancellable external process per call.

Uses subprocess instead of sh because the orchestrator needs stdout and
stderr kept apart, an exit-code allow-list, and the ability to terminate an
in-flight process when the operator interrupts the run.
"""

from __future__ import annotations

import os
import shlex
import subprocess
import threading
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from gpu_provisioner import logger
from gpu_provisioner.constants import (
    CANCEL_CHECK_INTERVAL_SECONDS,
    DEFAULT_COMMAND_TIMEOUT_SECONDS,
    TERMINATE_GRACE_SECONDS,
)
from gpu_provisioner.errors import Cancelled, ExecutionTimeout, LaunchFailure, UnexpectedExitCode


class CancelToken:
    """Run-wide cancellation flag, set from a signal handler."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to *seconds*; return True early if cancelled."""
        return self._event.wait(seconds)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise Cancelled()


@dataclass(frozen=True)
class CommandResult:
    """Captured outcome of a finished command.

    Attributes:
        command: The argv that was executed.
        exit_code: Process exit status.
        stdout: Captured standard output.
        stderr: Captured standard error.
        duration: Wall-clock seconds the process ran.
    """

    command: tuple[str, ...]
    exit_code: int
    stdout: str
    stderr: str
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class CommandRunner:
    """Execute external binaries with a timeout and an accepted exit-code set.

    Args:
        cancel_token: Token checked while a process is running.
        default_timeout: Timeout used when a call does not pass one.
    """

    def __init__(
        self,
        cancel_token: CancelToken | None = None,
        default_timeout: float = DEFAULT_COMMAND_TIMEOUT_SECONDS,
    ) -> None:
        self.cancel_token = cancel_token or CancelToken()
        self.default_timeout = default_timeout

    def run(
        self,
        command: Sequence[str],
        timeout: float | None = None,
        expected_exit_codes: Sequence[int] = (0,),
        *,
        input_text: str | None = None,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
    ) -> CommandResult:
        """Run *command* once and return its captured result.

        Args:
            command: argv list; the first element is the executable.
            timeout: Seconds before the process is terminated.
            expected_exit_codes: Exit statuses treated as success.
            input_text: Optional text written to the process stdin.
            env: Extra environment variables layered over ``os.environ``.
            cwd: Working directory for the process.

        Returns:
            The CommandResult of the finished process.

        Raises:
            LaunchFailure: If the executable cannot be started.
            ExecutionTimeout: If the deadline elapses.
            UnexpectedExitCode: If the exit status is not accepted.
            Cancelled: If the cancel token is set before or during the call.
        """
        argv = [str(part) for part in command]
        timeout = self.default_timeout if timeout is None else timeout
        self.cancel_token.raise_if_cancelled()

        proc_env = None
        if env:
            proc_env = os.environ.copy()
            proc_env.update(env)

        logger.debug("Running: %s (timeout=%ss)", shlex.join(argv), timeout)
        start = time.monotonic()
        try:
            proc = subprocess.Popen(
                argv,
                stdin=subprocess.PIPE if input_text is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                env=proc_env,
                cwd=cwd,
            )
        except (OSError, ValueError) as exc:
            raise LaunchFailure(argv, str(exc)) from exc

        deadline = start + timeout
        pending_input = input_text
        while True:
            remaining = max(deadline - time.monotonic(), 0.0)
            try:
                stdout, stderr = proc.communicate(
                    input=pending_input,
                    timeout=min(CANCEL_CHECK_INTERVAL_SECONDS, remaining),
                )
                break
            except subprocess.TimeoutExpired:
                pending_input = None
            if self.cancel_token.cancelled:
                self._terminate(proc)
                logger.warning("Cancelled: %s", shlex.join(argv))
                raise Cancelled(f"Cancelled while running '{shlex.join(argv)}'")
            if time.monotonic() >= deadline:
                stdout, stderr = self._terminate(proc)
                raise ExecutionTimeout(argv, timeout, stdout, stderr)

        result = CommandResult(
            command=tuple(argv),
            exit_code=proc.returncode,
            stdout=stdout or "",
            stderr=stderr or "",
            duration=time.monotonic() - start,
        )
        logger.debug("Exit %d after %.2fs: %s", result.exit_code, result.duration, argv[0])
        if result.exit_code not in expected_exit_codes:
            raise UnexpectedExitCode(argv, result.exit_code, expected_exit_codes, result.stdout, result.stderr)
        return result

    @staticmethod
    def _terminate(proc: subprocess.Popen) -> tuple[str, str]:
        """Terminate *proc*, killing it after a grace period, and drain its output."""
        proc.terminate()
        try:
            stdout, stderr = proc.communicate(timeout=TERMINATE_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            proc.kill()
            stdout, stderr = proc.communicate()
        return stdout or "", stderr or ""
