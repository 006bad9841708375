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


"""Readiness poller: the single bounded-retry wait primitive."""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from tenacity import (
    RetryError,
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    stop_after_delay,
    wait_fixed,
)

from gpu_provisioner import logger
from gpu_provisioner.errors import Cancelled, CommandError
from gpu_provisioner.runner import CancelToken


class Severity(str, Enum):
    """How a phase treats a postcondition that never became true."""

    HARD = "hard"
    SOFT = "soft"


@dataclass(frozen=True)
class WaitResult:
    """Outcome of a wait.

    Attributes:
        ready: True if the predicate returned True before the deadline.
        attempts: Number of predicate evaluations.
        elapsed: Wall-clock seconds spent waiting.
        last_error: Message of the last command error seen, if any.
    """

    ready: bool
    attempts: int
    elapsed: float
    last_error: str | None = None

    @property
    def timed_out(self) -> bool:
        return not self.ready


# Absorbs float error in quotients such as 0.3 / 0.1.
_QUOTIENT_EPSILON = 1e-9


def max_attempts(interval: float, deadline: float) -> int:
    """Number of evaluations needed to poll at t=0, interval, ... up to deadline."""
    return math.floor(deadline / interval + _QUOTIENT_EPSILON) + 1


def wait_for(
    predicate: Callable[[], bool],
    interval: float,
    deadline: float,
    *,
    cancel_token: CancelToken | None = None,
    description: str = "condition",
    sleep: Callable[[float], None] | None = None,
) -> WaitResult:
    """Poll *predicate* every *interval* seconds until it holds or *deadline* passes.

    The predicate is evaluated immediately, then after each sleep, at most
    ``floor(deadline / interval) + 1`` times, so a predicate that never
    holds is evaluated at t=0, interval, ... up to deadline. A predicate
    raising ``CommandError`` counts as not ready. Sleeping is interruptible through *cancel_token*.

    Args:
        predicate: Read-only check returning True when ready.
        interval: Seconds between evaluations.
        deadline: Seconds after which polling stops.
        cancel_token: Token that aborts the wait when set.
        description: Human-readable name used in log lines.
        sleep: Sleep function override.

    Returns:
        WaitResult describing whether the predicate became true.

    Raises:
        Cancelled: If the token is set while waiting.
        ValueError: If interval or deadline are out of range.
    """
    if interval <= 0:
        raise ValueError(f"interval must be positive, got {interval}")
    if deadline < 0:
        raise ValueError(f"deadline must not be negative, got {deadline}")

    token = cancel_token or CancelToken()

    def _interruptible_sleep(seconds: float) -> None:
        if token.wait(seconds):
            raise Cancelled(f"Cancelled while waiting for {description}")

    attempts = 0
    last_error: list[str] = []

    def _evaluate() -> bool:
        nonlocal attempts
        token.raise_if_cancelled()
        attempts += 1
        try:
            return bool(predicate())
        except CommandError as err:
            last_error.append(str(err))
            raise

    retrying = Retrying(
        retry=retry_if_result(lambda ok: not ok) | retry_if_exception_type(CommandError),
        wait=wait_fixed(interval),
        stop=stop_after_attempt(max_attempts(interval, deadline)) | stop_after_delay(deadline),
        sleep=sleep or _interruptible_sleep,
        before_sleep=before_sleep_log(logger, logging.DEBUG),
    )

    start = time.monotonic()
    try:
        ready = retrying(_evaluate)
    except RetryError:
        ready = False
    elapsed = time.monotonic() - start

    if ready:
        logger.info("%s ready after %d attempt(s)", description, attempts)
    else:
        logger.warning("%s not ready after %d attempt(s) (%.1fs)", description, attempts, elapsed)
    return WaitResult(
        ready=ready,
        attempts=attempts,
        elapsed=elapsed,
        last_error=last_error[-1] if last_error else None,
    )
