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


"""Shared fixtures: a scripted command runner, snapshots, and phase contexts."""

from __future__ import annotations

import os
from collections.abc import Callable, Sequence
from pathlib import Path

import pytest

from gpu_provisioner.config import ClusterConfig, GpuOperatorConfig, InferenceConfig, RunConfig, StackConfig
from gpu_provisioner.errors import UnexpectedExitCode
from gpu_provisioner.guard import IdempotencyGuard
from gpu_provisioner.kube import ClusterClient, HelmClient
from gpu_provisioner.phase import PhaseContext
from gpu_provisioner.probe import EnvironmentSnapshot, Tristate
from gpu_provisioner.runner import CancelToken, CommandResult


class FakeRunner:
    """Records every command and replays scripted results.

    Responses are matched on argv prefix; the most recently registered match
    wins. Unmatched commands succeed with empty output.
    """

    def __init__(self, cancel_token: CancelToken | None = None) -> None:
        self.cancel_token = cancel_token or CancelToken()
        self.calls: list[list[str]] = []
        self.inputs: list[str | None] = []
        self._responses: list[tuple[tuple[str, ...], object]] = []

    def on(
        self,
        *prefix: str,
        stdout: str = "",
        stderr: str = "",
        exit_code: int = 0,
        error: Exception | None = None,
        handler: Callable[[list[str]], tuple[str, str, int]] | None = None,
    ) -> None:
        response: object = error or handler or (stdout, stderr, exit_code)
        self._responses.append((tuple(prefix), response))

    def run(
        self,
        command: Sequence[str],
        timeout: float | None = None,
        expected_exit_codes: Sequence[int] = (0,),
        *,
        input_text: str | None = None,
        env=None,
        cwd=None,
    ) -> CommandResult:
        argv = [str(part) for part in command]
        self.cancel_token.raise_if_cancelled()
        self.calls.append(argv)
        self.inputs.append(input_text)
        stdout, stderr, exit_code = "", "", 0
        for prefix, response in reversed(self._responses):
            if tuple(argv[:len(prefix)]) != prefix:
                continue
            if isinstance(response, Exception):
                raise response
            if callable(response):
                response = response(argv)
            stdout, stderr, exit_code = response
            break
        if exit_code not in expected_exit_codes:
            raise UnexpectedExitCode(argv, exit_code, expected_exit_codes, stdout, stderr)
        return CommandResult(tuple(argv), exit_code, stdout, stderr)

    def ran(self, *prefix: str) -> bool:
        return any(tuple(call[:len(prefix)]) == prefix for call in self.calls)


def make_snapshot(**overrides) -> EnvironmentSnapshot:
    """A supported Ubuntu bare-metal host with one GPU, unless overridden."""
    values = dict(
        containerized=False,
        systemd=Tristate.YES,
        package_lock_busy=Tristate.NO,
        gpu_present=Tristate.YES,
        swap_active=Tristate.NO,
        docker_available=Tristate.NO,
        memory_total_mb=16384,
        memory_available_mb=12000,
        os_id="ubuntu",
        os_version="22.04",
        os_like=("debian",),
        architecture="x86_64",
        is_root=True,
        gpu_devices=("03:00.0 Display controller [0380]: AMD [1002:74a1]",),
    )
    values.update(overrides)
    return EnvironmentSnapshot(**values)


def make_config(state_dir: Path | None = None, **run_overrides) -> StackConfig:
    run = RunConfig()
    updates = dict(run_overrides)
    if state_dir is not None:
        updates["state_dir"] = state_dir
    if updates:
        run = run.model_copy(update=updates)
    return StackConfig(cluster=ClusterConfig(), gpu=GpuOperatorConfig(), inference=InferenceConfig(), run=run)


@pytest.fixture(autouse=True)
def _clean_settings_env(monkeypatch):
    """Keep GPU_STACK_* variables from the developer's shell out of the tests."""
    for name in list(os.environ):
        if name.startswith("GPU_STACK_"):
            monkeypatch.delenv(name)


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def commands() -> set[str]:
    """Binaries the guard reports as present on PATH."""
    return set()


@pytest.fixture
def context_factory(runner, commands, tmp_path):
    """Build a PhaseContext around the fake runner."""
    def _factory(env: EnvironmentSnapshot | None = None, config: StackConfig | None = None) -> PhaseContext:
        cluster = ClusterClient(runner)
        helm = HelmClient(runner)
        guard = IdempotencyGuard(runner, cluster, helm, command_lookup=commands.__contains__, root=tmp_path)
        return PhaseContext(
            env=env or make_snapshot(),
            runner=runner,
            cluster=cluster,
            helm=helm,
            guard=guard,
            config=config or make_config(tmp_path / "state"),
            cancel_token=runner.cancel_token,
        )
    return _factory


@pytest.fixture
def context(context_factory) -> PhaseContext:
    return context_factory()
