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


from __future__ import annotations

from gpu_provisioner.orchestrator import Orchestrator, RunOutcome, RunResult
from gpu_provisioner.phase import Phase, PhaseOutcome, Readiness
from gpu_provisioner.plan import PlanVariant, ProvisioningPlan
from gpu_provisioner.poller import Severity
from gpu_provisioner.probe import Tristate
from tests.conftest import FakeRunner, make_snapshot


def _plan(*phases):
    return ProvisioningPlan(PlanVariant.BARE_METAL, tuple(phases))


def _step(name, **kwargs):
    kwargs.setdefault("action", lambda ctx: ctx.runner.run(["echo", name]))
    return Phase(name, f"Running {name}", **kwargs)


def test_all_phases_succeed_in_order(context, runner: FakeRunner):
    result = Orchestrator(context).run(_plan(_step("one"), _step("two"), _step("three")))
    assert result.succeeded
    assert [r.name for r in result.phases] == ["one", "two", "three"]
    assert all(r.outcome is PhaseOutcome.SUCCEEDED for r in result.phases)
    assert runner.calls == [["echo", "one"], ["echo", "two"], ["echo", "three"]]
    assert result.failed_phase is None


def test_required_precondition_stops_the_run(context, runner: FakeRunner):
    plan = _plan(
        _step("one"),
        _step("two", precondition=lambda ctx: False),
        _step("three"),
    )
    result = Orchestrator(context).run(plan)
    assert result.outcome is RunOutcome.FAILED
    assert result.failed_phase == "two"
    assert result.failure_reason.startswith("precondition unmet")
    assert result.error_kind == "PreconditionUnmet"
    assert [r.outcome for r in result.phases] == [PhaseOutcome.SUCCEEDED, PhaseOutcome.FAILED_FATAL]
    assert not runner.ran("echo", "three")



def test_unexpected_exception_still_yields_a_result(context, runner: FakeRunner):
    def _broken(ctx):
        raise KeyError("status")

    result = Orchestrator(context).run(_plan(_step("one"), _step("two", action=_broken), _step("three")))
    assert result.outcome is RunOutcome.FAILED
    assert result.failed_phase == "two"
    assert result.error_kind == "KeyError"
    assert "status" in result.failure_reason
    assert not runner.ran("echo", "three")


def test_unparseable_kubectl_output_times_out_the_postcondition(context, runner: FakeRunner):
    runner.on("kubectl", "get", "pods", stdout="<html>proxy error</html>")
    pods = Readiness(lambda ctx: ctx.cluster.pods_ready("cert-manager"), 0.01, 0.02, description="cert-manager pods")
    result = Orchestrator(context).run(_plan(_step("one"), _step("pods", postcondition=pods), _step("three")))
    assert result.failed_phase == "pods"
    assert result.error_kind == "ReadinessTimedOut"
    assert "Unparseable output" in result.failure_reason

def test_soft_failures_do_not_stop_the_run(context):
    plan = _plan(
        _step("labels", postcondition=Readiness(lambda ctx: False, 0.01, 0.02, severity=Severity.SOFT)),
        _step("after"),
    )
    result = Orchestrator(context).run(plan)
    assert result.succeeded
    assert [r.outcome for r in result.phases] == [PhaseOutcome.FAILED_SOFT, PhaseOutcome.SUCCEEDED]
    assert result.warnings


def test_rerun_skips_completed_phases(context, runner: FakeRunner):
    installed: set[str] = set()

    def _guarded(name):
        def _action(ctx):
            ctx.runner.run(["install", name])
            installed.add(name)
        return _step(name, action=_action, exists=lambda ctx: name in installed)

    plan = _plan(_guarded("helm"), _guarded("cert-manager"))
    first = Orchestrator(context).run(plan)
    mutations = len(runner.calls)
    second = Orchestrator(context).run(plan)

    assert first.succeeded and second.succeeded
    assert [r.outcome for r in second.phases] == [PhaseOutcome.SKIPPED, PhaseOutcome.SKIPPED]
    assert len(runner.calls) == mutations


def test_cancellation_is_recorded_at_the_next_boundary(context, runner: FakeRunner):
    plan = _plan(
        _step("one", action=lambda ctx: ctx.cancel_token.cancel()),
        _step("two"),
        _step("three"),
    )
    result = Orchestrator(context).run(plan)
    assert result.outcome is RunOutcome.FAILED
    assert [r.name for r in result.phases] == ["one", "two"]
    assert result.phases[-1].outcome is PhaseOutcome.FAILED_FATAL
    assert result.phases[-1].reason == "Cancelled"
    assert result.error_kind == "Cancelled"
    assert runner.calls == []


def test_refresh_env_reprobes_before_the_phase(context):
    class _Prober:
        probes = 0

        def probe(self):
            _Prober.probes += 1
            return make_snapshot(swap_active=Tristate.NO)

    swapped = context.with_env(make_snapshot(swap_active=Tristate.YES))
    plan = _plan(
        _step("disable-swap"),
        _step(
            "init",
            precondition=lambda ctx: ctx.env.swap_active is not Tristate.YES,
            refresh_env=True,
        ),
    )
    result = Orchestrator(swapped, prober=_Prober()).run(plan)
    assert result.succeeded
    assert _Prober.probes == 1


def test_without_refresh_the_initial_snapshot_is_used(context):
    swapped = context.with_env(make_snapshot(swap_active=Tristate.YES))
    plan = _plan(_step("init", precondition=lambda ctx: ctx.env.swap_active is not Tristate.YES))
    result = Orchestrator(swapped).run(plan)
    assert result.failed_phase == "init"


def test_durations_come_from_the_clock(context):
    ticks = iter([10.0, 12.5])
    result = Orchestrator(context, clock=lambda: next(ticks)).run(_plan(_step("one")))
    assert result.phases[0].duration_seconds == 2.5


def test_run_result_serializes_to_json(context):
    result = Orchestrator(context).run(_plan(_step("one"), _step("two", precondition=lambda ctx: False)))
    restored = RunResult.model_validate_json(result.model_dump_json())
    assert restored == result
    assert restored.phases[1].outcome is PhaseOutcome.FAILED_FATAL
    assert restored.variant is PlanVariant.BARE_METAL
