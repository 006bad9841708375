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

import pytest

from gpu_provisioner.config import EnvironmentChoice
from gpu_provisioner.errors import UnsupportedEnvironment
from gpu_provisioner.phase import Phase
from gpu_provisioner.plan import PlanVariant, ProvisioningPlan, build_plan, select_variant
from gpu_provisioner.probe import Tristate
from tests.conftest import make_config, make_snapshot

SHARED_TAIL = [
    "verify-cluster-access",
    "install-helm",
    "install-cert-manager",
    "install-gpu-operator",
    "apply-device-config",
    "wait-gpu-node-labels",
    "install-metallb",
    "configure-metallb-pool",
    "check-gpu-capacity",
    "setup-model-storage",
    "deploy-inference",
    "expose-inference",
]


def test_bare_metal_plan():
    plan = build_plan(make_snapshot(), make_config())
    assert plan.variant is PlanVariant.BARE_METAL
    assert plan.names() == [
        "wait-package-manager",
        "disable-swap",
        "configure-kernel",
        "install-container-runtime",
        "install-kubernetes-packages",
        "init-control-plane",
        "install-pod-network",
        "untaint-control-plane",
        *SHARED_TAIL,
    ]


def test_containerized_plan():
    env = make_snapshot(containerized=True, systemd=Tristate.NO, docker_available=Tristate.UNKNOWN)
    plan = build_plan(env, make_config())
    assert plan.variant is PlanVariant.CONTAINERIZED_HOST
    assert plan.names() == [
        "wait-package-manager",
        "install-kubectl",
        "install-docker-cli",
        "install-kind",
        "create-kind-cluster",
        *SHARED_TAIL,
    ]


def test_forced_variant_overrides_detection():
    config = make_config(environment=EnvironmentChoice.CONTAINERIZED)
    assert select_variant(make_snapshot(containerized=False), config) is PlanVariant.CONTAINERIZED_HOST
    config = make_config(environment=EnvironmentChoice.BARE_METAL)
    assert select_variant(make_snapshot(containerized=True), config) is PlanVariant.BARE_METAL


def test_skip_flags_remove_phase_groups():
    config = make_config(skip_cluster_creation=True, skip_gpu_operator=True, skip_metallb=True)
    plan = build_plan(make_snapshot(), config)
    assert plan.names() == [
        "verify-cluster-access",
        "install-helm",
        "check-gpu-capacity",
        "setup-model-storage",
        "deploy-inference",
        "expose-inference",
    ]


def test_containerized_without_cluster_creation_keeps_kubectl():
    env = make_snapshot(containerized=True, docker_available=Tristate.NO)
    plan = build_plan(env, make_config(skip_cluster_creation=True, skip_inference=True))
    assert plan.names()[:2] == ["wait-package-manager", "install-kubectl"]
    assert "create-kind-cluster" not in plan.names()


def test_model_directory_is_prepared_where_the_node_runs(context_factory, runner):
    config = make_config()
    env = make_snapshot(containerized=True, docker_available=Tristate.YES)
    kind_plan = build_plan(env, config)
    storage = next(p for p in kind_plan.phases if p.name == "setup-model-storage")
    storage.action(context_factory(env, config))
    assert runner.ran("docker", "exec", "amd-gpu-cluster-control-plane", "mkdir", "-p", "/mnt/data/llama")
    assert runner.ran("kubectl", "apply", "-f", "-")

    runner.calls.clear()
    metal_plan = build_plan(make_snapshot(), config)
    storage = next(p for p in metal_plan.phases if p.name == "setup-model-storage")
    storage.action(context_factory(make_snapshot(), config))
    assert runner.ran("mkdir", "-p", "/mnt/data/llama")
    assert not runner.ran("docker")


def test_unsupported_environment_lists_every_reason():
    env = make_snapshot(is_root=False, os_id="fedora", os_like=(), memory_total_mb=1024, systemd=Tristate.NO)
    with pytest.raises(UnsupportedEnvironment) as excinfo:
        build_plan(env, make_config())
    reasons = excinfo.value.reasons
    assert len(reasons) == 4
    assert any("root" in reason for reason in reasons)
    assert any("fedora" in reason for reason in reasons)
    assert any("1024 MiB" in reason for reason in reasons)
    assert any("systemd" in reason for reason in reasons)


def test_containerized_host_needs_a_container_runtime():
    env = make_snapshot(containerized=True, docker_available=Tristate.NO)
    with pytest.raises(UnsupportedEnvironment) as excinfo:
        build_plan(env, make_config())
    assert "container runtime" in excinfo.value.reasons[0]


def test_unsupported_architecture():
    with pytest.raises(UnsupportedEnvironment) as excinfo:
        build_plan(make_snapshot(architecture="riscv64"), make_config())
    assert "riscv64" in str(excinfo.value)


def test_plan_rejects_duplicate_phase_names():
    with pytest.raises(ValueError):
        ProvisioningPlan(PlanVariant.BARE_METAL, (Phase("a", "a"), Phase("a", "again")))
