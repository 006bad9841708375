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

import dataclasses
import json

from gpu_provisioner import cluster, components, host, workload
from gpu_provisioner.phase import PhaseOutcome
from gpu_provisioner.probe import Tristate
from tests.conftest import FakeRunner, make_config, make_snapshot

NOT_FOUND = "Error from server (NotFound): not found"


def _by_name(phases):
    return {phase.name: phase for phase in phases}


def _ready_items(*extra):
    items = [{"status": {"phase": "Running", "conditions": [{"type": "Ready", "status": "True"}]}}, *extra]
    return json.dumps({"items": items})


def test_disable_swap_comments_out_fstab(context, runner: FakeRunner):
    phase = _by_name(host.bare_metal_phases())["disable-swap"]
    report = phase.execute(context.with_env(make_snapshot(swap_active=Tristate.YES)))
    assert report.outcome is PhaseOutcome.SUCCEEDED
    assert runner.calls[0] == ["swapoff", "-a"]
    assert runner.calls[1][:2] == ["sed", "-i"]
    assert runner.calls[1][-1] == "/etc/fstab"


def test_disable_swap_skipped_when_swap_is_off(context, runner: FakeRunner):
    phase = _by_name(host.bare_metal_phases())["disable-swap"]
    assert phase.execute(context).outcome is PhaseOutcome.SKIPPED
    assert runner.calls == []


def test_configure_kernel_writes_both_files(context, runner: FakeRunner):
    phase = _by_name(host.bare_metal_phases())["configure-kernel"]
    assert phase.execute(context).outcome is PhaseOutcome.SUCCEEDED
    written = {call[1]: text for call, text in zip(runner.calls, runner.inputs) if call[0] == "tee"}
    assert written["/etc/modules-load.d/k8s.conf"] == "overlay\nbr_netfilter\n"
    assert "net.ipv4.ip_forward = 1" in written["/etc/sysctl.d/k8s.conf"]
    assert runner.ran("sysctl", "--system")


def test_init_control_plane_refuses_with_active_swap(context, runner: FakeRunner):
    phase = _by_name(host.bare_metal_phases())["init-control-plane"]
    report = phase.execute(context.with_env(make_snapshot(swap_active=Tristate.YES)))
    assert report.outcome is PhaseOutcome.FAILED_FATAL
    assert report.reason == "precondition unmet: swap is still active"
    assert not runner.ran("kubeadm")


def test_no_bare_metal_phases_when_reusing_a_cluster():
    assert host.bare_metal_phases(create_cluster=False) == []


def test_containerd_uses_systemd_cgroups(context, runner: FakeRunner):
    runner.on("containerd", "config", "default", stdout="SystemdCgroup = false\n")
    phase = _by_name(host.bare_metal_phases())["install-container-runtime"]
    assert phase.execute(context).outcome is PhaseOutcome.SUCCEEDED
    config_index = runner.calls.index(["tee", "/etc/containerd/config.toml"])
    assert runner.inputs[config_index] == "SystemdCgroup = true\n"


def test_create_kind_cluster_pipes_config(context, runner: FakeRunner):
    runner.on("kind", "get", "clusters", stdout="")
    runner.on("kubectl", "get", "nodes", stdout=_ready_items())
    phase = _by_name(cluster.containerized_phases("amd-gpu-cluster"))["create-kind-cluster"]
    assert phase.execute(context).outcome is PhaseOutcome.SUCCEEDED
    index = runner.calls.index(["kind", "create", "cluster", "--name", "amd-gpu-cluster", "--config=-"])
    assert "kind: Cluster" in runner.inputs[index]
    assert runner.ran("kubectl", "cluster-info", "--context", "kind-amd-gpu-cluster")


def test_existing_kind_cluster_is_skipped(context, runner: FakeRunner):
    runner.on("kind", "get", "clusters", stdout="amd-gpu-cluster\n")
    phase = _by_name(cluster.containerized_phases("amd-gpu-cluster"))["create-kind-cluster"]
    assert phase.execute(context).outcome is PhaseOutcome.SKIPPED
    assert not runner.ran("kind", "create")


def test_install_kind_uses_host_architecture(context, runner: FakeRunner):
    phase = _by_name(cluster.containerized_phases("amd-gpu-cluster"))["install-kind"]
    assert phase.execute(context.with_env(make_snapshot(architecture="aarch64"))).outcome is PhaseOutcome.SUCCEEDED
    assert runner.calls[0][-1].endswith("/kind-linux-arm64")
    assert runner.calls[1] == ["chmod", "+x", "/usr/local/bin/kind"]


def test_cert_manager_installs_with_crds(context, runner: FakeRunner):
    runner.on("helm", "status", exit_code=1, stderr="Error: release: not found")
    runner.on("kubectl", "get", "pods", stdout=_ready_items())
    phase = _by_name(components.gpu_operator_phases(make_config()))["install-cert-manager"]
    assert phase.execute(context).outcome is PhaseOutcome.SUCCEEDED
    install = next(call for call in runner.calls if call[:2] == ["helm", "install"])
    assert "crds.enabled=true" in install
    assert "v1.15.1" in install


def test_gpu_operator_without_gpu_warns_and_soft_fails(context, runner: FakeRunner):
    runner.on("helm", "status", exit_code=1, stderr="Error: release: not found")
    runner.on("kubectl", "get", "pods", stdout=json.dumps({"items": []}))
    phase = _by_name(components.gpu_operator_phases(make_config()))["install-gpu-operator"]
    phase = dataclasses.replace(
        phase, postcondition=dataclasses.replace(phase.postcondition, interval=0.01, deadline=0.02),
    )
    report = phase.execute(context.with_env(make_snapshot(gpu_present=Tristate.NO)))
    assert report.outcome is PhaseOutcome.FAILED_SOFT
    assert report.warnings[0] == "precondition unmet: no GPU detected on this host"
    assert runner.ran("helm", "install", "amd-gpu-operator", "rocm/gpu-operator-charts")


def test_device_config_requires_operator_namespace(context, runner: FakeRunner):
    runner.on("kubectl", "get", "namespace", exit_code=1, stderr=NOT_FOUND)
    phase = _by_name(components.gpu_operator_phases(make_config()))["apply-device-config"]
    report = phase.execute(context)
    assert report.outcome is PhaseOutcome.FAILED_FATAL
    assert report.error_kind == "PreconditionUnmet"


def test_metallb_pool_is_derived_from_node_ip(context, runner: FakeRunner):
    node = {"status": {"addresses": [{"type": "InternalIP", "address": "192.168.7.20"}]}}
    runner.on("kubectl", "get", "namespace", stdout="{}")
    runner.on("kubectl", "get", "ipaddresspools.metallb.io", exit_code=1, stderr=NOT_FOUND)
    runner.on("kubectl", "get", "nodes", stdout=json.dumps({"items": [node]}))
    phase = _by_name(components.metallb_phases())["configure-metallb-pool"]
    assert phase.execute(context).outcome is PhaseOutcome.SUCCEEDED
    manifest = runner.inputs[runner.calls.index(["kubectl", "apply", "-f", "-"])]
    assert "192.168.7.240-192.168.7.250" in manifest


def test_metallb_pool_without_node_ip_is_fatal(context, runner: FakeRunner):
    runner.on("kubectl", "get", "namespace", stdout="{}")
    runner.on("kubectl", "get", "ipaddresspools.metallb.io", exit_code=1, stderr=NOT_FOUND)
    runner.on("kubectl", "get", "nodes", stdout=json.dumps({"items": []}))
    phase = _by_name(components.metallb_phases())["configure-metallb-pool"]
    report = phase.execute(context)
    assert report.outcome is PhaseOutcome.FAILED_FATAL
    assert report.error_kind == "PreconditionUnmet"


def test_access_hint_prefers_external_ip(context, runner: FakeRunner):
    service = {"status": {"loadBalancer": {"ingress": [{"ip": "192.168.7.240"}]}}}
    runner.on("kubectl", "get", "service", stdout=json.dumps(service))
    assert workload.access_hint(context) == "http://192.168.7.240/v1/models"
    runner.on("kubectl", "get", "service", exit_code=1, stderr=NOT_FOUND)
    assert workload.access_hint(context).startswith("kubectl port-forward -n default svc/vllm-service 8000:8000")


def test_missing_gpu_capacity_is_a_warning(context, runner: FakeRunner):
    runner.on("kubectl", "get", "nodes", stdout=json.dumps({"items": [{"status": {"capacity": {"cpu": "16"}}}]}))
    phase = _by_name(workload.inference_phases(make_config(), lambda ctx: None))["check-gpu-capacity"]
    report = phase.execute(context)
    assert report.outcome is PhaseOutcome.SUCCEEDED
    assert report.warnings == (
        "precondition unmet: no nodes advertise amd.com/gpu capacity; the deployment may not schedule",
    )


def test_gpu_capacity_present_has_no_warning(context, runner: FakeRunner):
    node = {"status": {"capacity": {"amd.com/gpu": "1"}}}
    runner.on("kubectl", "get", "nodes", stdout=json.dumps({"items": [node]}))
    phase = _by_name(workload.inference_phases(make_config(), lambda ctx: None))["check-gpu-capacity"]
    report = phase.execute(context)
    assert report.outcome is PhaseOutcome.SUCCEEDED
    assert report.warnings == ()
