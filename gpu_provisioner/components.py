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


"""Shared cluster components: Helm, cert-manager, GPU operator, and MetalLB."""

from __future__ import annotations

from gpu_provisioner import logger
from gpu_provisioner.config import StackConfig
from gpu_provisioner.constants import (
    API_REACHABLE_POLL,
    CERT_MANAGER_READY_POLL,
    DEFAULT_IP_POOL_NAME,
    GPU_NODE_LABEL_POLL,
    GPU_OPERATOR_READY_POLL,
    HELM_CHART_CERT_MANAGER,
    HELM_CHART_GPU_OPERATOR,
    HELM_INSTALL_SCRIPT_URL,
    HELM_RELEASE_CERT_MANAGER,
    HELM_REPO_JETSTACK,
    HELM_REPO_ROCM,
    KIND_DEVICE_CONFIG,
    KIND_IP_POOL,
    LABEL_GPU_NODE,
    METALLB_MANIFEST_URL,
    METALLB_READY_POLL,
    NS_METALLB,
    SELECTOR_CERT_MANAGER,
    SELECTOR_GPU_OPERATOR,
    SELECTOR_METALLB,
    dep_value,
)
from gpu_provisioner.errors import PreconditionUnmet
from gpu_provisioner.manifests import device_config, metallb_pool
from gpu_provisioner.phase import Phase, PhaseContext, Readiness, resource_exists
from gpu_provisioner.poller import Severity
from gpu_provisioner.probe import Tristate
from gpu_provisioner.utils import ip_pool_range

HELM_INSTALL_SCRIPT = "/tmp/get-helm-3.sh"


def verify_access_phase() -> Phase:
    return Phase(
        name="verify-cluster-access",
        description="Verifying cluster access",
        postcondition=Readiness(
            lambda ctx: ctx.cluster.is_reachable(), *API_REACHABLE_POLL, description="Kubernetes API server",
        ),
    )


# ============================================================================
# Helm and cert-manager
# ============================================================================

def _install_helm(ctx: PhaseContext) -> None:
    ctx.runner.run(["curl", "-fsSL", "-o", HELM_INSTALL_SCRIPT, HELM_INSTALL_SCRIPT_URL])
    try:
        ctx.runner.run(["bash", HELM_INSTALL_SCRIPT], timeout=ctx.config.run.install_timeout)
    finally:
        ctx.runner.run(["rm", "-f", HELM_INSTALL_SCRIPT])


def _install_cert_manager(ctx: PhaseContext) -> None:
    gpu = ctx.config.gpu
    ctx.helm.repo_add(HELM_REPO_JETSTACK, dep_value("cert_manager", "repo_url"))
    ctx.helm.install(
        HELM_RELEASE_CERT_MANAGER,
        HELM_CHART_CERT_MANAGER,
        gpu.cert_manager_namespace,
        values={"crds.enabled": True},
        timeout=ctx.config.run.install_timeout,
        version=gpu.cert_manager_version,
    )


def _install_gpu_operator(ctx: PhaseContext) -> None:
    gpu = ctx.config.gpu
    ctx.helm.repo_add(HELM_REPO_ROCM, dep_value("gpu_operator", "repo_url"))
    ctx.helm.install(
        gpu.operator_release,
        HELM_CHART_GPU_OPERATOR,
        gpu.operator_namespace,
        timeout=ctx.config.run.install_timeout,
        version=gpu.operator_version or None,
    )


def _apply_device_config(ctx: PhaseContext) -> None:
    ctx.cluster.apply_manifest(device_config(ctx.config.gpu))


def gpu_operator_phases(config: StackConfig) -> list[Phase]:
    """cert-manager, the GPU operator, its DeviceConfig, and the GPU node label wait.

    Args:
        config: Resolved StackConfig; names and namespaces are fixed at plan time.
    """
    gpu = config.gpu
    return [
        Phase(
            name="install-cert-manager",
            description=f"Installing cert-manager {gpu.cert_manager_version}",
            action=_install_cert_manager,
            exists=resource_exists("helm-release", HELM_RELEASE_CERT_MANAGER, gpu.cert_manager_namespace),
            postcondition=Readiness(
                lambda ctx: ctx.cluster.pods_ready(ctx.config.gpu.cert_manager_namespace, SELECTOR_CERT_MANAGER),
                *CERT_MANAGER_READY_POLL,
                description="cert-manager pods",
            ),
        ),
        Phase(
            name="install-gpu-operator",
            description="Installing the AMD GPU operator",
            action=_install_gpu_operator,
            precondition=lambda ctx: ctx.env.gpu_present is not Tristate.NO,
            precondition_reason="no GPU detected on this host",
            precondition_required=False,
            exists=resource_exists("helm-release", gpu.operator_release, gpu.operator_namespace),
            postcondition=Readiness(
                lambda ctx: ctx.cluster.pods_ready(ctx.config.gpu.operator_namespace, SELECTOR_GPU_OPERATOR),
                *GPU_OPERATOR_READY_POLL,
                severity=Severity.SOFT,
                description="GPU operator pods",
            ),
        ),
        Phase(
            name="apply-device-config",
            description="Applying the GPU DeviceConfig",
            action=_apply_device_config,
            precondition=lambda ctx: ctx.cluster.namespace_exists(ctx.config.gpu.operator_namespace),
            precondition_reason=f"namespace {gpu.operator_namespace} does not exist",
            exists=resource_exists(KIND_DEVICE_CONFIG, gpu.device_config_name, gpu.operator_namespace),
        ),
        Phase(
            name="wait-gpu-node-labels",
            description="Waiting for GPU node labels",
            postcondition=Readiness(
                lambda ctx: ctx.cluster.nodes_ready(f"{LABEL_GPU_NODE}=true"),
                *GPU_NODE_LABEL_POLL,
                severity=Severity.SOFT,
                description="GPU-labelled nodes",
            ),
        ),
    ]


def helm_phase() -> Phase:
    return Phase(
        name="install-helm",
        description="Installing Helm",
        action=_install_helm,
        exists=resource_exists("command", "helm"),
    )


# ============================================================================
# MetalLB
# ============================================================================

def _install_metallb(ctx: PhaseContext) -> None:
    version = ctx.config.inference.metallb_version
    ctx.cluster.apply_url(METALLB_MANIFEST_URL.format(version=version))


def _configure_ip_pool(ctx: PhaseContext) -> None:
    node_ip = ctx.cluster.node_internal_ip()
    if node_ip is None:
        raise PreconditionUnmet("no node reports an InternalIP address")
    inference = ctx.config.inference
    try:
        ip_range = ip_pool_range(node_ip, inference.ip_pool_first_octet, inference.ip_pool_last_octet)
    except ValueError as err:
        raise PreconditionUnmet(str(err)) from err
    logger.info("MetalLB address pool: %s", ip_range)
    ctx.cluster.apply_manifest(metallb_pool(ip_range))


def metallb_phases() -> list[Phase]:
    """MetalLB native manifest and a layer-2 address pool next to the node IP."""
    return [
        Phase(
            name="install-metallb",
            description="Installing MetalLB",
            action=_install_metallb,
            exists=resource_exists("namespace", NS_METALLB),
            postcondition=Readiness(
                lambda ctx: ctx.cluster.pods_ready(NS_METALLB, SELECTOR_METALLB),
                *METALLB_READY_POLL,
                description="MetalLB pods",
            ),
        ),
        Phase(
            name="configure-metallb-pool",
            description="Configuring the MetalLB address pool",
            action=_configure_ip_pool,
            precondition=lambda ctx: ctx.cluster.namespace_exists(NS_METALLB),
            precondition_reason=f"namespace {NS_METALLB} does not exist",
            exists=resource_exists(KIND_IP_POOL, DEFAULT_IP_POOL_NAME, NS_METALLB),
        ),
    ]
