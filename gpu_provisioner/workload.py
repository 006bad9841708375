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


"""Inference workload: model storage, the vLLM Deployment, and its LoadBalancer Service."""

from __future__ import annotations

from collections.abc import Callable

from gpu_provisioner import console
from gpu_provisioner.config import StackConfig
from gpu_provisioner.constants import (
    DEPLOYMENT_AVAILABLE_POLL,
    GPU_RESOURCE_NAME,
    INFERENCE_PORT,
    LOADBALANCER_IP_POLL,
    PVC_BOUND_POLL,
)
from gpu_provisioner.errors import CommandError
from gpu_provisioner.manifests import inference_deployment, inference_service, model_storage
from gpu_provisioner.phase import Phase, PhaseContext, Readiness, resource_exists
from gpu_provisioner.poller import Severity


def _gpu_nodes_present(ctx: PhaseContext) -> bool:
    count = ctx.cluster.gpu_node_count()
    if count:
        console.print(f"[green]\u2713 Found {count} node(s) with {GPU_RESOURCE_NAME} capacity[/green]")
    return count > 0


def _setup_storage(prepare_dir: Callable[[PhaseContext], None]) -> Callable[[PhaseContext], None]:
    def _action(ctx: PhaseContext) -> None:
        prepare_dir(ctx)
        ctx.cluster.apply_manifest(model_storage(ctx.config.inference))
    return _action


def _deploy_inference(ctx: PhaseContext) -> None:
    ctx.cluster.apply_manifest(inference_deployment(ctx.config.inference))


def _expose_inference(ctx: PhaseContext) -> None:
    ctx.cluster.apply_manifest(inference_service(ctx.config.inference))


def access_hint(ctx: PhaseContext) -> str:
    """Describe how to reach the inference endpoint.

    Returns the external URL when the service has a load-balancer address,
    otherwise a ``kubectl port-forward`` command.
    """
    inference = ctx.config.inference
    try:
        address = ctx.cluster.service_ingress_ip(inference.service_name, inference.inference_namespace)
    except CommandError:
        address = None
    if address:
        return f"http://{address}/v1/models"
    return (
        f"kubectl port-forward -n {inference.inference_namespace} "
        f"svc/{inference.service_name} {INFERENCE_PORT}:{INFERENCE_PORT}"
        f"  # then http://localhost:{INFERENCE_PORT}/v1/models"
    )


def print_access_hint(ctx: PhaseContext) -> None:
    console.print(f"[green]\u2705 Inference endpoint:[/green] {access_hint(ctx)}")


def inference_phases(config: StackConfig, prepare_dir: Callable[[PhaseContext], None]) -> list[Phase]:
    """GPU capacity check, model storage, the vLLM Deployment, and its Service.

    Args:
        config: Resolved StackConfig; resource names are fixed at plan time.
        prepare_dir: Creates the model host path where the cluster node can see it.
    """
    inference = config.inference
    namespace = inference.inference_namespace
    return [
        Phase(
            name="check-gpu-capacity",
            description=f"Checking nodes for {GPU_RESOURCE_NAME} capacity",
            precondition=_gpu_nodes_present,
            precondition_reason=f"no nodes advertise {GPU_RESOURCE_NAME} capacity; the deployment may not schedule",
            precondition_required=False,
        ),
        Phase(
            name="setup-model-storage",
            description=f"Creating model storage {inference.pvc_name} ({inference.storage_size})",
            action=_setup_storage(prepare_dir),
            exists=resource_exists("pvc", inference.pvc_name, namespace),
            postcondition=Readiness(
                lambda ctx: ctx.cluster.pvc_bound(ctx.config.inference.pvc_name, namespace),
                *PVC_BOUND_POLL,
                severity=Severity.SOFT,
                description="model storage claim binding",
            ),
        ),
        Phase(
            name="deploy-inference",
            description=f"Deploying {inference.inference_name} serving {inference.model}",
            action=_deploy_inference,
            precondition=lambda ctx: ctx.cluster.namespace_exists(ctx.config.gpu.operator_namespace),
            precondition_reason=f"GPU operator namespace {config.gpu.operator_namespace} does not exist",
            exists=resource_exists("deployment", inference.inference_name, namespace),
            postcondition=Readiness(
                lambda ctx: ctx.cluster.deployment_available(ctx.config.inference.inference_name, namespace),
                *DEPLOYMENT_AVAILABLE_POLL,
                description="inference deployment availability",
            ),
        ),
        Phase(
            name="expose-inference",
            description=f"Exposing {inference.service_name}",
            action=_expose_inference,
            exists=resource_exists("service", inference.service_name, namespace),
            postcondition=Readiness(
                lambda ctx: ctx.cluster.service_ingress_ip(
                    ctx.config.inference.service_name, namespace,
                ) is not None,
                *LOADBALANCER_IP_POLL,
                severity=Severity.SOFT,
                description="load-balancer IP assignment",
            ),
        ),
    ]
