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


"""Configuration classes and config models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.table import Table

from gpu_provisioner import console
from gpu_provisioner.constants import (
    DEFAULT_CLUSTER_NAME,
    DEFAULT_COMMAND_TIMEOUT_SECONDS,
    DEFAULT_DEVICE_CONFIG_NAME,
    DEFAULT_GPU_VENDOR_ID,
    DEFAULT_INFERENCE_NAME,
    DEFAULT_INSTALL_TIMEOUT_SECONDS,
    DEFAULT_IP_POOL_FIRST_OCTET,
    DEFAULT_IP_POOL_LAST_OCTET,
    DEFAULT_METRICS_NODE_PORT,
    DEFAULT_MIN_MEMORY_MB,
    DEFAULT_MODEL_HOST_PATH,
    DEFAULT_POD_NETWORK_CIDR,
    DEFAULT_PVC_NAME,
    DEFAULT_SERVICE_NAME,
    DEFAULT_STATE_DIR,
    DEFAULT_STORAGE_SIZE,
    HELM_RELEASE_GPU_OPERATOR,
    NS_CERT_MANAGER,
    NS_DEFAULT,
    NS_GPU_OPERATOR,
    dep_value,
)

ENV_PREFIX = "GPU_STACK_"


class EnvironmentChoice(str, Enum):
    """Plan variant selection: detect from the host or force one."""

    AUTO = "auto"
    BARE_METAL = "bare-metal"
    CONTAINERIZED = "containerized-host"


# ============================================================================
# Configuration classes
# ============================================================================

class ClusterConfig(BaseSettings):
    """Cluster bring-up configuration, auto-loaded from GPU_STACK_* env vars.

    Attributes:
        cluster_name: Name of the kind cluster (containerized hosts).
        kubernetes_minor: Kubernetes apt repository minor version.
        kubernetes_package_version: Pinned kubelet/kubeadm/kubectl package version.
        pod_network_cidr: Pod CIDR passed to ``kubeadm init``.
        cni_manifest_url: CNI manifest applied after control-plane init.
        kind_version: kind binary release.
        kind_node_image: Node image for the kind cluster.
        kubeconfig: Explicit kubeconfig path, or None for the kubectl default.
    """

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, extra="ignore")

    cluster_name: str = Field(default=DEFAULT_CLUSTER_NAME, pattern=r"^[a-z0-9][a-z0-9-]*$")
    kubernetes_minor: str = Field(default=dep_value("kubernetes", "minor", default="v1.28"),
                                  pattern=r"^v\d+\.\d+$")
    kubernetes_package_version: str = dep_value("kubernetes", "package_version", default="")
    pod_network_cidr: str = DEFAULT_POD_NETWORK_CIDR
    cni_manifest_url: str = dep_value("cni", "flannel_manifest", default="")
    kind_version: str = dep_value("kind", "version", default="v0.20.0")
    kind_node_image: str = dep_value("kind", "node_image", default="")
    kubeconfig: str | None = None


class GpuOperatorConfig(BaseSettings):
    """cert-manager and GPU operator configuration, auto-loaded from GPU_STACK_* env vars.

    Attributes:
        cert_manager_version: cert-manager Helm chart version.
        cert_manager_namespace: Namespace for cert-manager.
        operator_release: Helm release name of the GPU operator.
        operator_namespace: Namespace for the GPU operator.
        operator_version: GPU operator chart version, or empty for latest.
        gpu_vendor_id: PCI vendor id used to detect GPUs on the host.
        device_config_name: Name of the DeviceConfig resource.
        device_plugin_image: Device plugin image.
        node_labeller_image: Node labeller image.
        metrics_exporter_image: Metrics exporter image.
        metrics_node_port: NodePort for the metrics exporter.
    """

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, extra="ignore")

    cert_manager_version: str = Field(default=dep_value("cert_manager", "version", default="v1.15.1"),
                                      pattern=r"^v[\d.]+(-[\w.]+)?$")
    cert_manager_namespace: str = NS_CERT_MANAGER
    operator_release: str = HELM_RELEASE_GPU_OPERATOR
    operator_namespace: str = NS_GPU_OPERATOR
    operator_version: str = dep_value("gpu_operator", "version", default="")
    gpu_vendor_id: str = Field(default=DEFAULT_GPU_VENDOR_ID, pattern=r"^[0-9a-fA-F]{4}$")
    device_config_name: str = DEFAULT_DEVICE_CONFIG_NAME
    device_plugin_image: str = dep_value("gpu_operator", "images", "device_plugin", default="")
    node_labeller_image: str = dep_value("gpu_operator", "images", "node_labeller", default="")
    metrics_exporter_image: str = dep_value("gpu_operator", "images", "metrics_exporter", default="")
    metrics_node_port: int = Field(default=DEFAULT_METRICS_NODE_PORT, ge=30000, le=32767)


class InferenceConfig(BaseSettings):
    """Inference workload and exposure configuration, auto-loaded from GPU_STACK_* env vars.

    Attributes:
        inference_name: Deployment name of the inference server.
        inference_namespace: Namespace of the workload, storage, and service.
        inference_image: Container image of the inference server.
        model: Model identifier served by vLLM.
        replicas: Deployment replica count.
        gpus_per_replica: GPUs requested per replica.
        hf_token: Hugging Face token for gated models.
        storage_size: Model storage capacity.
        model_host_path: Host path backing the model PersistentVolume.
        pvc_name: PersistentVolumeClaim name.
        service_name: LoadBalancer service name.
        metallb_version: MetalLB release used for the native manifest.
        ip_pool_first_octet: First host octet of the address pool.
        ip_pool_last_octet: Last host octet of the address pool.
    """

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, extra="ignore")

    inference_name: str = DEFAULT_INFERENCE_NAME
    inference_namespace: str = NS_DEFAULT
    inference_image: str = dep_value("inference", "image", default="rocm/vllm:latest")
    model: str = dep_value("inference", "model", default="")
    replicas: int = Field(default=1, ge=1, le=64)
    gpus_per_replica: int = Field(default=1, ge=1, le=16)
    hf_token: str = ""
    storage_size: str = Field(default=DEFAULT_STORAGE_SIZE, pattern=r"^\d+(Ki|Mi|Gi|Ti)$")
    model_host_path: str = DEFAULT_MODEL_HOST_PATH
    pvc_name: str = DEFAULT_PVC_NAME
    service_name: str = DEFAULT_SERVICE_NAME
    metallb_version: str = dep_value("metallb", "version", default="v0.14.3")
    ip_pool_first_octet: int = Field(default=DEFAULT_IP_POOL_FIRST_OCTET, ge=1, le=254)
    ip_pool_last_octet: int = Field(default=DEFAULT_IP_POOL_LAST_OCTET, ge=1, le=254)


class RunConfig(BaseSettings):
    """Run behaviour, auto-loaded from GPU_STACK_* env vars.

    Attributes:
        environment: Plan variant selection (auto-detect or forced).
        skip_cluster_creation: Use the cluster kubectl already points at.
        skip_gpu_operator: Skip cert-manager, GPU operator, and DeviceConfig.
        skip_metallb: Skip MetalLB and address pool configuration.
        skip_inference: Skip model storage, workload, and service.
        state_dir: Directory for the run log and last RunResult.
        command_timeout: Default timeout for a single command.
        install_timeout: Timeout for package and chart installs.
        min_memory_mb: Minimum total RAM required to provision.
    """

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, extra="ignore")

    environment: EnvironmentChoice = EnvironmentChoice.AUTO
    skip_cluster_creation: bool = False
    skip_gpu_operator: bool = False
    skip_metallb: bool = False
    skip_inference: bool = False
    state_dir: Path = DEFAULT_STATE_DIR
    command_timeout: int = Field(default=DEFAULT_COMMAND_TIMEOUT_SECONDS, ge=1)
    install_timeout: int = Field(default=DEFAULT_INSTALL_TIMEOUT_SECONDS, ge=1)
    min_memory_mb: int = Field(default=DEFAULT_MIN_MEMORY_MB, ge=0)


# ============================================================================
# Resolved configuration
# ============================================================================

@dataclass(frozen=True)
class StackConfig:
    """All configuration sections for one run."""

    cluster: ClusterConfig = field(default_factory=ClusterConfig)
    gpu: GpuOperatorConfig = field(default_factory=GpuOperatorConfig)
    inference: InferenceConfig = field(default_factory=InferenceConfig)
    run: RunConfig = field(default_factory=RunConfig)


def resolve_config(
    *,
    environment: EnvironmentChoice | None = None,
    skip_cluster_creation: bool = False,
    skip_gpu_operator: bool = False,
    skip_metallb: bool = False,
    skip_inference: bool = False,
    cluster_name: str | None = None,
    model: str | None = None,
    state_dir: Path | None = None,
) -> StackConfig:
    """Load env-backed settings and layer CLI overrides on top.

    Boolean flags only override when set, so ``GPU_STACK_SKIP_*`` env vars
    keep working without the matching CLI flag.
    """
    cluster = ClusterConfig()
    if cluster_name is not None:
        cluster = cluster.model_copy(update={"cluster_name": cluster_name})

    inference = InferenceConfig()
    if model is not None:
        inference = inference.model_copy(update={"model": model})

    run_overrides: dict[str, Any] = {}
    if environment is not None:
        run_overrides["environment"] = environment
    if state_dir is not None:
        run_overrides["state_dir"] = state_dir
    for key, enabled in (
        ("skip_cluster_creation", skip_cluster_creation),
        ("skip_gpu_operator", skip_gpu_operator),
        ("skip_metallb", skip_metallb),
        ("skip_inference", skip_inference),
    ):
        if enabled:
            run_overrides[key] = True
    run = RunConfig()
    if run_overrides:
        run = run.model_copy(update=run_overrides)

    return StackConfig(cluster=cluster, gpu=GpuOperatorConfig(), inference=inference, run=run)


def display_config(config: StackConfig) -> None:
    """Print the resolved configuration as a table."""
    table = Table(title="Configuration", show_header=True, header_style="bold")
    table.add_column("Setting")
    table.add_column("Value")
    table.add_row("Environment", config.run.environment.value)
    table.add_row("Cluster name", config.cluster.cluster_name)
    table.add_row("Kubernetes", config.cluster.kubernetes_minor)
    table.add_row("cert-manager", config.gpu.cert_manager_version)
    table.add_row("GPU operator namespace", config.gpu.operator_namespace)
    table.add_row("Model", config.inference.model)
    table.add_row("Inference image", config.inference.inference_image)
    skipped = [
        name for name, enabled in (
            ("cluster creation", config.run.skip_cluster_creation),
            ("GPU operator", config.run.skip_gpu_operator),
            ("MetalLB", config.run.skip_metallb),
            ("inference", config.run.skip_inference),
        ) if enabled
    ]
    table.add_row("Skipped", ", ".join(skipped) or "-")
    table.add_row("State directory", str(config.run.state_dir))
    console.print(table)
