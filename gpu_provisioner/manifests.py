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


"""Manifest builders for the resources the plan applies."""

from __future__ import annotations

import yaml

from gpu_provisioner.config import ClusterConfig, GpuOperatorConfig, InferenceConfig
from gpu_provisioner.constants import (
    DEFAULT_IP_POOL_NAME,
    DEFAULT_L2_ADVERTISEMENT_NAME,
    DEFAULT_METRICS_PORT,
    DEFAULT_STORAGE_CLASS,
    GPU_RESOURCE_NAME,
    INFERENCE_PORT,
    KERNEL_MODULES,
    LABEL_GPU_NODE,
    NS_METALLB,
    SYSCTL_SETTINGS,
)


def dump_all(*documents: dict) -> str:
    """Serialize manifests as a multi-document YAML string."""
    return yaml.safe_dump_all(documents, default_flow_style=False, sort_keys=False)


def modules_load_conf() -> str:
    return "".join(f"{module}\n" for module in KERNEL_MODULES)


def sysctl_conf() -> str:
    return "".join(f"{key} = {value}\n" for key, value in SYSCTL_SETTINGS.items())


def kind_cluster_config(cluster_cfg: ClusterConfig) -> str:
    """kind cluster config exposing host devices to the control-plane node."""
    node: dict = {
        "role": "control-plane",
        "extraMounts": [
            {"hostPath": "/dev", "containerPath": "/dev"},
            {"hostPath": "/sys", "containerPath": "/sys", "readOnly": True},
        ],
        "kubeadmConfigPatches": [
            "kind: InitConfiguration\n"
            "nodeRegistration:\n"
            "  kubeletExtraArgs:\n"
            "    node-labels: \"ingress-ready=true\"\n"
        ],
    }
    if cluster_cfg.kind_node_image:
        node["image"] = cluster_cfg.kind_node_image
    return dump_all({
        "kind": "Cluster",
        "apiVersion": "kind.x-k8s.io/v1alpha4",
        "name": cluster_cfg.cluster_name,
        "nodes": [node],
    })


def device_config(gpu_cfg: GpuOperatorConfig) -> str:
    """DeviceConfig using host drivers, with device plugin, labeller, and metrics exporter."""
    return dump_all({
        "apiVersion": "amd.com/v1alpha1",
        "kind": "DeviceConfig",
        "metadata": {"name": gpu_cfg.device_config_name, "namespace": gpu_cfg.operator_namespace},
        "spec": {
            "driver": {"enable": False},
            "devicePlugin": {
                "devicePluginImage": gpu_cfg.device_plugin_image,
                "nodeLabellerImage": gpu_cfg.node_labeller_image,
                "enableNodeLabeller": True,
            },
            "metricsExporter": {
                "enable": True,
                "serviceType": "NodePort",
                "port": DEFAULT_METRICS_PORT,
                "nodePort": gpu_cfg.metrics_node_port,
                "image": gpu_cfg.metrics_exporter_image,
            },
            "selector": {LABEL_GPU_NODE: "true"},
        },
    })


def model_storage(inf_cfg: InferenceConfig) -> str:
    """Static hostPath PersistentVolume and the claim that binds to it."""
    pv = {
        "apiVersion": "v1",
        "kind": "PersistentVolume",
        "metadata": {"name": f"{inf_cfg.pvc_name}-pv"},
        "spec": {
            "capacity": {"storage": inf_cfg.storage_size},
            "accessModes": ["ReadWriteOnce"],
            "hostPath": {"path": inf_cfg.model_host_path},
            "volumeMode": "Filesystem",
            "persistentVolumeReclaimPolicy": "Retain",
            "storageClassName": DEFAULT_STORAGE_CLASS,
        },
    }
    pvc = {
        "apiVersion": "v1",
        "kind": "PersistentVolumeClaim",
        "metadata": {"name": inf_cfg.pvc_name, "namespace": inf_cfg.inference_namespace},
        "spec": {
            "accessModes": ["ReadWriteOnce"],
            "resources": {"requests": {"storage": inf_cfg.storage_size}},
            "volumeMode": "Filesystem",
            "storageClassName": DEFAULT_STORAGE_CLASS,
        },
    }
    return dump_all(pv, pvc)


def metallb_pool(ip_range: str) -> str:
    """IPAddressPool plus the L2Advertisement announcing it."""
    pool = {
        "apiVersion": "metallb.io/v1beta1",
        "kind": "IPAddressPool",
        "metadata": {"name": DEFAULT_IP_POOL_NAME, "namespace": NS_METALLB},
        "spec": {"addresses": [ip_range]},
    }
    advertisement = {
        "apiVersion": "metallb.io/v1beta1",
        "kind": "L2Advertisement",
        "metadata": {"name": DEFAULT_L2_ADVERTISEMENT_NAME, "namespace": NS_METALLB},
        "spec": {"ipAddressPools": [DEFAULT_IP_POOL_NAME]},
    }
    return dump_all(pool, advertisement)


def inference_deployment(inf_cfg: InferenceConfig) -> str:
    """vLLM OpenAI-compatible server Deployment requesting GPUs."""
    labels = {"app": inf_cfg.inference_name}
    health_probe = {"httpGet": {"path": "/health", "port": INFERENCE_PORT}}
    container = {
        "name": "vllm-container",
        "image": inf_cfg.inference_image,
        "ports": [{"containerPort": INFERENCE_PORT, "name": "http"}],
        "env": [{"name": "HUGGING_FACE_HUB_TOKEN", "value": inf_cfg.hf_token}],
        "command": ["python", "-m", "vllm.entrypoints.openai.api_server"],
        "args": [
            "--model", inf_cfg.model,
            "--host", "0.0.0.0",
            "--port", str(INFERENCE_PORT),
            "--download-dir", "/models",
            "--tensor-parallel-size", str(inf_cfg.gpus_per_replica),
        ],
        "volumeMounts": [{"name": "model-storage", "mountPath": "/models"}],
        "resources": {
            "requests": {GPU_RESOURCE_NAME: inf_cfg.gpus_per_replica, "memory": "8Gi", "cpu": "2"},
            "limits": {GPU_RESOURCE_NAME: inf_cfg.gpus_per_replica, "memory": "16Gi", "cpu": "4"},
        },
        "readinessProbe": {**health_probe, "initialDelaySeconds": 30, "periodSeconds": 10},
        "livenessProbe": {**health_probe, "initialDelaySeconds": 60, "periodSeconds": 30},
    }
    return dump_all({
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": inf_cfg.inference_name, "namespace": inf_cfg.inference_namespace, "labels": labels},
        "spec": {
            "replicas": inf_cfg.replicas,
            "selector": {"matchLabels": labels},
            "template": {
                "metadata": {"labels": labels},
                "spec": {
                    "containers": [container],
                    "volumes": [{
                        "name": "model-storage",
                        "persistentVolumeClaim": {"claimName": inf_cfg.pvc_name},
                    }],
                    "tolerations": [
                        {"key": GPU_RESOURCE_NAME, "operator": "Exists", "effect": "NoSchedule"},
                    ],
                },
            },
        },
    })


def inference_service(inf_cfg: InferenceConfig) -> str:
    """LoadBalancer Service in front of the inference Deployment."""
    return dump_all({
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {
            "name": inf_cfg.service_name,
            "namespace": inf_cfg.inference_namespace,
            "labels": {"app": inf_cfg.inference_name},
        },
        "spec": {
            "type": "LoadBalancer",
            "selector": {"app": inf_cfg.inference_name},
            "ports": [
                {"port": 80, "targetPort": INFERENCE_PORT, "protocol": "TCP", "name": "http"},
                {"port": INFERENCE_PORT, "targetPort": INFERENCE_PORT, "protocol": "TCP", "name": "api"},
            ],
        },
    })
