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
import yaml

from gpu_provisioner import manifests
from gpu_provisioner.config import ClusterConfig, GpuOperatorConfig, InferenceConfig
from gpu_provisioner.utils import helm_set_args, ip_pool_range, kind_release_url, kube_apt_repo_url


def _load(text):
    return list(yaml.safe_load_all(text))


def test_kind_config_mounts_devices_and_labels_ingress():
    (cluster,) = _load(manifests.kind_cluster_config(ClusterConfig(cluster_name="gpu-lab")))
    assert cluster["kind"] == "Cluster"
    assert cluster["name"] == "gpu-lab"
    node = cluster["nodes"][0]
    assert {"hostPath": "/dev", "containerPath": "/dev"} in node["extraMounts"]
    assert "ingress-ready=true" in node["kubeadmConfigPatches"][0]


def test_device_config_disables_driver_and_exports_metrics():
    (config,) = _load(manifests.device_config(GpuOperatorConfig()))
    assert config["kind"] == "DeviceConfig"
    assert config["metadata"]["namespace"] == "kube-amd-gpu"
    assert config["spec"]["driver"]["enable"] is False
    assert config["spec"]["metricsExporter"]["nodePort"] == 32500
    assert config["spec"]["devicePlugin"]["enableNodeLabeller"] is True


def test_model_storage_binds_claim_to_host_path_volume():
    pv, pvc = _load(manifests.model_storage(InferenceConfig(storage_size="20Gi")))
    assert pv["kind"] == "PersistentVolume"
    assert pv["spec"]["hostPath"]["path"] == "/mnt/data/llama"
    assert pvc["spec"]["resources"]["requests"]["storage"] == "20Gi"
    assert pv["spec"]["storageClassName"] == pvc["spec"]["storageClassName"]


def test_inference_deployment_requests_gpus():
    (deployment,) = _load(manifests.inference_deployment(InferenceConfig(model="org/model", gpus_per_replica=2)))
    container = deployment["spec"]["template"]["spec"]["containers"][0]
    assert container["resources"]["limits"]["amd.com/gpu"] == 2
    assert container["args"][container["args"].index("--model") + 1] == "org/model"
    assert container["readinessProbe"]["httpGet"]["path"] == "/health"
    volume = deployment["spec"]["template"]["spec"]["volumes"][0]
    assert volume["persistentVolumeClaim"]["claimName"] == "llama-3.2-1b"


def test_inference_service_is_a_load_balancer():
    (service,) = _load(manifests.inference_service(InferenceConfig()))
    assert service["spec"]["type"] == "LoadBalancer"
    assert service["spec"]["selector"] == {"app": "vllm-inference"}


def test_metallb_pool_and_advertisement():
    pool, advertisement = _load(manifests.metallb_pool("10.0.0.240-10.0.0.250"))
    assert pool["spec"]["addresses"] == ["10.0.0.240-10.0.0.250"]
    assert advertisement["spec"]["ipAddressPools"] == [pool["metadata"]["name"]]


def test_ip_pool_range():
    assert ip_pool_range("192.168.1.17", 240, 250) == "192.168.1.240-192.168.1.250"
    with pytest.raises(ValueError):
        ip_pool_range("fd00::1", 240, 250)
    with pytest.raises(ValueError):
        ip_pool_range("192.168.1.17", 250, 240)


def test_download_urls():
    assert kind_release_url("v0.20.0", "aarch64") == "https://kind.sigs.k8s.io/dl/v0.20.0/kind-linux-arm64"
    assert kube_apt_repo_url("v1.28") == "https://pkgs.k8s.io/core:/stable:/v1.28/deb/"


def test_helm_set_args_lowers_booleans():
    assert helm_set_args({"crds.enabled": True, "replicas": 2}) == [
        "--set", "crds.enabled=true", "--set", "replicas=2",
    ]
