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

"""Constants, dependency loading, and dep_value helper."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml


def load_dependencies() -> dict:
    """Load pinned versions and images from dependencies.yaml.

    Returns:
        Parsed YAML content as a nested dictionary.
    """
    deps_file = Path(__file__).resolve().parent / "dependencies.yaml"
    with open(deps_file) as f:
        return yaml.safe_load(f)


DEPENDENCIES = load_dependencies()


def dep_value(*keys: str, default: Any = None) -> Any:
    """Safely traverse the DEPENDENCIES dict by key path.

    Args:
        *keys: Sequence of dictionary keys to traverse.
        default: Value to return if any key is missing.

    Returns:
        The value at the nested key path, or *default* if not found.
    """
    node = DEPENDENCIES
    for key in keys:
        if not isinstance(node, dict):
            return default
        node = node.get(key)
        if node is None:
            return default
    return node


# -- CLI exit codes --
EXIT_SUCCESS = 0
EXIT_PHASE_FAILED = 1
EXIT_UNSUPPORTED_ENVIRONMENT = 2

# -- Command runner --
DEFAULT_COMMAND_TIMEOUT_SECONDS = 300
DEFAULT_INSTALL_TIMEOUT_SECONDS = 900
CANCEL_CHECK_INTERVAL_SECONDS = 0.2
TERMINATE_GRACE_SECONDS = 5
PROBE_COMMAND_TIMEOUT_SECONDS = 10
QUERY_TIMEOUT_SECONDS = 30

# -- Readiness polling (interval, deadline) in seconds --
PACKAGE_LOCK_POLL = (2, 300)
CONTAINERD_ACTIVE_POLL = (2, 60)
API_REACHABLE_POLL = (5, 300)
NODES_READY_POLL = (10, 300)
CERT_MANAGER_READY_POLL = (5, 300)
GPU_OPERATOR_READY_POLL = (10, 300)
GPU_NODE_LABEL_POLL = (10, 120)
PVC_BOUND_POLL = (5, 60)
METALLB_READY_POLL = (5, 90)
DEPLOYMENT_AVAILABLE_POLL = (10, 600)
LOADBALANCER_IP_POLL = (10, 300)

# -- Host markers --
DOCKERENV_MARKER = "/.dockerenv"
PODMAN_MARKER = "/run/.containerenv"
INIT_CGROUP_FILE = "/proc/1/cgroup"
INIT_COMM_FILE = "/proc/1/comm"
MEMINFO_FILE = "/proc/meminfo"
SWAPS_FILE = "/proc/swaps"
OS_RELEASE_FILE = "/etc/os-release"
DOCKER_SOCKET = "/var/run/docker.sock"
DPKG_LOCK_FILE = "/var/lib/dpkg/lock-frontend"
CONTAINER_CGROUP_KEYWORDS = ("docker", "lxc", "containerd", "kubepods")
DEBIAN_FAMILY = ("debian", "ubuntu")
PCI_DISPLAY_CLASSES = ("VGA compatible controller", "3D controller", "Display controller")
DEFAULT_GPU_VENDOR_ID = "1002"
DEFAULT_MIN_MEMORY_MB = 2048

# -- Host configuration paths --
KUBE_ADMIN_CONF = "/etc/kubernetes/admin.conf"
KUBE_APT_KEYRING = "/usr/share/keyrings/kubernetes-archive-keyring.gpg"
KUBE_APT_SOURCE = "/etc/apt/sources.list.d/kubernetes.list"
KUBE_APT_KEY_DOWNLOAD = "/tmp/kubernetes-release.key"
MODULES_LOAD_FILE = "/etc/modules-load.d/k8s.conf"
SYSCTL_FILE = "/etc/sysctl.d/k8s.conf"
CONTAINERD_CONFIG_DIR = "/etc/containerd"
CONTAINERD_CONFIG_FILE = "/etc/containerd/config.toml"
FSTAB_FILE = "/etc/fstab"
KERNEL_MODULES = ("overlay", "br_netfilter")
SYSCTL_SETTINGS = {
    "net.bridge.bridge-nf-call-iptables": "1",
    "net.bridge.bridge-nf-call-ip6tables": "1",
    "net.ipv4.ip_forward": "1",
}
BIN_DIR = "/usr/local/bin"

# -- Installer scripts --
HELM_INSTALL_SCRIPT_URL = "https://raw.githubusercontent.com/helm/helm/main/scripts/get-helm-3"
DOCKER_INSTALL_SCRIPT_URL = "https://get.docker.com"
KUBE_APT_BASE_URL = "https://pkgs.k8s.io/core:/stable:"
KIND_DOWNLOAD_BASE_URL = "https://kind.sigs.k8s.io/dl"
METALLB_MANIFEST_URL = "https://raw.githubusercontent.com/metallb/metallb/{version}/config/manifests/metallb-native.yaml"

# -- Namespaces --
NS_CERT_MANAGER = "cert-manager"
NS_GPU_OPERATOR = "kube-amd-gpu"
NS_METALLB = "metallb-system"
NS_FLANNEL = "kube-flannel"
NS_DEFAULT = "default"

# -- Helm releases and repos --
HELM_RELEASE_CERT_MANAGER = "cert-manager"
HELM_RELEASE_GPU_OPERATOR = "amd-gpu-operator"
HELM_REPO_JETSTACK = "jetstack"
HELM_REPO_ROCM = "rocm"
HELM_CHART_CERT_MANAGER = "jetstack/cert-manager"
HELM_CHART_GPU_OPERATOR = "rocm/gpu-operator-charts"

# -- Labels and selectors --
LABEL_CONTROL_PLANE = "node-role.kubernetes.io/control-plane"
LABEL_GPU_NODE = "feature.node.kubernetes.io/amd-gpu"
SELECTOR_CERT_MANAGER = "app.kubernetes.io/instance=cert-manager"
SELECTOR_GPU_OPERATOR = "app.kubernetes.io/name=gpu-operator-charts"
SELECTOR_METALLB = "app=metallb"
GPU_RESOURCE_NAME = "amd.com/gpu"

# -- Cluster resource kinds --
KIND_DEVICE_CONFIG = "deviceconfigs.amd.com"
KIND_IP_POOL = "ipaddresspools.metallb.io"

# -- Defaults --
DEFAULT_CLUSTER_NAME = "amd-gpu-cluster"
DEFAULT_POD_NETWORK_CIDR = "10.244.0.0/16"
DEFAULT_DEVICE_CONFIG_NAME = "gpu-operator"
DEFAULT_METRICS_PORT = 5000
DEFAULT_METRICS_NODE_PORT = 32500
DEFAULT_IP_POOL_NAME = "default-pool"
DEFAULT_L2_ADVERTISEMENT_NAME = "default-advertisement"
DEFAULT_IP_POOL_FIRST_OCTET = 240
DEFAULT_IP_POOL_LAST_OCTET = 250
DEFAULT_INFERENCE_NAME = "vllm-inference"
DEFAULT_SERVICE_NAME = "vllm-service"
DEFAULT_PVC_NAME = "llama-3.2-1b"
DEFAULT_STORAGE_SIZE = "50Gi"
DEFAULT_MODEL_HOST_PATH = "/mnt/data/llama"
DEFAULT_STORAGE_CLASS = "local-storage"
INFERENCE_PORT = 8000

# -- State --
DEFAULT_STATE_DIR = Path.home() / ".local" / "state" / "gpu-provisioner"
RUN_LOG_NAME = "run.log"
LAST_RUN_NAME = "last-run.json"
