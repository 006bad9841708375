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


"""Bare-metal host preparation and kubeadm control-plane bring-up."""

from __future__ import annotations

from pathlib import Path

from gpu_provisioner.constants import (
    API_REACHABLE_POLL,
    CONTAINERD_ACTIVE_POLL,
    CONTAINERD_CONFIG_DIR,
    CONTAINERD_CONFIG_FILE,
    FSTAB_FILE,
    KERNEL_MODULES,
    KUBE_ADMIN_CONF,
    KUBE_APT_KEY_DOWNLOAD,
    KUBE_APT_KEYRING,
    KUBE_APT_SOURCE,
    LABEL_CONTROL_PLANE,
    MODULES_LOAD_FILE,
    NODES_READY_POLL,
    NS_FLANNEL,
    PACKAGE_LOCK_POLL,
    SYSCTL_FILE,
    dep_value,
)
from gpu_provisioner.manifests import modules_load_conf, sysctl_conf
from gpu_provisioner.phase import Phase, PhaseContext, Readiness, resource_exists
from gpu_provisioner.probe import Tristate, package_lock_state
from gpu_provisioner.utils import kube_apt_repo_url

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


# ============================================================================
# Package helpers (shared with the containerized plan)
# ============================================================================

def apt_update(ctx: PhaseContext) -> None:
    ctx.runner.run(["apt-get", "update"], timeout=ctx.config.run.install_timeout, env=APT_ENV)


def apt_install(ctx: PhaseContext, *packages: str) -> None:
    ctx.runner.run(
        ["apt-get", "install", "-y", *packages],
        timeout=ctx.config.run.install_timeout,
        env=APT_ENV,
    )


def write_file(ctx: PhaseContext, path: str, content: str) -> None:
    """Write *content* to a root-owned *path* through the runner."""
    ctx.runner.run(["tee", path], input_text=content)


def pinned(ctx: PhaseContext, packages: list[str]) -> list[str]:
    """Append the configured Kubernetes package version to each package name."""
    version = ctx.config.cluster.kubernetes_package_version
    return [f"{package}={version}" if version else package for package in packages]


def add_kubernetes_repository(ctx: PhaseContext) -> None:
    """Register the signed pkgs.k8s.io apt repository for the configured minor version."""
    repo_url = kube_apt_repo_url(ctx.config.cluster.kubernetes_minor)
    apt_update(ctx)
    apt_install(ctx, "ca-certificates", "curl", "gnupg", "lsb-release")
    ctx.runner.run(["curl", "-fsSL", "-o", KUBE_APT_KEY_DOWNLOAD, f"{repo_url}Release.key"])
    ctx.runner.run(["gpg", "--dearmor", "--yes", "-o", KUBE_APT_KEYRING, KUBE_APT_KEY_DOWNLOAD])
    write_file(ctx, KUBE_APT_SOURCE, f"deb [signed-by={KUBE_APT_KEYRING}] {repo_url} /\n")
    apt_update(ctx)


def package_manager_phase() -> Phase:
    """Wait until no other process holds the dpkg lock.

    An undeterminable lock state counts as free; apt-get reports contention itself.
    """
    return Phase(
        name="wait-package-manager",
        description="Waiting for the package manager",
        postcondition=Readiness(
            lambda ctx: package_lock_state(ctx.runner) is not Tristate.YES,
            *PACKAGE_LOCK_POLL,
            description="dpkg lock release",
        ),
    )


# ============================================================================
# Host preparation
# ============================================================================

def _disable_swap(ctx: PhaseContext) -> None:
    ctx.runner.run(["swapoff", "-a"])
    # Comment out active swap entries so the change survives a reboot.
    ctx.runner.run(["sed", "-i", r"/^[^#].*\sswap\s/ s/^/#/", FSTAB_FILE])


def _configure_kernel(ctx: PhaseContext) -> None:
    write_file(ctx, MODULES_LOAD_FILE, modules_load_conf())
    for module in KERNEL_MODULES:
        ctx.runner.run(["modprobe", module])
    write_file(ctx, SYSCTL_FILE, sysctl_conf())
    ctx.runner.run(["sysctl", "--system"])


def _kernel_configured(ctx: PhaseContext) -> bool:
    return all(ctx.guard.exists("file", path) for path in (MODULES_LOAD_FILE, SYSCTL_FILE))


def _install_containerd(ctx: PhaseContext) -> None:
    apt_update(ctx)
    apt_install(ctx, "containerd")
    ctx.runner.run(["mkdir", "-p", CONTAINERD_CONFIG_DIR])
    default_config = ctx.runner.run(["containerd", "config", "default"]).stdout
    write_file(ctx, CONTAINERD_CONFIG_FILE, default_config.replace("SystemdCgroup = false", "SystemdCgroup = true"))
    ctx.runner.run(["systemctl", "restart", "containerd"])
    ctx.runner.run(["systemctl", "enable", "containerd"])


def _containerd_active(ctx: PhaseContext) -> bool:
    result = ctx.runner.run(["systemctl", "is-active", "--quiet", "containerd"], expected_exit_codes=(0, 1, 3, 4))
    return result.exit_code == 0


def _install_kubernetes_packages(ctx: PhaseContext) -> None:
    packages = list(dep_value("kubernetes", "packages", default=["kubelet", "kubeadm", "kubectl"]))
    add_kubernetes_repository(ctx)
    apt_install(ctx, *pinned(ctx, packages))
    ctx.runner.run(["apt-mark", "hold", *packages])
    ctx.runner.run(["systemctl", "enable", "--now", "kubelet"])


# ============================================================================
# Control plane
# ============================================================================

def install_admin_kubeconfig(ctx: PhaseContext) -> None:
    """Copy the kubeadm admin kubeconfig to the invoking user's default location."""
    target = Path.home() / ".kube" / "config"
    ctx.runner.run(["install", "-D", "-m", "600", KUBE_ADMIN_CONF, str(target)])


def _init_control_plane(ctx: PhaseContext) -> None:
    ctx.runner.run(
        ["kubeadm", "init", f"--pod-network-cidr={ctx.config.cluster.pod_network_cidr}"],
        timeout=ctx.config.run.install_timeout,
    )
    install_admin_kubeconfig(ctx)


def _install_pod_network(ctx: PhaseContext) -> None:
    ctx.cluster.apply_url(ctx.config.cluster.cni_manifest_url)


def _untaint_control_plane(ctx: PhaseContext) -> None:
    ctx.cluster.kubectl("taint", "nodes", "--all", f"{LABEL_CONTROL_PLANE}-")


def prepare_model_dir(ctx: PhaseContext) -> None:
    """Create the model host path directly on this host."""
    path = ctx.config.inference.model_host_path
    ctx.runner.run(["mkdir", "-p", path])
    ctx.runner.run(["chmod", "777", path])


def bare_metal_phases(create_cluster: bool = True) -> list[Phase]:
    """Host tuning, container runtime, Kubernetes packages, and kubeadm init.

    Args:
        create_cluster: False when the cluster already exists; no phases are built.
    """
    if not create_cluster:
        return []
    return [
        package_manager_phase(),
        Phase(
            name="disable-swap",
            description="Disabling swap",
            action=_disable_swap,
            exists=lambda ctx: ctx.env.swap_active is Tristate.NO,
        ),
        Phase(
            name="configure-kernel",
            description="Loading kernel modules and applying sysctls",
            action=_configure_kernel,
            exists=_kernel_configured,
        ),
        Phase(
            name="install-container-runtime",
            description="Installing containerd",
            action=_install_containerd,
            exists=resource_exists("command", "containerd"),
            postcondition=Readiness(_containerd_active, *CONTAINERD_ACTIVE_POLL, description="containerd service"),
        ),
        Phase(
            name="install-kubernetes-packages",
            description="Installing kubelet, kubeadm, and kubectl",
            action=_install_kubernetes_packages,
            exists=resource_exists("command", "kubeadm"),
        ),
        Phase(
            name="init-control-plane",
            description="Initializing the control plane",
            action=_init_control_plane,
            precondition=lambda ctx: ctx.env.swap_active is not Tristate.YES,
            precondition_reason="swap is still active",
            exists=resource_exists("file", KUBE_ADMIN_CONF),
            postcondition=Readiness(
                lambda ctx: ctx.cluster.is_reachable(), *API_REACHABLE_POLL, description="Kubernetes API server",
            ),
            refresh_env=True,
        ),
        Phase(
            name="install-pod-network",
            description="Installing the pod network",
            action=_install_pod_network,
            exists=resource_exists("namespace", NS_FLANNEL),
            postcondition=Readiness(
                lambda ctx: ctx.cluster.nodes_ready(), *NODES_READY_POLL, description="cluster nodes",
            ),
        ),
        Phase(
            name="untaint-control-plane",
            description="Allowing workloads on the control plane",
            action=_untaint_control_plane,
            best_effort=True,
        ),
    ]
