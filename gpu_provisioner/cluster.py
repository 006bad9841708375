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


"""Containerized-host bring-up: client tooling and an ephemeral kind cluster."""

from __future__ import annotations

from gpu_provisioner.constants import (
    BIN_DIR,
    DOCKER_INSTALL_SCRIPT_URL,
    NODES_READY_POLL,
)
from gpu_provisioner.host import add_kubernetes_repository, apt_install, package_manager_phase, pinned
from gpu_provisioner.manifests import kind_cluster_config
from gpu_provisioner.phase import Phase, PhaseContext, Readiness, resource_exists
from gpu_provisioner.utils import kind_release_url

DOCKER_INSTALL_SCRIPT = "/tmp/get-docker.sh"


# ============================================================================
# Client tooling
# ============================================================================

def _install_kubectl(ctx: PhaseContext) -> None:
    add_kubernetes_repository(ctx)
    apt_install(ctx, *pinned(ctx, ["kubectl"]))
    ctx.runner.run(["apt-mark", "hold", "kubectl"])


def _install_docker_cli(ctx: PhaseContext) -> None:
    ctx.runner.run(["curl", "-fsSL", "-o", DOCKER_INSTALL_SCRIPT, DOCKER_INSTALL_SCRIPT_URL])
    try:
        ctx.runner.run(["sh", DOCKER_INSTALL_SCRIPT], timeout=ctx.config.run.install_timeout)
    finally:
        ctx.runner.run(["rm", "-f", DOCKER_INSTALL_SCRIPT])


def _install_kind(ctx: PhaseContext) -> None:
    url = kind_release_url(ctx.config.cluster.kind_version, ctx.env.architecture)
    target = f"{BIN_DIR}/kind"
    ctx.runner.run(["curl", "-fsSL", "-o", target, url], timeout=ctx.config.run.install_timeout)
    ctx.runner.run(["chmod", "+x", target])


# ============================================================================
# Cluster operations
# ============================================================================

def _create_kind_cluster(ctx: PhaseContext) -> None:
    name = ctx.config.cluster.cluster_name
    ctx.runner.run(
        ["kind", "create", "cluster", "--name", name, "--config=-"],
        timeout=ctx.config.run.install_timeout,
        input_text=kind_cluster_config(ctx.config.cluster),
    )
    ctx.runner.run(["kubectl", "cluster-info", "--context", f"kind-{name}"])


def prepare_model_dir(ctx: PhaseContext) -> None:
    """Create the model host path inside the kind control-plane node."""
    node = f"{ctx.config.cluster.cluster_name}-control-plane"
    path = ctx.config.inference.model_host_path
    ctx.runner.run(["docker", "exec", node, "mkdir", "-p", path])
    ctx.runner.run(["docker", "exec", node, "chmod", "777", path])


def containerized_phases(cluster_name: str, create_cluster: bool = True) -> list[Phase]:
    """kubectl plus, unless the cluster already exists, Docker CLI, kind, and a kind cluster.

    Args:
        cluster_name: Name of the kind cluster to create or reuse.
        create_cluster: False to install client tooling only.
    """
    phases = [
        package_manager_phase(),
        Phase(
            name="install-kubectl",
            description="Installing kubectl",
            action=_install_kubectl,
            exists=resource_exists("command", "kubectl"),
        ),
    ]
    if not create_cluster:
        return phases
    phases += [
        Phase(
            name="install-docker-cli",
            description="Installing the Docker CLI",
            action=_install_docker_cli,
            exists=resource_exists("command", "docker"),
        ),
        Phase(
            name="install-kind",
            description="Installing kind",
            action=_install_kind,
            exists=resource_exists("command", "kind"),
        ),
        Phase(
            name="create-kind-cluster",
            description=f"Creating kind cluster '{cluster_name}'",
            action=_create_kind_cluster,
            exists=resource_exists("kind-cluster", cluster_name),
            postcondition=Readiness(
                lambda ctx: ctx.cluster.nodes_ready(), *NODES_READY_POLL, description="cluster nodes",
            ),
        ),
    ]
    return phases
