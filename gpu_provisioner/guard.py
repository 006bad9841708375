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


"""Idempotency guard: read-only existence checks consulted before mutating actions."""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from pathlib import Path

from gpu_provisioner import logger
from gpu_provisioner.constants import QUERY_TIMEOUT_SECONDS
from gpu_provisioner.kube import ClusterClient, HelmClient
from gpu_provisioner.runner import CommandRunner
from gpu_provisioner.utils import command_exists


class ResourceKind(str, Enum):
    """Resource kinds with a dedicated existence check.

    Any other kind string is looked up as a Kubernetes resource kind.
    """

    COMMAND = "command"
    FILE = "file"
    NAMESPACE = "namespace"
    HELM_RELEASE = "helm-release"
    KIND_CLUSTER = "kind-cluster"


class IdempotencyGuard:
    """Answer "does this already exist?" for host, chart, and cluster resources.

    Args:
        runner: Command runner for queries that need a binary (``kind``).
        cluster: Cluster client for namespace and resource lookups.
        helm: Helm client for release lookups.
        command_lookup: PATH lookup function.
        root: Filesystem root that ``file`` identifiers resolve against.
    """

    def __init__(
        self,
        runner: CommandRunner,
        cluster: ClusterClient,
        helm: HelmClient,
        command_lookup: Callable[[str], bool] = command_exists,
        root: Path = Path("/"),
    ) -> None:
        self.runner = runner
        self.cluster = cluster
        self.helm = helm
        self.command_lookup = command_lookup
        self.root = root

    def exists(self, kind: str, identifier: str, namespace: str | None = None) -> bool:
        """Return True if the resource identified by (*kind*, *identifier*) exists.

        Args:
            kind: A ResourceKind value or a Kubernetes resource kind.
            identifier: Resource name, command name, or absolute path.
            namespace: Namespace for namespaced kinds and helm releases.

        Raises:
            CommandError: If the underlying query itself fails.
        """
        if kind == ResourceKind.COMMAND:
            found = self.command_lookup(identifier)
        elif kind == ResourceKind.FILE:
            found = (self.root / identifier.lstrip("/")).exists()
        elif kind == ResourceKind.NAMESPACE:
            found = self.cluster.namespace_exists(identifier)
        elif kind == ResourceKind.HELM_RELEASE:
            found = self.helm.is_installed(identifier, namespace or "default")
        elif kind == ResourceKind.KIND_CLUSTER:
            result = self.runner.run(["kind", "get", "clusters"], timeout=QUERY_TIMEOUT_SECONDS)
            found = identifier in result.stdout.split()
        else:
            found = self.cluster.get_resource(kind, namespace, identifier) is not None
        target = f"{namespace}/{identifier}" if namespace else identifier
        logger.debug("exists(%s, %s) -> %s", kind, target, found)
        return found
