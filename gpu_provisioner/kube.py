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


"""Narrow clients for the cluster-management API (kubectl) and chart installer (helm)."""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from gpu_provisioner import logger
from gpu_provisioner.constants import DEFAULT_INSTALL_TIMEOUT_SECONDS, GPU_RESOURCE_NAME, QUERY_TIMEOUT_SECONDS
from gpu_provisioner.errors import MalformedOutput, UnexpectedExitCode
from gpu_provisioner.runner import CommandResult, CommandRunner
from gpu_provisioner.utils import helm_set_args

NOT_FOUND_MARKERS = ("NotFound", "not found")
RELEASE_NOT_FOUND_MARKER = "release: not found"


def _parse_json(result: CommandResult) -> Any:
    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as err:
        raise MalformedOutput(result.command, str(err), result.stdout) from err


def _condition_true(resource: Mapping[str, Any], condition_type: str) -> bool:
    conditions = resource.get("status", {}).get("conditions") or []
    return any(c.get("type") == condition_type and c.get("status") == "True" for c in conditions)


class ClusterClient:
    """Read and apply cluster resources through kubectl.

    Args:
        runner: Command runner used for every kubectl invocation.
        kubeconfig: Optional kubeconfig path passed with ``--kubeconfig``.
    """

    def __init__(self, runner: CommandRunner, kubeconfig: str | None = None) -> None:
        self.runner = runner
        self.kubeconfig = kubeconfig

    def kubectl(
        self,
        *args: str,
        timeout: float = QUERY_TIMEOUT_SECONDS,
        expected_exit_codes: tuple[int, ...] = (0,),
        input_text: str | None = None,
    ) -> CommandResult:
        """Run a kubectl command and return the captured result."""
        command = ["kubectl"]
        if self.kubeconfig:
            command += ["--kubeconfig", self.kubeconfig]
        command += list(args)
        return self.runner.run(
            command,
            timeout=timeout,
            expected_exit_codes=expected_exit_codes,
            input_text=input_text,
        )

    # -- Read operations --

    def get_resource(self, kind: str, namespace: str | None, name: str) -> dict | None:
        """Fetch a single resource, or None when it does not exist.

        Raises:
            UnexpectedExitCode: If kubectl fails for any reason other than NotFound.
        """
        args = ["get", kind, name, "-o", "json"]
        if namespace:
            args += ["-n", namespace]
        result = self.kubectl(*args, expected_exit_codes=(0, 1))
        if result.exit_code == 0:
            return _parse_json(result)
        if any(marker in result.stderr for marker in NOT_FOUND_MARKERS):
            return None
        raise UnexpectedExitCode(result.command, result.exit_code, (0,), result.stdout, result.stderr)

    def list_resources(
        self,
        kind: str,
        label_selector: str | None = None,
        namespace: str | None = None,
    ) -> list[dict]:
        """List resources of *kind*, optionally filtered by a label selector."""
        args = ["get", kind, "-o", "json"]
        if namespace:
            args += ["-n", namespace]
        if label_selector:
            args += ["-l", label_selector]
        result = self.kubectl(*args)
        return _parse_json(result).get("items", [])

    def is_reachable(self) -> bool:
        """Return True if the API server answers its readiness endpoint."""
        result = self.kubectl("get", "--raw", "/readyz", expected_exit_codes=(0, 1))
        return result.exit_code == 0

    def namespace_exists(self, name: str) -> bool:
        return self.get_resource("namespace", None, name) is not None

    def nodes_ready(self, label_selector: str | None = None) -> bool:
        """Return True if at least one node matches and every match is Ready."""
        nodes = self.list_resources("nodes", label_selector)
        return bool(nodes) and all(_condition_true(node, "Ready") for node in nodes)

    def pods_ready(self, namespace: str, label_selector: str | None = None) -> bool:
        """Return True if at least one pod matches and every running match is Ready.

        Pods that ran to completion (e.g. install hooks) are ignored.
        """
        pods = [
            pod for pod in self.list_resources("pods", label_selector, namespace)
            if pod.get("status", {}).get("phase") != "Succeeded"
        ]
        return bool(pods) and all(_condition_true(pod, "Ready") for pod in pods)

    def deployment_available(self, name: str, namespace: str) -> bool:
        deployment = self.get_resource("deployment", namespace, name)
        return deployment is not None and _condition_true(deployment, "Available")

    def pvc_bound(self, name: str, namespace: str) -> bool:
        pvc = self.get_resource("pvc", namespace, name)
        return pvc is not None and pvc.get("status", {}).get("phase") == "Bound"

    def gpu_node_count(self, resource: str = GPU_RESOURCE_NAME) -> int:
        """Count nodes that advertise a non-zero *resource* capacity."""
        return sum(
            1 for node in self.list_resources("nodes")
            if str(node.get("status", {}).get("capacity", {}).get(resource, "0")) != "0"
        )

    def service_ingress_ip(self, name: str, namespace: str) -> str | None:
        """Return the first load-balancer ingress IP or hostname of a service."""
        service = self.get_resource("service", namespace, name)
        if service is None:
            return None
        for ingress in service.get("status", {}).get("loadBalancer", {}).get("ingress") or []:
            address = ingress.get("ip") or ingress.get("hostname")
            if address:
                return address
        return None

    def node_internal_ip(self) -> str | None:
        """Return the InternalIP of the first node."""
        for node in self.list_resources("nodes"):
            for address in node.get("status", {}).get("addresses") or []:
                if address.get("type") == "InternalIP":
                    return address.get("address")
        return None

    # -- Write operations --

    def apply_manifest(self, text: str, timeout: float = QUERY_TIMEOUT_SECONDS) -> CommandResult:
        """Apply a YAML manifest passed on stdin."""
        result = self.kubectl("apply", "-f", "-", timeout=timeout, input_text=text)
        logger.info("Applied manifest: %s", result.stdout.strip().replace("\n", "; "))
        return result

    def apply_url(self, url: str, timeout: float = QUERY_TIMEOUT_SECONDS * 4) -> CommandResult:
        """Apply a manifest fetched by kubectl from *url*."""
        return self.kubectl("apply", "-f", url, timeout=timeout)


class HelmClient:
    """Query and install helm releases.

    Args:
        runner: Command runner used for every helm invocation.
        kubeconfig: Optional kubeconfig path passed with ``--kubeconfig``.
    """

    def __init__(self, runner: CommandRunner, kubeconfig: str | None = None) -> None:
        self.runner = runner
        self.kubeconfig = kubeconfig

    def helm(self, *args: str, timeout: float = QUERY_TIMEOUT_SECONDS, expected_exit_codes: tuple[int, ...] = (0,)) -> CommandResult:
        command = ["helm"]
        if self.kubeconfig:
            command += ["--kubeconfig", self.kubeconfig]
        command += list(args)
        return self.runner.run(command, timeout=timeout, expected_exit_codes=expected_exit_codes)

    def is_installed(self, release: str, namespace: str) -> bool:
        """Return True if *release* is deployed in *namespace*.

        Raises:
            UnexpectedExitCode: If helm fails for any reason other than a missing release.
        """
        result = self.helm("status", release, "-n", namespace, expected_exit_codes=(0, 1))
        if result.exit_code == 0:
            return True
        if RELEASE_NOT_FOUND_MARKER in result.stderr:
            return False
        raise UnexpectedExitCode(result.command, result.exit_code, (0,), result.stdout, result.stderr)

    def repo_add(self, name: str, url: str) -> None:
        self.helm("repo", "add", name, url, "--force-update", timeout=QUERY_TIMEOUT_SECONDS * 2)
        self.helm("repo", "update", name, timeout=QUERY_TIMEOUT_SECONDS * 4)

    def install(
        self,
        release: str,
        chart: str,
        namespace: str,
        values: Mapping[str, Any] | None = None,
        timeout: int = DEFAULT_INSTALL_TIMEOUT_SECONDS,
        version: str | None = None,
    ) -> CommandResult:
        """Install *chart* as *release*, creating the namespace and waiting for resources.

        The runner timeout is padded so helm reports its own ``--timeout`` first.
        """
        args = [
            "install", release, chart,
            "--namespace", namespace,
            "--create-namespace",
            "--wait", f"--timeout={timeout}s",
        ]
        if version:
            args += ["--version", version]
        args += helm_set_args(values or {})
        return self.helm(*args, timeout=timeout + QUERY_TIMEOUT_SECONDS)
