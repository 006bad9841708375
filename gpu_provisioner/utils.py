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


"""Utility functions for command lookup, helm overrides, and download URLs."""

from __future__ import annotations

import ipaddress
from collections.abc import Mapping
from typing import Any

import sh

from gpu_provisioner.constants import KIND_DOWNLOAD_BASE_URL, KUBE_APT_BASE_URL

_ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
}


def command_exists(cmd: str) -> bool:
    """Check if a command exists on the system PATH.

    Args:
        cmd: Name of the CLI command to check.

    Returns:
        True if ``which`` resolves the command.
    """
    try:
        path = sh.which(cmd)
    except (sh.ErrorReturnCode, sh.CommandNotFound):
        return False
    return bool(path)


def helm_set_args(values: Mapping[str, Any]) -> list[str]:
    """Build ``--set key=value`` argument pairs from a values mapping.

    Booleans are lowered so helm parses them as YAML booleans.

    Args:
        values: Flat mapping of dotted helm value keys to values.

    Returns:
        Flat list of ``--set`` / ``key=value`` arguments.
    """
    args: list[str] = []
    for key, value in values.items():
        if isinstance(value, bool):
            value = str(value).lower()
        args.extend(["--set", f"{key}={value}"])
    return args


def debian_arch(machine: str) -> str:
    """Map ``platform.machine()`` output to the Debian / Go architecture name."""
    return _ARCH_ALIASES.get(machine.lower(), machine.lower())


def kind_release_url(version: str, machine: str) -> str:
    """Build the download URL of the kind binary.

    Args:
        version: kind release version tag (e.g. ``v0.20.0``).
        machine: Host machine architecture.

    Returns:
        Full download URL for the linux binary.
    """
    return f"{KIND_DOWNLOAD_BASE_URL}/{version}/kind-linux-{debian_arch(machine)}"


def kube_apt_repo_url(minor: str) -> str:
    """Build the Kubernetes apt repository URL for a minor version (e.g. ``v1.28``)."""
    return f"{KUBE_APT_BASE_URL}/{minor}/deb/"


def ip_pool_range(node_ip: str, first: int, last: int) -> str:
    """Derive a load-balancer address range in the node's /24.

    Args:
        node_ip: IPv4 address of a cluster node.
        first: First host octet of the range.
        last: Last host octet of the range.

    Returns:
        Range string such as ``192.168.1.240-192.168.1.250``.

    Raises:
        ValueError: If *node_ip* is not IPv4 or the octets are invalid.
    """
    address = ipaddress.ip_address(node_ip)
    if address.version != 4:
        raise ValueError(f"Only IPv4 node addresses are supported, got {node_ip}")
    if not 0 < first <= last < 255:
        raise ValueError(f"Invalid address pool octets {first}-{last}")
    prefix = node_ip.rsplit(".", 1)[0]
    return f"{prefix}.{first}-{prefix}.{last}"
