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


"""Environment prober: read-only host facts that drive plan selection."""

from __future__ import annotations

import os
import platform
import re
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

import docker

from gpu_provisioner import logger
from gpu_provisioner.constants import (
    CONTAINER_CGROUP_KEYWORDS,
    DEFAULT_GPU_VENDOR_ID,
    DOCKER_SOCKET,
    DOCKERENV_MARKER,
    DPKG_LOCK_FILE,
    INIT_CGROUP_FILE,
    INIT_COMM_FILE,
    MEMINFO_FILE,
    OS_RELEASE_FILE,
    PCI_DISPLAY_CLASSES,
    PODMAN_MARKER,
    PROBE_COMMAND_TIMEOUT_SECONDS,
    SWAPS_FILE,
)
from gpu_provisioner.errors import CommandError
from gpu_provisioner.runner import CommandRunner
from gpu_provisioner.utils import command_exists


class Tristate(str, Enum):
    """A host fact that may not be determinable."""

    YES = "yes"
    NO = "no"
    UNKNOWN = "unknown"

    @classmethod
    def of(cls, value: bool) -> Tristate:
        return cls.YES if value else cls.NO


@dataclass(frozen=True)
class EnvironmentSnapshot:
    """Point-in-time record of host facts.

    Attributes:
        containerized: True if the host is itself a container.
        systemd: Whether systemd is the running init system.
        package_lock_busy: Whether another process holds the dpkg lock.
        gpu_present: Whether a display-class PCI device from the GPU vendor exists.
        swap_active: Whether any swap device is enabled.
        docker_available: Whether a Docker daemon is reachable.
        memory_total_mb: Total RAM, or None if unreadable.
        memory_available_mb: Available RAM, or None if unreadable.
        disk_free_mb: Free space on the root filesystem, or None if unreadable.
        os_id: ``ID`` from os-release (e.g. ``ubuntu``).
        os_version: ``VERSION_ID`` from os-release.
        os_like: ``ID_LIKE`` entries from os-release.
        architecture: Machine architecture (e.g. ``x86_64``).
        is_root: True if running with effective uid 0.
        gpu_devices: lspci lines that matched the GPU filter.
        captured_at: UTC timestamp of the probe.
    """

    containerized: bool
    systemd: Tristate
    package_lock_busy: Tristate
    gpu_present: Tristate
    swap_active: Tristate
    docker_available: Tristate
    memory_total_mb: int | None = None
    memory_available_mb: int | None = None
    disk_free_mb: int | None = None
    os_id: str = "unknown"
    os_version: str = ""
    os_like: tuple[str, ...] = ()
    architecture: str = ""
    is_root: bool = False
    gpu_devices: tuple[str, ...] = ()
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def os_family(self) -> tuple[str, ...]:
        return (self.os_id, *self.os_like)

    def facts(self) -> dict[str, str]:
        """Flatten the snapshot into display-ready strings."""
        memory = "unknown"
        if self.memory_total_mb is not None:
            memory = f"{self.memory_available_mb} MiB available / {self.memory_total_mb} MiB total"
        return {
            "Containerized": str(self.containerized).lower(),
            "systemd": self.systemd.value,
            "Package manager busy": self.package_lock_busy.value,
            "GPU present": self.gpu_present.value,
            "Swap active": self.swap_active.value,
            "Docker available": self.docker_available.value,
            "Memory": memory,
            "Disk free (/)": "unknown" if self.disk_free_mb is None else f"{self.disk_free_mb} MiB",
            "OS": f"{self.os_id} {self.os_version}".strip(),
            "Architecture": self.architecture or "unknown",
            "Root": str(self.is_root).lower(),
        }


def parse_os_release(text: str) -> dict[str, str]:
    """Parse KEY=value lines of an os-release file."""
    values: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        values[key] = value.strip().strip('"').strip("'")
    return values


def parse_meminfo(text: str) -> tuple[int | None, int | None]:
    """Return (MemTotal, MemAvailable) in MiB from /proc/meminfo content."""
    fields: dict[str, int] = {}
    for line in text.splitlines():
        m = re.match(r"^(\w+):\s+(\d+)\s*kB", line)
        if m:
            fields[m.group(1)] = int(m.group(2)) // 1024
    return fields.get("MemTotal"), fields.get("MemAvailable")


def match_gpu_devices(lspci_output: str, vendor_id: str) -> list[str]:
    """Filter ``lspci -nn`` output to display-class devices from *vendor_id*."""
    vendor = f"[{vendor_id.lower()}:"
    return [
        line.strip()
        for line in lspci_output.splitlines()
        if any(cls in line for cls in PCI_DISPLAY_CLASSES) and vendor in line.lower()
    ]


def package_lock_state(runner: CommandRunner, lock_file: str = DPKG_LOCK_FILE) -> Tristate:
    """Check whether any process holds the dpkg frontend lock.

    ``fuser`` exits 0 when a process holds the file and 1 when none does.
    """
    try:
        result = runner.run(
            ["fuser", lock_file],
            timeout=PROBE_COMMAND_TIMEOUT_SECONDS,
            expected_exit_codes=(0, 1),
        )
    except CommandError as err:
        logger.debug("Package lock state unknown: %s", err)
        return Tristate.UNKNOWN
    return Tristate.of(result.exit_code == 0)


class EnvironmentProber:
    """Inspect the host without mutating it.

    Args:
        runner: Command runner used for ``pidof``, ``fuser`` and ``lspci``.
        gpu_vendor_id: PCI vendor id that identifies the target GPUs.
        root: Filesystem root the marker files are resolved against.
    """

    def __init__(self, runner: CommandRunner, gpu_vendor_id: str = DEFAULT_GPU_VENDOR_ID, root: Path = Path("/")) -> None:
        self.runner = runner
        self.gpu_vendor_id = gpu_vendor_id
        self.root = root

    def _path(self, absolute: str) -> Path:
        return self.root / absolute.lstrip("/")

    def _read(self, absolute: str) -> str | None:
        try:
            return self._path(absolute).read_text()
        except OSError:
            return None

    def probe(self) -> EnvironmentSnapshot:
        """Capture an EnvironmentSnapshot of the current host."""
        os_release = parse_os_release(self._read(OS_RELEASE_FILE) or "")
        total_mb, available_mb = parse_meminfo(self._read(MEMINFO_FILE) or "")
        gpu_present, gpu_devices = self._detect_gpu()
        snapshot = EnvironmentSnapshot(
            containerized=self._detect_container(),
            systemd=self._detect_systemd(),
            package_lock_busy=package_lock_state(self.runner),
            gpu_present=gpu_present,
            swap_active=self._detect_swap(),
            docker_available=self._detect_docker(),
            memory_total_mb=total_mb,
            memory_available_mb=available_mb,
            disk_free_mb=self._detect_disk_free(),
            os_id=os_release.get("ID", "unknown").lower(),
            os_version=os_release.get("VERSION_ID", ""),
            os_like=tuple(os_release.get("ID_LIKE", "").lower().split()),
            architecture=platform.machine(),
            is_root=hasattr(os, "geteuid") and os.geteuid() == 0,
            gpu_devices=tuple(gpu_devices),
        )
        logger.info("Environment snapshot: %s", snapshot.facts())
        return snapshot

    def _detect_disk_free(self) -> int | None:
        try:
            return shutil.disk_usage(self.root).free // (1024 * 1024)
        except OSError as err:
            logger.debug("Free disk space unknown: %s", err)
            return None

    def _detect_container(self) -> bool:
        if self._path(DOCKERENV_MARKER).exists() or self._path(PODMAN_MARKER).exists():
            return True
        cgroup = (self._read(INIT_CGROUP_FILE) or "").lower()
        return any(keyword in cgroup for keyword in CONTAINER_CGROUP_KEYWORDS)

    def _detect_systemd(self) -> Tristate:
        try:
            result = self.runner.run(
                ["pidof", "systemd"],
                timeout=PROBE_COMMAND_TIMEOUT_SECONDS,
                expected_exit_codes=(0, 1),
            )
            return Tristate.of(result.exit_code == 0)
        except CommandError as err:
            logger.debug("pidof unavailable, falling back to %s: %s", INIT_COMM_FILE, err)
        comm = self._read(INIT_COMM_FILE)
        if comm is None:
            return Tristate.UNKNOWN
        return Tristate.of(comm.strip() == "systemd")

    def _detect_swap(self) -> Tristate:
        swaps = self._read(SWAPS_FILE)
        if swaps is None:
            return Tristate.UNKNOWN
        # First line is the column header.
        return Tristate.of(len([line for line in swaps.splitlines()[1:] if line.strip()]) > 0)

    def _detect_gpu(self) -> tuple[Tristate, list[str]]:
        try:
            result = self.runner.run(["lspci", "-nn"], timeout=PROBE_COMMAND_TIMEOUT_SECONDS)
        except CommandError as err:
            logger.debug("GPU presence unknown: %s", err)
            return Tristate.UNKNOWN, []
        devices = match_gpu_devices(result.stdout, self.gpu_vendor_id)
        return Tristate.of(bool(devices)), devices

    def _detect_docker(self) -> Tristate:
        try:
            client = docker.from_env()
        except (docker.errors.DockerException, OSError) as err:
            logger.debug("Docker client unavailable: %s", err)
        else:
            try:
                client.ping()
                return Tristate.YES
            except (docker.errors.DockerException, OSError) as err:
                logger.debug("Docker daemon did not answer ping: %s", err)
            finally:
                client.close()
        if self._path(DOCKER_SOCKET).exists() or command_exists("docker"):
            return Tristate.UNKNOWN
        return Tristate.NO
