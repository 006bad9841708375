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


"""Plan selection: pick a variant from the snapshot and assemble its phases."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from gpu_provisioner import cluster, components, host, logger, workload
from gpu_provisioner.config import EnvironmentChoice, StackConfig
from gpu_provisioner.constants import DEBIAN_FAMILY
from gpu_provisioner.errors import UnsupportedEnvironment
from gpu_provisioner.phase import Phase
from gpu_provisioner.probe import EnvironmentSnapshot, Tristate
from gpu_provisioner.utils import debian_arch

SUPPORTED_ARCHITECTURES = ("amd64", "arm64")


class PlanVariant(str, Enum):
    BARE_METAL = "bare-metal"
    CONTAINERIZED_HOST = "containerized-host"


@dataclass(frozen=True)
class ProvisioningPlan:
    """An ordered, immutable list of phases for one variant."""

    variant: PlanVariant
    phases: tuple[Phase, ...]

    def __post_init__(self) -> None:
        names = self.names()
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate phase names in plan: {', '.join(duplicates)}")

    def names(self) -> list[str]:
        return [phase.name for phase in self.phases]


def select_variant(env: EnvironmentSnapshot, config: StackConfig) -> PlanVariant:
    """Choose the plan variant once, from the initial snapshot or the forced setting."""
    choice = config.run.environment
    if choice is EnvironmentChoice.BARE_METAL:
        return PlanVariant.BARE_METAL
    if choice is EnvironmentChoice.CONTAINERIZED:
        return PlanVariant.CONTAINERIZED_HOST
    return PlanVariant.CONTAINERIZED_HOST if env.containerized else PlanVariant.BARE_METAL


def unsupported_reasons(env: EnvironmentSnapshot, config: StackConfig, variant: PlanVariant) -> list[str]:
    """List every reason the host cannot run *variant*; empty when supported."""
    reasons: list[str] = []
    if not env.is_root:
        reasons.append("provisioning requires root privileges")
    if not any(name in DEBIAN_FAMILY for name in env.os_family):
        reasons.append(f"unsupported operating system '{env.os_id}' (Debian or Ubuntu required)")
    if debian_arch(env.architecture) not in SUPPORTED_ARCHITECTURES:
        reasons.append(f"unsupported architecture '{env.architecture or 'unknown'}'")
    min_memory = config.run.min_memory_mb
    if env.memory_total_mb is not None and env.memory_total_mb < min_memory:
        reasons.append(f"insufficient memory: {env.memory_total_mb} MiB total, {min_memory} MiB required")

    if config.run.skip_cluster_creation:
        return reasons
    if variant is PlanVariant.BARE_METAL and env.systemd is Tristate.NO:
        reasons.append("bare-metal provisioning requires systemd as the init system")
    if variant is PlanVariant.CONTAINERIZED_HOST and env.docker_available is Tristate.NO:
        reasons.append("no container runtime reachable for a kind cluster (mount the Docker socket)")
    return reasons


def check_supported(env: EnvironmentSnapshot, config: StackConfig, variant: PlanVariant) -> None:
    """Raise UnsupportedEnvironment when the host cannot run *variant*.

    Raises:
        UnsupportedEnvironment: With every specific reason that applies.
    """
    reasons = unsupported_reasons(env, config, variant)
    if reasons:
        raise UnsupportedEnvironment(reasons)


def build_plan(env: EnvironmentSnapshot, config: StackConfig) -> ProvisioningPlan:
    """Select the variant and assemble its phases, honoring the skip settings.

    Raises:
        UnsupportedEnvironment: Before any phase exists, if the host is unsupported.
    """
    variant = select_variant(env, config)
    check_supported(env, config, variant)

    run = config.run
    create_cluster = not run.skip_cluster_creation
    phases: list[Phase] = []
    if variant is PlanVariant.BARE_METAL:
        phases += host.bare_metal_phases(create_cluster)
    else:
        phases += cluster.containerized_phases(config.cluster.cluster_name, create_cluster)

    phases += [components.verify_access_phase(), components.helm_phase()]
    if not run.skip_gpu_operator:
        phases += components.gpu_operator_phases(config)
    if not run.skip_metallb:
        phases += components.metallb_phases()
    if not run.skip_inference:
        # The kind node sees only its own filesystem; any other cluster shares the host's.
        if variant is PlanVariant.CONTAINERIZED_HOST and create_cluster:
            prepare_dir = cluster.prepare_model_dir
        else:
            prepare_dir = host.prepare_model_dir
        phases += workload.inference_phases(config, prepare_dir)

    plan = ProvisioningPlan(variant, tuple(phases))
    logger.info("Built %s plan with %d phases", variant.value, len(plan.phases))
    return plan
