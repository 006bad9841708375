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

from pathlib import Path

import pytest
from pydantic import ValidationError

from gpu_provisioner.config import ClusterConfig, EnvironmentChoice, InferenceConfig, resolve_config


def test_defaults_come_from_dependencies_yaml():
    config = resolve_config()
    assert config.cluster.kind_version == "v0.20.0"
    assert config.gpu.cert_manager_version == "v1.15.1"
    assert config.inference.metallb_version == "v0.14.3"
    assert config.run.environment is EnvironmentChoice.AUTO


def test_env_vars_are_loaded(monkeypatch):
    monkeypatch.setenv("GPU_STACK_CLUSTER_NAME", "lab")
    monkeypatch.setenv("GPU_STACK_SKIP_METALLB", "true")
    monkeypatch.setenv("GPU_STACK_ENVIRONMENT", "containerized-host")
    config = resolve_config()
    assert config.cluster.cluster_name == "lab"
    assert config.run.skip_metallb is True
    assert config.run.environment is EnvironmentChoice.CONTAINERIZED


def test_cli_overrides_win_but_unset_flags_keep_env(monkeypatch):
    monkeypatch.setenv("GPU_STACK_SKIP_INFERENCE", "true")
    config = resolve_config(cluster_name="override", model="org/model", skip_gpu_operator=True, state_dir=Path("/tmp/s"))
    assert config.cluster.cluster_name == "override"
    assert config.inference.model == "org/model"
    assert config.run.skip_gpu_operator is True
    assert config.run.skip_inference is True
    assert config.run.state_dir == Path("/tmp/s")


def test_validation():
    with pytest.raises(ValidationError):
        ClusterConfig(cluster_name="Not_Valid")
    with pytest.raises(ValidationError):
        InferenceConfig(storage_size="fifty gigs")
