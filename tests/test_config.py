"""Tests for kind and k3d configuration loading."""

import pytest
import yaml

from clusterkit.provisioners.config import (
    DEFAULT_K3D_NAME,
    DEFAULT_KIND_NAME,
    KindClusterConfig,
    load_k3d_config,
    load_kind_config,
)
from clusterkit.shared.errors import ConfigError

KIND_CONFIG = """\
kind: Cluster
apiVersion: kind.x-k8s.io/v1alpha4
name: dev
nodes:
  - role: control-plane
containerdConfigPatches:
  - |
    [plugins."io.containerd.grpc.v1.cri".registry.mirrors."docker.io"]
      endpoint = ["http://kind-docker.io:5000"]
"""

K3D_CONFIG = """\
apiVersion: k3d.io/v1alpha5
kind: Simple
metadata:
  name: demo
registries:
  config: |
    mirrors:
      docker.io:
        endpoint:
          - http://k3d-docker.io:5000
"""


def test_missing_files_yield_defaults(tmp_path):
    missing = str(tmp_path / "absent.yaml")
    assert load_kind_config(missing).name == DEFAULT_KIND_NAME
    assert load_kind_config("").name == DEFAULT_KIND_NAME
    assert load_k3d_config(missing).name == DEFAULT_K3D_NAME


def test_load_kind_config(tmp_path):
    path = tmp_path / "kind.yaml"
    path.write_text(KIND_CONFIG)

    config = load_kind_config(str(path))

    assert config.name == "dev"
    assert len(config.containerd_config_patches) == 1
    assert "docker.io" in config.containerd_config_patches[0]


def test_kind_yaml_keeps_unknown_fields_and_overrides_name(tmp_path):
    path = tmp_path / "kind.yaml"
    path.write_text(KIND_CONFIG)

    document = yaml.safe_load(load_kind_config(str(path)).with_name("other").to_yaml())

    assert document["name"] == "other"
    assert document["nodes"] == [{"role": "control-plane"}]
    assert document["kind"] == "Cluster"


def test_default_kind_config_serializes_type_meta():
    document = yaml.safe_load(KindClusterConfig().to_yaml())
    assert document == {
        "kind": "Cluster",
        "apiVersion": "kind.x-k8s.io/v1alpha4",
        "name": "kind",
    }


def test_load_k3d_config(tmp_path):
    path = tmp_path / "k3d.yaml"
    path.write_text(K3D_CONFIG)

    config = load_k3d_config(str(path))

    assert config.name == "demo"
    assert "k3d-docker.io:5000" in config.registries_config


def test_wrong_kind_is_rejected(tmp_path):
    path = tmp_path / "k3d.yaml"
    path.write_text(KIND_CONFIG)

    with pytest.raises(ConfigError, match="unsupported apiVersion"):
        load_k3d_config(str(path))


def test_invalid_yaml_is_rejected(tmp_path):
    path = tmp_path / "kind.yaml"
    path.write_text("name: [unterminated\n")

    with pytest.raises(ConfigError):
        load_kind_config(str(path))


def test_non_mapping_is_rejected(tmp_path):
    path = tmp_path / "kind.yaml"
    path.write_text("- a\n- b\n")

    with pytest.raises(ConfigError, match="mapping"):
        load_kind_config(str(path))
