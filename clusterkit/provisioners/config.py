"""Backend configuration documents for kind and k3d."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from clusterkit.shared.errors import ConfigError

KIND_API_VERSION = "kind.x-k8s.io/v1alpha4"
KIND_KIND = "Cluster"
DEFAULT_KIND_NAME = "kind"

K3D_API_VERSION = "k3d.io/v1alpha5"
K3D_KIND = "Simple"
DEFAULT_K3D_NAME = "k3d-default"


@dataclass(frozen=True)
class KindClusterConfig:
    """A kind ``Cluster`` document.

    ``document`` keeps the full parsed mapping so that fields this package does
    not model (nodes, networking, feature gates) survive serialization.
    """

    name: str = DEFAULT_KIND_NAME
    containerd_config_patches: Tuple[str, ...] = ()
    document: Dict[str, Any] = field(default_factory=dict, compare=False)

    def with_name(self, name: str) -> "KindClusterConfig":
        return replace(self, name=name)

    def to_yaml(self) -> str:
        doc = dict(self.document)
        doc.setdefault("kind", KIND_KIND)
        doc.setdefault("apiVersion", KIND_API_VERSION)
        doc["name"] = self.name
        if self.containerd_config_patches:
            doc["containerdConfigPatches"] = list(self.containerd_config_patches)
        return yaml.safe_dump(doc, sort_keys=False)


@dataclass(frozen=True)
class K3dSimpleConfig:
    """A k3d ``Simple`` document; ``registries_config`` is the raw mirrors blob."""

    name: str = DEFAULT_K3D_NAME
    registries_config: str = ""
    document: Dict[str, Any] = field(default_factory=dict, compare=False)


def _read_document(path: Optional[str]) -> Optional[Dict[str, Any]]:
    """Load a YAML mapping, or return None when there is no file to load."""

    if not path:
        return None
    config_path = Path(path).expanduser()
    if not config_path.exists():
        return None

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"failed to read config {config_path}: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"config {config_path} must contain a mapping")
    return data


def _check_type_meta(
    data: Dict[str, Any], path: Optional[str], api_version: str, kind: str
) -> None:
    found_version = data.get("apiVersion")
    if found_version and found_version != api_version:
        raise ConfigError(
            f"config {path}: unsupported apiVersion '{found_version}', expected '{api_version}'"
        )
    found_kind = data.get("kind")
    if found_kind and found_kind != kind:
        raise ConfigError(f"config {path}: unsupported kind '{found_kind}', expected '{kind}'")


def load_kind_config(path: Optional[str]) -> KindClusterConfig:
    """Load a kind config; a missing file yields the default ``kind`` cluster."""

    data = _read_document(path)
    if data is None:
        return KindClusterConfig(
            document={"kind": KIND_KIND, "apiVersion": KIND_API_VERSION}
        )

    _check_type_meta(data, path, KIND_API_VERSION, KIND_KIND)

    patches = data.get("containerdConfigPatches") or []
    if not isinstance(patches, list) or not all(isinstance(p, str) for p in patches):
        raise ConfigError(f"config {path}: containerdConfigPatches must be a list of strings")

    name = str(data.get("name") or "").strip() or DEFAULT_KIND_NAME
    return KindClusterConfig(
        name=name,
        containerd_config_patches=tuple(patches),
        document=data,
    )


def load_k3d_config(path: Optional[str]) -> K3dSimpleConfig:
    """Load a k3d simple config; a missing file yields ``k3d-default``."""

    data = _read_document(path)
    if data is None:
        return K3dSimpleConfig(
            document={"kind": K3D_KIND, "apiVersion": K3D_API_VERSION}
        )

    _check_type_meta(data, path, K3D_API_VERSION, K3D_KIND)

    metadata = data.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise ConfigError(f"config {path}: metadata must be a mapping")
    name = str(metadata.get("name") or data.get("name") or "").strip()

    registries = data.get("registries") or {}
    if not isinstance(registries, dict):
        raise ConfigError(f"config {path}: registries must be a mapping")
    blob = registries.get("config") or ""
    if not isinstance(blob, str):
        raise ConfigError(f"config {path}: registries.config must be a string")

    return K3dSimpleConfig(
        name=name or DEFAULT_K3D_NAME,
        registries_config=blob,
        document=data,
    )
