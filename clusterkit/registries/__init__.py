"""Local pull-through registry mirrors for clusters."""

from .manager import RegistryConfig, RegistryManager, new_docker_client
from .mirrors import RegistryMirrorManager
from .specs import (
    PortAllocator,
    RegistryInfo,
    extract_registries_from_k3d,
    extract_registries_from_kind,
    parse_containerd_mirrors,
    parse_k3d_mirrors,
)

__all__ = [
    "PortAllocator",
    "RegistryConfig",
    "RegistryInfo",
    "RegistryManager",
    "RegistryMirrorManager",
    "extract_registries_from_k3d",
    "extract_registries_from_kind",
    "new_docker_client",
    "parse_containerd_mirrors",
    "parse_k3d_mirrors",
]
