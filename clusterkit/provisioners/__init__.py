"""Cluster provisioners for the kind and k3d backends."""

from .base import ClusterIdentity, ClusterProvisioner, Distribution, resolve_name
from .factory import ProvisionerFactory, get_provisioner_factory
from .k3d import K3dClusterProvisioner, K3dCommandBuilders
from .kind import DockerNodeLister, KindClusterProvisioner, KindCommandBuilders
from .listing import ListFormat, parse_list

__all__ = [
    "ClusterIdentity",
    "ClusterProvisioner",
    "Distribution",
    "DockerNodeLister",
    "K3dClusterProvisioner",
    "K3dCommandBuilders",
    "KindClusterProvisioner",
    "KindCommandBuilders",
    "ListFormat",
    "ProvisionerFactory",
    "get_provisioner_factory",
    "parse_list",
    "resolve_name",
]
