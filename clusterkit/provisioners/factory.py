"""Construct the provisioner that matches a cluster identity."""

from __future__ import annotations

import os
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from docker.errors import DockerException

from clusterkit.provisioners.base import ClusterIdentity, ClusterProvisioner, Distribution
from clusterkit.provisioners.config import load_k3d_config, load_kind_config
from clusterkit.provisioners.k3d import K3dClusterProvisioner
from clusterkit.provisioners.kind import (
    DEFAULT_KUBECONFIG,
    DockerNodeLister,
    KindClusterProvisioner,
)
from clusterkit.registries.manager import RegistryManager, new_docker_client
from clusterkit.registries.mirrors import RegistryMirrorManager
from clusterkit.shared.errors import (
    ProvisionerConstructionError,
    UnsupportedDistributionError,
)

Builder = Callable[["ProvisionerFactory", ClusterIdentity], Tuple[ClusterProvisioner, Any]]


class ProvisionerFactory:
    """Maps each distribution to a builder returning ``(provisioner, config)``."""

    def __init__(self, docker_client_factory: Callable[[], Any] = new_docker_client):
        self._docker_client_factory = docker_client_factory
        self._builders: Dict[Distribution, Builder] = {}

    def register(self, distribution: Distribution, builder: Builder) -> None:
        self._builders[distribution] = builder

    def available_distributions(self) -> Iterable[Distribution]:
        return self._builders.keys()

    def create(self, identity: ClusterIdentity) -> Tuple[ClusterProvisioner, Any]:
        """Load the backend config named by ``identity`` and build its provisioner.

        Raises:
            UnsupportedDistributionError: no builder for the distribution.
            ConfigError: the backend config file is invalid.
            ProvisionerConstructionError: the Docker client could not be created.
        """

        distribution = identity.distribution
        if not isinstance(distribution, Distribution):
            distribution = Distribution.from_string(distribution)
        builder = self._builders.get(distribution)
        if builder is None:
            raise UnsupportedDistributionError(identity.distribution)
        return builder(self, identity)

    def docker_client(self) -> Any:
        try:
            return self._docker_client_factory()
        except DockerException as exc:
            raise ProvisionerConstructionError(
                f"failed to create Docker client: {exc}"
            ) from exc


def build_kind(
    factory: ProvisionerFactory, identity: ClusterIdentity
) -> Tuple[KindClusterProvisioner, Any]:
    config = load_kind_config(identity.distribution_config)
    client = factory.docker_client()
    provisioner = KindClusterProvisioner(
        config,
        identity.kubeconfig or DEFAULT_KUBECONFIG,
        DockerNodeLister(client),
        client,
        mirrors=RegistryMirrorManager(RegistryManager(client)),
    )
    return provisioner, config


def build_k3d(
    factory: ProvisionerFactory, identity: ClusterIdentity
) -> Tuple[K3dClusterProvisioner, Any]:
    config = load_k3d_config(identity.distribution_config)
    client = factory.docker_client()
    provisioner = K3dClusterProvisioner(
        config,
        _existing_path(identity.distribution_config),
        mirrors=RegistryMirrorManager(RegistryManager(client)),
    )
    return provisioner, config


def _existing_path(path: str) -> str:
    return path if path and os.path.isfile(os.path.expanduser(path)) else ""


_FACTORY: Optional[ProvisionerFactory] = None


def get_provisioner_factory() -> ProvisionerFactory:
    """Process-wide factory with the built-in distributions registered."""

    global _FACTORY
    if _FACTORY is None:
        _FACTORY = ProvisionerFactory()
        _FACTORY.register(Distribution.KIND, build_kind)
        _FACTORY.register(Distribution.K3D, build_k3d)
    return _FACTORY
