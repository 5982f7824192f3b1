"""Registry containers managed through the Docker Engine API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import docker
from docker.errors import DockerException, ImageNotFound, NotFound
from requests.exceptions import RequestException

from clusterkit.shared.errors import (
    RegistryError,
    RegistryNotFoundError,
    RegistryPortNotFoundError,
)

_logger = logging.getLogger("clusterkit.registries")

# Engine API failures plus transport failures when the daemon is unreachable.
_DOCKER_ERRORS = (DockerException, RequestException)

REGISTRY_IMAGE = "registry:3"
REGISTRY_LABEL = "io.clusterkit.registry"
REGISTRY_CLUSTER_LABEL = "io.clusterkit.registry.cluster"
REGISTRY_CONTAINER_PORT = "5000/tcp"
REGISTRY_DATA_PATH = "/var/lib/registry"
REGISTRY_HOST_IP = "127.0.0.1"

# Networks that belong to a local cluster; a registry attached to one of
# these (other than the one being torn down) is still in use.
CLUSTER_NETWORK_PREFIXES = ("kind", "k3d-")


@dataclass(frozen=True)
class RegistryConfig:
    """Parameters for one registry container."""

    name: str
    port: int
    upstream_url: str = ""
    cluster_name: str = ""
    network_name: str = ""
    volume_name: str = ""


class RegistryManager:
    """Create, inspect, connect, and delete labelled registry containers."""

    def __init__(self, client: "docker.DockerClient") -> None:
        if client is None:
            raise RegistryError("docker client is required")
        self._client = client

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def _find(self, name: str) -> List[Any]:
        try:
            containers = self._client.containers.list(
                all=True,
                filters={"label": f"{REGISTRY_LABEL}={name}", "name": name},
            )
        except _DOCKER_ERRORS as exc:
            raise RegistryError(f"failed to list registry containers: {exc}") from exc
        # The name filter matches substrings.
        return [c for c in containers if c.name == name]

    def list_registries(self) -> List[str]:
        """Names of all managed registry containers."""

        try:
            containers = self._client.containers.list(
                all=True, filters={"label": REGISTRY_LABEL}
            )
        except _DOCKER_ERRORS as exc:
            raise RegistryError(f"failed to list registry containers: {exc}") from exc

        names: List[str] = []
        for container in containers:
            labels = container.labels or {}
            name = (labels.get(REGISTRY_LABEL) or container.name or "").strip()
            if name and name not in names:
                names.append(name)
        return names

    def registry_exists(self, name: str) -> bool:
        return bool(self._find(name))

    def is_registry_in_use(self, name: str) -> bool:
        containers = self._find(name)
        return bool(containers) and containers[0].status == "running"

    def get_registry_port(self, name: str) -> int:
        """Host port mapped to the registry's 5000/tcp."""

        containers = self._find(name)
        if not containers:
            raise RegistryNotFoundError(f"registry '{name}' not found")
        attrs = containers[0].attrs or {}

        bindings = ((attrs.get("NetworkSettings") or {}).get("Ports") or {}).get(
            REGISTRY_CONTAINER_PORT
        ) or ((attrs.get("HostConfig") or {}).get("PortBindings") or {}).get(
            REGISTRY_CONTAINER_PORT
        )
        for binding in bindings or []:
            host_port = str(binding.get("HostPort") or "")
            if host_port.isdigit() and int(host_port) > 0:
                return int(host_port)
        raise RegistryPortNotFoundError(f"registry '{name}' exposes no host port")

    # ------------------------------------------------------------------ #
    # Mutations
    # ------------------------------------------------------------------ #

    def create_registry(self, config: RegistryConfig) -> bool:
        """Ensure the registry container exists and runs.

        Returns True when a container was created, False when one already existed.
        """

        if self.registry_exists(config.name):
            return False

        self._ensure_image()
        volume_name = config.volume_name or config.name
        self._ensure_volume(volume_name)

        labels = {REGISTRY_LABEL: config.name}
        if config.cluster_name:
            labels[REGISTRY_CLUSTER_LABEL] = config.cluster_name

        environment = []
        if config.upstream_url:
            environment.append(f"REGISTRY_PROXY_REMOTEURL={config.upstream_url}")

        ports: Dict[str, Any] = {}
        if config.port > 0:
            ports[REGISTRY_CONTAINER_PORT] = (REGISTRY_HOST_IP, config.port)

        try:
            container = self._client.containers.create(
                REGISTRY_IMAGE,
                name=config.name,
                environment=environment,
                labels=labels,
                ports=ports,
                volumes={volume_name: {"bind": REGISTRY_DATA_PATH, "mode": "rw"}},
                restart_policy={"Name": "unless-stopped"},
                network=config.network_name or None,
            )
            container.start()
        except _DOCKER_ERRORS as exc:
            raise RegistryError(
                f"failed to create registry container {config.name}: {exc}"
            ) from exc
        return True

    def connect_to_network(self, name: str, network_name: str) -> None:
        """Attach a registry container to ``network_name`` if not already attached."""

        containers = self._find(name)
        if not containers:
            raise RegistryNotFoundError(f"registry '{name}' not found")
        container = containers[0]
        if network_name in self._networks_of(container):
            return
        try:
            self._client.networks.get(network_name).connect(container)
        except _DOCKER_ERRORS as exc:
            raise RegistryError(
                f"failed to connect {name} to network {network_name}: {exc}"
            ) from exc

    def delete_registry(
        self, name: str, delete_volume: bool = False, network_name: str = ""
    ) -> None:
        """Detach the registry from ``network_name`` and remove it when unused."""

        containers = self._find(name)
        if not containers:
            raise RegistryNotFoundError(f"registry '{name}' not found")
        container = containers[0]

        network_name = network_name.strip()
        try:
            if network_name and network_name in self._networks_of(container):
                self._client.networks.get(network_name).disconnect(container)
                container.reload()

            if self._attached_elsewhere(container, network_name):
                _logger.info(
                    "Keeping registry %s: still attached to another cluster", name
                )
                return

            if container.status == "running":
                container.stop()
            container.remove()
        except _DOCKER_ERRORS as exc:
            raise RegistryError(f"failed to remove registry {name}: {exc}") from exc

        if delete_volume:
            self._remove_volumes(container, name)

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _networks_of(container: Any) -> Dict[str, Any]:
        attrs = container.attrs or {}
        return (attrs.get("NetworkSettings") or {}).get("Networks") or {}

    def _attached_elsewhere(self, container: Any, network_name: str) -> bool:
        for network in self._networks_of(container):
            if network == network_name:
                continue
            if network.startswith(CLUSTER_NETWORK_PREFIXES):
                return True
        return False

    def _remove_volumes(self, container: Any, name: str) -> None:
        mounts = (container.attrs or {}).get("Mounts") or []
        volumes = [m.get("Name") for m in mounts if m.get("Type") == "volume"]
        for volume_name in [v for v in volumes if v] or [name]:
            try:
                self._client.volumes.get(volume_name).remove()
            except NotFound:
                continue
            except _DOCKER_ERRORS as exc:
                raise RegistryError(
                    f"failed to remove registry volume {volume_name}: {exc}"
                ) from exc

    def _ensure_image(self) -> None:
        try:
            self._client.images.get(REGISTRY_IMAGE)
            return
        except ImageNotFound:
            pass
        except _DOCKER_ERRORS as exc:
            raise RegistryError(f"failed to inspect registry image: {exc}") from exc

        repository, _, tag = REGISTRY_IMAGE.partition(":")
        _logger.info("Pulling %s", REGISTRY_IMAGE)
        try:
            self._client.images.pull(repository, tag=tag or None)
        except _DOCKER_ERRORS as exc:
            raise RegistryError(f"failed to pull registry image: {exc}") from exc

    def _ensure_volume(self, volume_name: str) -> None:
        try:
            self._client.volumes.get(volume_name)
            return
        except NotFound:
            pass
        except _DOCKER_ERRORS as exc:
            raise RegistryError(f"failed to inspect volume {volume_name}: {exc}") from exc
        try:
            self._client.volumes.create(name=volume_name)
        except _DOCKER_ERRORS as exc:
            raise RegistryError(f"failed to create volume {volume_name}: {exc}") from exc


def new_docker_client(timeout: Optional[int] = None) -> "docker.DockerClient":
    """Docker client configured from the environment."""

    if timeout is None:
        return docker.from_env()
    return docker.from_env(timeout=timeout)
