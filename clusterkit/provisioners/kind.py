"""kind cluster provisioner.

kind has no native start/stop commands, so those operations act directly on the
cluster's node containers through the Docker client.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

import click

from clusterkit.provisioners.base import NodeLister, lifecycle_operation, resolve_name
from clusterkit.provisioners.commands import (
    new_kind_create_command,
    new_kind_delete_command,
    new_kind_list_command,
)
from clusterkit.provisioners.config import KindClusterConfig
from clusterkit.provisioners.listing import ListFormat, parse_list
from clusterkit.registries.mirrors import RegistryMirrorManager
from clusterkit.registries.specs import extract_registries_from_kind
from clusterkit.shared.backend_log import kind_log
from clusterkit.shared.command_runner import CommandRunner, ConsoleCommandRunner
from clusterkit.shared.errors import (
    ClusterKitError,
    ClusterNameRequiredError,
    ClusterNotFoundError,
)

_logger = logging.getLogger("clusterkit.provisioners.kind")

KIND_NETWORK = "kind"
KIND_CLUSTER_LABEL = "io.x-k8s.kind.cluster"
NO_KIND_CLUSTERS = "No kind clusters found."
DEFAULT_KUBECONFIG = "~/.kube/config"

# Grace period handed to the Docker engine when stopping a node.
STOP_TIMEOUT_SECONDS = 60


@dataclass(frozen=True)
class KindCommandBuilders:
    """Constructors for the kind commands a provisioner runs."""

    create: Callable[[], click.Command] = new_kind_create_command
    delete: Callable[[], click.Command] = new_kind_delete_command
    list: Callable[[], click.Command] = new_kind_list_command


class DockerNodeLister:
    """Lists kind node containers by the cluster label kind puts on them."""

    def __init__(self, client: Any) -> None:
        self._client = client

    def list_nodes(self, cluster_name: str) -> List[str]:
        containers = self._client.containers.list(
            all=True, filters={"label": f"{KIND_CLUSTER_LABEL}={cluster_name}"}
        )
        return sorted(c.name for c in containers)


class KindClusterProvisioner:
    """Lifecycle operations for kind clusters."""

    def __init__(
        self,
        config: KindClusterConfig,
        kubeconfig: str,
        node_lister: NodeLister,
        client: Any,
        runner: Optional[CommandRunner] = None,
        builders: Optional[KindCommandBuilders] = None,
        mirrors: Optional[RegistryMirrorManager] = None,
        delete_registry_volumes: bool = False,
    ) -> None:
        self._config = config
        self._kubeconfig = kubeconfig
        self._nodes = node_lister
        self._client = client
        self._runner = runner or ConsoleCommandRunner(backend_log=kind_log)
        self._builders = builders or KindCommandBuilders()
        self._mirrors = mirrors
        self._delete_registry_volumes = delete_registry_volumes

    @property
    def config(self) -> KindClusterConfig:
        return self._config

    def _target(self, name: str) -> str:
        return resolve_name(name, self._config.name)

    async def create(self, name: str = "") -> None:
        target = self._target(name)
        config = self._config.with_name(target) if target else self._config
        registries = extract_registries_from_kind(config.containerd_config_patches)

        with lifecycle_operation("cluster create"):
            if self._mirrors is not None and registries:
                await self._mirrors.setup(registries, target)

            with tempfile.NamedTemporaryFile(
                "w", prefix="kind-config-", suffix=".yaml", delete=False
            ) as handle:
                handle.write(config.to_yaml())
                config_path = handle.name
            try:
                await self._runner.run(
                    self._builders.create(),
                    ["--name", target, "--config", config_path],
                )
            finally:
                os.remove(config_path)

            if self._mirrors is not None and registries:
                await self._mirrors.connect(registries, KIND_NETWORK)

    async def delete(self, name: str = "") -> None:
        target = self._target(name)
        args = ["--name", target]
        if self._kubeconfig:
            args += ["--kubeconfig", os.path.expanduser(self._kubeconfig)]

        with lifecycle_operation("cluster delete"):
            await self._runner.run(self._builders.delete(), args)

        if self._mirrors is not None:
            registries = extract_registries_from_kind(
                self._config.containerd_config_patches
            )
            await self._mirrors.cleanup(
                registries, self._delete_registry_volumes, KIND_NETWORK
            )

    async def start(self, name: str = "") -> None:
        with lifecycle_operation("cluster start"):
            for node in await self._member_nodes(name):
                _logger.info("Starting node %s", node)
                await asyncio.to_thread(self._start_container, node)

    async def stop(self, name: str = "") -> None:
        with lifecycle_operation("cluster stop"):
            for node in await self._member_nodes(name):
                _logger.info("Stopping node %s", node)
                await asyncio.to_thread(self._stop_container, node)

    async def list(self) -> List[str]:
        with lifecycle_operation("cluster list"):
            result = await self._runner.run(self._builders.list(), [])
            return parse_list(ListFormat.LINES, result.stdout, ignore=(NO_KIND_CLUSTERS,))

    async def exists(self, name: str = "") -> bool:
        target = self._target(name)
        if not target:
            return False
        return target in await self.list()

    async def _member_nodes(self, name: str) -> List[str]:
        target = self._target(name)
        if not target:
            raise ClusterNameRequiredError("cluster name is required")
        nodes = await asyncio.to_thread(self._nodes.list_nodes, target)
        if not nodes:
            raise ClusterNotFoundError(target)
        return nodes

    def _start_container(self, node: str) -> None:
        try:
            self._client.containers.get(node).start()
        except Exception as exc:
            raise ClusterKitError(f"docker start failed for {node}: {exc}") from exc

    def _stop_container(self, node: str) -> None:
        try:
            self._client.containers.get(node).stop(timeout=STOP_TIMEOUT_SECONDS)
        except Exception as exc:
            raise ClusterKitError(f"docker stop failed for {node}: {exc}") from exc
