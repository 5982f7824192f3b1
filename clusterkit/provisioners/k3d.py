"""k3d cluster provisioner; every operation maps onto a native k3d command."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional

import click

from clusterkit.provisioners.base import lifecycle_operation, resolve_name
from clusterkit.provisioners.commands import (
    new_k3d_create_command,
    new_k3d_delete_command,
    new_k3d_list_command,
    new_k3d_start_command,
    new_k3d_stop_command,
)
from clusterkit.provisioners.config import K3dSimpleConfig
from clusterkit.provisioners.listing import ListFormat, parse_list
from clusterkit.registries.mirrors import RegistryMirrorManager
from clusterkit.registries.specs import extract_registries_from_k3d
from clusterkit.shared.backend_log import k3d_log
from clusterkit.shared.command_runner import CommandRunner, ConsoleCommandRunner

K3D_NETWORK_PREFIX = "k3d-"


@dataclass(frozen=True)
class K3dCommandBuilders:
    """Constructors for the k3d commands a provisioner runs."""

    create: Callable[[], click.Command] = new_k3d_create_command
    delete: Callable[[], click.Command] = new_k3d_delete_command
    start: Callable[[], click.Command] = new_k3d_start_command
    stop: Callable[[], click.Command] = new_k3d_stop_command
    list: Callable[[], click.Command] = new_k3d_list_command


def network_name(target: str) -> str:
    """Docker network k3d creates for a cluster."""
    return K3D_NETWORK_PREFIX + target if target else "k3d"


class K3dClusterProvisioner:
    """Lifecycle operations for k3d clusters."""

    def __init__(
        self,
        config: K3dSimpleConfig,
        config_path: str = "",
        runner: Optional[CommandRunner] = None,
        builders: Optional[K3dCommandBuilders] = None,
        mirrors: Optional[RegistryMirrorManager] = None,
        delete_registry_volumes: bool = False,
    ) -> None:
        self._config = config
        self._config_path = config_path
        self._runner = runner or ConsoleCommandRunner(backend_log=k3d_log)
        self._builders = builders or K3dCommandBuilders()
        self._mirrors = mirrors
        self._delete_registry_volumes = delete_registry_volumes

    @property
    def config(self) -> K3dSimpleConfig:
        return self._config

    def _target(self, name: str) -> str:
        return resolve_name(name, self._config.name)

    def _config_args(self, target: str) -> List[str]:
        args: List[str] = []
        if self._config_path:
            args += ["--config", self._config_path]
        if target:
            args.append(target)
        return args

    async def create(self, name: str = "") -> None:
        target = self._target(name)
        registries = extract_registries_from_k3d(self._config.registries_config)

        with lifecycle_operation("cluster create"):
            if self._mirrors is not None and registries:
                await self._mirrors.setup(registries, target)

            await self._runner.run(self._builders.create(), self._config_args(target))

            if self._mirrors is not None and registries:
                await self._mirrors.connect(registries, network_name(target))

    async def delete(self, name: str = "") -> None:
        target = self._target(name)

        with lifecycle_operation("cluster delete"):
            await self._runner.run(self._builders.delete(), self._config_args(target))

        if self._mirrors is not None:
            registries = extract_registries_from_k3d(self._config.registries_config)
            await self._mirrors.cleanup(
                registries, self._delete_registry_volumes, network_name(target)
            )

    async def start(self, name: str = "") -> None:
        target = self._target(name)
        with lifecycle_operation("cluster start"):
            await self._runner.run(self._builders.start(), [target] if target else [])

    async def stop(self, name: str = "") -> None:
        target = self._target(name)
        with lifecycle_operation("cluster stop"):
            await self._runner.run(self._builders.stop(), [target] if target else [])

    async def list(self) -> List[str]:
        with lifecycle_operation("cluster list"):
            result = await self._runner.run(self._builders.list(), ["--output", "json"])
            try:
                return parse_list(ListFormat.JSON, result.stdout)
            except ValueError as exc:
                raise ValueError(f"parse output: {exc}") from exc

    async def exists(self, name: str = "") -> bool:
        target = self._target(name)
        if not target:
            return False
        return target in await self.list()
