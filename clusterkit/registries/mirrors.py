"""Realize registry mirror records as running containers for a cluster."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Iterable, List, Sequence, Set

from clusterkit.registries.manager import RegistryConfig, RegistryManager
from clusterkit.registries.specs import PortAllocator, RegistryInfo
from clusterkit.shared.errors import (
    RegistryError,
    RegistryNotFoundError,
    RegistryPortNotFoundError,
)

_logger = logging.getLogger("clusterkit.registries")


class RegistryMirrorManager:
    """Async facade over :class:`RegistryManager` used by provisioners.

    Docker calls are blocking, so each one runs in a worker thread.
    """

    def __init__(self, registry_manager: RegistryManager) -> None:
        self._registries = registry_manager

    async def setup(self, registries: Sequence[RegistryInfo], cluster_name: str) -> None:
        """Create every missing registry container.

        A new registry whose port is already bound by another managed registry
        is moved to the next free port. Containers created by this call are
        removed again if a later one fails.
        """

        if not registries:
            return

        try:
            existing = set(await asyncio.to_thread(self._registries.list_registries))
        except RegistryError as exc:
            raise RegistryError(f"failed to list existing registries: {exc}") from exc

        pending = [reg for reg in registries if reg.name not in existing]
        for reg in registries:
            if reg.name in existing:
                _logger.info("Skipping '%s' as it already exists", reg.name)
        if not pending:
            return

        taken = await self._ports_of(existing)
        ports = PortAllocator(used=taken | {reg.port for reg in pending})

        _logger.info("Creating mirror registries")
        created: List[RegistryInfo] = []
        for reg in pending:
            if reg.port in taken:
                port = ports.allocate()
                _logger.info(
                    "Port %d is bound by another registry, using %d for '%s'",
                    reg.port,
                    port,
                    reg.name,
                )
                reg = replace(reg, port=port)

            _logger.info(
                "Creating mirror '%s' for '%s' on http://localhost:%d",
                reg.name,
                reg.upstream or "local images",
                reg.port,
            )
            config = RegistryConfig(
                name=reg.name,
                port=reg.port,
                upstream_url=reg.upstream,
                cluster_name=cluster_name,
                volume_name=reg.volume,
            )
            try:
                was_created = await asyncio.to_thread(self._registries.create_registry, config)
            except RegistryError as exc:
                await self._rollback(created)
                raise RegistryError(f"failed to create registry {reg.name}: {exc}") from exc

            taken.add(reg.port)
            if was_created:
                created.append(reg)

    async def connect(self, registries: Sequence[RegistryInfo], network_name: str) -> None:
        """Attach registries to the cluster network; failures are warnings."""

        if not registries or not network_name.strip():
            return

        for reg in registries:
            _logger.info("Connecting '%s' to '%s'", reg.name, network_name)
            try:
                await asyncio.to_thread(
                    self._registries.connect_to_network, reg.name, network_name
                )
            except Exception as exc:
                _logger.warning(
                    "Failed to connect registry %s to %s network: %s",
                    reg.name,
                    network_name,
                    exc,
                )

    async def cleanup(
        self,
        registries: Sequence[RegistryInfo],
        delete_volumes: bool = False,
        network_name: str = "",
    ) -> None:
        """Remove registry containers; every failure is logged and skipped."""

        for reg in registries:
            try:
                await asyncio.to_thread(
                    self._registries.delete_registry,
                    reg.name,
                    delete_volumes,
                    network_name,
                )
            except Exception as exc:
                _logger.warning("Failed to cleanup registry %s: %s", reg.name, exc)

    async def collect_existing_ports(self) -> Set[int]:
        """Host ports already bound by managed registry containers."""

        names = await asyncio.to_thread(self._registries.list_registries)
        return await self._ports_of(names)

    async def _ports_of(self, names: Iterable[str]) -> Set[int]:
        ports: Set[int] = set()
        for name in names:
            try:
                port = await asyncio.to_thread(self._registries.get_registry_port, name)
            except (RegistryNotFoundError, RegistryPortNotFoundError):
                continue
            ports.add(port)
        return ports

    async def _rollback(self, created: Sequence[RegistryInfo]) -> None:
        for reg in reversed(created):
            try:
                await asyncio.to_thread(self._registries.delete_registry, reg.name)
            except Exception as exc:
                _logger.warning(
                    "Cleanup warning: failed to delete registry %s: %s", reg.name, exc
                )
