"""Tests for the registry mirror manager."""

from typing import Dict, List

import pytest
import requests

from clusterkit.registries.manager import RegistryManager
from clusterkit.registries.mirrors import RegistryMirrorManager
from clusterkit.registries.specs import RegistryInfo
from clusterkit.shared.errors import RegistryError, RegistryNotFoundError


def _info(name: str, port: int) -> RegistryInfo:
    return RegistryInfo(
        host=name, name=name, upstream=f"https://{name}", port=port, volume=name
    )


class _FakeRegistryManager:
    def __init__(self, existing=None, fail_on=None, ports=None):
        self.running: List[str] = list(existing or [])
        self.fail_on = fail_on
        self.ports: Dict[str, int] = dict(ports or {})
        self.created: List[str] = []
        self.deleted: List[tuple] = []
        self.connected: List[tuple] = []
        self.configs = []

    def list_registries(self):
        return list(self.running)

    def create_registry(self, config):
        if config.name == self.fail_on:
            raise RegistryError("port already allocated")
        self.configs.append(config)
        self.created.append(config.name)
        self.running.append(config.name)
        return True

    def connect_to_network(self, name, network):
        if name == self.fail_on:
            raise RegistryNotFoundError(name)
        self.connected.append((name, network))

    def delete_registry(self, name, delete_volume=False, network_name=""):
        if name == self.fail_on:
            raise RegistryError("busy")
        self.deleted.append((name, delete_volume, network_name))
        self.running.remove(name)

    def get_registry_port(self, name):
        if name not in self.ports:
            raise RegistryNotFoundError(name)
        return self.ports[name]


@pytest.mark.asyncio
async def test_setup_creates_missing_registries_only():
    fake = _FakeRegistryManager(existing=["a"])
    manager = RegistryMirrorManager(fake)

    await manager.setup([_info("a", 5000), _info("b", 5001)], "dev")

    assert fake.created == ["b"]


@pytest.mark.asyncio
async def test_setup_rolls_back_created_registries_on_failure():
    fake = _FakeRegistryManager(fail_on="c")
    manager = RegistryMirrorManager(fake)

    with pytest.raises(RegistryError, match="failed to create registry c"):
        await manager.setup([_info("a", 5000), _info("b", 5001), _info("c", 5002)], "dev")

    assert fake.created == ["a", "b"]
    assert [name for name, _, _ in fake.deleted] == ["b", "a"]
    assert fake.running == []


@pytest.mark.asyncio
async def test_connect_failures_are_not_fatal():
    fake = _FakeRegistryManager(fail_on="a")
    manager = RegistryMirrorManager(fake)

    await manager.connect([_info("a", 5000), _info("b", 5001)], "kind")

    assert fake.connected == [("b", "kind")]


@pytest.mark.asyncio
async def test_cleanup_continues_past_failures():
    fake = _FakeRegistryManager(existing=["a", "b"], fail_on="a")
    manager = RegistryMirrorManager(fake)

    await manager.cleanup([_info("a", 5000), _info("b", 5001)], True, "k3d-dev")

    assert fake.deleted == [("b", True, "k3d-dev")]


@pytest.mark.asyncio
async def test_collect_existing_ports_skips_registries_without_ports():
    fake = _FakeRegistryManager(existing=["a", "b"], ports={"a": 5000})
    manager = RegistryMirrorManager(fake)

    assert await manager.collect_existing_ports() == {5000}


@pytest.mark.asyncio
async def test_setup_moves_new_registry_off_a_bound_port():
    fake = _FakeRegistryManager(existing=["kind-docker.io"], ports={"kind-docker.io": 5000})
    manager = RegistryMirrorManager(fake)

    await manager.setup([_info("kind-docker.io", 5000), _info("k3d-ghcr.io", 5000)], "dev")

    assert fake.created == ["k3d-ghcr.io"]
    assert fake.configs[0].port == 5001


@pytest.mark.asyncio
async def test_setup_keeps_free_ports_distinct_within_a_batch():
    fake = _FakeRegistryManager(existing=["old"], ports={"old": 5000})
    manager = RegistryMirrorManager(fake)

    await manager.setup([_info("a", 5000), _info("b", 5001)], "dev")

    assert [c.port for c in fake.configs] == [5002, 5001]


class _UnreachableContainers:
    def __init__(self):
        self.list_calls = 0

    def list(self, all=False, filters=None):
        self.list_calls += 1
        raise requests.exceptions.ConnectionError("daemon gone")


@pytest.mark.asyncio
async def test_cleanup_tries_every_registry_when_daemon_is_unreachable():
    containers = _UnreachableContainers()
    client = type("Client", (), {"containers": containers})()
    manager = RegistryMirrorManager(RegistryManager(client))

    await manager.cleanup([_info("a", 5000), _info("b", 5001)], False, "kind")

    assert containers.list_calls == 2


@pytest.mark.asyncio
async def test_cleanup_continues_past_unexpected_errors():
    class _Exploding(_FakeRegistryManager):
        def delete_registry(self, name, delete_volume=False, network_name=""):
            if name == "a":
                raise OSError("socket closed")
            super().delete_registry(name, delete_volume, network_name)

    fake = _Exploding(existing=["a", "b"])
    manager = RegistryMirrorManager(fake)

    await manager.cleanup([_info("a", 5000), _info("b", 5001)])

    assert fake.deleted == [("b", False, "")]
