"""Tests for registry containers managed through a Docker client."""

from types import SimpleNamespace

import pytest
import requests
from docker.errors import DockerException, ImageNotFound, NotFound

from clusterkit.registries.manager import (
    REGISTRY_IMAGE,
    REGISTRY_LABEL,
    RegistryConfig,
    RegistryManager,
)
from clusterkit.shared.errors import RegistryError, RegistryNotFoundError


class _FakeContainer:
    def __init__(self, name, networks=(), status="running", host_port="5000"):
        self.name = name
        self.status = status
        self.labels = {REGISTRY_LABEL: name}
        self.attrs = {
            "NetworkSettings": {
                "Networks": {n: {} for n in networks},
                "Ports": {"5000/tcp": [{"HostIp": "127.0.0.1", "HostPort": host_port}]},
            },
            "Mounts": [{"Type": "volume", "Name": name}],
        }
        self.started = False
        self.stopped = False
        self.removed = False

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def remove(self):
        self.removed = True

    def reload(self):
        pass


class _FakeNetwork:
    def __init__(self, name):
        self.name = name

    def connect(self, container):
        container.attrs["NetworkSettings"]["Networks"][self.name] = {}

    def disconnect(self, container):
        container.attrs["NetworkSettings"]["Networks"].pop(self.name, None)


class _FakeContainers:
    def __init__(self, containers):
        self.items = list(containers)
        self.create_kwargs = None

    def list(self, all=False, filters=None):
        filters = filters or {}
        label = filters.get("label", "")
        name = filters.get("name")
        result = []
        for container in self.items:
            key, _, value = label.partition("=")
            if key and key not in container.labels:
                continue
            if value and container.labels[key] != value:
                continue
            if name and name not in container.name:
                continue
            result.append(container)
        return result

    def create(self, image, name, **kwargs):
        self.create_kwargs = dict(kwargs, image=image, name=name)
        container = _FakeContainer(name, status="created")
        self.items.append(container)
        return container


class _FakeVolumes:
    def __init__(self):
        self.created = []
        self.removed = []

    def get(self, name):
        if name not in self.created:
            raise NotFound(name)
        return SimpleNamespace(remove=lambda: self.removed.append(name))

    def create(self, name):
        self.created.append(name)


class _FakeImages:
    def __init__(self):
        self.pulled = []

    def get(self, name):
        raise ImageNotFound(name)

    def pull(self, repository, tag=None):
        self.pulled.append((repository, tag))


def _client(containers=()):
    return SimpleNamespace(
        containers=_FakeContainers(containers),
        volumes=_FakeVolumes(),
        images=_FakeImages(),
        networks=SimpleNamespace(get=_FakeNetwork),
    )


def test_create_registry_configures_container():
    client = _client()
    manager = RegistryManager(client)

    created = manager.create_registry(
        RegistryConfig(
            name="kind-docker.io",
            port=5001,
            upstream_url="https://registry-1.docker.io",
            volume_name="docker.io",
        )
    )

    assert created is True
    kwargs = client.containers.create_kwargs
    assert kwargs["image"] == REGISTRY_IMAGE
    assert kwargs["ports"] == {"5000/tcp": ("127.0.0.1", 5001)}
    assert kwargs["environment"] == [
        "REGISTRY_PROXY_REMOTEURL=https://registry-1.docker.io"
    ]
    assert kwargs["labels"] == {REGISTRY_LABEL: "kind-docker.io"}
    assert kwargs["restart_policy"] == {"Name": "unless-stopped"}
    assert client.images.pulled == [("registry", "3")]
    assert client.volumes.created == ["docker.io"]
    assert client.containers.items[0].started


def test_create_registry_is_a_no_op_when_present():
    client = _client([_FakeContainer("kind-docker.io")])
    manager = RegistryManager(client)

    assert manager.create_registry(RegistryConfig(name="kind-docker.io", port=5000)) is False
    assert client.containers.create_kwargs is None


def test_get_registry_port_and_listing():
    client = _client([_FakeContainer("a", host_port="5003"), _FakeContainer("ab")])
    manager = RegistryManager(client)

    assert manager.list_registries() == ["a", "ab"]
    assert manager.get_registry_port("a") == 5003
    with pytest.raises(RegistryNotFoundError):
        manager.get_registry_port("missing")


def test_connect_to_network():
    container = _FakeContainer("a")
    manager = RegistryManager(_client([container]))

    manager.connect_to_network("a", "kind")

    assert "kind" in container.attrs["NetworkSettings"]["Networks"]


def test_delete_keeps_registry_attached_to_another_cluster():
    container = _FakeContainer("a", networks=("kind", "k3d-other"))
    manager = RegistryManager(_client([container]))

    manager.delete_registry("a", network_name="kind")

    assert not container.removed
    assert "kind" not in container.attrs["NetworkSettings"]["Networks"]


def test_delete_removes_unused_registry():
    container = _FakeContainer("a", networks=("kind", "bridge"))
    manager = RegistryManager(_client([container]))

    manager.delete_registry("a", network_name="kind")

    assert container.stopped
    assert container.removed


@pytest.mark.parametrize(
    "error",
    [
        requests.exceptions.ConnectionError("daemon gone"),
        DockerException("Error while fetching server API version"),
    ],
)
def test_transport_failures_become_registry_errors(error):
    def unreachable(all=False, filters=None):
        raise error

    client = SimpleNamespace(containers=SimpleNamespace(list=unreachable))
    manager = RegistryManager(client)

    with pytest.raises(RegistryError, match="failed to list registry containers"):
        manager.list_registries()
    with pytest.raises(RegistryError):
        manager.delete_registry("a", network_name="kind")
