"""Derive registry mirror records from backend configuration.

Two inputs are understood:

* kind ``containerdConfigPatches``: TOML-like text with sections such as::

      [plugins."io.containerd.grpc.v1.cri".registry.mirrors."docker.io"]
        endpoint = ["http://localhost:5000"]

* the k3d ``registries.config`` blob: YAML of the form
  ``mirrors: {<host>: {endpoint: [...]}}``.

Absence of mirrors is valid; text that cannot be understood yields no entries.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set

import yaml

DEFAULT_REGISTRY_PORT = 5000
DOCKER_HUB_HOST = "docker.io"
DOCKER_HUB_UPSTREAM = "https://registry-1.docker.io"

KIND_REGISTRY_PREFIX = "kind-"
K3D_REGISTRY_PREFIX = "k3d-"

_MIRROR_HEADER = re.compile(r'registry\.mirrors\."([^"]+)"')
_QUOTED = re.compile(r'"([^"]*)"')
_MAX_PORT = 65535


@dataclass(frozen=True)
class RegistryInfo:
    """A registry mirror that should exist for a cluster."""

    host: str
    name: str
    upstream: str
    port: int
    volume: str


@dataclass
class PortAllocator:
    """Hands out pairwise-distinct host ports within one setup batch."""

    next_port: int = DEFAULT_REGISTRY_PORT
    used: Set[int] = field(default_factory=set)

    def claim(self, endpoints: Sequence[str]) -> int:
        """Use the first endpoint's port if it is free, else the next free port."""

        if endpoints:
            explicit = extract_port_from_endpoint(endpoints[0])
            if explicit > 0 and explicit not in self.used:
                self.used.add(explicit)
                if explicit >= self.next_port:
                    self.next_port = explicit + 1
                return explicit
        return self.allocate()

    def allocate(self) -> int:
        port = self.next_port if self.next_port > 0 else DEFAULT_REGISTRY_PORT
        while port in self.used:
            port += 1
        self.used.add(port)
        self.next_port = port + 1
        return port


def extract_port_from_endpoint(endpoint: str) -> int:
    """Return the port after the last colon of ``endpoint``, or 0."""

    _, sep, tail = endpoint.rpartition(":")
    if not sep:
        return 0
    digits = tail.split("/", 1)[0]
    match = re.match(r"\d+", digits)
    if not match:
        return 0
    port = int(match.group(0))
    if port <= 0 or port > _MAX_PORT:
        return 0
    return port


def extract_name_from_endpoint(endpoint: str) -> str:
    """Return the host part of ``scheme://host[:port][/path]``, or ''."""

    parts = endpoint.split("//")
    if len(parts) != 2:
        return ""
    host_port = parts[1].split("/", 1)[0]
    return host_port.split(":", 1)[0]


def sanitize_host(host: str) -> str:
    """Make a registry host usable as a container name, keeping dots."""

    return host.replace("/", "-").replace(":", "-")


def generate_upstream_url(host: str) -> str:
    if host == DOCKER_HUB_HOST:
        return DOCKER_HUB_UPSTREAM
    if host.startswith("http://") or host.startswith("https://"):
        return host
    return "https://" + host


def resolve_registry_name(host: str, endpoints: Iterable[str], prefix: str) -> str:
    """Use an endpoint host matching the registry host, else ``prefix + host``."""

    expected = sanitize_host(host)
    for endpoint in endpoints:
        name = extract_name_from_endpoint(endpoint)
        if name and expected and name.lower() == expected.lower():
            return name
    return prefix + expected


def build_registry_info(
    host: str,
    endpoints: Sequence[str],
    port: int,
    prefix: str,
    upstream_override: str = "",
) -> RegistryInfo:
    name = resolve_registry_name(host, endpoints, prefix)

    upstream = upstream_override.strip()
    if not upstream:
        only_local = len(endpoints) == 1 and (
            extract_name_from_endpoint(endpoints[0]).lower() == name.lower()
        )
        upstream = "" if only_local else generate_upstream_url(host)

    return RegistryInfo(
        host=host,
        name=name,
        upstream=upstream,
        port=port,
        volume=sanitize_host(host),
    )


# --------------------------------------------------------------------------- #
# kind containerd patches
# --------------------------------------------------------------------------- #


def _quoted_values(text: str) -> List[str]:
    return [value for value in _QUOTED.findall(text) if value]


def parse_containerd_mirrors(patch: str) -> Dict[str, List[str]]:
    """Map each mirrored host in a containerd patch to its endpoint list.

    The first section for a host wins; sections without endpoints are ignored.
    """

    mirrors: Dict[str, List[str]] = {}
    host: Optional[str] = None
    collecting = False
    endpoints: List[str] = []

    def finish() -> None:
        nonlocal host, collecting, endpoints
        if host and endpoints and host not in mirrors:
            mirrors[host] = endpoints
        host, collecting, endpoints = None, False, []

    for raw in patch.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue

        header = _MIRROR_HEADER.search(line)
        if header:
            finish()
            host = header.group(1)
            continue

        if collecting:
            value, closed = line, False
            if "]" in line:
                value, closed = line.split("]", 1)[0], True
            endpoints.extend(_quoted_values(value))
            if closed:
                finish()
            continue

        if line.startswith("["):
            # Any other section closes the current mirror.
            finish()
            continue

        if host is None:
            continue

        key, sep, value = line.partition("=")
        if not sep or key.strip() != "endpoint":
            continue
        value = value.strip()
        if not value.startswith("["):
            continue
        if "]" in value:
            endpoints.extend(_quoted_values(value[1 : value.index("]")]))
            finish()
        else:
            endpoints.extend(_quoted_values(value[1:]))
            collecting = True

    finish()
    return mirrors


def extract_registries_from_kind(
    patches: Iterable[str], prefix: str = KIND_REGISTRY_PREFIX
) -> List[RegistryInfo]:
    """Registry records for every mirror declared across kind patches."""

    seen: Dict[str, List[str]] = {}
    for patch in patches:
        for host, endpoints in parse_containerd_mirrors(patch).items():
            seen.setdefault(host, endpoints)

    ports = PortAllocator()
    return [
        build_registry_info(host, endpoints, ports.claim(endpoints), prefix)
        for host, endpoints in seen.items()
    ]


# --------------------------------------------------------------------------- #
# k3d registries.config
# --------------------------------------------------------------------------- #


def parse_k3d_mirrors(blob: str) -> Dict[str, List[str]]:
    """Map hosts to endpoints from a k3d ``registries.config`` blob."""

    text = (blob or "").strip()
    if not text:
        return {}
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError:
        return {}
    if not isinstance(data, dict):
        return {}
    mirrors = data.get("mirrors")
    if not isinstance(mirrors, dict):
        return {}

    result: Dict[str, List[str]] = {}
    for host, entry in mirrors.items():
        endpoints = entry.get("endpoint") if isinstance(entry, dict) else None
        if isinstance(endpoints, str):
            endpoints = [endpoints]
        if not isinstance(endpoints, list):
            endpoints = []
        result[str(host)] = [str(e).strip() for e in endpoints if str(e).strip()]
    return result


def extract_registries_from_k3d(
    blob: str, prefix: str = K3D_REGISTRY_PREFIX
) -> List[RegistryInfo]:
    """Registry records for a k3d mirrors blob, in sorted host order."""

    mirrors = parse_k3d_mirrors(blob)
    ports = PortAllocator()
    infos = []
    for host in sorted(mirrors):
        endpoints = mirrors[host]
        infos.append(build_registry_info(host, endpoints, ports.claim(endpoints), prefix))
    return infos
