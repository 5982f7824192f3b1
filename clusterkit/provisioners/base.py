"""Provisioner interfaces shared across backends and the CLI."""

from __future__ import annotations

import contextlib
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional, Protocol

from clusterkit.shared.errors import LifecycleError, UnsupportedDistributionError


class Distribution(str, Enum):
    """Supported local cluster backends."""

    KIND = "kind"
    K3D = "k3d"

    @classmethod
    def from_string(cls, value: Optional[str]) -> "Distribution":
        """Parse a distribution tag, case-insensitively."""

        if not value:
            raise UnsupportedDistributionError(value)
        try:
            return cls(value.strip().lower())
        except ValueError as exc:
            raise UnsupportedDistributionError(value) from exc


@dataclass(frozen=True)
class ClusterIdentity:
    """Everything needed to locate a cluster and its backend configuration."""

    distribution: Distribution
    name: str = ""
    distribution_config: str = ""
    kubeconfig: str = ""
    context: str = ""


def resolve_name(explicit: Optional[str], configured: Optional[str]) -> str:
    """Pick the target cluster name.

    The explicit argument wins when it is not blank, then the name embedded in
    the backend configuration, then the empty string.
    """

    if explicit and explicit.strip():
        return explicit
    if configured and configured.strip():
        return configured
    return ""


class ClusterProvisioner(Protocol):
    """Lifecycle operations every backend implements."""

    async def create(self, name: str = "") -> None:
        """Provision a cluster."""

    async def delete(self, name: str = "") -> None:
        """Tear a cluster down."""

    async def start(self, name: str = "") -> None:
        """Resume a stopped cluster."""

    async def stop(self, name: str = "") -> None:
        """Halt a running cluster."""

    async def list(self) -> List[str]:
        """Return the names of all clusters the backend knows about."""

    async def exists(self, name: str = "") -> bool:
        """Return whether the resolved cluster is present."""


class NodeLister(Protocol):
    """Enumerates the member containers of a cluster."""

    def list_nodes(self, cluster_name: str) -> List[str]:
        """Return container names belonging to ``cluster_name``."""


@contextlib.contextmanager
def lifecycle_operation(operation: str) -> Iterator[None]:
    """Re-raise any failure inside the block as ``LifecycleError(operation)``."""

    try:
        yield
    except Exception as exc:
        raise LifecycleError(operation, exc) from exc
