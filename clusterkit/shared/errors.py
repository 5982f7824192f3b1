"""Shared error types for provisioning, command capture, and registries."""

from __future__ import annotations

from typing import Optional, Type, TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from clusterkit.shared.command_runner import CommandResult


class ClusterKitError(RuntimeError):
    """Base class for all clusterkit failures."""


# Setup errors


class CaptureSetupError(ClusterKitError):
    """Raised when the stdout/stderr capture pipes cannot be created."""


class ProvisionerConstructionError(ClusterKitError):
    """Raised when an auxiliary client needed by a provisioner cannot be built."""


class ConfigError(ClusterKitError):
    """Raised when a backend configuration document cannot be loaded."""


# Execution errors


class CommandExecutionError(ClusterKitError):
    """A backend command failed; carries whatever output was captured."""

    def __init__(self, message: str, result: Optional["CommandResult"] = None):
        super().__init__(message)
        self.result = result


class BackendExitError(CommandExecutionError):
    """The backend asked to terminate the process and was stopped instead."""

    def __init__(
        self, code: int, result: Optional["CommandResult"] = None, detail: str = ""
    ):
        message = f"backend requested exit with code {code}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, result)
        self.code = code


class LifecycleError(ClusterKitError):
    """A lifecycle operation failed. The message is prefixed by the operation."""

    def __init__(self, operation: str, cause: BaseException):
        super().__init__(f"{operation}: {cause}")
        self.operation = operation
        self.__cause__ = cause


# Resolution errors


class UnsupportedDistributionError(ClusterKitError):
    """Raised for a distribution outside the supported set."""

    def __init__(self, distribution: object):
        super().__init__(f"unsupported distribution: {distribution}")
        self.distribution = distribution


class ClusterNotFoundError(ClusterKitError):
    """Raised when a cluster has no member containers."""

    def __init__(self, name: str = ""):
        message = "cluster not found"
        if name:
            message = f"cluster '{name}' not found"
        super().__init__(message)
        self.name = name


class ClusterNameRequiredError(ClusterKitError):
    """Raised when an operation needs a cluster name and none resolved."""


# Registry errors


class RegistryError(ClusterKitError):
    """Raised when a registry container operation fails."""


class RegistryNotFoundError(RegistryError):
    """Raised when a registry container does not exist."""


class RegistryPortNotFoundError(RegistryError):
    """Raised when a registry container exposes no host port."""


def caused_by(exc: Optional[BaseException], error_type: Type[BaseException]) -> bool:
    """Return whether ``exc`` or anything in its cause chain is ``error_type``."""

    seen = set()
    while exc is not None and id(exc) not in seen:
        if isinstance(exc, error_type):
            return True
        seen.add(id(exc))
        exc = exc.__cause__ or exc.__context__
    return False
