"""Verbose logging switches for clusterkit and the backend loggers it drives.

Verbose mode lowers the ``clusterkit`` package logger and every backend logger
(kind, k3d) to DEBUG together, so a ``--verbose`` run shows both the
provisioner's decisions and the backend's own chatter.
"""

from __future__ import annotations

import logging
import os
import threading
from contextlib import contextmanager
from typing import Iterator, List

from clusterkit.shared.backend_log import k3d_log, kind_log

LOG_LEVEL_ENV = "CLUSTERKIT_LOG_LEVEL"
LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"

_logger = logging.getLogger("clusterkit")
_command_logger = logging.getLogger("clusterkit.command")
_state_lock = threading.Lock()
_enabled = False


def _backend_loggers() -> List[logging.Logger]:
    return [kind_log.logger, k3d_log.logger]


def configure_root(level: int = logging.INFO) -> None:
    """Install a root handler unless the host application already did.

    ``CLUSTERKIT_LOG_LEVEL`` (a level name such as ``WARNING``) overrides
    ``level``; unknown names are ignored.
    """

    override = os.environ.get(LOG_LEVEL_ENV, "").strip().upper()
    if override and isinstance(logging.getLevelName(override), int):
        level = logging.getLevelName(override)

    if not logging.getLogger().handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)


def is_enabled() -> bool:
    with _state_lock:
        return _enabled


def _apply(enabled: bool) -> None:
    global _enabled
    level = logging.DEBUG if enabled else logging.INFO
    with _state_lock:
        _enabled = enabled
        _logger.setLevel(level)
        for backend in _backend_loggers():
            backend.setLevel(level)


def enable() -> None:
    """Turn on verbose mode for clusterkit and the backend loggers."""
    _apply(True)
    _logger.debug("Verbose mode on for clusterkit, kind and k3d")


def disable() -> None:
    _apply(False)


@contextmanager
def temporary_enable() -> Iterator[None]:
    """Verbose mode for the duration of a block, then the previous state."""

    was_enabled = is_enabled()
    if not was_enabled:
        enable()
    try:
        yield
    finally:
        if not was_enabled:
            disable()


def log_command(context: str, args: list) -> None:
    """Trace a backend command line when verbose mode is on."""

    if not is_enabled():
        return
    _command_logger.debug("%s args: %s", context, " ".join(str(arg) for arg in args))
