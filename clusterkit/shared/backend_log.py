"""Process-wide loggers owned by backend tools.

Each backend (kind, k3d) logs through a single named, non-propagating
``logging`` logger with a console handler bound to the stdout handle that was
current at import time. A backend signals an unrecoverable error through
:meth:`BackendLogger.fatal`, which logs the message and then calls
``exit_func`` (``sys.exit`` by default). The command runner swaps the output
target, the handler set, and ``exit_func`` while a command executes.
"""

from __future__ import annotations

import logging
import sys
from typing import Callable, List, NoReturn, Optional, TextIO

DEFAULT_FORMAT = "%(levelname)s %(message)s"


class BackendLogger:
    """A backend's global logger plus its fatal-exit callback."""

    def __init__(
        self,
        name: str,
        stream: Optional[TextIO] = None,
        level: int = logging.INFO,
        fmt: str = DEFAULT_FORMAT,
    ) -> None:
        self.name = name
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)
        self.logger.propagate = False
        self.exit_func: Callable[[int], object] = sys.exit

        self._console = logging.StreamHandler(stream or sys.stdout)
        self._console.setFormatter(logging.Formatter(fmt))
        self.logger.addHandler(self._console)

    @property
    def output(self) -> TextIO:
        """Stream the console handler currently writes to."""
        return self._console.stream

    def set_output(self, stream: TextIO) -> None:
        self._console.setStream(stream)

    @property
    def formatter(self) -> logging.Formatter:
        return self._console.formatter or logging.Formatter(DEFAULT_FORMAT)

    def handlers(self) -> List[logging.Handler]:
        return list(self.logger.handlers)

    def replace_handlers(self, handlers: List[logging.Handler]) -> None:
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
        for handler in handlers:
            self.logger.addHandler(handler)

    def info(self, msg: str, *args: object) -> None:
        self.logger.info(msg, *args)

    def warning(self, msg: str, *args: object) -> None:
        self.logger.warning(msg, *args)

    def error(self, msg: str, *args: object) -> None:
        self.logger.error(msg, *args)

    def fatal(self, msg: str, *args: object, code: int = 1) -> NoReturn:
        """Log at CRITICAL and ask the process to exit with ``code``."""

        self.logger.critical(msg, *args)
        self.exit_func(code)
        # exit_func is expected not to return; keep the contract if it does.
        raise SystemExit(code)


kind_log = BackendLogger("kind")
k3d_log = BackendLogger("k3d")
