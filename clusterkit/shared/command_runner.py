"""Execute backend commands in-process while capturing their console output.

A backend command is a ``click.Command``. While it runs, ``sys.stdout`` and
``sys.stderr`` point at OS pipes whose contents are collected for the
:class:`CommandResult` and copied to the original handles as they arrive, so
an interactive user keeps seeing live output. A backend logger, when given, is
rerouted into the same pipe and its fatal-exit callback is turned into a
:class:`~clusterkit.shared.errors.BackendExitError`.

Redirection is process-global, so all runs are serialized by one lock.
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import io
import logging
import os
import sys
import threading
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence, TextIO

import click

from clusterkit.shared import debug
from clusterkit.shared.backend_log import BackendLogger
from clusterkit.shared.errors import (
    BackendExitError,
    CaptureSetupError,
    CommandExecutionError,
)

_logger = logging.getLogger("clusterkit.runner")

_RUN_LOCK = threading.Lock()
_CHUNK_SIZE = 4096


@dataclass(frozen=True)
class CommandResult:
    """Output captured from one command execution."""

    stdout: str = ""
    stderr: str = ""


@dataclass
class BackendContext:
    """Object handed to backend commands as ``click.Context.obj``."""

    cancel: threading.Event
    logger: Optional[BackendLogger] = None


class CommandRunner(Protocol):
    """Runs a backend command and returns its captured output."""

    async def run(
        self,
        command: click.Command,
        args: Sequence[str],
        cancel: Optional[threading.Event] = None,
    ) -> CommandResult:
        """Execute ``command`` with ``args``."""


class _FatalExit(BaseException):
    """Unwinds a command whose backend asked the process to exit."""

    def __init__(self, code: int) -> None:
        super().__init__(code)
        self.code = code


def _intercept_exit(code: object = 1) -> None:
    if isinstance(code, int) and not isinstance(code, bool):
        raise _FatalExit(code)
    raise _FatalExit(0 if code is None else 1)


def output_details(result: CommandResult) -> str:
    """Join the trimmed stderr and stdout of ``result``, stderr first."""

    details = [
        text for text in (result.stderr.strip(), result.stdout.strip()) if text
    ]
    return " | ".join(details)


def merge_command_error(base: Exception, result: CommandResult) -> Exception:
    """Enrich ``base`` with captured output, or return it unchanged if there is none."""

    details = output_details(result)
    if not details:
        return base
    merged = CommandExecutionError(f"{base}: {details}", result)
    merged.__cause__ = base
    return merged


def _flush(stream: Optional[TextIO]) -> None:
    if stream is None:
        return
    try:
        stream.flush()
    except (OSError, ValueError):
        pass


class _StreamCapture:
    """A pipe whose write end replaces a console handle, plus its drain thread."""

    def __init__(self, label: str, mirror: Optional[TextIO]) -> None:
        self._read_fd, write_fd = os.pipe()
        try:
            self.writer = os.fdopen(
                write_fd, "w", buffering=1, encoding="utf-8", errors="replace"
            )
        except OSError:
            os.close(self._read_fd)
            os.close(write_fd)
            raise
        self._mirror = mirror
        self._captured = bytearray()
        self._decoder = codecs.getincrementaldecoder("utf-8")("replace")
        self._thread = threading.Thread(
            target=self._drain, name=f"clusterkit-drain-{label}", daemon=True
        )

    def start(self) -> None:
        self._thread.start()

    def close_writer(self) -> None:
        if not self.writer.closed:
            self.writer.close()

    def abort(self) -> None:
        """Release the pipe when the drain thread was never started."""
        self.close_writer()
        os.close(self._read_fd)

    def join(self) -> None:
        self._thread.join()

    def text(self) -> str:
        return self._captured.decode("utf-8", errors="replace")

    def _drain(self) -> None:
        try:
            while True:
                chunk = os.read(self._read_fd, _CHUNK_SIZE)
                if not chunk:
                    break
                self._captured.extend(chunk)
                self._copy_to_mirror(chunk)
        finally:
            os.close(self._read_fd)

    def _copy_to_mirror(self, chunk: bytes) -> None:
        target = self._mirror
        if target is None:
            return
        try:
            buffer = getattr(target, "buffer", None)
            if buffer is not None:
                buffer.write(chunk)
                buffer.flush()
            else:
                text = self._decoder.decode(chunk)
                if text:
                    target.write(text)
            target.flush()
        except (OSError, ValueError) as exc:
            # Capture continues without the mirror once the console is gone.
            _logger.debug("Mirror target closed: %s", exc)
            self._mirror = None


class _ForwardingHandler(logging.StreamHandler):
    """Writes formatted backend log records into the capture pipe."""


class _Discard(io.TextIOBase):
    """Output target for the backend console while the forwarder is active."""

    def writable(self) -> bool:
        return True

    def write(self, text: str) -> int:
        return len(text)


class ConsoleCommandRunner:
    """Runs click commands with live console output and full capture.

    ``stdout``/``stderr`` are the mirror targets; they default to whatever
    ``sys.stdout``/``sys.stderr`` are when :meth:`run` is called.
    """

    def __init__(
        self,
        stdout: Optional[TextIO] = None,
        stderr: Optional[TextIO] = None,
        backend_log: Optional[BackendLogger] = None,
    ) -> None:
        self._stdout = stdout
        self._stderr = stderr
        self._backend_log = backend_log

    async def run(
        self,
        command: click.Command,
        args: Sequence[str],
        cancel: Optional[threading.Event] = None,
    ) -> CommandResult:
        """Execute ``command`` and return its captured output.

        Raises:
            CaptureSetupError: the capture pipes could not be created.
            BackendExitError: the backend invoked its fatal-exit callback.
            CommandExecutionError: the command failed; message carries output.
        """

        token = cancel if cancel is not None else threading.Event()
        argv = list(args)
        debug.log_command(command.name or "command", argv)

        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, self._run_exclusive, command, argv, token)
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            token.set()
            # Wait for the backend to observe cancellation and for restoration.
            with contextlib.suppress(Exception):
                await future
            raise

    def _run_exclusive(
        self, command: click.Command, args: List[str], cancel: threading.Event
    ) -> CommandResult:
        with _RUN_LOCK:
            return self._capture(command, args, cancel)

    def _capture(
        self, command: click.Command, args: List[str], cancel: threading.Event
    ) -> CommandResult:
        original_out, original_err = sys.stdout, sys.stderr
        _flush(original_out)
        _flush(original_err)

        try:
            out_capture = _StreamCapture("stdout", self._stdout or original_out)
        except OSError as exc:
            raise CaptureSetupError(f"create stdout pipe: {exc}") from exc
        try:
            err_capture = _StreamCapture("stderr", self._stderr or original_err)
        except OSError as exc:
            out_capture.abort()
            raise CaptureSetupError(f"create stderr pipe: {exc}") from exc

        backend = self._backend_log
        saved_output = backend.output if backend else None
        saved_handlers = backend.handlers() if backend else []
        saved_exit = backend.exit_func if backend else None

        out_capture.start()
        err_capture.start()
        failure: Optional[BaseException] = None
        try:
            sys.stdout, sys.stderr = out_capture.writer, err_capture.writer
            if backend is not None:
                self._reroute_backend(
                    backend, out_capture.writer, (original_out, original_err)
                )
            failure = self._execute(command, args, cancel, backend)
        finally:
            out_capture.close_writer()
            err_capture.close_writer()
            out_capture.join()
            err_capture.join()
            sys.stdout, sys.stderr = original_out, original_err
            if backend is not None:
                backend.set_output(saved_output)
                backend.replace_handlers(saved_handlers)
                backend.exit_func = saved_exit

        result = CommandResult(stdout=out_capture.text(), stderr=err_capture.text())
        if failure is None:
            return result
        if isinstance(failure, _FatalExit):
            raise BackendExitError(
                failure.code, result, detail=output_details(result)
            ) from None

        reason = str(failure) or type(failure).__name__
        base = CommandExecutionError(f"command execution failed: {reason}", result)
        raise merge_command_error(base, result) from failure

    @staticmethod
    def _reroute_backend(
        backend: BackendLogger, pipe: TextIO, originals: Sequence[TextIO]
    ) -> None:
        bound_to_console = {id(stream) for stream in originals}
        bound_to_console.update({id(sys.__stdout__), id(sys.__stderr__)})

        kept = [
            handler
            for handler in backend.handlers()
            if id(getattr(handler, "stream", None)) not in bound_to_console
        ]
        forwarder = _ForwardingHandler(pipe)
        forwarder.setFormatter(backend.formatter)
        backend.replace_handlers(kept + [forwarder])
        backend.set_output(_Discard())
        backend.exit_func = _intercept_exit

    @staticmethod
    def _execute(
        command: click.Command,
        args: List[str],
        cancel: threading.Event,
        backend: Optional[BackendLogger],
    ) -> Optional[BaseException]:
        """Invoke the command; return the failure instead of raising it.

        Only the fatal-exit signal and ordinary exceptions are turned into a
        return value. Any other ``BaseException`` propagates unchanged.
        """

        context = BackendContext(cancel=cancel, logger=backend)
        try:
            rv = command.main(
                args=args,
                prog_name=command.name,
                standalone_mode=False,
                obj=context,
            )
        except _FatalExit as signal:
            return signal
        except click.Abort:
            return CommandExecutionError("aborted")
        except Exception as exc:
            return exc

        if isinstance(rv, int) and not isinstance(rv, bool) and rv != 0:
            return CommandExecutionError(f"exit status {rv}")
        return None
