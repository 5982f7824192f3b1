"""Utility functions for subprocess management and cancellation."""

import subprocess
import sys
import threading
from typing import IO, List, Optional, TextIO

TERMINATE_GRACE_SECONDS = 2.0
POLL_INTERVAL_SECONDS = 0.1


def _inheritable(stream: Optional[TextIO]) -> Optional[TextIO]:
    """Return ``stream`` if a child process can write to it directly."""

    if stream is None:
        return None
    try:
        stream.fileno()
    except (AttributeError, OSError, ValueError):
        return None
    stream.flush()
    return stream


def _pump(source: IO[bytes], target: TextIO) -> None:
    for line in iter(source.readline, b""):
        target.write(line.decode("utf-8", errors="replace"))
        target.flush()
    source.close()


def run_process_with_cancellation(
    cmd: List[str], cancel: Optional[threading.Event] = None
) -> int:
    """
    Run a process whose output streams through the current console handles.

    The child writes straight into ``sys.stdout``/``sys.stderr`` when they are
    backed by file descriptors (including capture pipes), otherwise its output
    is copied line by line. When ``cancel`` is set the process is terminated,
    then killed if it does not exit within the grace period.

    Args:
        cmd: Command to execute as a list of strings
        cancel: Optional cancellation token

    Returns:
        The process exit code
    """
    stdout, stderr = sys.stdout, sys.stderr
    direct_out = _inheritable(stdout)
    direct_err = _inheritable(stderr)

    process = subprocess.Popen(
        cmd,
        stdin=subprocess.DEVNULL,
        stdout=direct_out if direct_out is not None else subprocess.PIPE,
        stderr=direct_err if direct_err is not None else subprocess.PIPE,
    )

    pumps = []
    if direct_out is None and process.stdout is not None:
        pumps.append(threading.Thread(target=_pump, args=(process.stdout, stdout)))
    if direct_err is None and process.stderr is not None:
        pumps.append(threading.Thread(target=_pump, args=(process.stderr, stderr)))
    for pump in pumps:
        pump.start()

    try:
        while process.poll() is None:
            if cancel is not None and cancel.wait(POLL_INTERVAL_SECONDS):
                _terminate(process)
                break
            if cancel is None:
                process.wait()
    finally:
        for pump in pumps:
            pump.join()

    return process.wait()


def _terminate(process: subprocess.Popen) -> None:
    try:
        process.terminate()
        # Give it a moment to terminate gracefully
        try:
            process.wait(timeout=TERMINATE_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            # If it doesn't terminate, kill it forcefully
            process.kill()
            process.wait()
    except (ProcessLookupError, OSError):
        # Process might have already finished
        pass
