"""Tests for the default backend commands and the process helper."""

import io
import sys
import threading

import click
import pytest

from clusterkit.provisioners import commands
from clusterkit.shared.backend_log import kind_log
from clusterkit.shared.command_runner import BackendContext, ConsoleCommandRunner
from clusterkit.shared.errors import BackendExitError
from clusterkit.shared.utils import run_process_with_cancellation


@pytest.fixture
def recorded(monkeypatch):
    """Pretend every backend binary exists and record the argv it receives."""

    calls = []

    def fake_run(cmd, cancel=None):
        calls.append(cmd)
        return 0

    monkeypatch.setattr(commands.shutil, "which", lambda name: f"/usr/local/bin/{name}")
    monkeypatch.setattr(commands, "run_process_with_cancellation", fake_run)
    return calls


def _invoke(command, args):
    return command.main(
        args=args,
        prog_name=command.name,
        standalone_mode=False,
        obj=BackendContext(cancel=threading.Event()),
    )


def test_kind_create_builds_argv(recorded):
    _invoke(
        commands.new_kind_create_command(),
        ["--name", "demo", "--config", "/tmp/kind.yaml"],
    )
    assert recorded == [
        ["/usr/local/bin/kind", "create", "cluster", "--name", "demo", "--config", "/tmp/kind.yaml"]
    ]


def test_kind_list_builds_argv(recorded):
    _invoke(commands.new_kind_list_command(), [])
    assert recorded == [["/usr/local/bin/kind", "get", "clusters"]]


def test_k3d_commands_build_argv(recorded):
    _invoke(commands.new_k3d_create_command(), ["--config", "k3d.yaml", "demo"])
    _invoke(commands.new_k3d_stop_command(), ["demo"])
    _invoke(commands.new_k3d_list_command(), ["--output", "json"])

    assert recorded == [
        ["/usr/local/bin/k3d", "cluster", "create", "demo", "--config", "k3d.yaml"],
        ["/usr/local/bin/k3d", "cluster", "stop", "demo"],
        ["/usr/local/bin/k3d", "cluster", "list", "--output", "json"],
    ]


def test_binary_override_from_environment(recorded, monkeypatch):
    monkeypatch.setenv(commands.K3D_BINARY_ENV, "k3d-v5")
    _invoke(commands.new_k3d_start_command(), [])
    assert recorded == [["/usr/local/bin/k3d-v5", "cluster", "start"]]


def test_non_zero_status_raises_click_exception(monkeypatch):
    monkeypatch.setattr(commands.shutil, "which", lambda name: f"/bin/{name}")
    monkeypatch.setattr(commands, "run_process_with_cancellation", lambda cmd, cancel=None: 2)

    with pytest.raises(click.ClickException, match="exited with status 2"):
        _invoke(commands.new_kind_delete_command(), ["--name", "demo"])


def test_cancelled_token_skips_the_process(recorded):
    cancel = threading.Event()
    cancel.set()
    command = commands.new_kind_list_command()

    with pytest.raises(click.ClickException, match="cancelled"):
        command.main(
            args=[],
            prog_name=command.name,
            standalone_mode=False,
            obj=BackendContext(cancel=cancel),
        )
    assert recorded == []


@pytest.mark.asyncio
async def test_missing_binary_goes_through_fatal_exit(monkeypatch):
    monkeypatch.setenv(commands.KIND_BINARY_ENV, "clusterkit-no-such-kind-binary")
    runner = ConsoleCommandRunner(
        stdout=io.StringIO(), stderr=io.StringIO(), backend_log=kind_log
    )

    with pytest.raises(BackendExitError) as exc_info:
        await runner.run(commands.new_kind_list_command(), [])

    assert exc_info.value.code == 1
    assert "not found in PATH" in str(exc_info.value)
    assert kind_log.exit_func is sys.exit


def test_process_exit_code_is_returned():
    code = run_process_with_cancellation(
        [sys.executable, "-c", "import sys; sys.exit(3)"]
    )
    assert code == 3


def test_cancelled_process_is_terminated():
    cancel = threading.Event()
    cancel.set()

    code = run_process_with_cancellation(
        [sys.executable, "-c", "import time; time.sleep(30)"], cancel
    )

    assert code != 0
