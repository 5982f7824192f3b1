"""Default backend command constructors for kind and k3d.

Each constructor returns a fresh ``click.Command`` mirroring the backend's own
command surface. The commands delegate to the backend binary, streaming its
output through the current ``sys.stdout``/``sys.stderr`` so the command runner
captures it. A missing binary is reported through the backend's fatal-exit
path, exactly as the backend itself would terminate.
"""

from __future__ import annotations

import os
import shutil
import threading
from typing import List, Optional

import click

from clusterkit.shared.backend_log import BackendLogger, k3d_log, kind_log
from clusterkit.shared.command_runner import BackendContext
from clusterkit.shared.utils import run_process_with_cancellation

KIND_BINARY_ENV = "CLUSTERKIT_KIND_BIN"
K3D_BINARY_ENV = "CLUSTERKIT_K3D_BIN"


def _invoke(
    obj: Optional[BackendContext],
    fallback_log: BackendLogger,
    env_var: str,
    default_binary: str,
    argv: List[str],
) -> None:
    context = obj or BackendContext(cancel=threading.Event())
    log = context.logger or fallback_log

    requested = os.environ.get(env_var) or default_binary
    binary = shutil.which(requested)
    if binary is None:
        log.fatal("%s binary '%s' not found in PATH", default_binary, requested)

    if context.cancel.is_set():
        raise click.ClickException(f"{default_binary} {' '.join(argv)}: cancelled")

    code = run_process_with_cancellation([binary, *argv], context.cancel)
    if context.cancel.is_set():
        raise click.ClickException(f"{default_binary} {' '.join(argv)}: cancelled")
    if code != 0:
        raise click.ClickException(
            f"{default_binary} {' '.join(argv)} exited with status {code}"
        )


def _kind(obj: Optional[BackendContext], argv: List[str]) -> None:
    _invoke(obj, kind_log, KIND_BINARY_ENV, "kind", argv)


def _k3d(obj: Optional[BackendContext], argv: List[str]) -> None:
    _invoke(obj, k3d_log, K3D_BINARY_ENV, "k3d", argv)


# --------------------------------------------------------------------------- #
# kind
# --------------------------------------------------------------------------- #


def new_kind_create_command() -> click.Command:
    """Build ``kind create cluster``."""

    @click.command("cluster", help="Creates a local Kubernetes cluster.")
    @click.option("--name", default="", help="Cluster name.")
    @click.option("--config", "config_path", default="", help="Path to a kind config file.")
    @click.option("--kubeconfig", default="", help="Kubeconfig to update.")
    @click.option("--image", default="", help="Node docker image to use.")
    @click.option("--wait", default="", help="Wait for the control plane to be ready.")
    @click.option("--retain", is_flag=True, help="Retain nodes for debugging on failure.")
    @click.pass_obj
    def create_cluster(obj, name, config_path, kubeconfig, image, wait, retain):
        argv = ["create", "cluster"]
        if name:
            argv += ["--name", name]
        if config_path:
            argv += ["--config", config_path]
        if kubeconfig:
            argv += ["--kubeconfig", kubeconfig]
        if image:
            argv += ["--image", image]
        if wait:
            argv += ["--wait", wait]
        if retain:
            argv.append("--retain")
        _kind(obj, argv)

    return create_cluster


def new_kind_delete_command() -> click.Command:
    """Build ``kind delete cluster``."""

    @click.command("cluster", help="Deletes a cluster.")
    @click.option("--name", default="", help="Cluster name.")
    @click.option("--kubeconfig", default="", help="Kubeconfig to update.")
    @click.pass_obj
    def delete_cluster(obj, name, kubeconfig):
        argv = ["delete", "cluster"]
        if name:
            argv += ["--name", name]
        if kubeconfig:
            argv += ["--kubeconfig", kubeconfig]
        _kind(obj, argv)

    return delete_cluster


def new_kind_list_command() -> click.Command:
    """Build ``kind get clusters``."""

    @click.command("clusters", help="Lists existing kind clusters by their name.")
    @click.pass_obj
    def get_clusters(obj):
        _kind(obj, ["get", "clusters"])

    return get_clusters


# --------------------------------------------------------------------------- #
# k3d
# --------------------------------------------------------------------------- #


def _k3d_named_command(verb: str, help_text: str, with_config: bool) -> click.Command:
    @click.command(verb, help=help_text)
    @click.argument("name", required=False, default="")
    @click.pass_obj
    def command(obj, name, config_path=""):
        argv = ["cluster", verb]
        if name:
            argv.append(name)
        if config_path:
            argv += ["--config", config_path]
        _k3d(obj, argv)

    if with_config:
        command = click.option(
            "--config", "-c", "config_path", default="", help="Path of a config file to use."
        )(command)
    return command


def new_k3d_create_command() -> click.Command:
    """Build ``k3d cluster create``."""
    return _k3d_named_command("create", "Create a new cluster.", with_config=True)


def new_k3d_delete_command() -> click.Command:
    """Build ``k3d cluster delete``."""
    return _k3d_named_command("delete", "Delete cluster(s).", with_config=True)


def new_k3d_start_command() -> click.Command:
    """Build ``k3d cluster start``."""
    return _k3d_named_command("start", "Start existing k3d cluster(s).", with_config=False)


def new_k3d_stop_command() -> click.Command:
    """Build ``k3d cluster stop``."""
    return _k3d_named_command("stop", "Stop existing k3d cluster(s).", with_config=False)


def new_k3d_list_command() -> click.Command:
    """Build ``k3d cluster list``."""

    @click.command("list", help="List cluster(s).")
    @click.option(
        "--output",
        "-o",
        type=click.Choice(["json", "yaml", ""]),
        default="",
        help="Output format.",
    )
    @click.pass_obj
    def list_clusters(obj, output):
        argv = ["cluster", "list"]
        if output:
            argv += ["--output", output]
        _k3d(obj, argv)

    return list_clusters
