"""clusterkit CLI implementation."""

import asyncio
import os
from typing import Any, Callable, Coroutine, Optional

import click

from clusterkit.provisioners.base import ClusterIdentity, ClusterProvisioner, Distribution
from clusterkit.provisioners.factory import get_provisioner_factory
from clusterkit.shared import debug
from clusterkit.shared.errors import ClusterKitError


@click.group(help="clusterkit - Manage local Kubernetes clusters across backends.")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose debug logging.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Root command for the clusterkit CLI."""
    debug.configure_root()
    if verbose:
        debug.enable()
    ctx.ensure_object(dict)


@cli.group(help="Create, delete, start, stop and inspect clusters.")
@click.option(
    "--distribution",
    "-d",
    type=click.Choice([d.value for d in Distribution], case_sensitive=False),
    default=Distribution.KIND.value,
    show_default=True,
    help="Cluster backend.",
)
@click.option("--config", "config_path", default="", help="Backend config file.")
@click.option(
    "--kubeconfig",
    default=lambda: os.environ.get("KUBECONFIG", ""),
    help="Kubeconfig to update (defaults to $KUBECONFIG).",
)
@click.pass_context
def cluster(
    ctx: click.Context, distribution: str, config_path: str, kubeconfig: str
) -> None:
    ctx.obj["identity"] = ClusterIdentity(
        distribution=Distribution.from_string(distribution),
        distribution_config=config_path,
        kubeconfig=kubeconfig,
    )


def _provisioner(ctx: click.Context) -> ClusterProvisioner:
    identity: ClusterIdentity = ctx.obj["identity"]
    provisioner, _ = get_provisioner_factory().create(identity)
    return provisioner


def _run(
    ctx: click.Context,
    operation: Callable[[ClusterProvisioner], Coroutine[Any, Any, Any]],
) -> Any:
    """Build the provisioner and drive ``operation`` to completion."""
    try:
        return asyncio.run(operation(_provisioner(ctx)))
    except KeyboardInterrupt:
        ctx.exit(130)
    except ClusterKitError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(1)


_name_option = click.option("--name", "-n", default="", help="Cluster name.")


@cluster.command(help="Create a cluster.")
@_name_option
@click.pass_context
def create(ctx: click.Context, name: str) -> None:
    _run(ctx, lambda p: p.create(name))
    click.echo("Cluster created.")


@cluster.command(help="Delete a cluster.")
@_name_option
@click.pass_context
def delete(ctx: click.Context, name: str) -> None:
    _run(ctx, lambda p: p.delete(name))
    click.echo("Cluster deleted.")


@cluster.command(help="Start a stopped cluster.")
@_name_option
@click.pass_context
def start(ctx: click.Context, name: str) -> None:
    _run(ctx, lambda p: p.start(name))
    click.echo("Cluster started.")


@cluster.command(help="Stop a running cluster.")
@_name_option
@click.pass_context
def stop(ctx: click.Context, name: str) -> None:
    _run(ctx, lambda p: p.stop(name))
    click.echo("Cluster stopped.")


@cluster.command("list", help="List clusters known to the backend.")
@click.pass_context
def list_clusters(ctx: click.Context) -> None:
    names = _run(ctx, lambda p: p.list())
    if not names:
        click.echo("No clusters found.")
        return
    for name in names:
        click.echo(name)


@cluster.command(help="Report whether a cluster exists; exits 1 when it does not.")
@_name_option
@click.pass_context
def exists(ctx: click.Context, name: str) -> None:
    found: Optional[bool] = _run(ctx, lambda p: p.exists(name))
    click.echo("true" if found else "false")
    if not found:
        ctx.exit(1)


def main():
    """Main entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
