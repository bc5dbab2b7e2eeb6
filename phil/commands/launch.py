"""
Launch commands - bring up a deployment described by a few counts.

`single`, `replset` and `sharded` each build a topology on consecutive ports
starting at --base-port and bootstrap it. Anything after `--` is passed to
every mongod unchanged.
"""

import sys
from typing import Optional

import click

from phil.commands.bootstrap.run import build_options, run_bootstrap_sync
from phil.commands.constants import (
    DEFAULT_BASE_PORT,
    DEFAULT_HOST,
    DEFAULT_NUM_MONGOS,
    DEFAULT_NUM_SHARDS,
    DEFAULT_REPLICA_SET_NAME,
    DEFAULT_REPLICA_SET_NODES,
    SHARD_TYPE_REPLSET,
    VALID_SHARD_TYPES,
)
from phil.commands.options import bootstrap_options, with_security
from phil.commands.security import Credential, TlsOptions
from phil.commands.topology import (
    Topology,
    build_replica_set,
    build_sharded,
    build_standalone,
)
from phil.commands.utils import console

_host_option = click.option(
    "--host", default=DEFAULT_HOST, show_default=True, help="Host every node binds to"
)
_base_port_option = click.option(
    "--base-port",
    type=click.IntRange(1, 65535),
    default=DEFAULT_BASE_PORT,
    show_default=True,
    help="First port to use; nodes take consecutive ports from here",
)
_mongod_args_argument = click.argument("mongod_args", nargs=-1, type=click.UNPROCESSED)


def launch(
    topology: Topology,
    tls_options: Optional[TlsOptions],
    credential: Optional[Credential],
    binary_path: Optional[str],
    pid_dir: str,
    dry_run: bool,
    verbose: bool,
    on_cancel: str,
    rollback_on_failure: bool,
    max_attempts: Optional[int],
    enable_sharding: tuple[str, ...] = (),
    balancer: Optional[bool] = None,
) -> None:
    """Bootstrap ``topology`` and exit non-zero unless it converged."""
    options = build_options(
        on_cancel=on_cancel,
        rollback_on_failure=rollback_on_failure,
        max_attempts=max_attempts,
        enable_sharding=enable_sharding,
        balancer=balancer,
        credential=credential,
    )
    result = run_bootstrap_sync(
        topology,
        options,
        binary_path=binary_path,
        pid_dir=pid_dir,
        tls=tls_options,
        dry_run=dry_run,
        verbose=verbose,
    )
    if not result["success"]:
        sys.exit(1)


def _warn_sharding_only(enable_sharding, balancer) -> None:
    if enable_sharding or balancer is not None:
        console.print(
            "[yellow]--enable-sharding and --balancer only apply to sharded clusters, ignoring[/yellow]"
        )


@click.command()
@_host_option
@_base_port_option
@bootstrap_options
@_mongod_args_argument
@with_security
def single(host, base_port, data_root, mongod_args, enable_sharding, balancer, **common):
    """Start a single server."""
    _warn_sharding_only(enable_sharding, balancer)
    topology = build_standalone(
        host=host, port=base_port, data_root=data_root, extra_args=tuple(mongod_args)
    )
    launch(topology, **common)


@click.command()
@click.option(
    "--nodes",
    "-n",
    type=click.IntRange(min=1),
    default=DEFAULT_REPLICA_SET_NODES,
    show_default=True,
    help="The number of nodes in the replica set",
)
@click.option(
    "--set-name",
    "-s",
    default=DEFAULT_REPLICA_SET_NAME,
    show_default=True,
    help="The name of the replica set",
)
@_host_option
@_base_port_option
@bootstrap_options
@_mongod_args_argument
@with_security
def replset(
    nodes, set_name, host, base_port, data_root, mongod_args, enable_sharding, balancer, **common
):
    """Start a replica set."""
    _warn_sharding_only(enable_sharding, balancer)
    topology = build_replica_set(
        nodes=nodes,
        set_name=set_name,
        host=host,
        base_port=base_port,
        data_root=data_root,
        extra_args=tuple(mongod_args),
    )
    launch(topology, **common)


@click.command()
@click.option(
    "--num-mongos",
    type=click.IntRange(min=1),
    default=DEFAULT_NUM_MONGOS,
    show_default=True,
    help="The number of mongos routers to start",
)
@click.option(
    "--num-shards",
    type=click.IntRange(min=1),
    default=DEFAULT_NUM_SHARDS,
    show_default=True,
    help="The number of shards to start",
)
@click.option(
    "--shard-type",
    type=click.Choice(VALID_SHARD_TYPES),
    default=SHARD_TYPE_REPLSET,
    show_default=True,
    help="What type of shards to start",
)
@_host_option
@_base_port_option
@bootstrap_options
@_mongod_args_argument
@with_security
def sharded(
    num_mongos, num_shards, shard_type, host, base_port, data_root, mongod_args, **common
):
    """
    Start a sharded cluster.

    Routers take the first ports, followed by the config server and then the
    shards. Single shards are one-member replica sets.
    """
    topology = build_sharded(
        num_shards=num_shards,
        shard_type=shard_type,
        num_mongos=num_mongos,
        host=host,
        base_port=base_port,
        data_root=data_root,
        extra_args=tuple(mongod_args),
    )
    launch(topology, **common)
