"""
Bootstrap command - CLI interface for topology files.

This module provides the main bootstrap command with three subcommands:
1. run - Bootstrap the deployment described by a YAML topology file
2. validate - Validate a topology file without starting anything
3. create-sample - Create a sample topology file

The bootstrap command is a Click command group, alongside the count-based
`single`, `replset` and `sharded` commands.
"""

import sys

import click

from phil.commands.bootstrap.config import create_sample_topology_config, load_topology
from phil.commands.bootstrap.run import run_topology_file_sync
from phil.commands.bootstrap.validate import validate_topology
from phil.commands.errors import PhilError
from phil.commands.options import bootstrap_options, with_security
from phil.commands.topology import all_nodes, tiers, topology_kind
from phil.commands.utils import console


@click.group()
def bootstrap():
    """
    Bring up and validate deployments from YAML topology files.

    This command provides three main operations:
    • run: Bootstrap the described deployment
    • validate: Check a topology file for errors
    • create-sample: Generate a sample topology file
    """
    pass


@bootstrap.command()
@click.argument("config_file", type=click.Path(exists=True), required=True)
@bootstrap_options
@with_security
def run(
    config_file,
    tls_options,
    credential,
    data_root,
    on_cancel,
    rollback_on_failure,
    max_attempts,
    enable_sharding,
    balancer,
    **kwargs,
):
    """
    Bootstrap the deployment described by a YAML topology file.

    This command will:
    1. Load and validate the topology
    2. Start every node, tier by tier
    3. Initiate replica sets and add their members
    4. Add shards to sharded clusters
    5. Print the connection string

    --enable-sharding and --balancer take precedence over the file's own
    enable_sharding and balancer keys. --data-root is used only when the file
    has no data_root key.
    """
    result = run_topology_file_sync(
        config_file,
        data_root=data_root,
        on_cancel=on_cancel,
        rollback_on_failure=rollback_on_failure,
        max_attempts=max_attempts,
        enable_sharding=enable_sharding,
        balancer=balancer,
        credential=credential,
        tls=tls_options,
        **kwargs,
    )
    if not result["success"]:
        sys.exit(1)


@bootstrap.command()
@click.argument("config_file", type=click.Path(exists=True), required=True)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
def validate(config_file, verbose):
    """
    Validate a YAML topology file.

    This command performs comprehensive validation:
    • Checks required fields and structure
    • Checks member counts, roles and set names
    • Ensures addresses and data directories are unique
    • Reports all validation errors

    Use this before bootstrapping to catch topology issues early.
    """
    try:
        topology = load_topology(config_file)
    except PhilError as e:
        console.print(f"[red]Failed to validate topology: {e}[/red]")
        sys.exit(1)

    validation_result = validate_topology(topology)

    if validation_result["valid"]:
        console.print("\n[bold green]✓ Topology is valid![/bold green]")
        if verbose:
            console.print("\n[bold]Topology Summary:[/bold]")
            console.print(f"  Type: {topology_kind(topology)}")
            console.print(f"  Nodes: {len(all_nodes(topology))}")
            for tier in tiers(topology):
                addresses = ", ".join(node.address for node in tier.nodes)
                console.print(f"  Tier {tier.name}: {addresses}")
    else:
        console.print("\n[bold red]✗ Topology validation failed![/bold red]")
        for error in validation_result["errors"]:
            console.print(f"  [red]• {error}[/red]")
        sys.exit(1)


@bootstrap.command()
@click.option(
    "--output",
    "-o",
    default="phil-topology.yml",
    show_default=True,
    help="Where to write the sample file",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
def create_sample(output, verbose):
    """
    Create a sample topology file.

    The sample describes a small sharded cluster and can be used as a
    starting point for custom topologies.
    """
    create_sample_topology_config(output)
    if verbose:
        console.print("\n[green]Sample topology created successfully![/green]")
