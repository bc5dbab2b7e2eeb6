#!/usr/bin/env python3
"""
Phil CLI
A Python CLI tool for bringing up local MongoDB deployments.
"""

import sys

import click

from phil import __version__
from phil.commands import (
    PhilError,
    bootstrap,
    replset,
    sharded,
    single,
    stop,
)
from phil.commands.utils import console


@click.group()
@click.version_option(version=__version__)
def cli():
    """Phil CLI - Start MongoDB servers, replica sets and sharded clusters."""
    pass


cli.add_command(single)
cli.add_command(replset)
cli.add_command(sharded)
cli.add_command(bootstrap)
cli.add_command(stop)


def main():
    """Main entry point for the phil CLI."""
    try:
        cli(standalone_mode=False)
    except click.exceptions.Abort:
        console.print("[yellow]Aborted[/yellow]")
        sys.exit(1)
    except click.ClickException as e:
        e.show()
        sys.exit(e.exit_code)
    except PhilError as e:
        console.print(f"[red]✗ {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
