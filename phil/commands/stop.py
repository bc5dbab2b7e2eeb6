"""
Stop command - shut down every server phil started.
"""

import click

from phil.commands.constants import DEFAULT_PID_DIR
from phil.commands.process_manager import MongoProcessManager
from phil.commands.utils import console


@click.command()
@click.option(
    "--pid-dir",
    default=DEFAULT_PID_DIR,
    show_default=True,
    help="Directory holding the PID files written at start",
)
def stop(pid_dir):
    """Stop every mongod and mongos recorded in the PID directory."""
    manager = MongoProcessManager(pid_dir=pid_dir, require_binary=False)
    stopped = manager.stop_all()
    if stopped:
        console.print(f"[green]✓ Stopped {stopped} process(es)[/green]")
