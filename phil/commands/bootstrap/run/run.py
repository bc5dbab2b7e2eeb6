"""
Bootstrap runner.

This module wires the default collaborators to the bootstrapper:
- Building the process manager and driver from CLI options
- Installing interrupt handlers that cancel the bootstrap
- Printing the cluster state and connection string
"""

import asyncio
import logging
import signal
import threading
from dataclasses import asdict
from typing import Any, Optional

from phil.commands.bootstrap.bootstrapper import Bootstrapper, BootstrapOptions
from phil.commands.bootstrap.config import load_topology_config, topology_from_dict
from phil.commands.bootstrap.plan import build_plan, render_plan
from phil.commands.bootstrap.validate import ensure_valid
from phil.commands.constants import DEFAULT_PID_DIR, ON_CANCEL_LEAVE
from phil.commands.driver import PyMongoDriver
from phil.commands.errors import BootstrapError, PhilError, TopologyInvalid
from phil.commands.process_manager import MongoProcessManager
from phil.commands.result import fail, ok
from phil.commands.retry import PERSISTENT_RETRY_CONFIG
from phil.commands.security import Credential, TlsOptions
from phil.commands.topology import Topology, topology_kind
from phil.commands.uri import connection_string
from phil.commands.utils import configure_logging, console

logger = logging.getLogger(__name__)


class _InterruptHandler:
    """Turns the first SIGINT/SIGTERM into a bootstrap cancellation.

    A second signal falls through to the default handler.
    """

    def __init__(self, bootstrapper: Bootstrapper):
        self.bootstrapper = bootstrapper
        self._original = {}

    def __enter__(self):
        if threading.current_thread() is threading.main_thread():
            for signum in (signal.SIGINT, signal.SIGTERM):
                self._original[signum] = signal.signal(signum, self._handle)
        return self

    def _handle(self, signum, frame):
        sig_name = "SIGINT" if signum == signal.SIGINT else "SIGTERM"
        console.print(
            f"\n[yellow]Received {sig_name}, cancelling bootstrap after the current step...[/yellow]"
        )
        self.bootstrapper.cancel()
        self._restore()

    def _restore(self):
        for signum, handler in self._original.items():
            signal.signal(signum, handler)
        self._original = {}

    def __exit__(self, *exc_info):
        self._restore()
        return False


def build_options(
    on_cancel: str = ON_CANCEL_LEAVE,
    rollback_on_failure: bool = False,
    max_attempts: Optional[int] = None,
    enable_sharding: tuple[str, ...] = (),
    balancer: Optional[bool] = None,
    credential: Optional[Credential] = None,
) -> BootstrapOptions:
    retry = PERSISTENT_RETRY_CONFIG
    if max_attempts is not None:
        retry = retry.replace(max_attempts=max_attempts)

    return BootstrapOptions(
        on_cancel=on_cancel,
        retry=retry,
        rollback_on_failure=rollback_on_failure,
        enable_sharding=tuple(enable_sharding),
        balancer=balancer,
        credential=credential,
    )


async def run_bootstrap(
    topology: Topology,
    options: BootstrapOptions,
    binary_path: Optional[str] = None,
    pid_dir: str = DEFAULT_PID_DIR,
    tls: Optional[TlsOptions] = None,
    dry_run: bool = False,
    verbose: bool = False,
    process_manager: Optional[Any] = None,
    driver: Optional[Any] = None,
) -> dict[str, Any]:
    """
    Bring up ``topology`` with the default collaborators.

    Args:
        topology: The topology to bootstrap
        options: Bootstrap options
        binary_path: Directory (or mongod path) holding the server binaries
        pid_dir: Where PID files are written
        tls: Require TLS on every server
        dry_run: Print the plan without starting anything
        verbose: Print the full cluster state on success
        process_manager: Override the native process manager
        driver: Override the pymongo driver

    Returns:
        An ok() result carrying the cluster state and URI, or a fail() result
    """
    configure_logging(verbose)
    kind = topology_kind(topology)
    credential = options.credential

    try:
        ensure_valid(topology)
    except TopologyInvalid as e:
        console.print(f"[bold red]✗ {e}[/bold red]")
        for error in e.errors:
            console.print(f"  [red]• {error}[/red]")
        return fail(str(e), error=e)

    if dry_run:
        steps = build_plan(
            topology,
            enable_sharding=options.enable_sharding,
            balancer=options.balancer,
            create_user=credential.username if credential else None,
        )
        console.print(render_plan(steps))
        console.print(f"[cyan]Dry run: {len(steps)} step(s) planned for {kind} topology[/cyan]")
        return ok([asdict(step) for step in steps], dry_run=True)

    try:
        if process_manager is None:
            process_manager = MongoProcessManager(
                binary_path=binary_path,
                pid_dir=pid_dir,
                tls=tls,
                credential=credential,
            )
        if driver is None:
            driver = PyMongoDriver(tls=tls, credential=credential)
    except PhilError as e:
        console.print(f"[red]✗ {e}[/red]")
        return fail(str(e), error=e)

    bootstrapper = Bootstrapper(process_manager, driver, options)
    console.print(f"[cyan]Bootstrapping {kind} topology...[/cyan]")

    try:
        with _InterruptHandler(bootstrapper):
            state = await bootstrapper.bootstrap(topology)
    except BootstrapError as e:
        console.print(f"\n[bold red]✗ Bootstrap failed: {e}[/bold red]")
        if e.state is not None:
            console.print(e.state.render_table())
        return fail(str(e), error=e)
    except PhilError as e:
        console.print(f"\n[bold red]✗ {e}[/bold red]")
        if getattr(e, "errors", None):
            for error in e.errors:
                console.print(f"  [red]• {error}[/red]")
        return fail(str(e), error=e)

    uri = connection_string(topology, tls=tls, credential=credential)
    if verbose:
        console.print(state.render_table())
    console.print(f"\n[bold green]✓ {kind} topology is up[/bold green]")
    console.print(f"MONGODB_URI='{uri}'")
    logger.debug("Bootstrap steps: %s", state.to_dict()["steps"])

    return ok(state.to_dict(), uri=uri)


def run_bootstrap_sync(topology: Topology, options: BootstrapOptions, **kwargs) -> dict[str, Any]:
    """Synchronous wrapper for run_bootstrap."""
    return asyncio.run(run_bootstrap(topology, options, **kwargs))


def run_topology_file_sync(
    config_file: str,
    data_root: Optional[str] = None,
    on_cancel: str = ON_CANCEL_LEAVE,
    rollback_on_failure: bool = False,
    max_attempts: Optional[int] = None,
    enable_sharding: tuple[str, ...] = (),
    balancer: Optional[bool] = None,
    credential: Optional[Credential] = None,
    **kwargs,
) -> dict[str, Any]:
    """
    Bootstrap the topology described by a YAML file.

    ``enable_sharding`` and ``balancer`` fall back to the file's own settings
    when not given on the command line. ``data_root`` is only used when the
    file sets none.
    """
    try:
        config = load_topology_config(config_file)
        topology = topology_from_dict(config, default_data_root=data_root)
    except PhilError as e:
        console.print(f"[red]Failed to load topology: {e}[/red]")
        return fail(str(e), error=e)

    effective_sharding = tuple(enable_sharding) or tuple(config.get("enable_sharding", []))
    effective_balancer = balancer if balancer is not None else config.get("balancer")

    options = build_options(
        on_cancel=on_cancel,
        rollback_on_failure=rollback_on_failure,
        max_attempts=max_attempts,
        enable_sharding=effective_sharding,
        balancer=effective_balancer,
        credential=credential,
    )
    return run_bootstrap_sync(topology, options, **kwargs)
