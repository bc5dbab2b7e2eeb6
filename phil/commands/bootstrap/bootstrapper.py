"""
Cluster bootstrapper - brings a topology from nothing to a converged cluster.

The bootstrap runs tier by tier (config servers, each shard, routers). Inside a
tier every node is started and polled concurrently; the tier is joined before
its replica set is initiated, so later tiers only ever see configured ones.

Commands that report an already-satisfied state are recorded as skipped, which
makes re-running against a converged cluster a no-op. Any other command failure
aborts the run.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, NoReturn, Optional

from phil.commands.bootstrap.validate import ensure_valid
from phil.commands.constants import (
    ERROR_CODE_ALREADY_INITIALIZED,
    ERROR_CODE_NOT_YET_INITIALIZED,
    ERROR_CODE_UNAUTHORIZED,
    ERROR_CODE_USER_ALREADY_EXISTS,
    ERROR_NODE_NOT_RUNNING,
    MEMBER_STATE_PRIMARY,
    ON_CANCEL_KILL,
    RECONFIG_RETRY_CODES,
    VALID_ON_CANCEL,
)
from phil.commands.driver import Driver
from phil.commands.errors import (
    BootstrapCancelled,
    BootstrapError,
    ConfigCommandFailure,
    DriverError,
    NodeUnreachable,
    ProcessStartFailure,
)
from phil.commands.process_manager import NodeHandle, ProcessManager
from phil.commands.retry import (
    PERSISTENT_RETRY_CONFIG,
    QUICK_RETRY_CONFIG,
    RetryConfig,
    RetryExhausted,
    retry_async_call,
)
from phil.commands.security import Credential
from phil.commands.state import STEP_APPLIED, STEP_FAILED, STEP_SKIPPED, ClusterState
from phil.commands.topology import (
    NodeSpec,
    ReplicaSet,
    Sharded,
    Standalone,
    Tier,
    Topology,
    all_nodes,
    tiers,
)
from phil.commands.utils import console

logger = logging.getLogger(__name__)


@dataclass
class BootstrapOptions:
    """Runtime options for a bootstrap.

    ``on_cancel`` has no default: callers must decide whether an interrupted
    bootstrap kills the processes it started or leaves them running.
    """

    on_cancel: str
    retry: RetryConfig = field(default_factory=lambda: PERSISTENT_RETRY_CONFIG)
    command_retry: RetryConfig = field(default_factory=lambda: QUICK_RETRY_CONFIG)
    rollback_on_failure: bool = False
    enable_sharding: tuple[str, ...] = ()
    balancer: Optional[bool] = None
    credential: Optional[Credential] = None

    def __post_init__(self):
        if self.on_cancel not in VALID_ON_CANCEL:
            raise ValueError(
                f"on_cancel must be one of {VALID_ON_CANCEL}, got '{self.on_cancel}'"
            )


def _is_already(error: DriverError, code: int, code_name: str) -> bool:
    return error.server_code == code or error.code_name == code_name


class Bootstrapper:
    """Starts and configures the nodes of one topology.

    A Bootstrapper owns the NodeHandles it creates. Once bootstrap() returns or
    fails, its connections are closed and the processes keep running unless
    the cancellation or rollback policy says otherwise.
    """

    def __init__(
        self,
        process_manager: ProcessManager,
        driver: Driver,
        options: BootstrapOptions,
    ):
        self.process_manager = process_manager
        self.driver = driver
        self.options = options
        self.state: Optional[ClusterState] = None
        self._handles: dict[str, NodeHandle] = {}
        self._connections: dict[tuple[str, bool], Any] = {}
        self._primaries: dict[str, NodeSpec] = {}
        self._handles_lock = threading.Lock()
        self._stopping = False
        self._cancelled = False
        self._running = False

    @property
    def handles(self) -> list[NodeHandle]:
        return list(self._handles.values())

    def cancel(self) -> None:
        """Stop issuing commands; the running bootstrap raises BootstrapCancelled."""
        self._cancelled = True

    async def bootstrap(self, topology: Topology) -> ClusterState:
        """Bring ``topology`` to a converged state.

        Returns:
            The final ClusterState

        Raises:
            TopologyInvalid: before any node is touched
            BootstrapError: on any runtime failure, with ``state`` attached
        """
        if self._running:
            raise RuntimeError("This Bootstrapper is already running a bootstrap")

        ensure_valid(topology)

        self._running = True
        self._stopping = False
        self.state = ClusterState(all_nodes(topology))
        try:
            for tier in tiers(topology):
                await self._bring_up_tier(tier)

            if isinstance(topology, Sharded):
                await self._configure_sharding(topology)

            if self.options.credential is not None:
                await self._create_user(topology)

            console.print("[green]✓ Cluster converged[/green]")
            return self.state
        except asyncio.CancelledError:
            console.print("[yellow]Bootstrap interrupted[/yellow]")
            self._apply_cancel_policy()
            raise
        except BootstrapCancelled as e:
            e.state = self.state
            self._apply_cancel_policy()
            raise
        except BootstrapError as e:
            e.state = self.state
            if e.node:
                self._mark_failed_by_address(e.node, e.message)
            if self.options.rollback_on_failure:
                console.print("[yellow]Rolling back started processes...[/yellow]")
                self._stop_all_handles()
            raise
        finally:
            self._release_connections()
            self._running = False

    # Tiers

    async def _bring_up_tier(self, tier: Tier) -> None:
        self._check_cancelled()
        console.print(
            f"[cyan]Starting tier {tier.name} ({len(tier.nodes)} node(s))...[/cyan]"
        )
        # Every start finishes, failed or not, before the tier moves on
        await self._run_concurrently(
            [self._start_node(spec) for spec in tier.nodes], cancel_on_failure=False
        )
        await self._run_concurrently(
            [self._wait_reachable(spec) for spec in tier.nodes]
        )

        if tier.replica_set is not None:
            await self._configure_replica_set(tier.replica_set)
        elif not any(spec.is_router for spec in tier.nodes):
            for spec in tier.nodes:
                self.state.mark_configured(spec)

    async def _run_concurrently(
        self, coros: list, cancel_on_failure: bool = True
    ) -> None:
        """Run one task per coroutine and re-raise the first failure.

        With ``cancel_on_failure`` the first failure cancels the remaining
        tasks; without it every task runs to completion first.
        """
        tasks = [asyncio.create_task(coro) for coro in coros]
        return_when = (
            asyncio.FIRST_EXCEPTION if cancel_on_failure else asyncio.ALL_COMPLETED
        )
        try:
            done, pending = await asyncio.wait(tasks, return_when=return_when)
        except asyncio.CancelledError:
            if cancel_on_failure:
                for task in tasks:
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        # Re-raise the first failure in submission order
        for task in tasks:
            if task in done and not task.cancelled() and task.exception() is not None:
                raise task.exception()

    # Nodes

    def _start_and_record(self, spec: NodeSpec) -> NodeHandle:
        handle = self.process_manager.start(spec)
        with self._handles_lock:
            if not self._stopping:
                self._handles[spec.address] = handle
                return handle

        logger.debug("%s came up after cleanup started, stopping it", spec)
        self.process_manager.stop(handle)
        raise BootstrapCancelled(f"{spec} started after cleanup began and was stopped")

    async def _start_node(self, spec: NodeSpec) -> None:
        self._check_cancelled()
        try:
            handle = await asyncio.to_thread(self._start_and_record, spec)
        except (ProcessStartFailure, BootstrapCancelled):
            raise
        except Exception as e:
            raise ProcessStartFailure(
                f"Failed to start {spec}: {e}", node=spec.address
            ) from e

        self.state.mark_started(spec, handle.pid)
        self.state.record_step("start", spec.address, STEP_APPLIED)

    async def _wait_reachable(self, spec: NodeSpec) -> None:
        handle = self._handles.get(spec.address)

        async def ping():
            self._check_cancelled()
            if handle is not None and not self.process_manager.is_alive(handle):
                raise NodeUnreachable(
                    ERROR_NODE_NOT_RUNNING.format(node=spec)
                    + ", it exited before becoming reachable"
                    + (f" (see {handle.log_file})" if handle.log_file else ""),
                    node=spec.address,
                )
            return await self._run(spec, {"hello": 1})

        try:
            await retry_async_call(ping, config=self._polling_config())
        except RetryExhausted as e:
            raise NodeUnreachable(
                f"{spec} did not become reachable after {e.attempts} attempt(s): "
                f"{e.last_exception}",
                node=spec.address,
                attempts=e.attempts,
            ) from e

        self.state.mark_reachable(spec)
        logger.debug("%s is reachable", spec)

    # Replica sets

    async def _configure_replica_set(self, replica_set: ReplicaSet) -> None:
        first = replica_set.members[0]
        config: dict[str, Any] = {
            "_id": replica_set.name,
            "members": [{"_id": 0, "host": first.address}],
        }
        if replica_set.config_server:
            config["configsvr"] = True

        try:
            await self._command(first, {"replSetInitiate": config})
            self.state.record_step("initiate", replica_set.name, STEP_APPLIED)
            console.print(f"[green]✓ Initiated replica set {replica_set.name}[/green]")
        except DriverError as e:
            if not _is_already(e, ERROR_CODE_ALREADY_INITIALIZED, "AlreadyInitialized"):
                self._fail_step("initiate", replica_set.name, first, e)
            self.state.record_step(
                "initiate", replica_set.name, STEP_SKIPPED, "already initialized"
            )
            logger.debug("Replica set %s was already initiated", replica_set.name)

        primary = await self._wait_for_primary(replica_set)
        for member in replica_set.members[1:]:
            await self._add_member(replica_set, primary, member)

        if len(replica_set.members) > 1:
            primary = await self._wait_for_primary(replica_set)
        self._primaries[replica_set.name] = primary

        for member in replica_set.members:
            self.state.mark_configured(member)

    async def _add_member(
        self, replica_set: ReplicaSet, primary: NodeSpec, member: NodeSpec
    ) -> None:
        step = f"{replica_set.name}/{member.address}"

        async def reconfig() -> bool:
            response = await self._command(primary, {"replSetGetConfig": 1})
            config = response["config"]
            members = config.get("members", [])
            if any(m.get("host") == member.address for m in members):
                return False

            config["members"] = members + [
                {
                    "_id": max((m["_id"] for m in members), default=-1) + 1,
                    "host": member.address,
                }
            ]
            config["version"] = config.get("version", 1) + 1
            await self._command(primary, {"replSetReconfig": config})
            return True

        reconfig_retry = self._polling_config(
            lambda e: e.transient or e.server_code in RECONFIG_RETRY_CODES
        )
        try:
            added = await retry_async_call(reconfig, config=reconfig_retry)
        except RetryExhausted as e:
            self._fail_step("add_member", step, primary, e.last_exception)
        except DriverError as e:
            self._fail_step("add_member", step, primary, e)

        if added:
            self.state.record_step("add_member", step, STEP_APPLIED)
            console.print(f"[green]✓ Added {member.address} to {replica_set.name}[/green]")
        else:
            self.state.record_step("add_member", step, STEP_SKIPPED, "already a member")

    async def _wait_for_primary(self, replica_set: ReplicaSet) -> NodeSpec:
        by_address = {m.address: m for m in replica_set.members}
        probe_target = replica_set.members[0]

        async def probe() -> NodeSpec:
            self._check_cancelled()
            status = await self._run(probe_target, {"replSetGetStatus": 1})
            for member in status.get("members", []):
                if member.get("stateStr") == MEMBER_STATE_PRIMARY:
                    return by_address.get(member.get("name"), probe_target)
            raise DriverError(
                f"{replica_set.name} has no primary yet", transient=True
            )

        primary_retry = self._polling_config(
            lambda e: e.transient or e.server_code == ERROR_CODE_NOT_YET_INITIALIZED
        )
        try:
            primary = await retry_async_call(probe, config=primary_retry)
        except RetryExhausted as e:
            raise NodeUnreachable(
                f"Replica set {replica_set.name} did not elect a primary after "
                f"{e.attempts} attempt(s)",
                node=probe_target.address,
                attempts=e.attempts,
            ) from e
        except DriverError as e:
            self._fail_step("wait_primary", replica_set.name, probe_target, e)

        logger.debug("%s primary is %s", replica_set.name, primary.address)
        return primary

    # Sharding

    async def _configure_sharding(self, topology: Sharded) -> None:
        router = topology.routers[0]

        try:
            response = await self._command(router, {"listShards": 1})
        except DriverError as e:
            self._fail_step("list_shards", router.address, router, e)
        existing = {shard.get("_id") for shard in response.get("shards", [])}

        for shard in topology.shards:
            if shard.name in existing:
                self.state.record_step(
                    "add_shard", shard.name, STEP_SKIPPED, "already a shard"
                )
                continue
            try:
                await self._command(
                    router, {"addShard": shard.seed_list, "name": shard.name}
                )
            except DriverError as e:
                self._fail_step("add_shard", shard.name, router, e)
            self.state.record_step("add_shard", shard.name, STEP_APPLIED)
            console.print(f"[green]✓ Added shard {shard.name}[/green]")

        for database in self.options.enable_sharding:
            try:
                await self._command(router, {"enableSharding": database})
                self.state.record_step("enable_sharding", database, STEP_APPLIED)
            except DriverError as e:
                if not _is_already(e, ERROR_CODE_ALREADY_INITIALIZED, "AlreadyInitialized"):
                    self._fail_step("enable_sharding", database, router, e)
                self.state.record_step(
                    "enable_sharding", database, STEP_SKIPPED, "already enabled"
                )

        if self.options.balancer is not None:
            command = "balancerStart" if self.options.balancer else "balancerStop"
            try:
                await self._command(router, {command: 1})
            except DriverError as e:
                self._fail_step(command, router.address, router, e)
            self.state.record_step(command, router.address, STEP_APPLIED)

        for spec in topology.routers:
            self.state.mark_configured(spec)

    # Authentication

    async def _create_user(self, topology: Topology) -> None:
        credential = self.options.credential
        if isinstance(topology, Standalone):
            target = topology.node
        elif isinstance(topology, ReplicaSet):
            target = self._primaries.get(topology.name, topology.members[0])
        else:
            target = topology.routers[0]

        command = {
            "createUser": credential.username,
            "pwd": credential.password,
            "roles": [{"role": "root", "db": "admin"}],
        }
        try:
            await self._command(target, command)
            self.state.record_step("create_user", credential.username, STEP_APPLIED)
        except DriverError as e:
            if not _is_already(e, ERROR_CODE_USER_ALREADY_EXISTS, "Location51003"):
                self._fail_step("create_user", credential.username, target, e)
            self.state.record_step(
                "create_user", credential.username, STEP_SKIPPED, "already exists"
            )

    # Commands

    def _connection(self, spec: NodeSpec, authenticated: bool) -> Any:
        key = (spec.address, authenticated)
        if key not in self._connections:
            self._connections[key] = self.driver.connect(
                spec.host, spec.port, authenticated=authenticated
            )
        return self._connections[key]

    async def _run(self, spec: NodeSpec, command: dict[str, Any]) -> dict[str, Any]:
        """Run one admin command, retrying with credentials if auth is on."""
        self._check_cancelled()
        try:
            return await asyncio.to_thread(
                self.driver.run_admin_command, self._connection(spec, False), command
            )
        except DriverError as e:
            if e.server_code != ERROR_CODE_UNAUTHORIZED or self.options.credential is None:
                raise
        return await asyncio.to_thread(
            self.driver.run_admin_command, self._connection(spec, True), command
        )

    async def _command(self, spec: NodeSpec, command: dict[str, Any]) -> dict[str, Any]:
        """Run a configuration command, retrying transient connectivity errors."""
        try:
            return await retry_async_call(
                self._run, spec, command, config=self.options.command_retry
            )
        except RetryExhausted as e:
            raise NodeUnreachable(
                f"Lost contact with {spec} while running {next(iter(command))}: "
                f"{e.last_exception}",
                node=spec.address,
                attempts=e.attempts,
            ) from e

    def _fail_step(
        self, step: str, target: str, spec: NodeSpec, error: DriverError
    ) -> NoReturn:
        self.state.record_step(step, target, STEP_FAILED, str(error))
        raise ConfigCommandFailure(
            f"{step} on {target} failed: {error.message}",
            command=step,
            node=spec.address,
            response=error.response,
        ) from error

    def _polling_config(self, should_retry=None) -> RetryConfig:
        """The configured polling budget, retrying driver errors only."""
        return self.options.retry.replace(
            exceptions=(DriverError,), should_retry=should_retry
        )

    def _check_cancelled(self) -> None:
        if self._cancelled:
            raise BootstrapCancelled()

    # Cleanup

    def _mark_failed_by_address(self, address: str, message: str) -> None:
        for status in self.state.nodes:
            if status.spec.address == address:
                self.state.mark_failed(status.spec, message)

    def _apply_cancel_policy(self) -> None:
        if self.options.on_cancel == ON_CANCEL_KILL:
            console.print("[yellow]Stopping started processes...[/yellow]")
            self._stop_all_handles()
        else:
            console.print(
                f"[yellow]Leaving {len(self._handles)} started process(es) running[/yellow]"
            )

    def _stop_all_handles(self) -> None:
        with self._handles_lock:
            self._stopping = True
            handles = list(self._handles.values())
        for handle in reversed(handles):
            try:
                self.process_manager.stop(handle)
            except Exception as e:
                console.print(
                    f"[yellow]⚠️  Could not stop {handle.spec}: {e}[/yellow]"
                )

    def _release_connections(self) -> None:
        for connection in self._connections.values():
            try:
                self.driver.close(connection)
            except Exception as e:
                logger.debug("Failed to close connection: %s", e)
        self._connections.clear()


async def bootstrap(
    topology: Topology,
    options: BootstrapOptions,
    process_manager: ProcessManager,
    driver: Driver,
) -> ClusterState:
    """Bootstrap ``topology`` with a fresh Bootstrapper."""
    return await Bootstrapper(process_manager, driver, options).bootstrap(topology)
