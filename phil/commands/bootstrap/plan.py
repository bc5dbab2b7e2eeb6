"""
Bootstrap plan - the steps a bootstrap would take, without taking them.

Used by ``--dry-run``. The order matches Bootstrapper: every tier is started and
polled before its replica set is configured, and sharding steps run last.
"""

from dataclasses import dataclass
from typing import Optional

from rich import box
from rich.table import Table

from phil.commands.topology import ReplicaSet, Sharded, Standalone, Topology, tiers


@dataclass(frozen=True)
class PlannedStep:
    action: str
    target: str
    detail: str = ""


def build_plan(
    topology: Topology,
    enable_sharding: tuple[str, ...] = (),
    balancer: Optional[bool] = None,
    create_user: Optional[str] = None,
) -> list[PlannedStep]:
    steps = []

    for tier in tiers(topology):
        for spec in tier.nodes:
            steps.append(PlannedStep("start", spec.address, spec.role.value))
        for spec in tier.nodes:
            steps.append(PlannedStep("wait_reachable", spec.address))

        rs = tier.replica_set
        if rs is None:
            continue
        steps.append(
            PlannedStep(
                "initiate",
                rs.name,
                f"on {rs.members[0].address}" + (" (configsvr)" if rs.config_server else ""),
            )
        )
        steps.append(PlannedStep("wait_primary", rs.name))
        for member in rs.members[1:]:
            steps.append(PlannedStep("add_member", f"{rs.name}/{member.address}"))
        if len(rs.members) > 1:
            steps.append(PlannedStep("wait_primary", rs.name))

    if isinstance(topology, Sharded):
        router = topology.routers[0].address
        for shard in topology.shards:
            steps.append(PlannedStep("add_shard", shard.name, f"{shard.seed_list} via {router}"))
        for database in enable_sharding:
            steps.append(PlannedStep("enable_sharding", database, f"via {router}"))
        if balancer is not None:
            steps.append(
                PlannedStep("balancerStart" if balancer else "balancerStop", router)
            )

    if create_user:
        if isinstance(topology, Standalone):
            target = topology.node.address
        elif isinstance(topology, ReplicaSet):
            target = f"{topology.name} primary"
        else:
            target = topology.routers[0].address
        steps.append(PlannedStep("create_user", create_user, f"on {target}"))

    return steps


def render_plan(steps: list[PlannedStep]) -> Table:
    table = Table(title="Bootstrap Plan", box=box.ROUNDED)
    table.add_column("#", style="dim")
    table.add_column("Action", style="cyan")
    table.add_column("Target", style="green")
    table.add_column("Detail", style="yellow")

    for index, step in enumerate(steps, 1):
        table.add_row(str(index), step.action, step.target, step.detail)
    return table
