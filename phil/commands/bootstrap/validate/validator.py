"""
Topology validator.

Checks the structure of a topology without starting anything, so a
broken topology is rejected before a single process exists.
"""

from phil.commands.constants import ERROR_INVALID_PORT
from phil.commands.errors import TopologyInvalid
from phil.commands.topology import (
    NodeRole,
    NodeSpec,
    ReplicaSet,
    Sharded,
    Standalone,
    Topology,
    all_nodes,
)


def validate_topology(topology: Topology) -> dict:
    """
    Validate a topology.

    Args:
        topology: A Standalone, ReplicaSet or Sharded topology

    Returns:
        Dictionary with 'valid' boolean and 'errors' list
    """
    errors = []

    if isinstance(topology, Standalone):
        errors.extend(_validate_node(topology.node, NodeRole.STANDALONE))
        if topology.node.set_name:
            errors.append(f"Standalone node {topology.node.address} must not have a set name")
    elif isinstance(topology, ReplicaSet):
        errors.extend(validate_replica_set(topology, NodeRole.REPLICA_MEMBER))
    elif isinstance(topology, Sharded):
        errors.extend(_validate_sharded(topology))
    else:
        return {"valid": False, "errors": [f"Unknown topology type: {type(topology).__name__}"]}

    errors.extend(_validate_unique_nodes(all_nodes(topology)))

    return {"valid": len(errors) == 0, "errors": errors}


def validate_replica_set(replica_set: ReplicaSet, role: NodeRole) -> list:
    """
    Validate one replica set and its members.

    Args:
        replica_set: The replica set to check
        role: The role every member is expected to have

    Returns:
        List of validation errors
    """
    errors = []
    name = replica_set.name

    if not name:
        errors.append("Replica set name must not be empty")
    if len(replica_set.members) == 0:
        errors.append(f"Replica set '{name}' must have at least one member")

    for member in replica_set.members:
        errors.extend(_validate_node(member, role))
        if member.set_name != name:
            errors.append(
                f"Member {member.address} has set name '{member.set_name}', expected '{name}'"
            )

    return errors


def _validate_sharded(topology: Sharded) -> list:
    errors = []

    if len(topology.config_servers) == 0:
        errors.append("Sharded topology must have at least one config server")
    if len(topology.shards) == 0:
        errors.append("Sharded topology must have at least one shard")
    if len(topology.routers) == 0:
        errors.append("Sharded topology must have at least one router")

    if topology.config_servers:
        errors.extend(
            validate_replica_set(topology.config_replica_set, NodeRole.CONFIG_SERVER)
        )
    for shard in topology.shards:
        errors.extend(validate_replica_set(shard, NodeRole.SHARD_MEMBER))

    set_names = [topology.config_set_name] + [shard.name for shard in topology.shards]
    duplicates = sorted({name for name in set_names if set_names.count(name) > 1})
    for name in duplicates:
        errors.append(f"Replica set name '{name}' is used more than once")

    expected_prefix = f"{topology.config_set_name}/"
    for router in topology.routers:
        errors.extend(_validate_node(router, NodeRole.ROUTER))
        if not router.config_db:
            errors.append(f"Router {router.address} has no config server connection string")
        elif not router.config_db.startswith(expected_prefix):
            errors.append(
                f"Router {router.address} points at '{router.config_db}', "
                f"expected the '{topology.config_set_name}' config servers"
            )

    return errors


def _validate_node(node: NodeSpec, role: NodeRole) -> list:
    errors = []

    if not node.host:
        errors.append(f"Node on port {node.port} has no host")
    if not isinstance(node.port, int) or not 1 <= node.port <= 65535:
        errors.append(
            f"Node {node.address} has invalid port {node.port!r}: {ERROR_INVALID_PORT}"
        )
    if node.role != role:
        errors.append(
            f"Node {node.address} has role '{node.role.value}', expected '{role.value}'"
        )
    if role != NodeRole.ROUTER and not node.dbpath:
        errors.append(f"Node {node.address} has no data directory")

    return errors


def _validate_unique_nodes(nodes: list) -> list:
    errors = []
    seen_addresses = set()
    seen_dbpaths = set()

    for node in nodes:
        if node.address in seen_addresses:
            errors.append(f"Address {node.address} is used by more than one node")
        seen_addresses.add(node.address)

        if node.dbpath and not node.is_router:
            if node.dbpath in seen_dbpaths:
                errors.append(f"Data directory {node.dbpath} is used by more than one node")
            seen_dbpaths.add(node.dbpath)

    return errors


def ensure_valid(topology: Topology) -> None:
    """Raise TopologyInvalid listing every problem found in ``topology``."""
    result = validate_topology(topology)
    if not result["valid"]:
        errors = result["errors"]
        raise TopologyInvalid(
            f"Topology is invalid ({len(errors)} error(s)): {errors[0]}",
            errors=errors,
        )
