"""
Topology model - the deployments phil knows how to bring up.

A topology is one of three immutable variants:
- Standalone: a single mongod
- ReplicaSet: an ordered list of mongod members sharing a set name
- Sharded: a config server replica set, one or more shard replica sets and
  one or more mongos routers

Builders at the bottom of the module derive topologies from simple counts, the
way the `single`, `replset` and `sharded` commands describe them.
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from phil.commands.constants import (
    DEFAULT_BASE_PORT,
    DEFAULT_CONFIG_SERVER_SET_NAME,
    DEFAULT_DATA_ROOT,
    DEFAULT_HOST,
    DEFAULT_NUM_MONGOS,
    DEFAULT_NUM_SHARDS,
    DEFAULT_REPLICA_SET_NAME,
    DEFAULT_REPLICA_SET_NODES,
    DEFAULT_SHARD_NAME_TEMPLATE,
    SHARD_TYPE_REPLSET,
    SHARD_TYPE_SINGLE,
)


class NodeRole(str, Enum):
    """Role a node plays in its topology."""

    STANDALONE = "standalone"
    REPLICA_MEMBER = "replica_member"
    CONFIG_SERVER = "config_server"
    SHARD_MEMBER = "shard_member"
    ROUTER = "router"


@dataclass(frozen=True)
class NodeSpec:
    """Everything needed to launch and reach one server process.

    ``set_name`` is the replica set a mongod joins and ``config_db`` is the
    config server connection string a router points at.
    """

    host: str
    port: int
    dbpath: Optional[str]
    role: NodeRole
    set_name: Optional[str] = None
    config_db: Optional[str] = None
    extra_args: tuple[str, ...] = ()

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def is_router(self) -> bool:
        return self.role == NodeRole.ROUTER

    def __str__(self) -> str:
        return f"{self.role.value}@{self.address}"


@dataclass(frozen=True)
class Standalone:
    node: NodeSpec


@dataclass(frozen=True)
class ReplicaSet:
    name: str
    members: tuple[NodeSpec, ...]
    config_server: bool = False

    @property
    def seed_list(self) -> str:
        """The ``<set>/<host:port,...>`` form used by addShard and --configdb."""
        return f"{self.name}/{','.join(m.address for m in self.members)}"


@dataclass(frozen=True)
class Sharded:
    config_servers: tuple[NodeSpec, ...]
    shards: tuple[ReplicaSet, ...]
    routers: tuple[NodeSpec, ...]
    config_set_name: str = DEFAULT_CONFIG_SERVER_SET_NAME

    @property
    def config_replica_set(self) -> ReplicaSet:
        return ReplicaSet(
            name=self.config_set_name,
            members=self.config_servers,
            config_server=True,
        )


Topology = Union[Standalone, ReplicaSet, Sharded]


@dataclass(frozen=True)
class Tier:
    """Nodes that may start concurrently, plus the replica set they form."""

    name: str
    nodes: tuple[NodeSpec, ...]
    replica_set: Optional[ReplicaSet] = None


def topology_kind(topology: Topology) -> str:
    if isinstance(topology, Standalone):
        return "standalone"
    if isinstance(topology, ReplicaSet):
        return "replica_set"
    if isinstance(topology, Sharded):
        return "sharded"
    raise TypeError(f"Not a topology: {topology!r}")


def tiers(topology: Topology) -> list[Tier]:
    """Split a topology into tiers in dependency order.

    Config servers come first, then each shard, then the routers, which need
    the config servers to be initiated before they can start.
    """
    if isinstance(topology, Standalone):
        return [Tier("standalone", (topology.node,))]
    if isinstance(topology, ReplicaSet):
        return [Tier(topology.name, topology.members, topology)]
    if isinstance(topology, Sharded):
        config_rs = topology.config_replica_set
        result = [Tier(config_rs.name, config_rs.members, config_rs)]
        result.extend(Tier(shard.name, shard.members, shard) for shard in topology.shards)
        result.append(Tier("routers", topology.routers))
        return result
    raise TypeError(f"Not a topology: {topology!r}")


def all_nodes(topology: Topology) -> list[NodeSpec]:
    """Every node in the topology, in dependency order."""
    return [node for tier in tiers(topology) for node in tier.nodes]


def entry_points(topology: Topology) -> list[NodeSpec]:
    """Nodes a client should connect to once the deployment is up."""
    if isinstance(topology, Standalone):
        return [topology.node]
    if isinstance(topology, ReplicaSet):
        return list(topology.members)
    if isinstance(topology, Sharded):
        return list(topology.routers)
    raise TypeError(f"Not a topology: {topology!r}")


def _data_dir(data_root: str, name: str, port: int) -> str:
    return os.path.join(data_root, f"{name}-{port}")


def build_standalone(
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_BASE_PORT,
    data_root: str = DEFAULT_DATA_ROOT,
    extra_args: tuple[str, ...] = (),
) -> Standalone:
    return Standalone(
        NodeSpec(
            host=host,
            port=port,
            dbpath=_data_dir(data_root, "standalone", port),
            role=NodeRole.STANDALONE,
            extra_args=tuple(extra_args),
        )
    )


def build_replica_set(
    nodes: int = DEFAULT_REPLICA_SET_NODES,
    set_name: str = DEFAULT_REPLICA_SET_NAME,
    host: str = DEFAULT_HOST,
    base_port: int = DEFAULT_BASE_PORT,
    data_root: str = DEFAULT_DATA_ROOT,
    role: NodeRole = NodeRole.REPLICA_MEMBER,
    extra_args: tuple[str, ...] = (),
    config_server: bool = False,
) -> ReplicaSet:
    members = tuple(
        NodeSpec(
            host=host,
            port=base_port + i,
            dbpath=_data_dir(data_root, set_name, base_port + i),
            role=role,
            set_name=set_name,
            extra_args=tuple(extra_args),
        )
        for i in range(nodes)
    )
    return ReplicaSet(name=set_name, members=members, config_server=config_server)


def build_sharded(
    num_shards: int = DEFAULT_NUM_SHARDS,
    shard_type: str = SHARD_TYPE_REPLSET,
    num_mongos: int = DEFAULT_NUM_MONGOS,
    host: str = DEFAULT_HOST,
    base_port: int = DEFAULT_BASE_PORT,
    data_root: str = DEFAULT_DATA_ROOT,
    extra_args: tuple[str, ...] = (),
    config_set_name: str = DEFAULT_CONFIG_SERVER_SET_NAME,
) -> Sharded:
    """Lay out a sharded cluster on consecutive ports.

    Routers take the first ports so that the base port is always a mongos,
    followed by a one-member config server set and then the shards.
    """
    if shard_type not in (SHARD_TYPE_SINGLE, SHARD_TYPE_REPLSET):
        raise ValueError(f"Unknown shard type: {shard_type}")

    next_port = base_port
    router_ports = list(range(next_port, next_port + num_mongos))
    next_port += num_mongos

    config_rs = build_replica_set(
        nodes=1,
        set_name=config_set_name,
        host=host,
        base_port=next_port,
        data_root=data_root,
        role=NodeRole.CONFIG_SERVER,
        extra_args=extra_args,
        config_server=True,
    )
    next_port += 1

    members_per_shard = 1 if shard_type == SHARD_TYPE_SINGLE else DEFAULT_REPLICA_SET_NODES
    shards = []
    for index in range(num_shards):
        shards.append(
            build_replica_set(
                nodes=members_per_shard,
                set_name=DEFAULT_SHARD_NAME_TEMPLATE.format(index=index),
                host=host,
                base_port=next_port,
                data_root=data_root,
                role=NodeRole.SHARD_MEMBER,
                extra_args=extra_args,
            )
        )
        next_port += members_per_shard

    routers = tuple(
        NodeSpec(
            host=host,
            port=port,
            dbpath=_data_dir(data_root, "mongos", port),
            role=NodeRole.ROUTER,
            config_db=config_rs.seed_list,
        )
        for port in router_ports
    )

    return Sharded(
        config_servers=config_rs.members,
        shards=tuple(shards),
        routers=routers,
        config_set_name=config_set_name,
    )


__all__ = [
    "NodeRole",
    "NodeSpec",
    "Standalone",
    "ReplicaSet",
    "Sharded",
    "Topology",
    "Tier",
    "tiers",
    "all_nodes",
    "entry_points",
    "topology_kind",
    "build_standalone",
    "build_replica_set",
    "build_sharded",
]
