"""
Configuration management for topology files.
"""

import os
from typing import Any, Optional

import yaml

from phil.commands.constants import (
    DEFAULT_CONFIG_SERVER_SET_NAME,
    DEFAULT_DATA_ROOT,
    DEFAULT_HOST,
)
from phil.commands.errors import ConfigurationError
from phil.commands.topology import (
    NodeRole,
    NodeSpec,
    ReplicaSet,
    Sharded,
    Standalone,
    Topology,
)
from phil.commands.utils import console

TOPOLOGY_TYPES = ("standalone", "replica_set", "sharded")


def load_topology_config(config_path: str) -> dict[str, Any]:
    """Load a topology description from a YAML file."""
    try:
        with open(config_path) as file:
            config = yaml.safe_load(file)
    except FileNotFoundError as e:
        raise ConfigurationError(
            f"Topology file not found: {config_path}", config_file=config_path
        ) from e
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Invalid YAML format: {str(e)}", config_file=config_path
        ) from e

    if not isinstance(config, dict):
        raise ConfigurationError(
            "Topology file must contain a mapping", config_file=config_path
        )

    if "type" not in config:
        raise ConfigurationError("Missing required field: type", config_file=config_path)
    if config["type"] not in TOPOLOGY_TYPES:
        raise ConfigurationError(
            f"Unknown topology type '{config['type']}', expected one of "
            f"{', '.join(TOPOLOGY_TYPES)}",
            config_file=config_path,
        )

    return config


def _node_from_dict(
    entry: Any,
    role: NodeRole,
    data_root: str,
    extra_args: tuple[str, ...],
    set_name: Optional[str] = None,
    config_db: Optional[str] = None,
    prefix: str = "node",
) -> NodeSpec:
    if not isinstance(entry, dict):
        raise ConfigurationError(f"Node entry must be a mapping, got {entry!r}")
    if "port" not in entry:
        raise ConfigurationError(f"Node entry {entry!r} is missing 'port'")

    try:
        port = int(entry["port"])
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid port {entry['port']!r}") from e

    dbpath = entry.get("dbpath") or os.path.join(data_root, f"{prefix}-{port}")
    args = tuple(str(arg) for arg in entry.get("args", []))

    return NodeSpec(
        host=str(entry.get("host", DEFAULT_HOST)),
        port=port,
        dbpath=dbpath,
        role=role,
        set_name=set_name,
        config_db=config_db,
        extra_args=extra_args + args,
    )


def _replica_set_from_dict(
    entry: Any,
    role: NodeRole,
    data_root: str,
    extra_args: tuple[str, ...],
    config_server: bool = False,
) -> ReplicaSet:
    if not isinstance(entry, dict):
        raise ConfigurationError(f"Replica set entry must be a mapping, got {entry!r}")
    name = entry.get("name")
    if not name:
        raise ConfigurationError("Replica set entry is missing 'name'")

    members = entry.get("members")
    if not isinstance(members, list):
        raise ConfigurationError(f"Replica set '{name}' must list its 'members'")

    return ReplicaSet(
        name=name,
        members=tuple(
            _node_from_dict(
                member, role, data_root, extra_args, set_name=name, prefix=name
            )
            for member in members
        ),
        config_server=config_server,
    )


def topology_from_dict(
    config: dict[str, Any], default_data_root: Optional[str] = None
) -> Topology:
    """Build a Topology from a loaded topology description.

    Node data directories go under the file's ``data_root``, or
    ``default_data_root`` when the file sets none.

    Structural problems (missing keys, wrong types) raise ConfigurationError;
    semantic problems are left to the validator.
    """
    data_root = config.get("data_root") or default_data_root or DEFAULT_DATA_ROOT
    extra_args = tuple(str(arg) for arg in config.get("extra_args", []))
    kind = config.get("type")

    if kind == "standalone":
        if "node" not in config:
            raise ConfigurationError("Standalone topology is missing 'node'")
        return Standalone(
            _node_from_dict(
                config["node"],
                NodeRole.STANDALONE,
                data_root,
                extra_args,
                prefix="standalone",
            )
        )

    if kind == "replica_set":
        return _replica_set_from_dict(
            config, NodeRole.REPLICA_MEMBER, data_root, extra_args
        )

    if kind == "sharded":
        config_servers = config.get("config_servers")
        if isinstance(config_servers, dict):
            config_servers = {
                "name": DEFAULT_CONFIG_SERVER_SET_NAME,
                **config_servers,
            }
        config_rs = _replica_set_from_dict(
            config_servers,
            NodeRole.CONFIG_SERVER,
            data_root,
            extra_args,
            config_server=True,
        )

        shards = config.get("shards")
        if not isinstance(shards, list):
            raise ConfigurationError("Sharded topology must list its 'shards'")
        routers = config.get("routers")
        if not isinstance(routers, list):
            raise ConfigurationError("Sharded topology must list its 'routers'")

        return Sharded(
            config_servers=config_rs.members,
            shards=tuple(
                _replica_set_from_dict(shard, NodeRole.SHARD_MEMBER, data_root, extra_args)
                for shard in shards
            ),
            routers=tuple(
                _node_from_dict(
                    router,
                    NodeRole.ROUTER,
                    data_root,
                    (),
                    config_db=config_rs.seed_list,
                    prefix="mongos",
                )
                for router in routers
            ),
            config_set_name=config_rs.name,
        )

    raise ConfigurationError(f"Unknown topology type '{kind}'")


def load_topology(config_path: str) -> Topology:
    """Load and build the topology described by a YAML file."""
    config = load_topology_config(config_path)
    try:
        return topology_from_dict(config)
    except ConfigurationError as e:
        e.config_file = config_path
        e.details["config_file"] = config_path
        raise


def create_sample_topology_config(output_path: str = "phil-topology.yml") -> str:
    """Create a sample sharded topology file."""
    sample_config = {
        "name": "sample-cluster",
        "type": "sharded",
        "data_root": "./data",
        "config_servers": {
            "name": DEFAULT_CONFIG_SERVER_SET_NAME,
            "members": [{"host": DEFAULT_HOST, "port": 27019}],
        },
        "shards": [
            {
                "name": "phil-replset-shard-0",
                "members": [
                    {"host": DEFAULT_HOST, "port": 27020},
                    {"host": DEFAULT_HOST, "port": 27021},
                    {"host": DEFAULT_HOST, "port": 27022},
                ],
            }
        ],
        "routers": [
            {"host": DEFAULT_HOST, "port": 27017},
            {"host": DEFAULT_HOST, "port": 27018},
        ],
        "enable_sharding": ["test"],
        "balancer": True,
    }

    with open(output_path, "w") as file:
        yaml.dump(sample_config, file, default_flow_style=False, sort_keys=False)

    console.print(f"[green]Sample topology configuration created: {output_path}[/green]")
    console.print(
        "[yellow]This sample describes a sharded cluster with one config server, "
        "one three-member shard and two routers[/yellow]"
    )
    return output_path
