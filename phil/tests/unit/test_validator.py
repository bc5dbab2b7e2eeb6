"""
Unit tests for topology validation.
"""

import dataclasses

import pytest

from phil.commands.bootstrap.validate import ensure_valid, validate_topology
from phil.commands.constants import ERROR_INVALID_PORT
from phil.commands.errors import TopologyInvalid
from phil.commands.topology import (
    NodeRole,
    NodeSpec,
    ReplicaSet,
    Sharded,
    Standalone,
    build_replica_set,
    build_sharded,
    build_standalone,
)


class TestValidTopologies:
    def test_builders_produce_valid_topologies(self):
        for topology in (
            build_standalone(),
            build_replica_set(nodes=3),
            build_sharded(num_shards=2, shard_type="single"),
            build_sharded(num_shards=1, shard_type="replset", num_mongos=1),
        ):
            result = validate_topology(topology)
            assert result == {"valid": True, "errors": []}


class TestInvalidTopologies:
    """Tests for each rejected shape."""

    def test_empty_replica_set(self):
        result = validate_topology(ReplicaSet(name="rs0", members=()))
        assert not result["valid"]
        assert any("at least one member" in e for e in result["errors"])

    def test_sharded_requires_config_shard_and_router(self):
        result = validate_topology(Sharded(config_servers=(), shards=(), routers=()))
        errors = " ".join(result["errors"])
        assert "config server" in errors
        assert "at least one shard" in errors
        assert "at least one router" in errors

    def test_duplicate_addresses(self):
        topology = build_replica_set(nodes=2, set_name="rs0")
        clash = dataclasses.replace(topology.members[1], port=topology.members[0].port)
        result = validate_topology(ReplicaSet("rs0", (topology.members[0], clash)))
        assert any("used by more than one node" in e for e in result["errors"])

    def test_invalid_port(self):
        node = NodeSpec("localhost", 70000, "/data/a", NodeRole.STANDALONE)
        result = validate_topology(Standalone(node))
        assert any("invalid port" in e for e in result["errors"])
        assert any(ERROR_INVALID_PORT in e for e in result["errors"])

    def test_member_with_wrong_set_name(self):
        topology = build_replica_set(nodes=2, set_name="rs0")
        stray = dataclasses.replace(topology.members[1], set_name="rs1")
        result = validate_topology(ReplicaSet("rs0", (topology.members[0], stray)))
        assert any("expected 'rs0'" in e for e in result["errors"])

    def test_member_with_wrong_role(self):
        topology = build_replica_set(nodes=1, set_name="rs0", role=NodeRole.SHARD_MEMBER)
        result = validate_topology(topology)
        assert any("expected 'replica_member'" in e for e in result["errors"])

    def test_missing_data_directory(self):
        node = NodeSpec("localhost", 27017, None, NodeRole.STANDALONE)
        result = validate_topology(Standalone(node))
        assert any("no data directory" in e for e in result["errors"])

    def test_router_pointing_elsewhere(self):
        topology = build_sharded(num_shards=1, num_mongos=1)
        router = dataclasses.replace(topology.routers[0], config_db="other/localhost:1")
        result = validate_topology(dataclasses.replace(topology, routers=(router,)))
        assert any("expected the 'phil-config-server'" in e for e in result["errors"])

    def test_duplicate_set_names(self):
        topology = build_sharded(num_shards=1)
        shard = topology.shards[0]
        renamed = ReplicaSet(
            name="phil-config-server",
            members=tuple(
                dataclasses.replace(m, set_name="phil-config-server") for m in shard.members
            ),
        )
        result = validate_topology(dataclasses.replace(topology, shards=(renamed,)))
        assert any("used more than once" in e for e in result["errors"])


class TestEnsureValid:
    def test_raises_with_every_error(self):
        with pytest.raises(TopologyInvalid) as exc_info:
            ensure_valid(Sharded(config_servers=(), shards=(), routers=()))
        assert len(exc_info.value.errors) == 3
        assert exc_info.value.code == "TOPOLOGY_INVALID"

    def test_valid_topology_passes(self):
        ensure_valid(build_replica_set(nodes=3))
