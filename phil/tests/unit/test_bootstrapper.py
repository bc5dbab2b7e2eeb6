"""
Unit tests for the Bootstrapper start and configuration sequence.
"""

import pytest

from phil.commands.bootstrap.bootstrapper import (
    Bootstrapper,
    BootstrapOptions,
    bootstrap,
)
from phil.commands.constants import ON_CANCEL_KILL, ON_CANCEL_LEAVE
from phil.commands.errors import (
    BootstrapCancelled,
    ConfigCommandFailure,
    DriverError,
    NodeUnreachable,
    ProcessStartFailure,
    TopologyInvalid,
)
from phil.commands.retry import RetryConfig
from phil.commands.security import Credential
from phil.commands.state import STEP_APPLIED, STEP_SKIPPED
from phil.commands.topology import (
    NodeRole,
    ReplicaSet,
    build_replica_set,
    build_sharded,
    build_standalone,
)


@pytest.fixture
def rs0(tmp_path):
    return build_replica_set(
        nodes=3, set_name="rs0", base_port=27017, data_root=str(tmp_path)
    )


def _steps(state, name):
    return [step for step in state.steps if step.name == name]


class TestOptions:
    """Tests for BootstrapOptions."""

    def test_on_cancel_is_required(self):
        """Test that the cancellation policy has no implicit default."""
        with pytest.raises(TypeError):
            BootstrapOptions()

    def test_invalid_on_cancel_rejected(self):
        """Test that unknown cancellation policies raise ValueError."""
        with pytest.raises(ValueError) as exc_info:
            BootstrapOptions(on_cancel="maybe")
        assert "maybe" in str(exc_info.value)

    def test_defaults(self):
        options = BootstrapOptions(on_cancel=ON_CANCEL_KILL)
        assert options.rollback_on_failure is False
        assert options.enable_sharding == ()
        assert options.balancer is None
        assert options.credential is None


class TestReplicaSet:
    """Tests for bootstrapping a replica set."""

    @pytest.mark.asyncio
    async def test_three_member_scenario(self, rs0, process_manager, driver, make_options):
        """Test start A, B, C; initiate A; add B; add C."""
        a, b, c = rs0.members

        state = await Bootstrapper(process_manager, driver, make_options()).bootstrap(rs0)

        # Starts within a tier are concurrent, so only membership is fixed
        assert sorted(process_manager.started_addresses) == [a.address, b.address, c.address]
        assert driver.calls[0][1] == "hello"

        initiates = driver.calls_named("replSetInitiate")
        assert len(initiates) == 1
        assert initiates[0][0] == a.address
        assert initiates[0][2]["replSetInitiate"]["members"] == [
            {"_id": 0, "host": a.address}
        ]

        reconfigs = driver.calls_named("replSetReconfig")
        assert len(reconfigs) == 2
        assert [call[0] for call in reconfigs] == [a.address, a.address]
        assert reconfigs[0][2]["replSetReconfig"]["members"][-1]["host"] == b.address
        assert reconfigs[1][2]["replSetReconfig"]["members"][-1]["host"] == c.address
        assert reconfigs[1][2]["replSetReconfig"]["version"] == 3

        for spec in (a, b, c):
            status = state.node(spec)
            assert status.started and status.reachable and status.configured
        assert state.converged

    @pytest.mark.asyncio
    async def test_n_members_one_initiate_n_minus_one_adds(
        self, tmp_path, process_manager, driver, make_options
    ):
        """Test that a set of N members gets one initiate and N-1 adds."""
        topology = build_replica_set(nodes=5, set_name="big", data_root=str(tmp_path))

        await Bootstrapper(process_manager, driver, make_options()).bootstrap(topology)

        assert len(driver.calls_named("replSetInitiate")) == 1
        assert len(driver.calls_named("replSetReconfig")) == 4
        assert len(driver.configs["big"]["members"]) == 5

    @pytest.mark.asyncio
    async def test_single_member_set_needs_no_reconfig(
        self, tmp_path, process_manager, driver, make_options
    ):
        topology = build_replica_set(nodes=1, set_name="solo", data_root=str(tmp_path))

        state = await Bootstrapper(process_manager, driver, make_options()).bootstrap(topology)

        assert driver.calls_named("replSetReconfig") == []
        assert state.converged

    @pytest.mark.asyncio
    async def test_waits_for_primary_before_adding_members(
        self, rs0, process_manager, driver, make_options
    ):
        """Test that members are only added once the set reports a primary."""
        driver.no_primary_polls = 2

        await Bootstrapper(process_manager, driver, make_options()).bootstrap(rs0)

        names = driver.command_names
        first_reconfig = names.index("replSetReconfig")
        assert names[:first_reconfig].count("replSetGetStatus") == 3

    @pytest.mark.asyncio
    async def test_module_level_bootstrap(self, rs0, process_manager, driver, make_options):
        state = await bootstrap(rs0, make_options(), process_manager, driver)
        assert state.converged


class TestStandalone:
    """Tests for bootstrapping a standalone server."""

    @pytest.mark.asyncio
    async def test_standalone_issues_no_replica_set_commands(
        self, tmp_path, process_manager, driver, make_options
    ):
        topology = build_standalone(port=28000, data_root=str(tmp_path))

        state = await Bootstrapper(process_manager, driver, make_options()).bootstrap(topology)

        assert process_manager.started_addresses == ["localhost:28000"]
        assert driver.command_names == ["hello"]
        assert state.converged


class TestSharded:
    """Tests for bootstrapping a sharded cluster."""

    @pytest.mark.asyncio
    async def test_starts_in_dependency_order(
        self, tmp_path, process_manager, driver, make_options
    ):
        """Test that config servers start before shards, and shards before routers."""
        topology = build_sharded(num_shards=2, num_mongos=2, data_root=str(tmp_path))

        state = await Bootstrapper(process_manager, driver, make_options()).bootstrap(topology)

        roles = [spec.role for spec in process_manager.started]
        assert roles[0] == NodeRole.CONFIG_SERVER
        assert roles[1:7] == [NodeRole.SHARD_MEMBER] * 6
        assert roles[7:] == [NodeRole.ROUTER] * 2

        shard_sets = [spec.set_name for spec in process_manager.started[1:7]]
        assert shard_sets == ["phil-replset-shard-0"] * 3 + ["phil-replset-shard-1"] * 3
        assert state.converged

    @pytest.mark.asyncio
    async def test_config_server_set_initiated_as_configsvr(
        self, tmp_path, process_manager, driver, make_options
    ):
        topology = build_sharded(num_shards=1, data_root=str(tmp_path))

        await Bootstrapper(process_manager, driver, make_options()).bootstrap(topology)

        initiates = driver.calls_named("replSetInitiate")
        config_initiate = initiates[0][2]["replSetInitiate"]
        assert config_initiate["_id"] == "phil-config-server"
        assert config_initiate["configsvr"] is True
        assert "configsvr" not in initiates[1][2]["replSetInitiate"]

    @pytest.mark.asyncio
    async def test_shards_added_through_first_router(
        self, tmp_path, process_manager, driver, make_options
    ):
        topology = build_sharded(num_shards=2, shard_type="single", data_root=str(tmp_path))
        router = topology.routers[0]

        await Bootstrapper(process_manager, driver, make_options()).bootstrap(topology)

        add_shards = driver.calls_named("addShard")
        assert [call[0] for call in add_shards] == [router.address] * 2
        assert add_shards[0][2] == {
            "addShard": topology.shards[0].seed_list,
            "name": "phil-replset-shard-0",
        }
        # Routers are only polled after every shard set is configured
        first_router_hello = driver.calls.index(driver.calls_named("hello", router.address)[0])
        last_initiate = driver.calls.index(driver.calls_named("replSetInitiate")[-1])
        assert first_router_hello > last_initiate

    @pytest.mark.asyncio
    async def test_enable_sharding_and_balancer(
        self, tmp_path, process_manager, driver, make_options
    ):
        topology = build_sharded(num_shards=1, data_root=str(tmp_path))
        options = make_options(enable_sharding=("test", "app"), balancer=False)

        state = await Bootstrapper(process_manager, driver, options).bootstrap(topology)

        assert driver.sharded_databases == {"test", "app"}
        assert driver.balancer_running is False
        assert [step.target for step in _steps(state, "enable_sharding")] == ["test", "app"]

    @pytest.mark.asyncio
    async def test_balancer_untouched_by_default(
        self, tmp_path, process_manager, driver, make_options
    ):
        topology = build_sharded(num_shards=1, data_root=str(tmp_path))

        await Bootstrapper(process_manager, driver, make_options()).bootstrap(topology)

        assert driver.calls_named("balancerStart") == []
        assert driver.calls_named("balancerStop") == []


class TestReachability:
    """Tests for reachability polling."""

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(
        self, rs0, process_manager, driver, make_options
    ):
        a = rs0.members[0]
        driver.unreachable_for[a.address] = 2

        state = await Bootstrapper(process_manager, driver, make_options()).bootstrap(rs0)

        assert len(driver.calls_named("hello", a.address)) == 3
        assert state.converged

    @pytest.mark.asyncio
    async def test_gives_up_after_attempt_budget(
        self, rs0, process_manager, driver, make_options
    ):
        """Test that polling stops at the configured number of attempts."""
        b = rs0.members[1]
        driver.never_reachable.add(b.address)
        options = make_options(retry=RetryConfig(max_attempts=4, delay=0, max_delay=0))

        with pytest.raises(NodeUnreachable) as exc_info:
            await Bootstrapper(process_manager, driver, options).bootstrap(rs0)

        error = exc_info.value
        assert error.attempts == 4
        assert error.node == b.address
        assert len(driver.calls_named("hello", b.address)) == 4
        assert error.state.node(b).reachable is False
        assert error.state.node(b).error
        assert driver.calls_named("replSetInitiate") == []

    @pytest.mark.asyncio
    async def test_dead_process_fails_without_polling(
        self, rs0, process_manager, driver, make_options
    ):
        c = rs0.members[2]
        process_manager.dead.add(c.address)

        with pytest.raises(NodeUnreachable) as exc_info:
            await Bootstrapper(process_manager, driver, make_options()).bootstrap(rs0)

        assert "is not running" in exc_info.value.message
        assert "exited" in exc_info.value.message
        assert driver.calls_named("hello", c.address) == []


class TestIdempotency:
    """Tests for re-running against an already converged cluster."""

    @pytest.mark.asyncio
    async def test_rerun_replica_set_is_a_no_op(
        self, rs0, process_manager, driver, make_options
    ):
        await Bootstrapper(process_manager, driver, make_options()).bootstrap(rs0)
        state = await Bootstrapper(process_manager, driver, make_options()).bootstrap(rs0)

        assert state.converged
        assert len(driver.calls_named("replSetReconfig")) == 2
        assert [step.outcome for step in _steps(state, "initiate")] == [STEP_SKIPPED]
        assert [step.outcome for step in _steps(state, "add_member")] == [STEP_SKIPPED] * 2

    @pytest.mark.asyncio
    async def test_rerun_sharded_cluster_skips_existing_shards(
        self, tmp_path, process_manager, driver, make_options
    ):
        topology = build_sharded(num_shards=2, data_root=str(tmp_path))
        options = make_options(enable_sharding=("test",))

        await Bootstrapper(process_manager, driver, options).bootstrap(topology)
        state = await Bootstrapper(process_manager, driver, options).bootstrap(topology)

        assert len(driver.calls_named("addShard")) == 2
        assert [step.outcome for step in _steps(state, "add_shard")] == [STEP_SKIPPED] * 2
        assert len(driver.shards) == 2

    @pytest.mark.asyncio
    async def test_already_sharded_database_is_skipped(
        self, tmp_path, process_manager, driver, make_options
    ):
        topology = build_sharded(num_shards=1, data_root=str(tmp_path))
        driver.failures["enableSharding"] = DriverError(
            "already enabled", server_code=23, code_name="AlreadyInitialized"
        )

        state = await Bootstrapper(
            process_manager, driver, make_options(enable_sharding=("test",))
        ).bootstrap(topology)

        assert [step.outcome for step in _steps(state, "enable_sharding")] == [STEP_SKIPPED]


class TestAuthentication:
    """Tests for creating the administrative user."""

    @pytest.mark.asyncio
    async def test_user_created_last_on_primary(
        self, rs0, process_manager, driver, make_options
    ):
        credential = Credential("phil", "ravi", key_file="/tmp/key")

        state = await Bootstrapper(
            process_manager, driver, make_options(credential=credential)
        ).bootstrap(rs0)

        address, name, command = driver.calls[-1]
        assert name == "createUser"
        assert address == rs0.members[0].address
        assert command["roles"] == [{"role": "root", "db": "admin"}]
        assert driver.users == {"phil": "ravi"}
        assert _steps(state, "create_user")[0].outcome == STEP_APPLIED

    @pytest.mark.asyncio
    async def test_rerun_with_auth_uses_credentials(
        self, rs0, process_manager, driver, make_options
    ):
        """Test that a second run authenticates once the user exists."""
        options = make_options(credential=Credential("phil", "ravi", key_file="/tmp/key"))

        await Bootstrapper(process_manager, driver, options).bootstrap(rs0)
        state = await Bootstrapper(process_manager, driver, options).bootstrap(rs0)

        assert state.converged
        assert _steps(state, "create_user")[0].outcome == STEP_SKIPPED
        assert any(connection.authenticated for connection in driver.connections)

    @pytest.mark.asyncio
    async def test_sharded_user_created_on_router(
        self, tmp_path, process_manager, driver, make_options
    ):
        topology = build_sharded(num_shards=1, data_root=str(tmp_path))
        options = make_options(credential=Credential("admin", "secret", key_file="/tmp/key"))

        await Bootstrapper(process_manager, driver, options).bootstrap(topology)

        assert driver.calls_named("createUser")[0][0] == topology.routers[0].address


class TestFailures:
    """Tests for aborting on failures."""

    @pytest.mark.asyncio
    async def test_command_failure_aborts_remaining_steps(
        self, rs0, process_manager, driver, make_options
    ):
        driver.failures["replSetReconfig"] = DriverError(
            "incompatible config",
            server_code=103,
            code_name="NewReplicaSetConfigurationIncompatible",
            response={"ok": 0, "errmsg": "incompatible config"},
        )

        with pytest.raises(ConfigCommandFailure) as exc_info:
            await Bootstrapper(process_manager, driver, make_options()).bootstrap(rs0)

        error = exc_info.value
        assert error.command == "add_member"
        assert error.response == {"ok": 0, "errmsg": "incompatible config"}
        assert driver.command_names[-1] == "replSetReconfig"
        assert len(driver.calls_named("replSetReconfig")) == 1
        assert len(error.state.failed_steps) == 1
        assert not error.state.converged

    @pytest.mark.asyncio
    async def test_initiate_failure_is_not_treated_as_success(
        self, rs0, process_manager, driver, make_options
    ):
        driver.failures["replSetInitiate"] = DriverError(
            "bad config", server_code=93, code_name="InvalidReplicaSetConfig"
        )

        with pytest.raises(ConfigCommandFailure):
            await Bootstrapper(process_manager, driver, make_options()).bootstrap(rs0)

        assert driver.calls_named("replSetGetStatus") == []

    @pytest.mark.asyncio
    async def test_start_failure_stops_the_bootstrap(
        self, rs0, process_manager, driver, make_options
    ):
        process_manager.fail_on.add(rs0.members[1].address)

        with pytest.raises(ProcessStartFailure) as exc_info:
            await Bootstrapper(process_manager, driver, make_options()).bootstrap(rs0)

        assert exc_info.value.state is not None
        assert driver.calls == []
        assert process_manager.stopped == []

    @pytest.mark.asyncio
    async def test_rollback_on_failure_stops_started_nodes(
        self, rs0, process_manager, driver, make_options
    ):
        driver.failures["replSetInitiate"] = DriverError("boom", server_code=8000)

        with pytest.raises(ConfigCommandFailure):
            await Bootstrapper(
                process_manager, driver, make_options(rollback_on_failure=True)
            ).bootstrap(rs0)

        assert sorted(s.address for s in process_manager.stopped) == sorted(
            m.address for m in rs0.members
        )

    @pytest.mark.asyncio
    async def test_rollback_waits_for_slow_starts_in_the_failed_tier(
        self, rs0, process_manager, driver, make_options
    ):
        """Test that a start still running when another fails is rolled back too."""
        first, slow, _ = rs0.members
        process_manager.fail_on.add(first.address)
        process_manager.start_delay[slow.address] = 0.2

        with pytest.raises(ProcessStartFailure) as exc_info:
            await Bootstrapper(
                process_manager, driver, make_options(rollback_on_failure=True)
            ).bootstrap(rs0)

        assert slow.address in process_manager.started_addresses
        assert sorted(s.address for s in process_manager.stopped) == sorted(
            process_manager.started_addresses
        )
        assert exc_info.value.state.node(slow).started

    def test_start_after_cleanup_is_stopped(
        self, rs0, process_manager, driver, make_options
    ):
        """Test that a process coming up after cleanup began is stopped at once."""
        bootstrapper = Bootstrapper(
            process_manager, driver, make_options(rollback_on_failure=True)
        )
        bootstrapper._stop_all_handles()

        with pytest.raises(BootstrapCancelled):
            bootstrapper._start_and_record(rs0.members[0])

        assert process_manager.stopped == [rs0.members[0]]
        assert bootstrapper.handles == []

    @pytest.mark.asyncio
    async def test_invalid_topology_touches_nothing(
        self, process_manager, driver, make_options
    ):
        empty = ReplicaSet(name="rs0", members=())

        with pytest.raises(TopologyInvalid):
            await Bootstrapper(process_manager, driver, make_options()).bootstrap(empty)

        assert process_manager.started == []
        assert driver.calls == []

    @pytest.mark.asyncio
    async def test_connections_closed_after_failure(
        self, rs0, process_manager, driver, make_options
    ):
        driver.failures["replSetInitiate"] = DriverError("boom", server_code=8000)

        with pytest.raises(ConfigCommandFailure):
            await Bootstrapper(process_manager, driver, make_options()).bootstrap(rs0)

        assert driver.connections
        assert sorted(driver.closed, key=str) == sorted(driver.connections, key=str)


class TestCancellation:
    """Tests for the cancellation policy."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "policy,expect_stopped", [(ON_CANCEL_KILL, True), (ON_CANCEL_LEAVE, False)]
    )
    async def test_cancel_applies_policy(
        self, rs0, process_manager, driver, make_options, policy, expect_stopped
    ):
        bootstrapper = Bootstrapper(process_manager, driver, make_options(on_cancel=policy))

        def cancel_after_initiate(address, name, command):
            if name == "replSetInitiate":
                bootstrapper.cancel()

        driver.on_command = cancel_after_initiate

        with pytest.raises(BootstrapCancelled) as exc_info:
            await bootstrapper.bootstrap(rs0)

        assert exc_info.value.state is not None
        assert driver.calls_named("replSetReconfig") == []
        stopped = sorted(spec.address for spec in process_manager.stopped)
        if expect_stopped:
            assert stopped == sorted(m.address for m in rs0.members)
        else:
            assert stopped == []

    @pytest.mark.asyncio
    async def test_cancel_before_start_starts_nothing(
        self, rs0, process_manager, driver, make_options
    ):
        bootstrapper = Bootstrapper(
            process_manager, driver, make_options(on_cancel=ON_CANCEL_KILL)
        )
        bootstrapper.cancel()

        with pytest.raises(BootstrapCancelled):
            await bootstrapper.bootstrap(rs0)

        assert process_manager.started == []
