"""Pytest configuration for phil tests.

The fakes here stand in for the two collaborators the bootstrapper talks to:
FakeProcessManager records starts and stops without spawning anything, and
FakeDriver keeps an in-memory picture of replica sets, shards and users so
that repeated bootstraps see the state earlier ones left behind.
"""

import copy
import threading
import time
from dataclasses import dataclass

import pytest

from phil.commands.bootstrap.bootstrapper import BootstrapOptions
from phil.commands.constants import ON_CANCEL_LEAVE
from phil.commands.errors import DriverError, ProcessStartFailure
from phil.commands.process_manager import NodeHandle
from phil.commands.retry import RetryConfig


class FakeProcessManager:
    def __init__(self):
        self.started = []
        self.stopped = []
        self.fail_on = set()
        self.dead = set()
        self.start_delay = {}
        self._lock = threading.Lock()

    def start(self, spec):
        time.sleep(self.start_delay.get(spec.address, 0))
        if spec.address in self.fail_on:
            raise ProcessStartFailure(f"cannot start {spec}", node=spec.address)
        with self._lock:
            self.started.append(spec)
            pid = 1000 + len(self.started)
        return NodeHandle(spec=spec, pid=pid, log_file=f"{spec.dbpath}/mongod.log")

    def stop(self, handle):
        with self._lock:
            self.stopped.append(handle.spec)

    def is_alive(self, handle):
        return handle.spec.address not in self.dead

    @property
    def started_addresses(self):
        return [spec.address for spec in self.started]


@dataclass(frozen=True)
class FakeConnection:
    address: str
    authenticated: bool


class FakeDriver:
    """In-memory MongoDB deployment answering admin commands."""

    def __init__(self):
        self.calls = []
        self.connections = []
        self.closed = []
        self.configs = {}
        self.member_of = {}
        self.shards = []
        self.sharded_databases = set()
        self.users = {}
        self.balancer_running = None
        # Scripted behaviour
        self.unreachable_for = {}
        self.never_reachable = set()
        self.no_primary_polls = 0
        self.failures = {}
        self.on_command = None
        self._lock = threading.Lock()

    def connect(self, host, port, authenticated=False):
        connection = FakeConnection(f"{host}:{port}", authenticated)
        self.connections.append(connection)
        return connection

    def close(self, connection):
        self.closed.append(connection)

    def calls_named(self, name, address=None):
        return [
            call
            for call in self.calls
            if call[1] == name and (address is None or call[0] == address)
        ]

    @property
    def command_names(self):
        return [call[1] for call in self.calls]

    def run_admin_command(self, connection, command):
        name = next(iter(command))
        address = connection.address
        with self._lock:
            self.calls.append((address, name, copy.deepcopy(command)))

        if self.on_command is not None:
            self.on_command(address, name, command)

        if name == "hello":
            return self._hello(address)

        if self.users and not connection.authenticated:
            raise DriverError(
                f"{name} requires authentication", server_code=13, code_name="Unauthorized"
            )

        if name in self.failures:
            raise self.failures[name]

        handler = getattr(self, f"_{name}")
        with self._lock:
            return handler(address, command)

    def _hello(self, address):
        if address in self.never_reachable:
            raise DriverError(f"{address} refused connection", transient=True)
        remaining = self.unreachable_for.get(address, 0)
        if remaining > 0:
            self.unreachable_for[address] = remaining - 1
            raise DriverError(f"{address} refused connection", transient=True)
        return {"ok": 1, "isWritablePrimary": True}

    def _set_config(self, address):
        set_name = self.member_of.get(address)
        if set_name is None:
            raise DriverError(
                "no replset config has been received",
                server_code=94,
                code_name="NotYetInitialized",
            )
        return self.configs[set_name]

    def _replSetInitiate(self, address, command):
        if address in self.member_of:
            raise DriverError(
                "already initialized", server_code=23, code_name="AlreadyInitialized"
            )
        config = copy.deepcopy(command["replSetInitiate"])
        config.setdefault("version", 1)
        self.configs[config["_id"]] = config
        for member in config["members"]:
            self.member_of[member["host"]] = config["_id"]
        return {"ok": 1}

    def _replSetGetConfig(self, address, command):
        return {"ok": 1, "config": copy.deepcopy(self._set_config(address))}

    def _replSetReconfig(self, address, command):
        config = copy.deepcopy(command["replSetReconfig"])
        self.configs[config["_id"]] = config
        for member in config["members"]:
            self.member_of[member["host"]] = config["_id"]
        return {"ok": 1}

    def _replSetGetStatus(self, address, command):
        config = self._set_config(address)
        if self.no_primary_polls > 0:
            self.no_primary_polls -= 1
            states = ["SECONDARY"] * len(config["members"])
        else:
            states = ["PRIMARY"] + ["SECONDARY"] * (len(config["members"]) - 1)
        return {
            "ok": 1,
            "set": config["_id"],
            "members": [
                {"_id": member["_id"], "name": member["host"], "stateStr": state}
                for member, state in zip(config["members"], states)
            ],
        }

    def _listShards(self, address, command):
        return {"ok": 1, "shards": [dict(shard) for shard in self.shards]}

    def _addShard(self, address, command):
        self.shards.append({"_id": command["name"], "host": command["addShard"]})
        return {"ok": 1, "shardAdded": command["name"]}

    def _enableSharding(self, address, command):
        self.sharded_databases.add(command["enableSharding"])
        return {"ok": 1}

    def _balancerStart(self, address, command):
        self.balancer_running = True
        return {"ok": 1}

    def _balancerStop(self, address, command):
        self.balancer_running = False
        return {"ok": 1}

    def _createUser(self, address, command):
        username = command["createUser"]
        if username in self.users:
            raise DriverError(
                f"User \"{username}@admin\" already exists",
                server_code=51003,
                code_name="Location51003",
            )
        self.users[username] = command["pwd"]
        return {"ok": 1}


FAST_RETRY = RetryConfig(max_attempts=5, delay=0, backoff=1, max_delay=0)


@pytest.fixture
def process_manager():
    return FakeProcessManager()


@pytest.fixture
def driver():
    return FakeDriver()


@pytest.fixture
def make_options():
    """Build BootstrapOptions that never sleep between attempts."""

    def factory(**overrides):
        values = {
            "on_cancel": ON_CANCEL_LEAVE,
            "retry": FAST_RETRY,
            "command_retry": RetryConfig(
                max_attempts=2,
                delay=0,
                backoff=1,
                max_delay=0,
                exceptions=(DriverError,),
                should_retry=lambda e: e.transient,
            ),
        }
        values.update(overrides)
        return BootstrapOptions(**values)

    return factory
