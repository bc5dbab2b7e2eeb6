"""
Commands module - All available CLI commands.
"""

from phil.commands.bootstrap import bootstrap
from phil.commands.errors import (
    BootstrapCancelled,
    BootstrapError,
    ConfigCommandFailure,
    ConfigurationError,
    DriverError,
    NodeUnreachable,
    PhilError,
    ProcessStartFailure,
    TopologyInvalid,
)
from phil.commands.launch import replset, sharded, single
from phil.commands.stop import stop

__all__ = [
    # Commands
    "bootstrap",
    "single",
    "replset",
    "sharded",
    "stop",
    # Error classes
    "PhilError",
    "TopologyInvalid",
    "BootstrapError",
    "ProcessStartFailure",
    "NodeUnreachable",
    "ConfigCommandFailure",
    "BootstrapCancelled",
    "DriverError",
    "ConfigurationError",
]
