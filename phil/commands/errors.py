"""
Typed error classes for phil.

This module provides the error hierarchy used by the bootstrapper and the CLI:
- PhilError: Base exception for all phil errors
- TopologyInvalid: Topology rejected before any node is touched
- BootstrapError: Runtime bootstrap failures, carrying the partial cluster state
- DriverError: Failures reported by the database driver
- ConfigurationError: Topology files and local setup errors
"""

from typing import Any, Optional


class PhilError(Exception):
    """Base exception class for all phil errors.

    Attributes:
        message: Human-readable error message
        code: Optional error code for programmatic handling
        details: Optional dictionary with additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to a dictionary for serialization."""
        result: dict[str, Any] = {
            "type": self.__class__.__name__,
            "message": self.message,
        }
        if self.code:
            result["code"] = self.code
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message


class TopologyInvalid(PhilError):
    """Raised when a topology fails validation.

    Raised before any process is started, so no cleanup is ever needed.
    """

    def __init__(
        self,
        message: str,
        errors: Optional[list[str]] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.errors = list(errors or [message])
        details = details or {}
        details["errors"] = self.errors
        super().__init__(message, code="TOPOLOGY_INVALID", details=details)


class BootstrapError(PhilError):
    """Errors raised while bringing a cluster up.

    Attributes:
        state: The ClusterState accumulated up to the failure, so callers can
            report which nodes and steps succeeded
    """

    def __init__(
        self,
        message: str,
        state: Optional[Any] = None,
        node: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.state = state
        self.node = node
        details = details or {}
        if node:
            details["node"] = node
        super().__init__(message, code=code, details=details)


class ProcessStartFailure(BootstrapError):
    """Raised when the process manager cannot start a node."""

    def __init__(
        self,
        message: str,
        node: Optional[str] = None,
        state: Optional[Any] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            message,
            state=state,
            node=node,
            code="PROCESS_START_FAILED",
            details=details,
        )


class NodeUnreachable(BootstrapError):
    """Raised when a node never answers within the retry budget."""

    def __init__(
        self,
        message: str,
        node: Optional[str] = None,
        attempts: Optional[int] = None,
        state: Optional[Any] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.attempts = attempts
        details = details or {}
        if attempts is not None:
            details["attempts"] = attempts
        super().__init__(
            message,
            state=state,
            node=node,
            code="NODE_UNREACHABLE",
            details=details,
        )


class ConfigCommandFailure(BootstrapError):
    """Raised when an administrative command fails for a reason other than
    the requested state already being in place."""

    def __init__(
        self,
        message: str,
        command: Optional[str] = None,
        node: Optional[str] = None,
        response: Optional[dict[str, Any]] = None,
        state: Optional[Any] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.command = command
        self.response = response
        details = details or {}
        if command:
            details["command"] = command
        if response is not None:
            details["response"] = response
        super().__init__(
            message,
            state=state,
            node=node,
            code="CONFIG_COMMAND_FAILED",
            details=details,
        )


class BootstrapCancelled(BootstrapError):
    """Raised when a bootstrap is interrupted before convergence."""

    def __init__(
        self,
        message: str = "Bootstrap cancelled",
        state: Optional[Any] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            message, state=state, code="BOOTSTRAP_CANCELLED", details=details
        )


class DriverError(PhilError):
    """Errors reported by the database driver.

    Attributes:
        server_code: Numeric server error code, if the server answered
        code_name: Symbolic server error name (e.g. "AlreadyInitialized")
        transient: True for connectivity failures that are worth retrying
        response: Raw server response document, if any
    """

    def __init__(
        self,
        message: str,
        server_code: Optional[int] = None,
        code_name: Optional[str] = None,
        transient: bool = False,
        response: Optional[dict[str, Any]] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.server_code = server_code
        self.code_name = code_name
        self.transient = transient
        self.response = response
        details = details or {}
        if server_code is not None:
            details["server_code"] = server_code
        if code_name:
            details["code_name"] = code_name
        super().__init__(
            message,
            code="DRIVER_TRANSIENT" if transient else "DRIVER_ERROR",
            details=details,
        )


class ConfigurationError(PhilError):
    """Configuration-related errors.

    Raised when:
    - A topology file is missing or malformed
    - A required binary cannot be found
    - Option values conflict with each other
    """

    def __init__(
        self,
        message: str,
        config_file: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.config_file = config_file
        details = details or {}
        if config_file:
            details["config_file"] = config_file
        super().__init__(
            message, code=code or "CONFIGURATION_ERROR", details=details
        )


__all__ = [
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
