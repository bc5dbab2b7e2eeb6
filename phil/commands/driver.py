"""
Driver adapter - issues administrative commands through pymongo.

All connections are direct connections to a single node; the bootstrapper
decides which node each command goes to.
"""

import logging
from typing import Any, Optional, Protocol

from pymongo import MongoClient
from pymongo.errors import ConnectionFailure, OperationFailure, PyMongoError

from phil.commands.constants import SERVER_SELECTION_TIMEOUT_MS
from phil.commands.errors import DriverError
from phil.commands.security import Credential, TlsOptions

logger = logging.getLogger(__name__)


class Driver(Protocol):
    def connect(self, host: str, port: int, authenticated: bool = False) -> Any: ...

    def run_admin_command(self, connection: Any, command: dict[str, Any]) -> dict[str, Any]: ...

    def close(self, connection: Any) -> None: ...


class PyMongoDriver:
    """Driver collaborator backed by pymongo.MongoClient."""

    def __init__(
        self,
        tls: Optional[TlsOptions] = None,
        credential: Optional[Credential] = None,
        server_selection_timeout_ms: int = SERVER_SELECTION_TIMEOUT_MS,
    ):
        self.tls = tls
        self.credential = credential
        self.server_selection_timeout_ms = server_selection_timeout_ms

    def client_options(self, authenticated: bool = False) -> dict[str, Any]:
        options: dict[str, Any] = {
            "directConnection": True,
            "serverSelectionTimeoutMS": self.server_selection_timeout_ms,
            "connectTimeoutMS": self.server_selection_timeout_ms,
        }
        if self.tls is not None:
            options.update(
                {
                    "tls": True,
                    "tlsCAFile": self.tls.ca_file,
                    "tlsCertificateKeyFile": self.tls.client_cert_file,
                    "tlsAllowInvalidCertificates": self.tls.allow_invalid_certificates,
                }
            )
        if authenticated and self.credential is not None:
            options.update(
                {
                    "username": self.credential.username,
                    "password": self.credential.password,
                    "authSource": "admin",
                }
            )
        return options

    def connect(self, host: str, port: int, authenticated: bool = False) -> MongoClient:
        # MongoClient connects lazily, so this never blocks on an unreachable node
        return MongoClient(host, port, **self.client_options(authenticated))

    def run_admin_command(
        self, connection: MongoClient, command: dict[str, Any]
    ) -> dict[str, Any]:
        """Run ``command`` against the admin database.

        Raises:
            DriverError: transient for connectivity failures, otherwise
                carrying the server's error code and name.
        """
        command_name = next(iter(command))
        logger.debug("Running admin command %s", command_name)
        try:
            return connection.admin.command(command)
        except OperationFailure as e:
            details = e.details or {}
            raise DriverError(
                f"{command_name} failed: {details.get('errmsg', str(e))}",
                server_code=e.code,
                code_name=details.get("codeName"),
                response=dict(details),
            ) from e
        except ConnectionFailure as e:
            raise DriverError(
                f"{command_name} could not reach the server: {e}", transient=True
            ) from e
        except PyMongoError as e:
            raise DriverError(f"{command_name} failed: {e}") from e

    def close(self, connection: MongoClient) -> None:
        connection.close()
