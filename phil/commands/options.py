"""
Command line options shared by every command that bootstraps a deployment.
"""

from functools import wraps
from typing import Callable, Optional

import click

from phil.commands.constants import (
    DEFAULT_AUTH_PASSWORD,
    DEFAULT_AUTH_USERNAME,
    DEFAULT_DATA_ROOT,
    DEFAULT_PID_DIR,
    ON_CANCEL_LEAVE,
    VALID_ON_CANCEL,
)
from phil.commands.errors import ConfigurationError
from phil.commands.security import Credential, TlsOptions, create_credential, resolve_tls_options

_BOOTSTRAP_OPTIONS = [
    click.option(
        "--binary-path",
        help="Directory holding mongod and mongos (or the path of mongod). Defaults to searching PATH and common locations (/usr/local/bin, /usr/bin, ~/bin).",
    ),
    click.option(
        "--data-root",
        default=DEFAULT_DATA_ROOT,
        show_default=True,
        help="Directory under which each node gets its data directory",
    ),
    click.option(
        "--pid-dir",
        default=DEFAULT_PID_DIR,
        show_default=True,
        help="Directory for PID files of started processes",
    ),
    click.option("--dry-run", is_flag=True, help="Print the bootstrap plan without starting anything"),
    click.option("--verbose", "-v", is_flag=True, help="Enable verbose output"),
    click.option(
        "--on-cancel",
        type=click.Choice(VALID_ON_CANCEL),
        default=ON_CANCEL_LEAVE,
        show_default=True,
        help="What to do with started processes when the bootstrap is interrupted",
    ),
    click.option(
        "--rollback-on-failure",
        is_flag=True,
        help="Stop every started process if the bootstrap fails",
    ),
    click.option(
        "--max-attempts",
        type=click.IntRange(min=1),
        help="Reachability polling attempts per node before giving up",
    ),
    click.option("--tls", is_flag=True, help="Enable (and require) TLS for the cluster"),
    click.option(
        "--allow-clients-without-certs",
        is_flag=True,
        help="Allow clients to connect without TLS certificates (requires --tls)",
    ),
    click.option("--ca-file", help="Certificate authority file for TLS (defaults to ./ca.pem)"),
    click.option(
        "--server-cert-file",
        help="Server private key certificate file for TLS (defaults to ./server.pem)",
    ),
    click.option(
        "--client-cert-file",
        help="Client private key certificate file for TLS, needed to initialize the cluster when client certificates are required (defaults to ./client.pem)",
    ),
    click.option("--auth", is_flag=True, help="Require authentication to connect to the cluster"),
    click.option(
        "--auth-username",
        default=DEFAULT_AUTH_USERNAME,
        show_default=True,
        help="Administrative user created when --auth is given",
    ),
    click.option(
        "--auth-password",
        default=DEFAULT_AUTH_PASSWORD,
        show_default=True,
        help="Password of the administrative user",
    ),
    click.option(
        "--enable-sharding",
        multiple=True,
        metavar="DB",
        help="Enable sharding for a database (sharded clusters only). Can be specified multiple times.",
    ),
    click.option(
        "--balancer/--no-balancer",
        default=None,
        help="Start or stop the balancer once shards are added (sharded clusters only)",
    ),
]


def bootstrap_options(func: Callable) -> Callable:
    """Attach the shared bootstrap options to a click command."""
    for option in reversed(_BOOTSTRAP_OPTIONS):
        func = option(func)
    return func


def resolve_security(
    tls: bool = False,
    allow_clients_without_certs: bool = False,
    ca_file: Optional[str] = None,
    server_cert_file: Optional[str] = None,
    client_cert_file: Optional[str] = None,
    auth: bool = False,
    auth_username: str = DEFAULT_AUTH_USERNAME,
    auth_password: str = DEFAULT_AUTH_PASSWORD,
    key_file_dir: Optional[str] = None,
    create_key: bool = True,
) -> tuple[Optional[TlsOptions], Optional[Credential]]:
    """Turn the TLS and auth flags into the objects the collaborators take.

    With ``create_key`` False no key file is written, for plans that never
    start a server.
    """
    tls_only = {
        "--allow-clients-without-certs": allow_clients_without_certs,
        "--ca-file": ca_file,
        "--server-cert-file": server_cert_file,
        "--client-cert-file": client_cert_file,
    }
    if not tls:
        given = [flag for flag, value in tls_only.items() if value]
        if given:
            raise ConfigurationError(f"{', '.join(given)} requires --tls")

    tls_options = None
    if tls:
        tls_options = resolve_tls_options(
            ca_file=ca_file,
            server_cert_file=server_cert_file,
            client_cert_file=client_cert_file,
            weak_tls=allow_clients_without_certs,
        )

    credential = None
    if auth and create_key:
        credential = create_credential(auth_username, auth_password, key_file_dir)
    elif auth:
        credential = Credential(auth_username, auth_password, key_file="")

    return tls_options, credential


def with_security(func: Callable) -> Callable:
    """Resolve the TLS/auth flags of a command into ``tls_options`` and ``credential``."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        tls_options, credential = resolve_security(
            tls=kwargs.pop("tls"),
            allow_clients_without_certs=kwargs.pop("allow_clients_without_certs"),
            ca_file=kwargs.pop("ca_file"),
            server_cert_file=kwargs.pop("server_cert_file"),
            client_cert_file=kwargs.pop("client_cert_file"),
            auth=kwargs.pop("auth"),
            auth_username=kwargs.pop("auth_username"),
            auth_password=kwargs.pop("auth_password"),
            key_file_dir=kwargs.get("data_root"),
            create_key=not kwargs.get("dry_run"),
        )
        return func(*args, tls_options=tls_options, credential=credential, **kwargs)

    return wrapper
