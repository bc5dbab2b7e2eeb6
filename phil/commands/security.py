"""
TLS and authentication settings shared by the process manager and the driver.
"""

import os
import stat
import sys
import tempfile
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from phil.commands.constants import (
    DEFAULT_AUTH_PASSWORD,
    DEFAULT_AUTH_USERNAME,
    DEFAULT_CA_FILE,
    DEFAULT_CLIENT_CERT_FILE,
    DEFAULT_SERVER_CERT_FILE,
    ERROR_FILE_NOT_FOUND,
    KEY_FILE_CONTENTS,
)
from phil.commands.errors import ConfigurationError


@dataclass(frozen=True)
class TlsOptions:
    ca_file: str
    server_cert_file: str
    client_cert_file: str
    weak_tls: bool = False
    allow_invalid_certificates: bool = True

    def server_args(self) -> list[str]:
        """Command line flags that make a server require TLS."""
        args = [
            "--tlsMode",
            "requireTLS",
            "--tlsCAFile",
            self.ca_file,
            "--tlsCertificateKeyFile",
            self.server_cert_file,
        ]
        if self.weak_tls:
            args.append("--tlsAllowConnectionsWithoutCertificates")
        return args


@dataclass(frozen=True)
class Credential:
    username: str
    password: str
    key_file: str


def resolve_tls_options(
    ca_file: Optional[str] = None,
    server_cert_file: Optional[str] = None,
    client_cert_file: Optional[str] = None,
    weak_tls: bool = False,
) -> TlsOptions:
    """Resolve certificate paths, defaulting to ./ca.pem, ./server.pem and
    ./client.pem in the working directory."""

    def resolve(path: Optional[str], default: str) -> str:
        candidate = Path(path or default)
        if not candidate.exists():
            raise ConfigurationError(ERROR_FILE_NOT_FOUND.format(path=candidate))
        return str(candidate.resolve())

    return TlsOptions(
        ca_file=resolve(ca_file, DEFAULT_CA_FILE),
        server_cert_file=resolve(server_cert_file, DEFAULT_SERVER_CERT_FILE),
        client_cert_file=resolve(client_cert_file, DEFAULT_CLIENT_CERT_FILE),
        weak_tls=weak_tls,
    )


def create_key_file(directory: Optional[str] = None) -> str:
    """Write a replica set key file readable only by the current user."""
    directory = directory or tempfile.gettempdir()
    os.makedirs(directory, exist_ok=True)
    path = Path(directory) / f"phil-keyfile-{uuid.uuid4()}"
    path.write_text(KEY_FILE_CONTENTS)
    if sys.platform != "win32":
        path.chmod(stat.S_IRUSR | stat.S_IWUSR)
    return str(path)


def create_credential(
    username: str = DEFAULT_AUTH_USERNAME,
    password: str = DEFAULT_AUTH_PASSWORD,
    key_file_dir: Optional[str] = None,
) -> Credential:
    return Credential(
        username=username,
        password=password,
        key_file=create_key_file(key_file_dir),
    )
