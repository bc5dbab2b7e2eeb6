"""
Connection string rendering for a bootstrapped deployment.
"""

from typing import Optional
from urllib.parse import quote, urlencode

from phil.commands.security import Credential, TlsOptions
from phil.commands.topology import ReplicaSet, Topology, entry_points


def connection_string(
    topology: Topology,
    tls: Optional[TlsOptions] = None,
    credential: Optional[Credential] = None,
) -> str:
    """Build the mongodb:// URI a client should use for ``topology``.

    Replica sets list every member and name the set; sharded clusters list
    their routers.
    """
    userinfo = ""
    if credential is not None:
        userinfo = f"{quote(credential.username, safe='')}:{quote(credential.password, safe='')}@"

    hosts = ",".join(node.address for node in entry_points(topology))

    options = {}
    if credential is not None:
        options["authSource"] = "admin"
    if isinstance(topology, ReplicaSet):
        options["replicaSet"] = topology.name
    if tls is not None:
        options["tls"] = "true"
        options["tlsAllowInvalidCertificates"] = str(tls.allow_invalid_certificates).lower()
        options["tlsCAFile"] = tls.ca_file
        options["tlsCertificateKeyFile"] = tls.client_cert_file

    uri = f"mongodb://{userinfo}{hosts}/"
    if options:
        uri += "?" + urlencode(options, quote_via=quote, safe="")
    return uri
