"""
The connection parameters of one cluster.

Only what a generic HTTP client needs to reach and authenticate to the API:
the server's URL, how to verify its TLS certificate, the client certificate,
and either a token or a username & password for the ``Authorization`` header.

Loading them from kubeconfigs or from the service accounts in the pods
is left to the callers, which know where they run.
"""
import dataclasses
from typing import Optional


class LoginError(Exception):
    """ The API cannot be accessed: no connection, or no usable credentials. """


@dataclasses.dataclass(frozen=True)
class ConnectionInfo:
    """
    How to connect to the cluster's API.

    Either the paths or the inline data can be given for the certificates
    and the keys, but not both of them for the same item.
    """
    server: str  # "https://host:port", without the trailing slash
    ca_path: Optional[str] = None
    ca_data: Optional[bytes] = None
    insecure: Optional[bool] = None
    username: Optional[str] = None
    password: Optional[str] = None
    scheme: Optional[str] = None  # for the token; "Bearer" if not set
    token: Optional[str] = None
    certificate_path: Optional[str] = None
    certificate_data: Optional[bytes] = None
    private_key_path: Optional[str] = None
    private_key_data: Optional[bytes] = None
    default_namespace: Optional[str] = None
