"""Resolve node connection records into validated connection specs

Resolution is pure: nothing here opens a socket or touches the filesystem. TLS
material given inline is checked immediately, while a certificate directory is
only checked when the client is built.
"""

from dataclasses import dataclass, field
from urllib.parse import urlparse

import pulumi
from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization as crypto_serialization

from .errors import InvalidConnectionConfig, InvalidCredentialFormat, MissingCredentialMaterial

DEFAULT_HOST = "unix:///var/run/docker.sock"
SUPPORTED_SCHEMES = ("unix", "tcp", "http", "https", "ssh", "npipe")


class NodeConnection:
    """
    Docker connection configuration for a single node

    Attributes:
        host (str): Docker daemon host, e.g. ``unix:///var/run/docker.sock``, ``tcp://10.0.0.2:2376``
            or ``ssh://deployer@10.0.0.2``. Empty means the local socket
        context (str): Docker context to read the endpoint from when no host is given
        ssh_opts (list[str]): Extra arguments for the ssh command, used with ``ssh://`` hosts only
        cert_material (str): PEM-encoded client certificate
        key_material (str): PEM-encoded client private key
        ca_material (str): PEM-encoded CA certificate of the daemon
        cert_path (str): Directory holding ``cert.pem``, ``key.pem`` and optionally ``ca.pem``
        api_version (str): Docker API version to pin. Negotiated when empty
    """
    FIELDS = ("host", "context", "ssh_opts", "cert_material", "key_material", "ca_material", "cert_path",
              "api_version")

    def __init__(self,
                 host: str = None,
                 context: str = None,
                 ssh_opts: list[str] = None,
                 cert_material: str = None,
                 key_material: str = None,
                 ca_material: str = None,
                 cert_path: str = None,
                 api_version: str = None):
        self.host = host
        self.context = context
        self.ssh_opts = ssh_opts
        self.cert_material = cert_material
        self.key_material = key_material
        self.ca_material = ca_material
        self.cert_path = cert_path
        self.api_version = api_version

    @classmethod
    def from_dict(cls, props: dict | None) -> "NodeConnection":
        """
        Build a connection from a resource property dict, ignoring unknown keys.

        :param props: Property dict as stored in resource state, may be None
        """
        props = props or {}
        return cls(**{key: props.get(key) for key in cls.FIELDS})

    def to_dict(self) -> dict:
        return {key: getattr(self, key) for key in self.FIELDS}

    def __repr__(self):
        # PEM material is left out on purpose, the private key must not reach logs
        return f"NodeConnection(host={self.host!r}, context={self.context!r})"


@dataclass(frozen=True)
class ConnectionSpec:
    """
    Validated transport configuration for one daemon

    At most one TLS source is active: the inline ``cert_pem``/``key_pem`` pair or ``cert_dir``.
    ``host`` is None only when ``context`` names a Docker context to take the endpoint from.
    """
    host: str | None
    ssh_opts: tuple[str, ...] = ()
    cert_pem: bytes | None = field(default=None, repr=False)
    key_pem: bytes | None = field(default=None, repr=False)
    ca_pem: bytes | None = field(default=None, repr=False)
    cert_dir: str | None = None
    api_version: str | None = None
    context: str | None = None

    @property
    def scheme(self) -> str | None:
        return urlparse(self.host).scheme if self.host else None

    @property
    def uses_ssh(self) -> bool:
        return self.scheme == "ssh"

    @property
    def has_inline_tls(self) -> bool:
        return self.cert_pem is not None

    @property
    def has_tls(self) -> bool:
        return self.has_inline_tls or bool(self.cert_dir) or self.ca_pem is not None

    @property
    def display_host(self) -> str:
        """Endpoint description for messages."""
        if self.host:
            return self.host
        return f"context:{self.context}"


def _encode(material: str | None) -> bytes | None:
    if not material:
        return None
    return material.encode("utf-8")


def _check_certificate(data: bytes, label: str):
    try:
        x509.load_pem_x509_certificate(data)
    except ValueError as e:
        raise InvalidCredentialFormat(f"{label} is not a valid PEM certificate: {e}") from e


def _check_private_key(data: bytes):
    try:
        crypto_serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise InvalidCredentialFormat(f"key_material is not a valid unencrypted PEM private key: {e}") from e


def resolve(node: NodeConnection) -> ConnectionSpec:
    """
    Normalize a node connection into a ConnectionSpec.

    :param node: Connection record declared on a resource
    :return: Validated connection spec
    :raises MissingCredentialMaterial: certificate given without key, or key without certificate
    :raises InvalidCredentialFormat: inline certificate, key or CA is not valid PEM
    :raises InvalidConnectionConfig: inline material combined with ``cert_path``, or unsupported host scheme
    """
    host = node.host or None
    context = node.context or None
    if host is None and context is None:
        host = DEFAULT_HOST

    if host is not None:
        scheme = urlparse(host).scheme
        if scheme not in SUPPORTED_SCHEMES:
            raise InvalidConnectionConfig(
                f"host {host!r} has unsupported scheme {scheme!r}, expected one of {', '.join(SUPPORTED_SCHEMES)}")

    ssh_opts = tuple(opt for opt in (node.ssh_opts or []) if opt is not None)
    if ssh_opts and not (host or "").startswith("ssh://"):
        pulumi.log.debug(f"ignoring ssh_opts for non-ssh host {host or context}")

    cert_pem = _encode(node.cert_material)
    key_pem = _encode(node.key_material)
    ca_pem = _encode(node.ca_material)
    cert_dir = node.cert_path or None

    if cert_pem is not None and key_pem is None:
        raise MissingCredentialMaterial(f"cert_material is set for {host or context} but key_material is missing")
    if key_pem is not None and cert_pem is None:
        raise MissingCredentialMaterial(f"key_material is set for {host or context} but cert_material is missing")
    if cert_pem is not None and cert_dir is not None:
        raise InvalidConnectionConfig(
            f"cert_material/key_material and cert_path are mutually exclusive (host {host or context})")

    if cert_pem is not None:
        _check_certificate(cert_pem, "cert_material")
        _check_private_key(key_pem)
    if ca_pem is not None:
        _check_certificate(ca_pem, "ca_material")

    return ConnectionSpec(
        host=host,
        ssh_opts=ssh_opts,
        cert_pem=cert_pem,
        key_pem=key_pem,
        ca_pem=ca_pem,
        cert_dir=cert_dir,
        api_version=node.api_version or None,
        context=context,
    )
