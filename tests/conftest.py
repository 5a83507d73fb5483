from __future__ import annotations

import datetime

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import serialization as crypto_serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from swarm_provider.errors import DaemonOperationFailed
from swarm_provider.roles import NodeListing

MANAGER_TOKEN = "SWMTKN-1-" + "m" * 31 + "-secret"
WORKER_TOKEN = "SWMTKN-1-short-secret"


def generate_tls_material(common_name: str = "swarm-test") -> tuple[str, str]:
    """Self-signed certificate and its unencrypted private key, both PEM encoded."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(days=1))
            .not_valid_after(now + datetime.timedelta(days=1))
            .sign(key, hashes.SHA256()))
    cert_pem = cert.public_bytes(crypto_serialization.Encoding.PEM).decode("utf-8")
    key_pem = key.private_bytes(
        crypto_serialization.Encoding.PEM,
        crypto_serialization.PrivateFormat.PKCS8,
        crypto_serialization.NoEncryption()).decode("utf-8")
    return cert_pem, key_pem


@pytest.fixture(scope="session")
def tls_material():
    return generate_tls_material()


@pytest.fixture(scope="session")
def ca_material():
    return generate_tls_material("swarm-test-ca")[0]


class FakeDaemon:
    """In-memory stand-in for DaemonClient.

    ``failures`` maps an operation name to a list of outcomes consumed one per call,
    where an exception is raised and None lets the call succeed.
    """

    def __init__(self, host: str = "unix:///var/run/docker.sock"):
        self.host = host
        self.calls: list[tuple[str, dict]] = []
        self.failures: dict[str, list] = {}
        self.swarm: dict = {}
        self.node_id = ""
        self.cluster_id = ""
        self.join_node_id = "w0rk3rn0d3"
        self.nodes: list[NodeListing] = []
        self.closed = 0

    def _call(self, operation: str, **kwargs):
        self.calls.append((operation, kwargs))
        outcomes = self.failures.get(operation)
        if outcomes:
            outcome = outcomes.pop(0)
            if outcome is not None:
                raise outcome

    def fail(self, operation: str, *outcomes):
        self.failures[operation] = [
            DaemonOperationFailed(operation, self.host, "daemon said no") if outcome is True else outcome
            for outcome in outcomes
        ]

    def operations(self) -> list[str]:
        return [operation for operation, _ in self.calls]

    def init_cluster(self, advertise_addr=None, listen_addr=None):
        self._call("cluster-init", advertise_addr=advertise_addr, listen_addr=listen_addr)
        self.node_id = "m4nag3rn0d3"
        self.cluster_id = "clust3r1d"
        self.swarm = {"ID": self.cluster_id, "JoinTokens": {"Manager": MANAGER_TOKEN, "Worker": WORKER_TOKEN}}
        return self.node_id

    def inspect_cluster(self):
        self._call("cluster-inspect")
        return dict(self.swarm)

    def join_cluster(self, remote_addrs, join_token, advertise_addr=None, listen_addr=None):
        self._call("cluster-join", remote_addrs=remote_addrs, join_token=join_token,
                   advertise_addr=advertise_addr, listen_addr=listen_addr)
        self.node_id = self.join_node_id
        self.cluster_id = "clust3r1d"

    def leave_cluster(self, force=False):
        self._call("cluster-leave", force=force)
        self.swarm = {}
        self.node_id = ""
        self.cluster_id = ""

    def list_nodes(self):
        self._call("node-list")
        return list(self.nodes)

    def info(self):
        self._call("daemon-info")
        cluster = {"ID": self.cluster_id} if self.cluster_id else None
        return {"Swarm": {"NodeID": self.node_id, "Cluster": cluster}}

    def close(self):
        self.closed += 1

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


@pytest.fixture
def daemon():
    return FakeDaemon()


@pytest.fixture
def specs():
    return []


@pytest.fixture
def factory(daemon, specs):
    def build(spec, timeout=None):
        specs.append(spec)
        return daemon
    return build
