"""Swarm membership state machines

ClusterOwner initializes a swarm on a daemon and ClusterMember joins a daemon to one. Both share the
same path for every call: resolve the node connection, open a client, issue the daemon calls in order,
close the client and project what the daemon reported. Nothing is kept between calls.
"""

import contextlib
import dataclasses
import warnings
from collections.abc import Callable
from dataclasses import dataclass, field

import pulumi

from .client import DaemonClient, build_client
from .connection import ConnectionSpec, NodeConnection, resolve
from .errors import DaemonOperationFailed, DriftDetected, InvalidConnectionConfig, SwarmProviderError, \
    UnsupportedOperation
from .roles import Confidence, Role, RoleClassification, classify_token, confirm_role

ClientFactory = Callable[[ConnectionSpec, float], DaemonClient]


@dataclass(frozen=True)
class ClusterIdentity:
    cluster_id: str
    manager_token: str = field(repr=False)
    worker_token: str = field(repr=False)

    @classmethod
    def from_inspect(cls, attrs: dict) -> "ClusterIdentity":
        tokens = attrs.get("JoinTokens") or {}
        return cls(cluster_id=attrs.get("ID") or "",
                   manager_token=tokens.get("Manager") or "",
                   worker_token=tokens.get("Worker") or "")


@dataclass(frozen=True)
class MemberIdentity:
    node_id: str
    cluster_id: str
    role: Role
    confidence: Confidence = Confidence.HEURISTIC

    @property
    def composite_id(self) -> str:
        if not self.cluster_id:
            return self.node_id
        return f"{self.node_id}-{self.cluster_id}"

    @property
    def classification(self) -> RoleClassification:
        return RoleClassification(self.role, self.confidence)


def _swarm_info(client: DaemonClient) -> tuple[str, str]:
    swarm = client.info().get("Swarm") or {}
    cluster = swarm.get("Cluster") or {}
    return swarm.get("NodeID") or "", cluster.get("ID") or ""


class LifecycleController:
    """
    Shared create/read/update/delete plumbing for the swarm resource kinds

    Attributes:
        kind (str): Resource kind used in messages
        client_factory (ClientFactory): Opens a DaemonClient for a ConnectionSpec
        timeout (float): Caller deadline for daemon calls in seconds, SDK default when None
    """
    kind = "swarm resource"

    def __init__(self, client_factory: ClientFactory = build_client, timeout: float = None):
        self.client_factory = client_factory
        self.timeout = timeout

    @contextlib.contextmanager
    def connect(self, node: NodeConnection, operation: str):
        spec = resolve(node)
        pulumi.log.debug(f"{self.kind} {operation}: connecting to {spec.display_host}")
        with self.client_factory(spec, self.timeout) as client:
            try:
                yield client
            except DaemonOperationFailed as e:
                if e.kind:
                    raise
                raise e.for_kind(self.kind) from e.__cause__

    def update(self, *args, **kwargs):
        raise UnsupportedOperation(
            f"{self.kind} settings cannot be updated after creation, recreate the resource to change them")


class ClusterOwner(LifecycleController):
    """Initializes a swarm and reports its ID and join tokens"""
    kind = "swarm init"

    def create(self, node: NodeConnection, advertise_addr: str = None, listen_addr: str = None) -> ClusterIdentity:
        with self.connect(node, "create") as client:
            node_id = client.init_cluster(advertise_addr=advertise_addr, listen_addr=listen_addr)
            pulumi.log.info(f"{self.kind}: initialized swarm on {client.host}, manager node {node_id}")
            identity = ClusterIdentity.from_inspect(client.inspect_cluster())
            if not identity.cluster_id:
                raise DaemonOperationFailed("cluster-inspect", client.host, "no swarm reported after init",
                                            kind=self.kind)
        return identity

    def read(self, node: NodeConnection, cluster_id: str = None) -> ClusterIdentity | None:
        """
        Refresh a swarm from the daemon.

        :return: Current identity with live join tokens, or None when the daemon no longer runs a swarm
        """
        with self.connect(node, "read") as client:
            identity = ClusterIdentity.from_inspect(client.inspect_cluster())
            if not identity.cluster_id:
                pulumi.log.info(f"{self.kind}: swarm {cluster_id} is no longer active on {client.host}")
                return None
        if cluster_id and identity.cluster_id != cluster_id:
            pulumi.log.warn(f"{self.kind}: swarm {cluster_id} replaced by {identity.cluster_id}")
        return identity

    def delete(self, node: NodeConnection, cluster_id: str = None):
        # a plain leave fails on the last manager
        with self.connect(node, "delete") as client:
            client.leave_cluster(force=True)
            pulumi.log.info(f"{self.kind}: {client.host} left swarm {cluster_id}")


class ClusterMember(LifecycleController):
    """Joins a node to an existing swarm and tracks its node ID and role"""
    kind = "swarm join"

    def create(self, node: NodeConnection, join_token: str, remote_addrs: list[str], advertise_addr: str = None,
               listen_addr: str = None) -> MemberIdentity:
        remote_addrs = sorted(set(remote_addrs or []))
        if not remote_addrs:
            raise InvalidConnectionConfig(f"{self.kind}: at least one remote manager address is required")
        if not join_token:
            raise InvalidConnectionConfig(f"{self.kind}: a join token is required")

        with self.connect(node, "create") as client:
            client.join_cluster(remote_addrs, join_token, advertise_addr=advertise_addr, listen_addr=listen_addr)
            node_id, cluster_id = _swarm_info(client)
            if not node_id:
                raise DaemonOperationFailed("daemon-info", client.host, "no swarm node ID reported after join",
                                            kind=self.kind)
            pulumi.log.info(f"{self.kind}: {client.host} joined via {', '.join(remote_addrs)} as node {node_id}")

        classification = classify_token(join_token)
        return MemberIdentity(node_id=node_id, cluster_id=cluster_id, role=classification.role,
                              confidence=classification.confidence)

    def read(self, node: NodeConnection, identity: MemberIdentity) -> MemberIdentity | None:
        """
        Refresh a membership from the daemon.

        A node listing, when the daemon can provide one, confirms or corrects the recorded role.

        :return: Refreshed identity, or None when the node left the swarm or its node ID changed
        """
        with self.connect(node, "read") as client:
            node_id, _ = _swarm_info(client)
            if not node_id:
                pulumi.log.info(f"{self.kind}: {client.host} is no longer part of a swarm")
                return None
            if node_id != identity.node_id:
                message = (f"{self.kind}: {client.host} reports node {node_id} instead of {identity.node_id}, "
                           f"the membership has to be recreated")
                pulumi.log.warn(message)
                warnings.warn(DriftDetected(message), stacklevel=2)
                return None
            try:
                classification = confirm_role(identity.classification, node_id, client.list_nodes())
            except DaemonOperationFailed as e:
                pulumi.log.debug(f"{self.kind}: role of {node_id} not confirmed this time: {e}")
                classification = identity.classification
        return dataclasses.replace(identity, role=classification.role, confidence=classification.confidence)

    def delete(self, node: NodeConnection, identity: MemberIdentity = None):
        with self.connect(node, "delete") as client:
            try:
                client.leave_cluster(force=False)
            except DaemonOperationFailed as e:
                pulumi.log.warn(f"{self.kind}: clean leave of {client.host} failed, forcing: {e}")
                client.leave_cluster(force=True)
            pulumi.log.info(f"{self.kind}: {client.host} left the swarm")


def check_daemon(node: NodeConnection, client_factory: ClientFactory = build_client, timeout: float = None) -> bool:
    """
    Check that a daemon answers before any resource uses it.

    A failure is only logged as a warning; the resources report their own errors later.

    :return: True when the daemon answered an info request
    """
    try:
        spec = resolve(node)
        with client_factory(spec, timeout) as client:
            client.info()
    except SwarmProviderError as e:
        pulumi.log.warn(f"unable to reach docker daemon, some resources may not work correctly: {e}")
        return False
    return True
