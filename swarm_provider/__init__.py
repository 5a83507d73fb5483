"""
This module provides Pulumi resources to manage Docker Swarm membership on local or remote Docker daemons.

Classes:
    - `SwarmInit`: Resource initializing a swarm on a daemon and exposing its join tokens.
    - `SwarmJoin`: Resource joining a daemon to an existing swarm as a manager or worker.
    - `SwarmDeployment`: Class to initialize a swarm on one node and join the remaining nodes to it.
    - `NodeConnection`: Class to represent the Docker connection configuration of a node.
    - `ClusterOwner`, `ClusterMember`: Lifecycle controllers behind the resources.
"""

from .connection import NodeConnection, ConnectionSpec, resolve
from .client import DaemonClient, build_client
from .lifecycle import ClusterOwner, ClusterMember, ClusterIdentity, MemberIdentity, check_daemon
from .roles import Role, Confidence, RoleClassification, infer_role
from .swarm import SwarmInit, SwarmInitArgs, SwarmJoin, SwarmJoinArgs, SwarmDeployment, SwarmDeploymentArgs, \
    SwarmNodeArgs
