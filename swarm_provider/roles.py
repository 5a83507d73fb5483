"""Manager/worker classification of swarm members

The join token heuristic is best-effort only: swarm tokens carry no documented role marker.
Any role reported by a node listing replaces it.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum

import pulumi

TOKEN_PREFIX = "SWMTKN-1-"
MANAGER_SEGMENT_THRESHOLD = 30


class Role(str, Enum):
    MANAGER = "manager"
    WORKER = "worker"


class Confidence(str, Enum):
    HEURISTIC = "heuristic"
    CONFIRMED = "confirmed"


@dataclass(frozen=True)
class RoleClassification:
    role: Role
    confidence: Confidence = Confidence.HEURISTIC

    @property
    def confirmed(self) -> bool:
        return self.confidence is Confidence.CONFIRMED


@dataclass(frozen=True)
class NodeListing:
    """A node as reported by the daemon node listing"""
    id: str
    role: str


def classify_token(join_token: str) -> RoleClassification:
    """
    Guess the role a join token grants from its shape.

    Tokens look like ``SWMTKN-1-<payload>-<secret>``. A third segment longer than
    MANAGER_SEGMENT_THRESHOLD characters is taken as a manager token.

    :param join_token: Token used to join
    :return: Heuristic classification
    """
    role = Role.WORKER
    if join_token and join_token.startswith(TOKEN_PREFIX):
        parts = join_token.split("-")
        if len(parts) >= 4 and len(parts[2]) > MANAGER_SEGMENT_THRESHOLD:
            role = Role.MANAGER
    return RoleClassification(role, Confidence.HEURISTIC)


def confirm_role(prior: RoleClassification, node_id: str, listing: Iterable[NodeListing]) -> RoleClassification:
    """
    Replace a classification with the role the daemon reports for ``node_id``.

    A node missing from the listing keeps its prior classification.
    """
    for node in listing:
        if node.id != node_id:
            continue
        try:
            role = Role(node.role)
        except ValueError:
            pulumi.log.warn(f"node {node_id} listed with unknown role {node.role!r}, keeping {prior.role.value}")
            return prior
        if role is not prior.role:
            pulumi.log.info(f"node {node_id} is listed as {role.value}, correcting {prior.role.value}")
        return RoleClassification(role, Confidence.CONFIRMED)
    pulumi.log.debug(f"node {node_id} not in node listing, keeping {prior.role.value}")
    return prior


def infer_role(join_token: str, node_id: str,
               list_nodes: Callable[[], Iterable[NodeListing]] = None) -> RoleClassification:
    classification = classify_token(join_token)
    if list_nodes is None:
        return classification
    return confirm_role(classification, node_id, list_nodes())
