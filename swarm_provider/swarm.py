"""Pulumi resources to initialize and join Docker Swarm clusters
"""

import pulumi
from pulumi.dynamic import CreateResult, DiffResult, ReadResult, Resource, ResourceProvider

from .client import build_client
from .connection import NodeConnection
from .lifecycle import ClientFactory, ClusterMember, ClusterOwner, MemberIdentity
from .roles import Role, classify_token

SWARM_PORT = 2377


def _node_props(node: NodeConnection) -> dict:
    props = node.to_dict()
    if node.key_material is not None:
        props["key_material"] = pulumi.Output.secret(node.key_material)
    return props


def _changed_inputs(keys: tuple[str, ...], olds: dict, news: dict) -> list[str]:
    return [key for key in keys if (olds.get(key) or None) != (news.get(key) or None)]


class SwarmInitArgs:
    """
    Class to represent configuration arguments for SwarmInit

    Attributes:
        node (NodeConnection): Daemon that initializes the swarm and becomes its first manager
        advertise_addr (str): Externally reachable address advertised to other nodes
        listen_addr (str): Listen address for the raft consensus protocol
    """
    def __init__(self, node: NodeConnection, advertise_addr: str = None, listen_addr: str = None):
        self.node = node
        self.advertise_addr = advertise_addr
        self.listen_addr = listen_addr


class SwarmJoinArgs:
    """
    Class to represent configuration arguments for SwarmJoin

    Attributes:
        node (NodeConnection): Daemon that joins the swarm
        join_token (str): Manager or worker join token of the swarm
        remote_addrs (list[str]): Addresses of existing swarm managers
        advertise_addr (str): Externally reachable address advertised to other nodes
        listen_addr (str): Listen address for the raft consensus protocol (managers only)
    """
    def __init__(self, node: NodeConnection, join_token: pulumi.Input[str], remote_addrs: list[str],
                 advertise_addr: str = None, listen_addr: str = None):
        self.node = node
        self.join_token = join_token
        self.remote_addrs = remote_addrs
        self.advertise_addr = advertise_addr
        self.listen_addr = listen_addr


class SwarmInitProvider(ResourceProvider):
    """Dynamic provider driving ClusterOwner. The resource ID is the swarm cluster ID."""
    INPUTS = ("node", "advertise_addr", "listen_addr")

    def __init__(self, client_factory: ClientFactory = build_client, timeout: float = None):
        self.client_factory = client_factory
        self.timeout = timeout

    def _controller(self) -> ClusterOwner:
        return ClusterOwner(self.client_factory, self.timeout)

    def create(self, props):
        identity = self._controller().create(NodeConnection.from_dict(props.get("node")),
                                             advertise_addr=props.get("advertise_addr"),
                                             listen_addr=props.get("listen_addr"))
        return CreateResult(id_=identity.cluster_id, outs={
            **props,
            "manager_token": identity.manager_token,
            "worker_token": identity.worker_token,
        })

    def read(self, id_, props):
        identity = self._controller().read(NodeConnection.from_dict(props.get("node")), cluster_id=id_)
        if identity is None:
            return ReadResult(id_=None, outs={})
        return ReadResult(id_=identity.cluster_id, outs={
            **props,
            "manager_token": identity.manager_token,
            "worker_token": identity.worker_token,
        })

    def diff(self, _id, _olds, _news):
        changed = _changed_inputs(self.INPUTS, _olds, _news)
        return DiffResult(changes=bool(changed))

    def update(self, _id, _olds, _news):
        self._controller().update()

    def delete(self, _id, _props):
        self._controller().delete(NodeConnection.from_dict(_props.get("node")), cluster_id=_id)


class SwarmJoinProvider(ResourceProvider):
    """Dynamic provider driving ClusterMember. The resource ID is ``<node id>-<cluster id>``."""
    INPUTS = ("node", "join_token", "remote_addrs", "advertise_addr", "listen_addr")

    def __init__(self, client_factory: ClientFactory = build_client, timeout: float = None):
        self.client_factory = client_factory
        self.timeout = timeout

    def _controller(self) -> ClusterMember:
        return ClusterMember(self.client_factory, self.timeout)

    @staticmethod
    def _identity(id_: str, props: dict) -> MemberIdentity:
        node_id = props.get("node_id") or id_.split("-", 1)[0]
        cluster_id = props.get("cluster_id")
        if cluster_id is None:
            cluster_id = id_.split("-", 1)[1] if "-" in id_ else ""
        role = props.get("node_role")
        return MemberIdentity(node_id=node_id, cluster_id=cluster_id,
                              role=Role(role) if role else classify_token(props.get("join_token")).role)

    @staticmethod
    def _outs(props: dict, identity: MemberIdentity) -> dict:
        return {
            **props,
            "node_id": identity.node_id,
            "node_role": identity.role.value,
            "cluster_id": identity.cluster_id,
        }

    def create(self, props):
        identity = self._controller().create(NodeConnection.from_dict(props.get("node")),
                                             join_token=props.get("join_token"),
                                             remote_addrs=props.get("remote_addrs"),
                                             advertise_addr=props.get("advertise_addr"),
                                             listen_addr=props.get("listen_addr"))
        return CreateResult(id_=identity.composite_id, outs=self._outs(props, identity))

    def read(self, id_, props):
        identity = self._controller().read(NodeConnection.from_dict(props.get("node")), self._identity(id_, props))
        if identity is None:
            return ReadResult(id_=None, outs={})
        return ReadResult(id_=id_, outs=self._outs(props, identity))

    def diff(self, _id, _olds, _news):
        olds = {**_olds, "remote_addrs": sorted(_olds.get("remote_addrs") or [])}
        news = {**_news, "remote_addrs": sorted(_news.get("remote_addrs") or [])}
        return DiffResult(changes=bool(_changed_inputs(self.INPUTS, olds, news)))

    def update(self, _id, _olds, _news):
        self._controller().update()

    def delete(self, _id, _props):
        self._controller().delete(NodeConnection.from_dict(_props.get("node")), self._identity(_id, _props))


class SwarmInit(Resource):
    """
    Docker Swarm initialized on one daemon

    Attributes:
        id (pulumi.Output[str]): Swarm cluster ID
        manager_token (pulumi.Output[str]): Token for joining as a manager (secret)
        worker_token (pulumi.Output[str]): Token for joining as a worker (secret)
    """
    manager_token: pulumi.Output[str]
    worker_token: pulumi.Output[str]

    def __init__(self, name: str, args: SwarmInitArgs, opts: pulumi.ResourceOptions = None):
        props = {
            "node": _node_props(args.node),
            "advertise_addr": args.advertise_addr,
            "listen_addr": args.listen_addr,
            "manager_token": None,
            "worker_token": None,
        }
        opts = pulumi.ResourceOptions.merge(
            opts, pulumi.ResourceOptions(additional_secret_outputs=["manager_token", "worker_token"]))
        super().__init__(SwarmInitProvider(), name, props, opts)


class SwarmJoin(Resource):
    """
    Membership of one daemon in an existing Docker Swarm

    Attributes:
        id (pulumi.Output[str]): Node ID joined with the cluster ID
        node_id (pulumi.Output[str]): ID of the node after joining
        node_role (pulumi.Output[str]): Role of the node, ``manager`` or ``worker``
        cluster_id (pulumi.Output[str]): ID of the swarm the node joined, empty when a worker daemon
            does not report it
    """
    node_id: pulumi.Output[str]
    node_role: pulumi.Output[str]
    cluster_id: pulumi.Output[str]

    def __init__(self, name: str, args: SwarmJoinArgs, opts: pulumi.ResourceOptions = None):
        props = {
            "node": _node_props(args.node),
            "join_token": pulumi.Output.secret(args.join_token),
            "remote_addrs": args.remote_addrs,
            "advertise_addr": args.advertise_addr,
            "listen_addr": args.listen_addr,
            "node_id": None,
            "node_role": None,
            "cluster_id": None,
        }
        super().__init__(SwarmJoinProvider(), name, props, opts)


def manager_address(advertise_addr: str) -> str:
    """
    Address other nodes use to reach a manager.

    :param advertise_addr: ``host`` or ``host:port`` advertised by the manager
    :return: ``host:port``, with the default swarm port when none is given
    """
    if advertise_addr.startswith("["):
        return advertise_addr if "]:" in advertise_addr else f"{advertise_addr}:{SWARM_PORT}"
    if advertise_addr.count(":") == 1:
        return advertise_addr
    if ":" in advertise_addr:
        # bare IPv6
        return f"[{advertise_addr}]:{SWARM_PORT}"
    return f"{advertise_addr}:{SWARM_PORT}"


class SwarmNodeArgs:
    """
    Class to represent a node joining a SwarmDeployment

    Attributes:
        node (NodeConnection): Daemon of the node
        advertise_addr (str): Externally reachable address advertised to other nodes
        listen_addr (str): Listen address for the raft consensus protocol
    """
    def __init__(self, node: NodeConnection, advertise_addr: str = None, listen_addr: str = None):
        self.node = node
        self.advertise_addr = advertise_addr
        self.listen_addr = listen_addr


class SwarmDeploymentArgs:
    """
    Class to represent configuration arguments for SwarmDeployment

    Attributes:
        name (str): Prefix for the deployed resources
        manager (SwarmNodeArgs): Node the swarm is initialized on. Its advertise address is required
        managers (list[SwarmNodeArgs]): Additional nodes joining as managers
        workers (list[SwarmNodeArgs]): Nodes joining as workers
    """
    def __init__(self,
                 name: str,
                 manager: SwarmNodeArgs,
                 managers: list[SwarmNodeArgs] = None,
                 workers: list[SwarmNodeArgs] = None):
        """

        :param name: Prefix for deployed resources
        :param manager: Node the swarm is initialized on
        :param managers: Additional nodes joining as managers
        :param workers: Nodes joining as workers
        """
        if not manager.advertise_addr:
            raise ValueError("the initial manager needs an advertise_addr for the other nodes to join")
        self.name = name
        self.manager = manager
        self.managers = managers or []
        self.workers = workers or []


class SwarmDeployment(pulumi.ComponentResource):
    """
    Initializes a Docker Swarm on one node and joins the remaining nodes to it.

    - The swarm is initialized on the initial manager.
    - Additional managers join with the manager token, workers with the worker token.
    - Every node joins through the advertised address of the initial manager.

    Attributes:
        swarm_init (SwarmInit): Swarm on the initial manager
        members (list[SwarmJoin]): Managers followed by workers that joined the swarm
    """
    def __init__(self, args: SwarmDeploymentArgs, opts: pulumi.ResourceOptions = None):
        super().__init__('pkg:swarm:SwarmDeployment', args.name, None, opts=opts)
        component_opts = pulumi.ResourceOptions(parent=self)
        self.swarm_init = SwarmInit(f"{args.name}-swarm-init",
                                    SwarmInitArgs(node=args.manager.node,
                                                  advertise_addr=args.manager.advertise_addr,
                                                  listen_addr=args.manager.listen_addr),
                                    opts=component_opts)
        remote_addrs = [manager_address(args.manager.advertise_addr)]
        pulumi.log.info(f"{args.name}: {len(args.managers)} managers and {len(args.workers)} workers join "
                        f"via {remote_addrs[0]}")

        self.members = []
        member_ids = {}
        for role, nodes, token in [("manager", args.managers, self.swarm_init.manager_token),
                                   ("worker", args.workers, self.swarm_init.worker_token)]:
            for i, member in enumerate(nodes):
                member_name = f"{args.name}-swarm-{role}-{i}"
                swarm_join = SwarmJoin(member_name,
                                       SwarmJoinArgs(node=member.node,
                                                     join_token=token,
                                                     remote_addrs=remote_addrs,
                                                     advertise_addr=member.advertise_addr,
                                                     listen_addr=member.listen_addr),
                                       opts=pulumi.ResourceOptions(parent=self, depends_on=[self.swarm_init]))
                self.members.append(swarm_join)
                member_ids[member_name] = swarm_join.node_id

        self.register_outputs({
            "swarm_id": self.swarm_init.id,
            "members": member_ids
        })
