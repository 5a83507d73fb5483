"""A Docker Swarm Pulumi program"""

import os

import pulumi
from swarm_provider import NodeConnection, SwarmDeployment, SwarmDeploymentArgs, SwarmNodeArgs, check_daemon


config = pulumi.Config()


def node_args(record: dict) -> SwarmNodeArgs:
    """
    Build node arguments from a config record

    :param record: Mapping with a ``node`` connection mapping and optional ``advertise_addr``/``listen_addr``
    """
    node = NodeConnection.from_dict(record.get("node"))
    node.host = node.host or os.environ.get("DOCKER_HOST")
    return SwarmNodeArgs(node=node,
                         advertise_addr=record.get("advertise_addr"),
                         listen_addr=record.get("listen_addr"))


def main():
    config_args = {
        "name": config.require("name"),
        "manager": node_args(config.require_object("manager")),
        "managers": [node_args(record) for record in config.get_object("managers") or []],
        "workers": [node_args(record) for record in config.get_object("workers") or []],
    }
    if config.get_bool("check_daemon") is not False:
        for member in [config_args["manager"], *config_args["managers"], *config_args["workers"]]:
            check_daemon(member.node)

    swarm_deployment = SwarmDeployment(SwarmDeploymentArgs(**config_args))
    pulumi.export("swarm_id", swarm_deployment.swarm_init.id)
    pulumi.export("manager_token", swarm_deployment.swarm_init.manager_token)
    pulumi.export("worker_token", swarm_deployment.swarm_init.worker_token)
    for i, member in enumerate(swarm_deployment.members):
        pulumi.export(f"member-{i}-node_id", member.node_id)
        pulumi.export(f"member-{i}-node_role", member.node_role)


if __name__ == '__main__':
    main()
