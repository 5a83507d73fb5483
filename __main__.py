"""A Docker Swarm Pulumi program"""

from swarm_provider.__main__ import main


main()
