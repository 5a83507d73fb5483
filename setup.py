from setuptools import find_packages, setup

setup(
    name='swarm-provider',
    version='0.1',
    description='Manage docker swarm membership of local and remote docker daemons with pulumi',
    author='Alex Bailey',
    author_email='alex.bailey@mesoform.com',
    packages=find_packages(include=['swarm_provider', 'swarm_provider.*']),
    install_requires=[
        'pulumi',
        'docker',
        'requests',
        'cryptography'
    ],
    extras_require={
        'test': ['pytest']
    },
    python_requires=">=3.10"
)
