"""Build live Docker daemon clients from connection specs

A DaemonClient is opened at the start of a lifecycle call and closed at its end.
It exposes only the swarm membership calls the lifecycle needs.
"""

import contextlib
import os
import shutil
import ssl
import subprocess
import tempfile
import time
from dataclasses import dataclass
from urllib.parse import urlparse

import docker
import pulumi
import requests
from requests.adapters import HTTPAdapter
from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization as crypto_serialization
from docker.context import ContextAPI
from docker.errors import DockerException, TLSParameterError
from docker.tls import TLSConfig

from .connection import ConnectionSpec
from .errors import DaemonOperationFailed, TLSSetupFailed, TransportConstructionFailed, redact
from .roles import NodeListing

REMOTE_DOCKER_SOCKET = "/var/run/docker.sock"
TUNNEL_POLL_INTERVAL = 0.1


class MinimumTLSAdapter(HTTPAdapter):
    """HTTPS adapter refusing anything older than TLS 1.2"""
    def init_poolmanager(self, *args, **kwargs):
        kwargs["ssl_minimum_version"] = ssl.TLSVersion.TLSv1_2
        return super().init_poolmanager(*args, **kwargs)


class FloorTLSConfig(TLSConfig):
    """Docker TLS settings that also mount the TLS 1.2 floor adapter on the API session"""
    def configure_client(self, client):
        super().configure_client(client)
        client.mount("https://", MinimumTLSAdapter())


@dataclass(frozen=True)
class TLSFiles:
    cert: str | None
    key: str | None
    ca: str | None


def _load_tls_files(files: TLSFiles):
    """Parse every configured TLS file so that broken material fails before any connection attempt."""
    try:
        for path in (files.cert, files.ca):
            if path:
                with open(path, "rb") as f:
                    x509.load_pem_x509_certificate(f.read())
        if files.key:
            with open(files.key, "rb") as f:
                crypto_serialization.load_pem_private_key(f.read(), password=None)
    except (OSError, ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise TLSSetupFailed(f"could not load TLS material: {e}") from e


def _write_material(directory: str, name: str, data: bytes) -> str:
    path = os.path.join(directory, name)
    with open(path, "wb") as f:
        f.write(data)
    os.chmod(path, 0o600)
    return path


def tls_files(spec: ConnectionSpec, stack: contextlib.ExitStack) -> TLSFiles | None:
    """
    Lay out the TLS files for a spec on disk.

    Inline material goes to a private temporary directory that lives as long as ``stack``.
    A certificate directory is expected to follow the Docker layout (``cert.pem``, ``key.pem``, ``ca.pem``).

    :return: File locations, or None when the spec has no TLS material at all
    """
    if not spec.has_tls:
        return None

    cert = key = ca = None
    if spec.has_inline_tls or spec.ca_pem is not None:
        tls_dir = stack.enter_context(tempfile.TemporaryDirectory(prefix="swarm-tls-"))
        if spec.has_inline_tls:
            cert = _write_material(tls_dir, "cert.pem", spec.cert_pem)
            key = _write_material(tls_dir, "key.pem", spec.key_pem)
        if spec.ca_pem is not None:
            ca = _write_material(tls_dir, "ca.pem", spec.ca_pem)

    if spec.cert_dir:
        if not os.path.isdir(spec.cert_dir):
            raise TLSSetupFailed(f"cert_path {spec.cert_dir} is not a directory")
        cert = os.path.join(spec.cert_dir, "cert.pem")
        key = os.path.join(spec.cert_dir, "key.pem")
        dir_ca = os.path.join(spec.cert_dir, "ca.pem")
        if ca is None and os.path.exists(dir_ca):
            ca = dir_ca

    files = TLSFiles(cert=cert, key=key, ca=ca)
    _load_tls_files(files)
    return files


def tls_config(files: TLSFiles) -> FloorTLSConfig:
    client_cert = (files.cert, files.key) if files.cert else None
    try:
        return FloorTLSConfig(client_cert=client_cert, ca_cert=files.ca, verify=files.ca or True)
    except TLSParameterError as e:
        raise TLSSetupFailed(f"invalid TLS configuration: {e}") from e


def floor_tls(config: TLSConfig) -> FloorTLSConfig:
    """Carry TLS settings built elsewhere, such as a docker context, over to the TLS 1.2 floor."""
    if isinstance(config, FloorTLSConfig):
        return config
    cert, key = config.cert or (None, None)
    _load_tls_files(TLSFiles(cert=cert, key=key, ca=config.ca_cert))
    try:
        return FloorTLSConfig(client_cert=config.cert, ca_cert=config.ca_cert, verify=config.verify)
    except TLSParameterError as e:
        raise TLSSetupFailed(f"invalid TLS configuration: {e}") from e


class SSHTunnel:
    """
    Forward a local Unix socket to the Docker socket of a remote host through the ssh binary

    The remote socket defaults to ``/var/run/docker.sock`` and can be overridden by the path of the
    host URL, e.g. ``ssh://deployer@10.0.0.2/run/user/1000/docker.sock``.

    Attributes:
        user (str): Login user from the URL, if any
        hostname (str): Remote host
        port (int): SSH port from the URL, if any
        remote_socket (str): Docker socket path on the remote host
        ssh_opts (tuple[str, ...]): Additional ssh arguments, inserted before the destination
    """
    def __init__(self, host: str, ssh_opts: tuple[str, ...] = ()):
        url = urlparse(host)
        if url.scheme != "ssh" or not url.hostname:
            raise TransportConstructionFailed(f"invalid ssh host {host!r}")
        self.host = host
        self.user = url.username
        self.hostname = url.hostname
        self.port = url.port
        self.remote_socket = url.path if url.path not in ("", "/") else REMOTE_DOCKER_SOCKET
        self.ssh_opts = tuple(ssh_opts)
        self._proc = None
        self._workdir = None

    def command(self, local_socket: str) -> list[str]:
        args = ["ssh", "-N",
                "-o", "ExitOnForwardFailure=yes",
                "-o", "BatchMode=yes",
                "-L", f"{local_socket}:{self.remote_socket}"]
        args += list(self.ssh_opts)
        if self.user:
            args += ["-l", self.user]
        if self.port:
            args += ["-p", str(self.port)]
        return args + ["--", self.hostname]

    def start(self, timeout: float = None) -> str:
        """
        Start the tunnel and wait for the local socket to appear.

        :param timeout: Seconds to wait for the forward, waits until ssh exits when None
        :return: ``unix://`` URL of the local end of the tunnel
        """
        self._workdir = tempfile.mkdtemp(prefix="swarm-ssh-")
        local_socket = os.path.join(self._workdir, "docker.sock")
        log_path = os.path.join(self._workdir, "ssh.log")
        pulumi.log.debug(f"opening ssh tunnel to {self.hostname} for {self.remote_socket}")
        try:
            with open(log_path, "wb") as log:
                self._proc = subprocess.Popen(self.command(local_socket), stdin=subprocess.DEVNULL,
                                              stdout=subprocess.DEVNULL, stderr=log)
        except OSError as e:
            self.close()
            raise TransportConstructionFailed(f"could not start ssh for {self.host}: {e}") from e

        deadline = None if timeout is None else time.monotonic() + timeout
        while not os.path.exists(local_socket):
            if self._proc.poll() is not None:
                with open(log_path, "r", errors="replace") as log:
                    output = log.read().strip()
                self.close()
                raise TransportConstructionFailed(
                    f"ssh tunnel to {self.host} exited with status {self._proc.returncode}: {output}")
            if deadline is not None and time.monotonic() > deadline:
                self.close()
                raise TransportConstructionFailed(f"ssh tunnel to {self.host} not ready after {timeout}s")
            time.sleep(TUNNEL_POLL_INTERVAL)
        return f"unix://{local_socket}"

    def close(self):
        if self._proc is not None and self._proc.poll() is None:
            self._proc.terminate()
            try:
                self._proc.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self._proc.kill()
                self._proc.wait()
        if self._workdir is not None:
            shutil.rmtree(self._workdir, ignore_errors=True)
            self._workdir = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class DaemonClient:
    """
    Capability object over one Docker daemon

    Only the swarm membership calls are exposed. Every daemon or transport error is raised as
    DaemonOperationFailed naming the call and the host, with join tokens masked.

    Attributes:
        host (str): Endpoint description used in messages
    """
    def __init__(self, docker_client: docker.DockerClient, host: str, resources: contextlib.ExitStack = None):
        self._client = docker_client
        self.host = host
        self._resources = resources or contextlib.ExitStack()

    @contextlib.contextmanager
    def _daemon_call(self, operation: str, *secrets: str):
        pulumi.log.debug(f"{operation} on {self.host}")
        try:
            yield
        except (DockerException, requests.exceptions.RequestException) as e:
            error = DaemonOperationFailed(operation, self.host, redact(str(e), *secrets))
            if secrets:
                # the original exception may carry the request body
                raise error from None
            raise error from e

    def init_cluster(self, advertise_addr: str = None, listen_addr: str = None) -> str:
        kwargs = {}
        if advertise_addr:
            kwargs["advertise_addr"] = advertise_addr
        if listen_addr:
            kwargs["listen_addr"] = listen_addr
        with self._daemon_call("cluster-init"):
            return self._client.swarm.init(**kwargs)

    def inspect_cluster(self) -> dict:
        """Swarm attributes of the daemon, an empty dict when it is not a swarm manager."""
        with self._daemon_call("cluster-inspect"):
            return dict(self._client.swarm.attrs or {})

    def join_cluster(self, remote_addrs: list[str], join_token: str, advertise_addr: str = None,
                     listen_addr: str = None):
        kwargs = {"remote_addrs": list(remote_addrs), "join_token": join_token}
        if advertise_addr:
            kwargs["advertise_addr"] = advertise_addr
        if listen_addr:
            kwargs["listen_addr"] = listen_addr
        with self._daemon_call("cluster-join", join_token):
            self._client.swarm.join(**kwargs)

    def leave_cluster(self, force: bool = False):
        with self._daemon_call("cluster-leave"):
            self._client.swarm.leave(force=force)

    def list_nodes(self) -> list[NodeListing]:
        with self._daemon_call("node-list"):
            nodes = self._client.nodes.list()
        return [NodeListing(id=node.id, role=(node.attrs.get("Spec") or {}).get("Role", "")) for node in nodes]

    def info(self) -> dict:
        with self._daemon_call("daemon-info"):
            return self._client.info()

    def close(self):
        try:
            self._client.close()
        finally:
            self._resources.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


def _context_endpoint(name: str) -> tuple[str, TLSConfig | None]:
    try:
        context = ContextAPI.get_context(name)
    except DockerException as e:
        raise TransportConstructionFailed(f"could not load docker context {name!r}: {e}") from e
    if context is None:
        raise TransportConstructionFailed(f"docker context {name!r} does not exist")
    return context.Host, context.TLSConfig


def build_client(spec: ConnectionSpec, timeout: float = None) -> DaemonClient:
    """
    Open a daemon client for a connection spec.

    ``ssh://`` hosts go through an SSHTunnel, everything else straight to the Docker SDK. The API version is
    negotiated unless the spec pins one.

    :param spec: Resolved connection spec
    :param timeout: Caller deadline in seconds for daemon calls and tunnel start-up, SDK default when None
    :return: Ready to use client; the caller closes it
    :raises TLSSetupFailed: TLS files missing or unparseable
    :raises TransportConstructionFailed: bad endpoint, ssh failure or unreachable daemon
    """
    with contextlib.ExitStack() as stack:
        host = spec.host
        tls = None
        if host is None:
            host, context_tls = _context_endpoint(spec.context)
            if context_tls:
                tls = floor_tls(context_tls)
        files = tls_files(spec, stack)
        if files is not None:
            tls = tls_config(files)

        base_url = host
        if urlparse(host).scheme == "ssh":
            tunnel = stack.enter_context(SSHTunnel(host, spec.ssh_opts))
            base_url = tunnel.start(timeout)
            tls = None

        kwargs = {"base_url": base_url, "version": spec.api_version or "auto", "tls": tls or False}
        if timeout is not None:
            kwargs["timeout"] = timeout
        pulumi.log.debug(f"connecting to {spec.display_host} (api version {kwargs['version']})")
        try:
            docker_client = docker.DockerClient(**kwargs)
        except TLSParameterError as e:
            raise TLSSetupFailed(f"TLS setup for {spec.display_host} failed: {e}") from e
        except (DockerException, requests.exceptions.RequestException) as e:
            raise TransportConstructionFailed(f"could not connect to {spec.display_host}: {e}") from e
        resources = stack.pop_all()
    return DaemonClient(docker_client, spec.display_host, resources)
