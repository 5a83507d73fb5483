"""Exceptions raised while resolving connections and driving swarm membership
"""

import re

_TOKEN_PATTERN = re.compile(r"SWMTKN-1-[0-9A-Za-z-]+")
REDACTED = "SWMTKN-1-***"


def redact(message: str, *secrets: str) -> str:
    """
    Mask swarm join tokens in a message.

    Anything shaped like a join token is masked, as is every extra secret passed in.

    :param message: Text that may end up in an error or a log line
    :param secrets: Additional values that must never be shown
    :return: The message with secrets replaced
    """
    for secret in secrets:
        if secret:
            message = message.replace(secret, REDACTED)
    return _TOKEN_PATTERN.sub(REDACTED, message)


class SwarmProviderError(Exception):
    """Base class for every error raised by this package."""


class InvalidConnectionConfig(SwarmProviderError):
    """Connection fields are missing or mutually exclusive fields are combined."""


class MissingCredentialMaterial(InvalidConnectionConfig):
    """A client certificate was given without its key, or the other way round."""


class InvalidCredentialFormat(SwarmProviderError):
    """Inline TLS material is not valid PEM."""


class TransportConstructionFailed(SwarmProviderError):
    """The daemon client could not be built (bad URI, SSH tunnel, unreachable daemon)."""


class TLSSetupFailed(TransportConstructionFailed):
    """TLS files could not be read or parsed while building the client."""


class DaemonOperationFailed(SwarmProviderError):
    """
    A call against the Docker daemon returned an error.

    Attributes:
        operation (str): Daemon call that failed, e.g. ``cluster-join``
        host (str): Daemon endpoint the call was sent to
        detail (str): Daemon error text, secrets already masked
        kind (str): Resource kind the call was made for, None outside a lifecycle call
    """
    def __init__(self, operation: str, host: str, message: str, kind: str = None):
        self.operation = operation
        self.host = host
        self.detail = message
        self.kind = kind
        prefix = f"{kind}: " if kind else ""
        super().__init__(f"{prefix}{operation} against {host} failed: {message}")

    def for_kind(self, kind: str) -> "DaemonOperationFailed":
        return DaemonOperationFailed(self.operation, self.host, self.detail, kind=kind)


class UnsupportedOperation(SwarmProviderError):
    """The requested lifecycle verb is never supported; the resource has to be recreated."""


class DriftDetected(UserWarning):
    """The daemon reports a different node ID than the one recorded for a membership."""
