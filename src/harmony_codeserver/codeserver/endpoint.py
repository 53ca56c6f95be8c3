"""Scheme-tagged location strings used for inbox, target and reply endpoints."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from harmony_codeserver.codeserver.errors import InvalidEndpoint


class EndpointScheme(str, Enum):
    """Supported endpoint schemes."""

    DIR = "dir"
    SSH = "ssh"


@dataclass(frozen=True, slots=True)
class Endpoint:
    """Parsed endpoint; immutable for the lifetime of a session."""

    scheme: EndpointScheme
    path: str
    host: str = ""
    user: str = ""
    port: str = ""

    @property
    def is_remote(self) -> bool:
        return self.scheme is EndpointScheme.SSH

    def scp_destination(self) -> str:
        """Render ``[user@]host:path`` for scp."""

        prefix = f"{self.user}@" if self.user else ""
        return f"{prefix}{self.host}:{self.path}"

    def __str__(self) -> str:
        if self.scheme is EndpointScheme.DIR:
            return f"dir://{self.path}"
        user = f"{self.user}@" if self.user else ""
        port = f":{self.port}" if self.port else ""
        return f"ssh://{user}{self.host}{port}/{self.path}"


def parse_endpoint(text: str) -> Endpoint:
    """Parse ``dir://<path>`` or ``ssh://[user@]host[:port]/path``."""

    scheme, separator, rest = text.strip().partition("://")
    if not separator:
        raise InvalidEndpoint(f"Endpoint has no scheme separator: {text!r}")

    if scheme == EndpointScheme.DIR.value:
        if not rest:
            raise InvalidEndpoint(f"Directory endpoint has no path: {text!r}")
        return Endpoint(scheme=EndpointScheme.DIR, path=rest)
    if scheme == EndpointScheme.SSH.value:
        return _parse_ssh(text, rest)
    if scheme == "tcp":
        raise InvalidEndpoint(f"tcp:// endpoints are reserved and not implemented: {text!r}")
    raise InvalidEndpoint(f"Unknown endpoint scheme {scheme!r}: {text!r}")


def parse_optional_endpoint(text: str | None) -> Endpoint | None:
    """Like :func:`parse_endpoint`, but a missing or blank string means no endpoint."""

    if text is None or not text.strip():
        return None
    return parse_endpoint(text)


def _parse_ssh(text: str, rest: str) -> Endpoint:
    authority, separator, path = rest.partition("/")
    if not separator:
        raise InvalidEndpoint(f"No path separator in ssh endpoint: {text!r}")
    if not path:
        raise InvalidEndpoint(f"ssh endpoint has no path: {text!r}")

    user = ""
    if "@" in authority:
        user, _, authority = authority.rpartition("@")
        if not user:
            raise InvalidEndpoint(f"Empty user name in ssh endpoint: {text!r}")

    host, _, port = authority.partition(":")
    if not host:
        raise InvalidEndpoint(f"ssh endpoint has no host: {text!r}")
    if ":" in authority and not port.isdigit():
        raise InvalidEndpoint(f"Invalid port {port!r} in ssh endpoint: {text!r}")

    return Endpoint(scheme=EndpointScheme.SSH, path=path, host=host, user=user, port=port)
