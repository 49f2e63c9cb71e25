"""
Proxy descriptors for tunnelled sessions.

Provides:
- HttpProxy, Socks5Proxy, StreamProxy: what to tunnel through
- build_proxy(): derive the descriptor from SessionOptions
- proxy_authentication(): scoped proxy credentials (re-exported)

HTTP and SOCKS5 credentials are SecureBytes owned by the AuthenticationData
they came from; wiping that data also wipes the descriptor's view of them.
Building a descriptor performs no I/O; tunnels are opened in tunnel.py.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Union

from sftp_session.authenticator import (
    AuthDataType,
    AuthenticationData,
    proxy_authentication,
)
from sftp_session.options import ProxyType, SessionOptions
from sftp_session.secure_bytes import SecureBytes

log = logging.getLogger("sftp_session.proxy")

DEFAULT_HTTP_PROXY_PORT = 80
DEFAULT_SOCKS5_PROXY_PORT = 1080

__all__ = [
    "DEFAULT_HTTP_PROXY_PORT",
    "DEFAULT_SOCKS5_PROXY_PORT",
    "HttpProxy",
    "ProxyDescriptor",
    "Socks5Proxy",
    "StreamProxy",
    "build_proxy",
    "proxy_authentication",
]


@dataclass(frozen=True)
class _CredentialProxy:
    host: str
    port: int = 0
    username: SecureBytes | None = None
    password: SecureBytes | None = None

    @property
    def has_credentials(self) -> bool:
        return self.username is not None and self.password is not None

    def __repr__(self) -> str:
        auth = ", <credentials>" if self.has_credentials else ""
        return f"{type(self).__name__}({self.host}:{self.port}{auth})"


@dataclass(frozen=True, repr=False)
class HttpProxy(_CredentialProxy):
    """HTTP CONNECT proxy. Port 0 means 80."""

    @property
    def effective_port(self) -> int:
        return self.port or DEFAULT_HTTP_PROXY_PORT


@dataclass(frozen=True, repr=False)
class Socks5Proxy(_CredentialProxy):
    """SOCKS5 proxy. Port 0 means 1080."""

    @property
    def effective_port(self) -> int:
        return self.port or DEFAULT_SOCKS5_PROXY_PORT


@dataclass(frozen=True)
class StreamProxy:
    """
    Tunnel through a command run on a jump host.

    Attributes:
        command: Command template, formatted with (target host, target port)
        host: Jump host
        port: Jump host SSH port (0 means 22)
        user: Login on the jump host
        password: Password on the jump host
        options: Options for the connection to the jump host
    """
    command: str
    host: str
    port: int = 0
    user: str | None = None
    password: str | None = None
    options: SessionOptions | None = None

    @property
    def effective_port(self) -> int:
        return self.port or 22

    def format_command(self, target_host: str, target_port: int) -> str:
        return self.command % (target_host, target_port)

    def __repr__(self) -> str:
        return (
            f"StreamProxy({self.user or ''}@{self.host}:{self.port}, "
            f"command={self.command!r})"
        )


ProxyDescriptor = Union[HttpProxy, Socks5Proxy, StreamProxy]


def _credentials(
    auth_data: AuthenticationData | None,
) -> tuple[SecureBytes | None, SecureBytes | None]:
    if auth_data is None:
        return None, None
    username = auth_data.get_data(AuthDataType.USERNAME)
    password = auth_data.get_data(AuthDataType.PASSWORD)
    if username is None or password is None:
        return None, None
    return username, password


def build_proxy(
    options: SessionOptions,
    auth_data: AuthenticationData | None = None,
) -> ProxyDescriptor | None:
    """
    Describe the proxy configured in ``options``.

    Args:
        options: Session options
        auth_data: Credentials from the proxy authenticator, if any; used
            for HTTP and SOCKS5 only when both username and password exist

    Returns:
        The descriptor, or None when no proxy host is configured
    """
    if not options.proxy_host:
        return None

    proxy_type = options.proxy_type
    if proxy_type == ProxyType.STREAM:
        proxy: ProxyDescriptor = StreamProxy(
            command=options.proxy_command,
            host=options.proxy_host,
            port=options.proxy_port,
            user=options.proxy_user,
            password=options.proxy_password,
            options=options.proxy_options,
        )
    elif proxy_type == ProxyType.SOCKS5:
        username, password = _credentials(auth_data)
        proxy = Socks5Proxy(options.proxy_host, options.proxy_port, username, password)
    elif proxy_type == ProxyType.HTTP:
        username, password = _credentials(auth_data)
        proxy = HttpProxy(options.proxy_host, options.proxy_port, username, password)
    else:
        raise ValueError(f"Unsupported proxy type: {proxy_type!r}")

    log.debug("Using proxy %r", proxy)
    return proxy
