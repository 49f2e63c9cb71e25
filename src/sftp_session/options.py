"""
Typed session configuration.

Provides:
- ProxyType: tunnel kinds (HTTP, SOCKS5, STREAM)
- IdentityInfo: a private key location with optional public key and passphrase
- ConnectionTarget: host, port and credentials for one connection attempt
- SessionOptions: read-only view of every optional session setting

Every SessionOptions field defaults to None (or a documented default) and
None always means "leave the engine default alone".
"""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from sftp_session.authenticator import UserAuthenticator
    from sftp_session.client import UserInfo
    from sftp_session.credentials import IdentityRepositoryFactory


class ProxyType(str, Enum):
    """Supported proxy tunnel kinds."""
    HTTP = "http"
    SOCKS5 = "socks5"
    STREAM = "stream"


# Runs on the jump host; formatted with (target host, target port)
DEFAULT_PROXY_COMMAND = "nc -q 0 %s %d"

STRICT_HOST_KEY_CHECKING_VALUES = ("yes", "no", "ask")


def _to_bytes(value: str | bytes | bytearray | None) -> bytes | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


@dataclass(frozen=True)
class IdentityInfo:
    """
    A key pair used for public key authentication.

    Attributes:
        private_key: Path to the private key file (required)
        public_key: Path to the matching public key file (optional)
        passphrase: Passphrase for this key; overrides the shared passphrase
    """
    private_key: Path
    public_key: Path | None = None
    passphrase: bytes | None = None

    def __post_init__(self) -> None:
        assert self.private_key is not None, "IdentityInfo requires a private_key"
        object.__setattr__(self, "private_key", Path(self.private_key).expanduser())
        if self.public_key is not None:
            object.__setattr__(self, "public_key", Path(self.public_key).expanduser())
        object.__setattr__(self, "passphrase", _to_bytes(self.passphrase))

    def __repr__(self) -> str:
        return (
            f"IdentityInfo(private_key={str(self.private_key)!r}, "
            f"public_key={str(self.public_key) if self.public_key else None!r}, "
            f"passphrase={'<hidden>' if self.passphrase is not None else None})"
        )


@dataclass(frozen=True)
class ConnectionTarget:
    """
    Where and as whom to connect, for a single connection attempt.
    """
    hostname: str
    port: int
    username: bytes
    password: bytes | None = None

    def __post_init__(self) -> None:
        assert self.hostname, "hostname must be specified"
        assert isinstance(self.port, int) and 0 < self.port <= 65535, (
            f"Port must be between 1 and 65535, got {self.port}"
        )
        object.__setattr__(self, "username", _to_bytes(self.username))
        object.__setattr__(self, "password", _to_bytes(self.password))
        assert self.username is not None, "username must be specified"

    @property
    def username_str(self) -> str:
        return self.username.decode("utf-8")

    @property
    def password_str(self) -> str | None:
        return self.password.decode("utf-8") if self.password is not None else None

    def __repr__(self) -> str:
        return (
            f"ConnectionTarget(hostname={self.hostname!r}, port={self.port}, "
            f"username={self.username_str!r}, "
            f"password={'<hidden>' if self.password is not None else None})"
        )


@dataclass(frozen=True)
class SessionOptions:
    """
    Optional settings consulted by the session factory.

    Attributes:
        known_hosts: Explicit known_hosts file; failure to load it is an error
        identities: Explicit identities. None means "try {trust_dir}/id_rsa";
            an empty tuple means "no identities at all"
        identity_passphrase: Shared passphrase for identities without their own
        identity_repository_factory: Builds a custom identity store
        timeout: Connect and handshake timeout in milliseconds
        user_info: Interactive callbacks (host key prompts, passwords)
        strict_host_key_checking: "yes", "no" or "ask"
        preferred_authentications: Comma-separated auth method names
        compression: Comma-separated compression algorithms, or "none"
        proxy_host: Proxy host; enables proxying when set
        proxy_port: Proxy port, 0 for the proxy type's default
        proxy_type: HTTP, SOCKS5 or STREAM
        proxy_authenticator: Supplies HTTP/SOCKS5 proxy credentials
        proxy_user: Login on the stream proxy's jump host
        proxy_password: Password on the stream proxy's jump host
        proxy_command: Command run on the jump host, formatted with (host, port)
        proxy_options: Options for the connection to the jump host
    """
    known_hosts: Path | None = None
    identities: tuple[IdentityInfo, ...] | None = None
    identity_passphrase: bytes | str | None = None
    identity_repository_factory: "IdentityRepositoryFactory | None" = None
    timeout: int | None = None
    user_info: "UserInfo | None" = None
    strict_host_key_checking: str | None = None
    preferred_authentications: str | None = None
    compression: str | None = None
    proxy_host: str | None = None
    proxy_port: int = 0
    proxy_type: ProxyType = ProxyType.HTTP
    proxy_authenticator: "UserAuthenticator | None" = None
    proxy_user: str | None = None
    proxy_password: str | None = None
    proxy_command: str = DEFAULT_PROXY_COMMAND
    proxy_options: "SessionOptions | None" = None

    def __post_init__(self) -> None:
        if self.known_hosts is not None:
            object.__setattr__(self, "known_hosts", Path(self.known_hosts).expanduser())
        if self.identities is not None:
            object.__setattr__(self, "identities", tuple(self.identities))
        if self.timeout is not None:
            assert isinstance(self.timeout, int) and self.timeout >= 0, (
                f"timeout must be a non-negative number of milliseconds, got {self.timeout!r}"
            )
        assert isinstance(self.proxy_port, int) and 0 <= self.proxy_port <= 65535, (
            f"proxy_port must be between 0 and 65535, got {self.proxy_port}"
        )
        object.__setattr__(self, "proxy_type", ProxyType(self.proxy_type))

    def with_(self, **changes: Any) -> "SessionOptions":
        """Return a copy with the given fields replaced."""
        return dataclasses.replace(self, **changes)

    def __repr__(self) -> str:
        shown = []
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if value is None or value == f.default:
                continue
            if f.name in ("identity_passphrase", "proxy_password"):
                value = "<hidden>"
            shown.append(f"{f.name}={value!r}")
        return f"SessionOptions({', '.join(shown)})"
