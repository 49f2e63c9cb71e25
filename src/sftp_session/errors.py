"""
Session error taxonomy with structured context.

Every failure inside the session factory surfaces to callers as a single
ConnectError; the more specific errors below travel as its ``__cause__``.

Error hierarchy:
- SessionError (base)
  - ConnectError (the only error raised by create_connection)
  - IdentityLoadError (private key present but unusable)
  - KnownHostsLoadError (explicit known_hosts file could not be loaded)
  - ProxyError (proxy tunnel could not be established)
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any


@dataclass
class ErrorContext:
    """
    Structured context attached to session errors.

    Never carries passwords or passphrases; only locations and names.
    """
    host: str | None = None
    port: int | None = None
    username: str | None = None
    key_path: str | None = None
    known_hosts_path: str | None = None
    proxy: str | None = None
    original_error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Port 0 is allowed: it means "use the default" for proxies
        if self.port is not None:
            assert isinstance(self.port, int) and 0 <= self.port <= 65535, (
                f"Port must be between 0 and 65535, got {self.port}"
            )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        result = {}
        for key, value in asdict(self).items():
            if value is None:
                continue
            if key == "extra":
                field_names = {f.name for f in fields(self)} - {"extra"}
                collisions = field_names & value.keys()
                assert not collisions, (
                    f"Extra keys collide with context field names: {collisions}"
                )
                result.update(value)
            else:
                result[key] = value
        return result


class SessionError(Exception):
    """
    Base exception for all session-establishment errors.
    """

    def __init__(self, message: str, context: ErrorContext | None = None) -> None:
        assert isinstance(message, str) and message.strip(), (
            f"SessionError message must be a non-empty string, got {message!r}"
        )
        super().__init__(message)
        self.context = context or ErrorContext()

    @property
    def error_type(self) -> str:
        """Return the error type name for logging."""
        return self.__class__.__name__

    def to_dict(self) -> dict[str, Any]:
        """Convert error to a dictionary for structured logging."""
        return {
            "error_type": self.error_type,
            "message": str(self),
            **self.context.to_dict(),
        }


class ConnectError(SessionError):
    """
    Any failure while creating a session.

    The original exception is preserved as ``__cause__``. The message names
    the host only; credentials never appear in it.
    """

    def __init__(
        self,
        hostname: str,
        context: ErrorContext | None = None,
    ) -> None:
        if context is None:
            context = ErrorContext()
        context.host = hostname
        super().__init__(f'Could not connect to SFTP server at "{hostname}".', context)
        self.hostname = hostname


class IdentityLoadError(SessionError):
    """
    A private key was present (or explicitly named) but could not be used.

    Raised when:
    - An explicit key file does not exist or is not readable
    - The key format is invalid
    - The passphrase is wrong or missing for an encrypted key
    - The public key file does not belong to the private key
    """

    def __init__(
        self,
        message: str,
        key_path: str | None = None,
        reason: str | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        assert key_path is None or (isinstance(key_path, str) and key_path.strip()), (
            f"key_path must be None or a non-empty string, got {key_path!r}"
        )
        if context is None:
            context = ErrorContext()
        context.key_path = key_path
        if reason:
            context.extra["reason"] = reason
        super().__init__(message, context)
        self.key_path = key_path
        self.reason = reason


class KnownHostsLoadError(SessionError):
    """An explicitly configured known_hosts file could not be loaded."""

    def __init__(
        self,
        path: str,
        reason: str | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        if context is None:
            context = ErrorContext()
        context.known_hosts_path = path
        if reason:
            context.extra["reason"] = reason
        super().__init__(f"Could not load known hosts file {path}", context)
        self.path = path


class ProxyError(SessionError):
    """
    The proxy tunnel could not be established.

    Raised for proxy handshake failures (HTTP status, SOCKS reply codes,
    authentication rejection) and for stream proxy commands that fail to
    start.
    """

    def __init__(
        self,
        message: str,
        proxy: str | None = None,
        reason: str | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        if context is None:
            context = ErrorContext()
        context.proxy = proxy
        if reason:
            context.extra["reason"] = reason
        super().__init__(message, context)
        self.proxy = proxy
        self.reason = reason
