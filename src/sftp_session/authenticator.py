"""
Externally supplied credentials for proxy authentication.

Provides:
- AuthDataType: the kinds of credential an authenticator can be asked for
- AuthenticationData: typed map of SecureBytes values with cleanup()
- UserAuthenticator: protocol for credential callbacks
- StaticUserAuthenticator: authenticator returning fixed credentials
- proxy_authentication(): scoped acquisition that always wipes on exit
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from enum import Enum
from typing import Iterator, Protocol, Sequence, runtime_checkable

from sftp_session.secure_bytes import SecureBytes

log = logging.getLogger("sftp_session.authenticator")


class AuthDataType(str, Enum):
    """Credential kinds an authenticator may be asked to supply."""
    USERNAME = "username"
    PASSWORD = "password"
    DOMAIN = "domain"


# What the proxy builder asks for
PROXY_AUTH_TYPES: tuple[AuthDataType, ...] = (AuthDataType.USERNAME, AuthDataType.PASSWORD)


class AuthenticationData:
    """
    Credentials returned by a UserAuthenticator.

    Values are stored as SecureBytes and are zeroed by cleanup(). After
    cleanup() the data object is empty and every previously returned
    SecureBytes reads as wiped.
    """

    def __init__(self) -> None:
        self._data: dict[AuthDataType, SecureBytes] = {}

    def set_data(self, data_type: AuthDataType, value: str | bytes | bytearray | None) -> None:
        """Store a credential, replacing (and wiping) any previous value."""
        previous = self._data.pop(data_type, None)
        if previous is not None:
            previous.wipe()
        if value is not None:
            self._data[data_type] = SecureBytes(value)

    def get_data(self, data_type: AuthDataType) -> SecureBytes | None:
        return self._data.get(data_type)

    def __contains__(self, data_type: object) -> bool:
        return data_type in self._data

    def cleanup(self) -> None:
        """Wipe every stored credential. Idempotent."""
        for value in self._data.values():
            value.wipe()
        self._data.clear()

    def __repr__(self) -> str:
        kinds = ",".join(t.value for t in self._data)
        return f"AuthenticationData({kinds})"


@runtime_checkable
class UserAuthenticator(Protocol):
    """Callback capability asked for credentials on demand."""

    def request_authentication(
        self, types: Sequence[AuthDataType]
    ) -> AuthenticationData | None:
        """Return the requested credentials, or None to decline."""
        ...


class StaticUserAuthenticator:
    """
    Authenticator that always answers with the same credentials.

    A fresh AuthenticationData is built for every request so that wiping
    one result never affects the next.
    """

    def __init__(
        self,
        username: str | bytes | None = None,
        password: str | bytes | None = None,
        domain: str | bytes | None = None,
    ) -> None:
        self._values = {
            AuthDataType.USERNAME: username,
            AuthDataType.PASSWORD: password,
            AuthDataType.DOMAIN: domain,
        }

    def request_authentication(
        self, types: Sequence[AuthDataType]
    ) -> AuthenticationData | None:
        data = AuthenticationData()
        for data_type in types:
            data.set_data(data_type, self._values.get(data_type))
        return data

    def __repr__(self) -> str:
        return "StaticUserAuthenticator(<hidden>)"


@contextmanager
def proxy_authentication(
    authenticator: UserAuthenticator | None,
    types: Sequence[AuthDataType] = PROXY_AUTH_TYPES,
) -> Iterator[AuthenticationData | None]:
    """
    Ask an authenticator for proxy credentials and wipe them on exit.

    Yields None when no authenticator is configured or it declines.
    The returned material is wiped on every exit path, including
    exceptions raised by the body. An authenticator that raises returns
    nothing, so it must wipe any partial data it built itself.
    """
    if authenticator is None:
        yield None
        return

    data: AuthenticationData | None = None
    try:
        data = authenticator.request_authentication(types)
        log.debug(
            "Proxy authenticator returned %s",
            "no data" if data is None else repr(data),
        )
        yield data
    finally:
        if data is not None:
            data.cleanup()
