"""
User interaction during connection setup.

Provides:
- UserInfo: callbacks for host key prompts, passwords and challenges
- SessionClient: asyncssh client that routes engine callbacks to a UserInfo
- get_key_fingerprint(): printable fingerprint of a host key
"""
from __future__ import annotations

import base64
import hashlib
import logging
from typing import Any, Protocol, Sequence, runtime_checkable

import asyncssh

log = logging.getLogger("sftp_session.client")


@runtime_checkable
class UserInfo(Protocol):
    """
    Interactive callbacks used while a session is being established.

    Any method may be called on the connecting thread's event loop and
    should return promptly.
    """

    def prompt_yes_no(self, message: str) -> bool:
        """Ask a yes/no question, e.g. whether to trust an unknown host key."""
        ...

    def prompt_password(self, message: str) -> str | None:
        """Return a password, or None to give up on password auth."""
        ...

    def prompt_keyboard_interactive(
        self,
        name: str,
        instructions: str,
        prompts: Sequence[tuple[str, bool]],
    ) -> list[str] | None:
        """Answer a keyboard-interactive challenge, or None to give up."""
        ...

    def show_message(self, message: str) -> None:
        """Display an informational message."""
        ...


def get_key_fingerprint(key: asyncssh.SSHKey, hash_algo: str = "sha256") -> str:
    """
    Get the fingerprint of an SSH key.

    Args:
        key: asyncssh key object
        hash_algo: sha256 or md5

    Returns:
        Fingerprint string (e.g. "SHA256:...")
    """
    public_data = key.public_data
    if hash_algo == "sha256":
        digest = hashlib.sha256(public_data).digest()
        b64 = base64.b64encode(digest).decode("ascii").rstrip("=")
        return f"SHA256:{b64}"
    elif hash_algo == "md5":
        digest = hashlib.md5(public_data).digest()
        return "MD5:" + ":".join(f"{b:02x}" for b in digest)
    raise ValueError(f"Unsupported hash algorithm: {hash_algo}")


def _key_type(key: asyncssh.SSHKey) -> str:
    algorithm = key.algorithm
    return algorithm.decode("ascii") if isinstance(algorithm, bytes) else algorithm


class SessionClient(asyncssh.SSHClient):
    """
    asyncssh client for one session attempt.

    asyncssh only asks validate_host_public_key() about keys that are not
    in the trusted database; revoked keys are rejected before that. Keys
    reaching this method are accepted only in "ask" mode and only when the
    user says yes.
    """

    def __init__(
        self,
        user_info: UserInfo | None = None,
        ask_unknown_hosts: bool = False,
    ) -> None:
        super().__init__()
        self._user_info = user_info
        self._ask_unknown_hosts = ask_unknown_hosts
        self._server_key: asyncssh.SSHKey | None = None
        self._password_prompted = False
        self._challenge_count = 0

    @property
    def server_key(self) -> asyncssh.SSHKey | None:
        """The host key presented by the server, if one reached the client."""
        return self._server_key

    @property
    def challenge_count(self) -> int:
        return self._challenge_count

    def validate_host_public_key(
        self,
        host: str,
        addr: tuple[str, int],
        port: int,
        key: asyncssh.SSHKey,
    ) -> bool:
        self._server_key = key
        fingerprint = get_key_fingerprint(key)

        if not self._ask_unknown_hosts or self._user_info is None:
            log.debug("Rejecting unknown host key %s for %s:%d", fingerprint, host, port)
            return False

        message = (
            f"The authenticity of host '{host}' can't be established.\n"
            f"{_key_type(key)} key fingerprint is {fingerprint}.\n"
            "Are you sure you want to continue connecting?"
        )
        accepted = bool(self._user_info.prompt_yes_no(message))
        log.debug(
            "User %s host key %s for %s:%d",
            "accepted" if accepted else "rejected", fingerprint, host, port,
        )
        return accepted

    def auth_banner_received(self, msg: str, lang: str) -> None:
        if self._user_info is not None:
            self._user_info.show_message(msg)

    def password_auth_requested(self) -> str | None:
        # Only reached when no password was supplied for the session
        if self._user_info is None or self._password_prompted:
            return None
        self._password_prompted = True
        return self._user_info.prompt_password("Password:")

    def kbdint_auth_requested(self) -> Any:
        # NotImplemented lets asyncssh answer password prompts with the session password
        if self._user_info is None:
            return NotImplemented
        return ""

    def kbdint_challenge_received(
        self,
        name: str,
        instructions: str,
        lang: str,
        prompts: list[tuple[str, bool]],
    ) -> list[str] | None:
        if self._user_info is None:
            return None

        self._challenge_count += 1
        if not prompts:
            # Informational round, nothing to answer
            if instructions:
                self._user_info.show_message(instructions)
            return []
        return self._user_info.prompt_keyboard_interactive(name, instructions, prompts)
