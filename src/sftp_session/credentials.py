"""
Known hosts and identity resolution.

Provides:
- IdentityRepository / IdentityRepositoryFactory: where loaded keys are kept
- LocalIdentityRepository: in-memory store (the default)
- AgentIdentityRepository: stored keys plus the SSH agent's keys
- load_identity(): load one private key with classified errors
- resolve_known_hosts(): explicit file, else {trust_dir}/known_hosts, else None
- resolve_identities(): explicit identities, else {trust_dir}/id_rsa
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, Sequence, runtime_checkable

import asyncssh

from sftp_session.errors import IdentityLoadError, KnownHostsLoadError
from sftp_session.options import IdentityInfo
from sftp_session.resources import LOAD_ERRORS, optional_resource

if TYPE_CHECKING:
    from sftp_session.session import SessionBuilder

log = logging.getLogger("sftp_session.credentials")

KNOWN_HOSTS_NAME = "known_hosts"
DEFAULT_IDENTITY_NAME = "id_rsa"


# ---------------------------------------------------------------------------
# Identity repositories
# ---------------------------------------------------------------------------

@runtime_checkable
class IdentityRepository(Protocol):
    """Store for the private keys offered during public key auth."""

    def add(self, key: asyncssh.SSHKey) -> None:
        """Register a loaded private key."""
        ...

    async def get_identities(self) -> list[Any]:
        """Return keys (or key pairs) to offer, in order."""
        ...


@runtime_checkable
class IdentityRepositoryFactory(Protocol):
    """Builds the identity repository for one session."""

    def create(self, builder: "SessionBuilder") -> IdentityRepository:
        ...


class LocalIdentityRepository:
    """Keeps loaded keys in memory, in registration order."""

    def __init__(self) -> None:
        self._keys: list[asyncssh.SSHKey] = []

    def add(self, key: asyncssh.SSHKey) -> None:
        self._keys.append(key)

    async def get_identities(self) -> list[Any]:
        return list(self._keys)

    async def aclose(self) -> None:
        """Release anything held for signing. Called when the session closes."""

    def __len__(self) -> int:
        return len(self._keys)


class AgentIdentityRepository(LocalIdentityRepository):
    """
    Offers explicitly added keys first, then the SSH agent's keys.

    Agent keys sign through the agent, so the agent connection stays open
    until aclose(). An unreachable agent contributes no keys rather than
    failing the session; explicit keys still work.
    """

    def __init__(self, agent_path: str | None = None) -> None:
        super().__init__()
        self._agent_path = agent_path or os.environ.get("SSH_AUTH_SOCK")
        self._agent: asyncssh.SSHAgentClient | None = None

    @property
    def agent_path(self) -> str | None:
        return self._agent_path

    async def get_identities(self) -> list[Any]:
        identities = await super().get_identities()
        if not self._agent_path:
            log.debug("No SSH agent socket configured")
            return identities
        if not Path(self._agent_path).exists():
            log.debug("SSH agent socket not found: %s", self._agent_path)
            return identities

        try:
            if self._agent is None:
                self._agent = await asyncssh.connect_agent(self._agent_path)
            if self._agent is None:
                return identities
            agent_keys = await self._agent.get_keys()
        except (OSError, asyncssh.Error) as e:
            log.debug("Could not read keys from SSH agent: %s", e)
            await self.aclose()
            return identities

        log.debug("SSH agent offered %d key(s)", len(agent_keys))
        return identities + list(agent_keys)

    async def aclose(self) -> None:
        if self._agent is not None:
            self._agent.close()
            await self._agent.wait_closed()
            self._agent = None


class AgentIdentityRepositoryFactory:
    """Factory for AgentIdentityRepository."""

    def __init__(self, agent_path: str | None = None) -> None:
        self._agent_path = agent_path

    def create(self, builder: "SessionBuilder") -> IdentityRepository:
        return AgentIdentityRepository(self._agent_path)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def _classify_key_error(exc: BaseException) -> str:
    message = str(exc).lower()
    # asyncssh reports a missing optional crypto package as an encryption error
    if "requires" in message and ("bcrypt" in message or "kdf" in message):
        return "import_error"
    if isinstance(exc, asyncssh.KeyEncryptionError):
        return "wrong_passphrase"
    if isinstance(exc, FileNotFoundError):
        return "file_not_found"
    if isinstance(exc, PermissionError):
        return "permission_denied"
    if "passphrase" in message or "decrypt" in message:
        return "wrong_passphrase"
    if "format" in message or "invalid" in message:
        return "invalid_format"
    return "import_error"


def load_identity(
    info: IdentityInfo,
    passphrase: bytes | str | None = None,
) -> asyncssh.SSHKey:
    """
    Load the private key of an identity.

    The identity's own passphrase wins over the shared ``passphrase``. When
    a public key file is given it must belong to the private key.

    Raises:
        IdentityLoadError: If the key is missing, unreadable, malformed,
            cannot be decrypted or does not match its public key
    """
    key_path = info.private_key
    if info.passphrase is not None:
        passphrase = info.passphrase

    if not key_path.exists():
        raise IdentityLoadError(
            f"Private key file not found: {key_path}",
            key_path=str(key_path),
            reason="file_not_found",
        )
    if not os.access(key_path, os.R_OK):
        raise IdentityLoadError(
            f"Private key file not readable: {key_path}",
            key_path=str(key_path),
            reason="permission_denied",
        )

    try:
        key = asyncssh.read_private_key(str(key_path), passphrase=passphrase)
    except LOAD_ERRORS as e:
        raise IdentityLoadError(
            f"Failed to load private key {key_path}: {e}",
            key_path=str(key_path),
            reason=_classify_key_error(e),
        ) from e

    if info.public_key is not None:
        try:
            public_key = asyncssh.read_public_key(str(info.public_key))
        except LOAD_ERRORS as e:
            raise IdentityLoadError(
                f"Failed to load public key {info.public_key}: {e}",
                key_path=str(info.public_key),
                reason=_classify_key_error(e),
            ) from e
        if public_key.public_data != key.public_data:
            raise IdentityLoadError(
                f"Public key {info.public_key} does not match private key {key_path}",
                key_path=str(key_path),
                reason="public_key_mismatch",
            )

    return key


def _read_known_hosts(path: Path) -> asyncssh.SSHKnownHosts:
    return asyncssh.read_known_hosts(str(path))


def resolve_known_hosts(
    trust_dir: Path,
    explicit_path: Path | None = None,
) -> asyncssh.SSHKnownHosts | None:
    """
    Load the known hosts database.

    Args:
        trust_dir: Resolved trust directory
        explicit_path: Configured known_hosts file, if any

    Returns:
        The parsed database, or None when no file exists (no host is trusted)

    Raises:
        KnownHostsLoadError: If the explicit file, or the default file,
            exists but cannot be loaded
    """
    if explicit_path is not None:
        if not explicit_path.exists():
            log.debug("Known hosts file %s does not exist, trusting no hosts", explicit_path)
            return None
        try:
            known_hosts = _read_known_hosts(explicit_path)
        except LOAD_ERRORS as e:
            raise KnownHostsLoadError(
                str(explicit_path.absolute()),
                reason=type(e).__name__,
            ) from e
        log.debug("Loaded known hosts from %s", explicit_path)
        return known_hosts

    default_path = trust_dir / KNOWN_HOSTS_NAME
    known_hosts = optional_resource(
        default_path,
        _read_known_hosts,
        lambda path, exc: KnownHostsLoadError(
            str(path.absolute()), reason=type(exc).__name__
        ),
    )
    if known_hosts is None:
        log.debug("No known hosts file at %s, trusting no hosts", default_path)
    else:
        log.debug("Loaded known hosts from %s", default_path)
    return known_hosts


def resolve_identities(
    repository: IdentityRepository,
    trust_dir: Path,
    identities: Sequence[IdentityInfo] | None,
    passphrase: bytes | str | None = None,
) -> int:
    """
    Register identities with a repository.

    With explicit identities every one is loaded and the first failure is
    raised. Without them only {trust_dir}/id_rsa is tried, and only if it
    is present.

    Returns:
        Number of identities registered

    Raises:
        IdentityLoadError: For the first present identity that cannot be loaded
    """
    if identities is not None:
        for info in identities:
            repository.add(load_identity(info, passphrase))
            log.debug("Registered identity %s", info.private_key)
        return len(identities)

    default_path = trust_dir / DEFAULT_IDENTITY_NAME
    key = optional_resource(
        default_path,
        lambda path: load_identity(IdentityInfo(path), passphrase),
        lambda path, exc: IdentityLoadError(
            f"Failed to load private key {path}: {exc}",
            key_path=str(path),
            reason=_classify_key_error(exc),
        ),
    )
    if key is None:
        log.debug("No default identity at %s", default_path)
        return 0

    repository.add(key)
    log.debug("Registered default identity %s", default_path)
    return 1
