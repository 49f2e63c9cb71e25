"""
Pytest fixtures for sftp-session tests.

Provides:
- trust_dir: an isolated trust directory selected through VFS_SFTP_SSHDIR
- home_ssh_dir: a fake $HOME/.ssh, separate from the trust directory
- mock_ssh_server: MockSSHServer accepting test/test
- known_hosts_file: known_hosts trusting the mock server
- client_key: a key pair authorised on key_ssh_server
- engine logging restored after each test
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, AsyncGenerator, Generator

import pytest

if TYPE_CHECKING:
    import asyncssh

    from sftp_session.testing.mock_server import MockSSHServer


@pytest.fixture
def trust_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """
    Empty trust directory used in place of ~/.ssh.

    Keeps the developer's own keys and known_hosts out of the tests.
    """
    from sftp_session.platform import TRUST_DIR_ENV

    directory = tmp_path / "ssh"
    directory.mkdir()
    monkeypatch.setenv(TRUST_DIR_ENV, str(directory))
    monkeypatch.delenv("SSH_AUTH_SOCK", raising=False)
    return directory


@pytest.fixture
def home_ssh_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """
    Empty ~/.ssh under a temporary $HOME.

    Lets tests put a known_hosts or config where asyncssh would look by
    default, while trust_dir points elsewhere.
    """
    home = tmp_path / "home"
    ssh_dir = home / ".ssh"
    ssh_dir.mkdir(parents=True)
    monkeypatch.setenv("HOME", str(home))
    return ssh_dir


@pytest.fixture
async def mock_ssh_server() -> AsyncGenerator["MockSSHServer", None]:
    """MockSSHServer accepting username "test" with password "test"."""
    from sftp_session.testing.mock_server import MockServerConfig, MockSSHServer

    async with MockSSHServer(MockServerConfig(username="test", password="test")) as server:
        yield server


@pytest.fixture
def known_hosts_file(mock_ssh_server: "MockSSHServer", tmp_path: Path) -> Path:
    """known_hosts file trusting mock_ssh_server's host key."""
    path = tmp_path / "known_hosts"
    path.write_text(mock_ssh_server.known_hosts_line())
    return path


@pytest.fixture
def client_key(tmp_path: Path) -> tuple[Path, "asyncssh.SSHKey"]:
    """Unencrypted client key pair written to tmp_path/client_key{,.pub}."""
    from sftp_session.testing.mock_server import generate_test_key

    path = tmp_path / "client_key"
    key = generate_test_key(path)
    return path, key


@pytest.fixture
async def key_ssh_server(
    client_key: tuple[Path, "asyncssh.SSHKey"],
) -> AsyncGenerator["MockSSHServer", None]:
    """MockSSHServer accepting only client_key for user "test"."""
    from sftp_session.testing.mock_server import MockServerConfig, MockSSHServer

    _, key = client_key
    config = MockServerConfig(username="test", password=None, authorized_keys=[key])
    async with MockSSHServer(config) as server:
        yield server


@pytest.fixture(autouse=True)
def restore_engine_logging() -> Generator[None, None, None]:
    """Undo the engine log bridge installed by any test."""
    from sftp_session.diagnostics import uninstall_engine_log_bridge

    yield
    uninstall_engine_log_bridge()
    logging.getLogger("sftp_session.engine").setLevel(logging.NOTSET)
