"""
Tests for proxy descriptors and tunnels.

Tests cover:
- build_proxy() fields per proxy type
- Credential handling and wiping
- HTTP CONNECT and SOCKS5 handshakes against mock proxies
- Handshake failures raising ProxyError
"""
from __future__ import annotations

import asyncio
import socket
from typing import AsyncGenerator

import pytest

from sftp_session.authenticator import (
    AuthDataType,
    AuthenticationData,
    StaticUserAuthenticator,
    proxy_authentication,
)
from sftp_session.errors import ProxyError
from sftp_session.options import DEFAULT_PROXY_COMMAND, ProxyType, SessionOptions
from sftp_session.proxy import HttpProxy, Socks5Proxy, StreamProxy, build_proxy
from sftp_session.secure_bytes import SecureBytes
from sftp_session.testing.mock_proxy import MockHttpProxy, MockProxyConfig, MockSocks5Proxy
from sftp_session.tunnel import open_http_tunnel, open_socks5_tunnel


def _auth(username: str | None = "puser", password: str | None = "ppass") -> AuthenticationData:
    data = AuthenticationData()
    data.set_data(AuthDataType.USERNAME, username)
    data.set_data(AuthDataType.PASSWORD, password)
    return data


@pytest.fixture
async def echo_server() -> AsyncGenerator[int, None]:
    """TCP server echoing everything back; yields its port."""
    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            while data := await reader.read(1024):
                writer.write(data)
                await writer.drain()
        finally:
            writer.close()

    server = await asyncio.start_server(handle, "localhost", 0)
    yield server.sockets[0].getsockname()[1]
    server.close()
    await server.wait_closed()


async def _echo_roundtrip(sock: socket.socket, payload: bytes = b"SSH-2.0-echo\r\n") -> bytes:
    loop = asyncio.get_running_loop()
    await loop.sock_sendall(sock, payload)
    received = b""
    while len(received) < len(payload):
        received += await loop.sock_recv(sock, 1024)
    return received


# ---------------------------------------------------------------------------
# build_proxy()
# ---------------------------------------------------------------------------

class TestBuildProxy:
    """Test descriptor construction."""

    def test_no_proxy_host(self) -> None:
        """No proxy host means no proxy, whatever the other fields say."""
        options = SessionOptions(proxy_type=ProxyType.SOCKS5, proxy_port=1080)
        assert build_proxy(options, _auth()) is None

    def test_http_without_auth(self) -> None:
        """HTTP proxy without credentials."""
        proxy = build_proxy(SessionOptions(proxy_host="p.example", proxy_port=3128))
        assert isinstance(proxy, HttpProxy)
        assert (proxy.host, proxy.port) == ("p.example", 3128)
        assert proxy.username is None and proxy.password is None

    def test_http_default_port(self) -> None:
        """Port 0 means the HTTP default."""
        proxy = build_proxy(SessionOptions(proxy_host="p.example"))
        assert proxy.port == 0
        assert proxy.effective_port == 80

    def test_http_with_auth(self) -> None:
        """Both credentials present: both are used."""
        proxy = build_proxy(SessionOptions(proxy_host="p.example"), _auth())
        assert proxy.has_credentials
        assert proxy.username.reveal() == b"puser"
        assert proxy.password.reveal() == b"ppass"

    def test_partial_credentials_ignored(self) -> None:
        """Only a username: no credentials at all."""
        proxy = build_proxy(SessionOptions(proxy_host="p.example"), _auth(password=None))
        assert not proxy.has_credentials
        assert proxy.username is None

    def test_socks5(self) -> None:
        """SOCKS5 proxy with default port."""
        options = SessionOptions(proxy_host="s.example", proxy_type=ProxyType.SOCKS5)
        proxy = build_proxy(options, _auth())
        assert isinstance(proxy, Socks5Proxy)
        assert proxy.effective_port == 1080
        assert proxy.has_credentials

    def test_proxy_type_from_string(self) -> None:
        """Proxy type accepts its string value."""
        options = SessionOptions(proxy_host="s.example", proxy_type="socks5")
        assert isinstance(build_proxy(options), Socks5Proxy)

    def test_stream(self) -> None:
        """Stream proxy carries command, user, host, port, password and options."""
        nested = SessionOptions(strict_host_key_checking="no")
        options = SessionOptions(
            proxy_host="jump.example",
            proxy_port=2222,
            proxy_type=ProxyType.STREAM,
            proxy_user="jumper",
            proxy_password="jump-pass",
            proxy_options=nested,
        )
        proxy = build_proxy(options, _auth())
        assert isinstance(proxy, StreamProxy)
        assert proxy.command == DEFAULT_PROXY_COMMAND
        assert (proxy.host, proxy.port, proxy.user) == ("jump.example", 2222, "jumper")
        assert proxy.password == "jump-pass"
        assert proxy.options is nested

    def test_stream_command_format(self) -> None:
        """The command is formatted with the target host and port."""
        proxy = StreamProxy(command=DEFAULT_PROXY_COMMAND, host="jump")
        assert proxy.format_command("target", 22) == "nc -q 0 target 22"
        assert proxy.effective_port == 22

    def test_repr_hides_secrets(self) -> None:
        """Descriptors never print credentials."""
        http = build_proxy(SessionOptions(proxy_host="p"), _auth())
        stream = StreamProxy(command="nc %s %d", host="j", password="jump-pass")
        assert "ppass" not in repr(http)
        assert "jump-pass" not in repr(stream)

    def test_credentials_wiped_with_auth_data(self) -> None:
        """Leaving proxy_authentication() wipes the descriptor's credentials."""
        authenticator = StaticUserAuthenticator("puser", "ppass")
        with proxy_authentication(authenticator) as data:
            proxy = build_proxy(SessionOptions(proxy_host="p"), data)
            assert proxy.password.reveal() == b"ppass"
        assert isinstance(proxy.password, SecureBytes)
        assert proxy.password.is_wiped
        assert proxy.username.is_wiped


# ---------------------------------------------------------------------------
# HTTP CONNECT
# ---------------------------------------------------------------------------

class TestHttpTunnel:
    """Test HTTP CONNECT against MockHttpProxy."""

    async def test_tunnel_without_auth(self, echo_server: int) -> None:
        """A CONNECT without credentials reaches the target."""
        async with MockHttpProxy() as mock:
            sock = await open_http_tunnel(HttpProxy("localhost", mock.port), "localhost", echo_server)
            try:
                assert await _echo_roundtrip(sock) == b"SSH-2.0-echo\r\n"
            finally:
                sock.close()

            assert mock.requests[0].target_port == echo_server
            assert mock.requests[0].username is None

    async def test_tunnel_with_basic_auth(self, echo_server: int) -> None:
        """Credentials are sent as Basic Proxy-Authorization."""
        config = MockProxyConfig(username="puser", password="ppass")
        async with MockHttpProxy(config) as mock:
            proxy = HttpProxy("localhost", mock.port, SecureBytes("puser"), SecureBytes("ppass"))
            sock = await open_http_tunnel(proxy, "localhost", echo_server)
            sock.close()

            assert mock.requests[0].username == "puser"
            assert mock.requests[0].password == "ppass"
            assert mock.requests[0].accepted

    async def test_auth_required(self, echo_server: int) -> None:
        """A 407 answer raises ProxyError."""
        config = MockProxyConfig(username="puser", password="ppass")
        async with MockHttpProxy(config) as mock:
            with pytest.raises(ProxyError) as exc_info:
                await open_http_tunnel(HttpProxy("localhost", mock.port), "localhost", echo_server)
        assert exc_info.value.reason == "auth_required"

    async def test_refused(self, echo_server: int) -> None:
        """A non-2xx answer raises ProxyError."""
        async with MockHttpProxy(MockProxyConfig(refuse=True)) as mock:
            with pytest.raises(ProxyError) as exc_info:
                await open_http_tunnel(HttpProxy("localhost", mock.port), "localhost", echo_server)
        assert exc_info.value.reason == "refused"

    async def test_unreachable_proxy(self) -> None:
        """A proxy that is not listening raises ProxyError."""
        with socket.socket() as placeholder:
            placeholder.bind(("localhost", 0))
            port = placeholder.getsockname()[1]
        with pytest.raises(ProxyError) as exc_info:
            await open_http_tunnel(HttpProxy("localhost", port), "localhost", 22)
        assert exc_info.value.reason == "unreachable"


# ---------------------------------------------------------------------------
# SOCKS5
# ---------------------------------------------------------------------------

class TestSocks5Tunnel:
    """Test SOCKS5 against MockSocks5Proxy."""

    async def test_tunnel_without_auth(self, echo_server: int) -> None:
        """No-auth SOCKS5 CONNECT reaches the target by name."""
        async with MockSocks5Proxy() as mock:
            sock = await open_socks5_tunnel(Socks5Proxy("localhost", mock.port), "localhost", echo_server)
            try:
                assert await _echo_roundtrip(sock) == b"SSH-2.0-echo\r\n"
            finally:
                sock.close()

            assert mock.requests[0].target_host == "localhost"
            assert mock.requests[0].target_port == echo_server

    async def test_tunnel_with_auth(self, echo_server: int) -> None:
        """Username/password sub-negotiation succeeds with valid credentials."""
        config = MockProxyConfig(username="puser", password="ppass")
        async with MockSocks5Proxy(config) as mock:
            proxy = Socks5Proxy("localhost", mock.port, SecureBytes("puser"), SecureBytes("ppass"))
            sock = await open_socks5_tunnel(proxy, "localhost", echo_server)
            try:
                assert await _echo_roundtrip(sock) == b"SSH-2.0-echo\r\n"
            finally:
                sock.close()
            assert mock.requests[0].username == "puser"

    async def test_wrong_credentials(self, echo_server: int) -> None:
        """Rejected credentials raise ProxyError."""
        config = MockProxyConfig(username="puser", password="ppass")
        async with MockSocks5Proxy(config) as mock:
            proxy = Socks5Proxy("localhost", mock.port, SecureBytes("puser"), SecureBytes("nope"))
            with pytest.raises(ProxyError) as exc_info:
                await open_socks5_tunnel(proxy, "localhost", echo_server)
        assert exc_info.value.reason == "auth_rejected"

    async def test_auth_required_without_credentials(self, echo_server: int) -> None:
        """A proxy requiring auth rejects a client offering none."""
        config = MockProxyConfig(username="puser", password="ppass")
        async with MockSocks5Proxy(config) as mock:
            with pytest.raises(ProxyError) as exc_info:
                await open_socks5_tunnel(Socks5Proxy("localhost", mock.port), "localhost", echo_server)
        assert exc_info.value.reason == "auth_rejected"

    async def test_connect_refused(self, echo_server: int) -> None:
        """A failing CONNECT reply raises ProxyError."""
        async with MockSocks5Proxy(MockProxyConfig(refuse=True)) as mock:
            with pytest.raises(ProxyError) as exc_info:
                await open_socks5_tunnel(Socks5Proxy("localhost", mock.port), "localhost", echo_server)
        assert exc_info.value.reason == "refused"
        assert "connection refused" in str(exc_info.value)
