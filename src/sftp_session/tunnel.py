"""
Proxy tunnels.

Provides:
- open_http_tunnel(): HTTP/1.1 CONNECT through an HTTP proxy
- open_socks5_tunnel(): SOCKS5 CONNECT (RFC 1928), with RFC 1929 auth
- StreamProxyTunnel: a command on a jump host bridged to a local socket

Every tunnel ends in a connected socket that is handed to asyncssh as its
transport. Handshakes run on non-blocking sockets through the event loop.
"""
from __future__ import annotations

import asyncio
import base64
import ipaddress
import logging
import socket
import struct
from typing import Any, Awaitable, Callable

import asyncssh

from sftp_session.errors import ErrorContext, ProxyError
from sftp_session.proxy import HttpProxy, Socks5Proxy, StreamProxy

log = logging.getLogger("sftp_session.tunnel")

_MAX_HEADER_BYTES = 16384

SOCKS_VERSION = 0x05
SOCKS_AUTH_NONE = 0x00
SOCKS_AUTH_USERPASS = 0x02
SOCKS_AUTH_REJECTED = 0xFF
SOCKS_CMD_CONNECT = 0x01
SOCKS_ATYP_IPV4 = 0x01
SOCKS_ATYP_DOMAIN = 0x03
SOCKS_ATYP_IPV6 = 0x04

SOCKS_REPLY_MESSAGES = {
    0x01: "general SOCKS server failure",
    0x02: "connection not allowed by ruleset",
    0x03: "network unreachable",
    0x04: "host unreachable",
    0x05: "connection refused",
    0x06: "TTL expired",
    0x07: "command not supported",
    0x08: "address type not supported",
}


def _proxy_name(host: str, port: int) -> str:
    return f"{host}:{port}"


async def _connect_socket(host: str, port: int) -> socket.socket:
    """Open a non-blocking TCP socket to host:port."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)
    last_error: OSError | None = None
    for family, type_, proto, _, address in infos:
        sock = socket.socket(family, type_, proto)
        sock.setblocking(False)
        try:
            await loop.sock_connect(sock, address)
        except OSError as e:
            sock.close()
            last_error = e
            continue
        return sock
    raise last_error or OSError(f"No address found for {host}:{port}")


async def _recv_exactly(sock: socket.socket, count: int) -> bytes:
    loop = asyncio.get_running_loop()
    data = b""
    while len(data) < count:
        chunk = await loop.sock_recv(sock, count - len(data))
        if not chunk:
            raise ConnectionError("Proxy closed the connection during handshake")
        data += chunk
    return data


async def _recv_http_headers(sock: socket.socket) -> bytes:
    # One byte at a time: anything after the blank line belongs to the SSH server
    loop = asyncio.get_running_loop()
    data = bytearray()
    while not data.endswith(b"\r\n\r\n"):
        chunk = await loop.sock_recv(sock, 1)
        if not chunk:
            raise ConnectionError("Proxy closed the connection during handshake")
        data += chunk
        if len(data) > _MAX_HEADER_BYTES:
            raise ConnectionError("Proxy response headers too long")
    return bytes(data)


def _format_authority(host: str, port: int) -> str:
    try:
        if ipaddress.ip_address(host).version == 6:
            return f"[{host}]:{port}"
    except ValueError:
        pass
    return f"{host}:{port}"


async def open_http_tunnel(proxy: HttpProxy, host: str, port: int) -> socket.socket:
    """
    Open a tunnel to host:port through an HTTP CONNECT proxy.

    Returns:
        Socket connected through the proxy to the target

    Raises:
        ProxyError: If the proxy cannot be reached or refuses the tunnel
    """
    proxy_port = proxy.effective_port
    name = _proxy_name(proxy.host, proxy_port)
    context = ErrorContext(host=host, port=port)

    try:
        sock = await _connect_socket(proxy.host, proxy_port)
    except OSError as e:
        raise ProxyError(
            f"Could not reach HTTP proxy {name}: {e}",
            proxy=name, reason="unreachable", context=context,
        ) from e

    try:
        authority = _format_authority(host, port)
        lines = [f"CONNECT {authority} HTTP/1.1", f"Host: {authority}"]
        if proxy.has_credentials:
            token = base64.b64encode(
                proxy.username.reveal() + b":" + proxy.password.reveal()
            ).decode("ascii")
            lines.append(f"Proxy-Authorization: Basic {token}")
        request = ("\r\n".join(lines) + "\r\n\r\n").encode("ascii")

        loop = asyncio.get_running_loop()
        await loop.sock_sendall(sock, request)
        response = await _recv_http_headers(sock)

        status_line = response.split(b"\r\n", 1)[0].decode("latin-1")
        parts = status_line.split(" ", 2)
        if len(parts) < 2 or not parts[0].startswith("HTTP/") or not parts[1].isdigit():
            raise ProxyError(
                f"Malformed response from HTTP proxy {name}: {status_line!r}",
                proxy=name, reason="malformed_response", context=context,
            )
        status = int(parts[1])
        if not 200 <= status < 300:
            reason = "auth_required" if status == 407 else "refused"
            raise ProxyError(
                f"HTTP proxy {name} refused tunnel: {status_line}",
                proxy=name, reason=reason, context=context,
            )
    except ProxyError:
        sock.close()
        raise
    except OSError as e:
        sock.close()
        raise ProxyError(
            f"HTTP proxy {name} handshake failed: {e}",
            proxy=name, reason="handshake_failed", context=context,
        ) from e
    except BaseException:
        sock.close()
        raise

    log.debug("HTTP tunnel to %s:%d open via %s", host, port, name)
    return sock


async def open_socks5_tunnel(proxy: Socks5Proxy, host: str, port: int) -> socket.socket:
    """
    Open a tunnel to host:port through a SOCKS5 proxy.

    The target is sent as a domain name so the proxy resolves it.

    Raises:
        ProxyError: If the proxy cannot be reached, rejects authentication
            or fails the CONNECT request
    """
    proxy_port = proxy.effective_port
    name = _proxy_name(proxy.host, proxy_port)
    context = ErrorContext(host=host, port=port)

    try:
        sock = await _connect_socket(proxy.host, proxy_port)
    except OSError as e:
        raise ProxyError(
            f"Could not reach SOCKS5 proxy {name}: {e}",
            proxy=name, reason="unreachable", context=context,
        ) from e

    loop = asyncio.get_running_loop()
    try:
        methods = [SOCKS_AUTH_NONE]
        if proxy.has_credentials:
            methods.append(SOCKS_AUTH_USERPASS)
        await loop.sock_sendall(sock, bytes([SOCKS_VERSION, len(methods), *methods]))

        version, method = await _recv_exactly(sock, 2)
        if version != SOCKS_VERSION:
            raise ProxyError(
                f"SOCKS5 proxy {name} answered with version {version}",
                proxy=name, reason="malformed_response", context=context,
            )
        if method == SOCKS_AUTH_REJECTED or method not in methods:
            raise ProxyError(
                f"SOCKS5 proxy {name} accepted none of the offered auth methods",
                proxy=name, reason="auth_rejected", context=context,
            )

        if method == SOCKS_AUTH_USERPASS:
            username = proxy.username.reveal()
            password = proxy.password.reveal()
            if len(username) > 255 or len(password) > 255:
                raise ProxyError(
                    "SOCKS5 username and password must be at most 255 bytes",
                    proxy=name, reason="auth_rejected", context=context,
                )
            await loop.sock_sendall(
                sock,
                bytes([0x01, len(username)]) + username + bytes([len(password)]) + password,
            )
            _, status = await _recv_exactly(sock, 2)
            if status != 0x00:
                raise ProxyError(
                    f"SOCKS5 proxy {name} rejected the credentials",
                    proxy=name, reason="auth_rejected", context=context,
                )

        encoded_host = host.encode("idna")
        if len(encoded_host) > 255:
            raise ProxyError(
                f"Host name too long for SOCKS5: {host}",
                proxy=name, reason="invalid_target", context=context,
            )
        request = (
            bytes([SOCKS_VERSION, SOCKS_CMD_CONNECT, 0x00, SOCKS_ATYP_DOMAIN, len(encoded_host)])
            + encoded_host
            + struct.pack("!H", port)
        )
        await loop.sock_sendall(sock, request)

        version, reply, _, atyp = await _recv_exactly(sock, 4)
        if reply != 0x00:
            message = SOCKS_REPLY_MESSAGES.get(reply, f"reply code {reply}")
            raise ProxyError(
                f"SOCKS5 proxy {name} could not connect to {host}:{port}: {message}",
                proxy=name, reason="refused", context=context,
            )
        if atyp == SOCKS_ATYP_IPV4:
            await _recv_exactly(sock, 4 + 2)
        elif atyp == SOCKS_ATYP_IPV6:
            await _recv_exactly(sock, 16 + 2)
        elif atyp == SOCKS_ATYP_DOMAIN:
            (length,) = await _recv_exactly(sock, 1)
            await _recv_exactly(sock, length + 2)
        else:
            raise ProxyError(
                f"SOCKS5 proxy {name} sent unknown address type {atyp}",
                proxy=name, reason="malformed_response", context=context,
            )
    except ProxyError:
        sock.close()
        raise
    except OSError as e:
        sock.close()
        raise ProxyError(
            f"SOCKS5 proxy {name} handshake failed: {e}",
            proxy=name, reason="handshake_failed", context=context,
        ) from e
    except BaseException:
        sock.close()
        raise

    log.debug("SOCKS5 tunnel to %s:%d open via %s", host, port, name)
    return sock


# Opens the SSH session to the jump host; returns an object with
# ``connection`` (asyncssh.SSHClientConnection) and ``aclose()``
JumpConnector = Callable[[StreamProxy], Awaitable[Any]]


class StreamProxyTunnel:
    """
    Tunnel through a command run on a jump host.

    Opens an SSH session to the jump host, runs the proxy command there
    and bridges the remote process's stdin/stdout to a local socket pair.
    asyncssh uses one end of the pair as the transport for the target
    session.

    Usage:
        async with StreamProxyTunnel(proxy, "target", 22, connector) as tunnel:
            conn = await asyncssh.connect(..., sock=tunnel.get_socket())
    """

    def __init__(
        self,
        proxy: StreamProxy,
        target_host: str,
        target_port: int,
        connector: JumpConnector,
    ) -> None:
        self._proxy = proxy
        self._target_host = target_host
        self._target_port = target_port
        self._connector = connector
        self._jump: Any = None
        self._process: asyncssh.SSHClientProcess | None = None
        self._local_sock: socket.socket | None = None
        self._remote_sock: socket.socket | None = None
        self._bridge_task: asyncio.Task | None = None
        self._closed = False

    @property
    def command(self) -> str:
        return self._proxy.format_command(self._target_host, self._target_port)

    @property
    def jump_session(self) -> Any:
        return self._jump

    async def start(self) -> None:
        """Connect to the jump host and start the proxy command."""
        assert not self._closed, "Cannot start a StreamProxyTunnel after close()"
        if self._process is not None:
            raise RuntimeError("StreamProxyTunnel already started")

        name = _proxy_name(self._proxy.host, self._proxy.effective_port)
        context = ErrorContext(host=self._target_host, port=self._target_port)
        if not self._proxy.user:
            raise ProxyError(
                f"Stream proxy {name} needs a user for the jump host",
                proxy=name, reason="missing_user", context=context,
            )

        try:
            self._jump = await self._connector(self._proxy)
        except Exception as e:
            raise ProxyError(
                f"Could not connect to jump host {name}",
                proxy=name, reason="jump_failed", context=context,
            ) from e

        command = self.command
        try:
            self._process = await self._jump.connection.create_process(
                command, encoding=None
            )
        except (OSError, asyncssh.Error) as e:
            await self.close()
            raise ProxyError(
                f"Could not start proxy command on {name}: {e}",
                proxy=name, reason="command_failed", context=context,
            ) from e

        if hasattr(socket, "AF_UNIX"):
            self._local_sock, self._remote_sock = socket.socketpair(
                socket.AF_UNIX, socket.SOCK_STREAM
            )
        else:
            self._local_sock, self._remote_sock = socket.socketpair()
        self._local_sock.setblocking(False)
        self._remote_sock.setblocking(False)

        self._bridge_task = asyncio.create_task(self._bridge())
        log.debug("Stream proxy command %r running on %s", command, name)

    async def _bridge(self) -> None:
        """Copy bytes between the local socket and the remote process."""
        assert self._process is not None and self._local_sock is not None
        loop = asyncio.get_running_loop()
        process = self._process
        local_sock = self._local_sock

        async def socket_to_process() -> None:
            while not self._closed:
                try:
                    data = await loop.sock_recv(local_sock, 65536)
                    if not data:
                        break
                    process.stdin.write(data)
                    await process.stdin.drain()
                except (OSError, asyncssh.Error):
                    break
            try:
                process.stdin.write_eof()
            except (OSError, asyncssh.Error) as e:
                log.debug("Error closing proxy command stdin: %s", e)

        async def process_to_socket() -> None:
            while not self._closed:
                try:
                    data = await process.stdout.read(65536)
                    if not data:
                        break
                    await loop.sock_sendall(local_sock, data)
                except (OSError, asyncssh.Error):
                    break
            try:
                local_sock.shutdown(socket.SHUT_WR)
            except OSError as e:
                log.debug("Error shutting down bridge socket: %s", e)

        try:
            await asyncio.gather(socket_to_process(), process_to_socket())
        except (OSError, ConnectionError, asyncssh.Error) as e:
            log.debug("Stream proxy bridge terminated: %s", e)

    def get_socket(self) -> socket.socket:
        """Socket connected to the proxy command's stdin/stdout."""
        if self._remote_sock is None:
            raise RuntimeError("StreamProxyTunnel not started")
        return self._remote_sock

    def _cleanup_sockets(self) -> None:
        for sock in (self._local_sock, self._remote_sock):
            if sock is not None:
                try:
                    sock.close()
                except OSError as e:
                    log.debug("Error closing bridge socket: %s", e)
        self._local_sock = None
        self._remote_sock = None

    async def close(self) -> None:
        """Stop the bridge, the remote command and the jump session. Idempotent."""
        if self._closed:
            return
        self._closed = True

        if self._bridge_task is not None:
            self._bridge_task.cancel()
            try:
                await self._bridge_task
            except asyncio.CancelledError:
                pass
            self._bridge_task = None

        if self._process is not None:
            self._process.close()
            self._process = None

        if self._jump is not None:
            await self._jump.aclose()
            self._jump = None

        self._cleanup_sockets()

    async def __aenter__(self) -> "StreamProxyTunnel":
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
