"""
Session factory.

Provides:
- create_connection_async(): establish an authenticated SSH session
- create_connection(): blocking twin running the session on its own loop thread
- SSHSession: handle owning the asyncssh connection and its tunnel resources
- SessionBuilder: the settings accumulated for one connection attempt
- build_engine_config(): engine settings derived from SessionOptions

Every failure while creating a session surfaces as ConnectError naming the
host, with the underlying exception as its ``__cause__``. A session is
never returned half-open: tunnels and jump sessions opened during a failed
attempt are closed before the error propagates.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from contextlib import AsyncExitStack
from enum import Enum
from pathlib import Path
from typing import Any, Coroutine, TypeVar

import asyncssh

from sftp_session.algorithms import (
    algorithm_connect_options,
    ensure_compatibility_algorithms_registered,
)
from sftp_session.authenticator import proxy_authentication
from sftp_session.client import SessionClient
from sftp_session.credentials import (
    IdentityRepository,
    LocalIdentityRepository,
    resolve_identities,
    resolve_known_hosts,
)
from sftp_session.diagnostics import install_engine_log_bridge
from sftp_session.errors import ConnectError, ErrorContext
from sftp_session.options import (
    STRICT_HOST_KEY_CHECKING_VALUES,
    ConnectionTarget,
    SessionOptions,
)
from sftp_session.platform import resolve_trust_directory
from sftp_session.proxy import HttpProxy, ProxyDescriptor, Socks5Proxy, StreamProxy, build_proxy
from sftp_session.tunnel import StreamProxyTunnel, open_http_tunnel, open_socks5_tunnel

log = logging.getLogger("sftp_session.session")

T = TypeVar("T")

STRICT_HOST_KEY_CHECKING = "StrictHostKeyChecking"
PREFERRED_AUTHENTICATIONS = "PreferredAuthentications"
COMPRESSION_S2C = "compression.s2c"
COMPRESSION_C2S = "compression.c2s"


class SessionState(str, Enum):
    """Lifecycle of a session attempt."""
    CREATED = "created"
    CONFIGURED = "configured"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"
    CLOSED = "closed"


def _split_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def build_engine_config(options: SessionOptions) -> dict[str, str]:
    """
    Collect the engine settings configured in ``options``.

    Only options that are set produce entries; the result is empty when
    nothing overrides the engine defaults. Compression applies to both
    directions.
    """
    config: dict[str, str] = {}
    if options.strict_host_key_checking is not None:
        config[STRICT_HOST_KEY_CHECKING] = options.strict_host_key_checking
    if options.preferred_authentications is not None:
        config[PREFERRED_AUTHENTICATIONS] = options.preferred_authentications
    if options.compression is not None:
        config[COMPRESSION_S2C] = options.compression
        config[COMPRESSION_C2S] = options.compression
    return config


class SessionBuilder:
    """
    Settings for one connection attempt, filled in step by step.

    Passed to IdentityRepositoryFactory.create() so custom repositories can
    see the target and options they are built for.
    """

    def __init__(self, target: ConnectionTarget, options: SessionOptions) -> None:
        self.target = target
        self.options = options
        self.state = SessionState.CREATED
        self.trust_dir: Path | None = None
        self.identity_repository: IdentityRepository = LocalIdentityRepository()
        self.proxy: ProxyDescriptor | None = None
        self.ask_unknown_hosts = True
        self.connect_options: dict[str, Any] = {
            "username": target.username_str,
            "agent_path": None,
            # Settings come from SessionOptions only, never ~/.ssh/config
            "config": [],
        }
        if target.password is not None:
            self.connect_options["password"] = target.password_str

    @property
    def timeout(self) -> float | None:
        """Connect timeout in seconds, None for no limit."""
        if not self.options.timeout:
            return None
        return self.options.timeout / 1000.0

    def set_known_hosts(self, known_hosts: asyncssh.SSHKnownHosts | None) -> None:
        """
        Use the resolved database, or an empty one when nothing was resolved.

        asyncssh would otherwise fall back to ~/.ssh/known_hosts, which may
        not be the resolved trust directory.
        """
        if known_hosts is None:
            # Trusted host keys, trusted CA keys, revoked keys
            known_hosts = ([], [], [])
        self.connect_options["known_hosts"] = known_hosts

    def set_timeout(self) -> None:
        if self.timeout is not None:
            self.connect_options["connect_timeout"] = self.timeout

    def set_config(self, config: dict[str, str]) -> None:
        """
        Apply engine settings from build_engine_config().

        Raises:
            ValueError: For an unsupported StrictHostKeyChecking value
        """
        strict = config.get(STRICT_HOST_KEY_CHECKING)
        if strict is not None:
            value = strict.strip().lower()
            if value not in STRICT_HOST_KEY_CHECKING_VALUES:
                raise ValueError(f"Unsupported StrictHostKeyChecking value: {strict!r}")
            if value == "no":
                self.connect_options["known_hosts"] = None
            self.ask_unknown_hosts = value == "ask"

        preferred = config.get(PREFERRED_AUTHENTICATIONS)
        if preferred is not None:
            self.connect_options["preferred_auth"] = _split_list(preferred)

        compression = config.get(COMPRESSION_C2S) or config.get(COMPRESSION_S2C)
        if compression is not None:
            if config.get(COMPRESSION_S2C, compression) != compression:
                log.debug("Compression differs by direction; using %s for both", compression)
            self.connect_options["compression_algs"] = _split_list(compression)

    def client_factory(self) -> SessionClient:
        return SessionClient(
            user_info=self.options.user_info,
            ask_unknown_hosts=self.ask_unknown_hosts,
        )


class _EventLoopThread:
    """An event loop running forever on a daemon thread."""

    def __init__(self, name: str) -> None:
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        try:
            self.loop.run_forever()
        finally:
            pending = asyncio.all_tasks(self.loop)
            for task in pending:
                task.cancel()
            if pending:
                self.loop.run_until_complete(
                    asyncio.gather(*pending, return_exceptions=True)
                )
            self.loop.run_until_complete(self.loop.shutdown_asyncgens())
            self.loop.close()

    def run(self, coro: Coroutine[Any, Any, T]) -> T:
        if threading.current_thread() is self._thread:
            coro.close()
            raise RuntimeError("Cannot block on the session's own event loop thread")
        return asyncio.run_coroutine_threadsafe(coro, self.loop).result()

    def stop(self) -> None:
        if self.loop.is_closed():
            return
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join()


class SSHSession:
    """
    An established, authenticated SSH session.

    Owns the asyncssh connection, any proxy tunnel and, for sessions made
    by create_connection(), the event loop thread they run on. Close it
    with close() / aclose() or use it as a (async) context manager.
    """

    def __init__(
        self,
        target: ConnectionTarget,
        connection: asyncssh.SSHClientConnection,
        client: SessionClient,
        resources: AsyncExitStack,
    ) -> None:
        self._target = target
        self._connection = connection
        self._client = client
        self._resources = resources
        self._loop_thread: _EventLoopThread | None = None
        self._state = SessionState.CONNECTED

    @property
    def hostname(self) -> str:
        return self._target.hostname

    @property
    def port(self) -> int:
        return self._target.port

    @property
    def username(self) -> str:
        return self._target.username_str

    @property
    def connection(self) -> asyncssh.SSHClientConnection:
        """The underlying asyncssh connection."""
        return self._connection

    @property
    def client(self) -> SessionClient:
        return self._client

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == SessionState.CONNECTED

    @property
    def loop(self) -> asyncio.AbstractEventLoop | None:
        """The session's own event loop, for sessions made by create_connection()."""
        return self._loop_thread.loop if self._loop_thread else None

    def run(self, coro: Coroutine[Any, Any, T]) -> T:
        """
        Run a coroutine on the session's event loop and wait for its result.

        Only available for sessions made by create_connection().
        """
        if self._loop_thread is None:
            coro.close()
            raise RuntimeError("run() needs a session made by create_connection()")
        return self._loop_thread.run(coro)

    async def open_sftp(self) -> asyncssh.SFTPClient:
        """Start an SFTP client on this session."""
        return await self._connection.start_sftp_client()

    async def aclose(self) -> None:
        """Close the connection, then any tunnel behind it. Idempotent."""
        if self._state == SessionState.CLOSED:
            return
        self._state = SessionState.CLOSED
        self._connection.close()
        try:
            await self._connection.wait_closed()
        finally:
            await self._resources.aclose()
        log.debug("Session to %s:%d closed", self.hostname, self.port)

    def close(self) -> None:
        """Blocking close for sessions made by create_connection()."""
        if self._loop_thread is None:
            raise RuntimeError("Use aclose() for sessions made by create_connection_async()")
        loop_thread = self._loop_thread
        try:
            if self._state != SessionState.CLOSED:
                loop_thread.run(self.aclose())
        finally:
            loop_thread.stop()

    async def __aenter__(self) -> "SSHSession":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    def __enter__(self) -> "SSHSession":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"SSHSession({self.username}@{self.hostname}:{self.port}, {self._state.value})"


async def _connect_jump_host(proxy: StreamProxy) -> SSHSession:
    return await create_connection_async(
        proxy.host,
        proxy.effective_port,
        proxy.user,
        proxy.password,
        proxy.options or SessionOptions(),
    )


async def _open_tunnel(
    proxy: ProxyDescriptor | None,
    target: ConnectionTarget,
    resources: AsyncExitStack,
) -> Any:
    """Open the proxy tunnel and return the socket for asyncssh, or None."""
    if proxy is None:
        return None

    if isinstance(proxy, HttpProxy):
        sock = await open_http_tunnel(proxy, target.hostname, target.port)
        resources.callback(sock.close)
        return sock

    if isinstance(proxy, Socks5Proxy):
        sock = await open_socks5_tunnel(proxy, target.hostname, target.port)
        resources.callback(sock.close)
        return sock

    if isinstance(proxy, StreamProxy):
        tunnel = StreamProxyTunnel(proxy, target.hostname, target.port, _connect_jump_host)
        resources.push_async_callback(tunnel.close)
        await tunnel.start()
        return tunnel.get_socket()

    raise TypeError(f"Unsupported proxy descriptor: {proxy!r}")


async def _establish(builder: SessionBuilder) -> SSHSession:
    target = builder.target
    options = builder.options

    ensure_compatibility_algorithms_registered()
    install_engine_log_bridge()

    builder.trust_dir = resolve_trust_directory()
    log.debug("Trust directory for %s: %s", target.hostname, builder.trust_dir)

    if options.identity_repository_factory is not None:
        builder.identity_repository = options.identity_repository_factory.create(builder)
        log.debug("Using identity repository %r", builder.identity_repository)

    builder.set_known_hosts(resolve_known_hosts(builder.trust_dir, options.known_hosts))
    count = resolve_identities(
        builder.identity_repository,
        builder.trust_dir,
        options.identities,
        options.identity_passphrase,
    )
    log.debug("%d identity(ies) registered", count)

    builder.set_timeout()
    builder.connect_options.update(algorithm_connect_options())

    config = build_engine_config(options)
    if config:
        builder.set_config(config)
        log.debug("Engine config: %s", config)
    builder.state = SessionState.CONFIGURED

    async with AsyncExitStack() as resources:
        closer = getattr(builder.identity_repository, "aclose", None)
        if closer is not None:
            resources.push_async_callback(closer)
        client_keys = await builder.identity_repository.get_identities()

        with proxy_authentication(
            options.proxy_authenticator if options.proxy_host else None
        ) as auth_data:
            builder.proxy = build_proxy(options, auth_data)
            builder.state = SessionState.CONNECTING
            log.debug("Connecting to %s:%d as %s", target.hostname, target.port, target.username_str)

            sock = await _open_tunnel(builder.proxy, target, resources)
            connect_options = dict(builder.connect_options, client_keys=client_keys)
            if sock is not None:
                connect_options["sock"] = sock

            connection, client = await asyncssh.create_connection(
                builder.client_factory,
                target.hostname,
                target.port,
                **connect_options,
            )

        session = SSHSession(target, connection, client, resources.pop_all())

    builder.state = SessionState.CONNECTED
    log.debug("Connected to %s:%d", target.hostname, target.port)
    return session


async def create_connection_async(
    hostname: str,
    port: int,
    username: str | bytes,
    password: str | bytes | None = None,
    options: SessionOptions | None = None,
) -> SSHSession:
    """
    Establish an authenticated SSH session.

    Args:
        hostname: Server host name or address
        port: Server port
        username: Login name
        password: Password, or None to rely on keys and prompts
        options: Optional settings (defaults apply when None)

    Returns:
        An open SSHSession; the caller closes it

    Raises:
        ConnectError: On any failure, with the cause chained
    """
    options = options or SessionOptions()
    builder: SessionBuilder | None = None
    try:
        target = ConnectionTarget(hostname, port, username, password)
        builder = SessionBuilder(target, options)
        if builder.timeout is not None:
            return await asyncio.wait_for(_establish(builder), builder.timeout)
        return await _establish(builder)
    except Exception as e:
        if builder is not None:
            builder.state = SessionState.FAILED
        log.debug("Connection to %s failed: %s", hostname, type(e).__name__)
        context = ErrorContext(
            port=port if isinstance(port, int) and 0 <= port <= 65535 else None,
            original_error=type(e).__name__,
        )
        raise ConnectError(hostname, context=context) from e


def create_connection(
    hostname: str,
    port: int,
    username: str | bytes,
    password: str | bytes | None = None,
    options: SessionOptions | None = None,
) -> SSHSession:
    """
    Blocking form of create_connection_async().

    The session runs on a dedicated event loop in a daemon thread; use
    SSHSession.run() to drive it and SSHSession.close() to end it. Must
    not be called from inside a running event loop's thread if that loop
    has to serve the connection.

    Raises:
        ConnectError: On any failure, with the cause chained
    """
    loop_thread = _EventLoopThread(name=f"sftp-session-{hostname}")
    try:
        session = loop_thread.run(
            create_connection_async(hostname, port, username, password, options)
        )
    except BaseException:
        loop_thread.stop()
        raise
    session._loop_thread = loop_thread
    return session

